"""Drive a run one step at a time.

The step methods do not clean up when something fails: the droplet keeps
running (and billing) until teardown() is called. Wrap them in try/finally,
or use runner.provisioned() which does it for you.
"""

import dropjob as dj


@dj.compute
def expression_e() -> int:
    return 10


if __name__ == "__main__":
    runner = dj.resolve_job("vast").runner()

    try:
        instance = runner.create_instance()
        print("Droplet", instance.name, "at", instance.ip)

        runner.pull_image()
        runner.open_session()
        runner.activate()

        d = runner.submit(expression_e())
        print("E =", runner.resolve(d))

        # Later submissions can go elsewhere; d stays bound to the droplet.
        runner.use(dj.Sequential())
        print("local E =", runner.resolve(runner.submit(expression_e())))
    finally:
        if runner.state is not dj.RunState.TORN_DOWN:
            runner.teardown()

    print(" -> ".join(state.name for state in runner.history))
