"""The same computations on different targets.

Targets are explicit: a Deferred always resolves on the target it was
submitted to, even after you start submitting somewhere else.
"""

import dropjob as dj


@dj.compute
def slow_square(x: int) -> int:
    import time

    time.sleep(0.5)
    return x * x


if __name__ == "__main__":
    local = dj.Sequential()
    lazy = dj.submit(local, slow_square(3))
    print("Sequential, evaluated on first result():", lazy.result())

    with dj.Multiprocess(workers=4) as pool:
        deferreds = [dj.submit(pool, slow_square(n)) for n in range(8)]
        print("Multiprocess:", dj.gather(*deferreds))

        # Closures travel too
        offset = 100
        print("Closure:", dj.submit(pool, lambda: offset + 1).result())
