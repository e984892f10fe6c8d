"""Hello dropjob.

Runs two functions on a fresh droplet inside a stock Python image, then
destroys the droplet.

Needs DIGITALOCEAN_TOKEN and an SSH key in ~/.ssh.
"""

import dropjob as dj


@dj.compute
def greet(name: str) -> str:
    import platform

    return f"Hello {name} from {platform.node()} (Python {platform.python_version()})"


@dj.compute
def add(a: int, b: int) -> int:
    return a + b


if __name__ == "__main__":
    connector = dj.SSHSessionConnector(dj.Credentials(insecure_host_keys=True))
    manager = dj.DropletManager(dj.DigitalOcean(size="s-1vcpu-1gb"))
    puller = dj.ContainerPuller(
        lambda d: dj.SSHConnection.open(connector.credentials.for_host(d.address))
    )

    runner = dj.RemoteJobRunner(
        dj.JobConfig(image="library/python:3.12-slim"),
        manager,
        puller,
        connector,
        logging=dj.LogConfig(),
    )

    with runner.provisioned() as remote:
        print(greet("dropjob") >> remote)

        d1 = runner.submit(add(1, 2))
        d2 = runner.submit(add(3, 4))
        print(dj.gather(d1, d2))
