"""Container images on remote instances: pull, and build the worker's run command."""

from __future__ import annotations

import re
import shlex
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass

from loguru import logger

from dropjob.constants import PULL_TIMEOUT
from dropjob.errors import ContainerPullError, InvalidImageReference
from dropjob.types import InstanceDescriptor, Transport

log = logger.bind(component="container")

_NAME_PART = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
_TAG = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")

type TransportFactory = Callable[[InstanceDescriptor], Transport]


@dataclass(frozen=True, slots=True)
class ImageRef:
    """A container image reference: ``[registry/]account/repository[:tag]``."""

    account: str
    repository: str
    tag: str = "latest"
    registry: str | None = None

    @classmethod
    def parse(cls, reference: str) -> ImageRef:
        """Parse and validate an image reference.

        Raises:
            InvalidImageReference: If the reference is malformed.
        """
        ref = reference.strip()
        if not ref or any(c.isspace() for c in ref):
            raise InvalidImageReference(f"Invalid image reference: {reference!r}")

        name, tag = ref, "latest"
        last = ref.rsplit("/", 1)[-1]
        if ":" in last:
            name, tag = ref.rsplit(":", 1)
            if not _TAG.match(tag):
                raise InvalidImageReference(f"Invalid tag {tag!r} in {reference!r}")

        parts = name.split("/")
        registry = None
        if len(parts) > 2 or (len(parts) == 2 and ("." in parts[0] or ":" in parts[0])):
            registry, parts = parts[0], parts[1:]

        match parts:
            case [account, repository]:
                pass
            case [repository] if registry is None:
                raise InvalidImageReference(
                    f"Image reference {reference!r} must be account/repository[:tag]"
                )
            case _:
                raise InvalidImageReference(f"Invalid image reference: {reference!r}")

        for part in (account, repository):
            if not _NAME_PART.match(part):
                raise InvalidImageReference(f"Invalid name component {part!r} in {reference!r}")

        return cls(account=account, repository=repository, tag=tag, registry=registry)

    def __str__(self) -> str:
        prefix = f"{self.registry}/" if self.registry else ""
        return f"{prefix}{self.account}/{self.repository}:{self.tag}"


def docker_run_command(
    image: str | ImageRef,
    command: Sequence[str],
    *,
    network: str = "host",
    interactive: bool = True,
    volumes: Sequence[str] = (),
    env: Mapping[str, str] | None = None,
    docker: str = "docker",
) -> str:
    """Render the ``docker run`` command line that starts a worker.

    Host networking lets the worker reach back to the machine that
    launched it.
    """
    args = [docker, "run", "--rm"]
    if interactive:
        args.append("-i")
    args.append(f"--net={network}")
    for volume in volumes:
        args += ["-v", volume]
    for key, value in (env or {}).items():
        args += ["-e", f"{key}={value}"]
    args.append(str(image))
    args.extend(command)
    return shlex.join(args)


class ContainerPuller:
    """Pull images onto instances over their administrative SSH channel.

    Failures are not retried.
    """

    def __init__(
        self,
        transport_factory: TransportFactory,
        docker: str = "docker",
        timeout: float = PULL_TIMEOUT,
    ) -> None:
        self._transport_factory = transport_factory
        self._docker = docker
        self._timeout = timeout

    def pull(self, instance: InstanceDescriptor, image: str) -> None:
        """Pull ``image`` on ``instance``, blocking until complete.

        Raises:
            InvalidImageReference: If ``image`` is malformed.
            ContainerPullError: If ``docker pull`` exits non-zero.
        """
        ref = str(ImageRef.parse(image))
        bound = log.bind(droplet=instance.id, image=ref)
        bound.info("Pulling {image} on {name}", image=ref, name=instance.name)

        transport = self._transport_factory(instance)
        try:
            result = transport.run(f"{self._docker} pull {shlex.quote(ref)}", timeout=self._timeout)
        finally:
            transport.close()

        if not result.ok:
            raise ContainerPullError(ref, result.returncode, result.stderr or result.stdout)
        bound.info("Pulled {image}", image=ref)


__all__ = ["ContainerPuller", "ImageRef", "docker_run_command"]
