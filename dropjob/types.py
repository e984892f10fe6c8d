"""Core types and collaborator protocols.

The runner only talks to its collaborators through these protocols, so any
of them can be replaced (tests use in-memory fakes).
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from dropjob.pending import Deferred


@dataclass(frozen=True, slots=True)
class InstanceDescriptor:
    """A provisioned virtual machine.

    ``ip`` is assigned once the instance is running. A descriptor is never
    mutated; it becomes stale once the instance is destroyed.
    """

    id: str
    name: str
    region: str
    size: str
    ip: str = ""
    status: str = "new"
    private_ip: str = ""
    tags: tuple[str, ...] = ()

    @property
    def address(self) -> str:
        if not self.ip:
            raise ValueError(f"Instance {self.name} has no network address yet")
        return self.ip


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Outcome of a command run on a remote host."""

    command: str
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@runtime_checkable
class InstanceManager(Protocol):
    """Creates, inspects and destroys cloud instances."""

    def create(
        self,
        name: str,
        region: str | None = None,
        size: str | None = None,
        image: str | None = None,
    ) -> InstanceDescriptor:
        """Provision an instance and block until it has an address."""
        ...

    def list(self, tag: str | None = None) -> Sequence[InstanceDescriptor]:
        """Return live instances in provider order."""
        ...

    def destroy(self, target: InstanceDescriptor | str) -> bool:
        """Release an instance. Returns False if it was already gone."""
        ...


@runtime_checkable
class Transport(Protocol):
    """Administrative command channel to an instance."""

    def run(self, command: str, timeout: float | None = None) -> CommandResult: ...

    def close(self) -> None: ...


@runtime_checkable
class ImagePuller(Protocol):
    """Pulls a container image onto an instance."""

    def pull(self, instance: InstanceDescriptor, image: str) -> None: ...


@runtime_checkable
class WorkerSession(Protocol):
    """A ready remote worker that executes submitted calls in order."""

    def submit(self, fn: Any, /, *args: Any, **kwargs: Any) -> Deferred[Any]: ...

    def terminate(self) -> None: ...

    def close(self) -> None: ...


@runtime_checkable
class SessionConnector(Protocol):
    """Opens a worker session on an instance."""

    def connect(self, instance: InstanceDescriptor, image: str) -> WorkerSession: ...


@dataclass(frozen=True, slots=True)
class InstallResult:
    """Outcome of installing one package."""

    package: str
    installed: bool
    skipped: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None
