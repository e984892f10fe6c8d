"""Exception hierarchy for dropjob.

Every failure surfaced by the library derives from DropjobError, except
exceptions raised by user code on a worker, which are re-raised unchanged.
"""

from __future__ import annotations


class DropjobError(Exception):
    """Base class for dropjob errors."""


# =============================================================================
# Package installation
# =============================================================================


class PackageInstallError(DropjobError):
    """Installing a package failed."""

    def __init__(self, package: str, returncode: int, stderr: str = "") -> None:
        self.package = package
        self.returncode = returncode
        self.stderr = stderr
        detail = f": {stderr.strip()}" if stderr.strip() else ""
        super().__init__(f"Installing '{package}' failed (exit {returncode}){detail}")


# =============================================================================
# Provider
# =============================================================================


class ProviderError(DropjobError):
    """Cloud provider API failure (quota, auth, invalid parameters)."""


class DigitalOceanError(ProviderError):
    """Error from the DigitalOcean API."""


# =============================================================================
# Container
# =============================================================================


class ContainerPullError(DropjobError):
    """Pulling a container image on the instance failed."""

    def __init__(self, image: str, returncode: int, output: str = "") -> None:
        self.image = image
        self.returncode = returncode
        self.output = output
        super().__init__(f"docker pull {image} failed (exit {returncode}): {output.strip()}")


class InvalidImageReference(DropjobError, ValueError):
    """Image reference is not of the form [registry/]account/repository[:tag]."""


# =============================================================================
# Session
# =============================================================================


class SessionError(DropjobError):
    """Secure shell or worker session failure."""


class SSHConnectError(SessionError):
    """Could not open the SSH connection."""


class RemoteCommandError(SessionError):
    """A command run over SSH exited non-zero."""

    def __init__(self, command: str, returncode: int, stderr: str = "") -> None:
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        preview = command[:80] + "..." if len(command) > 80 else command
        super().__init__(f"Command failed ({returncode}): {preview}: {stderr.strip()}")


class BootstrapError(SessionError):
    """Worker bootstrap commands failed before the worker became ready."""

    def __init__(self, output: str) -> None:
        self.output = output
        super().__init__(f"Worker bootstrap failed: {output.strip()}")


class SessionClosedError(SessionError):
    """The session was closed before the computation finished."""


class PythonVersionMismatchError(SessionError):
    """Local and remote Python versions differ."""

    def __init__(self, local: str, remote: str) -> None:
        self.local = local
        self.remote = remote
        super().__init__(
            f"Python version mismatch: local={local}, remote={remote}. "
            f"Cloudpickle cannot safely serialize bytecode across versions; "
            f"use a container image with Python {local}."
        )


# =============================================================================
# Runner
# =============================================================================


class RunnerStateError(DropjobError):
    """A runner step was called out of order."""

    def __init__(self, step: str, state: object, expected: object) -> None:
        self.step = step
        self.state = state
        self.expected = expected
        super().__init__(f"Cannot {step} in state {state} (expected {expected})")


__all__ = [
    "BootstrapError",
    "ContainerPullError",
    "DigitalOceanError",
    "DropjobError",
    "InvalidImageReference",
    "PackageInstallError",
    "ProviderError",
    "PythonVersionMismatchError",
    "RemoteCommandError",
    "RunnerStateError",
    "SSHConnectError",
    "SessionClosedError",
    "SessionError",
]
