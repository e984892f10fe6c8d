"""dropjob - run Python computations on DigitalOcean droplets.

A run creates a droplet, pulls a container image onto it, starts a worker
inside the container over SSH, runs deferred computations there and
destroys the droplet.

Example:

    from dropjob import compute, resolve_job

    @compute
    def fit(year: int) -> float:
        ...

    runner = resolve_job("vast").runner()
    with runner.provisioned():
        d = runner.submit(fit(2019))
        print(runner.resolve(d))
"""

from dropjob.config import ResolvedJob, load_config, resolve_job
from dropjob.container import ContainerPuller, ImageRef, docker_run_command
from dropjob.errors import (
    BootstrapError,
    ContainerPullError,
    DigitalOceanError,
    DropjobError,
    InvalidImageReference,
    PackageInstallError,
    ProviderError,
    PythonVersionMismatchError,
    RemoteCommandError,
    RunnerStateError,
    SessionClosedError,
    SessionError,
    SSHConnectError,
)
from dropjob.observability import LogConfig, setup_logging, teardown_logging
from dropjob.packages import VAST_PACKAGES, PackageInstaller, PackageSpec
from dropjob.pending import (
    ComputeFunction,
    Deferred,
    PendingCompute,
    cancel,
    compute,
    gather,
    submit,
)
from dropjob.providers import DigitalOcean, DropletManager
from dropjob.runner import JobConfig, RemoteJobRunner, RunState, run_remote
from dropjob.session import Credentials, Session, SSHSessionConnector, connect
from dropjob.ssh import SSHConfig, SSHConnection
from dropjob.targets import Multiprocess, RemoteList, Sequential, SessionTarget, Target
from dropjob.types import InstallResult, InstanceDescriptor

__version__ = "0.1.0"

__all__ = [
    # Deferred computation
    "ComputeFunction",
    "Deferred",
    "PendingCompute",
    "cancel",
    "compute",
    "gather",
    "submit",
    # Targets
    "Multiprocess",
    "RemoteList",
    "Sequential",
    "SessionTarget",
    "Target",
    # Runner
    "JobConfig",
    "RemoteJobRunner",
    "RunState",
    "run_remote",
    # Collaborators
    "ContainerPuller",
    "Credentials",
    "DigitalOcean",
    "DropletManager",
    "ImageRef",
    "InstanceDescriptor",
    "InstallResult",
    "PackageInstaller",
    "PackageSpec",
    "SSHConfig",
    "SSHConnection",
    "SSHSessionConnector",
    "Session",
    "VAST_PACKAGES",
    "connect",
    "docker_run_command",
    # Configuration
    "LogConfig",
    "ResolvedJob",
    "load_config",
    "resolve_job",
    "setup_logging",
    "teardown_logging",
    # Errors
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
