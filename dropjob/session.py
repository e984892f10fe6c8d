"""Worker sessions: one SSH-launched worker process on one instance.

``connect()`` opens SSH to the instance, starts the worker inside the
container with host networking, runs the bootstrap commands once, and
returns a Session after the worker reports ready. Calls submitted to a
Session run one at a time, in submission order.
"""

from __future__ import annotations

import base64
import inspect
import shlex
import socket
import threading
from collections import deque
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

import paramiko
from loguru import logger

from dropjob import worker as worker_module
from dropjob.constants import (
    BOOTSTRAP_TIMEOUT,
    DEFAULT_SSH_USER,
    SUPPORT_PACKAGE,
    WORKER_LIB_DIR,
    WORKER_PYTHON,
)
from dropjob.container import docker_run_command
from dropjob.errors import BootstrapError, SessionClosedError
from dropjob.pending import Deferred
from dropjob.serialization import check_python_version
from dropjob.ssh import SSHConfig, SSHConnection
from dropjob.types import InstanceDescriptor
from dropjob.worker import read_frame, write_frame

log = logger.bind(component="session")

DEFAULT_BOOTSTRAP: tuple[str, ...] = (
    f"mkdir -p {WORKER_LIB_DIR}",
    f"{WORKER_PYTHON} -c 'import {SUPPORT_PACKAGE}' 2>/dev/null || "
    f"{WORKER_PYTHON} -m pip install --quiet --target {WORKER_LIB_DIR} {SUPPORT_PACKAGE}",
)

_STDERR_TAIL = 50


@dataclass(frozen=True, slots=True)
class Credentials:
    """How to log in to an instance.

    ``insecure_host_keys`` disables host-key verification. Droplets are
    ephemeral, so their keys are never known in advance; turning the check
    off is an explicit opt-in and is logged loudly.
    """

    username: str = DEFAULT_SSH_USER
    key_path: str | None = None
    port: int = 22
    insecure_host_keys: bool = False

    def for_host(self, address: str) -> SSHConfig:
        return SSHConfig(
            host=address,
            username=self.username,
            port=self.port,
            key_path=self.key_path,
            insecure_host_keys=self.insecure_host_keys,
        )


def worker_argv(
    bootstrap_commands: Sequence[str] = DEFAULT_BOOTSTRAP,
    python: str = WORKER_PYTHON,
) -> list[str]:
    """Command that bootstraps and then execs the worker, as an argv list.

    Bootstrap output goes to stderr; stdout is reserved for the protocol.
    """
    source = inspect.getsource(worker_module)
    encoded = base64.b64encode(source.encode()).decode()
    boot = f"import base64;exec(compile(base64.b64decode('{encoded}'),'dropjob-worker','exec'))"

    lines = [
        "set -e",
        f"export PYTHONPATH={WORKER_LIB_DIR}${{PYTHONPATH:+:$PYTHONPATH}}",
    ]
    if bootstrap_commands:
        lines += ["{", *bootstrap_commands, "} >&2"]
    lines.append(f"exec {python} -u -c {shlex.quote(boot)}")
    return ["sh", "-c", "\n".join(lines)]


def launch_command(
    image: str | None,
    prefix: Sequence[str] | None = None,
    bootstrap_commands: Sequence[str] = DEFAULT_BOOTSTRAP,
) -> str:
    """Full remote command line for the worker.

    With no ``prefix``, the worker runs in ``image`` via ``docker run`` on
    the host network. A ``prefix`` (e.g. ``["sudo", "docker", "run", ...]``)
    replaces that and gets the worker command appended.
    """
    argv = worker_argv(bootstrap_commands)
    if prefix is not None:
        return shlex.join([*prefix, *argv])
    if image is None:
        raise ValueError("Either an image or a launch command prefix is required")
    return docker_run_command(image, argv, network="host")


class _ChannelReader:
    """Binary reader over a paramiko channel's stdout."""

    __slots__ = ("_channel",)

    def __init__(self, channel: paramiko.Channel) -> None:
        self._channel = channel

    def read(self, size: int) -> bytes:
        return self._channel.recv(size)


class _ChannelWriter:
    """Binary writer over a paramiko channel's stdin."""

    __slots__ = ("_channel",)

    def __init__(self, channel: paramiko.Channel) -> None:
        self._channel = channel

    def write(self, data: bytes) -> int:
        self._channel.sendall(data)
        return len(data)

    def flush(self) -> None:
        pass


@dataclass
class Session:
    """A ready remote worker.

    Owns its SSH connection and worker channel. Invalid after close(),
    terminate(), or destruction of the instance.
    """

    channel: Any
    connection: Any = None
    host: str = ""
    info: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._reader = _ChannelReader(self.channel)
        self._writer = _ChannelWriter(self.channel)
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="dropjob-session")
        self._closed = threading.Event()
        self._stderr: deque[str] = deque(maxlen=_STDERR_TAIL)
        self._stderr_thread = threading.Thread(
            target=self._drain_stderr, name="dropjob-worker-stderr", daemon=True
        )
        self._stderr_thread.start()
        self._log = log.bind(host=self.host)

    # -------------------------------------------------------------------------
    # Startup
    # -------------------------------------------------------------------------

    def wait_ready(self, timeout: float | None = BOOTSTRAP_TIMEOUT) -> dict[str, Any]:
        """Block until the worker finishes bootstrapping and says ready.

        Raises:
            BootstrapError: If the worker exits before becoming ready.
            PythonVersionMismatchError: If the worker runs another Python minor version.
            TimeoutError: If it does not become ready within ``timeout``.
        """
        self.channel.settimeout(timeout)
        try:
            message = read_frame(self._reader)
        except EOFError as e:
            self._stderr_thread.join(timeout=1.0)
            raise BootstrapError("\n".join(self._stderr) or "worker exited during bootstrap") from e
        except socket.timeout as e:
            raise TimeoutError(f"Worker on {self.host} not ready after {timeout}s") from e
        finally:
            self.channel.settimeout(None)

        match message:
            case ("ready", dict() as info):
                check_python_version(str(info.get("python", "")))
                self.info = info
                self._log.info("Worker ready (pid {pid}, python {py})", pid=info.get("pid"), py=info.get("python"))
                return info
            case _:
                raise BootstrapError(f"Unexpected message from worker: {message!r}")

    def _drain_stderr(self) -> None:
        pending = b""
        while True:
            try:
                chunk = self.channel.recv_stderr(4096)
            except TimeoutError:
                if self.closed:
                    return
                continue
            except OSError:
                return
            if not chunk:
                break
            pending += chunk
            *lines, pending = pending.split(b"\n")
            for line in lines:
                text = line.decode(errors="replace")
                self._stderr.append(text)
                log.bind(host=self.host).debug("worker: {line}", line=text)
        if pending:
            self._stderr.append(pending.decode(errors="replace"))

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def stderr_tail(self) -> list[str]:
        return list(self._stderr)

    def submit(self, fn: Any, /, *args: Any, **kwargs: Any) -> Deferred[Any]:
        """Queue a call on the worker. Never blocks."""
        if self.closed:
            raise SessionClosedError(f"Session to {self.host} is closed")
        name = getattr(fn, "__name__", "")
        future: Future[Any] = self._executor.submit(self._call, fn, args, kwargs)
        return Deferred(future, self, name, on_cancel=self.terminate)

    def _call(self, fn: Any, args: tuple[Any, ...], kwargs: dict[str, Any]) -> Any:
        if self.closed:
            raise SessionClosedError(f"Session to {self.host} is closed")
        try:
            write_frame(self._writer, ("call", fn, args, kwargs))
            reply = read_frame(self._reader)
        except (EOFError, OSError) as e:
            raise SessionClosedError(
                f"Worker on {self.host} went away: {' | '.join(self.stderr_tail[-3:])}"
            ) from e

        match reply:
            case ("ok", value):
                return value
            case ("err", BaseException() as exc, str() as remote_tb):
                exc.add_note(f"Remote traceback (worker on {self.host}):\n{remote_tb}")
                raise exc
            case _:
                raise SessionClosedError(f"Unexpected reply from worker: {reply!r}")

    # -------------------------------------------------------------------------
    # Shutdown
    # -------------------------------------------------------------------------

    def terminate(self) -> None:
        """Kill the worker now. Running and queued calls fail with SessionClosedError."""
        if self._closed.is_set():
            return
        self._closed.set()
        self._log.warning("Terminating worker")
        self._executor.shutdown(wait=False)
        self.channel.close()
        if self.connection is not None:
            self.connection.close()

    def close(self) -> None:
        """Finish queued calls, stop the worker, and close the connection."""
        if self._closed.is_set():
            return
        self._executor.submit(self._send_shutdown)
        self._executor.shutdown(wait=True)
        self._closed.set()
        self.channel.close()
        if self.connection is not None:
            self.connection.close()
        self._log.info("Session closed")

    def _send_shutdown(self) -> None:
        try:
            write_frame(self._writer, ("shutdown",))
        except OSError as e:
            self._log.debug("Worker already gone at shutdown: {err}", err=e)

    def __enter__(self) -> Session:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def connect(
    address: str,
    credentials: Credentials,
    launch_prefix: Sequence[str] | None = None,
    bootstrap_commands: Sequence[str] = DEFAULT_BOOTSTRAP,
    *,
    image: str | None = None,
    ready_timeout: float | None = BOOTSTRAP_TIMEOUT,
) -> Session:
    """Open a session to a worker on ``address``.

    Args:
        address: Instance IP or hostname.
        credentials: Login user, identity file and host-key policy.
        launch_prefix: Command that starts a process in the container; the
            worker command is appended. Defaults to ``docker run`` of
            ``image`` on the host network.
        bootstrap_commands: Shell commands run once in the container before
            the worker starts; by default they create a writable package
            directory and install cloudpickle into it if it is missing.
        image: Container image, used when no ``launch_prefix`` is given.
        ready_timeout: Seconds to wait for bootstrap to finish.

    Raises:
        SSHConnectError: If SSH cannot connect or authenticate.
        BootstrapError: If the worker fails before becoming ready.
    """
    command = launch_command(image, launch_prefix, bootstrap_commands)
    connection = SSHConnection.open(credentials.for_host(address))
    log.bind(host=address).info("Starting worker on {host}", host=address)
    channel = connection.open_process(command)
    session = Session(channel=channel, connection=connection, host=address)
    try:
        session.wait_ready(ready_timeout)
    except BaseException:
        session.terminate()
        raise
    return session


@dataclass(frozen=True, slots=True)
class SSHSessionConnector:
    """SessionConnector that opens real SSH sessions to droplets."""

    credentials: Credentials = Credentials()
    launch_prefix: tuple[str, ...] | None = None
    bootstrap_commands: tuple[str, ...] = DEFAULT_BOOTSTRAP
    ready_timeout: float | None = BOOTSTRAP_TIMEOUT

    def connect(self, instance: InstanceDescriptor, image: str) -> Session:
        return connect(
            instance.address,
            self.credentials,
            self.launch_prefix,
            self.bootstrap_commands,
            image=image,
            ready_timeout=self.ready_timeout,
        )


__all__ = [
    "Credentials",
    "DEFAULT_BOOTSTRAP",
    "SSHSessionConnector",
    "Session",
    "connect",
    "launch_command",
    "worker_argv",
]
