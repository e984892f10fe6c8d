"""SSH connections to droplets (paramiko).

Host-key verification is on by default. Droplets are ephemeral and get a
fresh host key every time, so ``insecure_host_keys=True`` turns the check
off; that removes an integrity check and is logged as a warning on every
connection.
"""

from __future__ import annotations

from dataclasses import dataclass

import paramiko
from loguru import logger
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_delay,
    wait_exponential,
)

from dropjob.constants import DEFAULT_SSH_USER, SSH_AUTH_RETRY_WINDOW, SSH_CONNECT_TIMEOUT
from dropjob.errors import RemoteCommandError, SSHConnectError
from dropjob.types import CommandResult

log = logger.bind(component="ssh")


@dataclass(frozen=True, slots=True)
class SSHConfig:
    """SSH connection configuration."""

    host: str
    username: str = DEFAULT_SSH_USER
    port: int = 22
    key_path: str | None = None
    insecure_host_keys: bool = False
    connect_timeout: float = SSH_CONNECT_TIMEOUT
    auth_retry_window: float = SSH_AUTH_RETRY_WINDOW

    def ssh_options(self) -> list[str]:
        """Equivalent OpenSSH command-line options."""
        args = ["-o", f"ConnectTimeout={int(self.connect_timeout)}"]
        if self.insecure_host_keys:
            args += ["-o", "StrictHostKeyChecking=no", "-o", "UserKnownHostsFile=/dev/null"]
        if self.key_path:
            args += ["-i", self.key_path]
        if self.port != 22:
            args += ["-p", str(self.port)]
        return args

    @property
    def destination(self) -> str:
        return f"{self.username}@{self.host}"


class SSHConnection:
    """One SSH connection to one host.

    Implements the Transport protocol (``run``/``close``) and opens
    long-lived process channels for workers.
    """

    __slots__ = ("_client", "config")

    def __init__(self, config: SSHConfig, client: paramiko.SSHClient | None = None) -> None:
        self.config = config
        self._client = client or paramiko.SSHClient()
        if config.insecure_host_keys:
            log.bind(host=config.host).warning(
                "Host key verification is DISABLED for {host}; "
                "the server's identity is not checked",
                host=config.host,
            )
            self._client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        else:
            self._client.load_system_host_keys()
            self._client.set_missing_host_key_policy(paramiko.RejectPolicy())

    @classmethod
    def open(cls, config: SSHConfig) -> SSHConnection:
        """Connect, retrying authentication while a new droplet installs the key."""
        conn = cls(config)
        conn.connect()
        return conn

    def connect(self) -> None:
        config = self.config
        kwargs: dict = {
            "hostname": config.host,
            "username": config.username,
            "port": config.port,
            "timeout": config.connect_timeout,
        }
        if config.key_path:
            kwargs["key_filename"] = config.key_path

        @retry(
            stop=stop_after_delay(config.auth_retry_window),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type(
                (paramiko.ssh_exception.AuthenticationException,
                 paramiko.ssh_exception.NoValidConnectionsError)
            ),
            reraise=True,
        )
        def _connect() -> None:
            self._client.connect(**kwargs)

        log.bind(host=config.host).debug(
            "Connecting to {dest}:{port}", dest=config.destination, port=config.port
        )
        try:
            _connect()
        except (paramiko.SSHException, OSError) as e:
            raise SSHConnectError(f"Could not connect to {config.destination}: {e}") from e
        log.bind(host=config.host).debug("Connected to {dest}", dest=config.destination)

    def run(self, command: str, timeout: float | None = None) -> CommandResult:
        """Execute a command and wait for it. Never raises on non-zero exit."""
        preview = command[:80] + "..." if len(command) > 80 else command
        log.bind(host=self.config.host).debug("exec: {cmd}", cmd=preview)
        _, stdout, stderr = self._client.exec_command(command, timeout=timeout)
        code = stdout.channel.recv_exit_status()
        return CommandResult(
            command=command,
            returncode=code,
            stdout=stdout.read().decode(errors="replace"),
            stderr=stderr.read().decode(errors="replace"),
        )

    def check(self, command: str, timeout: float | None = None) -> str:
        """Execute a command, raising RemoteCommandError on non-zero exit."""
        result = self.run(command, timeout=timeout)
        if not result.ok:
            raise RemoteCommandError(command, result.returncode, result.stderr or result.stdout)
        return result.stdout

    def open_process(self, command: str) -> paramiko.Channel:
        """Start a long-running command and return its channel (stdin/stdout)."""
        transport = self._client.get_transport()
        if transport is None or not transport.is_active():
            raise SSHConnectError(f"SSH transport to {self.config.host} is not connected")
        channel = transport.open_session()
        channel.exec_command(command)
        return channel

    def is_alive(self) -> bool:
        transport = self._client.get_transport()
        return transport is not None and transport.is_active()

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> SSHConnection:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


__all__ = ["SSHConfig", "SSHConnection"]
