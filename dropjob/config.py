"""TOML-based provider, SSH and job configuration.

Loads ~/.dropjob/defaults.toml (global) and dropjob.toml (project), merges
them, and resolves named jobs into ready-to-use runners.

Example dropjob.toml:

    [provider]
    region = "sfo3"

    [ssh]
    key_path = "~/.ssh/id_ed25519"
    insecure_host_keys = true

    [jobs.vast]
    image = "cgrandin/vast:latest"
    size = "s-4vcpu-8gb"
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dropjob.container import ContainerPuller
from dropjob.observability import LogConfig
from dropjob.packages import VAST_PACKAGES, PackageSpec, as_spec
from dropjob.providers.digitalocean import DigitalOcean, DropletManager
from dropjob.runner import JobConfig, RemoteJobRunner
from dropjob.session import DEFAULT_BOOTSTRAP, Credentials, SSHSessionConnector
from dropjob.ssh import SSHConnection
from dropjob.types import InstanceDescriptor

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".dropjob" / "defaults.toml"
PROJECT_CONFIG_NAME = "dropjob.toml"

_JOB_FIELDS = ("image", "name", "region", "size", "droplet_image")


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    with path.open("rb") as f:
        return tomllib.load(f)


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)

    merged = _deep_merge(global_cfg, project_cfg)
    merged.setdefault("provider", {})
    merged.setdefault("ssh", {})
    merged.setdefault("jobs", {})
    return merged


def build_provider(raw: RawConfig) -> DigitalOcean:
    raw = dict(raw)
    if "tags" in raw:
        raw["tags"] = tuple(raw["tags"])
    return DigitalOcean(**raw)


def build_credentials(raw: RawConfig) -> Credentials:
    raw = dict(raw)
    if raw.get("key_path"):
        raw["key_path"] = str(Path(raw["key_path"]).expanduser())
    return Credentials(**raw)


def build_packages(config: RawConfig) -> tuple[PackageSpec, ...]:
    raw = config.get("packages")
    if not raw:
        return VAST_PACKAGES
    return tuple(as_spec(p) for p in raw)


@dataclass(frozen=True, slots=True)
class ResolvedJob:
    """A named job with everything needed to run it."""

    job: JobConfig
    provider: DigitalOcean
    connector: SSHSessionConnector

    def transport(self, instance: InstanceDescriptor) -> SSHConnection:
        """Administrative SSH connection to ``instance``."""
        return SSHConnection.open(self.connector.credentials.for_host(instance.address))

    def runner(self, *, logging: LogConfig | None = None) -> RemoteJobRunner:
        return RemoteJobRunner(
            self.job,
            DropletManager(self.provider),
            ContainerPuller(self.transport),
            self.connector,
            logging=logging,
        )


def resolve_job(
    name: str,
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> ResolvedJob:
    config = load_config(project_dir=project_dir, global_path=global_path)

    jobs = config["jobs"]
    if name not in jobs:
        raise KeyError(f"Job '{name}' not found. Available: {', '.join(jobs) or 'none'}")

    raw_job = dict(jobs[name])
    if "image" not in raw_job:
        raise ValueError(f"Job '{name}' missing 'image' field")

    ssh_raw = _deep_merge(config["ssh"], raw_job.pop("ssh", {}))
    bootstrap = tuple(raw_job.pop("bootstrap", DEFAULT_BOOTSTRAP))
    prefix = raw_job.pop("launch_prefix", None)
    ready_timeout = raw_job.pop("ready_timeout", None)

    unknown = set(raw_job) - set(_JOB_FIELDS)
    if unknown:
        raise ValueError(f"Job '{name}' has unknown fields: {', '.join(sorted(unknown))}")

    connector = SSHSessionConnector(
        credentials=build_credentials(ssh_raw),
        launch_prefix=tuple(prefix) if prefix is not None else None,
        bootstrap_commands=bootstrap,
        **({"ready_timeout": ready_timeout} if ready_timeout is not None else {}),
    )
    return ResolvedJob(
        job=JobConfig(**raw_job),
        provider=build_provider(config["provider"]),
        connector=connector,
    )


__all__ = [
    "GLOBAL_CONFIG_PATH",
    "PROJECT_CONFIG_NAME",
    "ResolvedJob",
    "build_credentials",
    "build_packages",
    "build_provider",
    "load_config",
    "resolve_job",
]
