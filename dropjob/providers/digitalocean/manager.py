"""Droplet lifecycle: create, list, get and destroy.

Creation blocks until the droplet is active and has a public address.
A droplet that never becomes ready is destroyed before the error propagates;
any other cleanup belongs to callers.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from loguru import logger
from tenacity import (
    RetryError,
    retry,
    retry_if_exception_type,
    stop_after_delay,
    wait_fixed,
)

from dropjob.constants import DropletStatus
from dropjob.providers.digitalocean.client import DigitalOceanClient, DropletResponse
from dropjob.providers.digitalocean.config import DigitalOcean
from dropjob.providers.ssh_keys import ensure_ssh_key, find_local_key
from dropjob.types import InstanceDescriptor

log = logger.bind(component="droplets")


class _DropletPendingError(Exception):
    """Droplet not yet active - retry."""


def to_descriptor(data: DropletResponse) -> InstanceDescriptor:
    """Build an InstanceDescriptor from a droplet API payload."""
    ip = ""
    private_ip = ""
    for network in data.get("networks", {}).get("v4", []):
        match network.get("type"):
            case "public":
                ip = network["ip_address"]
            case "private":
                private_ip = network["ip_address"]

    region = data.get("region") or {}
    return InstanceDescriptor(
        id=str(data["id"]),
        name=data.get("name", ""),
        region=region.get("slug", "") if isinstance(region, dict) else str(region),
        size=data.get("size_slug", ""),
        ip=ip,
        status=data.get("status", DropletStatus.NEW),
        private_ip=private_ip,
        tags=tuple(data.get("tags") or ()),
    )


class DropletManager:
    """Manage DigitalOcean droplets for dropjob.

    Example:
        manager = DropletManager(DigitalOcean(region="nyc3"))
        droplet = manager.create("vast-worker")
        ...
        manager.destroy(droplet)
    """

    def __init__(self, config: DigitalOcean, client: DigitalOceanClient | None = None) -> None:
        self.config = config
        self._client = client
        self._fingerprint = config.ssh_key_fingerprint

    @property
    def client(self) -> DigitalOceanClient:
        if self._client is None:
            self._client = DigitalOceanClient(self.config.token)
        return self._client

    @property
    def ssh_fingerprint(self) -> str:
        """Fingerprint of the key injected into new droplets, registering it if needed."""
        if self._fingerprint is None:
            self._fingerprint = ensure_ssh_key(
                self.client.list_ssh_keys,
                self.client.create_ssh_key,
                find_local_key(),
            )
        return self._fingerprint

    def create(
        self,
        name: str,
        region: str | None = None,
        size: str | None = None,
        image: str | None = None,
    ) -> InstanceDescriptor:
        """Create a droplet and wait until it is active with a public IP.

        Raises:
            DigitalOceanError: If the API rejects the request.
            TimeoutError: If the droplet is not active within instance_timeout.
        """
        region = region or self.config.region
        size = size or self.config.size
        image = image or self.config.image

        log.info(
            "Creating droplet {name} ({size} in {region}, image {image})",
            name=name, size=size, region=region, image=image,
        )
        data = self.client.create_droplet(
            name=name,
            region=region,
            size=size,
            image=image,
            ssh_keys=[self.ssh_fingerprint],
            tags=list(self.config.tags),
        )
        created = to_descriptor(data)
        try:
            ready = self._wait_for_active(int(created.id))
        except BaseException:
            log.bind(droplet=created.id).warning("Droplet {name} never became ready; destroying it", name=name)
            self.client.delete_droplet(int(created.id))
            raise
        log.bind(droplet=ready.id).info("Droplet {name} active at {ip}", name=name, ip=ready.ip)
        return ready

    def list(self, tag: str | None = None) -> Sequence[InstanceDescriptor]:
        """List live droplets, optionally restricted to a tag."""
        return [to_descriptor(d) for d in self.client.list_droplets(tag_name=tag)]

    def get(self, target: InstanceDescriptor | str) -> InstanceDescriptor | None:
        """Look up a droplet by descriptor, numeric id or name."""
        match target:
            case InstanceDescriptor(id=droplet_id):
                data = self.client.get_droplet(int(droplet_id))
                return to_descriptor(data) if data else None
            case str() if target.isdigit():
                data = self.client.get_droplet(int(target))
                return to_descriptor(data) if data else None
            case str():
                matches = [d for d in self.list() if d.name == target]
                return matches[0] if matches else None
            case _:
                raise TypeError(f"Expected InstanceDescriptor or str, got {type(target).__name__}")

    def destroy(self, target: InstanceDescriptor | str) -> bool:
        """Destroy a droplet.

        Destroying a droplet that no longer exists is not an error: a warning
        is logged and False returned.
        """
        match target:
            case InstanceDescriptor(id=droplet_id, name=name):
                ids = [(int(droplet_id), name)]
            case str() if target.isdigit():
                ids = [(int(target), target)]
            case str():
                ids = [(int(d.id), d.name) for d in self.list() if d.name == target]
            case _:
                raise TypeError(f"Expected InstanceDescriptor or str, got {type(target).__name__}")

        if not ids:
            log.warning("No droplet named {name}; nothing to destroy", name=target)
            return False

        destroyed = False
        for droplet_id, name in ids:
            if self.client.delete_droplet(droplet_id):
                log.bind(droplet=droplet_id).info("Destroyed droplet {name}", name=name)
                destroyed = True
            else:
                log.bind(droplet=droplet_id).warning("Droplet {name} was already gone", name=name)
        return destroyed

    def _wait_for_active(self, droplet_id: int) -> InstanceDescriptor:
        timeout = self.config.instance_timeout

        @retry(
            stop=stop_after_delay(timeout),
            wait=wait_fixed(self.config.poll_interval),
            retry=retry_if_exception_type(_DropletPendingError),
            reraise=False,
        )
        def _check() -> InstanceDescriptor:
            data: Any = self.client.get_droplet(droplet_id)
            if data is None:
                raise _DropletPendingError()
            descriptor = to_descriptor(data)
            if descriptor.status != DropletStatus.ACTIVE or not descriptor.ip:
                log.bind(droplet=droplet_id).debug("Droplet status {s}", s=descriptor.status)
                raise _DropletPendingError()
            return descriptor

        try:
            return _check()
        except RetryError as e:
            raise TimeoutError(f"Droplet {droplet_id} did not become active within {timeout}s") from e


__all__ = ["DropletManager", "to_descriptor"]
