"""Client for the DigitalOcean API.

Thin wrapper over the pydo SDK. Returns the API's dicts directly and turns
every SDK failure into a DigitalOceanError.
"""

from __future__ import annotations

import os
from typing import Any, cast

from pydo import Client as PyDOClient

from dropjob.errors import DigitalOceanError

type DropletResponse = dict[str, Any]
type SSHKeyResponse = dict[str, Any]

_PAGE_SIZE = 100


def is_not_found(error: BaseException) -> bool:
    """Whether an SDK error is a 404."""
    status = getattr(error, "status_code", None)
    if status == 404:
        return True
    text = str(error).lower()
    return "404" in text or "not found" in text


class DigitalOceanClient:
    """Client for the DigitalOcean API using pydo.

    Example:
        client = DigitalOceanClient(token)
        droplets = client.list_droplets(tag_name="dropjob")
    """

    def __init__(self, token: str | None = None, sdk: Any | None = None) -> None:
        self._sdk = sdk if sdk is not None else PyDOClient(token=token or get_token())

    @property
    def sdk(self) -> Any:
        return self._sdk

    # =========================================================================
    # SSH Key Management
    # =========================================================================

    def list_ssh_keys(self) -> list[SSHKeyResponse]:
        """List all SSH keys registered on this account."""
        try:
            result = self._sdk.ssh_keys.list()
            return cast(list[SSHKeyResponse], result.get("ssh_keys", []))
        except Exception as e:
            raise DigitalOceanError(f"Failed to list SSH keys: {e}") from e

    def create_ssh_key(self, name: str, public_key: str) -> SSHKeyResponse:
        """Register a new SSH public key."""
        try:
            result = self._sdk.ssh_keys.create(body={"name": name, "public_key": public_key})
        except Exception as e:
            raise DigitalOceanError(f"Failed to create SSH key: {e}") from e
        ssh_key = result.get("ssh_key")
        if not ssh_key:
            raise DigitalOceanError("Failed to create SSH key: empty response")
        return cast(SSHKeyResponse, ssh_key)

    # =========================================================================
    # Droplet Management
    # =========================================================================

    def create_droplet(
        self,
        name: str,
        region: str,
        size: str,
        image: str,
        ssh_keys: list[str | int],
        user_data: str | None = None,
        tags: list[str] | None = None,
    ) -> DropletResponse:
        """Create a new droplet."""
        body: dict[str, Any] = {
            "name": name,
            "region": region,
            "size": size,
            "image": image,
            "ssh_keys": ssh_keys,
        }
        if user_data:
            body["user_data"] = user_data
        if tags:
            body["tags"] = tags

        try:
            result = self._sdk.droplets.create(body=body)
        except Exception as e:
            raise DigitalOceanError(f"Failed to create droplet: {e}") from e
        droplet = result.get("droplet")
        if not droplet:
            raise DigitalOceanError("Failed to create droplet: empty response")
        return cast(DropletResponse, droplet)

    def get_droplet(self, droplet_id: int) -> DropletResponse | None:
        """Get droplet details. Returns None if not found."""
        try:
            result = self._sdk.droplets.get(droplet_id=droplet_id)
        except Exception as e:
            if is_not_found(e):
                return None
            raise DigitalOceanError(f"Failed to get droplet: {e}") from e
        droplet = result.get("droplet")
        return cast(DropletResponse, droplet) if droplet else None

    def list_droplets(self, tag_name: str | None = None) -> list[DropletResponse]:
        """List all droplets, optionally filtered by tag."""
        droplets: list[DropletResponse] = []
        page = 1
        try:
            while True:
                if tag_name:
                    result = self._sdk.droplets.list(tag_name=tag_name, page=page, per_page=_PAGE_SIZE)
                else:
                    result = self._sdk.droplets.list(page=page, per_page=_PAGE_SIZE)
                page_droplets = result.get("droplets", [])
                droplets.extend(cast(list[DropletResponse], page_droplets))
                if len(page_droplets) < _PAGE_SIZE:
                    break
                page += 1
        except Exception as e:
            raise DigitalOceanError(f"Failed to list droplets: {e}") from e
        return droplets

    def delete_droplet(self, droplet_id: int) -> bool:
        """Delete a droplet. Returns False if it did not exist."""
        try:
            self._sdk.droplets.destroy(droplet_id=droplet_id)
        except Exception as e:
            if is_not_found(e):
                return False
            raise DigitalOceanError(f"Failed to delete droplet: {e}") from e
        return True


# =============================================================================
# Utility Functions
# =============================================================================


def get_token() -> str:
    """Get DigitalOcean API token from environment."""
    token = os.environ.get("DIGITALOCEAN_TOKEN")
    if not token:
        raise DigitalOceanError(
            "DigitalOcean API token not found. "
            "Set DIGITALOCEAN_TOKEN environment variable."
        )
    return token


__all__ = [
    "DigitalOceanClient",
    "get_token",
    "is_not_found",
]
