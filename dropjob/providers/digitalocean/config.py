"""DigitalOcean provider configuration.

Immutable configuration dataclass for the DigitalOcean droplet manager.
"""

from __future__ import annotations

from dataclasses import dataclass

from dropjob.constants import (
    DEFAULT_REGION,
    DEFAULT_SIZE,
    DOCKER_IMAGE_TEMPLATE,
    INSTANCE_TIMEOUT,
    MANAGED_TAG,
    POLL_INTERVAL,
)


@dataclass(frozen=True, slots=True)
class DigitalOcean:
    """DigitalOcean provider configuration.

    SSH keys are detected from ~/.ssh/id_ed25519.pub, id_rsa.pub or
    id_ecdsa.pub and registered on DigitalOcean if needed, unless
    ``ssh_key_fingerprint`` names a key already on the account.

    Example:
        >>> from dropjob.providers.digitalocean import DigitalOcean
        >>> config = DigitalOcean(region="sfo3", size="s-4vcpu-8gb")

    Args:
        region: Droplet region (e.g., "nyc3", "sfo3", "ams3").
        size: Droplet size slug.
        image: Image template. The default ships with Docker preinstalled.
        token: API token. Falls back to DIGITALOCEAN_TOKEN env var.
        ssh_key_fingerprint: Specific SSH key fingerprint to use.
        tags: Tags attached to every droplet created.
        instance_timeout: Seconds to wait for a droplet to become active.
        poll_interval: Seconds between status polls.
    """

    region: str = DEFAULT_REGION
    size: str = DEFAULT_SIZE
    image: str = DOCKER_IMAGE_TEMPLATE
    token: str | None = None
    ssh_key_fingerprint: str | None = None
    tags: tuple[str, ...] = (MANAGED_TAG,)
    instance_timeout: float = INSTANCE_TIMEOUT
    poll_interval: float = POLL_INTERVAL


__all__ = ["DigitalOcean"]
