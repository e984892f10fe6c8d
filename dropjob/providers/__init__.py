"""Cloud providers for dropjob."""

from .digitalocean import DigitalOcean, DigitalOceanClient, DropletManager

__all__ = ["DigitalOcean", "DigitalOceanClient", "DropletManager"]
