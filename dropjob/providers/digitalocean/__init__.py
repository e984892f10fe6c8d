"""DigitalOcean provider: droplets with Docker preinstalled."""

from .client import DigitalOceanClient, get_token
from .config import DigitalOcean
from .manager import DropletManager, to_descriptor

__all__ = [
    "DigitalOcean",
    "DigitalOceanClient",
    "DropletManager",
    "get_token",
    "to_descriptor",
]
