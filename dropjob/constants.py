"""Centralized constants and enums for dropjob.

Magic strings, remote paths and timeouts shared across the codebase.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Final

# =============================================================================
# Droplet States
# =============================================================================


class DropletStatus(StrEnum):
    """DigitalOcean droplet status values."""

    NEW = "new"
    ACTIVE = "active"
    OFF = "off"
    ARCHIVE = "archive"


# =============================================================================
# Droplet Defaults
# =============================================================================

DEFAULT_REGION: Final = "nyc3"
DEFAULT_SIZE: Final = "s-2vcpu-4gb"
DOCKER_IMAGE_TEMPLATE: Final = "docker-20-04"
MANAGED_TAG: Final = "dropjob"

# =============================================================================
# Worker Configuration
# =============================================================================

WORKER_LIB_DIR: Final = "/tmp/dropjob-lib"
WORKER_PYTHON: Final = "python3"
SUPPORT_PACKAGE: Final = "cloudpickle"
DEFAULT_SSH_USER: Final = "root"

# Timeouts (in seconds)
INSTANCE_TIMEOUT: Final = 300
POLL_INTERVAL: Final = 5
SSH_CONNECT_TIMEOUT: Final = 10
SSH_AUTH_RETRY_WINDOW: Final = 60
PULL_TIMEOUT: Final = 1800
BOOTSTRAP_TIMEOUT: Final = 600
