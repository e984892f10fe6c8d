"""SSH key utilities for cloud providers.

Finds the local key pair and makes sure its public half is registered on
the provider account, so new droplets accept it.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import os
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from loguru import logger

KEY_NAMES = ("id_ed25519", "id_rsa", "id_ecdsa")

log = logger.bind(component="ssh_keys")


@dataclass(frozen=True, slots=True)
class LocalKey:
    """A local SSH key pair."""

    private_path: Path
    public_key: str

    @property
    def fingerprint(self) -> str:
        return compute_fingerprint(self.public_key)


def compute_fingerprint(public_key: str) -> str:
    """Compute the MD5 colon-separated fingerprint of a public key.

    This is the format DigitalOcean reports for registered keys.

    Raises:
        ValueError: If the key is not "<type> <base64> [comment]".
    """
    parts = public_key.strip().split()
    if len(parts) < 2:
        raise ValueError(f"Invalid SSH public key format: {public_key[:50]}...")

    try:
        decoded = base64.b64decode(parts[1], validate=True)
    except binascii.Error as e:
        raise ValueError(f"Could not decode SSH key: {e}") from e

    digest = hashlib.md5(decoded).hexdigest()
    return ":".join(digest[i : i + 2] for i in range(0, len(digest), 2))


def find_local_key(ssh_dir: Path | None = None) -> LocalKey:
    """Find the first local key pair in order of preference.

    Raises:
        RuntimeError: If no key pair is found.
    """
    directory = ssh_dir or Path.home() / ".ssh"
    for name in KEY_NAMES:
        public_path = directory / f"{name}.pub"
        private_path = directory / name
        if public_path.exists() and private_path.exists():
            content = public_path.read_text().strip()
            if content:
                log.debug("Found SSH key at {path}", path=public_path)
                return LocalKey(private_path=private_path, public_key=content)

    raise RuntimeError(
        "No SSH key found. Create one with: ssh-keygen -t ed25519\n"
        f"Searched: {', '.join(str(directory / n) for n in KEY_NAMES)}"
    )


def generate_key_name(key_path: Path) -> str:
    """Key name used when registering on the provider."""
    user = os.environ.get("USER", "user")
    return f"dropjob-{user}-{key_path.stem}"


def ensure_ssh_key(
    list_keys: Callable[[], list[dict[str, Any]]],
    create_key: Callable[[str, str], dict[str, Any]],
    key: LocalKey,
) -> str:
    """Ensure the local key is registered; return its provider fingerprint."""
    fingerprint = key.fingerprint
    key_name = generate_key_name(key.private_path)

    for existing in list_keys():
        if existing.get("fingerprint") == fingerprint:
            log.debug("SSH key already registered: {fp}", fp=fingerprint)
            return fingerprint

    log.info("Registering SSH key {name}", name=key_name)
    try:
        created = create_key(key_name, key.public_key)
    except Exception as e:
        if "already" in str(e).lower():
            log.info("SSH key already exists under another name: {fp}", fp=fingerprint)
            return fingerprint
        raise
    return str(created.get("fingerprint", fingerprint))


__all__ = [
    "LocalKey",
    "compute_fingerprint",
    "ensure_ssh_key",
    "find_local_key",
    "generate_key_name",
]
