"""Serialization utilities using cloudpickle with compression.

The codec itself lives in ``dropjob.worker``, which must stay importable on
its own on the remote host; this module is the client-side entry point.
"""

from __future__ import annotations

import sys
from typing import Any, Final

import cloudpickle

from dropjob.errors import PythonVersionMismatchError
from dropjob.worker import MAGIC as COMPRESSED_MAGIC
from dropjob.worker import decode, encode

PYTHON_VERSION: Final = f"{sys.version_info.major}.{sys.version_info.minor}"


def check_python_version(remote_version: str) -> None:
    """Validate that the remote Python version matches the local one.

    Should be called before sending work to a worker. Only major.minor is
    compared; cloudpickled bytecode does not survive a minor version change.

    Args:
        remote_version: The Python version reported by the worker, e.g. "3.12.4".

    Raises:
        PythonVersionMismatchError: If the versions differ.
    """
    remote = ".".join(remote_version.split(".")[:2])
    if remote != PYTHON_VERSION:
        raise PythonVersionMismatchError(PYTHON_VERSION, remote_version or "unknown")


def serialize(obj: Any, compress: bool = True) -> bytes:
    """Serialize an object to bytes using cloudpickle with optional compression.

    Args:
        obj: Any Python object to serialize.
        compress: Whether to compress the output (default True).

    Returns:
        Serialized (and optionally compressed) bytes.
    """
    if compress:
        return encode(obj)
    return cloudpickle.dumps(obj)


def deserialize(data: bytes) -> Any:
    """Deserialize bytes back to a Python object.

    Compressed payloads are detected by their magic prefix.
    """
    return decode(data)


__all__ = ["COMPRESSED_MAGIC", "PYTHON_VERSION", "check_python_version", "deserialize", "serialize"]
