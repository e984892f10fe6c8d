"""Worker process that runs inside the container on a droplet.

This module is shipped to the remote host as source and executed with
``python -c``, so it imports nothing from dropjob: only the standard
library and cloudpickle.

Wire format: every message is an 8-byte big-endian length followed by a
cloudpickle payload, zlib-compressed (with a magic prefix) when that makes
it smaller. Messages are tuples:

    worker -> client   ("ready", info)
    client -> worker   ("call", fn, args, kwargs)
    worker -> client   ("ok", value) | ("err", exception, traceback_text)
    client -> worker   ("shutdown",)

The worker handles one call at a time, in the order received.
"""

from __future__ import annotations

import os
import platform
import struct
import sys
import traceback
import zlib
from typing import Any, BinaryIO

import cloudpickle

MAGIC = b"DJZ1"
HEADER = struct.Struct(">Q")
COMPRESSION_LEVEL = 6


def encode(obj: Any) -> bytes:
    pickled: bytes = cloudpickle.dumps(obj)
    compressed = zlib.compress(pickled, COMPRESSION_LEVEL)
    if len(compressed) < len(pickled):
        return MAGIC + compressed
    return pickled


def decode(data: bytes) -> Any:
    if data.startswith(MAGIC):
        data = zlib.decompress(data[len(MAGIC) :])
    return cloudpickle.loads(data)


def read_exact(stream: BinaryIO, size: int) -> bytes:
    """Read exactly ``size`` bytes; EOFError if the stream ends first."""
    chunks: list[bytes] = []
    remaining = size
    while remaining:
        chunk = stream.read(remaining)
        if not chunk:
            raise EOFError("Stream closed")
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def read_frame(stream: BinaryIO) -> Any:
    (size,) = HEADER.unpack(read_exact(stream, HEADER.size))
    return decode(read_exact(stream, size))


def write_frame(stream: BinaryIO, obj: Any) -> None:
    payload = encode(obj)
    stream.write(HEADER.pack(len(payload)) + payload)
    stream.flush()


def _error_reply(exc: BaseException) -> tuple[str, BaseException, str]:
    text = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    try:
        cloudpickle.dumps(exc)
    except Exception:
        exc = RuntimeError(f"{type(exc).__qualname__}: {exc}")
    return ("err", exc, text)


def serve(inp: BinaryIO, out: BinaryIO) -> None:
    """Announce readiness, then execute calls until shutdown or EOF."""
    write_frame(out, ("ready", {
        "pid": os.getpid(),
        "host": platform.node(),
        "python": platform.python_version(),
    }))

    while True:
        try:
            message = read_frame(inp)
        except EOFError:
            return

        # Must run on the container's Python, which may predate match statements.
        kind = message[0] if isinstance(message, tuple) and message else None
        if kind == "call" and len(message) == 4:
            _, fn, args, kwargs = message
            try:
                reply: tuple[Any, ...] = ("ok", fn(*args, **kwargs))
            except BaseException as exc:  # noqa: BLE001 - forwarded to the client
                reply = _error_reply(exc)
            try:
                write_frame(out, reply)
            except Exception as exc:
                write_frame(out, _error_reply(exc))
        elif kind == "shutdown":
            return
        else:
            write_frame(out, _error_reply(ValueError(f"Unknown message: {message!r}")))


def main() -> None:
    # The protocol owns the original stdout; anything user code prints goes to stderr.
    out = os.fdopen(os.dup(1), "wb")
    os.dup2(2, 1)
    sys.stdout = sys.stderr
    serve(sys.stdin.buffer, out)


if __name__ == "__main__":
    main()
