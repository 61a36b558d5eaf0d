from __future__ import annotations

import struct
from typing import BinaryIO

import cbor2

from .constants import FRAME_HEADER, MAX_FRAME_BYTES

_HEADER = struct.Struct(FRAME_HEADER)


def encode(obj) -> bytes:
    return cbor2.dumps(obj)


def decode(b: bytes):
    return cbor2.loads(b)


def pack_frame(payload: bytes, *, max_bytes: int = MAX_FRAME_BYTES) -> bytes:
    if len(payload) > max_bytes:
        raise ValueError(f"frame too large ({len(payload)} > {max_bytes} bytes)")
    return _HEADER.pack(len(payload)) + payload


def read_frame(stream: BinaryIO, *, max_bytes: int = MAX_FRAME_BYTES) -> bytes | None:
    """Read one length-prefixed frame.

    Returns None on a clean end of stream before a header starts. A stream
    that ends mid-frame raises EOFError.
    """
    header = _read_exact(stream, _HEADER.size, allow_eof=True)
    if header is None:
        return None
    (length,) = _HEADER.unpack(header)
    if length > max_bytes:
        raise ValueError(f"frame too large ({length} > {max_bytes} bytes)")
    payload = _read_exact(stream, length, allow_eof=False)
    return payload if payload is not None else b""


def _read_exact(stream: BinaryIO, n: int, *, allow_eof: bool) -> bytes | None:
    buf = bytearray()
    while len(buf) < n:
        chunk = stream.read(n - len(buf))
        if not chunk:
            if allow_eof and not buf:
                return None
            raise EOFError(f"stream ended after {len(buf)} of {n} bytes")
        buf.extend(chunk)
    return bytes(buf)
