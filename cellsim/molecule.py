"""Minimal molecule serialization for the CKB structures the simulator builds.

Only encoding is needed: transaction hashes, script hashes and witness layouts
are all computed over the serialized bytes.
"""

from __future__ import annotations

from typing import Iterable

U32_MAX = (1 << 32) - 1
U64_MAX = (1 << 64) - 1


def pack_u32(value: int) -> bytes:
    if not 0 <= value <= U32_MAX:
        raise ValueError(f"Value {value} does not fit in Uint32")
    return int(value).to_bytes(4, "little")


def pack_u64(value: int) -> bytes:
    if not 0 <= value <= U64_MAX:
        raise ValueError(f"Value {value} does not fit in Uint64")
    return int(value).to_bytes(8, "little")


def pack_byte32(value: bytes) -> bytes:
    if len(value) != 32:
        raise ValueError("Byte32 must be exactly 32 bytes")
    return bytes(value)


def pack_bytes(value: bytes) -> bytes:
    return pack_u32(len(value)) + bytes(value)


def pack_fixvec(items: Iterable[bytes]) -> bytes:
    items = list(items)
    return pack_u32(len(items)) + b"".join(items)


def pack_dynvec(items: Iterable[bytes]) -> bytes:
    items = list(items)
    if not items:
        return pack_u32(4)
    header_size = 4 + 4 * len(items)
    total = header_size + sum(len(item) for item in items)
    offsets = []
    cursor = header_size
    for item in items:
        offsets.append(pack_u32(cursor))
        cursor += len(item)
    return pack_u32(total) + b"".join(offsets) + b"".join(items)


def pack_table(fields: Iterable[bytes]) -> bytes:
    # Same layout as a dynvec: full size, one offset per field, field bodies.
    fields = list(fields)
    if not fields:
        return pack_u32(4)
    return pack_dynvec(fields)


def pack_option(value: bytes | None) -> bytes:
    return b"" if value is None else value
