"""Decoding of index range keys written by the chunk store schemas."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass

_CHUNK_TIME_RANGE_KEY_V1A = 1
_CHUNK_TIME_RANGE_KEY_V1 = ord("1")
_CHUNK_TIME_RANGE_KEY_V2 = ord("2")
_CHUNK_TIME_RANGE_KEY_V3 = ord("3")
_CHUNK_TIME_RANGE_KEY_V4 = ord("4")
_CHUNK_TIME_RANGE_KEY_V5 = ord("5")
_SERIES_RANGE_KEY_V1 = ord("7")
_LABEL_SERIES_RANGE_KEY_V1 = ord("8")


class RangeValueError(ValueError):
    """Raised when a range value cannot be decoded."""


@dataclass(frozen=True)
class ChunkRangeValue:
    """What a chunk time range value refers to."""

    chunk_id: str
    label_value: str = ""
    is_series_id: bool = False


def _text(data: bytes) -> str:
    return data.decode("utf-8", errors="surrogateescape")


def decode_range_key(value: bytes) -> list[bytes]:
    """Split a range key into its NUL-terminated components.

    Bytes after the last NUL are not a component and are dropped.
    """
    parts = bytes(value).split(b"\x00")
    return parts[:-1]


def decode_base64_value(data: bytes) -> str:
    """Decode unpadded standard base64 into a label value."""
    raw = bytes(data)
    if b"=" in raw:
        raise RangeValueError(f"illegal base64 data: {raw!r}")
    padded = raw + b"=" * (-len(raw) % 4)
    try:
        decoded = base64.b64decode(padded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise RangeValueError(f"illegal base64 data: {raw!r}") from exc
    return _text(decoded)


def parse_chunk_time_range_value(range_value: bytes, value: bytes) -> ChunkRangeValue:
    """Return the chunk (or series) ID and label value held in a range value."""
    components = decode_range_key(range_value)

    if len(components) < 3:
        raise RangeValueError(
            f"invalid chunk time range value: {bytes(range_value).hex()}"
        )

    # v1 & v2 schemas: label name, label value, chunk ID; no version.
    if len(components) == 3:
        return ChunkRangeValue(_text(components[2]), _text(components[1]))

    version = components[3]
    if len(version) == 1:
        kind = version[0]
        if kind in (_CHUNK_TIME_RANGE_KEY_V1A, _CHUNK_TIME_RANGE_KEY_V1):
            return ChunkRangeValue(
                _text(components[2]), decode_base64_value(components[1])
            )
        if kind in (_CHUNK_TIME_RANGE_KEY_V2, _CHUNK_TIME_RANGE_KEY_V3):
            return ChunkRangeValue(_text(components[2]))
        if kind == _CHUNK_TIME_RANGE_KEY_V4:
            return ChunkRangeValue(
                _text(components[2]), decode_base64_value(components[1])
            )
        if kind == _CHUNK_TIME_RANGE_KEY_V5:
            return ChunkRangeValue(_text(components[2]), _text(bytes(value)))
        if kind == _SERIES_RANGE_KEY_V1:
            return ChunkRangeValue(_text(components[0]), is_series_id=True)
        if kind == _LABEL_SERIES_RANGE_KEY_V1:
            return ChunkRangeValue(
                _text(components[1]), _text(bytes(value)), is_series_id=True
            )

    raise RangeValueError(
        f"unrecognised chunkTimeRangeKey version: {_text(version)!r}"
    )