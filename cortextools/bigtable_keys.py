"""Row and column keys for the Bigtable index, using FNV-1a 64-bit hashing."""

from __future__ import annotations

from dataclasses import dataclass

_OFFSET64 = 14695981039346656037
_PRIME64 = 1099511628211
_MASK64 = (1 << 64) - 1


def hash_new() -> int:
    """Return the initial FNV-1a 64-bit hash value."""
    return _OFFSET64


def hash_add(h: int, text: str) -> int:
    """Add the UTF-8 bytes of ``text`` to an FNV-1a hash and return the result."""
    for byte in text.encode("utf-8"):
        h = ((h ^ byte) * _PRIME64) & _MASK64
    return h


def hash_prefix(text: str) -> str:
    """Return the 64-bit hash of ``text`` as 16 hex digits of its little-endian bytes."""
    return hash_add(hash_new(), text).to_bytes(8, "little").hex()


@dataclass(frozen=True)
class KeyMapper:
    """Maps index hash and range values to Bigtable row and column keys."""

    distribute_keys: bool = False

    def keys(self, hash_value: str, range_value: bytes) -> tuple[str, str]:
        """Return ``(row_key, column_key)`` for an index entry."""
        if self.distribute_keys:
            # Prefix a hash for better distribution, keeping the original key visible.
            hash_value = f"{hash_prefix(hash_value)}-{hash_value}"
        return hash_value, bytes(range_value).decode("utf-8", errors="surrogateescape")