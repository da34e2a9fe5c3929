"""Scan requests that describe which part of a chunk table to read."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Interval:
    """A closed time interval in milliseconds since the epoch."""

    start: int
    end: int


@dataclass
class ScanRequest:
    """The scope of a chunk table scan.

    With an empty ``prefix`` every shard is scanned; without an ``interval``
    every chunk is considered.
    """

    table: str
    user: str
    prefix: str = ""
    interval: Interval | None = None

    def check_time(self, start: int, through: int) -> bool:
        """Return True if a chunk spanning ``start``..``through`` overlaps the interval."""
        if self.interval is None:
            return True
        return not (self.interval.start > through or start > self.interval.end)