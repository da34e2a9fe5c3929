"""Filtering of chunks by metric name and time range."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping

logger = logging.getLogger(__name__)

_MAX_INT64 = 2**63 - 1


@dataclass
class FilterConfig:
    """Filter options as given on the command line."""

    name: str = ""
    user: str = ""
    from_time: int = 0
    to_time: int = 0
    labels: str = ""


@dataclass(frozen=True)
class ChunkInfo:
    """The parts of a chunk a filter looks at."""

    external_key: str
    start: int
    through: int
    metric: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class MetricFilter:
    """Decides whether a chunk should be returned."""

    user: str
    name: str
    start: int
    end: int
    labels: list[str]

    def accepts(self, chunk: ChunkInfo) -> bool:
        """Return True if the chunk passes the filter."""
        if self.start > chunk.through or chunk.start > self.end:
            logger.debug(
                "chunk %s does not pass filter, incorrect chunk ranges From: %s, To: %s",
                chunk.external_key,
                chunk.start,
                chunk.through,
            )
            return False

        metric_name = chunk.metric.get("__name__", "")
        if self.name and self.name != metric_name:
            logger.debug(
                "chunk %s does not pass filter, incorrect name: %s",
                chunk.external_key,
                metric_name,
            )
            return False

        return True


def new_metric_filter(config: FilterConfig) -> MetricFilter:
    """Build a filter; an unset end time means the largest possible time."""
    end = config.to_time if config.to_time != 0 else _MAX_INT64
    return MetricFilter(
        user=config.user,
        name=config.name,
        start=config.from_time,
        end=end,
        labels=config.labels.split(","),
    )