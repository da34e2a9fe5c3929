"""Planning of the scan requests needed for a chunk migration.

Each store is partitioned into 240 shards, shard ``n`` mapping to the
two hex digit prefix ``n + 15`` (1 -> ``10``, 240 -> ``ff``); fingerprints
never start with a zero digit, so ``00``..``0f`` are left out.
"""

from __future__ import annotations

from dataclasses import dataclass
from itertools import product

from .chunk_scan import ScanRequest

_MIN_SHARD = 1
_MAX_SHARD = 240


class PlannerError(ValueError):
    """Raised when the planner configuration is invalid."""


@dataclass
class PlannerConfig:
    """Shard range, users and tables to migrate."""

    first_shard: int = _MIN_SHARD
    last_shard: int = _MAX_SHARD
    user_id_list: str = ""
    tables: str = ""


@dataclass(frozen=True)
class Planner:
    """Plans the scan requests for a migration."""

    first_shard: int
    last_shard: int
    tables: list[str]
    users: list[str]

    def plan(self) -> list[ScanRequest]:
        """Return one scan request per table, user and shard, in that nesting order."""
        shards = range(self.first_shard, self.last_shard + 1)
        return [
            ScanRequest(table=table, user=user, prefix=f"{shard + 15:02x}")
            for table, user, shard in product(self.tables, self.users, shards)
        ]


def new_planner(config: PlannerConfig) -> Planner:
    """Validate the configuration and return a planner."""
    if not _MIN_SHARD <= config.first_shard <= _MAX_SHARD:
        raise PlannerError(
            f"plan.firstShard set to {config.first_shard}, must be in range 1-240"
        )
    if not _MIN_SHARD <= config.last_shard <= _MAX_SHARD:
        raise PlannerError(
            f"plan.lastShard set to {config.last_shard}, must be in range 1-240"
        )
    if config.first_shard > config.last_shard:
        raise PlannerError(
            f"plan.lastShard ({config.last_shard}) is set to less than "
            f"plan.from ({config.first_shard})"
        )
    return Planner(
        first_shard=config.first_shard,
        last_shard=config.last_shard,
        tables=config.tables.split(","),
        users=config.user_id_list.split(","),
    )