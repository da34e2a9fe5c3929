"""Simulation of shuffle sharding tenants across ingester replicas.

Prints, as CSV, how evenly series spread over replicas and how many tenants
a double node outage can affect, for a range of shard size factors.
"""

from __future__ import annotations

import argparse
import math
import random
import statistics
from collections import Counter
from dataclasses import dataclass
from itertools import combinations
from typing import Callable, Sequence

NUM_TENANTS = 1000
NUM_REPLICAS = 100
REPLICATION_FACTOR = 3
FUNCTION = "linear"

Sizer = Callable[[float], int]


@dataclass(frozen=True)
class _TenantClass:
    name: str
    percentage: float
    avg_series: int  # after replication


# Sorted by increasing avg_series.
TENANTS_DISTRIBUTION = (
    _TenantClass("small", 0.7, 10_000),
    _TenantClass("medium", 0.2, 100_000),
    _TenantClass("large", 0.1, 1_000_000),
)


def linear(k: int) -> Sizer:
    """Shard size proportional to the number of series."""

    def sizer(series: float) -> int:
        return int(math.ceil(series / k))

    return sizer


def log_sizer(k: int) -> Sizer:
    """Shard size proportional to the logarithm of the number of series."""

    def sizer(series: float) -> int:
        return int(math.ceil(math.log(series) / k))

    return sizer


def shuffle_shard(entropy: random.Random, shard_size: int, num_replicas: int) -> list[int]:
    """Pick ``shard_size`` different replicas at random, returned in ascending order."""
    if shard_size > num_replicas:
        raise ValueError("shard size cannot exceed the number of replicas")
    replicas: set[int] = set()
    while len(replicas) < shard_size:
        replicas.add(entropy.randrange(num_replicas))
    return sorted(replicas)


def calculate_max_affected_tenants(node_tenants: Sequence[Sequence[int]] | None) -> int:
    """Return the largest number of tenants shared by any two distinct nodes."""
    counters = [Counter(tenants) for tenants in node_tenants or ()]
    best = 0
    for first, second in combinations(counters, 2):
        shared = sum(count * second[tenant] for tenant, count in first.items() if tenant in second)
        best = max(best, shared)
    return best


def tenants_distribution_to_string() -> str:
    """Describe the tenant classes, e.g. ``70% small with 10K avg series + ...``."""
    return " + ".join(
        f"{t.percentage * 100:.0f}% {t.name} with {t.avg_series // 1000}K avg series"
        for t in TENANTS_DISTRIBUTION
    )


def run(k: int, sizer: Sizer) -> str:
    """Simulate one shard size factor and return its CSV row."""
    node_series = [0.0] * NUM_REPLICAS
    node_tenants: list[list[int]] = [[] for _ in range(NUM_REPLICAS)]

    tenant_id = 0
    previous_avg = 0
    for tenant_class in TENANTS_DISTRIBUTION:
        for _ in range(int(NUM_TENANTS * tenant_class.percentage)):
            # Seeded by tenant ID so every run gives a tenant the same series.
            entropy = random.Random(tenant_id)
            num_series = previous_avg + entropy.expovariate(1.0) * (
                tenant_class.avg_series - previous_avg
            )

            shard_size = min(max(sizer(num_series), REPLICATION_FACTOR), NUM_REPLICAS)
            for replica_id in shuffle_shard(entropy, shard_size, NUM_REPLICAS):
                node_series[replica_id] += num_series / shard_size
                node_tenants[replica_id].append(tenant_id)

            tenant_id += 1
        previous_avg = tenant_class.avg_series

    max_affected = calculate_max_affected_tenants(node_tenants)
    return (
        f"{k}, {int(min(node_series))}, {int(max(node_series, default=0.0))}, "
        f"{int(statistics.mean(node_series))}, {statistics.stdev(node_series):f}, "
        f"{max_affected / NUM_TENANTS:f}"
    )


def _steps(function: str) -> list[tuple[int, Sizer]]:
    if function == "linear":
        return [(k, linear(k)) for k in range(1000, 100_001, 1000)]
    if function == "log":
        return [(k, log_sizer(k)) for k in range(1, 101)]
    return []


def main(argv: Sequence[str] | None = None) -> int:
    """Print the CSV header and one row per simulated shard size factor."""
    parser = argparse.ArgumentParser(
        prog="sim", description="Simulate shuffle sharding of tenants across replicas."
    )
    parser.parse_args(argv)

    print(
        "k, min series / replica, max series / replica, avg series / replica, "
        "std dev series, % tenants affected by double node outage, "
        f"setup = {FUNCTION} function / {NUM_TENANTS} tenants / "
        f"{tenants_distribution_to_string()} / {NUM_REPLICAS} replicas / "
        f"{REPLICATION_FACTOR}x replication factor"
    )
    for k, sizer in _steps(FUNCTION):
        print(run(k, sizer), flush=True)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())