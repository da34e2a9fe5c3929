"""Synthetic series and query workloads for benchmarking a remote write and query path."""

from __future__ import annotations

import random
import re
import zlib
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Mapping

import yaml

Label = tuple[str, str]

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_DEFAULT_BATCH_SIZE = 500
_DEFAULT_WRITE_INTERVAL = 15.0
_DEFAULT_WRITE_TIMEOUT = 15.0


class SeriesType(str, Enum):
    """How the values of a series evolve over time."""

    GAUGE_ZERO = "gauge-zero"
    GAUGE_RANDOM = "gauge-random"
    COUNTER_ONE = "counter-one"
    COUNTER_RANDOM = "counter-random"

    def __str__(self) -> str:
        return self.value


def _series_type(value: Any) -> SeriesType:
    try:
        return SeriesType(value)
    except ValueError:
        raise ValueError(f"unknown series type {value}") from None


@dataclass
class LabelDesc:
    """A label with ``unique_values`` values named ``<value_prefix>-<n>``."""

    name: str
    value_prefix: str = ""
    unique_values: int = 0


@dataclass
class SeriesDesc:
    """A metric with static labels and labels that multiply its series."""

    name: str
    type: SeriesType = SeriesType.GAUGE_ZERO
    static_labels: dict[str, str] = field(default_factory=dict)
    labels: list[LabelDesc] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.type = _series_type(self.type)


@dataclass
class QueryDesc:
    """A family of queries rendered from a template; durations are in seconds."""

    num_queries: int = 0
    expr_template: str = ""
    required_series_type: SeriesType | str = ""
    interval: float = 0.0
    time_range: float = 0.0
    regex: bool = False
    inject_exact_series_matcher: bool = False


@dataclass
class WriteDesc:
    """Write options; durations are in seconds, zero means the default."""

    interval: float = 0.0
    timeout: float = 0.0
    batch_size: int = 0


@dataclass
class WorkloadDesc:
    """The whole workload description."""

    replicas: int = 0
    series: list[SeriesDesc] = field(default_factory=list)
    query_desc: list[QueryDesc] = field(default_factory=list)
    write: WriteDesc = field(default_factory=WriteDesc)


@dataclass
class Timeseries:
    """The label sets of one described series and its last written value."""

    label_sets: list[list[Label]]
    series_type: SeriesType
    last_value: float = 0.0

    def _next_value(self) -> float:
        if self.series_type is SeriesType.GAUGE_ZERO:
            value = 0.0
        elif self.series_type is SeriesType.GAUGE_RANDOM:
            value = random.random()
        elif self.series_type is SeriesType.COUNTER_ONE:
            value = self.last_value + 1
        elif self.series_type is SeriesType.COUNTER_RANDOM:
            value = self.last_value + float(random.getrandbits(63))
        else:
            raise ValueError(f"unknown series type {self.series_type}")
        self.last_value = value
        return value


def _millis(when: datetime | float) -> int:
    if isinstance(when, datetime):
        if when.tzinfo is None:
            when = when.astimezone()
        return (when - _EPOCH) // timedelta(milliseconds=1)
    return int(when * 1000)


@dataclass
class WriteWorkload:
    """The series to write for each replica, with the write options."""

    replicas: int
    series: list[Timeseries]
    total_series: int
    total_series_type_map: dict[SeriesType, int]
    options: WriteDesc
    missed_iterations: int = 0

    def generate_time_series(
        self, bench_id: str, when: datetime | float
    ) -> list[dict[str, Any]]:
        """Return one sample per series and replica, stamped with ``when``.

        Each entry holds ``labels`` (name, value pairs) and ``samples``
        (``timestamp`` in milliseconds and ``value``).
        """
        stamp = _millis(when)
        generated: list[dict[str, Any]] = []
        for replica in range(self.replicas):
            replica_label = ("bench_replica", f"replica-{replica:05d}")
            id_label = ("bench_id", bench_id)
            for series in self.series:
                value = series._next_value()
                for label_set in series.label_sets:
                    generated.append(
                        {
                            "labels": [*label_set, replica_label, id_label],
                            "samples": [{"timestamp": stamp, "value": value}],
                        }
                    )
        return generated


def _add_label(label_sets: list[list[Label]], label: LabelDesc) -> list[list[Label]]:
    return [
        [*label_set, (label.name, f"{label.value_prefix}-{i}")]
        for i in range(label.unique_values)
        for label_set in label_sets
    ]


def series_desc_to_series(
    series_descs: list[SeriesDesc],
) -> tuple[list[Timeseries], dict[SeriesType, int]]:
    """Expand series descriptions into label sets and count series per type."""
    series: list[Timeseries] = []
    totals = {series_type: 0 for series_type in SeriesType}

    for desc in series_descs:
        base: list[Label] = [("__name__", desc.name)]
        base.extend(desc.static_labels.items())
        label_sets = [base]
        for label in desc.labels:
            label_sets = _add_label(label_sets, label)

        series.append(Timeseries(label_sets=label_sets, series_type=desc.type))
        totals[desc.type] += len(label_sets)

    return series, totals


def new_write_workload(desc: WorkloadDesc) -> WriteWorkload:
    """Build a write workload, filling in default write options."""
    series, totals = series_desc_to_series(desc.series)
    options = replace(
        desc.write,
        batch_size=desc.write.batch_size or _DEFAULT_BATCH_SIZE,
        interval=desc.write.interval or _DEFAULT_WRITE_INTERVAL,
        timeout=desc.write.timeout or _DEFAULT_WRITE_TIMEOUT,
    )
    return WriteWorkload(
        replicas=desc.replicas,
        series=series,
        total_series=sum(totals.values()),
        total_series_type_map=totals,
        options=options,
    )


@dataclass(frozen=True)
class Query:
    """A query to run every ``interval`` seconds; a range query if ``time_range`` > 0."""

    interval: float
    time_range: float
    expr: str


@dataclass
class QueryWorkload:
    """The queries of a benchmark."""

    queries: list[Query]


_ACTION = re.compile(r"<<(.*?)>>", re.S)
_FIELD = re.compile(r"\s*\.([A-Za-z_]\w*)\s*")


def _parse_template(text: str) -> list[tuple[bool, str]]:
    """Split a template into literal text and field references."""
    parts: list[tuple[bool, str]] = []
    position = 0
    for match in _ACTION.finditer(text):
        parts.append((False, text[position : match.start()]))
        field_match = _FIELD.fullmatch(match.group(1))
        if field_match is None:
            raise ValueError(
                f"unable to parse query template, unsupported action <<{match.group(1)}>>"
            )
        parts.append((True, field_match.group(1)))
        position = match.end()
    tail = text[position:]
    if "<<" in tail:
        raise ValueError("unable to parse query template, unclosed action")
    parts.append((False, tail))
    return parts


def _render(parts: list[tuple[bool, str]], source: str, data: Mapping[str, str]) -> str:
    rendered = []
    for is_field, content in parts:
        if not is_field:
            rendered.append(content)
        elif content in data:
            rendered.append(data[content])
        else:
            raise ValueError(
                f"unable to execute expr_template {source}, can't evaluate field {content}"
            )
    return "".join(rendered)


def new_query_workload(bench_id: str, desc: WorkloadDesc) -> QueryWorkload:
    """Build the query workload; the same ``bench_id`` gives the same queries."""
    by_type: dict[SeriesType, list[SeriesDesc]] = {t: [] for t in SeriesType}
    for series in desc.series:
        by_type[_series_type(series.type)].append(series)

    rng = random.Random(zlib.adler32(bench_id.encode("utf-8")))

    queries: list[Query] = []
    for query_desc in desc.query_desc:
        template = _parse_template(query_desc.expr_template)

        for _ in range(query_desc.num_queries):
            try:
                series_type = SeriesType(query_desc.required_series_type)
            except ValueError:
                raise ValueError(
                    "query found with unknown series type "
                    f"{query_desc.required_series_type}"
                ) from None

            candidates = by_type[series_type]
            if not candidates:
                raise ValueError(
                    f"no series found for query with series type {series_type.value}"
                )
            series_desc = candidates[rng.randrange(len(candidates))]

            if desc.replicas <= 0:
                raise ValueError("workload must have at least one replica to query")
            replica = rng.randrange(desc.replicas)
            operator = "=" if query_desc.regex else "=~"
            matchers = [f'bench_replica{operator}"replica-{replica:05d}"']

            expr = _render(
                template,
                query_desc.expr_template,
                {"Name": series_desc.name, "Matchers": ", ".join(matchers)},
            )
            queries.append(
                Query(
                    interval=query_desc.interval,
                    time_range=query_desc.time_range,
                    expr=expr,
                )
            )

    return QueryWorkload(queries)


_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def _parse_duration(value: Any, name: str) -> float:
    """Parse a duration such as ``1h30m`` or an integer of nanoseconds into seconds."""
    if value is None:
        return 0.0
    if isinstance(value, bool):
        raise ValueError(f"invalid duration for {name}: {value!r}")
    if isinstance(value, int):
        return value / 1e9
    if not isinstance(value, str):
        raise ValueError(f"invalid duration for {name}: {value!r}")

    text = value
    sign = 1.0
    if text[:1] in ("+", "-"):
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]
    if text == "0":
        return 0.0
    if not text:
        raise ValueError(f"invalid duration for {name}: {value!r}")

    total = 0.0
    position = 0
    while position < len(text):
        match = _DURATION_PART.match(text, position)
        if match is None:
            raise ValueError(f"invalid duration for {name}: {value!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    return sign * total


def _mapping(value: Any, name: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"{name} must be a mapping")
    return value


def _sequence(value: Any, name: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"{name} must be a list")
    return value


def _integer(value: Any, name: str) -> int:
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer")
    return value


def _boolean(value: Any, name: str) -> bool:
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ValueError(f"{name} must be a boolean")
    return value


def _string(value: Any) -> str:
    return "" if value is None else str(value)


def load_workload_desc(text: str) -> WorkloadDesc:
    """Parse a workload description from YAML."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ValueError(f"unable to unmarshal workload YAML file: {exc}") from exc
    data = _mapping(data, "workload")

    series = []
    for item in _sequence(data.get("series"), "series"):
        item = _mapping(item, "series entry")
        labels = [
            LabelDesc(
                name=_string(label.get("name")),
                value_prefix=_string(label.get("value_prefix")),
                unique_values=_integer(label.get("unique_values"), "unique_values"),
            )
            for label in map(
                lambda entry: _mapping(entry, "label"),
                _sequence(item.get("labels"), "labels"),
            )
        ]
        static = {
            str(k): _string(v)
            for k, v in _mapping(item.get("static_labels"), "static_labels").items()
        }
        series.append(
            SeriesDesc(
                name=_string(item.get("name")),
                type=_series_type(_string(item.get("type"))),
                static_labels=static,
                labels=labels,
            )
        )

    queries = []
    for item in _sequence(data.get("queries"), "queries"):
        item = _mapping(item, "query entry")
        queries.append(
            QueryDesc(
                num_queries=_integer(item.get("num_queries"), "num_queries"),
                expr_template=_string(item.get("expr_template")),
                required_series_type=_string(item.get("series_type")),
                interval=_parse_duration(item.get("interval"), "interval"),
                time_range=_parse_duration(item.get("time_range"), "time_range"),
                regex=_boolean(item.get("regex"), "regex"),
                inject_exact_series_matcher=_boolean(
                    item.get("inject_exact_series_matcher"), "inject_exact_series_matcher"
                ),
            )
        )

    write = _mapping(data.get("write_options"), "write_options")
    return WorkloadDesc(
        replicas=_integer(data.get("replicas"), "replicas"),
        series=series,
        query_desc=queries,
        write=WriteDesc(
            interval=_parse_duration(write.get("interval"), "interval"),
            timeout=_parse_duration(write.get("timeout"), "timeout"),
            batch_size=_integer(write.get("batch_size"), "batch_size"),
        ),
    )