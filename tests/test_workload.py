import re
from datetime import datetime, timezone

import pytest

from cortextools.workload import (
    LabelDesc,
    QueryDesc,
    SeriesDesc,
    SeriesType,
    WorkloadDesc,
    WriteDesc,
    load_workload_desc,
    new_query_workload,
    new_write_workload,
    series_desc_to_series,
)


def _series(name, label_specs, series_type=SeriesType.GAUGE_ZERO):
    return SeriesDesc(
        name=name,
        type=series_type,
        static_labels={"constant_label": "true"},
        labels=[LabelDesc(n, p, u) for n, p, u in label_specs],
    )


GENERATE_CASES = [
    pytest.param(
        WorkloadDesc(
            replicas=1,
            series=[_series("test_series", [("test_label_one", "test_prefix", 5)])],
        ),
        5,
        id="basic",
    ),
    pytest.param(
        WorkloadDesc(
            replicas=5,
            series=[_series("test_series", [("test_label_one", "test_prefix", 2)])],
        ),
        10,
        id="multiple replicas",
    ),
    pytest.param(
        WorkloadDesc(
            replicas=1,
            series=[
                _series(
                    "test_series",
                    [
                        ("test_label_one", "test_prefix_one", 2),
                        ("test_label_two", "test_prefix_two", 3),
                    ],
                )
            ],
        ),
        6,
        id="multiple labels",
    ),
    pytest.param(
        WorkloadDesc(
            replicas=1,
            series=[
                _series(
                    "test_series_one",
                    [
                        ("test_label_one", "test_prefix_one", 2),
                        ("test_label_two", "test_prefix_two", 3),
                    ],
                ),
                _series(
                    "test_series_two",
                    [
                        ("test_label_one", "test_prefix_one", 2),
                        ("test_label_two", "test_prefix_two", 2),
                    ],
                ),
            ],
        ),
        10,
        id="multiple series",
    ),
]


@pytest.mark.parametrize("desc, expected", GENERATE_CASES)
def test_generate_time_series_unique_count(desc, expected):
    workload = new_write_workload(desc)
    generated = workload.generate_time_series("test-id", datetime.now(timezone.utc))
    assert len({repr(ts) for ts in generated}) == expected


def test_series_desc_to_series_label_sets_and_totals():
    series, totals = series_desc_to_series(
        [_series("m", [("a", "pa", 2), ("b", "pb", 3)], SeriesType.COUNTER_ONE)]
    )
    assert len(series) == 1
    label_sets = series[0].label_sets
    assert len(label_sets) == 6
    assert label_sets[0] == [
        ("__name__", "m"),
        ("constant_label", "true"),
        ("a", "pa-0"),
        ("b", "pb-0"),
    ]
    assert label_sets[1][-2:] == [("a", "pa-1"), ("b", "pb-0")]
    assert label_sets[2][-2:] == [("a", "pa-0"), ("b", "pb-1")]
    assert totals == {
        SeriesType.GAUGE_ZERO: 0,
        SeriesType.GAUGE_RANDOM: 0,
        SeriesType.COUNTER_ONE: 6,
        SeriesType.COUNTER_RANDOM: 0,
    }


def test_new_write_workload_defaults():
    workload = new_write_workload(
        WorkloadDesc(replicas=2, series=[_series("m", [("a", "p", 3)])])
    )
    assert workload.options.batch_size == 500
    assert workload.options.interval == 15.0
    assert workload.options.timeout == 15.0
    assert workload.total_series == 3
    assert workload.replicas == 2


def test_new_write_workload_keeps_explicit_options():
    desc = WorkloadDesc(replicas=1, write=WriteDesc(interval=5.0, timeout=2.0, batch_size=10))
    workload = new_write_workload(desc)
    assert workload.options == WriteDesc(interval=5.0, timeout=2.0, batch_size=10)


def test_generated_labels_and_timestamp():
    workload = new_write_workload(
        WorkloadDesc(replicas=2, series=[SeriesDesc(name="m", type=SeriesType.GAUGE_ZERO)])
    )
    generated = workload.generate_time_series(
        "bench-1", datetime(2020, 1, 1, tzinfo=timezone.utc)
    )
    assert generated == [
        {
            "labels": [
                ("__name__", "m"),
                ("bench_replica", "replica-00000"),
                ("bench_id", "bench-1"),
            ],
            "samples": [{"timestamp": 1577836800000, "value": 0.0}],
        },
        {
            "labels": [
                ("__name__", "m"),
                ("bench_replica", "replica-00001"),
                ("bench_id", "bench-1"),
            ],
            "samples": [{"timestamp": 1577836800000, "value": 0.0}],
        },
    ]


def test_counter_one_increments_per_replica():
    workload = new_write_workload(
        WorkloadDesc(replicas=2, series=[SeriesDesc(name="c", type=SeriesType.COUNTER_ONE)])
    )
    first = workload.generate_time_series("id", 0.0)
    second = workload.generate_time_series("id", 1.0)
    assert [ts["samples"][0]["value"] for ts in first] == [1.0, 2.0]
    assert [ts["samples"][0]["value"] for ts in second] == [3.0, 4.0]
    assert second[0]["samples"][0]["timestamp"] == 1000


def test_gauge_random_in_unit_interval():
    workload = new_write_workload(
        WorkloadDesc(replicas=20, series=[SeriesDesc(name="g", type=SeriesType.GAUGE_RANDOM)])
    )
    values = [ts["samples"][0]["value"] for ts in workload.generate_time_series("id", 0.0)]
    assert len(values) == 20
    assert all(0.0 <= v < 1.0 for v in values)


def test_unknown_series_type_rejected():
    with pytest.raises(ValueError, match="unknown series type bogus"):
        SeriesDesc(name="m", type="bogus")


WORKLOAD_YAML = """
replicas: 3
series:
  - name: test_series
    type: counter-one
    static_labels:
      env: dev
    labels:
      - name: pod
        value_prefix: pod
        unique_values: 4
queries:
  - num_queries: 2
    expr_template: sum(<<.Name>>{<<.Matchers>>})
    series_type: counter-one
    interval: 1h30m
    time_range: 500ms
    regex: true
write_options:
  interval: 10s
  timeout: 1000000000
  batch_size: 100
"""


def test_load_workload_desc():
    desc = load_workload_desc(WORKLOAD_YAML)
    assert desc.replicas == 3
    assert desc.series == [
        SeriesDesc(
            name="test_series",
            type=SeriesType.COUNTER_ONE,
            static_labels={"env": "dev"},
            labels=[LabelDesc("pod", "pod", 4)],
        )
    ]
    query = desc.query_desc[0]
    assert query.num_queries == 2
    assert query.interval == 5400.0
    assert query.time_range == pytest.approx(0.5)
    assert query.regex is True
    assert desc.write == WriteDesc(interval=10.0, timeout=1.0, batch_size=100)


@pytest.mark.parametrize("bad", ["10x", "abc", "1h2", ""])
def test_load_workload_desc_bad_duration(bad):
    with pytest.raises(ValueError, match="invalid duration"):
        load_workload_desc(f"write_options:\n  interval: '{bad}'\n")


def test_load_workload_desc_unknown_series_type():
    with pytest.raises(ValueError, match="unknown series type"):
        load_workload_desc("series:\n  - name: m\n    type: histogram\n")


def _query_desc(regex=False, template="sum(<<.Name>>{<<.Matchers>>})", series_type="gauge-zero"):
    return WorkloadDesc(
        replicas=4,
        series=[SeriesDesc(name="test_series", type=SeriesType.GAUGE_ZERO)],
        query_desc=[
            QueryDesc(
                num_queries=5,
                expr_template=template,
                required_series_type=series_type,
                interval=60.0,
                time_range=3600.0,
                regex=regex,
            )
        ],
    )


def test_query_workload_renders_template():
    workload = new_query_workload("bench-a", _query_desc())
    assert len(workload.queries) == 5
    for query in workload.queries:
        assert re.fullmatch(r'sum\(test_series\{bench_replica=~"replica-0000[0-3]"\}\)', query.expr)
        assert query.interval == 60.0
        assert query.time_range == 3600.0


def test_query_workload_regex_flag_uses_equality_matcher():
    workload = new_query_workload("bench-a", _query_desc(regex=True))
    assert all('bench_replica="replica-' in q.expr for q in workload.queries)


def test_query_workload_deterministic_per_id():
    first = new_query_workload("bench-a", _query_desc())
    second = new_query_workload("bench-a", _query_desc())
    assert first == second


def test_query_workload_no_series_for_type():
    with pytest.raises(ValueError, match="no series found for query with series type counter-one"):
        new_query_workload("id", _query_desc(series_type="counter-one"))


def test_query_workload_unknown_series_type():
    with pytest.raises(ValueError, match="query found with unknown series type bogus"):
        new_query_workload("id", _query_desc(series_type="bogus"))


def test_query_workload_unclosed_template():
    with pytest.raises(ValueError, match="unable to parse query template"):
        new_query_workload("id", _query_desc(template="sum(<<.Name)"))


def test_query_workload_unknown_field():
    with pytest.raises(ValueError, match="unable to execute expr_template"):
        new_query_workload("id", _query_desc(template="<<.Missing>>"))