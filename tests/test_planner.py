import pytest

from cortextools.planner import PlannerConfig, PlannerError, new_planner


def test_full_range_covers_all_prefixes():
    reqs = new_planner(PlannerConfig(tables="chunks", user_id_list="u")).plan()
    assert len(reqs) == 240
    assert reqs[0].prefix == "10"
    assert reqs[-1].prefix == "ff"
    assert len({r.prefix for r in reqs}) == 240


def test_prefixes_are_two_hex_digits_without_leading_zero():
    reqs = new_planner(PlannerConfig(tables="t", user_id_list="u")).plan()
    for r in reqs:
        assert len(r.prefix) == 2
        assert r.prefix[0] != "0"
        int(r.prefix, 16)


def test_nesting_order_tables_users_shards():
    planner = new_planner(
        PlannerConfig(first_shard=1, last_shard=2, user_id_list="a,b", tables="t1,t2")
    )
    got = [(r.table, r.user, r.prefix) for r in planner.plan()]
    assert got == [
        ("t1", "a", "10"), ("t1", "a", "11"),
        ("t1", "b", "10"), ("t1", "b", "11"),
        ("t2", "a", "10"), ("t2", "a", "11"),
        ("t2", "b", "10"), ("t2", "b", "11"),
    ]


def test_lists_are_split_on_commas():
    planner = new_planner(PlannerConfig(user_id_list="x,y,z", tables="only"))
    assert planner.users == ["x", "y", "z"]
    assert planner.tables == ["only"]


def test_empty_lists_give_single_empty_entry():
    planner = new_planner(PlannerConfig(first_shard=5, last_shard=5))
    reqs = planner.plan()
    assert [(r.table, r.user) for r in reqs] == [("", "")]


@pytest.mark.parametrize("first", [0, 241, -1])
def test_first_shard_out_of_range(first):
    with pytest.raises(PlannerError, match="plan.firstShard"):
        new_planner(PlannerConfig(first_shard=first))


@pytest.mark.parametrize("last", [0, 241])
def test_last_shard_out_of_range(last):
    with pytest.raises(PlannerError, match="plan.lastShard set to"):
        new_planner(PlannerConfig(last_shard=last))


def test_first_after_last():
    with pytest.raises(PlannerError, match="less than"):
        new_planner(PlannerConfig(first_shard=10, last_shard=9))


def test_single_shard_range():
    reqs = new_planner(PlannerConfig(first_shard=7, last_shard=7, tables="t", user_id_list="u")).plan()
    assert len(reqs) == 1
    assert reqs[0].interval is None