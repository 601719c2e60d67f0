import pytest

from market_dashboard.aggregation_engine.errors import BuildCancelled, BuildReport, WarningCode
from market_dashboard.aggregation_engine.tree_walker import (
    BranchNode,
    CancellationToken,
    LeafNode,
    TreeWalker,
    collect_years,
    iter_leaf_paths,
    parse_cagr,
    parse_number,
)


def _walk(subtree, **kwargs):
    report = BuildReport()
    walker = TreeWalker(report=report, **kwargs)
    return list(walker.walk(subtree)), report


def test_year_keys_make_a_leaf():
    nodes, report = _walk({"Type A": {"2023": 100, "2024": 110, "CAGR": "5.2%"}})

    assert len(nodes) == 1
    leaf = nodes[0]
    assert isinstance(leaf, LeafNode)
    assert leaf.path == ("Type A",)
    assert leaf.data.years == {2023: 100, 2024: 110}
    assert leaf.data.cagr == 5.2
    assert not report.has_issues


def test_cagr_alone_makes_a_leaf():
    nodes, _ = _walk({"X": {"CAGR": 3}})
    assert isinstance(nodes[0], LeafNode)
    assert nodes[0].data.years == {}
    assert nodes[0].data.cagr == 3.0


def test_branches_are_yielded_in_pre_order(all_tree):
    nodes, _ = _walk(all_tree["USA"]["By Type"])

    assert [n.path for n in nodes] == [("All",), ("All", "Type A"), ("All", "Type B")]
    assert isinstance(nodes[0], BranchNode)
    assert nodes[0].children == ("Type A", "Type B")
    assert [path for path, _ in iter_leaf_paths(iter(nodes))] == [("All", "Type A"), ("All", "Type B")]


def test_mixed_node_is_a_leaf_with_warning():
    nodes, report = _walk({"X": {"2023": 1, "Sub": {"2023": 2}}})

    assert len(nodes) == 1
    assert isinstance(nodes[0], LeafNode)
    assert nodes[0].data.years == {2023: 1}
    assert len(report.by_code(WarningCode.MIXED_NODE)) == 1


def test_annotated_aggregate_is_walked_as_branch():
    subtree = {
        "All": {
            "2023": 999, "_aggregated": True, "_level": 0,
            "Type A": {"2023": 1},
        }
    }
    nodes, report = _walk(subtree)

    assert isinstance(nodes[0], BranchNode)
    assert nodes[0].annotated is True
    assert nodes[0].children == ("Type A",)
    assert not report.has_issues


def test_depth_guard_on_very_deep_input(make_deep_tree):
    nodes, report = _walk(make_deep_tree(1000), max_depth=20)

    assert len(nodes) == 20
    assert max(len(n.path) for n in nodes) == 20
    assert len(report.by_code(WarningCode.DEPTH_EXCEEDED)) == 1


def test_tree_at_exact_max_depth_is_complete(make_deep_tree):
    nodes, report = _walk(make_deep_tree(20), max_depth=20)

    assert len(nodes) == 20
    assert isinstance(nodes[-1], LeafNode)
    assert not report.has_issues


def test_self_referencing_object_is_skipped():
    looped = {}
    looped["Child"] = looped
    nodes, report = _walk({"Root": looped})

    assert [n.path for n in nodes] == [("Root",)]
    assert len(report.by_code(WarningCode.CYCLE_SUSPECTED)) == 1


def test_name_repeated_on_ancestor_path_is_skipped():
    nodes, report = _walk({"A": {"B": {"A": {"2023": 1}}, "C": {"2023": 2}}})

    assert [n.path for n in nodes] == [("A",), ("A", "B"), ("A", "C")]
    assert report.by_code(WarningCode.CYCLE_SUSPECTED)[0].path == ("A", "B", "A")


def test_non_numeric_values_are_skipped():
    nodes, report = _walk({"X": {"2023": "abc", "2024": "1,200", "2025": None}})

    assert nodes[0].data.years == {2024: 1200}
    assert len(report.by_code(WarningCode.NON_NUMERIC_VALUE)) == 1


def test_non_object_child_is_reported():
    nodes, report = _walk({"A": [1, 2], "B": {"2023": 1}})

    assert [n.path for n in nodes] == [("B",)]
    assert len(report.by_code(WarningCode.INVALID_NODE)) == 1


def test_year_keys_on_segment_type_are_ignored():
    nodes, report = _walk({"2023": 5, "A": {"2023": 1}})

    assert [n.path for n in nodes] == [("A",)]
    assert len(report.by_code(WarningCode.MIXED_NODE)) == 1


def test_structure_only_empty_objects_are_leaves():
    nodes, _ = _walk({"A": {"B": {}}}, structure_only=True)

    assert isinstance(nodes[0], BranchNode)
    assert isinstance(nodes[1], LeafNode)
    assert nodes[1].path == ("A", "B")


def test_cancelled_token_stops_traversal(all_tree):
    token = CancellationToken()
    token.cancel()
    walker = TreeWalker(cancel_token=token)

    with pytest.raises(BuildCancelled):
        list(walker.walk(all_tree["USA"]["By Type"]))


def test_collect_years_keeps_plausible_years():
    raw = {"USA": {"T": {"X": {"2023": 1, "1800": 5, "2030": 2}, "Y": {"2025": 3}}}}
    assert collect_years(raw) == [2023, 2025, 2030]


@pytest.mark.parametrize("value,expected", [
    (100, 100),
    (1.5, 1.5),
    ("42", 42),
    ("1,234.5", 1234.5),
    (None, None),
    (True, None),
    ("n/a", None),
    (float("nan"), None),
])
def test_parse_number(value, expected):
    assert parse_number(value) == expected


@pytest.mark.parametrize("value,expected", [
    ("5.2%", 5.2),
    (" 10 % ", 10.0),
    (3, 3.0),
    ("", None),
    ("fast", None),
])
def test_parse_cagr(value, expected):
    assert parse_cagr(value) == expected
