import pytest

from market_dashboard.aggregation_engine.filters import (
    FilterSpec,
    determine_aggregation_level,
    filter_matrix,
    filter_summary,
    sum_by_year,
)


@pytest.fixture()
def nested_records(processor, nested_tree):
    return processor.process(nested_tree).data.value_records


def test_leaf_only_sum_matches_parent_aggregate(processor, all_tree):
    records = processor.process(all_tree).data.value_records

    leaves = filter_matrix(records, FilterSpec(segment_type="By Type", leaf_only=True))
    parent = next(r for r in records if r.segment == "All")

    assert sum(r.time_series[2024] for r in leaves) == 165
    assert sum(r.time_series[2024] for r in leaves) == parent.time_series[2024]


def test_no_double_counting_for_every_aggregated_node(nested_records):
    leaves = filter_matrix(nested_records, FilterSpec(leaf_only=True))

    for node in (r for r in nested_records if r.is_aggregated):
        depth = len(node.segment_hierarchy)
        below = [
            leaf for leaf in leaves
            if leaf.geography == node.geography
            and leaf.segment_type == node.segment_type
            and leaf.segment_hierarchy[:depth] == node.segment_hierarchy
        ]
        assert sum_by_year(below) == node.time_series


def test_filter_returns_same_objects(nested_records):
    result = filter_matrix(nested_records, FilterSpec(geographies={"UK"}))

    assert [r.segment for r in result] == ["Hospital", "Public", "ICU"]
    assert all(any(r is original for original in nested_records) for r in result)


def test_segment_selection_with_descendants(nested_records):
    spec = FilterSpec(geographies={"USA"}, segments={"Public"}, match_descendants=True)
    result = filter_matrix(nested_records, spec)

    assert [r.segment_hierarchy for r in result] == [
        ("Hospital", "Public"),
        ("Hospital", "Public", "ICU"),
        ("Hospital", "Public", "Ward"),
        ("Clinic", "Public"),
    ]

    exact = filter_matrix(nested_records, FilterSpec(geographies={"USA"}, segments={"Public"}))
    assert len(exact) == 2


def test_business_type_filter(processor, business_tree):
    records = processor.process(business_tree).data.value_records

    b2b = filter_matrix(records, FilterSpec(business_type="B2B", leaf_only=True))
    assert [r.segment for r in b2b] == ["Pharmacy"]

    b2c = filter_matrix(records, FilterSpec(business_type="B2C"))
    assert [r.segment for r in b2c] == ["B2C", "Retail"]


def test_records_without_partition_pass_business_filter(processor, all_tree):
    records = processor.process(all_tree).data.value_records
    assert len(filter_matrix(records, FilterSpec(business_type="B2C"))) == 3


def test_year_range_needs_overlap(processor):
    raw = {"USA": {"T": {"Old": {"2020": 5}, "New": {"2030": 7}}}}
    records = processor.process(raw).data.value_records

    result = filter_matrix(records, FilterSpec(year_range=(2025, 2035)))
    assert [r.segment for r in result] == ["New"]


def test_aggregation_level_filter(nested_records):
    level_one = filter_matrix(nested_records, FilterSpec(geographies={"USA"}, aggregation_level=1))
    assert [r.segment_hierarchy for r in level_one] == [
        ("Hospital", "Public"),
        ("Hospital", "Private"),
        ("Clinic", "Public"),
    ]


def test_relaxed_query_after_empty_result(nested_records):
    spec = FilterSpec(segment_type="By End User", geographies={"Mars"}, leaf_only=True)
    assert filter_matrix(nested_records, spec) == []

    relaxed = filter_matrix(nested_records, spec.without_geographies())
    assert len(relaxed) == 5

    assert spec.without_segment_type().segment_type is None


@pytest.mark.parametrize("kwargs", [
    {"business_type": "B2X"},
    {"year_range": (2030, 2020)},
])
def test_invalid_filter_spec(kwargs):
    with pytest.raises(ValueError):
        FilterSpec(**kwargs)


def test_determine_aggregation_level(nested_records):
    assert determine_aggregation_level(nested_records, [], "By End User") is None
    assert determine_aggregation_level(nested_records, ["Hospital"], "By End User") == 0
    assert determine_aggregation_level(nested_records, ["ICU", "Ward"], "By End User") == 2
    assert determine_aggregation_level(nested_records, ["ICU", "Private"], "By End User") is None
    assert determine_aggregation_level(nested_records, ["Nowhere"], "By End User") is None


def test_sum_by_year_clips_range(nested_records):
    leaves = filter_matrix(nested_records, FilterSpec(geographies={"UK"}, leaf_only=True))
    assert sum_by_year(leaves, (2024, 2025)) == {2024: 11, 2025: 12}


def test_filter_summary():
    assert filter_summary(FilterSpec()) == "No filters"
    assert FilterSpec().is_empty()
    text = filter_summary(FilterSpec(segment_type="By Type", leaf_only=True))
    assert text == "Segment type: By Type | Leaf segments only"


def test_business_type_ignored_without_partition(processor):
    raw = {
        "USA": {
            "Channel": {
                "B2B": {"Pharmacy": {"2023": 10}},
                "Other": {"2023": 5},
            }
        }
    }
    data = processor.process(raw).data
    assert not data.segments["Channel"].has_business_partition

    result = filter_matrix(data.value_records, FilterSpec(business_type="B2C", leaf_only=True))

    assert [r.segment for r in result] == ["Pharmacy", "Other"]
    assert sum_by_year(result) == {2023: 15}
    assert all(r.business_type is None for r in data.value_records)


def test_partitioned_records_carry_business_type(processor, business_tree):
    records = processor.process(business_tree).data.value_records

    assert [(r.segment, r.business_type) for r in records] == [
        ("B2B", "B2B"),
        ("Pharmacy", "B2B"),
        ("B2C", "B2C"),
        ("Retail", "B2C"),
    ]
