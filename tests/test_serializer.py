import json

from market_dashboard.aggregation_engine.matrix import DataRecord
from market_dashboard.aggregation_engine.serializer import (
    build_export_payloads,
    export_json_files,
    extract_segmentation_structure,
    format_cagr,
    to_nested_tree,
)


CANONICAL_TREE = {
    "USA": {
        "By Type": {
            "All": {
                "2023": 150,
                "2024": 165,
                "CAGR": "10.0%",
                "_aggregated": True,
                "_level": 0,
                "Type A": {"2023": 100, "2024": 110, "CAGR": "10.0%"},
                "Type B": {"2023": 50, "2024": 55, "CAGR": "10.0%"},
            },
            "Other": {"2023": 7, "2024": 8, "CAGR": "14.3%"},
        }
    },
    "UK": {
        "By Type": {
            "Type A": {"2023": 10.5, "2024": 11.0},
        }
    },
}


def test_round_trip_of_canonical_tree(processor):
    data = processor.process(CANONICAL_TREE).data

    assert to_nested_tree(data.value_records, data.metadata) == CANONICAL_TREE


def test_plain_input_round_trips_without_aggregates(processor, all_tree, flat_tree):
    for tree in (all_tree, flat_tree):
        records = processor.process(tree).data.value_records
        assert to_nested_tree(records, include_aggregates=False) == tree


def test_serialized_tree_reingests_to_same_matrix(processor, nested_tree):
    first = processor.process(nested_tree).data.value_records
    second = processor.process(to_nested_tree(first)).data.value_records

    assert second == first


def test_aggregated_nodes_get_markers(processor, all_tree):
    tree = to_nested_tree(processor.process(all_tree).data.value_records)
    parent = tree["USA"]["By Type"]["All"]

    assert parent["_aggregated"] is True
    assert parent["_level"] == 0
    assert parent["2024"] == 165
    assert "_aggregated" not in parent["Type A"]


def test_metadata_years_limit_output(processor, all_tree):
    records = processor.process(all_tree).data.value_records
    tree = to_nested_tree(records, {"years": [2024]}, include_aggregates=False)

    assert tree["USA"]["By Type"]["All"]["Type A"] == {"2024": 110}


def test_paths_are_cut_at_max_depth():
    path = tuple(f"L{i}" for i in range(25))
    record = DataRecord(
        geography="USA",
        segment_type="Deep",
        segment=path[-1],
        segment_hierarchy=path,
        time_series={2023: 1},
    )
    tree = to_nested_tree([record], max_depth=20)

    node = tree["USA"]["Deep"]
    depth = 0
    while "2023" not in node:
        node = next(iter(node.values()))
        depth += 1
    assert depth == 20


def test_format_cagr():
    assert format_cagr(5.2) == "5.2%"
    assert format_cagr(None) is None


def test_segmentation_structure_strips_years(processor, business_tree):
    data = processor.process(business_tree).data
    structure = extract_segmentation_structure(data.geographies.all_geographies, data.segments)

    assert structure == {
        "USA": {"By Channel": {"B2B": {"Pharmacy": {}}, "B2C": {"Retail": {}}}}
    }


def test_export_files(processor, all_tree, tmp_path):
    data = processor.process(all_tree).data
    written = export_json_files(data, tmp_path / "out")

    assert [p.name for p in written] == ["value.json", "segmentation_analysis.json"]
    value = json.loads((tmp_path / "out" / "value.json").read_text(encoding="utf-8"))
    assert value == to_nested_tree(data.value_records, data.metadata)


def test_export_payloads_include_volume(processor, all_tree, flat_tree):
    data = processor.process(all_tree, volume_tree=flat_tree).data
    payloads = build_export_payloads(data)

    assert list(payloads) == ["value.json", "volume.json", "segmentation_analysis.json"]
    assert json.loads(payloads["volume.json"]) == to_nested_tree(data.volume_records, data.metadata)


def test_volume_export_keeps_volume_only_years(processor):
    value = {"USA": {"T": {"A": {"2023": 1, "2024": 2}}}}
    volume = {"USA": {"T": {"A": {"2023": 10, "2024": 20, "2025": 30}}}}
    data = processor.process(value, volume_tree=volume).data

    assert data.metadata.years == [2023, 2024, 2025]
    payloads = build_export_payloads(data)
    assert json.loads(payloads["volume.json"]) == volume
    assert json.loads(payloads["value.json"]) == value


def test_input_cagr_is_written_back_unchanged(processor):
    tree = {
        "USA": {
            "By Type": {
                "Type A": {"2023": 100, "2024": 105, "CAGR": "5%"},
                "Type B": {"2023": 50, "2024": 52, "CAGR": 4.0},
            }
        }
    }
    records = processor.process(tree).data.value_records

    assert [r.cagr for r in records] == [5.0, 4.0]
    assert to_nested_tree(records) == tree
    assert to_nested_tree(records, include_aggregates=False) == tree


def test_computed_cagr_uses_percent_format(processor, all_tree):
    all_tree["USA"]["By Type"]["All"]["Type A"]["CAGR"] = "10%"
    tree = to_nested_tree(processor.process(all_tree).data.value_records)

    assert tree["USA"]["By Type"]["All"]["CAGR"] == "10.0%"
    assert tree["USA"]["By Type"]["All"]["Type A"]["CAGR"] == "10%"
