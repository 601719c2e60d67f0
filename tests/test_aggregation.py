from dataclasses import replace

import pytest

from market_dashboard.aggregation_engine.aggregation_calculator import (
    AggregationCalculator,
    calculate_market_shares,
    compute_cagr,
    sum_time_series,
)
from market_dashboard.aggregation_engine.errors import WarningCode


def _by_segment(records):
    return {r.segment: r for r in records}


def test_flat_tree_has_no_aggregated_records(processor, flat_tree):
    records = processor.process(flat_tree).data.value_records

    assert [r.segment for r in records] == ["Type A", "Type B"]
    assert not any(r.is_aggregated for r in records)
    assert all(r.aggregation_level == 0 for r in records)


def test_parent_is_sum_of_children(processor, all_tree):
    records = _by_segment(processor.process(all_tree).data.value_records)

    parent = records["All"]
    assert parent.is_aggregated
    assert parent.time_series == {2023: 150, 2024: 165}
    assert parent.aggregation_level == 0
    assert parent.segment_hierarchy == ("All",)
    assert records["Type A"].aggregation_level == 1
    assert records["Type A"].segment_hierarchy == ("All", "Type A")


def test_aggregated_cagr_is_computed_from_totals(processor, all_tree):
    all_tree["USA"]["By Type"]["All"]["Type A"]["CAGR"] = "1%"
    all_tree["USA"]["By Type"]["All"]["Type B"]["CAGR"] = "50%"
    records = _by_segment(processor.process(all_tree).data.value_records)

    # (165 / 150) - 1, not the average of 1% and 50%
    assert records["All"].cagr == 10.0
    assert records["Type A"].cagr == 1.0


def test_missing_child_year_counts_as_zero(processor):
    raw = {"USA": {"T": {"All": {"A": {"2023": 100, "2024": 110}, "B": {"2024": 55}}}}}
    records = _by_segment(processor.process(raw).data.value_records)

    assert records["All"].time_series == {2023: 100, 2024: 165}


def test_cagr_falls_back_to_children_average_when_start_is_zero(processor):
    raw = {
        "USA": {
            "T": {
                "All": {
                    "A": {"2023": 0, "2024": 10, "CAGR": "5%"},
                    "B": {"2023": 0, "2024": 20, "CAGR": "7%"},
                }
            }
        }
    }
    result = processor.process(raw)
    records = _by_segment(result.data.value_records)

    assert records["All"].cagr == 6.0
    assert len(result.report.by_code(WarningCode.CAGR_FALLBACK)) == 1


def test_empty_branch_becomes_empty_aggregate(processor):
    raw = {"USA": {"T": {"Empty": {}, "X": {"2023": 1}}}}
    result = processor.process(raw)
    records = _by_segment(result.data.value_records)

    assert records["Empty"].is_aggregated
    assert records["Empty"].time_series == {}
    assert records["X"].time_series == {2023: 1}
    assert len(result.report.by_code(WarningCode.EMPTY_BRANCH)) == 1


def test_sibling_market_share(processor, all_tree):
    result = processor.process(all_tree)
    records = _by_segment(result.data.value_records)

    assert result.data.metadata.base_year == 2023
    assert records["Type A"].market_share == pytest.approx(66.6667)
    assert records["Type B"].market_share == pytest.approx(33.3333)
    assert records["All"].market_share == 100.0


def test_recalculate_is_idempotent(processor, nested_tree):
    result = processor.process(nested_tree)
    records = result.data.value_records
    base_year = result.data.metadata.base_year
    calculator = AggregationCalculator(cagr_decimals=2)

    once = calculator.recalculate(records, share_year=base_year)
    twice = calculator.recalculate(once, share_year=base_year)

    assert once == records
    assert twice == once


def test_recalculate_restores_tampered_aggregates(processor, all_tree):
    records = processor.process(all_tree).data.value_records
    tampered = [
        replace(r, time_series={2023: 1, 2024: 1}) if r.is_aggregated else r
        for r in records
    ]

    restored = AggregationCalculator().recalculate(tampered)

    assert restored[0].time_series == {2023: 150, 2024: 165}
    assert restored[1] is tampered[1]


def test_compute_cagr():
    assert compute_cagr({2023: 100, 2025: 121}) == 10.0
    assert compute_cagr({2023: 0, 2025: 121}) is None
    assert compute_cagr({2023: 100}) is None
    assert compute_cagr({2023: 100, 2024: -5}) is None
    assert compute_cagr({2023: 100, 2024: 110, 2025: 121}, start_year=2024, end_year=2025) == 10.0


def test_sum_time_series_sorts_years():
    assert list(sum_time_series([{2024: 1}, {2023: 2, 2024: 3}]).items()) == [(2023, 2), (2024, 4)]


def test_market_shares_use_parent_groups():
    shares = calculate_market_shares(
        {
            ("All",): {2023: 10},
            ("All", "A"): {2023: 4},
            ("All", "B"): {2023: 6},
            ("Other",): {2023: 0},
        },
        2023,
    )

    assert shares[("All", "A")] == 40.0
    assert shares[("All", "B")] == 60.0
    assert shares[("All",)] == 100.0
    assert shares[("Other",)] == 0.0
