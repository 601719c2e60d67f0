# market_dashboard/aggregation_engine/aggregation_calculator.py
"""
Aggregation Calculator - bottom-up rollup of segment time series

For one geography x segment-type tree:
- Leaf nodes keep their input time series
- Branch nodes get the year-wise SUM of their direct children
  (children first: nodes are resolved in reverse pre-order)
- A year missing in a child contributes zero; it never drops the child
- Branch CAGR is recomputed from the branch's own start/end values:
      CAGR = (end / start) ^ (1 / years) - 1
  Averaging children's CAGRs is a degraded fallback, used only when the
  start or end value is zero or missing
- A non-leaf node with no children becomes an aggregated node with an
  empty series (EMPTY_BRANCH warning); the build continues

Re-running the calculator on an already materialized matrix recomputes
aggregated records from the leaves only, so it is not cumulative.

VERSION: 2.1.0
CHANGELOG:
- v2.1.0: recalculate() for materialized matrices (idempotent)
- v2.0.0: CHANGED aggregated CAGR:
          - OLD: Average of children's CAGRs
          - NEW: Computed from aggregated start/end values,
                 averaging kept only as fallback
- v1.1.0: Sibling peer group for market share
"""

import logging
import time
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence, Tuple, Union

from .errors import BuildReport, WarningCode
from .hierarchy import SegmentHierarchy
from .tree_walker import LeafData

logger = logging.getLogger(__name__)

Number = Union[int, float]
Path = Tuple[str, ...]

CAGR_COMPUTED = 'computed'
CAGR_INPUT = 'input'
CAGR_CHILDREN_AVERAGE = 'children_average'
CAGR_NONE = 'none'


# =============================================================================
# PURE HELPERS
# =============================================================================

def sum_time_series(series_list: Sequence[Dict[int, Number]]) -> Dict[int, Number]:
    """Year-wise sum; a missing year counts as zero. Years sorted ascending."""
    totals: Dict[int, Number] = {}
    for series in series_list:
        for year, value in series.items():
            totals[year] = totals.get(year, 0) + value
    return {year: totals[year] for year in sorted(totals)}


def compute_cagr(
    series: Dict[int, Number],
    start_year: Optional[int] = None,
    end_year: Optional[int] = None,
    decimals: Optional[int] = 2
) -> Optional[float]:
    """
    CAGR in percent between start and end year of a series.

    Defaults to the first and last year present. Returns None when
    start or end is missing, zero, or the ratio is not positive.

    Example:
        compute_cagr({2023: 100, 2025: 121})  -> 10.0
    """
    if not series:
        return None
    years = sorted(series)
    start = start_year if start_year is not None else years[0]
    end = end_year if end_year is not None else years[-1]
    if end <= start:
        return None

    start_value = series.get(start)
    end_value = series.get(end)
    if not start_value or not end_value:
        return None
    ratio = end_value / start_value
    if ratio <= 0:
        return None

    cagr = (ratio ** (1.0 / (end - start)) - 1.0) * 100.0
    if decimals is not None:
        cagr = round(cagr, decimals)
    return cagr


def calculate_market_shares(
    series_by_path: Dict[Path, Dict[int, Number]],
    year: Optional[int]
) -> Dict[Path, Optional[float]]:
    """
    Share (%) of each node within its sibling group for one year.

    Peer group = nodes with the same parent path, so a node and its
    ancestors are never in the same denominator. Roots share one group.
    """
    if year is None:
        return {path: None for path in series_by_path}

    group_totals: Dict[Path, Number] = {}
    for path, series in series_by_path.items():
        parent = path[:-1]
        group_totals[parent] = group_totals.get(parent, 0) + series.get(year, 0)

    shares: Dict[Path, Optional[float]] = {}
    for path, series in series_by_path.items():
        total = group_totals.get(path[:-1], 0)
        if total > 0:
            shares[path] = round(series.get(year, 0) / total * 100.0, 4)
        else:
            shares[path] = None
    return shares


# =============================================================================
# NODE TABLE
# =============================================================================

@dataclass
class AggregatedNode:
    """Resolved node of one tree: series, CAGR and leaf/aggregated flag."""
    path: Path
    children: List[str] = field(default_factory=list)
    is_aggregated: bool = False
    time_series: Dict[int, Number] = field(default_factory=dict)
    cagr: Optional[float] = None
    cagr_source: str = CAGR_NONE
    cagr_input: Union[str, int, float, None] = None

    @property
    def aggregation_level(self) -> int:
        return len(self.path) - 1


# =============================================================================
# CALCULATOR
# =============================================================================

class AggregationCalculator:
    """
    Roll leaf time series up a segment hierarchy.

    Usage:
        calc = AggregationCalculator(report=report)
        table = calc.aggregate(hierarchy, leaves, context=("USA", "By Type"))
        table[("All",)].time_series   # {2023: 150, 2024: 165}
    """

    def __init__(
        self,
        report: BuildReport = None,
        cagr_decimals: int = 2,
        cagr_start_year: Optional[int] = None,
        cagr_end_year: Optional[int] = None,
        debug_timing: bool = False
    ):
        """
        Args:
            report: Collects EMPTY_BRANCH / CAGR_FALLBACK warnings
            cagr_decimals: Rounding applied to computed CAGR
            cagr_start_year, cagr_end_year: Optional fixed CAGR window,
                defaults to first/last year of each series
            debug_timing: Log step timings at DEBUG
        """
        self.report = report if report is not None else BuildReport()
        self.cagr_decimals = cagr_decimals
        self.cagr_start_year = cagr_start_year
        self.cagr_end_year = cagr_end_year
        self.debug_timing = debug_timing

    # =========================================================================
    # TREE AGGREGATION
    # =========================================================================

    def aggregate(
        self,
        hierarchy: SegmentHierarchy,
        leaves: Dict[Path, LeafData],
        context: Tuple[str, ...] = ()
    ) -> Dict[Path, AggregatedNode]:
        """
        Resolve every node of one tree.

        Args:
            hierarchy: Hierarchy of this tree only (one geography x segment type)
            leaves: Leaf path -> input data from the Tree Walker
            context: (geography, segment_type), used in warnings

        Returns:
            Dict path -> AggregatedNode, in hierarchy (pre-order) order
        """
        start_time = time.perf_counter()
        nodes = hierarchy.nodes
        resolved: Dict[Path, AggregatedNode] = {}

        # Pre-order reversed: every child is resolved before its parent
        for path in reversed(nodes):
            children = hierarchy.children_of(path)

            if not children and path in leaves:
                data = leaves[path]
                resolved[path] = AggregatedNode(
                    path=path,
                    children=[],
                    is_aggregated=False,
                    time_series=dict(data.years),
                    cagr=data.cagr,
                    cagr_source=CAGR_INPUT if data.cagr is not None else CAGR_NONE,
                    cagr_input=data.cagr_input,
                )
                continue

            if not children:
                self.report.warn(
                    WarningCode.EMPTY_BRANCH,
                    "Branch has no children and no year data; using an empty series",
                    context + path
                )
                resolved[path] = AggregatedNode(path=path, children=[], is_aggregated=True)
                continue

            child_nodes = [resolved[path + (c,)] for c in children if path + (c,) in resolved]
            resolved[path] = self._aggregate_branch(path, children, child_nodes, context)

        if self.debug_timing:
            logger.debug(
                f"[aggregate] {' > '.join(context)}: {len(nodes)} nodes "
                f"in {time.perf_counter() - start_time:.4f}s"
            )

        return {path: resolved[path] for path in nodes}

    def _aggregate_branch(
        self,
        path: Path,
        children: List[str],
        child_nodes: List[AggregatedNode],
        context: Tuple[str, ...]
    ) -> AggregatedNode:
        series = sum_time_series([c.time_series for c in child_nodes])

        if logger.isEnabledFor(logging.DEBUG):
            for child in child_nodes:
                missing = [y for y in series if y not in child.time_series]
                if missing:
                    logger.debug(
                        f"Zero-filled years {missing} for '{child.path[-1]}' "
                        f"under {' > '.join(context + path)}"
                    )

        cagr, source = self._branch_cagr(series, child_nodes, context + path)
        return AggregatedNode(
            path=path,
            children=list(children),
            is_aggregated=True,
            time_series=series,
            cagr=cagr,
            cagr_source=source,
        )

    def _branch_cagr(
        self,
        series: Dict[int, Number],
        child_nodes: List[AggregatedNode],
        location: Tuple[str, ...]
    ) -> Tuple[Optional[float], str]:
        cagr = compute_cagr(
            series,
            start_year=self.cagr_start_year,
            end_year=self.cagr_end_year,
            decimals=self.cagr_decimals
        )
        if cagr is not None:
            return cagr, CAGR_COMPUTED

        # Degraded mode: start or end value is zero or missing
        child_cagrs = [c.cagr for c in child_nodes if c.cagr is not None]
        if not child_cagrs:
            return None, CAGR_NONE

        average = sum(child_cagrs) / len(child_cagrs)
        if self.cagr_decimals is not None:
            average = round(average, self.cagr_decimals)
        self.report.warn(
            WarningCode.CAGR_FALLBACK,
            f"Start/end value unavailable; CAGR averaged from {len(child_cagrs)} children",
            location
        )
        return average, CAGR_CHILDREN_AVERAGE

    # =========================================================================
    # MATRIX RE-AGGREGATION
    # =========================================================================

    def recalculate(self, records: List, share_year: Optional[int] = None) -> List:
        """
        Recompute aggregated records of a materialized matrix from its leaves.

        Records keep their order. Leaf records are returned as-is;
        aggregated ones are replaced by new records. Market share is
        refreshed when `share_year` is given.

        Args:
            records: List of DataRecord
            share_year: Year for sibling market share (None keeps existing)
        """
        groups: Dict[Tuple[str, str], List[int]] = {}
        for idx, record in enumerate(records):
            groups.setdefault((record.geography, record.segment_type), []).append(idx)

        result = list(records)
        for (geography, segment_type), indexes in groups.items():
            hierarchy = SegmentHierarchy()
            leaves: Dict[Path, LeafData] = {}
            for idx in indexes:
                record = records[idx]
                path = tuple(record.segment_hierarchy)
                hierarchy.add_node(path)
                if not record.is_aggregated:
                    leaves[path] = LeafData(
                        years=dict(record.time_series),
                        cagr=record.cagr,
                        cagr_input=record.cagr_input
                    )

            table = self.aggregate(hierarchy, leaves, context=(geography, segment_type))
            shares = None
            if share_year is not None:
                shares = calculate_market_shares(
                    {p: n.time_series for p, n in table.items()}, share_year
                )

            for idx in indexes:
                record = records[idx]
                node = table.get(tuple(record.segment_hierarchy))
                if node is None:
                    continue
                share = shares.get(node.path) if shares is not None else record.market_share
                if not node.is_aggregated and not record.is_aggregated and share == record.market_share:
                    continue
                result[idx] = replace(
                    record,
                    time_series=dict(node.time_series),
                    cagr=node.cagr,
                    cagr_input=node.cagr_input,
                    is_aggregated=node.is_aggregated,
                    aggregation_level=node.aggregation_level,
                    market_share=share,
                )

        return result
