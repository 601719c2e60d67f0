# market_dashboard/aggregation_engine/matrix.py
"""
Matrix Materializer - flat geography x segment matrix

One DataRecord per geography x segment type x segment node. Records are
created once per build and never mutated; filtered views are new lists
holding the same record objects.

Ordering: geographies and segment types in input order, nodes in
pre-order (parent before its children). Same input, same list.

VERSION: 1.3.0
CHANGELOG:
- v1.3.0: business_type stamped from the built dimensions (partitioned
          segment types only); input CAGR text kept for export
- v1.2.0: aggregation_level = depth in own tree (0 for roots), set on
          leaf AND aggregated records
- v1.1.0: Sibling market share computed at build time
"""

import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple, Union

from .aggregation_calculator import AggregationCalculator, calculate_market_shares
from .constants import BUSINESS_TYPES, DEFAULT_LEVEL_COLUMNS, DEFAULT_MAX_DEPTH
from .errors import BuildReport, WarningCode
from .hierarchy import HierarchyBuilder, SegmentDimension, SegmentHierarchy
from .tree_walker import BranchNode, CancellationToken, LeafNode, TreeNode, TreeWalker

logger = logging.getLogger(__name__)

Number = Union[int, float]


# =============================================================================
# DATA RECORD
# =============================================================================

@dataclass(frozen=True)
class DataRecord:
    """
    Atomic unit of the matrix.

    segment_hierarchy is the full path from the segment-type root to
    this node (self included), e.g. ("All", "Type A").
    """
    geography: str
    segment_type: str
    segment: str
    segment_hierarchy: Tuple[str, ...]
    time_series: Dict[int, Number] = field(default_factory=dict)
    cagr: Optional[float] = None
    market_share: Optional[float] = None
    is_aggregated: bool = False
    aggregation_level: int = 0
    # Set only when the segment type has a B2B/B2C partition
    business_type: Optional[str] = None
    cagr_input: Union[str, int, float, None] = None

    @property
    def years(self) -> List[int]:
        return sorted(self.time_series)

    @property
    def parent(self) -> Optional[str]:
        return self.segment_hierarchy[-2] if len(self.segment_hierarchy) > 1 else None

    def value_for(self, year: int) -> Number:
        return self.time_series.get(year, 0)

    def hierarchy_levels(self, n: int = DEFAULT_LEVEL_COLUMNS) -> Dict[str, Optional[str]]:
        """level_1 .. level_n columns for tabular views (deeper levels cut)."""
        levels = {}
        for i in range(n):
            levels[f"level_{i + 1}"] = (
                self.segment_hierarchy[i] if i < len(self.segment_hierarchy) else None
            )
        return levels

    def to_dict(self) -> Dict[str, Any]:
        return {
            'geography': self.geography,
            'segment_type': self.segment_type,
            'segment': self.segment,
            'segment_hierarchy': list(self.segment_hierarchy),
            'time_series': dict(self.time_series),
            'cagr': self.cagr,
            'market_share': self.market_share,
            'is_aggregated': self.is_aggregated,
            'aggregation_level': self.aggregation_level,
            'business_type': self.business_type,
        }


# =============================================================================
# MATERIALIZER
# =============================================================================

class MatrixMaterializer:
    """
    Build the DataRecord list for a whole RawTree.

    Usage:
        materializer = MatrixMaterializer(report=report)
        builders = {}
        records = materializer.materialize(value_tree, share_year=2025, builders=builders)
        dimension = builders["By Type"].build()
    """

    def __init__(
        self,
        max_depth: int = DEFAULT_MAX_DEPTH,
        report: BuildReport = None,
        cancel_token: CancellationToken = None,
        cagr_decimals: int = 2,
        debug_timing: bool = False
    ):
        self.report = report if report is not None else BuildReport()
        self.walker = TreeWalker(
            max_depth=max_depth,
            report=self.report,
            cancel_token=cancel_token
        )
        self.calculator = AggregationCalculator(
            report=self.report,
            cagr_decimals=cagr_decimals,
            debug_timing=debug_timing
        )
        self.cancel_token = cancel_token
        self.debug_timing = debug_timing

    def materialize(
        self,
        raw_tree: Dict[str, Any],
        share_year: Optional[int] = None,
        builders: Optional[Dict[str, HierarchyBuilder]] = None
    ) -> List[DataRecord]:
        """
        Walk every geography x segment type and flatten it.

        Args:
            raw_tree: geography -> segment type -> nested segments
            share_year: Year used for sibling market share (None = no share)
            builders: If given, walked nodes are also fed to one
                HierarchyBuilder per segment type (created on demand)

        Returns:
            Ordered list of DataRecord
        """
        start_time = time.perf_counter()
        records: List[DataRecord] = []

        if not isinstance(raw_tree, dict):
            self.report.warn(
                WarningCode.INVALID_NODE,
                f"Expected an object of geographies, got {type(raw_tree).__name__}"
            )
            return records

        for geography, segment_types in raw_tree.items():
            if not isinstance(segment_types, dict):
                self.report.warn(
                    WarningCode.INVALID_NODE,
                    f"Geography value is {type(segment_types).__name__}, not an object",
                    (geography,)
                )
                continue

            for segment_type, subtree in segment_types.items():
                if self.cancel_token is not None:
                    self.cancel_token.raise_if_cancelled((geography, segment_type))

                nodes = list(self.walker.walk(subtree, context=(geography, segment_type)))
                if builders is not None:
                    builder = builders.get(segment_type)
                    if builder is None:
                        builder = builders[segment_type] = HierarchyBuilder(segment_type)
                    builder.add_nodes(nodes)

                records.extend(self.materialize_tree(geography, segment_type, nodes, share_year))

        if self.debug_timing:
            logger.debug(f"[materialize] {len(records)} records in {time.perf_counter() - start_time:.4f}s")

        return records

    def materialize_tree(
        self,
        geography: str,
        segment_type: str,
        nodes: List[TreeNode],
        share_year: Optional[int] = None
    ) -> List[DataRecord]:
        """Records for one geography x segment type from walked nodes."""
        hierarchy = SegmentHierarchy()
        leaves = {}
        for node in nodes:
            hierarchy.add_node(node.path)
            if isinstance(node, LeafNode):
                leaves[node.path] = node.data
            elif isinstance(node, BranchNode) and node.annotated:
                logger.debug(f"Recomputing serialized aggregate at {' > '.join(node.path)}")

        table = self.calculator.aggregate(hierarchy, leaves, context=(geography, segment_type))
        shares = calculate_market_shares(
            {path: n.time_series for path, n in table.items()}, share_year
        )

        return [
            DataRecord(
                geography=geography,
                segment_type=segment_type,
                segment=path[-1],
                segment_hierarchy=path,
                time_series=node.time_series,
                cagr=node.cagr,
                cagr_input=node.cagr_input,
                market_share=shares.get(path),
                is_aggregated=node.is_aggregated,
                aggregation_level=node.aggregation_level,
            )
            for path, node in table.items()
        ]


def assign_business_types(
    records: List[DataRecord],
    segments: Dict[str, SegmentDimension]
) -> List[DataRecord]:
    """
    Tag records of partitioned segment types with their B2B / B2C root.

    Segment types without a partition are left untagged, so business-type
    filters fall back to their whole hierarchy.
    """
    partitioned = {name for name, dim in segments.items() if dim.has_business_partition}
    if not partitioned:
        return records

    tagged = []
    for record in records:
        root = record.segment_hierarchy[0] if record.segment_hierarchy else None
        if record.segment_type in partitioned and root in BUSINESS_TYPES and record.business_type != root:
            record = replace(record, business_type=root)
        tagged.append(record)
    return tagged


def records_to_dicts(records: List[DataRecord]) -> List[Dict[str, Any]]:
    return [r.to_dict() for r in records]
