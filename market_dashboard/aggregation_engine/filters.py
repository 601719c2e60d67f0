# market_dashboard/aggregation_engine/filters.py
"""
Query/Filter Layer for the geography x segment matrix

filter_matrix() is a single linear pass that returns the SAME record
objects (no copies of time series). A record matches when:
- geography in selected geographies (empty = all)
- segment_type equals the requested one (None = any)
- segment in selected segments (empty = all), or one of its ancestors
  is selected when match_descendants is set
- its years overlap the year range
- its business-type partition matches (records outside any
  partition are kept)
- aggregation_level matches, when a level is requested

leaf_only drops aggregated records, which is what keeps KPI totals free
of double counting (a parent and its children are never both summed).

The layer is stateless. A caller that gets zero rows may relax the
query (without_geographies(), then without_segment_type()) and ask again.

VERSION: 1.3.0
CHANGELOG:
- v1.3.0: Added aggregation_level filter and determine_aggregation_level()
- v1.2.0: match_descendants: selecting a parent keeps its sub-segments
- v1.1.0: FilterSpec is immutable; relaxed queries are new specs
"""

import logging
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple, Union

from .constants import BUSINESS_TYPES
from .matrix import DataRecord

logger = logging.getLogger(__name__)

Number = Union[int, float]


# =============================================================================
# FILTER SPEC
# =============================================================================

@dataclass(frozen=True)
class FilterSpec:
    """
    Declarative query over the matrix.

    Example:
        spec = FilterSpec(
            segment_type="By Type",
            geographies={"USA"},
            year_range=(2023, 2030),
            leaf_only=True,
        )
    """
    segment_type: Optional[str] = None
    geographies: FrozenSet[str] = field(default_factory=frozenset)
    segments: FrozenSet[str] = field(default_factory=frozenset)
    business_type: Optional[str] = None
    year_range: Optional[Tuple[int, int]] = None
    leaf_only: bool = False
    aggregation_level: Optional[int] = None
    match_descendants: bool = False

    def __post_init__(self):
        object.__setattr__(self, 'geographies', frozenset(self.geographies or ()))
        object.__setattr__(self, 'segments', frozenset(self.segments or ()))

        if self.business_type is not None and self.business_type not in BUSINESS_TYPES:
            raise ValueError(
                f"business_type must be one of {BUSINESS_TYPES}, got {self.business_type!r}"
            )

        if self.year_range is not None:
            start, end = self.year_range
            if start > end:
                raise ValueError(f"Invalid year range: {start} > {end}")
            object.__setattr__(self, 'year_range', (int(start), int(end)))

    # -------------------------------------------------------------------------
    # Relaxed variants (caller-driven fallback)
    # -------------------------------------------------------------------------

    def without_geographies(self) -> 'FilterSpec':
        return replace(self, geographies=frozenset())

    def without_segment_type(self) -> 'FilterSpec':
        return replace(self, segment_type=None, segments=frozenset())

    def with_level(self, level: Optional[int]) -> 'FilterSpec':
        return replace(self, aggregation_level=level)

    def is_empty(self) -> bool:
        """True when nothing is filtered out."""
        return self == FilterSpec()


# =============================================================================
# MATCHING
# =============================================================================

def _years_overlap(record: DataRecord, year_range: Optional[Tuple[int, int]]) -> bool:
    if year_range is None:
        return True
    start, end = year_range
    return any(start <= year <= end for year in record.time_series)


def _segment_matches(record: DataRecord, spec: FilterSpec) -> bool:
    if not spec.segments:
        return True
    if record.segment in spec.segments:
        return True
    if spec.match_descendants:
        return any(name in spec.segments for name in record.segment_hierarchy[:-1])
    return False


def record_matches(record: DataRecord, spec: FilterSpec) -> bool:
    """Single-record predicate used by filter_matrix()."""
    if spec.geographies and record.geography not in spec.geographies:
        return False
    if spec.segment_type is not None and record.segment_type != spec.segment_type:
        return False
    if spec.leaf_only and record.is_aggregated:
        return False
    if spec.aggregation_level is not None and record.aggregation_level != spec.aggregation_level:
        return False
    if spec.business_type is not None:
        record_type = record.business_type
        if record_type is not None and record_type != spec.business_type:
            return False
    if not _segment_matches(record, spec):
        return False
    return _years_overlap(record, spec.year_range)


def filter_matrix(records: Iterable[DataRecord], spec: FilterSpec) -> List[DataRecord]:
    """
    Records matching `spec`, in matrix order.

    Args:
        records: Materialized matrix (or a previous filter result)
        spec: FilterSpec

    Returns:
        New list holding the matching record objects
    """
    return [r for r in records if record_matches(r, spec)]


# =============================================================================
# LEVEL DETECTION
# =============================================================================

def determine_aggregation_level(
    records: Iterable[DataRecord],
    selected_segments: Iterable[str],
    segment_type: Optional[str]
) -> Optional[int]:
    """
    Guess the aggregation level a segment selection refers to.

    - Nothing selected, or nothing found: None (show all levels)
    - Selected segments have aggregated records: the most common level
      among them (ties go to the shallower level)
    - All selected records on one level: that level
    - Mixed levels: None

    Args:
        records: Matrix records
        selected_segments: Segment names picked by the user
        segment_type: Segment type to look in

    Returns:
        Level (0 = roots) or None
    """
    selected = set(selected_segments or ())
    if not selected:
        return None

    matched = [
        r for r in records
        if r.segment in selected and (segment_type is None or r.segment_type == segment_type)
    ]
    if not matched:
        return None

    aggregated_levels = [r.aggregation_level for r in matched if r.is_aggregated]
    if aggregated_levels:
        counts = Counter(aggregated_levels)
        best = max(counts.values())
        return min(level for level, count in counts.items() if count == best)

    levels = {r.aggregation_level for r in matched}
    if len(levels) > 1:
        return None
    return levels.pop()


# =============================================================================
# VIEW HELPERS
# =============================================================================

def clip_time_series(record: DataRecord, year_range: Optional[Tuple[int, int]]) -> Dict[int, Number]:
    """Copy of a record's series restricted to the year range."""
    if year_range is None:
        return dict(record.time_series)
    start, end = year_range
    return {y: v for y, v in record.time_series.items() if start <= y <= end}


def sum_by_year(
    records: Iterable[DataRecord],
    year_range: Optional[Tuple[int, int]] = None
) -> Dict[int, Number]:
    """
    Year-wise total of records.

    Callers summing a hierarchy should pass a leaf_only result,
    otherwise parents and children are both counted.
    """
    totals: Dict[int, Number] = {}
    for record in records:
        for year, value in clip_time_series(record, year_range).items():
            totals[year] = totals.get(year, 0) + value
    return {y: totals[y] for y in sorted(totals)}


def filter_summary(spec: FilterSpec) -> str:
    """Human readable one-liner of active filters, for captions."""
    parts = []
    if spec.segment_type:
        parts.append(f"Segment type: {spec.segment_type}")
    if spec.geographies:
        parts.append(f"Geographies: {', '.join(sorted(spec.geographies))}")
    if spec.segments:
        parts.append(f"Segments: {', '.join(sorted(spec.segments))}")
    if spec.business_type:
        parts.append(f"Business type: {spec.business_type}")
    if spec.year_range:
        parts.append(f"Years: {spec.year_range[0]}-{spec.year_range[1]}")
    if spec.aggregation_level is not None:
        parts.append(f"Level: {spec.aggregation_level}")
    if spec.leaf_only:
        parts.append("Leaf segments only")
    return " | ".join(parts) if parts else "No filters"
