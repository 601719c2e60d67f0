# market_dashboard/aggregation_engine/serializer.py
"""
Reverse Serializer - flat matrix back to a nested RawTree

    records (geography, segment_type, segment_hierarchy, time_series, ...)
        -> {geography: {segment_type: {seg: {sub: {"2023": 100, "CAGR": "5.2%"}}}}}

Aggregated records also get "_aggregated": true and "_level": <level>.
The Tree Walker reads such nodes as branches and recomputes their
values, so a serialized tree re-ingests to the same matrix.

Export files:
- value.json                 value matrix
- volume.json                volume matrix (only if present)
- segmentation_analysis.json structure only, years stripped

VERSION: 1.2.0
CHANGELOG:
- v1.2.0: Leaf CAGR written back exactly as it was read ("5%" stays "5%")
- v1.1.0: include_aggregates=False writes parents as plain structure
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .constants import (
    AGGREGATED_MARKER,
    CAGR_KEY,
    DEFAULT_MAX_DEPTH,
    LEVEL_MARKER,
)
from .hierarchy import SegmentDimension
from .matrix import DataRecord

logger = logging.getLogger(__name__)


def format_cagr(cagr: Optional[float]) -> Optional[str]:
    """Computed CAGR 5.2 -> "5.2%"."""
    if cagr is None:
        return None
    return f"{cagr}%"


def _metadata_years(metadata: Any) -> Optional[set]:
    if metadata is None:
        return None
    years = metadata.get('years') if isinstance(metadata, dict) else getattr(metadata, 'years', None)
    return set(years) if years else None


# =============================================================================
# MATRIX -> TREE
# =============================================================================

def to_nested_tree(
    records: Iterable[DataRecord],
    metadata: Any = None,
    max_depth: int = DEFAULT_MAX_DEPTH,
    include_aggregates: bool = True
) -> Dict[str, Any]:
    """
    Rebuild the nested geography -> segment type -> segments tree.

    Args:
        records: Matrix records (any order; parents may follow children)
        metadata: Optional Metadata/dict; when it has `years`, only those
            years are written
        max_depth: Segment paths are cut to this many levels
        include_aggregates: False writes aggregated nodes as bare structure
            (no years, CAGR or markers)

    Returns:
        RawTree dict, JSON-ready
    """
    allowed_years = _metadata_years(metadata)
    tree: Dict[str, Any] = {}
    truncated = 0

    for record in records:
        path = tuple(record.segment_hierarchy)
        if len(path) > max_depth:
            path = path[:max_depth]
            truncated += 1

        node = tree.setdefault(record.geography, {}).setdefault(record.segment_type, {})
        for name in path:
            node = node.setdefault(name, {})

        if record.is_aggregated and not include_aggregates:
            continue

        for year in sorted(record.time_series):
            if allowed_years is not None and year not in allowed_years:
                continue
            node[str(year)] = record.time_series[year]

        if not record.is_aggregated and record.cagr_input is not None:
            node[CAGR_KEY] = record.cagr_input
        else:
            cagr = format_cagr(record.cagr)
            if cagr is not None:
                node[CAGR_KEY] = cagr

        if record.is_aggregated:
            node[AGGREGATED_MARKER] = True
            node[LEVEL_MARKER] = record.aggregation_level

    if truncated:
        logger.warning(f"{truncated} record path(s) cut to {max_depth} levels while serializing")

    return tree


# =============================================================================
# SEGMENTATION STRUCTURE
# =============================================================================

def extract_segmentation_structure(
    geographies: Iterable[str],
    segments: Dict[str, SegmentDimension],
    max_depth: int = DEFAULT_MAX_DEPTH
) -> Dict[str, Any]:
    """
    Structure-only tree: every geography gets every segment type's
    hierarchy, leaves are empty objects.

    Args:
        geographies: Geography names (all_geographies)
        segments: segment type -> SegmentDimension
        max_depth: Paths longer than this are cut

    Returns:
        {geography: {segment_type: {segment: {...}}}}
    """
    structure: Dict[str, Any] = {}
    for geography in geographies:
        geo_node = structure.setdefault(geography, {})
        for segment_type, dimension in segments.items():
            type_node = geo_node.setdefault(segment_type, {})
            for path in dimension.hierarchy.nodes:
                if len(path) > max_depth:
                    logger.warning(
                        f"Maximum hierarchy depth ({max_depth}) reached at path: {' > '.join(path)}"
                    )
                    continue
                node = type_node
                for name in path:
                    node = node.setdefault(name, {})
    return structure


# =============================================================================
# EXPORT FILES
# =============================================================================

def build_export_payloads(
    comparison_data,
    max_depth: int = DEFAULT_MAX_DEPTH,
    value_file: str = "value.json",
    volume_file: str = "volume.json",
    segmentation_file: str = "segmentation_analysis.json"
) -> Dict[str, str]:
    """
    JSON text per export file name.

    Args:
        comparison_data: ComparisonData from MarketDataProcessor
        max_depth: Depth cap for all three trees

    Returns:
        Dict file name -> JSON string (volume omitted when absent)
    """
    metadata = comparison_data.metadata
    payloads: Dict[str, str] = {}

    payloads[value_file] = json.dumps(
        to_nested_tree(comparison_data.value_records, metadata, max_depth=max_depth),
        indent=2
    )

    if comparison_data.volume_records:
        payloads[volume_file] = json.dumps(
            to_nested_tree(comparison_data.volume_records, metadata, max_depth=max_depth),
            indent=2
        )

    payloads[segmentation_file] = json.dumps(
        extract_segmentation_structure(
            comparison_data.geographies.all_geographies,
            comparison_data.segments,
            max_depth=max_depth
        ),
        indent=2
    )
    return payloads


def export_json_files(
    comparison_data,
    output_dir,
    max_depth: int = DEFAULT_MAX_DEPTH,
    value_file: str = "value.json",
    volume_file: str = "volume.json",
    segmentation_file: str = "segmentation_analysis.json"
) -> List[Path]:
    """
    Write value.json, volume.json (if present) and segmentation_analysis.json.

    Returns:
        Paths written, in that order
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    payloads = build_export_payloads(
        comparison_data,
        max_depth=max_depth,
        value_file=value_file,
        volume_file=volume_file,
        segmentation_file=segmentation_file
    )

    written = []
    for file_name, content in payloads.items():
        target = output_dir / file_name
        target.write_text(content, encoding='utf-8')
        written.append(target)
        logger.info(f"📁 Exported {file_name} ({len(content):,} bytes)")

    return written
