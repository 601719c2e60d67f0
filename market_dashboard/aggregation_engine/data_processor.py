# market_dashboard/aggregation_engine/data_processor.py
"""
Data Processor for the Market Aggregation Engine

VERSION: 2.0.0

Raw trees in, ComparisonData + BuildReport out:

    value/volume/segmentation RawTree
        -> Tree Walker -> Hierarchy Builder (+ B2B/B2C partition)
        -> Aggregation Calculator -> Matrix Materializer
        -> ComparisonData {metadata, dimensions, data}

Structure (geographies, segment types, dimension items) comes from the
segmentation tree when one is given, otherwise from the value tree.
Numbers always come from value/volume.

Every build creates new objects; nothing is shared between builds.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..config import config
from .constants import DATA_TYPE_VALUE, DATA_TYPE_VOLUME
from .data_loader import LoadedInputs
from .errors import BuildReport, DataLoadError, WarningCode
from .hierarchy import HierarchyBuilder, SegmentDimension
from .matrix import DataRecord, MatrixMaterializer, assign_business_types
from .tree_walker import CancellationToken, TreeWalker, collect_years

logger = logging.getLogger(__name__)


# =============================================================================
# OUTPUT TYPES
# =============================================================================

@dataclass
class Metadata:
    market_name: str
    years: List[int] = field(default_factory=list)
    start_year: Optional[int] = None
    base_year: Optional[int] = None
    forecast_year: Optional[int] = None
    historical_years: List[int] = field(default_factory=list)
    forecast_years: List[int] = field(default_factory=list)
    currency: str = "USD"
    value_unit: str = "Million"
    volume_unit: str = "Units"
    market_type: str = "Market Analysis"
    industry: str = "General"
    has_value: bool = False
    has_volume: bool = False

    @classmethod
    def from_years(cls, market_name: str, years: List[int], **kwargs) -> 'Metadata':
        """base_year = floor((start + forecast) / 2); historical <= base < forecast."""
        years = sorted(set(years))
        if not years:
            return cls(market_name=market_name, **kwargs)
        start, end = years[0], years[-1]
        base = (start + end) // 2
        return cls(
            market_name=market_name,
            years=years,
            start_year=start,
            base_year=base,
            forecast_year=end,
            historical_years=[y for y in years if y <= base],
            forecast_years=[y for y in years if y > base],
            **kwargs
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'market_name': self.market_name,
            'market_type': self.market_type,
            'industry': self.industry,
            'years': list(self.years),
            'start_year': self.start_year,
            'base_year': self.base_year,
            'forecast_year': self.forecast_year,
            'historical_years': list(self.historical_years),
            'forecast_years': list(self.forecast_years),
            'currency': self.currency,
            'value_unit': self.value_unit,
            'volume_unit': self.volume_unit,
            'has_value': self.has_value,
            'has_volume': self.has_volume,
        }


@dataclass
class GeographyDimension:
    """
    Geographies found in the input. A single geography is treated as global;
    regions/countries stay empty until a caller classifies them.
    """
    all_geographies: List[str] = field(default_factory=list)
    global_: List[str] = field(default_factory=list)
    regions: List[str] = field(default_factory=list)
    countries: Dict[str, List[str]] = field(default_factory=dict)

    @classmethod
    def from_names(cls, names: List[str]) -> 'GeographyDimension':
        names = list(names)
        return cls(all_geographies=names, global_=names if len(names) == 1 else [])

    def to_dict(self) -> Dict[str, Any]:
        return {
            'global': list(self.global_),
            'regions': list(self.regions),
            'countries': {k: list(v) for k, v in self.countries.items()},
            'all_geographies': list(self.all_geographies),
        }


@dataclass
class ComparisonData:
    metadata: Metadata
    geographies: GeographyDimension
    segments: Dict[str, SegmentDimension]
    value_records: List[DataRecord] = field(default_factory=list)
    volume_records: List[DataRecord] = field(default_factory=list)

    def records(self, data_type: str = DATA_TYPE_VALUE) -> List[DataRecord]:
        if data_type == DATA_TYPE_VOLUME:
            return self.volume_records
        return self.value_records

    @property
    def segment_types(self) -> List[str]:
        return list(self.segments)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'metadata': self.metadata.to_dict(),
            'dimensions': {
                'geographies': self.geographies.to_dict(),
                'segments': {name: dim.to_dict() for name, dim in self.segments.items()},
            },
            'data': {
                'value': {'geography_segment_matrix': [r.to_dict() for r in self.value_records]},
                'volume': {'geography_segment_matrix': [r.to_dict() for r in self.volume_records]},
            },
        }


@dataclass
class BuildResult:
    data: ComparisonData
    report: BuildReport


# =============================================================================
# PROCESSOR
# =============================================================================

class MarketDataProcessor:
    """
    Build ComparisonData from raw trees.

    Usage:
        processor = MarketDataProcessor()
        result = processor.process(value_tree, volume_tree)
        result.data.value_records
        result.report.summary()   # "2 issues detected while importing"
    """

    def __init__(
        self,
        max_depth: Optional[int] = None,
        cagr_decimals: Optional[int] = None,
        debug_timing: Optional[bool] = None
    ):
        """
        Args:
            max_depth: Traversal depth cap (default from config)
            cagr_decimals: Rounding of computed CAGR (default from config)
            debug_timing: Log step timings (default from config)
        """
        engine_config = config.get_engine_config()
        self.max_depth = max_depth if max_depth is not None else engine_config.max_depth
        self.cagr_decimals = cagr_decimals if cagr_decimals is not None else engine_config.cagr_decimals
        self.debug_timing = debug_timing if debug_timing is not None else engine_config.debug_timing
        self.market_config = config.get_market_config()

    def process_inputs(self, inputs: LoadedInputs, cancel_token: CancellationToken = None) -> BuildResult:
        """Build from MarketDataLoader output, keeping its load warnings."""
        return self.process(
            inputs.value_tree,
            volume_tree=inputs.volume_tree,
            segmentation_tree=inputs.segmentation_tree,
            cancel_token=cancel_token,
            report=inputs.report
        )

    def process(
        self,
        value_tree: Dict[str, Any],
        volume_tree: Optional[Dict[str, Any]] = None,
        segmentation_tree: Optional[Dict[str, Any]] = None,
        cancel_token: CancellationToken = None,
        report: BuildReport = None
    ) -> BuildResult:
        """
        Run the full pipeline.

        Args:
            value_tree: Required RawTree of values
            volume_tree: Optional RawTree of volumes
            segmentation_tree: Optional structure-only RawTree
            cancel_token: Checked at every node; raises BuildCancelled
            report: Existing report to append to

        Returns:
            BuildResult(data, report)

        Raises:
            DataLoadError: value tree missing or without geographies
            BuildCancelled: cancel_token fired
        """
        start_time = time.perf_counter()
        report = report if report is not None else BuildReport()

        if not isinstance(value_tree, dict) or not value_tree:
            raise DataLoadError(
                "Value data is required but is missing or empty",
                reason=DataLoadError.EMPTY if isinstance(value_tree, dict) else DataLoadError.NOT_FOUND,
                source=DATA_TYPE_VALUE
            )

        # Years: union over value, volume and structure
        years = sorted(
            set(collect_years(value_tree, self.max_depth))
            | set(collect_years(volume_tree, self.max_depth))
            | set(collect_years(segmentation_tree, self.max_depth))
        )
        if not years:
            logger.warning("No year keys found in any input")

        structure_tree = segmentation_tree if segmentation_tree else value_tree
        geography_names = self._extract_geographies(structure_tree)
        if not geography_names and structure_tree is not value_tree:
            logger.warning("No geographies found in segmentation data, trying value data...")
            geography_names = self._extract_geographies(value_tree)
        if not geography_names:
            raise DataLoadError(
                "No geographies found in any data source",
                reason=DataLoadError.INVALID_STRUCTURE,
                source=DATA_TYPE_VALUE
            )

        base_year = (years[0] + years[-1]) // 2 if years else None

        builders: Dict[str, HierarchyBuilder] = {}
        if segmentation_tree:
            self._seed_structure(segmentation_tree, builders, report, cancel_token)

        materializer = MatrixMaterializer(
            max_depth=self.max_depth,
            report=report,
            cancel_token=cancel_token,
            cagr_decimals=self.cagr_decimals,
            debug_timing=self.debug_timing
        )

        step_start = time.perf_counter()
        value_records = materializer.materialize(value_tree, share_year=base_year, builders=builders)
        if self.debug_timing:
            logger.debug(f"[process] value matrix: {time.perf_counter() - step_start:.4f}s")

        volume_records: List[DataRecord] = []
        if volume_tree:
            step_start = time.perf_counter()
            volume_records = materializer.materialize(volume_tree, share_year=base_year, builders=builders)
            if self.debug_timing:
                logger.debug(f"[process] volume matrix: {time.perf_counter() - step_start:.4f}s")

        segments = {name: builder.build() for name, builder in builders.items()}
        value_records = assign_business_types(value_records, segments)
        volume_records = assign_business_types(volume_records, segments)

        metadata = Metadata.from_years(
            ', '.join(geography_names) or 'Unknown Market',
            years,
            currency=self.market_config.currency,
            value_unit=self.market_config.value_unit,
            volume_unit=self.market_config.volume_unit,
            market_type=self.market_config.market_type,
            industry=self.market_config.industry,
            has_value=len(value_records) > 0,
            has_volume=len(volume_records) > 0,
        )

        data = ComparisonData(
            metadata=metadata,
            geographies=GeographyDimension.from_names(geography_names),
            segments=segments,
            value_records=value_records,
            volume_records=volume_records,
        )

        elapsed = time.perf_counter() - start_time
        logger.info(
            f"📊 Build complete: {len(value_records)} value / {len(volume_records)} volume records, "
            f"{len(segments)} segment types, {len(report.warnings)} issues ({elapsed:.2f}s)"
        )
        return BuildResult(data=data, report=report)

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _extract_geographies(tree: Dict[str, Any]) -> List[str]:
        return [name for name, value in tree.items() if isinstance(value, dict) and value]

    def _seed_structure(
        self,
        segmentation_tree: Dict[str, Any],
        builders: Dict[str, HierarchyBuilder],
        report: BuildReport,
        cancel_token: Optional[CancellationToken]
    ):
        """Register segmentation paths first so dimension order follows structure."""
        walker = TreeWalker(
            max_depth=self.max_depth,
            report=report,
            cancel_token=cancel_token,
            structure_only=True
        )
        for geography, segment_types in segmentation_tree.items():
            if not isinstance(segment_types, dict):
                report.warn(
                    WarningCode.INVALID_NODE,
                    f"Segmentation geography value is {type(segment_types).__name__}, not an object",
                    (geography,)
                )
                continue
            for segment_type, subtree in segment_types.items():
                builder = builders.get(segment_type)
                if builder is None:
                    builder = builders[segment_type] = HierarchyBuilder(segment_type)
                builder.add_nodes(walker.walk(subtree, context=(geography, segment_type)))
