# market_dashboard/aggregation_engine/__init__.py
"""
Market Aggregation Engine

Turns nested geography -> segment type -> segments -> year JSON into a
flat geography x segment matrix, and serializes the matrix back.

VERSION: 2.1.0
CHANGELOG:
- v2.1.0: Dataset/DatasetHolder with background builds and cancellation
          - dataset.py: atomic swap of the current dataset
          - tree_walker.py: CancellationToken checked on every node
- v2.0.0: REWRITE of traversal and aggregation:
          - tree_walker.py: explicit stack instead of recursion,
            depth (20) and cycle guards raise warnings, not errors
          - hierarchy.py: context-qualified keys "segment::ancestor..."
            so equal names under different parents stay distinct
          - aggregation_calculator.py: CAGR computed from aggregated
            start/end values (children average only as fallback)
          - errors.py: BuildReport collects import issues
- v1.2.0: B2B/B2C partition of segment types
- v1.1.0: Reverse serializer (value.json / volume.json / segmentation_analysis.json)
"""

from .errors import (
    MarketDataError,
    DataLoadError,
    BuildCancelled,
    BuildWarning,
    BuildReport,
    WarningCode,
)

from .tree_walker import (
    CancellationToken,
    TreeWalker,
    LeafData,
    LeafNode,
    BranchNode,
    walk_tree,
    collect_years,
)

from .hierarchy import (
    SegmentHierarchy,
    SegmentDimension,
    HierarchyBuilder,
    partition_business_types,
)

from .aggregation_calculator import (
    AggregationCalculator,
    compute_cagr,
    calculate_market_shares,
)

from .matrix import DataRecord, MatrixMaterializer, assign_business_types

from .filters import (
    FilterSpec,
    filter_matrix,
    determine_aggregation_level,
    sum_by_year,
)

from .serializer import (
    to_nested_tree,
    extract_segmentation_structure,
    build_export_payloads,
    export_json_files,
)

from .data_loader import MarketDataLoader, LoadedInputs
from .data_processor import (
    MarketDataProcessor,
    ComparisonData,
    Metadata,
    GeographyDimension,
    BuildResult,
)
from .dataset import Dataset, DatasetHolder
from .metrics import MarketMetrics, records_to_dataframe
from .export import MarketMatrixExport

from .constants import (
    B2B,
    B2C,
    DEFAULT_MAX_DEPTH,
    DEFAULT_LEVEL_COLUMNS,
    DATA_TYPE_VALUE,
    DATA_TYPE_VOLUME,
)

__all__ = [
    # Errors & report
    'MarketDataError',
    'DataLoadError',
    'BuildCancelled',
    'BuildWarning',
    'BuildReport',
    'WarningCode',

    # Traversal
    'CancellationToken',
    'TreeWalker',
    'LeafData',
    'LeafNode',
    'BranchNode',
    'walk_tree',
    'collect_years',

    # Hierarchy
    'SegmentHierarchy',
    'SegmentDimension',
    'HierarchyBuilder',
    'partition_business_types',

    # Aggregation & matrix
    'AggregationCalculator',
    'compute_cagr',
    'calculate_market_shares',
    'DataRecord',
    'MatrixMaterializer',
    'assign_business_types',

    # Query
    'FilterSpec',
    'filter_matrix',
    'determine_aggregation_level',
    'sum_by_year',

    # Serialization
    'to_nested_tree',
    'extract_segmentation_structure',
    'build_export_payloads',
    'export_json_files',

    # Pipeline
    'MarketDataLoader',
    'LoadedInputs',
    'MarketDataProcessor',
    'ComparisonData',
    'Metadata',
    'GeographyDimension',
    'BuildResult',
    'Dataset',
    'DatasetHolder',

    # Reporting
    'MarketMetrics',
    'records_to_dataframe',
    'MarketMatrixExport',

    # Constants
    'B2B',
    'B2C',
    'DEFAULT_MAX_DEPTH',
    'DEFAULT_LEVEL_COLUMNS',
    'DATA_TYPE_VALUE',
    'DATA_TYPE_VOLUME',
]

__version__ = '2.1.0'
