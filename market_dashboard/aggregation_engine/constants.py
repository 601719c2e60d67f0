# market_dashboard/aggregation_engine/constants.py
"""
Constants for the Market Aggregation Engine

VERSION: 1.2.0
CHANGELOG:
- v1.2.0: Added EXCEL_STYLES and MATRIX_COLUMNS for the Excel report
- v1.1.0: Added structure-only marker keys (_aggregated, _level)
"""

import re

# =====================================================================
# TREE SHAPE
# =====================================================================

# 4-digit year keys ("2023") mark a node as a leaf
YEAR_KEY_PATTERN = re.compile(r"^\d{4}$")

CAGR_KEY = "CAGR"
AGGREGATED_MARKER = "_aggregated"
LEVEL_MARKER = "_level"

# Keys written by the serializer that never denote a child segment
MARKER_KEYS = frozenset({AGGREGATED_MARKER, LEVEL_MARKER})

# Plausible year bounds when extracting metadata
MIN_YEAR = 1900
MAX_YEAR = 2100

# =====================================================================
# LIMITS
# =====================================================================

DEFAULT_MAX_DEPTH = 20

# Flattened level_1 .. level_N columns in tabular views
DEFAULT_LEVEL_COLUMNS = 10

# Separator for context-qualified hierarchy keys: "segment::ancestor1::ancestor2"
CONTEXT_SEPARATOR = "::"

# =====================================================================
# BUSINESS TYPES
# =====================================================================

B2B = "B2B"
B2C = "B2C"
BUSINESS_TYPES = (B2B, B2C)

# =====================================================================
# DATA TYPES
# =====================================================================

DATA_TYPE_VALUE = "value"
DATA_TYPE_VOLUME = "volume"
DATA_TYPES = (DATA_TYPE_VALUE, DATA_TYPE_VOLUME)

SOURCE_SEGMENTATION = "segmentation"

# =====================================================================
# EXCEL EXPORT
# =====================================================================

EXCEL_STYLES = {
    "header_fill_color": "1f77b4",
    "header_font_color": "FFFFFF",
    "aggregated_fill_color": "EAF2FB",
    "number_format": '#,##0.00',
    "percent_format": '0.00',
}

MATRIX_COLUMNS = [
    'geography',
    'segment_type',
    'segment',
    'is_aggregated',
    'aggregation_level',
    'cagr',
    'market_share',
]

MATRIX_COLUMN_LABELS = {
    'geography': 'Geography',
    'segment_type': 'Segment Type',
    'segment': 'Segment',
    'is_aggregated': 'Aggregated',
    'aggregation_level': 'Level',
    'cagr': 'CAGR (%)',
    'market_share': 'Market Share (%)',
}
