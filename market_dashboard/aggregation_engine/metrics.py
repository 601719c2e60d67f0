# market_dashboard/aggregation_engine/metrics.py
"""
Market Metrics on filtered matrix records

VERSION: 1.2.0
CHANGELOG:
- v1.2.0: level_N columns are object dtype, missing levels stay None
- v1.1.0: find_fastest_growing computes CAGR for records without one
"""

import logging
from typing import Dict, List, Optional, Tuple
import pandas as pd
import numpy as np

from .aggregation_calculator import compute_cagr
from .constants import DEFAULT_LEVEL_COLUMNS, MATRIX_COLUMNS
from .matrix import DataRecord

logger = logging.getLogger(__name__)


def records_to_dataframe(
    records: List[DataRecord],
    level_columns: int = DEFAULT_LEVEL_COLUMNS,
    years: Optional[List[int]] = None
) -> pd.DataFrame:
    """
    Flatten records into one row each.

    Columns: MATRIX_COLUMNS, level_1..level_N, then one int column per year.
    Missing years are NaN (not zero) so gaps stay visible.
    """
    if years is None:
        years = sorted({y for r in records for y in r.time_series})
    level_names = [f"level_{i + 1}" for i in range(level_columns)]
    columns = MATRIX_COLUMNS + level_names + list(years)

    if not records:
        return pd.DataFrame(columns=columns)

    rows = []
    for record in records:
        row = {
            'geography': record.geography,
            'segment_type': record.segment_type,
            'segment': record.segment,
            'is_aggregated': record.is_aggregated,
            'aggregation_level': record.aggregation_level,
            'cagr': record.cagr,
            'market_share': record.market_share,
        }
        row.update(record.hierarchy_levels(level_columns))
        for year in years:
            row[year] = record.time_series.get(year, np.nan)
        rows.append(row)

    df = pd.DataFrame(rows, columns=columns)
    # Keep None for missing levels on every pandas version
    for name in level_names:
        df[name] = pd.Series([row[name] for row in rows], index=df.index, dtype=object)
    return df


class MarketMetrics:
    """
    Summary numbers for a set of records (usually a filter_matrix result).

    Usage:
        metrics = MarketMetrics(dataset.query(FilterSpec(segment_type="By Type", leaf_only=True)))
        metrics.calculate_totals(2025)      # {'total': ..., 'count': ..., 'average': ...}
        metrics.find_top_performers(2025)
    """

    def __init__(self, records: List[DataRecord]):
        self.records = list(records)

    @staticmethod
    def _label(record: DataRecord) -> str:
        return f"{record.geography} - {record.segment}"

    # =========================================================================
    # TOTALS
    # =========================================================================

    def calculate_totals(self, year: int) -> Dict:
        """Total / count / average for one year. Missing year counts as 0."""
        values = np.array([r.time_series.get(year, 0) for r in self.records], dtype=float)
        count = int(values.size)
        total = float(values.sum()) if count else 0.0
        return {
            'total': total,
            'count': count,
            'average': total / count if count else 0.0,
        }

    def year_totals(self) -> pd.Series:
        """Year -> sum over all records."""
        df = records_to_dataframe(self.records, level_columns=0)
        year_cols = [c for c in df.columns if isinstance(c, (int, np.integer))]
        if df.empty or not year_cols:
            return pd.Series(dtype=float)
        return df[year_cols].fillna(0).sum()

    # =========================================================================
    # RANKINGS
    # =========================================================================

    def find_top_performers(self, year: int, limit: int = 5) -> List[Dict]:
        performers = [
            {'name': self._label(r), 'value': r.time_series.get(year, 0)}
            for r in self.records
        ]
        performers.sort(key=lambda p: p['value'], reverse=True)
        return performers[:limit]

    def find_fastest_growing(self, limit: int = 5) -> List[Dict]:
        """Highest CAGR first; records without any CAGR are left out."""
        growing = []
        for record in self.records:
            cagr = record.cagr if record.cagr is not None else compute_cagr(record.time_series)
            if cagr is None:
                continue
            growing.append({'name': self._label(record), 'cagr': cagr})
        growing.sort(key=lambda g: g['cagr'], reverse=True)
        return growing[:limit]

    # =========================================================================
    # UNIQUE VALUES
    # =========================================================================

    def get_unique_geographies(self) -> List[str]:
        return list(dict.fromkeys(r.geography for r in self.records))

    def get_unique_segments(self) -> List[str]:
        """
        Segment names, parents preferred: a segment is left out when its
        parent is also in the records.
        """
        present = {tuple(r.segment_hierarchy) for r in self.records}
        segments = [
            r.segment for r in self.records
            if tuple(r.segment_hierarchy[:-1]) not in present
        ]
        return list(dict.fromkeys(segments))

    # =========================================================================
    # TABLE
    # =========================================================================

    def prepare_table_data(self, year_range: Tuple[int, int]) -> pd.DataFrame:
        """
        Comparison table rows with growth between the range bounds.

        Growth = (end - start) / start * 100, 0 when start is not positive.
        """
        start_year, end_year = year_range
        columns = ['geography', 'segment', 'base_value', 'forecast_value', 'cagr', 'growth', 'time_series']
        if not self.records:
            return pd.DataFrame(columns=columns)

        df = pd.DataFrame({
            'geography': [r.geography for r in self.records],
            'segment': [r.segment for r in self.records],
            'base_value': [r.time_series.get(start_year, 0) for r in self.records],
            'forecast_value': [r.time_series.get(end_year, 0) for r in self.records],
            'cagr': [r.cagr for r in self.records],
            'time_series': [
                [r.time_series.get(y, 0) for y in range(start_year, end_year + 1)]
                for r in self.records
            ],
        })

        base = df['base_value'].astype(float)
        forecast = df['forecast_value'].astype(float)
        safe_base = base.where(base > 0, 1.0)
        df['growth'] = np.where(base > 0, (forecast - base) / safe_base * 100, 0.0)

        return df[columns]
