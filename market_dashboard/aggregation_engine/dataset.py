# market_dashboard/aggregation_engine/dataset.py
"""
Dataset lifecycle: build -> serve queries -> replace on new upload

Dataset is an owned, read-only value (matrix + dimensions + report).
DatasetHolder keeps the "current" dataset; replacing it is a single
reference assignment, so readers always see either the old or the new
dataset, never a mix.

Builds may run on a background thread. Each build gets its own
CancellationToken; starting a new build cancels the previous one, and
only the newest build is allowed to swap itself in.

VERSION: 1.1.0
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from ..config import config
from .constants import DATA_TYPE_VALUE
from .data_loader import MarketDataLoader
from .data_processor import BuildResult, ComparisonData, MarketDataProcessor
from .errors import BuildReport
from .filters import FilterSpec, filter_matrix, sum_by_year
from .hierarchy import SegmentDimension
from .matrix import DataRecord
from .tree_walker import CancellationToken

logger = logging.getLogger(__name__)

Number = Union[int, float]


# =============================================================================
# DATASET
# =============================================================================

@dataclass(frozen=True)
class Dataset:
    """One finished build. Queries never modify it."""
    data: ComparisonData
    report: BuildReport
    built_at: datetime = field(default_factory=datetime.now)
    label: str = ""

    @classmethod
    def from_result(cls, result: BuildResult, label: str = "") -> 'Dataset':
        return cls(data=result.data, report=result.report, label=label)

    def records(self, data_type: str = DATA_TYPE_VALUE) -> List[DataRecord]:
        return self.data.records(data_type)

    def query(self, spec: FilterSpec, data_type: str = DATA_TYPE_VALUE) -> List[DataRecord]:
        return filter_matrix(self.records(data_type), spec)

    def dimension(self, segment_type: str) -> Optional[SegmentDimension]:
        return self.data.segments.get(segment_type)

    def leaf_totals(self, spec: FilterSpec, data_type: str = DATA_TYPE_VALUE) -> Dict[int, Number]:
        """Year totals of the query, always leaf-only."""
        leaf_spec = spec if spec.leaf_only else replace(spec, leaf_only=True)
        return sum_by_year(self.query(leaf_spec, data_type), spec.year_range)


# =============================================================================
# HOLDER
# =============================================================================

class DatasetHolder:
    """
    Owner of the current Dataset.

    Usage:
        holder = DatasetHolder()
        holder.build(value_source, volume_source)          # synchronous
        future = holder.build_in_background(value_source)  # worker thread
        future.result()
        dataset = holder.current
    """

    def __init__(
        self,
        processor: MarketDataProcessor = None,
        loader: MarketDataLoader = None,
        max_workers: Optional[int] = None
    ):
        self.processor = processor or MarketDataProcessor()
        self.loader = loader or MarketDataLoader(debug_timing=self.processor.debug_timing)
        self._max_workers = max_workers or config.get_app_setting("BACKGROUND_WORKERS", 1)

        self._current: Optional[Dataset] = None
        self._lock = threading.Lock()
        self._generation = 0
        self._token: Optional[CancellationToken] = None
        self._executor: Optional[ThreadPoolExecutor] = None

    # ==================== CURRENT DATASET ====================

    @property
    def current(self) -> Optional[Dataset]:
        return self._current

    def is_current(self, dataset: Optional[Dataset]) -> bool:
        """False for a build that finished after a newer one was started."""
        return dataset is not None and self._current is dataset

    def swap(self, dataset: Optional[Dataset]) -> Optional[Dataset]:
        """Replace the current dataset, returning the previous one."""
        with self._lock:
            previous = self._current
            self._current = dataset
        return previous

    def clear(self):
        self.cancel()
        self.swap(None)

    # ==================== BUILDS ====================

    def _start_build(self) -> tuple:
        with self._lock:
            if self._token is not None:
                self._token.cancel()
            self._generation += 1
            self._token = CancellationToken()
            return self._generation, self._token

    def _run_build(
        self,
        generation: int,
        token: CancellationToken,
        value: Any,
        volume: Any,
        segmentation: Any,
        label: str
    ) -> Dataset:
        inputs = self.loader.load(value, volume=volume, segmentation=segmentation)
        result = self.processor.process_inputs(inputs, cancel_token=token)
        dataset = Dataset.from_result(result, label=label)

        with self._lock:
            if generation == self._generation:
                self._current = dataset
                logger.info(f"✅ Dataset swapped in: {label or 'unnamed'} ({result.report.summary()})")
            else:
                logger.info(f"Discarding superseded build {generation} (latest is {self._generation})")
        return dataset

    def build(self, value: Any, volume: Any = None, segmentation: Any = None, label: str = "") -> Dataset:
        """Load, build and swap in a new dataset on the calling thread."""
        generation, token = self._start_build()
        return self._run_build(generation, token, value, volume, segmentation, label)

    def build_in_background(
        self,
        value: Any,
        volume: Any = None,
        segmentation: Any = None,
        label: str = ""
    ) -> Future:
        """
        Same as build() on a worker thread.

        Returns:
            Future resolving to the Dataset, or raising DataLoadError /
            BuildCancelled
        """
        generation, token = self._start_build()
        return self._get_executor().submit(
            self._run_build, generation, token, value, volume, segmentation, label
        )

    def cancel(self):
        """Cancel the running build, if any. The current dataset is kept."""
        with self._lock:
            if self._token is not None:
                self._token.cancel()
                logger.info("Build cancellation requested")

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            with self._lock:
                if self._executor is None:
                    self._executor = ThreadPoolExecutor(
                        max_workers=self._max_workers,
                        thread_name_prefix="market-build"
                    )
        return self._executor

    def shutdown(self, wait: bool = True):
        self.cancel()
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None
