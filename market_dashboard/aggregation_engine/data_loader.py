# market_dashboard/aggregation_engine/data_loader.py
"""
Input Loader for the Market Aggregation Engine

VERSION: 1.2.0

CHANGELOG:
- v1.2.0: Accepts Streamlit UploadedFile (anything with getvalue()/read())
- v1.1.0: Segmentation falls back to the value tree
- v1.0.0: Initial loader

Loads the three RawTree inputs from file paths, raw bytes/str, file-like
objects or already-parsed dicts.

Principles:
1. value is REQUIRED: missing -> DataLoadError(not_found),
   present but empty/unparseable -> DataLoadError(empty/unparseable)
2. volume and segmentation are OPTIONAL: problems become warnings in the
   BuildReport and the slice stays empty
3. segmentation falls back to the value tree when absent or unusable
"""

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .constants import DATA_TYPE_VALUE, DATA_TYPE_VOLUME, SOURCE_SEGMENTATION
from .errors import BuildReport, DataLoadError, WarningCode

logger = logging.getLogger(__name__)


@dataclass
class LoadedInputs:
    """Parsed inputs plus the warnings raised while loading them."""
    value_tree: Dict[str, Any]
    volume_tree: Optional[Dict[str, Any]] = None
    segmentation_tree: Optional[Dict[str, Any]] = None
    segmentation_from_value: bool = False
    report: BuildReport = field(default_factory=BuildReport)
    sources: Dict[str, Optional[str]] = field(default_factory=dict)

    @property
    def has_volume(self) -> bool:
        return bool(self.volume_tree)


class MarketDataLoader:
    """
    Load value / volume / segmentation JSON.

    Usage:
        loader = MarketDataLoader()
        inputs = loader.load("data/value.json", volume="data/volume.json")
        inputs.value_tree["USA"]["By Type"]

        # Streamlit uploads
        inputs = loader.load(value_upload, volume=volume_upload)
    """

    def __init__(self, debug_timing: bool = False):
        self.debug_timing = debug_timing

    # =========================================================================
    # PUBLIC
    # =========================================================================

    def load(
        self,
        value: Any,
        volume: Any = None,
        segmentation: Any = None,
        report: BuildReport = None
    ) -> LoadedInputs:
        """
        Load all inputs.

        Args:
            value: Required value tree source
            volume: Optional volume tree source
            segmentation: Optional structure-only tree source
            report: BuildReport to extend (a new one if omitted)

        Returns:
            LoadedInputs

        Raises:
            DataLoadError: value source missing, empty or unparseable
        """
        start_time = time.perf_counter()
        report = report if report is not None else BuildReport()

        value_tree = self.load_required(value, DATA_TYPE_VALUE)
        volume_tree = self.load_optional(volume, DATA_TYPE_VOLUME, report)
        segmentation_tree = self.load_optional(segmentation, SOURCE_SEGMENTATION, report)

        segmentation_from_value = segmentation_tree is None
        if segmentation_from_value:
            logger.info("No usable segmentation input, using value data for structure")

        if self.debug_timing:
            logger.debug(f"[load] inputs parsed in {time.perf_counter() - start_time:.4f}s")

        return LoadedInputs(
            value_tree=value_tree,
            volume_tree=volume_tree,
            segmentation_tree=segmentation_tree,
            segmentation_from_value=segmentation_from_value,
            report=report,
            sources={
                DATA_TYPE_VALUE: _describe(value),
                DATA_TYPE_VOLUME: _describe(volume),
                SOURCE_SEGMENTATION: _describe(segmentation),
            },
        )

    def load_required(self, source: Any, name: str = DATA_TYPE_VALUE) -> Dict[str, Any]:
        """Parse a required tree; every failure is a DataLoadError."""
        if source is None:
            raise DataLoadError(
                f"{name.title()} JSON file is required but was not provided",
                reason=DataLoadError.NOT_FOUND,
                source=name
            )
        tree = self._parse(source, name)
        logger.info(f"✅ Loaded {name} data: {len(tree)} geographies")
        return tree

    def load_optional(self, source: Any, name: str, report: BuildReport) -> Optional[Dict[str, Any]]:
        """Parse an optional tree; failures become report warnings and None."""
        if source is None:
            logger.debug(f"No {name} input provided")
            return None
        try:
            tree = self._parse(source, name)
        except DataLoadError as e:
            code = (
                WarningCode.MISSING_OPTIONAL_INPUT
                if e.reason == DataLoadError.NOT_FOUND
                else WarningCode.UNPARSEABLE_OPTIONAL_INPUT
            )
            report.warn(code, e.message, (name,))
            return None
        logger.info(f"✅ Loaded {name} data: {len(tree)} geographies")
        return tree

    # =========================================================================
    # PARSING
    # =========================================================================

    def _parse(self, source: Any, name: str) -> Dict[str, Any]:
        if isinstance(source, dict):
            tree = source
        else:
            text, label = self._read_text(source, name)
            if not text.strip():
                raise DataLoadError(
                    f"{name.title()} JSON file is empty: {label}",
                    reason=DataLoadError.EMPTY,
                    source=name,
                    path=label
                )
            try:
                tree = json.loads(text)
            except json.JSONDecodeError as e:
                raise DataLoadError(
                    f"Failed to parse {name} JSON ({label}): {e}",
                    reason=DataLoadError.UNPARSEABLE,
                    source=name,
                    path=label
                ) from e

        if not isinstance(tree, dict):
            raise DataLoadError(
                f"{name.title()} JSON must be an object keyed by geography, "
                f"got {type(tree).__name__}",
                reason=DataLoadError.INVALID_STRUCTURE,
                source=name,
                path=_describe(source)
            )
        if not tree:
            raise DataLoadError(
                f"{name.title()} JSON contains no geographies",
                reason=DataLoadError.EMPTY,
                source=name,
                path=_describe(source)
            )
        return tree

    def _read_text(self, source: Any, name: str) -> Tuple[str, str]:
        """Return (text, label) for a path, bytes, str or file-like source."""
        if isinstance(source, Path) or (isinstance(source, str) and not _looks_like_json(source)):
            path = Path(source)
            if not path.is_file():
                raise DataLoadError(
                    f"{name.title()} JSON file not found: {path}",
                    reason=DataLoadError.NOT_FOUND,
                    source=name,
                    path=str(path)
                )
            logger.info(f"📂 Reading {name} JSON: {path} ({path.stat().st_size / 1024 / 1024:.2f} MB)")
            return _decode(path.read_bytes(), name, str(path)), str(path)

        if isinstance(source, str):
            return source, "<text>"

        if isinstance(source, (bytes, bytearray)):
            return _decode(bytes(source), name, "<bytes>"), "<bytes>"

        label = _describe(source)
        if hasattr(source, 'getvalue'):
            raw = source.getvalue()
        elif hasattr(source, 'read'):
            raw = source.read()
        else:
            raise DataLoadError(
                f"Unsupported {name} source type: {type(source).__name__}",
                reason=DataLoadError.INVALID_STRUCTURE,
                source=name
            )
        if isinstance(raw, str):
            return raw, label
        return _decode(raw, name, label), label


# =============================================================================
# HELPERS
# =============================================================================

def _looks_like_json(text: str) -> bool:
    stripped = text.lstrip()
    return stripped.startswith('{') or stripped.startswith('[')


def _decode(raw: bytes, name: str, label: str) -> str:
    try:
        return raw.decode('utf-8-sig')
    except UnicodeDecodeError as e:
        raise DataLoadError(
            f"{name.title()} JSON is not valid UTF-8 ({label})",
            reason=DataLoadError.UNPARSEABLE,
            source=name,
            path=label
        ) from e


def _describe(source: Any) -> Optional[str]:
    if source is None:
        return None
    if isinstance(source, (str, Path)):
        return "<text>" if isinstance(source, str) and _looks_like_json(source) else str(source)
    if isinstance(source, dict):
        return "<object>"
    if isinstance(source, (bytes, bytearray)):
        return "<bytes>"
    return getattr(source, 'name', type(source).__name__)
