# market_dashboard/aggregation_engine/errors.py
"""
Errors and Build Report for the Market Aggregation Engine

Two kinds of problems come out of a build:
- Fatal errors (exceptions): no value tree, or the build was cancelled
- Import issues (BuildWarning): malformed nodes, depth/cycle guards,
  missing optional files. These are collected in a BuildReport and
  returned next to the ComparisonData so a partial dashboard still renders.

VERSION: 1.1.0
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)


# =============================================================================
# EXCEPTIONS
# =============================================================================

class MarketDataError(Exception):
    """Base class for engine errors."""


class DataLoadError(MarketDataError):
    """
    Required input could not be loaded.

    Attributes:
        reason: 'not_found' | 'empty' | 'unparseable' | 'invalid_structure'
        source: 'value' | 'volume' | 'segmentation'
        path: File path or upload name, if known
    """

    NOT_FOUND = 'not_found'
    EMPTY = 'empty'
    UNPARSEABLE = 'unparseable'
    INVALID_STRUCTURE = 'invalid_structure'

    def __init__(self, message: str, reason: str, source: str = 'value', path: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.reason = reason
        self.source = source
        self.path = path

    def to_dict(self) -> Dict:
        return {
            'error': self.reason,
            'source': self.source,
            'path': self.path,
            'message': self.message,
        }


class BuildCancelled(MarketDataError):
    """The cancellation token fired during traversal."""


# =============================================================================
# BUILD REPORT
# =============================================================================

class WarningCode(str, Enum):
    DEPTH_EXCEEDED = 'depth_exceeded'
    CYCLE_SUSPECTED = 'cycle_suspected'
    MIXED_NODE = 'mixed_node'
    EMPTY_BRANCH = 'empty_branch'
    NON_NUMERIC_VALUE = 'non_numeric_value'
    INVALID_NODE = 'invalid_node'
    CAGR_FALLBACK = 'cagr_fallback'
    MISSING_OPTIONAL_INPUT = 'missing_optional_input'
    UNPARSEABLE_OPTIONAL_INPUT = 'unparseable_optional_input'


@dataclass(frozen=True)
class BuildWarning:
    """One import issue, with the tree path where it was found."""
    code: WarningCode
    message: str
    path: tuple = ()

    @property
    def location(self) -> str:
        return " > ".join(self.path)

    def to_dict(self) -> Dict:
        return {
            'code': self.code.value,
            'message': self.message,
            'path': list(self.path),
        }


@dataclass
class BuildReport:
    """
    Collects warnings during one build.

    Usage:
        report = BuildReport()
        report.warn(WarningCode.DEPTH_EXCEEDED, "Depth limit reached", path)
        if report.has_issues:
            st.warning(report.summary())
    """
    warnings: List[BuildWarning] = field(default_factory=list)

    def warn(self, code: WarningCode, message: str, path: Sequence[str] = ()) -> BuildWarning:
        """Record and log a warning."""
        item = BuildWarning(code=code, message=message, path=tuple(path))
        self.warnings.append(item)
        if item.path:
            logger.warning(f"[{code.value}] {message} (at {item.location})")
        else:
            logger.warning(f"[{code.value}] {message}")
        return item

    def extend(self, other: 'BuildReport'):
        self.warnings.extend(other.warnings)

    @property
    def has_issues(self) -> bool:
        return len(self.warnings) > 0

    def count_by_code(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for item in self.warnings:
            counts[item.code.value] = counts.get(item.code.value, 0) + 1
        return counts

    def by_code(self, code: WarningCode) -> List[BuildWarning]:
        return [w for w in self.warnings if w.code == code]

    def summary(self) -> str:
        n = len(self.warnings)
        if n == 0:
            return "No issues detected while importing"
        noun = "issue" if n == 1 else "issues"
        return f"{n} {noun} detected while importing"

    def to_dict(self) -> Dict:
        return {
            'summary': self.summary(),
            'counts': self.count_by_code(),
            'warnings': [w.to_dict() for w in self.warnings],
        }
