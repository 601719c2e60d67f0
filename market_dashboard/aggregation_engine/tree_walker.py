# market_dashboard/aggregation_engine/tree_walker.py
"""
Tree Walker - traversal of nested market JSON

Turns one segment-type subtree of a RawTree into a lazy, pre-order
stream of tagged nodes:
- LeafNode: the node's direct keys include a 4-digit year or "CAGR"
- BranchNode: further nesting (child segment names, in input order)

Guards:
- Depth: never descends past max_depth segment levels. The truncated
  child is dropped and a DEPTH_EXCEEDED warning is recorded.
- Cycle: a child whose name already appears on its own ancestor path
  (or which is literally one of its ancestor objects) is skipped with a
  CYCLE_SUSPECTED warning.
- Cancellation: the token is checked on every stack pop, so a
  pathological upload can be aborted without unwinding a deep stack.

Traversal uses an explicit work stack, never Python recursion.

VERSION: 1.3.0
CHANGELOG:
- v1.3.0: Annotated branches (year data + _aggregated marker + children)
          are walked as branches so serialized trees re-ingest cleanly
- v1.2.0: Structure-only mode for segmentation trees (empty object = leaf)
- v1.1.0: Replaced recursive descent with explicit stack
"""

import logging
import math
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple, Union

from .constants import (
    YEAR_KEY_PATTERN,
    CAGR_KEY,
    AGGREGATED_MARKER,
    MARKER_KEYS,
    MIN_YEAR,
    MAX_YEAR,
    DEFAULT_MAX_DEPTH,
)
from .errors import BuildCancelled, BuildReport, WarningCode

logger = logging.getLogger(__name__)

Number = Union[int, float]


# =============================================================================
# CANCELLATION
# =============================================================================

class CancellationToken:
    """Cooperative cancellation flag shared between a caller and a build."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, path: Tuple[str, ...] = ()):
        if self._event.is_set():
            where = " > ".join(path) if path else "start"
            raise BuildCancelled(f"Build cancelled at {where}")


# =============================================================================
# KEY & VALUE HELPERS
# =============================================================================

def is_year_key(key: Any) -> bool:
    return isinstance(key, str) and bool(YEAR_KEY_PATTERN.match(key))


def is_leaf_key(key: Any) -> bool:
    """Year or CAGR key - any one of these makes a node a leaf."""
    return is_year_key(key) or key == CAGR_KEY


def parse_number(value: Any) -> Optional[Number]:
    """
    Coerce a year value to a number.

    Ints stay ints so sums of integer inputs stay exact.
    Returns None for null, booleans, and non-numeric strings.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, str):
        cleaned = value.replace(',', '').strip()
        if not cleaned:
            return None
        try:
            return int(cleaned)
        except ValueError:
            pass
        try:
            parsed = float(cleaned)
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


def parse_cagr(value: Any) -> Optional[float]:
    """Parse CAGR given as a number or a string like "5.2%"."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        cleaned = value.replace('%', '').strip()
        try:
            parsed = float(cleaned)
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


# =============================================================================
# TAGGED NODES
# =============================================================================

@dataclass(frozen=True)
class LeafData:
    """Year-keyed values of a leaf, plus the CAGR given in the input."""
    years: Dict[int, Number] = field(default_factory=dict)
    cagr: Optional[float] = None
    # CAGR exactly as written ("5%", 5.2), re-emitted by the serializer
    cagr_input: Union[str, int, float, None] = None


@dataclass(frozen=True)
class LeafNode:
    path: Tuple[str, ...]
    data: LeafData

    @property
    def name(self) -> str:
        return self.path[-1]

    @property
    def depth(self) -> int:
        return len(self.path)


@dataclass(frozen=True)
class BranchNode:
    path: Tuple[str, ...]
    children: Tuple[str, ...]
    # Serialized aggregate: carried year data plus the _aggregated marker
    annotated: bool = False

    @property
    def name(self) -> str:
        return self.path[-1]

    @property
    def depth(self) -> int:
        return len(self.path)


TreeNode = Union[LeafNode, BranchNode]


# =============================================================================
# WALKER
# =============================================================================

class TreeWalker:
    """
    Walk one segment-type subtree.

    Usage:
        report = BuildReport()
        walker = TreeWalker(max_depth=20, report=report)
        for node in walker.walk(raw_tree["USA"]["By Type"], context=("USA", "By Type")):
            if isinstance(node, LeafNode):
                ...
    """

    def __init__(
        self,
        max_depth: int = DEFAULT_MAX_DEPTH,
        report: BuildReport = None,
        cancel_token: CancellationToken = None,
        structure_only: bool = False
    ):
        """
        Args:
            max_depth: Maximum number of segment levels below the segment type
            report: Collects malformed-input warnings (a fresh one if omitted)
            cancel_token: Optional cooperative cancellation flag
            structure_only: Segmentation mode - empty objects are leaves
        """
        self.max_depth = max(1, int(max_depth))
        self.report = report if report is not None else BuildReport()
        self.cancel_token = cancel_token
        self.structure_only = structure_only

    def walk(
        self,
        node: Any,
        path: Tuple[str, ...] = (),
        depth: int = 0,
        context: Tuple[str, ...] = ()
    ) -> Iterator[TreeNode]:
        """
        Lazily yield tagged nodes below `node` in pre-order.

        Args:
            node: Raw mapping whose keys are the top-level segments
            path: Ancestor segment path of `node` (empty for a segment type)
            depth: Segment depth of `node` (len(path) for consistency)
            context: Prefix used only in warning locations, e.g. (geo, segment_type)
        """
        path = tuple(path)
        if not isinstance(node, dict):
            self.report.warn(
                WarningCode.INVALID_NODE,
                f"Expected an object, got {type(node).__name__}",
                context + path
            )
            return

        self._check_root_keys(node, context + path)

        stack: List[Tuple[Dict, Tuple[str, ...], int, Tuple[int, ...]]] = []
        root_ids = (id(node),)
        for key, value in reversed(self._child_items(node, path, depth, root_ids, context)):
            stack.append((value, path + (key,), depth + 1, root_ids))

        while stack:
            raw, node_path, node_depth, ancestor_ids = stack.pop()
            if self.cancel_token is not None:
                self.cancel_token.raise_if_cancelled(context + node_path)

            if self._is_leaf(raw):
                yield LeafNode(path=node_path, data=self._extract_leaf(raw, context + node_path))
                continue

            child_ids = ancestor_ids + (id(raw),)
            children = self._child_items(raw, node_path, node_depth, child_ids, context)
            yield BranchNode(
                path=node_path,
                children=tuple(key for key, _ in children),
                annotated=raw.get(AGGREGATED_MARKER) is True
            )
            for key, value in reversed(children):
                stack.append((value, node_path + (key,), node_depth + 1, child_ids))

    # =========================================================================
    # CLASSIFICATION
    # =========================================================================

    def _is_leaf(self, raw: Dict) -> bool:
        if self.structure_only and len(raw) == 0:
            return True
        if not any(is_leaf_key(k) for k in raw):
            return False
        # Aggregate written by the serializer: walk it as a branch
        if raw.get(AGGREGATED_MARKER) is True and self._has_nested(raw):
            return False
        return True

    @staticmethod
    def _has_nested(raw: Dict) -> bool:
        return any(
            isinstance(v, dict) and not is_leaf_key(k) and k not in MARKER_KEYS
            for k, v in raw.items()
        )

    def _check_root_keys(self, raw: Dict, location: Tuple[str, ...]):
        """Year data directly on a segment type has no segment to belong to."""
        stray = [k for k in raw if is_leaf_key(k)]
        if not stray:
            return
        if raw.get(AGGREGATED_MARKER) is True:
            logger.debug(f"Ignoring segment-type total at {' > '.join(location)}")
        else:
            self.report.warn(
                WarningCode.MIXED_NODE,
                f"Ignoring {len(stray)} year/CAGR keys placed directly on a segment type",
                location
            )

    def _child_items(
        self,
        raw: Dict,
        path: Tuple[str, ...],
        depth: int,
        ancestor_ids: Tuple[int, ...],
        context: Tuple[str, ...]
    ) -> List[Tuple[str, Dict]]:
        """Children of a branch that pass the type, cycle and depth guards."""
        children = []
        for key, value in raw.items():
            if is_leaf_key(key) or key in MARKER_KEYS:
                continue
            child_path = path + (key,)
            if not isinstance(value, dict):
                self.report.warn(
                    WarningCode.INVALID_NODE,
                    f"Ignoring non-object value of type {type(value).__name__}",
                    context + child_path
                )
                continue
            if key in path or id(value) in ancestor_ids:
                self.report.warn(
                    WarningCode.CYCLE_SUSPECTED,
                    f"'{key}' already appears on its own ancestor path, subtree skipped",
                    context + child_path
                )
                continue
            if depth + 1 > self.max_depth:
                self.report.warn(
                    WarningCode.DEPTH_EXCEEDED,
                    f"Maximum depth ({self.max_depth}) reached, subtree truncated",
                    context + child_path
                )
                continue
            children.append((key, value))
        return children

    def _extract_leaf(self, raw: Dict, location: Tuple[str, ...]) -> LeafData:
        years: Dict[int, Number] = {}
        cagr = None
        cagr_input = None
        ignored = []

        for key, value in raw.items():
            if is_year_key(key):
                number = parse_number(value)
                if number is None:
                    if value is not None:
                        self.report.warn(
                            WarningCode.NON_NUMERIC_VALUE,
                            f"Non-numeric value {value!r} for year {key} ignored",
                            location
                        )
                    continue
                years[int(key)] = number
            elif key == CAGR_KEY:
                cagr = parse_cagr(value)
                cagr_input = value if cagr is not None else None
                if cagr is None and value not in (None, ''):
                    self.report.warn(
                        WarningCode.NON_NUMERIC_VALUE,
                        f"Unparseable CAGR {value!r} ignored",
                        location
                    )
            elif key in MARKER_KEYS:
                continue
            else:
                ignored.append(key)

        if ignored:
            preview = ", ".join(str(k) for k in ignored[:5])
            self.report.warn(
                WarningCode.MIXED_NODE,
                f"Node has year data and nested keys; treated as leaf, ignoring: {preview}",
                location
            )

        return LeafData(years=years, cagr=cagr, cagr_input=cagr_input)


# =============================================================================
# MODULE HELPERS
# =============================================================================

def walk_tree(
    node: Any,
    path: Tuple[str, ...] = (),
    depth: int = 0,
    max_depth: int = DEFAULT_MAX_DEPTH,
    report: BuildReport = None,
    cancel_token: CancellationToken = None,
    structure_only: bool = False,
    context: Tuple[str, ...] = ()
) -> Iterator[TreeNode]:
    """Functional shortcut for TreeWalker(...).walk(...)."""
    walker = TreeWalker(
        max_depth=max_depth,
        report=report,
        cancel_token=cancel_token,
        structure_only=structure_only
    )
    return walker.walk(node, path=path, depth=depth, context=context)


def iter_leaf_paths(nodes: Iterator[TreeNode]) -> Iterator[Tuple[Tuple[str, ...], LeafData]]:
    """Reduce a node stream to (path, leaf_data) pairs."""
    for node in nodes:
        if isinstance(node, LeafNode):
            yield node.path, node.data


def collect_years(raw: Any, max_depth: int = DEFAULT_MAX_DEPTH) -> List[int]:
    """
    All plausible year keys anywhere in a RawTree, sorted.

    Scans iteratively and stops at geography + segment type + max_depth levels.
    """
    years: Set[int] = set()
    if not isinstance(raw, dict):
        return []

    limit = max_depth + 2
    stack: List[Tuple[Dict, int]] = [(raw, 0)]
    seen: Set[int] = set()
    while stack:
        node, depth = stack.pop()
        if id(node) in seen:
            continue
        seen.add(id(node))
        for key, value in node.items():
            if is_year_key(key):
                year = int(key)
                if MIN_YEAR <= year <= MAX_YEAR:
                    years.add(year)
            elif isinstance(value, dict) and depth < limit:
                stack.append((value, depth + 1))

    return sorted(years)
