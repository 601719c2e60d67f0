# market_dashboard/aggregation_engine/hierarchy.py
"""
Segment Hierarchy Builder and Business-Type Partitioner

A segment type ("By End User", "By Drug Class") owns one hierarchy.
Nodes are identified by their full path, and adjacency is keyed by a
context string:

    "Hospital::By Setting::Public"  ->  ["ICU", "Ward"]
     ^ node     ^ ancestors (root first)

so two parents can each own a child with the same name. Lookups fall
back from the qualified key to the bare name for legacy flat
hierarchies such as {"All": ["Type A", "Type B"]}.

When a segment type has both a "B2B" and a "B2C" root the partitioner
splits it into two independent hierarchies rooted at the markers'
children. A missing partition is the normal case, not an error.

VERSION: 1.2.0
CHANGELOG:
- v1.2.0: Context-qualified keys with bare-name fallback
- v1.1.0: B2B/B2C partition returns None instead of empty dicts
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from .constants import CONTEXT_SEPARATOR, B2B, B2C
from .tree_walker import TreeNode, BranchNode, LeafNode

logger = logging.getLogger(__name__)

Path = Tuple[str, ...]


def _escape(name: str) -> str:
    # Names may contain the separator itself
    return name.replace("%", "%25").replace(":", "%3A")


def _unescape(part: str) -> str:
    return part.replace("%3A", ":").replace("%25", "%")


def context_key(name: str, ancestors: Iterable[str] = ()) -> str:
    """
    Build "segment::ancestor1::ancestor2" (ancestors root first).

    ":" and "%" inside names are percent-escaped so the key always splits
    back into the original names.
    """
    return CONTEXT_SEPARATOR.join(_escape(part) for part in (name,) + tuple(ancestors))


def split_context_key(key: str) -> Path:
    """Inverse of path_key(): "ICU::Hospital::Public" -> ("Hospital", "Public", "ICU")."""
    parts = [_unescape(part) for part in key.split(CONTEXT_SEPARATOR)]
    return tuple(parts[1:]) + (parts[0],)


def path_key(path: Path) -> str:
    """Context key of the node at `path`."""
    return context_key(path[-1], path[:-1])


# =============================================================================
# SEGMENT HIERARCHY
# =============================================================================

class SegmentHierarchy:
    """
    Parent -> children adjacency for one segment type.

    Usage:
        hierarchy = SegmentHierarchy()
        hierarchy.add_path(("All", "Type A"))
        hierarchy.get_children("All")            # ["Type A"]
        hierarchy.get_children("Type A", ["All"])  # []
    """

    def __init__(self):
        # Ordered set of node paths (dict keeps insertion order)
        self._nodes: Dict[Path, None] = {}
        self._children: Dict[str, List[str]] = {}
        self._bare: Dict[str, List[str]] = {}
        self._qualified = True

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    def add_node(self, path: Path):
        """Register a node and every ancestor on its path."""
        path = tuple(path)
        for i in range(1, len(path) + 1):
            prefix = path[:i]
            if prefix in self._nodes:
                continue
            self._nodes[prefix] = None
            self._children.setdefault(path_key(prefix), [])
            self._bare.setdefault(prefix[-1], [])
            if i > 1:
                self._link(prefix[:-1], prefix[-1])

    def add_path(self, path: Path):
        self.add_node(path)

    def _link(self, parent: Path, child: str):
        siblings = self._children.setdefault(path_key(parent), [])
        if child not in siblings:
            siblings.append(child)
        bare = self._bare.setdefault(parent[-1], [])
        if child not in bare:
            bare.append(child)

    @classmethod
    def from_dict(cls, adjacency: Dict[str, List[str]]) -> 'SegmentHierarchy':
        """
        Load a serialized adjacency map.

        Qualified keys ("child::root::parent") restore full paths; a map
        with only bare keys is treated as a legacy flat hierarchy.
        """
        hierarchy = cls()
        qualified = any(CONTEXT_SEPARATOR in key for key in adjacency)

        if qualified:
            for key, children in adjacency.items():
                path = split_context_key(key)
                hierarchy.add_node(path)
                for child in children:
                    hierarchy.add_node(path + (child,))
            return hierarchy

        hierarchy._qualified = False
        for parent, children in adjacency.items():
            hierarchy._bare.setdefault(parent, [])
            for child in children:
                if child not in hierarchy._bare[parent]:
                    hierarchy._bare[parent].append(child)
                hierarchy._bare.setdefault(child, [])
        # Expand flat map into paths from its roots, one visit per path
        for root in hierarchy._roots_from_bare():
            stack = [(root,)]
            while stack:
                path = stack.pop()
                hierarchy._nodes[path] = None
                children = []
                for child in hierarchy._bare.get(path[-1], []):
                    if child in path:
                        logger.warning(f"Circular reference at {' > '.join(path + (child,))}, skipping")
                        continue
                    children.append(child)
                hierarchy._children[path_key(path)] = children
                for child in reversed(children):
                    stack.append(path + (child,))
        return hierarchy

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def get_children(self, name: str, ancestors: Iterable[str] = ()) -> List[str]:
        """
        Direct children of a node.

        Tries the context-qualified key first, then the bare name.
        """
        qualified = self._children.get(context_key(name, ancestors))
        if qualified is not None:
            return list(qualified)
        return list(self._bare.get(name, []))

    def children_of(self, path: Path) -> List[str]:
        """Exact (qualified-only) children of the node at `path`."""
        return list(self._children.get(path_key(tuple(path)), []))

    def has_node(self, path: Path) -> bool:
        return tuple(path) in self._nodes

    def is_leaf(self, path: Path) -> bool:
        return len(self.children_of(path)) == 0

    def roots(self) -> List[str]:
        """
        Root segment names in first-seen order.

        A root never appears as a child; standalone leaves are roots too.
        """
        if not self._qualified:
            return self._roots_from_bare()
        return [path[0] for path in self._nodes if len(path) == 1]

    def _roots_from_bare(self) -> List[str]:
        child_names = {c for children in self._bare.values() for c in children}
        return [name for name in self._bare if name not in child_names]

    def descendants(self, path: Path) -> List[Path]:
        """All node paths strictly below `path`, in pre-order."""
        path = tuple(path)
        n = len(path)
        return [p for p in self._nodes if len(p) > n and p[:n] == path]

    def depth_of(self, path: Path) -> int:
        """Aggregation level: 0 for roots."""
        return len(path) - 1

    @property
    def nodes(self) -> List[Path]:
        return list(self._nodes)

    def items(self) -> List[str]:
        """Segment names of every distinct node, in first-seen order."""
        return [path[-1] for path in self._nodes]

    def max_depth(self) -> int:
        return max((len(p) for p in self._nodes), default=0)

    # -------------------------------------------------------------------------
    # Derived views
    # -------------------------------------------------------------------------

    def subtree(self, root: Path) -> 'SegmentHierarchy':
        """Independent hierarchy of everything below `root`, re-rooted."""
        root = tuple(root)
        result = SegmentHierarchy()
        for path in self.descendants(root):
            result.add_node(path[len(root):])
        return result

    def to_dict(self) -> Dict[str, List[str]]:
        """Qualified adjacency, JSON-ready."""
        return {key: list(children) for key, children in self._children.items()}

    def to_flat_dict(self) -> Dict[str, List[str]]:
        """Bare-name adjacency (legacy shape)."""
        return {key: list(children) for key, children in self._bare.items()}

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, path) -> bool:
        return tuple(path) in self._nodes

    def __repr__(self) -> str:
        return f"SegmentHierarchy({len(self._nodes)} nodes, roots={self.roots()[:5]})"


# =============================================================================
# SEGMENT DIMENSION
# =============================================================================

@dataclass
class SegmentDimension:
    """Filter options and hierarchy for one segment type."""
    segment_type: str
    items: List[str] = field(default_factory=list)
    hierarchy: SegmentHierarchy = field(default_factory=SegmentHierarchy)
    b2b_hierarchy: Optional[SegmentHierarchy] = None
    b2c_hierarchy: Optional[SegmentHierarchy] = None
    b2b_items: Optional[List[str]] = None
    b2c_items: Optional[List[str]] = None

    @property
    def type(self) -> str:
        return 'hierarchical' if self.hierarchy.max_depth() > 1 else 'flat'

    @property
    def has_business_partition(self) -> bool:
        return self.b2b_hierarchy is not None and self.b2c_hierarchy is not None

    def get_items(self, business_type: Optional[str] = None) -> List[str]:
        """Items for a business type, falling back to the unpartitioned list."""
        if business_type == B2B and self.b2b_items is not None:
            return list(self.b2b_items)
        if business_type == B2C and self.b2c_items is not None:
            return list(self.b2c_items)
        return list(self.items)

    def get_hierarchy(self, business_type: Optional[str] = None) -> SegmentHierarchy:
        if business_type == B2B and self.b2b_hierarchy is not None:
            return self.b2b_hierarchy
        if business_type == B2C and self.b2c_hierarchy is not None:
            return self.b2c_hierarchy
        return self.hierarchy

    def to_dict(self) -> Dict:
        result = {
            'type': self.type,
            'items': list(self.items),
            'hierarchy': self.hierarchy.to_dict(),
        }
        if self.has_business_partition:
            result['b2b_hierarchy'] = self.b2b_hierarchy.to_dict()
            result['b2c_hierarchy'] = self.b2c_hierarchy.to_dict()
            result['b2b_items'] = list(self.b2b_items)
            result['b2c_items'] = list(self.b2c_items)
        return result


# =============================================================================
# BUSINESS-TYPE PARTITIONER
# =============================================================================

@dataclass
class BusinessPartition:
    b2b_hierarchy: SegmentHierarchy
    b2c_hierarchy: SegmentHierarchy
    b2b_items: List[str]
    b2c_items: List[str]


def partition_business_types(hierarchy: SegmentHierarchy) -> Optional[BusinessPartition]:
    """
    Split a hierarchy on its B2B and B2C roots.

    Returns None unless both markers are roots. The markers themselves
    are excluded from the partitioned items.
    """
    roots = hierarchy.roots()
    if B2B not in roots or B2C not in roots:
        if B2B in roots or B2C in roots:
            logger.debug("Only one business-type root present, no partition")
        return None

    b2b = hierarchy.subtree((B2B,))
    b2c = hierarchy.subtree((B2C,))
    return BusinessPartition(
        b2b_hierarchy=b2b,
        b2c_hierarchy=b2c,
        b2b_items=b2b.items(),
        b2c_items=b2c.items(),
    )


# =============================================================================
# BUILDER
# =============================================================================

class HierarchyBuilder:
    """
    Accumulate walked paths for one segment type, across geographies.

    Usage:
        builder = HierarchyBuilder("By Type")
        builder.add_nodes(walker.walk(raw["USA"]["By Type"]))
        builder.add_nodes(walker.walk(raw["UK"]["By Type"]))
        dimension = builder.build()
    """

    def __init__(self, segment_type: str):
        self.segment_type = segment_type
        self._hierarchy = SegmentHierarchy()

    def add_nodes(self, nodes: Iterable[TreeNode]) -> 'HierarchyBuilder':
        for node in nodes:
            if isinstance(node, (LeafNode, BranchNode)):
                self._hierarchy.add_node(node.path)
        return self

    def add_paths(self, paths: Iterable[Path]) -> 'HierarchyBuilder':
        for path in paths:
            if path:
                self._hierarchy.add_node(tuple(path))
        return self

    @property
    def hierarchy(self) -> SegmentHierarchy:
        return self._hierarchy

    def build(self) -> SegmentDimension:
        dimension = SegmentDimension(
            segment_type=self.segment_type,
            items=self._hierarchy.items(),
            hierarchy=self._hierarchy,
        )

        partition = partition_business_types(self._hierarchy)
        if partition is not None:
            dimension.b2b_hierarchy = partition.b2b_hierarchy
            dimension.b2c_hierarchy = partition.b2c_hierarchy
            dimension.b2b_items = partition.b2b_items
            dimension.b2c_items = partition.b2c_items
            logger.info(
                f"Segment type '{self.segment_type}': B2B/B2C partition "
                f"({len(partition.b2b_items)} / {len(partition.b2c_items)} items)"
            )

        return dimension
