"""Feature tree arena and bottom-up traversal.

The tree store hands us nested ``FeatureNode``s (or flat index rows). Both are
flattened into an id-indexed arena so lookups and scoped walks never recurse.
The tree is assumed acyclic; a cycle in the store data is not detected.
"""
from __future__ import annotations

from typing import Iterable, Optional

from specmap.errors import ObjectNotFoundError
from specmap.models import FeatureNode, ObjectIndexEntry


class FeatureTree:
    """Id-indexed view over a feature forest."""

    def __init__(self) -> None:
        self._nodes: dict[str, FeatureNode] = {}
        self._children: dict[str, list[str]] = {}
        self._parent: dict[str, Optional[str]] = {}
        self._roots: list[str] = []

    # ── Construction ──────────────────────────────────────────────

    @classmethod
    def from_forest(cls, roots: Iterable[FeatureNode]) -> FeatureTree:
        tree = cls()
        stack: list[tuple[FeatureNode, Optional[str]]] = [(node, None) for node in reversed(list(roots))]
        while stack:
            node, parent_id = stack.pop()
            if node.id in tree._nodes:
                continue
            tree._add(node, parent_id)
            for child in reversed(node.children):
                stack.append((child, node.id))
        return tree

    @classmethod
    def from_index(cls, rows: Iterable[ObjectIndexEntry]) -> FeatureTree:
        """Build from flat index rows; rows whose parent is unknown become roots."""
        rows = list(rows)
        known = {row.id for row in rows}
        tree = cls()
        for row in rows:
            if row.id in tree._nodes:
                continue
            parent_id = row.parentId if row.parentId and row.parentId in known else None
            tree._nodes[row.id] = FeatureNode(id=row.id, title=row.title, parentId=parent_id)
            tree._parent[row.id] = parent_id
            tree._children.setdefault(row.id, [])
        for row in rows:
            parent_id = tree._parent.get(row.id)
            if parent_id is None:
                if row.id not in tree._roots:
                    tree._roots.append(row.id)
            elif row.id not in tree._children[parent_id]:
                tree._children[parent_id].append(row.id)
        return tree

    def _add(self, node: FeatureNode, parent_id: Optional[str]) -> None:
        if node.parentId != parent_id:
            node = node.model_copy(update={"parentId": parent_id})
        self._nodes[node.id] = node
        self._parent[node.id] = parent_id
        self._children.setdefault(node.id, [])
        if parent_id is None:
            self._roots.append(node.id)
        else:
            self._children.setdefault(parent_id, []).append(node.id)

    # ── Lookups ───────────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, object_id: object) -> bool:
        return object_id in self._nodes

    @property
    def root_ids(self) -> list[str]:
        return list(self._roots)

    def get(self, object_id: str) -> FeatureNode:
        node = self._nodes.get(object_id)
        if node is None:
            raise ObjectNotFoundError(f"Object {object_id} not found in feature tree")
        return node

    def descendant_ids(self, object_id: str) -> list[str]:
        """Ids strictly below ``object_id``, pre-order."""
        self.get(object_id)
        result: list[str] = []
        stack = list(reversed(self._children.get(object_id, [])))
        while stack:
            current = stack.pop()
            result.append(current)
            stack.extend(reversed(self._children.get(current, [])))
        return result

    def subtree_ids(self, object_id: str) -> set[str]:
        return {object_id, *self.descendant_ids(object_id)}

    # ── Traversal ─────────────────────────────────────────────────

    def walk(self, root_id: Optional[str] = None) -> list[FeatureNode]:
        """Post-order walk (children before parent).

        Walks the whole forest when ``root_id`` is None, otherwise the subtree
        rooted at ``root_id``. Sibling order follows the store's order.
        """
        if root_id is None:
            start = self.root_ids
        else:
            self.get(root_id)
            start = [root_id]

        ordered: list[FeatureNode] = []
        stack: list[tuple[str, bool]] = [(node_id, False) for node_id in reversed(start)]
        while stack:
            node_id, expanded = stack.pop()
            if expanded:
                ordered.append(self._nodes[node_id])
                continue
            stack.append((node_id, True))
            for child_id in reversed(self._children.get(node_id, [])):
                stack.append((child_id, False))
        return ordered


def walk(root_or_forest: FeatureTree | Iterable[FeatureNode], root_id: Optional[str] = None) -> list[FeatureNode]:
    """Post-order nodes of a forest (or of one subtree when ``root_id`` is set)."""
    tree = root_or_forest if isinstance(root_or_forest, FeatureTree) else FeatureTree.from_forest(root_or_forest)
    return tree.walk(root_id)
