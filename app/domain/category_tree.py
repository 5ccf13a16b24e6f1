"""Pure tree helpers for the category hierarchy.

Nodes are plain dicts carrying at least ``id`` and ``parent_id``. Nothing in this
module touches the database, so the same functions serve the service (against
rows loaded from the repository) and the tests.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Callable, Dict, Iterable, List, Mapping, Sequence, Tuple


PATH_SEPARATOR = " > "


class CorruptHierarchyError(RuntimeError):
    """Raised when stored parent links already contain a cycle."""

    def __init__(self, category_id: int) -> None:
        super().__init__(f"cycle detected in parent chain of category {category_id}")
        self.category_id = category_id


def compute_hierarchy(name: str, parent: Mapping | None) -> Tuple[int, str]:
    if not parent:
        return 1, name
    return int(parent["level"]) + 1, f"{parent['path']}{PATH_SEPARATOR}{name}"


def group_by_parent(nodes: Iterable[Mapping]) -> Dict[int | None, List[Mapping]]:
    index: Dict[int | None, List[Mapping]] = defaultdict(list)
    for node in nodes:
        index[node.get("parent_id")].append(node)
    return index


def build_hierarchy(
    nodes: Sequence[Mapping],
    parent_id: int | None = None,
    *,
    orphans_as_roots: bool = False,
) -> List[dict]:
    """Assemble a flat node list into a forest.

    Sibling order follows the order of ``nodes``. With ``orphans_as_roots``, nodes
    whose parent is not part of ``nodes`` are attached at the top level too, which
    is what a paginated or filtered listing needs.
    """
    index = group_by_parent(nodes)
    top_level = list(index.get(parent_id, []))
    if orphans_as_roots and parent_id is None:
        known_ids = {node["id"] for node in nodes}
        top_level = [
            node
            for node in nodes
            if node.get("parent_id") is None or node.get("parent_id") not in known_ids
        ]

    visited: set[int] = set()

    def _attach(node: Mapping) -> dict:
        visited.add(node["id"])
        children = [child for child in index.get(node["id"], []) if child["id"] not in visited]
        return {**node, "children": [_attach(child) for child in children]}

    return [_attach(node) for node in top_level if node["id"] not in visited]


def flatten_hierarchy(forest: Sequence[Mapping]) -> List[dict]:
    flat: List[dict] = []
    stack = list(reversed(forest))
    while stack:
        node = stack.pop()
        children = list(node.get("children") or [])
        flat.append({key: value for key, value in node.items() if key != "children"})
        stack.extend(reversed(children))
    return flat


def collect_descendants(root_id: int, children_of: Callable[[int], Iterable[int]]) -> List[int]:
    """Breadth-first descendant ids of ``root_id``, excluding the root itself.

    ``children_of`` returns direct child ids. A visited set keeps the walk finite
    even if stored data already contains a cycle.
    """
    visited = {root_id}
    descendants: List[int] = []
    frontier = [root_id]
    while frontier:
        next_frontier: List[int] = []
        for current in frontier:
            for child_id in children_of(current):
                if child_id in visited:
                    continue
                visited.add(child_id)
                descendants.append(child_id)
                next_frontier.append(child_id)
        frontier = next_frontier
    return descendants


def creates_cycle(node_id: int, candidate_parent_id: int | None, descendant_ids: Iterable[int]) -> bool:
    if candidate_parent_id is None:
        return False
    if candidate_parent_id == node_id:
        return True
    return candidate_parent_id in set(descendant_ids)


def ancestor_chain(node_id: int, parent_of: Callable[[int], int | None]) -> List[int]:
    """Ids from ``node_id`` up to its root, inclusive."""
    chain = [node_id]
    seen = {node_id}
    current = parent_of(node_id)
    while current is not None:
        if current in seen:
            raise CorruptHierarchyError(node_id)
        seen.add(current)
        chain.append(current)
        current = parent_of(current)
    return chain
