"""Pure helpers for the department forest (parent pointers, depth, subtrees)."""

from __future__ import annotations

from collections import deque
from typing import Any, Iterable, Mapping
from uuid import UUID

from ..schemas import DepartmentNode


def parent_index(departments: Iterable[Any]) -> dict[UUID, UUID | None]:
    return {department.id: department.parent_id for department in departments}


def children_index(departments: Iterable[Any]) -> dict[UUID | None, list[Any]]:
    """Group departments by parent id; siblings are ordered by name."""
    index: dict[UUID | None, list[Any]] = {}
    for department in departments:
        index.setdefault(department.parent_id, []).append(department)
    for siblings in index.values():
        siblings.sort(key=lambda item: (item.name or "", str(item.id)))
    return index


def ancestor_ids(department_id: UUID, parents: Mapping[UUID, UUID | None]) -> list[UUID]:
    """Return parent .. root (self excluded). Raises ValueError on a cycle."""
    chain: list[UUID] = []
    seen = {department_id}
    current = parents.get(department_id)
    while current is not None:
        if current in seen:
            raise ValueError(f"Department hierarchy contains a cycle at {current}")
        seen.add(current)
        chain.append(current)
        current = parents.get(current)
    return chain


def depth_of(department_id: UUID, parents: Mapping[UUID, UUID | None]) -> int:
    return len(ancestor_ids(department_id, parents))


def descendant_ids(department_id: UUID, children: Mapping[UUID | None, list[Any]]) -> list[UUID]:
    """Breadth-first ids below `department_id` (self excluded). Raises ValueError on a revisit."""
    result: list[UUID] = []
    seen = {department_id}
    queue: deque[UUID] = deque([department_id])
    while queue:
        current = queue.popleft()
        for child in children.get(current, []):
            if child.id in seen:
                raise ValueError(f"Department hierarchy contains a cycle at {child.id}")
            seen.add(child.id)
            result.append(child.id)
            queue.append(child.id)
    return result


def ensure_valid_parent(
    *,
    department_id: UUID,
    new_parent_id: UUID | None,
    children: Mapping[UUID | None, list[Any]],
) -> None:
    if new_parent_id is None:
        return
    if new_parent_id == department_id:
        raise ValueError("Department cannot be parent of itself")
    if new_parent_id in set(descendant_ids(department_id, children)):
        raise ValueError("Cannot move department to its own descendant")


def subtree_levels(
    department_id: UUID,
    base_level: int,
    children: Mapping[UUID | None, list[Any]],
) -> dict[UUID, int]:
    """Levels for `department_id` (at `base_level`) and every department below it."""
    levels = {department_id: base_level}
    queue: deque[UUID] = deque([department_id])
    while queue:
        current = queue.popleft()
        for child in children.get(current, []):
            if child.id in levels:
                raise ValueError(f"Department hierarchy contains a cycle at {child.id}")
            levels[child.id] = levels[current] + 1
            queue.append(child.id)
    return levels


def build_forest(
    departments: list[Any],
    *,
    users_count: Mapping[UUID, int] | None = None,
) -> list[DepartmentNode]:
    """Nest departments under their parents, roots first, siblings by name.

    Departments unreachable from any root sit on a cycle; that is reported as ValueError
    instead of silently dropping them.
    """
    counts = users_count or {}
    children = children_index(departments)

    def _node(department: Any, level: int) -> DepartmentNode:
        return DepartmentNode(
            id=department.id,
            name=department.name,
            parent_id=department.parent_id,
            level=level,
            head_id=department.head_id,
            users_count=int(counts.get(department.id, 0)),
        )

    known_ids = {department.id for department in departments}
    roots = [
        department
        for department in departments
        if department.parent_id is None or department.parent_id not in known_ids
    ]
    roots.sort(key=lambda item: (item.name or "", str(item.id)))

    forest = [_node(root, 0) for root in roots]
    reached = len(forest)
    queue: deque[tuple[Any, DepartmentNode]] = deque(zip(roots, forest))
    while queue:
        department, node = queue.popleft()
        for child in children.get(department.id, []):
            child_node = _node(child, node.level + 1)
            node.children.append(child_node)
            reached += 1
            queue.append((child, child_node))

    if reached != len(departments):
        raise ValueError("Department hierarchy contains a cycle")
    return forest
