"""Department hierarchy use-cases: tree reads, cycle-safe moves and reporting lines."""
from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..domain_errors import InvalidOperationError
from ..models import AuditEvent, Department, User
from ..repositories import (
    count_users_by_department,
    get_department_or_404,
    get_user_or_404,
    list_departments,
    list_users_in_departments,
)
from ..schemas import DepartmentBrief, DepartmentNode, ReportingStructure, UserBrief
from ..services.department_tree import (
    ancestor_ids,
    build_forest,
    children_index,
    depth_of,
    descendant_ids,
    ensure_valid_parent,
    parent_index,
    subtree_levels,
)

logger = logging.getLogger(__name__)


def _cycle_error(error: ValueError) -> InvalidOperationError:
    return InvalidOperationError(
        code="DEPARTMENT_HIERARCHY_CYCLE",
        message=str(error),
    )


def _ancestor_chain(db: Session, department_id: UUID) -> list[UUID]:
    try:
        return ancestor_ids(department_id, parent_index(list_departments(db)))
    except ValueError as error:
        raise _cycle_error(error) from error


def _departments_by_id(db: Session) -> dict[UUID, Department]:
    return {department.id: department for department in list_departments(db)}


def create_department_use_case(
    *,
    db: Session,
    name: str,
    parent_id: UUID | None = None,
    head_id: UUID | None = None,
    actor_id: UUID | None = None,
) -> Department:
    """Create a department under `parent_id` (root when None)."""
    level = 0
    if parent_id is not None:
        get_department_or_404(db, parent_id)
        level = len(_ancestor_chain(db, parent_id)) + 1
    if head_id is not None:
        get_user_or_404(db, head_id)

    department = Department(name=name, parent_id=parent_id, head_id=head_id, level=level)
    db.add(department)
    db.flush()

    db.add(
        AuditEvent(
            action="department_created",
            entity_type="department",
            entity_id=department.id,
            entity_name=department.name,
            user_id=actor_id,
            details={"parentId": str(parent_id) if parent_id else None, "level": level},
        )
    )
    db.commit()
    logger.info(f"Department {department.id} created at level {level}")
    return department


def build_tree_use_case(*, db: Session) -> list[DepartmentNode]:
    """Return the department forest, roots and siblings ordered by name."""
    try:
        return build_forest(list_departments(db), users_count=count_users_by_department(db))
    except ValueError as error:
        raise _cycle_error(error) from error


def get_hierarchy_path_use_case(*, db: Session, department_id: UUID) -> list[Department]:
    """Self first, root last."""
    department = get_department_or_404(db, department_id)
    by_id = _departments_by_id(db)
    return [department] + [by_id[item] for item in _ancestor_chain(db, department.id)]


def get_ancestors_use_case(*, db: Session, department_id: UUID) -> list[Department]:
    """Immediate parent up to the root; the department itself is excluded."""
    return get_hierarchy_path_use_case(db=db, department_id=department_id)[1:]


def get_descendants_use_case(*, db: Session, department_id: UUID) -> list[Department]:
    get_department_or_404(db, department_id)
    departments = list_departments(db)
    by_id = {department.id: department for department in departments}
    try:
        ids = descendant_ids(department_id, children_index(departments))
    except ValueError as error:
        raise _cycle_error(error) from error
    return [by_id[item] for item in ids]


def get_level_use_case(*, db: Session, department_id: UUID) -> int:
    """Depth computed by walking parent links to the root."""
    get_department_or_404(db, department_id)
    try:
        return depth_of(department_id, parent_index(list_departments(db)))
    except ValueError as error:
        raise _cycle_error(error) from error


def get_breadcrumb_use_case(*, db: Session, department_id: UUID) -> list[DepartmentBrief]:
    """Root-to-self trail for navigation."""
    path = get_hierarchy_path_use_case(db=db, department_id=department_id)
    return [DepartmentBrief.model_validate(item) for item in reversed(path)]


def move_department_use_case(
    *,
    db: Session,
    department_id: UUID,
    new_parent_id: UUID | None,
    actor_id: UUID | None = None,
) -> Department:
    """Reparent a department and recompute levels of its whole subtree in one transaction."""
    if new_parent_id is not None and new_parent_id == department_id:
        raise InvalidOperationError(
            code="DEPARTMENT_SELF_PARENT",
            message="Department cannot be parent of itself",
            details={"department_id": str(department_id)},
        )

    department = get_department_or_404(db, department_id)
    if new_parent_id is not None:
        get_department_or_404(db, new_parent_id)

    departments = list_departments(db)
    by_id = {item.id: item for item in departments}
    children = children_index(departments)
    try:
        descendant_ids(department.id, children)
    except ValueError as error:
        raise _cycle_error(error) from error

    try:
        ensure_valid_parent(department_id=department.id, new_parent_id=new_parent_id, children=children)
    except ValueError as error:
        logger.warning(f"Rejected move of department {department.id} under {new_parent_id}: {error}")
        raise InvalidOperationError(
            code="DEPARTMENT_CYCLE",
            message=str(error),
            details={"department_id": str(department.id), "new_parent_id": str(new_parent_id)},
        ) from error

    try:
        base_level = 0 if new_parent_id is None else depth_of(new_parent_id, parent_index(departments)) + 1
        levels = subtree_levels(department.id, base_level, children)
    except ValueError as error:
        raise _cycle_error(error) from error

    old_parent_id = department.parent_id
    try:
        department.parent_id = new_parent_id
        for item_id, level in levels.items():
            by_id[item_id].level = level

        db.add(
            AuditEvent(
                action="department_moved",
                entity_type="department",
                entity_id=department.id,
                entity_name=department.name,
                user_id=actor_id,
                details={
                    "oldParentId": str(old_parent_id) if old_parent_id else None,
                    "newParentId": str(new_parent_id) if new_parent_id else None,
                    "level": base_level,
                    "affectedDepartments": len(levels),
                },
            )
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.error(f"Failed to move department {department_id}", exc_info=True)
        raise

    logger.info(f"Department {department.id} moved from {old_parent_id} to {new_parent_id}")
    return department


def _head_chain(db: Session, department_id: UUID) -> list[Department]:
    by_id = _departments_by_id(db)
    return [by_id[department_id]] + [by_id[item] for item in _ancestor_chain(db, department_id)]


def get_direct_manager_use_case(*, db: Session, user_id: UUID) -> User | None:
    """Explicit manager first, then the nearest department head other than the user."""
    user = get_user_or_404(db, user_id)
    if user.manager_id is not None:
        return db.get(User, user.manager_id)
    if user.department_id is None:
        return None

    for department in _head_chain(db, user.department_id):
        if department.head_id is not None and department.head_id != user.id:
            return db.get(User, department.head_id)
    return None


def get_subordinates_use_case(*, db: Session, manager_id: UUID) -> list[User]:
    """Direct reports plus everyone in the subtrees of departments the manager heads."""
    manager = get_user_or_404(db, manager_id)

    departments = list_departments(db)
    children = children_index(departments)
    department_ids: list[UUID] = []
    for department in departments:
        if department.head_id != manager.id:
            continue
        department_ids.append(department.id)
        try:
            department_ids.extend(descendant_ids(department.id, children))
        except ValueError as error:
            raise _cycle_error(error) from error

    direct = db.query(User).filter(User.manager_id == manager.id).all()
    in_departments = list_users_in_departments(db, list(dict.fromkeys(department_ids)))

    seen: set[UUID] = {manager.id}
    result: list[User] = []
    for user in [*direct, *in_departments]:
        if user.id in seen:
            continue
        seen.add(user.id)
        result.append(user)
    return sorted(result, key=lambda item: (item.name or "", str(item.id)))


def get_reporting_structure_use_case(*, db: Session, user_id: UUID) -> ReportingStructure:
    user = get_user_or_404(db, user_id)
    manager = get_direct_manager_use_case(db=db, user_id=user_id)

    department_head: User | None = None
    executives: list[UserBrief] = []
    if user.department_id is not None:
        chain = _head_chain(db, user.department_id)
        if chain[0].head_id is not None:
            department_head = db.get(User, chain[0].head_id)
        for department in chain[1:]:
            if department.head_id is not None:
                head = db.get(User, department.head_id)
                if head is not None:
                    executives.append(UserBrief.model_validate(head))

    return ReportingStructure(
        employee=UserBrief.model_validate(user),
        manager=UserBrief.model_validate(manager) if manager else None,
        department_head=UserBrief.model_validate(department_head) if department_head else None,
        executives=executives,
    )
