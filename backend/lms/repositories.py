"""Explicit loaders used by use-cases (no implicit lazy traversal in business rules)."""
from __future__ import annotations

import logging
from typing import TypeVar
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from .domain_errors import ConflictError, NotFoundError
from .models import Department, Module, Permission, Role, User, UserTraining

logger = logging.getLogger(__name__)

T = TypeVar("T")


def get_entity_or_404(db: Session, model: type[T], *, entity_id: UUID, code: str, not_found: str) -> T:
    """Load an entity by id or raise NotFoundError."""
    entity = db.query(model).filter(getattr(model, "id") == entity_id).first()  # noqa: B009
    if not entity:
        raise NotFoundError(code=code, message=not_found, details={"id": str(entity_id)})
    return entity


def get_user_or_404(db: Session, user_id: UUID) -> User:
    return get_entity_or_404(db, User, entity_id=user_id, code="USER_NOT_FOUND", not_found="User not found")


def get_role_or_404(db: Session, role_id: UUID) -> Role:
    return get_entity_or_404(db, Role, entity_id=role_id, code="ROLE_NOT_FOUND", not_found="Role not found")


def get_permission_or_404(db: Session, permission_id: UUID) -> Permission:
    return get_entity_or_404(
        db,
        Permission,
        entity_id=permission_id,
        code="PERMISSION_NOT_FOUND",
        not_found="Permission not found",
    )


def get_department_or_404(db: Session, department_id: UUID) -> Department:
    return get_entity_or_404(
        db,
        Department,
        entity_id=department_id,
        code="DEPARTMENT_NOT_FOUND",
        not_found="Department not found",
    )


def get_module_or_404(db: Session, module_id: UUID) -> Module:
    return get_entity_or_404(db, Module, entity_id=module_id, code="MODULE_NOT_FOUND", not_found="Module not found")


def get_enrollment_or_404(db: Session, enrollment_id: UUID, *, for_update: bool = False) -> UserTraining:
    """Load an enrollment; with `for_update` the row is locked and refreshed from the database."""
    query = db.query(UserTraining).filter(UserTraining.id == enrollment_id)
    if for_update:
        query = query.with_for_update().populate_existing()
    enrollment = query.first()
    if not enrollment:
        raise NotFoundError(
            code="ENROLLMENT_NOT_FOUND",
            message="Enrollment not found",
            details={"id": str(enrollment_id)},
        )
    return enrollment


def find_enrollment_by_user_and_module(db: Session, *, user_id: UUID, module_id: UUID) -> UserTraining | None:
    return db.query(UserTraining).filter(
        UserTraining.user_id == user_id,
        UserTraining.module_id == module_id,
    ).first()


def list_departments(db: Session) -> list[Department]:
    return db.query(Department).order_by(Department.name, Department.id).all()


def count_users_by_department(db: Session) -> dict[UUID, int]:
    rows = (
        db.query(User.department_id, func.count(User.id))
        .filter(User.department_id.isnot(None))
        .group_by(User.department_id)
        .all()
    )
    return {row[0]: int(row[1]) for row in rows}


def list_users_in_departments(db: Session, department_ids: list[UUID]) -> list[User]:
    if not department_ids:
        return []
    return db.query(User).filter(User.department_id.in_(department_ids)).order_by(User.name, User.id).all()


def commit_enrollment(db: Session, enrollment_id: UUID) -> None:
    """Commit enrollment changes; a failed version check becomes a ConflictError."""
    try:
        db.commit()
    except StaleDataError as error:
        db.rollback()
        logger.warning(f"Concurrent update detected for enrollment {enrollment_id}")
        raise ConflictError(
            code="ENROLLMENT_CONCURRENT_UPDATE",
            message="Enrollment was modified concurrently, reload and retry",
            details={"enrollment_id": str(enrollment_id)},
        ) from error
