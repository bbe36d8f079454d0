"""Helpers for keeping materialized user permissions consistent with held roles."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from ..models import RolePermission, UserPermission, UserRole


def role_holder_ids(db: Session, *, role_id: UUID) -> list[UUID]:
    return [
        row[0]
        for row in (
            db.query(UserRole.user_id)
            .filter(UserRole.role_id == role_id)
            .order_by(UserRole.assigned_at, UserRole.user_id)
            .all()
        )
    ]


def compute_user_permission_ids(db: Session, *, user_id: UUID) -> set[UUID]:
    """Union of the permissions granted by every role the user currently holds."""
    rows = (
        db.query(RolePermission.permission_id)
        .join(UserRole, UserRole.role_id == RolePermission.role_id)
        .filter(UserRole.user_id == user_id)
        .distinct()
        .all()
    )
    return {row[0] for row in rows}


def recompute_user_permissions(db: Session, *, user_id: UUID) -> set[UUID]:
    """Replace the user's materialized permission rows with the computed set.

    Does not commit. Idempotent: running it twice leaves the same rows.
    """
    db.flush()
    expected = compute_user_permission_ids(db, user_id=user_id)

    current_rows = db.query(UserPermission).filter(UserPermission.user_id == user_id).all()
    current = {row.permission_id for row in current_rows}

    for row in current_rows:
        if row.permission_id not in expected:
            db.delete(row)
    for permission_id in expected - current:
        db.add(UserPermission(user_id=user_id, permission_id=permission_id))

    db.flush()
    return expected
