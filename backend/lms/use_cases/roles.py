"""Role assignment and role-permission propagation use-cases."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..domain_errors import ConflictError, DomainError
from ..models import AuditEvent, RolePermission, RolePermissionSyncLog, User, UserRole
from ..policies import (
    ensure_department_compatible,
    ensure_permission_not_granted,
    ensure_role_assignable,
    ensure_role_not_held,
)
from ..repositories import get_department_or_404, get_permission_or_404, get_role_or_404, get_user_or_404
from ..schemas import BulkAssignResult
from ..services.permission_sync import recompute_user_permissions, role_holder_ids

logger = logging.getLogger(__name__)


def sync_user_permissions_use_case(*, db: Session, user_id: UUID) -> set[UUID]:
    """Rebuild the user's materialized permissions from every role they hold."""
    get_user_or_404(db, user_id)
    permission_ids = recompute_user_permissions(db, user_id=user_id)
    db.commit()
    return permission_ids


def assign_role_use_case(
    *,
    db: Session,
    user_id: UUID,
    role_id: UUID,
    department_id: UUID | None = None,
    actor_id: UUID | None = None,
) -> UserRole:
    """Assign a role; a department-restricted role checks `department_id` and the user's own department."""
    user = get_user_or_404(db, user_id)
    role = get_role_or_404(db, role_id)
    ensure_role_assignable(role)
    if department_id is not None:
        get_department_or_404(db, department_id)
    ensure_department_compatible(db, role=role, department_ids=[department_id, user.department_id])
    ensure_role_not_held(db, user_id=user.id, role_id=role.id)

    link = UserRole(user_id=user.id, role_id=role.id, assigned_by=actor_id)
    db.add(link)
    try:
        db.flush()
    except IntegrityError as error:
        db.rollback()
        raise ConflictError(
            code="ROLE_ALREADY_ASSIGNED",
            message="User already has this role",
            details={"user_id": str(user_id), "role_id": str(role_id)},
        ) from error

    permission_ids = recompute_user_permissions(db, user_id=user.id)
    db.add(
        AuditEvent(
            action="role_assigned",
            entity_type="user",
            entity_id=user.id,
            entity_name=user.name,
            user_id=actor_id,
            details={"roleId": str(role.id), "roleName": role.name, "permissions": len(permission_ids)},
        )
    )
    db.commit()
    logger.info(f"Role {role.name} assigned to user {user.id}")
    return link


def remove_role_use_case(
    *,
    db: Session,
    user_id: UUID,
    role_id: UUID,
    actor_id: UUID | None = None,
) -> bool:
    """Detach a role from a user. Removing a role the user does not hold is a no-op."""
    user = get_user_or_404(db, user_id)
    role = get_role_or_404(db, role_id)

    link = db.query(UserRole).filter(
        UserRole.user_id == user.id,
        UserRole.role_id == role.id,
    ).first()
    if link is not None:
        db.delete(link)

    recompute_user_permissions(db, user_id=user.id)
    if link is not None:
        db.add(
            AuditEvent(
                action="role_removed",
                entity_type="user",
                entity_id=user.id,
                entity_name=user.name,
                user_id=actor_id,
                details={"roleId": str(role.id), "roleName": role.name},
            )
        )
    db.commit()
    if link is not None:
        logger.info(f"Role {role.name} removed from user {user.id}")
    return link is not None


def _propagate_to_holders(db: Session, *, role_id: UUID) -> int:
    """Recompute every holder of the role; each user is committed on its own."""
    holders = role_holder_ids(db, role_id=role_id)
    for holder_id in holders:
        recompute_user_permissions(db, user_id=holder_id)
        db.commit()
    return len(holders)


def _log_sync(
    db: Session,
    *,
    role_id: UUID,
    permission_id: UUID,
    action: str,
    affected_users_count: int,
    actor_id: UUID | None,
) -> None:
    db.add(
        RolePermissionSyncLog(
            role_id=role_id,
            permission_id=permission_id,
            action=action,
            affected_users_count=affected_users_count,
            actor_id=actor_id,
            synced_at=datetime.now(timezone.utc),
        )
    )
    db.commit()


def add_permission_to_role_use_case(
    *,
    db: Session,
    role_id: UUID,
    permission_id: UUID,
    actor_id: UUID | None = None,
) -> int:
    """Grant a permission to a role and propagate it to every holder. Returns affected users."""
    role = get_role_or_404(db, role_id)
    permission = get_permission_or_404(db, permission_id)
    ensure_permission_not_granted(db, role_id=role.id, permission_id=permission.id)

    db.add(RolePermission(role_id=role.id, permission_id=permission.id))
    try:
        db.commit()
    except IntegrityError as error:
        db.rollback()
        raise ConflictError(
            code="ROLE_PERMISSION_EXISTS",
            message="Role already has this permission",
            details={"role_id": str(role_id), "permission_id": str(permission_id)},
        ) from error

    affected = _propagate_to_holders(db, role_id=role.id)
    _log_sync(
        db,
        role_id=role.id,
        permission_id=permission.id,
        action="permission_added",
        affected_users_count=affected,
        actor_id=actor_id,
    )
    logger.info(f"Permission {permission.name} added to role {role.name}; {affected} users synced")
    return affected


def remove_permission_from_role_use_case(
    *,
    db: Session,
    role_id: UUID,
    permission_id: UUID,
    actor_id: UUID | None = None,
) -> int:
    """Revoke a permission from a role. Revoking a missing grant is a no-op returning 0."""
    role = get_role_or_404(db, role_id)
    permission = get_permission_or_404(db, permission_id)

    grant = db.query(RolePermission).filter(
        RolePermission.role_id == role.id,
        RolePermission.permission_id == permission.id,
    ).first()
    if grant is None:
        return 0

    db.delete(grant)
    db.commit()

    affected = _propagate_to_holders(db, role_id=role.id)
    _log_sync(
        db,
        role_id=role.id,
        permission_id=permission.id,
        action="permission_removed",
        affected_users_count=affected,
        actor_id=actor_id,
    )
    logger.info(f"Permission {permission.name} removed from role {role.name}; {affected} users synced")
    return affected


def bulk_assign_role_use_case(
    *,
    db: Session,
    user_ids: list[UUID],
    role_id: UUID,
    actor_id: UUID | None = None,
) -> BulkAssignResult:
    """Assign a role to each user independently, collecting per-user failures."""
    result = BulkAssignResult()
    for user_id in user_ids:
        try:
            assign_role_use_case(db=db, user_id=user_id, role_id=role_id, actor_id=actor_id)
            result.successful.append(user_id)
        except DomainError as error:
            db.rollback()
            result.failed.append(user_id)
            result.errors[str(user_id)] = error.message
        except SQLAlchemyError as error:
            db.rollback()
            logger.warning(f"Bulk role assignment failed for user {user_id}: {error}")
            result.failed.append(user_id)
            result.errors[str(user_id)] = str(error)
    logger.info(
        f"Bulk assignment of role {role_id}: {len(result.successful)} succeeded, {len(result.failed)} failed"
    )
    return result


def get_affected_users_use_case(*, db: Session, role_id: UUID) -> list[User]:
    role = get_role_or_404(db, role_id)
    holder_ids = role_holder_ids(db, role_id=role.id)
    if not holder_ids:
        return []
    return db.query(User).filter(User.id.in_(holder_ids)).order_by(User.name, User.id).all()


def get_role_permission_history_use_case(
    *,
    db: Session,
    role_id: UUID,
    limit: int | None = None,
) -> list[RolePermissionSyncLog]:
    """Newest-first permission sync history of a role."""
    role = get_role_or_404(db, role_id)
    return (
        db.query(RolePermissionSyncLog)
        .filter(RolePermissionSyncLog.role_id == role.id)
        .order_by(RolePermissionSyncLog.synced_at.desc(), RolePermissionSyncLog.id.desc())
        .limit(limit or settings.ROLE_PERMISSION_HISTORY_LIMIT)
        .all()
    )
