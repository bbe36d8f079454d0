"""Policy checks shared by use-cases (role assignability, department restrictions, permission lookups)."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session

from .domain_errors import ConflictError, DomainError, InvalidOperationError
from .models import Permission, Role, RoleDepartmentCompatibility, RolePermission, UserPermission, UserRole
from .repositories import find_enrollment_by_user_and_module


def user_has_permission(db: Session, *, user_id: UUID, permission_name: str) -> bool:
    """Check the user's materialized permission set."""
    return db.query(UserPermission.user_id).join(
        Permission,
        UserPermission.permission_id == Permission.id,
    ).filter(
        UserPermission.user_id == user_id,
        Permission.name == permission_name,
    ).first() is not None


def require_permission(db: Session, *, user_id: UUID, permission_name: str) -> None:
    """Enforce a materialized permission for an actor."""
    if not user_has_permission(db, user_id=user_id, permission_name=permission_name):
        raise DomainError(
            code="PERMISSION_DENIED",
            http_status=403,
            message=f"Permission denied: {permission_name} required",
            details={"permission": permission_name},
        )


def ensure_role_assignable(role: Role) -> None:
    if not role.is_active:
        raise InvalidOperationError(
            code="ROLE_INACTIVE",
            message=f"Cannot assign inactive role: {role.name}",
            details={"role_id": str(role.id)},
        )


def ensure_role_not_held(db: Session, *, user_id: UUID, role_id: UUID) -> None:
    held = db.query(UserRole).filter(
        UserRole.user_id == user_id,
        UserRole.role_id == role_id,
    ).first()
    if held:
        raise ConflictError(
            code="ROLE_ALREADY_ASSIGNED",
            message="User already has this role",
            details={"user_id": str(user_id), "role_id": str(role_id)},
        )


def ensure_permission_not_granted(db: Session, *, role_id: UUID, permission_id: UUID) -> None:
    granted = db.query(RolePermission).filter(
        RolePermission.role_id == role_id,
        RolePermission.permission_id == permission_id,
    ).first()
    if granted:
        raise ConflictError(
            code="ROLE_PERMISSION_EXISTS",
            message="Role already has this permission",
            details={"role_id": str(role_id), "permission_id": str(permission_id)},
        )


def ensure_not_enrolled(db: Session, *, user_id: UUID, module_id: UUID) -> None:
    existing = find_enrollment_by_user_and_module(db, user_id=user_id, module_id=module_id)
    if existing:
        raise ConflictError(
            code="ENROLLMENT_EXISTS",
            message=f"User is already enrolled in this module (Status: {existing.status})",
            details={"enrollment_id": str(existing.id), "status": existing.status},
        )


def allowed_department_ids(db: Session, *, role_id: UUID) -> set[UUID]:
    """Departments a restricted role may be assigned in; empty means the role is unrestricted."""
    return {
        row[0]
        for row in db.query(RoleDepartmentCompatibility.allowed_department_id).filter(
            RoleDepartmentCompatibility.role_id == role_id,
            RoleDepartmentCompatibility.is_restricted.is_(True),
        ).all()
    }


def ensure_department_compatible(
    db: Session,
    *,
    role: Role,
    department_ids: list[UUID | None],
) -> None:
    """Every given department must be allowed for a department-restricted role."""
    allowed = allowed_department_ids(db, role_id=role.id)
    if not allowed:
        return

    candidates = [item for item in dict.fromkeys(department_ids) if item is not None]
    if not candidates:
        raise InvalidOperationError(
            code="ROLE_DEPARTMENT_REQUIRED",
            message="This role requires department assignment",
            details={"role_id": str(role.id)},
        )
    for department_id in candidates:
        if department_id not in allowed:
            raise InvalidOperationError(
                code="ROLE_DEPARTMENT_INCOMPATIBLE",
                message=f"Department is not compatible with role ({role.name})",
                details={"role_id": str(role.id), "department_id": str(department_id)},
            )
