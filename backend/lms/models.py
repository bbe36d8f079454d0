"""SQLAlchemy models for enrollment, compliance, roles/permissions and departments."""
from sqlalchemy import (
    JSON, Boolean, Column, String, Integer, Float, Date, DateTime, Text, Uuid,
    ForeignKey, CheckConstraint, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from .database import Base


ENROLLMENT_STATUSES = ("enrolled", "in_progress", "completed", "certified")
COMPLIANCE_STATUSES = ("compliant", "non_compliant", "escalated")


class Department(Base):
    """Organizational unit; departments form a forest via parent_id."""
    __tablename__ = "departments"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False, index=True)
    parent_id = Column(Uuid(as_uuid=True), ForeignKey("departments.id"), nullable=True, index=True)
    # Cached depth from root (root = 0). Recomputed on every structural change.
    level = Column(Integer, nullable=False, default=0)
    head_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", use_alter=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(level >= 0, name='chk_department_level_non_negative'),
    )

    # Relationships
    parent = relationship("Department", remote_side=[id], back_populates="children")
    children = relationship("Department", back_populates="parent")
    head = relationship("User", foreign_keys=[head_id])
    users = relationship("User", foreign_keys="User.department_id", back_populates="department")


class User(Base):
    """User model (fields relevant to training administration)."""
    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True, index=True)
    department_id = Column(Uuid(as_uuid=True), ForeignKey("departments.id"), nullable=True, index=True)
    # Explicit reporting line; falls back to department heads when unset.
    manager_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True, index=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    department = relationship("Department", foreign_keys=[department_id], back_populates="users")
    manager = relationship("User", remote_side=[id], foreign_keys=[manager_id])
    role_links = relationship("UserRole", back_populates="user", cascade="all, delete-orphan")
    permission_links = relationship("UserPermission", back_populates="user", cascade="all, delete-orphan")
    enrollments = relationship("UserTraining", back_populates="user")


class Role(Base):
    """Role model."""
    __tablename__ = "roles"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(100), unique=True, nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    user_links = relationship("UserRole", back_populates="role", cascade="all, delete-orphan")
    permission_links = relationship("RolePermission", back_populates="role", cascade="all, delete-orphan")
    department_rules = relationship(
        "RoleDepartmentCompatibility",
        back_populates="role",
        cascade="all, delete-orphan",
    )


class RoleDepartmentCompatibility(Base):
    """Departments a role may be assigned in. A role without restricted rows is unrestricted."""
    __tablename__ = "role_department_compatibility"

    role_id = Column(Uuid(as_uuid=True), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)
    allowed_department_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("departments.id", ondelete="CASCADE"),
        primary_key=True,
        index=True,
    )
    is_restricted = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    role = relationship("Role", back_populates="department_rules")
    allowed_department = relationship("Department")


class Permission(Base):
    """Permission model."""
    __tablename__ = "permissions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(150), unique=True, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class UserRole(Base):
    """User -> role assignment."""
    __tablename__ = "user_roles"

    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    role_id = Column(Uuid(as_uuid=True), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True, index=True)
    assigned_at = Column(DateTime(timezone=True), server_default=func.now())
    assigned_by = Column(Uuid(as_uuid=True), nullable=True)

    # Relationships
    user = relationship("User", back_populates="role_links")
    role = relationship("Role", back_populates="user_links")


class RolePermission(Base):
    """Role -> permission grant."""
    __tablename__ = "role_permissions"

    role_id = Column(Uuid(as_uuid=True), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)
    permission_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("permissions.id", ondelete="CASCADE"),
        primary_key=True,
        index=True,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    role = relationship("Role", back_populates="permission_links")
    permission = relationship("Permission")


class UserPermission(Base):
    """Materialized user permission (union of held roles). Written only by permission sync."""
    __tablename__ = "user_permissions"

    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    permission_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("permissions.id", ondelete="CASCADE"),
        primary_key=True,
        index=True,
    )
    synced_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    user = relationship("User", back_populates="permission_links")
    permission = relationship("Permission")


class RolePermissionSyncLog(Base):
    """Append-only history of permission attach/detach on roles."""
    __tablename__ = "role_permission_sync_logs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    role_id = Column(Uuid(as_uuid=True), ForeignKey("roles.id"), nullable=False, index=True)
    permission_id = Column(Uuid(as_uuid=True), ForeignKey("permissions.id"), nullable=False)
    action = Column(String(30), nullable=False)
    affected_users_count = Column(Integer, nullable=False, default=0)
    actor_id = Column(Uuid(as_uuid=True), nullable=True)
    synced_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    __table_args__ = (
        CheckConstraint(
            action.in_(['permission_added', 'permission_removed']),
            name='chk_role_permission_sync_action'
        ),
    )


class Module(Base):
    """Training module (program)."""
    __tablename__ = "modules"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title = Column(String(255), nullable=False)
    passing_grade = Column(Integer, nullable=False, default=70)
    prerequisite_module_id = Column(Uuid(as_uuid=True), ForeignKey("modules.id"), nullable=True, index=True)
    compliance_required = Column(Boolean, nullable=False, default=False, index=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint(
            (passing_grade >= 0) & (passing_grade <= 100),
            name='chk_module_passing_grade_range'
        ),
    )

    # Relationships
    prerequisite = relationship("Module", remote_side=[id])
    enrollments = relationship("UserTraining", back_populates="module")


class UserTraining(Base):
    """Enrollment of a user in a training module."""
    __tablename__ = "user_trainings"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    module_id = Column(Uuid(as_uuid=True), ForeignKey("modules.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="enrolled", index=True)
    final_score = Column(Float, nullable=True)
    passing_grade = Column(Integer, nullable=False, default=70)
    prerequisites_met = Column(Boolean, nullable=False, default=False)
    is_certified = Column(Boolean, nullable=False, default=False)
    certificate_issued_at = Column(DateTime(timezone=True), nullable=True)
    compliance_status = Column(String(20), nullable=False, default="compliant", index=True)
    escalation_level = Column(Integer, nullable=False, default=0)
    escalated_at = Column(DateTime(timezone=True), nullable=True)
    # Ordered list of {"state", "timestamp", "reason"}; replaced (never mutated in place).
    state_history = Column(JSON, nullable=False, default=list)
    enrolled_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint(status.in_(list(ENROLLMENT_STATUSES)), name='chk_user_training_status'),
        CheckConstraint(
            compliance_status.in_(list(COMPLIANCE_STATUSES)),
            name='chk_user_training_compliance_status'
        ),
        CheckConstraint(
            (escalation_level >= 0) & (escalation_level <= 3),
            name='chk_user_training_escalation_level'
        ),
        UniqueConstraint('user_id', 'module_id', name='uq_user_training_user_module'),
        Index('idx_user_trainings_module_compliance', 'module_id', 'compliance_status'),
    )

    # Optimistic locking: every UPDATE compares and bumps `version`.
    __mapper_args__ = {"version_id_col": version}

    # Relationships
    user = relationship("User", back_populates="enrollments")
    module = relationship("Module", back_populates="enrollments")
    compliance_audit_logs = relationship(
        "ComplianceAuditLog",
        back_populates="enrollment",
        order_by="ComplianceAuditLog.created_at",
    )


class ComplianceAuditLog(Base):
    """Append-only compliance audit trail (escalations and resolutions)."""
    __tablename__ = "compliance_audit_logs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    enrollment_id = Column(Uuid(as_uuid=True), ForeignKey("user_trainings.id"), nullable=False, index=True)
    action = Column(String(20), nullable=False, index=True)
    old_value = Column(String(50), nullable=True)
    new_value = Column(String(50), nullable=True)
    # NULL means the system (scheduled sweep, background job).
    triggered_by = Column(Uuid(as_uuid=True), nullable=True)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    __table_args__ = (
        CheckConstraint(action.in_(['escalation', 'resolution']), name='chk_compliance_audit_action'),
    )

    # Relationships
    enrollment = relationship("UserTraining", back_populates="compliance_audit_logs")


class AuditEvent(Base):
    """Audit event model."""
    __tablename__ = "audit_events"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    action = Column(String(50), nullable=False, index=True)
    entity_type = Column(String(20), nullable=False)
    entity_id = Column(Uuid(as_uuid=True), nullable=False)
    entity_name = Column(String(255), nullable=True)
    user_id = Column(Uuid(as_uuid=True), nullable=True, index=True)
    details = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    __table_args__ = (
        CheckConstraint(
            action.in_([
                'enrollment_created', 'enrollment_status_changed', 'enrollment_score_recorded',
                'certificate_issued', 'role_assigned', 'role_removed',
                'department_created', 'department_moved',
            ]),
            name='chk_audit_action'
        ),
        CheckConstraint(
            entity_type.in_(['enrollment', 'role', 'department', 'user']),
            name='chk_audit_entity_type'
        ),
        Index('idx_audit_events_entity', 'entity_type', 'entity_id'),
    )
