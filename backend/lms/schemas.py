"""Pydantic read models returned by use-cases."""
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional
from uuid import UUID


# User schemas
class UserBrief(BaseModel):
    """Brief user info for nested responses."""
    id: UUID
    name: str
    email: Optional[str] = None
    department_id: Optional[UUID] = None
    model_config = ConfigDict(from_attributes=True)


class ReportingStructure(BaseModel):
    """Reporting line of one employee."""
    employee: UserBrief
    manager: Optional[UserBrief] = None
    department_head: Optional[UserBrief] = None
    # Heads of ancestor departments, nearest first.
    executives: list[UserBrief] = Field(default_factory=list)


# Department schemas
class DepartmentBrief(BaseModel):
    id: UUID
    name: str
    model_config = ConfigDict(from_attributes=True)


class DepartmentOut(BaseModel):
    id: UUID
    name: str
    parent_id: Optional[UUID] = None
    level: int
    head_id: Optional[UUID] = None
    model_config = ConfigDict(from_attributes=True)


class DepartmentNode(DepartmentOut):
    """Department with nested children (tree view)."""
    users_count: int = 0
    children: list["DepartmentNode"] = Field(default_factory=list)


# Role schemas
class BulkAssignResult(BaseModel):
    """Outcome of assigning one role to many users."""
    successful: list[UUID] = Field(default_factory=list)
    failed: list[UUID] = Field(default_factory=list)
    errors: dict[str, str] = Field(default_factory=dict)


# Enrollment schemas
class PrerequisiteCheck(BaseModel):
    met: bool
    missing: list[UUID] = Field(default_factory=list)


# Compliance schemas
class ComplianceSummary(BaseModel):
    total_enrollments: int = 0
    compliant_count: int = 0
    non_compliant_count: int = 0
    escalated_count: int = 0
    # Escalation level -> number of enrollments currently at that level.
    escalation_breakdown: dict[int, int] = Field(default_factory=dict)


class ComplianceSweepResult(BaseModel):
    """Outcome of checking every compliance-required enrollment."""
    checked: int = 0
    escalated: int = 0
    resolved: int = 0
    failed: int = 0
    errors: dict[str, str] = Field(default_factory=dict)
