from __future__ import annotations

import os
from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Configure a disposable database URL before importing the application modules.
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"

from lms.database import Base  # noqa: E402
from lms import models  # noqa: E402
from lms.events import event_bus  # noqa: E402


@pytest.fixture()
def db_session():
    engine = create_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture(autouse=True)
def _isolated_event_bus():
    event_bus.clear()
    yield
    event_bus.clear()


class _Factory:
    """Small helpers creating committed rows."""

    def __init__(self, db) -> None:
        self.db = db

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        return obj

    def department(self, name: str, *, parent=None, head=None):
        return self._save(
            models.Department(
                name=name,
                parent_id=parent.id if parent else None,
                level=(parent.level + 1) if parent else 0,
                head_id=head.id if head else None,
            )
        )

    def user(self, name: str = "User", *, department=None, manager=None):
        return self._save(
            models.User(
                name=name,
                email=f"{name.lower().replace(' ', '.')}@example.com",
                department_id=department.id if department else None,
                manager_id=manager.id if manager else None,
                is_active=True,
            )
        )

    def role(self, name: str, *, is_active: bool = True):
        return self._save(models.Role(name=name, is_active=is_active))

    def restrict(self, role, department):
        return self._save(models.RoleDepartmentCompatibility(role_id=role.id, allowed_department_id=department.id))

    def permission(self, name: str):
        return self._save(models.Permission(name=name))

    def grant(self, role, permission):
        return self._save(models.RolePermission(role_id=role.id, permission_id=permission.id))

    def module(
        self,
        title: str = "Module",
        *,
        passing_grade: int = 70,
        prerequisite=None,
        compliance_required: bool = False,
        end_date: date | None = None,
    ):
        return self._save(
            models.Module(
                title=title,
                passing_grade=passing_grade,
                prerequisite_module_id=prerequisite.id if prerequisite else None,
                compliance_required=compliance_required,
                end_date=end_date,
            )
        )

    def enrollment(self, user, module, **fields):
        values = {
            "status": "enrolled",
            "passing_grade": module.passing_grade,
            "prerequisites_met": True,
            "is_certified": False,
            "compliance_status": "compliant",
            "escalation_level": 0,
            "state_history": [],
        }
        values.update(fields)
        return self._save(models.UserTraining(user_id=user.id, module_id=module.id, **values))


@pytest.fixture()
def factory(db_session):
    return _Factory(db_session)
