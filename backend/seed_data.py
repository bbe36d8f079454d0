"""Seed database with demo data."""
from datetime import date, timedelta

from lms.database import Base, SessionLocal, engine
from lms.models import Module, Permission, Role, User
from lms.use_cases.departments import create_department_use_case
from lms.use_cases.enrollment import enroll_use_case
from lms.use_cases.roles import add_permission_to_role_use_case, assign_role_use_case

ROLE_PERMISSIONS = {
    "admin": ["departments.manage", "roles.manage", "modules.manage", "compliance.view", "reports.view"],
    "trainer": ["modules.manage", "compliance.view"],
    "employee": ["modules.view"],
}


def seed(db):
    """Create a small company with roles, modules and enrollments."""
    company = create_department_use_case(db=db, name="Demo Company")
    operations = create_department_use_case(db=db, name="Operations", parent_id=company.id)
    create_department_use_case(db=db, name="Human Resources", parent_id=company.id)
    plant = create_department_use_case(db=db, name="Plant", parent_id=operations.id)

    director = User(name="Director", email="director@example.com", department_id=company.id)
    trainer = User(name="Trainer", email="trainer@example.com", department_id=operations.id)
    db.add_all([director, trainer])
    db.flush()
    workers = [
        User(name=f"Worker {index}", email=f"worker{index}@example.com", department_id=plant.id)
        for index in range(1, 4)
    ]
    db.add_all(workers)
    company.head_id = director.id
    operations.head_id = trainer.id
    db.commit()

    permissions = {}
    for name in sorted({item for names in ROLE_PERMISSIONS.values() for item in names}):
        permissions[name] = Permission(name=name)
    roles = {name: Role(name=name) for name in ROLE_PERMISSIONS}
    db.add_all([*permissions.values(), *roles.values()])
    db.commit()

    for role_name, permission_names in ROLE_PERMISSIONS.items():
        for permission_name in permission_names:
            add_permission_to_role_use_case(
                db=db,
                role_id=roles[role_name].id,
                permission_id=permissions[permission_name].id,
            )

    assign_role_use_case(db=db, user_id=director.id, role_id=roles["admin"].id)
    assign_role_use_case(db=db, user_id=trainer.id, role_id=roles["trainer"].id)
    for worker in workers:
        assign_role_use_case(db=db, user_id=worker.id, role_id=roles["employee"].id)

    safety = Module(
        title="Workplace Safety",
        passing_grade=75,
        compliance_required=True,
        start_date=date.today(),
        end_date=date.today() + timedelta(days=30),
    )
    db.add(safety)
    db.flush()
    advanced = Module(title="Advanced Machine Operation", passing_grade=80, prerequisite_module_id=safety.id)
    db.add(advanced)
    db.commit()

    for worker in workers:
        enroll_use_case(db=db, user_id=worker.id, module_id=safety.id)

    return {
        "departments": 4,
        "users": 2 + len(workers),
        "roles": len(roles),
        "modules": 2,
        "enrollments": len(workers),
    }


def main():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        counts = seed(db)
        print("Demo data created:")
        for name, count in counts.items():
            print(f"  {name}: {count}")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
