from __future__ import annotations

from uuid import uuid4

import pytest

from lms.domain_errors import DomainError, NotFoundError
from lms.models import AuditEvent, Department
from lms.use_cases import departments as use_case


def _tree(factory):
    company = factory.department("Company")
    operations = factory.department("Operations", parent=company)
    hr = factory.department("HR", parent=company)
    plant = factory.department("Plant", parent=operations)
    line = factory.department("Line A", parent=plant)
    return company, operations, hr, plant, line


def test_create_department_computes_level_and_audits(db_session, factory) -> None:
    company = factory.department("Company")

    created = use_case.create_department_use_case(db=db_session, name="Finance", parent_id=company.id)

    assert created.level == 1
    audits = db_session.query(AuditEvent).filter(AuditEvent.action == "department_created").all()
    assert len(audits) == 1
    assert audits[0].entity_id == created.id


def test_create_department_with_missing_parent_is_not_found(db_session) -> None:
    with pytest.raises(NotFoundError) as exc:
        use_case.create_department_use_case(db=db_session, name="Orphan", parent_id=uuid4())
    assert exc.value.code == "DEPARTMENT_NOT_FOUND"
    assert exc.value.http_status == 404


def test_build_tree_nests_and_orders_by_name(db_session, factory) -> None:
    company, operations, _hr, _plant, _line = _tree(factory)
    factory.user("Olga", department=operations)

    forest = use_case.build_tree_use_case(db=db_session)

    assert len(forest) == 1
    assert forest[0].id == company.id
    assert [child.name for child in forest[0].children] == ["HR", "Operations"]
    assert forest[0].children[1].users_count == 1


def test_path_ancestors_descendants_and_breadcrumb(db_session, factory) -> None:
    company, operations, _hr, plant, line = _tree(factory)

    path = use_case.get_hierarchy_path_use_case(db=db_session, department_id=line.id)
    assert [item.id for item in path] == [line.id, plant.id, operations.id, company.id]

    ancestors = use_case.get_ancestors_use_case(db=db_session, department_id=line.id)
    assert [item.id for item in ancestors] == [plant.id, operations.id, company.id]

    descendants = use_case.get_descendants_use_case(db=db_session, department_id=operations.id)
    assert {item.id for item in descendants} == {plant.id, line.id}

    breadcrumb = use_case.get_breadcrumb_use_case(db=db_session, department_id=line.id)
    assert [item.name for item in breadcrumb] == ["Company", "Operations", "Plant", "Line A"]

    assert use_case.get_level_use_case(db=db_session, department_id=line.id) == 3


def test_move_under_descendant_is_rejected_and_changes_nothing(db_session, factory) -> None:
    company, operations, _hr, _plant, line = _tree(factory)

    with pytest.raises(DomainError, match="own descendant") as exc:
        use_case.move_department_use_case(db=db_session, department_id=operations.id, new_parent_id=line.id)

    assert exc.value.code == "DEPARTMENT_CYCLE"
    assert exc.value.http_status == 422
    db_session.expire_all()
    reloaded = db_session.get(Department, operations.id)
    assert reloaded.parent_id == company.id
    assert reloaded.level == 1


def test_move_under_self_is_rejected(db_session, factory) -> None:
    _company, operations, *_rest = _tree(factory)

    with pytest.raises(DomainError) as exc:
        use_case.move_department_use_case(db=db_session, department_id=operations.id, new_parent_id=operations.id)
    assert exc.value.code == "DEPARTMENT_SELF_PARENT"


def test_move_to_missing_parent_is_not_found(db_session, factory) -> None:
    _company, operations, *_rest = _tree(factory)

    with pytest.raises(NotFoundError):
        use_case.move_department_use_case(db=db_session, department_id=operations.id, new_parent_id=uuid4())


def test_move_recomputes_levels_for_whole_subtree(db_session, factory) -> None:
    _company, operations, hr, plant, line = _tree(factory)

    use_case.move_department_use_case(db=db_session, department_id=operations.id, new_parent_id=hr.id)

    db_session.expire_all()
    assert db_session.get(Department, operations.id).parent_id == hr.id
    for department in (operations, plant, line):
        stored = db_session.get(Department, department.id)
        assert stored.level == use_case.get_level_use_case(db=db_session, department_id=department.id)
    assert db_session.get(Department, line.id).level == 4
    audit = db_session.query(AuditEvent).filter(AuditEvent.action == "department_moved").one()
    assert audit.details["newParentId"] == str(hr.id)


def test_move_to_root(db_session, factory) -> None:
    _company, operations, _hr, plant, _line = _tree(factory)

    use_case.move_department_use_case(db=db_session, department_id=operations.id, new_parent_id=None)

    db_session.expire_all()
    assert db_session.get(Department, operations.id).level == 0
    assert db_session.get(Department, plant.id).level == 1
    assert len(use_case.build_tree_use_case(db=db_session)) == 2


def test_direct_manager_prefers_explicit_mapping(db_session, factory) -> None:
    boss = factory.user("Boss")
    dept = factory.department("Sales", head=boss)
    mentor = factory.user("Mentor")
    employee = factory.user("Employee", department=dept, manager=mentor)

    assert use_case.get_direct_manager_use_case(db=db_session, user_id=employee.id).id == mentor.id


def test_direct_manager_falls_back_to_department_heads(db_session, factory) -> None:
    ceo = factory.user("CEO")
    company = factory.department("Company", head=ceo)
    head = factory.user("Head")
    sales = factory.department("Sales", parent=company, head=head)
    head.department_id = sales.id
    db_session.commit()
    employee = factory.user("Employee", department=sales)

    assert use_case.get_direct_manager_use_case(db=db_session, user_id=employee.id).id == head.id
    # A department head reports to the nearest ancestor head.
    assert use_case.get_direct_manager_use_case(db=db_session, user_id=head.id).id == ceo.id
    assert use_case.get_direct_manager_use_case(db=db_session, user_id=ceo.id) is None


def test_subordinates_cover_direct_reports_and_headed_subtree(db_session, factory) -> None:
    head = factory.user("Head")
    operations = factory.department("Operations", head=head)
    plant = factory.department("Plant", parent=operations)
    worker = factory.user("Worker", department=plant)
    clerk = factory.user("Clerk", department=operations)
    assistant = factory.user("Assistant", manager=head)
    factory.user("Outsider")

    subordinates = use_case.get_subordinates_use_case(db=db_session, manager_id=head.id)

    assert {user.id for user in subordinates} == {worker.id, clerk.id, assistant.id}


def test_subordinates_empty_when_nothing_mapped(db_session, factory) -> None:
    loner = factory.user("Loner")
    assert use_case.get_subordinates_use_case(db=db_session, manager_id=loner.id) == []


def test_reporting_structure_lists_executives_nearest_first(db_session, factory) -> None:
    ceo = factory.user("CEO")
    vp = factory.user("VP")
    lead = factory.user("Lead")
    company = factory.department("Company", head=ceo)
    division = factory.department("Division", parent=company, head=vp)
    team = factory.department("Team", parent=division, head=lead)
    employee = factory.user("Employee", department=team)

    structure = use_case.get_reporting_structure_use_case(db=db_session, user_id=employee.id)

    assert structure.employee.id == employee.id
    assert structure.manager.id == lead.id
    assert structure.department_head.id == lead.id
    assert [item.id for item in structure.executives] == [vp.id, ceo.id]


def test_build_tree_and_level_agree_on_deep_chain(db_session) -> None:
    chain: list[Department] = []
    for index in range(1200):
        parent = chain[-1] if chain else None
        chain.append(
            Department(
                id=uuid4(),
                name=f"Unit {index:04d}",
                parent_id=parent.id if parent else None,
                level=index,
            )
        )
    db_session.add_all(chain)
    db_session.commit()

    forest = use_case.build_tree_use_case(db=db_session)

    node = forest[0]
    while node.children:
        node = node.children[0]
    assert node.id == chain[-1].id
    assert node.level == use_case.get_level_use_case(db=db_session, department_id=chain[-1].id) == 1199


def test_move_inside_existing_cycle_reports_corrupt_hierarchy(db_session, factory) -> None:
    target = factory.department("Target")
    a = factory.department("A")
    b = factory.department("B", parent=a)
    a.parent_id = b.id
    db_session.commit()

    with pytest.raises(DomainError) as exc:
        use_case.move_department_use_case(db=db_session, department_id=a.id, new_parent_id=target.id)

    assert exc.value.code == "DEPARTMENT_HIERARCHY_CYCLE"
