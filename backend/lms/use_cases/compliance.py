"""Compliance use-cases: evaluation, escalation chain, resolution and reporting."""
from __future__ import annotations

import logging
from datetime import date, timedelta
from uuid import UUID

from sqlalchemy import and_, func, not_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..domain_errors import DomainError
from ..events import ComplianceEscalated, publish
from ..models import ComplianceAuditLog, Module, UserTraining
from ..repositories import commit_enrollment, get_enrollment_or_404, get_module_or_404
from ..schemas import ComplianceSummary, ComplianceSweepResult
from ..services.compliance_rules import (
    escalation_target,
    evaluate_compliance,
    has_open_case,
    next_escalation_level,
)
from ..services.enrollment_rules import now_utc

logger = logging.getLogger(__name__)

AT_RISK_STATUSES: tuple[str, ...] = ("enrolled", "in_progress")


def _today(today: date | None) -> date:
    return today or now_utc().date()


def _escalate(
    db: Session,
    *,
    enrollment: UserTraining,
    reason: str | None,
    actor_id: UUID | None,
) -> ComplianceEscalated | None:
    """Raise the escalation level by one (capped). Returns the event to publish after commit."""
    targets = settings.COMPLIANCE_ESCALATION_TARGETS
    old_level = int(enrollment.escalation_level or 0)
    new_level = next_escalation_level(old_level)

    enrollment.compliance_status = "non_compliant"
    if new_level == old_level:
        commit_enrollment(db, enrollment.id)
        logger.info(f"Enrollment {enrollment.id} already at escalation level {old_level}")
        return None

    ts = now_utc()
    enrollment.escalation_level = new_level
    enrollment.escalated_at = ts
    db.add(
        ComplianceAuditLog(
            enrollment_id=enrollment.id,
            action="escalation",
            old_value=escalation_target(old_level, targets),
            new_value=escalation_target(new_level, targets),
            triggered_by=actor_id,
            reason=reason,
            created_at=ts,
        )
    )
    commit_enrollment(db, enrollment.id)
    logger.warning(f"Enrollment {enrollment.id} escalated {old_level} -> {new_level}: {reason}")

    return ComplianceEscalated(
        enrollment_id=enrollment.id,
        user_id=enrollment.user_id,
        module_id=enrollment.module_id,
        level=new_level,
        target=escalation_target(new_level, targets),
        reason=reason,
    )


def _resolve(
    db: Session,
    *,
    enrollment: UserTraining,
    reason: str | None,
    actor_id: UUID | None,
) -> None:
    old_level = int(enrollment.escalation_level or 0)
    enrollment.compliance_status = "compliant"
    enrollment.escalation_level = 0
    enrollment.escalated_at = None
    db.add(
        ComplianceAuditLog(
            enrollment_id=enrollment.id,
            action="resolution",
            old_value=escalation_target(old_level, settings.COMPLIANCE_ESCALATION_TARGETS),
            new_value="compliant",
            triggered_by=actor_id,
            reason=reason,
            created_at=now_utc(),
        )
    )
    commit_enrollment(db, enrollment.id)
    logger.info(f"Non-compliance resolved for enrollment {enrollment.id} (was level {old_level})")


def escalate_non_compliance_use_case(
    *,
    db: Session,
    enrollment_id: UUID,
    reason: str | None = None,
    actor_id: UUID | None = None,
) -> UserTraining:
    enrollment = get_enrollment_or_404(db, enrollment_id, for_update=True)
    event = _escalate(db, enrollment=enrollment, reason=reason, actor_id=actor_id)
    if event is not None:
        publish(event)
    return enrollment


def resolve_non_compliance_use_case(
    *,
    db: Session,
    enrollment_id: UUID,
    reason: str | None = None,
    actor_id: UUID | None = None,
) -> UserTraining:
    enrollment = get_enrollment_or_404(db, enrollment_id, for_update=True)
    _resolve(db, enrollment=enrollment, reason=reason, actor_id=actor_id)
    return enrollment


def check_and_escalate_compliance_use_case(
    *,
    db: Session,
    enrollment_id: UUID,
    actor_id: UUID | None = None,
    today: date | None = None,
) -> str:
    """Evaluate one enrollment and escalate or resolve it.

    Returns one of: skipped, escalated, resolved, compliant, pending. Every path ends the
    transaction so the row lock is released before returning.
    """
    enrollment = get_enrollment_or_404(db, enrollment_id, for_update=True)
    module = get_module_or_404(db, enrollment.module_id)
    if not module.compliance_required:
        db.rollback()
        return "skipped"

    evaluation = evaluate_compliance(enrollment=enrollment, module=module, today=_today(today))

    if evaluation.is_violation:
        event = _escalate(db, enrollment=enrollment, reason=evaluation.violation, actor_id=actor_id)
        if event is not None:
            publish(event)
        return "escalated"

    if evaluation.compliant and has_open_case(enrollment):
        _resolve(db, enrollment=enrollment, reason="Compliance requirements satisfied", actor_id=actor_id)
        return "resolved"

    # Nothing to change: either already compliant, or still within deadline
    # (an open case stays open until the next check).
    db.rollback()
    return "compliant" if evaluation.compliant else "pending"


def check_all_compliance_use_case(
    *,
    db: Session,
    actor_id: UUID | None = None,
    today: date | None = None,
) -> ComplianceSweepResult:
    """Check every open enrollment of compliance-required modules; failures are isolated per item."""
    enrollment_ids = [
        row[0]
        for row in (
            db.query(UserTraining.id)
            .join(Module, Module.id == UserTraining.module_id)
            .filter(
                Module.compliance_required.is_(True),
                not_(and_(UserTraining.status == "certified", UserTraining.compliance_status == "compliant")),
            )
            .order_by(UserTraining.created_at, UserTraining.id)
            .all()
        )
    ]

    result = ComplianceSweepResult()
    for enrollment_id in enrollment_ids:
        result.checked += 1
        try:
            outcome = check_and_escalate_compliance_use_case(
                db=db,
                enrollment_id=enrollment_id,
                actor_id=actor_id,
                today=today,
            )
        except (DomainError, SQLAlchemyError) as error:
            db.rollback()
            logger.warning(f"Compliance check failed for enrollment {enrollment_id}: {error}")
            result.failed += 1
            result.errors[str(enrollment_id)] = str(error)
            continue
        if outcome == "escalated":
            result.escalated += 1
        elif outcome == "resolved":
            result.resolved += 1

    logger.info(
        f"Compliance sweep: {result.checked} checked, {result.escalated} escalated, "
        f"{result.resolved} resolved, {result.failed} failed"
    )
    return result


def get_non_compliant_users_use_case(*, db: Session, module_id: UUID) -> list[UserTraining]:
    module = get_module_or_404(db, module_id)
    return (
        db.query(UserTraining)
        .filter(
            UserTraining.module_id == module.id,
            UserTraining.compliance_status == "non_compliant",
        )
        .order_by(UserTraining.escalation_level.desc(), UserTraining.created_at)
        .all()
    )


def get_at_risk_users_use_case(
    *,
    db: Session,
    module_id: UUID,
    days_before_deadline: int | None = None,
    today: date | None = None,
) -> list[UserTraining]:
    """Unfinished enrollments whose module deadline falls within the next `days_before_deadline` days."""
    module = get_module_or_404(db, module_id)
    if module.end_date is None:
        return []

    days = settings.COMPLIANCE_AT_RISK_DAYS if days_before_deadline is None else days_before_deadline
    start = _today(today)
    if not (start <= module.end_date <= start + timedelta(days=days)):
        return []

    return (
        db.query(UserTraining)
        .filter(
            UserTraining.module_id == module.id,
            UserTraining.status.in_(AT_RISK_STATUSES),
        )
        .order_by(UserTraining.created_at)
        .all()
    )


def get_compliance_summary_use_case(*, db: Session) -> ComplianceSummary:
    counts = dict(
        db.query(UserTraining.compliance_status, func.count(UserTraining.id))
        .group_by(UserTraining.compliance_status)
        .all()
    )
    breakdown = dict(
        db.query(UserTraining.escalation_level, func.count(UserTraining.id))
        .filter(UserTraining.compliance_status != "compliant")
        .group_by(UserTraining.escalation_level)
        .all()
    )
    return ComplianceSummary(
        total_enrollments=sum(int(value) for value in counts.values()),
        compliant_count=int(counts.get("compliant", 0)),
        non_compliant_count=int(counts.get("non_compliant", 0)),
        escalated_count=int(counts.get("escalated", 0)),
        escalation_breakdown={int(level): int(count) for level, count in breakdown.items()},
    )


def get_compliance_audit_trail_use_case(*, db: Session, enrollment_id: UUID) -> list[ComplianceAuditLog]:
    """Escalation and resolution rows of one enrollment, oldest first."""
    enrollment = get_enrollment_or_404(db, enrollment_id)
    return (
        db.query(ComplianceAuditLog)
        .filter(ComplianceAuditLog.enrollment_id == enrollment.id)
        .order_by(ComplianceAuditLog.created_at, ComplianceAuditLog.id)
        .all()
    )
