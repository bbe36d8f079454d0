"""Enrollment lifecycle use-cases: enroll, transitions, scoring and certificate issuance."""
from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..domain_errors import ConflictError, InvalidOperationError
from ..events import ExamPassed, TrainingCompleted, publish
from ..models import AuditEvent, UserTraining
from ..policies import ensure_not_enrolled
from ..repositories import (
    commit_enrollment,
    find_enrollment_by_user_and_module,
    get_enrollment_or_404,
    get_module_or_404,
    get_user_or_404,
)
from ..schemas import PrerequisiteCheck
from ..services.enrollment_rules import (
    append_state_history,
    apply_status_timestamps,
    certificate_rejection,
    ensure_certificate_before_certified,
    ensure_score_in_range,
    has_passing_score,
    history_entry,
    is_prerequisite_satisfied,
    now_utc,
    validate_status_transition,
)

logger = logging.getLogger(__name__)


def _audit(
    db: Session,
    *,
    enrollment: UserTraining,
    action: str,
    actor_id: UUID | None,
    details: dict,
) -> None:
    db.add(
        AuditEvent(
            action=action,
            entity_type="enrollment",
            entity_id=enrollment.id,
            user_id=actor_id,
            details=details,
        )
    )


def check_prerequisites_use_case(*, db: Session, user_id: UUID, module_id: UUID) -> PrerequisiteCheck:
    """Met when the module has no prerequisite or the user finished/certified in it."""
    module = get_module_or_404(db, module_id)
    if module.prerequisite_module_id is None:
        return PrerequisiteCheck(met=True)

    prerequisite_enrollment = find_enrollment_by_user_and_module(
        db,
        user_id=user_id,
        module_id=module.prerequisite_module_id,
    )
    if is_prerequisite_satisfied(prerequisite_enrollment):
        return PrerequisiteCheck(met=True)
    return PrerequisiteCheck(met=False, missing=[module.prerequisite_module_id])


def enroll_use_case(
    *,
    db: Session,
    user_id: UUID,
    module_id: UUID,
    actor_id: UUID | None = None,
) -> UserTraining:
    user = get_user_or_404(db, user_id)
    module = get_module_or_404(db, module_id)
    ensure_not_enrolled(db, user_id=user.id, module_id=module.id)

    prerequisites = check_prerequisites_use_case(db=db, user_id=user.id, module_id=module.id)
    if not prerequisites.met:
        logger.warning(f"User {user.id} cannot enroll in module {module.id}: prerequisites missing")
        raise InvalidOperationError(
            code="ENROLLMENT_PREREQUISITES_NOT_MET",
            message="Prerequisites not met",
            details={"missing": [str(item) for item in prerequisites.missing]},
        )

    ts = now_utc()
    enrollment = UserTraining(
        user_id=user.id,
        module_id=module.id,
        status="enrolled",
        passing_grade=module.passing_grade,
        prerequisites_met=True,
        is_certified=False,
        compliance_status="compliant",
        escalation_level=0,
        state_history=[history_entry(state="enrolled", reason="Initial enrollment", at=ts)],
        enrolled_at=ts,
    )
    db.add(enrollment)
    try:
        db.flush()
        _audit(
            db,
            enrollment=enrollment,
            action="enrollment_created",
            actor_id=actor_id,
            details={"userId": str(user.id), "moduleId": str(module.id)},
        )
        db.commit()
    except IntegrityError as error:
        db.rollback()
        raise ConflictError(
            code="ENROLLMENT_EXISTS",
            message="User is already enrolled in this module",
            details={"user_id": str(user_id), "module_id": str(module_id)},
        ) from error

    logger.info(f"User {user.id} enrolled in module {module.id} ({enrollment.id})")
    return enrollment


def transition_state_use_case(
    *,
    db: Session,
    enrollment_id: UUID,
    new_status: str,
    actor_id: UUID | None = None,
    reason: str | None = None,
) -> UserTraining:
    """Advance an enrollment to the immediate next lifecycle state."""
    enrollment = get_enrollment_or_404(db, enrollment_id, for_update=True)
    old_status = enrollment.status

    try:
        next_status = validate_status_transition(current_status=old_status, next_status=new_status)
    except ValueError as error:
        logger.warning(f"Rejected transition of enrollment {enrollment.id}: {error}")
        raise InvalidOperationError(
            code="ENROLLMENT_INVALID_TRANSITION",
            message=str(error),
            details={"from": old_status, "to": new_status},
        ) from error

    try:
        ensure_certificate_before_certified(next_status=next_status, is_certified=bool(enrollment.is_certified))
    except ValueError as error:
        raise InvalidOperationError(
            code="ENROLLMENT_CERTIFICATE_REQUIRED",
            message=str(error),
            details={"enrollment_id": str(enrollment.id)},
        ) from error

    ts = now_utc()
    timestamps = apply_status_timestamps(
        next_status=next_status,
        started_at=enrollment.started_at,
        completed_at=enrollment.completed_at,
        at=ts,
    )
    enrollment.status = next_status
    enrollment.started_at = timestamps["started_at"]
    enrollment.completed_at = timestamps["completed_at"]
    enrollment.state_history = append_state_history(
        enrollment.state_history,
        state=next_status,
        reason=reason,
        at=ts,
    )
    _audit(
        db,
        enrollment=enrollment,
        action="enrollment_status_changed",
        actor_id=actor_id,
        details={"oldStatus": old_status, "newStatus": next_status, "reason": reason},
    )
    commit_enrollment(db, enrollment.id)
    logger.info(f"Enrollment {enrollment.id} moved {old_status} -> {next_status}")

    if next_status == "completed":
        publish(
            TrainingCompleted(
                enrollment_id=enrollment.id,
                user_id=enrollment.user_id,
                module_id=enrollment.module_id,
            )
        )
    return enrollment


def record_final_score_use_case(
    *,
    db: Session,
    enrollment_id: UUID,
    score: float,
    actor_id: UUID | None = None,
) -> UserTraining:
    """Store the final score; `ExamPassed` is published when the score first reaches the passing grade."""
    try:
        value = ensure_score_in_range(score)
    except ValueError as error:
        raise InvalidOperationError(
            code="ENROLLMENT_SCORE_OUT_OF_RANGE",
            message=str(error),
            details={"score": score},
        ) from error

    enrollment = get_enrollment_or_404(db, enrollment_id, for_update=True)
    if enrollment.is_certified or enrollment.status == "certified":
        raise InvalidOperationError(
            code="ENROLLMENT_ALREADY_CERTIFIED",
            message="Cannot change the score of a certified enrollment",
            details={"enrollment_id": str(enrollment.id)},
        )

    old_score = enrollment.final_score
    enrollment.final_score = value
    _audit(
        db,
        enrollment=enrollment,
        action="enrollment_score_recorded",
        actor_id=actor_id,
        details={"oldScore": old_score, "newScore": value, "passingGrade": enrollment.passing_grade},
    )
    commit_enrollment(db, enrollment.id)

    was_passing = has_passing_score(final_score=old_score, passing_grade=enrollment.passing_grade)
    if not was_passing and has_passing_score(final_score=value, passing_grade=enrollment.passing_grade):
        publish(
            ExamPassed(
                enrollment_id=enrollment.id,
                user_id=enrollment.user_id,
                module_id=enrollment.module_id,
                score=value,
            )
        )
    return enrollment


def issue_certificate_use_case(
    *,
    db: Session,
    enrollment_id: UUID,
    actor_id: UUID | None = None,
) -> UserTraining:
    """Mark a completed, passing enrollment as certified. The status itself is left unchanged."""
    enrollment = get_enrollment_or_404(db, enrollment_id, for_update=True)

    rejection = certificate_rejection(enrollment)
    if rejection is not None:
        code, message = rejection
        logger.warning(f"Certificate refused for enrollment {enrollment.id}: {code}")
        raise InvalidOperationError(
            code=code,
            message=message,
            details={
                "status": enrollment.status,
                "final_score": enrollment.final_score,
                "passing_grade": enrollment.passing_grade,
            },
        )

    enrollment.is_certified = True
    enrollment.certificate_issued_at = now_utc()
    _audit(
        db,
        enrollment=enrollment,
        action="certificate_issued",
        actor_id=actor_id,
        details={"finalScore": enrollment.final_score, "passingGrade": enrollment.passing_grade},
    )
    commit_enrollment(db, enrollment.id)
    logger.info(f"Certificate issued for enrollment {enrollment.id}")
    return enrollment
