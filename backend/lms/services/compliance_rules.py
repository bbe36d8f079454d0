"""Compliance evaluation and escalation-level helpers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Mapping

from .enrollment_rules import FINISHED_STATUSES, has_passing_score, normalize_enrollment_status


MAX_ESCALATION_LEVEL = 3
DEFAULT_ESCALATION_TARGETS: dict[int, str] = {
    0: "none",
    1: "manager",
    2: "department_head",
    3: "executive",
}
OPEN_CASE_STATUSES: set[str] = {"non_compliant", "escalated"}


@dataclass(frozen=True)
class ComplianceEvaluation:
    compliant: bool = False
    violation: str | None = None

    @property
    def is_violation(self) -> bool:
        return self.violation is not None


def clamp_escalation_level(level: int | None) -> int:
    return max(0, min(int(level or 0), MAX_ESCALATION_LEVEL))


def next_escalation_level(level: int | None) -> int:
    return clamp_escalation_level(clamp_escalation_level(level) + 1)


def escalation_target(level: int | None, targets: Mapping[int, str] | None = None) -> str:
    table = targets or DEFAULT_ESCALATION_TARGETS
    return table.get(clamp_escalation_level(level), "none")


def has_open_case(enrollment: Any) -> bool:
    return enrollment.compliance_status in OPEN_CASE_STATUSES or int(enrollment.escalation_level or 0) > 0


def evaluate_compliance(*, enrollment: Any, module: Any, today: date) -> ComplianceEvaluation:
    """Decide whether an enrollment of a compliance-required module is compliant or violating.

    Neither compliant nor violating means the enrollment is still within its deadline.
    """
    status = normalize_enrollment_status(enrollment.status)
    passed = has_passing_score(final_score=enrollment.final_score, passing_grade=enrollment.passing_grade)

    if enrollment.is_certified or (status in FINISHED_STATUSES and passed):
        return ComplianceEvaluation(compliant=True)

    if status == "completed" and enrollment.final_score is not None and not passed:
        return ComplianceEvaluation(
            violation=f"Score {enrollment.final_score} below passing grade {enrollment.passing_grade}",
        )

    if module.end_date is not None and module.end_date < today and status not in FINISHED_STATUSES:
        return ComplianceEvaluation(
            violation=f"Compliance deadline ({module.end_date.isoformat()}) has passed",
        )

    return ComplianceEvaluation()
