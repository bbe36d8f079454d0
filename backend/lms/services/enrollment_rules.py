"""Enrollment lifecycle invariant helpers."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


FINISHED_STATUSES: set[str] = {"completed", "certified"}
_ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    "enrolled": {"in_progress"},
    "in_progress": {"completed"},
    "completed": {"certified"},
    "certified": set(),
}


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def normalize_enrollment_status(status: str | None) -> str:
    if not status:
        return "enrolled"
    return status.strip().lower()


def is_terminal_status(status: str | None) -> bool:
    return not _ALLOWED_TRANSITIONS.get(normalize_enrollment_status(status), set())


def validate_status_transition(*, current_status: str | None, next_status: str) -> str:
    """Only the immediate next state is accepted; staying, skipping and going back are rejected."""
    current = normalize_enrollment_status(current_status)
    nxt = normalize_enrollment_status(next_status)

    if nxt not in _ALLOWED_TRANSITIONS:
        raise ValueError(f"Unknown enrollment status: {nxt}")
    if nxt not in _ALLOWED_TRANSITIONS.get(current, set()):
        raise ValueError(f"Invalid enrollment status transition: {current} -> {nxt}")
    return nxt


def ensure_certificate_before_certified(*, next_status: str, is_certified: bool) -> None:
    if normalize_enrollment_status(next_status) == "certified" and not is_certified:
        raise ValueError("Certificate must be issued before moving to certified")


def is_prerequisite_satisfied(enrollment: Any | None) -> bool:
    if enrollment is None:
        return False
    if enrollment.is_certified:
        return True
    return normalize_enrollment_status(enrollment.status) in FINISHED_STATUSES


def has_passing_score(*, final_score: float | None, passing_grade: int) -> bool:
    return final_score is not None and final_score >= passing_grade


def ensure_score_in_range(score: float) -> float:
    if score < 0 or score > 100:
        raise ValueError(f"Score must be between 0 and 100, got {score}")
    return float(score)


def certificate_rejection(enrollment: Any) -> tuple[str, str] | None:
    """Return (code, message) for the first failed issuance requirement, or None when eligible."""
    if normalize_enrollment_status(enrollment.status) != "completed":
        return (
            "CERTIFICATE_STATUS_NOT_COMPLETED",
            "Enrollment must be 'completed' before certification",
        )
    if not has_passing_score(final_score=enrollment.final_score, passing_grade=enrollment.passing_grade):
        return (
            "CERTIFICATE_SCORE_BELOW_PASSING",
            f"Cannot issue certificate. Score {enrollment.final_score} "
            f"is below passing grade {enrollment.passing_grade}",
        )
    if not enrollment.prerequisites_met:
        return (
            "CERTIFICATE_PREREQUISITES_NOT_MET",
            "All prerequisites must be met before certification",
        )
    if enrollment.is_certified:
        return (
            "CERTIFICATE_ALREADY_ISSUED",
            "This enrollment is already certified",
        )
    return None


def history_entry(*, state: str, reason: str | None, at: datetime | None = None) -> dict[str, str | None]:
    ts = at or now_utc()
    return {"state": state, "timestamp": ts.isoformat(), "reason": reason}


def append_state_history(
    history: list[dict[str, Any]] | None,
    *,
    state: str,
    reason: str | None,
    at: datetime | None = None,
) -> list[dict[str, Any]]:
    # New list so the JSON column is detected as changed.
    return [*(history or []), history_entry(state=state, reason=reason, at=at)]


def apply_status_timestamps(
    *,
    next_status: str,
    started_at: datetime | None,
    completed_at: datetime | None,
    at: datetime | None = None,
) -> dict[str, datetime | None]:
    ts = at or now_utc()
    nxt = normalize_enrollment_status(next_status)

    updated_started_at = started_at
    updated_completed_at = completed_at

    if nxt == "in_progress" and updated_started_at is None:
        updated_started_at = ts
    if nxt == "completed" and updated_completed_at is None:
        updated_completed_at = ts

    return {
        "started_at": updated_started_at,
        "completed_at": updated_completed_at,
    }
