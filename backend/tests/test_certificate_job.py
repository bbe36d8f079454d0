from __future__ import annotations

from types import SimpleNamespace
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

import lms.celery_app as jobs
from lms.celery_app import RetryPolicy, register_event_listeners, run_certificate_job
from lms.config import Settings
from lms.events import EventBus, TrainingCompleted
from lms.models import UserTraining


def _database_down(**_kwargs):
    raise OperationalError("UPDATE user_trainings", {}, Exception("connection reset"))


def test_retry_policy_counts_attempts_and_caps_backoff() -> None:
    policy = RetryPolicy(max_attempts=3, backoff_seconds=(60, 120, 180))

    assert [policy.should_retry(attempt) for attempt in (1, 2, 3)] == [True, True, False]
    assert [policy.countdown_for(attempt) for attempt in (1, 2, 3, 7)] == [60, 120, 180, 180]


def test_retry_policy_reads_settings() -> None:
    config = Settings(
        DATABASE_URL="sqlite+pysqlite:///:memory:",
        CERTIFICATE_MAX_ATTEMPTS=5,
        CERTIFICATE_RETRY_BACKOFF_SECONDS="10, 20",
    )

    policy = RetryPolicy.from_settings(config)

    assert policy.max_attempts == 5
    assert policy.backoff_seconds == (10, 20)


def test_job_issues_certificate(db_session, factory) -> None:
    enrollment = factory.enrollment(
        factory.user("Alice"),
        factory.module("Safety"),
        status="completed",
        final_score=85.0,
    )

    outcome = run_certificate_job(db_session, enrollment.id, attempt=1)

    assert outcome.status == "certified"
    db_session.expire_all()
    stored = db_session.get(UserTraining, enrollment.id)
    assert stored.is_certified is True
    assert stored.status == "completed"


def test_job_rejection_is_final(db_session, factory) -> None:
    enrollment = factory.enrollment(
        factory.user("Alice"),
        factory.module("Safety", passing_grade=80),
        status="completed",
        final_score=50.0,
    )

    outcome = run_certificate_job(db_session, enrollment.id, attempt=1)

    assert outcome.status == "rejected"
    assert outcome.error == "CERTIFICATE_SCORE_BELOW_PASSING"
    assert outcome.countdown is None


def test_job_unknown_enrollment_is_rejected(db_session) -> None:
    outcome = run_certificate_job(db_session, uuid4(), attempt=1)

    assert outcome.status == "rejected"
    assert outcome.error == "ENROLLMENT_NOT_FOUND"


@pytest.mark.parametrize(
    ("attempt", "status", "countdown"),
    [(1, "retry", 60), (2, "retry", 120), (3, "exhausted", None)],
)
def test_persistence_failures_retry_until_exhausted(db_session, monkeypatch, attempt, status, countdown) -> None:
    monkeypatch.setattr(jobs, "issue_certificate_use_case", _database_down)
    policy = RetryPolicy(max_attempts=3, backoff_seconds=(60, 120, 180))

    outcome = run_certificate_job(db_session, uuid4(), attempt=attempt, policy=policy)

    assert outcome.status == status
    assert outcome.countdown == countdown
    assert "connection reset" in outcome.error


def test_training_completed_enqueues_certificate(monkeypatch) -> None:
    queued: list[str] = []
    monkeypatch.setattr(jobs, "generate_certificate", SimpleNamespace(delay=queued.append))
    bus = EventBus()
    register_event_listeners(bus)
    enrollment_id = uuid4()

    delivered = bus.publish(TrainingCompleted(enrollment_id=enrollment_id, user_id=uuid4(), module_id=uuid4()))

    assert delivered == 1
    assert queued == [str(enrollment_id)]
