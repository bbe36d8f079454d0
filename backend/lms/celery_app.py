"""
Celery worker: certificate generation with a declarative retry policy and the compliance sweep.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from celery import Celery
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import Settings, settings
from .database import SessionLocal
from .domain_errors import DomainError
from .events import EventBus, TrainingCompleted, event_bus
from .use_cases.compliance import check_all_compliance_use_case
from .use_cases.enrollment import issue_certificate_use_case

logger = logging.getLogger(__name__)

celery_app = Celery(
    "lms_training",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
)


@dataclass(frozen=True)
class RetryPolicy:
    """How many times a job runs and how long to wait before each retry."""

    max_attempts: int = 3
    backoff_seconds: tuple[int, ...] = (60, 120, 180)

    @classmethod
    def from_settings(cls, config: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=config.CERTIFICATE_MAX_ATTEMPTS,
            backoff_seconds=config.certificate_backoff_schedule or cls.backoff_seconds,
        )

    def should_retry(self, attempt: int) -> bool:
        """`attempt` is 1-based: the run that just failed."""
        return attempt < self.max_attempts

    def countdown_for(self, attempt: int) -> int:
        index = max(0, min(attempt - 1, len(self.backoff_seconds) - 1))
        return int(self.backoff_seconds[index])


CERTIFICATE_RETRY_POLICY = RetryPolicy.from_settings(settings)


@dataclass(frozen=True)
class CertificateJobOutcome:
    status: str  # certified | rejected | retry | exhausted
    countdown: int | None = None
    error: str | None = None


def generate_certificate_for_enrollment(db: Session, enrollment_id: UUID):
    """Issue the certificate on behalf of the system."""
    return issue_certificate_use_case(db=db, enrollment_id=enrollment_id, actor_id=None)


def run_certificate_job(
    db: Session,
    enrollment_id: UUID,
    *,
    attempt: int,
    policy: RetryPolicy = CERTIFICATE_RETRY_POLICY,
) -> CertificateJobOutcome:
    """Run one attempt. Business-rule rejections are final; persistence errors are retried."""
    try:
        generate_certificate_for_enrollment(db, enrollment_id)
    except DomainError as e:
        logger.warning(f"Certificate for enrollment {enrollment_id} rejected: {e.code} {e.message}")
        return CertificateJobOutcome(status="rejected", error=e.code)
    except SQLAlchemyError as e:
        db.rollback()
        if not policy.should_retry(attempt):
            logger.error(
                f"Certificate generation for enrollment {enrollment_id} failed after "
                f"{policy.max_attempts} attempts: {e}",
                exc_info=True,
            )
            return CertificateJobOutcome(status="exhausted", error=str(e))
        countdown = policy.countdown_for(attempt)
        logger.warning(
            f"Retry {attempt}/{policy.max_attempts} in {countdown}s for certificate of enrollment {enrollment_id}: {e}"
        )
        return CertificateJobOutcome(status="retry", countdown=countdown, error=str(e))

    logger.info(f"Certificate generated for enrollment {enrollment_id}")
    return CertificateJobOutcome(status="certified")


@celery_app.task(bind=True, name="generate_certificate", max_retries=None)
def generate_certificate(self, enrollment_id: str):
    """Generate a certificate for a completed enrollment."""
    db = SessionLocal()
    try:
        outcome = run_certificate_job(db, UUID(enrollment_id), attempt=self.request.retries + 1)
    finally:
        db.close()

    if outcome.status == "retry":
        raise self.retry(countdown=outcome.countdown)
    return {"enrollment_id": enrollment_id, "status": outcome.status, "error": outcome.error}


@celery_app.task(name="check_all_compliance")
def check_all_compliance():
    """Run the compliance sweep as the system actor."""
    db = SessionLocal()
    try:
        result = check_all_compliance_use_case(db=db, actor_id=None)
        return result.model_dump()
    except Exception as e:
        db.rollback()
        logger.error(f"Error running compliance sweep: {e}", exc_info=True)
        raise
    finally:
        db.close()


def enqueue_certificate_generation(event: TrainingCompleted) -> None:
    generate_certificate.delay(str(event.enrollment_id))
    logger.info(f"Queued certificate generation for enrollment {event.enrollment_id}")


def register_event_listeners(bus: EventBus = event_bus) -> None:
    """Wire domain events to background jobs."""
    bus.subscribe(TrainingCompleted, enqueue_certificate_generation)
