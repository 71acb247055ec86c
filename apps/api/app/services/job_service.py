"""Job service - background job scheduling and state transitions."""

from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db.enums import JobStatus, JobType
from app.db.models import Job
from app.utils.time import utcnow


def schedule_job(
    db: Session,
    user_id: UUID | None,
    job_type: JobType,
    payload: dict,
    run_at: datetime | None = None,
    idempotency_key: str | None = None,
    max_attempts: int = 3,
    commit: bool = True,
) -> Job:
    """
    Schedule a new background job.

    If run_at is None, the job runs on the next worker poll.
    If idempotency_key is provided, a duplicate key raises IntegrityError
    (use schedule_job_once to swallow duplicates).
    """
    job = Job(
        user_id=user_id,
        job_type=job_type.value,
        payload=payload,
        run_at=run_at or utcnow(),
        status=JobStatus.PENDING.value,
        idempotency_key=idempotency_key,
        max_attempts=max_attempts,
    )
    db.add(job)
    if commit:
        db.commit()
        db.refresh(job)
    else:
        db.flush()
    return job


def schedule_job_once(
    db: Session,
    user_id: UUID | None,
    job_type: JobType,
    payload: dict,
    idempotency_key: str,
    run_at: datetime | None = None,
    max_attempts: int = 3,
) -> Job | None:
    """Schedule a job unless one with the same idempotency key exists."""
    existing = db.query(Job).filter(Job.idempotency_key == idempotency_key).first()
    if existing:
        return None
    try:
        return schedule_job(
            db,
            user_id=user_id,
            job_type=job_type,
            payload=payload,
            run_at=run_at,
            idempotency_key=idempotency_key,
            max_attempts=max_attempts,
        )
    except IntegrityError:
        db.rollback()
        return None


def get_pending_jobs(db: Session, limit: int = 10) -> list[Job]:
    """
    Get pending jobs that are due to run.

    Returns jobs where status='pending' and run_at <= now, ordered by run_at.
    """
    now = utcnow()
    return (
        db.query(Job)
        .filter(
            Job.status == JobStatus.PENDING.value,
            Job.run_at <= now,
        )
        .order_by(Job.run_at)
        .limit(limit)
        .all()
    )


def get_job(db: Session, job_id: UUID) -> Job | None:
    return db.query(Job).filter(Job.id == job_id).first()


def mark_job_running(db: Session, job: Job) -> Job:
    """Mark a job as running (increment attempts)."""
    job.status = JobStatus.RUNNING.value
    job.attempts += 1
    db.commit()
    db.refresh(job)
    return job


def mark_job_completed(db: Session, job: Job) -> Job:
    """Mark a job as completed."""
    job.status = JobStatus.COMPLETED.value
    job.completed_at = utcnow()
    job.last_error = None
    db.commit()
    db.refresh(job)
    return job


def mark_job_failed(
    db: Session,
    job: Job,
    error: str,
    retry_delay: timedelta | None = None,
) -> Job:
    """
    Mark a job as failed.

    If attempts < max_attempts, reset to pending for retry
    (optionally pushed back by retry_delay).
    """
    job.last_error = error[:2000]
    if job.attempts < job.max_attempts:
        job.status = JobStatus.PENDING.value
        if retry_delay is not None:
            job.run_at = utcnow() + retry_delay
    else:
        job.status = JobStatus.FAILED.value
    db.commit()
    db.refresh(job)
    return job
