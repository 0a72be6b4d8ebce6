import uuid
from typing import List, Optional, Set, Tuple

from sqlalchemy import func, select, union
from sqlalchemy.sql.expression import Selectable
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

import models
import schemas
from errors import ConflictError, InvalidTransitionError, NotFoundError


# --- User CRUD ---
def get_user_by_id(db: Session, user_id: str):
    """Get a user by their primary key ID."""
    return db.query(models.Profile).filter(models.Profile.id == user_id).first()


def get_user_by_email(db: Session, email: str):
    return db.query(models.Profile).filter(models.Profile.email == email).first()


def create_user(db: Session, user: schemas.UserCreate):
    db_user = models.Profile(
        email=user.email,
        cognito_sub=user.cognito_sub or f"local-{uuid.uuid4()}",
        display_name=user.display_name,
        role=user.role,
    )
    db.add(db_user)
    db.flush()  # Assign ID without committing
    db.refresh(db_user)
    return db_user


# --- Seeker profile CRUD ---
def get_seeker_profile(db: Session, user_id: str) -> Optional[models.SeekerProfile]:
    return (
        db.query(models.SeekerProfile)
        .filter(models.SeekerProfile.user_id == user_id)
        .first()
    )


def create_seeker_profile(db: Session, user_id: str, profile: schemas.SeekerProfileCreate):
    if get_seeker_profile(db, user_id) is not None:
        raise ConflictError("profile_exists")

    db_profile = models.SeekerProfile(user_id=user_id, **profile.model_dump())
    db.add(db_profile)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise ConflictError("profile_exists")
    return db_profile


def update_seeker_skills(db: Session, user_id: str, skills: List[str]):
    db_profile = get_seeker_profile(db, user_id)
    if db_profile is None:
        raise NotFoundError("Seeker profile")
    # Assign a new list so the JSON column registers the change
    db_profile.skills = list(skills)
    db.add(db_profile)
    db.flush()
    return db_profile


# --- Company and Job CRUD ---
def create_company(db: Session, owner_id: str, company: schemas.CompanyCreate):
    db_company = models.Company(user_id=owner_id, **company.model_dump())
    db.add(db_company)
    db.flush()
    return db_company


def get_company(db: Session, company_id: str) -> Optional[models.Company]:
    return db.query(models.Company).filter(models.Company.id == company_id).first()


def list_companies_with_job_counts(db: Session) -> List[Tuple[models.Company, int]]:
    """All companies with the number of jobs they have posted."""
    return (
        db.query(models.Company, func.count(models.Job.id))
        .outerjoin(models.Job, models.Job.company_id == models.Company.id)
        .group_by(models.Company.id)
        .order_by(models.Company.name)
        .all()
    )


def create_job(db: Session, company_id: str, job: schemas.JobCreate):
    db_job = models.Job(company_id=company_id, **job.model_dump())
    db.add(db_job)
    db.flush()
    return db_job


def get_job(db: Session, job_id: str) -> Optional[models.Job]:
    return (
        db.query(models.Job)
        .options(joinedload(models.Job.company))
        .filter(models.Job.id == job_id)
        .first()
    )


def list_company_active_jobs(db: Session, company_id: str) -> List[models.Job]:
    return (
        db.query(models.Job)
        .options(joinedload(models.Job.company))
        .filter(models.Job.company_id == company_id, models.Job.is_active.is_(True))
        .order_by(models.Job.created_at.desc(), models.Job.id)
        .all()
    )


# --- Feed reads ---
def list_applied_job_ids(db: Session, seeker_id: str) -> Set[str]:
    rows = db.query(models.Application.job_id).filter(models.Application.seeker_id == seeker_id)
    return {job_id for (job_id,) in rows}


def list_skipped_job_ids(db: Session, seeker_id: str) -> Set[str]:
    rows = db.query(models.SkippedJob.job_id).filter(models.SkippedJob.seeker_id == seeker_id)
    return {job_id for (job_id,) in rows}


def decided_job_ids_query(seeker_id: str):
    """Applied and skipped job ids for a seeker, as one UNION statement."""
    return union(
        select(models.Application.job_id).where(models.Application.seeker_id == seeker_id),
        select(models.SkippedJob.job_id).where(models.SkippedJob.seeker_id == seeker_id),
    )


def excluded_job_ids(db: Session, seeker_id: str) -> Set[str]:
    """Applied and skipped job ids in one round trip, as a hash set."""
    return set(db.execute(decided_job_ids_query(seeker_id)).scalars())


def list_active_jobs(db: Session, exclude=None, limit: int = 50) -> List[models.Job]:
    """Active jobs with their company, newest first.

    ``exclude`` is either a select of job ids, kept server side as a
    subquery, or a small iterable of ids.
    """
    query = (
        db.query(models.Job)
        .options(joinedload(models.Job.company))
        .filter(models.Job.is_active.is_(True))
    )
    if isinstance(exclude, Selectable):
        query = query.filter(models.Job.id.notin_(select(exclude.subquery().c[0])))
    elif exclude:
        query = query.filter(models.Job.id.notin_(list(exclude)))
    return query.order_by(models.Job.created_at.desc(), models.Job.id).limit(limit).all()


# --- Decisions ---
def get_decision(db: Session, job_id: str, seeker_id: str) -> Optional[models.JobDecision]:
    return (
        db.query(models.JobDecision)
        .filter(models.JobDecision.job_id == job_id, models.JobDecision.seeker_id == seeker_id)
        .first()
    )


def _conflict_for(decision: Optional[models.JobDecision], fallback: str) -> ConflictError:
    if decision is None:
        return ConflictError(fallback)
    return ConflictError("already_applied" if decision.kind == "applied" else "already_skipped")


def _record_decision(db: Session, row, job_id: str, seeker_id: str, kind: str):
    """Flush ``row`` together with the pair's JobDecision.

    The lookup only picks the conflict reason; the unique constraint on
    job_decisions is what rejects a pair decided by a concurrent session.
    """
    existing = get_decision(db, job_id, seeker_id)
    if existing is not None:
        raise _conflict_for(existing, "already_" + kind)

    db.add(models.JobDecision(job_id=job_id, seeker_id=seeker_id, kind=kind))
    db.add(row)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise _conflict_for(get_decision(db, job_id, seeker_id), "already_" + kind)
    return row


def insert_application(
    db: Session,
    job_id: str,
    seeker_id: str,
    skill_match_percentage: int,
    job_snapshot: Optional[dict] = None,
) -> models.Application:
    """Record an application; raises ConflictError if the pair is already decided."""
    db_application = models.Application(
        job_id=job_id,
        seeker_id=seeker_id,
        skill_match_percentage=skill_match_percentage,
        status="applied",
        job_snapshot=job_snapshot,
    )
    return _record_decision(db, db_application, job_id, seeker_id, "applied")


def insert_skipped(db: Session, job_id: str, seeker_id: str) -> models.SkippedJob:
    db_skipped = models.SkippedJob(job_id=job_id, seeker_id=seeker_id)
    return _record_decision(db, db_skipped, job_id, seeker_id, "skipped")


# --- Applications ---
def list_applications(db: Session, seeker_id: str) -> List[models.Application]:
    """Applications for a seeker with job and company loaded, newest first."""
    return (
        db.query(models.Application)
        .options(joinedload(models.Application.job).joinedload(models.Job.company))
        .filter(models.Application.seeker_id == seeker_id)
        .order_by(models.Application.created_at.desc())
        .all()
    )


def get_application(db: Session, application_id: str) -> Optional[models.Application]:
    return (
        db.query(models.Application)
        .options(joinedload(models.Application.job).joinedload(models.Job.company))
        .filter(models.Application.id == application_id)
        .first()
    )


def advance_application_status(db: Session, application: models.Application, status: str):
    """Move an application forward in its lifecycle. Re-sending the current status is a no-op."""
    order = models.APPLICATION_STATUSES
    current = application.status
    if status == current:
        return application
    if order.index(status) < order.index(current):
        raise InvalidTransitionError(current, status)

    application.status = status
    db.add(application)
    db.flush()
    return application


# --- Feedback ---
def create_feedback(db: Session, user_id: str, feedback: schemas.FeedbackCreate):
    db_feedback = models.Feedback(user_id=user_id, rating=feedback.rating, comments=feedback.comments)
    db.add(db_feedback)
    db.flush()
    return db_feedback
