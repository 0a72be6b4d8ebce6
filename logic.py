from typing import Iterable, List, Optional

import structlog
from sqlalchemy.orm import Session

import crud
import models
import schemas
from errors import NotFoundError
from matching import match_tier, matched_skills, score
from settings import Settings, get_settings

# Set up logging
logger = structlog.get_logger(__name__)


def describe_salary(job: models.Job) -> Optional[str]:
    """Human readable pay range, monthly for internships and yearly otherwise."""
    if not (job.salary_min or job.salary_max):
        return None
    period = "/mo" if job.employment_type == "internship" else "/yr"
    if job.salary_min and job.salary_max:
        label = f"${job.salary_min:,.0f} - ${job.salary_max:,.0f}"
    elif job.salary_min:
        label = f"From ${job.salary_min:,.0f}"
    else:
        label = f"Up to ${job.salary_max:,.0f}"
    return label + period


def job_card(job: models.Job, seeker_skills: Optional[Iterable[str]]) -> schemas.JobCard:
    """Enrich a job with its company and the seeker's match against it."""
    required = list(job.required_skills or [])
    percentage = score(seeker_skills, required)
    return schemas.JobCard(
        id=job.id,
        title=job.title,
        description=job.description,
        location=job.location,
        employment_type=job.employment_type,
        work_type=job.work_type,
        internship_duration=job.internship_duration,
        required_skills=required,
        salary_min=job.salary_min,
        salary_max=job.salary_max,
        salary_label=describe_salary(job),
        match_percentage=percentage,
        match_tier=match_tier(percentage),
        matched_skills=matched_skills(seeker_skills, required),
        company=schemas.Company.model_validate(job.company),
    )


def job_snapshot(job: models.Job) -> dict:
    """The job fields an application keeps in case the posting later changes or goes away."""
    company = job.company
    return {
        "id": job.id,
        "title": job.title,
        "employment_type": job.employment_type,
        "required_skills": list(job.required_skills or []),
        "location": job.location,
        "work_type": job.work_type,
        "company_name": company.name if company else None,
        "company_logo_url": company.logo_url if company else None,
    }


# --- Discovery feed ---
def build_feed(
    db: Session,
    seeker: models.SeekerProfile,
    settings: Optional[Settings] = None,
) -> List[schemas.JobCard]:
    """Active jobs the seeker has neither applied to nor skipped.

    The exclusion set is read once per feed load, so a job can still be
    offered twice across concurrent sessions; the unique constraints on
    insert are what keep decisions single.
    """
    settings = settings or get_settings()
    decided = crud.decided_job_ids_query(seeker.user_id)
    excluded = set(db.execute(decided).scalars())
    # The store filters with a subquery; the set catches anything decided in between
    jobs = crud.list_active_jobs(db, exclude=decided, limit=settings.feed_page_size)
    cards = [job_card(job, seeker.skills) for job in jobs if job.id not in excluded]

    if settings.feed_rank_by_match:
        # sorted() is stable, store order breaks ties
        cards = sorted(cards, key=lambda card: card.match_percentage, reverse=True)

    logger.info(
        "Feed built",
        seeker_id=seeker.user_id,
        excluded=len(excluded),
        jobs=len(cards),
        ranked=settings.feed_rank_by_match,
    )
    return cards


# --- Decisions ---
def apply_to_job(db: Session, job_id: str, seeker: models.SeekerProfile) -> models.Application:
    """Commit an application, scoring the seeker against the job as it is right now.

    Raises NotFoundError for an unknown job and ConflictError when the pair
    has already been decided.
    """
    job = crud.get_job(db, job_id)
    if job is None:
        raise NotFoundError("Job", job_id)

    percentage = score(seeker.skills, job.required_skills)
    application = crud.insert_application(
        db,
        job_id=job.id,
        seeker_id=seeker.user_id,
        skill_match_percentage=percentage,
        job_snapshot=job_snapshot(job),
    )
    db.commit()
    db.refresh(application)
    logger.info("Application created", job_id=job.id, seeker_id=seeker.user_id, score=percentage)
    return application


def skip_job(db: Session, job_id: str, seeker: models.SeekerProfile) -> models.SkippedJob:
    if crud.get_job(db, job_id) is None:
        raise NotFoundError("Job", job_id)

    skipped = crud.insert_skipped(db, job_id=job_id, seeker_id=seeker.user_id)
    db.commit()
    db.refresh(skipped)
    logger.info("Job skipped", job_id=job_id, seeker_id=seeker.user_id)
    return skipped


# --- Applications ---
def _application_entry(application: models.Application) -> schemas.ApplicationEntry:
    job = application.job
    if job is not None:
        job_data = job_snapshot(job)
        job_active = bool(job.is_active)
    else:
        # Posting removed after the fact, fall back to what was captured at apply time
        job_data = dict(application.job_snapshot or {"id": application.job_id})
        job_active = False
    job_data.setdefault("id", application.job_id)

    return schemas.ApplicationEntry(
        id=application.id,
        status=application.status,
        skill_match_percentage=application.skill_match_percentage,
        created_at=application.created_at,
        job_active=job_active,
        job=schemas.ApplicationJob(**job_data),
    )


def list_applications(db: Session, seeker_id: str, status_filter: str = "all") -> schemas.ApplicationsView:
    """Applications for a seeker, filtered by status, with counts for every tab."""
    applications = crud.list_applications(db, seeker_id)

    counts = {"all": len(applications)}
    for status in models.APPLICATION_STATUSES:
        counts[status] = sum(1 for a in applications if a.status == status)

    if status_filter != "all":
        applications = [a for a in applications if a.status == status_filter]

    return schemas.ApplicationsView(
        filter=status_filter,
        counts=counts,
        applications=[_application_entry(a) for a in applications],
    )


# --- Companies ---
def list_companies(
    db: Session, search: Optional[str] = None, industry: Optional[str] = None
) -> List[schemas.CompanySummary]:
    """Company directory, matching ``search`` against name or industry."""
    needle = (search or "").strip().lower()
    results = []
    for company, job_count in crud.list_companies_with_job_counts(db):
        if industry and company.industry != industry:
            continue
        if needle and needle not in company.name.lower() and needle not in (company.industry or "").lower():
            continue
        summary = schemas.CompanySummary.model_validate(company)
        summary.job_count = job_count
        results.append(summary)
    return results


def company_detail(
    db: Session, company_id: str, seeker_skills: Optional[Iterable[str]] = None
) -> schemas.CompanyDetail:
    company = crud.get_company(db, company_id)
    if company is None:
        raise NotFoundError("Company", company_id)

    skills = list(seeker_skills or [])
    jobs = crud.list_company_active_jobs(db, company_id)
    return schemas.CompanyDetail(
        company=schemas.Company.model_validate(company),
        jobs=[job_card(job, skills) for job in jobs],
    )
