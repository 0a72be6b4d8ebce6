import uuid

from sqlalchemy.orm import relationship
from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from database import Base

# Forward-only progression, index order is the lifecycle order
APPLICATION_STATUSES = ("applied", "shortlisted", "contacted")
USER_ROLES = ("job_seeker", "employer")
AVAILABILITY_TYPES = ("full-time", "part-time", "internship")
EMPLOYMENT_TYPES = ("job", "internship")
WORK_TYPES = ("remote", "hybrid", "on-site")


def _uuid() -> str:
    return str(uuid.uuid4())


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String, unique=True, index=True)
    cognito_sub = Column(String, unique=True, index=True, nullable=False)
    display_name = Column(String, nullable=True)
    role = Column(String, nullable=False, default="job_seeker")
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    seeker_profile = relationship("SeekerProfile", back_populates="user", uselist=False)
    companies = relationship("Company", back_populates="owner")


class SeekerProfile(Base):
    __tablename__ = "job_seeker_profiles"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("profiles.id"), unique=True, index=True, nullable=False)
    full_name = Column(String, nullable=False)
    skills = Column(JSON, nullable=False, default=list)
    education = Column(Text, nullable=True)
    experience = Column(Text, nullable=True)
    availability = Column(String, nullable=True)
    preferred_work_type = Column(String, nullable=True)
    resume_url = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("Profile", back_populates="seeker_profile")


class Company(Base):
    __tablename__ = "companies"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("profiles.id"), index=True, nullable=False)
    name = Column(String, nullable=False)
    industry = Column(String, nullable=True)
    location = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    logo_url = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    owner = relationship("Profile", back_populates="companies")
    jobs = relationship("Job", back_populates="company")


class Job(Base):
    __tablename__ = "jobs"
    __table_args__ = (
        CheckConstraint("salary_min IS NULL OR salary_min >= 0", name="ck_jobs_salary_min"),
        CheckConstraint("salary_max IS NULL OR salary_max >= 0", name="ck_jobs_salary_max"),
        CheckConstraint(
            "salary_min IS NULL OR salary_max IS NULL OR salary_min <= salary_max",
            name="ck_jobs_salary_range",
        ),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    company_id = Column(String(36), ForeignKey("companies.id"), index=True, nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    location = Column(String, nullable=True)
    employment_type = Column(String, nullable=False, default="job")
    work_type = Column(String, nullable=True, default="on-site")
    internship_duration = Column(String, nullable=True)
    required_skills = Column(JSON, nullable=False, default=list)
    salary_min = Column(Float, nullable=True)
    salary_max = Column(Float, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    company = relationship("Company", back_populates="jobs")


class Application(Base):
    __tablename__ = "applications"
    __table_args__ = (
        UniqueConstraint("job_id", "seeker_id", name="uq_applications_job_seeker"),
        CheckConstraint(
            "skill_match_percentage >= 0 AND skill_match_percentage <= 100",
            name="ck_applications_match_range",
        ),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    job_id = Column(String(36), ForeignKey("jobs.id"), index=True, nullable=False)
    seeker_id = Column(String(36), ForeignKey("profiles.id"), index=True, nullable=False)
    skill_match_percentage = Column(Integer, nullable=False, default=0)
    status = Column(String, nullable=False, default="applied")
    # Job fields as they were when the seeker applied
    job_snapshot = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    job = relationship("Job")


class SkippedJob(Base):
    __tablename__ = "skipped_jobs"
    __table_args__ = (
        UniqueConstraint("job_id", "seeker_id", name="uq_skipped_jobs_job_seeker"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    job_id = Column(String(36), ForeignKey("jobs.id"), index=True, nullable=False)
    seeker_id = Column(String(36), ForeignKey("profiles.id"), index=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class JobDecision(Base):
    """One row per decided (job, seeker) pair, whichever way it went.

    Written in the same flush as the Application or SkippedJob, so the unique
    constraint here is what stops a pair from being both applied and skipped.
    """

    __tablename__ = "job_decisions"
    __table_args__ = (
        UniqueConstraint("job_id", "seeker_id", name="uq_job_decisions_job_seeker"),
        CheckConstraint("kind IN ('applied', 'skipped')", name="ck_job_decisions_kind"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    job_id = Column(String(36), ForeignKey("jobs.id"), index=True, nullable=False)
    seeker_id = Column(String(36), ForeignKey("profiles.id"), index=True, nullable=False)
    kind = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Feedback(Base):
    __tablename__ = "feedback"
    __table_args__ = (
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_feedback_rating"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("profiles.id"), index=True, nullable=False)
    rating = Column(Integer, nullable=False)
    comments = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
