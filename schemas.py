from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from matching import dedupe_skills

ApplicationStatus = Literal["applied", "shortlisted", "contacted"]
StatusFilter = Literal["all", "applied", "shortlisted", "contacted"]
UserRole = Literal["job_seeker", "employer"]
Availability = Literal["full-time", "part-time", "internship"]
EmploymentType = Literal["job", "internship"]
WorkType = Literal["remote", "hybrid", "on-site"]


# --- Accounts ---
class UserCreate(BaseModel):
    email: str
    cognito_sub: Optional[str] = None
    display_name: Optional[str] = None
    role: UserRole = "job_seeker"


class User(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    role: UserRole


class SessionInfo(BaseModel):
    kind: Literal["seeker", "employer", "anonymous"]
    user: Optional[User] = None
    onboarded: bool = False


# --- Seeker profile ---
class SkillsUpdate(BaseModel):
    skills: List[str] = Field(default_factory=list)

    @field_validator("skills")
    @classmethod
    def _dedupe(cls, value: List[str]) -> List[str]:
        return dedupe_skills(value)


class SeekerProfileCreate(SkillsUpdate):
    full_name: str = Field(min_length=1)
    education: Optional[str] = None
    experience: Optional[str] = None
    availability: Availability = "full-time"
    preferred_work_type: WorkType = "remote"
    resume_url: Optional[str] = None


class SeekerProfile(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    full_name: str
    skills: List[str]
    education: Optional[str] = None
    experience: Optional[str] = None
    availability: Optional[Availability] = None
    preferred_work_type: Optional[WorkType] = None
    resume_url: Optional[str] = None


class ProfileSetupOptions(BaseModel):
    skills: List[str]
    max_skills: int
    availability: List[str]
    work_types: List[str]
    prefill_full_name: Optional[str] = None


# --- Companies and jobs ---
class CompanyCreate(BaseModel):
    name: str = Field(min_length=1)
    industry: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
    logo_url: Optional[str] = None


class Company(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    industry: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
    logo_url: Optional[str] = None


class CompanySummary(Company):
    job_count: int = 0


class JobCreate(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    location: Optional[str] = None
    employment_type: EmploymentType = "job"
    work_type: WorkType = "on-site"
    internship_duration: Optional[str] = None
    required_skills: List[str] = Field(default_factory=list)
    salary_min: Optional[float] = Field(default=None, ge=0)
    salary_max: Optional[float] = Field(default=None, ge=0)
    is_active: bool = True

    @model_validator(mode="after")
    def _check_salary_range(self) -> "JobCreate":
        if self.salary_min is not None and self.salary_max is not None and self.salary_min > self.salary_max:
            raise ValueError("salary_min must not exceed salary_max")
        return self


class JobCard(BaseModel):
    """A job as shown to a seeker, with their match against it."""

    id: str
    title: str
    description: Optional[str] = None
    location: Optional[str] = None
    employment_type: EmploymentType
    work_type: Optional[WorkType] = None
    internship_duration: Optional[str] = None
    required_skills: List[str]
    salary_min: Optional[float] = None
    salary_max: Optional[float] = None
    salary_label: Optional[str] = None
    match_percentage: int
    match_tier: Literal["strong", "fair", "weak"]
    matched_skills: List[str]
    company: Company


class CompanyDetail(BaseModel):
    company: Company
    jobs: List[JobCard]


# --- Discovery feed ---
class FeedView(BaseModel):
    status: Literal["ready", "empty"]
    card: Optional[JobCard] = None
    position: int
    total: int
    remaining: int


class SwipeRequest(BaseModel):
    direction: Optional[Literal["left", "right"]] = None
    drag_offset: Optional[float] = None
    # The card the client believes it is deciding on
    job_id: Optional[str] = None

    @model_validator(mode="after")
    def _one_gesture(self) -> "SwipeRequest":
        if (self.direction is None) == (self.drag_offset is None):
            raise ValueError("Provide exactly one of direction or drag_offset")
        return self


class SwipeResponse(BaseModel):
    outcome: Literal["applied", "skipped", "conflict", "ignored", "discarded", "error", "exhausted"]
    message: Optional[str] = None
    job_id: Optional[str] = None
    skill_match_percentage: Optional[int] = None
    feed: FeedView


# --- Applications ---
class ApplicationJob(BaseModel):
    id: str
    title: Optional[str] = None
    employment_type: Optional[EmploymentType] = None
    required_skills: List[str] = Field(default_factory=list)
    location: Optional[str] = None
    work_type: Optional[WorkType] = None
    company_name: Optional[str] = None
    company_logo_url: Optional[str] = None


class ApplicationEntry(BaseModel):
    id: str
    status: ApplicationStatus
    skill_match_percentage: int
    created_at: Optional[datetime] = None
    job_active: bool
    job: ApplicationJob


class ApplicationsView(BaseModel):
    filter: StatusFilter
    counts: Dict[str, int]
    applications: List[ApplicationEntry]


class Application(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    job_id: str
    seeker_id: str
    skill_match_percentage: int
    status: ApplicationStatus
    created_at: Optional[datetime] = None


class ApplicationStatusUpdate(BaseModel):
    status: ApplicationStatus


# --- Feedback ---
class FeedbackCreate(BaseModel):
    rating: int = Field(ge=1, le=5)
    comments: Optional[str] = None

    @field_validator("comments")
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class Feedback(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    rating: int
    comments: Optional[str] = None
