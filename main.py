from typing import List, Optional, Union

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
import structlog

import crud
import logic
import models
import schemas
from auth import (
    AnonymousSession,
    EmployerSession,
    SeekerSession,
    SessionContext,
    get_session_context,
    require_employer,
    require_seeker,
    require_user,
)
from database import create_db_and_tables, get_db
from errors import CheerError, ConflictError, InvalidTransitionError, NotFoundError, TransientIOError
from matching import INDUSTRIES, SKILLS_LIST
from observability import init_observability
from request_id_middleware import RequestIdMiddleware
from settings import Settings, get_settings
from swipe import engine, feed_sessions


# Initialise observability before creating app
init_observability()
logger = structlog.get_logger(__name__)

# Create DB tables on startup
create_db_and_tables()

app = FastAPI(
    title="CHEER",
    description="Backend API for CHEER swipe-based job discovery",
    version="0.1.0",
)

# --- CORS Middleware ---
origins = [
    "http://localhost",
    "http://localhost:5173",
    "http://localhost:8000",
    "http://127.0.0.1",
    "http://127.0.0.1:8000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestIdMiddleware)

PROFILE_SETUP_PATH = "/profile/setup"


# --- Error mapping --- #
_STATUS_BY_ERROR = {
    ConflictError: status.HTTP_409_CONFLICT,
    InvalidTransitionError: status.HTTP_409_CONFLICT,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    TransientIOError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


@app.exception_handler(CheerError)
async def cheer_error_handler(request: Request, exc: CheerError):
    status_code = _STATUS_BY_ERROR.get(type(exc), status.HTTP_400_BAD_REQUEST)
    logger.info("Request failed", code=exc.code, status_code=status_code, path=request.url.path)
    return JSONResponse(status_code=status_code, content={"detail": exc.message, "code": exc.code})


@app.exception_handler(OperationalError)
async def database_unavailable_handler(request: Request, exc: OperationalError):
    logger.error("Database unavailable", path=request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": TransientIOError.message, "code": TransientIOError.code},
    )


def _redirect_to_setup() -> RedirectResponse:
    return RedirectResponse(url=PROFILE_SETUP_PATH, status_code=status.HTTP_303_SEE_OTHER)


# --- Health & session --- #
@app.get("/health", tags=["Health"])
def health_check(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
    except OperationalError:
        logger.warning("Health check could not reach the database")
        return JSONResponse(status_code=503, content={"status": "degraded", "database": "disconnected"})
    return {"status": "healthy", "database": "connected"}


@app.get("/me", response_model=schemas.SessionInfo, tags=["Auth"])
def get_me(context: SessionContext = Depends(get_session_context)):
    """Describes who is calling and whether they have finished onboarding."""
    if isinstance(context, AnonymousSession):
        return schemas.SessionInfo(kind="anonymous")
    user = schemas.User.model_validate(context.user)
    if isinstance(context, EmployerSession):
        onboarded = bool(context.user.companies)
        return schemas.SessionInfo(kind="employer", user=user, onboarded=onboarded)
    return schemas.SessionInfo(kind="seeker", user=user, onboarded=context.profile is not None)


@app.get("/skills", response_model=List[str], tags=["Reference"])
def list_skills():
    return SKILLS_LIST


@app.get("/industries", response_model=List[str], tags=["Reference"])
def list_industries():
    return INDUSTRIES


# --- Seeker profile --- #
@app.get(PROFILE_SETUP_PATH, response_model=schemas.ProfileSetupOptions, tags=["Seeker Profile"])
def get_profile_setup_options(
    context: SeekerSession = Depends(require_seeker),
    settings: Settings = Depends(get_settings),
):
    return schemas.ProfileSetupOptions(
        skills=SKILLS_LIST,
        max_skills=settings.max_seeker_skills,
        availability=list(models.AVAILABILITY_TYPES),
        work_types=list(models.WORK_TYPES),
        prefill_full_name=context.user.display_name,
    )


def _check_skill_count(skills: List[str], settings: Settings) -> None:
    if len(skills) > settings.max_seeker_skills:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Maximum {settings.max_seeker_skills} skills allowed",
        )


@app.post(
    "/profile/seeker",
    response_model=schemas.SeekerProfile,
    status_code=status.HTTP_201_CREATED,
    tags=["Seeker Profile"],
)
def create_seeker_profile_endpoint(
    profile: schemas.SeekerProfileCreate,
    context: SeekerSession = Depends(require_seeker),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    _check_skill_count(profile.skills, settings)
    db_profile = crud.create_seeker_profile(db, user_id=context.user.id, profile=profile)
    db.commit()
    db.refresh(db_profile)
    logger.info("Seeker profile created", user_id=context.user.id, skills=len(db_profile.skills))
    feed_sessions.invalidate(context.user.id)
    return db_profile


@app.get("/profile/seeker", response_model=schemas.SeekerProfile, tags=["Seeker Profile"])
def get_seeker_profile_endpoint(context: SeekerSession = Depends(require_seeker)):
    if context.profile is None:
        return _redirect_to_setup()
    return context.profile


@app.put("/profile/seeker/skills", response_model=schemas.SeekerProfile, tags=["Seeker Profile"])
def update_seeker_skills_endpoint(
    update: schemas.SkillsUpdate,
    context: SeekerSession = Depends(require_seeker),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    if context.profile is None:
        return _redirect_to_setup()
    _check_skill_count(update.skills, settings)
    db_profile = crud.update_seeker_skills(db, user_id=context.user.id, skills=update.skills)
    db.commit()
    db.refresh(db_profile)
    # Scores on queued cards are stale now
    feed_sessions.invalidate(context.user.id)
    return db_profile


# --- Discovery --- #
@app.get("/discover", response_model=schemas.FeedView, tags=["Discover"])
def get_feed(
    refresh: bool = False,
    context: SeekerSession = Depends(require_seeker),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """The card under the seeker's cursor, building the feed on first use."""
    if context.profile is None:
        return _redirect_to_setup()
    session = engine.load(db, context.profile, refresh=refresh, settings=settings)
    return session.view()


@app.post("/discover/swipe", response_model=schemas.SwipeResponse, tags=["Discover"])
async def swipe_endpoint(
    swipe_request: schemas.SwipeRequest,
    context: SeekerSession = Depends(require_seeker),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    if context.profile is None:
        return _redirect_to_setup()
    return await engine.swipe(db, context.profile, swipe_request, settings=settings)


@app.post(
    "/jobs/{job_id}/apply",
    response_model=schemas.Application,
    status_code=status.HTTP_201_CREATED,
    tags=["Discover"],
)
def apply_to_job_endpoint(
    job_id: str,
    context: SeekerSession = Depends(require_seeker),
    db: Session = Depends(get_db),
):
    """Apply directly, e.g. from a company page, outside the swipe queue."""
    if context.profile is None:
        return _redirect_to_setup()
    try:
        return logic.apply_to_job(db, job_id, context.profile)
    except ConflictError:
        db.rollback()
        raise


# --- Applications --- #
@app.get("/applications", response_model=schemas.ApplicationsView, tags=["Applications"])
def list_applications_endpoint(
    status_filter: schemas.StatusFilter = Query("all", alias="status"),
    context: SeekerSession = Depends(require_seeker),
    db: Session = Depends(get_db),
):
    return logic.list_applications(db, context.user.id, status_filter)


@app.patch("/applications/{application_id}/status", response_model=schemas.Application, tags=["Applications"])
def update_application_status_endpoint(
    application_id: str,
    update: schemas.ApplicationStatusUpdate,
    context: EmployerSession = Depends(require_employer),
    db: Session = Depends(get_db),
):
    application = crud.get_application(db, application_id)
    # Employers only see applications to their own companies' jobs
    if application is None or application.job.company.user_id != context.user.id:
        raise NotFoundError("Application", application_id)
    previous = application.status
    crud.advance_application_status(db, application, update.status)
    db.commit()
    db.refresh(application)
    logger.info(
        "Application status changed",
        application_id=application_id,
        previous=previous,
        status=application.status,
    )
    return application


# --- Companies --- #
@app.get("/companies", response_model=List[schemas.CompanySummary], tags=["Companies"])
def list_companies_endpoint(
    search: Optional[str] = None,
    industry: Optional[str] = None,
    context: Union[SeekerSession, EmployerSession] = Depends(require_user),
    db: Session = Depends(get_db),
):
    return logic.list_companies(db, search=search, industry=industry)


@app.get("/companies/{company_id}", response_model=schemas.CompanyDetail, tags=["Companies"])
def get_company_endpoint(
    company_id: str,
    context: Union[SeekerSession, EmployerSession] = Depends(require_user),
    db: Session = Depends(get_db),
):
    skills = None
    if isinstance(context, SeekerSession) and context.profile is not None:
        skills = context.profile.skills
    return logic.company_detail(db, company_id, seeker_skills=skills)


# --- Feedback --- #
@app.post("/feedback", response_model=schemas.Feedback, status_code=status.HTTP_201_CREATED, tags=["Feedback"])
def submit_feedback(
    feedback: schemas.FeedbackCreate,
    context: Union[SeekerSession, EmployerSession] = Depends(require_user),
    db: Session = Depends(get_db),
):
    db_feedback = crud.create_feedback(db, user_id=context.user.id, feedback=feedback)
    db.commit()
    db.refresh(db_feedback)
    logger.info("Feedback received", user_id=context.user.id, rating=feedback.rating)
    return db_feedback


# --- Main execution --- (for running with uvicorn)
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
