"""Authentication and the per-request session context.

Tokens are AWS Cognito ID tokens issued elsewhere; this module only
verifies them:
1. Extracts the ``Authorization: Bearer <id_token>`` header.
2. Downloads / caches the JSON Web Key Set (JWKS) for the Cognito User Pool.
3. Verifies signature, expiration and audience.
4. Creates or fetches the ``models.Profile`` row on-the-fly.

The result is resolved once per request into one of three session kinds,
``SeekerSession``, ``EmployerSession`` or ``AnonymousSession``, and the
route guards below check that kind at route entry.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Annotated, Optional, Union

import httpx
import structlog
from fastapi import Depends, HTTPException, Request, status
from jose import JWTError, jwt
from pydantic import BaseModel
from sqlalchemy.orm import Session

import crud
import models
import schemas
from database import get_db
from settings import Settings, get_settings

logger = structlog.get_logger(__name__)


class TokenPayload(BaseModel):
    sub: str
    email: Optional[str] = None
    exp: int
    aud: str
    # Cognito custom attribute set at sign-up
    role: Optional[str] = None


class AuthSettings(BaseModel):
    region: str
    user_pool_id: str
    client_id: str

    @property
    def issuer(self) -> str:  # cognito issuer URL
        return f"https://cognito-idp.{self.region}.amazonaws.com/{self.user_pool_id}"

    @property
    def jwks_url(self) -> str:
        return f"{self.issuer}/.well-known/jwks.json"


@lru_cache
def _load_settings() -> AuthSettings:
    settings = get_settings()
    if not settings.cognito_user_pool_id or not settings.cognito_app_client_id:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Cognito configuration missing",
        )
    return AuthSettings(
        region=settings.aws_region,
        user_pool_id=settings.cognito_user_pool_id,
        client_id=settings.cognito_app_client_id,
    )


@lru_cache
def _get_jwks():
    settings = _load_settings()
    logger.info("Fetching JWKS", jwks_url=settings.jwks_url)
    resp = httpx.get(settings.jwks_url, timeout=10)
    resp.raise_for_status()
    return resp.json()


def verify_token(token: str) -> TokenPayload:
    """Verify a Cognito JWT and return its payload.

    Raises HTTPException(401) on failure.
    """
    if not get_settings().auth_enabled:
        # Return dummy payload for local usage
        return TokenPayload(
            sub="local-dev",
            email=get_settings().local_user_email,
            exp=int(time.time()) + 3600,
            aud="local",
        )

    settings = _load_settings()
    jwks = _get_jwks()

    try:
        payload = jwt.decode(
            token,
            jwks,
            algorithms=["RS256"],
            audience=settings.client_id,
            issuer=settings.issuer,
            options={"verify_at_hash": False},
        )
    except JWTError as exc:
        logger.warning("JWT verification failed", exc=str(exc))
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    payload.setdefault("role", payload.get("custom:role"))
    return TokenPayload.model_validate(payload)


# --- Session context ---
@dataclass(frozen=True)
class SeekerSession:
    user: models.Profile
    # None until onboarding is finished
    profile: Optional[models.SeekerProfile]


@dataclass(frozen=True)
class EmployerSession:
    user: models.Profile


@dataclass(frozen=True)
class AnonymousSession:
    pass


SessionContext = Union[SeekerSession, EmployerSession, AnonymousSession]


def session_for(db: Session, user: models.Profile) -> SessionContext:
    if user.role == "employer":
        return EmployerSession(user=user)
    return SeekerSession(user=user, profile=crud.get_seeker_profile(db, user.id))


def _upsert_user(db: Session, email: str, cognito_sub: str, role: Optional[str]) -> models.Profile:
    user = crud.get_user_by_email(db, email)
    if not user:
        user = crud.create_user(
            db,
            schemas.UserCreate(
                email=email,
                cognito_sub=cognito_sub,
                role=role if role in models.USER_ROLES else "job_seeker",
            ),
        )
        db.commit()
        logger.info("Created profile for new account", user_id=user.id, role=user.role)
    return user


# Helper to extract Authorization header (works with FastAPI DI)
def _get_authorization_header(request: Request) -> Optional[str]:
    return request.headers.get("Authorization")


async def get_session_context(
    authorization: Annotated[Optional[str], Depends(_get_authorization_header)],
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> SessionContext:
    if not settings.auth_enabled:
        # Local dev: always return / create the configured local account
        user = _upsert_user(
            db, settings.local_user_email, f"local-{settings.local_user_email}", settings.local_user_role
        )
        return session_for(db, user)

    if not authorization or not authorization.lower().startswith("bearer "):
        return AnonymousSession()

    payload = verify_token(authorization.split(" ")[1])
    user = _upsert_user(db, payload.email or payload.sub, payload.sub, payload.role)
    return session_for(db, user)


# --- Route guards ---
def require_user(context: SessionContext = Depends(get_session_context)) -> Union[SeekerSession, EmployerSession]:
    if isinstance(context, AnonymousSession):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    return context


def require_seeker(context: SessionContext = Depends(get_session_context)) -> SeekerSession:
    if isinstance(context, SeekerSession):
        return context
    if isinstance(context, EmployerSession):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Job seeker account required")
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")


def require_employer(context: SessionContext = Depends(get_session_context)) -> EmployerSession:
    if isinstance(context, EmployerSession):
        return context
    if isinstance(context, SeekerSession):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Employer account required")
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
