from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # `.env.prod` takes priority over `.env`
        env_file=(".env", ".env.prod"),
        extra="ignore",
    )

    # Overrides the DB_* variables when set, see database.py
    database_url: Optional[str] = None

    # Cognito Settings (Optional for local dev)
    auth_enabled: bool = False
    cognito_user_pool_id: Optional[str] = None
    cognito_app_client_id: Optional[str] = None
    aws_region: str = "us-east-1"

    # Account used for every request while auth is disabled
    local_user_email: str = "local@example.com"
    local_user_role: Literal["job_seeker", "employer"] = "job_seeker"

    # Discovery feed
    feed_page_size: int = 50
    # Store order is the observed behaviour; ranking is opt-in until product decides
    feed_rank_by_match: bool = False
    swipe_commit_threshold: float = 100.0
    swipe_timeout_seconds: float = 10.0

    max_seeker_skills: int = 10

    # Application base URL (for constructing redirect URLs etc.)
    app_base_url: str = "http://localhost:8000"  # Default for local dev


@lru_cache()
def get_settings() -> Settings:
    return Settings()
