import os

from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker

from settings import get_settings


def _build_database_url() -> str:
    """Determine the SQLAlchemy DB URL using env vars with sensible fallbacks."""
    settings_url = get_settings().database_url
    if settings_url:
        return settings_url

    host = os.getenv("DB_HOST")
    if host:
        user = os.getenv("DB_USER", "postgres")
        password = os.getenv("DB_PASSWORD", "")
        port = os.getenv("DB_PORT", "5432")
        name = os.getenv("DB_NAME", "postgres")
        return f"postgresql://{user}:{password}@{host}:{port}/{name}"

    # Default to local SQLite file for simple local development
    return "sqlite:///./cheer.db"


SQLALCHEMY_DATABASE_URL = _build_database_url()


def build_engine(url: str):
    """Create an engine, applying the SQLite connect args and pragmas when needed."""
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)

    sqlite_engine = create_engine(
        url,
        connect_args={
            "check_same_thread": False,
            "timeout": 15,
        },
        pool_pre_ping=True,
    )

    @event.listens_for(sqlite_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA journal_mode=WAL;")
            cursor.execute("PRAGMA busy_timeout = 5000")
            cursor.execute("PRAGMA synchronous=NORMAL;")
            cursor.execute("PRAGMA foreign_keys=ON;")
        finally:
            cursor.close()

    return sqlite_engine


engine = build_engine(SQLALCHEMY_DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def create_db_and_tables():
    Base.metadata.create_all(bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
