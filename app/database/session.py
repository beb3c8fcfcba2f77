"""
============================================================================
Evaluation Desk v1.0.0
Database Session - SQLAlchemy Engine & Session Management
============================================================================

Reliability Level: L6 Critical
Input Constraints: DATABASE_URL, or PostgreSQL settings via DB_* variables
Side Effects: Database connections

MANDATE:
- Engine is created lazily on first use (tests bind their own engine)
- Connection pooling for PostgreSQL
- All timestamps stored in UTC

============================================================================
"""

import os
import logging
from typing import Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


# ============================================================================
# DATABASE CONFIGURATION
# ============================================================================

def get_database_url() -> str:
    """
    Resolve the database connection URL.

    DATABASE_URL wins when set; otherwise a PostgreSQL URL is assembled.

    Environment Variables:
        DATABASE_URL: Full SQLAlchemy URL
        DB_HOST: Database host (default: localhost)
        DB_PORT: Database port (default: 5432)
        DB_NAME: Database name (default: evaluation_desk)
        DB_USER: Database user (default: desk_app)
        DB_PASSWORD: Database password
    """
    url = os.getenv("DATABASE_URL")
    if url:
        # Hosted Postgres providers still hand out the legacy scheme
        if url.startswith("postgres://"):
            url = "postgresql://" + url[len("postgres://"):]
        return url

    host = os.getenv("DB_HOST", "localhost")
    port = os.getenv("DB_PORT", "5432")
    name = os.getenv("DB_NAME", "evaluation_desk")
    user = os.getenv("DB_USER", "desk_app")
    password = os.getenv("DB_PASSWORD", "")

    return f"postgresql://{user}:{password}@{host}:{port}/{name}"


# ============================================================================
# SQLALCHEMY ENGINE
# ============================================================================

def build_engine(url: str) -> Engine:
    """Create an engine; pooling and session settings only apply to PostgreSQL."""
    echo = os.getenv("DB_ECHO", "false").lower() == "true"

    if url.startswith("sqlite"):
        built = create_engine(url, echo=echo, connect_args={"check_same_thread": False})
        event.listen(built, "connect", enable_sqlite_foreign_keys)
        return built

    built = create_engine(
        url,
        poolclass=QueuePool,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=1800,
        pool_pre_ping=True,
        echo=echo,
    )
    event.listen(built, "connect", _set_timezone)
    return built


def _set_timezone(dbapi_connection, connection_record):
    """Ensure PostgreSQL sessions use UTC."""
    cursor = dbapi_connection.cursor()
    cursor.execute("SET timezone TO 'UTC'")
    cursor.close()


def enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    """SQLite only enforces ON DELETE CASCADE with this pragma."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


_engine: Optional[Engine] = None


# ============================================================================
# SESSION FACTORY
# ============================================================================

SessionLocal = sessionmaker(
    autoflush=False,
    expire_on_commit=False,
)


def get_engine() -> Engine:
    """Return the process engine, creating it from the environment on first use."""
    global _engine
    if _engine is None:
        configure_engine(build_engine(get_database_url()))
    return _engine


def configure_engine(engine: Engine) -> None:
    """Bind the session factory to an engine (startup and tests)."""
    global _engine
    _engine = engine
    SessionLocal.configure(bind=engine)


def init_schema() -> None:
    """Create missing tables. Schema migrations are managed outside the app."""
    from app.database.models import Base

    Base.metadata.create_all(bind=get_engine())


# ============================================================================
# DEPENDENCY INJECTION
# ============================================================================

def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency for database session injection.

    Yields:
        Session: SQLAlchemy database session

    Usage:
        @router.get("/evaluations/awaiting")
        async def list_awaiting(db: Session = Depends(get_db)):
            ...
    """
    get_engine()
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


# ============================================================================
# HEALTH CHECK
# ============================================================================

def check_database_connection() -> bool:
    """
    Verify database connectivity.

    Raises:
        ConnectionError: If database connection fails
    """
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        raise ConnectionError(f"Database connection failed: {e}") from e


# ============================================================================
# END OF DATABASE SESSION MODULE
# ============================================================================
