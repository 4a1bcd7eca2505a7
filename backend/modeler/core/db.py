"""Database configuration and session management.

SQLite location defaults to the container path `/app/db` and can be moved with
`MODELER_DB_DIR`. The filename is hardcoded to `process_modeler.db`.

Mount whatever host directory you prefer to `/app/db` via Docker Compose.
If the directory is not accessible at runtime, the backend logs an error and stops.
"""

from contextlib import contextmanager
from typing import Generator, Iterator
from pathlib import Path
import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
import os
from sqlalchemy.orm import Session, sessionmaker, declarative_base

DEFAULT_DB_FILENAME = "process_modeler.db"
DEFAULT_DB_DIR = "/app/db"

logger = logging.getLogger(__name__)


def _resolve_db_dir() -> Path:
    return Path(os.getenv("MODELER_DB_DIR", DEFAULT_DB_DIR))


def _ensure_dir(path: Path) -> tuple[bool, str]:
    try:
        if not path.exists():
            logger.warning("DB dir does not exist: %s. Attempting to create it", path)
        path.mkdir(parents=True, exist_ok=True)
        if not os.access(path, os.W_OK):
            return False, "directory not writable"
        return True, ""
    except Exception as exc:  # pragma: no cover - safety net
        return False, str(exc)


def _build_sqlite_url(db_dir: Path) -> str:
    db_file = db_dir / DEFAULT_DB_FILENAME
    logger.info("DB file path: %s", db_file)
    # `sqlite:///` + absolute path results in four slashes (sqlite:////...) which SQLAlchemy expects
    return f"sqlite:///{db_file.resolve()}"


def _resolve_sql_echo() -> bool | str:
    """Resolve SQL echo flag from environment.

    Supports the following values for `LOG_SQL_ECHO`:
    - "" (unset or empty): returns False (no SQL echo)
    - truthy ("1", "true", "yes", "on"): returns True (INFO-level statements)
    - "debug": returns "debug" (DEBUG-level with parameter values)
    Any other value defaults to False.
    """
    raw = os.getenv("LOG_SQL_ECHO", "").strip().lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("debug", "2", "verbose"):
        return "debug"
    return False


_engine: Engine | None = None
SessionLocal: sessionmaker | None = None

# Create base class for models
Base = declarative_base()


def get_engine() -> Engine:
    """Create the SQLAlchemy engine lazily.

    Ensures the DB directory exists and is writable. If not, logs an error and exits.
    """
    global _engine, SessionLocal
    if _engine is not None:
        return _engine

    db_dir = _resolve_db_dir()
    ok, reason = _ensure_dir(db_dir)
    if not ok:
        logger.error("Database directory '%s' is not usable: %s", db_dir, reason)
        raise SystemExit(1)

    sqlite_url = _build_sqlite_url(db_dir)
    logger.info("SQLite URL: %s", sqlite_url)

    _engine = create_engine(
        sqlite_url,
        connect_args={"check_same_thread": False},  # Required for SQLite
        echo=_resolve_sql_echo(),
    )

    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_engine)
    return _engine


def get_session() -> Generator[Session, None, None]:
    """Get database session."""
    if SessionLocal is None:
        get_engine()
        assert SessionLocal is not None
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """Commit everything done inside the block, or roll all of it back.

    Services only flush; this is the single place where a request's writes
    become durable.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


def init_db() -> None:
    """Initialize database tables.

    Safety principle: NEVER drop tables automatically in application code.
    This function only attempts to create missing tables.
    """
    # Import models so Base.metadata has the complete schema
    from modeler.models import Model, ModelHistory, ModelRelation  # noqa: F401

    logger.info("init_db: creating tables if missing")
    engine = get_engine()
    Base.metadata.create_all(bind=engine)
    logger.info("init_db: ensured tables exist")


def bootstrap_db() -> None:
    """Log a short summary of the store contents at startup."""
    if SessionLocal is None:
        get_engine()
        assert SessionLocal is not None
    db = SessionLocal()
    try:
        from modeler.models import Model

        model_count = db.query(Model).count()
        if model_count == 0:
            logger.info("Database is empty. Ready for initial data.")
        else:
            logger.info("Database contains %s models.", model_count)
    finally:
        db.close()
