"""
Database engine and session management for the media library.

This module provides database connectivity with:
- Lazily configured engine (init_database) so importing never touches disk
- Session-per-operation pattern for background ingestion units
- NullPool + pragmas for SQLite to keep concurrent workers from locking
- Error handling and file-based logging
"""

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Any, Optional
from urllib.parse import urlparse

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError, OperationalError
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import NullPool

from .models import Base, LibraryEntry, ProcessingStatus
from src.logger import setup_logging, log_function


db_logger = setup_logging(
    logger_name="database",
    log_file="logs/database.log",
    verbose=False,
)

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None
_engine_lock = threading.Lock()


def validate_database_url(url: Optional[str]) -> tuple[bool, str]:
    """Validate the database URL format (and the file location for SQLite)."""
    if not url:
        return False, "DATABASE_URL is empty"
    try:
        parsed = urlparse(url)
        if not parsed.scheme:
            return False, f"Invalid database URL: {url}"
        if not parsed.scheme.startswith("sqlite"):
            return True, url

        # sqlite:///relative.db vs sqlite:////absolute/path.db
        db_path = parsed.path.lstrip("/")
        if db_path and url.split("://", 1)[1].startswith("//"):
            db_path = "/" + db_path
        if not db_path:
            return False, "Database file path is empty"
        if db_path == ":memory:":
            return False, "In-memory SQLite is not shared between sessions, use a file"
        return True, db_path
    except Exception as e:
        return False, f"Invalid database URL format: {e}"


def optimize_sqlite_connection(dbapi_connection, connection_record):
    """Apply SQLite-specific settings when a connection is created."""
    cursor = dbapi_connection.cursor()

    # WAL for concurrent readers while an ingestion writes
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=30000")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA synchronous=NORMAL")

    cursor.close()


@log_function(logger_name="database", log_execution_time=True)
def init_database(database_url: str, create_tables: bool = True) -> Engine:
    """
    Configure the process-wide engine and session factory.

    Args:
        database_url: SQLAlchemy URL (sqlite:///path/to/library.db, postgresql://...)
        create_tables: Create missing tables from the ORM metadata

    Returns:
        The configured engine

    Raises:
        ValueError: If the URL is invalid
    """
    global _engine, _session_factory

    is_valid, db_info = validate_database_url(database_url)
    if not is_valid:
        db_logger.error(f"Database configuration error: {db_info}")
        raise ValueError(f"Database configuration error: {db_info}")

    with _engine_lock:
        if _engine is not None:
            _engine.dispose()

        if database_url.startswith("sqlite"):
            Path(db_info).parent.mkdir(parents=True, exist_ok=True)
            engine = create_engine(
                database_url,
                poolclass=NullPool,
                echo=False,
                connect_args={"check_same_thread": False, "timeout": 30},
            )
            event.listen(engine, "connect", optimize_sqlite_connection)
        else:
            engine = create_engine(database_url, pool_pre_ping=True, echo=False)

        if create_tables:
            Base.metadata.create_all(bind=engine)
            db_logger.info("Database tables created successfully")

        _engine = engine
        _session_factory = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False, bind=engine
        )

    db_logger.info(f"Database configured: {db_info}")
    return engine


def dispose_database() -> None:
    """Dispose the engine (used by tests and CLI shutdown)."""
    global _engine, _session_factory
    with _engine_lock:
        if _engine is not None:
            _engine.dispose()
        _engine = None
        _session_factory = None


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """
    Context manager for database sessions (session-per-operation pattern).

    Usage:
        with get_db_session() as session:
            session.add(entry)
            session.commit()
    """
    if _session_factory is None:
        raise RuntimeError("Database is not initialized. Call init_database() first.")

    session = _session_factory()
    try:
        yield session

    except OperationalError as e:
        db_logger.error(f"Database operational error: {e}")
        session.rollback()

        error_msg = str(e.orig) if hasattr(e, "orig") else str(e)
        if "database is locked" in error_msg.lower():
            raise OperationalError(
                "Database is locked. Another ingestion may be holding a write transaction.",
                None,
                None,
            )
        elif "no such table" in error_msg.lower():
            raise OperationalError(
                "Database table does not exist. Please run init_database() first.",
                None,
                None,
            )
        else:
            raise

    except SQLAlchemyError as e:
        db_logger.error(f"Database error: {e}")
        session.rollback()
        raise

    except Exception:
        session.rollback()
        raise

    finally:
        session.close()


def check_database_connection() -> bool:
    """
    Check if database connection is working.

    Returns:
        bool: True if connection is successful, False otherwise
    """
    try:
        with get_db_session() as session:
            session.execute(text("SELECT 1"))
            return True
    except Exception as e:
        db_logger.error(f"Database connection test failed: {e}")
        return False


def update_library_entry(
    entry_id: str, expected_status: Optional[ProcessingStatus] = None, **fields: Any
) -> bool:
    """
    Update a library entry by id with the given column values.

    Only keyword arguments naming real columns are accepted. None values are
    written as NULL (clearing processing_error relies on it). With
    expected_status, the row is only updated while it is still in that state,
    in a single UPDATE statement.

    Returns:
        bool: True if a row was updated
    """
    columns = set(LibraryEntry.__table__.columns.keys())
    unknown = set(fields) - columns
    if unknown:
        raise ValueError(f"Unknown library entry fields: {sorted(unknown)}")

    with get_db_session() as session:
        query = session.query(LibraryEntry).filter(LibraryEntry.id == entry_id)
        if expected_status is not None:
            query = query.filter(LibraryEntry.processing_status == expected_status)
        updated = query.update(fields, synchronize_session=False)
        session.commit()
    return updated > 0
