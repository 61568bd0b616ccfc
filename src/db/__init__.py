"""
Database package for the media library.

Structure:
- models.py: SQLAlchemy ORM models (MediaArtifact, LibraryEntry, enums)
- database.py: Engine configuration and session-per-operation context manager
- queries.py: Duplicate lookups and reference counting
- __init__.py: Package exports

Usage:
    from src.db import init_database, get_db_session, LibraryEntry

    init_database("sqlite:///data/library.db")
    with get_db_session() as session:
        entry = session.get(LibraryEntry, entry_id)
"""

from .models import (
    Base,
    LibraryEntry,
    MediaArtifact,
    ProcessingStatus,
    SourceType,
    TimestampMixin,
    new_id,
    utcnow,
)
from .database import (
    init_database,
    dispose_database,
    get_db_session,
    check_database_connection,
    update_library_entry,
)
from .queries import (
    find_artifact_by_hash,
    find_artifact_by_source_url,
    find_user_entry_by_hash,
    find_user_entry_by_source_url,
    count_artifact_references,
)

__all__ = [
    # Models
    "Base",
    "LibraryEntry",
    "MediaArtifact",
    "ProcessingStatus",
    "SourceType",
    "TimestampMixin",
    "new_id",
    "utcnow",
    # Database utilities
    "init_database",
    "dispose_database",
    "get_db_session",
    "check_database_connection",
    "update_library_entry",
    # Queries
    "find_artifact_by_hash",
    "find_artifact_by_source_url",
    "find_user_entry_by_hash",
    "find_user_entry_by_source_url",
    "count_artifact_references",
]
