"""
Lookup queries used by duplicate resolution and the media store.

All functions take an open session (see get_db_session) and read committed
state only.
"""

from typing import Optional

from sqlalchemy.orm import Session

from .models import LibraryEntry, MediaArtifact


def find_artifact_by_hash(session: Session, content_hash: str) -> Optional[MediaArtifact]:
    return (
        session.query(MediaArtifact)
        .filter(MediaArtifact.content_hash == content_hash)
        .first()
    )


def find_artifact_by_source_url(session: Session, source_url: str) -> Optional[MediaArtifact]:
    """Oldest artifact first seen at this URL (source_url is not unique)."""
    if not source_url:
        return None
    return (
        session.query(MediaArtifact)
        .filter(MediaArtifact.source_url == source_url)
        .order_by(MediaArtifact.created_at, MediaArtifact.id)
        .first()
    )


def find_user_entry_by_source_url(
    session: Session,
    source_url: str,
    user_id: int,
    exclude_entry_id: Optional[str] = None,
) -> Optional[LibraryEntry]:
    """
    A resolved library entry of this user submitted with the same source URL.

    Entries that have no linked artifact yet (still pending, or failed) are
    ignored: there is nothing to reuse from them.
    """
    if not source_url:
        return None
    query = session.query(LibraryEntry).filter(
        LibraryEntry.source_url == source_url,
        LibraryEntry.user_id == user_id,
        LibraryEntry.media_artifact_id.isnot(None),
    )
    if exclude_entry_id is not None:
        query = query.filter(LibraryEntry.id != exclude_entry_id)
    return query.order_by(LibraryEntry.created_at, LibraryEntry.id).first()


def find_user_entry_by_hash(
    session: Session,
    content_hash: str,
    user_id: int,
    exclude_entry_id: Optional[str] = None,
) -> Optional[LibraryEntry]:
    """A library entry of this user linked to the artifact with this hash."""
    query = (
        session.query(LibraryEntry)
        .join(MediaArtifact, LibraryEntry.media_artifact_id == MediaArtifact.id)
        .filter(
            MediaArtifact.content_hash == content_hash,
            LibraryEntry.user_id == user_id,
        )
    )
    if exclude_entry_id is not None:
        query = query.filter(LibraryEntry.id != exclude_entry_id)
    return query.order_by(LibraryEntry.created_at, LibraryEntry.id).first()


def count_artifact_references(session: Session, artifact_id: str) -> int:
    return (
        session.query(LibraryEntry)
        .filter(LibraryEntry.media_artifact_id == artifact_id)
        .count()
    )
