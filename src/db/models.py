"""
SQLAlchemy ORM models for the media library.

This module defines the database schema using SQLAlchemy's declarative base.
All models inherit from Base and use consistent naming conventions.

Models:
    MediaArtifact: One physically stored, content-addressed payload
    LibraryEntry: One user's request to add a piece of content to their library
    TimestampMixin: Provides automatic created_at/updated_at timestamps

Enums:
    ProcessingStatus: Lifecycle of a library entry
    SourceType: How the content of a library entry was declared
"""

from datetime import datetime, timezone
from enum import Enum as PyEnum

import uuid_utils as uuid
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    BigInteger,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


def new_id() -> str:
    """Primary keys are UUID7 strings (time ordered)."""
    return str(uuid.uuid7())


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the server-side func.now() columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TimestampMixin:
    """
    Mixin to add automatic timestamp tracking to models.

    Provides:
        created_at: Timestamp when record was created (set automatically)
        updated_at: Timestamp when record was last modified (updated automatically)
    """

    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime, nullable=False, server_default=func.now(), onupdate=func.now()
    )


class ProcessingStatus(str, PyEnum):
    """
    Processing lifecycle of a library entry.

    pending -> processing -> completed | failed. Both completed and failed are
    terminal: a retry is a brand-new entry.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def display_name(self) -> str:
        return _STATUS_LABELS[self]

    def is_pending(self) -> bool:
        return self is ProcessingStatus.PENDING

    def is_processing(self) -> bool:
        return self is ProcessingStatus.PROCESSING

    def has_completed(self) -> bool:
        return self is ProcessingStatus.COMPLETED

    def has_failed(self) -> bool:
        return self is ProcessingStatus.FAILED

    def is_terminal(self) -> bool:
        return self in (ProcessingStatus.COMPLETED, ProcessingStatus.FAILED)


_STATUS_LABELS = {
    ProcessingStatus.PENDING: "Pending",
    ProcessingStatus.PROCESSING: "Processing",
    ProcessingStatus.COMPLETED: "Completed",
    ProcessingStatus.FAILED: "Failed",
}


class SourceType(str, PyEnum):
    """How the content of a library entry was declared."""

    UPLOAD = "upload"
    URL = "url"
    YOUTUBE = "youtube"


class MediaArtifact(Base, TimestampMixin):
    """
    One deduplicated, content-addressed stored payload.

    Attributes:
        id: Primary key (UUID7)
        content_hash: Hex encoded SHA-256 of the payload, globally unique
        file_path: Storage key, always media/<content_hash>.<ext>
        mime_type: Detected MIME type
        filesize: Size of the payload in bytes
        duration: Optional duration in seconds
        source_url: URL the payload was first seen at (not unique, may be empty)
        user_id: User whose ingestion first committed the payload (nullable)

    The unique constraint on content_hash is what makes commits
    create-if-absent under concurrent ingestions.
    """

    __tablename__ = "media_artifacts"

    id = Column(String, primary_key=True, default=new_id)
    content_hash = Column(String(64), nullable=False, unique=True)
    file_path = Column(String, nullable=False)
    mime_type = Column(String(128), nullable=False)
    filesize = Column(BigInteger, nullable=False)
    duration = Column(Integer, nullable=True)  # in seconds
    source_url = Column(String, nullable=True, index=True)
    user_id = Column(Integer, nullable=True, index=True)

    library_entries = relationship(
        "LibraryEntry", back_populates="media_artifact", passive_deletes="all"
    )

    def __repr__(self):
        return (
            f"<MediaArtifact(id={self.id}, hash={self.content_hash[:12]}, "
            f"path='{self.file_path}', user_id={self.user_id})>"
        )


class LibraryEntry(Base, TimestampMixin):
    """
    One user's request/record for a piece of content.

    Attributes:
        id: Primary key (UUID7)
        user_id: Owning user
        title: User provided (or extracted) title
        description: Optional description
        source_type: upload, url or youtube
        source_url: Remote URL for url/youtube sources
        media_artifact_id: Linked artifact, set once the entry is resolved
        is_duplicate: True when the linked artifact was already known
        duplicate_detected_at: When the duplicate was detected
        processing_status: ProcessingStatus
        processing_started_at / processing_completed_at: Lifecycle timestamps
        processing_error: Human readable reason of a failure
        status_message: Single user-facing message of the terminal state
    """

    __tablename__ = "library_entries"
    __table_args__ = (
        Index("ix_library_entries_user_source_url", "user_id", "source_url"),
    )

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(Integer, nullable=False, index=True)
    title = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    source_type = Column(Enum(SourceType), nullable=False)
    source_url = Column(String, nullable=True)
    media_artifact_id = Column(
        String, ForeignKey("media_artifacts.id"), nullable=True, index=True
    )

    is_duplicate = Column(Boolean, nullable=False, default=False)
    duplicate_detected_at = Column(DateTime, nullable=True)

    processing_status = Column(
        Enum(ProcessingStatus),
        nullable=False,
        default=ProcessingStatus.PENDING,
    )
    processing_started_at = Column(DateTime, nullable=True)
    processing_completed_at = Column(DateTime, nullable=True)
    processing_error = Column(Text, nullable=True)
    status_message = Column(Text, nullable=True)

    media_artifact = relationship("MediaArtifact", back_populates="library_entries")

    @property
    def processing_status_text(self) -> str:
        if self.processing_status is None:
            return "Unknown"
        return self.processing_status.display_name

    def __repr__(self):
        return (
            f"<LibraryEntry(id={self.id}, user_id={self.user_id}, title='{self.title}', "
            f"source={self.source_type.value if self.source_type else None}, "
            f"status={self.processing_status.value if self.processing_status else None}, "
            f"duplicate={self.is_duplicate})>"
        )
