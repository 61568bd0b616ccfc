"""
Content-addressed media store.

Ties the byte store (src.storage) to the media_artifacts catalog. Committed
payloads live at media/<sha256>.<ext>; the unique constraint on
media_artifacts.content_hash makes commit a create-if-absent operation, so
two ingestions racing on the same content end up with a single artifact.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from src.db import (
    MediaArtifact,
    get_db_session,
    find_artifact_by_hash,
    count_artifact_references,
)
from src.logger import log_function
from src.storage import BaseStorage, media_key
from .errors import StorageError
from .hasher import hash_bytes
from .results import AcquisitionResult


logger = logging.getLogger("storage")


@dataclass
class CommitResult:
    artifact: MediaArtifact
    created: bool


class MediaStore:
    def __init__(self, storage: BaseStorage):
        self.storage = storage

    def fingerprint(self, result: AcquisitionResult) -> str:
        """Content hash of acquired bytes, in memory or staged in storage."""
        if result.payload is not None:
            return hash_bytes(result.payload)
        if result.storage_key:
            return self.storage.content_hash(result.storage_key)
        raise StorageError("Acquisition result holds no bytes to fingerprint")

    @log_function(logger_name="storage", log_execution_time=True)
    def commit(
        self,
        content_hash: str,
        acting_user_id: Optional[int],
        extension: str,
        mime_type: str,
        payload: Optional[bytes] = None,
        storage_key: Optional[str] = None,
        source_url: Optional[str] = None,
        duration: Optional[int] = None,
    ) -> CommitResult:
        """
        Persist bytes under their content hash unless the hash is already known.

        Exactly one of payload or storage_key must be given. A staged file is
        moved into place, in-memory bytes are written. When an artifact with
        the same hash exists (before or during the commit), the fresh bytes are
        not kept, the existing artifact's empty source_url is backfilled, and
        created=False is returned.

        Raises:
            StorageError: If the bytes cannot be written
        """
        if (payload is None) == (storage_key is None):
            raise ValueError("Exactly one of payload or storage_key is required")

        with get_db_session() as session:
            existing = find_artifact_by_hash(session, content_hash)
        if existing is not None:
            logger.info(f"Content {content_hash[:12]} already stored as artifact {existing.id}")
            return CommitResult(self._with_source_url(existing, source_url), created=False)

        key = media_key(content_hash, extension)
        if payload is not None:
            self.storage.put_bytes(key, payload)
            filesize = len(payload)
        else:
            self.storage.move(storage_key, key)
            filesize = self.storage.size(key)

        artifact = MediaArtifact(
            content_hash=content_hash,
            file_path=key,
            mime_type=mime_type,
            filesize=filesize,
            duration=duration,
            source_url=source_url or None,
            user_id=acting_user_id,
        )
        try:
            with get_db_session() as session:
                session.add(artifact)
                session.commit()
        except IntegrityError:
            # Another ingestion committed the same hash between our check and insert
            with get_db_session() as session:
                winner = find_artifact_by_hash(session, content_hash)
            if winner is None:
                self.discard(key)
                raise
            if winner.file_path != key:
                self.discard(key)
            logger.info(
                f"Lost commit race for {content_hash[:12]}, linking to artifact {winner.id}"
            )
            return CommitResult(self._with_source_url(winner, source_url), created=False)

        logger.info(f"Committed artifact {artifact.id} at {key} ({filesize:,} bytes)")
        return CommitResult(artifact, created=True)

    def _with_source_url(self, artifact: MediaArtifact, source_url: Optional[str]) -> MediaArtifact:
        if source_url and not artifact.source_url:
            if self.backfill_source_url(artifact.id, source_url):
                artifact.source_url = source_url
        return artifact

    def backfill_source_url(self, artifact_id: str, source_url: str) -> bool:
        """Set source_url on an artifact that has none. Returns True if it was set."""
        if not source_url:
            return False
        with get_db_session() as session:
            updated = (
                session.query(MediaArtifact)
                .filter(
                    MediaArtifact.id == artifact_id,
                    or_(MediaArtifact.source_url.is_(None), MediaArtifact.source_url == ""),
                )
                .update({"source_url": source_url}, synchronize_session=False)
            )
            session.commit()
        if updated:
            logger.info(f"Backfilled source_url of artifact {artifact_id}")
        return updated > 0

    @log_function(logger_name="storage")
    def release(self, artifact_id: str) -> bool:
        """
        Delete an artifact and its bytes when no library entry references it.

        Ownership is irrelevant, only references count. Returns True if the
        artifact was deleted.
        """
        with get_db_session() as session:
            artifact = session.get(MediaArtifact, artifact_id)
            if artifact is None:
                return False
            references = count_artifact_references(session, artifact_id)
            if references > 0:
                logger.debug(f"Artifact {artifact_id} still has {references} reference(s)")
                return False

            file_path = artifact.file_path
            session.delete(artifact)
            try:
                session.commit()
            except IntegrityError:
                # An entry was linked concurrently
                session.rollback()
                return False

        self.storage.delete(file_path)
        logger.info(f"Released orphaned artifact {artifact_id} ({file_path})")
        return True

    def discard(self, key: Optional[str]) -> None:
        """Remove scratch or losing bytes, logging instead of raising."""
        if not key:
            return
        try:
            self.storage.delete(key)
        except StorageError as e:
            logger.warning(f"Could not remove {key}: {e}")
