"""
Deferred removal of duplicate library entries.

A same-user duplicate is kept for a grace period so the submitting client can
read the duplicate notice, then deleted by a delayed task on the queue.
"""

import functools
import logging
from datetime import timedelta
from typing import Optional

from src.db import LibraryEntry, get_db_session, utcnow
from src.ingestion.duplicates import DEFAULT_CLEANUP_DELAY
from src.ingestion.media_store import MediaStore
from src.logger import log_function
from .task_queue import TaskQueue


logger = logging.getLogger("pipeline")


class CleanupScheduler:
    def __init__(
        self,
        queue: TaskQueue,
        media_store: MediaStore,
        delay_seconds: int = DEFAULT_CLEANUP_DELAY,
    ):
        self.queue = queue
        self.media_store = media_store
        self.delay_seconds = delay_seconds

    def schedule_cleanup(self, entry_id: str) -> None:
        self.queue.schedule_after(
            self.delay_seconds, functools.partial(self.cleanup_duplicate_entry, entry_id)
        )
        logger.info(f"Cleanup of duplicate entry {entry_id} scheduled in {self.delay_seconds}s")

    @log_function(logger_name="pipeline", log_args=True)
    def cleanup_duplicate_entry(self, entry_id: str) -> bool:
        """
        Delete the entry if it still exists and is still flagged duplicate.

        The linked artifact is released when nothing else references it.
        Returns True if the entry was deleted.
        """
        with get_db_session() as session:
            entry = session.get(LibraryEntry, entry_id)
            if entry is None:
                logger.info(f"Duplicate entry {entry_id} already gone")
                return False
            if not entry.is_duplicate:
                logger.info(f"Entry {entry_id} is no longer a duplicate, keeping it")
                return False

            artifact_id = entry.media_artifact_id
            session.delete(entry)
            session.commit()

        logger.info(f"Removed duplicate entry {entry_id}")
        if artifact_id:
            self.media_store.release(artifact_id)
        return True

    def sweep(self, older_than_seconds: Optional[int] = None) -> int:
        """
        Remove redundant duplicate entries whose grace period is over.

        Used after a restart, when delayed tasks held in memory were lost. An
        entry is redundant when an older entry of the same user (ids are time
        ordered) links the same artifact.

        Returns:
            Number of entries removed
        """
        delay = self.delay_seconds if older_than_seconds is None else older_than_seconds
        cutoff = utcnow() - timedelta(seconds=delay)

        with get_db_session() as session:
            candidates = (
                session.query(LibraryEntry)
                .filter(
                    LibraryEntry.is_duplicate.is_(True),
                    LibraryEntry.duplicate_detected_at <= cutoff,
                    LibraryEntry.media_artifact_id.isnot(None),
                )
                .all()
            )
            redundant = []
            for entry in candidates:
                original = (
                    session.query(LibraryEntry.id)
                    .filter(
                        LibraryEntry.user_id == entry.user_id,
                        LibraryEntry.media_artifact_id == entry.media_artifact_id,
                        LibraryEntry.id < entry.id,
                    )
                    .first()
                )
                if original is not None:
                    redundant.append(entry.id)

        removed = sum(1 for entry_id in redundant if self.cleanup_duplicate_entry(entry_id))
        logger.info(f"Sweep removed {removed} duplicate entr{'y' if removed == 1 else 'ies'}")
        return removed
