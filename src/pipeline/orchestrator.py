"""
Ingestion orchestrator.

Drives one library entry from submission to a terminal state:

    pending -> processing -> completed | failed

submit_ingestion() creates the pending entry and dispatches process_entry()
on the task queue. process_entry() runs the duplicate pre-check, acquires the
bytes, fingerprints them and commits the artifact. Every terminal state
carries one user-facing status message.
"""

import functools
import logging
import os
from dataclasses import dataclass
from typing import Optional

from src.db import (
    LibraryEntry,
    ProcessingStatus,
    SourceType,
    get_db_session,
    init_database,
    update_library_entry,
    utcnow,
)
from src.ingestion.config import IngestionConfig
from src.ingestion.downloader import MediaDownloader
from src.ingestion.duplicates import (
    DetectionStage,
    DuplicateResolution,
    DuplicateResolver,
)
from src.ingestion.errors import (
    IngestionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from src.ingestion.media_store import MediaStore
from src.ingestion.results import AcquisitionResult
from src.ingestion.sources import SourceAcquirer, SourceStrategy, build_source
from src.ingestion.youtube import YouTubeExtractor, fetch_video_info
from src.logger import log_function
from src.storage import (
    BaseStorage,
    LocalStorage,
    TEMP_UPLOAD_PREFIX,
    TEMP_YOUTUBE_PREFIX,
    get_storage,
)
from .cleanup import CleanupScheduler
from .task_queue import InlineTaskQueue, TaskQueue, ThreadPoolTaskQueue


logger = logging.getLogger("ingestion")

TITLE_MAX_LENGTH = 255
DESCRIPTION_MAX_LENGTH = 1000

SUCCESS_MESSAGE = "Media file processed successfully."
PROCESSING_FAILED_PREFIX = "Processing failed"


@dataclass
class SubmissionResult:
    entry: LibraryEntry
    message: str


@dataclass
class EntryStatus:
    """Read-only view of a library entry's processing state."""

    entry_id: str
    status: ProcessingStatus
    label: str
    error: Optional[str]
    is_duplicate: bool
    message: Optional[str]
    media_artifact_id: Optional[str]

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal()


class IngestionOrchestrator:
    def __init__(
        self,
        storage: BaseStorage,
        queue: Optional[TaskQueue] = None,
        acquirer: Optional[SourceAcquirer] = None,
        resolver: Optional[DuplicateResolver] = None,
        media_store: Optional[MediaStore] = None,
        cleanup: Optional[CleanupScheduler] = None,
        cleanup_delay: int = 300,
    ):
        self.storage = storage
        self.queue = queue or InlineTaskQueue()
        self.acquirer = acquirer or SourceAcquirer(storage)
        self.resolver = resolver or DuplicateResolver()
        self.media_store = media_store or MediaStore(storage)
        self.cleanup = cleanup or CleanupScheduler(self.queue, self.media_store, cleanup_delay)

    @classmethod
    def from_config(
        cls,
        config: IngestionConfig,
        queue: Optional[TaskQueue] = None,
        init_db: bool = True,
    ) -> "IngestionOrchestrator":
        """Wire every collaborator from an IngestionConfig."""
        if init_db:
            init_database(config.database_url)

        storage = get_storage(config)
        if isinstance(storage, LocalStorage):
            scratch_root = storage.absolute_path(TEMP_YOUTUBE_PREFIX)
        else:
            scratch_root = None  # system temp dir, yt-dlp needs a local directory

        acquirer = SourceAcquirer(
            storage,
            downloader=MediaDownloader(
                timeout=config.download_timeout,
                max_redirects=config.max_redirects,
                min_length=config.signature_min_length,
            ),
            youtube=YouTubeExtractor(
                binary=config.ytdlp_binary,
                timeout=config.ytdlp_timeout,
                scratch_root=scratch_root,
            ),
            min_length=config.signature_min_length,
        )
        return cls(
            storage,
            queue=queue or ThreadPoolTaskQueue(config.workers),
            acquirer=acquirer,
            cleanup_delay=config.duplicate_cleanup_delay,
        )

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    @staticmethod
    def validate_request(
        title: Optional[str], description: Optional[str], source_type
    ) -> None:
        """
        Validate user-provided fields.

        The title may be omitted for YouTube sources only, it is then taken
        from the video metadata.

        Raises:
            ValidationError: If a field is missing or too long
        """
        if not (title or "").strip() and source_type != SourceType.YOUTUBE:
            raise ValidationError("The title field is required.")
        if title and len(title) > TITLE_MAX_LENGTH:
            raise ValidationError(
                f"The title may not be greater than {TITLE_MAX_LENGTH} characters."
            )
        if description and len(description) > DESCRIPTION_MAX_LENGTH:
            raise ValidationError(
                f"The description may not be greater than {DESCRIPTION_MAX_LENGTH} characters."
            )

    def _stage_upload(
        self, file_path: Optional[str], file_data: Optional[bytes], filename: Optional[str]
    ) -> tuple[str, str]:
        if file_data is None:
            if not file_path or not os.path.isfile(file_path):
                raise ValidationError("A readable file is required for upload sources")
            with open(file_path, "rb") as file:
                file_data = file.read()
            filename = filename or os.path.basename(file_path)

        filename = filename or "upload"
        key = self.storage.make_temp_key(TEMP_UPLOAD_PREFIX, filename)
        self.storage.put_bytes(key, file_data)
        logger.debug(f"Staged upload {filename} at {key}")
        return key, filename

    @log_function(logger_name="ingestion", log_execution_time=True)
    def submit_ingestion(
        self,
        user_id: int,
        title: Optional[str],
        source_type,
        description: Optional[str] = None,
        source_url: Optional[str] = None,
        file_path: Optional[str] = None,
        file_data: Optional[bytes] = None,
        filename: Optional[str] = None,
    ) -> SubmissionResult:
        """
        Create a pending library entry and dispatch its processing.

        Args:
            user_id: Acting user
            title: Entry title (optional for YouTube sources)
            source_type: SourceType or "upload" | "url" | "youtube"
            description: Optional description
            source_url: Remote URL (url and youtube sources)
            file_path: Local file to upload (upload sources)
            file_data: Upload bytes, instead of file_path
            filename: Original filename of file_data

        Returns:
            SubmissionResult with the entry and the message to show the user

        Raises:
            ValidationError: If the request is invalid (nothing is created)
        """
        source = build_source(source_type, source_url=source_url)
        self.validate_request(title, description, source.source_type)

        if source.source_type is SourceType.UPLOAD:
            storage_key, filename = self._stage_upload(file_path, file_data, filename)
            source = build_source(SourceType.UPLOAD, storage_key=storage_key, filename=filename)
        source.validate()

        try:
            with get_db_session() as session:
                entry = LibraryEntry(
                    user_id=user_id,
                    title=(title or "").strip() or None,
                    description=description or None,
                    source_type=source.source_type,
                    source_url=source.source_url,
                    processing_status=ProcessingStatus.PENDING,
                )
                session.add(entry)
                session.commit()
        except Exception:
            self.media_store.discard(source.storage_key)
            raise

        logger.info(
            f"Entry {entry.id} submitted by user {user_id} ({source.source_type.value})"
        )
        self.queue.dispatch(functools.partial(self.process_entry, entry.id, source))

        # Inline queues have already processed the entry
        with get_db_session() as session:
            current = session.get(LibraryEntry, entry.id)
        if current is not None:
            entry = current
            if current.processing_status.is_terminal() and current.status_message:
                return SubmissionResult(entry, current.status_message)
        return SubmissionResult(entry, source.processing_message)

    # ------------------------------------------------------------------
    # Processing state machine
    # ------------------------------------------------------------------

    def process_entry(self, entry_id: str, source: SourceStrategy) -> None:
        """
        Run one ingestion attempt for a library entry.

        Safe to deliver more than once: only the attempt that moves the entry
        out of pending processes it, later deliveries are skipped. Never
        raises for processing faults, they end the entry in failed.
        """
        entry = None
        try:
            entry = self._start(entry_id)
            if entry is not None:
                self._process(entry, source)
        except Exception as e:
            logger.exception(f"Entry {entry_id} processing crashed")
            self._fail(entry_id, f"{PROCESSING_FAILED_PREFIX}: {e}")
        finally:
            # Staged upload bytes never outlive the attempt that owns them
            if entry is not None or not self._in_flight(entry_id):
                self.media_store.discard(source.storage_key)

    def _start(self, entry_id: str) -> Optional[LibraryEntry]:
        claimed = update_library_entry(
            entry_id,
            expected_status=ProcessingStatus.PENDING,
            processing_status=ProcessingStatus.PROCESSING,
            processing_started_at=utcnow(),
            processing_error=None,
        )
        with get_db_session() as session:
            entry = session.get(LibraryEntry, entry_id)
        if entry is None:
            logger.warning(f"Entry {entry_id} no longer exists, skipping")
            return None
        if not claimed:
            logger.info(f"Entry {entry_id} already {entry.processing_status.value}, skipping")
            return None

        logger.info(f"Entry {entry_id}: pending -> processing")
        return entry

    def _in_flight(self, entry_id: str) -> bool:
        with get_db_session() as session:
            entry = session.get(LibraryEntry, entry_id)
            return entry is not None and entry.processing_status.is_processing()

    def _process(self, entry: LibraryEntry, source: SourceStrategy) -> None:
        pre_hash = None
        key = source.storage_key
        if key and self.storage.exists(key):
            pre_hash = self.storage.content_hash(key)

        resolution = self.resolver.resolve(
            entry.user_id,
            source_url=source.source_url,
            content_hash=pre_hash,
            exclude_entry_id=entry.id,
            stage=DetectionStage.PRE_ACQUISITION,
        )
        if resolution.is_reuse:
            details = self._details_from_metadata(entry, source, {})
            self._complete_with_existing(entry, resolution, source.source_url, **details)
            return

        want_metadata = source.source_type is SourceType.YOUTUBE and not entry.title
        result = self.acquirer.acquire(source, want_metadata=want_metadata)

        if result.invalid_request:
            self._delete_invalid(entry.id, result.error)
            return
        if not result.success:
            self._fail(entry.id, result.error)
            return

        content_hash = self.media_store.fingerprint(result)
        self._finalize(entry, source, result, content_hash)

    def _finalize(
        self,
        entry: LibraryEntry,
        source: SourceStrategy,
        result: AcquisitionResult,
        content_hash: str,
    ) -> None:
        duration = result.metadata.get("duration")
        commit = self.media_store.commit(
            content_hash,
            entry.user_id,
            extension=result.extension,
            mime_type=result.mime_type,
            payload=result.payload,
            storage_key=result.storage_key,
            source_url=source.source_url,
            duration=int(duration) if duration else None,
        )
        details = self._details_from_metadata(entry, source, result.metadata)

        if not commit.created:
            # Cross-user hash matches are flagged but stay linked, only a user's own
            # duplicates are scheduled for cleanup
            resolution = self.resolver.resolve(
                entry.user_id,
                content_hash=content_hash,
                exclude_entry_id=entry.id,
                stage=DetectionStage.POST_ACQUISITION,
            )
            if not resolution.is_reuse:
                raise IngestionError(f"Artifact for content {content_hash[:12]} not found after commit")
            self._complete_with_existing(entry, resolution, source.source_url, **details)
            return

        now = utcnow()
        updated = update_library_entry(
            entry.id,
            expected_status=ProcessingStatus.PROCESSING,
            media_artifact_id=commit.artifact.id,
            is_duplicate=False,
            duplicate_detected_at=None,
            processing_status=ProcessingStatus.COMPLETED,
            processing_completed_at=now,
            processing_error=None,
            status_message=SUCCESS_MESSAGE,
            **details,
        )
        if not updated:
            logger.warning(
                f"Entry {entry.id} was deleted or finished elsewhere, releasing artifact {commit.artifact.id}"
            )
            self.media_store.release(commit.artifact.id)
            return
        logger.info(f"Entry {entry.id}: processing -> completed (artifact {commit.artifact.id})")

    def _details_from_metadata(
        self, entry: LibraryEntry, source: SourceStrategy, metadata: dict
    ) -> dict:
        """Title/description recovered for YouTube entries submitted without a title."""
        if source.source_type is not SourceType.YOUTUBE or entry.title:
            return {}

        details = {}
        title = metadata.get("title")
        if not title:
            info = fetch_video_info(
                source.video_id, session=self.acquirer.downloader.session
            )
            title = info["title"] if info else None
        if title:
            details["title"] = title[:TITLE_MAX_LENGTH]
        description = metadata.get("description")
        if description and not entry.description:
            details["description"] = description[:DESCRIPTION_MAX_LENGTH]
        return details

    def _complete_with_existing(
        self,
        entry: LibraryEntry,
        resolution: DuplicateResolution,
        source_url: Optional[str],
        **details,
    ) -> None:
        artifact = resolution.artifact
        if source_url:
            self.media_store.backfill_source_url(artifact.id, source_url)

        now = utcnow()
        updated = update_library_entry(
            entry.id,
            expected_status=ProcessingStatus.PROCESSING,
            media_artifact_id=artifact.id,
            is_duplicate=resolution.is_duplicate,
            duplicate_detected_at=now if resolution.is_duplicate else None,
            processing_status=ProcessingStatus.COMPLETED,
            processing_completed_at=now,
            processing_error=None,
            status_message=resolution.message(self.cleanup.delay_seconds),
            **details,
        )
        if not updated:
            logger.warning(f"Entry {entry.id} was deleted or finished elsewhere, not linking it")
            return
        logger.info(
            f"Entry {entry.id}: processing -> completed via {resolution.outcome.value} "
            f"(artifact {artifact.id}, duplicate={resolution.is_duplicate})"
        )

        if resolution.schedule_cleanup:
            self.cleanup.schedule_cleanup(entry.id)

    def _fail(self, entry_id: str, error: Optional[str]) -> None:
        error = error or f"{PROCESSING_FAILED_PREFIX}: unknown error"
        updated = update_library_entry(
            entry_id,
            expected_status=ProcessingStatus.PROCESSING,
            processing_status=ProcessingStatus.FAILED,
            processing_completed_at=utcnow(),
            processing_error=error,
            status_message=error,
        )
        if updated:
            logger.warning(f"Entry {entry_id}: processing -> failed: {error}")

    def _delete_invalid(self, entry_id: str, reason: Optional[str]) -> None:
        with get_db_session() as session:
            entry = session.get(LibraryEntry, entry_id)
            if entry is not None:
                session.delete(entry)
                session.commit()
        logger.warning(f"Entry {entry_id} deleted, invalid request: {reason}")

    # ------------------------------------------------------------------
    # Queries and deletion
    # ------------------------------------------------------------------

    @log_function(logger_name="ingestion", log_args=True)
    def delete_library_entry(self, entry_id: str, user_id: int) -> bool:
        """
        Delete a user's library entry.

        The linked artifact and its bytes are removed when no other entry
        references them.

        Returns:
            True if the artifact was garbage-collected as well

        Raises:
            NotFoundError: If the entry does not exist
            PermissionDeniedError: If the entry belongs to another user
        """
        with get_db_session() as session:
            entry = session.get(LibraryEntry, entry_id)
            if entry is None:
                raise NotFoundError(f"Library entry {entry_id} not found")
            if entry.user_id != user_id:
                raise PermissionDeniedError(
                    f"Library entry {entry_id} does not belong to user {user_id}"
                )
            artifact_id = entry.media_artifact_id
            session.delete(entry)
            session.commit()

        logger.info(f"Entry {entry_id} deleted by user {user_id}")
        if artifact_id is None:
            return False
        return self.media_store.release(artifact_id)

    def get_entry_status(self, entry_id: str) -> EntryStatus:
        with get_db_session() as session:
            entry = session.get(LibraryEntry, entry_id)
            if entry is None:
                raise NotFoundError(f"Library entry {entry_id} not found")
            return EntryStatus(
                entry_id=entry.id,
                status=entry.processing_status,
                label=entry.processing_status_text,
                error=entry.processing_error,
                is_duplicate=entry.is_duplicate,
                message=entry.status_message,
                media_artifact_id=entry.media_artifact_id,
            )

    def check_url_duplicate(self, url: str, user_id: int):
        return self.resolver.check_url_duplicate(url, user_id)

    def shutdown(self, wait: bool = True) -> None:
        self.queue.shutdown(wait=wait)
