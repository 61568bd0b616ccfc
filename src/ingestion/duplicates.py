"""
Duplicate resolution.

Given what is known about a prospective artifact (its source URL before
acquisition, its content hash after) and the acting user, decide whether the
library entry can reuse an existing artifact. Outcomes, by precedence:

    USER_URL_DUPLICATE      the user already has an entry for this exact URL
    USER_CONTENT_DUPLICATE  the user already references this content
    GLOBAL_DUPLICATE        another user's artifact matches by URL or hash
    NO_DUPLICATE            nothing matches, acquire the bytes

The resolver reads committed state only and takes no lock. It is an
optimization: the unique content hash checked at commit time in MediaStore is
what guarantees a single artifact per content.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from src.db import (
    MediaArtifact,
    get_db_session,
    find_artifact_by_hash,
    find_artifact_by_source_url,
    find_user_entry_by_hash,
    find_user_entry_by_source_url,
)
from src.logger import log_function


logger = logging.getLogger("duplicates")

DEFAULT_CLEANUP_DELAY = 300

DUPLICATE_FILE_MESSAGE = (
    "Duplicate file detected. This file already exists in your library "
    "and will be removed automatically in {minutes} minutes."
)
DUPLICATE_URL_MESSAGE = (
    "Duplicate URL detected. This file already exists in your library "
    "and will be removed automatically in {minutes} minutes."
)
SHARED_FILE_MESSAGE = "File already exists in the system. Linked to existing media file."
URL_ALREADY_PROCESSED_MESSAGE = (
    "This URL has already been processed. "
    "The existing media file has been linked to this library item."
)


class DuplicateOutcome(str, Enum):
    USER_URL_DUPLICATE = "user_url_duplicate"
    USER_CONTENT_DUPLICATE = "user_content_duplicate"
    GLOBAL_DUPLICATE = "global_duplicate"
    NO_DUPLICATE = "no_duplicate"


class DetectionStage(str, Enum):
    """When the lookup runs relative to acquiring the bytes."""

    PRE_ACQUISITION = "pre_acquisition"
    POST_ACQUISITION = "post_acquisition"


class CrossUserDuplicatePolicy:
    """
    Whether linking to another user's artifact marks the entry as duplicate.

    A match found before acquisition ("nothing downloaded yet, reuse it") is
    a plain link. A match found after an independent acquisition collided
    with existing content is reported to the user as a duplicate.
    """

    def __init__(self, mark_pre_acquisition: bool = False, mark_post_acquisition: bool = True):
        self.mark_pre_acquisition = mark_pre_acquisition
        self.mark_post_acquisition = mark_post_acquisition

    def is_duplicate(self, stage: DetectionStage) -> bool:
        if stage is DetectionStage.PRE_ACQUISITION:
            return self.mark_pre_acquisition
        return self.mark_post_acquisition


@dataclass
class DuplicateResolution:
    outcome: DuplicateOutcome
    artifact: Optional[MediaArtifact] = None
    is_duplicate: bool = False
    schedule_cleanup: bool = False
    matched_by: Optional[str] = None  # "url" or "hash"
    existing_entry_id: Optional[str] = None

    @property
    def is_reuse(self) -> bool:
        return self.outcome is not DuplicateOutcome.NO_DUPLICATE

    def message(self, cleanup_delay: int = DEFAULT_CLEANUP_DELAY) -> Optional[str]:
        """User-facing note for a reuse outcome, None when nothing matched."""
        if not self.is_reuse:
            return None
        if self.schedule_cleanup:
            minutes = max(1, round(cleanup_delay / 60))
            template = (
                DUPLICATE_URL_MESSAGE
                if self.outcome is DuplicateOutcome.USER_URL_DUPLICATE
                else DUPLICATE_FILE_MESSAGE
            )
            return template.format(minutes=minutes)
        if self.outcome is not DuplicateOutcome.GLOBAL_DUPLICATE and self.matched_by == "url":
            return URL_ALREADY_PROCESSED_MESSAGE
        return SHARED_FILE_MESSAGE


NO_DUPLICATE = DuplicateResolution(DuplicateOutcome.NO_DUPLICATE)


class DuplicateResolver:
    def __init__(self, policy: Optional[CrossUserDuplicatePolicy] = None):
        self.policy = policy or CrossUserDuplicatePolicy()

    @log_function(logger_name="duplicates", log_args=True)
    def resolve(
        self,
        acting_user_id: int,
        source_url: Optional[str] = None,
        content_hash: Optional[str] = None,
        exclude_entry_id: Optional[str] = None,
        stage: DetectionStage = DetectionStage.PRE_ACQUISITION,
    ) -> DuplicateResolution:
        """
        Resolve the duplicate outcome for a prospective artifact.

        Args:
            acting_user_id: User submitting the content
            source_url: Declared source URL, if any
            content_hash: Content hash, once known
            exclude_entry_id: The library entry being resolved (never matches itself)
            stage: Whether the bytes were already acquired

        Returns:
            DuplicateResolution (artifact is detached, loaded attributes only)
        """
        with get_db_session() as session:
            if source_url:
                entry = find_user_entry_by_source_url(
                    session, source_url, acting_user_id, exclude_entry_id
                )
                if entry is not None:
                    return self._user_duplicate(
                        DuplicateOutcome.USER_URL_DUPLICATE, entry.media_artifact, "url", entry.id
                    )

            if content_hash:
                entry = find_user_entry_by_hash(
                    session, content_hash, acting_user_id, exclude_entry_id
                )
                if entry is not None:
                    return self._user_duplicate(
                        DuplicateOutcome.USER_CONTENT_DUPLICATE, entry.media_artifact, "hash", entry.id
                    )

            artifact, matched_by = None, None
            if source_url:
                artifact, matched_by = find_artifact_by_source_url(session, source_url), "url"
            if artifact is None and content_hash:
                artifact, matched_by = find_artifact_by_hash(session, content_hash), "hash"

            if artifact is not None and matched_by == "url":
                # The URL was first seen elsewhere but the user may hold the content
                entry = find_user_entry_by_hash(
                    session, artifact.content_hash, acting_user_id, exclude_entry_id
                )
                if entry is not None:
                    return self._user_duplicate(
                        DuplicateOutcome.USER_CONTENT_DUPLICATE, artifact, "url", entry.id
                    )

        if artifact is None:
            return NO_DUPLICATE

        if artifact.user_id == acting_user_id:
            # Owned by this user but referenced only by other users' entries
            outcome = (
                DuplicateOutcome.USER_URL_DUPLICATE
                if matched_by == "url"
                else DuplicateOutcome.USER_CONTENT_DUPLICATE
            )
            logger.info(f"{outcome.value}: user {acting_user_id} owns unreferenced artifact {artifact.id}")
            return DuplicateResolution(
                outcome, artifact, is_duplicate=True, schedule_cleanup=False, matched_by=matched_by
            )

        is_duplicate = self.policy.is_duplicate(stage)
        logger.info(
            f"global_duplicate by {matched_by} ({stage.value}): artifact {artifact.id} "
            f"of user {artifact.user_id} linked for user {acting_user_id}, duplicate={is_duplicate}"
        )
        return DuplicateResolution(
            DuplicateOutcome.GLOBAL_DUPLICATE,
            artifact,
            is_duplicate=is_duplicate,
            schedule_cleanup=False,
            matched_by=matched_by,
        )

    def _user_duplicate(self, outcome, artifact, matched_by, entry_id) -> DuplicateResolution:
        logger.info(f"{outcome.value}: matches entry {entry_id}, artifact {artifact.id}")
        return DuplicateResolution(
            outcome,
            artifact,
            is_duplicate=True,
            schedule_cleanup=True,
            matched_by=matched_by,
            existing_entry_id=entry_id,
        )

    def check_url_duplicate(self, url: str, user_id: int) -> tuple[bool, Optional[MediaArtifact]]:
        """
        Pre-submission check: is this URL already known?

        Returns:
            (True, artifact) when the user already has this URL in their
            library, (False, artifact) when only another user's artifact
            matches, (False, None) when the URL is new.
        """
        resolution = self.resolve(user_id, source_url=url)
        if not resolution.is_reuse:
            return False, None
        return resolution.outcome is DuplicateOutcome.USER_URL_DUPLICATE, resolution.artifact
