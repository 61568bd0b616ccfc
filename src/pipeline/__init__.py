"""
Media ingestion pipeline module.

This module runs library entries through their processing lifecycle:
    1. Submission (pending entry, staged upload)
    2. Duplicate pre-check (src.ingestion.duplicates)
    3. Acquisition (src.ingestion.sources)
    4. Content-addressed commit (src.ingestion.media_store)
    5. Deferred cleanup of same-user duplicates (cleanup.py)

Usage:
    # CLI interface
    python -m src.pipeline submit --user-id 1 --title "Episode" --source-type url --url https://x/a.mp3
    python -m src.pipeline status <entry-id>

    # Programmatic interface
    from src.pipeline import IngestionOrchestrator
    orchestrator = IngestionOrchestrator.from_config(IngestionConfig.from_env())
    result = orchestrator.submit_ingestion(1, "Episode", "url", source_url="https://x/a.mp3")
"""

__version__ = "0.1.0"

from .cleanup import CleanupScheduler
from .orchestrator import (
    IngestionOrchestrator,
    SubmissionResult,
    EntryStatus,
)
from .task_queue import (
    TaskQueue,
    ThreadPoolTaskQueue,
    InlineTaskQueue,
)

__all__ = [
    # Orchestration
    "IngestionOrchestrator",
    "SubmissionResult",
    "EntryStatus",
    "CleanupScheduler",
    # Background work
    "TaskQueue",
    "ThreadPoolTaskQueue",
    "InlineTaskQueue",
]
