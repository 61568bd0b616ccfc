import hashlib
import threading

import pytest

from src.db import (
    LibraryEntry,
    MediaArtifact,
    ProcessingStatus,
    get_db_session,
    update_library_entry,
)
from src.ingestion.errors import NotFoundError, PermissionDeniedError, ValidationError
from src.ingestion.hasher import hash_bytes
from src.pipeline.orchestrator import PROCESSING_FAILED_PREFIX, SUCCESS_MESSAGE
from src.storage import media_key
from tests.conftest import MP3_BYTES, OTHER_MP3_BYTES, FakeResponse


def load_entry(entry_id):
    with get_db_session() as session:
        return session.get(LibraryEntry, entry_id)


def load_artifact(artifact_id):
    with get_db_session() as session:
        return session.get(MediaArtifact, artifact_id)


def all_artifacts():
    with get_db_session() as session:
        return session.query(MediaArtifact).all()


def html_redirect(target):
    return f"<!DOCTYPE html><html><script>window.location.replace('{target}')</script></html>".encode()


def submit_url(orchestrator, url, user_id=1, title="Episode"):
    return orchestrator.submit_ingestion(user_id, title, "url", source_url=url)


class TestUrlScenarios:
    def test_url_download_completes(self, orchestrator, http_session):
        http_session.routes["https://x/a.mp3"] = b"abc"

        result = submit_url(orchestrator, "https://x/a.mp3")
        entry = load_entry(result.entry.id)

        assert entry.processing_status is ProcessingStatus.COMPLETED
        assert entry.processing_started_at is not None
        assert entry.processing_completed_at is not None
        assert not entry.is_duplicate
        artifact = load_artifact(entry.media_artifact_id)
        assert artifact.content_hash == hashlib.sha256(b"abc").hexdigest()
        assert artifact.file_path == f"media/{artifact.content_hash}.mp3"
        assert artifact.source_url == "https://x/a.mp3"
        assert artifact.user_id == 1
        assert result.message == SUCCESS_MESSAGE

    def test_http_404_fails(self, orchestrator):
        result = submit_url(orchestrator, "https://x/missing.mp3")
        entry = load_entry(result.entry.id)

        assert entry.processing_status is ProcessingStatus.FAILED
        assert "Failed to download file: HTTP 404" in entry.processing_error
        assert entry.processing_completed_at is not None
        assert entry.media_artifact_id is None
        assert result.message == entry.processing_error

    def test_script_redirect_hashes_real_bytes(self, orchestrator, http_session):
        http_session.routes["https://x/a.mp3"] = html_redirect("https://x/real.mp3")
        http_session.routes["https://x/real.mp3"] = MP3_BYTES

        entry = load_entry(submit_url(orchestrator, "https://x/a.mp3").entry.id)

        assert entry.processing_status is ProcessingStatus.COMPLETED
        artifact = load_artifact(entry.media_artifact_id)
        assert artifact.content_hash == hash_bytes(MP3_BYTES)
        assert artifact.mime_type == "audio/mpeg"

    def test_html_without_redirect_fails(self, orchestrator, http_session):
        http_session.routes["https://x/a.mp3"] = b"<html><body>Log in</body></html>"
        entry = load_entry(submit_url(orchestrator, "https://x/a.mp3").entry.id)
        assert entry.processing_error == "Download failed: Got HTML content instead of media file"

    def test_same_user_same_url_twice_reuses_without_download(self, orchestrator, http_session, queue):
        http_session.routes["https://x/a.mp3"] = MP3_BYTES
        first = load_entry(submit_url(orchestrator, "https://x/a.mp3").entry.id)
        calls_after_first = len(http_session.calls)

        result = submit_url(orchestrator, "https://x/a.mp3")
        second = load_entry(result.entry.id)

        assert len(http_session.calls) == calls_after_first
        assert second.processing_status is ProcessingStatus.COMPLETED
        assert second.media_artifact_id == first.media_artifact_id
        assert second.is_duplicate
        assert second.duplicate_detected_at is not None
        assert "will be removed automatically in 5 minutes" in result.message
        assert len(queue.scheduled) == 1
        assert queue.scheduled[0].delay_seconds == 300

    def test_cross_user_url_prematch_links_without_duplicate(self, orchestrator, http_session):
        http_session.routes["https://x/a.mp3"] = MP3_BYTES
        first = load_entry(submit_url(orchestrator, "https://x/a.mp3", user_id=1).entry.id)
        calls_after_first = len(http_session.calls)

        result = submit_url(orchestrator, "https://x/a.mp3", user_id=2)
        second = load_entry(result.entry.id)

        assert len(http_session.calls) == calls_after_first
        assert second.media_artifact_id == first.media_artifact_id
        assert not second.is_duplicate
        assert result.message == "File already exists in the system. Linked to existing media file."

    def test_cross_user_identical_content_different_urls(self, orchestrator, http_session, queue):
        http_session.routes["https://one/a.mp3"] = MP3_BYTES
        http_session.routes["https://two/b.mp3"] = MP3_BYTES

        first = load_entry(submit_url(orchestrator, "https://one/a.mp3", user_id=1).entry.id)
        second = load_entry(submit_url(orchestrator, "https://two/b.mp3", user_id=2).entry.id)

        assert first.media_artifact_id == second.media_artifact_id
        assert not first.is_duplicate
        assert second.is_duplicate
        assert len(all_artifacts()) == 1
        assert load_artifact(first.media_artifact_id).user_id == 1
        assert queue.scheduled == []


class TestUploadScenarios:
    def test_upload_completes_and_removes_scratch(self, orchestrator, storage, tmp_path):
        path = tmp_path / "interview.mp3"
        path.write_bytes(MP3_BYTES)

        result = orchestrator.submit_ingestion(1, "Interview", "upload", file_path=str(path))
        entry = load_entry(result.entry.id)

        assert entry.processing_status is ProcessingStatus.COMPLETED
        artifact = load_artifact(entry.media_artifact_id)
        assert artifact.file_path == f"media/{hash_bytes(MP3_BYTES)}.mp3"
        assert storage.get_bytes(artifact.file_path) == MP3_BYTES
        assert artifact.source_url is None
        temp_dir = tmp_path / "storage" / "temp-uploads"
        assert not temp_dir.exists() or not any(temp_dir.iterdir())

    def test_upload_duplicate_of_own_artifact(self, orchestrator, queue):
        orchestrator.submit_ingestion(1, "First", "upload", file_data=MP3_BYTES, filename="a.mp3")
        result = orchestrator.submit_ingestion(1, "Again", "upload", file_data=MP3_BYTES, filename="b.mp3")
        entry = load_entry(result.entry.id)

        assert entry.processing_status is ProcessingStatus.COMPLETED
        assert entry.is_duplicate
        assert result.message == (
            "Duplicate file detected. This file already exists in your library "
            "and will be removed automatically in 5 minutes."
        )
        assert len(queue.scheduled) == 1
        assert 299 <= queue.scheduled[0].delay_seconds <= 300

        # Cleanup fires later and removes only the duplicate entry
        assert queue.run_scheduled() == 1
        assert load_entry(entry.id) is None
        assert len(all_artifacts()) == 1

    def test_upload_of_other_users_content_is_shared(self, orchestrator):
        orchestrator.submit_ingestion(1, "First", "upload", file_data=MP3_BYTES, filename="a.mp3")
        result = orchestrator.submit_ingestion(2, "Mine", "upload", file_data=MP3_BYTES, filename="a.mp3")
        entry = load_entry(result.entry.id)

        assert not entry.is_duplicate
        assert entry.media_artifact_id is not None
        assert len(all_artifacts()) == 1

    def test_url_submission_backfills_upload_born_artifact(self, orchestrator, http_session):
        upload = orchestrator.submit_ingestion(1, "Upload", "upload", file_data=MP3_BYTES, filename="a.mp3")
        http_session.routes["https://x/a.mp3"] = MP3_BYTES
        url_entry = load_entry(submit_url(orchestrator, "https://x/a.mp3", user_id=2).entry.id)

        artifact = load_artifact(load_entry(upload.entry.id).media_artifact_id)
        assert url_entry.media_artifact_id == artifact.id
        assert artifact.source_url == "https://x/a.mp3"

    def test_invalid_upload_fails(self, orchestrator):
        result = orchestrator.submit_ingestion(1, "Bad", "upload", file_data=b"\x13\x37" * 200, filename="x.mp3")
        entry = load_entry(result.entry.id)
        assert entry.processing_status is ProcessingStatus.FAILED
        assert entry.processing_error.startswith("Upload failed")

    def test_missing_scratch_file_fails(self, orchestrator, storage, queue, monkeypatch):
        deferred = []
        monkeypatch.setattr(queue, "dispatch", deferred.append)
        result = orchestrator.submit_ingestion(1, "Gone", "upload", file_data=MP3_BYTES, filename="a.mp3")

        storage.delete_prefix("temp-uploads")
        deferred[0]()

        entry = load_entry(result.entry.id)
        assert entry.processing_status is ProcessingStatus.FAILED
        assert entry.processing_error == "Temp file not found or inaccessible"


class TestYouTubeScenarios:
    def test_youtube_extraction_with_metadata(self, orchestrator, yt_runner):
        result = orchestrator.submit_ingestion(
            1, None, "youtube", source_url="https://youtu.be/dQw4w9WgXcQ"
        )
        entry = load_entry(result.entry.id)

        assert entry.processing_status is ProcessingStatus.COMPLETED
        assert entry.title == "Extracted title"
        assert entry.description == "From yt-dlp"
        artifact = load_artifact(entry.media_artifact_id)
        assert artifact.content_hash == hash_bytes(MP3_BYTES)
        assert artifact.duration == 212
        assert any("--dump-json" in call for call in yt_runner.calls)

    def test_user_title_skips_metadata(self, orchestrator, yt_runner):
        orchestrator.submit_ingestion(1, "Mine", "youtube", source_url="https://youtu.be/dQw4w9WgXcQ")
        assert not any("--dump-json" in call for call in yt_runner.calls)

    def test_tool_failure_fails_entry(self, orchestrator, yt_runner):
        yt_runner.returncode = 1
        yt_runner.stderr = "ERROR: private video"
        result = orchestrator.submit_ingestion(1, "T", "youtube", source_url="https://youtu.be/abc")
        entry = load_entry(result.entry.id)
        assert entry.processing_status is ProcessingStatus.FAILED
        assert entry.processing_error == (
            "YouTube processing failed: yt-dlp exited with code 1: ERROR: private video"
        )

    def test_invalid_youtube_url_rejected_at_submission(self, orchestrator):
        with pytest.raises(ValidationError):
            orchestrator.submit_ingestion(1, "T", "youtube", source_url="https://vimeo.com/1")
        with get_db_session() as session:
            assert session.query(LibraryEntry).count() == 0

    def test_unparseable_video_id_mid_pipeline_deletes_entry(self, orchestrator, queue, monkeypatch):
        from src.ingestion.sources import YouTubeSource

        deferred = []
        monkeypatch.setattr(queue, "dispatch", deferred.append)
        result = orchestrator.submit_ingestion(1, "T", "youtube", source_url="https://youtu.be/abc")

        orchestrator.process_entry(result.entry.id, YouTubeSource("https://youtube.com/channel/x"))
        assert load_entry(result.entry.id) is None

    def test_untitled_reuse_takes_title_from_oembed(self, orchestrator, http_session, yt_runner):
        http_session.routes["https://www.youtube.com/oembed"] = FakeResponse(
            200, json_data={"title": "oEmbed title", "author_name": "Channel"}
        )
        orchestrator.submit_ingestion(1, "Mine", "youtube", source_url="https://youtu.be/dQw4w9WgXcQ")
        calls = len(yt_runner.calls)

        result = orchestrator.submit_ingestion(1, None, "youtube", source_url="https://youtu.be/dQw4w9WgXcQ")
        entry = load_entry(result.entry.id)

        assert len(yt_runner.calls) == calls
        assert entry.is_duplicate
        assert entry.title == "oEmbed title"


class TestStateMachine:
    def test_unknown_source_type_creates_nothing(self, orchestrator):
        with pytest.raises(ValidationError):
            orchestrator.submit_ingestion(1, "T", "podcast", source_url="https://x/a.mp3")
        with get_db_session() as session:
            assert session.query(LibraryEntry).count() == 0

    @pytest.mark.parametrize(
        "title, description",
        [(None, None), ("   ", None), ("x" * 256, None), ("ok", "d" * 1001)],
    )
    def test_request_validation(self, orchestrator, title, description):
        with pytest.raises(ValidationError):
            orchestrator.submit_ingestion(1, title, "url", description=description, source_url="https://x/a.mp3")

    def test_pending_until_dispatched(self, orchestrator, queue, monkeypatch, http_session):
        deferred = []
        monkeypatch.setattr(queue, "dispatch", deferred.append)
        http_session.routes["https://x/a.mp3"] = MP3_BYTES

        result = submit_url(orchestrator, "https://x/a.mp3")
        assert result.entry.processing_status is ProcessingStatus.PENDING
        assert result.message == "Media file URL added successfully. Downloading and processing..."

        deferred[0]()
        assert load_entry(result.entry.id).processing_status is ProcessingStatus.COMPLETED

    def test_redelivery_of_terminal_entry_is_noop(self, orchestrator, queue, monkeypatch, http_session):
        deferred = []
        monkeypatch.setattr(queue, "dispatch", deferred.append)
        http_session.routes["https://x/a.mp3"] = MP3_BYTES
        result = submit_url(orchestrator, "https://x/a.mp3")

        deferred[0]()
        calls = len(http_session.calls)
        completed_at = load_entry(result.entry.id).processing_completed_at
        deferred[0]()

        assert len(http_session.calls) == calls
        assert load_entry(result.entry.id).processing_completed_at == completed_at

    def test_concurrent_redelivery_processes_once(self, orchestrator, queue, monkeypatch, http_session):
        deferred = []
        monkeypatch.setattr(queue, "dispatch", deferred.append)
        http_session.routes["https://x/a.mp3"] = MP3_BYTES
        result = submit_url(orchestrator, "https://x/a.mp3")

        downloading = threading.Event()
        redelivered = threading.Event()
        fetch = http_session.get

        def slow_get(url, *args, **kwargs):
            downloading.set()
            redelivered.wait(timeout=5)
            return fetch(url, *args, **kwargs)

        monkeypatch.setattr(http_session, "get", slow_get)
        worker = threading.Thread(target=deferred[0])
        worker.start()
        assert downloading.wait(timeout=5)
        deferred[0]()
        redelivered.set()
        worker.join(timeout=5)

        entry = load_entry(result.entry.id)
        assert http_session.calls == ["https://x/a.mp3"]
        assert entry.processing_status is ProcessingStatus.COMPLETED
        assert not entry.is_duplicate
        assert entry.status_message == SUCCESS_MESSAGE
        assert load_artifact(entry.media_artifact_id).user_id == 1

    def test_redelivery_while_processing_keeps_staged_upload(self, orchestrator, queue, monkeypatch, storage):
        deferred = []
        monkeypatch.setattr(queue, "dispatch", deferred.append)
        result = orchestrator.submit_ingestion(1, "Up", "upload", file_data=MP3_BYTES, filename="a.mp3")
        staged = deferred[0].args[1].storage_key
        update_library_entry(result.entry.id, processing_status=ProcessingStatus.PROCESSING)

        deferred[0]()

        assert storage.exists(staged)
        assert load_entry(result.entry.id).processing_status is ProcessingStatus.PROCESSING

    def test_finished_entry_is_never_reopened(self, orchestrator, http_session):
        http_session.routes["https://x/a.mp3"] = MP3_BYTES
        entry_id = submit_url(orchestrator, "https://x/a.mp3").entry.id

        assert not update_library_entry(
            entry_id,
            expected_status=ProcessingStatus.PROCESSING,
            processing_status=ProcessingStatus.FAILED,
        )
        assert load_entry(entry_id).processing_status is ProcessingStatus.COMPLETED

    def test_unexpected_exception_fails_entry(self, orchestrator, http_session, monkeypatch):
        http_session.routes["https://x/a.mp3"] = MP3_BYTES

        def explode(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(orchestrator.media_store, "commit", explode)
        entry = load_entry(submit_url(orchestrator, "https://x/a.mp3").entry.id)

        assert entry.processing_status is ProcessingStatus.FAILED
        assert entry.processing_error == f"{PROCESSING_FAILED_PREFIX}: disk full"
        assert entry.processing_completed_at is not None

    def test_terminal_invariants_hold(self, orchestrator, http_session):
        http_session.routes["https://x/ok.mp3"] = MP3_BYTES
        http_session.routes["https://x/other.mp3"] = OTHER_MP3_BYTES
        for url in ("https://x/ok.mp3", "https://x/ok.mp3", "https://x/other.mp3", "https://x/404.mp3"):
            submit_url(orchestrator, url)

        with get_db_session() as session:
            entries = session.query(LibraryEntry).all()
        for entry in entries:
            assert entry.processing_status.is_terminal()
            if entry.processing_status.has_completed():
                assert entry.media_artifact_id is not None
            else:
                assert entry.processing_error
                assert entry.processing_completed_at is not None
            if entry.is_duplicate:
                assert entry.duplicate_detected_at is not None


class TestDeletion:
    def test_deleting_last_reference_removes_artifact_and_bytes(self, orchestrator, http_session, storage):
        http_session.routes["https://x/a.mp3"] = MP3_BYTES
        entry = load_entry(submit_url(orchestrator, "https://x/a.mp3").entry.id)
        artifact = load_artifact(entry.media_artifact_id)

        assert orchestrator.delete_library_entry(entry.id, 1)
        assert load_entry(entry.id) is None
        assert load_artifact(artifact.id) is None
        assert not storage.exists(artifact.file_path)

    def test_deleting_one_of_several_references_keeps_artifact(self, orchestrator, http_session, storage):
        http_session.routes["https://x/a.mp3"] = MP3_BYTES
        first = load_entry(submit_url(orchestrator, "https://x/a.mp3", user_id=1).entry.id)
        submit_url(orchestrator, "https://x/a.mp3", user_id=2)
        artifact = load_artifact(first.media_artifact_id)

        assert not orchestrator.delete_library_entry(first.id, 1)
        assert load_artifact(artifact.id) is not None
        assert storage.exists(artifact.file_path)

    def test_owner_deletion_leaves_artifact_for_others(self, orchestrator, http_session):
        http_session.routes["https://x/a.mp3"] = MP3_BYTES
        first = load_entry(submit_url(orchestrator, "https://x/a.mp3", user_id=1).entry.id)
        second = load_entry(submit_url(orchestrator, "https://x/a.mp3", user_id=2).entry.id)

        orchestrator.delete_library_entry(first.id, 1)
        assert orchestrator.delete_library_entry(second.id, 2)
        assert all_artifacts() == []

    def test_deletion_during_processing_releases_new_artifact(
        self, orchestrator, queue, monkeypatch, http_session, storage
    ):
        deferred = []
        monkeypatch.setattr(queue, "dispatch", deferred.append)
        http_session.routes["https://x/a.mp3"] = MP3_BYTES
        result = submit_url(orchestrator, "https://x/a.mp3")
        fetch = http_session.get

        def get_then_delete(url, *args, **kwargs):
            orchestrator.delete_library_entry(result.entry.id, 1)
            return fetch(url, *args, **kwargs)

        monkeypatch.setattr(http_session, "get", get_then_delete)
        deferred[0]()

        assert load_entry(result.entry.id) is None
        assert all_artifacts() == []
        assert not storage.exists(media_key(hash_bytes(MP3_BYTES), "mp3"))

    def test_ownership_checked(self, orchestrator, http_session):
        http_session.routes["https://x/a.mp3"] = MP3_BYTES
        entry = submit_url(orchestrator, "https://x/a.mp3").entry
        with pytest.raises(PermissionDeniedError):
            orchestrator.delete_library_entry(entry.id, 99)
        with pytest.raises(NotFoundError):
            orchestrator.delete_library_entry("missing", 1)


class TestStatus:
    def test_entry_status(self, orchestrator, http_session):
        http_session.routes["https://x/a.mp3"] = MP3_BYTES
        entry = submit_url(orchestrator, "https://x/a.mp3").entry
        status = orchestrator.get_entry_status(entry.id)

        assert status.status is ProcessingStatus.COMPLETED
        assert status.label == "Completed"
        assert status.is_terminal
        assert status.error is None
        assert status.message == SUCCESS_MESSAGE

    def test_unknown_entry(self, orchestrator):
        with pytest.raises(NotFoundError):
            orchestrator.get_entry_status("missing")


def test_status_labels():
    assert [s.display_name for s in ProcessingStatus] == ["Pending", "Processing", "Completed", "Failed"]
    assert ProcessingStatus.PENDING.is_pending()
    assert ProcessingStatus.PROCESSING.is_processing()
    assert ProcessingStatus.FAILED.has_failed() and ProcessingStatus.FAILED.is_terminal()
    assert not ProcessingStatus.PROCESSING.is_terminal()
