"""
Pytest Configuration

Shared fixtures: a temporary SQLite database, local storage rooted in
tmp_path, a fake HTTP session, a fake yt-dlp runner and an orchestrator wired
with an inline task queue. Nothing here touches the network or an external
binary.
"""

import json
import os
import subprocess

import pytest
import requests

from src.db import dispose_database, init_database
from src.ingestion.downloader import MediaDownloader
from src.ingestion.sources import SourceAcquirer
from src.ingestion.youtube import ProcessResult, YouTubeExtractor
from src.pipeline.orchestrator import IngestionOrchestrator
from src.pipeline.task_queue import InlineTaskQueue
from src.storage import LocalStorage


MP3_BYTES = b"ID3\x04\x00\x00" + bytes(range(256)) * 2
OTHER_MP3_BYTES = b"\xff\xfb\x90\x00" + bytes(reversed(range(256))) * 2


class FakeResponse:
    def __init__(self, status_code=200, content=b"", json_data=None):
        self.status_code = status_code
        self.content = content
        self._json = json_data

    def json(self):
        if self._json is None:
            raise ValueError("No JSON body")
        return self._json


class FakeSession:
    """
    Stand-in for requests.Session.

    routes maps a URL to a FakeResponse, an exception instance to raise, or
    bytes (served with 200). Unknown URLs answer 404.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.headers = {}
        self.calls = []

    def get(self, url, timeout=None, allow_redirects=True, params=None):
        self.calls.append(url)
        route = self.routes.get(url)
        if route is None:
            return FakeResponse(404)
        if isinstance(route, Exception):
            raise route
        if isinstance(route, bytes):
            return FakeResponse(200, route)
        return route


class FakeRunner:
    """
    Stand-in for the yt-dlp process runner.

    Writes `audio_bytes` where --output points (as .mp3) and answers
    --dump-json with `metadata`.
    """

    def __init__(self, audio_bytes=MP3_BYTES, returncode=0, stderr="", metadata=None, timeout=False):
        self.audio_bytes = audio_bytes
        self.returncode = returncode
        self.stderr = stderr
        self.metadata = metadata
        self.timeout = timeout
        self.calls = []
        self.output_dirs = []

    def __call__(self, argv, timeout):
        self.calls.append(list(argv))
        if self.timeout:
            raise subprocess.TimeoutExpired(argv, timeout)

        if "--dump-json" in argv:
            if self.metadata is None:
                return ProcessResult(1, "", "no metadata")
            return ProcessResult(0, json.dumps(self.metadata) + "\n", "")

        if self.returncode != 0:
            return ProcessResult(self.returncode, "", self.stderr)

        template = argv[argv.index("--output") + 1]
        self.output_dirs.append(os.path.dirname(template))
        if self.audio_bytes is not None:
            with open(template.replace("%(ext)s", "mp3"), "wb") as file:
                file.write(self.audio_bytes)
        return ProcessResult(0, "", "")


@pytest.fixture
def database(tmp_path):
    engine = init_database(f"sqlite:///{tmp_path}/library.db")
    yield engine
    dispose_database()


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path / "storage"))


@pytest.fixture
def http_session():
    return FakeSession()


@pytest.fixture
def yt_runner():
    return FakeRunner(metadata={"title": "Extracted title", "description": "From yt-dlp", "duration": 212.4})


@pytest.fixture
def queue():
    return InlineTaskQueue()


@pytest.fixture
def orchestrator(database, storage, http_session, yt_runner, queue, tmp_path):
    acquirer = SourceAcquirer(
        storage,
        downloader=MediaDownloader(session=http_session, timeout=5),
        youtube=YouTubeExtractor(runner=yt_runner, scratch_root=str(tmp_path / "yt-scratch")),
    )
    return IngestionOrchestrator(storage, queue=queue, acquirer=acquirer)


@pytest.fixture
def network_error():
    return requests.ConnectionError("connection refused")
