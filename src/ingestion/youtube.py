"""
YouTube audio extraction.

Audio is extracted by the external yt-dlp command, invoked through a process
runner (argv, timeout -> ProcessResult). The runner is injectable so the
extractor can be exercised without the binary:

    extractor = YouTubeExtractor(binary="yt-dlp", timeout=300)
    result = extractor.extract_audio("https://youtu.be/dQw4w9WgXcQ")
"""

import json
import logging
import os
import re
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import requests

from src.logger import log_function
from .results import AcquisitionResult
from .validator import classify, guess_extension


logger = logging.getLogger("youtube")

YOUTUBE_PATTERNS = (
    re.compile(r"^https?://(?:www\.)?youtube\.com/watch\?v=([\w-]+)"),
    re.compile(r"^https?://(?:www\.)?youtube\.com/embed/([\w-]+)"),
    re.compile(r"^https?://youtu\.be/([\w-]+)"),
    re.compile(r"^https?://(?:www\.)?youtube\.com/shorts/([\w-]+)"),
)

OEMBED_URL = "https://www.youtube.com/oembed"
OUTPUT_STEM = "audio"
ERROR_PREFIX = "YouTube processing failed"


def is_valid_youtube_url(url: Optional[str]) -> bool:
    return extract_video_id(url) is not None


def extract_video_id(url: Optional[str]) -> Optional[str]:
    """Video id from a watch, embed, short-link or shorts URL, None otherwise."""
    if not url:
        return None
    for pattern in YOUTUBE_PATTERNS:
        match = pattern.match(url.strip())
        if match:
            return match.group(1)
    return None


@dataclass
class ProcessResult:
    returncode: int
    stdout: str = ""
    stderr: str = ""


ProcessRunner = Callable[[list[str], int], ProcessResult]


def run_process(argv: list[str], timeout: int) -> ProcessResult:
    """
    Run an external command and capture its output.

    Raises:
        subprocess.TimeoutExpired: If the command runs longer than timeout
        FileNotFoundError: If the binary is not installed
    """
    completed = subprocess.run(argv, capture_output=True, text=True, timeout=timeout)
    return ProcessResult(completed.returncode, completed.stdout, completed.stderr)


class YouTubeExtractor:
    """Runs yt-dlp in a scratch directory scoped to one extraction."""

    def __init__(
        self,
        runner: Optional[ProcessRunner] = None,
        binary: str = "yt-dlp",
        timeout: int = 300,
        scratch_root: Optional[str] = None,
    ):
        self.runner = runner or run_process
        self.binary = binary
        self.timeout = timeout
        self.scratch_root = scratch_root

    def _make_scratch_dir(self) -> str:
        if self.scratch_root:
            os.makedirs(self.scratch_root, exist_ok=True)
        return tempfile.mkdtemp(prefix="yt_", dir=self.scratch_root)

    def _run(self, argv: list[str]) -> ProcessResult:
        logger.debug(f"Running: {' '.join(argv)}")
        return self.runner(argv, self.timeout)

    @log_function(logger_name="youtube", log_args=True)
    def extract_audio(self, url: str) -> AcquisitionResult:
        """
        Extract the audio track of a video as mp3.

        Returns:
            AcquisitionResult holding the audio bytes in memory, or a failure
            prefixed with "YouTube processing failed:".
        """
        scratch_dir = self._make_scratch_dir()
        try:
            argv = [
                self.binary,
                "--extract-audio",
                "--audio-format", "mp3",
                "--audio-quality", "0",
                "--no-playlist",
                "--output", os.path.join(scratch_dir, f"{OUTPUT_STEM}.%(ext)s"),
                url,
            ]
            try:
                result = self._run(argv)
            except subprocess.TimeoutExpired:
                return AcquisitionResult.fail(
                    f"{ERROR_PREFIX}: yt-dlp timed out after {self.timeout} seconds"
                )
            except OSError as e:
                return AcquisitionResult.fail(f"{ERROR_PREFIX}: {e}")

            if result.returncode != 0:
                stderr = (result.stderr or "").strip()
                return AcquisitionResult.fail(
                    f"{ERROR_PREFIX}: yt-dlp exited with code {result.returncode}: {stderr}"
                )

            # yt-dlp picks the final extension, only the stem is known
            produced = sorted(Path(scratch_dir).glob(f"{OUTPUT_STEM}.*"))
            if not produced:
                return AcquisitionResult.fail(
                    f"{ERROR_PREFIX}: yt-dlp produced no audio file"
                )

            payload = produced[0].read_bytes()
            if not payload:
                return AcquisitionResult.fail(f"{ERROR_PREFIX}: extracted audio is empty")

            classification = classify(payload)
            mime_type = classification.mime_type if classification.is_valid_media else "audio/mpeg"
            extension = produced[0].suffix.lstrip(".").lower() or guess_extension(mime_type)
            logger.info(f"Extracted {len(payload):,} bytes of audio from {url}")
            return AcquisitionResult.ok(
                payload=payload,
                mime_type=mime_type,
                extension=extension,
                final_url=url,
            )
        finally:
            shutil.rmtree(scratch_dir, ignore_errors=True)

    def fetch_metadata(self, url: str) -> dict:
        """
        Best-effort title/description/duration from `yt-dlp --dump-json`.

        Returns an empty dict on any failure.
        """
        argv = [self.binary, "--dump-json", "--no-playlist", url]
        try:
            result = self._run(argv)
        except (subprocess.TimeoutExpired, OSError) as e:
            logger.warning(f"Metadata dump failed for {url}: {e}")
            return {}

        if result.returncode != 0 or not result.stdout:
            logger.warning(f"Metadata dump exited with code {result.returncode} for {url}")
            return {}

        try:
            info = json.loads(result.stdout.strip().splitlines()[0])
        except (json.JSONDecodeError, IndexError) as e:
            logger.warning(f"Unparseable metadata for {url}: {e}")
            return {}

        metadata = {
            "title": info.get("title"),
            "description": info.get("description"),
            "duration": info.get("duration"),
        }
        return {key: value for key, value in metadata.items() if value}


def fetch_video_info(
    video_id: str, session: Optional[requests.Session] = None, timeout: int = 10
) -> Optional[dict]:
    """
    Public oEmbed info of a video (title, author_name, thumbnail_url).

    Returns None on any failure.
    """
    http = session or requests
    try:
        response = http.get(
            OEMBED_URL,
            params={
                "url": f"https://www.youtube.com/watch?v={video_id}",
                "format": "json",
            },
            timeout=timeout,
        )
        if response.status_code != 200:
            return None
        data = response.json()
    except (requests.RequestException, ValueError) as e:
        logger.warning(f"oEmbed lookup failed for {video_id}: {e}")
        return None

    return {
        "title": data.get("title", ""),
        "author_name": data.get("author_name", ""),
        "thumbnail_url": data.get("thumbnail_url", ""),
    }
