"""
Content sources of a library entry.

A submission declares its content as one of three source variants. Each
variant validates itself and knows how to acquire its bytes through a shared
SourceAcquirer (storage, HTTP downloader, YouTube extractor):

    source = build_source(SourceType.URL, source_url="https://x/a.mp3")
    source.validate()
    result = source.acquire(acquirer)
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional
from urllib.parse import urlparse

from src.db.models import SourceType
from src.storage import BaseStorage
from .downloader import MediaDownloader
from .errors import StorageError, ValidationError
from .results import AcquisitionResult
from .validator import classify, guess_extension, DEFAULT_MIN_LENGTH
from .youtube import YouTubeExtractor, extract_video_id, is_valid_youtube_url


logger = logging.getLogger("ingestion")

UPLOAD_MISSING_ERROR = "Temp file not found or inaccessible"
UPLOAD_EMPTY_ERROR = "Uploaded file is empty"
UPLOAD_INVALID_ERROR = "Upload failed: Content does not appear to be a valid audio file"
INVALID_YOUTUBE_ERROR = "Invalid YouTube URL"


class SourceAcquirer:
    """Collaborators shared by every source variant."""

    def __init__(
        self,
        storage: BaseStorage,
        downloader: Optional[MediaDownloader] = None,
        youtube: Optional[YouTubeExtractor] = None,
        min_length: int = DEFAULT_MIN_LENGTH,
    ):
        self.storage = storage
        self.downloader = downloader or MediaDownloader(min_length=min_length)
        self.youtube = youtube or YouTubeExtractor()
        self.min_length = min_length

    def acquire(self, source: "SourceStrategy", want_metadata: bool = False) -> AcquisitionResult:
        return source.acquire(self, want_metadata=want_metadata)


class SourceStrategy(ABC):
    source_type: SourceType
    processing_message: str

    @property
    def source_url(self) -> Optional[str]:
        return None

    @property
    def storage_key(self) -> Optional[str]:
        return None

    @abstractmethod
    def validate(self) -> None:
        """Raise ValidationError when the source can never be acquired."""

    @abstractmethod
    def acquire(self, acquirer: SourceAcquirer, want_metadata: bool = False) -> AcquisitionResult:
        """Obtain the bytes of the source. Never raises for acquisition failures."""


class UploadSource(SourceStrategy):
    """Bytes uploaded by the user, already staged in scratch storage."""

    source_type = SourceType.UPLOAD
    processing_message = "Media file uploaded successfully. Processing..."

    def __init__(self, storage_key: str, filename: Optional[str] = None):
        self._storage_key = storage_key
        self.filename = filename

    @property
    def storage_key(self) -> Optional[str]:
        return self._storage_key

    def validate(self) -> None:
        if not self._storage_key:
            raise ValidationError("A file is required for upload sources")

    def _extension(self, mime_type: str) -> str:
        name = self.filename or self._storage_key
        if "." in name:
            suffix = name.rsplit(".", 1)[1].lower()
            if suffix.isalnum() and len(suffix) <= 5:
                return suffix
        return guess_extension(mime_type)

    def acquire(self, acquirer: SourceAcquirer, want_metadata: bool = False) -> AcquisitionResult:
        storage = acquirer.storage
        try:
            if not storage.exists(self._storage_key):
                return AcquisitionResult.fail(UPLOAD_MISSING_ERROR)
            data = storage.get_bytes(self._storage_key)
        except StorageError as e:
            logger.warning(f"Staged upload {self._storage_key} unreadable: {e}")
            return AcquisitionResult.fail(UPLOAD_MISSING_ERROR)

        if not data:
            return AcquisitionResult.fail(UPLOAD_EMPTY_ERROR)

        classification = classify(data, acquirer.min_length)
        if not classification.is_valid_media:
            return AcquisitionResult.fail(UPLOAD_INVALID_ERROR)

        return AcquisitionResult.ok(
            storage_key=self._storage_key,
            mime_type=classification.mime_type,
            extension=self._extension(classification.mime_type),
        )

    def __repr__(self):
        return f"UploadSource(storage_key={self._storage_key!r}, filename={self.filename!r})"


class UrlSource(SourceStrategy):
    """A direct link to a media file."""

    source_type = SourceType.URL
    processing_message = "Media file URL added successfully. Downloading and processing..."

    def __init__(self, url: str):
        self.url = (url or "").strip()

    @property
    def source_url(self) -> Optional[str]:
        return self.url

    def validate(self) -> None:
        parsed = urlparse(self.url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValidationError(f"Invalid media URL: {self.url!r}")

    def acquire(self, acquirer: SourceAcquirer, want_metadata: bool = False) -> AcquisitionResult:
        return acquirer.downloader.download(self.url)

    def __repr__(self):
        return f"UrlSource(url={self.url!r})"


class YouTubeSource(SourceStrategy):
    """A YouTube video whose audio track is extracted."""

    source_type = SourceType.YOUTUBE
    processing_message = "YouTube video added successfully. Extracting audio..."

    def __init__(self, url: str):
        self.url = (url or "").strip()

    @property
    def source_url(self) -> Optional[str]:
        return self.url

    @property
    def video_id(self) -> Optional[str]:
        return extract_video_id(self.url)

    def validate(self) -> None:
        if not is_valid_youtube_url(self.url):
            raise ValidationError(f"{INVALID_YOUTUBE_ERROR}: {self.url!r}")

    def acquire(self, acquirer: SourceAcquirer, want_metadata: bool = False) -> AcquisitionResult:
        if not is_valid_youtube_url(self.url):
            return AcquisitionResult.invalid(INVALID_YOUTUBE_ERROR)

        result = acquirer.youtube.extract_audio(self.url)
        if result.success and want_metadata:
            result.metadata = acquirer.youtube.fetch_metadata(self.url)
        return result

    def __repr__(self):
        return f"YouTubeSource(url={self.url!r})"


def build_source(
    source_type,
    source_url: Optional[str] = None,
    storage_key: Optional[str] = None,
    filename: Optional[str] = None,
) -> SourceStrategy:
    """
    Map a declared source type to its variant.

    Args:
        source_type: SourceType or its string value ("upload", "url", "youtube")
        source_url: Remote URL (url and youtube sources)
        storage_key: Scratch storage key of the staged bytes (upload sources)
        filename: Original upload filename, used for the extension

    Raises:
        ValidationError: If the source type is unknown
    """
    try:
        source_type = SourceType(source_type)
    except ValueError:
        raise ValidationError(f"Unknown source type: {source_type!r}")

    if source_type is SourceType.UPLOAD:
        return UploadSource(storage_key, filename)
    if source_type is SourceType.URL:
        return UrlSource(source_url)
    return YouTubeSource(source_url)
