from abc import ABC, abstractmethod

import uuid_utils as uuid

from src.ingestion.hasher import hash_bytes


MEDIA_PREFIX = "media"
TEMP_UPLOAD_PREFIX = "temp-uploads"
TEMP_YOUTUBE_PREFIX = "temp-youtube"


def media_key(content_hash: str, extension: str) -> str:
    """Content-addressed key of a committed artifact: media/<hash>.<ext>."""
    extension = extension.lstrip(".").lower() or "bin"
    return f"{MEDIA_PREFIX}/{content_hash}.{extension}"


class BaseStorage(ABC):
    """
    Abstract base class for the byte store.

    Keys are logical, slash separated paths ("media/<hash>.mp3",
    "temp-uploads/<unique>_episode.mp3"). Local and cloud implementations map
    them onto a directory or a bucket.
    """

    @abstractmethod
    def put_bytes(self, key: str, data: bytes) -> str:
        """Store data under key.

        Returns:
            str: The absolute path or URL of the stored object.

        Raises:
            StorageError: If the write fails.
        """

    @abstractmethod
    def get_bytes(self, key: str) -> bytes:
        """Read the whole object stored under key.

        Raises:
            StorageError: If the object does not exist or cannot be read.
        """

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Check if an object exists under key."""

    @abstractmethod
    def move(self, source_key: str, destination_key: str) -> None:
        """Move an object. An existing destination is overwritten."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Delete an object. Deleting a missing key is not an error."""

    @abstractmethod
    def delete_prefix(self, prefix: str) -> None:
        """Delete every object under a prefix (scratch directories)."""

    @abstractmethod
    def size(self, key: str) -> int:
        """Size in bytes of the object, 0 when it does not exist."""

    @abstractmethod
    def absolute_path(self, key: str) -> str:
        """Constructs the absolute filename/URL of a key."""

    def content_hash(self, key: str) -> str:
        """SHA-256 fingerprint of a stored object."""
        return hash_bytes(self.get_bytes(key))

    def make_temp_key(self, prefix: str, filename: str = "download") -> str:
        """Unique scratch key for one ingestion attempt."""
        safe_name = filename.replace("/", "_").replace("\\", "_") or "download"
        unique = str(uuid.uuid7()).replace("-", "")
        return f"{prefix}/{unique}_{safe_name}"
