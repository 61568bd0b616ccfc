import os
import shutil

from src.ingestion.errors import StorageError
from src.ingestion.hasher import hash_file
from src.logger import log_with_timer

from .base import BaseStorage


class LocalStorage(BaseStorage):
    """Byte store on the local filesystem, rooted at a directory."""

    def __init__(self, root: str = "data/storage"):
        self.root = os.path.abspath(root)
        os.makedirs(self.root, exist_ok=True)

    def _path(self, key: str) -> str:
        parts = [p for p in key.replace("\\", "/").split("/") if p not in ("", ".", "..")]
        if not parts:
            raise StorageError(f"Invalid storage key: {key!r}")
        return os.path.join(self.root, *parts)

    def absolute_path(self, key: str) -> str:
        """Constructs the absolute filename in local storage."""
        return self._path(key)

    def put_bytes(self, key: str, data: bytes) -> str:
        path = self._path(key)
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "wb") as file:
                file.write(data)
        except OSError as e:
            raise StorageError(f"Error saving file to local storage: {e}")
        return path

    def get_bytes(self, key: str) -> bytes:
        try:
            with open(self._path(key), "rb") as file:
                return file.read()
        except OSError as e:
            raise StorageError(f"Error reading file from local storage: {e}")

    def exists(self, key: str) -> bool:
        return os.path.isfile(self._path(key))

    @log_with_timer("storage")
    def move(self, source_key: str, destination_key: str) -> None:
        source = self._path(source_key)
        destination = self._path(destination_key)
        try:
            os.makedirs(os.path.dirname(destination), exist_ok=True)
            os.replace(source, destination)
        except OSError as e:
            raise StorageError(f"Error moving {source_key} to {destination_key}: {e}")

    def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            if os.path.isfile(path):
                os.remove(path)
        except OSError as e:
            raise StorageError(f"Error deleting {key}: {e}")

    def delete_prefix(self, prefix: str) -> None:
        path = self._path(prefix)
        if os.path.isdir(path):
            shutil.rmtree(path, ignore_errors=True)
        elif os.path.isfile(path):
            os.remove(path)

    def size(self, key: str) -> int:
        path = self._path(key)
        if not os.path.isfile(path):
            return 0
        return os.path.getsize(path)

    def content_hash(self, key: str) -> str:
        return hash_file(self._path(key))
