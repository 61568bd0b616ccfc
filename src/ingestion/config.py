"""
Configuration settings for the media ingestion pipeline.

Values are read from the environment (and a local .env file) by
IngestionConfig.from_env(). Every collaborator also accepts explicit
arguments, so the config is only a convenient way to wire them together.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got: {value!r}")


@dataclass
class IngestionConfig:
    """Configuration for the ingestion pipeline"""

    # Database
    database_url: str = "sqlite:///data/library.db"

    # Storage backend: "local" or "cloud"
    storage_backend: str = "local"
    storage_root: str = "data/storage"

    # S3-compatible bucket (cloud backend only)
    bucket_endpoint: Optional[str] = None
    bucket_key_id: Optional[str] = None
    bucket_access_key: Optional[str] = None
    bucket_name: Optional[str] = None
    bucket_region: str = "ams3"

    # URL downloads
    download_timeout: int = 60
    max_redirects: int = 5

    # YouTube extraction
    ytdlp_binary: str = "yt-dlp"
    ytdlp_timeout: int = 300

    # Background work
    duplicate_cleanup_delay: int = 300  # 5 minutes
    workers: int = 4

    # Content shorter than this is never rejected on signature grounds
    signature_min_length: int = 100

    @classmethod
    def from_env(cls) -> "IngestionConfig":
        """Build a config from environment variables (after loading .env)."""
        load_dotenv()
        defaults = cls()
        return cls(
            database_url=os.getenv("DATABASE_URL", defaults.database_url),
            storage_backend=os.getenv("STORAGE_BACKEND", defaults.storage_backend).lower(),
            storage_root=os.getenv("STORAGE_ROOT", defaults.storage_root),
            bucket_endpoint=os.getenv("BUCKET_ENDPOINT"),
            bucket_key_id=os.getenv("BUCKET_KEY_ID"),
            bucket_access_key=os.getenv("BUCKET_ACCESS_KEY"),
            bucket_name=os.getenv("BUCKET_NAME"),
            bucket_region=os.getenv("BUCKET_REGION", defaults.bucket_region),
            download_timeout=_env_int("DOWNLOAD_TIMEOUT", defaults.download_timeout),
            max_redirects=_env_int("MAX_REDIRECTS", defaults.max_redirects),
            ytdlp_binary=os.getenv("YTDLP_BINARY", defaults.ytdlp_binary),
            ytdlp_timeout=_env_int("YTDLP_TIMEOUT", defaults.ytdlp_timeout),
            duplicate_cleanup_delay=_env_int(
                "DUPLICATE_CLEANUP_DELAY", defaults.duplicate_cleanup_delay
            ),
            workers=_env_int("INGESTION_WORKERS", defaults.workers),
            signature_min_length=_env_int(
                "SIGNATURE_MIN_LENGTH", defaults.signature_min_length
            ),
        )
