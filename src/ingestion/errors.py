"""Exceptions raised by the ingestion pipeline."""


class IngestionError(Exception):
    """Base class for ingestion errors."""


class ValidationError(IngestionError):
    """The submission itself is invalid (unknown source type, bad YouTube URL...)."""


class StorageError(IngestionError):
    """A storage backend operation failed."""


class NotFoundError(IngestionError):
    """A library entry or media artifact does not exist."""


class PermissionDeniedError(IngestionError):
    """The acting user does not own the library entry."""
