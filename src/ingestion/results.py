"""Result value returned by every acquisition path."""

from dataclasses import dataclass, field
from typing import Any, Optional

from .validator import OCTET_STREAM


@dataclass
class AcquisitionResult:
    """
    Outcome of acquiring the bytes of a source.

    Exactly one of payload (bytes held in memory) or storage_key (bytes
    already staged in scratch storage) is set on success. On failure, error
    holds the user-facing message. invalid_request marks a submission that
    was never a valid attempt (its library entry is deleted, not failed).
    """

    success: bool
    payload: Optional[bytes] = None
    storage_key: Optional[str] = None
    extension: str = "bin"
    mime_type: str = OCTET_STREAM
    error: Optional[str] = None
    final_url: Optional[str] = None
    invalid_request: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, **kwargs) -> "AcquisitionResult":
        return cls(success=True, **kwargs)

    @classmethod
    def fail(cls, error: str, **kwargs) -> "AcquisitionResult":
        return cls(success=False, error=error, **kwargs)

    @classmethod
    def invalid(cls, error: str) -> "AcquisitionResult":
        return cls(success=False, error=error, invalid_request=True)
