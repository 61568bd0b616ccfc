"""
Media signature validation.

Classifies a payload from its leading bytes against a fixed table of audio
container and codec signatures. HTML documents are a distinct rejection
reason because they drive client-side redirect resolution in the downloader.
"""

from dataclasses import dataclass
from typing import Optional

OCTET_STREAM = "application/octet-stream"
DEFAULT_MIN_LENGTH = 100

REASON_MATCHED = "matched"
REASON_INCONCLUSIVE = "inconclusive"
REASON_HTML = "looks_like_html"
REASON_INVALID = "invalid_media"

# Prefix -> MIME type, checked in order
SIGNATURES: tuple[tuple[bytes, str], ...] = (
    (b"RIFF", "audio/wav"),
    (b"OggS", "audio/ogg"),
    (b"fLaC", "audio/flac"),
    (b"MP4", "audio/mp4"),
    (b"ID3", "audio/mpeg"),
    (b"\xff\xfb", "audio/mpeg"),
    (b"\xff\xf3", "audio/mpeg"),
    (b"\xff\xf2", "audio/mpeg"),
)

HTML_PREFIXES = (b"<!doctype html", b"<html")

EXTENSIONS = {
    "audio/wav": "wav",
    "audio/ogg": "ogg",
    "audio/flac": "flac",
    "audio/mp4": "m4a",
    "audio/mpeg": "mp3",
}


@dataclass(frozen=True)
class MediaClassification:
    is_valid_media: bool
    mime_type: str
    reason: str

    @property
    def looks_like_html(self) -> bool:
        return self.reason == REASON_HTML


def looks_like_html(data: bytes) -> bool:
    head = data[:64].lstrip().lower()
    return head.startswith(HTML_PREFIXES)


def detect_mime_type(data: bytes) -> Optional[str]:
    """MIME type of the first matching signature, None when nothing matches."""
    for signature, mime_type in SIGNATURES:
        if data.startswith(signature):
            return mime_type
    # ISO base media (mp4/m4a): size box followed by "ftyp"
    if data[4:8] == b"ftyp":
        return "audio/mp4"
    return None


def classify(data: bytes, min_length: int = DEFAULT_MIN_LENGTH) -> MediaClassification:
    """
    Classify a payload as valid media or not.

    Args:
        data: Payload (only the leading bytes are inspected)
        min_length: Content this short or shorter is never rejected on
            signature grounds, it is too short to classify reliably

    Returns:
        MediaClassification with is_valid_media, mime_type and the reason
    """
    if looks_like_html(data):
        return MediaClassification(False, "text/html", REASON_HTML)

    mime_type = detect_mime_type(data)
    if mime_type is not None:
        return MediaClassification(True, mime_type, REASON_MATCHED)

    if len(data) <= min_length:
        return MediaClassification(True, OCTET_STREAM, REASON_INCONCLUSIVE)

    return MediaClassification(False, OCTET_STREAM, REASON_INVALID)


def guess_extension(mime_type: str, fallback: str = "bin") -> str:
    return EXTENSIONS.get(mime_type, fallback)
