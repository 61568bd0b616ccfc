"""
Remote URL downloads.

Downloads media with a bounded HTTP redirect chain and a fixed timeout.
Some hosts answer with a small HTML page that redirects from JavaScript
(feed trackers, link shorteners). Those pages are followed iteratively, with
the same hop limit as HTTP redirects:

    window.location.replace('https://cdn.example.com/episode.mp3')
    window.location.href.replace('/track/', '/media/')
"""

import logging
import posixpath
import re
from typing import Optional
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup

from src.logger import log_function
from .results import AcquisitionResult
from .validator import classify, guess_extension, DEFAULT_MIN_LENGTH


logger = logging.getLogger("downloader")

HTML_CONTENT_ERROR = "Download failed: Got HTML content instead of media file"
HTML_REDIRECT_ERROR = "Download failed: Got HTML redirect page instead of media file"
INVALID_MEDIA_ERROR = "Download failed: Content does not appear to be a valid audio file"
EMPTY_BODY_ERROR = "Downloaded file is empty"

# Browser-like headers, some podcast CDNs refuse default client user agents
DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0 Safari/537.36",
    "Accept": "audio/mpeg, audio/*, video/*, */*",
    "Accept-Language": "en-US,en;q=0.9",
}

LOCATION_REPLACE_RE = re.compile(r"""window\.location\.replace\(\s*['"]([^'"]+)['"]\s*\)""")
HREF_REPLACE_RE = re.compile(
    r"""window\.location\.href\.replace\(\s*['"]([^'"]+)['"]\s*,\s*['"]([^'"]+)['"]\s*\)"""
)


def make_absolute_url(url: str, base_url: str) -> str:
    """Resolve a redirect target against the scheme/host (and directory) of base_url."""
    if url.startswith(("http://", "https://")):
        return url

    parsed = urlparse(base_url)
    scheme_host = f"{parsed.scheme}://{parsed.netloc}"

    if url.startswith("/"):
        return scheme_host + url

    directory = posixpath.dirname(parsed.path).rstrip("/")
    return f"{scheme_host}{directory}/{url}"


def extract_redirect_url(html: bytes, current_url: str) -> Optional[str]:
    """
    Find a client-side redirect target in an HTML page.

    Script bodies are searched first, then the whole document (inline
    handlers). Returns an absolute URL or None.
    """
    text = html.decode("utf-8", errors="replace")
    soup = BeautifulSoup(text, "html.parser")
    scripts = "\n".join(script.get_text() for script in soup.find_all("script"))

    for haystack in (scripts, text):
        if not haystack:
            continue
        match = LOCATION_REPLACE_RE.search(haystack)
        if match:
            return make_absolute_url(match.group(1), current_url)

        match = HREF_REPLACE_RE.search(haystack)
        if match:
            pattern, replacement = match.group(1), match.group(2)
            return make_absolute_url(current_url.replace(pattern, replacement), current_url)

    return None


def _extension_from_url(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    suffix = posixpath.splitext(urlparse(url).path)[1].lstrip(".").lower()
    if suffix and suffix.isalnum() and len(suffix) <= 5:
        return suffix
    return None


class MediaDownloader:
    """HTTP downloader returning an AcquisitionResult instead of raising."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: int = 60,
        max_redirects: int = 5,
        min_length: int = DEFAULT_MIN_LENGTH,
    ):
        self.session = session or requests.Session()
        self.session.headers.update(DEFAULT_HEADERS)
        self.session.max_redirects = max_redirects
        self.timeout = timeout
        self.max_redirects = max_redirects
        self.min_length = min_length

    def _get(self, url: str) -> requests.Response:
        return self.session.get(url, timeout=self.timeout, allow_redirects=True)

    @log_function(logger_name="downloader", log_args=True)
    def download(self, url: str) -> AcquisitionResult:
        """
        Download media bytes from url.

        Returns:
            AcquisitionResult with payload, mime_type, extension and final_url,
            or a failure carrying the error message recorded on the entry.
        """
        current_url = url
        followed_script_redirect = False

        for _hop in range(self.max_redirects + 1):
            try:
                response = self._get(current_url)
            except requests.RequestException as e:
                logger.warning(f"Request to {current_url} failed: {e}")
                if followed_script_redirect:
                    return AcquisitionResult.fail(HTML_REDIRECT_ERROR)
                return AcquisitionResult.fail(f"Download failed: {e}")

            if not 200 <= response.status_code < 300:
                logger.warning(f"{current_url} answered HTTP {response.status_code}")
                if followed_script_redirect:
                    return AcquisitionResult.fail(HTML_REDIRECT_ERROR)
                return AcquisitionResult.fail(
                    f"Failed to download file: HTTP {response.status_code}"
                )

            content = response.content
            if not content:
                if followed_script_redirect:
                    return AcquisitionResult.fail(HTML_REDIRECT_ERROR)
                return AcquisitionResult.fail(EMPTY_BODY_ERROR)

            classification = classify(content, self.min_length)

            if classification.looks_like_html:
                target = extract_redirect_url(content, current_url)
                if target is None:
                    return AcquisitionResult.fail(
                        HTML_REDIRECT_ERROR if followed_script_redirect else HTML_CONTENT_ERROR
                    )
                logger.info(f"Following script redirect {current_url} -> {target}")
                followed_script_redirect = True
                current_url = target
                continue

            if not classification.is_valid_media:
                return AcquisitionResult.fail(INVALID_MEDIA_ERROR)

            extension = (
                _extension_from_url(current_url)
                or _extension_from_url(url)
                or guess_extension(classification.mime_type)
            )
            logger.info(f"Downloaded {len(content):,} bytes from {current_url}")
            return AcquisitionResult.ok(
                payload=content,
                mime_type=classification.mime_type,
                extension=extension,
                final_url=current_url,
            )

        logger.warning(f"Gave up on {url} after {self.max_redirects} script redirects")
        return AcquisitionResult.fail(HTML_REDIRECT_ERROR)
