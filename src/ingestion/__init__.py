"""
Ingestion package for the media library.

Turns a declared content source into bytes and a content fingerprint, and
decides whether an existing media artifact can be reused:

1. Sources (sources.py, downloader.py, youtube.py):
   - Upload, URL and YouTube source variants
   - HTTP download with script-redirect resolution
   - yt-dlp audio extraction and metadata

2. Content (hasher.py, validator.py, media_store.py):
   - SHA-256 fingerprints
   - Audio signature classification
   - Content-addressed commit of media artifacts

3. Deduplication (duplicates.py):
   - Per-user and cross-user duplicate resolution

Modules are imported directly (src.ingestion.sources, ...), this package
exports nothing so that src.storage and src.db can import from it freely.
"""
