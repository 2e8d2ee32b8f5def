"""
Centralized configuration constants for the NHK VOD downloader.

All magic numbers, URL templates, and configuration defaults live here.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Identifier Resolution (headless browser)
# ---------------------------------------------------------------------------

VIDEO_ELEMENT_SELECTOR: str = "#movie-area-detail"
VIDEO_ID_ATTRIBUTE: str = "data-id"
IDENTIFIER_WAIT_TIMEOUT: float = 60.0   # Seconds to wait for the player element
NAVIGATION_TIMEOUT: float = 30.0
BROWSER_HEADLESS: bool = True

# ---------------------------------------------------------------------------
# Playlist Resolution (Stage 1)
# ---------------------------------------------------------------------------

MANIFEST_URL_TEMPLATE: str = "https://player.ooyala.com/hls/player/all/{identifier}.m3u8"

# ---------------------------------------------------------------------------
# Segment Enumeration (Stage 2)
# ---------------------------------------------------------------------------

SEGMENT_URL_PREFIX: str = "https://"

# ---------------------------------------------------------------------------
# Segment Fetching (Stage 3)
# ---------------------------------------------------------------------------

MAX_CONCURRENT_DOWNLOADS: int = 8
DOWNLOAD_RETRIES: int = 3               # Extra attempts after the first
DOWNLOAD_BACKOFF_BASE: float = 1.0      # Exponential backoff: 1s, 2s, 4s
HTTP_TIMEOUT: float = 30.0              # Per-request timeout in seconds
DOWNLOAD_CHUNK_SIZE: int = 64 * 1024
PARTIAL_SUFFIX: str = ".part"
USER_AGENT: str = "nhk-vod-downloader/1.0"

# 4xx codes that may succeed on a later attempt
RETRYABLE_CLIENT_STATUSES: frozenset[int] = frozenset({408, 429})

# ---------------------------------------------------------------------------
# Assembly (Stage 4)
# ---------------------------------------------------------------------------

OUTPUT_EXTENSION: str = ".ts"

# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

PIPELINE_OUTPUT_DIR: str = "."
CLEANUP_STAGING: bool = True
ENV_OUTPUT_DIR: str = "NHK_VOD_OUTPUT_DIR"
ENV_WORKERS: str = "NHK_VOD_WORKERS"
