"""
Stage 2: Segment Enumerator

Reads a media playlist and keeps only the lines that are absolute
``https://`` URLs, in their original order. Tags, comments and blank
lines are dropped without interpretation.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

import httpx

from nhk_vod.config.constants import (
    DOWNLOAD_BACKOFF_BASE,
    DOWNLOAD_RETRIES,
    SEGMENT_URL_PREFIX,
)
from nhk_vod.tools.http_client import fetch_text

logger = logging.getLogger(__name__)


def extract_segment_urls(playlist_body: str) -> list[str]:
    """Return the ``https://`` lines of a playlist body, in order."""
    segments: list[str] = []
    for line in playlist_body.split("\n"):
        line = line.rstrip("\r")
        if line.startswith(SEGMENT_URL_PREFIX):
            segments.append(line)
    return segments


def enumerate_segments(
    playlist_url: str,
    client: Optional[httpx.Client] = None,
    retries: int = DOWNLOAD_RETRIES,
    backoff_base: float = DOWNLOAD_BACKOFF_BASE,
    cancel_event: Optional[threading.Event] = None,
) -> list[str]:
    """
    Fetch ``playlist_url`` and list its segment URLs.

    An empty list is returned (not raised) when nothing qualifies; the
    orchestrator decides what that means for the run.

    Raises:
        NetworkError: Playlist fetch failed.
    """
    logger.info("Fetching media playlist: %s", playlist_url)
    body = fetch_text(
        playlist_url,
        client=client,
        retries=retries,
        backoff_base=backoff_base,
        cancel_event=cancel_event,
    )
    segments = extract_segment_urls(body)
    logger.info("Found %d segment(s) in %s", len(segments), playlist_url)
    return segments
