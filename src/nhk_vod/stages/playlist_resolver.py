"""
Stage 1: Playlist Resolver

Turns a content identifier into the media playlist URL of its
highest-quality variant. The service lists variants one per line with
the best quality last, so the last non-empty line is selected as-is.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

import httpx

from nhk_vod.config.constants import (
    DOWNLOAD_BACKOFF_BASE,
    DOWNLOAD_RETRIES,
    MANIFEST_URL_TEMPLATE,
)
from nhk_vod.exceptions import EmptyManifestError
from nhk_vod.tools.http_client import fetch_text
from nhk_vod.utils import validate_identifier

logger = logging.getLogger(__name__)


def build_manifest_url(identifier: str) -> str:
    """
    Build the variant manifest URL for an identifier.

    Example:
        "Y4ZzFkZjE6" -> "https://player.ooyala.com/hls/player/all/Y4ZzFkZjE6.m3u8"
    """
    return MANIFEST_URL_TEMPLATE.format(identifier=validate_identifier(identifier))


def select_variant(manifest_body: str) -> str:
    """Return the last non-empty line of a variant manifest."""
    lines = [line.strip() for line in manifest_body.strip("\r\n").split("\n")]
    lines = [line for line in lines if line]
    if not lines:
        raise EmptyManifestError("Variant manifest is empty")
    return lines[-1]


def resolve(
    identifier: str,
    client: Optional[httpx.Client] = None,
    retries: int = DOWNLOAD_RETRIES,
    backoff_base: float = DOWNLOAD_BACKOFF_BASE,
    cancel_event: Optional[threading.Event] = None,
) -> str:
    """
    Resolve the highest-quality variant playlist URL for ``identifier``.

    Raises:
        ConfigurationError: Identifier is empty or not path-safe.
        NetworkError: Manifest fetch failed or returned a non-2xx status.
        EmptyManifestError: Manifest body has no usable lines.
    """
    manifest_url = build_manifest_url(identifier)
    logger.info("Fetching variant manifest: %s", manifest_url)
    body = fetch_text(
        manifest_url,
        client=client,
        retries=retries,
        backoff_base=backoff_base,
        cancel_event=cancel_event,
    )
    try:
        variant = select_variant(body)
    except EmptyManifestError:
        raise EmptyManifestError(f"Variant manifest is empty: {manifest_url}") from None
    logger.info("Selected variant playlist: %s", variant)
    return variant
