"""
Utility functions for the NHK VOD downloader.

Provides the on-disk layout helpers shared by the stages: staging
directory, output artifact path, and segment file naming.
"""

from __future__ import annotations

import re
from pathlib import Path
from urllib.parse import unquote, urlparse

from nhk_vod.config.constants import OUTPUT_EXTENSION
from nhk_vod.exceptions import ConfigurationError

# Identifiers are used verbatim as directory and file names
_UNSAFE_IDENTIFIER = re.compile(r"[\\/:*?\"<>|\x00-\x1f]")


def validate_identifier(identifier: str) -> str:
    """Return the stripped identifier, or raise if it cannot name a path."""
    cleaned = (identifier or "").strip()
    if not cleaned:
        raise ConfigurationError("Content identifier must not be empty")
    if cleaned in (".", "..") or _UNSAFE_IDENTIFIER.search(cleaned):
        raise ConfigurationError(f"Content identifier is not path-safe: {identifier!r}")
    return cleaned


def segment_file_name(url: str) -> str:
    """
    Derive the staged file name from a segment URL's final path component.

    Example:
        "https://cdn.example.com/hls/abc/segment_0001.ts?token=x"
        → "segment_0001.ts"
    """
    path = unquote(urlparse(url).path)
    name = path.rstrip("/").rsplit("/", 1)[-1]
    if not name or name in (".", ".."):
        raise ConfigurationError(f"Cannot derive a file name from segment URL: {url}")
    return name


def staging_dir_for(output_dir: str | Path, identifier: str) -> Path:
    """Staging directory that holds one file per segment."""
    return Path(output_dir) / identifier


def output_path_for(output_dir: str | Path, identifier: str) -> Path:
    """Final merged artifact, named after the identifier."""
    return Path(output_dir) / f"{identifier}{OUTPUT_EXTENSION}"


def is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def format_bytes(size: int) -> str:
    return f"{size / (1024 * 1024):.1f} MB"
