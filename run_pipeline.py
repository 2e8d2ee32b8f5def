#!/usr/bin/env python3
"""
CLI entry point for the NHK VOD downloader.

Usage:
    # Resolve the video ID in a headless browser, download and merge
    python run_pipeline.py "https://www3.nhk.or.jp/nhkworld/en/ondemand/video/EXAMPLE/" -v

    # Save somewhere else and keep the individual fragments
    python run_pipeline.py URL --output downloads/ --no-merge

    # Skip the browser when the video ID is already known
    python run_pipeline.py --id Y4ZzFkZjE6 --output downloads/
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import ValidationError

# Load .env file if present (NHK_VOD_OUTPUT_DIR, NHK_VOD_WORKERS)
load_dotenv(Path(__file__).parent / ".env")

from nhk_vod.config.constants import (
    DOWNLOAD_RETRIES,
    ENV_OUTPUT_DIR,
    ENV_WORKERS,
    HTTP_TIMEOUT,
    MAX_CONCURRENT_DOWNLOADS,
    PIPELINE_OUTPUT_DIR,
)
from nhk_vod.exceptions import CancellationError, SegmentFetchError
from nhk_vod.orchestrator import run_pipeline
from nhk_vod.schemas.pipeline_config import PipelineConfig
from nhk_vod.utils import is_http_url


def _page_url(value: str) -> str:
    if not is_http_url(value):
        raise argparse.ArgumentTypeError(f"URL appears to be invalid: {value}")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="NHK VOD downloader: fetch every HLS fragment of a video and merge them into one .ts file.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            '  python run_pipeline.py "https://www3.nhk.or.jp/nhkworld/en/ondemand/video/XYZ/"\n'
            "  python run_pipeline.py URL --output downloads/ --no-merge\n"
            "  python run_pipeline.py --id Y4ZzFkZjE6\n"
        ),
    )

    parser.add_argument(
        "url",
        nargs="?",
        type=_page_url,
        help="NHK VOD page URL",
    )
    parser.add_argument(
        "--id",
        dest="identifier",
        default=None,
        help="Video ID, if already known (skips the browser)",
    )
    parser.add_argument(
        "--output", "-o",
        default=os.environ.get(ENV_OUTPUT_DIR, PIPELINE_OUTPUT_DIR),
        help="Output directory (default: current directory or $%s)" % ENV_OUTPUT_DIR,
    )
    parser.add_argument(
        "--no-merge",
        action="store_true",
        help="Don't merge the video fragments; keep them in the staging folder",
    )
    parser.add_argument(
        "--keep-segments",
        action="store_true",
        help="Keep the staging folder after a successful merge",
    )
    parser.add_argument(
        "--show-browser",
        action="store_true",
        help="Run Chromium with a visible window instead of headless",
    )
    parser.add_argument(
        "--workers", "-w",
        type=int,
        default=os.environ.get(ENV_WORKERS, str(MAX_CONCURRENT_DOWNLOADS)),
        help=f"Concurrent fragment downloads (default: {MAX_CONCURRENT_DOWNLOADS} or ${ENV_WORKERS})",
    )
    parser.add_argument(
        "--retries",
        type=int,
        default=DOWNLOAD_RETRIES,
        help=f"Retries per request (default: {DOWNLOAD_RETRIES})",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=HTTP_TIMEOUT,
        help=f"HTTP timeout in seconds (default: {HTTP_TIMEOUT:.0f})",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.url and not args.identifier:
        parser.error("a page URL or --id is required")

    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    if not args.verbose:
        logging.getLogger("httpx").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)

    try:
        config = PipelineConfig(
            source_page_url=args.url,
            identifier=args.identifier,
            output_dir=args.output,
            skip_merge=args.no_merge,
            headless=not args.show_browser,
            cleanup=not args.keep_segments,
            max_workers=args.workers,
            retries=args.retries,
            timeout=args.timeout,
        )
    except ValidationError as e:
        print(f"\nInvalid options: {e}", file=sys.stderr)
        return 2

    try:
        result = run_pipeline(config)
    except CancellationError as e:
        print(f"\nCancelled: {e}", file=sys.stderr)
        return 130
    except SegmentFetchError as e:
        logger.error("Pipeline failed: %s", e, exc_info=args.verbose)
        print(f"\nError: fragment #{e.index} could not be downloaded: {e.url}", file=sys.stderr)
        if e.staging_dir:
            print(f"  Fragments downloaded so far are kept in {e.staging_dir}", file=sys.stderr)
        return 1
    except Exception as e:
        logger.error("Pipeline failed: %s", e, exc_info=args.verbose)
        print(f"\nError: {e}", file=sys.stderr)
        return 1

    print("\nSuccess!")
    print(f"  Video ID:  {result.identifier}")
    print(f"  Playlist:  {result.variant_playlist_url}")
    print(f"  Fragments: {result.segment_count}")
    if result.assembly:
        print(f"  Output:    {result.assembly.output_path}")
    else:
        print(f"  Staged in: {result.fetch_report.staging_dir}")
    print(f"  Time:      {result.duration_seconds:.1f}s")
    return 0


if __name__ == "__main__":
    sys.exit(main())
