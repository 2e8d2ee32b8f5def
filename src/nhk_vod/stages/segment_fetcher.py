"""
Stage 3: Segment Fetcher

Downloads every segment of a media playlist into the staging directory
using a bounded thread pool. Tasks are submitted in playlist order and
results land in a slot buffer indexed by playlist position, so the
returned paths follow the playlist no matter which download finished
first.

Failure policy is fail-fast: once a segment cannot be fetched (after
its own retries) nothing new is submitted and downloads of later
segments are aborted. Downloads of earlier segments are allowed to
finish, so every segment before the failing one is staged on disk. The
error raised is the one with the lowest playlist index.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Callable, Optional

import httpx

from nhk_vod.config.constants import (
    DOWNLOAD_BACKOFF_BASE,
    DOWNLOAD_RETRIES,
    MAX_CONCURRENT_DOWNLOADS,
)
from nhk_vod.exceptions import (
    CancellationError,
    FileWriteError,
    NetworkError,
    SegmentFetchError,
)
from nhk_vod.schemas.download_output import FetchReport, SegmentResult
from nhk_vod.tools.http_client import build_client, stream_to_file
from nhk_vod.utils import format_bytes, segment_file_name

logger = logging.getLogger(__name__)

# How often the coordinating thread re-checks the caller's cancel signal
_POLL_INTERVAL: float = 0.1

SegmentCallback = Callable[[SegmentResult, int, int], None]


def plan_segment_paths(urls: list[str], staging_dir: Path) -> list[Path]:
    """Map each URL to its staged file, rejecting name collisions."""
    paths: list[Path] = []
    seen: dict[str, int] = {}
    for index, url in enumerate(urls):
        name = segment_file_name(url)
        if name in seen:
            raise FileWriteError(
                f"Segments #{seen[name]} and #{index} both map to {name}",
                path=str(staging_dir / name),
                index=index,
            )
        seen[name] = index
        paths.append(staging_dir / name)
    return paths


def _fetch_one(
    index: int,
    url: str,
    dest: Path,
    client: httpx.Client,
    retries: int,
    backoff_base: float,
    stop: threading.Event,
) -> SegmentResult:
    """Download a single segment; errors are tagged with its index."""
    try:
        size, attempts = stream_to_file(
            url, dest, client,
            retries=retries,
            backoff_base=backoff_base,
            cancel_event=stop,
        )
    except SegmentFetchError:
        raise
    except NetworkError as e:
        raise SegmentFetchError(
            f"Segment #{index} failed: {e.message}",
            index=index,
            url=url,
            status_code=e.status_code,
            staging_dir=str(dest.parent),
        ) from e
    except FileWriteError as e:
        raise FileWriteError(
            f"Segment #{index} could not be written: {e.message}",
            path=e.path,
            index=index,
        ) from e
    logger.debug("Segment #%d: %s -> %s (%d bytes)", index, url, dest, size)
    return SegmentResult(
        index=index, url=url, path=str(dest), size_bytes=size, attempts=attempts,
    )


def fetch_all(
    urls: list[str],
    staging_dir: str | Path,
    identifier: Optional[str] = None,
    client: Optional[httpx.Client] = None,
    max_workers: int = MAX_CONCURRENT_DOWNLOADS,
    retries: int = DOWNLOAD_RETRIES,
    backoff_base: float = DOWNLOAD_BACKOFF_BASE,
    cancel_event: Optional[threading.Event] = None,
    on_segment: Optional[SegmentCallback] = None,
) -> FetchReport:
    """
    Download ``urls`` into ``staging_dir`` and report them in playlist order.

    Args:
        urls: Ordered segment URLs from the media playlist.
        staging_dir: Directory for staged segments (created if missing).
        identifier: Content identifier; defaults to the staging dir name.
        client: Shared httpx client; one is created (and closed) if omitted.
        max_workers: Maximum concurrent downloads.
        retries: Extra attempts per segment after the first.
        backoff_base: Base delay of the exponential backoff.
        cancel_event: Set by the caller to abort all downloads.
        on_segment: Called as ``(result, completed, total)`` per finished segment.

    Returns:
        FetchReport whose i-th segment corresponds to ``urls[i]``.

    Raises:
        SegmentFetchError: A segment could not be downloaded (``.index`` names it).
        FileWriteError: Staging directory or a segment file could not be written.
        CancellationError: ``cancel_event`` was set.
    """
    staging = Path(staging_dir)
    total = len(urls)
    report_id = identifier or staging.name
    start_time = time.time()

    dest_paths = plan_segment_paths(urls, staging)
    try:
        staging.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise FileWriteError(f"Cannot create staging directory {staging}: {e}", path=str(staging)) from e

    if total == 0:
        return FetchReport(identifier=report_id, staging_dir=str(staging))
    if cancel_event is not None and cancel_event.is_set():
        raise CancellationError("Download cancelled before the first segment")

    workers = max(1, min(max_workers, total))
    logger.info("Downloading %d segment(s) with %d worker(s) into %s", total, workers, staging)

    owns_client = client is None
    http = client or build_client(max_connections=workers)
    slots: list[Optional[SegmentResult]] = [None] * total
    # One stop flag per task, so a failure aborts only later segments
    stops: dict[int, threading.Event] = {}
    in_flight: dict[Future, int] = {}
    failures: dict[int, BaseException] = {}
    next_index = 0
    completed = 0

    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="segment-fetch")

    def submit_next() -> None:
        nonlocal next_index
        index = next_index
        next_index += 1
        stops[index] = threading.Event()
        future = executor.submit(
            _fetch_one, index, urls[index], dest_paths[index],
            http, retries, backoff_base, stops[index],
        )
        in_flight[future] = index

    def abort_after(failed_index: int) -> None:
        for future, index in in_flight.items():
            if index > failed_index:
                stops[index].set()
                future.cancel()

    try:
        while next_index < workers:
            submit_next()

        while in_flight:
            if cancel_event is not None and cancel_event.is_set():
                raise CancellationError(
                    f"Download cancelled after {completed}/{total} segments"
                )
            done, _ = wait(in_flight, timeout=_POLL_INTERVAL, return_when=FIRST_COMPLETED)
            for future in sorted(done, key=in_flight.__getitem__):
                index = in_flight.pop(future)
                stops.pop(index)
                if future.cancelled():
                    continue
                error = future.exception()
                if error is not None:
                    failures[index] = error
                    continue
                result = future.result()
                slots[index] = result
                completed += 1
                if on_segment:
                    on_segment(result, completed, total)

            if failures:
                # Earlier segments run to completion; later ones are dropped
                abort_after(min(failures))
            else:
                while next_index < total and len(in_flight) < workers:
                    submit_next()
    except BaseException:
        for stop in stops.values():
            stop.set()
        logger.error(
            "Segment download aborted: %d/%d segment(s) staged in %s",
            completed, total, staging,
        )
        raise
    finally:
        executor.shutdown(wait=True, cancel_futures=True)
        if owns_client:
            http.close()

    if failures:
        first = min(failures)
        logger.error(
            "Segment #%d failed; segments before it are staged in %s (%d/%d downloaded)",
            first, staging, completed, total,
        )
        raise failures[first]

    segments = [s for s in slots if s is not None]
    if len(segments) != total:
        raise FileWriteError(
            f"Only {len(segments)}/{total} segments were staged", path=str(staging),
        )
    total_bytes = sum(s.size_bytes for s in segments)
    duration = time.time() - start_time
    logger.info(
        "Downloaded %d segment(s), %s in %.1fs", total, format_bytes(total_bytes), duration,
    )
    return FetchReport(
        identifier=report_id,
        staging_dir=str(staging),
        segments=segments,
        total_bytes=total_bytes,
        duration_seconds=round(duration, 2),
    )
