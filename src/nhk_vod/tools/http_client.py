"""
HTTP Tool: text and streaming fetches via httpx with bounded retries.

Every network access in the pipeline (manifest, media playlist, each
segment) goes through this module, so the retry and backoff policy is
applied uniformly. Retries are driven by tenacity; exhausted retries
surface as NetworkError.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable, Optional, TypeVar

import httpx
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from nhk_vod.config.constants import (
    DOWNLOAD_BACKOFF_BASE,
    DOWNLOAD_CHUNK_SIZE,
    DOWNLOAD_RETRIES,
    HTTP_TIMEOUT,
    PARTIAL_SUFFIX,
    RETRYABLE_CLIENT_STATUSES,
    USER_AGENT,
)
from nhk_vod.exceptions import CancellationError, FileWriteError, NetworkError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def build_client(timeout: float = HTTP_TIMEOUT, max_connections: int = 16) -> httpx.Client:
    """Create a shared client for one pipeline run."""
    return httpx.Client(
        timeout=timeout,
        follow_redirects=True,
        headers={"User-Agent": USER_AGENT},
        limits=httpx.Limits(max_connections=max_connections),
    )


def is_retryable(exc: BaseException) -> bool:
    """Transport failures, 5xx and a few 4xx codes are worth another attempt."""
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status >= 500 or status in RETRYABLE_CLIENT_STATUSES
    return isinstance(exc, httpx.TransportError)


def _cancellable_sleep(cancel_event: Optional[threading.Event]) -> Callable[[float], None]:
    """Backoff sleep that wakes up and raises as soon as ``cancel_event`` is set."""
    event = cancel_event or threading.Event()

    def sleep(seconds: float) -> None:
        if event.wait(seconds):
            raise CancellationError("Cancelled while waiting to retry")

    return sleep


def create_retry_policy(
    retries: int = DOWNLOAD_RETRIES,
    backoff_base: float = DOWNLOAD_BACKOFF_BASE,
    cancel_event: Optional[threading.Event] = None,
) -> Retrying:
    """
    Build the tenacity policy shared by every fetch.

    Up to ``retries`` extra attempts, waiting ``backoff_base * 2**n``
    seconds before retry ``n + 1``. Non-retryable errors are re-raised
    immediately, and the last error is re-raised once attempts run out.
    """
    return Retrying(
        stop=stop_after_attempt(retries + 1),
        wait=wait_exponential(multiplier=backoff_base),
        retry=retry_if_exception(is_retryable),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        sleep=_cancellable_sleep(cancel_event),
        reraise=True,
    )


def with_retries(
    operation: Callable[[], T],
    url: str,
    retries: int = DOWNLOAD_RETRIES,
    backoff_base: float = DOWNLOAD_BACKOFF_BASE,
    cancel_event: Optional[threading.Event] = None,
) -> tuple[T, int]:
    """
    Run ``operation`` until it succeeds or retries are exhausted.

    Returns:
        Tuple of (operation result, number of attempts used).

    Raises:
        NetworkError: When the last attempt fails or the error is not retryable.
        CancellationError: When ``cancel_event`` is set.
    """
    if cancel_event is not None and cancel_event.is_set():
        raise CancellationError(f"Cancelled before fetching {url}")

    attempts = 0
    try:
        for attempt in create_retry_policy(retries, backoff_base, cancel_event):
            with attempt:
                attempts = attempt.retry_state.attempt_number
                result = operation()
    except httpx.HTTPError as e:
        status = e.response.status_code if isinstance(e, httpx.HTTPStatusError) else None
        logger.error("Fetch failed after %d attempt(s): %s: %s", attempts, url, e)
        raise NetworkError(
            f"Fetch failed for {url}: {e}", url=url, status_code=status,
        ) from e
    return result, attempts


def fetch_text(
    url: str,
    client: Optional[httpx.Client] = None,
    retries: int = DOWNLOAD_RETRIES,
    backoff_base: float = DOWNLOAD_BACKOFF_BASE,
    cancel_event: Optional[threading.Event] = None,
) -> str:
    """GET ``url`` and return the decoded body. Non-2xx raises NetworkError."""
    owns_client = client is None
    http = client or build_client()

    def _get() -> str:
        response = http.get(url)
        response.raise_for_status()
        return response.text

    try:
        text, attempts = with_retries(_get, url, retries, backoff_base, cancel_event)
    finally:
        if owns_client:
            http.close()
    logger.debug("Fetched %s (%d chars, %d attempt(s))", url, len(text), attempts)
    return text


def stream_to_file(
    url: str,
    dest: Path,
    client: httpx.Client,
    retries: int = DOWNLOAD_RETRIES,
    backoff_base: float = DOWNLOAD_BACKOFF_BASE,
    cancel_event: Optional[threading.Event] = None,
    chunk_size: int = DOWNLOAD_CHUNK_SIZE,
) -> tuple[int, int]:
    """
    Stream ``url`` into ``dest``.

    Bytes go to ``dest`` + ``.part`` first and are renamed into place only
    after the whole body arrived, so ``dest`` either holds a complete
    segment or is left as it was. Each attempt truncates the partial file.

    Returns:
        Tuple of (bytes written, attempts used).

    Raises:
        NetworkError: Fetch failed after retries.
        FileWriteError: Local write failed (not retried).
        CancellationError: ``cancel_event`` was set mid-transfer.
    """
    part_path = dest.with_name(dest.name + PARTIAL_SUFFIX)

    def _download() -> int:
        total = 0
        with client.stream("GET", url) as response:
            response.raise_for_status()
            try:
                with open(part_path, "wb") as f:
                    for chunk in response.iter_bytes(chunk_size=chunk_size):
                        if cancel_event is not None and cancel_event.is_set():
                            raise CancellationError(f"Cancelled while downloading {url}")
                        f.write(chunk)
                        total += len(chunk)
            except OSError as e:
                raise FileWriteError(
                    f"Cannot write {part_path}: {e}", path=str(part_path),
                ) from e
        try:
            part_path.replace(dest)
        except OSError as e:
            raise FileWriteError(f"Cannot move {part_path} to {dest}: {e}", path=str(dest)) from e
        return total

    try:
        return with_retries(_download, url, retries, backoff_base, cancel_event)
    except Exception:
        part_path.unlink(missing_ok=True)
        raise
