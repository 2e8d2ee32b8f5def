"""
Orchestrator: Coordinates the four stages of the NHK VOD downloader.

Resolve ID -> Resolve playlist -> Enumerate segments -> Fetch -> Assemble

Each stage consumes the previous stage's output; nothing flows
backwards. Any failure halts the run and is re-raised. Staged segments
and partially written output are left on disk so a failed run can be
inspected. Progress is reported through ``progress_callback(step,
message)`` where ``step`` is a PipelineStage value.
"""

from __future__ import annotations

import logging
import shutil
import threading
import time
import uuid
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

import httpx

from nhk_vod.exceptions import (
    CancellationError,
    EmptySegmentListError,
    ErrorSeverity,
    FileWriteError,
    PipelineError,
    ProcessingError,
    VodDownloaderException,
)
from nhk_vod.schemas.download_output import (
    AssemblyResult,
    PipelineResult,
    SegmentResult,
)
from nhk_vod.schemas.pipeline_config import PipelineConfig
from nhk_vod.schemas.pipeline_state import PipelineStage, PipelineState
from nhk_vod.stages.assembler import assemble
from nhk_vod.stages.playlist_resolver import resolve
from nhk_vod.stages.segment_enumerator import enumerate_segments
from nhk_vod.stages.segment_fetcher import fetch_all
from nhk_vod.tools.http_client import build_client
from nhk_vod.tools.page_identifier import resolve_identifier
from nhk_vod.utils import (
    format_bytes,
    output_path_for,
    staging_dir_for,
    validate_identifier,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, str], None]


def cleanup_staging(staging_dir: Path) -> bool:
    """Remove the staging directory and its segments. Returns True if removed."""
    try:
        shutil.rmtree(staging_dir)
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning("Could not remove staging directory %s: %s", staging_dir, e)
        return False
    logger.info("Removed temporary files: %s", staging_dir)
    return True


def _remove_stale_output(output_path: Path) -> None:
    """The assembler appends, so an artifact from an earlier run must go first."""
    if not output_path.exists():
        return
    logger.info("Replacing existing output file: %s", output_path)
    try:
        output_path.unlink()
    except OSError as e:
        raise FileWriteError(
            f"Cannot replace existing output {output_path}: {e}", path=str(output_path),
        ) from e


def run_pipeline(
    config: PipelineConfig,
    progress_callback: Optional[ProgressCallback] = None,
    cancel_event: Optional[threading.Event] = None,
    client: Optional[httpx.Client] = None,
) -> PipelineResult:
    """
    Run the full download pipeline for one video.

    Args:
        config: Validated pipeline settings.
        progress_callback: Receives ``(step, message)`` for every stage
            transition and every finished segment.
        cancel_event: Set from another thread to abort the run.
        client: Shared httpx client; created and closed here if omitted.

    Returns:
        PipelineResult describing the staged segments and, unless merging
        was skipped, the assembled output file.

    Raises:
        VodDownloaderException subclasses unchanged (NetworkError,
        SegmentFetchError, EmptyManifestError, EmptySegmentListError,
        FileReadError, FileWriteError, NotFoundError, CancellationError);
        anything unexpected is wrapped in PipelineError. The raised error
        carries the run's PipelineState (stage history and recorded
        errors) as ``pipeline_state``.
    """
    state = PipelineState(
        run_id=str(uuid.uuid4())[:8],
        output_dir=Path(config.output_dir),
        started_at=datetime.now(),
    )
    start_time = time.time()
    owns_client = client is None
    http = client or build_client(timeout=config.timeout, max_connections=config.max_workers)

    def _emit(step: str, message: str) -> None:
        if progress_callback:
            progress_callback(step, message)

    def _enter(stage: PipelineStage, message: str) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise CancellationError(f"Cancelled before {stage.value}")
        state.advance(stage)
        logger.info("[%s] %s", state.run_id, message)
        _emit(stage.value, message)

    def _on_segment(result: SegmentResult, done: int, total: int) -> None:
        _emit(
            PipelineStage.FETCHING.value,
            f"Downloaded segment {done}/{total}: {Path(result.path).name}",
        )

    def _fail(exc: BaseException) -> None:
        failed_stage = state.stage
        context = {"stage": failed_stage.value}
        for attr in ("index", "url", "path", "status_code"):
            value = getattr(exc, attr, None)
            if value is not None:
                context[attr] = value
        state.errors.append(ProcessingError.from_exception(
            source=failed_stage.value,
            exception=exc,
            severity=ErrorSeverity.CRITICAL,
            context=context,
        ))
        if not state.is_terminal:
            state.advance(PipelineStage.FAILED)
        state.completed_at = datetime.now()
        logger.error("[%s] Failed during %s: %s", state.run_id, failed_stage.value, exc)
        _emit(PipelineStage.FAILED.value, str(exc))

    try:
        # Stage 0: Content identifier (external collaborator)
        if config.identifier:
            identifier = validate_identifier(config.identifier)
        else:
            _enter(PipelineStage.RESOLVING_IDENTIFIER, f"Obtaining the video ID from {config.source_page_url}")
            identifier = validate_identifier(resolve_identifier(
                config.source_page_url,
                headless=config.headless,
                timeout=config.identifier_timeout,
            ))
        state.identifier = identifier
        staging_dir = staging_dir_for(config.output_dir, identifier)

        # Stage 1: Variant playlist
        _enter(PipelineStage.RESOLVING_PLAYLIST, f"Getting the best quality playlist for {identifier}")
        state.variant_playlist_url = resolve(
            identifier,
            client=http,
            retries=config.retries,
            backoff_base=config.backoff_base,
            cancel_event=cancel_event,
        )

        # Stage 2: Segment list
        _enter(PipelineStage.ENUMERATING, "Finding all video fragment links")
        state.segment_urls = enumerate_segments(
            state.variant_playlist_url,
            client=http,
            retries=config.retries,
            backoff_base=config.backoff_base,
            cancel_event=cancel_event,
        )
        if not state.segment_urls:
            raise EmptySegmentListError(
                f"Media playlist lists no segments: {state.variant_playlist_url}"
            )

        # Stage 3: Download
        _enter(PipelineStage.FETCHING, f"Downloading {len(state.segment_urls)} video fragments")
        report = fetch_all(
            state.segment_urls,
            staging_dir,
            identifier=identifier,
            client=http,
            max_workers=config.max_workers,
            retries=config.retries,
            backoff_base=config.backoff_base,
            cancel_event=cancel_event,
            on_segment=_on_segment,
        )
        state.staged_paths = report.paths

        # Stage 4: Merge (optional)
        assembly: Optional[AssemblyResult] = None
        cleaned_up = False
        if config.skip_merge:
            state.advance(PipelineStage.DONE)
            logger.info("[%s] Skipping merge; segments kept in %s", state.run_id, staging_dir)
        else:
            _enter(PipelineStage.ASSEMBLING, "Merging everything into the final file")
            output_path = output_path_for(config.output_dir, identifier)
            _remove_stale_output(output_path)
            assembly = assemble(report.paths, output_path)
            state.output_path = output_path
            state.advance(PipelineStage.DONE)
            if config.cleanup:
                cleaned_up = cleanup_staging(staging_dir)

    except KeyboardInterrupt:
        err = CancellationError("Interrupted by user")
        _fail(err)
        err.pipeline_state = state
        raise err from None
    except VodDownloaderException as e:
        _fail(e)
        e.pipeline_state = state
        raise
    except Exception as e:
        _fail(e)
        err = PipelineError(f"Pipeline failed: {e}")
        err.pipeline_state = state
        raise err from e
    finally:
        if owns_client:
            http.close()
        logger.info("[%s] Execution time: %.1fs", state.run_id, time.time() - start_time)

    state.completed_at = datetime.now()
    duration = time.time() - start_time

    if assembly is not None:
        summary = (
            f"Merged {len(report.segments)} segments ({format_bytes(assembly.total_bytes)}) "
            f"into {assembly.output_path}."
        )
    else:
        summary = (
            f"Downloaded {len(report.segments)} segments ({format_bytes(report.total_bytes)}) "
            f"into {report.staging_dir}; merge skipped."
        )
    _emit(PipelineStage.DONE.value, summary)
    logger.info("[%s] Success! %s", state.run_id, summary)

    return PipelineResult(
        identifier=identifier,
        variant_playlist_url=state.variant_playlist_url,
        segment_count=len(report.segments),
        fetch_report=report,
        assembly=assembly,
        merged=assembly is not None,
        cleaned_up=cleaned_up,
        duration_seconds=round(duration, 2),
        summary=summary,
        stage_history=[stage.value for stage in state.history],
    )
