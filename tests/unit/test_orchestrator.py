"""
Level 2: Pipeline tests for the Orchestrator.

Tests run_pipeline() end to end against the in-memory fake server,
with the browser-based identifier lookup mocked.
"""

from __future__ import annotations

import threading
import time
from pathlib import Path
from unittest.mock import patch

import httpx
import pytest

from conftest import (
    SAMPLE_IDENTIFIER,
    SAMPLE_MANIFEST_URL,
    SAMPLE_VARIANT_URL,
    segment_body,
    segment_url,
    timeout_route,
)
from nhk_vod.exceptions import (
    CancellationError,
    EmptyManifestError,
    EmptySegmentListError,
    NotFoundError,
    PipelineError,
    SegmentFetchError,
)
from nhk_vod.orchestrator import cleanup_staging, run_pipeline
from nhk_vod.schemas.pipeline_config import PipelineConfig

PAGE_URL = "https://www3.nhk.or.jp/nhkworld/en/ondemand/video/2007123/"


def _config(output_dir: Path, **overrides) -> PipelineConfig:
    defaults = {
        "identifier": SAMPLE_IDENTIFIER,
        "output_dir": str(output_dir),
        "max_workers": 2,
        "retries": 0,
        "backoff_base": 0,
    }
    return PipelineConfig(**(defaults | overrides))


def _expected_bytes(count: int = 5) -> bytes:
    return b"".join(segment_body(i) for i in range(count))


# ---------------------------------------------------------------------------
# Successful runs
# ---------------------------------------------------------------------------


@pytest.mark.pipeline
class TestRunPipeline:

    def test_full_run_merges_and_cleans_up(self, fake_server, mock_output_dir):
        result = run_pipeline(_config(mock_output_dir), client=fake_server.client())

        output = mock_output_dir / f"{SAMPLE_IDENTIFIER}.ts"
        assert output.read_bytes() == _expected_bytes()
        assert result.merged is True
        assert result.cleaned_up is True
        assert result.segment_count == 5
        assert result.variant_playlist_url == SAMPLE_VARIANT_URL
        assert result.assembly.output_path == str(output)
        assert not (mock_output_dir / SAMPLE_IDENTIFIER).exists()
        assert result.stage_history == [
            "idle", "resolving_playlist", "enumerating", "fetching", "assembling", "done",
        ]

    def test_keep_segments(self, fake_server, mock_output_dir):
        result = run_pipeline(
            _config(mock_output_dir, cleanup=False), client=fake_server.client(),
        )
        staging = mock_output_dir / SAMPLE_IDENTIFIER
        assert result.cleaned_up is False
        assert sorted(p.name for p in staging.iterdir()) == [
            f"segment_{i:04d}.ts" for i in range(5)
        ]
        assert (mock_output_dir / f"{SAMPLE_IDENTIFIER}.ts").exists()

    def test_skip_merge_leaves_segments_only(self, fake_server, mock_output_dir):
        result = run_pipeline(
            _config(mock_output_dir, skip_merge=True), client=fake_server.client(),
        )
        staging = mock_output_dir / SAMPLE_IDENTIFIER
        assert result.merged is False
        assert result.assembly is None
        assert not (mock_output_dir / f"{SAMPLE_IDENTIFIER}.ts").exists()
        assert result.fetch_report.paths == [
            str(staging / f"segment_{i:04d}.ts") for i in range(5)
        ]
        assert "merge skipped" in result.summary
        assert result.stage_history[-2:] == ["fetching", "done"]

    def test_rerun_replaces_previous_output(self, fake_server, mock_output_dir):
        output = mock_output_dir / f"{SAMPLE_IDENTIFIER}.ts"
        output.write_bytes(b"previous run")
        run_pipeline(_config(mock_output_dir), client=fake_server.client())
        run_pipeline(_config(mock_output_dir), client=fake_server.client())
        assert output.read_bytes() == _expected_bytes()

    def test_identifier_from_page(self, fake_server, mock_output_dir):
        config = _config(mock_output_dir, identifier=None, source_page_url=PAGE_URL)
        with patch(
            "nhk_vod.orchestrator.resolve_identifier", return_value=SAMPLE_IDENTIFIER,
        ) as mock_resolve:
            result = run_pipeline(config, client=fake_server.client())

        mock_resolve.assert_called_once()
        assert mock_resolve.call_args.args[0] == PAGE_URL
        assert result.identifier == SAMPLE_IDENTIFIER
        assert result.stage_history[:2] == ["idle", "resolving_identifier"]

    def test_explicit_identifier_skips_browser(self, fake_server, mock_output_dir):
        with patch("nhk_vod.orchestrator.resolve_identifier") as mock_resolve:
            run_pipeline(_config(mock_output_dir), client=fake_server.client())
        mock_resolve.assert_not_called()

    def test_progress_events_follow_stages(self, fake_server, mock_output_dir):
        events: list[tuple[str, str]] = []
        config = _config(mock_output_dir, identifier=None, source_page_url=PAGE_URL)
        with patch("nhk_vod.orchestrator.resolve_identifier", return_value=SAMPLE_IDENTIFIER):
            run_pipeline(
                config,
                progress_callback=lambda step, msg: events.append((step, msg)),
                client=fake_server.client(),
            )

        steps = [step for step, _ in events]
        # Stage entries, deduplicated in order
        stages = [s for i, s in enumerate(steps) if i == 0 or steps[i - 1] != s]
        assert stages == [
            "resolving_identifier",
            "resolving_playlist",
            "enumerating",
            "fetching",
            "assembling",
            "done",
        ]
        assert steps.count("fetching") == 1 + 5
        assert "Merged 5 segments" in events[-1][1]


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


@pytest.mark.pipeline
class TestRunPipelineFailures:

    def test_segment_failure_keeps_staged_segments(self, fake_server, mock_output_dir):
        fake_server.routes[segment_url(2)] = timeout_route
        events: list[tuple[str, str]] = []

        with pytest.raises(SegmentFetchError) as exc_info:
            run_pipeline(
                _config(mock_output_dir, max_workers=1),
                progress_callback=lambda step, msg: events.append((step, msg)),
                client=fake_server.client(),
            )

        staging = mock_output_dir / SAMPLE_IDENTIFIER
        assert exc_info.value.index == 2
        assert (staging / "segment_0000.ts").exists()
        assert (staging / "segment_0001.ts").exists()
        assert not (mock_output_dir / f"{SAMPLE_IDENTIFIER}.ts").exists()
        assert events[-1][0] == "failed"
        assert fake_server.count(segment_url(3)) == 0

        state = exc_info.value.pipeline_state
        assert [stage.value for stage in state.history] == [
            "idle", "resolving_playlist", "enumerating", "fetching", "failed",
        ]
        assert state.errors[0].context["stage"] == "fetching"
        assert state.errors[0].context["index"] == 2
        assert state.errors[0].error_type == "SegmentFetchError"

    def test_segment_failure_with_parallel_workers(self, fake_server, mock_output_dir):
        def slow_first(request):
            time.sleep(0.3)
            return httpx.Response(200, content=segment_body(0))

        fake_server.routes[segment_url(0)] = slow_first
        fake_server.routes[segment_url(2)] = httpx.Response(404)

        with pytest.raises(SegmentFetchError) as exc_info:
            run_pipeline(_config(mock_output_dir, max_workers=4), client=fake_server.client())

        staging = mock_output_dir / SAMPLE_IDENTIFIER
        assert exc_info.value.index == 2
        assert (staging / "segment_0000.ts").exists()
        assert (staging / "segment_0001.ts").exists()

    def test_empty_segment_list(self, fake_server, mock_output_dir):
        fake_server.routes[SAMPLE_VARIANT_URL] = httpx.Response(200, text="#EXTM3U\n#EXT-X-ENDLIST\n")
        with pytest.raises(EmptySegmentListError):
            run_pipeline(_config(mock_output_dir), client=fake_server.client())
        assert list(mock_output_dir.iterdir()) == []

    def test_empty_manifest(self, fake_server, mock_output_dir):
        fake_server.routes[SAMPLE_MANIFEST_URL] = httpx.Response(200, text="")
        with pytest.raises(EmptyManifestError):
            run_pipeline(_config(mock_output_dir), client=fake_server.client())
        assert fake_server.requests == [SAMPLE_MANIFEST_URL]

    def test_identifier_not_found_is_fatal(self, fake_server, mock_output_dir):
        config = _config(mock_output_dir, identifier=None, source_page_url=PAGE_URL)
        with patch(
            "nhk_vod.orchestrator.resolve_identifier",
            side_effect=NotFoundError("no player"),
        ):
            with pytest.raises(NotFoundError):
                run_pipeline(config, client=fake_server.client())
        assert fake_server.requests == []

    def test_unexpected_error_wrapped(self, fake_server, mock_output_dir):
        with patch("nhk_vod.orchestrator.assemble", side_effect=RuntimeError("disk on fire")):
            with pytest.raises(PipelineError, match="disk on fire") as exc_info:
                run_pipeline(_config(mock_output_dir), client=fake_server.client())
        # Staging is only cleaned after a successful merge
        assert (mock_output_dir / SAMPLE_IDENTIFIER).is_dir()
        state = exc_info.value.pipeline_state
        assert state.history[-2].value == "assembling"
        assert state.errors[0].error_type == "RuntimeError"

    def test_precancelled_run_makes_no_requests(self, fake_server, mock_output_dir):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(CancellationError) as exc_info:
            run_pipeline(_config(mock_output_dir), cancel_event=cancel, client=fake_server.client())
        assert fake_server.requests == []
        assert exc_info.value.pipeline_state.failed

    def test_keyboard_interrupt_becomes_cancellation(self, fake_server, mock_output_dir):
        with patch("nhk_vod.orchestrator.fetch_all", side_effect=KeyboardInterrupt):
            with pytest.raises(CancellationError, match="Interrupted"):
                run_pipeline(_config(mock_output_dir), client=fake_server.client())


# ---------------------------------------------------------------------------
# Cleanup helper
# ---------------------------------------------------------------------------


@pytest.mark.pipeline
class TestCleanupStaging:

    def test_removes_directory(self, tmp_path):
        staging = tmp_path / "abc"
        staging.mkdir()
        (staging / "seg.ts").write_bytes(b"x")
        assert cleanup_staging(staging) is True
        assert not staging.exists()

    def test_missing_directory(self, tmp_path):
        assert cleanup_staging(tmp_path / "missing") is False

    def test_failure_is_not_fatal(self, tmp_path):
        staging = tmp_path / "abc"
        staging.mkdir()
        with patch("nhk_vod.orchestrator.shutil.rmtree", side_effect=PermissionError("busy")):
            assert cleanup_staging(staging) is False
        assert staging.exists()
