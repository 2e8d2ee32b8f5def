"""
Shared test fixtures for NHK VOD downloader tests.

Provides sample manifest/playlist bodies, an in-memory fake of the
three upstream endpoints, and an httpx client wired to it through
``httpx.MockTransport``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional

import httpx
import pytest


# ---------------------------------------------------------------------------
# Sample data for tests
# ---------------------------------------------------------------------------

SAMPLE_IDENTIFIER = "Y4ZzFkZjE6"

SAMPLE_MANIFEST_URL = f"https://player.ooyala.com/hls/player/all/{SAMPLE_IDENTIFIER}.m3u8"

SAMPLE_VARIANT_URL = "https://cdn.example.com/hls/Y4ZzFkZjE6/1080p/index.m3u8"

SAMPLE_MANIFEST = (
    "https://cdn.example.com/hls/Y4ZzFkZjE6/360p/index.m3u8\n"
    "https://cdn.example.com/hls/Y4ZzFkZjE6/720p/index.m3u8\n"
    f"{SAMPLE_VARIANT_URL}\n"
)


def segment_url(i: int) -> str:
    return f"https://cdn.example.com/hls/Y4ZzFkZjE6/1080p/segment_{i:04d}.ts"


def segment_body(i: int, size: int = 256) -> bytes:
    """Distinct, index-dependent bytes so misordering is detectable."""
    return bytes([(i * 7 + k) % 256 for k in range(size)])


def make_playlist(count: int) -> str:
    lines = ["#EXTM3U", "#EXT-X-VERSION:3", "#EXT-X-TARGETDURATION:10"]
    for i in range(count):
        lines.append("#EXTINF:10.0,")
        lines.append(segment_url(i))
    lines.append("#EXT-X-ENDLIST")
    return "\n".join(lines) + "\n"


class FakeVodServer:
    """Serves manifest, playlist and segments from dicts; records requests."""

    def __init__(self, segment_count: int = 5):
        self.routes: dict[str, httpx.Response | Callable[[httpx.Request], httpx.Response]] = {
            SAMPLE_MANIFEST_URL: httpx.Response(200, text=SAMPLE_MANIFEST),
            SAMPLE_VARIANT_URL: httpx.Response(200, text=make_playlist(segment_count)),
        }
        for i in range(segment_count):
            self.routes[segment_url(i)] = httpx.Response(200, content=segment_body(i))
        self.requests: list[str] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        route = self.routes.get(url)
        if route is None:
            return httpx.Response(404, text="not found")
        if callable(route):
            return route(request)
        # Responses are single-use once streamed; hand out a fresh copy
        return httpx.Response(route.status_code, content=route.content, headers=route.headers)

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))

    def count(self, url: str) -> int:
        return self.requests.count(url)


def make_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def timeout_route(request: httpx.Request) -> httpx.Response:
    raise httpx.ReadTimeout("timed out", request=request)


# ---------------------------------------------------------------------------
# Pytest fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_server() -> FakeVodServer:
    return FakeVodServer(segment_count=5)


@pytest.fixture
def mock_output_dir(tmp_path: Path) -> Path:
    """Create a temporary output directory."""
    output = tmp_path / "output"
    output.mkdir()
    return output


@pytest.fixture
def staged_segments(tmp_path: Path) -> Callable[[list[int]], list[Path]]:
    """Factory writing segment files of the given sizes, in order."""

    def _make(sizes: list[int], prefix: Optional[str] = None) -> list[Path]:
        stage = tmp_path / (prefix or "stage")
        stage.mkdir(exist_ok=True)
        paths = []
        for i, size in enumerate(sizes):
            path = stage / f"segment_{i:04d}.ts"
            path.write_bytes(segment_body(i, size))
            paths.append(path)
        return paths

    return _make
