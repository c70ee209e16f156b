"""Pytest configuration and fixtures."""

import os
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import httpx
import pytest

# Set test environment variables before importing app modules
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("BACKEND_URL", "")

from video_search_client.config import Settings

TUNNEL_URL = "https://tunnel.example"
DURABLE_UPLOAD_PATH = "/v1_1/demo/video/upload"

Responder = httpx.Response | Exception | Callable[[httpx.Request], httpx.Response]


def json_response(data: Any, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, json=data)


def html_response(status_code: int = 200) -> httpx.Response:
    return httpx.Response(
        status_code,
        text="<!DOCTYPE html><html><body>You are about to visit...</body></html>",
        headers={"content-type": "text/html; charset=utf-8"},
    )


class FakeBackend:
    """Route table behind an httpx.MockTransport that records every request.

    Each route holds a queue of responders; the last one repeats.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[Responder]] = {}
        self.calls: list[httpx.Request] = []

    def add(self, method: str, path: str, *responders: Responder) -> None:
        self.routes[(method.upper(), path)] = list(responders)

    def calls_to(self, path: str) -> list[httpx.Request]:
        return [r for r in self.calls if r.url.path == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return json_response({"detail": "Not Found"}, 404)
        responder = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(responder, Exception):
            raise responder
        if callable(responder):
            return responder(request)
        return responder

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture(autouse=True)
def reset_caches() -> Iterator[None]:
    """Reset cached settings before each test."""
    from video_search_client.config import get_settings
    from video_search_client.observability import set_trace_id

    get_settings.cache_clear()
    set_trace_id("")
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    """Settings with durable storage configured and no polling delay."""
    return Settings(
        _env_file=None,
        backend_url=None,
        cloudinary_cloud_name="demo",
        cloudinary_upload_preset="unsigned_preset",
        poll_interval_seconds=0.0,
    )


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def session(settings: Settings, backend: FakeBackend):
    """A session connected (without probing) to the fake backend."""
    from video_search_client.session import VideoSearchSession

    s = VideoSearchSession(settings, http_client=backend.client(), storage_client=backend.client())
    s.registry.set(TUNNEL_URL)
    return s


@pytest.fixture
def make_video(tmp_path: Path) -> Callable[..., Path]:
    """Write a dummy video file of a given size."""

    def _make(name: str = "clip.mp4", size: int = 256 * 1024) -> Path:
        path = tmp_path / name
        path.write_bytes(b"\x00" * size)
        return path

    return _make


@pytest.fixture
def mock_settings(monkeypatch: pytest.MonkeyPatch) -> Callable[..., Settings]:
    """Fixture to set test settings through the environment."""

    def _mock_settings(**kwargs: str) -> Settings:
        for key, value in kwargs.items():
            monkeypatch.setenv(key.upper(), str(value))
        from video_search_client.config import get_settings

        get_settings.cache_clear()
        return get_settings()

    return _mock_settings
