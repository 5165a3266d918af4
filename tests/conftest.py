from __future__ import annotations

import os
from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from youtube_fakes import FakeYouTubeApi

from backend.app.dependencies import reset_cached_dependencies
from backend.app.main import create_app

VIDEO_ID = "dQw4w9WgXcQ"


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:  # pyright: ignore[reportUnusedFunction]
    for name in list(os.environ):
        if name.startswith("BRAND_MONITOR_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("BRAND_MONITOR_DATA_DIR", str(tmp_path / "runtime-data"))
    monkeypatch.setenv("BRAND_MONITOR_YOUTUBE_API_KEY", "test-api-key")
    monkeypatch.setenv("BRAND_MONITOR_YOUTUBE_RETRY_BASE_DELAY_SECONDS", "0")


@pytest.fixture
def fake_youtube(monkeypatch: pytest.MonkeyPatch) -> FakeYouTubeApi:
    fake = FakeYouTubeApi()
    monkeypatch.setattr("backend.app.services.youtube_client._fetch_youtube_json", fake)
    return fake


@pytest.fixture
def client(fake_youtube: FakeYouTubeApi) -> Iterator[TestClient]:
    _ = fake_youtube
    reset_cached_dependencies()

    app = create_app()
    with TestClient(app) as test_client:
        yield test_client

    reset_cached_dependencies()
