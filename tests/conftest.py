"""Shared test fixtures.

Provider clients are AsyncMocks; Supabase is the in-memory fake from
tests/fakes.py so the project store and notification store run their real
query code.
"""

from __future__ import annotations

from typing import Callable
from unittest.mock import AsyncMock

import httpx
import pytest

from videoforge.metrics import MetricsCollector
from videoforge.pipeline.footage import FootageResolver
from videoforge.pipeline.models import SceneDescriptor
from videoforge.pipeline.narration import NarrationSynthesizer
from videoforge.pipeline.notifications import NotificationEmitter, NotificationStore
from videoforge.pipeline.orchestrator import VideoGenerationService
from videoforge.pipeline.project_service import ProjectStore
from videoforge.pipeline.render import RenderSubmitter
from videoforge.pipeline.scene_gen import SceneGenerator
from videoforge.pipeline.status import RenderStatusPoller

from tests.fakes import FakeSupabase, no_sleep


@pytest.fixture
def supabase() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture
def store(supabase) -> ProjectStore:
    return ProjectStore(supabase)


@pytest.fixture
def notification_store(supabase) -> NotificationStore:
    return NotificationStore(supabase)


@pytest.fixture
def acknowledged() -> list:
    return []


@pytest.fixture
def notifier(notification_store, metrics, acknowledged) -> NotificationEmitter:
    return NotificationEmitter(notification_store, metrics, acknowledge=acknowledged.append)


@pytest.fixture
def make_scene() -> Callable[..., SceneDescriptor]:
    """Build a SceneDescriptor with sensible defaults."""
    def _make(i: int = 1, duration: float = 5.0, footage: bool = True, **kwargs) -> SceneDescriptor:
        values = {
            "id": f"scene{i}",
            "scene": f"Scene {i}",
            "description": f"Description {i}",
            "keywords": [f"keyword{i}"],
            "footage_url": f"https://cdn.example.com/clip{i}.mp4" if footage else None,
            "duration": duration,
        }
        values.update(kwargs)
        return SceneDescriptor(**values)

    return _make


@pytest.fixture
def mock_gemini() -> AsyncMock:
    gemini = AsyncMock()
    gemini.generate_text.return_value = "[]"
    return gemini


@pytest.fixture
def mock_pexels() -> AsyncMock:
    pexels = AsyncMock()
    pexels.search_videos.return_value = [{"id": "1", "url": "https://videos.pexels.com/1.mp4"}]
    return pexels


@pytest.fixture
def mock_tts() -> AsyncMock:
    tts = AsyncMock()
    tts.text_to_speech.return_value = b"ID3-fake-mp3"
    return tts


@pytest.fixture
def mock_shotstack() -> AsyncMock:
    shotstack = AsyncMock()
    shotstack.get_me.return_value = {"credits": 100}
    shotstack.submit.return_value = "R1"
    shotstack.get_render.return_value = {"status": "done", "url": "https://cdn.shotstack.io/R1.mp4"}
    return shotstack


@pytest.fixture
def make_http() -> Callable[[Callable[[httpx.Request], httpx.Response]], httpx.AsyncClient]:
    """httpx client whose requests are answered by `handler`."""
    def _make(handler):
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _make


@pytest.fixture
def storage() -> AsyncMock:
    r2 = AsyncMock()
    r2.upload_narration.return_value = "https://assets.example.com/pipeline/narration.mp3"
    return r2


@pytest.fixture
def service(
    mock_gemini, mock_pexels, mock_tts, mock_shotstack, store, notifier, storage, metrics
) -> VideoGenerationService:
    """Real pipeline steps over mocked providers; polling never sleeps."""
    poller = RenderStatusPoller(mock_shotstack, store, notifier, metrics, interval=0, sleep=no_sleep)
    return VideoGenerationService(
        scenes=SceneGenerator(mock_gemini, metrics),
        footage=FootageResolver(mock_pexels, metrics),
        narration=NarrationSynthesizer(mock_tts, mock_gemini, metrics),
        render=RenderSubmitter(mock_shotstack, metrics),
        poller=poller,
        store=store,
        notifier=notifier,
        storage=storage,
        metrics=metrics,
    )
