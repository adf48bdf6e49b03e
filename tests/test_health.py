"""Tests for provider health checks."""

from unittest.mock import AsyncMock

import pytest

from videoforge.gemini import GeminiError
from videoforge.pexels import PexelsError
from videoforge.pipeline.health import ProviderHealthService, with_retry


class _Sleeps:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


class TestWithRetry:
    async def test_retries_once_after_fixed_delay(self):
        sleep = _Sleeps()
        fn = AsyncMock(side_effect=[GeminiError("blip"), "ok"])

        assert await with_retry(fn, sleep=sleep) == "ok"
        assert fn.await_count == 2
        assert sleep.calls == [1.0]

    async def test_gives_up_after_retry(self):
        fn = AsyncMock(side_effect=GeminiError("down"))
        with pytest.raises(GeminiError):
            await with_retry(fn, sleep=_Sleeps())
        assert fn.await_count == 2

    async def test_unexpected_errors_are_not_retried(self):
        fn = AsyncMock(side_effect=KeyError("bug"))
        with pytest.raises(KeyError):
            await with_retry(fn, sleep=_Sleeps())
        assert fn.await_count == 1


@pytest.fixture
def health(metrics):
    gemini, pexels, elevenlabs, shotstack = AsyncMock(), AsyncMock(), AsyncMock(), AsyncMock()
    shotstack.get_me.return_value = {"credits": 12}
    return ProviderHealthService(gemini, pexels, elevenlabs, shotstack, metrics, sleep=_Sleeps())


class TestProviderHealthService:
    async def test_all_valid(self, health):
        results = await health.check_all()

        assert set(results) == {"gemini", "pexels", "shotstack", "elevenlabs"}
        assert all(status.is_valid for status in results.values())
        assert results["shotstack"].credits_remaining == 12
        assert health.help_message(results) == "All API keys are valid."

    async def test_invalid_key_is_reported(self, health, metrics):
        health._pexels.search_videos.side_effect = PexelsError("Unauthorized request to Pexels API", 401)

        results = await health.check_all()

        pexels = results["pexels"]
        assert not pexels.is_valid
        assert pexels.key == "PEXELS_API_KEY"
        assert pexels.error_message == "Unauthorized request to Pexels API"
        assert health._pexels.search_videos.await_count == 2
        assert "PEXELS_API_KEY" in health.help_message(results)
        assert metrics.counter("errors.pexels") == 1

    async def test_transient_failure_recovers(self, health):
        health._gemini.list_models.side_effect = [GeminiError("blip"), {"models": []}]

        status = await health.check("gemini")
        assert status.is_valid
