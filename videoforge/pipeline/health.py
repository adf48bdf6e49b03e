"""
Provider health checks.

One cheap authenticated call per provider, each retried once after a fixed
one-second delay. Used by /health/providers to tell the user which API key
is missing or invalid before they start a render.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from ..elevenlabs import ElevenLabsClient, ElevenLabsError
from ..gemini import GeminiClient, GeminiError
from ..metrics import MetricsCollector
from ..pexels import PexelsClient, PexelsError
from ..shotstack import ShotstackClient, ShotstackError
from .models import ApiKeyStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")

PROVIDER_KEYS = {
    "gemini": "GEMINI_API_KEY",
    "pexels": "PEXELS_API_KEY",
    "shotstack": "SHOTSTACK_API_KEY",
    "elevenlabs": "ELEVEN_LABS_API_KEY",
}

PROVIDER_ERRORS = (GeminiError, PexelsError, ShotstackError, ElevenLabsError, httpx.HTTPError)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    max_retries: int = 1,
    delay: float = 1.0,
    retry_on: tuple = PROVIDER_ERRORS,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Call `fn`, retrying up to `max_retries` times with a fixed delay."""
    for attempt in range(max_retries + 1):
        try:
            return await fn()
        except retry_on as e:
            if attempt >= max_retries:
                raise
            logger.warning(f"Attempt {attempt + 1}/{max_retries + 1} failed: {e}, retrying in {delay:g}s")
            await sleep(delay)
    raise RuntimeError("unreachable")


class ProviderHealthService:
    def __init__(
        self,
        gemini: GeminiClient,
        pexels: PexelsClient,
        elevenlabs: ElevenLabsClient,
        shotstack: ShotstackClient,
        metrics: Optional[MetricsCollector] = None,
        max_retries: int = 1,
        delay: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._gemini = gemini
        self._pexels = pexels
        self._elevenlabs = elevenlabs
        self._shotstack = shotstack
        self._metrics = metrics or MetricsCollector()
        self._max_retries = max_retries
        self._delay = delay
        self._sleep = sleep

    async def _check_key(self, name: str) -> Optional[float]:
        """Make the provider's cheapest authenticated call; returns remaining credits where known."""
        if name == "gemini":
            await self._gemini.list_models()
        elif name == "pexels":
            await self._pexels.search_videos(["test"], per_page=1)
        elif name == "elevenlabs":
            await self._elevenlabs.list_voices()
        elif name == "shotstack":
            account = await self._shotstack.get_me()
            credits = account.get("credits")
            return float(credits) if credits is not None else None
        else:
            raise ValueError(f"Unknown provider: {name}")
        return None

    async def check(self, name: str) -> ApiKeyStatus:
        key = PROVIDER_KEYS.get(name, f"{name.upper()}_API_KEY")
        try:
            credits = await with_retry(
                lambda: self._check_key(name),
                max_retries=self._max_retries,
                delay=self._delay,
                sleep=self._sleep,
            )
        except PROVIDER_ERRORS as e:
            self._metrics.record_error(name, type(e).__name__, str(e))
            logger.warning(f"{name} health check failed: {e}")
            return ApiKeyStatus(name=name, key=key, is_valid=False, error_message=str(e))

        return ApiKeyStatus(name=name, key=key, is_valid=True, credits_remaining=credits)

    async def check_all(self) -> dict[str, ApiKeyStatus]:
        names = list(PROVIDER_KEYS)
        results = await asyncio.gather(*(self.check(name) for name in names))
        return dict(zip(names, results))

    @staticmethod
    def help_message(results: dict[str, ApiKeyStatus]) -> str:
        invalid = [status.key for status in results.values() if not status.is_valid]
        if not invalid:
            return "All API keys are valid."
        return (
            f"The following API keys are missing or invalid: {', '.join(invalid)}. "
            "Please set them in the worker environment."
        )
