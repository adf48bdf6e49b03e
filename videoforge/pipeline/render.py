"""
Step 4: Render Submission: timeline → Shotstack render id.

Before anything billable happens the submitter checks that every scene has
footage and that the account has enough credits for the estimated length.
Submissions are never retried here; the orchestrator marks the project
failed and the user decides whether to retry.
"""

import json
import logging
import re
from typing import Optional

import httpx

from ..metrics import MetricsCollector
from ..shotstack import ShotstackClient, ShotstackError
from .errors import InsufficientCreditsError, MissingFootageError, RenderProviderError
from .models import CreditShortfall, RenderSubmission, SceneDescriptor
from .timeline import build_render_request, estimate_credits, total_duration

logger = logging.getLogger(__name__)


# ── Credit error parsing ─────────────────────────────────────────────────────

class CreditErrorParser:
    """
    Best-effort extraction of credit amounts from a provider error message.

    Structured amounts in a JSON error body win; otherwise the numbers are
    read from the free text, and stay unknown if that fails too.
    """

    MARKERS = ("credit", "insufficient", "quota")
    _REQUIRED = re.compile(r"(?:required|requires|needed|needs|cost)\D{0,20}?(\d+(?:\.\d+)?)", re.I)
    _AVAILABLE = re.compile(r"(?:available|remaining|balance|have|has)\D{0,20}?(\d+(?:\.\d+)?)", re.I)

    def is_credit_error(self, message: str, status_code: Optional[int] = None) -> bool:
        if status_code == 402:
            return True
        lowered = (message or "").lower()
        return any(marker in lowered for marker in self.MARKERS)

    @staticmethod
    def _number(pattern: re.Pattern, message: str) -> Optional[float]:
        match = pattern.search(message or "")
        return float(match.group(1)) if match else None

    @staticmethod
    def _structured(message: str) -> Optional[CreditShortfall]:
        """Amounts from a JSON body shaped like {"response": {"credits": {"required", "available"}}}."""
        try:
            body = json.loads(message or "")
        except ValueError:
            return None
        response = body.get("response") if isinstance(body, dict) else None
        credits = response.get("credits") if isinstance(response, dict) else None
        if not isinstance(credits, dict):
            return None

        def _amount(key: str) -> Optional[float]:
            try:
                return float(credits[key])
            except (KeyError, TypeError, ValueError):
                return None

        shortfall = CreditShortfall(required=_amount("required"), available=_amount("available"))
        if shortfall.required is None and shortfall.available is None:
            return None
        return shortfall

    def parse(self, message: str, status_code: Optional[int] = None) -> Optional[CreditShortfall]:
        """Return the shortfall (amounts may be unknown), or None if not a credit error."""
        if not self.is_credit_error(message, status_code):
            return None
        structured = self._structured(message)
        if structured is not None:
            return structured
        return CreditShortfall(
            required=self._number(self._REQUIRED, message),
            available=self._number(self._AVAILABLE, message),
        )


# ── Submitter ────────────────────────────────────────────────────────────────

class RenderSubmitter:
    def __init__(
        self,
        shotstack: ShotstackClient,
        metrics: Optional[MetricsCollector] = None,
        credit_parser: Optional[CreditErrorParser] = None,
    ):
        self._shotstack = shotstack
        self._metrics = metrics or MetricsCollector()
        self._credit_parser = credit_parser or CreditErrorParser()

    async def check_credits(self, duration: float):
        """
        Pre-flight: abort if the estimated cost exceeds the account balance.

        An unreachable /me endpoint is not a reason to block the render; the
        provider will still reject the submission if credits really ran out.
        """
        required = round(estimate_credits(duration), 4)
        try:
            account = await self._shotstack.get_me()
        except (ShotstackError, httpx.HTTPError) as e:
            logger.warning(f"Credit pre-flight skipped, /me unavailable: {e}")
            return

        available = account.get("credits")
        if available is None:
            logger.warning("Credit pre-flight skipped, /me returned no credits field")
            return

        if required > float(available):
            self._metrics.inc_counter("stage.render.insufficient_credits")
            raise InsufficientCreditsError(CreditShortfall(required=required, available=float(available)))
        logger.info(f"Credit pre-flight ok: need ~{required}, have {available}")

    async def submit(
        self,
        scenes: list[SceneDescriptor],
        audio_url: Optional[str] = None,
        has_captions: bool = False,
        narration_script: Optional[str] = None,
        captions_url: Optional[str] = None,
        style: Optional[str] = None,
        brand_colors: Optional[str] = None,
        project_id: str = "",
    ) -> RenderSubmission:
        """
        Assemble the timeline and queue the render.

        Returns:
            RenderSubmission with the render id, the computed duration and
            the has_audio / has_captions flags as actually rendered.

        Raises:
            MissingFootageError: no scenes, or a scene lacks footage.
            InsufficientCreditsError: pre-flight or provider reported too few credits.
            RenderProviderError: any other provider or network failure.
        """
        if not scenes:
            raise MissingFootageError("No scenes to render")
        missing = [s.id for s in scenes if not s.footage_url]
        if missing:
            raise MissingFootageError(f"Scenes missing footage: {', '.join(missing)}")

        duration = total_duration(scenes)
        await self.check_credits(duration)

        render_request = build_render_request(
            scenes,
            audio_url=audio_url,
            has_captions=has_captions,
            narration_script=narration_script,
            captions_url=captions_url,
            style=style,
            brand_colors=brand_colors,
        )
        logger.info(
            f"Submitting render: {len(scenes)} scenes, {duration:g}s, "
            f"audio={bool(audio_url)}, captions={has_captions}"
        )

        try:
            with self._metrics.timed("shotstack.submit"):
                render_id = await self._shotstack.submit(render_request)
        except ShotstackError as e:
            self._metrics.record_error("shotstack", type(e).__name__, str(e), project_id)
            shortfall = self._credit_parser.parse(e.body or str(e), e.status_code)
            if shortfall is not None:
                raise InsufficientCreditsError(shortfall) from e
            raise RenderProviderError(
                f"Render submission failed: {e}", status_code=e.status_code, body=e.body
            ) from e
        except httpx.HTTPError as e:
            self._metrics.record_error("shotstack", type(e).__name__, str(e), project_id)
            raise RenderProviderError(f"Render submission failed: {e}") from e

        self._metrics.inc_counter("stage.render.submitted")
        return RenderSubmission(
            render_id=render_id,
            duration=duration,
            has_audio=bool(audio_url),
            has_captions=has_captions,
        )
