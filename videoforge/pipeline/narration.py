"""
Step 3: Narration: optional voiceover via ElevenLabs.

The spoken text is either the user's script or a short voiceover written
by Gemini from the scene descriptions. Whatever was actually spoken is
returned with the audio so it can be shown and captioned later.

Failures here are non-fatal to the pipeline; the orchestrator renders
without audio.
"""

import base64
import logging
from typing import Optional

import httpx

from ..elevenlabs import ElevenLabsClient, ElevenLabsError, resolve_voice_id, voice_name
from ..gemini import GeminiClient, GeminiError
from ..metrics import MetricsCollector
from .errors import NarrationError
from .models import NO_VOICE, NarrationResult, SceneDescriptor

logger = logging.getLogger(__name__)


NARRATION_PROMPT = """Generate a short, emotionally resonant voiceover script for this video:

"{description}"

Requirements:
1. The narration should match the tone, emotion, and pacing of the visuals.
2. Keep it between 15-40 words, suitable for 5 to 15 seconds of speech.
3. Use a natural, human tone with no robotic phrasing or generic commentary.
4. Enhance the mood/story rather than describing visuals literally.

Provide ONLY the voiceover script with no extra formatting, labels, or quotes."""

FALLBACK_NARRATION = "Journey with us through this moment of beauty and wonder."


def wants_narration(voice: Optional[str]) -> bool:
    return bool(voice) and voice.strip().lower() != NO_VOICE


class NarrationSynthesizer:
    def __init__(
        self,
        tts: ElevenLabsClient,
        gemini: GeminiClient,
        metrics: Optional[MetricsCollector] = None,
    ):
        self._tts = tts
        self._gemini = gemini
        self._metrics = metrics or MetricsCollector()

    async def derive_script(self, scenes: list[SceneDescriptor]) -> str:
        """Write a voiceover from the scene descriptions (fixed fallback on failure)."""
        description = " ".join(s.description for s in scenes if s.description).strip()
        if not description:
            description = " ".join(s.scene for s in scenes)

        try:
            text = await self._gemini.generate_text(
                NARRATION_PROMPT.format(description=description),
                temperature=0.7,
                max_output_tokens=100,
            )
        except (GeminiError, httpx.HTTPError) as e:
            logger.warning(f"Narration script generation failed, using fallback: {e}")
            return FALLBACK_NARRATION

        return text.strip().strip('"').strip() or FALLBACK_NARRATION

    async def synthesize(
        self,
        voice: Optional[str],
        script: Optional[str] = None,
        scenes: Optional[list[SceneDescriptor]] = None,
    ) -> Optional[NarrationResult]:
        """
        Produce narration audio.

        Args:
            voice:  Voice alias or ElevenLabs id; "none" skips narration.
            script: User-authored script. Takes precedence over `scenes`.
            scenes: Scenes to derive a script from when no script is given.

        Returns:
            NarrationResult, or None when the voice is "none".

        Raises:
            NarrationError: synthesis failed or there was nothing to narrate.
        """
        if not wants_narration(voice):
            return None

        if script and script.strip():
            narration_script = script.strip()
        elif scenes:
            narration_script = await self.derive_script(scenes)
        else:
            raise NarrationError("Either a script or scenes are required for narration", provider="pipeline")

        voice_id = resolve_voice_id(voice)
        logger.info(f"Synthesizing narration with voice {voice_id}: {narration_script[:60]}")

        try:
            with self._metrics.timed("elevenlabs.tts"):
                audio = await self._tts.text_to_speech(narration_script, voice_id)
        except (ElevenLabsError, httpx.HTTPError) as e:
            self._metrics.record_error("elevenlabs", type(e).__name__, str(e))
            raise NarrationError(f"Narration synthesis failed: {e}") from e

        self._metrics.inc_counter("stage.narration.ok")
        return NarrationResult(
            audio_base64=base64.b64encode(audio).decode("utf-8"),
            narration_script=narration_script,
            voice_id=voice_id,
            voice_name=voice_name(voice_id),
        )
