"""
Step 1: Scene Generation: break a prompt into an ordered scene list via Gemini.

Each scene comes back with a title, a visual description, stock-footage
keywords and a target duration. Keywords are never empty: a scene without
them falls back to its own title.
"""

import logging
from typing import Any, Optional

import httpx

from ..gemini import GeminiClient, GeminiError, parse_json_response
from ..metrics import MetricsCollector
from .errors import SceneGenerationError
from .models import SceneDescriptor, DEFAULT_SCENE_DURATION

logger = logging.getLogger(__name__)


SCENE_SYSTEM_PROMPT = """You are an experienced video producer. Break down the following description into 3-5 distinct scenes for a professional video. For each scene, provide:
1. A short scene title
2. A detailed visual description that a stock footage search engine could match
3. 3-5 specific keywords that will help find the perfect stock footage
4. A recommended duration in seconds (between 3-10 seconds per scene)

Format your response as a JSON array like this:
[
  {
    "id": "scene1",
    "scene": "Scene title",
    "description": "Detailed visual description",
    "keywords": ["keyword1", "keyword2", "keyword3"],
    "duration": 5
  }
]

Your response should ONLY include the JSON array with no additional text or explanation."""

REPAIR_PROMPT = (
    "The following JSON string has errors. Please fix the JSON format issues "
    "and return ONLY the corrected JSON array of scenes:\n\n{payload}"
)

DEFAULT_DESCRIPTION = "A professional scene for a video"


def _coerce_keywords(raw: Any) -> list[str]:
    if isinstance(raw, str):
        raw = raw.split(",")
    if not isinstance(raw, list):
        return []
    return [str(k).strip() for k in raw if str(k).strip()]


def _coerce_duration(raw: Any) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return DEFAULT_SCENE_DURATION
    return value if value > 0 else DEFAULT_SCENE_DURATION


def normalize_scene(raw: dict, index: int) -> SceneDescriptor:
    """Fill in whatever the model left out of one scene."""
    title = str(raw.get("scene") or raw.get("title") or "").strip() or f"Scene {index + 1}"
    keywords = _coerce_keywords(raw.get("keywords")) or [title]

    return SceneDescriptor(
        id=str(raw.get("id") or f"scene{index + 1}"),
        scene=title,
        description=str(raw.get("description") or DEFAULT_DESCRIPTION),
        keywords=keywords,
        duration=_coerce_duration(raw.get("duration")),
    )


def _as_scene_list(parsed: Any) -> Optional[list]:
    if isinstance(parsed, dict) and isinstance(parsed.get("scenes"), list):
        return parsed["scenes"]
    if isinstance(parsed, list):
        return parsed
    return None


class SceneGenerator:
    def __init__(self, gemini: GeminiClient, metrics: Optional[MetricsCollector] = None):
        self._gemini = gemini
        self._metrics = metrics or MetricsCollector()

    async def _ask(self, prompt: str, temperature: float) -> str:
        try:
            with self._metrics.timed("gemini.generate"):
                return await self._gemini.generate_text(prompt, temperature=temperature)
        except (GeminiError, httpx.HTTPError) as e:
            self._metrics.record_error("gemini", type(e).__name__, str(e))
            raise SceneGenerationError(f"Scene generation failed: {e}") from e

    async def _parse_or_repair(self, text: str) -> list:
        try:
            scenes = _as_scene_list(parse_json_response(text))
        except ValueError:
            scenes = None
        if scenes is not None:
            return scenes

        logger.warning("Scene JSON did not parse, asking Gemini to repair it")
        fixed = await self._ask(REPAIR_PROMPT.format(payload=text), temperature=0.2)
        try:
            scenes = _as_scene_list(parse_json_response(fixed))
        except ValueError as e:
            raise SceneGenerationError(f"Scene generation returned invalid JSON: {e}") from e
        if scenes is None:
            raise SceneGenerationError("Scene generation response is not a list of scenes")
        return scenes

    async def generate(self, prompt: str) -> list[SceneDescriptor]:
        """
        Turn a free-text prompt into an ordered list of scenes.

        Raises:
            SceneGenerationError: the provider failed or produced zero scenes.
        """
        if not prompt or not prompt.strip():
            raise SceneGenerationError("Prompt must not be empty", provider="pipeline")

        logger.info(f"Generating scenes for prompt: {prompt[:50]}")
        text = await self._ask(f"{SCENE_SYSTEM_PROMPT}\n\nDescription: {prompt}", temperature=0.4)
        raw_scenes = await self._parse_or_repair(text)

        scenes: list[SceneDescriptor] = []
        seen_ids: set[str] = set()
        for i, raw in enumerate(raw_scenes):
            if not isinstance(raw, dict):
                continue
            scene = normalize_scene(raw, i)
            # ids must be unique within a project
            if scene.id in seen_ids:
                scene.id = f"{scene.id}-{i + 1}"
            seen_ids.add(scene.id)
            scenes.append(scene)

        if not scenes:
            self._metrics.inc_counter("stage.scenes.empty")
            raise SceneGenerationError("Scene generation returned zero scenes")

        self._metrics.inc_counter("stage.scenes.ok")
        logger.info(f"Generated {len(scenes)} scenes")
        return scenes
