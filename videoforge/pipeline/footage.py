"""
Step 2: Footage Resolution: one stock clip per scene.

The first search result wins. Scenes without a match are dropped from the
render set; the job only fails when nothing at all resolved.
"""

import logging
from typing import Optional

import httpx

from ..metrics import MetricsCollector
from ..pexels import PexelsClient, PexelsError
from .errors import FootageResolutionError
from .models import FootageClip, FootageResolution, SceneDescriptor

logger = logging.getLogger(__name__)


def search_keywords(scene: SceneDescriptor) -> list[str]:
    """Keywords to search with; never empty."""
    keywords = [k for k in scene.keywords if k and k.strip()]
    return keywords or [scene.scene]


class FootageResolver:
    def __init__(self, pexels: PexelsClient, metrics: Optional[MetricsCollector] = None):
        self._pexels = pexels
        self._metrics = metrics or MetricsCollector()

    async def _search(self, scene: SceneDescriptor) -> Optional[FootageClip]:
        keywords = search_keywords(scene)
        try:
            with self._metrics.timed("pexels.search"):
                results = await self._pexels.search_videos(keywords)
        except (PexelsError, httpx.HTTPError) as e:
            self._metrics.record_error("pexels", type(e).__name__, str(e))
            logger.warning(f"Footage search failed for scene {scene.id} ({keywords}): {e}")
            return None

        if not results:
            return None
        return FootageClip(**results[0])

    async def resolve(self, scenes: list[SceneDescriptor]) -> FootageResolution:
        """
        Attach footage to each scene, in order.

        Scenes that already carry a footage URL (uploaded media) are kept as-is.

        Returns:
            FootageResolution with the scene-id → clip map and the filtered
            scene list (every retained scene has a footage URL).

        Raises:
            FootageResolutionError: no scene resolved to footage.
        """
        resolution = FootageResolution()

        for scene in scenes:
            if scene.footage_url:
                resolution.clips[scene.id] = FootageClip(id=scene.id, url=scene.footage_url)
                resolution.scenes.append(scene.model_copy())
                continue

            clip = await self._search(scene)
            if clip is None:
                logger.warning(f"No footage found for scene {scene.id} '{scene.scene}', dropping it")
                resolution.dropped.append(scene.id)
                continue

            resolution.clips[scene.id] = clip
            resolution.scenes.append(scene.model_copy(update={"footage_url": clip.url}))

        if not resolution.clips:
            self._metrics.inc_counter("stage.footage.empty")
            raise FootageResolutionError(
                f"No footage found for any of the {len(scenes)} scenes"
            )

        self._metrics.inc_counter("stage.footage.ok")
        logger.info(
            f"Resolved footage for {len(resolution.scenes)}/{len(scenes)} scenes"
            + (f", dropped {resolution.dropped}" if resolution.dropped else "")
        )
        return resolution
