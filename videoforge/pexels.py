"""
Pexels stock video search.

Returns clips in our own shape: one playable file per video, picked
HD (>= 1280 wide) first, then SD (>= 640 wide), then whatever exists.
"""

import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

MAX_QUERY_KEYWORDS = 3


class PexelsError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def _pick_file(video_files: list[dict]) -> Optional[dict]:
    for vf in video_files:
        if vf.get("quality") == "hd" and (vf.get("width") or 0) >= 1280:
            return vf
    for vf in video_files:
        if vf.get("quality") == "sd" and (vf.get("width") or 0) >= 640:
            return vf
    return video_files[0] if video_files else None


def _to_clip(video: dict) -> Optional[dict]:
    video_file = _pick_file(video.get("video_files") or [])
    if not video_file or not video_file.get("link"):
        return None

    pictures = video.get("video_pictures") or []
    preview = pictures[0].get("picture") if pictures else video.get("image")
    user = video.get("user") or {}
    return {
        "id": str(video.get("id")),
        "url": video_file["link"],
        "image": preview,
        "width": video_file.get("width"),
        "height": video_file.get("height"),
        "duration": video.get("duration"),
        "author": user.get("name") or "Pexels Contributor",
        "author_url": user.get("url") or "https://www.pexels.com",
    }


def _json_object(resp: httpx.Response) -> dict:
    try:
        data = resp.json()
    except ValueError as e:
        raise PexelsError(
            f"Pexels returned a non-JSON body: {resp.text[:200]}", status_code=resp.status_code
        ) from e
    if not isinstance(data, dict):
        raise PexelsError(
            f"Pexels returned an unexpected body: {resp.text[:200]}", status_code=resp.status_code
        )
    return data


class PexelsClient:
    def __init__(self, http: httpx.AsyncClient, api_key: str, api_base: str = "https://api.pexels.com"):
        self._http = http
        self._api_key = api_key
        self._api_base = api_base.rstrip("/")

    async def search_videos(self, keywords: list[str], per_page: int = 3) -> list[dict]:
        """Search landscape clips for the first few keywords, best match first."""
        if not self._api_key:
            raise PexelsError("PEXELS_API_KEY not set")

        query = " ".join(keywords[:MAX_QUERY_KEYWORDS]).strip()
        if not query:
            raise PexelsError("Search terms cannot be empty")

        resp = await self._http.get(
            f"{self._api_base}/videos/search",
            headers={"Authorization": self._api_key},
            params={"query": query, "per_page": per_page, "orientation": "landscape"},
        )
        if resp.status_code == 401:
            raise PexelsError("Unauthorized request to Pexels API", status_code=401)
        if resp.status_code == 429:
            raise PexelsError("Rate limit exceeded with Pexels API", status_code=429)
        if resp.status_code != 200:
            raise PexelsError(
                f"Pexels API error {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
            )

        videos = _json_object(resp).get("videos") or []
        if not isinstance(videos, list):
            raise PexelsError(f"Pexels returned malformed videos: {resp.text[:200]}", status_code=resp.status_code)
        clips = [c for c in (_to_clip(v) for v in videos if isinstance(v, dict)) if c]
        logger.info(f"Found {len(clips)} videos for query: {query}")
        return clips
