"""
Timeline assembly for the render provider.

Pure functions: scenes in, Shotstack render request out. No I/O here so the
placement math can be checked without a provider.
"""

import re
from typing import Optional

from .models import SceneDescriptor

CREDITS_PER_MINUTE = 0.1
DEFAULT_BACKGROUND = "#000000"
OUTPUT_FORMAT = "mp4"
OUTPUT_RESOLUTION = "sd"

ASPECT_RATIOS = {
    "reel": "9:16",
    "quote": "1:1",
}
DEFAULT_ASPECT_RATIO = "16:9"

_HEX_COLOR = re.compile(r"^#[0-9a-fA-F]{6}$")
_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")


# ── Placement ────────────────────────────────────────────────────────────────

def scene_offsets(scenes: list[SceneDescriptor]) -> list[float]:
    """Start offset of each scene: running sum of the durations before it."""
    offsets = []
    current = 0.0
    for scene in scenes:
        offsets.append(current)
        current += scene.duration
    return offsets


def total_duration(scenes: list[SceneDescriptor]) -> float:
    return float(sum(scene.duration for scene in scenes))


def estimate_credits(duration_seconds: float) -> float:
    return (duration_seconds / 60) * CREDITS_PER_MINUTE


def aspect_ratio_for(style: Optional[str]) -> str:
    return ASPECT_RATIOS.get((style or "").lower(), DEFAULT_ASPECT_RATIO)


def background_for(brand_colors: Optional[str]) -> str:
    """First brand colour if it is a #rrggbb value, black otherwise."""
    if brand_colors:
        first = brand_colors.split(",")[0].strip()
        if _HEX_COLOR.match(first):
            return first
    return DEFAULT_BACKGROUND


# ── Captions ─────────────────────────────────────────────────────────────────

def split_caption_segments(text: Optional[str]) -> list[str]:
    """Split narration into sentences on . ! ? keeping the punctuation."""
    if not text:
        return []
    pieces = _SENTENCE_END.split(text.strip())
    return [p.strip() for p in pieces if p.strip()]


def _title_clip(text: str, start: float, length: float) -> dict:
    return {
        "asset": {
            "type": "title",
            "text": text,
            "style": "minimal",
            "size": "small",
            "position": "bottom",
        },
        "start": start,
        "length": length,
    }


def caption_clips(
    scenes: list[SceneDescriptor],
    narration_script: Optional[str] = None,
    captions_url: Optional[str] = None,
) -> list[dict]:
    """
    Caption track clips.

    A prepared caption file wins. Otherwise narration sentences are spread
    evenly across the video; with no narration each scene shows its title.
    """
    total = total_duration(scenes)
    if captions_url:
        return [{"asset": {"type": "caption", "src": captions_url}, "start": 0, "length": total}]

    segments = split_caption_segments(narration_script)
    if segments:
        length = total / len(segments)
        return [_title_clip(text, i * length, length) for i, text in enumerate(segments)]

    return [
        _title_clip(scene.scene, start, scene.duration)
        for scene, start in zip(scenes, scene_offsets(scenes))
    ]


# ── Render request ───────────────────────────────────────────────────────────

def video_clips(scenes: list[SceneDescriptor]) -> list[dict]:
    return [
        {
            "asset": {"type": "video", "src": scene.footage_url, "trim": 0},
            "start": start,
            "length": scene.duration,
            "transition": {"in": "fade", "out": "fade"},
        }
        for scene, start in zip(scenes, scene_offsets(scenes))
    ]


def build_render_request(
    scenes: list[SceneDescriptor],
    audio_url: Optional[str] = None,
    has_captions: bool = False,
    narration_script: Optional[str] = None,
    captions_url: Optional[str] = None,
    style: Optional[str] = None,
    brand_colors: Optional[str] = None,
) -> dict:
    """Assemble the full Shotstack render body. Scenes must already carry footage."""
    # Caption track goes first so it renders above the footage
    tracks = []
    if has_captions:
        tracks.append({"clips": caption_clips(scenes, narration_script, captions_url)})
    tracks.append({"clips": video_clips(scenes)})

    timeline: dict = {
        "background": background_for(brand_colors),
        "tracks": tracks,
    }
    if audio_url:
        timeline["soundtrack"] = {"src": audio_url, "effect": "fadeOut"}

    return {
        "timeline": timeline,
        "output": {
            "format": OUTPUT_FORMAT,
            "resolution": OUTPUT_RESOLUTION,
            "aspectRatio": aspect_ratio_for(style),
        },
    }
