"""Tests for FootageResolver: first-hit selection and partial coverage."""

import httpx
import pytest

from videoforge.pexels import PexelsClient, PexelsError
from videoforge.pipeline.errors import FootageResolutionError
from videoforge.pipeline.footage import FootageResolver, search_keywords


def _clip(name: str) -> list[dict]:
    return [
        {"id": name, "url": f"https://videos.pexels.com/{name}.mp4"},
        {"id": f"{name}-b", "url": f"https://videos.pexels.com/{name}-b.mp4"},
    ]


class TestSearchKeywords:
    def test_blank_keywords_fall_back_to_title(self, make_scene):
        scene = make_scene(1, keywords=["", "  "], scene="Quiet forest")
        assert search_keywords(scene) == ["Quiet forest"]


class TestFootageResolver:
    async def test_first_result_wins(self, mock_pexels, make_scene):
        mock_pexels.search_videos.return_value = _clip("first")
        resolution = await FootageResolver(mock_pexels).resolve([make_scene(1, footage=False)])

        assert resolution.scenes[0].footage_url == "https://videos.pexels.com/first.mp4"
        assert resolution.clips["scene1"].id == "first"

    async def test_partial_resolution_keeps_order_and_duration(self, mock_pexels, make_scene):
        scenes = [make_scene(i, duration=float(i + 2), footage=False) for i in range(1, 6)]
        results = {
            "keyword1": _clip("a"),
            "keyword2": [],
            "keyword3": _clip("c"),
            "keyword4": [],
            "keyword5": _clip("e"),
        }
        mock_pexels.search_videos.side_effect = lambda keywords: results[keywords[0]]

        resolution = await FootageResolver(mock_pexels).resolve(scenes)

        assert [s.id for s in resolution.scenes] == ["scene1", "scene3", "scene5"]
        assert [s.duration for s in resolution.scenes] == [3.0, 5.0, 7.0]
        assert all(s.footage_url for s in resolution.scenes)
        assert resolution.dropped == ["scene2", "scene4"]
        assert set(resolution.clips) == {"scene1", "scene3", "scene5"}

    async def test_provider_errors_drop_the_scene(self, mock_pexels, make_scene, metrics):
        mock_pexels.search_videos.side_effect = [PexelsError("rate limited", 429), _clip("ok")]
        scenes = [make_scene(1, footage=False), make_scene(2, footage=False)]

        resolution = await FootageResolver(mock_pexels, metrics).resolve(scenes)

        assert [s.id for s in resolution.scenes] == ["scene2"]
        assert metrics.counter("errors.pexels") == 1

    async def test_nothing_resolved_is_fatal(self, mock_pexels, make_scene):
        mock_pexels.search_videos.return_value = []
        with pytest.raises(FootageResolutionError) as exc_info:
            await FootageResolver(mock_pexels).resolve([make_scene(1, footage=False)])
        assert exc_info.value.provider == "pexels"

    async def test_empty_keyword_list_searches_with_title(self, mock_pexels, make_scene):
        scene = make_scene(1, footage=False, keywords=[], scene="Snowy peaks")
        await FootageResolver(mock_pexels).resolve([scene])
        mock_pexels.search_videos.assert_awaited_once_with(["Snowy peaks"])

    async def test_preset_footage_is_not_searched(self, mock_pexels, make_scene):
        scene = make_scene(1, footage_url="https://uploads.example.com/mine.mp4")
        resolution = await FootageResolver(mock_pexels).resolve([scene])

        mock_pexels.search_videos.assert_not_awaited()
        assert resolution.scenes[0].footage_url == "https://uploads.example.com/mine.mp4"

    async def test_input_scenes_are_not_mutated(self, mock_pexels, make_scene):
        scene = make_scene(1, footage=False)
        await FootageResolver(mock_pexels).resolve([scene])
        assert scene.footage_url is None

    async def test_malformed_search_body_drops_only_that_scene(self, make_http, make_scene, metrics):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.params["query"] == "keyword1":
                return httpx.Response(200, text="<html>upstream maintenance</html>")
            return httpx.Response(200, json={"videos": [{
                "id": 7,
                "video_files": [{"quality": "hd", "width": 1920, "height": 1080, "link": "https://v.pexels.com/7.mp4"}],
            }]})

        scenes = [make_scene(1, footage=False), make_scene(2, footage=False)]
        async with make_http(handler) as http:
            resolution = await FootageResolver(PexelsClient(http, "px-key"), metrics).resolve(scenes)

        assert [s.id for s in resolution.scenes] == ["scene2"]
        assert resolution.scenes[0].footage_url == "https://v.pexels.com/7.mp4"
        assert resolution.dropped == ["scene1"]
        assert metrics.counter("errors.pexels") == 1
