"""Tests for ProjectStore against the in-memory Supabase fake."""

import httpx
import pytest

from videoforge.pipeline.errors import ProjectNotFoundError, ProjectStoreError
from videoforge.pipeline.models import ProjectStatus
from videoforge.pipeline.project_service import PROJECTS_TABLE, validate_video_url

from tests.fakes import seed_project


class TestCreate:
    async def test_new_project_is_pending(self, store, supabase):
        project = await seed_project(store, voice_type="female", has_audio=True)

        assert project.status == ProjectStatus.PENDING
        assert project.has_audio is True
        assert project.video_url is None
        assert project.created_at == project.updated_at
        assert supabase.rows(PROJECTS_TABLE)[0]["id"] == project.id

    async def test_required_fields(self, store):
        with pytest.raises(ValueError):
            await store.create_project(user_id="user-1", title="", prompt="x")

    async def test_scenes_round_trip(self, store, make_scene):
        project = await seed_project(store, scenes=[make_scene(1, 5), make_scene(2, 7)])
        loaded = await store.get_project(project.id)

        assert [s.id for s in loaded.scenes] == ["scene1", "scene2"]
        assert loaded.scenes[1].duration == 7


class TestRead:
    async def test_missing_project(self, store):
        with pytest.raises(ProjectNotFoundError):
            await store.get_project("nope")

    async def test_owner_scoping(self, store):
        project = await seed_project(store)
        with pytest.raises(ProjectNotFoundError):
            await store.get_project(project.id, user_id="someone-else")

    async def test_list_newest_first_and_recent(self, store, supabase):
        ids = []
        for i in range(4):
            project = await seed_project(store, title=f"Video {i}")
            ids.append(project.id)
        for i, row in enumerate(supabase.rows(PROJECTS_TABLE)):
            row["created_at"] = f"2026-01-0{i + 1}T00:00:00+00:00"
        await seed_project(store, user_id="user-2")

        listed = await store.list_projects("user-1")
        recent = await store.recent_projects("user-1")

        assert [p.id for p in listed] == list(reversed(ids))
        assert [p.id for p in recent] == list(reversed(ids))[:3]

    async def test_list_active_needs_render_id(self, store):
        pending = await seed_project(store)
        rendering = await seed_project(store)
        await store.transition(rendering.id, ProjectStatus.PROCESSING, render_id="R9")

        active = await store.list_active()

        assert [p.id for p in active] == [rendering.id]
        assert pending.id not in {p.id for p in active}

    async def test_database_error_is_typed(self, store, supabase):
        supabase.fail(PROJECTS_TABLE, "select")
        with pytest.raises(ProjectStoreError):
            await store.list_projects("user-1")

    async def test_connection_reset_is_typed(self, store, supabase):
        project = await seed_project(store)
        supabase.fail(PROJECTS_TABLE, "select", error=httpx.ConnectError("connection reset"))

        with pytest.raises(ProjectStoreError, match="connection reset"):
            await store.get_project(project.id)
        assert (await store.get_project(project.id)).id == project.id

    async def test_timeout_on_transition_is_typed(self, store, supabase):
        project = await seed_project(store)
        supabase.fail(PROJECTS_TABLE, "update", error=httpx.ReadTimeout("timed out"))

        with pytest.raises(ProjectStoreError):
            await store.transition(project.id, ProjectStatus.PROCESSING, render_id="R1")


class TestTransitions:
    async def test_forward_path(self, store):
        project = await seed_project(store)

        assert await store.transition(project.id, ProjectStatus.PROCESSING, render_id="R1")
        assert await store.transition(project.id, ProjectStatus.COMPLETED, video_url="https://cdn.example.com/v.mp4")

        saved = await store.get_project(project.id)
        assert saved.status == ProjectStatus.COMPLETED
        assert saved.render_id == "R1"
        assert saved.video_url == "https://cdn.example.com/v.mp4"

    async def test_terminal_states_never_move(self, store):
        project = await seed_project(store)
        await store.transition(project.id, ProjectStatus.COMPLETED, video_url="https://cdn.example.com/v.mp4")

        assert not await store.transition(project.id, ProjectStatus.PROCESSING)
        assert not await store.transition(project.id, ProjectStatus.FAILED, error_message="late failure")

        saved = await store.get_project(project.id)
        assert saved.status == ProjectStatus.COMPLETED
        assert saved.error_message is None

    async def test_processing_cannot_go_back_to_pending(self, store):
        project = await seed_project(store)
        await store.transition(project.id, ProjectStatus.PROCESSING)

        assert not await store.transition(project.id, ProjectStatus.PENDING)

    async def test_completed_requires_url(self, store):
        project = await seed_project(store)
        with pytest.raises(ValueError):
            await store.transition(project.id, ProjectStatus.COMPLETED)
        with pytest.raises(ValueError):
            await store.transition(project.id, ProjectStatus.COMPLETED, video_url="ftp://files/v.mp4")

    async def test_failed_requires_error_and_clears_url(self, store):
        project = await seed_project(store)
        with pytest.raises(ValueError):
            await store.transition(project.id, ProjectStatus.FAILED)

        assert await store.transition(project.id, ProjectStatus.FAILED, error_message="Footage missing")
        saved = await store.get_project(project.id)
        assert saved.error_message == "Footage missing"
        assert saved.video_url is None

    async def test_transition_of_missing_project(self, store):
        with pytest.raises(ProjectNotFoundError):
            await store.transition("ghost", ProjectStatus.PROCESSING)


class TestUpdateAndDelete:
    async def test_update_rejects_status_fields(self, store):
        project = await seed_project(store)
        with pytest.raises(ValueError):
            await store.update_project(project.id, status="completed")
        with pytest.raises(ValueError):
            await store.update_project(project.id, video_url="https://cdn.example.com/v.mp4")

    async def test_update_changes_fields(self, store):
        project = await seed_project(store)
        await store.update_project(project.id, title="Renamed", thumbnail_url="https://cdn.example.com/t.jpg")

        saved = await store.get_project(project.id)
        assert saved.title == "Renamed"
        assert saved.thumbnail_url == "https://cdn.example.com/t.jpg"

    async def test_delete_returns_removed_project(self, store, supabase):
        project = await seed_project(store)
        deleted = await store.delete_project(project.id, user_id="user-1")

        assert deleted.id == project.id
        assert supabase.rows(PROJECTS_TABLE) == []

    async def test_delete_scoped_to_owner(self, store):
        project = await seed_project(store)
        with pytest.raises(ProjectNotFoundError):
            await store.delete_project(project.id, user_id="intruder")


class TestRetry:
    async def test_retry_copies_inputs_and_scenes(self, store, make_scene):
        failed = await seed_project(
            store,
            style="reel",
            voice_type="male",
            has_captions=True,
            narration_script="Hello.",
            scenes=[make_scene(1), make_scene(2)],
        )
        await store.transition(failed.id, ProjectStatus.FAILED, error_message="boom")
        failed = await store.get_project(failed.id)

        retry = await store.create_retry(failed)

        assert retry.id != failed.id
        assert retry.status == ProjectStatus.PENDING
        assert retry.error_message is None
        assert retry.style == "reel"
        assert retry.has_audio is True
        assert retry.has_captions is True
        assert retry.narration_script == "Hello."
        assert [s.footage_url for s in retry.scenes] == [s.footage_url for s in failed.scenes]
        assert (await store.get_project(failed.id)).status == ProjectStatus.FAILED

    async def test_retry_without_voice_has_no_audio(self, store):
        failed = await seed_project(store, voice_type="none")
        assert (await store.create_retry(failed)).has_audio is False


class TestValidateVideoUrl:
    def test_accepts_http_urls(self):
        assert validate_video_url("https://cdn.example.com/v.mp4") == "https://cdn.example.com/v.mp4"
        assert validate_video_url(None) is None

    @pytest.mark.parametrize("url", ["javascript:alert(1)", "/relative/v.mp4", "https://"])
    def test_rejects_everything_else(self, url):
        with pytest.raises(ValueError):
            validate_video_url(url)
