"""
Project Store.

CRUD over the `video_projects` table. One row per render attempt; a retry
creates a new row that copies the inputs and resolved scenes.

Status changes go through `transition()`, which only applies when the row is
currently in one of the allowed source states. The check happens inside the
UPDATE itself (a filtered update), so two pollers racing on the same render
cannot both apply a terminal state and a stale poll can never move a
completed project back to processing.
"""

import logging
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlparse
from uuid import uuid4

import httpx
from postgrest.exceptions import APIError
from supabase import AsyncClient

from .errors import ProjectNotFoundError, ProjectStoreError
from .models import (
    ALLOWED_SOURCES,
    NO_VOICE,
    ProjectStatus,
    SceneDescriptor,
    VideoProject,
)

logger = logging.getLogger(__name__)

PROJECTS_TABLE = "video_projects"
RECENT_LIMIT = 3

# Columns a caller may change outside of a status transition
UPDATABLE_FIELDS = {
    "title",
    "prompt",
    "style",
    "media_source",
    "brand_colors",
    "voice_type",
    "thumbnail_url",
    "narration_script",
    "has_audio",
    "has_captions",
    "duration",
    "render_id",
    "audio_url",
    "scenes",
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def validate_video_url(url: Optional[str]) -> Optional[str]:
    """Accept only absolute http(s) URLs."""
    if not url:
        return None
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(f"Invalid video URL: {url[:100]}")
    return url


def _serialize_scenes(scenes: list) -> list[dict]:
    return [s.model_dump() if isinstance(s, SceneDescriptor) else dict(s) for s in scenes]


def _row_to_project(row: dict) -> VideoProject:
    data = dict(row)
    data["scenes"] = data.get("scenes") or []
    return VideoProject.model_validate(data)


class ProjectStore:
    def __init__(self, client: AsyncClient):
        self._sb = client

    def _table(self):
        return self._sb.table(PROJECTS_TABLE)

    async def _execute(self, query, action: str):
        try:
            return await query.execute()
        except (APIError, httpx.HTTPError) as e:
            logger.error(f"Project store {action} failed: {e}")
            raise ProjectStoreError(f"Failed to {action}: {e}") from e

    # ═════════════════════════════════════════════════════════════════════
    # Reads
    # ═════════════════════════════════════════════════════════════════════

    async def get_project(self, project_id: str, user_id: Optional[str] = None) -> VideoProject:
        """Fetch one project, optionally scoped to its owner."""
        query = self._table().select("*").eq("id", project_id)
        if user_id:
            query = query.eq("user_id", user_id)
        result = await self._execute(query.limit(1), "fetch project")
        if not result.data:
            raise ProjectNotFoundError(f"Project {project_id} not found")
        return _row_to_project(result.data[0])

    async def list_projects(self, user_id: str, limit: Optional[int] = None) -> list[VideoProject]:
        """A user's projects, newest first."""
        query = self._table().select("*").eq("user_id", user_id).order("created_at", desc=True)
        if limit:
            query = query.limit(limit)
        result = await self._execute(query, "list projects")
        return [_row_to_project(row) for row in result.data or []]

    async def recent_projects(self, user_id: str, limit: int = RECENT_LIMIT) -> list[VideoProject]:
        return await self.list_projects(user_id, limit=limit)

    async def list_active(self) -> list[VideoProject]:
        """Projects with a render in flight, used to resume polling after a restart."""
        query = (
            self._table()
            .select("*")
            .eq("status", ProjectStatus.PROCESSING.value)
        )
        result = await self._execute(query, "list active projects")
        return [_row_to_project(row) for row in result.data or [] if row.get("render_id")]

    # ═════════════════════════════════════════════════════════════════════
    # Writes
    # ═════════════════════════════════════════════════════════════════════

    async def create_project(
        self,
        user_id: str,
        title: str,
        prompt: str,
        style: Optional[str] = None,
        media_source: Optional[str] = None,
        brand_colors: Optional[str] = None,
        voice_type: Optional[str] = None,
        has_audio: bool = False,
        has_captions: bool = False,
        narration_script: Optional[str] = None,
        scenes: Optional[list[SceneDescriptor]] = None,
    ) -> VideoProject:
        """Insert a new pending project row for one render attempt."""
        if not user_id or not title or not prompt:
            raise ValueError("user_id, title and prompt are required to create a project")

        now = _now_iso()
        row = {
            "id": str(uuid4()),
            "user_id": user_id,
            "title": title,
            "prompt": prompt,
            "status": ProjectStatus.PENDING.value,
            "style": style,
            "media_source": media_source,
            "brand_colors": brand_colors,
            "voice_type": voice_type,
            "has_audio": bool(has_audio),
            "has_captions": bool(has_captions),
            "narration_script": narration_script or None,
            "scenes": _serialize_scenes(scenes or []),
            "created_at": now,
            "updated_at": now,
        }
        result = await self._execute(self._table().insert(row), "create project")
        created = result.data[0] if result.data else row
        logger.info(f"Created project {created['id']} for user {user_id}: {title}")
        return _row_to_project(created)

    async def update_project(self, project_id: str, **fields) -> None:
        """
        Update non-status fields.

        Status, video_url and error_message move together and only through
        `transition()`.
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Use transition() for {sorted(unknown)}")
        if not fields:
            return

        updates = dict(fields)
        if "scenes" in updates:
            updates["scenes"] = _serialize_scenes(updates["scenes"] or [])
        if "has_audio" in updates:
            updates["has_audio"] = bool(updates["has_audio"])
        if "has_captions" in updates:
            updates["has_captions"] = bool(updates["has_captions"])
        updates["updated_at"] = _now_iso()

        await self._execute(self._table().update(updates).eq("id", project_id), "update project")
        logger.info(f"Updated project {project_id}: {sorted(fields)}")

    async def transition(
        self,
        project_id: str,
        status: ProjectStatus,
        video_url: Optional[str] = None,
        error_message: Optional[str] = None,
        **fields,
    ) -> bool:
        """
        Move a project to `status` if its current status allows it.

        completed requires a video_url, failed requires an error_message; the
        other of the two is cleared so the row never carries both.

        Returns:
            True if the row changed, False if the guard rejected the move.

        Raises:
            ProjectNotFoundError: the project does not exist.
        """
        status = ProjectStatus(status)
        updates = {key: value for key, value in fields.items() if key in UPDATABLE_FIELDS}
        if "scenes" in updates:
            updates["scenes"] = _serialize_scenes(updates["scenes"] or [])

        if status == ProjectStatus.COMPLETED:
            if not video_url:
                raise ValueError("A completed project needs a video_url")
            updates["video_url"] = validate_video_url(video_url)
            updates["error_message"] = None
        elif status == ProjectStatus.FAILED:
            if not error_message:
                raise ValueError("A failed project needs an error_message")
            updates["error_message"] = error_message
            updates["video_url"] = None
        else:
            updates["video_url"] = None
            updates["error_message"] = None

        updates["status"] = status.value
        updates["updated_at"] = _now_iso()

        sources = sorted(s.value for s in ALLOWED_SOURCES[status])
        query = self._table().update(updates).eq("id", project_id).in_("status", sources)
        result = await self._execute(query, f"mark project {status.value}")

        if result.data:
            logger.info(f"Project {project_id} → {status.value}")
            return True

        current = await self.get_project(project_id)
        logger.info(
            f"Ignored transition of project {project_id} to {status.value} "
            f"(currently {current.status.value})"
        )
        return False

    async def delete_project(self, project_id: str, user_id: Optional[str] = None) -> VideoProject:
        """Delete a project and return the removed row."""
        project = await self.get_project(project_id, user_id=user_id)
        await self._execute(self._table().delete().eq("id", project_id), "delete project")
        logger.info(f"Deleted project {project_id}")
        return project

    async def create_retry(self, project: VideoProject) -> VideoProject:
        """New pending row with the same inputs and the already-resolved scenes."""
        return await self.create_project(
            user_id=project.user_id,
            title=project.title,
            prompt=project.prompt,
            style=project.style,
            media_source=project.media_source,
            brand_colors=project.brand_colors,
            voice_type=project.voice_type,
            has_audio=bool(project.voice_type) and project.voice_type.lower() != NO_VOICE,
            has_captions=project.has_captions,
            narration_script=project.narration_script,
            scenes=project.scenes,
        )
