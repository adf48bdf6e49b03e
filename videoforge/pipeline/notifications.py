"""
Notification Emitter.

One row in `notifications` per project milestone (started, completed,
failed, deleted), keyed by `{project_id}:{milestone}` in the metadata so a
repeated emit is a no-op. Writes are best-effort: a failure is logged and
counted, never raised into the render flow.

`dispatch()` runs the write as a tracked background task so the caller's
status update does not wait on it; `drain()` waits for whatever is still
in flight (shutdown, tests).
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Union
from uuid import uuid4

import httpx
from postgrest.exceptions import APIError
from supabase import AsyncClient

from ..metrics import MetricsCollector
from .errors import NotificationStoreError
from .models import Milestone, Notification, NotificationType

logger = logging.getLogger(__name__)

NOTIFICATIONS_TABLE = "notifications"
WRITE_ATTEMPTS = 2

Acknowledge = Callable[[Notification], Union[None, Awaitable[None]]]

MILESTONE_COPY = {
    Milestone.STARTED: ("Video Generation Started", 'Your video "{title}" is being generated.'),
    Milestone.COMPLETED: ("Video Ready", 'Your video "{title}" is ready to view.'),
    Milestone.FAILED: ("Video Generation Failed", 'We encountered an issue generating "{title}".'),
    Milestone.DELETED: ("Video Deleted", 'Video "{title}" has been deleted.'),
}


def dedupe_key(project_id: str, milestone: Milestone) -> str:
    return f"{project_id}:{Milestone(milestone).value}"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ═════════════════════════════════════════════════════════════════════════════
# Store
# ═════════════════════════════════════════════════════════════════════════════

class NotificationStore:
    """CRUD over the notifications table."""

    def __init__(self, client: AsyncClient):
        self._sb = client

    def _table(self):
        return self._sb.table(NOTIFICATIONS_TABLE)

    async def _execute(self, query, action: str):
        try:
            return await query.execute()
        except (APIError, httpx.HTTPError) as e:
            raise NotificationStoreError(f"Failed to {action}: {e}") from e

    async def insert(self, row: dict) -> Notification:
        result = await self._execute(self._table().insert(row), "create notification")
        return Notification.model_validate(result.data[0] if result.data else row)

    async def find_by_dedupe_key(self, key: str) -> Optional[Notification]:
        query = self._table().select("*").eq("metadata->>dedupe_key", key).limit(1)
        result = await self._execute(query, "look up notification")
        return Notification.model_validate(result.data[0]) if result.data else None

    async def list_for_user(self, user_id: str, unread_only: bool = False) -> list[Notification]:
        query = self._table().select("*").eq("user_id", user_id)
        if unread_only:
            query = query.eq("is_read", False)
        result = await self._execute(query.order("created_at", desc=True), "list notifications")
        return [Notification.model_validate(row) for row in result.data or []]

    async def unread_count(self, user_id: str) -> int:
        return len(await self.list_for_user(user_id, unread_only=True))

    async def mark_read(self, notification_id: str, user_id: str) -> bool:
        query = self._table().update({"is_read": True}).eq("id", notification_id).eq("user_id", user_id)
        result = await self._execute(query, "mark notification read")
        return bool(result.data)

    async def mark_all_read(self, user_id: str) -> int:
        query = self._table().update({"is_read": True}).eq("user_id", user_id).eq("is_read", False)
        result = await self._execute(query, "mark notifications read")
        return len(result.data or [])

    async def delete(self, notification_id: str, user_id: str) -> bool:
        query = self._table().delete().eq("id", notification_id).eq("user_id", user_id)
        result = await self._execute(query, "delete notification")
        return bool(result.data)


# ═════════════════════════════════════════════════════════════════════════════
# Emitter
# ═════════════════════════════════════════════════════════════════════════════

def _log_acknowledge(notification: Notification):
    logger.info(f"[notify] {notification.user_id}: {notification.title} - {notification.message}")


class NotificationEmitter:
    def __init__(
        self,
        store: NotificationStore,
        metrics: Optional[MetricsCollector] = None,
        acknowledge: Optional[Acknowledge] = None,
    ):
        self._store = store
        self._metrics = metrics or MetricsCollector()
        self._acknowledge = acknowledge or _log_acknowledge
        self._tasks: set[asyncio.Task] = set()

    def build_row(
        self,
        user_id: str,
        project_id: str,
        title: str,
        milestone: Milestone,
        payload: Optional[dict] = None,
    ) -> dict:
        milestone = Milestone(milestone)
        heading, template = MILESTONE_COPY[milestone]
        link = "/dashboard/videos" if milestone == Milestone.DELETED else f"/dashboard/videos/{project_id}"
        metadata = {
            **(payload or {}),
            "dedupe_key": dedupe_key(project_id, milestone),
            "timestamp": _now_iso(),
            "project_id": project_id,
            "milestone": milestone.value,
            "link": link,
        }
        return {
            "id": str(uuid4()),
            "user_id": user_id,
            "title": heading,
            "message": template.format(title=title or "Untitled"),
            "type": NotificationType.VIDEO.value,
            "is_read": False,
            "metadata": metadata,
            "created_at": metadata["timestamp"],
        }

    async def _write(self, row: dict) -> Notification:
        key = row["metadata"]["dedupe_key"]
        last_error: Optional[Exception] = None
        for attempt in range(WRITE_ATTEMPTS):
            try:
                existing = await self._store.find_by_dedupe_key(key)
                if existing is not None:
                    logger.info(f"Notification {key} already exists, skipping")
                    return existing
                return await self._store.insert(row)
            except NotificationStoreError as e:
                last_error = e
                logger.warning(f"Notification write {key} failed (attempt {attempt + 1}/{WRITE_ATTEMPTS}): {e}")
        raise last_error

    async def emit(
        self,
        user_id: str,
        project_id: str,
        title: str,
        milestone: Milestone,
        payload: Optional[dict] = None,
    ) -> Optional[Notification]:
        """
        Write the milestone notification and show the acknowledgment.

        Returns the stored (or already existing) notification, or None if
        the write failed. Never raises for store errors.
        """
        row = self.build_row(user_id, project_id, title, milestone, payload)
        try:
            notification = await self._write(row)
        except NotificationStoreError as e:
            self._metrics.record_error("supabase", type(e).__name__, f"notification: {e}", project_id)
            logger.error(f"Dropping {row['metadata']['dedupe_key']} notification: {e}")
            return None

        self._metrics.inc_counter(f"notifications.{Milestone(milestone).value}")
        try:
            result = self._acknowledge(notification)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.error(f"Notification acknowledgment failed for {notification.id}: {e}")
        return notification

    def dispatch(
        self,
        user_id: str,
        project_id: str,
        title: str,
        milestone: Milestone,
        payload: Optional[dict] = None,
    ) -> asyncio.Task:
        """Emit in a background task the caller does not await."""
        task = asyncio.create_task(
            self.emit(user_id, project_id, title, milestone, payload),
            name=f"notify:{dedupe_key(project_id, milestone)}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Notification task {task.get_name()} crashed: {exc!r}")

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self):
        """Wait for every dispatched notification to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
