"""
Step 5: Render Status Polling.

Shotstack reports queued / fetching / rendering / saving / done / failed.
`map_provider_status` folds that into our four project statuses; anything
unrecognized is treated as still processing.

The poller asks once every `interval` seconds until the project reaches a
terminal status, the wall-clock ceiling passes, or too many status checks
fail in a row. Each loop is an asyncio task that can be cancelled; a
cancelled poll leaves the render running on Shotstack's side.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, Union

import httpx

from ..metrics import MetricsCollector
from ..shotstack import ShotstackClient, ShotstackError
from .errors import ProjectNotFoundError, ProjectStoreError, RenderStatusError
from .models import Milestone, ProjectStatus, RenderStatusUpdate, VideoProject
from .notifications import NotificationEmitter
from .project_service import ProjectStore, validate_video_url

logger = logging.getLogger(__name__)

PROVIDER_STATUS_MAP = {
    "queued": ProjectStatus.PENDING,
    "fetching": ProjectStatus.PROCESSING,
    "rendering": ProjectStatus.PROCESSING,
    "saving": ProjectStatus.PROCESSING,
    "done": ProjectStatus.COMPLETED,
    "failed": ProjectStatus.FAILED,
}

OnUpdate = Callable[[RenderStatusUpdate], Union[None, Awaitable[None]]]


def map_provider_status(provider_status: Optional[str]) -> ProjectStatus:
    """Provider status → project status. Unknown values map to processing."""
    return PROVIDER_STATUS_MAP.get((provider_status or "").strip().lower(), ProjectStatus.PROCESSING)


def _usable_url(url: Optional[str]) -> bool:
    try:
        return validate_video_url(url) is not None
    except ValueError:
        return False


class RenderStatusPoller:
    def __init__(
        self,
        shotstack: ShotstackClient,
        store: ProjectStore,
        notifier: NotificationEmitter,
        metrics: Optional[MetricsCollector] = None,
        interval: float = 5.0,
        max_seconds: float = 30 * 60,
        max_consecutive_errors: int = 3,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._shotstack = shotstack
        self._store = store
        self._notifier = notifier
        self._metrics = metrics or MetricsCollector()
        self.interval = interval
        self.max_seconds = max_seconds
        self.max_consecutive_errors = max_consecutive_errors
        self._sleep = sleep
        self._clock = clock
        self._tasks: dict[str, asyncio.Task] = {}

    # ═════════════════════════════════════════════════════════════════════
    # One check
    # ═════════════════════════════════════════════════════════════════════

    async def _fetch(self, render_id: str, project_id: str) -> dict:
        try:
            with self._metrics.timed("shotstack.status"):
                return await self._shotstack.get_render(render_id)
        except (ShotstackError, httpx.HTTPError) as e:
            self._metrics.record_error("shotstack", type(e).__name__, str(e), project_id)
            raise RenderStatusError(f"Render status check failed: {e}") from e

    async def check_once(self, project_id: str, render_id: str) -> RenderStatusUpdate:
        """
        Query the render once and apply the result to the project.

        A terminal project is never touched. "done" without a URL is logged
        and left for the next poll rather than marked completed.

        Raises:
            RenderStatusError: the provider could not be queried.
            ProjectNotFoundError: the project was deleted.
        """
        response = await self._fetch(render_id, project_id)
        provider_status = str(response.get("status") or "")
        status = map_provider_status(provider_status)
        self._metrics.inc_counter(f"poll.{provider_status or 'unknown'}")
        if provider_status and provider_status.lower() not in PROVIDER_STATUS_MAP:
            logger.warning(f"Unrecognized render status '{provider_status}' for {render_id}, treating as processing")

        update = RenderStatusUpdate(
            project_id=project_id,
            render_id=render_id,
            provider_status=provider_status,
            status=status,
            url=response.get("url"),
            thumbnail=response.get("thumbnail") or response.get("poster"),
            error=response.get("error"),
        )

        project = await self._store.get_project(project_id)
        update.project_status = project.status

        if project.is_terminal:
            if status != project.status:
                logger.info(
                    f"Ignoring stale '{provider_status}' for project {project_id}, "
                    f"already {project.status.value}"
                )
            return update

        if status == ProjectStatus.COMPLETED and not _usable_url(update.url):
            logger.error(
                f"Render {render_id} reported done without a usable URL ({update.url!r}), "
                f"leaving project {project_id} unchanged"
            )
            self._metrics.record_error("shotstack", "MissingOutputUrl", f"done without url: {render_id}", project_id)
            update.status = ProjectStatus.PROCESSING
            return update

        if status == ProjectStatus.COMPLETED:
            update.applied = await self._store.transition(
                project_id,
                ProjectStatus.COMPLETED,
                video_url=update.url,
                thumbnail_url=update.thumbnail,
            )
            if update.applied:
                self._notifier.dispatch(
                    project.user_id, project_id, project.title, Milestone.COMPLETED,
                    {"video_url": update.url},
                )
        elif status == ProjectStatus.FAILED:
            update.error = update.error or "Render failed without an error message"
            update.applied = await self._store.transition(
                project_id, ProjectStatus.FAILED, error_message=update.error,
            )
            if update.applied:
                self._notifier.dispatch(
                    project.user_id, project_id, project.title, Milestone.FAILED,
                    {"error": update.error},
                )
        elif status == ProjectStatus.PROCESSING and project.status == ProjectStatus.PENDING:
            update.applied = await self._store.transition(project_id, ProjectStatus.PROCESSING)

        if update.applied:
            update.project_status = status
        return update

    # ═════════════════════════════════════════════════════════════════════
    # Loop
    # ═════════════════════════════════════════════════════════════════════

    async def _fail(self, project_id: str, message: str):
        try:
            project: VideoProject = await self._store.get_project(project_id)
            if await self._store.transition(project_id, ProjectStatus.FAILED, error_message=message):
                self._notifier.dispatch(
                    project.user_id, project_id, project.title, Milestone.FAILED, {"error": message},
                )
        except ProjectStoreError as e:
            logger.error(f"Could not mark project {project_id} failed ({message}): {e}")

    async def poll_until_terminal(
        self,
        project_id: str,
        render_id: str,
        on_update: Optional[OnUpdate] = None,
    ) -> Optional[RenderStatusUpdate]:
        """
        Poll on a fixed interval until the project is terminal.

        Gives up (marking the project failed) after `max_seconds` or after
        `max_consecutive_errors` failed checks in a row.

        Returns the last update, or None if polling stopped without one.
        """
        started = self._clock()
        errors = 0
        last: Optional[RenderStatusUpdate] = None
        self._metrics.add_gauge("pollers.active", 1)
        logger.info(f"Polling render {render_id} for project {project_id} every {self.interval:g}s")

        try:
            while True:
                try:
                    last = await self.check_once(project_id, render_id)
                    errors = 0
                except ProjectNotFoundError:
                    logger.warning(f"Project {project_id} disappeared, stopping poll for {render_id}")
                    return last
                except Exception as e:
                    errors += 1
                    if isinstance(e, (RenderStatusError, ProjectStoreError)):
                        logger.warning(
                            f"Status check {errors}/{self.max_consecutive_errors} failed for {render_id}: {e}"
                        )
                    else:
                        self._metrics.record_error("pipeline", type(e).__name__, str(e), project_id)
                        logger.exception(
                            f"Status check {errors}/{self.max_consecutive_errors} for {render_id} "
                            f"raised unexpectedly: {e!r}"
                        )
                    if errors >= self.max_consecutive_errors:
                        await self._fail(
                            project_id, f"Render status check failed {errors} times in a row: {e}"
                        )
                        return last
                else:
                    if on_update is not None:
                        result = on_update(last)
                        if asyncio.iscoroutine(result):
                            await result
                    if last.is_final:
                        logger.info(f"Project {project_id} finished as {last.project_status.value}")
                        return last

                elapsed = self._clock() - started
                if elapsed >= self.max_seconds:
                    self._metrics.inc_counter("poll.timeout")
                    await self._fail(project_id, f"Render timed out after {int(self.max_seconds)} seconds")
                    return last

                await self._sleep(self.interval)
        except asyncio.CancelledError:
            logger.info(f"Polling cancelled for project {project_id} (render {render_id} keeps running)")
            raise
        finally:
            self._metrics.add_gauge("pollers.active", -1)

    # ═════════════════════════════════════════════════════════════════════
    # Task tracking
    # ═════════════════════════════════════════════════════════════════════

    def start(self, project_id: str, render_id: str, on_update: Optional[OnUpdate] = None) -> asyncio.Task:
        """Run `poll_until_terminal` in the background; one poller per project."""
        existing = self._tasks.get(project_id)
        if existing is not None and not existing.done():
            return existing

        task = asyncio.create_task(
            self.poll_until_terminal(project_id, render_id, on_update),
            name=f"poll:{project_id}",
        )
        self._tasks[project_id] = task
        task.add_done_callback(lambda t, pid=project_id: self._on_done(pid, t))
        return task

    def _on_done(self, project_id: str, task: asyncio.Task):
        if self._tasks.get(project_id) is task:
            del self._tasks[project_id]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._metrics.record_error("pipeline", type(exc).__name__, str(exc), project_id)
            logger.error(f"Poller for project {project_id} crashed: {exc!r}")

    def cancel(self, project_id: str) -> bool:
        """Stop polling a project. The render itself is not cancelled."""
        task = self._tasks.pop(project_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def task_for(self, project_id: str) -> Optional[asyncio.Task]:
        return self._tasks.get(project_id)

    def is_polling(self, project_id: str) -> bool:
        task = self._tasks.get(project_id)
        return task is not None and not task.done()

    @property
    def active(self) -> list[str]:
        return [pid for pid, task in self._tasks.items() if not task.done()]

    async def shutdown(self):
        """Cancel every poller and wait for them to unwind."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
