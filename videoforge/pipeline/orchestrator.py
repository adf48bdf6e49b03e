"""
VideoGenerationService: main pipeline orchestrator.

Chains the steps for one render attempt, strictly in order:
  Step 1: Scene Generation (Gemini)
  Step 2: Footage Resolution (Pexels)
  Step 3: Narration (ElevenLabs, optional, non-fatal)
  Step 4: Render Submission (Shotstack)
  Step 5: Status Polling (Shotstack, background)

The project row is the source of truth at every step. Any fatal error marks
the project failed with the error message; narration problems only add a
warning and the video renders without audio. Notifications are dispatched
in the background after each status change and never block the chain.
"""

import asyncio
import logging
from collections import OrderedDict
from typing import Optional

import httpx
from supabase import AsyncClient

from ..elevenlabs import ElevenLabsClient
from ..gemini import GeminiClient
from ..metrics import MetricsCollector
from ..pexels import PexelsClient
from ..shotstack import ShotstackClient
from .config import PipelineSettings
from .errors import NarrationError, PipelineError, ProjectStoreError
from .footage import FootageResolver
from .health import ProviderHealthService
from .models import (
    Milestone,
    PipelineResult,
    ProjectStatus,
    RenderStartRequest,
    SceneDescriptor,
    VideoProject,
)
from .narration import NarrationSynthesizer, wants_narration
from .notifications import NotificationEmitter, NotificationStore
from .project_service import ProjectStore
from .render import RenderSubmitter
from .scene_gen import SceneGenerator
from .status import RenderStatusPoller
from .storage import R2Storage, StorageError

logger = logging.getLogger(__name__)

TITLE_LENGTH = 50
MAX_RESULTS = 500   # run results kept in memory for get_status, oldest evicted first


def default_title(prompt: str) -> str:
    prompt = prompt.strip()
    return prompt if len(prompt) <= TITLE_LENGTH else prompt[:TITLE_LENGTH].rstrip() + "..."


def assign_media(scenes: list[SceneDescriptor], media_urls: list[str]) -> list[SceneDescriptor]:
    """Attach uploaded clips to scenes in order; extra scenes keep searching stock footage."""
    assigned = []
    for i, scene in enumerate(scenes):
        if i < len(media_urls) and media_urls[i]:
            assigned.append(scene.model_copy(update={"footage_url": media_urls[i]}))
        else:
            assigned.append(scene)
    return assigned


class VideoGenerationService:
    """
    Production pipeline orchestrator.

    Usage:
        service = VideoGenerationService.from_settings(settings, http, supabase)

        project = await service.start_render(request)     # returns immediately
        result = await service.wait_for(project.id)       # tests / scripts
    """

    def __init__(
        self,
        scenes: SceneGenerator,
        footage: FootageResolver,
        narration: NarrationSynthesizer,
        render: RenderSubmitter,
        poller: RenderStatusPoller,
        store: ProjectStore,
        notifier: NotificationEmitter,
        storage: R2Storage,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.scenes = scenes
        self.footage = footage
        self.narration = narration
        self.render = render
        self.poller = poller
        self.store = store
        self.notifier = notifier
        self.storage = storage
        self.metrics = metrics or MetricsCollector()
        self._tasks: dict[str, asyncio.Task] = {}
        self._results: OrderedDict[str, PipelineResult] = OrderedDict()

    @classmethod
    def from_settings(
        cls,
        settings: PipelineSettings,
        http: httpx.AsyncClient,
        supabase: AsyncClient,
        metrics: Optional[MetricsCollector] = None,
    ) -> "VideoGenerationService":
        """Wire every step from settings and shared clients."""
        metrics = metrics or MetricsCollector()
        gemini = GeminiClient(http, settings.gemini_api_key, settings.gemini_api_base, settings.gemini_model)
        pexels = PexelsClient(http, settings.pexels_api_key, settings.pexels_api_base)
        elevenlabs = ElevenLabsClient(http, settings.elevenlabs_api_key, settings.elevenlabs_api_base)
        shotstack = ShotstackClient(http, settings.shotstack_api_key, settings.shotstack_api_base)

        store = ProjectStore(supabase)
        notifier = NotificationEmitter(NotificationStore(supabase), metrics)
        poller = RenderStatusPoller(
            shotstack,
            store,
            notifier,
            metrics,
            interval=settings.poll_interval_seconds,
            max_seconds=settings.poll_max_seconds,
            max_consecutive_errors=settings.poll_max_consecutive_errors,
        )
        return cls(
            scenes=SceneGenerator(gemini, metrics),
            footage=FootageResolver(pexels, metrics),
            narration=NarrationSynthesizer(elevenlabs, gemini, metrics),
            render=RenderSubmitter(shotstack, metrics),
            poller=poller,
            store=store,
            notifier=notifier,
            storage=R2Storage(settings),
            metrics=metrics,
        )

    @staticmethod
    def health_service(
        settings: PipelineSettings,
        http: httpx.AsyncClient,
        metrics: Optional[MetricsCollector] = None,
    ) -> ProviderHealthService:
        return ProviderHealthService(
            GeminiClient(http, settings.gemini_api_key, settings.gemini_api_base, settings.gemini_model),
            PexelsClient(http, settings.pexels_api_key, settings.pexels_api_base),
            ElevenLabsClient(http, settings.elevenlabs_api_key, settings.elevenlabs_api_base),
            ShotstackClient(http, settings.shotstack_api_key, settings.shotstack_api_base),
            metrics,
        )

    # ── Status ───────────────────────────────────────────────────────────

    def _record(self, result: PipelineResult) -> PipelineResult:
        self._results[result.project_id] = result
        self._results.move_to_end(result.project_id)
        while len(self._results) > MAX_RESULTS:
            self._results.popitem(last=False)
        return result

    async def get_status(
        self, project_id: str, user_id: Optional[str] = None, refresh: bool = False
    ) -> PipelineResult:
        """
        Current state of a project, plus any warnings from its run.

        With `refresh`, a processing project is checked against the render
        provider once before answering.
        """
        project = await self.store.get_project(project_id, user_id=user_id)
        if refresh and project.status == ProjectStatus.PROCESSING and project.render_id:
            await self.poller.check_once(project_id, project.render_id)
            project = await self.store.get_project(project_id, user_id=user_id)

        previous = self._results.get(project_id)
        return PipelineResult(
            project_id=project.id,
            status=project.status,
            render_id=project.render_id,
            video_url=project.video_url,
            error=project.error_message,
            provider=previous.provider if previous else None,
            remediation=previous.remediation if previous else None,
            warnings=list(previous.warnings) if previous else [],
        )

    # ── Failure ──────────────────────────────────────────────────────────

    async def _fail(self, project: VideoProject, message: str, payload: Optional[dict] = None):
        """Persist failure and notify. A store outage here is logged, not raised."""
        try:
            applied = await self.store.transition(project.id, ProjectStatus.FAILED, error_message=message)
        except ProjectStoreError as e:
            logger.error(f"[{project.id}] could not persist failure '{message}': {e}")
            return
        if applied:
            self.metrics.inc_counter("pipeline.failed")
            self.notifier.dispatch(
                project.user_id, project.id, project.title, Milestone.FAILED,
                {"error": message, **(payload or {})},
            )

    # ── The Creation Flow ────────────────────────────────────────────────

    async def _prepare_scenes(
        self, project: VideoProject, media_urls: list[str], warnings: list[str]
    ) -> list[SceneDescriptor]:
        if project.scenes and all(s.footage_url for s in project.scenes):
            logger.info(f"[{project.id}] reusing {len(project.scenes)} resolved scenes")
            return list(project.scenes)

        scenes = project.scenes or await self.scenes.generate(project.prompt)
        scenes = assign_media(scenes, media_urls)

        resolution = await self.footage.resolve(scenes)
        if resolution.dropped:
            warnings.append(
                f"No footage found for {len(resolution.dropped)} of {len(scenes)} scenes; "
                "they were left out of the video."
            )
        await self.store.update_project(project.id, scenes=resolution.scenes)
        return resolution.scenes

    async def _narrate(
        self,
        project: VideoProject,
        scenes: list[SceneDescriptor],
        script: Optional[str],
        warnings: list[str],
    ) -> tuple[Optional[str], Optional[str]]:
        """Returns (narration_script, audio_url). Never raises for narration problems."""
        if not wants_narration(project.voice_type):
            return (script or None), None

        try:
            result = await self.narration.synthesize(project.voice_type, script=script, scenes=scenes)
        except NarrationError as e:
            logger.warning(f"[{project.id}] narration failed, rendering without audio: {e}")
            warnings.append(f"Narration unavailable, video rendered without audio: {e.message}")
            self.metrics.inc_counter("stage.narration.degraded")
            return (script or None), None

        try:
            audio_url = await self.storage.upload_narration(project.user_id, project.id, result.audio_base64)
        except StorageError as e:
            logger.warning(f"[{project.id}] narration upload failed, rendering without audio: {e}")
            warnings.append(f"Narration audio could not be stored, video rendered without audio: {e}")
            self.metrics.inc_counter("stage.narration.degraded")
            return result.narration_script, None

        return result.narration_script, audio_url

    async def run_pipeline(
        self,
        project: VideoProject,
        script: Optional[str] = None,
        captions_url: Optional[str] = None,
        media_urls: Optional[list[str]] = None,
        poll: bool = True,
    ) -> PipelineResult:
        """
        Run steps 1-4 for a pending project, then hand off to the poller.

        Returns:
            PipelineResult with status processing (render queued) or failed.
        """
        warnings: list[str] = []
        logger.info(f"[{project.id}] pipeline start: {project.prompt[:50]}")

        try:
            # Step 1 + 2
            scenes = await self._prepare_scenes(project, media_urls or [], warnings)

            # Step 3
            narration_script, audio_url = await self._narrate(
                project, scenes, script or project.narration_script, warnings
            )

            # Step 4
            submission = await self.render.submit(
                scenes,
                audio_url=audio_url,
                has_captions=project.has_captions,
                narration_script=narration_script,
                captions_url=captions_url,
                style=project.style,
                brand_colors=project.brand_colors,
                project_id=project.id,
            )
            await self.store.transition(
                project.id,
                ProjectStatus.PROCESSING,
                render_id=submission.render_id,
                duration=submission.duration,
                has_audio=submission.has_audio,
                has_captions=submission.has_captions,
                narration_script=narration_script,
                audio_url=audio_url,
            )
        except PipelineError as e:
            logger.error(f"[{project.id}] pipeline failed ({e.provider}): {e.message}")
            await self._fail(project, e.message, {"provider": e.provider, "remediation": e.remediation})
            return self._record(PipelineResult(
                project_id=project.id,
                status=ProjectStatus.FAILED,
                error=e.message,
                provider=e.provider,
                remediation=e.remediation,
                warnings=warnings,
            ))
        except Exception as e:
            logger.exception(f"[{project.id}] pipeline crashed: {e}")
            await self._fail(project, f"Unexpected error: {e}")
            raise

        self.metrics.inc_counter("pipeline.submitted")
        logger.info(f"[{project.id}] render {submission.render_id} queued ({submission.duration:g}s)")

        # Step 5
        if poll:
            self.poller.start(project.id, submission.render_id)

        return self._record(PipelineResult(
            project_id=project.id,
            status=ProjectStatus.PROCESSING,
            render_id=submission.render_id,
            warnings=warnings,
        ))

    # ── Entry points ─────────────────────────────────────────────────────

    def _launch(self, project: VideoProject, **kwargs) -> asyncio.Task:
        task = asyncio.create_task(self.run_pipeline(project, **kwargs), name=f"pipeline:{project.id}")
        self._tasks[project.id] = task
        task.add_done_callback(lambda t, pid=project.id: self._on_done(pid, t))
        return task

    def _on_done(self, project_id: str, task: asyncio.Task):
        if self._tasks.get(project_id) is task:
            del self._tasks[project_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"[{project_id}] pipeline task ended with {task.exception()!r}")

    async def start_render(self, request: RenderStartRequest) -> VideoProject:
        """Create the project row, announce it, and run the pipeline in the background."""
        project = await self.store.create_project(
            user_id=request.user_id,
            title=request.title or default_title(request.prompt),
            prompt=request.prompt,
            style=request.style,
            media_source=request.media_source,
            brand_colors=request.brand_colors,
            voice_type=request.voice_type,
            has_audio=wants_narration(request.voice_type),
            has_captions=request.has_captions,
            narration_script=request.script,
        )
        self.metrics.inc_counter("pipeline.started")
        self.notifier.dispatch(project.user_id, project.id, project.title, Milestone.STARTED)
        self._launch(
            project,
            script=request.script,
            captions_url=request.captions_url,
            media_urls=request.media_urls,
        )
        return project

    async def retry_project(self, project_id: str, user_id: str) -> VideoProject:
        """
        Start a new attempt from a failed project.

        The failed row is left as history; the new row reuses its scenes.
        """
        previous = await self.store.get_project(project_id, user_id=user_id)
        if previous.status != ProjectStatus.FAILED:
            raise ValueError(f"Only failed projects can be retried (project is {previous.status.value})")

        project = await self.store.create_retry(previous)
        logger.info(f"[{project.id}] retry of {previous.id}")
        self.metrics.inc_counter("pipeline.retried")
        self.notifier.dispatch(project.user_id, project.id, project.title, Milestone.STARTED)
        self._launch(project)
        return project

    async def delete_project(self, project_id: str, user_id: str) -> VideoProject:
        self.cancel_polling(project_id)
        project = await self.store.delete_project(project_id, user_id=user_id)
        self._results.pop(project_id, None)
        self.notifier.dispatch(project.user_id, project.id, project.title, Milestone.DELETED)
        return project

    def cancel_polling(self, project_id: str) -> bool:
        """Stop watching a render. Shotstack keeps rendering."""
        cancelled = self.poller.cancel(project_id)
        if cancelled:
            logger.info(f"[{project_id}] polling cancelled")
        return cancelled

    async def resume_polling(self) -> int:
        """Pick up renders that were in flight when the worker last stopped."""
        active = await self.store.list_active()
        for project in active:
            self.poller.start(project.id, project.render_id)
        if active:
            logger.info(f"Resumed polling for {len(active)} in-flight renders")
        return len(active)

    async def wait_for(self, project_id: str) -> PipelineResult:
        """Wait until the pipeline and its poller are done, then report status."""
        task = self._tasks.get(project_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        poll_task = self.poller.task_for(project_id)
        if poll_task is not None:
            await asyncio.gather(poll_task, return_exceptions=True)
        await self.notifier.drain()
        return await self.get_status(project_id)

    async def shutdown(self):
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.poller.shutdown()
        await self.notifier.drain()
