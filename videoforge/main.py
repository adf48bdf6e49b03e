import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from supabase import acreate_client

from .auth_middleware import WorkerAuthMiddleware
from .metrics import MetricsCollector
from .pipeline import (
    PipelineSettings,
    VideoGenerationService,
    health_router,
    notification_router,
    pipeline_router,
    project_router,
)
from .pipeline.errors import ProjectStoreError
from .pipeline.notifications import NotificationStore

load_dotenv()

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    settings: PipelineSettings = app.state.settings
    logger.info(f"Worker starting up ({settings.environment})...")
    if not settings.supabase_url or not settings.supabase_service_role_key:
        raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")

    http = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    supabase = await acreate_client(settings.supabase_url, settings.supabase_service_role_key)
    metrics: MetricsCollector = app.state.metrics

    service = VideoGenerationService.from_settings(settings, http, supabase, metrics)
    app.state.service = service
    app.state.notification_store = NotificationStore(supabase)
    app.state.health = VideoGenerationService.health_service(settings, http, metrics)

    # Renders that were in flight when the worker last stopped
    try:
        await service.resume_polling()
    except ProjectStoreError as e:
        logger.warning(f"Could not resume in-flight renders: {e}")

    yield

    logger.info("Worker shutting down...")
    await service.shutdown()
    await http.aclose()


def create_app(settings: Optional[PipelineSettings] = None) -> FastAPI:
    settings = settings or PipelineSettings.from_env()

    app = FastAPI(title="videoforge", lifespan=lifespan)
    app.state.settings = settings
    app.state.metrics = MetricsCollector()
    app.add_middleware(
        WorkerAuthMiddleware,
        secret=settings.worker_shared_secret,
        environment=settings.environment,
    )
    app.include_router(pipeline_router)
    app.include_router(project_router)
    app.include_router(notification_router)
    app.include_router(health_router)

    @app.get("/health")
    def health_check(request: Request):
        """Verify the worker is running and which provider keys are configured."""
        s: PipelineSettings = request.app.state.settings
        return {
            "status": "ok",
            "gemini_api_key_set": bool(s.gemini_api_key),
            "pexels_api_key_set": bool(s.pexels_api_key),
            "elevenlabs_api_key_set": bool(s.elevenlabs_api_key),
            "shotstack_api_key_set": bool(s.shotstack_api_key),
            "supabase_url_set": bool(s.supabase_url),
        }

    @app.get("/metrics")
    def metrics_endpoint(request: Request):
        """Return a snapshot of all worker metrics."""
        metrics: MetricsCollector = request.app.state.metrics
        service: Optional[VideoGenerationService] = getattr(request.app.state, "service", None)
        if service is not None:
            metrics.set_gauge("pending_notifications", service.notifier.pending)
            metrics.set_gauge("polling_projects", len(service.poller.active))
        return metrics.get_snapshot()

    return app


app = create_app()


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    uvicorn.run("videoforge.main:app", host="0.0.0.0", port=port, reload=True)
