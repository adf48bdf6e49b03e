"""
FastAPI routes for the video render pipeline.

Pipeline Endpoints:
  POST   /pipeline/render             Start a render attempt (returns the pending project)
  GET    /pipeline/status/{id}        Project status, warnings, ?refresh=true checks Shotstack now
  DELETE /pipeline/poll/{id}          Stop polling a render (the render keeps going)

Project Endpoints:
  GET    /projects                    List user's projects
  GET    /projects/recent             Latest few projects
  GET    /projects/{id}               Get one project
  POST   /projects/{id}/retry         New attempt from a failed project
  DELETE /projects/{id}               Delete a project

Notification Endpoints:
  GET    /notifications               List user's notifications
  POST   /notifications/read-all      Mark all read
  POST   /notifications/{id}/read     Mark one read
  DELETE /notifications/{id}          Delete one

Health:
  GET    /health/providers            Validate every provider API key
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from .errors import (
    InsufficientCreditsError,
    PipelineError,
    ProjectNotFoundError,
    ProjectStoreError,
)
from .health import ProviderHealthService
from .models import (
    ApiKeyStatus,
    Notification,
    PipelineResult,
    RenderStartRequest,
    VideoProject,
)
from .notifications import NotificationStore
from .orchestrator import VideoGenerationService

logger = logging.getLogger(__name__)


def get_service(request: Request) -> VideoGenerationService:
    return request.app.state.service


def get_notification_store(request: Request) -> NotificationStore:
    return request.app.state.notification_store


def get_health_service(request: Request) -> ProviderHealthService:
    return request.app.state.health


def _http_error(e: Exception) -> HTTPException:
    """Map pipeline errors to HTTP status codes."""
    if isinstance(e, ProjectNotFoundError):
        return HTTPException(status_code=404, detail=e.to_dict())
    if isinstance(e, InsufficientCreditsError):
        return HTTPException(status_code=402, detail=e.to_dict())
    if isinstance(e, ProjectStoreError):
        return HTTPException(status_code=503, detail=e.to_dict())
    if isinstance(e, PipelineError):
        return HTTPException(status_code=502, detail=e.to_dict())
    return HTTPException(status_code=500, detail=str(e))


# ═════════════════════════════════════════════════════════════════════════════
# Pipeline Router
# ═════════════════════════════════════════════════════════════════════════════

pipeline_router = APIRouter(prefix="/pipeline", tags=["pipeline"])


@pipeline_router.post("/render", response_model=VideoProject, status_code=202)
async def start_render(request: RenderStartRequest, service: VideoGenerationService = Depends(get_service)):
    """Create the project and run the pipeline in the background."""
    try:
        return await service.start_render(request)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PipelineError as e:
        logger.error(f"Render start failed: {e}")
        raise _http_error(e)


@pipeline_router.get("/status/{project_id}", response_model=PipelineResult)
async def get_pipeline_status(
    project_id: str,
    user_id: str,
    refresh: bool = False,
    service: VideoGenerationService = Depends(get_service),
):
    try:
        return await service.get_status(project_id, user_id=user_id, refresh=refresh)
    except PipelineError as e:
        raise _http_error(e)


@pipeline_router.delete("/poll/{project_id}")
async def cancel_polling(project_id: str, service: VideoGenerationService = Depends(get_service)):
    """Stop polling. Shotstack is not told to stop rendering."""
    return {"project_id": project_id, "cancelled": service.cancel_polling(project_id)}


# ═════════════════════════════════════════════════════════════════════════════
# Project Router
# ═════════════════════════════════════════════════════════════════════════════

project_router = APIRouter(prefix="/projects", tags=["projects"])


@project_router.get("", response_model=list[VideoProject])
async def list_projects(user_id: str, service: VideoGenerationService = Depends(get_service)):
    """List all projects for a user, newest first."""
    try:
        return await service.store.list_projects(user_id)
    except PipelineError as e:
        raise _http_error(e)


@project_router.get("/recent", response_model=list[VideoProject])
async def recent_projects(user_id: str, limit: int = 3, service: VideoGenerationService = Depends(get_service)):
    try:
        return await service.store.recent_projects(user_id, limit=limit)
    except PipelineError as e:
        raise _http_error(e)


@project_router.get("/{project_id}", response_model=VideoProject)
async def get_project(project_id: str, user_id: str, service: VideoGenerationService = Depends(get_service)):
    try:
        return await service.store.get_project(project_id, user_id=user_id)
    except PipelineError as e:
        raise _http_error(e)


@project_router.post("/{project_id}/retry", response_model=VideoProject, status_code=202)
async def retry_project(project_id: str, user_id: str, service: VideoGenerationService = Depends(get_service)):
    """
    Start a fresh attempt from a failed project.

    Errors:
      - 404: Project not found
      - 409: Project is not failed
    """
    try:
        return await service.retry_project(project_id, user_id)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except PipelineError as e:
        raise _http_error(e)


@project_router.delete("/{project_id}")
async def delete_project(project_id: str, user_id: str, service: VideoGenerationService = Depends(get_service)):
    try:
        project = await service.delete_project(project_id, user_id)
    except PipelineError as e:
        raise _http_error(e)
    return {"deleted": project.id}


# ═════════════════════════════════════════════════════════════════════════════
# Notification Router
# ═════════════════════════════════════════════════════════════════════════════

notification_router = APIRouter(prefix="/notifications", tags=["notifications"])


@notification_router.get("", response_model=list[Notification])
async def list_notifications(
    user_id: str,
    unread_only: bool = False,
    store: NotificationStore = Depends(get_notification_store),
):
    try:
        return await store.list_for_user(user_id, unread_only=unread_only)
    except PipelineError as e:
        raise _http_error(e)


@notification_router.post("/read-all")
async def mark_all_read(user_id: str, store: NotificationStore = Depends(get_notification_store)):
    try:
        return {"updated": await store.mark_all_read(user_id)}
    except PipelineError as e:
        raise _http_error(e)


@notification_router.post("/{notification_id}/read")
async def mark_read(notification_id: str, user_id: str, store: NotificationStore = Depends(get_notification_store)):
    try:
        updated = await store.mark_read(notification_id, user_id)
    except PipelineError as e:
        raise _http_error(e)
    if not updated:
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"id": notification_id, "is_read": True}


@notification_router.delete("/{notification_id}")
async def delete_notification(
    notification_id: str,
    user_id: str,
    store: NotificationStore = Depends(get_notification_store),
):
    try:
        deleted = await store.delete(notification_id, user_id)
    except PipelineError as e:
        raise _http_error(e)
    if not deleted:
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"deleted": notification_id}


# ═════════════════════════════════════════════════════════════════════════════
# Health Router
# ═════════════════════════════════════════════════════════════════════════════

health_router = APIRouter(prefix="/health", tags=["health"])


@health_router.get("/providers")
async def provider_health(health: ProviderHealthService = Depends(get_health_service)):
    """Validate every provider API key (one retry each)."""
    results: dict[str, ApiKeyStatus] = await health.check_all()
    return {
        "all_valid": all(status.is_valid for status in results.values()),
        "providers": {name: status.model_dump() for name, status in results.items()},
        "message": health.help_message(results),
    }
