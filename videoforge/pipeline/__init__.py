"""
Video Render Pipeline

Prompt → video orchestration:
  Scene Gen (Gemini) → Footage (Pexels) → Narration (ElevenLabs, optional)
  → Render (Shotstack) → Status Polling → Notifications
Projects and notifications persist in Supabase.
"""

from .config import PipelineSettings
from .orchestrator import VideoGenerationService
from .routes import health_router, notification_router, pipeline_router, project_router
from .models import ProjectStatus
from .status import map_provider_status

__all__ = [
    "PipelineSettings",
    "VideoGenerationService",
    "pipeline_router",
    "project_router",
    "notification_router",
    "health_router",
    "ProjectStatus",
    "map_provider_status",
]
