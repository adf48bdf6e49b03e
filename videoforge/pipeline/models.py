"""
Pydantic models and enums for the video render pipeline.
"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


# ── Project Status ───────────────────────────────────────────────────────────

class ProjectStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = {ProjectStatus.COMPLETED, ProjectStatus.FAILED}

# Statuses a project may be in for a transition *into* the key to be applied.
# pending → processing → {completed | failed}; terminal states never move.
ALLOWED_SOURCES: dict[ProjectStatus, set[ProjectStatus]] = {
    ProjectStatus.PENDING: {ProjectStatus.PENDING},
    ProjectStatus.PROCESSING: {ProjectStatus.PENDING, ProjectStatus.PROCESSING},
    ProjectStatus.COMPLETED: {ProjectStatus.PENDING, ProjectStatus.PROCESSING},
    ProjectStatus.FAILED: {ProjectStatus.PENDING, ProjectStatus.PROCESSING},
}


# ── Scenes ───────────────────────────────────────────────────────────────────

DEFAULT_SCENE_DURATION = 5.0


class SceneDescriptor(BaseModel):
    id: str
    scene: str = Field(..., description="Scene title")
    description: str = ""
    keywords: list[str] = Field(default_factory=list)
    footage_url: Optional[str] = None
    duration: float = DEFAULT_SCENE_DURATION


class FootageClip(BaseModel):
    """One stock clip chosen for a scene."""
    id: str
    url: str
    image: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    duration: Optional[float] = None
    author: Optional[str] = None
    author_url: Optional[str] = None


class FootageResolution(BaseModel):
    clips: dict[str, FootageClip] = Field(default_factory=dict)
    scenes: list[SceneDescriptor] = Field(default_factory=list)
    dropped: list[str] = Field(default_factory=list)


# ── Narration ────────────────────────────────────────────────────────────────

NO_VOICE = "none"


class NarrationResult(BaseModel):
    audio_base64: str
    narration_script: str
    voice_id: str
    voice_name: str = "Unknown Voice"
    format: str = "mp3"


# ── Render ───────────────────────────────────────────────────────────────────

class RenderSubmission(BaseModel):
    render_id: str
    duration: float
    has_audio: bool
    has_captions: bool


class RenderStatusUpdate(BaseModel):
    """One normalized poll result."""
    project_id: str
    render_id: str
    provider_status: str
    status: ProjectStatus
    url: Optional[str] = None
    thumbnail: Optional[str] = None
    error: Optional[str] = None
    applied: bool = False
    project_status: Optional[ProjectStatus] = None

    @property
    def is_final(self) -> bool:
        """Nothing left to poll for: the persisted project is terminal."""
        return self.project_status in TERMINAL_STATUSES


class CreditShortfall(BaseModel):
    required: Optional[float] = None
    available: Optional[float] = None

    @staticmethod
    def _fmt(value: Optional[float]) -> str:
        return "unknown" if value is None else f"{value:g}"

    def describe(self) -> str:
        return f"required {self._fmt(self.required)}, available {self._fmt(self.available)}"


# ── Video Project ────────────────────────────────────────────────────────────

class VideoProject(BaseModel):
    id: str
    user_id: str
    title: str
    prompt: str
    status: ProjectStatus = ProjectStatus.PENDING
    style: Optional[str] = None
    media_source: Optional[str] = None
    brand_colors: Optional[str] = None
    voice_type: Optional[str] = None
    video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    narration_script: Optional[str] = None
    error_message: Optional[str] = None
    has_audio: bool = False
    has_captions: bool = False
    duration: Optional[float] = None
    render_id: Optional[str] = None
    scenes: list[SceneDescriptor] = Field(default_factory=list)
    audio_url: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


# ── Notifications ────────────────────────────────────────────────────────────

class NotificationType(str, Enum):
    VIDEO = "video"
    PAYMENT = "payment"
    ACCOUNT = "account"
    NEWSLETTER = "newsletter"


class Milestone(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    DELETED = "deleted"


class Notification(BaseModel):
    id: str
    user_id: str
    title: str
    message: str
    type: NotificationType = NotificationType.VIDEO
    is_read: bool = False
    metadata: dict = Field(default_factory=dict)
    created_at: Optional[str] = None


# ── Pipeline Result ──────────────────────────────────────────────────────────

class PipelineResult(BaseModel):
    project_id: str
    status: ProjectStatus
    render_id: Optional[str] = None
    video_url: Optional[str] = None
    error: Optional[str] = None
    provider: Optional[str] = None
    remediation: Optional[str] = None
    warnings: list[str] = Field(default_factory=list)


# ── API Request / Response Models ────────────────────────────────────────────

class RenderStartRequest(BaseModel):
    """Start one render attempt from a prompt."""
    user_id: str
    prompt: str = Field(..., min_length=1, description="Free-text video description")
    title: Optional[str] = None
    style: str = "ad"
    media_source: str = "stock"
    brand_colors: Optional[str] = None
    voice_type: str = NO_VOICE
    script: Optional[str] = Field(None, description="User-authored narration script")
    has_captions: bool = False
    captions_url: Optional[str] = None
    media_urls: list[str] = Field(default_factory=list, description="Uploaded clips, assigned to scenes in order")


class ApiKeyStatus(BaseModel):
    name: str
    key: str
    is_valid: bool
    error_message: Optional[str] = None
    credits_remaining: Optional[float] = None
