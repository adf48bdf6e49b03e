"""
Typed pipeline errors.

Each error names the provider it came from plus a remediation hint, so the
caller can tell the user *which* integration to look at instead of showing a
generic failure.
"""

from typing import Optional

from .models import CreditShortfall


class PipelineError(Exception):
    provider: str = "pipeline"
    remediation: str = "Try generating the video again."

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        remediation: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        if provider:
            self.provider = provider
        if remediation:
            self.remediation = remediation

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "provider": self.provider,
            "remediation": self.remediation,
        }


class SceneGenerationError(PipelineError):
    provider = "gemini"
    remediation = "Check your scene generation API key (GEMINI_API_KEY) or rephrase the prompt."


class FootageResolutionError(PipelineError):
    provider = "pexels"
    remediation = "Check your stock footage API key (PEXELS_API_KEY) or use broader keywords."


class NarrationError(PipelineError):
    provider = "elevenlabs"
    remediation = "Check your speech API key (ELEVEN_LABS_API_KEY) or pick another voice."


class RenderSubmissionError(PipelineError):
    provider = "shotstack"
    remediation = "Check your render provider API key (SHOTSTACK_API_KEY)."


class MissingFootageError(RenderSubmissionError):
    provider = "pipeline"
    remediation = "Every scene needs footage before rendering. Retry with different keywords."


class RenderProviderError(RenderSubmissionError):
    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class InsufficientCreditsError(RenderSubmissionError):
    remediation = "Top up your render provider credits or shorten the video."

    def __init__(self, shortfall: CreditShortfall, message: Optional[str] = None):
        self.shortfall = shortfall
        super().__init__(message or f"Insufficient render credits: {shortfall.describe()}")


class RenderStatusError(PipelineError):
    provider = "shotstack"
    remediation = "Check your render provider API key (SHOTSTACK_API_KEY) and the render dashboard."


class ProjectStoreError(PipelineError):
    provider = "supabase"
    remediation = "Check the database connection (SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY)."


class ProjectNotFoundError(ProjectStoreError):
    remediation = "The project no longer exists."


class NotificationStoreError(ProjectStoreError):
    remediation = "Notifications are temporarily unavailable."
