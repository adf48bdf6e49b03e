"""
Pipeline settings, read once from the environment and injected everywhere.
"""

import os

from pydantic import BaseModel


class PipelineSettings(BaseModel):
    # ── Providers ────────────────────────────────────────────────────────
    gemini_api_key: str = ""
    gemini_api_base: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_model: str = "gemini-2.0-flash"

    pexels_api_key: str = ""
    pexels_api_base: str = "https://api.pexels.com"

    elevenlabs_api_key: str = ""
    elevenlabs_api_base: str = "https://api.elevenlabs.io"

    shotstack_api_key: str = ""
    shotstack_api_base: str = "https://api.shotstack.io/v1"

    # ── Supabase ─────────────────────────────────────────────────────────
    supabase_url: str = ""
    supabase_service_role_key: str = ""

    # ── R2 object storage ────────────────────────────────────────────────
    r2_account_id: str = ""
    r2_access_key_id: str = ""
    r2_secret_access_key: str = ""
    r2_bucket_name: str = "assets"
    r2_public_url: str = ""

    # ── Polling ──────────────────────────────────────────────────────────
    poll_interval_seconds: float = 5.0
    poll_max_seconds: float = 30 * 60
    poll_max_consecutive_errors: int = 3

    # ── Misc ─────────────────────────────────────────────────────────────
    http_timeout_seconds: float = 60.0
    worker_shared_secret: str = ""
    environment: str = "development"

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        """Build settings from environment variables (call after load_dotenv)."""
        env = os.environ
        values = {
            "gemini_api_key": env.get("GEMINI_API_KEY") or env.get("GOOGLE_API_KEY", ""),
            "pexels_api_key": env.get("PEXELS_API_KEY", ""),
            "elevenlabs_api_key": env.get("ELEVEN_LABS_API_KEY", ""),
            "shotstack_api_key": env.get("SHOTSTACK_API_KEY", ""),
            "supabase_url": env.get("SUPABASE_URL") or env.get("NEXT_PUBLIC_SUPABASE_URL", ""),
            "supabase_service_role_key": env.get("SUPABASE_SERVICE_ROLE_KEY", ""),
            "r2_account_id": env.get("R2_ACCOUNT_ID", ""),
            "r2_access_key_id": env.get("R2_ACCESS_KEY_ID", ""),
            "r2_secret_access_key": env.get("R2_SECRET_ACCESS_KEY", ""),
            "r2_public_url": env.get("R2_PUBLIC_URL", ""),
            "worker_shared_secret": env.get("WORKER_SHARED_SECRET", ""),
            "environment": env.get("ENVIRONMENT", "development"),
        }
        optional = {
            "gemini_model": "GEMINI_MODEL",
            "shotstack_api_base": "SHOTSTACK_API_BASE",
            "r2_bucket_name": "R2_BUCKET_NAME",
            "poll_interval_seconds": "RENDER_POLL_INTERVAL",
            "poll_max_seconds": "RENDER_POLL_MAX_SECONDS",
            "http_timeout_seconds": "HTTP_TIMEOUT_SECONDS",
        }
        for field_name, var in optional.items():
            if env.get(var):
                values[field_name] = env[var]
        return cls(**values)
