"""
Shared-secret authentication middleware for the render worker.

Pipeline, project and notification endpoints require an X-Worker-Secret
header matching WORKER_SHARED_SECRET. The web app attaches this header when
forwarding a signed-in user's request to the worker.
"""

import logging
import secrets

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


class WorkerAuthMiddleware(BaseHTTPMiddleware):
    """Reject unauthenticated requests to protected endpoints."""

    # Paths that are always public (health checks, etc.)
    PUBLIC_PATHS = {"/health", "/metrics", "/docs", "/openapi.json", "/redoc"}
    PROTECTED_PREFIXES = ("/pipeline", "/projects", "/notifications", "/health/providers")

    def __init__(self, app, secret: str = "", environment: str = "development"):
        super().__init__(app)
        self._secret = secret
        self._environment = environment

    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        if path in self.PUBLIC_PATHS or not path.startswith(self.PROTECTED_PREFIXES):
            return await call_next(request)

        if not self._secret:
            # In development without the secret set, allow all traffic
            if self._environment == "development":
                return await call_next(request)
            logger.error("WORKER_SHARED_SECRET not configured, rejecting request")
            return JSONResponse(status_code=500, content={"detail": "WORKER_SHARED_SECRET not configured"})

        # Constant-time compare avoids timing attacks
        provided = request.headers.get("X-Worker-Secret", "")
        if not secrets.compare_digest(provided, self._secret):
            return JSONResponse(status_code=401, content={"detail": "Invalid or missing worker secret"})

        return await call_next(request)
