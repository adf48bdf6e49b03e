"""
Shotstack render API.

Submit a timeline, poll a render, read account credits. Reads (status and
/me) retry on 429 / 5xx with exponential backoff; submissions never retry,
a failed submit surfaces immediately.
"""

import asyncio
import logging
import random
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

# ── Retry configuration ──────────────────────────────────────────────────────
MAX_RETRIES = 2
BASE_DELAY = 1.0       # seconds, doubles each retry: 1, 2
JITTER_MAX = 0.5
MAX_RETRY_AFTER = 30   # seconds; caps a server-supplied Retry-After
RETRYABLE_STATUS_CODES = {429, 502, 503, 504}


class ShotstackError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ShotstackClient:
    def __init__(
        self,
        http: httpx.AsyncClient,
        api_key: str,
        api_base: str = "https://api.shotstack.io/v1",
        base_delay: float = BASE_DELAY,
    ):
        self._http = http
        self._api_key = api_key
        self._api_base = api_base.rstrip("/")
        self._base_delay = base_delay

    def _headers(self) -> dict:
        if not self._api_key:
            raise ShotstackError("SHOTSTACK_API_KEY not set")
        return {"x-api-key": self._api_key, "Content-Type": "application/json"}

    @staticmethod
    def _raise_for(resp: httpx.Response):
        if resp.status_code >= 400:
            raise ShotstackError(
                f"Shotstack API error {resp.status_code}: {resp.text[:500]}",
                status_code=resp.status_code,
                body=resp.text,
            )

    @staticmethod
    def _json(resp: httpx.Response) -> dict:
        """Decode a JSON object body; anything else is a provider error."""
        try:
            data = resp.json()
        except ValueError as e:
            raise ShotstackError(
                f"Shotstack returned a non-JSON body ({resp.status_code}): {resp.text[:200]}",
                status_code=resp.status_code,
                body=resp.text,
            ) from e
        if not isinstance(data, dict):
            raise ShotstackError(
                f"Shotstack returned an unexpected body ({resp.status_code}): {resp.text[:200]}",
                status_code=resp.status_code,
                body=resp.text,
            )
        return data

    async def _get_with_backoff(self, url: str) -> httpx.Response:
        """GET with exponential backoff on retryable status codes."""
        headers = self._headers()
        for attempt in range(MAX_RETRIES + 1):
            resp = await self._http.get(url, headers=headers)
            if resp.status_code not in RETRYABLE_STATUS_CODES or attempt == MAX_RETRIES:
                self._raise_for(resp)
                return resp

            retry_after = resp.headers.get("Retry-After")
            if retry_after and retry_after.isdigit():
                delay = min(int(retry_after), MAX_RETRY_AFTER)
            else:
                delay = self._base_delay * (2 ** attempt) + random.uniform(0, JITTER_MAX * self._base_delay)
            logger.warning(
                f"Shotstack {resp.status_code} on attempt {attempt + 1}/{MAX_RETRIES + 1} "
                f"- retrying in {delay:.1f}s (url={url})"
            )
            await asyncio.sleep(delay)

        raise ShotstackError(f"Request to {url} failed after {MAX_RETRIES + 1} attempts")

    async def submit(self, render_request: dict) -> str:
        """Queue a render and return its id."""
        resp = await self._http.post(
            f"{self._api_base}/render",
            headers=self._headers(),
            json=render_request,
        )
        self._raise_for(resp)

        data = self._json(resp)
        response = data.get("response")
        render_id = response.get("id") if isinstance(response, dict) else None
        if not render_id:
            raise ShotstackError(f"No render ID returned from Shotstack: {str(data)[:200]}", body=resp.text)
        logger.info(f"Shotstack render queued: {render_id}")
        return render_id

    async def get_render(self, render_id: str) -> dict:
        """Return the `response` object of a render: status, url, thumbnail, error."""
        resp = await self._get_with_backoff(f"{self._api_base}/render/{render_id}")
        return self._response(resp)

    async def get_me(self) -> dict:
        """Account info, including remaining `credits`."""
        resp = await self._get_with_backoff(f"{self._api_base}/me")
        return self._response(resp)

    def _response(self, resp: httpx.Response) -> dict:
        response = self._json(resp).get("response") or {}
        if not isinstance(response, dict):
            raise ShotstackError(
                f"Shotstack response field is not an object: {resp.text[:200]}",
                status_code=resp.status_code,
                body=resp.text,
            )
        return response
