"""
Gemini integration for scene breakdown and narration copy.

Text-only generateContent calls over REST. The caller owns the httpx client.
"""

import json
import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)


class GeminiError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def parse_json_response(text: str) -> Any:
    """Parse JSON from a Gemini response, handling markdown code blocks."""
    text = text.strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        if "```" in text:
            json_block = text.split("```")[1]
            if json_block.startswith("json"):
                json_block = json_block[4:]
            try:
                return json.loads(json_block.strip())
            except json.JSONDecodeError:
                pass
        raise ValueError(f"Gemini returned invalid JSON: {text[:200]}")


def extract_text(result: dict) -> str:
    """Join the text parts of the first candidate."""
    candidates = result.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(part.get("text", "") for part in parts)


def _json_object(resp: httpx.Response) -> dict:
    try:
        data = resp.json()
    except ValueError as e:
        raise GeminiError(
            f"Gemini returned a non-JSON body: {resp.text[:200]}", status_code=resp.status_code
        ) from e
    if not isinstance(data, dict):
        raise GeminiError(
            f"Gemini returned an unexpected body: {resp.text[:200]}", status_code=resp.status_code
        )
    return data


class GeminiClient:
    def __init__(
        self,
        http: httpx.AsyncClient,
        api_key: str,
        api_base: str = "https://generativelanguage.googleapis.com/v1beta",
        model: str = "gemini-2.0-flash",
    ):
        self._http = http
        self._api_key = api_key
        self._api_base = api_base.rstrip("/")
        self.model = model

    async def generate_content(self, parts: list, config: Optional[dict] = None) -> dict:
        """Call the generateContent REST endpoint."""
        if not self._api_key:
            raise GeminiError("GEMINI_API_KEY not set")

        body: dict = {"contents": [{"parts": parts}]}
        if config:
            body["generationConfig"] = config

        resp = await self._http.post(
            f"{self._api_base}/models/{self.model}:generateContent",
            params={"key": self._api_key},
            json=body,
        )
        if resp.status_code != 200:
            raise GeminiError(
                f"Gemini API error {resp.status_code}: {resp.text[:500]}",
                status_code=resp.status_code,
            )
        return _json_object(resp)

    async def generate_text(
        self,
        prompt: str,
        temperature: float = 0.4,
        max_output_tokens: int = 1000,
    ) -> str:
        result = await self.generate_content(
            [{"text": prompt}],
            {"temperature": temperature, "maxOutputTokens": max_output_tokens},
        )
        text = extract_text(result)
        if not text.strip():
            raise GeminiError("Gemini returned no text")
        return text

    async def list_models(self) -> dict:
        """Cheap authenticated call used by the health checks."""
        if not self._api_key:
            raise GeminiError("GEMINI_API_KEY not set")
        resp = await self._http.get(
            f"{self._api_base}/models",
            params={"key": self._api_key, "pageSize": 1},
        )
        if resp.status_code != 200:
            raise GeminiError(
                f"Gemini API error {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
            )
        return _json_object(resp)
