"""
ElevenLabs text-to-speech.
"""

import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_VOICE_ID = "21m00Tcm4TlvDq8ikWAM"
TTS_MODEL = "eleven_monolingual_v1"

AVAILABLE_VOICES = {
    "21m00Tcm4TlvDq8ikWAM": "Rachel - Warm and conversational",
    "AZnzlk1XvdvUeBnXmlld": "Domi - Strong and confident",
    "EXAVITQu4vr4xnSDxMaL": "Sarah - Professional and clear",
    "MF3mGyEYCl7XYWbV9V6O": "Elli - Approachable and friendly",
    "pNInz6obpgDQGcFmaJgB": "Adam - Deep and authoritative",
    "yoZ06aMxZJJ28mfd3POQ": "Josh - Warm and engaging",
}

# Generator UI voice choices → ElevenLabs voice ids
VOICE_ALIASES = {
    "male": "pNInz6obpgDQGcFmaJgB",
    "female": "21m00Tcm4TlvDq8ikWAM",
    "neutral": "EXAVITQu4vr4xnSDxMaL",
}


class ElevenLabsError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def resolve_voice_id(voice: Optional[str]) -> str:
    if not voice:
        return DEFAULT_VOICE_ID
    return VOICE_ALIASES.get(voice.lower(), voice)


def voice_name(voice_id: str) -> str:
    return AVAILABLE_VOICES.get(voice_id, "Unknown Voice")


def _json_object(resp: httpx.Response) -> dict:
    try:
        data = resp.json()
    except ValueError as e:
        raise ElevenLabsError(
            f"ElevenLabs returned a non-JSON body: {resp.text[:200]}", status_code=resp.status_code
        ) from e
    if not isinstance(data, dict):
        raise ElevenLabsError(
            f"ElevenLabs returned an unexpected body: {resp.text[:200]}", status_code=resp.status_code
        )
    return data


class ElevenLabsClient:
    def __init__(self, http: httpx.AsyncClient, api_key: str, api_base: str = "https://api.elevenlabs.io"):
        self._http = http
        self._api_key = api_key
        self._api_base = api_base.rstrip("/")

    async def text_to_speech(self, text: str, voice_id: str) -> bytes:
        """Synthesize `text` and return MP3 bytes."""
        if not self._api_key:
            raise ElevenLabsError("ELEVEN_LABS_API_KEY not set")

        resp = await self._http.post(
            f"{self._api_base}/v1/text-to-speech/{voice_id}",
            headers={
                "xi-api-key": self._api_key,
                "Content-Type": "application/json",
                "Accept": "audio/mpeg",
            },
            json={
                "text": text,
                "model_id": TTS_MODEL,
                "voice_settings": {"stability": 0.5, "similarity_boost": 0.5},
            },
        )
        if resp.status_code != 200:
            raise ElevenLabsError(
                f"ElevenLabs API error {resp.status_code}: {resp.text[:500]}",
                status_code=resp.status_code,
            )
        if not resp.content:
            raise ElevenLabsError("Received empty audio data from ElevenLabs")
        return resp.content

    async def list_voices(self) -> dict:
        if not self._api_key:
            raise ElevenLabsError("ELEVEN_LABS_API_KEY not set")
        resp = await self._http.get(
            f"{self._api_base}/v1/voices",
            headers={"xi-api-key": self._api_key},
        )
        if resp.status_code != 200:
            raise ElevenLabsError(
                f"ElevenLabs API error {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
            )
        return _json_object(resp)
