"""
R2 storage for pipeline artifacts.

Narration audio is uploaded here so the render provider can fetch it by URL:
  pipeline/{user_id}/{project_id}/narration.mp3
"""

import asyncio
import base64
import logging

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import PipelineSettings

logger = logging.getLogger(__name__)


class StorageError(Exception):
    pass


def narration_key(user_id: str, project_id: str) -> str:
    return f"pipeline/{user_id}/{project_id}/narration.mp3"


class R2Storage:
    def __init__(self, settings: PipelineSettings, s3_client=None):
        self._bucket = settings.r2_bucket_name
        self._public_url = settings.r2_public_url.rstrip("/")
        self._account_id = settings.r2_account_id
        self._access_key_id = settings.r2_access_key_id
        self._secret_access_key = settings.r2_secret_access_key
        self._s3 = s3_client

    @property
    def configured(self) -> bool:
        if self._s3 is not None:
            return bool(self._public_url)
        return all([self._account_id, self._access_key_id, self._secret_access_key, self._public_url])

    def _client(self):
        if self._s3 is None:
            self._s3 = boto3.client(
                "s3",
                endpoint_url=f"https://{self._account_id}.r2.cloudflarestorage.com",
                aws_access_key_id=self._access_key_id,
                aws_secret_access_key=self._secret_access_key,
                config=BotoConfig(signature_version="s3v4"),
                region_name="auto",
            )
        return self._s3

    def public_url(self, key: str) -> str:
        return f"{self._public_url}/{key}"

    def _put(self, key: str, data: bytes, content_type: str):
        self._client().put_object(Bucket=self._bucket, Key=key, Body=data, ContentType=content_type)

    async def upload(self, key: str, data: bytes, content_type: str) -> str:
        """Upload bytes and return the public URL. boto3 is blocking, so it runs in a thread."""
        if not self.configured:
            raise StorageError("R2 storage is not configured (R2_* environment variables)")
        try:
            await asyncio.to_thread(self._put, key, data, content_type)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"R2 upload failed for key={key}: {e}")
            raise StorageError(f"R2 upload failed: {e}") from e

        url = self.public_url(key)
        logger.info(f"Uploaded to R2: {url}")
        return url

    async def upload_narration(
        self, user_id: str, project_id: str, audio_base64: str
    ) -> str:
        """Store base64 MP3 narration and return its public URL."""
        try:
            data = base64.b64decode(audio_base64, validate=True)
        except ValueError as e:
            raise StorageError(f"Narration audio is not valid base64: {e}") from e
        return await self.upload(narration_key(user_id, project_id), data, "audio/mpeg")
