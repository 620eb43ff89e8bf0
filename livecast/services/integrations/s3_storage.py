"""AWS S3 helper for caption exports.

Usage:
    from livecast.services.integrations.s3_storage import S3Service

    s3 = S3Service()
    urls = await s3.upload_caption_files_batch(
        session_id="session-123",
        files=[("captions.vtt", "WEBVTT\\n\\n...", "text/vtt")],
    )
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import aioboto3
from botocore.exceptions import ClientError
from loguru import logger

from livecast.app_config import AppEnvironConfig, get_app_environ_config
from livecast.utils.app_errors import AppError, AppErrorCode, HttpStatusCode


class S3Service:
    """Async uploads of finished caption files (WebVTT) to an S3 bucket."""

    def __init__(self, settings: AppEnvironConfig | None = None) -> None:
        self._settings = settings or get_app_environ_config()
        self._session: aioboto3.Session | None = None

    @property
    def configured(self) -> bool:
        s = self._settings
        return bool(s.S3_CAPTION_BUCKET and s.AWS_ACCESS_KEY_ID and s.AWS_SECRET_ACCESS_KEY)

    def _get_session(self) -> aioboto3.Session:
        if self._session is None:
            s = self._settings
            if not s.AWS_ACCESS_KEY_ID or not s.AWS_SECRET_ACCESS_KEY:
                raise AppError(
                    errcode=AppErrorCode.E_INVALID_REQUEST,
                    errmesg="AWS credentials not configured",
                    status_code=HttpStatusCode.BAD_REQUEST,
                )
            self._session = aioboto3.Session(
                aws_access_key_id=s.AWS_ACCESS_KEY_ID,
                aws_secret_access_key=s.AWS_SECRET_ACCESS_KEY,
                region_name=s.AWS_REGION,
            )
            logger.info(f"S3 session created for region: {s.AWS_REGION}")
        return self._session

    @asynccontextmanager
    async def _get_client(self) -> AsyncIterator:  # type: ignore[misc]
        session = self._get_session()
        async with session.client("s3") as client:  # type: ignore[attr-defined]
            yield client

    def _get_bucket_name(self) -> str:
        if not self._settings.S3_CAPTION_BUCKET:
            raise AppError(
                errcode=AppErrorCode.E_INVALID_REQUEST,
                errmesg="S3_CAPTION_BUCKET not configured",
                status_code=HttpStatusCode.BAD_REQUEST,
            )
        return self._settings.S3_CAPTION_BUCKET

    def get_object_key(self, session_id: str, filename: str) -> str:
        """e.g. "captions/session-123/captions-es.vtt" """
        return f"{self._settings.S3_CAPTION_PREFIX}/{session_id}/{filename}"

    def get_caption_url(self, session_id: str, filename: str) -> str:
        bucket = self._get_bucket_name()
        key = self.get_object_key(session_id, filename)
        return f"https://{bucket}.s3.{self._settings.AWS_REGION}.amazonaws.com/{key}"

    async def upload_caption_text(
        self,
        session_id: str,
        filename: str,
        content: str,
        content_type: str = "text/vtt",
        cache_control: str = "public, max-age=3600",
    ) -> str:
        """Upload caption text to S3 and return its public URL.

        Raises:
            ClientError: If upload fails
        """
        bucket = self._get_bucket_name()
        key = self.get_object_key(session_id, filename)
        try:
            async with self._get_client() as client:
                await client.put_object(
                    Bucket=bucket,
                    Key=key,
                    Body=content.encode("utf-8"),
                    ContentType=content_type,
                    CacheControl=cache_control,
                )
        except ClientError as e:
            logger.error(f"Failed to upload caption file {key}: {e}")
            raise

        url = self.get_caption_url(session_id, filename)
        logger.info(f"Uploaded caption file: {key} -> {url}")
        return url

    async def upload_caption_files_batch(
        self,
        session_id: str,
        files: list[tuple[str, str, str]],
    ) -> dict[str, str]:
        """Upload (filename, content, content_type) tuples concurrently.

        Returns:
            Dict mapping filename to public URL
        """

        async def upload_one(filename: str, content: str, content_type: str) -> tuple[str, str]:
            url = await self.upload_caption_text(
                session_id=session_id,
                filename=filename,
                content=content,
                content_type=content_type,
            )
            return filename, url

        results = await asyncio.gather(*(upload_one(f, c, ct) for f, c, ct in files))
        return dict(results)
