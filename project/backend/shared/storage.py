"""
Object storage.

Supabase Storage uploads with public URLs, plus plain HTTP downloads of
previously published assets.
"""

import asyncio
from typing import Optional

import httpx

from shared.config import settings
from shared.database import DatabaseClient, db
from shared.errors import RetryableError
from shared.logging import get_logger
from shared.retry import retry_with_backoff

logger = get_logger("storage")


class StorageClient:
    """Supabase Storage wrapper."""

    def __init__(self, database: Optional[DatabaseClient] = None):
        self._database = database or db

    @retry_with_backoff(max_attempts=3, base_delay=1)
    async def upload_file(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str
    ) -> str:
        """
        Upload bytes (overwriting any existing object) and return its public URL.

        Args:
            bucket: Storage bucket name
            path: Object path inside the bucket
            data: File contents
            content_type: MIME type stored with the object

        Returns:
            Public URL of the uploaded object

        Raises:
            RetryableError: If the upload fails after retries
        """
        def _upload() -> str:
            bucket_api = self._database.client.storage.from_(bucket)
            bucket_api.upload(
                path=path,
                file=data,
                file_options={"content-type": content_type, "upsert": "true"}
            )
            return bucket_api.get_public_url(path)

        try:
            public_url = await asyncio.to_thread(_upload)
        except Exception as e:
            logger.warning(
                f"Upload to {bucket}/{path} failed: {str(e)}",
                extra={"bucket": bucket, "path": path}
            )
            raise RetryableError(f"Failed to upload {bucket}/{path}: {str(e)}") from e

        if not public_url:
            raise RetryableError(f"No public URL returned for {bucket}/{path}")

        # supabase-py appends a bare "?" to public URLs
        public_url = public_url.rstrip("?")
        logger.info(f"Uploaded {len(data)} bytes to {bucket}/{path}")
        return public_url

    @retry_with_backoff(max_attempts=3, base_delay=1)
    async def download_url(self, url: str) -> bytes:
        """
        Download a published asset by URL.

        Raises:
            RetryableError: On network errors or non-2xx responses
        """
        try:
            async with httpx.AsyncClient(timeout=settings.download_timeout, follow_redirects=True) as client:
                resp = await client.get(url)
                resp.raise_for_status()
                return resp.content
        except httpx.HTTPError as e:
            raise RetryableError(f"Failed to download {url}: {str(e)}") from e


# Singleton instance
storage = StorageClient()
