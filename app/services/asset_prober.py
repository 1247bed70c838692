"""
Source asset probing.

Determines total size and content type of the source with a HEAD request,
without downloading the body.
"""

import logging
import mimetypes
from typing import Optional
from urllib.parse import urlparse

import httpx

from app.core.config import settings
from app.core.exceptions import (
    SourceMetadataMissingError, SourceUnreachableError, TRANSIENT_STATUS_CODES
)
from app.core.retry import RetryConfig, RetryManager
from app.models.session import AssetInfo


logger = logging.getLogger(__name__)


class AssetProber:
    """Reads Content-Length and Content-Type of a source URL."""

    def __init__(self, client: httpx.AsyncClient, retry: Optional[RetryManager] = None):
        self.client = client
        self.retry = retry or RetryManager(RetryConfig(
            max_attempts=settings.probe_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            jitter=settings.retry_jitter
        ))

    async def probe(self, source_url: str) -> AssetInfo:
        """
        Probe the source asset.

        Args:
            source_url: HTTP(S) URL of the source video

        Returns:
            AssetInfo with total size and MIME type

        Raises:
            SourceUnreachableError: Network failure or error status on HEAD
            SourceMetadataMissingError: Content-Length or Content-Type unavailable
        """
        response = await self.retry.retry_async(self._head, source_url)

        content_length = response.headers.get("Content-Length")
        if content_length is None:
            raise SourceMetadataMissingError(url=source_url, header="Content-Length")
        try:
            total_size = int(content_length)
        except ValueError:
            raise SourceMetadataMissingError(url=source_url, header="Content-Length")
        if total_size < 0:
            raise SourceMetadataMissingError(url=source_url, header="Content-Length")

        mime_type = self._mime_type(source_url, response.headers.get("Content-Type"))
        if not mime_type:
            raise SourceMetadataMissingError(url=source_url, header="Content-Type")

        logger.info(f"Probed {source_url}: {total_size} bytes, {mime_type}")
        return AssetInfo(total_size=total_size, mime_type=mime_type)

    async def _head(self, source_url: str) -> httpx.Response:
        try:
            response = await self.client.head(
                source_url,
                follow_redirects=True,
                timeout=settings.probe_timeout
            )
        except httpx.HTTPError as e:
            raise SourceUnreachableError(url=source_url, reason=str(e) or type(e).__name__)

        if response.status_code >= 400:
            transient = response.status_code in TRANSIENT_STATUS_CODES or response.status_code >= 500
            raise SourceUnreachableError(
                url=source_url,
                reason=f"HEAD returned HTTP {response.status_code}",
                retryable=transient,
                upstream_status=response.status_code
            )
        return response

    @staticmethod
    def _mime_type(source_url: str, header_value: Optional[str]) -> Optional[str]:
        if header_value:
            mime_type = header_value.split(";", 1)[0].strip()
            if mime_type:
                return mime_type
        guessed, _ = mimetypes.guess_type(urlparse(source_url).path)
        return guessed
