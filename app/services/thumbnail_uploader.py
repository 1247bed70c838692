"""
Custom thumbnail upload for transferred videos.
"""

import logging
from typing import Optional

import httpx

from app.core.config import settings
from app.core.exceptions import AuthExpiredError, SourceUnreachableError
from app.core.retry import RetryConfig, retry_manager
from app.services.credentials import TokenSupplier


logger = logging.getLogger(__name__)

MAX_THUMBNAIL_BYTES = 2 * 1024 * 1024


class ThumbnailUploader:
    """Fetches an image and sets it as the thumbnail of an uploaded video."""

    def __init__(
        self,
        token_supplier: TokenSupplier,
        client: Optional[httpx.AsyncClient] = None,
        endpoint: Optional[str] = None,
        retry_config: Optional[RetryConfig] = None
    ):
        self.token_supplier = token_supplier
        self._client = client
        self.endpoint = endpoint or settings.thumbnail_endpoint
        self.retry_config = retry_config or RetryConfig.from_settings(max_attempts=3)

    async def set_thumbnail(self, video_id: str, thumbnail_url: str) -> Optional[str]:
        """
        Upload the thumbnail for video_id.

        Args:
            video_id: Destination asset ID returned by the transfer
            thumbnail_url: HTTP(S) URL of a JPEG or PNG image

        Returns:
            None on success, otherwise a short error description
        """
        client = self._client or httpx.AsyncClient(timeout=settings.request_timeout)
        try:
            image, content_type = await retry_manager.retry_async(
                self._fetch_image, client, thumbnail_url, config=self.retry_config
            )
            if len(image) > MAX_THUMBNAIL_BYTES:
                return f"thumbnail is {len(image)} bytes, limit is {MAX_THUMBNAIL_BYTES}"

            token = await self.token_supplier.get_bearer_token()
            response = await retry_manager.retry_async(
                client.post,
                self.endpoint,
                params={"videoId": video_id},
                content=image,
                headers={"Authorization": f"Bearer {token}", "Content-Type": content_type},
                retryable_exceptions=[httpx.TransportError],
                config=self.retry_config
            )
        except (SourceUnreachableError, AuthExpiredError) as e:
            logger.warning(f"Thumbnail for {video_id} not set: {e.message}")
            return e.message
        except httpx.HTTPError as e:
            logger.warning(f"Thumbnail upload for {video_id} failed: {e}")
            return f"thumbnail upload failed: {e or type(e).__name__}"
        finally:
            if self._client is None:
                await client.aclose()

        if response.status_code not in (200, 201):
            logger.warning(
                f"Thumbnail upload for {video_id} rejected: "
                f"{response.status_code} {response.text[:200]}"
            )
            return f"destination returned HTTP {response.status_code}"

        logger.info(f"Thumbnail set for {video_id}")
        return None

    @staticmethod
    async def _fetch_image(client: httpx.AsyncClient, url: str):
        try:
            response = await client.get(url, follow_redirects=True)
        except httpx.HTTPError as e:
            raise SourceUnreachableError(url=url, reason=str(e) or type(e).__name__)

        if response.status_code != 200:
            raise SourceUnreachableError(
                url=url,
                reason=f"GET returned HTTP {response.status_code}",
                retryable=response.status_code >= 500,
                upstream_status=response.status_code
            )
        content_type = response.headers.get("Content-Type", "image/jpeg").split(";", 1)[0].strip()
        return response.content, content_type
