"""
Resumable upload session initiation.

Opens the destination session exactly once per transfer. The POST is not
idempotent (each call creates a new session), so it is never retried.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from app.core.config import settings
from app.core.exceptions import AuthExpiredError, SessionRejectedError
from app.models.session import AssetInfo


logger = logging.getLogger(__name__)


class SessionInitiator:
    """Opens a resumable upload session and returns its session URI."""

    def __init__(self, client: httpx.AsyncClient, upload_endpoint: Optional[str] = None):
        self.client = client
        self.upload_endpoint = upload_endpoint or settings.upload_endpoint

    async def open_session(
        self,
        asset: AssetInfo,
        destination_metadata: Dict[str, Any],
        bearer_token: str
    ) -> str:
        """
        Open a resumable upload session.

        Args:
            asset: Probed size and MIME type of the source
            destination_metadata: JSON resource describing the video
            bearer_token: OAuth access token for the destination

        Returns:
            Session URI for the subsequent chunk uploads

        Raises:
            AuthExpiredError: The destination rejected the token (401/403)
            SessionRejectedError: Any other failure, with status and body verbatim
        """
        headers = {
            "Authorization": f"Bearer {bearer_token}",
            "Content-Type": "application/json; charset=UTF-8",
            "X-Upload-Content-Length": str(asset.total_size),
            "X-Upload-Content-Type": asset.mime_type,
        }
        params = {"uploadType": "resumable", "part": ",".join(destination_metadata.keys())}

        try:
            response = await self.client.post(
                self.upload_endpoint,
                params=params,
                headers=headers,
                json=destination_metadata,
                timeout=settings.request_timeout
            )
        except httpx.HTTPError as e:
            raise SessionRejectedError(upstream_status=0, upstream_body=str(e) or type(e).__name__)

        if response.status_code in (401, 403):
            raise AuthExpiredError(
                reason=f"session initiation returned HTTP {response.status_code}",
                upstream_status=response.status_code,
                upstream_body=response.text
            )

        if response.status_code not in (200, 201):
            logger.warning(
                f"Session initiation rejected: {response.status_code} {response.text[:200]}"
            )
            raise SessionRejectedError(
                upstream_status=response.status_code,
                upstream_body=response.text
            )

        location = response.headers.get("Location")
        if not location:
            raise SessionRejectedError(
                upstream_status=response.status_code,
                upstream_body="response carried no Location header"
            )

        logger.info(f"Opened upload session for {asset.total_size} bytes ({asset.mime_type})")
        return location
