"""
Google OAuth 2.0 client for the YouTube upload scope.

Builds the consent URL, exchanges authorization codes and refreshes
access tokens against the token endpoint.
"""

import logging
import time
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

from app.core.config import settings
from app.core.exceptions import AuthExpiredError, ConfigurationError
from app.core.retry import RetryConfig, retry_manager


logger = logging.getLogger(__name__)


class GoogleOAuthClient:
    """Stateless OAuth client; tokens are returned, never held."""

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        redirect_uri: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.client_id = client_id or settings.google_client_id
        self.client_secret = client_secret or settings.google_client_secret
        self.redirect_uri = redirect_uri or settings.google_redirect_uri
        self._http_client = http_client

    def _require_credentials(self) -> None:
        if not self.client_id or not self.client_secret:
            raise ConfigurationError(
                setting="google_client_id",
                reason="GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET must be set"
            )

    def build_authorization_url(self, state: str) -> str:
        """
        Build the consent screen URL.

        Args:
            state: Opaque anti-CSRF value echoed back on the callback

        Returns:
            URL to redirect the user to
        """
        self._require_credentials()
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": settings.youtube_scopes,
            "access_type": "offline",
            "include_granted_scopes": "true",
            "prompt": "consent",
            "state": state,
        }
        return f"{settings.auth_endpoint}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> Dict[str, Any]:
        """Exchange an authorization code for access and refresh tokens."""
        self._require_credentials()
        return await self._token_request({
            "code": code,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": self.redirect_uri,
            "grant_type": "authorization_code",
        })

    async def refresh(self, refresh_token: str) -> Dict[str, Any]:
        """Obtain a new access token from a refresh token."""
        self._require_credentials()
        return await self._token_request({
            "refresh_token": refresh_token,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "grant_type": "refresh_token",
        })

    async def _token_request(self, data: Dict[str, str]) -> Dict[str, Any]:
        client = self._http_client or httpx.AsyncClient(timeout=settings.request_timeout)
        # Authorization codes are single-use, only refreshes are safe to repeat
        attempts = 3 if data["grant_type"] == "refresh_token" else 1
        try:
            response = await retry_manager.retry_async(
                client.post,
                settings.token_endpoint,
                data=data,
                retryable_exceptions=[httpx.TransportError],
                config=RetryConfig(
                    max_attempts=attempts,
                    base_delay=settings.retry_base_delay,
                    max_delay=settings.retry_max_delay,
                    jitter=settings.retry_jitter
                )
            )
        except httpx.HTTPError as e:
            raise AuthExpiredError(reason=f"token endpoint unreachable: {e}")
        finally:
            if self._http_client is None:
                await client.aclose()

        if response.status_code != 200:
            logger.warning(
                f"Token request ({data['grant_type']}) failed: "
                f"{response.status_code} {response.text[:200]}"
            )
            raise AuthExpiredError(
                reason=f"token endpoint returned HTTP {response.status_code}",
                upstream_status=response.status_code,
                upstream_body=response.text
            )

        try:
            tokens = response.json()
        except ValueError:
            raise AuthExpiredError(
                reason="token endpoint returned a non-JSON body",
                upstream_status=response.status_code,
                upstream_body=response.text
            )
        if not isinstance(tokens, dict) or not tokens.get("access_token"):
            raise AuthExpiredError(
                reason="token endpoint response has no access_token",
                upstream_status=response.status_code,
                upstream_body=response.text
            )
        if "expires_in" in tokens:
            tokens["expires_at"] = time.time() + float(tokens["expires_in"])
        return tokens
