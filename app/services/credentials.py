"""
Credential persistence and bearer-token supply.

The transfer engine only ever sees a TokenSupplier. Where tokens live and
how they are refreshed is decided here.
"""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

import aiofiles
import aiofiles.os

from app.core.config import settings
from app.core.exceptions import AuthExpiredError
from app.services.oauth import GoogleOAuthClient


logger = logging.getLogger(__name__)


class CredentialStore(ABC):
    """Persistence for OAuth token sets."""

    @abstractmethod
    async def load(self) -> Optional[Dict[str, Any]]:
        """Return the stored token set, or None if nothing was saved."""

    @abstractmethod
    async def save(self, tokens: Dict[str, Any]) -> None:
        """Persist a token set, replacing the previous one."""


class InMemoryCredentialStore(CredentialStore):
    """Process-local store, mainly for tests and single-shot scripts."""

    def __init__(self, tokens: Optional[Dict[str, Any]] = None):
        self._tokens = dict(tokens) if tokens else None

    async def load(self) -> Optional[Dict[str, Any]]:
        return dict(self._tokens) if self._tokens else None

    async def save(self, tokens: Dict[str, Any]) -> None:
        self._tokens = dict(tokens)


class JsonFileCredentialStore(CredentialStore):
    """Stores the token set as a JSON document on disk."""

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path or settings.credentials_path)

    async def load(self) -> Optional[Dict[str, Any]]:
        if not await aiofiles.os.path.exists(self.path):
            return None
        async with aiofiles.open(self.path, 'r') as f:
            content = await f.read()
        if not content.strip():
            return None
        try:
            tokens = json.loads(content)
        except ValueError as e:
            raise AuthExpiredError(reason=f"credential file {self.path} is not valid JSON: {e}")
        if not isinstance(tokens, dict):
            raise AuthExpiredError(reason=f"credential file {self.path} does not hold a token set")
        return tokens

    async def save(self, tokens: Dict[str, Any]) -> None:
        await aiofiles.os.makedirs(self.path.parent, exist_ok=True)
        # Write then rename so a concurrent reader never sees a half-written file
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        async with aiofiles.open(tmp_path, 'w') as f:
            await f.write(json.dumps(tokens, indent=2))
        await aiofiles.os.replace(tmp_path, self.path)
        logger.info(f"Saved credentials to {self.path}")


class TokenSupplier(ABC):
    """Source of bearer tokens for destination requests."""

    @abstractmethod
    async def get_bearer_token(self) -> str:
        """
        Return a bearer token valid for the next request.

        Raises:
            AuthExpiredError: If no valid token can be produced
        """


class StaticTokenSupplier(TokenSupplier):
    """Always returns the same token."""

    def __init__(self, token: str):
        self._token = token

    async def get_bearer_token(self) -> str:
        if not self._token:
            raise AuthExpiredError(reason="no access token configured")
        return self._token


class RefreshingTokenSupplier(TokenSupplier):
    """
    Serves the stored access token and refreshes it when it expires.

    Reads are lock-free; only the refresh path takes the lock, so many
    concurrent transfers can share one supplier.
    """

    EXPIRY_SKEW_SECONDS = 60

    def __init__(self, store: CredentialStore, oauth_client: Optional[GoogleOAuthClient] = None):
        self.store = store
        self.oauth_client = oauth_client or GoogleOAuthClient()
        self._tokens: Optional[Dict[str, Any]] = None
        self._refresh_lock = asyncio.Lock()

    def _is_valid(self, tokens: Optional[Dict[str, Any]]) -> bool:
        if not tokens or not tokens.get("access_token"):
            return False
        expires_at = tokens.get("expires_at")
        if expires_at is None:
            return True
        return time.time() < float(expires_at) - self.EXPIRY_SKEW_SECONDS

    async def get_bearer_token(self) -> str:
        tokens = self._tokens
        if self._is_valid(tokens):
            return tokens["access_token"]

        async with self._refresh_lock:
            # Another transfer may have refreshed while we waited
            if self._is_valid(self._tokens):
                return self._tokens["access_token"]

            stored = await self.store.load()
            if stored is None:
                raise AuthExpiredError(reason="no stored credentials; authenticate first")
            if self._is_valid(stored):
                self._tokens = stored
                return stored["access_token"]

            refresh_token = stored.get("refresh_token")
            if not refresh_token:
                raise AuthExpiredError(reason="access token expired and no refresh token is stored")

            logger.info("Refreshing destination access token")
            fresh = await self.oauth_client.refresh(refresh_token)
            merged = {**stored, **fresh}
            await self.store.save(merged)
            self._tokens = merged
            return merged["access_token"]

    def invalidate(self) -> None:
        """Forget the cached token so the next call reloads or refreshes it."""
        self._tokens = None
