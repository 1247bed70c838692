"""
YouTube account authorization endpoints for MediaRelay.

The consent flow stores an offline refresh token so background transfers
can obtain access tokens without user interaction.
"""

import secrets
import time
import logging
from typing import Any, Dict, Optional

import httpx
from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse, RedirectResponse

from app.core.config import settings
from app.core.exceptions import ValidationError
from app.services.credentials import CredentialStore, JsonFileCredentialStore, RefreshingTokenSupplier
from app.services.oauth import GoogleOAuthClient
from app.services.transfer_manager import transfer_manager


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/youtube", tags=["auth"])

oauth_client = GoogleOAuthClient()

# state -> issue time; a state is accepted once, within STATE_TTL seconds
_issued_states: Dict[str, float] = {}
STATE_TTL = 600


def _issue_state() -> str:
    now = time.time()
    for state, issued_at in list(_issued_states.items()):
        if now - issued_at > STATE_TTL:
            del _issued_states[state]
    state = secrets.token_hex(32)
    _issued_states[state] = now
    return state


def _consume_state(state: str) -> bool:
    issued_at = _issued_states.pop(state, None)
    return issued_at is not None and time.time() - issued_at <= STATE_TTL


def _credential_store() -> CredentialStore:
    supplier = transfer_manager.token_supplier
    if isinstance(supplier, RefreshingTokenSupplier):
        return supplier.store
    return JsonFileCredentialStore()


async def _fetch_channel_info(access_token: str) -> Optional[Dict[str, Any]]:
    """Look up the authorized channel; None if the lookup fails."""
    try:
        async with httpx.AsyncClient(timeout=settings.request_timeout) as client:
            response = await client.get(
                settings.channels_endpoint,
                params={"part": "snippet,statistics", "mine": "true"},
                headers={"Authorization": f"Bearer {access_token}"}
            )
    except httpx.HTTPError as e:
        logger.warning(f"Channel lookup failed: {e}")
        return None

    if response.status_code != 200:
        logger.warning(f"Channel lookup returned HTTP {response.status_code}")
        return None
    items = response.json().get("items") or []
    return items[0] if items else None


@router.get(
    "/auth",
    summary="Authorize YouTube account",
    description="Redirect to the Google consent screen to grant upload access."
)
async def authorize() -> RedirectResponse:
    """Redirect the user to the Google OAuth consent screen."""
    url = oauth_client.build_authorization_url(_issue_state())
    return RedirectResponse(url=url, status_code=302)


@router.get(
    "/auth/callback",
    responses={
        200: {"description": "Account authorized and tokens stored"},
        401: {"description": "Code exchange rejected"},
        422: {"description": "Missing or unknown state"}
    },
    summary="OAuth callback",
    description="Exchange the authorization code for tokens and store them."
)
async def authorize_callback(
    code: str = Query(..., description="Authorization code"),
    state: str = Query(..., description="State issued by /auth")
) -> JSONResponse:
    """
    Complete the consent flow.

    Args:
        code: Authorization code returned by Google
        state: Anti-CSRF state issued by the /auth endpoint

    Returns:
        JSONResponse with the authorized channel, if it could be looked up
    """
    start_time = time.time()

    if not _consume_state(state):
        raise ValidationError("Unknown or expired OAuth state", field="state")

    tokens = await oauth_client.exchange_code(code)
    await _credential_store().save(tokens)

    supplier = transfer_manager.token_supplier
    if isinstance(supplier, RefreshingTokenSupplier):
        supplier.invalidate()

    if not tokens.get("refresh_token"):
        logger.warning("Token response carried no refresh token; background refresh will not work")

    channel = await _fetch_channel_info(tokens["access_token"])
    response_time = (time.time() - start_time) * 1000
    logger.info("YouTube account authorized")

    return JSONResponse(
        status_code=200,
        content={
            "success": True,
            "data": {
                "channel": channel,
                "has_refresh_token": bool(tokens.get("refresh_token")),
                "scope": tokens.get("scope")
            },
            "message": "User authenticated and tokens stored",
            "response_time_ms": round(response_time, 2)
        }
    )
