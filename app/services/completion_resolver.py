"""
Completion response interpretation.
"""

import json
from typing import Optional

import httpx

from app.core.config import settings
from app.core.exceptions import MalformedCompletionResponseError


class CompletionResolver:
    """Extracts the destination-assigned asset ID from the terminal response."""

    def __init__(self, id_field: Optional[str] = None):
        self.id_field = id_field or settings.completion_id_field

    def resolve(self, response: httpx.Response) -> str:
        """
        Return the created asset's identifier.

        Raises:
            MalformedCompletionResponseError: Body is not a JSON object or lacks the ID field
        """
        try:
            payload = json.loads(response.content or b"")
        except ValueError:
            raise MalformedCompletionResponseError(
                "body is not JSON",
                upstream_status=response.status_code,
                upstream_body=response.text
            )

        if not isinstance(payload, dict):
            raise MalformedCompletionResponseError(
                "body is not a JSON object",
                upstream_status=response.status_code,
                upstream_body=response.text
            )

        asset_id = payload.get(self.id_field)
        if not isinstance(asset_id, str) or not asset_id:
            raise MalformedCompletionResponseError(
                f"field '{self.id_field}' is missing",
                upstream_status=response.status_code,
                upstream_body=response.text
            )
        return asset_id
