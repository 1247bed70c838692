"""
Transfer-related data models for MediaRelay.

This module contains Pydantic models for destination video metadata,
transfer requests, and responses.
"""

from pydantic import BaseModel, Field, field_validator
from typing import Any, Dict, List, Optional, Literal
from datetime import datetime, timezone
import re


URL_PATTERN = re.compile(
    r'^https?://'  # http:// or https://
    r'(?:(?:[A-Z0-9](?:[A-Z0-9-]{0,61}[A-Z0-9])?\.)+[A-Z]{2,63}\.?|'  # domain...
    r'localhost|'  # localhost...
    r'\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3})'  # ...or ip
    r'(?::\d+)?'  # optional port
    r'(?:/?|[/?]\S+)$', re.IGNORECASE)


def _validate_http_url(v: str) -> str:
    if not v or len(v.strip()) == 0:
        raise ValueError('URL cannot be empty')
    v = v.strip()
    if not URL_PATTERN.match(v):
        raise ValueError('Invalid URL format')
    return v


class VideoDetails(BaseModel):
    """Metadata attached to the uploaded video on the destination."""

    title: str = Field(..., description="Video title (max 100 characters)")
    description: str = Field("", description="Video description (max 5000 characters)")
    privacy_status: Literal['public', 'private', 'unlisted'] = Field(
        'private', description="Visibility of the uploaded video"
    )
    made_for_kids: bool = Field(False, description="Self-declared made-for-kids flag")
    tags: List[str] = Field(default_factory=list, description="Video tags")
    category_id: Optional[str] = Field(None, description="Destination category ID")
    publish_at: Optional[datetime] = Field(None, description="Scheduled publish time (private videos only)")

    @field_validator('title')
    @classmethod
    def validate_title(cls, v):
        """Validate video title."""
        if not v or len(v.strip()) == 0:
            raise ValueError('Title cannot be empty')
        if len(v) > 100:
            raise ValueError('Title cannot exceed 100 characters')
        if '<' in v or '>' in v:
            raise ValueError('Title cannot contain angle brackets')
        return v.strip()

    @field_validator('description')
    @classmethod
    def validate_description(cls, v):
        """Validate video description."""
        if len(v.encode('utf-8')) > 5000:
            raise ValueError('Description cannot exceed 5000 bytes')
        if '<' in v or '>' in v:
            raise ValueError('Description cannot contain angle brackets')
        return v

    @field_validator('category_id')
    @classmethod
    def validate_category_id(cls, v):
        """Validate category ID."""
        if v is not None and not v.isdigit():
            raise ValueError('Category ID must be numeric')
        return v

    @field_validator('publish_at')
    @classmethod
    def validate_publish_at(cls, v, info):
        """Scheduled publishing only applies to private videos."""
        if v is not None and info.data.get('privacy_status') != 'private':
            raise ValueError('publish_at requires privacy_status "private"')
        return v

    def to_resource(self) -> Dict[str, Any]:
        """Build the snippet/status resource sent when opening the upload session."""
        snippet: Dict[str, Any] = {
            "title": self.title,
            "description": self.description,
        }
        if self.tags:
            snippet["tags"] = self.tags
        if self.category_id:
            snippet["categoryId"] = self.category_id

        status: Dict[str, Any] = {
            "privacyStatus": self.privacy_status,
            "selfDeclaredMadeForKids": self.made_for_kids,
        }
        if self.publish_at:
            publish_at = self.publish_at
            if publish_at.tzinfo is None:
                publish_at = publish_at.replace(tzinfo=timezone.utc)
            status["publishAt"] = publish_at.isoformat()

        return {"snippet": snippet, "status": status}


class TransferRequest(BaseModel):
    """Model representing a transfer request."""

    source_url: str = Field(..., description="URL of the source video (must support HTTP Range)")
    metadata: VideoDetails = Field(..., description="Destination video metadata")
    thumbnail_url: Optional[str] = Field(None, description="Optional thumbnail image URL")

    @field_validator('source_url')
    @classmethod
    def validate_source_url(cls, v):
        """Validate source URL."""
        return _validate_http_url(v)

    @field_validator('thumbnail_url')
    @classmethod
    def validate_thumbnail_url(cls, v):
        """Validate thumbnail URL."""
        if v is None:
            return v
        return _validate_http_url(v)


class TransferResponse(BaseModel):
    """Model representing a transfer task status."""

    task_id: str = Field(..., description="Unique task identifier")
    status: Literal['pending', 'init', 'session_open', 'transferring', 'complete', 'failed'] = Field(
        ..., description="Transfer status"
    )
    progress: int = Field(0, description="Confirmed bytes as a percentage (0-100)")
    bytes_confirmed: int = Field(0, description="Bytes confirmed by the destination")
    total_size: Optional[int] = Field(None, description="Source size in bytes")
    asset_id: Optional[str] = Field(None, description="Destination asset ID when complete")
    error_code: Optional[str] = Field(None, description="Error code if failed")
    error_message: Optional[str] = Field(None, description="Error message if failed")
    thumbnail_error: Optional[str] = Field(None, description="Thumbnail failure, if any")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), description="Task creation time")

    @field_validator('task_id')
    @classmethod
    def validate_task_id(cls, v):
        """Validate task ID format."""
        if not v or len(v.strip()) == 0:
            raise ValueError('Task ID cannot be empty')
        if not re.match(r'^[a-zA-Z0-9_-]+$', v):
            raise ValueError('Task ID must contain only alphanumeric characters, hyphens, and underscores')
        return v

    @field_validator('progress')
    @classmethod
    def validate_progress(cls, v):
        """Validate progress percentage."""
        if v < 0 or v > 100:
            raise ValueError('Progress must be between 0 and 100')
        return v

    @field_validator('asset_id')
    @classmethod
    def validate_asset_id(cls, v, info):
        """Asset ID is required once the transfer is complete."""
        if info.data.get('status') == 'complete' and not v:
            raise ValueError('Asset ID is required when status is complete')
        return v

    @field_validator('error_message')
    @classmethod
    def validate_error_message(cls, v, info):
        """Validate error message when status is failed."""
        if info.data.get('status') == 'failed' and not v:
            raise ValueError('Error message is required when status is failed')
        return v
