"""
Transfer session state for the chunked media relay.

TransferSession tracks one end-to-end transfer attempt; Chunk is one
bounded byte range attempted within it.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from app.core.exceptions import FatalProtocolError


class TransferStatus(str, Enum):
    """Lifecycle of a transfer session."""

    INIT = "init"
    SESSION_OPEN = "session_open"
    TRANSFERRING = "transferring"
    COMPLETE = "complete"
    FAILED = "failed"


class ChunkStatus(str, Enum):
    """Lifecycle of a single chunk."""

    PENDING = "pending"
    FETCHED = "fetched"
    ACKED = "acked"
    RETRYABLE_FAILURE = "retryable_failure"
    FATAL_FAILURE = "fatal_failure"


class AssetInfo:
    """Size and content type of a source asset."""

    def __init__(self, total_size: int, mime_type: str):
        self.total_size = total_size
        self.mime_type = mime_type

    def __repr__(self) -> str:
        return f"AssetInfo(total_size={self.total_size}, mime_type={self.mime_type!r})"


class Chunk:
    """One inclusive byte range [start_byte, end_byte] of the asset."""

    def __init__(self, index: int, start_byte: int, end_byte: int):
        self.index = index
        self.start_byte = start_byte
        self.end_byte = end_byte
        self.attempt = 1
        self.status = ChunkStatus.PENDING
        self.data: Optional[bytes] = None

    @property
    def length(self) -> int:
        return self.end_byte - self.start_byte + 1

    def content_range(self, total_size: int) -> str:
        return f"bytes {self.start_byte}-{self.end_byte}/{total_size}"

    def range_header(self) -> str:
        return f"bytes={self.start_byte}-{self.end_byte}"

    def __repr__(self) -> str:
        return (
            f"Chunk(index={self.index}, start={self.start_byte}, end={self.end_byte}, "
            f"attempt={self.attempt}, status={self.status.value})"
        )


def plan_chunk(index: int, cursor: int, total_size: int, max_chunk_size: int) -> Chunk:
    """
    Compute the next chunk starting at the cursor.

    Args:
        index: Sequence number of the chunk within the transfer
        cursor: First byte not yet confirmed by the destination
        total_size: Total asset size in bytes
        max_chunk_size: Upper bound on chunk length

    Returns:
        Chunk covering [cursor, min(cursor + max_chunk_size - 1, total_size - 1)]
    """
    if not 0 <= cursor < total_size:
        raise ValueError(f"cursor {cursor} outside asset of {total_size} bytes")
    end_byte = min(cursor + max_chunk_size - 1, total_size - 1)
    return Chunk(index=index, start_byte=cursor, end_byte=end_byte)


class TransferSession:
    """Represents one transfer from a source URL to a destination upload session."""

    def __init__(self, source_locator: str):
        self.source_locator = source_locator
        self._total_size: Optional[int] = None
        self._mime_type: Optional[str] = None
        self._destination_session_handle: Optional[str] = None
        self.cursor = 0
        self.status = TransferStatus.INIT
        self.result_asset_id: Optional[str] = None
        self.chunks_acked = 0
        self.total_attempts = 0
        self.error_message: Optional[str] = None
        self.created_at = datetime.now(timezone.utc)
        self.completed_at: Optional[datetime] = None

    @property
    def total_size(self) -> Optional[int]:
        return self._total_size

    @property
    def mime_type(self) -> Optional[str]:
        return self._mime_type

    @property
    def destination_session_handle(self) -> Optional[str]:
        return self._destination_session_handle

    def set_asset(self, asset: AssetInfo) -> None:
        """Fix size and content type; they never change afterwards."""
        if self._total_size is not None:
            raise ValueError("asset metadata is already set for this session")
        if asset.total_size < 0:
            raise ValueError("total size cannot be negative")
        self._total_size = asset.total_size
        self._mime_type = asset.mime_type

    def open(self, handle: str) -> None:
        """Attach the destination session handle."""
        if not handle:
            raise ValueError("destination session handle cannot be empty")
        if self._destination_session_handle is not None:
            raise ValueError("session handle already assigned")
        self._destination_session_handle = handle
        self.status = TransferStatus.SESSION_OPEN

    def confirm_offset(self, offset: int) -> bool:
        """
        Move the cursor to the destination's authoritative confirmed offset.

        Returns:
            True if the cursor advanced

        Raises:
            FatalProtocolError: If the offset regresses or exceeds the asset size
        """
        if offset < self.cursor:
            raise FatalProtocolError(
                f"destination confirmed offset {offset} below cursor {self.cursor}",
                cursor=self.cursor
            )
        if self._total_size is not None and offset > self._total_size:
            raise FatalProtocolError(
                f"destination confirmed offset {offset} beyond total size {self._total_size}",
                cursor=self.cursor
            )
        advanced = offset > self.cursor
        self.cursor = offset
        return advanced

    def complete(self, asset_id: str) -> None:
        self.result_asset_id = asset_id
        self.status = TransferStatus.COMPLETE
        self.completed_at = datetime.now(timezone.utc)

    def fail(self, message: str) -> None:
        self.status = TransferStatus.FAILED
        self.error_message = message
        self.completed_at = datetime.now(timezone.utc)

    @property
    def progress(self) -> int:
        """Confirmed bytes as a percentage (0-100)."""
        if not self._total_size:
            return 100 if self.status == TransferStatus.COMPLETE else 0
        return int(self.cursor * 100 / self._total_size)

    def to_dict(self) -> Dict[str, Any]:
        """Convert session to dictionary for serialization."""
        return {
            "source_locator": self.source_locator,
            "total_size": self._total_size,
            "mime_type": self._mime_type,
            "cursor": self.cursor,
            "status": self.status.value,
            "result_asset_id": self.result_asset_id,
            "chunks_acked": self.chunks_acked,
            "total_attempts": self.total_attempts,
            "progress": self.progress,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None
        }
