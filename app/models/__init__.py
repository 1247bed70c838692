"""
Data models package for MediaRelay.

This package contains the transfer session state and the Pydantic models
used by the HTTP API.
"""

from .session import AssetInfo, Chunk, ChunkStatus, TransferSession, TransferStatus, plan_chunk
from .transfer import VideoDetails, TransferRequest, TransferResponse

__all__ = [
    # Session state
    'AssetInfo',
    'Chunk',
    'ChunkStatus',
    'TransferSession',
    'TransferStatus',
    'plan_chunk',

    # API models
    'VideoDetails',
    'TransferRequest',
    'TransferResponse',
]
