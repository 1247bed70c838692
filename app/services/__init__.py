"""
Services package for MediaRelay.

This package contains the transfer pipeline (probe, session initiation,
chunk relay, completion) and the services around it.
"""

from .asset_prober import AssetProber
from .session_initiator import SessionInitiator
from .chunk_relay import ChunkRelay, parse_confirmed_offset
from .completion_resolver import CompletionResolver
from .credentials import (
    CredentialStore,
    InMemoryCredentialStore,
    JsonFileCredentialStore,
    TokenSupplier,
    StaticTokenSupplier,
    RefreshingTokenSupplier,
)
from .progress import ProgressChannel, ProgressEvent, Subscription
from .transfer_engine import MediaTransferEngine, TransferOutcome

from .cache_manager import (
    CacheManager,
    cache_manager,
)

__all__ = [
    # Pipeline
    'AssetProber',
    'SessionInitiator',
    'ChunkRelay',
    'parse_confirmed_offset',
    'CompletionResolver',
    'MediaTransferEngine',
    'TransferOutcome',
    # Credentials
    'CredentialStore',
    'InMemoryCredentialStore',
    'JsonFileCredentialStore',
    'TokenSupplier',
    'StaticTokenSupplier',
    'RefreshingTokenSupplier',
    # Progress
    'ProgressChannel',
    'Subscription',
    'ProgressEvent',
    # Cache management
    'CacheManager',
    'cache_manager',
]
