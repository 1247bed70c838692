"""
End-to-end media transfer.

Composes the pipeline for one transfer:

    AssetProber -> SessionInitiator -> ChunkRelay -> CompletionResolver

Usage:
    engine = MediaTransferEngine(StaticTokenSupplier(token))
    outcome = await engine.transfer(
        "https://cdn.example.com/video.mp4",
        VideoDetails(title="Launch", privacy_status="unlisted")
    )
    if outcome.success:
        print(f"Uploaded as {outcome.asset_id}")
    else:
        print(f"Failed: {outcome.error.message}")
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Union

import httpx

from app.core.config import settings
from app.core.exceptions import MediaRelayException, TransferError
from app.core.retry import RetryConfig
from app.models.session import TransferSession
from app.models.transfer import VideoDetails
from app.services.asset_prober import AssetProber
from app.services.chunk_relay import ChunkRelay
from app.services.completion_resolver import CompletionResolver
from app.services.credentials import TokenSupplier
from app.services.progress import ProgressChannel, ProgressEvent
from app.services.session_initiator import SessionInitiator


logger = logging.getLogger(__name__)


class TransferOutcome:
    """Result of a transfer; failures are reported here instead of raised."""

    def __init__(
        self,
        session: TransferSession,
        asset_id: Optional[str] = None,
        error: Optional[MediaRelayException] = None
    ):
        self.session = session
        self.asset_id = asset_id
        self.error = error

    @property
    def success(self) -> bool:
        return self.error is None and self.asset_id is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "asset_id": self.asset_id,
            "error": self.error.to_dict() if self.error else None,
            "session": self.session.to_dict(),
        }


class MediaTransferEngine:
    """
    Relays a remote video into a resumable upload session.

    HTTP client handling:
        By default a client is created per transfer and closed afterwards.
        Pass a shared httpx.AsyncClient to reuse connections across
        transfers (the caller then owns its lifetime).
    """

    def __init__(
        self,
        token_supplier: TokenSupplier,
        client: Optional[httpx.AsyncClient] = None,
        max_chunk_size: Optional[int] = None,
        retry_config: Optional[RetryConfig] = None,
        prefetch: Optional[bool] = None,
        upload_endpoint: Optional[str] = None,
        probe_retry_config: Optional[RetryConfig] = None
    ):
        """
        Initialize the engine.

        Args:
            token_supplier: Source of bearer tokens for every destination request
            client: Optional shared HTTP client (None = one per transfer)
            max_chunk_size: Chunk size in bytes, must be a multiple of 256 KiB
            retry_config: Backoff and attempt ceiling for chunk uploads
            prefetch: Fetch the next chunk while the current one uploads
            upload_endpoint: Resumable upload endpoint of the destination
            probe_retry_config: Backoff for the HEAD probe

        Raises:
            ConfigurationError: If max_chunk_size is not a multiple of the granularity
        """
        self.token_supplier = token_supplier
        self._client = client
        self.max_chunk_size = settings.validate_chunk_size(max_chunk_size or settings.max_chunk_size)
        self.retry_config = retry_config or RetryConfig.from_settings()
        self.prefetch = prefetch
        self.upload_endpoint = upload_endpoint
        self.probe_retry_config = probe_retry_config
        self.resolver = CompletionResolver()

    async def transfer(
        self,
        source_url: str,
        metadata: Union[VideoDetails, Dict[str, Any]],
        *,
        cancel_event: Optional[asyncio.Event] = None,
        progress: Optional[ProgressChannel] = None
    ) -> TransferOutcome:
        """
        Transfer the asset at source_url to the destination.

        Args:
            source_url: HTTP(S) URL of the source video
            metadata: VideoDetails or a ready destination resource dict
            cancel_event: Set it to stop the transfer at the next chunk boundary
            progress: Channel receiving progress events; closed when the transfer ends

        Returns:
            TransferOutcome with the destination asset ID or the error
        """
        resource = metadata.to_resource() if isinstance(metadata, VideoDetails) else dict(metadata)
        session = TransferSession(source_url)
        client = self._client or httpx.AsyncClient(timeout=httpx.Timeout(settings.request_timeout))

        try:
            asset_id = await self._run(client, session, resource, cancel_event, progress)
            session.complete(asset_id)
            logger.info(
                f"Transfer of {source_url} complete: asset {asset_id}, "
                f"{session.total_size} bytes in {session.chunks_acked} chunks"
            )
            self._publish(progress, session, "completed", asset_id)
            return TransferOutcome(session, asset_id=asset_id)

        except MediaRelayException as e:
            if isinstance(e, TransferError):
                e.with_context(cursor=session.cursor)
            session.fail(e.message)
            logger.error(
                f"Transfer of {source_url} failed at byte {session.cursor}: "
                f"{e.error_code.value}: {e.message}"
            )
            self._publish(progress, session, "failed", e.error_code.value)
            return TransferOutcome(session, error=e)

        finally:
            if progress is not None:
                progress.close()
            if self._client is None:
                await client.aclose()

    def transfer_sync(
        self,
        source_url: str,
        metadata: Union[VideoDetails, Dict[str, Any]],
        **kwargs
    ) -> TransferOutcome:
        """Blocking wrapper around transfer() for callers without an event loop."""
        return asyncio.run(self.transfer(source_url, metadata, **kwargs))

    async def _run(
        self,
        client: httpx.AsyncClient,
        session: TransferSession,
        resource: Dict[str, Any],
        cancel_event: Optional[asyncio.Event],
        progress: Optional[ProgressChannel]
    ) -> str:
        prober = AssetProber(client)
        if self.probe_retry_config is not None:
            prober.retry.config = self.probe_retry_config
        asset = await prober.probe(session.source_locator)
        session.set_asset(asset)

        token = await self.token_supplier.get_bearer_token()
        initiator = SessionInitiator(client, self.upload_endpoint)
        handle = await initiator.open_session(asset, resource, token)
        session.open(handle)
        self._publish(progress, session, "session_opened")

        relay = ChunkRelay(
            client,
            self.token_supplier,
            max_chunk_size=self.max_chunk_size,
            retry_config=self.retry_config,
            prefetch=self.prefetch
        )
        terminal = await relay.relay(session, cancel_event=cancel_event, progress=progress)
        return self.resolver.resolve(terminal)

    @staticmethod
    def _publish(
        progress: Optional[ProgressChannel],
        session: TransferSession,
        kind: str,
        detail: Optional[str] = None
    ) -> None:
        if progress is None:
            return
        progress.publish(ProgressEvent(
            kind=kind,
            bytes_confirmed=session.cursor,
            total_size=session.total_size,
            detail=detail
        ))
