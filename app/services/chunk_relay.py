"""
Chunk relay for resumable uploads.

Moves the source asset to an open destination session one byte range at a
time. Every upload is addressed by the destination's last confirmed offset;
after any transient failure the relay asks the destination where it stands
(status probe) instead of trusting its own bookkeeping.

Chunk states: PENDING -> FETCHED -> ACKED, with RETRYABLE_FAILURE looping
back to PENDING (bounded) and FATAL_FAILURE ending the session.
"""

import asyncio
import logging
import re
from typing import Optional, Tuple

import httpx

from app.core.config import settings
from app.core.exceptions import (
    AuthExpiredError, FatalProtocolError, RangeFetchError, RetryableTransportError,
    TransferCancelledError, TransferError, TRANSIENT_STATUS_CODES,
    classify_upload_status, parse_retry_after
)
from app.core.retry import RetryConfig
from app.models.session import Chunk, ChunkStatus, TransferSession, TransferStatus, plan_chunk
from app.services.credentials import TokenSupplier
from app.services.progress import ProgressChannel, ProgressEvent


logger = logging.getLogger(__name__)

_RANGE_RE = re.compile(r"^\s*bytes\s*=\s*(\d+)\s*-\s*(\d+)\s*$", re.IGNORECASE)


def parse_confirmed_offset(range_header: Optional[str]) -> int:
    """
    Translate a 308 response's Range header into the next byte to send.

    "bytes=0-4999999" means 5,000,000 bytes are durably stored. No header
    means nothing has been stored yet.
    """
    if not range_header:
        return 0
    match = _RANGE_RE.match(range_header)
    if not match:
        raise FatalProtocolError(f"unparseable Range header {range_header!r}")
    start, end = int(match.group(1)), int(match.group(2))
    if start != 0 or end < start:
        raise FatalProtocolError(f"unexpected confirmed range {range_header!r}")
    return end + 1


class ChunkRelay:
    """Sequential single-writer uploader for one destination session."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        token_supplier: TokenSupplier,
        max_chunk_size: Optional[int] = None,
        retry_config: Optional[RetryConfig] = None,
        prefetch: Optional[bool] = None,
        timeout: Optional[float] = None
    ):
        self.client = client
        self.token_supplier = token_supplier
        self.max_chunk_size = settings.validate_chunk_size(max_chunk_size or settings.max_chunk_size)
        self.retry_config = retry_config or RetryConfig.from_settings()
        self.prefetch = settings.prefetch_enabled if prefetch is None else prefetch
        self.timeout = timeout or settings.request_timeout

    async def relay(
        self,
        session: TransferSession,
        cancel_event: Optional[asyncio.Event] = None,
        progress: Optional[ProgressChannel] = None
    ) -> httpx.Response:
        """
        Upload every remaining byte of the session.

        Args:
            session: Session with probed asset and open destination handle
            cancel_event: Checked at each chunk boundary
            progress: Channel receiving chunk_acked/chunk_retry/resynced events

        Returns:
            The destination's terminal 200/201 response

        Raises:
            FatalProtocolError: Retry ceiling exceeded or non-retryable protocol failure
            AuthExpiredError: Destination rejected the bearer token
            RangeFetchError: Source did not honor a byte range
            TransferCancelledError: cancel_event was set
        """
        if session.destination_session_handle is None or session.total_size is None:
            raise ValueError("relay requires a probed asset and an open session")

        total = session.total_size
        session.status = TransferStatus.TRANSFERRING
        failures = 0
        needs_resync = False
        last_confirmed = session.cursor
        prefetched: Optional[Tuple[int, int, asyncio.Task]] = None

        try:
            while True:
                if cancel_event is not None and cancel_event.is_set():
                    logger.info(f"Transfer cancelled at byte {session.cursor} of {total}")
                    raise TransferCancelledError(cursor=session.cursor, attempts=session.total_attempts)

                chunk: Optional[Chunk] = None
                try:
                    if needs_resync or session.cursor >= total:
                        terminal = await self._status_probe(session, progress)
                        if terminal is not None:
                            session.confirm_offset(total)
                            return terminal
                        if session.cursor >= total:
                            raise FatalProtocolError(
                                "destination confirmed every byte but did not report completion",
                                cursor=session.cursor
                            )
                        needs_resync = False
                    else:
                        chunk = self._plan(session.cursor, total)
                        chunk.attempt = failures + 1
                        if prefetched is not None and prefetched[0] > chunk.end_byte:
                            pending = None
                        else:
                            pending, prefetched = prefetched, None
                        chunk.data = await self._obtain(session, chunk, pending)
                        chunk.status = ChunkStatus.FETCHED

                        if self.prefetch and prefetched is None and chunk.end_byte + 1 < total:
                            upcoming = self._plan(chunk.end_byte + 1, total)
                            prefetched = (
                                upcoming.start_byte,
                                upcoming.end_byte,
                                asyncio.create_task(self._fetch(session, upcoming))
                            )

                        session.total_attempts += 1
                        response = await self._upload(session, chunk)
                        terminal = self._interpret(session, chunk, response, progress)
                        if terminal is not None:
                            return terminal

                except RetryableTransportError as e:
                    failures += 1
                    if chunk is not None:
                        chunk.status = ChunkStatus.RETRYABLE_FAILURE
                    self._publish(progress, session, "chunk_retry", chunk, failures, e.message)

                    if failures >= self.retry_config.max_attempts:
                        if chunk is not None:
                            chunk.status = ChunkStatus.FATAL_FAILURE
                        raise FatalProtocolError(
                            f"transient failures exceeded {self.retry_config.max_attempts} attempts "
                            f"at byte {session.cursor}: {e.message}",
                            cursor=session.cursor,
                            attempts=failures,
                            upstream_status=e.upstream_status,
                            upstream_body=e.upstream_body
                        )

                    delay = self.retry_config.calculate_delay(failures - 1)
                    if e.retry_after is not None:
                        delay = max(delay, min(e.retry_after, self.retry_config.max_delay))
                    logger.warning(
                        f"Transient failure at byte {session.cursor} (attempt {failures}), "
                        f"resyncing in {delay:.2f}s: {e.message}"
                    )
                    await asyncio.sleep(delay)
                    needs_resync = True
                    continue

                except TransferError as e:
                    if chunk is not None:
                        chunk.status = ChunkStatus.FATAL_FAILURE
                    raise e.with_context(cursor=session.cursor, attempts=failures + 1)

                if session.cursor > last_confirmed:
                    last_confirmed = session.cursor
                    failures = 0
        finally:
            if prefetched is not None:
                await self._discard(prefetched[2])

    def _plan(self, cursor: int, total: int) -> Chunk:
        """
        Plan the chunk starting at the cursor without crossing a chunk boundary.

        Boundaries sit at multiples of max_chunk_size, so after a partial
        acceptance only the rest of the interrupted chunk is sent next.
        """
        index = cursor // self.max_chunk_size
        boundary = (index + 1) * self.max_chunk_size
        return plan_chunk(index, cursor, total, boundary - cursor)

    async def _obtain(
        self,
        session: TransferSession,
        chunk: Chunk,
        prefetched: Optional[Tuple[int, int, asyncio.Task]]
    ) -> bytes:
        """Use the prefetched bytes if they match this chunk exactly, else fetch."""
        if prefetched is not None:
            start, end, task = prefetched
            if start == chunk.start_byte and end == chunk.end_byte:
                return await task
            await self._discard(task)
        return await self._fetch(session, chunk)

    async def _fetch(self, session: TransferSession, chunk: Chunk) -> bytes:
        """Read exactly [start_byte, end_byte] from the source."""
        try:
            response = await self.client.get(
                session.source_locator,
                headers={"Range": chunk.range_header()},
                follow_redirects=True,
                timeout=self.timeout
            )
        except httpx.HTTPError as e:
            raise RetryableTransportError(f"source fetch failed: {e or type(e).__name__}")

        status = response.status_code
        if status in TRANSIENT_STATUS_CODES or status >= 500:
            raise RetryableTransportError(
                f"source returned HTTP {status}",
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
                upstream_status=status
            )
        if status == 200:
            if not (chunk.start_byte == 0 and chunk.end_byte == session.total_size - 1):
                raise RangeFetchError(
                    chunk.start_byte, chunk.end_byte,
                    "source ignored the Range header",
                    upstream_status=status
                )
        elif status != 206:
            raise RangeFetchError(
                chunk.start_byte, chunk.end_byte,
                f"source returned HTTP {status}",
                upstream_status=status,
                upstream_body=response.text[:500]
            )

        data = response.content
        if len(data) != chunk.length:
            raise RangeFetchError(
                chunk.start_byte, chunk.end_byte,
                f"expected {chunk.length} bytes, received {len(data)}",
                upstream_status=status
            )
        return data

    async def _put(self, session: TransferSession, content: bytes, content_range: str) -> httpx.Response:
        token = await self.token_supplier.get_bearer_token()
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Range": content_range,
            "Content-Type": session.mime_type,
        }
        try:
            return await self.client.put(
                session.destination_session_handle,
                content=content,
                headers=headers,
                timeout=self.timeout
            )
        except httpx.HTTPError as e:
            raise RetryableTransportError(f"destination request failed: {e or type(e).__name__}")

    async def _upload(self, session: TransferSession, chunk: Chunk) -> httpx.Response:
        logger.debug(f"Uploading {chunk!r}")
        return await self._put(session, chunk.data, chunk.content_range(session.total_size))

    async def _status_probe(
        self,
        session: TransferSession,
        progress: Optional[ProgressChannel]
    ) -> Optional[httpx.Response]:
        """
        Ask the destination for its confirmed offset and resync the cursor to it.

        Returns:
            The terminal response if the destination reports the asset complete
        """
        response = await self._put(session, b"", f"bytes */{session.total_size}")
        kind = self._raise_for_status(response)
        if kind == "complete":
            return response

        offset = parse_confirmed_offset(response.headers.get("Range"))
        previous = session.cursor
        session.confirm_offset(offset)
        logger.info(f"Status probe: destination confirmed {offset} bytes (cursor was {previous})")
        self._publish(progress, session, "resynced", None, None, f"confirmed offset {offset}")
        return None

    def _interpret(
        self,
        session: TransferSession,
        chunk: Chunk,
        response: httpx.Response,
        progress: Optional[ProgressChannel]
    ) -> Optional[httpx.Response]:
        kind = self._raise_for_status(response, chunk)
        if kind == "complete":
            session.confirm_offset(session.total_size)
            chunk.status = ChunkStatus.ACKED
            session.chunks_acked += 1
            self._publish(progress, session, "chunk_acked", chunk, chunk.attempt)
            return response

        offset = parse_confirmed_offset(response.headers.get("Range"))
        if not session.confirm_offset(offset):
            raise RetryableTransportError(
                f"destination accepted none of bytes {chunk.start_byte}-{chunk.end_byte}",
                upstream_status=response.status_code
            )

        if offset > chunk.end_byte:
            chunk.status = ChunkStatus.ACKED
            session.chunks_acked += 1
            self._publish(progress, session, "chunk_acked", chunk, chunk.attempt)
        else:
            # Partial acceptance: the rest of this chunk is sent next
            logger.info(
                f"Destination kept {offset - chunk.start_byte} of {chunk.length} bytes "
                f"of chunk {chunk.index}; resuming at {offset}"
            )
            self._publish(progress, session, "resynced", chunk, chunk.attempt, f"confirmed offset {offset}")
        return None

    def _raise_for_status(self, response: httpx.Response, chunk: Optional[Chunk] = None) -> str:
        """Map a destination response onto the relay's failure classes."""
        status = response.status_code
        kind = classify_upload_status(status)
        if kind in ("complete", "incomplete"):
            return kind

        if kind == "transient":
            raise RetryableTransportError(
                f"destination returned HTTP {status}",
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
                upstream_status=status,
                upstream_body=response.text[:500]
            )

        if chunk is not None:
            chunk.status = ChunkStatus.FATAL_FAILURE
        if kind == "auth":
            raise AuthExpiredError(
                reason=f"upload returned HTTP {status}",
                upstream_status=status,
                upstream_body=response.text
            )
        raise FatalProtocolError(
            f"destination returned HTTP {status}",
            upstream_status=status,
            upstream_body=response.text
        )

    @staticmethod
    def _publish(
        progress: Optional[ProgressChannel],
        session: TransferSession,
        kind: str,
        chunk: Optional[Chunk],
        attempt: Optional[int],
        detail: Optional[str] = None
    ) -> None:
        if progress is None:
            return
        progress.publish(ProgressEvent(
            kind=kind,
            bytes_confirmed=session.cursor,
            total_size=session.total_size,
            chunk_index=chunk.index if chunk is not None else None,
            attempt=attempt,
            detail=detail
        ))

    @staticmethod
    async def _discard(task: asyncio.Task) -> None:
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except TransferError as e:
            logger.debug(f"Discarded prefetch failed: {e.message}")
