"""
Progress event channel for transfers.

The relay publishes events without knowing who listens; callers subscribe
and consume them as an async iterator.
"""

import asyncio
import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


logger = logging.getLogger(__name__)


@dataclass
class ProgressEvent:
    """A single observable step of a transfer."""

    kind: str  # session_opened | chunk_acked | chunk_retry | resynced | completed | failed
    bytes_confirmed: int
    total_size: Optional[int]
    chunk_index: Optional[int] = None
    attempt: Optional[int] = None
    detail: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


class ProgressChannel:
    """
    Fan-out channel of ProgressEvents.

    Every subscriber gets its own queue, so a slow consumer never blocks the
    relay. Closing the channel ends all subscriptions.
    """

    def __init__(self, history_size: int = 200):
        self._subscribers: List[asyncio.Queue] = []
        self._history: List[ProgressEvent] = []
        self._history_size = history_size
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def history(self) -> List[ProgressEvent]:
        return list(self._history)

    def publish(self, event: ProgressEvent) -> None:
        if self._closed:
            logger.debug(f"Dropping {event.kind} event on closed channel")
            return
        self._history.append(event)
        if len(self._history) > self._history_size:
            self._history.pop(0)
        for queue in self._subscribers:
            queue.put_nowait(event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for queue in self._subscribers:
            queue.put_nowait(None)

    def subscribe(self) -> "Subscription":
        """Register a subscriber now; it receives every event published from here on."""
        queue: asyncio.Queue = asyncio.Queue()
        if self._closed:
            queue.put_nowait(None)
        else:
            self._subscribers.append(queue)
        return Subscription(self, queue)

    def _unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)


class Subscription:
    """Async iterator over one subscriber's events, ending when the channel closes."""

    def __init__(self, channel: ProgressChannel, queue: asyncio.Queue):
        self._channel = channel
        self._queue = queue
        self._done = False

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> ProgressEvent:
        if self._done:
            raise StopAsyncIteration
        event = await self._queue.get()
        if event is None:
            self.close()
            raise StopAsyncIteration
        return event

    def close(self) -> None:
        """Stop receiving events."""
        self._done = True
        self._channel._unsubscribe(self._queue)
