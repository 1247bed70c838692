"""
Asynchronous transfer processing service for MediaRelay.

This module provides the task queue that runs transfers in the background,
with concurrency limits, cancellation, progress tracking and cleanup of
finished tasks.
"""

import asyncio
import uuid
import logging
from typing import Dict, Any, Optional, List
from datetime import datetime, timezone

from app.models.transfer import TransferRequest, TransferResponse
from app.services.cache_manager import cache_manager
from app.services.credentials import JsonFileCredentialStore, RefreshingTokenSupplier, TokenSupplier
from app.services.progress import ProgressChannel, ProgressEvent
from app.services.thumbnail_uploader import ThumbnailUploader
from app.services.transfer_engine import MediaTransferEngine, TransferOutcome
from app.core.config import settings
from app.core.exceptions import ErrorCode, TransferCancelledError


# Configure logging
logger = logging.getLogger(__name__)


_EVENT_STATUS = {
    "session_opened": "session_open",
    "chunk_acked": "transferring",
    "chunk_retry": "transferring",
    "resynced": "transferring",
}


class TransferTask:
    """Represents a queued or running transfer with progress tracking."""

    def __init__(self, task_id: str, request: TransferRequest):
        self.task_id = task_id
        self.request = request
        self.status = "pending"
        self.bytes_confirmed = 0
        self.total_size: Optional[int] = None
        self.asset_id: Optional[str] = None
        self.error_code: Optional[str] = None
        self.error_message: Optional[str] = None
        self.thumbnail_error: Optional[str] = None
        self.cancel_event = asyncio.Event()
        self.progress_channel = ProgressChannel()
        self.created_at = datetime.now(timezone.utc)
        self.started_at: Optional[datetime] = None
        self.completed_at: Optional[datetime] = None

    @property
    def finished(self) -> bool:
        return self.status in ("complete", "failed")

    @property
    def progress(self) -> int:
        if self.status == "complete":
            return 100
        if not self.total_size:
            return 0
        return int(self.bytes_confirmed * 100 / self.total_size)

    @property
    def events(self) -> List[ProgressEvent]:
        return self.progress_channel.history

    def refresh(self) -> None:
        """Update the live fields from the latest progress event."""
        history = self.progress_channel.history
        if not history or self.finished:
            return
        latest = history[-1]
        self.bytes_confirmed = latest.bytes_confirmed
        self.total_size = latest.total_size
        self.status = _EVENT_STATUS.get(latest.kind, self.status)

    def apply_outcome(self, outcome: TransferOutcome) -> None:
        session = outcome.session
        self.bytes_confirmed = session.cursor
        self.total_size = session.total_size
        self.completed_at = datetime.now(timezone.utc)
        if outcome.success:
            self.status = "complete"
            self.asset_id = outcome.asset_id
        else:
            self.fail(outcome.error.error_code.value, outcome.error.message)

    def fail(self, error_code: str, error_message: str) -> None:
        self.status = "failed"
        self.error_code = error_code
        self.error_message = error_message
        self.completed_at = self.completed_at or datetime.now(timezone.utc)

    def to_response(self) -> TransferResponse:
        self.refresh()
        return TransferResponse(
            task_id=self.task_id,
            status=self.status,
            progress=self.progress,
            bytes_confirmed=self.bytes_confirmed,
            total_size=self.total_size,
            asset_id=self.asset_id,
            error_code=self.error_code,
            error_message=self.error_message,
            thumbnail_error=self.thumbnail_error,
            created_at=self.created_at
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert task to dictionary for serialization."""
        self.refresh()
        return {
            "task_id": self.task_id,
            "status": self.status,
            "progress": self.progress,
            "bytes_confirmed": self.bytes_confirmed,
            "total_size": self.total_size,
            "asset_id": self.asset_id,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "thumbnail_error": self.thumbnail_error,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "request": {
                "source_url": self.request.source_url,
                "title": self.request.metadata.title,
                "thumbnail_url": self.request.thumbnail_url
            }
        }


class TransferManager:
    """
    Asynchronous transfer manager with task queue.

    Features:
    - Async task queue for concurrent transfers
    - Progress tracking and status updates mirrored to Redis
    - Cancellation at chunk boundaries
    - Background cleanup of finished tasks
    """

    def __init__(
        self,
        token_supplier: Optional[TokenSupplier] = None,
        max_concurrent_transfers: Optional[int] = None,
        engine: Optional[MediaTransferEngine] = None
    ):
        """
        Initialize transfer manager.

        Args:
            token_supplier: Bearer-token source shared by all transfers
            max_concurrent_transfers: Maximum number of concurrent transfers
            engine: Transfer engine, built from the token supplier if None
        """
        self.token_supplier = token_supplier or RefreshingTokenSupplier(JsonFileCredentialStore())
        self.max_concurrent_transfers = max_concurrent_transfers or settings.max_concurrent_transfers
        self.engine = engine or MediaTransferEngine(self.token_supplier)

        # Task management
        self.active_tasks: Dict[str, TransferTask] = {}
        self.task_queue = asyncio.Queue()
        self.transfer_semaphore = asyncio.Semaphore(self.max_concurrent_transfers)

        # Cleanup settings
        self.cleanup_interval = settings.cleanup_interval
        self.task_ttl = settings.task_ttl

        # Background tasks
        self._worker_tasks: List[asyncio.Task] = []
        self._cleanup_task: Optional[asyncio.Task] = None
        self._running = False

    async def start(self):
        """Start the transfer manager and background tasks."""
        if self._running:
            return

        self._running = True
        logger.info("Starting transfer manager")

        for i in range(self.max_concurrent_transfers):
            task = asyncio.create_task(self._worker())
            self._worker_tasks.append(task)

        self._cleanup_task = asyncio.create_task(self._cleanup_worker())

        logger.info(f"Transfer manager started with {self.max_concurrent_transfers} workers")

    async def stop(self):
        """Stop the transfer manager and cancel background tasks."""
        if not self._running:
            return

        self._running = False
        logger.info("Stopping transfer manager")

        for task in self._worker_tasks:
            task.cancel()

        if self._cleanup_task:
            self._cleanup_task.cancel()

        await asyncio.gather(*self._worker_tasks, self._cleanup_task, return_exceptions=True)

        self._worker_tasks.clear()
        self._cleanup_task = None

        logger.info("Transfer manager stopped")

    async def submit_transfer(self, request: TransferRequest) -> str:
        """
        Queue a transfer and return its task ID.

        Args:
            request: Validated transfer request

        Returns:
            str: Unique task ID for tracking
        """
        task_id = str(uuid.uuid4())
        task = TransferTask(task_id, request)
        self.active_tasks[task_id] = task

        await cache_manager.track_transfer(task_id, "pending", task.to_dict())
        await self.task_queue.put(task)

        logger.info(f"Transfer task {task_id} submitted for {request.source_url}")
        return task_id

    async def get_task_status(self, task_id: str) -> Optional[TransferResponse]:
        """
        Get transfer task status.

        Args:
            task_id: Task identifier

        Returns:
            TransferResponse with current status or None if not found
        """
        if task_id in self.active_tasks:
            return self.active_tasks[task_id].to_response()

        # Tasks removed by cleanup may still be mirrored in Redis
        cached_task = await cache_manager.get_transfer_status(task_id)
        if cached_task:
            snapshot = cached_task.get("snapshot", {})
            return TransferResponse(
                task_id=cached_task["task_id"],
                status=cached_task["status"],
                progress=snapshot.get("progress", 0),
                bytes_confirmed=snapshot.get("bytes_confirmed", 0),
                total_size=snapshot.get("total_size"),
                asset_id=snapshot.get("asset_id"),
                error_code=snapshot.get("error_code"),
                error_message=snapshot.get("error_message"),
                thumbnail_error=snapshot.get("thumbnail_error"),
                created_at=datetime.fromisoformat(snapshot.get("created_at") or cached_task["updated_at"])
            )

        return None

    def get_task_events(self, task_id: str) -> Optional[List[Dict[str, Any]]]:
        """
        Get the recorded progress events of a task.

        Returns:
            List of event dictionaries or None if the task is unknown
        """
        task = self.active_tasks.get(task_id)
        if task is None:
            return None
        return [event.to_dict() for event in task.events]

    async def cancel_transfer(self, task_id: str) -> bool:
        """
        Cancel a transfer task.

        Pending tasks fail immediately; running tasks stop at the next
        chunk boundary.

        Args:
            task_id: Task identifier

        Returns:
            bool: True if the cancellation was accepted
        """
        task = self.active_tasks.get(task_id)
        if task is None or task.finished:
            return False

        task.cancel_event.set()
        if task.status == "pending":
            error = TransferCancelledError()
            task.fail(error.error_code.value, error.message)
            task.progress_channel.close()
            await cache_manager.track_transfer(task_id, "failed", task.to_dict())

        logger.info(f"Transfer task {task_id} cancellation requested")
        return True

    async def _worker(self):
        """Background worker to process transfer tasks."""
        while self._running:
            try:
                task = await asyncio.wait_for(self.task_queue.get(), timeout=1.0)

                async with self.transfer_semaphore:
                    await self._process_transfer_task(task)

            except asyncio.TimeoutError:
                continue
            except Exception as e:
                logger.error(f"Worker error: {e}")
                await asyncio.sleep(1)

    async def _process_transfer_task(self, task: TransferTask):
        """
        Run a single transfer task to completion.

        Args:
            task: Transfer task to process
        """
        if task.status != "pending":
            logger.info(f"Skipping transfer task {task.task_id} ({task.status})")
            return

        logger.info(f"Processing transfer task {task.task_id}")
        task.status = "init"
        task.started_at = datetime.now(timezone.utc)
        await cache_manager.track_transfer(task.task_id, "init", task.to_dict())

        try:
            outcome = await self.engine.transfer(
                task.request.source_url,
                task.request.metadata,
                cancel_event=task.cancel_event,
                progress=task.progress_channel
            )
        except Exception as e:
            logger.exception(f"Transfer task {task.task_id} crashed")
            task.fail(ErrorCode.INTERNAL_ERROR.value, str(e))
            await cache_manager.track_transfer(task.task_id, "failed", task.to_dict())
            return

        task.apply_outcome(outcome)

        if outcome.success and task.request.thumbnail_url:
            uploader = ThumbnailUploader(self.token_supplier)
            task.thumbnail_error = await uploader.set_thumbnail(outcome.asset_id, task.request.thumbnail_url)

        await cache_manager.track_transfer(task.task_id, task.status, task.to_dict())
        logger.info(f"Transfer task {task.task_id} finished: {task.status}")

    async def _cleanup_worker(self):
        """Background worker to drop finished tasks from memory."""
        while self._running:
            try:
                self._cleanup_expired_tasks()
                await asyncio.sleep(self.cleanup_interval)

            except Exception as e:
                logger.error(f"Cleanup worker error: {e}")
                await asyncio.sleep(60)

    def _cleanup_expired_tasks(self) -> int:
        """Remove finished tasks older than the task TTL."""
        now = datetime.now(timezone.utc)
        expired_tasks = [
            task_id for task_id, task in self.active_tasks.items()
            if task.finished and task.completed_at
            and (now - task.completed_at).total_seconds() > self.task_ttl
        ]

        for task_id in expired_tasks:
            del self.active_tasks[task_id]

        if expired_tasks:
            logger.info(f"Cleanup completed: {len(expired_tasks)} tasks removed")
        return len(expired_tasks)

    async def get_stats(self) -> Dict[str, Any]:
        """
        Get transfer manager statistics.

        Returns:
            Dict with current statistics
        """
        tasks = list(self.active_tasks.values())
        for task in tasks:
            task.refresh()
        running = [t for t in tasks if t.status in ("init", "session_open", "transferring")]

        return {
            "active_transfers": len(running),
            "pending_transfers": self.task_queue.qsize(),
            "completed_transfers": len([t for t in tasks if t.status == "complete"]),
            "failed_transfers": len([t for t in tasks if t.status == "failed"]),
            "bytes_in_flight": sum(t.bytes_confirmed for t in running),
            "total_tasks": len(tasks),
            "max_concurrent": self.max_concurrent_transfers,
            "cleanup_interval": self.cleanup_interval,
            "task_ttl": self.task_ttl
        }


# Global transfer manager instance
transfer_manager = TransferManager()
