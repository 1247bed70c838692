"""
Transfer API endpoints for MediaRelay.

This module provides endpoints to submit source-to-destination transfers,
follow their progress and cancel them.
"""

import time
import logging
from fastapi import APIRouter
from fastapi.responses import JSONResponse

from app.core.exceptions import TransferNotFoundError
from app.models.transfer import TransferRequest, TransferResponse
from app.services.cache_manager import cache_manager
from app.services.transfer_manager import transfer_manager


# Configure logging
logger = logging.getLogger(__name__)

# Create API router
router = APIRouter(prefix="/api/v1", tags=["transfers"])


@router.post(
    "/transfers",
    response_model=TransferResponse,
    status_code=202,
    responses={
        202: {"description": "Transfer queued"},
        422: {"description": "Invalid request"},
        500: {"description": "Internal server error"}
    },
    summary="Start transfer",
    description="Queue a transfer of a remote video into a resumable upload session."
)
async def create_transfer(request: TransferRequest) -> JSONResponse:
    """
    Queue a transfer for background processing.

    Args:
        request: TransferRequest with source URL and video metadata

    Returns:
        JSONResponse with task ID and initial status
    """
    start_time = time.time()
    logger.info(f"Transfer request: {request.source_url}, title: {request.metadata.title}")

    # Ensure transfer manager is running
    if not transfer_manager._running:
        await transfer_manager.start()

    task_id = await transfer_manager.submit_transfer(request)
    task_status = await transfer_manager.get_task_status(task_id)

    response_time = (time.time() - start_time) * 1000
    logger.info(f"Transfer task {task_id} submitted, response time: {response_time:.2f}ms")

    return JSONResponse(
        status_code=202,
        content={
            "success": True,
            "data": task_status.model_dump(mode="json"),
            "message": "Transfer queued successfully",
            "response_time_ms": round(response_time, 2)
        }
    )


@router.get(
    "/transfers/stats",
    summary="Get transfer statistics",
    description="Get current transfer manager statistics"
)
async def get_transfer_stats() -> JSONResponse:
    """
    Get transfer manager statistics.

    Returns:
        JSONResponse with transfer statistics
    """
    stats = await transfer_manager.get_stats()
    stats["status_cache"] = cache_manager.get_cache_stats()

    return JSONResponse(
        status_code=200,
        content={
            "success": True,
            "data": stats,
            "timestamp": time.time()
        }
    )


@router.get(
    "/transfers/health",
    summary="Health check for transfer service",
    description="Check the health of the transfer service and background workers"
)
async def transfer_health_check() -> JSONResponse:
    """
    Health check endpoint for transfer service.

    Returns:
        JSONResponse with service health status
    """
    try:
        is_running = transfer_manager._running
        stats = await transfer_manager.get_stats()
        # The Redis status mirror is optional; losing it only degrades the service
        cache_health = await cache_manager.health_check()

        if not is_running:
            status = "unhealthy"
        elif cache_health["status"] != "healthy":
            status = "degraded"
        else:
            status = "healthy"

        health_data = {
            "service": "transfers",
            "status": status,
            "transfer_manager_running": is_running,
            "active_workers": len(transfer_manager._worker_tasks) if is_running else 0,
            "max_concurrent_transfers": transfer_manager.max_concurrent_transfers,
            "stats": stats,
            "cache": cache_health,
            "timestamp": time.time()
        }

        return JSONResponse(
            status_code=200 if is_running else 503,
            content=health_data
        )

    except Exception as e:
        logger.error(f"Transfer health check error: {e}")

        return JSONResponse(
            status_code=503,
            content={
                "service": "transfers",
                "status": "unhealthy",
                "error": str(e),
                "timestamp": time.time()
            }
        )


@router.get(
    "/transfers/{task_id}",
    response_model=TransferResponse,
    responses={
        200: {"description": "Task status retrieved successfully"},
        404: {"description": "Task not found"}
    },
    summary="Get transfer status",
    description="Get confirmed bytes, status and result for a transfer task."
)
async def get_transfer_status(task_id: str) -> JSONResponse:
    """
    Get transfer task status and progress.

    Args:
        task_id: Unique task identifier

    Returns:
        JSONResponse with task status and progress
    """
    start_time = time.time()
    logger.debug(f"Status request for task: {task_id}")

    task_status = await transfer_manager.get_task_status(task_id)
    if not task_status:
        raise TransferNotFoundError(task_id)

    response_time = (time.time() - start_time) * 1000

    return JSONResponse(
        status_code=200,
        content={
            "success": True,
            "data": task_status.model_dump(mode="json"),
            "message": f"Task status: {task_status.status}",
            "response_time_ms": round(response_time, 2)
        }
    )


@router.get(
    "/transfers/{task_id}/events",
    responses={
        200: {"description": "Progress events retrieved successfully"},
        404: {"description": "Task not found"}
    },
    summary="Get transfer events",
    description="Get the recorded progress events (chunk acks, retries, resyncs) of a transfer."
)
async def get_transfer_events(task_id: str) -> JSONResponse:
    """
    Get the progress events recorded for a task.

    Args:
        task_id: Unique task identifier

    Returns:
        JSONResponse with the list of events, oldest first
    """
    start_time = time.time()

    events = transfer_manager.get_task_events(task_id)
    if events is None:
        raise TransferNotFoundError(task_id)

    response_time = (time.time() - start_time) * 1000

    return JSONResponse(
        status_code=200,
        content={
            "success": True,
            "data": events,
            "message": f"{len(events)} events",
            "response_time_ms": round(response_time, 2)
        }
    )


@router.delete(
    "/transfers/{task_id}",
    responses={
        200: {"description": "Cancellation accepted"},
        404: {"description": "Task not found or already finished"}
    },
    summary="Cancel transfer",
    description="Cancel a pending transfer, or stop a running one at the next chunk boundary."
)
async def cancel_transfer(task_id: str) -> JSONResponse:
    """
    Cancel a transfer task.

    Args:
        task_id: Unique task identifier

    Returns:
        JSONResponse with cancellation status
    """
    start_time = time.time()
    logger.info(f"Cancel request for task: {task_id}")

    cancelled = await transfer_manager.cancel_transfer(task_id)

    response_time = (time.time() - start_time) * 1000

    if cancelled:
        return JSONResponse(
            status_code=200,
            content={
                "success": True,
                "message": f"Task {task_id} cancellation accepted",
                "response_time_ms": round(response_time, 2)
            }
        )

    return JSONResponse(
        status_code=404,
        content={
            "success": False,
            "error": "task_not_found_or_finished",
            "message": f"Task {task_id} not found or already finished",
            "suggestion": "Check the task ID or task may have already finished",
            "response_time_ms": round(response_time, 2)
        }
    )
