from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from app.api.transfers import router as transfers_router
from app.api.auth import router as auth_router
from app.services.transfer_manager import transfer_manager
from app.services.cache_manager import cache_manager
from app.middleware.error_handler import ErrorHandlingMiddleware, register_exception_handlers
from app.core.config import settings

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

app = FastAPI(
    title="MediaRelay API",
    description="Resumable chunked relay of remote videos into YouTube uploads",
    version="1.0.0",
    debug=settings.debug
)

# Error handling middleware (should be first)
app.add_middleware(ErrorHandlingMiddleware)
register_exception_handlers(app)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(transfers_router)
app.include_router(auth_router)


@app.on_event("startup")
async def startup_event():
    """Initialize services on startup."""
    logger = logging.getLogger(__name__)
    logger.info(f"Starting MediaRelay API services ({settings.environment})")

    await transfer_manager.start()
    logger.info("Transfer manager started")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup services on shutdown."""
    logger = logging.getLogger(__name__)
    logger.info("Shutting down MediaRelay API services")

    await transfer_manager.stop()
    logger.info("Transfer manager stopped")

    await cache_manager.disconnect()


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
