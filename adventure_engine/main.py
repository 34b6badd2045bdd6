"""
FastAPI application for the Adventure Engine
"""

import time
import uuid
from typing import Callable

from fastapi import FastAPI, Request, Response

from adventure_engine import __version__
from adventure_engine.api.adventures import router as adventures_router
from adventure_engine.config import settings
from adventure_engine.utils.logger import get_logger, setup_logging

setup_logging(
    level=settings.log_level,
    log_file=settings.log_file or None,
    enable_colors=True,
    include_timestamp=True,
)

logger = get_logger(__name__)

app = FastAPI(
    title="Adventure Engine",
    description="Validate adventure documents and evaluate choices",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

logger.info("FastAPI application initialized")
logger.info(f"Log level: {settings.log_level}")


@app.middleware("http")
async def log_requests(request: Request, call_next: Callable) -> Response:
    """Log every request with its status and duration"""
    request_id = str(uuid.uuid4())[:8]
    start_time = time.time()
    request.state.request_id = request_id

    logger.info(
        f"[API] Request started: {request.method} {request.url.path}",
        extra={"request_id": request_id, "method": request.method},
    )

    try:
        response = await call_next(request)
    except Exception as e:
        duration_ms = (time.time() - start_time) * 1000
        logger.error(
            f"[API] Request failed: {request.method} {request.url.path} -> ERROR "
            f"({duration_ms:.2f}ms): {e}",
            extra={"request_id": request_id, "error_type": type(e).__name__},
            exc_info=True,
        )
        raise

    duration_ms = (time.time() - start_time) * 1000
    logger.info(
        f"[API] Request completed: {request.method} {request.url.path} -> "
        f"{response.status_code} ({duration_ms:.2f}ms)",
        extra={"request_id": request_id, "status_code": response.status_code},
    )
    return response


app.include_router(adventures_router, prefix="/adventures", tags=["adventures"])


@app.get("/")
async def root():
    """Root endpoint"""
    logger.debug("Root endpoint called")
    return {
        "message": "Adventure Engine",
        "version": __version__,
        "status": "running",
        "log_level": settings.log_level,
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    logger.debug("Health check endpoint called")
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Starting server on {settings.host}:{settings.port}")
    logger.info(f"Debug mode: {settings.debug}")
    uvicorn.run(
        "adventure_engine.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
