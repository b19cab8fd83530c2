"""
FastAPI application for Cinevault
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import get_config
from ..errors import CinevaultError, IngestionError, NotFoundError, QueueFullError, RangeError
from ..service import MediaService
from .routes import health, ingest, library, stream

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = 30


def _error_status(exc: CinevaultError) -> int:
    return 503 if exc.retryable else 422


async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


async def range_error_handler(request: Request, exc: RangeError) -> JSONResponse:
    headers = {}
    if exc.total_size is not None:
        headers["Content-Range"] = f"bytes */{exc.total_size}"
    return JSONResponse(status_code=416, content={"detail": str(exc)}, headers=headers)


async def queue_full_handler(request: Request, exc: QueueFullError) -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content={"detail": str(exc), "retryable": True},
        headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
    )


async def ingestion_error_handler(request: Request, exc: IngestionError) -> JSONResponse:
    # A missing metadata record is the caller's problem, not a transient one
    if isinstance(exc.cause, NotFoundError):
        status_code = 404
    else:
        status_code = _error_status(exc)
    logger.warning(f"[API] Ingestion failed at {exc.stage.value}: {exc.cause}")
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "stage": exc.stage.value, "retryable": exc.retryable},
    )


async def cinevault_error_handler(request: Request, exc: CinevaultError) -> JSONResponse:
    return JSONResponse(
        status_code=_error_status(exc),
        content={"detail": str(exc), "retryable": exc.retryable},
    )


def create_app(service: Optional[MediaService] = None) -> FastAPI:
    """
    Build the application.

    When ``service`` is given it is used as-is (and still started/stopped by
    the lifespan); otherwise one is built from the global configuration.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        health.set_start_time(time.time())
        svc = service or MediaService.from_config(get_config())
        await svc.start()
        app.state.service = svc

        logger.info(f"Cinevault v{__version__} started")

        yield

        logger.info("Shutting down Cinevault...")
        await svc.stop()
        app.state.service = None
        logger.info("Cinevault shutdown complete")

    app = FastAPI(
        title="Cinevault",
        description="Movie ingestion, storage and range streaming service",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Range", "Accept-Ranges", "Content-Length"],
    )

    app.add_exception_handler(NotFoundError, not_found_handler)
    app.add_exception_handler(RangeError, range_error_handler)
    app.add_exception_handler(QueueFullError, queue_full_handler)
    app.add_exception_handler(IngestionError, ingestion_error_handler)
    app.add_exception_handler(CinevaultError, cinevault_error_handler)

    app.include_router(health.router)
    app.include_router(ingest.router)
    app.include_router(stream.router)
    app.include_router(library.router)

    return app
