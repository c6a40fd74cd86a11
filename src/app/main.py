"""Image Upload Gateway – FastAPI application entry-point."""

from contextlib import asynccontextmanager
import logging
from collections.abc import AsyncIterator

from fastapi import FastAPI, Request, Response
from fastapi.exception_handlers import (
    http_exception_handler,
    request_validation_exception_handler,
)
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from src.app.config import settings
from src.app.middleware.body_limit import BodySizeLimitMiddleware, BodyTooLarge
from src.app.router import health, upload
from src.app.router.upload import UPLOAD_PATH, error_response
from src.app.services.storage_service import build_storage_backend
from src.app.services.upload_service import UploadGateway

# Configure logging from settings
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
# Lifespan: pick the storage provider once
# ──────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("🚀 Starting upload gateway (storage: %s) …", settings.storage_type.value)
    app.state.gateway = UploadGateway(
        backend=build_storage_backend(settings),
        timeout=settings.storage_timeout_seconds,
    )
    yield
    logger.info("🛑 Shutting down upload gateway")


# ──────────────────────────────────────────────
# Application factory
# ──────────────────────────────────────────────
app = FastAPI(
    title="Image Upload Gateway",
    description="Accept base64 images and store them with an object-storage provider.",
    version="1.0.0",
    lifespan=lifespan,
)


# ── reject oversized bodies, declared or streamed ──
app.add_middleware(BodySizeLimitMiddleware, max_body_size=settings.max_body_size)


# ── CORS middleware (configured from environment variables) ──
app.add_middleware(
    middleware_class=CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_methods_list,
    allow_headers=settings.cors_headers_list,
)

logger.info("CORS configured with origins: %s", settings.cors_origins_list)


# ── error bodies for the upload endpoint use {success, error} ──
@app.exception_handler(StarletteHTTPException)
async def upload_http_error(request: Request, exc: StarletteHTTPException) -> Response:
    if isinstance(exc, BodyTooLarge):
        return error_response(exc.status_code, exc.detail)
    if request.url.path == UPLOAD_PATH and exc.status_code == 405:
        logger.info("Method %s not allowed on %s", request.method, UPLOAD_PATH)
        return error_response(405, "Method not allowed", headers=exc.headers)
    return await http_exception_handler(request, exc)


@app.exception_handler(RequestValidationError)
async def upload_validation_error(request: Request, exc: RequestValidationError) -> Response:
    if request.url.path == UPLOAD_PATH:
        logger.warning("Malformed upload body at %s", [error["loc"] for error in exc.errors()])
        return error_response(400, "Invalid request body. Expected JSON {image, filename?}.")
    return await request_validation_exception_handler(request, exc)


# ── register routers ──
app.get('/')(lambda: {"message": "Welcome to the Image Upload Gateway! POST a data URI to /api/upload."})
app.include_router(health.router)
app.include_router(upload.router)
