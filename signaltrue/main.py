from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from signaltrue.api.router import build_api_router
from signaltrue.core.config import Settings, get_settings
from signaltrue.core.errors import (
    AttachmentNotFound,
    MalformedUpload,
    ProjectNotFound,
    StorageError,
)
from signaltrue.core.logging import configure_logging
from signaltrue.core.middleware import RequestIdMiddleware
from signaltrue.policies.attachment_policy import ALLOWED_MEDIA_TYPES, AttachmentPolicy
from signaltrue.services.attachment_repository import AttachmentRepository
from signaltrue.services.ingestion_orchestrator import IngestionOrchestrator
from signaltrue.services.object_store import build_object_store
from signaltrue.services.scanner import build_scanner
from signaltrue.services.staging_store import StagingStore

logger = logging.getLogger(__name__)


def _install_pipeline(app: FastAPI, settings: Settings) -> None:
    objects = build_object_store(settings)
    staging = StagingStore(settings.storage_root, objects=objects)
    scanner = build_scanner(settings)
    policy = AttachmentPolicy(
        max_bytes=settings.attachment_max_bytes,
        allowed_media_types=ALLOWED_MEDIA_TYPES,
    )
    repository = AttachmentRepository(objects)

    app.state.settings = settings
    app.state.staging = staging
    app.state.objects = objects
    app.state.scanner = scanner
    app.state.policy = policy
    app.state.attachments = repository
    app.state.orchestrator = IngestionOrchestrator(
        policy=policy,
        staging=staging,
        scanner=scanner,
        repository=repository,
    )


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ProjectNotFound)
    async def _project_not_found(request: Request, exc: ProjectNotFound):
        return JSONResponse(status_code=404, content={"message": "Project not found", "reason": "not_found"})

    @app.exception_handler(AttachmentNotFound)
    async def _attachment_not_found(request: Request, exc: AttachmentNotFound):
        return JSONResponse(status_code=404, content={"message": "Attachment not found", "reason": "not_found"})

    @app.exception_handler(MalformedUpload)
    async def _malformed_upload(request: Request, exc: MalformedUpload):
        return JSONResponse(status_code=400, content={"message": str(exc), "reason": exc.reason})

    @app.exception_handler(StorageError)
    async def _storage_error(request: Request, exc: StorageError):
        logger.error("[storage] %s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=500,
            content={"message": "Attachment storage failed; please retry.", "reason": "storage_error"},
        )

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"message": "Internal server error"})


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # leftovers from a crash mid-upload never became attachments
        app.state.staging.purge_stale(settings.staging_max_age_seconds)
        yield

    app = FastAPI(
        title=settings.app_name,
        version="0.1.0",
        lifespan=lifespan,
    )

    # Middleware: Request ID
    app.add_middleware(RequestIdMiddleware, header_name=settings.request_id_header)

    _install_pipeline(app, settings)
    _install_error_handlers(app)

    app.include_router(
        build_api_router(scanner_simulation_api_enabled=settings.scanner_simulation_api_enabled),
        prefix=settings.api_prefix,
    )

    return app


app = create_app()
