# signaltrue/core/deps.py
from __future__ import annotations

from fastapi import Request

from signaltrue.services.attachment_repository import AttachmentRepository
from signaltrue.services.ingestion_orchestrator import IngestionOrchestrator
from signaltrue.services.scanner import ContentScanner

# Pipeline components are built once per app in create_app() and live on app.state.


def get_scanner(request: Request) -> ContentScanner:
    return request.app.state.scanner


def get_attachment_repository(request: Request) -> AttachmentRepository:
    return request.app.state.attachments


def get_orchestrator(request: Request) -> IngestionOrchestrator:
    return request.app.state.orchestrator
