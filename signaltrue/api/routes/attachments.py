# signaltrue/api/routes/attachments.py
from __future__ import annotations

import logging
import uuid
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.orm import Session
from starlette.requests import ClientDisconnect

from signaltrue.core.auth_deps import get_current_principal
from signaltrue.core.deps import get_attachment_repository, get_orchestrator
from signaltrue.core.errors import AttachmentNotFound, StorageError
from signaltrue.core.multipart import MultipartFileReader
from signaltrue.db.session import get_db
from signaltrue.policies.attachment_policy import RejectReason
from signaltrue.policies.rbac import (
    ACTION_DELETE_ATTACHMENT,
    ACTION_UPLOAD_ATTACHMENT,
    Principal,
    require_action,
)
from signaltrue.schemas.attachments import (
    AttachmentListResponse,
    AttachmentResponse,
    RejectionResponse,
)
from signaltrue.services.attachment_repository import AttachmentRepository
from signaltrue.services.audit_service import AuditAction, RequestContext, audit_event
from signaltrue.services.ingestion_orchestrator import IngestionOrchestrator, Rejected
from signaltrue.services.projects_service import ProjectsService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects/{projectId}/attachments")

REJECTION_RESPONSES = {
    400: {"model": RejectionResponse, "description": "Upload rejected (size, type or scan)."},
    404: {"model": RejectionResponse, "description": "Project not found."},
    500: {"model": RejectionResponse, "description": "Storage failure; safe to retry."},
}


def _iso(dt):
    return dt.isoformat() if dt else None


def _resp(a) -> dict:
    return {
        "id": str(a.id),
        "projectId": str(a.project_id),
        "originalFilename": a.original_filename,
        "mediaType": a.media_type,
        "sizeBytes": int(a.size_bytes),
        "sha256": a.sha256,
        "status": a.status,
        "uploadedBy": a.uploaded_by,
        "createdAtIso": _iso(a.created_at),
    }


def _require(principal: Principal, action: str) -> None:
    try:
        require_action(principal, action)
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))


def _get_attachment(db: Session, repository: AttachmentRepository, project, attachment_id: str):
    try:
        aid = uuid.UUID(attachment_id)
    except ValueError:
        raise AttachmentNotFound(attachment_id)
    att = repository.get(db, project_id=project.id, attachment_id=aid)
    if not att:
        raise AttachmentNotFound(attachment_id)
    return att


@router.post("", response_model=AttachmentResponse, status_code=201, responses=REJECTION_RESPONSES)
async def upload_attachment(
    request: Request,
    projectId: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    orchestrator: IngestionOrchestrator = Depends(get_orchestrator),
):
    """
    Multipart upload, field `file`. The body is consumed incrementally by the
    ingestion pipeline; nothing is buffered here.
    """
    _require(principal, ACTION_UPLOAD_ATTACHMENT)

    # unknown project: 404 before a single body byte is read
    project = ProjectsService().require(
        db, organization_id=principal.organization_id, project_id=projectId
    )

    try:
        upload = await MultipartFileReader.from_request(request).open()
        outcome = await orchestrator.ingest(
            db,
            project=project,
            upload=upload,
            ctx=RequestContext.from_request(request, principal),
        )
    except ClientDisconnect:
        logger.info("[attachments] client disconnected mid-upload project=%s", project.id)
        return JSONResponse(
            status_code=400,
            content={"message": "Upload aborted by client.", "reason": "client_disconnected"},
        )

    if isinstance(outcome, Rejected):
        status_code = 500 if outcome.reason is RejectReason.storage_error else 400
        return JSONResponse(
            status_code=status_code,
            content={"message": outcome.message, "reason": outcome.reason.value},
        )

    return _resp(outcome.attachment)


@router.get("", response_model=AttachmentListResponse)
async def list_attachments(
    projectId: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    repository: AttachmentRepository = Depends(get_attachment_repository),
):
    project = ProjectsService().require(
        db, organization_id=principal.organization_id, project_id=projectId
    )
    rows = repository.list_by_project(db, project_id=project.id)
    return {"projectId": str(project.id), "attachments": [_resp(a) for a in rows]}


@router.get("/{attachmentId}", response_model=AttachmentResponse)
async def get_attachment(
    projectId: str,
    attachmentId: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    repository: AttachmentRepository = Depends(get_attachment_repository),
):
    project = ProjectsService().require(
        db, organization_id=principal.organization_id, project_id=projectId
    )
    return _resp(_get_attachment(db, repository, project, attachmentId))


@router.get("/{attachmentId}/content")
async def download_attachment(
    request: Request,
    projectId: str,
    attachmentId: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    repository: AttachmentRepository = Depends(get_attachment_repository),
):
    project = ProjectsService().require(
        db, organization_id=principal.organization_id, project_id=projectId
    )
    att = _get_attachment(db, repository, project, attachmentId)

    objects = repository.objects
    if not objects.exists(att.storage_ref):
        raise StorageError(f"Committed bytes missing for attachment {att.id}")

    resp = StreamingResponse(
        objects.iter_bytes(att.storage_ref, request.app.state.settings.attachment_chunk_bytes),
        media_type=att.media_type,
    )
    # ASCII fallback plus RFC 5987 filename* (UTF-8 percent-encoded)
    safe_ascii = att.original_filename.encode("ascii", "ignore").decode("ascii").replace('"', "") or "file"
    resp.headers["Content-Disposition"] = (
        f"attachment; filename=\"{safe_ascii}\"; filename*=UTF-8''{quote(att.original_filename)}"
    )
    resp.headers["Content-Length"] = str(att.size_bytes)
    resp.headers["X-Content-SHA256"] = att.sha256
    resp.headers["X-Content-Type-Options"] = "nosniff"
    return resp


@router.delete("/{attachmentId}")
async def delete_attachment(
    request: Request,
    projectId: str,
    attachmentId: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    repository: AttachmentRepository = Depends(get_attachment_repository),
):
    _require(principal, ACTION_DELETE_ATTACHMENT)

    project = ProjectsService().require(
        db, organization_id=principal.organization_id, project_id=projectId
    )
    att = _get_attachment(db, repository, project, attachmentId)
    summary = {
        "attachmentId": str(att.id),
        "filename": att.original_filename,
        "sizeBytes": int(att.size_bytes),
    }

    repository.delete(db, att)

    audit_event(
        db,
        ctx=RequestContext.from_request(request, principal),
        project_id=project.id,
        action=AuditAction.ATTACHMENT_DELETED,
        payload_summary=summary,
        ref_id=summary["attachmentId"],
    )
    return {"message": "Attachment deleted", "attachmentId": summary["attachmentId"]}
