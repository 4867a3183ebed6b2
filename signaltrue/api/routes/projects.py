# signaltrue/api/routes/projects.py
from __future__ import annotations

import logging
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from signaltrue.db.session import get_db
from signaltrue.core.auth_deps import get_current_principal
from signaltrue.core.deps import get_attachment_repository
from signaltrue.policies.rbac import ACTION_MANAGE_PROJECTS, Principal, require_action
from signaltrue.schemas.projects import (
    ProjectCreateRequest,
    ProjectListResponse,
    ProjectResponse,
)
from signaltrue.services.attachment_repository import AttachmentRepository
from signaltrue.services.audit_service import AuditAction, RequestContext, audit_event
from signaltrue.services.projects_service import ProjectsService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects")


def _iso(dt):
    return dt.isoformat() if dt else None


def _resp(p) -> dict:
    return {
        "_id": str(p.id),
        "name": p.name,
        "description": p.description,
        "status": p.status,
        "favorite": bool(p.favorite),
        "tags": list(p.tags_json or []),
        "createdAtIso": _iso(p.created_at),
        "updatedAtIso": _iso(p.updated_at),
    }


def _require(principal: Principal, action: str) -> None:
    try:
        require_action(principal, action)
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))


@router.post("", response_model=ProjectResponse, status_code=201)
async def create_project(
    request: Request,
    body: ProjectCreateRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    _require(principal, ACTION_MANAGE_PROJECTS)

    svc = ProjectsService()
    p = svc.create(
        db,
        organization_id=principal.organization_id,
        name=body.name,
        description=body.description,
        status=body.status.value,
        favorite=body.favorite,
        tags=body.tags,
    )

    audit_event(
        db,
        ctx=RequestContext.from_request(request, principal),
        project_id=p.id,
        action=AuditAction.PROJECT_CREATED,
        payload_summary={"event": "PROJECT_CREATED", "projectId": str(p.id), "name": p.name},
        ref_id=str(p.id),
    )

    return _resp(p)


@router.get("", response_model=ProjectListResponse)
async def list_projects(
    limit: int = Query(default=200, ge=1, le=2000),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    rows = ProjectsService().list(db, organization_id=principal.organization_id, limit=limit)
    return {"projects": [_resp(p) for p in rows]}


@router.get("/{projectId}", response_model=ProjectResponse)
async def get_project(
    projectId: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    p = ProjectsService().require(
        db, organization_id=principal.organization_id, project_id=projectId
    )
    return _resp(p)


@router.delete("/{projectId}")
async def delete_project(
    request: Request,
    projectId: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    repository: AttachmentRepository = Depends(get_attachment_repository),
):
    _require(principal, ACTION_MANAGE_PROJECTS)

    svc = ProjectsService()
    p = svc.require(db, organization_id=principal.organization_id, project_id=projectId)
    pid = p.id
    removed = svc.delete(db, project=p, repository=repository)
    logger.info("[projects] deleted project=%s attachments=%d", pid, removed)

    audit_event(
        db,
        ctx=RequestContext.from_request(request, principal),
        project_id=pid,
        action=AuditAction.PROJECT_DELETED,
        payload_summary={"event": "PROJECT_DELETED", "projectId": str(pid), "attachmentsRemoved": removed},
        ref_id=str(pid),
    )

    return {"message": "Project deleted", "attachmentsRemoved": removed}
