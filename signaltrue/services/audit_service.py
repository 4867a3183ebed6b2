from __future__ import annotations

import hashlib
import json
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from signaltrue.models.audit_log import AuditLogRecord
from signaltrue.policies.rbac import Principal


class AuditAction:
    # Projects
    PROJECT_CREATED = "PROJECT_CREATED"
    PROJECT_DELETED = "PROJECT_DELETED"

    # Attachments
    ATTACHMENT_COMMITTED = "ATTACHMENT_COMMITTED"
    ATTACHMENT_REJECTED = "ATTACHMENT_REJECTED"
    ATTACHMENT_DELETED = "ATTACHMENT_DELETED"


@dataclass(frozen=True)
class RequestContext:
    """
    The slice of an HTTP request that audit rows need. Lets services write
    audit events without depending on starlette.
    """
    request_id: str
    route: str
    method: str
    principal: Principal

    @classmethod
    def from_request(cls, request, principal: Principal) -> "RequestContext":
        return cls(
            request_id=getattr(request.state, "request_id", None) or "missing",
            route=str(request.url.path),
            method=request.method,
            principal=principal,
        )


def payload_hash(payload: Dict[str, Any]) -> str:
    # sorted keys, no whitespace: equal summaries always hash equal
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def audit_event(
    db: Session,
    *,
    ctx: RequestContext,
    project_id: uuid.UUID,
    action: str,
    payload_summary: Dict[str, Any],
    status: str = "ok",
    ref_id: Optional[str] = None,
    commit: bool = True,
) -> AuditLogRecord:
    """
    Append-only audit record insert.

    payload_summary MUST be safe: file names and sizes are fine, file contents never.
    With commit=False the row joins the caller's transaction.
    """
    row = AuditLogRecord(
        request_id=ctx.request_id,
        route=ctx.route,
        method=ctx.method,
        actor_user_id=ctx.principal.user_id,
        actor_role=ctx.principal.role.value,
        organization_id=ctx.principal.organization_id,
        project_id=project_id,
        action=action,
        status=status,
        payload_hash=payload_hash(payload_summary),
        payload_summary_json=payload_summary,
        ref_id=ref_id,
    )
    db.add(row)
    if commit:
        db.commit()
        db.refresh(row)
    return row
