from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, DateTime, Index, String, Uuid, func, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from signaltrue.db.base import Base


class AuditLogRecord(Base):
    """
    Comprehensive audit trail record.
    - Append-only (never UPDATE)
    - Stores request-id, actor, organization/project, action, payload hash, and safe payload summary.
    """
    __tablename__ = "audit_log_records"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Correlation
    request_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    route: Mapped[str] = mapped_column(String(256), nullable=False)
    method: Mapped[str] = mapped_column(String(16), nullable=False)

    # Actor / auth context (store user id + role as string)
    actor_user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    actor_role: Mapped[str] = mapped_column(String(64), nullable=False)

    # Strict scoping
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    project_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)

    # What happened
    action: Mapped[str] = mapped_column(String(96), nullable=False)  # e.g., ATTACHMENT_COMMITTED
    status: Mapped[str] = mapped_column(String(32), nullable=False, server_default=text("'ok'"))

    # Payload traceability (hash + safe summary)
    payload_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    payload_summary_json: Mapped[Dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict
    )

    # Optional result reference ids
    ref_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    __table_args__ = (
        Index("ix_audit_scope", "organization_id", "project_id"),
        Index("ix_audit_action", "action"),
        Index("ix_audit_created", "created_at"),
    )
