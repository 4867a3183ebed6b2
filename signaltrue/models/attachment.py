# signaltrue/models/attachment.py
from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import BigInteger, CheckConstraint, DateTime, ForeignKey, Index, String, Uuid, event, inspect, text
from sqlalchemy.orm import Mapped, mapped_column

from signaltrue.db.base import Base

IMMUTABLE_COLUMNS = ("project_id", "storage_ref", "size_bytes", "sha256")


class Attachment(Base):
    """
    Committed attachment. A row exists only for bytes that passed every
    constraint and scan and sit durably at storage_ref.
    """
    __tablename__ = "attachments"

    # assigned by the repository at commit time
    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True)

    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
    )
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)

    original_filename: Mapped[str] = mapped_column(String(255), nullable=False)
    media_type: Mapped[str] = mapped_column(String(127), nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    sha256: Mapped[str] = mapped_column(String(64), nullable=False)

    storage_ref: Mapped[str] = mapped_column(String(512), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, server_default=text("'committed'")
    )

    uploaded_by: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_attachments_project_created", "project_id", "created_at"),
        CheckConstraint("size_bytes > 0", name="ck_attachments_size_positive"),
    )


@event.listens_for(Attachment, "before_update")
def _reject_payload_updates(mapper, connection, target: Attachment) -> None:
    state = inspect(target)
    for col in IMMUTABLE_COLUMNS:
        if state.attrs[col].history.has_changes():
            raise ValueError(f"Attachment.{col} is immutable once committed.")
