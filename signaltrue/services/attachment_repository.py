# signaltrue/services/attachment_repository.py
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from signaltrue.core.errors import StorageError
from signaltrue.models.attachment import Attachment
from signaltrue.models.enums import AttachmentStatus
from signaltrue.services.object_store import ObjectStore

logger = logging.getLogger(__name__)


class AttachmentRepository:
    """
    Durable metadata for committed attachments. Rows are insert-only; the
    only other write is delete, which takes the stored bytes with it.
    """

    def __init__(self, objects: ObjectStore):
        self.objects = objects

    def create(self, db: Session, attachment: Attachment) -> Attachment:
        """
        Commits the row together with anything else already pending on the
        session (e.g. its audit record). Id and timestamp are assigned here.

        Nothing touches the database after the commit: a raise from here always
        means the row was not written, so callers may safely drop the bytes.
        """
        if attachment.id is None:
            attachment.id = uuid.uuid4()
        attachment.created_at = datetime.now(timezone.utc)
        attachment.status = AttachmentStatus.committed.value

        try:
            db.add(attachment)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise StorageError("Could not record attachment.") from exc
        return attachment

    def get(
        self, db: Session, *, project_id: uuid.UUID, attachment_id: uuid.UUID
    ) -> Optional[Attachment]:
        return db.execute(
            select(Attachment).where(
                Attachment.project_id == project_id, Attachment.id == attachment_id
            )
        ).scalar_one_or_none()

    def list_by_project(self, db: Session, *, project_id: uuid.UUID) -> List[Attachment]:
        stmt = (
            select(Attachment)
            .where(Attachment.project_id == project_id)
            .order_by(Attachment.created_at.asc(), Attachment.id.asc())
        )
        return list(db.execute(stmt).scalars().all())

    def delete(self, db: Session, attachment: Attachment) -> None:
        self.delete_all(db, [attachment])

    def delete_all(self, db: Session, attachments: Sequence[Attachment], *, also=None) -> int:
        """
        Remove rows and bytes as one unit. Bytes are moved to tombstones first;
        if the row delete fails they are put back, so neither half survives
        without the other. `also` is an extra ORM object deleted in the same
        transaction (used when a project goes away with its attachments).
        """
        buried = []
        try:
            for att in attachments:
                buried.append((att.storage_ref, self.objects.bury(att.storage_ref)))
                db.delete(att)
            if also is not None:
                db.delete(also)
            db.commit()
        except (SQLAlchemyError, StorageError) as exc:
            db.rollback()
            for storage_ref, tomb in buried:
                self.objects.restore(storage_ref, tomb)
            if isinstance(exc, StorageError):
                raise
            raise StorageError("Could not delete attachment records.") from exc

        for storage_ref, tomb in buried:
            try:
                self.objects.purge_tombstone(tomb)
            except StorageError:
                # rows are gone; leftover bytes are unreachable
                logger.exception("[storage] could not purge bytes for %s", storage_ref)
        return len(buried)
