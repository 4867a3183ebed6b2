# signaltrue/services/ingestion_orchestrator.py
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Optional, Union

from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from signaltrue.core.errors import StorageError
from signaltrue.models.attachment import Attachment
from signaltrue.models.project import Project
from signaltrue.policies.attachment_policy import (
    Accept,
    AttachmentPolicy,
    RejectReason,
    SizeCheck,
)
from signaltrue.services.attachment_repository import AttachmentRepository
from signaltrue.services.audit_service import AuditAction, RequestContext, audit_event
from signaltrue.services.scanner import ContentScanner, ScanVerdict
from signaltrue.services.staging_store import StagedUpload, StagingRef, StagingStore

logger = logging.getLogger(__name__)


class IngestState(str, Enum):
    RECEIVING = "receiving"
    VALIDATING = "validating"
    SCANNING = "scanning"
    COMMITTING = "committing"
    DONE = "done"


@dataclass(frozen=True)
class IncomingFile:
    filename: Optional[str]
    declared_media_type: Optional[str]
    chunks: AsyncIterator[bytes]


@dataclass(frozen=True)
class Committed:
    attachment: Attachment


@dataclass(frozen=True)
class Rejected:
    reason: RejectReason
    message: str
    state: IngestState


IngestOutcome = Union[Committed, Rejected]


class _SizeGuard:
    """
    Passes chunks through while the running total stays under the ceiling.
    On the first chunk that would cross it, stops pulling from the client.
    """

    def __init__(self, policy: AttachmentPolicy):
        self.policy = policy
        self.consumed = 0
        self.aborted = False

    async def watch(self, chunks: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
        async for chunk in chunks:
            if self.policy.check_size_so_far(self.consumed + len(chunk)) is SizeCheck.ABORT:
                self.aborted = True
                return
            self.consumed += len(chunk)
            yield chunk


class IngestionOrchestrator:
    """
    Drives one upload through

        RECEIVING -> VALIDATING -> SCANNING -> COMMITTING -> DONE

    Any stage may end in Rejected. Guarantees per upload:
    - constraints are checked before the scanner sees the bytes,
      and the scanner passes them before they are promoted
    - the staging entry is gone when ingest() returns or raises
    - a row exists iff its bytes were promoted; a row write that did not
      commit deletes the promoted bytes again
    """

    def __init__(
        self,
        *,
        policy: AttachmentPolicy,
        staging: StagingStore,
        scanner: ContentScanner,
        repository: AttachmentRepository,
    ):
        self.policy = policy
        self.staging = staging
        self.scanner = scanner
        self.repository = repository

    async def ingest(
        self,
        db: Session,
        *,
        project: Project,
        upload: IncomingFile,
        ctx: RequestContext,
    ) -> IngestOutcome:
        ref = self.staging.new_ref()
        try:
            return await self._run(db, project=project, upload=upload, ctx=ctx, ref=ref)
        finally:
            # no-op after a successful promote; the file has already moved
            self.staging.discard(ref)

    async def _run(
        self,
        db: Session,
        *,
        project: Project,
        upload: IncomingFile,
        ctx: RequestContext,
        ref: StagingRef,
    ) -> IngestOutcome:
        # RECEIVING
        guard = _SizeGuard(self.policy)
        try:
            staged = await self.staging.stage(ref, guard.watch(upload.chunks))
        except StorageError:
            logger.exception("[ingest] staging write failed token=%s project=%s", ref.token, project.id)
            return await self._reject(
                db, project, upload, ctx, ref, IngestState.RECEIVING, RejectReason.storage_error,
                "Attachment storage failed; please retry.", guard.consumed,
            )
        if guard.aborted:
            rej = self.policy.too_large()
            return await self._reject(db, project, upload, ctx, ref, IngestState.RECEIVING, rej.reason, rej.message, guard.consumed)

        # VALIDATING
        decision = self.policy.evaluate(
            upload.declared_media_type, staged.bytes_written, upload.filename, staged.head
        )
        if not isinstance(decision, Accept):
            return await self._reject(
                db, project, upload, ctx, ref, IngestState.VALIDATING, decision.reason, decision.message, staged.bytes_written
            )

        # SCANNING
        result = await self.scanner.scan(ref.path)
        if result.verdict is not ScanVerdict.CLEAN:
            message = (
                "File failed virus scan."
                if result.verdict is ScanVerdict.INFECTED
                else "File could not be scanned; upload rejected."
            )
            logger.warning(
                "[ingest] scan verdict=%s detail=%s token=%s", result.verdict.value, result.detail, ref.token
            )
            return await self._reject(
                db, project, upload, ctx, ref, IngestState.SCANNING, RejectReason.scan_failed, message, staged.bytes_written
            )

        # COMMITTING
        return await self._commit(db, project=project, upload=upload, ctx=ctx, ref=ref, staged=staged, accepted=decision)

    async def _commit(
        self,
        db: Session,
        *,
        project: Project,
        upload: IncomingFile,
        ctx: RequestContext,
        ref: StagingRef,
        staged: StagedUpload,
        accepted: Accept,
    ) -> IngestOutcome:
        try:
            storage_ref = await self.staging.promote(
                ref, namespace=str(project.id), media_type=accepted.media_type
            )
        except StorageError:
            logger.exception("[ingest] promote failed token=%s project=%s", ref.token, project.id)
            return await self._reject(
                db, project, upload, ctx, ref, IngestState.COMMITTING, RejectReason.storage_error,
                "Attachment storage failed; please retry.", staged.bytes_written,
            )

        attachment = Attachment(
            project_id=project.id,
            organization_id=project.organization_id,
            original_filename=accepted.filename,
            media_type=accepted.media_type,
            size_bytes=staged.bytes_written,
            sha256=staged.sha256,
            storage_ref=storage_ref,
            uploaded_by=ctx.principal.user_id,
        )

        project_id = project.id
        try:
            attachment = await run_in_threadpool(self._record, db, attachment, ctx)
        except StorageError:
            logger.exception("[ingest] repository write failed token=%s project=%s", ref.token, project_id)
            self._compensate(storage_ref)
            return Rejected(RejectReason.storage_error, "Attachment storage failed; please retry.", IngestState.COMMITTING)
        except Exception:
            self._compensate(storage_ref)
            raise

        # values known before the commit; the row itself is expired now
        logger.info(
            "[ingest] committed state=%s storage_ref=%s project=%s bytes=%d media_type=%s",
            IngestState.DONE.value,
            storage_ref,
            project_id,
            staged.bytes_written,
            accepted.media_type,
        )
        return Committed(attachment)

    def _record(self, db: Session, attachment: Attachment, ctx: RequestContext) -> Attachment:
        # audit row rides in the same transaction as the attachment row
        attachment.id = uuid.uuid4()
        audit_event(
            db,
            ctx=ctx,
            project_id=attachment.project_id,
            action=AuditAction.ATTACHMENT_COMMITTED,
            payload_summary={
                "attachmentId": str(attachment.id),
                "filename": attachment.original_filename,
                "mediaType": attachment.media_type,
                "sizeBytes": attachment.size_bytes,
                "sha256": attachment.sha256,
            },
            ref_id=str(attachment.id),
            commit=False,
        )
        try:
            return self.repository.create(db, attachment)
        except Exception:
            # the pending audit row must not ride along with a later commit
            db.rollback()
            raise

    def _compensate(self, storage_ref: str) -> None:
        try:
            self.staging.objects.delete(storage_ref)
        except StorageError:
            # no row references these bytes, so they are unreachable either way
            logger.exception("[ingest] compensating delete failed for %s", storage_ref)

    async def _reject(
        self,
        db: Session,
        project: Project,
        upload: IncomingFile,
        ctx: RequestContext,
        ref: StagingRef,
        state: IngestState,
        reason: RejectReason,
        message: str,
        bytes_seen: int,
    ) -> Rejected:
        # staged bytes go before anything else happens
        self.staging.discard(ref)
        logger.warning(
            "[ingest] rejected project=%s token=%s state=%s reason=%s bytes=%d",
            project.id,
            ref.token,
            state.value,
            reason.value,
            bytes_seen,
        )
        await run_in_threadpool(
            audit_event,
            db,
            ctx=ctx,
            project_id=project.id,
            action=AuditAction.ATTACHMENT_REJECTED,
            payload_summary={
                "filename": upload.filename,
                "declaredMediaType": upload.declared_media_type,
                "reason": reason.value,
                "state": state.value,
                "bytesSeen": bytes_seen,
            },
            status="rejected",
        )
        return Rejected(reason, message, state)
