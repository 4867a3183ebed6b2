import logging

from sqlalchemy import select

from signaltrue.core.logging import RequestIdFilter
from signaltrue.core.middleware import request_id_var
from signaltrue.models.audit_log import AuditLogRecord
from signaltrue.services.audit_service import AuditAction, audit_event, payload_hash


def test_payload_hash_ignores_key_order():
    assert payload_hash({"a": 1, "b": "x"}) == payload_hash({"b": "x", "a": 1})
    assert payload_hash({"a": 1}) != payload_hash({"a": 2})


def test_audit_event_appends_row(db, ctx, project):
    summary = {"filename": "a.txt", "sizeBytes": 3}
    row = audit_event(
        db,
        ctx=ctx,
        project_id=project.id,
        action=AuditAction.ATTACHMENT_DELETED,
        payload_summary=summary,
        ref_id="ref-1",
    )

    stored = db.execute(select(AuditLogRecord)).scalars().one()
    assert stored.id == row.id
    assert stored.request_id == "req-test"
    assert stored.actor_role == "MEMBER"
    assert stored.organization_id == "org-1"
    assert stored.payload_hash == payload_hash(summary)
    assert stored.status == "ok"


def test_uncommitted_audit_event_joins_caller_transaction(db, ctx, project):
    audit_event(
        db,
        ctx=ctx,
        project_id=project.id,
        action=AuditAction.ATTACHMENT_COMMITTED,
        payload_summary={},
        commit=False,
    )
    db.rollback()
    assert db.execute(select(AuditLogRecord)).first() is None


def test_log_records_carry_request_id():
    record = logging.LogRecord("t", logging.INFO, __file__, 1, "msg", None, None)
    token = request_id_var.set("req-42")
    try:
        RequestIdFilter().filter(record)
    finally:
        request_id_var.reset(token)
    assert record.request_id == "req-42"
