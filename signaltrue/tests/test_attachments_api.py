import hashlib
from pathlib import Path

from sqlalchemy import select

from signaltrue.models.attachment import Attachment
from signaltrue.models.audit_log import AuditLogRecord
from signaltrue.services.scanner import EICAR_SIGNATURE

from signaltrue.tests.helpers import PE_HEAD

MIB = 1024 * 1024


def _upload(client, project_id, headers, name="ok.txt", content=b"hello world\n", media_type="text/plain"):
    return client.post(
        f"/api/projects/{project_id}/attachments",
        files={"file": (name, content, media_type)},
        headers=headers,
    )


def _staging_files(settings):
    return list((Path(settings.storage_root) / "staging").iterdir())


def _object_files(settings):
    return [p for p in (Path(settings.storage_root) / "objects").rglob("*") if p.is_file()]


def _rows(db):
    return list(db.execute(select(Attachment)).scalars().all())


def test_upload_text_file_commits(client, auth, project_id, settings, db):
    content = b"hello world\n"
    r = _upload(client, project_id, auth(), content=content)
    assert r.status_code == 201, r.text

    body = r.json()
    assert body["projectId"] == project_id
    assert body["originalFilename"] == "ok.txt"
    assert body["mediaType"] == "text/plain"
    assert body["sizeBytes"] == len(content)
    assert body["sha256"] == hashlib.sha256(content).hexdigest()
    assert body["status"] == "committed"
    assert body["uploadedBy"] == "user-1"

    assert _staging_files(settings) == []
    assert len(_object_files(settings)) == 1
    assert len(_rows(db)) == 1


def test_octet_stream_is_typed_from_extension(client, auth, project_id):
    r = _upload(client, project_id, auth(), name="notes.csv", content=b"a,b\n1,2\n", media_type="application/octet-stream")
    assert r.status_code == 201, r.text
    assert r.json()["mediaType"] == "text/csv"


def test_executable_rejected(client, auth, project_id, settings, db):
    r = _upload(client, project_id, auth(), name="bad.exe", content=b"MZ\x90\x00fake", media_type="application/x-msdownload")
    assert r.status_code == 400
    assert r.json()["reason"] == "invalid_type"
    assert r.json()["message"]

    assert _rows(db) == []
    assert _staging_files(settings) == []
    assert _object_files(settings) == []


def test_executable_disguised_as_pdf_rejected(client, auth, project_id):
    r = _upload(client, project_id, auth(), name="report.pdf", content=PE_HEAD + b"\x00" * 64, media_type="application/pdf")
    assert r.status_code == 400
    assert r.json()["reason"] == "invalid_type"


def test_text_beginning_with_mz_commits(client, auth, project_id, db):
    content = b"MZ,Mozambique\nPT,Portugal\n"
    r = _upload(client, project_id, auth(), name="codes.txt", content=content, media_type="text/plain")
    assert r.status_code == 201, r.text
    assert r.json()["sizeBytes"] == len(content)
    assert len(_rows(db)) == 1


def test_type_not_in_allow_list_rejected(client, auth, project_id):
    r = _upload(client, project_id, auth(), name="clip.mp4", content=b"\x00\x00\x00\x18ftyp", media_type="video/mp4")
    assert r.status_code == 400
    assert r.json()["reason"] == "invalid_type"


def test_extension_must_match_declared_type(client, auth, project_id):
    r = _upload(client, project_id, auth(), name="photo.png", content=b"plain text", media_type="text/plain")
    assert r.status_code == 400
    assert r.json()["reason"] == "invalid_type"


def test_size_exactly_at_limit_accepted(client, auth, project_id):
    r = _upload(client, project_id, auth(), name="big.txt", content=b"a" * (5 * MIB))
    assert r.status_code == 201, r.text
    assert r.json()["sizeBytes"] == 5 * MIB


def test_size_one_byte_over_limit_rejected(client, auth, project_id, settings, db):
    r = _upload(client, project_id, auth(), name="big.txt", content=b"a" * (5 * MIB + 1))
    assert r.status_code == 400
    assert r.json()["reason"] == "too_large"

    assert _rows(db) == []
    assert _staging_files(settings) == []
    assert _object_files(settings) == []


def test_oversized_upload_is_never_scanned(client, app, auth, project_id):
    # would be scan_failed if the scanner were consulted
    app.state.scanner.force_infected = True
    r = _upload(client, project_id, auth(), name="big.txt", content=b"a" * (6 * MIB))
    assert r.status_code == 400
    assert r.json()["reason"] == "too_large"


def test_empty_file_rejected(client, auth, project_id):
    r = _upload(client, project_id, auth(), name="empty.txt", content=b"")
    assert r.status_code == 400
    assert r.json()["reason"] == "empty_file"


def test_filename_directory_components_are_stripped(client, auth, project_id):
    r = _upload(client, project_id, auth(), name="../../etc/passwd.txt", content=b"x")
    assert r.status_code == 201, r.text
    assert r.json()["originalFilename"] == "passwd.txt"


def test_infected_upload_rejected_and_not_stored(client, auth, project_id, settings, db):
    r = _upload(client, project_id, auth(), name="eicar.txt", content=EICAR_SIGNATURE)
    assert r.status_code == 400
    assert r.json() == {"message": "File failed virus scan.", "reason": "scan_failed"}

    assert _rows(db) == []
    assert _staging_files(settings) == []
    assert _object_files(settings) == []


def test_scanner_unavailable_fails_closed(client, app, auth, project_id, db):
    app.state.scanner.unavailable = True
    r = _upload(client, project_id, auth())
    assert r.status_code == 400
    assert r.json()["reason"] == "scan_failed"
    assert _rows(db) == []


def test_missing_file_field(client, auth, project_id):
    r = client.post(
        f"/api/projects/{project_id}/attachments",
        files={"document": ("ok.txt", b"hello", "text/plain")},
        headers=auth(),
    )
    assert r.status_code == 400
    assert r.json()["reason"] == "missing_file"


def test_non_multipart_body_rejected(client, auth, project_id):
    headers = {**auth(), "Content-Type": "text/plain"}
    r = client.post(f"/api/projects/{project_id}/attachments", content=b"raw bytes", headers=headers)
    assert r.status_code == 400
    assert r.json()["reason"] == "malformed_upload"


def test_unknown_project_is_404(client, auth, settings):
    r = _upload(client, "00000000-0000-0000-0000-000000000000", auth())
    assert r.status_code == 404
    assert r.json()["message"] == "Project not found"
    assert _staging_files(settings) == []


def test_malformed_project_id_is_404(client, auth):
    r = _upload(client, "not-a-uuid", auth())
    assert r.status_code == 404


def test_other_organization_cannot_see_project(client, auth, project_id):
    other = auth(org_id="org-2", sub="user-9")
    assert _upload(client, project_id, other).status_code == 404
    assert client.get(f"/api/projects/{project_id}/attachments", headers=other).status_code == 404


def test_viewer_cannot_upload_but_can_list(client, auth, project_id):
    viewer = auth(role="VIEWER", sub="viewer-1")
    r = _upload(client, project_id, viewer)
    assert r.status_code == 403

    r = client.get(f"/api/projects/{project_id}/attachments", headers=viewer)
    assert r.status_code == 200
    assert r.json()["attachments"] == []


def test_missing_token_rejected(client, project_id):
    r = client.get(f"/api/projects/{project_id}/attachments")
    assert r.status_code in (401, 403)


def test_list_in_creation_order(client, auth, project_id):
    for name in ("a.txt", "b.txt", "c.txt"):
        assert _upload(client, project_id, auth(), name=name).status_code == 201

    r = client.get(f"/api/projects/{project_id}/attachments", headers=auth())
    assert r.status_code == 200
    assert [a["originalFilename"] for a in r.json()["attachments"]] == ["a.txt", "b.txt", "c.txt"]


def test_round_trip_content(client, auth, project_id):
    content = bytes(range(256)) * 300
    r = _upload(client, project_id, auth(), name="data.csv", content=content, media_type="text/csv")
    assert r.status_code == 201, r.text
    att = r.json()

    meta = client.get(f"/api/projects/{project_id}/attachments/{att['id']}", headers=auth())
    assert meta.status_code == 200
    assert meta.json()["sha256"] == att["sha256"]

    dl = client.get(f"/api/projects/{project_id}/attachments/{att['id']}/content", headers=auth())
    assert dl.status_code == 200
    assert dl.content == content
    assert len(dl.content) == att["sizeBytes"]
    assert dl.headers["content-type"].startswith("text/csv")
    assert "attachment;" in dl.headers["content-disposition"]
    assert "filename*=UTF-8''data.csv" in dl.headers["content-disposition"]
    assert dl.headers["x-content-sha256"] == att["sha256"]


def test_unknown_attachment_is_404(client, auth, project_id):
    r = client.get(f"/api/projects/{project_id}/attachments/not-a-uuid", headers=auth())
    assert r.status_code == 404
    r = client.get(
        f"/api/projects/{project_id}/attachments/00000000-0000-0000-0000-000000000000",
        headers=auth(),
    )
    assert r.status_code == 404


def test_delete_removes_row_and_bytes(client, auth, project_id, settings, db):
    att = _upload(client, project_id, auth()).json()
    assert len(_object_files(settings)) == 1

    r = client.delete(f"/api/projects/{project_id}/attachments/{att['id']}", headers=auth())
    assert r.status_code == 200
    assert r.json()["attachmentId"] == att["id"]

    assert _rows(db) == []
    assert _object_files(settings) == []
    assert list((Path(settings.storage_root) / "tombstones").iterdir()) == []

    r = client.get(f"/api/projects/{project_id}/attachments/{att['id']}", headers=auth())
    assert r.status_code == 404


def test_viewer_cannot_delete(client, auth, project_id):
    att = _upload(client, project_id, auth()).json()
    r = client.delete(
        f"/api/projects/{project_id}/attachments/{att['id']}",
        headers=auth(role="VIEWER", sub="viewer-1"),
    )
    assert r.status_code == 403


def test_audit_rows_for_commit_and_rejection(client, auth, project_id, db):
    ok = _upload(client, project_id, auth())
    assert ok.status_code == 201
    bad = _upload(client, project_id, auth(), name="bad.exe", content=b"MZ", media_type="application/x-msdownload")
    assert bad.status_code == 400

    rows = db.execute(select(AuditLogRecord).order_by(AuditLogRecord.created_at)).scalars().all()
    by_action = {r.action: r for r in rows}

    committed = by_action["ATTACHMENT_COMMITTED"]
    assert committed.ref_id == ok.json()["id"]
    assert committed.payload_summary_json["sha256"] == ok.json()["sha256"]
    assert committed.actor_user_id == "user-1"

    rejected = by_action["ATTACHMENT_REJECTED"]
    assert rejected.status == "rejected"
    assert rejected.payload_summary_json["reason"] == "invalid_type"
