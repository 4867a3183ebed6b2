from pathlib import Path


def _create(client, headers, **body):
    payload = {"name": "Alpha", "description": "First project"}
    payload.update(body)
    return client.post("/api/projects", json=payload, headers=headers)


def test_create_project_returns_id(client, auth):
    r = _create(client, auth(), name="  Roadmap  ", tags=["q3", "infra"], status="in-progress")
    assert r.status_code == 201, r.text

    body = r.json()
    assert body["_id"]
    assert body["name"] == "Roadmap"
    assert body["status"] == "in-progress"
    assert body["favorite"] is False
    assert body["tags"] == ["q3", "infra"]


def test_create_project_requires_name_and_description(client, auth):
    assert _create(client, auth(), name="   ").status_code == 422
    assert client.post("/api/projects", json={"name": "x"}, headers=auth()).status_code == 422


def test_create_project_rejects_unknown_status(client, auth):
    assert _create(client, auth(), status="archived").status_code == 422


def test_viewer_cannot_create_project(client, auth):
    assert _create(client, auth(role="VIEWER")).status_code == 403


def test_list_projects_newest_first_and_org_scoped(client, auth):
    _create(client, auth(), name="first")
    _create(client, auth(), name="second")
    _create(client, auth(org_id="org-2"), name="elsewhere")

    r = client.get("/api/projects", headers=auth())
    assert r.status_code == 200
    assert [p["name"] for p in r.json()["projects"]] == ["second", "first"]


def test_get_project(client, auth, project_id):
    r = client.get(f"/api/projects/{project_id}", headers=auth())
    assert r.status_code == 200
    assert r.json()["_id"] == project_id

    assert client.get(f"/api/projects/{project_id}", headers=auth(org_id="org-2")).status_code == 404


def test_delete_project_removes_attachments(client, auth, project_id, settings):
    for name in ("a.txt", "b.txt"):
        r = client.post(
            f"/api/projects/{project_id}/attachments",
            files={"file": (name, b"payload", "text/plain")},
            headers=auth(),
        )
        assert r.status_code == 201

    r = client.delete(f"/api/projects/{project_id}", headers=auth())
    assert r.status_code == 200
    assert r.json() == {"message": "Project deleted", "attachmentsRemoved": 2}

    objects = [p for p in (Path(settings.storage_root) / "objects").rglob("*") if p.is_file()]
    assert objects == []
    assert client.get(f"/api/projects/{project_id}", headers=auth()).status_code == 404


def test_invalid_token_rejected(client):
    r = client.get("/api/projects", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401
