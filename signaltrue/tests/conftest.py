import os
import tempfile

# Settings are read at import time (db.session, main); point them at throwaway
# locations before anything from signaltrue is imported.
_TMP = tempfile.mkdtemp(prefix="signaltrue-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_TMP, 'default.db')}")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("STORAGE_ROOT", os.path.join(_TMP, "storage"))

import pytest
from fastapi.testclient import TestClient

# FORCE model registration
import signaltrue.models  # noqa

from signaltrue.core.config import get_settings
from signaltrue.core.security import create_access_token
from signaltrue.db.base import Base
from signaltrue.db.session import build_engine, build_session_factory, get_db
from signaltrue.main import create_app


@pytest.fixture(scope="function")
def engine(tmp_path):
    eng = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture(scope="function")
def TestingSessionLocal(engine):
    return build_session_factory(engine)


@pytest.fixture(scope="function")
def db(TestingSessionLocal):
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def settings(tmp_path):
    return get_settings().model_copy(
        update={
            "storage_root": str(tmp_path / "storage"),
            "scanner_simulation_api_enabled": True,
            "scan_simulate_infected": False,
            "scanner_backend": "simulated",
        }
    )


@pytest.fixture(scope="function")
def app(settings, TestingSessionLocal):
    app = create_app(settings)

    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    return app


@pytest.fixture(scope="function")
def client(app):
    return TestClient(app)


def make_token(role="MEMBER", org_id="org-1", sub="user-1"):
    return create_access_token(sub, {"org_id": org_id, "role": role, "display_name": sub})


@pytest.fixture
def auth():
    def _auth(role="MEMBER", org_id="org-1", sub="user-1"):
        return {"Authorization": f"Bearer {make_token(role=role, org_id=org_id, sub=sub)}"}

    return _auth


@pytest.fixture
def project_id(client, auth):
    r = client.post(
        "/api/projects",
        json={"name": "Alpha", "description": "Attachment target"},
        headers=auth(),
    )
    assert r.status_code == 201, r.text
    return r.json()["_id"]
