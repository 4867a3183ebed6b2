import asyncio

import pytest

from signaltrue.models.attachment import Attachment
from signaltrue.models.enums import MemberRole
from signaltrue.policies.rbac import Principal
from signaltrue.services.audit_service import RequestContext
from signaltrue.services.projects_service import ProjectsService
from signaltrue.services.staging_store import StagingStore
from signaltrue.tests.helpers import chunked


@pytest.fixture
def ctx():
    principal = Principal(
        user_id="user-1",
        organization_id="org-1",
        role=MemberRole.MEMBER,
        display_name="User One",
    )
    return RequestContext(request_id="req-test", route="/test", method="POST", principal=principal)


@pytest.fixture
def project(db):
    return ProjectsService().create(db, organization_id="org-1", name="Alpha", description="Test project")


@pytest.fixture
def store(tmp_path):
    return StagingStore(tmp_path / "storage")


@pytest.fixture
def stored_attachment(store):
    """Builds an unsaved Attachment whose bytes are already promoted."""

    def _make(project, content=b"data", filename="a.txt", media_type="text/plain"):
        ref = store.new_ref()
        staged = asyncio.run(store.stage(ref, chunked(content)))
        storage_ref = asyncio.run(store.promote(ref, namespace=str(project.id), media_type=media_type))
        return Attachment(
            project_id=project.id,
            organization_id=project.organization_id,
            original_filename=filename,
            media_type=media_type,
            size_bytes=staged.bytes_written,
            sha256=staged.sha256,
            storage_ref=storage_ref,
            uploaded_by="user-1",
        )

    return _make
