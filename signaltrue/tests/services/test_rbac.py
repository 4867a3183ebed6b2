import pytest

from signaltrue.models.enums import MemberRole
from signaltrue.policies.rbac import (
    ACTION_DELETE_ATTACHMENT,
    ACTION_MANAGE_PROJECTS,
    ACTION_TOGGLE_SCANNER_SIMULATION,
    ACTION_UPLOAD_ATTACHMENT,
    Principal,
    allowed_actions,
    require_action,
)


def _p(role):
    return Principal(user_id="u", organization_id="o", role=role, display_name="u")


def test_admin_may_do_everything():
    for action in (
        ACTION_MANAGE_PROJECTS,
        ACTION_UPLOAD_ATTACHMENT,
        ACTION_DELETE_ATTACHMENT,
        ACTION_TOGGLE_SCANNER_SIMULATION,
    ):
        require_action(_p(MemberRole.ORG_ADMIN), action)


def test_member_cannot_toggle_scanner():
    require_action(_p(MemberRole.MEMBER), ACTION_UPLOAD_ATTACHMENT)
    with pytest.raises(PermissionError):
        require_action(_p(MemberRole.MEMBER), ACTION_TOGGLE_SCANNER_SIMULATION)


def test_viewer_is_read_only():
    assert allowed_actions(MemberRole.VIEWER) == set()
    with pytest.raises(PermissionError):
        require_action(_p(MemberRole.VIEWER), ACTION_UPLOAD_ATTACHMENT)
