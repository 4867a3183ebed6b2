#signaltrue/policies/rbac.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Set

from signaltrue.models.enums import MemberRole


@dataclass(frozen=True)
class Principal:
    user_id: str
    organization_id: str
    role: MemberRole
    display_name: str


# --- Core action constants ---
ACTION_MANAGE_PROJECTS = "MANAGE_PROJECTS"
ACTION_UPLOAD_ATTACHMENT = "UPLOAD_ATTACHMENT"
ACTION_DELETE_ATTACHMENT = "DELETE_ATTACHMENT"
ACTION_TOGGLE_SCANNER_SIMULATION = "TOGGLE_SCANNER_SIMULATION"


def allowed_actions(role: MemberRole) -> Set[str]:
    """
    Pure RBAC: which actions a role may attempt. Reads are open to every member
    of the organization.
    """

    if role == MemberRole.ORG_ADMIN:
        return {
            ACTION_MANAGE_PROJECTS,
            ACTION_UPLOAD_ATTACHMENT,
            ACTION_DELETE_ATTACHMENT,
            ACTION_TOGGLE_SCANNER_SIMULATION,
        }

    if role == MemberRole.MEMBER:
        return {ACTION_MANAGE_PROJECTS, ACTION_UPLOAD_ATTACHMENT, ACTION_DELETE_ATTACHMENT}

    if role == MemberRole.VIEWER:
        return set()

    return set()


def require_action(principal: Principal, action: str) -> None:
    if action not in allowed_actions(principal.role):
        raise PermissionError(
            f"Role {principal.role.value} not permitted for action {action}."
        )
