#signaltrue/models/enums.py
from __future__ import annotations
from enum import Enum


class MemberRole(str, Enum):
    ORG_ADMIN = "ORG_ADMIN"
    MEMBER = "MEMBER"
    VIEWER = "VIEWER"


class ProjectStatus(str, Enum):
    open = "open"
    in_progress = "in-progress"
    done = "done"


class AttachmentStatus(str, Enum):
    # only terminal state a row can ever hold
    committed = "committed"
