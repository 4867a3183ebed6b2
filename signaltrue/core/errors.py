# signaltrue/core/errors.py
from __future__ import annotations


class IngestionError(Exception):
    """Base class for attachment pipeline failures surfaced to the HTTP layer."""


class ProjectNotFound(IngestionError):
    def __init__(self, project_id: str):
        super().__init__(f"Project not found: {project_id}")
        self.project_id = project_id


class AttachmentNotFound(IngestionError):
    def __init__(self, attachment_id: str):
        super().__init__(f"Attachment not found: {attachment_id}")
        self.attachment_id = attachment_id


class MalformedUpload(IngestionError):
    """Request body is not a usable multipart/form-data upload."""

    def __init__(self, message: str, *, reason: str = "malformed_upload"):
        super().__init__(message)
        self.reason = reason


class StorageError(IngestionError):
    """Promote, delete or repository write failed; the input is not at fault."""
