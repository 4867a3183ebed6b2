#signaltrue/schemas/attachments.py
from __future__ import annotations

from typing import List, Optional
from pydantic import BaseModel


class AttachmentResponse(BaseModel):
    id: str
    projectId: str
    originalFilename: str
    mediaType: str
    sizeBytes: int
    sha256: str
    status: str
    uploadedBy: str
    createdAtIso: Optional[str] = None


class AttachmentListResponse(BaseModel):
    projectId: str
    attachments: List[AttachmentResponse]


class RejectionResponse(BaseModel):
    message: str
    reason: str


class ScannerSimulationRequest(BaseModel):
    infected: bool


class ScannerSimulationResponse(BaseModel):
    scanner: str
    infected: bool
