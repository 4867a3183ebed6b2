#signaltrue/schemas/projects.py
from __future__ import annotations

from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from signaltrue.models.enums import ProjectStatus


# -----------------------
# Request/Response models
# -----------------------


class ProjectCreateRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = Field(..., min_length=1, max_length=256)
    description: str = Field(..., min_length=1)
    status: ProjectStatus = ProjectStatus.open
    favorite: bool = False
    tags: List[str] = Field(default_factory=list)

    @field_validator("name", "description")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must be a non-empty string")
        return v.strip()


class ProjectResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="_id")
    name: str
    description: str
    status: ProjectStatus
    favorite: bool
    tags: List[str]

    createdAtIso: Optional[str] = None
    updatedAtIso: Optional[str] = None


class ProjectListResponse(BaseModel):
    projects: List[ProjectResponse]
