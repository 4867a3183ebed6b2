# signaltrue/services/projects_service.py
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from signaltrue.core.errors import ProjectNotFound
from signaltrue.models.enums import ProjectStatus
from signaltrue.models.project import Project
from signaltrue.services.attachment_repository import AttachmentRepository


def parse_project_id(raw: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(raw))
    except (TypeError, ValueError):
        return None


class ProjectsService:
    def create(
        self,
        db: Session,
        *,
        organization_id: str,
        name: str,
        description: str,
        status: str = ProjectStatus.open.value,
        favorite: bool = False,
        tags: Optional[List[str]] = None,
    ) -> Project:
        now = datetime.now(timezone.utc)
        p = Project(
            organization_id=organization_id,
            name=name.strip(),
            description=description.strip(),
            status=status,
            favorite=bool(favorite),
            tags_json=[str(t) for t in (tags or [])],
            created_at=now,
            updated_at=now,
        )
        db.add(p)
        db.commit()
        db.refresh(p)
        return p

    def get(
        self, db: Session, *, organization_id: str, project_id: uuid.UUID
    ) -> Optional[Project]:
        return db.execute(
            select(Project).where(
                Project.organization_id == organization_id, Project.id == project_id
            )
        ).scalar_one_or_none()

    def require(self, db: Session, *, organization_id: str, project_id: str) -> Project:
        """
        Resolve a raw path id inside the caller's organization. Malformed ids
        and other organizations' projects are both simply not found.
        """
        pid = parse_project_id(project_id)
        p = self.get(db, organization_id=organization_id, project_id=pid) if pid else None
        if not p:
            raise ProjectNotFound(str(project_id))
        return p

    def list(self, db: Session, *, organization_id: str, limit: int = 200) -> List[Project]:
        stmt = (
            select(Project)
            .where(Project.organization_id == organization_id)
            .order_by(Project.created_at.desc())  # newest first
            .limit(limit)
        )
        return list(db.execute(stmt).scalars().all())

    def delete(self, db: Session, *, project: Project, repository: AttachmentRepository) -> int:
        """
        Deletes the project and every attachment it owns (rows and bytes).
        Returns the number of attachments removed.
        """
        attachments = repository.list_by_project(db, project_id=project.id)
        return repository.delete_all(db, attachments, also=project)
