from datetime import datetime, timezone

from sqlalchemy.orm import Session as DBSession

from database.models import Assets, Project
from models.composition_models import CompositionMetadata
from operators.composition_operator import (
    create_composition,
    delete_composition,
    get_composition_by_project,
)


def get_project_by_id(project_id: str, db: DBSession) -> Project | None:
    return db.query(Project).filter(Project.project_id == project_id).first()


def create_project(
    name: str,
    db: DBSession,
    metadata: CompositionMetadata | None = None,
) -> Project:
    """Create a project together with its empty composition."""
    project = Project(
        project_name=name,
        created_at=datetime.now(timezone.utc),
        updated_at=datetime.now(timezone.utc),
    )
    db.add(project)
    db.flush()

    create_composition(db, project.project_id, metadata=metadata)
    db.refresh(project)
    return project


def list_projects(db: DBSession) -> list[Project]:
    return db.query(Project).order_by(Project.updated_at.desc()).all()


def delete_project(project_id: str, db: DBSession) -> bool:
    """Delete a project with its composition, history and assets."""
    project = get_project_by_id(project_id, db)
    if not project:
        return False

    composition = get_composition_by_project(db, project_id)
    if composition:
        delete_composition(db, composition.composition_id)

    db.query(Assets).filter(Assets.project_id == project_id).delete(synchronize_session=False)
    db.delete(project)
    db.commit()
    return True
