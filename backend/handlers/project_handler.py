import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from database.base import get_db
from database.models import Project
from dependencies.composition import require_project
from models.api_models import (
    CompositionResponse,
    ProjectCreateRequest,
    ProjectCreateResponse,
    ProjectDeleteResponse,
    ProjectListResponse,
)
from operators.composition_operator import get_composition_by_project, to_document
from operators.project_operator import create_project, delete_project, list_projects


router = APIRouter(prefix="/projects", tags=["projects"])
logger = logging.getLogger(__name__)


@router.post("", response_model=ProjectCreateResponse)
async def project_create(
    request: ProjectCreateRequest,
    db: Session = Depends(get_db),
):
    """Create a project together with its empty composition."""
    try:
        project = create_project(request.name, db, metadata=request.metadata)
    except Exception:
        db.rollback()
        logger.exception("Failed to create project %s", request.name)
        raise HTTPException(status_code=500, detail="Failed to create project")

    composition = get_composition_by_project(db, project.project_id)
    return ProjectCreateResponse(
        ok=True,
        project_id=project.project_id,
        project_name=project.project_name,
        composition_id=composition.composition_id,
    )


@router.get("", response_model=ProjectListResponse)
async def project_list(db: Session = Depends(get_db)):
    projects = list_projects(db)
    return ProjectListResponse(
        ok=True,
        projects=[
            {
                "project_id": p.project_id,
                "project_name": p.project_name,
                "created_at": p.created_at.isoformat() if p.created_at else None,
                "updated_at": p.updated_at.isoformat() if p.updated_at else None,
            }
            for p in projects
        ],
    )


@router.get("/{project_id}/composition", response_model=CompositionResponse)
async def project_composition(
    project: Project = Depends(require_project),
    db: Session = Depends(get_db),
):
    composition = get_composition_by_project(db, project.project_id)
    if not composition:
        raise HTTPException(status_code=404, detail="Composition not found")

    return CompositionResponse(
        composition_id=composition.composition_id,
        project_id=composition.project_id,
        version=composition.version,
        ir=to_document(composition),
        compiled_artifact=composition.compiled_artifact or "",
        created_at=composition.created_at,
        updated_at=composition.updated_at,
    )


@router.delete("/{project_id}", response_model=ProjectDeleteResponse)
async def project_delete(
    project: Project = Depends(require_project),
    db: Session = Depends(get_db),
):
    """Delete a project along with its composition, history and assets."""
    if not delete_project(project.project_id, db):
        raise HTTPException(status_code=404, detail="Project not found")
    return ProjectDeleteResponse(ok=True)
