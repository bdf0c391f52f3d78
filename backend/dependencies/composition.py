from typing import Annotated

from fastapi import Depends, Header, HTTPException, Path
from sqlalchemy.orm import Session

from database.base import get_db
from database.models import Composition, Project


def require_project(
    project_id: str = Path(...),
    db: Session = Depends(get_db),
) -> Project:
    project = db.query(Project).filter(Project.project_id == project_id).first()

    if not project:
        raise HTTPException(status_code=404, detail="Project not found")

    return project


def require_composition(
    composition_id: str = Path(...),
    db: Session = Depends(get_db),
) -> Composition:
    composition = (
        db.query(Composition)
        .filter(Composition.composition_id == composition_id)
        .first()
    )

    if not composition:
        raise HTTPException(status_code=404, detail="Composition not found")

    return composition


def get_expected_version(
    x_expected_version: Annotated[int | None, Header()] = None
) -> int | None:
    """Optional optimistic-locking token from the X-Expected-Version header."""
    return x_expected_version
