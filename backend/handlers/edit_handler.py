"""REST API endpoint for conversational editing.

One request is one user turn: the edit agent runs its bounded tool loop
against the composition and reports what it changed, or asks the user to
choose between matching elements.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from agent.edit_agent import EditAgent, EditRequest, build_client
from database.base import get_db
from database.models import Composition
from dependencies.composition import require_composition
from models.api_models import ChatRequest, ChatResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/compositions/{composition_id}", tags=["edit"])


def get_edit_agent() -> EditAgent:
    return EditAgent(client=build_client())


@router.post("/chat", response_model=ChatResponse)
def composition_chat(
    request: ChatRequest,
    composition: Composition = Depends(require_composition),
    db: Session = Depends(get_db),
    agent: EditAgent = Depends(get_edit_agent),
):
    logger.info(
        "edit_agent_run_start composition_id=%s message_len=%d",
        composition.composition_id,
        len(request.message),
    )
    try:
        result = agent.run(
            db,
            composition.composition_id,
            EditRequest(message=request.message, history=request.history),
        )
    except Exception:
        db.rollback()
        logger.exception("edit_agent_run_failed composition_id=%s", composition.composition_id)
        raise HTTPException(status_code=500, detail="Edit agent failed")

    logger.info(
        "edit_agent_run_complete composition_id=%s iterations=%d receipts=%d budget_exhausted=%s",
        composition.composition_id,
        result.iterations,
        len(result.receipts),
        result.budget_exhausted,
    )
    return ChatResponse(
        ok=not result.needs_disambiguation,
        reply=result.message,
        receipts=result.receipts,
        needs_disambiguation=result.needs_disambiguation,
        disambiguation_options=result.disambiguation_options,
        iterations=result.iterations,
        budget_exhausted=result.budget_exhausted,
        version=result.new_version if result.new_version is not None else composition.version,
    )
