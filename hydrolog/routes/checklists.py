"""Daily checklist routes."""
from datetime import date

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlmodel import Session

from hydrolog.core.database import get_session
from hydrolog.logbook.actors import Actor
from hydrolog.logbook.checklists import checklist_to_dict, get_or_create_day, save_module, submit_day
from hydrolog.routes.deps import get_actor, get_clock

router = APIRouter(prefix="/checklists", tags=["checklists"])


class ModulePayload(BaseModel):
    data: dict = Field(default_factory=dict)
    problem_fields: list[str] | None = None


@router.get("/{day}")
async def get_checklist(day: date, session: Session = Depends(get_session), clock=Depends(get_clock)):
    """The day's checklist, created on first access."""
    return checklist_to_dict(get_or_create_day(session, day, clock()))


@router.put("/{day}/modules/{module}")
async def put_module(
    day: date,
    module: int,
    payload: ModulePayload,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
):
    try:
        checklist = save_module(session, day, module, payload.data, actor, payload.problem_fields)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return checklist_to_dict(checklist)


@router.post("/{day}/submit")
async def submit(
    day: date,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
    clock=Depends(get_clock),
):
    """Submit the checklist. Only the first submission succeeds."""
    try:
        checklist = submit_day(session, day, actor, clock())
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return checklist_to_dict(checklist, include_module_data=False)
