"""Tool endpoints for automation agents."""
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlmodel import Session

from hydrolog.core.database import get_session
from hydrolog.logbook import tools
from hydrolog.logbook.actors import Actor
from hydrolog.routes.deps import get_actor, get_clock

router = APIRouter(prefix="/tools", tags=["tools"])


class FlagIssuePayload(BaseModel):
    module: str
    section: str
    item: str
    description: str
    severity: str = "medium"
    unit: str | None = None


@router.get("/plant_status")
async def plant_status(session: Session = Depends(get_session), clock=Depends(get_clock)):
    return tools.plant_status(session, clock())


@router.get("/generator_logs")
async def generator_logs(
    day: date | None = Query(default=None, alias="date"),
    hour: int | None = Query(default=None, ge=0, le=23),
    fields: list[str] | None = Query(default=None),
    session: Session = Depends(get_session),
    clock=Depends(get_clock),
):
    return tools.generator_logs(session, clock(), day, hour, fields)


@router.get("/transformer_logs")
async def transformer_logs(
    day: date | None = Query(default=None, alias="date"),
    hour: int | None = Query(default=None, ge=0, le=23),
    transformer_number: int = 1,
    session: Session = Depends(get_session),
    clock=Depends(get_clock),
):
    return tools.transformer_logs(session, clock(), day, hour, transformer_number)


@router.get("/checklists")
async def checklists(
    day: date | None = Query(default=None, alias="date"),
    include_module_data: bool = False,
    session: Session = Depends(get_session),
    clock=Depends(get_clock),
):
    return tools.checklists(session, clock(), day, include_module_data)


@router.get("/issues")
async def issues(
    status: str = "all",
    severity: str = "all",
    limit: int = Query(default=20, ge=1, le=100),
    session: Session = Depends(get_session),
):
    return tools.issues(session, status, severity, limit)


@router.post("/flag_issue")
async def flag_issue(
    payload: FlagIssuePayload,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
    clock=Depends(get_clock),
):
    return tools.flag_issue(session, clock(), actor, **payload.model_dump())


@router.get("/statistics")
async def statistics(
    period: str = "today",
    session: Session = Depends(get_session),
    clock=Depends(get_clock),
):
    if period not in tools.PERIODS:
        raise HTTPException(status_code=422, detail=f"period must be one of {', '.join(tools.PERIODS)}")
    return tools.statistics(session, clock(), period)
