"""Flagged issue routes."""
from datetime import date
from enum import Enum
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlmodel import Session

from hydrolog.core.database import get_session
from hydrolog.logbook.actors import Actor
from hydrolog.logbook.checklists import get_or_create_day
from hydrolog.logbook.clock import operational_date
from hydrolog.logbook.errors import InvalidIssue
from hydrolog.logbook.issues import IssueDraft, advance_issue, create_issue, issue_to_dict, list_issues
from hydrolog.logbook.store import get_kind
from hydrolog.routes.deps import get_actor, get_clock

router = APIRouter(prefix="/issues", tags=["issues"])


class IssueTarget(str, Enum):
    checklist = "checklist"
    generator = "generator"
    transformer = "transformer"


class IssuePayload(BaseModel):
    target: IssueTarget = IssueTarget.checklist
    day: date | None = None
    slot_id: UUID | None = None
    module: str
    section: str
    item: str
    description: str
    severity: str = "medium"
    unit: str | None = None


class StatusPayload(BaseModel):
    status: str


@router.get("")
async def get_issues(
    status: str | None = None,
    severity: str | None = None,
    limit: int = Query(default=20, ge=1, le=100),
    session: Session = Depends(get_session),
):
    """Newest issues first."""
    return [issue_to_dict(issue) for issue in list_issues(session, status, severity, limit)]


@router.post("", status_code=201)
async def flag(
    payload: IssuePayload,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
    clock=Depends(get_clock),
):
    """
    Flag an issue against a checklist day or a saved hour slot.

    Checklist issues default to today's checklist; slot issues need the
    ``slot_id`` of the saved hour.
    """
    now = clock()
    day = payload.day or operational_date(now)
    draft = IssueDraft(
        module=payload.module,
        section=payload.section,
        item=payload.item,
        description=payload.description,
        severity=payload.severity,
        unit=payload.unit,
    )
    if payload.target is IssueTarget.checklist:
        reference = {"checklist_id": get_or_create_day(session, day, now).id}
    else:
        if payload.slot_id is None:
            raise InvalidIssue("Please save the log entry first before flagging issues")
        reference = {get_kind(payload.target.value).issue_fk: payload.slot_id}

    issue = create_issue(session, draft, actor, day=day, now=now, **reference)
    return issue_to_dict(issue)


@router.post("/{code}/status")
async def set_status(
    code: str,
    payload: StatusPayload,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
    clock=Depends(get_clock),
):
    try:
        issue = advance_issue(session, code, payload.status, actor, clock())
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return issue_to_dict(issue)
