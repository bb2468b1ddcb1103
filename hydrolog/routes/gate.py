"""Checklist session gate routes: QR unlock and category completion."""
from datetime import date

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlmodel import Session

from hydrolog.core.database import get_session
from hydrolog.logbook.actors import Actor
from hydrolog.logbook.gate import ChecklistGate, EmergencyOverride
from hydrolog.routes.deps import get_actor, get_clock

router = APIRouter(prefix="/gate", tags=["gate"])


class ScanPayload(BaseModel):
    code: str
    emergency_reason: str | None = None


class CompletePayload(BaseModel):
    session_number: int | None = None
    day: date | None = None
    notes: str | None = None


def session_summary(gate: ChecklistGate, session_number: int | None, day: date | None) -> dict:
    statuses = gate.statuses(session_number, day)
    completed, total = gate.progress(session_number, day)
    first = statuses[0]
    return {
        "date": first.day.isoformat(),
        "session_number": first.session_number,
        "completed": completed,
        "total": total,
        "session_complete": completed == total,
        "categories": [s.to_dict() for s in statuses],
    }


@router.get("/{day}")
async def day_gate(day: date, session: Session = Depends(get_session), clock=Depends(get_clock)):
    """Category states for all four sessions of a day."""
    gate = ChecklistGate(session, day, clock)
    return {
        "date": day.isoformat(),
        "sessions": [session_summary(gate, n, day) for n in (1, 2, 3, 4)],
    }


@router.post("/scan")
async def scan(
    payload: ScanPayload,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
    clock=Depends(get_clock),
):
    """
    Unlock a category by its QR code.

    Outside the session windows an ``emergency_reason`` is required; the
    unlock is then attributed to the most recently opened session.
    """
    override = None
    if payload.emergency_reason is not None:
        try:
            override = EmergencyOverride(payload.emergency_reason, clock())
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))

    gate = ChecklistGate(session, clock=clock)
    try:
        status = gate.scan(payload.code, actor, override)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return status.to_dict()


@router.post("/{category}/complete")
async def complete(
    category: str,
    payload: CompletePayload,
    actor: Actor = Depends(get_actor),
    session: Session = Depends(get_session),
    clock=Depends(get_clock),
):
    gate = ChecklistGate(session, clock=clock)
    try:
        status = gate.complete(category, actor, payload.session_number, payload.notes, payload.day)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {
        **status.to_dict(),
        "session_complete": gate.is_session_complete(status.session_number, status.day),
    }
