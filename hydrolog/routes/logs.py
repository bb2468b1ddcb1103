"""Hour slot routes for the generator and transformer log sheets."""
import logging
from datetime import date
from enum import Enum

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from hydrolog.logbook.actors import Actor, require_admin, require_writer
from hydrolog.logbook.clock import current_hour, operational_date
from hydrolog.logbook.errors import DuplicateKey, SlotLocked
from hydrolog.logbook.store import SlotStore, SlotWrite, get_kind
from hydrolog.logbook.validation import classify_values, suggest_issue
from hydrolog.routes.deps import get_actor, get_clock, get_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/logs", tags=["logs"])


class LogKind(str, Enum):
    generator = "generator"
    transformer = "transformer"


class SlotPayload(BaseModel):
    values: dict[str, float | int | str | None] = Field(default_factory=dict)
    transformer_number: int | None = None


def annotate(kind, values: dict) -> dict:
    """Status, message and suggested issue severity per ranged field."""
    annotations = {}
    for name, result in classify_values(values, kind.ranges).items():
        suggestion = suggest_issue(values.get(name), kind.ranges[name])
        annotations[name] = {
            "status": result.status.value,
            "message": result.message,
            "suggested_severity": suggestion.severity.value,
        }
    return annotations


@router.get("/{kind}/{day}")
async def list_day(
    kind: LogKind,
    day: date,
    transformer_number: int | None = None,
    store: SlotStore = Depends(get_store),
):
    """All saved hours of a day, ordered by hour."""
    slot_kind = get_kind(kind.value)
    slots = await store.list_slots(slot_kind, day, transformer_number)
    return {
        "kind": slot_kind.name,
        "date": day.isoformat(),
        "logged_hours": sorted({s.hour for s in slots}),
        "finalized": any(s.finalized for s in slots),
        "slots": [s.to_dict() for s in slots],
    }


@router.get("/{kind}/{day}/{hour}")
async def get_hour(
    kind: LogKind,
    day: date,
    hour: int,
    transformer_number: int | None = None,
    store: SlotStore = Depends(get_store),
):
    slot_kind = get_kind(kind.value)
    slot = await store.get_slot(slot_kind, day, hour, transformer_number)
    if slot is None:
        raise HTTPException(status_code=404, detail="Hour not logged")
    return {**slot.to_dict(), "annotations": annotate(slot_kind, slot.values)}


@router.put("/{kind}/{day}/{hour}")
async def save_hour(
    kind: LogKind,
    day: date,
    hour: int,
    payload: SlotPayload,
    actor: Actor = Depends(get_actor),
    store: SlotStore = Depends(get_store),
    clock=Depends(get_clock),
):
    """
    Save the current hour.

    The edit window is checked against the server's clock, not the
    client's: only the current hour of the current plant day is writable.
    A lost insert race is retried once as an update.
    """
    require_writer(actor, "save logs")
    slot_kind = get_kind(kind.value)
    now = clock()
    if day != operational_date(now) or hour != current_hour(now):
        raise SlotLocked("You can only edit data for the current hour.")

    try:
        values = slot_kind.clean(payload.values)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    write = SlotWrite(
        day=day, hour=hour, values=values, actor=actor.id,
        stream_id=payload.transformer_number,
    )
    try:
        slot = await store.upsert_slot(slot_kind, write)
    except DuplicateKey:
        logger.info(f"Duplicate key saving {slot_kind.name} {day} hour {hour}, retrying")
        slot = await store.upsert_slot(slot_kind, write)
    return {**slot.to_dict(), "annotations": annotate(slot_kind, slot.values)}


@router.post("/{kind}/{day}/finalize")
async def finalize(
    kind: LogKind,
    day: date,
    transformer_number: int | None = None,
    actor: Actor = Depends(get_actor),
    store: SlotStore = Depends(get_store),
):
    """Freeze a complete day. Requires all 24 hours."""
    require_admin(actor, "finalize logs")
    slot_kind = get_kind(kind.value)
    count = await store.finalize_day(slot_kind, day, transformer_number, actor.id)
    return {"kind": slot_kind.name, "date": day.isoformat(), "finalized": count}
