"""Append-only revision log for hour slots.

Every save of an hour slot appends one revision holding exactly what the
operator sent. The slot row itself is the fold of its revisions to the
latest one, so the audit trail survives last-write-wins updates.
"""

import datetime as dt
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


class SlotRevision(SQLModel, table=True):
    """One save of one hour slot.

    Attributes:
        id: Unique identifier (UUID).
        kind: Slot table the revision belongs to ("generator" or "transformer").
        slot_id: Identifier of the slot row the save was folded into.
        date: Plant day of the slot.
        hour: Hour of the slot.
        stream_id: Equipment stream (transformer number); None for the generator.
        actor: Operator who made the save.
        payload: Measurement values and remarks exactly as submitted.
        recorded_at: When the save was committed.
    """
    __tablename__ = "slot_revisions"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    kind: str = Field(index=True)
    slot_id: UUID = Field(index=True)
    date: dt.date = Field(index=True)
    hour: int
    stream_id: int | None = None
    actor: str | None = None
    payload: dict = Field(default_factory=dict, sa_column=Column(JSON))
    recorded_at: dt.datetime = Field(default_factory=lambda: dt.datetime.now(dt.UTC))
