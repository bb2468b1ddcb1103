"""Daily inspection checklist models.

``ChecklistDay`` is the collective daily inspection record: one row per plant
day, with one data blob per inspection module, filled in by whichever
operators are on shift. ``CategoryCompletion`` records, per session, which
equipment categories were unlocked (by QR scan or emergency override) and
completed; category and session status are always derived from these rows.
"""

import datetime as dt
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, Column, UniqueConstraint
from sqlmodel import Field, SQLModel


class ChecklistDay(SQLModel, table=True):
    """The shared daily inspection checklist.

    Attributes:
        id: Unique identifier (UUID).
        date: Plant day. At most one checklist exists per day.
        module1_data .. module4_data: Free-form answers of each inspection
            module, as saved by the module forms.
        completion_percentage: 25 per module that holds data.
        problem_fields: Readings the module forms reported as out of range.
        status: "in_progress" until submitted, then "completed".
        start_time: When the first operator opened the day's checklist.
        submitted: One-way flag. Once set the checklist is read-only.
        submitted_at: When the checklist was submitted.
        submitted_by: Operator who won the submission.
        contributors: Map of "moduleN" to the operators who saved that module.
    """
    __tablename__ = "checklists"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    date: dt.date = Field(index=True, unique=True)
    module1_data: dict = Field(default_factory=dict, sa_column=Column("module1_data", JSON))
    module2_data: dict = Field(default_factory=dict, sa_column=Column("module2_data", JSON))
    module3_data: dict = Field(default_factory=dict, sa_column=Column("module3_data", JSON))
    module4_data: dict = Field(default_factory=dict, sa_column=Column("module4_data", JSON))
    completion_percentage: int = Field(default=0)
    problem_fields: list = Field(default_factory=list, sa_column=Column("problem_fields", JSON))
    status: str = Field(default="in_progress")
    start_time: dt.datetime = Field(default_factory=lambda: dt.datetime.now(dt.UTC))
    submitted: bool = Field(default=False)
    submitted_at: dt.datetime | None = None
    submitted_by: str | None = None
    contributors: dict = Field(default_factory=dict, sa_column=Column("contributors", JSON))

    def module_data(self, module: int) -> dict:
        return getattr(self, f"module{module}_data") or {}


class CategoryCompletion(SQLModel, table=True):
    """Unlock and completion of one equipment category in one session.

    A row is written when the category is unlocked and stamped again when
    its checklist is saved. No row means the category is still locked for
    that session.

    Attributes:
        id: Unique identifier (UUID).
        date: Plant day the session belongs to.
        session_number: Session 1-4.
        category: Equipment category name (e.g. "Turbine System").
        unlock_method: "qr" or "emergency".
        unlocked_at: When the category was unlocked.
        unlocked_by: Operator who scanned the code or declared the emergency.
        is_emergency: True when the unlock bypassed the session window.
        emergency_reason: Mandatory justification for an emergency unlock.
        emergency_reported_at: When the emergency was declared.
        completed_at: When the category checklist was saved. None while
            the category is unlocked but not yet completed.
        completed_by: Operator who saved the category checklist.
        notes: Free-text notes saved with the checklist.
    """
    __tablename__ = "category_completions"
    __table_args__ = (
        UniqueConstraint(
            "date", "session_number", "category",
            name="uq_category_completions_date_session_category",
        ),
        CheckConstraint("session_number >= 1 AND session_number <= 4", name="session_number_range"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    date: dt.date = Field(index=True)
    session_number: int
    category: str
    unlock_method: str = Field(default="qr")
    unlocked_at: dt.datetime = Field(default_factory=lambda: dt.datetime.now(dt.UTC))
    unlocked_by: str | None = None
    is_emergency: bool = Field(default=False)
    emergency_reason: str | None = None
    emergency_reported_at: dt.datetime | None = None
    completed_at: dt.datetime | None = None
    completed_by: str | None = None
    notes: str | None = None
