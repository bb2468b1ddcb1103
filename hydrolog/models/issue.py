"""Flagged issue model.

Operators flag readings or checklist items that need maintenance attention.
Each issue points at exactly one record: the day's checklist, a generator
hour slot, or a transformer hour slot.
"""

import datetime as dt
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint
from sqlmodel import Field, SQLModel


class FlaggedIssue(SQLModel, table=True):
    """A maintenance issue raised against a checklist or an hour slot.

    Attributes:
        id: Unique identifier (UUID).
        issue_code: Human-readable code, e.g. "TRF-20250114-0003".
        checklist_id: Checklist day the issue was raised on.
        generator_log_id: Generator hour slot the issue was raised on.
        transformer_log_id: Transformer hour slot the issue was raised on.
        module: Log sheet or checklist module (e.g. "Transformer Log").
        section: Section within the module (e.g. "PTR Feeder").
        item: Field or checklist item (e.g. "oil_temperature").
        unit: Equipment unit or measurement unit, if any.
        severity: "low", "medium", "high" or "critical".
        description: What the operator observed.
        status: "reported", "in_progress" or "resolved". Only moves forward.
        reported_by: Operator or agent that raised the issue.
        resolved_at: When the issue reached "resolved".
    """
    __tablename__ = "flagged_issues"
    __table_args__ = (
        CheckConstraint(
            "(CASE WHEN checklist_id IS NULL THEN 0 ELSE 1 END)"
            " + (CASE WHEN generator_log_id IS NULL THEN 0 ELSE 1 END)"
            " + (CASE WHEN transformer_log_id IS NULL THEN 0 ELSE 1 END) = 1",
            name="single_reference",
        ),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    issue_code: str = Field(index=True, unique=True)
    checklist_id: UUID | None = Field(default=None, foreign_key="checklists.id")
    generator_log_id: UUID | None = Field(default=None, foreign_key="generator_logs.id")
    transformer_log_id: UUID | None = Field(default=None, foreign_key="transformer_logs.id")
    module: str
    section: str
    item: str
    unit: str | None = None
    severity: str = Field(default="medium")
    description: str
    status: str = Field(default="reported", index=True)
    reported_by: str | None = None
    created_at: dt.datetime = Field(default_factory=lambda: dt.datetime.now(dt.UTC))
    updated_at: dt.datetime = Field(default_factory=lambda: dt.datetime.now(dt.UTC))
    resolved_at: dt.datetime | None = None
