"""Slot store adapter.

Persists hour slots keyed by their natural key and reports constraint and
transport failures as logbook errors. The database is the source of truth:
uniqueness of (date, hour) or (transformer_number, date, hour) and the range
CHECK constraints are enforced there, and this module only translates what
the database says.

The async interface lets a collective log session await saves without
blocking its event loop bookkeeping; the work itself is a short synchronous
SQLModel transaction, the same way the request handlers use the database.
"""

import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime
from functools import cached_property
from uuid import UUID

from pydantic import TypeAdapter, ValidationError
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlmodel import Session, SQLModel, select

from hydrolog.logbook.clock import system_clock
from hydrolog.logbook.errors import (
    DuplicateKey,
    FieldViolation,
    IncompleteDay,
    LogbookError,
    NetworkFailure,
    PermissionDenied,
    RangeViolation,
    SlotLocked,
)
from hydrolog.logbook.realtime import ChangeBroker, ChangeEvent, Subscription, change_broker
from hydrolog.logbook.validation import (
    GENERATOR_RANGES,
    TRANSFORMER_RANGES,
    FieldRange,
    hard_violations,
    supply_interruption_minutes,
    transformer_field_violations,
)
from hydrolog.models import GeneratorLog, SlotRevision, TransformerLog

logger = logging.getLogger(__name__)

HOURS_PER_DAY = 24

BOOKKEEPING_FIELDS = frozenset({
    "id", "date", "hour", "logged_by", "last_modified_by", "logged_at",
    "finalized", "finalized_at", "finalized_by", "created_at", "updated_at",
})


def _derive_transformer(values: dict) -> dict:
    if "ltac_grid_fail_time" in values or "ltac_grid_resume_time" in values:
        values["ltac_supply_interruption"] = supply_interruption_minutes(
            values.get("ltac_grid_fail_time"), values.get("ltac_grid_resume_time")
        )
    return values


@dataclass(frozen=True, eq=False)
class SlotKind:
    """Everything that differs between the generator and transformer sheets.

    Attributes:
        name: Kind name used in URLs and change events.
        model: SQLModel table holding the slots.
        ranges: Declared ranges of the numeric measurements.
        issue_prefix: Prefix of issue codes raised against this kind.
        issue_fk: FlaggedIssue column that references this kind's slots.
        module_label: Module name shown on issues.
        stream_column: Column distinguishing equipment streams, if any.
        extra_checks: Save-blocking checks beyond plain ranges.
        derive: Fills derived columns from the edited values.
    """
    name: str
    model: type[SQLModel]
    ranges: dict[str, FieldRange]
    issue_prefix: str
    issue_fk: str
    module_label: str
    stream_column: str | None = None
    extra_checks: Callable[[dict], list[FieldViolation]] | None = None
    derive: Callable[[dict], dict] | None = None

    @cached_property
    def editable_fields(self) -> tuple[str, ...]:
        skip = BOOKKEEPING_FIELDS | {self.stream_column}
        return tuple(name for name in self.model.model_fields if name not in skip)

    @cached_property
    def _adapters(self) -> dict[str, TypeAdapter]:
        return {
            name: TypeAdapter(self.model.model_fields[name].annotation)
            for name in self.editable_fields
        }

    def stream_value(self, stream_id: int | None) -> int | None:
        if self.stream_column is None:
            return None
        return stream_id or 1

    def clean(self, values: dict) -> dict:
        """Coerce submitted values to column types; ValueError on bad input."""
        cleaned = {}
        for name, value in values.items():
            adapter = self._adapters.get(name)
            if adapter is None:
                raise ValueError(f"Unknown {self.name} field: {name}")
            if isinstance(value, str) and not value.strip():
                value = None
            try:
                cleaned[name] = adapter.validate_python(value)
            except ValidationError as e:
                raise ValueError(f"Invalid value for {name}: {value!r}") from e
        return cleaned

    def violations(self, values: dict) -> list[FieldViolation]:
        found = hard_violations(values, self.ranges)
        if self.extra_checks is not None:
            found.extend(self.extra_checks(values))
        return found

    def check(self, values: dict) -> None:
        found = self.violations(values)
        if found:
            raise RangeViolation(found)


GENERATOR = SlotKind(
    name="generator",
    model=GeneratorLog,
    ranges=GENERATOR_RANGES,
    issue_prefix="GEN",
    issue_fk="generator_log_id",
    module_label="Generator Log",
)

TRANSFORMER = SlotKind(
    name="transformer",
    model=TransformerLog,
    ranges=TRANSFORMER_RANGES,
    issue_prefix="TRF",
    issue_fk="transformer_log_id",
    module_label="Transformer Log",
    stream_column="transformer_number",
    extra_checks=transformer_field_violations,
    derive=_derive_transformer,
)

SLOT_KINDS = {kind.name: kind for kind in (GENERATOR, TRANSFORMER)}


def get_kind(name: str) -> SlotKind:
    try:
        return SLOT_KINDS[name]
    except KeyError:
        raise ValueError(f"Unknown log kind: {name}") from None


@dataclass
class SlotWrite:
    """One save of one hour slot."""
    day: date
    hour: int
    values: dict
    actor: str | None = None
    stream_id: int | None = None


@dataclass
class SlotRecord:
    """A persisted hour slot, detached from any database session."""
    id: UUID
    kind: str
    day: date
    hour: int
    stream_id: int | None
    values: dict = field(default_factory=dict)
    logged_by: str | None = None
    last_modified_by: str | None = None
    logged_at: datetime | None = None
    finalized: bool = False

    @classmethod
    def from_row(cls, kind: SlotKind, row) -> "SlotRecord":
        return cls(
            id=row.id,
            kind=kind.name,
            day=row.date,
            hour=row.hour,
            stream_id=getattr(row, kind.stream_column) if kind.stream_column else None,
            values={name: getattr(row, name) for name in kind.editable_fields},
            logged_by=row.logged_by,
            last_modified_by=row.last_modified_by,
            logged_at=row.logged_at,
            finalized=row.finalized,
        )

    def to_dict(self) -> dict:
        data = {
            "id": str(self.id),
            "kind": self.kind,
            "date": self.day.isoformat(),
            "hour": self.hour,
            "stream_id": self.stream_id,
            "logged_by": self.logged_by,
            "last_modified_by": self.last_modified_by,
            "logged_at": self.logged_at.isoformat() if self.logged_at else None,
            "finalized": self.finalized,
        }
        data.update(self.values)
        return data


def translate_integrity_error(kind: SlotKind, exc: IntegrityError) -> LogbookError:
    """Map a database constraint failure to a logbook error.

    SQLite reports ``CHECK constraint failed: <name>`` and
    ``UNIQUE constraint failed: ...``; PostgreSQL reports SQLSTATE 23514 and
    23505 with the constraint name in the message.
    """
    message = str(exc.orig)
    code = getattr(exc.orig, "pgcode", None) or getattr(exc.orig, "sqlstate", None)

    if code == "23514" or "CHECK constraint" in message or "check constraint" in message:
        violations = [
            FieldViolation(name, f"must be {rng.describe()}")
            for name, rng in kind.ranges.items()
            if re.search(rf"\b{name}_range\b", message)
        ]
        if re.search(r"\bhour_of_day\b", message):
            violations.append(FieldViolation("hour", "must be 0-23"))
        if not violations:
            violations.append(FieldViolation("unknown", "Invalid value detected. Please check all fields."))
        return RangeViolation(violations)

    if code == "23505" or "UNIQUE constraint" in message or "duplicate key" in message:
        return DuplicateKey(f"{kind.name} slot already exists: {message}")

    return LogbookError(message)


class SlotStore(ABC):
    """Where hour slots live. Implementations must be safe for concurrent writers."""

    @abstractmethod
    async def list_slots(self, kind: SlotKind, day: date, stream_id: int | None = None) -> list[SlotRecord]:
        ...

    @abstractmethod
    async def get_slot(self, kind: SlotKind, day: date, hour: int, stream_id: int | None = None) -> SlotRecord | None:
        ...

    @abstractmethod
    async def upsert_slot(self, kind: SlotKind, write: SlotWrite) -> SlotRecord:
        ...

    @abstractmethod
    def subscribe_day_changes(self, kind: SlotKind, day: date) -> Subscription:
        ...

    @abstractmethod
    async def finalize_day(self, kind: SlotKind, day: date, stream_id: int | None, actor: str) -> int:
        ...

    async def logged_hours(self, kind: SlotKind, day: date, stream_id: int | None = None) -> list[int]:
        return sorted({slot.hour for slot in await self.list_slots(kind, day, stream_id)})

    async def is_finalized(self, kind: SlotKind, day: date, stream_id: int | None = None) -> bool:
        return any(slot.finalized for slot in await self.list_slots(kind, day, stream_id))


class SqlSlotStore(SlotStore):
    """Slot store over a SQLModel engine."""

    def __init__(self, engine: Engine, broker: ChangeBroker = change_broker, clock=system_clock):
        self.engine = engine
        self.broker = broker
        self.clock = clock

    def _day_query(self, kind: SlotKind, day: date, stream_id: int | None):
        model = kind.model
        statement = select(model).where(model.date == day)
        if kind.stream_column is not None:
            statement = statement.where(
                getattr(model, kind.stream_column) == kind.stream_value(stream_id)
            )
        return statement

    async def list_slots(self, kind, day, stream_id=None):
        try:
            with Session(self.engine) as session:
                rows = session.exec(self._day_query(kind, day, stream_id).order_by(kind.model.hour)).all()
                return [SlotRecord.from_row(kind, row) for row in rows]
        except OperationalError as e:
            raise NetworkFailure(str(e)) from e

    async def get_slot(self, kind, day, hour, stream_id=None):
        try:
            with Session(self.engine) as session:
                row = session.exec(
                    self._day_query(kind, day, stream_id).where(kind.model.hour == hour)
                ).first()
                return SlotRecord.from_row(kind, row) if row else None
        except OperationalError as e:
            raise NetworkFailure(str(e)) from e

    async def upsert_slot(self, kind, write):
        values = kind.clean(write.values)
        if kind.derive is not None:
            values = kind.derive(values)
        kind.check(values)
        stream = kind.stream_value(write.stream_id)
        now = self.clock()

        try:
            with Session(self.engine) as session:
                day_rows = session.exec(self._day_query(kind, write.day, write.stream_id)).all()
                if any(row.finalized for row in day_rows):
                    raise SlotLocked(f"{kind.module_label} for {write.day} is finalized")

                row = next((r for r in day_rows if r.hour == write.hour), None)
                if row is None:
                    row = kind.model(date=write.day, hour=write.hour, logged_by=write.actor)
                    if kind.stream_column is not None:
                        setattr(row, kind.stream_column, stream)
                    row.created_at = now

                for name, value in values.items():
                    setattr(row, name, value)
                row.last_modified_by = write.actor
                row.logged_at = now
                row.updated_at = now
                session.add(row)
                session.flush()

                session.add(SlotRevision(
                    kind=kind.name,
                    slot_id=row.id,
                    date=write.day,
                    hour=write.hour,
                    stream_id=stream,
                    actor=write.actor,
                    payload={k: v for k, v in values.items()},
                    recorded_at=now,
                ))
                session.commit()
                session.refresh(row)
                record = SlotRecord.from_row(kind, row)
        except IntegrityError as e:
            error = translate_integrity_error(kind, e)
            logger.info(f"{kind.name} {write.day} hour {write.hour} rejected by store: {error}")
            raise error from e
        except OperationalError as e:
            raise NetworkFailure(str(e)) from e

        logger.info(f"Saved {kind.name} {write.day} hour {write.hour:02d} by {write.actor}")
        self.broker.publish(ChangeEvent(
            kind=kind.name, day=write.day, hour=write.hour,
            stream_id=stream, change_type="upsert", actor=write.actor,
        ))
        return record

    def subscribe_day_changes(self, kind, day):
        return self.broker.subscribe(kind.name, day)

    async def finalize_day(self, kind, day, stream_id, actor):
        """Freeze all 24 hours of a day. Returns the number of slots finalized."""
        now = self.clock()
        try:
            with Session(self.engine) as session:
                rows = session.exec(self._day_query(kind, day, stream_id)).all()
                hours = {row.hour for row in rows}
                if len(hours) < HOURS_PER_DAY:
                    raise IncompleteDay(len(hours), HOURS_PER_DAY)
                if all(row.finalized for row in rows):
                    raise PermissionDenied(f"{kind.module_label} for {day} is already finalized")

                for row in rows:
                    row.finalized = True
                    row.finalized_at = now
                    row.finalized_by = actor
                    row.updated_at = now
                    session.add(row)
                session.commit()
        except OperationalError as e:
            raise NetworkFailure(str(e)) from e

        stream = kind.stream_value(stream_id)
        logger.info(f"Finalized {kind.name} {day} (stream {stream}) by {actor}")
        self.broker.publish(ChangeEvent(
            kind=kind.name, day=day, hour=None,
            stream_id=stream, change_type="finalize", actor=actor,
        ))
        return len(rows)
