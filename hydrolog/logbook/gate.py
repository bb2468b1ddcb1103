"""Checklist session gate.

Six equipment categories are inspected in each of the four daily sessions.
A category starts locked; scanning its QR code while a session window is
open unlocks it for that session, and saving its checklist completes it. An
emergency override, with a mandatory reason, replaces the window check for
a single unlock and is recorded on the unlock for audit.

Category state is never stored as a flag: it is derived from the presence of
a ``CategoryCompletion`` row and its ``completed_at`` stamp.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from zoneinfo import ZoneInfo

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from hydrolog.logbook.actors import Actor, require_writer
from hydrolog.logbook.clock import (
    SessionWindow,
    last_opened_session,
    next_session,
    operational_date,
    session_window,
    system_clock,
)
from hydrolog.logbook.errors import GateClosed
from hydrolog.models import CategoryCompletion

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Category:
    name: str
    qr_code: str


CATEGORIES = (
    Category("Turbine System", "TURB-2025-001"),
    Category("Oil Pressure Unit", "OPU-2025-001"),
    Category("Cooling System", "CS-2025-001"),
    Category("Generator", "GEN-2025-001"),
    Category("Electrical Systems", "ELEC-2025-001"),
    Category("Safety & General", "SAFE-2025-001"),
)

_BY_CODE = {c.qr_code: c for c in CATEGORIES}
_BY_NAME = {c.name: c for c in CATEGORIES}


def category_for_code(code: str) -> Category:
    try:
        return _BY_CODE[code.strip()]
    except KeyError:
        raise LookupError(f"Unknown QR code: {code}") from None


def category_named(name: str) -> Category:
    try:
        return _BY_NAME[name]
    except KeyError:
        raise LookupError(f"Unknown category: {name}") from None


class CategoryState(str, Enum):
    LOCKED = "locked"
    UNLOCKED = "unlocked"
    COMPLETED = "completed"


@dataclass
class EmergencyOverride:
    """Permission to unlock one category outside the session windows.

    Not persisted on its own; its reason and time are copied onto the
    unlock it was used for.
    """
    reason: str
    reported_at: datetime
    used: bool = False

    def __post_init__(self):
        self.reason = (self.reason or "").strip()
        if not self.reason:
            raise ValueError("An emergency override requires a reason")


@dataclass(frozen=True)
class CategoryStatus:
    category: Category
    day: date
    session_number: int
    state: CategoryState
    unlock_method: str | None = None
    is_emergency: bool = False
    unlocked_at: datetime | None = None
    completed_at: datetime | None = None

    @classmethod
    def from_row(cls, category: Category, day: date, session_number: int, row: CategoryCompletion | None):
        if row is None:
            return cls(category, day, session_number, CategoryState.LOCKED)
        state = CategoryState.COMPLETED if row.completed_at else CategoryState.UNLOCKED
        return cls(
            category, day, session_number, state,
            unlock_method=row.unlock_method,
            is_emergency=row.is_emergency,
            unlocked_at=row.unlocked_at,
            completed_at=row.completed_at,
        )

    def to_dict(self) -> dict:
        return {
            "category": self.category.name,
            "qr_code": self.category.qr_code,
            "date": self.day.isoformat(),
            "session_number": self.session_number,
            "state": self.state.value,
            "unlock_method": self.unlock_method,
            "is_emergency": self.is_emergency,
            "unlocked_at": self.unlocked_at.isoformat() if self.unlocked_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class ChecklistGate:
    """Unlock and completion of checklist categories.

    Args:
        session: Database session.
        day: Plant day whose sessions are inspected by default. Defaults to
            the plant day at each call.
        clock: Source of ``now``.
        tz: Plant time zone override.
    """

    def __init__(self, session: Session, day: date | None = None, clock=system_clock, tz: ZoneInfo | None = None):
        self.session = session
        self.day = day
        self.clock = clock
        self.tz = tz

    def _day(self, day: date | None) -> date:
        return day or self.day or operational_date(self.clock(), self.tz)

    def _target(self, day: date | None, session_number: int | None) -> tuple[date, int]:
        if session_number is not None:
            return self._day(day), session_number
        window = self.active_window() or last_opened_session(self.clock(), self.tz)
        return day or window.day, window.session

    def _rows(self, day: date, session_number: int) -> dict[str, CategoryCompletion]:
        rows = self.session.exec(
            select(CategoryCompletion).where(
                CategoryCompletion.date == day,
                CategoryCompletion.session_number == session_number,
            )
        ).all()
        return {row.category: row for row in rows}

    def _row(self, day: date, session_number: int, category: Category) -> CategoryCompletion | None:
        return self.session.exec(
            select(CategoryCompletion).where(
                CategoryCompletion.date == day,
                CategoryCompletion.session_number == session_number,
                CategoryCompletion.category == category.name,
            )
        ).first()

    def active_window(self) -> SessionWindow | None:
        return session_window(self.clock(), self.tz)

    def statuses(self, session_number: int | None = None, day: date | None = None) -> list[CategoryStatus]:
        day, session_number = self._target(day, session_number)
        rows = self._rows(day, session_number)
        return [
            CategoryStatus.from_row(category, day, session_number, rows.get(category.name))
            for category in CATEGORIES
        ]

    def progress(self, session_number: int | None = None, day: date | None = None) -> tuple[int, int]:
        """(completed, total) categories for the session."""
        completed = sum(
            1 for status in self.statuses(session_number, day)
            if status.state is CategoryState.COMPLETED
        )
        return completed, len(CATEGORIES)

    def is_session_complete(self, session_number: int | None = None, day: date | None = None) -> bool:
        completed, total = self.progress(session_number, day)
        return completed == total

    def scan(self, code: str, actor: Actor, override: EmergencyOverride | None = None) -> CategoryStatus:
        """Unlock the category whose QR code was scanned."""
        require_writer(actor, "unlock checklist categories")
        category = category_for_code(code)
        now = self.clock()

        if override is not None and override.used:
            raise GateClosed("This emergency override has already been used")

        window = self.active_window()
        if window is None:
            if override is None:
                upcoming = next_session(now, self.tz)
                raise GateClosed(
                    f"Outside session time. Next session: Session {upcoming.session} at {upcoming.label}"
                )
            window = last_opened_session(now, self.tz)

        existing = self._row(window.day, window.session, category)
        if existing is not None:
            return CategoryStatus.from_row(category, window.day, window.session, existing)

        row = CategoryCompletion(
            date=window.day,
            session_number=window.session,
            category=category.name,
            unlock_method="emergency" if override else "qr",
            unlocked_at=now,
            unlocked_by=actor.id,
            is_emergency=override is not None,
            emergency_reason=override.reason if override else None,
            emergency_reported_at=override.reported_at if override else None,
        )
        self.session.add(row)
        try:
            self.session.commit()
        except IntegrityError:
            # Another operator unlocked it first
            self.session.rollback()
            existing = self._row(window.day, window.session, category)
            return CategoryStatus.from_row(category, window.day, window.session, existing)

        if override is not None:
            override.used = True
            logger.warning(
                f"Emergency unlock of {category.name} for session {window.session} on {window.day} "
                f"by {actor.id}: {override.reason}"
            )
        else:
            logger.info(f"Unlocked {category.name} for session {window.session} on {window.day} by {actor.id}")
        self.session.refresh(row)
        return CategoryStatus.from_row(category, window.day, window.session, row)

    def complete(
        self,
        category_name: str,
        actor: Actor,
        session_number: int | None = None,
        notes: str | None = None,
        day: date | None = None,
    ) -> CategoryStatus:
        """Mark an unlocked category's checklist as saved."""
        require_writer(actor, "complete checklist categories")
        category = category_named(category_name)
        day, session_number = self._target(day, session_number)

        row = self._row(day, session_number, category)
        if row is None:
            raise GateClosed(
                f"{category.name} is locked for session {session_number}. Scan its QR code first."
            )
        if row.completed_at is None:
            row.completed_at = self.clock()
            row.completed_by = actor.id
            row.notes = notes
            self.session.add(row)
            self.session.commit()
            self.session.refresh(row)
            logger.info(f"Completed {category.name} for session {session_number} on {day} by {actor.id}")
        return CategoryStatus.from_row(category, day, session_number, row)
