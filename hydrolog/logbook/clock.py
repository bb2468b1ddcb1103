"""Edit and inspection windows derived from the wall clock.

Everything here is a pure function of an injected ``now`` (a timezone-aware
datetime) and the plant time zone. Callers re-evaluate these every clock
tick (60 s by default) instead of caching them, because whether an hour or a
checklist category is editable changes with the clock.

Hour logs: only the current hour of the plant day is editable.

Checklists: four fixed sessions per day. A session is open from 30 minutes
before its anchor time until 30 minutes after it.
"""

from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from hydrolog.core.config import settings

SESSION_TOLERANCE = timedelta(minutes=30)


@dataclass(frozen=True)
class SessionAnchor:
    session: int
    at: time

    @property
    def label(self) -> str:
        return self.at.strftime("%I:%M %p").lstrip("0")


SESSION_ANCHORS = (
    SessionAnchor(1, time(8, 0)),
    SessionAnchor(2, time(12, 0)),
    SessionAnchor(3, time(17, 30)),
    SessionAnchor(4, time(23, 45)),
)


@dataclass(frozen=True)
class SessionWindow:
    """An open (or most recently opened) checklist session.

    Attributes:
        session: Session number 1-4.
        day: Plant day the session belongs to. The 23:45 session stays open
            until 00:15, which is already the next calendar day.
        anchor: The session's anchor time as an aware datetime.
    """
    session: int
    day: date
    anchor: datetime

    @property
    def opens(self) -> datetime:
        return self.anchor - SESSION_TOLERANCE

    @property
    def closes(self) -> datetime:
        return self.anchor + SESSION_TOLERANCE


@dataclass(frozen=True)
class NextSession:
    session: int
    at: datetime

    @property
    def label(self) -> str:
        return self.at.strftime("%I:%M %p").lstrip("0")


def check_anchor_spacing(anchors=SESSION_ANCHORS, tolerance: timedelta = SESSION_TOLERANCE) -> None:
    """Raise ValueError if two session windows could overlap.

    Anchors must be more than twice the tolerance apart, including the gap
    from the last anchor of one day to the first anchor of the next.
    """
    minutes = sorted(a.at.hour * 60 + a.at.minute for a in anchors)
    if len(set(minutes)) != len(minutes):
        raise ValueError("Duplicate session anchor times")
    gaps = [b - a for a, b in zip(minutes, minutes[1:])]
    gaps.append(minutes[0] + 24 * 60 - minutes[-1])
    limit = 2 * tolerance.total_seconds() / 60
    if min(gaps) <= limit:
        raise ValueError(
            f"Session anchors must be more than {limit:g} minutes apart, "
            f"closest pair is {min(gaps)} minutes"
        )


check_anchor_spacing()


def plant_zone() -> ZoneInfo:
    return ZoneInfo(settings.plant_timezone)


def system_clock() -> datetime:
    """The only wall-clock source. Everything else receives ``now``."""
    return datetime.now(UTC)


def _local(now: datetime, tz: ZoneInfo | None) -> datetime:
    if now.tzinfo is None:
        raise ValueError("now must be timezone-aware")
    return now.astimezone(tz or plant_zone())


def current_hour(now: datetime, tz: ZoneInfo | None = None) -> int:
    """Hour of day (0-23) in the plant time zone."""
    return _local(now, tz).hour


def operational_date(now: datetime, tz: ZoneInfo | None = None) -> date:
    """Calendar day in the plant time zone."""
    return _local(now, tz).date()


def _anchors_around(local: datetime):
    zone = local.tzinfo
    for offset in (-1, 0, 1):
        day = local.date() + timedelta(days=offset)
        for anchor in SESSION_ANCHORS:
            yield anchor, day, datetime.combine(day, anchor.at, tzinfo=zone)


def session_window(now: datetime, tz: ZoneInfo | None = None) -> SessionWindow | None:
    """The session whose window contains ``now``, if any."""
    local = _local(now, tz)
    for anchor, day, at in _anchors_around(local):
        if abs(local - at) <= SESSION_TOLERANCE:
            return SessionWindow(anchor.session, day, at)
    return None


def current_session(now: datetime, tz: ZoneInfo | None = None) -> int | None:
    """Session number 1-4 when ``now`` is within tolerance of an anchor."""
    window = session_window(now, tz)
    return window.session if window else None


def next_session(now: datetime, tz: ZoneInfo | None = None) -> NextSession:
    """The soonest anchor strictly after ``now``, wrapping to tomorrow."""
    local = _local(now, tz)
    upcoming = [(at, anchor) for anchor, _, at in _anchors_around(local) if at > local]
    at, anchor = min(upcoming, key=lambda item: item[0])
    return NextSession(anchor.session, at)


def last_opened_session(now: datetime, tz: ZoneInfo | None = None) -> SessionWindow:
    """The session whose window opened most recently at or before ``now``.

    Used to attribute emergency unlocks made outside every window.
    """
    local = _local(now, tz)
    opened = [
        (at, anchor, day)
        for anchor, day, at in _anchors_around(local)
        if at - SESSION_TOLERANCE <= local
    ]
    at, anchor, day = max(opened, key=lambda item: item[0])
    return SessionWindow(anchor.session, day, at)
