"""Background clock job: hour rollover notices and missing-hour warnings."""
import logging
from datetime import date, datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from hydrolog.core.config import settings
from hydrolog.core.database import engine
from hydrolog.logbook.clock import current_hour, operational_date, system_clock
from hydrolog.logbook.realtime import ChangeBroker, ChangeEvent, change_broker
from hydrolog.logbook.store import SLOT_KINDS, SlotKind

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


class ClockState:
    """Last plant hour the clock job saw."""
    day: date | None = None
    hour: int | None = None


def _streams(kind: SlotKind) -> list[int | None]:
    if kind.stream_column is None:
        return [None]
    return list(range(1, settings.transformer_count + 1))


def missing_streams(session: Session, kind: SlotKind, day: date, hour: int) -> list[int | None]:
    """Streams with no slot saved for the given hour."""
    missing = []
    for stream in _streams(kind):
        statement = select(kind.model.id).where(kind.model.date == day, kind.model.hour == hour)
        if kind.stream_column is not None:
            statement = statement.where(getattr(kind.model, kind.stream_column) == stream)
        if session.exec(statement).first() is None:
            missing.append(stream)
    return missing


def clock_job(
    now: datetime | None = None,
    db_engine: Engine = engine,
    broker: ChangeBroker = change_broker,
) -> bool:
    """Detect an hour rollover. Returns True when the hour changed."""
    now = now or system_clock()
    day, hour = operational_date(now), current_hour(now)
    previous_day, previous_hour = ClockState.day, ClockState.hour
    ClockState.day, ClockState.hour = day, hour

    if previous_hour is None or (previous_day, previous_hour) == (day, hour):
        return False

    logger.info(f"Plant hour rolled over to {day} {hour:02d}:00")
    for kind in SLOT_KINDS.values():
        for stream in _streams(kind):
            broker.publish(ChangeEvent(
                kind=kind.name, day=previous_day, hour=previous_hour,
                stream_id=stream, change_type="hour_locked",
            ))

    try:
        with Session(db_engine) as session:
            for kind in SLOT_KINDS.values():
                for stream in missing_streams(session, kind, previous_day, previous_hour):
                    suffix = f" (transformer {stream})" if stream is not None else ""
                    logger.warning(
                        f"No {kind.name} log for {previous_day} {previous_hour:02d}:00{suffix}"
                    )
    except Exception as e:
        logger.error(f"Missing-hour check failed: {e}")
    return True


def start_scheduler():
    """Start the background scheduler."""
    scheduler.add_job(
        clock_job,
        trigger=IntervalTrigger(seconds=settings.clock_tick_seconds),
        id="plant_clock",
        replace_existing=True,
    )
    scheduler.start()
    logger.info(f"Scheduler started, checking the plant clock every {settings.clock_tick_seconds} seconds")


def shutdown_scheduler():
    """Graceful shutdown."""
    scheduler.shutdown(wait=False)
    logger.info("Scheduler shut down")
