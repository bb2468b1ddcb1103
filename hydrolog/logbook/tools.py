"""Read-mostly plant views for automation agents.

Each function takes a database session and the current time and returns
plain JSON-ready data. The ``/tools`` routes expose them over HTTP.
"""

import calendar
import logging
from datetime import UTC, date, datetime, time, timedelta

from sqlmodel import Session, func, select

from hydrolog.core.config import settings
from hydrolog.logbook.actors import Actor
from hydrolog.logbook.checklists import checklist_to_dict, get_day, get_or_create_day
from hydrolog.logbook.clock import current_hour, operational_date, plant_zone
from hydrolog.logbook.issues import IssueDraft, create_issue, issue_to_dict, list_issues
from hydrolog.logbook.store import GENERATOR, TRANSFORMER, SlotRecord
from hydrolog.models import ChecklistDay, FlaggedIssue, GeneratorLog, TransformerLog

logger = logging.getLogger(__name__)

HOURS_PER_DAY = 24
PERIODS = ("today", "week", "month")

PLANT_CAPACITY_MW = 2.2
PLANT_UNITS = (
    {"id": 1, "capacity_mw": 1.5, "type": "Hydro"},
    {"id": 2, "capacity_mw": 0.7, "type": "Hydro"},
)


def _count(session: Session, statement) -> int:
    return session.exec(statement).one()


def plant_status(session: Session, now: datetime) -> dict:
    today = operational_date(now)
    checklist = get_day(session, today)
    latest = session.exec(
        select(GeneratorLog).where(GeneratorLog.date == today).order_by(GeneratorLog.hour.desc())
    ).first()

    return {
        "timestamp": now.isoformat(),
        "timezone": settings.plant_timezone,
        "date": today.isoformat(),
        "current_hour": current_hour(now),
        "plant": {
            "name": settings.plant_name,
            "capacity_mw": PLANT_CAPACITY_MW,
            "units": list(PLANT_UNITS),
        },
        "daily_progress": {
            "checklist_status": checklist.status if checklist else "not_started",
            "checklist_completion": checklist.completion_percentage if checklist else 0,
            "generator_logs_completed": _count(
                session, select(func.count(GeneratorLog.id)).where(GeneratorLog.date == today)
            ),
            "transformer_logs_completed": _count(
                session, select(func.count(TransformerLog.id)).where(TransformerLog.date == today)
            ),
            "total_hours": HOURS_PER_DAY,
        },
        "current_readings": {
            "power_kw": latest.gen_kw,
            "frequency_hz": latest.gen_frequency,
            "power_factor": latest.gen_power_factor,
            "last_reading_hour": latest.hour,
        } if latest else None,
        "open_issues_count": _count(
            session, select(func.count(FlaggedIssue.id)).where(FlaggedIssue.status != "resolved")
        ),
    }


def generator_logs(
    session: Session, now: datetime, day: date | None = None, hour: int | None = None,
    fields: list[str] | None = None,
) -> list[dict]:
    """Generator slots of a day, optionally one hour and a subset of fields."""
    day = day or operational_date(now)
    statement = select(GeneratorLog).where(GeneratorLog.date == day)
    if hour is not None:
        statement = statement.where(GeneratorLog.hour == hour)
    rows = session.exec(statement.order_by(GeneratorLog.hour)).all()
    records = [SlotRecord.from_row(GENERATOR, row).to_dict() for row in rows]
    if not fields:
        return records
    return [
        {"date": r["date"], "hour": r["hour"], **{f: r[f] for f in fields if f in r}}
        for r in records
    ]


def transformer_logs(
    session: Session, now: datetime, day: date | None = None, hour: int | None = None,
    transformer_number: int = 1,
) -> list[dict]:
    day = day or operational_date(now)
    statement = select(TransformerLog).where(
        TransformerLog.date == day,
        TransformerLog.transformer_number == transformer_number,
    )
    if hour is not None:
        statement = statement.where(TransformerLog.hour == hour)
    rows = session.exec(statement.order_by(TransformerLog.hour)).all()
    return [SlotRecord.from_row(TRANSFORMER, row).to_dict() for row in rows]


def checklists(
    session: Session, now: datetime, day: date | None = None, include_module_data: bool = False
) -> list[dict]:
    day = day or operational_date(now)
    rows = session.exec(select(ChecklistDay).where(ChecklistDay.date == day)).all()
    return [checklist_to_dict(row, include_module_data) for row in rows]


def issues(session: Session, status: str = "all", severity: str = "all", limit: int = 20) -> list[dict]:
    if not 1 <= limit <= 100:
        raise ValueError("limit must be between 1 and 100")
    return [issue_to_dict(issue) for issue in list_issues(session, status, severity, limit)]


def flag_issue(
    session: Session,
    now: datetime,
    actor: Actor,
    module: str,
    section: str,
    item: str,
    description: str,
    severity: str = "medium",
    unit: str | None = None,
) -> dict:
    """Raise an issue against today's checklist."""
    today = operational_date(now)
    checklist = get_or_create_day(session, today, now)
    issue = create_issue(
        session,
        IssueDraft(module=module, section=section, item=item, description=description,
                   severity=severity, unit=unit),
        actor,
        day=today,
        checklist_id=checklist.id,
        now=now,
    )
    return {
        "success": True,
        "issue_code": issue.issue_code,
        "issue_id": str(issue.id),
        "message": f"Issue {issue.issue_code} created successfully",
    }


def _month_before(day: date) -> date:
    year, month = (day.year, day.month - 1) if day.month > 1 else (day.year - 1, 12)
    return day.replace(year=year, month=month, day=min(day.day, calendar.monthrange(year, month)[1]))


def period_start(period: str, today: date) -> date:
    if period == "week":
        return today - timedelta(days=7)
    if period == "month":
        return _month_before(today)
    if period == "today":
        return today
    raise ValueError(f"period must be one of {', '.join(PERIODS)}")


def statistics(session: Session, now: datetime, period: str = "today") -> dict:
    """Checklist, log and issue counts from the start of the period to today."""
    today = operational_date(now)
    start = period_start(period, today)
    since = datetime.combine(start, time.min, tzinfo=plant_zone()).astimezone(UTC)

    total_checklists = _count(session, select(func.count(ChecklistDay.id)).where(
        ChecklistDay.date >= start, ChecklistDay.date <= today))
    submitted = _count(session, select(func.count(ChecklistDay.id)).where(
        ChecklistDay.date >= start, ChecklistDay.date <= today,
        ChecklistDay.submitted == True))  # noqa: E712

    rows = session.exec(
        select(FlaggedIssue.status, FlaggedIssue.severity).where(FlaggedIssue.created_at >= since)
    ).all()

    return {
        "period": period,
        "date_range": {"start": start.isoformat(), "end": today.isoformat()},
        "checklists": {
            "total": total_checklists,
            "submitted": submitted,
            "completion_rate": round(submitted / total_checklists * 100) if total_checklists else 0,
        },
        "logs": {
            "generator_entries": _count(session, select(func.count(GeneratorLog.id)).where(
                GeneratorLog.date >= start, GeneratorLog.date <= today)),
            "transformer_entries": _count(session, select(func.count(TransformerLog.id)).where(
                TransformerLog.date >= start, TransformerLog.date <= today)),
        },
        "issues": {
            "total": len(rows),
            "open": sum(1 for s, _ in rows if s != "resolved"),
            "resolved": sum(1 for s, _ in rows if s == "resolved"),
            "by_severity": {
                level: sum(1 for _, sev in rows if sev == level)
                for level in ("critical", "high", "medium", "low")
            },
        },
    }
