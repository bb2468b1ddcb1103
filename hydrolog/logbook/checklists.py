"""Daily checklist service.

One shared checklist per plant day, created lazily by whoever opens it first.
Operators save the four inspection modules independently; submission is a
one-way compare-and-swap so that exactly one submitter wins.
"""

import logging
from datetime import date, datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from hydrolog.logbook.actors import Actor, require_writer
from hydrolog.logbook.clock import system_clock
from hydrolog.logbook.errors import AlreadySubmitted, PermissionDenied
from hydrolog.models import ChecklistDay

logger = logging.getLogger(__name__)

MODULES = (1, 2, 3, 4)
PERCENT_PER_MODULE = 25


def get_day(session: Session, day: date) -> ChecklistDay | None:
    return session.exec(select(ChecklistDay).where(ChecklistDay.date == day)).first()


def get_or_create_day(session: Session, day: date, now: datetime | None = None) -> ChecklistDay:
    """The day's checklist, creating it on first access."""
    checklist = get_day(session, day)
    if checklist is not None:
        return checklist

    checklist = ChecklistDay(date=day, start_time=now or system_clock())
    session.add(checklist)
    try:
        session.commit()
    except IntegrityError:
        # Another operator created it first
        session.rollback()
        checklist = get_day(session, day)
        if checklist is None:
            raise
        return checklist
    session.refresh(checklist)
    logger.info(f"Created checklist for {day}")
    return checklist


def completion_for(modules: dict[int, dict]) -> int:
    return PERCENT_PER_MODULE * sum(1 for data in modules.values() if data)


def save_module(
    session: Session,
    day: date,
    module: int,
    data: dict,
    actor: Actor,
    problem_fields: list[str] | None = None,
) -> ChecklistDay:
    """Store one module's answers and recompute completion."""
    require_writer(actor, "save checklist modules")
    if module not in MODULES:
        raise ValueError(f"Module must be one of {MODULES}, got {module}")

    checklist = get_or_create_day(session, day)
    if checklist.submitted:
        raise AlreadySubmitted(f"Checklist for {day} has already been submitted")

    modules = {n: checklist.module_data(n) for n in MODULES}
    modules[module] = dict(data)

    contributors = {key: list(names) for key, names in (checklist.contributors or {}).items()}
    names = contributors.setdefault(f"module{module}", [])
    if actor.id not in names:
        names.append(actor.id)

    problems = list(checklist.problem_fields or [])
    if problem_fields is not None:
        prefix = f"module{module}."
        problems = [p for p in problems if not p.startswith(prefix)]
        problems.extend(f"{prefix}{name}" for name in problem_fields)

    result = session.connection().execute(
        update(ChecklistDay)
        .where(ChecklistDay.id == checklist.id, ChecklistDay.submitted == False)  # noqa: E712
        .values(
            **{f"module{module}_data": modules[module]},
            completion_percentage=completion_for(modules),
            contributors=contributors,
            problem_fields=problems,
        )
    )
    if result.rowcount != 1:
        session.rollback()
        raise AlreadySubmitted(f"Checklist for {day} was submitted while module {module} was being saved")
    session.commit()
    session.refresh(checklist)
    logger.info(f"Saved checklist module {module} for {day} by {actor.id}")
    return checklist


def submit_day(session: Session, day: date, actor: Actor, now: datetime | None = None) -> ChecklistDay:
    """Submit the day's checklist. Exactly one concurrent submitter wins."""
    require_writer(actor, "submit checklists")
    checklist = get_day(session, day)
    if checklist is None:
        raise LookupError(f"No checklist for {day}")
    if checklist.submitted:
        raise AlreadySubmitted(f"Checklist for {day} has already been submitted")
    if checklist.completion_percentage < 100:
        raise PermissionDenied(
            f"Checklist is {checklist.completion_percentage}% complete. "
            f"Fill all modules before submitting."
        )

    now = now or system_clock()
    result = session.connection().execute(
        update(ChecklistDay)
        .where(ChecklistDay.id == checklist.id, ChecklistDay.submitted == False)  # noqa: E712
        .values(
            submitted=True,
            submitted_at=now,
            submitted_by=actor.id,
            status="completed",
            completion_percentage=100,
        )
    )
    if result.rowcount != 1:
        session.rollback()
        raise AlreadySubmitted(f"Checklist for {day} was already submitted by another operator")
    session.commit()
    session.refresh(checklist)
    logger.info(f"Checklist for {day} submitted by {actor.id}")
    return checklist


def checklist_to_dict(checklist: ChecklistDay, include_module_data: bool = True) -> dict:
    data = {
        "id": str(checklist.id),
        "date": checklist.date.isoformat(),
        "completion_percentage": checklist.completion_percentage,
        "problem_fields": checklist.problem_fields or [],
        "status": checklist.status,
        "start_time": checklist.start_time.isoformat() if checklist.start_time else None,
        "submitted": checklist.submitted,
        "submitted_at": checklist.submitted_at.isoformat() if checklist.submitted_at else None,
        "submitted_by": checklist.submitted_by,
        "contributors": checklist.contributors or {},
    }
    if include_module_data:
        for n in MODULES:
            data[f"module{n}_data"] = checklist.module_data(n)
    return data
