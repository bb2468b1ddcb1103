"""Flagged issue service.

Issues are raised by operators (from a log sheet or a checklist) and by the
plant tool surface. Each gets a readable code ``PREFIX-YYYYMMDD-NNNN`` where
the prefix names what it was raised against: ``GEN`` and ``TRF`` for hour
slots, ``CHK`` for checklists.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from uuid import UUID

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, func, select

from hydrolog.logbook.actors import Actor, require_admin, require_writer
from hydrolog.logbook.clock import operational_date, system_clock
from hydrolog.logbook.errors import DuplicateKey, InvalidIssue, PermissionDenied
from hydrolog.logbook.validation import Severity
from hydrolog.models import FlaggedIssue

logger = logging.getLogger(__name__)

ISSUE_STATUSES = ("reported", "in_progress", "resolved")
CHECKLIST_PREFIX = "CHK"
MIN_DESCRIPTION = 10
MAX_DESCRIPTION = 1000
CODE_ATTEMPTS = 3

_SCRIPT_LIKE = re.compile(r"<script|javascript:|onerror=|onload=|<iframe|eval\(|onclick=", re.IGNORECASE)

_REFERENCE_PREFIXES = {
    "checklist_id": CHECKLIST_PREFIX,
    "generator_log_id": "GEN",
    "transformer_log_id": "TRF",
}


@dataclass
class IssueDraft:
    module: str
    section: str
    item: str
    description: str
    severity: Severity | str = Severity.MEDIUM
    unit: str | None = None


def validate_description(text: str | None) -> str:
    """Trimmed description, or InvalidIssue."""
    text = (text or "").strip()
    if len(text) < MIN_DESCRIPTION:
        raise InvalidIssue(f"Description must be at least {MIN_DESCRIPTION} characters")
    if len(text) > MAX_DESCRIPTION:
        raise InvalidIssue(f"Description must be at most {MAX_DESCRIPTION} characters")
    if _SCRIPT_LIKE.search(text):
        raise InvalidIssue("Description contains potentially dangerous content")
    return text


def validate_severity(value) -> Severity:
    try:
        return Severity(value)
    except ValueError:
        raise InvalidIssue(f"Unknown severity: {value}") from None


def generate_issue_code(session: Session, prefix: str, day: date) -> str:
    """Next free code for the prefix and day."""
    stem = f"{prefix}-{day:%Y%m%d}-"
    count = session.exec(
        select(func.count(FlaggedIssue.id)).where(FlaggedIssue.issue_code.like(f"{stem}%"))
    ).one()
    return f"{stem}{count + 1:04d}"


def create_issue(
    session: Session,
    draft: IssueDraft,
    actor: Actor,
    *,
    day: date,
    checklist_id: UUID | None = None,
    generator_log_id: UUID | None = None,
    transformer_log_id: UUID | None = None,
    now: datetime | None = None,
) -> FlaggedIssue:
    """Validate and store a new issue against exactly one record."""
    require_writer(actor, "flag issues")
    references = {
        "checklist_id": checklist_id,
        "generator_log_id": generator_log_id,
        "transformer_log_id": transformer_log_id,
    }
    given = [name for name, value in references.items() if value is not None]
    if len(given) != 1:
        raise InvalidIssue("An issue must reference exactly one checklist or log entry")

    description = validate_description(draft.description)
    severity = validate_severity(draft.severity)
    for name in ("module", "section", "item"):
        if not (getattr(draft, name) or "").strip():
            raise InvalidIssue(f"Missing {name}")

    now = now or system_clock()
    prefix = _REFERENCE_PREFIXES[given[0]]
    for attempt in range(CODE_ATTEMPTS):
        issue = FlaggedIssue(
            issue_code=generate_issue_code(session, prefix, day),
            module=draft.module.strip(),
            section=draft.section.strip(),
            item=draft.item.strip(),
            unit=draft.unit,
            severity=severity.value,
            description=description,
            reported_by=actor.id,
            created_at=now,
            updated_at=now,
            **references,
        )
        session.add(issue)
        try:
            session.commit()
        except IntegrityError as e:
            session.rollback()
            if "issue_code" not in str(e.orig):
                raise InvalidIssue(f"Referenced record does not exist: {e.orig}") from e
            logger.info(f"Issue code {issue.issue_code} taken, retrying ({attempt + 1})")
            continue
        session.refresh(issue)
        logger.info(f"Flagged issue {issue.issue_code} ({severity.value}) on {issue.item} by {actor.id}")
        return issue

    raise DuplicateKey(f"Could not allocate an issue code for {prefix} on {day}")


def get_issue(session: Session, code: str) -> FlaggedIssue | None:
    return session.exec(select(FlaggedIssue).where(FlaggedIssue.issue_code == code)).first()


def advance_issue(
    session: Session, code: str, status: str, actor: Actor, now: datetime | None = None
) -> FlaggedIssue:
    """Move an issue forward: reported -> in_progress -> resolved."""
    require_admin(actor, "change issue status")
    if status not in ISSUE_STATUSES:
        raise InvalidIssue(f"Unknown issue status: {status}")
    issue = get_issue(session, code)
    if issue is None:
        raise LookupError(f"Issue {code} not found")

    current = ISSUE_STATUSES.index(issue.status)
    target = ISSUE_STATUSES.index(status)
    if target <= current:
        raise PermissionDenied(f"Issue {code} is already {issue.status}; status only moves forward")

    now = now or system_clock()
    issue.status = status
    issue.updated_at = now
    if status == "resolved":
        issue.resolved_at = now
    session.add(issue)
    session.commit()
    session.refresh(issue)
    logger.info(f"Issue {code} moved to {status} by {actor.id}")
    return issue


def list_issues(
    session: Session,
    status: str | None = None,
    severity: str | None = None,
    limit: int = 20,
) -> list[FlaggedIssue]:
    """Newest first. ``status="open"`` means anything not yet resolved."""
    statement = select(FlaggedIssue)
    if status == "open":
        statement = statement.where(FlaggedIssue.status != "resolved")
    elif status and status != "all":
        statement = statement.where(FlaggedIssue.status == status)
    if severity and severity != "all":
        statement = statement.where(FlaggedIssue.severity == severity)
    statement = statement.order_by(FlaggedIssue.created_at.desc()).limit(limit)
    return list(session.exec(statement).all())


def issue_to_dict(issue: FlaggedIssue) -> dict:
    return {
        "issue_code": issue.issue_code,
        "module": issue.module,
        "section": issue.section,
        "item": issue.item,
        "unit": issue.unit,
        "severity": issue.severity,
        "description": issue.description,
        "status": issue.status,
        "reported_by": issue.reported_by,
        "checklist_id": str(issue.checklist_id) if issue.checklist_id else None,
        "generator_log_id": str(issue.generator_log_id) if issue.generator_log_id else None,
        "transformer_log_id": str(issue.transformer_log_id) if issue.transformer_log_id else None,
        "created_at": issue.created_at.isoformat(),
        "resolved_at": issue.resolved_at.isoformat() if issue.resolved_at else None,
    }


class SqlIssueSink:
    """Where a collective log session sends the issues its operator flags."""

    def __init__(self, engine: Engine, actor: Actor, clock=system_clock):
        self.engine = engine
        self.actor = actor
        self.clock = clock

    async def create_for_slot(self, kind, slot_id: UUID, pending) -> FlaggedIssue:
        draft = IssueDraft(
            module=pending.module,
            section=pending.section,
            item=pending.item,
            description=pending.description,
            severity=pending.severity,
            unit=pending.unit,
        )
        day = pending.day or operational_date(self.clock())
        with Session(self.engine) as session:
            return create_issue(
                session, draft, self.actor, day=day, now=self.clock(),
                **{kind.issue_fk: slot_id},
            )
