"""Collective log session.

One operator's working view of one log sheet (one slot kind and, for
transformers, one transformer) for the current plant day. The session keeps
a draft of the selected hour, autosaves it after a short pause in editing,
follows the clock as hours roll over, and applies other operators' saves as
they arrive.

States::

    LOADING -> READY -> EDITING -> SAVING -> READY
                 ^                    |
                 +---- (save failed: back to EDITING, draft kept)

Independently of the state, the selected hour is *locked* when it is not the
current plant hour, the day is finalized, or the actor may not write.

All methods must be called from the event loop that owns the session.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from uuid import UUID
from zoneinfo import ZoneInfo

from hydrolog.core.config import settings
from hydrolog.logbook.actors import Actor, require_writer
from hydrolog.logbook.clock import current_hour, operational_date, system_clock
from hydrolog.logbook.errors import (
    DuplicateKey,
    InvalidIssue,
    LogbookError,
    PermissionDenied,
    RangeViolation,
    SlotLocked,
    StaleWrite,
)
from hydrolog.logbook.issues import validate_description
from hydrolog.logbook.realtime import ChangeEvent, RealtimeSynchronizer
from hydrolog.logbook.store import SlotKind, SlotRecord, SlotStore, SlotWrite
from hydrolog.logbook.validation import (
    Classification,
    IssueSuggestion,
    Severity,
    classify_values,
    suggest_issue,
)

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    LOADING = "loading"
    READY = "ready"
    EDITING = "editing"
    SAVING = "saving"


@dataclass(frozen=True)
class Notice:
    """A message for the operator's screen."""
    level: str
    title: str
    message: str


@dataclass
class PendingIssue:
    """An issue flagged before its hour slot was first saved.

    Attributes:
        day: Plant day of the slot.
        hour: Hour of the slot. The issue is attached once that hour is saved.
        module: Log sheet name.
        section: Section of the sheet the field belongs to.
        item: Field name.
        severity: Severity chosen (or suggested) when flagging.
        description: What the operator observed.
        unit: Equipment or measurement unit, if any.
        raised_by: Operator who flagged the issue.
        raised_at: When it was flagged.
    """
    day: date
    hour: int
    module: str
    section: str
    item: str
    severity: Severity
    description: str
    unit: str | None = None
    raised_by: str | None = None
    raised_at: datetime | None = None


@dataclass
class _Selection:
    hour: int
    slot_id: UUID | None = None
    draft: dict = field(default_factory=dict)


class CollectiveLogSession:
    """Shared editing of one day's hour slots."""

    def __init__(
        self,
        store: SlotStore,
        kind: SlotKind,
        actor: Actor,
        *,
        stream_id: int | None = None,
        clock: Callable[[], datetime] = system_clock,
        tz: ZoneInfo | None = None,
        autosave_delay: float | None = None,
        tick_interval: float | None = None,
        issue_sink=None,
        notify: Callable[[Notice], None] | None = None,
    ):
        self.store = store
        self.kind = kind
        self.actor = actor
        self.stream_id = kind.stream_value(stream_id)
        self.clock = clock
        self.tz = tz
        self.autosave_delay = settings.autosave_delay_seconds if autosave_delay is None else autosave_delay
        self.tick_interval = settings.clock_tick_seconds if tick_interval is None else tick_interval
        self.issue_sink = issue_sink
        self._notify = notify

        now = clock()
        self.day = operational_date(now, tz)
        self.current_hour = current_hour(now, tz)
        self._selection = _Selection(self.current_hour)

        self.state = SessionState.LOADING
        self.dirty = False
        self.finalized = False
        self.hours_with_data: set[int] = set()
        self.autosave_status = ""
        self.pending_issues: list[PendingIssue] = []
        self.notices: list[Notice] = []

        self._edit_version = 0
        self._save_lock = asyncio.Lock()
        self._autosave_task: asyncio.Task | None = None
        self._tick_task: asyncio.Task | None = None
        self._sync: RealtimeSynchronizer | None = None

    # -- read-only views ---------------------------------------------------

    @property
    def selected_hour(self) -> int:
        return self._selection.hour

    @property
    def draft(self) -> dict:
        return self._selection.draft

    @property
    def slot_id(self) -> UUID | None:
        return self._selection.slot_id

    @property
    def locked(self) -> bool:
        return (
            self.finalized
            or not self.actor.can_write
            or self.selected_hour != self.current_hour
        )

    def annotations(self) -> dict[str, Classification]:
        """Range classification of every ranged field in the draft."""
        return classify_values(self.draft, self.kind.ranges)

    def suggestion(self, item: str) -> IssueSuggestion:
        """Severity and description to pre-fill when flagging ``item``."""
        return suggest_issue(self.draft.get(item), self.kind.ranges.get(item))

    # -- lifecycle ---------------------------------------------------------

    async def start(self) -> None:
        """Load the day and start following the clock and other operators."""
        await self.load()
        self._sync = RealtimeSynchronizer(self, self.store)
        self._sync.start()
        self._tick_task = asyncio.create_task(self._tick_loop())

    async def close(self) -> None:
        self._cancel_autosave()
        if self._tick_task is not None:
            self._tick_task.cancel()
            try:
                await self._tick_task
            except asyncio.CancelledError:
                pass
            self._tick_task = None
        if self._sync is not None:
            await self._sync.stop()
            self._sync = None

    async def _tick_loop(self) -> None:
        while True:
            await asyncio.sleep(self.tick_interval)
            try:
                await self.tick()
            except LogbookError as e:
                logger.warning(f"Clock tick for {self.kind.name} {self.day} failed: {e}")

    async def load(self) -> None:
        """Fetch the day and reset the draft to the selected hour's slot."""
        self.state = SessionState.LOADING
        self._cancel_autosave()
        slots = await self.store.list_slots(self.kind, self.day, self.stream_id)
        self._apply_day(slots, replace_draft=True)
        self.state = SessionState.READY
        await self._flush_saved_slots(slots)

    def _apply_day(self, slots: list[SlotRecord], replace_draft: bool) -> None:
        self.hours_with_data |= {slot.hour for slot in slots}
        self.finalized = any(slot.finalized for slot in slots)
        if not replace_draft:
            return
        selected = next((s for s in slots if s.hour == self.selected_hour), None)
        self._selection = _Selection(
            self.selected_hour,
            slot_id=selected.id if selected else None,
            draft=dict(selected.values) if selected else {},
        )
        self.dirty = False

    # -- editing -----------------------------------------------------------

    def _ensure_writable(self) -> None:
        require_writer(self.actor, "save logs")
        if self.finalized:
            raise SlotLocked(f"{self.kind.module_label} for {self.day} is finalized")
        now = self.clock()
        if operational_date(now, self.tz) != self.day or current_hour(now, self.tz) != self.selected_hour:
            raise SlotLocked("You can only edit data for the current hour.")

    def edit(self, item: str, value) -> None:
        """Change one field of the draft and restart the autosave timer."""
        if self.state is SessionState.LOADING:
            raise SlotLocked(f"Hour {self.selected_hour:02d}:00 is still loading")
        self._ensure_writable()
        cleaned = self.kind.clean({item: value})
        self.draft.update(cleaned)
        self.dirty = True
        self._edit_version += 1
        if self.state is SessionState.READY:
            self.state = SessionState.EDITING
        self.autosave_status = ""
        self._schedule_autosave()

    def _schedule_autosave(self) -> None:
        self._cancel_autosave()
        self._autosave_task = asyncio.create_task(self._autosave_after(self.autosave_delay))

    def _cancel_autosave(self) -> None:
        if self._autosave_task is not None and not self._autosave_task.done():
            self._autosave_task.cancel()
        self._autosave_task = None

    async def _autosave_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._autosave_task = None
        if self.locked:
            logger.info(f"Skipping autosave of {self.kind.name} hour {self.selected_hour}: locked")
            return
        await self.save(manual=False)

    async def save(self, manual: bool = True) -> bool:
        """Persist the draft of the selected hour.

        Manual saves raise on failure; autosaves only record the failure in
        ``autosave_status``. Either way the draft and its dirty flag survive
        a failed save.
        """
        self._cancel_autosave()
        if not manual:
            self.autosave_status = "Saving..."
        try:
            await self._save()
        except StaleWrite as e:
            logger.info(str(e))
            return False
        except LogbookError as e:
            if manual:
                self.notify("error", "Cannot Save", str(e))
                raise
            logger.warning(f"Autosave of {self.kind.name} {self.day} hour {self.selected_hour} failed: {e}")
            self.autosave_status = "Failed to save"
            return False

        self.autosave_status = "Saved"
        if manual:
            self.notify("info", "Saved", f"Hour {self.selected_hour:02d}:00 saved successfully")
        return True

    async def _save(self) -> SlotRecord:
        async with self._save_lock:
            self._ensure_writable()
            selection = self._selection
            version = self._edit_version
            values = dict(selection.draft)
            violations = self.kind.violations(values)
            if violations:
                raise RangeViolation(violations)

            write = SlotWrite(
                day=self.day,
                hour=selection.hour,
                values=values,
                actor=self.actor.id,
                stream_id=self.stream_id,
            )
            previous_state = self.state
            self.state = SessionState.SAVING
            try:
                record = await self._upsert_with_retry(write)
            except LogbookError:
                self.state = SessionState.EDITING if self.dirty else previous_state
                raise

            self.hours_with_data.add(record.hour)
            await self._flush_pending_issues(record)

            if self._selection is not selection:
                self.state = SessionState.EDITING if self.dirty else SessionState.READY
                raise StaleWrite(
                    f"Discarding completed save of {self.kind.name} hour {write.hour}: "
                    f"hour {self.selected_hour} is now selected"
                )

            selection.slot_id = record.id
            if self._edit_version == version:
                self.dirty = False
                self.state = SessionState.READY
            else:
                self.state = SessionState.EDITING
            return record

    async def _upsert_with_retry(self, write: SlotWrite) -> SlotRecord:
        try:
            return await self.store.upsert_slot(self.kind, write)
        except DuplicateKey:
            logger.info(f"Duplicate key saving {self.kind.name} {write.day} hour {write.hour}, retrying")
            return await self.store.upsert_slot(self.kind, write)

    # -- navigation and clock ----------------------------------------------

    async def select_hour(self, hour: int) -> None:
        """Move to another hour, saving unsaved edits first.

        A failed save refuses the switch so nothing typed is lost.
        """
        if not 0 <= hour <= 23:
            raise ValueError(f"Hour must be 0-23, got {hour}")
        if hour > self.current_hour:
            raise SlotLocked("Future hours cannot be selected")
        if hour == self.selected_hour:
            return

        self._cancel_autosave()
        if self.dirty:
            if self.locked:
                self._drop_unsaved_edits()
            else:
                try:
                    await self._save()
                except LogbookError as e:
                    self.notify("error", "Save Failed", f"Please fix errors before switching hours: {e}")
                    raise

        selection = _Selection(hour)
        self._selection = selection
        self.dirty = False
        self.state = SessionState.LOADING
        slot = await self.store.get_slot(self.kind, self.day, hour, self.stream_id)
        if self._selection is not selection:
            return
        if slot is not None:
            selection.slot_id = slot.id
            selection.draft = dict(slot.values)
            self.hours_with_data.add(hour)
        self.state = SessionState.READY
        if slot is not None:
            await self._flush_pending_issues(slot)

    def _drop_unsaved_edits(self) -> None:
        hour = self.selected_hour
        self.notify(
            "error",
            "Unsaved Changes Discarded",
            f"Edits to hour {hour:02d}:00 could not be saved because the hour is locked",
        )
        self.dirty = False

    async def tick(self) -> bool:
        """Follow the clock. Returns True when the hour rolled over."""
        now = self.clock()
        hour = current_hour(now, self.tz)
        day = operational_date(now, self.tz)
        if hour == self.current_hour and day == self.day:
            return False

        self._cancel_autosave()
        # An in-flight save still commits the old hour
        if self.dirty and not self.finalized and self.state is not SessionState.SAVING:
            self._drop_unsaved_edits()

        try:
            await self._flush_from_store(self.day)
        except LogbookError as e:
            logger.warning(f"Could not check pending issues before rollover: {e}")

        day_changed = day != self.day
        logger.info(f"{self.kind.name} session rolled over to {day} {hour:02d}:00")
        self.day = day
        self.current_hour = hour
        self._selection = _Selection(hour)
        if day_changed:
            self.hours_with_data = set()
            self.finalized = False
        self.notify("info", "Hour Changed", f"Hour {hour:02d}:00 is now active. Previous hour is locked.")
        await self.load()
        if day_changed and self._sync is not None:
            await self._sync.restart()
        return True

    # -- other operators ---------------------------------------------------

    async def apply_remote_change(self, event: ChangeEvent) -> None:
        """React to another writer's change to this sheet."""
        if event.kind != self.kind.name or event.day != self.day:
            return
        if self.stream_id is not None and event.stream_id not in (None, self.stream_id):
            return
        if event.change_type == "hour_locked":
            await self.tick()
            return

        busy = self.dirty or self.state is SessionState.SAVING
        if event.hour == self.selected_hour and busy:
            logger.debug(f"Ignoring remote change to {self.kind.name} hour {event.hour}: local edits pending")
            return

        selection = self._selection
        slots = await self.store.list_slots(self.kind, self.day, self.stream_id)
        replace = (
            event.hour in (None, self.selected_hour)
            and self._selection is selection
            and not (self.dirty or self.state is SessionState.SAVING)
        )
        self._apply_day(slots, replace_draft=replace)
        await self._flush_saved_slots(slots)

    # -- issues ------------------------------------------------------------

    async def flag_issue(
        self,
        *,
        section: str,
        item: str,
        description: str,
        severity: Severity | str | None = None,
        unit: str | None = None,
    ):
        """Flag a field of the selected hour.

        Returns the stored issue, or a ``PendingIssue`` when the hour has not
        been saved yet; pending issues are attached by the next save.
        """
        require_writer(self.actor, "flag issues")
        if self.issue_sink is None:
            raise InvalidIssue("Issue reporting is not configured for this session")
        if severity is None:
            severity = self.suggestion(item).severity
        pending = PendingIssue(
            day=self.day,
            hour=self.selected_hour,
            module=self.kind.module_label,
            section=section,
            item=item,
            severity=Severity(severity),
            description=validate_description(description),
            unit=unit,
            raised_by=self.actor.id,
            raised_at=self.clock(),
        )

        if self.slot_id is not None:
            return await self.issue_sink.create_for_slot(self.kind, self.slot_id, pending)

        self.pending_issues.append(pending)
        self.notify("info", "Issue Recorded", "The issue will be reported once this hour is saved")
        return pending

    async def _flush_saved_slots(self, slots: list[SlotRecord]) -> None:
        """Attach pending issues whose hour has been saved, by anyone."""
        waiting = {(p.day, p.hour) for p in self.pending_issues}
        for slot in slots:
            if (slot.day, slot.hour) in waiting:
                await self._flush_pending_issues(slot)

    async def _flush_from_store(self, day: date) -> None:
        if not any(p.day == day for p in self.pending_issues):
            return
        slots = await self.store.list_slots(self.kind, day, self.stream_id)
        await self._flush_saved_slots(slots)

    async def _flush_pending_issues(self, record: SlotRecord) -> None:
        batch = [p for p in self.pending_issues if p.day == record.day and p.hour == record.hour]
        if not batch or self.issue_sink is None:
            return
        self.pending_issues = [p for p in self.pending_issues if p not in batch]
        for pending in batch:
            try:
                issue = await self.issue_sink.create_for_slot(self.kind, record.id, pending)
            except (InvalidIssue, PermissionDenied) as e:
                logger.warning(f"Dropping pending issue on {pending.item}: {e}")
                self.notify("error", "Issue Not Reported", str(e))
            except LogbookError as e:
                logger.warning(f"Could not report pending issue on {pending.item}, will retry: {e}")
                self.pending_issues.append(pending)
            else:
                logger.info(f"Reported pending issue {issue.issue_code} on {pending.item}")

    # -- notices -----------------------------------------------------------

    def notify(self, level: str, title: str, message: str) -> None:
        notice = Notice(level, title, message)
        self.notices.append(notice)
        logger.info(f"[{self.actor.id}] {title}: {message}")
        if self._notify is not None:
            self._notify(notice)
