"""Tests for the collective log session."""

import asyncio
from datetime import date

import pytest
from sqlmodel import Session, select

from hydrolog.logbook.errors import (
    DuplicateKey,
    InvalidIssue,
    NetworkFailure,
    PermissionDenied,
    RangeViolation,
    SlotLocked,
)
from hydrolog.logbook.issues import SqlIssueSink
from hydrolog.logbook.realtime import ChangeEvent
from hydrolog.logbook.session import CollectiveLogSession, PendingIssue, SessionState
from hydrolog.logbook.store import GENERATOR, TRANSFORMER, SlotWrite, SqlSlotStore
from hydrolog.models import FlaggedIssue, SlotRevision

DAY = date(2025, 1, 14)


class FlakyStore(SqlSlotStore):
    """Fails the next upserts with the given errors, then behaves."""

    def __init__(self, *args, failures=(), **kwargs):
        super().__init__(*args, **kwargs)
        self.failures = list(failures)
        self.upserts = 0

    async def upsert_slot(self, kind, write):
        self.upserts += 1
        if self.failures:
            raise self.failures.pop(0)
        return await super().upsert_slot(kind, write)


class SlowStore(SqlSlotStore):
    """Holds every upsert until released."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.release = asyncio.Event()
        self.started = asyncio.Event()

    async def upsert_slot(self, kind, write):
        self.started.set()
        await self.release.wait()
        return await super().upsert_slot(kind, write)


class SlowLoadStore(SqlSlotStore):
    """Holds ``get_slot`` for one hour until released."""

    def __init__(self, *args, held_hour: int, **kwargs):
        super().__init__(*args, **kwargs)
        self.held_hour = held_hour
        self.release = asyncio.Event()
        self.started = asyncio.Event()

    async def get_slot(self, kind, day, hour, stream_id=None):
        if hour == self.held_hour:
            self.started.set()
            await self.release.wait()
        return await super().get_slot(kind, day, hour, stream_id)


@pytest.fixture(name="make_session")
def make_session_fixture(store, engine, clock, operator):
    """Build sessions with a short autosave delay."""

    def make(actor=operator, kind=GENERATOR, slot_store=store, **kwargs):
        kwargs.setdefault("autosave_delay", 0.05)
        kwargs.setdefault("tick_interval", 3600)
        kwargs.setdefault("issue_sink", SqlIssueSink(engine, actor, clock))
        return CollectiveLogSession(slot_store, kind, actor, clock=clock, **kwargs)

    return make


def revision_count(engine) -> int:
    with Session(engine) as session:
        return len(session.exec(select(SlotRevision)).all())


class TestLoadAndSave:
    """Tests for loading, editing and saving the current hour."""

    @pytest.mark.asyncio
    async def test_load_empty_day(self, make_session):
        session = make_session()
        await session.load()

        assert session.state is SessionState.READY
        assert session.day == DAY
        assert session.selected_hour == session.current_hour == 10
        assert session.draft == {}
        assert session.locked is False

    @pytest.mark.asyncio
    async def test_manual_save(self, make_session, store):
        session = make_session()
        await session.load()
        session.edit("gen_kw", 1200)
        assert session.state is SessionState.EDITING
        assert session.dirty is True

        assert await session.save() is True
        assert session.state is SessionState.READY
        assert session.dirty is False
        assert session.hours_with_data == {10}
        assert session.notices[-1].title == "Saved"
        assert (await store.get_slot(GENERATOR, DAY, 10)).values["gen_kw"] == 1200

    @pytest.mark.asyncio
    async def test_autosave_after_pause(self, make_session, store):
        session = make_session()
        await session.load()
        session.edit("gen_kw", 1200)
        await asyncio.sleep(0.2)

        assert session.autosave_status == "Saved"
        assert session.dirty is False
        assert await store.get_slot(GENERATOR, DAY, 10) is not None

    @pytest.mark.asyncio
    async def test_autosave_debounced(self, make_session, engine):
        """Edits in quick succession produce one save."""
        session = make_session(autosave_delay=0.1)
        await session.load()
        session.edit("gen_kw", 1200)
        await asyncio.sleep(0.02)
        session.edit("gen_kw", 1250)
        await asyncio.sleep(0.3)

        assert revision_count(engine) == 1

    @pytest.mark.asyncio
    async def test_range_violation_blocks_save(self, make_session, store):
        """An out-of-range value never reaches the store."""
        slot_store = FlakyStore(store.engine, store.broker, store.clock)
        session = make_session(slot_store=slot_store)
        await session.load()
        session.edit("winding_temp_r1", 205)

        with pytest.raises(RangeViolation) as exc_info:
            await session.save()
        assert exc_info.value.fields == ["winding_temp_r1"]
        assert slot_store.upserts == 0
        assert session.dirty is True
        assert session.draft["winding_temp_r1"] == 205
        assert session.notices[-1].title == "Cannot Save"

    @pytest.mark.asyncio
    async def test_autosave_failure_is_quiet(self, make_session):
        session = make_session()
        await session.load()
        session.edit("winding_temp_r1", 205)
        await asyncio.sleep(0.2)

        assert session.autosave_status == "Failed to save"
        assert session.dirty is True
        assert all(n.level != "error" for n in session.notices)

    @pytest.mark.asyncio
    async def test_warning_annotated_but_saved(self, make_session):
        session = make_session()
        await session.load()
        session.edit("winding_temp_r1", 190)

        assert session.annotations()["winding_temp_r1"].status.value == "warning"
        assert session.suggestion("winding_temp_r1").severity.value == "high"
        assert await session.save() is True

    @pytest.mark.asyncio
    async def test_unknown_field_rejected(self, make_session):
        session = make_session()
        await session.load()
        with pytest.raises(ValueError):
            session.edit("no_such_reading", 1)

    @pytest.mark.asyncio
    async def test_viewer_cannot_edit(self, make_session, viewer):
        session = make_session(actor=viewer)
        await session.load()

        assert session.locked is True
        with pytest.raises(PermissionDenied):
            session.edit("gen_kw", 1200)


class TestStoreFailures:
    """Tests for retry and failure handling."""

    @pytest.mark.asyncio
    async def test_duplicate_key_retried_once(self, make_session, store):
        slot_store = FlakyStore(store.engine, store.broker, store.clock, failures=[DuplicateKey("race")])
        session = make_session(slot_store=slot_store)
        await session.load()
        session.edit("gen_kw", 1200)

        assert await session.save() is True
        assert slot_store.upserts == 2

    @pytest.mark.asyncio
    async def test_network_failure_keeps_draft(self, make_session, store):
        slot_store = FlakyStore(store.engine, store.broker, store.clock, failures=[NetworkFailure("offline")])
        session = make_session(slot_store=slot_store)
        await session.load()
        session.edit("gen_kw", 1200)

        with pytest.raises(NetworkFailure):
            await session.save()
        assert session.state is SessionState.EDITING
        assert session.dirty is True
        assert session.draft == {"gen_kw": 1200}

        assert await session.save() is True
        assert session.dirty is False


class TestHourSelection:
    """Tests for navigating hours."""

    @pytest.mark.asyncio
    async def test_past_hour_is_locked(self, make_session, store):
        await store.upsert_slot(GENERATOR, SlotWrite(DAY, 9, {"gen_kw": 900}, "op-sita"))
        session = make_session()
        await session.load()
        await session.select_hour(9)

        assert session.locked is True
        assert session.draft["gen_kw"] == 900
        with pytest.raises(SlotLocked):
            session.edit("gen_kw", 950)

    @pytest.mark.asyncio
    async def test_future_hour_refused(self, make_session):
        session = make_session()
        await session.load()
        with pytest.raises(SlotLocked):
            await session.select_hour(11)

    @pytest.mark.asyncio
    async def test_switch_saves_dirty_draft(self, make_session, store):
        session = make_session(autosave_delay=60)
        await session.load()
        session.edit("gen_kw", 1200)
        await session.select_hour(9)

        assert session.selected_hour == 9
        assert (await store.get_slot(GENERATOR, DAY, 10)).values["gen_kw"] == 1200

    @pytest.mark.asyncio
    async def test_failed_save_refuses_switch(self, make_session):
        session = make_session(autosave_delay=60)
        await session.load()
        session.edit("gen_frequency", 60)

        with pytest.raises(RangeViolation):
            await session.select_hour(9)
        assert session.selected_hour == 10
        assert session.draft["gen_frequency"] == 60
        assert session.notices[-1].title == "Save Failed"

    @pytest.mark.asyncio
    async def test_edit_refused_while_hour_loads(self, make_session, store, engine):
        """Typing into an hour that is still loading cannot be overwritten by the fetch."""
        await store.upsert_slot(GENERATOR, SlotWrite(DAY, 10, {"gen_kw": 800}, "op-sita"))
        slow = SlowLoadStore(store.engine, store.broker, store.clock, held_hour=10)
        session = make_session(slot_store=slow, autosave_delay=0.05)
        await session.load()
        await session.select_hour(9)

        selecting = asyncio.create_task(session.select_hour(10))
        await slow.started.wait()
        with pytest.raises(SlotLocked, match="still loading"):
            session.edit("gen_kw", 1234)
        slow.release.set()
        await selecting

        assert session.draft["gen_kw"] == 800
        assert session.dirty is False
        await asyncio.sleep(0.1)
        assert revision_count(engine) == 1


class TestRollover:
    """Tests for following the clock."""

    @pytest.mark.asyncio
    async def test_tick_without_change(self, make_session, clock):
        session = make_session()
        await session.load()
        clock.advance(minutes=30)
        assert await session.tick() is False

    @pytest.mark.asyncio
    async def test_hour_rollover(self, make_session, clock):
        session = make_session()
        await session.load()
        clock.set(11, 0)

        assert await session.tick() is True
        assert session.current_hour == session.selected_hour == 11
        assert session.notices[-1].message == "Hour 11:00 is now active. Previous hour is locked."

    @pytest.mark.asyncio
    async def test_rollover_reports_unsaved_edits(self, make_session, clock):
        session = make_session(autosave_delay=60)
        await session.load()
        session.edit("gen_kw", 1200)
        clock.set(11, 0)
        await session.tick()

        assert any(n.title == "Unsaved Changes Discarded" for n in session.notices)
        assert session.dirty is False

    @pytest.mark.asyncio
    async def test_midnight_rollover_moves_day(self, make_session, clock):
        clock.set(23, 50)
        session = make_session()
        await session.load()
        clock.set(0, 5, date(2025, 1, 15))
        await session.tick()

        assert session.day == date(2025, 1, 15)
        assert session.selected_hour == 0

    @pytest.mark.asyncio
    async def test_completion_after_rollover_is_discarded(self, make_session, store, clock):
        """A save that finishes after the hour changed does not touch the new hour."""
        slow = SlowStore(store.engine, store.broker, store.clock)
        session = make_session(slot_store=slow, autosave_delay=60)
        await session.load()
        session.edit("gen_kw", 1200)

        saving = asyncio.create_task(session.save())
        await slow.started.wait()
        clock.set(11, 0)
        await session.tick()
        slow.release.set()

        assert await saving is False
        assert session.selected_hour == 11
        assert session.draft == {}
        assert (await store.get_slot(GENERATOR, DAY, 10)).values["gen_kw"] == 1200
        assert not any(n.title == "Unsaved Changes Discarded" for n in session.notices)


class TestRemoteChanges:
    """Tests for applying other operators' saves."""

    @pytest.mark.asyncio
    async def test_same_hour_ignored_while_dirty(self, make_session, store):
        session = make_session(autosave_delay=60)
        await session.load()
        session.edit("gen_kw", 1200)
        await store.upsert_slot(GENERATOR, SlotWrite(DAY, 10, {"gen_kw": 800}, "op-sita"))

        await session.apply_remote_change(ChangeEvent("generator", DAY, 10))
        assert session.draft == {"gen_kw": 1200}
        assert session.dirty is True

    @pytest.mark.asyncio
    async def test_same_hour_refreshed_when_clean(self, make_session, store):
        session = make_session()
        await session.load()
        await store.upsert_slot(GENERATOR, SlotWrite(DAY, 10, {"gen_kw": 800}, "op-sita"))

        await session.apply_remote_change(ChangeEvent("generator", DAY, 10))
        assert session.draft["gen_kw"] == 800
        assert session.slot_id is not None

    @pytest.mark.asyncio
    async def test_other_hour_updates_day(self, make_session, store):
        session = make_session(autosave_delay=60)
        await session.load()
        session.edit("gen_kw", 1200)
        await store.upsert_slot(GENERATOR, SlotWrite(DAY, 8, {"gen_kw": 800}, "op-sita"))

        await session.apply_remote_change(ChangeEvent("generator", DAY, 8))
        assert session.hours_with_data == {8}
        assert session.draft == {"gen_kw": 1200}

    @pytest.mark.asyncio
    async def test_other_kind_ignored(self, make_session, store):
        session = make_session()
        await session.load()
        await store.upsert_slot(TRANSFORMER, SlotWrite(DAY, 10, {"frequency": 50}, "op-sita"))

        await session.apply_remote_change(ChangeEvent("transformer", DAY, 10, 1))
        assert session.hours_with_data == set()

    @pytest.mark.asyncio
    async def test_live_synchronization(self, make_session, store, second_operator):
        """Two operators on the same sheet see each other's saves."""
        first = make_session()
        second = make_session(actor=second_operator)
        await first.start()
        await second.start()
        try:
            second.edit("gen_rpm", 600)
            await second.save()
            await asyncio.sleep(0.1)

            assert first.draft["gen_rpm"] == 600
            assert first.hours_with_data == {10}
        finally:
            await first.close()
            await second.close()

    @pytest.mark.asyncio
    async def test_hour_locked_at_midnight_follows_new_day(self, make_session, store, broker, clock):
        """The synchronizer resubscribes to the new day from inside its own task."""
        clock.set(23, 30)
        session = make_session()
        await session.start()
        try:
            old_task = session._sync._task
            clock.set(0, 5, date(2025, 1, 15))
            broker.publish(ChangeEvent("generator", DAY, 23, change_type="hour_locked"))
            await asyncio.sleep(0.1)

            assert session.day == date(2025, 1, 15)
            assert old_task.done() and not old_task.cancelled()
            assert session._sync.running

            await store.upsert_slot(GENERATOR, SlotWrite(date(2025, 1, 15), 0, {"gen_kw": 700}, "op-sita"))
            await asyncio.sleep(0.1)
            assert session.hours_with_data == {0}
            assert session.draft["gen_kw"] == 700
        finally:
            await session.close()


class TestFlagIssue:
    """Tests for flagging issues from a log sheet."""

    @pytest.mark.asyncio
    async def test_pending_issue_flushed_after_save(self, make_session, engine, clock):
        """An issue flagged on an unsaved hour is attached once the hour is saved."""
        clock.set(14, 20)
        session = make_session(autosave_delay=60)
        await session.load()
        session.edit("bearing_thrust_1_ch9", 80)

        pending = await session.flag_issue(
            section="Bearing Temperatures",
            item="bearing_thrust_1_ch9",
            description="Thrust bearing running warmer than usual",
        )
        assert isinstance(pending, PendingIssue)
        assert pending.hour == 14
        assert pending.severity.value == "high"

        await session.save()
        assert session.pending_issues == []
        with Session(engine) as db:
            issue = db.exec(select(FlaggedIssue)).one()
        assert issue.generator_log_id == session.slot_id
        assert issue.issue_code == "GEN-20250114-0001"
        assert issue.module == "Generator Log"

    @pytest.mark.asyncio
    async def test_pending_issue_flushed_when_another_operator_saves(self, make_session, store, engine, clock):
        """The hour gets its identity from a colleague's save; the queued issue follows it."""
        clock.set(14, 20)
        session = make_session()
        await session.load()
        await session.flag_issue(
            section="Bearing Temperatures",
            item="bearing_thrust_1_ch9",
            description="Thrust bearing running warmer than usual",
            severity="high",
        )
        assert len(session.pending_issues) == 1

        record = await store.upsert_slot(GENERATOR, SlotWrite(DAY, 14, {"bearing_thrust_1_ch9": 80}, "op-sita"))
        await session.apply_remote_change(ChangeEvent("generator", DAY, 14))

        assert session.slot_id == record.id
        assert session.pending_issues == []
        with Session(engine) as db:
            issue = db.exec(select(FlaggedIssue)).one()
        assert issue.generator_log_id == record.id
        assert issue.reported_by == "op-ravi"

    @pytest.mark.asyncio
    async def test_pending_issue_flushed_at_rollover(self, make_session, store, engine, clock):
        """A slot saved elsewhere without a delivered event is found before the hour locks."""
        clock.set(14, 20)
        session = make_session()
        await session.load()
        await session.flag_issue(
            section="Electrical Parameters",
            item="gen_kw",
            description="Output fluctuating between readings",
            severity="medium",
        )
        record = await store.upsert_slot(GENERATOR, SlotWrite(DAY, 14, {"gen_kw": 1100}, "op-sita"))

        clock.set(15, 0)
        await session.tick()

        assert session.pending_issues == []
        with Session(engine) as db:
            issue = db.exec(select(FlaggedIssue)).one()
        assert issue.generator_log_id == record.id

    @pytest.mark.asyncio
    async def test_issue_on_saved_hour_created_directly(self, make_session):
        session = make_session()
        await session.load()
        session.edit("gen_kw", 1200)
        await session.save()

        issue = await session.flag_issue(
            section="Electrical Parameters",
            item="gen_kw",
            description="Output dropped sharply at quarter past",
            severity="medium",
        )
        assert issue.issue_code.startswith("GEN-20250114-")
        assert issue.reported_by == "op-ravi"

    @pytest.mark.asyncio
    async def test_short_description_rejected(self, make_session):
        session = make_session()
        await session.load()
        with pytest.raises(InvalidIssue):
            await session.flag_issue(section="Electrical", item="gen_kw", description="bad")
        assert session.pending_issues == []
