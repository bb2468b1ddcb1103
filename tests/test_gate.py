"""Tests for the checklist session gate."""

from datetime import date

import pytest
from sqlmodel import Session, select

from hydrolog.logbook.errors import GateClosed, PermissionDenied
from hydrolog.logbook.gate import CATEGORIES, CategoryState, ChecklistGate, EmergencyOverride
from hydrolog.models import CategoryCompletion

DAY = date(2025, 1, 14)


@pytest.fixture(name="gate")
def gate_fixture(session: Session, clock) -> ChecklistGate:
    clock.set(8, 10)  # session 1 is open
    return ChecklistGate(session, DAY, clock)


class TestScan:
    """Tests for QR unlock."""

    def test_scan_inside_window_unlocks(self, gate, operator):
        status = gate.scan("TURB-2025-001", operator)

        assert status.category.name == "Turbine System"
        assert status.state is CategoryState.UNLOCKED
        assert status.session_number == 1
        assert status.unlock_method == "qr"

    def test_all_categories_start_locked(self, gate):
        states = {s.category.name: s.state for s in gate.statuses(1)}
        assert len(states) == len(CATEGORIES) == 6
        assert set(states.values()) == {CategoryState.LOCKED}

    def test_scan_outside_window_refused(self, gate, clock, operator):
        clock.set(14, 0)
        with pytest.raises(GateClosed, match="Next session: Session 3 at 5:30 PM"):
            gate.scan("GEN-2025-001", operator)

    def test_unknown_code(self, gate, operator):
        with pytest.raises(LookupError):
            gate.scan("PUMP-2025-001", operator)

    def test_rescan_is_idempotent(self, gate, operator, second_operator):
        first = gate.scan("CS-2025-001", operator)
        second = gate.scan("CS-2025-001", second_operator)
        assert first.unlocked_at == second.unlocked_at

    def test_viewer_cannot_scan(self, gate, viewer):
        with pytest.raises(PermissionDenied):
            gate.scan("CS-2025-001", viewer)

    def test_late_session_after_midnight(self, session, clock, operator):
        """A scan at 00:10 belongs to session 4 of the previous day."""
        clock.set(0, 10, date(2025, 1, 15))
        gate = ChecklistGate(session, clock=clock)
        status = gate.scan("SAFE-2025-001", operator)

        assert status.session_number == 4
        assert status.day == DAY


class TestEmergencyOverride:
    """Tests for unlocking outside the windows."""

    def test_reason_required(self, clock):
        with pytest.raises(ValueError):
            EmergencyOverride("   ", clock())

    def test_override_unlocks_once(self, gate, clock, operator):
        clock.set(14, 0)
        override = EmergencyOverride("Oil leak reported at OPU", clock())

        status = gate.scan("OPU-2025-001", operator, override)
        assert status.state is CategoryState.UNLOCKED
        assert status.is_emergency is True
        assert status.unlock_method == "emergency"
        assert status.session_number == 2  # most recently opened
        assert override.used is True

        with pytest.raises(GateClosed, match="already been used"):
            gate.scan("ELEC-2025-001", operator, override)

    def test_reason_recorded(self, gate, session, clock, operator):
        clock.set(14, 0)
        gate.scan("OPU-2025-001", operator, EmergencyOverride("Oil leak reported at OPU", clock()))
        row = session.exec(select(CategoryCompletion)).one()
        assert row.emergency_reason == "Oil leak reported at OPU"
        assert row.unlocked_by == "op-ravi"


class TestComplete:
    """Tests for completing categories."""

    def test_cannot_complete_locked_category(self, gate, operator):
        with pytest.raises(GateClosed, match="Scan its QR code first"):
            gate.complete("Generator", operator)

    def test_unlock_then_complete(self, gate, operator):
        gate.scan("GEN-2025-001", operator)
        status = gate.complete("Generator", operator, notes="All normal")

        assert status.state is CategoryState.COMPLETED
        assert gate.progress(1) == (1, 6)
        assert gate.is_session_complete(1) is False

    def test_session_complete_when_all_done(self, gate, operator):
        for category in CATEGORIES:
            gate.scan(category.qr_code, operator)
            gate.complete(category.name, operator)

        assert gate.is_session_complete(1) is True
        assert gate.is_session_complete(2) is False

    def test_sessions_are_independent(self, gate, clock, operator):
        gate.scan("GEN-2025-001", operator)
        clock.set(12, 0)
        states = {s.category.name: s.state for s in gate.statuses()}
        assert states["Generator"] is CategoryState.LOCKED

    def test_unknown_category(self, gate, operator):
        with pytest.raises(LookupError):
            gate.complete("Pump House", operator)
