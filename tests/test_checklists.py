"""Tests for the daily checklist service."""

from datetime import date

import pytest
from sqlmodel import Session, select

from hydrolog.logbook.checklists import get_or_create_day, save_module, submit_day
from hydrolog.logbook.errors import AlreadySubmitted, PermissionDenied
from hydrolog.models import ChecklistDay

DAY = date(2025, 1, 14)


def fill_all_modules(session: Session, actor):
    for module in (1, 2, 3, 4):
        save_module(session, DAY, module, {"checked": True}, actor)


class TestGetOrCreate:
    """Tests for lazy creation."""

    def test_created_on_first_access(self, session: Session):
        checklist = get_or_create_day(session, DAY)
        assert checklist.date == DAY
        assert checklist.status == "in_progress"
        assert checklist.completion_percentage == 0

    def test_second_access_returns_same_row(self, session: Session):
        first = get_or_create_day(session, DAY)
        second = get_or_create_day(session, DAY)
        assert first.id == second.id
        assert len(session.exec(select(ChecklistDay)).all()) == 1

    def test_concurrent_create_resolves_to_one_row(self, engine):
        """Two operators opening the checklist at once share one row."""
        with Session(engine) as first, Session(engine) as second:
            a = get_or_create_day(first, DAY)
            b = get_or_create_day(second, DAY)
            assert a.id == b.id


class TestSaveModule:
    """Tests for saving modules."""

    def test_completion_counts_non_empty_modules(self, session: Session, operator):
        checklist = save_module(session, DAY, 1, {"turbine_noise": "normal"}, operator)
        assert checklist.completion_percentage == 25

        checklist = save_module(session, DAY, 3, {"cooling_flow": 120}, operator)
        assert checklist.completion_percentage == 50

        checklist = save_module(session, DAY, 3, {}, operator)
        assert checklist.completion_percentage == 25

    def test_contributors_recorded(self, session: Session, operator, second_operator):
        save_module(session, DAY, 1, {"a": 1}, operator)
        save_module(session, DAY, 1, {"a": 2}, second_operator)
        checklist = save_module(session, DAY, 2, {"b": 1}, operator)

        assert checklist.contributors == {"module1": ["op-ravi", "op-sita"], "module2": ["op-ravi"]}

    def test_problem_fields_replaced_per_module(self, session: Session, operator):
        save_module(session, DAY, 1, {"a": 1}, operator, problem_fields=["oil_level"])
        save_module(session, DAY, 2, {"b": 1}, operator, problem_fields=["vibration"])
        checklist = save_module(session, DAY, 1, {"a": 1}, operator, problem_fields=[])

        assert checklist.problem_fields == ["module2.vibration"]

    def test_invalid_module(self, session: Session, operator):
        with pytest.raises(ValueError):
            save_module(session, DAY, 5, {"a": 1}, operator)

    def test_viewer_cannot_save(self, session: Session, viewer):
        with pytest.raises(PermissionDenied):
            save_module(session, DAY, 1, {"a": 1}, viewer)

    def test_read_only_after_submission(self, session: Session, operator):
        fill_all_modules(session, operator)
        submit_day(session, DAY, operator)

        with pytest.raises(AlreadySubmitted):
            save_module(session, DAY, 1, {"a": 2}, operator)


class TestSubmit:
    """Tests for submission."""

    def test_submit(self, session: Session, operator, clock):
        fill_all_modules(session, operator)
        checklist = submit_day(session, DAY, operator, clock())

        assert checklist.submitted is True
        assert checklist.status == "completed"
        assert checklist.submitted_by == "op-ravi"
        assert checklist.completion_percentage == 100

    def test_incomplete_checklist_refused(self, session: Session, operator):
        save_module(session, DAY, 1, {"a": 1}, operator)
        with pytest.raises(PermissionDenied, match="25% complete"):
            submit_day(session, DAY, operator)

    def test_missing_checklist(self, session: Session, operator):
        with pytest.raises(LookupError):
            submit_day(session, DAY, operator)

    def test_exactly_one_submitter_wins(self, engine, operator, second_operator):
        """The loser of a concurrent submit gets AlreadySubmitted and changes nothing."""
        with Session(engine) as setup:
            fill_all_modules(setup, operator)

        with Session(engine) as first, Session(engine) as second:
            # Both operators have the checklist open
            mine = first.exec(select(ChecklistDay)).one()
            theirs = second.exec(select(ChecklistDay)).one()
            assert mine.submitted is False and theirs.submitted is False

            submit_day(first, DAY, operator)
            with pytest.raises(AlreadySubmitted):
                submit_day(second, DAY, second_operator)

        with Session(engine) as check:
            checklist = check.exec(select(ChecklistDay)).one()
            assert checklist.submitted_by == "op-ravi"
