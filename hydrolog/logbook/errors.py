"""Error taxonomy for the log-entry engine.

Routes translate these into HTTP responses; the collective log session
decides which of them reach the operator and which are only logged.
"""

from dataclasses import dataclass


class LogbookError(Exception):
    """Base class for all log-entry engine errors."""


@dataclass(frozen=True)
class FieldViolation:
    """A single field that failed a save-blocking check."""
    field: str
    message: str
    value: object = None

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


class RangeViolation(LogbookError):
    """One or more measurements are outside their hard bounds."""

    def __init__(self, violations: list[FieldViolation]):
        self.violations = list(violations)
        super().__init__("; ".join(str(v) for v in self.violations))

    @property
    def fields(self) -> list[str]:
        return [v.field for v in self.violations]


class DuplicateKey(LogbookError):
    """Lost a uniqueness race on a natural key."""


class StaleWrite(LogbookError):
    """A save completed after the operator moved to another hour."""


class PermissionDenied(LogbookError):
    """The actor may not perform this action on this record."""


class SlotLocked(PermissionDenied):
    """The hour is outside the edit window or its day is finalized."""


class AlreadySubmitted(PermissionDenied):
    """The checklist day was already submitted."""


class IncompleteDay(LogbookError):
    """Finalization requested before all 24 hours were logged."""

    def __init__(self, logged: int, required: int = 24):
        self.logged = logged
        self.required = required
        super().__init__(
            f"Only {logged}/{required} hours logged. "
            f"Complete all hours before finalizing."
        )


class GateClosed(LogbookError):
    """Category unlock attempted outside every session window."""


class NetworkFailure(LogbookError):
    """The store could not be reached; local edits are kept for retry."""


class InvalidIssue(LogbookError):
    """An issue flag was rejected before it reached the store."""
