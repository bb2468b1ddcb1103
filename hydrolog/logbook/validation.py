"""Range classification and issue pre-fill for hourly measurements.

Every numeric measurement has hard bounds and, for some, a narrower ideal
band. A reading outside the hard bounds is ``danger`` and blocks the save; a
reading inside the hard bounds but outside the ideal band is ``warning`` and
is saved as-is; anything else is ``normal``.

Untouched numeric inputs arrive as ``0`` (the unset sentinel) or ``None``.
Neither is ever classified or checked, so a blank form never lights up red.
A genuine zero reading is therefore indistinguishable from a blank field.
"""

import math
import re
from dataclasses import dataclass
from enum import Enum

from hydrolog.logbook.errors import FieldViolation

UNSET = 0

SILICA_GEL_COLOURS = ("Pink", "Brown", "Blue")

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


class Status(str, Enum):
    NORMAL = "normal"
    WARNING = "warning"
    DANGER = "danger"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class FieldRange:
    """Hard bounds plus an optional ideal band for one measurement."""
    minimum: float
    maximum: float = math.inf
    ideal: tuple[float, float] | None = None
    unit: str = ""

    def __post_init__(self):
        if self.minimum > self.maximum:
            raise ValueError(f"Empty range {self.minimum}..{self.maximum}")
        if self.ideal is not None:
            low, high = self.ideal
            if not (self.minimum <= low <= high <= self.maximum):
                raise ValueError(f"Ideal band {self.ideal} is not inside the hard bounds")

    def describe(self) -> str:
        if math.isinf(self.maximum):
            return f">= {_fmt(self.minimum)}{self.unit}"
        return f"{_fmt(self.minimum)}-{_fmt(self.maximum)}{self.unit}"

    def describe_ideal(self) -> str:
        if self.ideal is None:
            return self.describe()
        return f"{_fmt(self.ideal[0])}-{_fmt(self.ideal[1])}{self.unit}"


@dataclass(frozen=True)
class Classification:
    status: Status
    message: str | None = None


@dataclass(frozen=True)
class IssueSuggestion:
    """Advisory pre-fill offered when an operator flags a field."""
    severity: Severity
    description: str | None


def _fmt(number: float) -> str:
    return f"{number:g}"


def is_unset(value) -> bool:
    """True for blank inputs, which are never validated."""
    return value is None or (isinstance(value, (int, float)) and value == UNSET)


def classify(value, rng: FieldRange) -> Classification:
    """Classify one reading against its range."""
    if is_unset(value):
        return Classification(Status.NORMAL)

    if value < rng.minimum or value > rng.maximum:
        return Classification(
            Status.DANGER,
            f"Value {_fmt(value)}{rng.unit} is outside acceptable range ({rng.describe()})",
        )
    if rng.ideal is not None and not (rng.ideal[0] <= value <= rng.ideal[1]):
        return Classification(
            Status.WARNING,
            f"Value {_fmt(value)}{rng.unit} is outside ideal range ({rng.describe_ideal()})",
        )
    return Classification(Status.NORMAL)


def suggest_issue(value, rng: FieldRange | None) -> IssueSuggestion:
    """Default severity and description for flagging a reading."""
    if rng is None:
        return IssueSuggestion(Severity.MEDIUM, None)
    result = classify(value, rng)
    if result.status is Status.DANGER:
        return IssueSuggestion(Severity.CRITICAL, result.message)
    if result.status is Status.WARNING:
        return IssueSuggestion(Severity.HIGH, result.message)
    return IssueSuggestion(Severity.MEDIUM, None)


def hard_violations(values: dict, ranges: dict[str, FieldRange]) -> list[FieldViolation]:
    """Save-blocking check of every ranged field present in ``values``."""
    violations = []
    for field, rng in ranges.items():
        value = values.get(field)
        if is_unset(value):
            continue
        if value < rng.minimum or value > rng.maximum:
            violations.append(
                FieldViolation(field, f"must be {rng.describe()}", value)
            )
    return violations


def classify_values(values: dict, ranges: dict[str, FieldRange]) -> dict[str, Classification]:
    """Annotate every ranged field of a draft."""
    return {field: classify(values.get(field), rng) for field, rng in ranges.items()}


# ---------------------------------------------------------------------------
# Transformer LTAC grid interruption
# ---------------------------------------------------------------------------

def parse_clock_time(text: str | None) -> int | None:
    """``"HH:MM"`` to minutes after midnight; ``None`` for blank input."""
    if not text:
        return None
    match = _TIME_RE.match(text.strip())
    if not match:
        raise ValueError(f"Invalid time {text!r}, expected HH:MM")
    return int(match.group(1)) * 60 + int(match.group(2))


def supply_interruption_minutes(fail: str | None, resume: str | None) -> int | None:
    """Minutes between grid failure and resumption within the same day."""
    try:
        fail_minutes = parse_clock_time(fail)
        resume_minutes = parse_clock_time(resume)
    except ValueError:
        return None
    if fail_minutes is None or resume_minutes is None:
        return None
    if resume_minutes <= fail_minutes:
        return None
    return resume_minutes - fail_minutes


def transformer_field_violations(values: dict) -> list[FieldViolation]:
    """Checks on transformer fields that are not plain numeric ranges."""
    violations = []

    times = {}
    for field in ("ltac_grid_fail_time", "ltac_grid_resume_time"):
        try:
            times[field] = parse_clock_time(values.get(field))
        except ValueError as e:
            violations.append(FieldViolation(field, str(e), values.get(field)))

    fail = times.get("ltac_grid_fail_time")
    resume = times.get("ltac_grid_resume_time")
    if fail is not None and resume is not None and resume <= fail:
        violations.append(
            FieldViolation(
                "ltac_grid_resume_time",
                "Grid Resume time must be after Grid Fail time",
                values.get("ltac_grid_resume_time"),
            )
        )

    colour = values.get("silica_gel_colour")
    if colour and colour not in SILICA_GEL_COLOURS:
        violations.append(
            FieldViolation(
                "silica_gel_colour",
                f"must be one of {', '.join(SILICA_GEL_COLOURS)}",
                colour,
            )
        )
    return violations


# ---------------------------------------------------------------------------
# Declared ranges
# ---------------------------------------------------------------------------

_WINDING = FieldRange(0, 200, ideal=(0, 85), unit="°C")
_BEARING = FieldRange(0, 200, ideal=(0, 75), unit="°C")
_OIL_TEMP = FieldRange(0, 150, ideal=(0, 60), unit="°C")
_PERCENT = FieldRange(0, 100, unit="%")
_FREQUENCY = FieldRange(45, 55, ideal=(49.5, 50.5), unit="Hz")
_POWER_FACTOR = FieldRange(0, 1)
_GEN_VOLTAGE = FieldRange(0, ideal=(3135, 3465), unit="V")  # 3.3 kV +/- 5%


def _non_negative(unit: str = "") -> FieldRange:
    return FieldRange(0, unit=unit)


GENERATOR_RANGES: dict[str, FieldRange] = {
    "winding_temp_r1": _WINDING,
    "winding_temp_r2": _WINDING,
    "winding_temp_y1": _WINDING,
    "winding_temp_y2": _WINDING,
    "winding_temp_b1": _WINDING,
    "winding_temp_b2": _WINDING,
    "bearing_g_de_brg_main_ch7": _BEARING,
    "bearing_g_nde_brg_stand_ch8": _BEARING,
    "bearing_thrust_1_ch9": _BEARING,
    "bearing_thrust_2_ch10": _BEARING,
    "bearing_bgb_low_speed_ch11": _BEARING,
    "bearing_bgb_high_speed_ch12": _BEARING,
    "bearing_tgb_low_speed_ch13": _BEARING,
    "bearing_tgb_high_speed_ch14": _BEARING,
    "gen_current_r": _non_negative("A"),
    "gen_current_y": _non_negative("A"),
    "gen_current_b": _non_negative("A"),
    "gen_voltage_ry": _GEN_VOLTAGE,
    "gen_voltage_yb": _GEN_VOLTAGE,
    "gen_voltage_br": _GEN_VOLTAGE,
    "gen_kw": _non_negative("kW"),
    "gen_kvar": _non_negative("kVAR"),
    "gen_kva": _non_negative("kVA"),
    "gen_frequency": _FREQUENCY,
    "gen_power_factor": _POWER_FACTOR,
    "gen_rpm": _non_negative("rpm"),
    "gen_mwh": _non_negative("MWh"),
    "gen_mvarh": _non_negative("MVARh"),
    "gen_mvah": _non_negative("MVAh"),
    "avr_field_current": _non_negative("A"),
    "avr_field_voltage": _non_negative("V"),
    "intake_gv_percentage": _PERCENT,
    "intake_rb_percentage": _PERCENT,
    "intake_water_pressure": _non_negative("bar"),
    "tail_race_net_head": _non_negative("m"),
    "topu_oil_pressure": _non_negative("bar"),
    "topu_oil_temperature": _OIL_TEMP,
    "topu_oil_level": _PERCENT,
    "gblos_oil_pressure": _non_negative("bar"),
    "gblos_oil_temperature": _OIL_TEMP,
    "gblos_oil_level": _PERCENT,
    "cooling_main_pressure": _non_negative("bar"),
    "cooling_los_flow": _non_negative("LPM"),
    "cooling_bearing_flow": _non_negative("LPM"),
}

TRANSFORMER_RANGES: dict[str, FieldRange] = {
    "frequency": _FREQUENCY,
    "cos_phi": _POWER_FACTOR,
    "oil_temperature": FieldRange(0, 150, ideal=(0, 85), unit="°C"),
    "winding_temperature": FieldRange(0, 200, ideal=(0, 95), unit="°C"),
    "ltac_oil_temperature": FieldRange(0, 150, ideal=(0, 85), unit="°C"),
}
