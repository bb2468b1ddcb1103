"""Hour slot models for the generator and transformer log sheets.

An hour slot holds one hour's readings for one equipment stream on one
plant day. Slots are collective: any operator on shift may create or update
the slot for the current hour, and the store's uniqueness constraint on the
natural key (not an application lock) guarantees there is at most one row
per hour. Once an administrator finalizes the day, its slots are frozen.
"""

import datetime as dt
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, UniqueConstraint
from sqlmodel import Field, SQLModel

from hydrolog.logbook.validation import GENERATOR_RANGES, TRANSFORMER_RANGES, FieldRange


def range_constraints(ranges: dict[str, FieldRange]) -> list[CheckConstraint]:
    """CHECK constraints mirroring the hard bounds of each ranged column.

    NULL and the unset sentinel (0) are always accepted, matching the
    application-side validation.
    """
    constraints = []
    for column, rng in ranges.items():
        bounds = f"{column} >= {rng.minimum!r}"
        if rng.maximum != float("inf"):
            bounds += f" AND {column} <= {rng.maximum!r}"
        constraints.append(
            CheckConstraint(
                f"{column} IS NULL OR {column} = 0 OR ({bounds})",
                name=f"{column}_range",
            )
        )
    return constraints


class HourSlotBase(SQLModel):
    """Bookkeeping columns shared by every hour slot.

    Attributes:
        date: Plant day (in the plant time zone) the hour belongs to.
        hour: Hour of day, 0-23.
        remarks: Free-text operator remark.
        logged_by: Operator who first saved this hour. Preserved on update.
        last_modified_by: Operator who saved it most recently.
        logged_at: When the latest save happened.
        finalized: Set for every slot of the day once an administrator
            finalizes it. Finalized slots are read-only.
        finalized_at: When the day was finalized.
        finalized_by: Administrator who finalized the day.
    """
    date: dt.date = Field(index=True)
    hour: int
    remarks: str | None = None
    logged_by: str | None = None
    last_modified_by: str | None = None
    logged_at: dt.datetime = Field(default_factory=lambda: dt.datetime.now(dt.UTC))
    finalized: bool = Field(default=False)
    finalized_at: dt.datetime | None = None
    finalized_by: str | None = None
    created_at: dt.datetime = Field(default_factory=lambda: dt.datetime.now(dt.UTC))
    updated_at: dt.datetime = Field(default_factory=lambda: dt.datetime.now(dt.UTC))


class GeneratorLog(HourSlotBase, table=True):
    """Hourly generator log sheet, one row per (date, hour)."""
    __tablename__ = "generator_logs"
    __table_args__ = (
        UniqueConstraint("date", "hour", name="uq_generator_logs_date_hour"),
        CheckConstraint("hour >= 0 AND hour <= 23", name="hour_of_day"),
        *range_constraints(GENERATOR_RANGES),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)

    # Generator winding temperatures
    winding_temp_r1: float | None = None
    winding_temp_r2: float | None = None
    winding_temp_y1: float | None = None
    winding_temp_y2: float | None = None
    winding_temp_b1: float | None = None
    winding_temp_b2: float | None = None

    # Bearing temperatures
    bearing_g_de_brg_main_ch7: float | None = None
    bearing_g_nde_brg_stand_ch8: float | None = None
    bearing_thrust_1_ch9: float | None = None
    bearing_thrust_2_ch10: float | None = None
    bearing_bgb_low_speed_ch11: float | None = None
    bearing_bgb_high_speed_ch12: float | None = None
    bearing_tgb_low_speed_ch13: float | None = None
    bearing_tgb_high_speed_ch14: float | None = None

    # Electrical parameters
    gen_current_r: float | None = None
    gen_current_y: float | None = None
    gen_current_b: float | None = None
    gen_voltage_ry: float | None = None
    gen_voltage_yb: float | None = None
    gen_voltage_br: float | None = None
    gen_kw: float | None = None
    gen_kvar: float | None = None
    gen_kva: float | None = None
    gen_frequency: float | None = None
    gen_power_factor: float | None = None
    gen_rpm: float | None = None
    gen_mwh: float | None = None
    gen_mvarh: float | None = None
    gen_mvah: float | None = None

    # AVR
    avr_field_current: float | None = None
    avr_field_voltage: float | None = None

    # Intake system
    intake_gv_percentage: float | None = None
    intake_rb_percentage: float | None = None
    intake_water_pressure: float | None = None
    intake_water_level: float | None = None

    # Tail race
    tail_race_water_level: float | None = None
    tail_race_net_head: float | None = None

    # T.OPU
    topu_oil_pressure: float | None = None
    topu_oil_temperature: float | None = None
    topu_oil_level: float | None = None

    # GB.LOS and cooling water
    gblos_oil_pressure: float | None = None
    gblos_oil_temperature: float | None = None
    gblos_oil_level: float | None = None
    cooling_main_pressure: float | None = None
    cooling_los_flow: float | None = None
    cooling_bearing_flow: float | None = None


class TransformerLog(HourSlotBase, table=True):
    """Hourly transformer log sheet, one row per (transformer_number, date, hour)."""
    __tablename__ = "transformer_logs"
    __table_args__ = (
        UniqueConstraint(
            "transformer_number", "date", "hour",
            name="uq_transformer_logs_number_date_hour",
        ),
        CheckConstraint("hour >= 0 AND hour <= 23", name="hour_of_day"),
        *range_constraints(TRANSFORMER_RANGES),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    transformer_number: int = Field(default=1, index=True)

    # PTR feeder (3.2 MVA, 33 kV / 3.3 kV)
    frequency: float | None = None
    voltage_ry: float | None = None
    voltage_yb: float | None = None
    voltage_rb: float | None = None
    current_r: float | None = None
    current_y: float | None = None
    current_b: float | None = None
    active_power: float | None = None
    reactive_power: float | None = None
    kva: float | None = None
    mwh: float | None = None
    mvarh: float | None = None
    mvah: float | None = None
    cos_phi: float | None = None
    oil_temperature: float | None = None
    winding_temperature: float | None = None
    oil_level: str | None = None
    tap_position: str | None = None
    tap_counter: int | None = None
    silica_gel_colour: str | None = None

    # LTAC feeder
    ltac_current_r: float | None = None
    ltac_current_y: float | None = None
    ltac_current_b: float | None = None
    ltac_voltage_ry: float | None = None
    ltac_voltage_yb: float | None = None
    ltac_voltage_rb: float | None = None
    ltac_kw: float | None = None
    ltac_kva: float | None = None
    ltac_kvar: float | None = None
    ltac_kwh: float | None = None
    ltac_kvah: float | None = None
    ltac_kvarh: float | None = None
    ltac_oil_temperature: float | None = None
    ltac_grid_fail_time: str | None = None  # HH:MM
    ltac_grid_resume_time: str | None = None  # HH:MM
    ltac_supply_interruption: int | None = None  # minutes, derived

    # Generation meters
    gen_total_generation: float | None = None
    gen_xmer_export: float | None = None
    gen_aux_consumption: float | None = None
    gen_main_export: float | None = None
    gen_check_export: float | None = None
    gen_main_import: float | None = None
    gen_check_import: float | None = None
    gen_standby_export: float | None = None
    gen_standby_import: float | None = None
