"""
Pydantic model for a single decoded charge controller reading.

A Sample holds the ten telemetry fields in the fixed order the controller
emits them, plus the receiver-side capture timestamp. The order of
FIELD_NAMES is the wire order; reordering it breaks decoding of device
lines and the column mapping of stored rows.

CHANGELOG:
- 2026-10-19: Treat any positive wire flag as set
- 2026-10-19: Add synthetic flag for placeholder samples
- 2026-10-19: Initial creation
"""

from __future__ import annotations

import time
from datetime import UTC, datetime
from email.utils import format_datetime

from pydantic import BaseModel, ConfigDict

FIELD_NAMES: tuple[str, ...] = (
    "battery_voltage",
    "pv_voltage",
    "load_current",
    "over_discharge",
    "battery_max",
    "battery_full",
    "charging",
    "battery_temp",
    "charge_current",
    "load_onoff",
)
"""The ten telemetry fields in wire order."""

FLAG_FIELDS: frozenset[str] = frozenset({"battery_full", "charging", "load_onoff"})
"""Fields carried as 0.0/1.0 on the wire and exposed as booleans."""


def flag_from_wire(value: float) -> bool:
    """Map a wire flag value to a boolean.

    The device emits 0 or 1; any positive value counts as set.
    """
    return value > 0.0


class Sample(BaseModel):
    """A single telemetry reading from the solar charge controller.

    Instances are immutable. The timestamp is stamped by the receiver at
    decode time; it is not transmitted by the device, so ordering between
    samples reflects receipt order.

    Attributes:
        timestamp: Capture time in whole seconds since the Unix epoch.
        battery_voltage: Battery voltage in volts.
        pv_voltage: Photovoltaic input voltage in volts.
        load_current: Load current in amperes.
        over_discharge: Over-discharge metric reported by the controller.
        battery_max: Battery maximum voltage metric.
        battery_full: Battery full indicator.
        charging: Charging indicator.
        battery_temp: Battery temperature in degrees Celsius.
        charge_current: Charge current in amperes.
        load_onoff: Load output state (True = on).
        synthetic: True for placeholder samples substituted when a read
            or decode failed. Never set on real device readings.
    """

    model_config = ConfigDict(frozen=True)

    timestamp: int
    battery_voltage: float
    pv_voltage: float
    load_current: float
    over_discharge: float
    battery_max: float
    battery_full: bool
    charging: bool
    battery_temp: float
    charge_current: float
    load_onoff: bool
    synthetic: bool = False

    @classmethod
    def from_values(
        cls,
        values: list[float] | tuple[float, ...],
        *,
        timestamp: int | None = None,
    ) -> Sample:
        """Build a Sample from exactly ten wire values in declared order.

        Args:
            values: Ten floats in FIELD_NAMES order.
            timestamp: Capture time; defaults to the current wall clock.

        Raises:
            ValueError: If the number of values is not ten.
        """
        if len(values) != len(FIELD_NAMES):
            raise ValueError(
                f"expected {len(FIELD_NAMES)} values, got {len(values)}"
            )
        fields: dict[str, float | bool] = {}
        for name, value in zip(FIELD_NAMES, values):
            fields[name] = flag_from_wire(value) if name in FLAG_FIELDS else float(value)
        return cls(timestamp=_now() if timestamp is None else timestamp, **fields)

    @classmethod
    def placeholder(cls, *, timestamp: int | None = None) -> Sample:
        """Return the zero-valued placeholder used when decoding fails."""
        zeros = {name: (False if name in FLAG_FIELDS else 0.0) for name in FIELD_NAMES}
        return cls(
            timestamp=_now() if timestamp is None else timestamp,
            synthetic=True,
            **zeros,
        )

    def values(self) -> tuple[float, ...]:
        """Return the ten telemetry fields as floats in wire order."""
        return tuple(float(getattr(self, name)) for name in FIELD_NAMES)

    @property
    def captured_at(self) -> datetime:
        """Capture time as an aware UTC datetime."""
        return datetime.fromtimestamp(self.timestamp, tz=UTC)

    def time_formatted(self) -> str:
        """Capture time rendered in RFC 2822 format."""
        return format_datetime(self.captured_at)

    def describe(self) -> str:
        """One-line human-readable summary with units."""
        v = self.values()
        return (
            f"({self.timestamp}, {v[0]}v, {v[1]}v, {v[2]}A, {v[3]}, {v[4]}v, "
            f"{v[5]}, {v[6]}, {v[7]}C, {v[8]}A, {v[9]})"
        )


def _now() -> int:
    return int(time.time())
