"""Magnitude-dependent snapping of numeric option values.

A profile snaps a raw value to the nearest point of a grid whose size depends
on the value: at or below ``threshold`` the grid is ``fine_step`` wide and
anchored at zero, above it the grid is ``coarse_step`` wide and anchored at
``threshold``. A remainder of exactly half a grid step rounds up.
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal, InvalidOperation
from typing import Any, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuantizationProfile:
    """Grid definition for a snapped numeric option."""

    name: str
    threshold: Decimal
    fine_step: Decimal
    coarse_step: Decimal

    def step_for(self, value: Decimal) -> Decimal:
        """Grid size in effect for ``value``."""
        return self.coarse_step if value > self.threshold else self.fine_step

    def snap(self, value: Decimal) -> Decimal:
        """Round ``value`` half-up to the nearest grid point."""
        if value > self.threshold:
            grid, origin = self.coarse_step, self.threshold
        else:
            grid, origin = self.fine_step, Decimal("0")

        offset = value - origin
        remainder = offset - grid * (offset / grid).to_integral_value(rounding=ROUND_FLOOR)
        if remainder < grid / 2:
            return value - remainder
        return value + (grid - remainder)


LENS_POWER = QuantizationProfile(
    name="lens_power",
    threshold=Decimal("500"),
    fine_step=Decimal("25"),
    coarse_step=Decimal("50"),
)

DEFAULT_PROFILES: dict[str, QuantizationProfile] = {LENS_POWER.name: LENS_POWER}

# Catalogs that predate the quantization_profile column are matched by option name.
DEFAULT_NAME_PROFILES: dict[str, str] = {
    "近视度数": LENS_POWER.name,
    "nearsightedness power": LENS_POWER.name,
}


def to_decimal(value: Any) -> Optional[Decimal]:
    """Coerce a raw numeric input to Decimal, or None if it is not a finite number."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        number = value
    else:
        try:
            number = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            return None
    if not number.is_finite():
        return None
    return number
