"""
Parking charge calculation.

A charge is the number of started billing units between the reference time
and the target time, multiplied by the per-unit rate. At least one unit is
always charged.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

import pytz

CENTS = Decimal("0.01")
_ONE_MICROSECOND = timedelta(microseconds=1)


def current_time(timezone_name: str) -> datetime:
    """Timezone-aware now in the configured zone"""
    return datetime.now(pytz.timezone(timezone_name))


def localize(value: datetime, timezone_name: str) -> datetime:
    """Attach the configured zone to naive datetimes, convert aware ones"""
    tz = pytz.timezone(timezone_name)
    if value.tzinfo is None:
        return tz.localize(value)
    return value.astimezone(tz)


@dataclass(frozen=True)
class BillingRate:
    rate_per_unit: Decimal
    unit: timedelta

    def __post_init__(self):
        if self.unit <= timedelta(0):
            raise ValueError("billing unit must be positive")
        if self.rate_per_unit <= 0:
            raise ValueError("rate per unit must be positive")


class BillingEngine:
    def __init__(self, rate: BillingRate):
        self.rate = rate

    def units_between(self, reference_time: datetime, target_time: datetime) -> int:
        if reference_time.tzinfo is None or target_time.tzinfo is None:
            raise ValueError("billing timestamps must be timezone-aware")

        delta = target_time - reference_time
        if delta <= timedelta(0):
            return 1

        # ceil on integer microseconds
        delta_us = delta // _ONE_MICROSECOND
        unit_us = self.rate.unit // _ONE_MICROSECOND
        units = -(-delta_us // unit_us)
        return max(units, 1)

    def calculate_charge(self, reference_time: datetime, target_time: datetime) -> Decimal:
        """Charge for parking from reference_time until target_time.

        Non-positive intervals (clock skew, immediate checkout) cost exactly
        one unit.
        """
        units = self.units_between(reference_time, target_time)
        return (self.rate.rate_per_unit * units).quantize(CENTS, rounding=ROUND_HALF_UP)
