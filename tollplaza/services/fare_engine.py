# tollplaza/services/fare_engine.py
"""
Fare calculation — decides how much a passage owes at a reference time.

Pure functions over plain attribute objects (ORM rows or dataclasses):
nothing here reads or writes the database, so the same call serves the
operator's exit preview and the final exit, and repeated calls with the same
inputs return the same quote.

Two policies exist and exactly one is active (settings.FARE_POLICY):

  daily   Rolling 24-hour window anchored at the vehicle's first entry.
          Exits inside a pre-paid window, or after another exit already
          settled the window, are free. Otherwise one unit per started day
          (a stay under 24h is one unit).
  hourly  Minimum one hour; up to 1.5h is one hour; under 2h is two hours;
          beyond that every started hour counts.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from tollplaza.config import settings

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")
DAY = timedelta(hours=24)
HOUR = timedelta(hours=1)


def money(value) -> Decimal:
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class FareQuote:
    amount: Decimal
    is_free_reentry: bool
    billable_units: int
    policy: str
    window_start: Optional[datetime] = None
    covered_until: Optional[datetime] = None   # end of the window this charge pays for

    def as_dict(self) -> dict:
        return {
            "amount": self.amount,
            "is_free_reentry": self.is_free_reentry,
            "billable_units": self.billable_units,
            "policy": self.policy,
            "window_start": self.window_start,
            "covered_until": self.covered_until,
        }


class FarePolicy:
    """Strategy interface. Subclasses implement calculate()."""

    name = "base"

    def calculate(self, vehicle, passage, history: Iterable, reference_time: datetime) -> FareQuote:
        raise NotImplementedError


class DailyRollingWindowPolicy(FarePolicy):
    name = "daily"

    def calculate(self, vehicle, passage, history, reference_time):
        base = money(passage.base_amount)
        paid_until = getattr(vehicle, "paid_until", None)

        # 1. Still inside a pre-paid window
        if paid_until is not None and paid_until >= reference_time:
            return FareQuote(ZERO, True, 0, self.name, covered_until=paid_until)

        others = [p for p in history if not _same_passage(p, passage)]

        # 2. First entry inside the rolling window ending at reference_time
        window_floor = reference_time - DAY
        entries = [p.entry_time for p in others + [passage]
                   if p.entry_time is not None and p.entry_time >= window_floor]
        window_start = min(entries) if entries else passage.entry_time

        # 3. Another exit already settled this window
        settled = any(
            p.exit_time is not None and p.entry_time is not None and p.entry_time >= window_start
            for p in others
        )
        if settled:
            return FareQuote(ZERO, True, 0, self.name, window_start=window_start)

        # 4. Charge per started day from the later of window start and paid_until
        charge_start = window_start
        if paid_until is not None and paid_until > charge_start:
            charge_start = paid_until
        elapsed = max(reference_time - charge_start, timedelta(0))
        units = 1 if elapsed < DAY else math.ceil(elapsed / DAY)

        return FareQuote(
            amount=money(base * units),
            is_free_reentry=False,
            billable_units=units,
            policy=self.name,
            window_start=window_start,
            covered_until=charge_start + DAY * units,
        )


class HourlyTieredPolicy(FarePolicy):
    name = "hourly"

    @staticmethod
    def hours_to_charge(hours_spent: float) -> int:
        if hours_spent <= 0:
            return 1
        if hours_spent <= 1.5:
            return 1
        if hours_spent < 2.0:
            return 2
        return math.ceil(hours_spent)

    def calculate(self, vehicle, passage, history, reference_time):
        hours_spent = (reference_time - passage.entry_time) / HOUR
        units = self.hours_to_charge(hours_spent)
        return FareQuote(
            amount=money(money(passage.base_amount) * units),
            is_free_reentry=False,
            billable_units=units,
            policy=self.name,
            window_start=passage.entry_time,
        )


_POLICIES = {
    DailyRollingWindowPolicy.name: DailyRollingWindowPolicy,
    HourlyTieredPolicy.name: HourlyTieredPolicy,
}


def get_fare_policy(name: Optional[str] = None) -> FarePolicy:
    """Return the configured fare policy. Unknown names are a configuration error."""
    key = (name or settings.FARE_POLICY).strip().lower()
    try:
        return _POLICIES[key]()
    except KeyError:
        raise ValueError(f"Unknown fare policy '{key}' (expected one of {sorted(_POLICIES)})")


def calculate_fare(vehicle, passage, history: Iterable = (), reference_time: Optional[datetime] = None,
                   policy: Optional[FarePolicy] = None) -> FareQuote:
    """Quote the passage at reference_time (default: now). history = the vehicle's other passages."""
    policy = policy or get_fare_policy()
    return policy.calculate(vehicle, passage, list(history), reference_time or datetime.utcnow())


def _same_passage(a, b) -> bool:
    if a is b:
        return True
    a_id, b_id = getattr(a, "id", None), getattr(b, "id", None)
    return a_id is not None and a_id == b_id
