"""
Recurrence calculator

Pure functions mapping a frequency descriptor and a contract window to the
calendar dates on which a visit should exist. No I/O, no hidden state.
"""

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Container, Iterator, Optional

from ...exceptions import ValidationError
from ...models import FrequencyKind, FrequencyUnit

# Month-based units and their length in months
_MONTHS_PER_UNIT = {
    FrequencyUnit.MONTH: 1,
    FrequencyUnit.QUARTER: 3,
    FrequencyUnit.HALF_YEAR: 6,
    FrequencyUnit.YEAR: 12,
}
_DAYS_PER_UNIT = {
    FrequencyUnit.DAY: 1,
    FrequencyUnit.WEEK: 7,
}


@dataclass(frozen=True)
class Frequency:
    """Recurrence descriptor: one-time, or every <value> <unit>"""

    kind: FrequencyKind
    value: Optional[int] = None
    unit: Optional[FrequencyUnit] = None

    @classmethod
    def one_time(cls) -> "Frequency":
        return cls(kind=FrequencyKind.ONE_TIME)

    @classmethod
    def every(cls, value: int, unit: FrequencyUnit) -> "Frequency":
        return cls(kind=FrequencyKind.FIXED_INTERVAL, value=value, unit=FrequencyUnit(unit))

    @classmethod
    def from_contract(cls, contract) -> "Frequency":
        return cls.parse(contract.frequency_kind, contract.frequency_value, contract.frequency_unit)

    @classmethod
    def parse(cls, kind: str, value: Optional[int], unit: Optional[str]) -> "Frequency":
        try:
            kind = FrequencyKind(kind)
        except ValueError:
            raise ValidationError(f"Unknown frequency kind '{kind}'", field="frequency_kind")
        if kind == FrequencyKind.ONE_TIME:
            return cls.one_time()
        try:
            unit = FrequencyUnit(unit)
        except ValueError:
            raise ValidationError(f"Unknown frequency unit '{unit}'", field="frequency_unit")
        frequency = cls(kind=kind, value=value, unit=unit)
        frequency.validate()
        return frequency

    def validate(self) -> None:
        if self.kind == FrequencyKind.ONE_TIME:
            return
        if self.unit is None:
            raise ValidationError("Fixed-interval frequency needs a unit", field="frequency_unit")
        if not isinstance(self.value, int) or self.value < 1:
            raise ValidationError(
                "Fixed-interval frequency needs a positive whole interval", field="frequency_value"
            )


def add_months(anchor: date, months: int) -> date:
    """Add calendar months, clamping to the last valid day (Jan 31 + 1 → Feb 28/29)"""
    month_index = anchor.month - 1 + months
    year = anchor.year + month_index // 12
    month = month_index % 12 + 1
    day = min(anchor.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def nth_occurrence(frequency: Frequency, start: date, k: int) -> date:
    """
    The k-th slot (k >= 0), always computed from the original start date so
    month-end clamping never accumulates drift.
    """
    if frequency.kind == FrequencyKind.ONE_TIME or k == 0:
        return start
    if frequency.unit in _MONTHS_PER_UNIT:
        return add_months(start, k * frequency.value * _MONTHS_PER_UNIT[frequency.unit])
    return start + timedelta(days=k * frequency.value * _DAYS_PER_UNIT[frequency.unit])


def occurrences(
    frequency: Frequency,
    start: date,
    end: Optional[date],
    through: date,
    existing: Container[date] = frozenset(),
    not_before: Optional[date] = None,
) -> Iterator[date]:
    """
    Yield, in order, every slot date d with start <= d <= min(end, through),
    d >= not_before (when given) and d not in `existing`.

    Restartable: each call builds a fresh generator from the same inputs.
    """
    frequency.validate()
    limit = through if end is None else min(end, through)
    if limit < start:
        return

    if frequency.kind == FrequencyKind.ONE_TIME:
        if start not in existing and (not_before is None or start >= not_before):
            yield start
        return

    k = 0
    while True:
        slot = nth_occurrence(frequency, start, k)
        if slot > limit:
            return
        if slot not in existing and (not_before is None or slot >= not_before):
            yield slot
        k += 1


def next_occurrence(
    frequency: Frequency, start: date, end: Optional[date], after: date
) -> Optional[date]:
    """First slot strictly after `after`, or None when the window has no more slots"""
    if frequency.kind == FrequencyKind.ONE_TIME:
        return start if start > after and (end is None or start <= end) else None
    k = 0
    while True:
        slot = nth_occurrence(frequency, start, k)
        if end is not None and slot > end:
            return None
        if slot > after:
            return slot
        k += 1
