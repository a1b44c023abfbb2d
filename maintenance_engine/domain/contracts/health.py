"""Contract health - derived on read, never stored"""

import enum
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

from ...config import EXPIRING_SOON_DAYS
from ...models import MaintenanceContract
from ...models_visit import MaintenanceVisit, VisitStatus


class HealthLabel(str, enum.Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class ContractHealth:
    contract_id: int
    completed_visits: int
    total_visits: int
    completion_rate: float  # 0.0 - 1.0
    days_until_expiry: Optional[int]
    is_expiring_soon: bool
    is_expired: bool
    health: HealthLabel

    def to_dict(self) -> dict:
        return {
            "contract_id": self.contract_id,
            "completed_visits": self.completed_visits,
            "total_visits": self.total_visits,
            "completion_rate": round(self.completion_rate, 4),
            "days_until_expiry": self.days_until_expiry,
            "is_expiring_soon": self.is_expiring_soon,
            "is_expired": self.is_expired,
            "health": self.health.value,
        }


def classify(completion_rate: float, is_expiring_soon: bool, is_expired: bool) -> HealthLabel:
    # Expiry proximity overrides completion rate
    if is_expired:
        return HealthLabel.CRITICAL
    if is_expiring_soon:
        return HealthLabel.WARNING
    if completion_rate >= 0.9:
        return HealthLabel.EXCELLENT
    if completion_rate >= 0.7:
        return HealthLabel.GOOD
    if completion_rate >= 0.4:
        return HealthLabel.WARNING
    return HealthLabel.CRITICAL


def compute_health(
    contract: MaintenanceContract,
    visits: Iterable[MaintenanceVisit],
    today: date,
    expiring_soon_days: int = EXPIRING_SOON_DAYS,
) -> ContractHealth:
    """
    completion_rate = completed / max(1, visits due through today).

    Cancelled visits are not due. A visit completed ahead of its date still counts
    as due so the rate never exceeds 1.
    """
    completed = 0
    due = 0
    for visit in visits:
        if visit.status == VisitStatus.CANCELLED.value:
            continue
        is_completed = visit.status == VisitStatus.COMPLETED.value
        if is_completed:
            completed += 1
        if is_completed or visit.scheduled_date <= today:
            due += 1

    completion_rate = completed / max(1, due)

    days_until_expiry = (contract.end_date - today).days if contract.end_date else None
    is_expired = days_until_expiry is not None and days_until_expiry < 0
    is_expiring_soon = days_until_expiry is not None and 0 <= days_until_expiry <= expiring_soon_days

    return ContractHealth(
        contract_id=contract.id,
        completed_visits=completed,
        total_visits=due,
        completion_rate=completion_rate,
        days_until_expiry=days_until_expiry,
        is_expiring_soon=is_expiring_soon,
        is_expired=is_expired,
        health=classify(completion_rate, is_expiring_soon, is_expired),
    )
