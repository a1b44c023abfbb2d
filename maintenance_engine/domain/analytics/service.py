"""
Maintenance analytics - read-only rollups over contracts and visits

Everything is derived from current contract/visit rows at query time; the only
state is a short-lived Redis copy of each computed view.
"""

import logging
from collections import Counter, defaultdict
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from ...cache import build_analytics_key, cache
from ...clock import Clock, system_clock
from ...config import ANALYTICS_CACHE_TTL, EXPIRING_SOON_DAYS, ON_TIME_GRACE_MINUTES
from ...directories import Directory
from ...exceptions import ValidationError
from ...models import ContractStatus, MaintenanceContract
from ...models_visit import MaintenanceVisit, VisitStatus
from ...policy import Operation, authorize
from ...scope import Actor
from ..contracts.health import HealthLabel, compute_health
from ..contracts.repository import ContractRepository
from ..scheduling.recurrence import add_months
from ..visits.repository import VisitRepository
from .schemas import CompletionTrendPoint, DashboardResponse

logger = logging.getLogger(__name__)


TREND_GROUPINGS = ("day", "week", "month")
TOP_REVENUE_CONTRACTS = 10


def slot_start(visit: MaintenanceVisit) -> datetime:
    """Start of the scheduled slot; midnight when no time is set"""
    if visit.scheduled_time:
        hours, minutes = (int(part) for part in visit.scheduled_time.split(":"))
        return datetime.combine(visit.scheduled_date, time(hours, minutes))
    return datetime.combine(visit.scheduled_date, time.min)


def response_time_hours(visit: MaintenanceVisit) -> Optional[float]:
    """Hours from slot start to the actual start; an early start counts as zero"""
    if visit.actual_start_time is None:
        return None
    return max(0.0, (visit.actual_start_time - slot_start(visit)).total_seconds() / 3600)


def duration_minutes(visit: MaintenanceVisit) -> Optional[float]:
    if visit.actual_start_time is None or visit.actual_end_time is None:
        return None
    return (visit.actual_end_time - visit.actual_start_time).total_seconds() / 60


def average(values: Iterable[Optional[float]]) -> float:
    present = [value for value in values if value is not None]
    return round(sum(present) / len(present), 2) if present else 0.0


def period_key(day: date, group_by: str) -> str:
    """Bucket label for a date: 2026-01-05, 2026-W02 (ISO week) or 2026-01"""
    if group_by == "day":
        return day.isoformat()
    if group_by == "week":
        iso = day.isocalendar()
        return f"{iso[0]:04d}-W{iso[1]:02d}"
    return f"{day.year:04d}-{day.month:02d}"


def completed_visit_revenue(visits: Iterable[MaintenanceVisit], top: int = TOP_REVENUE_CONTRACTS) -> dict:
    """Billed cost of completed visits, in total and for the highest-earning contracts"""
    completed = [v for v in visits if v.status == VisitStatus.COMPLETED.value]
    by_contract: Dict[int, List[float]] = defaultdict(list)
    for visit in completed:
        by_contract[visit.contract_id].append(visit.total_cost or 0.0)
    total = sum(sum(costs) for costs in by_contract.values())
    rows = sorted(
        (
            {"contract_id": contract_id, "revenue": round(sum(costs), 2), "visits_count": len(costs)}
            for contract_id, costs in by_contract.items()
        ),
        key=lambda row: (-row["revenue"], row["contract_id"]),
    )
    return {
        "total_revenue": round(total, 2),
        "completed_visits": len(completed),
        "average_visit_value": round(total / len(completed), 2) if completed else 0.0,
        "by_contract": rows[:top],
    }


def is_on_time(visit: MaintenanceVisit, grace_minutes: int = ON_TIME_GRACE_MINUTES) -> bool:
    """Started no later than the scheduled slot (end of day when no time is set) plus grace"""
    if visit.actual_start_time is None:
        return False
    if visit.scheduled_time:
        slot = slot_start(visit)
    else:
        slot = datetime.combine(visit.scheduled_date, time(23, 59, 59))
    return visit.actual_start_time <= slot + timedelta(minutes=grace_minutes)


def month_span(start: date, end: date) -> List[Tuple[int, int]]:
    """(year, month) pairs touched by [start, end], in order"""
    months = []
    year, month = start.year, start.month
    while (year, month) <= (end.year, end.month):
        months.append((year, month))
        year, month = (year + 1, 1) if month == 12 else (year, month + 1)
    return months


def revenue_by_month(contracts: Iterable[MaintenanceContract], start: date, end: date) -> Dict[str, float]:
    """
    Spread each contract's value evenly over the calendar months of its window
    and keep the months that fall inside [start, end].

    Open-ended and cancelled contracts are not attributed.
    """
    wanted = set(month_span(start, end))
    totals: Dict[str, float] = {f"{y:04d}-{m:02d}": 0.0 for y, m in month_span(start, end)}
    for contract in contracts:
        if not contract.contract_value or contract.end_date is None:
            continue
        if contract.status == ContractStatus.CANCELLED.value:
            continue
        months = month_span(contract.start_date, contract.end_date)
        share = contract.contract_value / len(months)
        for year, month in months:
            if (year, month) in wanted:
                totals[f"{year:04d}-{month:02d}"] += share
    return {key: round(value, 2) for key, value in totals.items()}


class MaintenanceAnalyticsService:
    """Dashboard rollups for a scope and date range"""

    def __init__(self, db: Session, clock: Clock = system_clock):
        self.db = db
        self.clock = clock
        self.contract_repo = ContractRepository()
        self.visit_repo = VisitRepository()
        self.directory = Directory(db)

    def get_dashboard(
        self,
        actor: Actor,
        start: Optional[date] = None,
        end: Optional[date] = None,
        use_cache: bool = True,
    ) -> dict:
        """Full dashboard; defaults to the last 30 days"""
        authorize(actor, Operation.VIEW_ANALYTICS)
        today = self.clock.today()
        end = end or today
        start = start or end - timedelta(days=30)
        if end < start:
            raise ValidationError("end must not be before start", field="end")

        scope = actor.scope
        cache_key = build_analytics_key(scope.tenant_id, scope.branch_ids, start, end)
        if use_cache:
            cached = cache.get(cache_key)
            if cached is not None:
                return cached

        dashboard = self._compute(actor, start, end, today)
        if use_cache:
            cache.set(cache_key, dashboard, ANALYTICS_CACHE_TTL)
        return dashboard

    def get_completion_trend(
        self,
        actor: Actor,
        group_by: str = "week",
        start: Optional[date] = None,
        end: Optional[date] = None,
        use_cache: bool = True,
    ) -> List[dict]:
        """
        Completion rate per day, ISO week or month; defaults to the last 3 months.
        Cancelled visits are left out and periods without visits are omitted.
        """
        authorize(actor, Operation.VIEW_ANALYTICS)
        if group_by not in TREND_GROUPINGS:
            raise ValidationError(
                f"group_by must be one of: {', '.join(TREND_GROUPINGS)}", field="group_by"
            )
        end = end or self.clock.today()
        start = start or add_months(end, -3)
        if end < start:
            raise ValidationError("end must not be before start", field="end")

        scope = actor.scope
        cache_key = build_analytics_key(scope.tenant_id, scope.branch_ids, start, end, view=f"trend-{group_by}")
        if use_cache:
            cached = cache.get(cache_key)
            if cached is not None:
                return cached

        buckets: Dict[str, List[MaintenanceVisit]] = defaultdict(list)
        for visit in self.visit_repo.get_visits(self.db, scope, date_from=start, date_to=end):
            if visit.status != VisitStatus.CANCELLED.value:
                buckets[period_key(visit.scheduled_date, group_by)].append(visit)

        trend = []
        for period in sorted(buckets):
            total = len(buckets[period])
            completed = sum(1 for v in buckets[period] if v.status == VisitStatus.COMPLETED.value)
            point = CompletionTrendPoint(
                period=period,
                total_visits=total,
                completed_visits=completed,
                completion_rate=round(completed / total, 4),
            )
            trend.append(point.model_dump())

        if use_cache:
            cache.set(cache_key, trend, ANALYTICS_CACHE_TTL)
        return trend

    def _compute(self, actor: Actor, start: date, end: date, today: date) -> dict:
        scope = actor.scope
        contracts = self.contract_repo.get_contracts_with_visits(self.db, scope)
        visits = self.visit_repo.get_visits(self.db, scope, date_from=start, date_to=end)

        # Contracts
        expired = sum(
            1
            for c in contracts
            if c.status != ContractStatus.CANCELLED.value and c.end_date is not None and c.end_date < today
        )
        expiring = 0
        health_distribution = {label.value: 0 for label in HealthLabel}
        for contract in contracts:
            if contract.status not in (ContractStatus.ACTIVE.value, ContractStatus.PAUSED.value):
                continue
            health = compute_health(contract, contract.visits, today, EXPIRING_SOON_DAYS)
            health_distribution[health.health.value] += 1
            if health.is_expiring_soon and contract.status == ContractStatus.ACTIVE.value:
                expiring += 1
        statuses = Counter(c.status for c in contracts)
        contract_counts = {
            "total": len(contracts),
            "active": statuses.get(ContractStatus.ACTIVE.value, 0),
            "paused": statuses.get(ContractStatus.PAUSED.value, 0),
            "expiring_soon": expiring,
            "expired": expired,
        }

        # Visits in the period
        breakdown = {status.value: 0 for status in VisitStatus}
        breakdown.update(Counter(v.status for v in visits))
        live = [v for v in visits if v.status != VisitStatus.CANCELLED.value]
        completed = [v for v in live if v.status == VisitStatus.COMPLETED.value]
        on_time = [v for v in completed if is_on_time(v)]
        missed = [v for v in live if v.status == VisitStatus.MISSED.value]
        overdue = missed + [
            v for v in live if v.status == VisitStatus.SCHEDULED.value and v.scheduled_date < today
        ]
        visit_metrics = {
            "total": len(live),
            "completed": len(completed),
            "overdue": len(overdue),
            "on_time": len(on_time),
            "missed": len(missed),
            "completion_rate": round(len(completed) / max(1, len(live)), 4),
            "on_time_rate": round(len(on_time) / max(1, len(completed)), 4),
            "miss_rate": round(len(missed) / max(1, len(live)), 4),
            "average_response_time_hours": average(response_time_hours(v) for v in completed),
            "average_visit_duration_minutes": average(duration_minutes(v) for v in completed),
        }

        dashboard = {
            "period_start": start.isoformat(),
            "period_end": end.isoformat(),
            "contracts": contract_counts,
            "health_distribution": health_distribution,
            "visits": visit_metrics,
            "visit_status_breakdown": breakdown,
            "technicians": self._technician_performance(actor, live),
            "revenue_by_month": [
                {"month": month, "revenue": revenue}
                for month, revenue in revenue_by_month(contracts, start, end).items()
            ],
            "completed_visit_revenue": completed_visit_revenue(live),
        }
        logger.info(
            f"📊 Dashboard computed for tenant {scope.tenant_id} {start}..{end}: "
            f"{len(contracts)} contract(s), {len(visits)} visit(s)"
        )
        return DashboardResponse(**dashboard).model_dump(mode="json")

    def _technician_performance(self, actor: Actor, visits: List[MaintenanceVisit]) -> List[dict]:
        by_technician: Dict[int, List[MaintenanceVisit]] = defaultdict(list)
        for visit in visits:
            if visit.assigned_technician_id is not None:
                by_technician[visit.assigned_technician_id].append(visit)
        names = self.directory.technician_names(actor.scope, by_technician.keys())

        rows = []
        for technician_id in sorted(by_technician):
            assigned = by_technician[technician_id]
            completed = [v for v in assigned if v.status == VisitStatus.COMPLETED.value]
            total_cost = sum(v.total_cost or 0.0 for v in completed)
            ratings = [v.customer_rating for v in completed if v.customer_rating is not None]
            rows.append(
                {
                    "technician_id": technician_id,
                    "technician_name": names.get(technician_id, "Unknown"),
                    "assigned_visits": len(assigned),
                    "completed_visits": len(completed),
                    "efficiency": round(len(completed) / len(assigned), 4),
                    "total_cost": round(total_cost, 2),
                    "cost_per_visit": round(total_cost / len(completed), 2) if completed else 0.0,
                    "average_rating": round(sum(ratings) / len(ratings), 2) if ratings else None,
                }
            )
        return rows
