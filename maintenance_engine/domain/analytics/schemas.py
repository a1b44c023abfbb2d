"""Analytics schemas - dashboard response models"""

from datetime import date
from typing import Dict, List, Optional

from pydantic import BaseModel


class ContractCounts(BaseModel):
    total: int
    active: int
    paused: int
    expiring_soon: int
    expired: int


class VisitMetrics(BaseModel):
    total: int
    completed: int
    overdue: int
    on_time: int
    missed: int
    completion_rate: float
    on_time_rate: float
    miss_rate: float
    average_response_time_hours: float  # scheduled slot -> actual start, completed visits
    average_visit_duration_minutes: float  # actual start -> actual end


class TechnicianPerformance(BaseModel):
    technician_id: int
    technician_name: str
    assigned_visits: int
    completed_visits: int
    efficiency: float  # completed / assigned
    total_cost: float
    cost_per_visit: float
    average_rating: Optional[float]


class MonthlyRevenue(BaseModel):
    month: str  # YYYY-MM
    revenue: float


class ContractRevenue(BaseModel):
    contract_id: int
    revenue: float
    visits_count: int


class CompletedVisitRevenue(BaseModel):
    total_revenue: float
    completed_visits: int
    average_visit_value: float
    by_contract: List[ContractRevenue]  # top contracts, highest revenue first


class DashboardResponse(BaseModel):
    period_start: date
    period_end: date
    contracts: ContractCounts
    health_distribution: Dict[str, int]
    visits: VisitMetrics
    visit_status_breakdown: Dict[str, int]
    technicians: List[TechnicianPerformance]
    revenue_by_month: List[MonthlyRevenue]
    completed_visit_revenue: CompletedVisitRevenue


class CompletionTrendPoint(BaseModel):
    period: str  # YYYY-MM-DD, YYYY-Www or YYYY-MM
    total_visits: int
    completed_visits: int
    completion_rate: float
