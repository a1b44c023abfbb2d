"""Analytics router - maintenance dashboard"""

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_actor
from ...clock import Clock, get_clock
from ...database import get_db
from ...scope import Actor
from .schemas import CompletionTrendPoint, DashboardResponse
from .service import MaintenanceAnalyticsService

router = APIRouter(prefix="/maintenance/analytics", tags=["Maintenance Analytics"])


def get_analytics_service(
    db: Session = Depends(get_db), clock: Clock = Depends(get_clock)
) -> MaintenanceAnalyticsService:
    """Dependency injection for MaintenanceAnalyticsService"""
    return MaintenanceAnalyticsService(db, clock)


@router.get("/dashboard", response_model=DashboardResponse)
def get_dashboard(
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    refresh: bool = Query(False, description="Bypass the cached copy"),
    actor: Actor = Depends(get_current_actor),
    service: MaintenanceAnalyticsService = Depends(get_analytics_service),
):
    """Contract counts, health distribution, SLA and technician metrics, revenue"""
    return service.get_dashboard(actor, start, end, use_cache=not refresh)


@router.get("/completion-trend", response_model=List[CompletionTrendPoint])
def get_completion_trend(
    group_by: str = Query("week", description="day, week or month"),
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    refresh: bool = Query(False, description="Bypass the cached copy"),
    actor: Actor = Depends(get_current_actor),
    service: MaintenanceAnalyticsService = Depends(get_analytics_service),
):
    """Visit completion rate over time"""
    return service.get_completion_trend(actor, group_by, start, end, use_cache=not refresh)
