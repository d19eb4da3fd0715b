"""Analytics API: per-account sync analytics, health report, schedule and markdown report."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse

from mailsync.api.v1.dependencies import get_analytics_service, get_scheduling_service
from mailsync.infrastructure.services import AnalyticsService, SchedulingService
from mailsync.schemas.analytics import (
    AccountAnalyticsResponse,
    EfficiencyAnalysisSchema,
    HealthReportResponse,
    PeakPredictionSchema,
    ScheduleResponse,
    ScheduleSlotSchema,
)

router = APIRouter()


@router.get("/accounts/{account_id}", response_model=AccountAnalyticsResponse)
async def get_account_analytics(
    account_id: str,
    analytics: Annotated[AnalyticsService, Depends(get_analytics_service)],
    days: int = Query(7, ge=1, le=90),
):
    """Performance, patterns, efficiency and daily trends over the last `days`."""
    await analytics.ensure_account(account_id)
    result = await analytics.get_account_analytics(account_id, days)
    return AccountAnalyticsResponse.model_validate(result)


@router.get("/accounts/{account_id}/health-report", response_model=HealthReportResponse)
async def get_health_report(
    account_id: str,
    analytics: Annotated[AnalyticsService, Depends(get_analytics_service)],
):
    """healthy / degraded / critical with issues and recommendations."""
    report = await analytics.generate_health_report(account_id)
    return HealthReportResponse.model_validate(report)


@router.get("/accounts/{account_id}/schedule", response_model=ScheduleResponse)
async def get_schedule(
    account_id: str,
    analytics: Annotated[AnalyticsService, Depends(get_analytics_service)],
    scheduling: Annotated[SchedulingService, Depends(get_scheduling_service)],
):
    """Next sync time and priority, the hourly plan and the next expected peak."""
    await analytics.ensure_account(account_id)
    schedule = await scheduling.get_schedule(account_id)
    recommended = await scheduling.get_recommended_schedule(account_id)
    peak = await scheduling.predict_next_peak_time(account_id)
    efficiency = await scheduling.analyze_sync_efficiency(account_id)
    return ScheduleResponse(
        account_id=schedule.account_id,
        next_sync_at=schedule.next_sync_at,
        interval_minutes=schedule.interval_minutes,
        priority=schedule.priority,
        reason=schedule.reason,
        recommended=[ScheduleSlotSchema.model_validate(s) for s in recommended],
        next_peak=PeakPredictionSchema.model_validate(peak) if peak else None,
        efficiency=EfficiencyAnalysisSchema.model_validate(efficiency),
    )


@router.get("/accounts/{account_id}/report", response_class=PlainTextResponse)
async def get_performance_report(
    account_id: str,
    analytics: Annotated[AnalyticsService, Depends(get_analytics_service)],
    days: int = Query(30, ge=1, le=90),
) -> PlainTextResponse:
    """Markdown performance report."""
    await analytics.ensure_account(account_id)
    report = await analytics.generate_performance_report(account_id, days)
    return PlainTextResponse(report, media_type="text/markdown")
