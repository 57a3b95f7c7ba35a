"""
Engagement Analytics Router
===========================

WHAT:
    HTTP surface of the analytics engine: engagement metrics, role
    distribution, geographic breakdown and growth over time.

WHY:
    Dashboards need grouped, paginated metrics in one request, computed in
    the database and shipped in a compact format.

USAGE:
    POST /analytics/engagement
        {"startDate": "2024-01-10", "endDate": "2024-01-31",
         "groupBy": ["activityType"], "page": 2, "pageSize": 50}
    POST /analytics/role-distribution
        {"geographicAreaIds": ["..."]}
    POST /analytics/geographic-breakdown
        {"parentGeographicAreaId": "..."}
    POST /analytics/growth
        {"startDate": "2024-01-01", "endDate": "2024-06-30", "period": "WEEK"}

ERRORS:
    Every failure is returned as {"error": {"code", "message", ...}}; see
    engagement_analytics/main.py for the exception handlers.

REFERENCES:
    - engagement_analytics/analytics/service.py: Pipelines behind each route
    - engagement_analytics/deps.py: Service and authorization dependencies
"""

import logging

from fastapi import APIRouter, Depends

from engagement_analytics import schemas
from engagement_analytics.analytics.hierarchy import AuthorizedAreaSet
from engagement_analytics.analytics.service import (
    EngagementAnalyticsService,
    GeographicBreakdownService,
    GrowthService,
    RoleDistributionService,
)
from engagement_analytics.deps import (
    Settings,
    get_authorized_area_set,
    get_engagement_service,
    get_geographic_breakdown_service,
    get_growth_service,
    get_role_distribution_service,
    get_settings,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analytics", tags=["analytics"])

ERROR_RESPONSES = {
    400: {"model": schemas.ErrorResponse, "description": "Invalid request"},
    401: {"description": "Not authenticated"},
    403: {"model": schemas.ErrorResponse, "description": "Geographic area not authorized"},
    500: {"model": schemas.ErrorResponse, "description": "Database or internal error"},
    504: {"model": schemas.ErrorResponse, "description": "Query timed out"},
}


@router.post(
    "/engagement",
    response_model=schemas.EngagementResponse,
    responses=ERROR_RESPONSES,
    summary="Engagement metrics",
    description="""
    Activity and participation counts at the start and end of a date range
    (or today), plus activities started and completed, optionally grouped.

    The first row is always the total across all groups.
    """,
)
async def get_engagement(
    body: schemas.EngagementRequest,
    authorized: AuthorizedAreaSet = Depends(get_authorized_area_set),
    service: EngagementAnalyticsService = Depends(get_engagement_service),
    settings: Settings = Depends(get_settings),
):
    filters = body.to_filters(body.group_by)
    pagination = body.to_pagination(settings.ANALYTICS_DEFAULT_PAGE_SIZE)
    wire = await service.get_engagement_metrics(filters, authorized, pagination)
    return wire.to_dict()


@router.post(
    "/role-distribution",
    response_model=schemas.RoleDistributionResponse,
    responses=ERROR_RESPONSES,
    summary="Participation by role",
)
async def get_role_distribution(
    body: schemas.RoleDistributionRequest,
    authorized: AuthorizedAreaSet = Depends(get_authorized_area_set),
    service: RoleDistributionService = Depends(get_role_distribution_service),
):
    distribution = await service.get_role_distribution(body.to_filters(), authorized)
    return distribution.to_dict()


@router.post(
    "/geographic-breakdown",
    response_model=schemas.GeographicBreakdownResponse,
    responses=ERROR_RESPONSES,
    summary="Engagement per geographic area",
)
async def get_geographic_breakdown(
    body: schemas.GeographicBreakdownRequest,
    authorized: AuthorizedAreaSet = Depends(get_authorized_area_set),
    service: GeographicBreakdownService = Depends(get_geographic_breakdown_service),
    settings: Settings = Depends(get_settings),
):
    breakdown = await service.get_geographic_breakdown(
        body.to_filters(),
        authorized,
        parent_area_id=body.parent_geographic_area_id,
        pagination=body.to_pagination(settings.ANALYTICS_DEFAULT_PAGE_SIZE),
    )
    return breakdown.to_dict()


@router.post(
    "/growth",
    response_model=schemas.GrowthResponse,
    responses=ERROR_RESPONSES,
    summary="Growth over time",
    description="""
    Activities, distinct participants and total participation per day,
    week, month or year, optionally grouped. A missing endDate means today,
    a missing startDate means 1 January of last year.
    """,
)
async def get_growth(
    body: schemas.GrowthRequest,
    authorized: AuthorizedAreaSet = Depends(get_authorized_area_set),
    service: GrowthService = Depends(get_growth_service),
):
    growth = await service.get_growth_metrics(body.to_filters(body.group_by), authorized, body.period)
    return growth.to_dict()
