"""Pydantic schemas for request/response payloads."""

from datetime import date
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .analytics.errors import ValidationError
from .analytics.filters import AnalyticsFilters, GroupingDimension, Pagination
from .analytics.growth import GrowthPeriod


# Requests ----------------------------------------------------------

class AnalyticsFilterRequest(BaseModel):
    """Filters shared by every analytics endpoint.

    Field names are camelCase on the wire. Range and emptiness checks are
    done by the analytics validator so that every rejection carries the
    same error shape.
    """

    model_config = ConfigDict(populate_by_name=True)

    start_date: Optional[date] = Field(default=None, alias="startDate", description="Snapshot-pair start (inclusive)")
    end_date: Optional[date] = Field(default=None, alias="endDate", description="Snapshot-pair end (inclusive)")
    activity_type_ids: Optional[List[str]] = Field(default=None, alias="activityTypeIds")
    activity_category_ids: Optional[List[str]] = Field(default=None, alias="activityCategoryIds")
    geographic_area_ids: Optional[List[str]] = Field(
        default=None,
        alias="geographicAreaIds",
        description="Areas to filter by; descendants are included",
    )
    venue_ids: Optional[List[str]] = Field(default=None, alias="venueIds")
    population_ids: Optional[List[str]] = Field(default=None, alias="populationIds")

    def to_filters(self, group_by: Optional[List[str]] = None) -> AnalyticsFilters:
        return AnalyticsFilters(
            start_date=self.start_date,
            end_date=self.end_date,
            activity_type_ids=self.activity_type_ids,
            activity_category_ids=self.activity_category_ids,
            geographic_area_ids=self.geographic_area_ids,
            venue_ids=self.venue_ids,
            population_ids=self.population_ids,
            group_by=parse_group_by(group_by),
        )


class PaginatedRequest(AnalyticsFilterRequest):
    page: Optional[int] = Field(default=None, description="1-based page number")
    page_size: Optional[int] = Field(default=None, alias="pageSize", description="Rows per page, 1..1000")

    def to_pagination(self, default_page_size: int = Pagination.DEFAULT_PAGE_SIZE) -> Optional[Pagination]:
        if self.page is None and self.page_size is None:
            return None
        page_size = self.page_size if self.page_size is not None else default_page_size
        return Pagination(page=self.page, page_size=page_size)


class EngagementRequest(PaginatedRequest):
    """Payload for engagement metrics."""

    group_by: Optional[List[str]] = Field(
        default=None,
        alias="groupBy",
        description="Any of activityType, activityCategory, geographicArea, venue",
    )

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "startDate": "2024-01-10",
                "endDate": "2024-01-31",
                "activityTypeIds": ["2f0c1a5e-0d7b-4f7e-9a52-6d1d3c8e4b11"],
                "groupBy": ["activityType", "venue"],
                "page": 1,
                "pageSize": 50,
            }
        },
    )


class RoleDistributionRequest(AnalyticsFilterRequest):
    """Payload for role distribution."""


class GeographicBreakdownRequest(PaginatedRequest):
    """Payload for geographic breakdown."""

    parent_geographic_area_id: Optional[str] = Field(
        default=None,
        alias="parentGeographicAreaId",
        description="Report this area's children; omit for the root areas",
    )



class GrowthRequest(AnalyticsFilterRequest):
    """Payload for the growth time series."""

    period: GrowthPeriod = Field(default=GrowthPeriod.MONTH, description="DAY, WEEK, MONTH or YEAR")
    group_by: Optional[List[str]] = Field(
        default=None,
        alias="groupBy",
        description="Any of activityType, activityCategory, geographicArea, venue",
    )

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "startDate": "2024-01-01",
                "endDate": "2024-06-30",
                "period": "MONTH",
                "groupBy": ["activityType"],
            }
        },
    )

def parse_group_by(values: Optional[List[str]]) -> List[GroupingDimension]:
    dimensions = []
    for value in values or []:
        try:
            dimensions.append(GroupingDimension(value))
        except ValueError:
            raise ValidationError(
                f"Unsupported grouping dimension: {value}",
                field_name="groupBy",
                details={"allowed": [d.value for d in GroupingDimension]},
            )
    return dimensions


# Responses ---------------------------------------------------------

class LookupEntry(BaseModel):
    id: Optional[str] = Field(description="Null for the group of activities with no value")
    name: str


class PaginationMetadataSchema(BaseModel):
    page: int
    pageSize: int
    totalRecords: int
    totalPages: int
    hasNextPage: bool
    hasPreviousPage: bool


class EngagementMetadata(BaseModel):
    columns: List[str]
    groupingDimensions: List[str]
    hasDateRange: bool
    pagination: PaginationMetadataSchema


class EngagementResponse(BaseModel):
    """Compact engagement result: flat numeric rows plus lookups."""

    data: List[List[Union[int, float]]] = Field(description="Dimension indexes, then metrics")
    lookups: Dict[str, List[LookupEntry]]
    metadata: EngagementMetadata


class RoleDistributionMetadata(BaseModel):
    columns: List[str]


class RoleDistributionResponse(BaseModel):
    data: List[List[Union[int, float]]] = Field(description="[roleIndex, count] per role")
    lookups: Dict[str, List[LookupEntry]]
    metadata: RoleDistributionMetadata


class GeographicAreaEntry(BaseModel):
    id: str
    name: str
    areaType: Optional[str] = None
    hasChildren: bool = False


class GeographicBreakdownMetadata(BaseModel):
    columns: List[str]
    pagination: PaginationMetadataSchema


class GeographicBreakdownResponse(BaseModel):
    data: List[List[Union[int, float]]]
    lookups: Dict[str, List[GeographicAreaEntry]]
    metadata: GeographicBreakdownMetadata


class GrowthMetadata(BaseModel):
    columns: List[str]
    period: GrowthPeriod
    groupingDimensions: List[str]
    startDate: date
    endDate: date


class GrowthResponse(BaseModel):
    data: List[List[Optional[Union[int, float]]]] = Field(
        description="[periodIndex, dimension indexes..., metrics..., percentageChange]"
    )
    lookups: Dict[str, List[Dict[str, Optional[str]]]] = Field(
        description="periods plus one lookup array per grouping dimension"
    )
    metadata: GrowthMetadata


class ErrorBody(BaseModel):
    code: str
    message: str
    field: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class ErrorResponse(BaseModel):
    error: ErrorBody


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Service status", examples=["ok"])
