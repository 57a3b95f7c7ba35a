"""Dependency providers and settings management."""

from functools import lru_cache
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from pydantic_settings import BaseSettings, SettingsConfigDict

from .analytics.executor import QueryExecutor
from .analytics.hierarchy import (
    AuthorizedAreaSet,
    GeographicHierarchyResolver,
    SqlGeographicAreaRepository,
)
from .analytics.service import (
    EngagementAnalyticsService,
    GeographicBreakdownService,
    GrowthService,
    RoleDistributionService,
)


class Settings(BaseSettings):
    """Application settings loaded from environment or .env."""

    DATABASE_URL: Optional[str] = None
    BACKEND_CORS_ORIGINS: str = "http://localhost:3000"
    ENVIRONMENT: str = "development"
    SENTRY_DSN: Optional[str] = None

    # Query execution
    ANALYTICS_QUERY_TIMEOUT_SECONDS: float = 30.0
    ANALYTICS_MAX_ATTEMPTS: int = 3
    ANALYTICS_RETRY_BASE_DELAY_MS: int = 100

    # Pagination
    ANALYTICS_MAX_PAGE_SIZE: int = 1000
    ANALYTICS_DEFAULT_PAGE_SIZE: int = 100

    # Bulk attendance is attributed to this role in the role distribution
    DEFAULT_PARTICIPATION_ROLE_NAME: str = "Participant"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def cors_origins(self) -> list:
        return [origin.strip() for origin in self.BACKEND_CORS_ORIGINS.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()  # type: ignore[call-arg]


def get_authorized_area_set(request: Request) -> AuthorizedAreaSet:
    """Authorized areas attached to the request by the auth middleware.

    The middleware stores an AuthorizedAreaSet on `request.state.authorized_areas`.
    Its absence means the request never went through authentication.
    """
    authorized = getattr(request.state, "authorized_areas", None)
    if not isinstance(authorized, AuthorizedAreaSet):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return authorized


def _session_factory():
    from .database import AsyncSessionLocal

    if AsyncSessionLocal is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Analytics requires a PostgreSQL DATABASE_URL",
        )
    return AsyncSessionLocal


def get_query_executor(settings: Settings = Depends(get_settings)) -> QueryExecutor:
    return QueryExecutor(
        _session_factory(),
        timeout_seconds=settings.ANALYTICS_QUERY_TIMEOUT_SECONDS,
        max_attempts=settings.ANALYTICS_MAX_ATTEMPTS,
        base_delay_ms=settings.ANALYTICS_RETRY_BASE_DELAY_MS,
    )


def get_area_repository() -> SqlGeographicAreaRepository:
    return SqlGeographicAreaRepository(_session_factory())


def get_hierarchy_resolver(
    repository: SqlGeographicAreaRepository = Depends(get_area_repository),
) -> GeographicHierarchyResolver:
    return GeographicHierarchyResolver(repository)


def get_engagement_service(
    resolver: GeographicHierarchyResolver = Depends(get_hierarchy_resolver),
    executor: QueryExecutor = Depends(get_query_executor),
    settings: Settings = Depends(get_settings),
) -> EngagementAnalyticsService:
    return EngagementAnalyticsService(
        resolver, executor, max_page_size=settings.ANALYTICS_MAX_PAGE_SIZE
    )


def get_role_distribution_service(
    resolver: GeographicHierarchyResolver = Depends(get_hierarchy_resolver),
    executor: QueryExecutor = Depends(get_query_executor),
    settings: Settings = Depends(get_settings),
) -> RoleDistributionService:
    return RoleDistributionService(
        resolver,
        executor,
        max_page_size=settings.ANALYTICS_MAX_PAGE_SIZE,
        default_role_name=settings.DEFAULT_PARTICIPATION_ROLE_NAME,
    )


def get_geographic_breakdown_service(
    repository: SqlGeographicAreaRepository = Depends(get_area_repository),
    executor: QueryExecutor = Depends(get_query_executor),
    settings: Settings = Depends(get_settings),
) -> GeographicBreakdownService:
    return GeographicBreakdownService(
        GeographicHierarchyResolver(repository),
        executor,
        repository=repository,
        max_page_size=settings.ANALYTICS_MAX_PAGE_SIZE,
    )


def get_growth_service(
    resolver: GeographicHierarchyResolver = Depends(get_hierarchy_resolver),
    executor: QueryExecutor = Depends(get_query_executor),
    settings: Settings = Depends(get_settings),
) -> GrowthService:
    return GrowthService(resolver, executor, max_page_size=settings.ANALYTICS_MAX_PAGE_SIZE)
