"""Pytest configuration for analytics HTTP tests

WHAT: Provides the application, a TestClient, and in-memory stand-ins for
the area tree and the query executor
WHY: Router tests exercise request parsing, dependency wiring and error
mapping without a PostgreSQL instance
REFERENCES:
    - engagement_analytics/main.py: FastAPI application
    - engagement_analytics/deps.py: Dependency injection
    - engagement_analytics/analytics/service.py: Pipelines behind the routes
"""

import os

import pytest
from fastapi.testclient import TestClient

# Set test environment
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")

from engagement_analytics import deps
from engagement_analytics.analytics.executor import ExecutionResult
from engagement_analytics.analytics.hierarchy import (
    AreaNode,
    AuthorizedAreaSet,
    GeographicHierarchyResolver,
)
from engagement_analytics.analytics.service import (
    EngagementAnalyticsService,
    GeographicBreakdownService,
    GrowthService,
    RoleDistributionService,
)
from engagement_analytics.analytics.telemetry import TelemetryCollector


# ============================================================================
# Fakes
# ============================================================================

AREA_TREE = {
    "country": None,
    "region-n": "country",
    "region-s": "country",
    "city-1": "region-n",
}


class InMemoryAreaRepository:
    """Area tree held in a parent map."""

    def __init__(self, parents=None):
        self.parents = parents or dict(AREA_TREE)

    def _node(self, area_id):
        return AreaNode(area_id, area_id.title(), "REGION", self.parents[area_id])

    def _subtree(self, area_id):
        result, frontier = {area_id}, {area_id}
        while frontier:
            frontier = {c for c, p in self.parents.items() if p in frontier}
            result |= frontier
        return result

    async def find_batch_descendants(self, area_ids):
        result = set()
        for area_id in area_ids:
            result |= self._subtree(area_id) - {area_id}
        return sorted(result)

    async def find_descendants_map(self, area_ids):
        return {area_id: self._subtree(area_id) for area_id in area_ids}

    async def find_all(self):
        return [self._node(a) for a in sorted(self.parents)]

    async def find_by_id(self, area_id):
        return self._node(area_id) if area_id in self.parents else None

    async def find_by_ids(self, area_ids):
        return [self._node(a) for a in sorted(area_ids) if a in self.parents]

    async def find_children(self, parent_id):
        return [self._node(c) for c, p in sorted(self.parents.items()) if p == parent_id]

    async def find_roots(self):
        return [self._node(a) for a, p in sorted(self.parents.items()) if p is None]


class CannedExecutor:
    """Returns fixed rows and records every query it is given."""

    def __init__(self):
        self.rows = []
        self.total_count = 0
        self.lookups = {}
        self.execute_rows = []
        self.queries = []

    async def execute_with_count(self, data_query, count_query):
        self.queries.append(data_query)
        return ExecutionResult(rows=list(self.rows), total_count=self.total_count)

    async def fetch_dimension_lookups(self, rows, dimensions):
        return {d: self.lookups.get(d, {}) for d in dimensions}

    async def execute(self, query):
        self.queries.append(query)
        return list(self.execute_rows)


# ============================================================================
# Application & Client Fixtures
# ============================================================================

@pytest.fixture
def executor():
    return CannedExecutor()


@pytest.fixture
def area_repository():
    return InMemoryAreaRepository()


@pytest.fixture
def app(executor, area_repository):
    """Create FastAPI test application with in-memory services."""
    from engagement_analytics.main import create_app

    test_app = create_app()
    telemetry = TelemetryCollector()
    resolver = GeographicHierarchyResolver(area_repository)

    test_app.dependency_overrides[deps.get_engagement_service] = lambda: EngagementAnalyticsService(
        resolver, executor, telemetry=telemetry
    )
    test_app.dependency_overrides[deps.get_role_distribution_service] = lambda: RoleDistributionService(
        resolver, executor, telemetry=telemetry
    )
    test_app.dependency_overrides[deps.get_geographic_breakdown_service] = lambda: GeographicBreakdownService(
        resolver, executor, repository=area_repository, telemetry=telemetry
    )
    test_app.dependency_overrides[deps.get_growth_service] = lambda: GrowthService(
        resolver, executor, telemetry=telemetry
    )
    test_app.dependency_overrides[deps.get_authorized_area_set] = AuthorizedAreaSet.unrestricted

    return test_app


@pytest.fixture
def client(app) -> TestClient:
    """Create TestClient for HTTP testing."""
    return TestClient(app)


@pytest.fixture
def restrict_to(app):
    """Switch the caller to a restricted authorized area set."""

    def _restrict(*area_ids):
        app.dependency_overrides[deps.get_authorized_area_set] = lambda: AuthorizedAreaSet.from_ids(area_ids)

    return _restrict
