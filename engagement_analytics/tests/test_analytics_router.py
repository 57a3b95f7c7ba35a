"""Tests for the analytics endpoints.

WHAT: Tests /analytics/engagement, /analytics/role-distribution,
/analytics/geographic-breakdown and /analytics/growth through the FastAPI stack
WHY: Dashboards rely on the camelCase request fields, the compact response
shape and the {"error": {...}} failure shape

REFERENCES:
  - engagement_analytics/routers/analytics.py: Route handlers
  - engagement_analytics/main.py: Error handlers
  - engagement_analytics/schemas.py: Request/response models
"""

from engagement_analytics import deps
from engagement_analytics.analytics.filters import GroupingDimension


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestEngagementEndpoint:
    def test_returns_compact_payload(self, client, executor):
        executor.rows = [
            {"activity_type_id": None, "activeActivities": 2, "uniqueParticipants": 3,
             "totalParticipation": 4, "activitiesStarted": 2, "activitiesCompleted": 0},
            {"activity_type_id": "t-1", "activeActivities": 2, "uniqueParticipants": 3,
             "totalParticipation": 4, "activitiesStarted": 2, "activitiesCompleted": 0},
        ]
        executor.total_count = 2
        executor.lookups = {GroupingDimension.ACTIVITY_TYPE: {"t-1": "Study Circle"}}

        response = client.post("/analytics/engagement", json={"groupBy": ["activityType"]})

        assert response.status_code == 200
        body = response.json()
        assert body["data"] == [[-1, 2, 3, 4, 2, 0], [0, 2, 3, 4, 2, 0]]
        assert body["lookups"] == {"activityTypes": [{"id": "t-1", "name": "Study Circle"}]}
        assert body["metadata"]["columns"][0] == "activityTypeIndex"
        assert body["metadata"]["groupingDimensions"] == ["activityType"]
        assert body["metadata"]["hasDateRange"] is False
        assert body["metadata"]["pagination"]["totalRecords"] == 2

    def test_date_range_and_pagination_reach_the_query(self, client, executor):
        response = client.post(
            "/analytics/engagement",
            json={"startDate": "2024-01-10", "endDate": "2024-01-31", "page": 2, "pageSize": 50},
        )

        assert response.status_code == 200
        query = executor.queries[0]
        assert query.limit == 50
        assert query.offset == 50
        assert response.json()["metadata"]["hasDateRange"] is True
        assert response.json()["metadata"]["pagination"]["page"] == 2

    def test_page_without_page_size_uses_default(self, client, executor):
        response = client.post("/analytics/engagement", json={"page": 1})

        assert response.status_code == 200
        assert executor.queries[0].limit == 100

    def test_page_zero_is_validation_error(self, client, executor):
        response = client.post("/analytics/engagement", json={"page": 0, "pageSize": 10})

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["field"] == "page"
        assert executor.queries == []

    def test_empty_filter_array_is_validation_error(self, client):
        response = client.post("/analytics/engagement", json={"venueIds": []})

        assert response.status_code == 400
        assert response.json()["error"]["field"] == "venueIds"

    def test_unknown_grouping_dimension(self, client):
        response = client.post("/analytics/engagement", json={"groupBy": ["region"]})

        assert response.status_code == 400
        assert response.json()["error"]["field"] == "groupBy"

    def test_malformed_date_is_validation_error(self, client):
        response = client.post("/analytics/engagement", json={"startDate": "not-a-date"})

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["field"] == "startDate"

    def test_denied_area_is_forbidden(self, client, executor, restrict_to):
        restrict_to("region-n", "city-1")

        response = client.post("/analytics/engagement", json={"geographicAreaIds": ["region-s"]})

        assert response.status_code == 403
        error = response.json()["error"]
        assert error["code"] == "GEOGRAPHIC_AUTHORIZATION_DENIED"
        assert error["details"] == {"deniedAreaIds": ["region-s"]}
        assert executor.queries == []

    def test_unauthenticated_request(self, app, client):
        app.dependency_overrides.pop(deps.get_authorized_area_set)

        response = client.post("/analytics/engagement", json={})

        assert response.status_code == 401


class TestRoleDistributionEndpoint:
    def test_returns_roles(self, client, executor):
        executor.execute_rows = []

        response = client.post("/analytics/role-distribution", json={})

        assert response.status_code == 200
        body = response.json()
        assert body["data"] == []
        assert body["lookups"] == {"roles": []}
        assert body["metadata"]["columns"] == ["roleIndex", "count"]


class TestGeographicBreakdownEndpoint:
    def test_children_of_parent(self, client, executor):
        executor.rows = [
            {"area_id": "region-n", "activity_count": 3, "participant_count": 5, "participation_count": 6},
        ]
        executor.total_count = 1

        response = client.post(
            "/analytics/geographic-breakdown", json={"parentGeographicAreaId": "country"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["data"] == [[0, 3, 5, 6]]
        assert body["lookups"]["geographicAreas"] == [
            {"id": "region-n", "name": "Region-N", "areaType": "REGION", "hasChildren": True}
        ]

    def test_unknown_parent(self, client):
        response = client.post(
            "/analytics/geographic-breakdown", json={"parentGeographicAreaId": "nowhere"}
        )

        assert response.status_code == 400
        assert response.json()["error"]["field"] == "parentGeographicAreaId"


class TestGrowthEndpoint:
    def test_monthly_series(self, client, executor):
        executor.execute_rows = [
            {"period_index": 0, "uniqueActivities": 2, "uniqueParticipants": 4, "totalParticipation": 9},
            {"period_index": 1, "uniqueActivities": 3, "uniqueParticipants": 5, "totalParticipation": 12},
        ]

        response = client.post(
            "/analytics/growth",
            json={"startDate": "2024-01-15", "endDate": "2024-02-10", "period": "MONTH"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["data"] == [[0, 2, 4, 9, None], [1, 3, 5, 12, 25.0]]
        assert body["lookups"]["periods"] == [
            {"label": "2024-01", "startDate": "2024-01-15", "endDate": "2024-01-31"},
            {"label": "2024-02", "startDate": "2024-02-01", "endDate": "2024-02-10"},
        ]
        assert body["metadata"]["period"] == "MONTH"
        assert body["metadata"]["columns"] == [
            "periodIndex", "uniqueActivities", "uniqueParticipants", "totalParticipation", "percentageChange",
        ]

    def test_grouped_series_has_lookups(self, client, executor):
        executor.execute_rows = [
            {"period_index": 0, "activity_type_id": "t-1", "uniqueActivities": 1,
             "uniqueParticipants": 2, "totalParticipation": 2},
        ]
        executor.lookups = {GroupingDimension.ACTIVITY_TYPE: {"t-1": "Study Circle"}}

        response = client.post(
            "/analytics/growth",
            json={"startDate": "2024-01-01", "endDate": "2024-12-31", "period": "YEAR",
                  "groupBy": ["activityType"]},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["data"] == [[0, 0, 1, 2, 2, None]]
        assert body["lookups"]["activityTypes"] == [{"id": "t-1", "name": "Study Circle"}]
        assert body["metadata"]["groupingDimensions"] == ["activityType"]

    def test_unknown_period_is_validation_error(self, client, executor):
        response = client.post("/analytics/growth", json={"period": "FORTNIGHT"})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"
        assert executor.queries == []

    def test_too_many_periods_is_validation_error(self, client, executor):
        response = client.post(
            "/analytics/growth",
            json={"startDate": "2000-01-01", "endDate": "2024-12-31", "period": "DAY"},
        )

        assert response.status_code == 400
        assert response.json()["error"]["field"] == "period"
        assert executor.queries == []
