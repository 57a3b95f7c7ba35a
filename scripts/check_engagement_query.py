"""Run the exact engagement query the dashboard uses.

Usage:
    python scripts/check_engagement_query.py 2024-01-10 2024-01-31 [activityType|venue|...]

Without dates the current-snapshot query is run.
"""
import sys
from datetime import date

from engagement_analytics.analytics.compiler import EngagementQueryCompiler
from engagement_analytics.analytics.filters import AnalyticsFilters, GroupingDimension
from engagement_analytics.database import get_sync_session


args = sys.argv[1:]
start_date = end_date = None
if len(args) >= 2:
    start_date = date.fromisoformat(args[0])
    end_date = date.fromisoformat(args[1])
    args = args[2:]

filters = AnalyticsFilters(
    start_date=start_date,
    end_date=end_date,
    group_by=[GroupingDimension(value) for value in args],
)
compilation = EngagementQueryCompiler().compile(filters)

print("Engagement query:")
print(compilation.data_query.sql)
print(f"\nParameters: {compilation.data_query.parameters}")

with get_sync_session() as db:
    rows = db.execute(compilation.data_query.statement).mappings().all()
    total = db.execute(compilation.count_query.statement).scalar()

    print(f"\n{total} rows (first is the total across all groups):")
    for row in rows:
        print("  " + ", ".join(f"{key}={value}" for key, value in row.items()))

