"""
Geographic Hierarchy Resolver
=============================

**Version**: 1.0.0
**Status**: Active

Turns a request's explicit geographic filter plus the caller's authorized
area set into the concrete area scope a query may match.

WHY THIS FILE EXISTS
--------------------
Filtering by an area means filtering by the area and everything below it.
Callers may also be restricted to part of the tree. Both concerns meet
here, before any query is compiled:

    explicit ids   restricted   result
    ------------   ----------   ------------------------------------------
    given          no           explicit + descendants
    given          yes          every id must be authorized, else denied;
                                (explicit + descendants) & authorized
    none           yes          authorized set, unmodified
    none           no           no filter

The authorized set arrives already expanded and deny-subtracted by the
authorization layer. It is a different type from a raw id list and is
never expanded again.

RESOLUTION FLOW
---------------
    explicit ids --> authorization check --> batch descendant query
                 --> union with explicit --> intersect with authorized
                 --> ResolvedAreaScope

One recursive query fetches the descendants of every explicit id at once.

RELATED FILES
-------------
- engagement_analytics/analytics/filters.py: ResolvedAreaScope
- engagement_analytics/analytics/errors.py: AuthorizationDenied
- engagement_analytics/models.py: GeographicArea table
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Protocol, Set
import logging

from sqlalchemy import String, any_, bindparam, select
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.ext.asyncio import AsyncSession

from engagement_analytics.analytics.errors import AuthorizationDenied
from engagement_analytics.analytics.filters import AnalyticsFilters, ResolvedAreaScope
from engagement_analytics.models import GeographicArea


# =============================================================================
# LOGGING SETUP
# =============================================================================

logger = logging.getLogger(__name__)


# =============================================================================
# VALUE TYPES
# =============================================================================

@dataclass(frozen=True)
class AuthorizedAreaSet:
    """
    Areas a caller may see, as supplied by the authorization layer.

    ATTRIBUTES:
        area_ids: Allowed area ids (descendant-expanded, deny-subtracted)
        has_restrictions: False means the caller sees everything and
            area_ids is ignored
    """
    area_ids: FrozenSet[str]
    has_restrictions: bool

    @classmethod
    def unrestricted(cls) -> "AuthorizedAreaSet":
        return cls(area_ids=frozenset(), has_restrictions=False)

    @classmethod
    def from_ids(cls, area_ids: Iterable[str]) -> "AuthorizedAreaSet":
        return cls(area_ids=frozenset(area_ids), has_restrictions=True)

    def allows(self, area_id: str) -> bool:
        return not self.has_restrictions or area_id in self.area_ids


@dataclass(frozen=True)
class AreaNode:
    """One row of the area tree."""
    id: str
    name: str
    area_type: Optional[str]
    parent_id: Optional[str]


# =============================================================================
# REPOSITORY
# =============================================================================

class GeographicAreaRepository(Protocol):
    """Read-only access to the area tree."""

    async def find_batch_descendants(self, area_ids: List[str]) -> List[str]:
        ...

    async def find_descendants_map(self, area_ids: List[str]) -> Dict[str, Set[str]]:
        ...

    async def find_all(self) -> List[AreaNode]:
        ...

    async def find_by_id(self, area_id: str) -> Optional[AreaNode]:
        ...

    async def find_by_ids(self, area_ids: List[str]) -> List[AreaNode]:
        ...

    async def find_children(self, parent_id: str) -> List[AreaNode]:
        ...

    async def find_roots(self) -> List[AreaNode]:
        ...


def _id_array(name: str, ids: Iterable[str]):
    return bindparam(name, list(ids), type_=ARRAY(String))


def build_batch_descendants_query(area_ids: List[str]):
    """
    Recursive query returning every strict descendant of `area_ids`.

    The seed is the direct children of the inputs, so the inputs themselves
    are not part of the result.

        WITH RECURSIVE descendants(id) AS (
            SELECT id FROM geographic_areas
             WHERE parent_geographic_area_id = ANY(:area_ids)
            UNION ALL
            SELECT ga.id FROM geographic_areas ga
              JOIN descendants d ON ga.parent_geographic_area_id = d.id
        )
        SELECT DISTINCT id FROM descendants
    """
    areas = GeographicArea.__table__
    descendants = (
        select(areas.c.id)
        .where(areas.c.parent_geographic_area_id == any_(_id_array("area_ids", area_ids)))
        .cte("descendants", recursive=True)
    )
    previous = descendants.alias("d")
    descendants = descendants.union_all(
        select(areas.c.id).where(areas.c.parent_geographic_area_id == previous.c.id)
    )
    return select(descendants.c.id).distinct()


def build_descendants_map_query(area_ids: List[str]):
    """
    Recursive query returning (root_id, area_id) for each input and every
    area beneath it, the input itself included.
    """
    areas = GeographicArea.__table__
    closure = (
        select(areas.c.id.label("root_id"), areas.c.id.label("area_id"))
        .where(areas.c.id == any_(_id_array("area_ids", area_ids)))
        .cte("area_closure", recursive=True)
    )
    previous = closure.alias("c")
    closure = closure.union_all(
        select(previous.c.root_id, areas.c.id).where(
            areas.c.parent_geographic_area_id == previous.c.area_id
        )
    )
    return select(closure.c.root_id, closure.c.area_id)


def _to_node(row) -> AreaNode:
    area_type = row.area_type
    return AreaNode(
        id=row.id,
        name=row.name,
        area_type=getattr(area_type, "value", area_type),
        parent_id=row.parent_geographic_area_id,
    )


class SqlGeographicAreaRepository:
    """
    GeographicAreaRepository over the async SQLAlchemy session factory.

    Every call opens its own short-lived session; nothing is held across
    requests.
    """

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        self._session_factory = session_factory

    async def find_batch_descendants(self, area_ids: List[str]) -> List[str]:
        if not area_ids:
            return []
        async with self._session_factory() as session:
            result = await session.execute(build_batch_descendants_query(area_ids))
            descendants = [row[0] for row in result.all()]
        logger.debug(
            "[HIERARCHY] Expanded %d areas to %d descendants", len(area_ids), len(descendants)
        )
        return descendants

    async def find_descendants_map(self, area_ids: List[str]) -> Dict[str, Set[str]]:
        if not area_ids:
            return {}
        async with self._session_factory() as session:
            result = await session.execute(build_descendants_map_query(area_ids))
            mapping: Dict[str, Set[str]] = defaultdict(set)
            for root_id, area_id in result.all():
                mapping[root_id].add(area_id)
        return dict(mapping)

    async def find_all(self) -> List[AreaNode]:
        areas = GeographicArea.__table__
        async with self._session_factory() as session:
            result = await session.execute(select(areas).order_by(areas.c.name))
            return [_to_node(row) for row in result.all()]

    async def find_by_id(self, area_id: str) -> Optional[AreaNode]:
        areas = GeographicArea.__table__
        async with self._session_factory() as session:
            result = await session.execute(select(areas).where(areas.c.id == area_id))
            row = result.first()
        return _to_node(row) if row is not None else None

    async def find_by_ids(self, area_ids: List[str]) -> List[AreaNode]:
        if not area_ids:
            return []
        areas = GeographicArea.__table__
        async with self._session_factory() as session:
            result = await session.execute(
                select(areas)
                .where(areas.c.id == any_(_id_array("area_ids", area_ids)))
                .order_by(areas.c.name)
            )
            return [_to_node(row) for row in result.all()]

    async def find_children(self, parent_id: str) -> List[AreaNode]:
        areas = GeographicArea.__table__
        async with self._session_factory() as session:
            result = await session.execute(
                select(areas)
                .where(areas.c.parent_geographic_area_id == parent_id)
                .order_by(areas.c.name)
            )
            return [_to_node(row) for row in result.all()]

    async def find_roots(self) -> List[AreaNode]:
        areas = GeographicArea.__table__
        async with self._session_factory() as session:
            result = await session.execute(
                select(areas)
                .where(areas.c.parent_geographic_area_id.is_(None))
                .order_by(areas.c.name)
            )
            return [_to_node(row) for row in result.all()]


# =============================================================================
# RESOLVER
# =============================================================================

class GeographicHierarchyResolver:
    """
    Authorizes and expands geographic filters.

    WHAT: Produces the ResolvedAreaScope builders filter on.

    WHY: A caller must never see data outside their authorized set, and
         filtering by a parent area must include its subtree.

    USAGE:
        resolver = GeographicHierarchyResolver(SqlGeographicAreaRepository(AsyncSessionLocal))
        scope = await resolver.resolve(["area-1"], authorized)
        filters = filters.with_area_scope(scope)
    """

    def __init__(self, repository: GeographicAreaRepository):
        self.repository = repository

    async def resolve(
        self,
        explicit_area_ids: Optional[List[str]],
        authorized: AuthorizedAreaSet,
    ) -> ResolvedAreaScope:
        explicit = list(dict.fromkeys(explicit_area_ids or []))

        if explicit:
            self.authorize(explicit, authorized)
            descendants = await self.repository.find_batch_descendants(explicit)
            closure = set(explicit) | set(descendants)
            if authorized.has_restrictions:
                closure &= authorized.area_ids
            logger.info(
                "[HIERARCHY] Resolved %d explicit areas to %d areas (restricted=%s)",
                len(explicit), len(closure), authorized.has_restrictions,
            )
            return ResolvedAreaScope(area_ids=frozenset(closure))

        if authorized.has_restrictions:
            return ResolvedAreaScope(area_ids=authorized.area_ids)

        return ResolvedAreaScope.unfiltered()

    async def resolve_filters(
        self,
        filters: AnalyticsFilters,
        authorized: AuthorizedAreaSet,
    ) -> AnalyticsFilters:
        """Return `filters` with area_scope filled in."""
        scope = await self.resolve(filters.geographic_area_ids, authorized)
        return filters.with_area_scope(scope)

    def authorize(self, area_ids: List[str], authorized: AuthorizedAreaSet) -> None:
        """Raise AuthorizationDenied if any id is outside the authorized set."""
        if not authorized.has_restrictions:
            return
        denied = [area_id for area_id in area_ids if area_id not in authorized.area_ids]
        if denied:
            logger.warning(
                "[HIERARCHY] Denied geographic filter for %d of %d areas",
                len(denied), len(area_ids),
            )
            raise AuthorizationDenied(details={"deniedAreaIds": denied})
