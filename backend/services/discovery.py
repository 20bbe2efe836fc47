"""
Discovery orchestration for completed routes.

A route is sent to the places resolver only the first time it is
discovered; afterwards its persisted discoveries are the source of truth.
Places picked up by nearby lookups during the walk (pings) are consolidated
into the same set, but do not count as a lookup of the route itself.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from domain.errors import InvalidPlaceLocation, PlacesUnavailable
from domain.models import (
    Discovery,
    DiscoveryContext,
    DiscoveryOrigin,
    DiscoveryStatus,
    RoutePoint,
    StandardPlace,
)
from services.discovery_store import DiscoveryStore
from services.places_client import PlacesResolver, get_default_places_resolver
from services.route_sampling import coerce_route_points, sample_route
from services.taxonomy import ALL_TYPES, DEFAULT_DISCOVERY_TYPES, allowed_tags, matches_any_filter
from settings import settings

logger = logging.getLogger(__name__)


@dataclass
class DiscoveryOutcome:
    route_id: str
    places: List[StandardPlace] = field(default_factory=list)
    resolver_called: bool = False
    unavailable: bool = False
    rejected: List[InvalidPlaceLocation] = field(default_factory=list)


def merge_place(existing: StandardPlace, incoming: StandardPlace) -> StandardPlace:
    """Fold a duplicate result into the first one seen: union of types, missing fields filled."""
    for tag in incoming.types:
        if tag not in existing.types:
            existing.types.append(tag)
    for attr in ("rating", "rating_count", "price_level", "address", "location"):
        if getattr(existing, attr) is None and getattr(incoming, attr) is not None:
            setattr(existing, attr, getattr(incoming, attr))
    if not existing.photos and incoming.photos:
        existing.photos = list(incoming.photos)
    return existing


def dedupe_places(places: Iterable[StandardPlace]) -> List[StandardPlace]:
    by_id: Dict[str, StandardPlace] = {}
    for place in places:
        if place.place_id in by_id:
            merge_place(by_id[place.place_id], place)
        else:
            by_id[place.place_id] = place
    return list(by_id.values())


def meets_min_rating(place: StandardPlace, min_rating: float) -> bool:
    # unrated places are kept
    return place.rating is None or place.rating >= min_rating


def lookup_types(filters: Sequence[str]) -> Tuple[Optional[List[str]], Optional[List[str]]]:
    """
    Tags for one nearby request covering every filter, and the canonical
    tag of each filter. Both are None when any filter is ``all``.
    """
    if ALL_TYPES in filters:
        return None, None
    tags: List[str] = []
    primary: List[str] = []
    for type_filter in filters:
        allowed = allowed_tags(type_filter)
        for tag in allowed:
            if tag not in tags:
                tags.append(tag)
        if allowed and allowed[0] not in primary:
            primary.append(allowed[0])
    return tags, primary


class DiscoveryOrchestrator:
    def __init__(
        self,
        store: DiscoveryStore,
        resolver: Optional[PlacesResolver] = None,
        radius_m: Optional[float] = None,
        max_samples: Optional[int] = None,
        field_profile: str = "search-standard",
    ):
        self.store = store
        self.resolver = resolver or get_default_places_resolver()
        self.radius_m = radius_m or settings.DISCOVERY_RADIUS_M
        self.max_samples = max_samples or settings.DISCOVERY_MAX_SAMPLES
        self.field_profile = field_profile

    def discover_for_route(
        self,
        ctx: DiscoveryContext,
        route_id: str,
        route_coords: Sequence[Any],
        type_filters: Optional[Sequence[str]] = None,
        language: Optional[str] = None,
    ) -> List[StandardPlace]:
        """Return the unreviewed places for a route, resolving them on first use."""
        return self.run_discovery(ctx, route_id, route_coords, type_filters, language).places

    def run_discovery(
        self,
        ctx: DiscoveryContext,
        route_id: str,
        route_coords: Sequence[Any],
        type_filters: Optional[Sequence[str]] = None,
        language: Optional[str] = None,
    ) -> DiscoveryOutcome:
        existing = self.store.load_route_discoveries(ctx, route_id)
        if existing.route_resolved:
            logger.debug(
                "Route %s already discovered (%d records); skipping places lookup",
                route_id,
                len(existing),
            )
            return DiscoveryOutcome(
                route_id=route_id,
                places=[d.snapshot for d in existing.unreviewed()],
            )
        if not existing.is_empty:
            logger.debug(
                "Route %s has %d ping or manual record(s) but was never looked up",
                route_id,
                len(existing),
            )

        filters = list(type_filters or ctx.default_type_filters or DEFAULT_DISCOVERY_TYPES)
        points = sample_route(coerce_route_points(route_coords), self.radius_m, self.max_samples)
        outcome = DiscoveryOutcome(route_id=route_id)
        if not points:
            logger.info("Route %s has no usable coordinates; nothing to discover", route_id)
            outcome.places = [d.snapshot for d in existing.unreviewed()]
            return outcome

        outcome.resolver_called = True
        try:
            candidates = self._resolve_along(points, filters, language or ctx.language)
        except PlacesUnavailable as exc:
            logger.warning("Places lookup unavailable for route %s: %s", route_id, exc.errors)
            outcome.unavailable = True
            return outcome

        survivors = [
            p for p in candidates
            if matches_any_filter(p, filters) and meets_min_rating(p, ctx.min_rating)
        ]
        logger.info(
            "Route %s: %d sample point(s), %d unique place(s), %d after filters %s (min rating %.1f)",
            route_id,
            len(points),
            len(candidates),
            len(survivors),
            filters,
            ctx.min_rating,
        )
        self._persist(ctx, route_id, survivors, DiscoveryOrigin.ROUTE, outcome)
        # records the route already had stay in its set
        returned = {p.place_id for p in outcome.places}
        outcome.places.extend(d.snapshot for d in existing.unreviewed() if d.place_id not in returned)
        return outcome

    def consolidate(
        self,
        ctx: DiscoveryContext,
        route_id: str,
        places: Iterable[StandardPlace],
        type_filters: Optional[Sequence[str]] = None,
    ) -> DiscoveryOutcome:
        """
        Fold places found by nearby lookups during the walk into the route's set.

        Duplicates are merged, the minimum rating and any type filters apply,
        and places the route already has keep their record and status. The
        route still counts as never looked up, so a later ``run_discovery``
        resolves it as usual.
        """
        filters = list(type_filters or [])
        candidates = dedupe_places(places)
        survivors = [
            p for p in candidates
            if (not filters or matches_any_filter(p, filters)) and meets_min_rating(p, ctx.min_rating)
        ]
        logger.info(
            "Route %s: consolidating %d ping place(s), %d kept",
            route_id,
            len(candidates),
            len(survivors),
        )
        outcome = DiscoveryOutcome(route_id=route_id)
        self._persist(ctx, route_id, survivors, DiscoveryOrigin.PING, outcome)
        return outcome

    def _persist(
        self,
        ctx: DiscoveryContext,
        route_id: str,
        places: List[StandardPlace],
        origin: DiscoveryOrigin,
        outcome: DiscoveryOutcome,
    ) -> None:
        for place in places:
            if not place.has_valid_location:
                logger.warning("Rejecting place %s (%s): no coordinates", place.place_id, place.name)
                outcome.rejected.append(InvalidPlaceLocation(place.place_id, place.name))
                continue
            stored = self.store.create_discovery(
                ctx,
                Discovery(
                    discovery_id=Discovery.generate_id(),
                    user_id=ctx.user_id,
                    route_id=route_id,
                    place_id=place.place_id,
                    snapshot=place,
                    status=DiscoveryStatus.UNREVIEWED,
                    discovered_at=ctx.now(),
                    origin=origin,
                ),
            ).effective(ctx.now())
            if stored.status == DiscoveryStatus.UNREVIEWED:
                outcome.places.append(stored.snapshot)

    def _resolve_along(
        self, points: List[RoutePoint], filters: List[str], language: str
    ) -> List[StandardPlace]:
        # one lookup per sample point covers every filter
        tags, primary = lookup_types(filters)
        results: List[StandardPlace] = []
        for point in points:
            results.extend(
                self.resolver.resolve_nearby(
                    point,
                    radius_m=self.radius_m,
                    type_filter=tags,
                    field_profile=self.field_profile,
                    language=language,
                    primary_types=primary,
                )
            )
        return dedupe_places(results)
