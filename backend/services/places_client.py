"""
Places resolver covering both generations of the Places lookup service.

Each generation is a strategy; the resolver tries them in order and the
first success wins. Responses are validated against the schemas in
``services.places_types`` and normalized into ``StandardPlace`` records.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

import requests
from pydantic import ValidationError

from domain.errors import PlacesUnavailable
from domain.models import LatLng, RoutePoint, StandardPlace, UNKNOWN_TYPE
from services.places_types import (
    FieldProfile,
    LegacyDetailsResponse,
    LegacyPlacePayload,
    LegacySearchResponse,
    NewPlacePayload,
    NewSearchResponse,
    get_field_profile,
)
from settings import settings

logger = logging.getLogger(__name__)
_session = requests.Session()

NEW_PRICE_LEVELS = {
    "PRICE_LEVEL_FREE": 0,
    "PRICE_LEVEL_INEXPENSIVE": 1,
    "PRICE_LEVEL_MODERATE": 2,
    "PRICE_LEVEL_EXPENSIVE": 3,
    "PRICE_LEVEL_VERY_EXPENSIVE": 4,
}
MAX_INCLUDED_TYPES = 50
MAX_REVIEWS = 3
UNKNOWN_PLACE_NAME = "Unknown Place"


class StrategyError(Exception):
    """A single generation failed; the resolver moves on to the next one."""


@dataclass
class ResolveAttempt:
    strategy: str
    places: List[StandardPlace] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _union_places(batches: Iterable[List[StandardPlace]]) -> List[StandardPlace]:
    seen = set()
    places: List[StandardPlace] = []
    for batch in batches:
        for place in batch:
            if place.place_id not in seen:
                seen.add(place.place_id)
                places.append(place)
    return places


def _decode_json(resp: requests.Response) -> Any:
    if not resp.ok:
        raise StrategyError(f"HTTP {resp.status_code}: {resp.text[:200]}")
    if not resp.content:
        raise StrategyError("empty response body")
    try:
        return resp.json()
    except ValueError as exc:
        raise StrategyError(f"malformed JSON body: {exc}") from exc


def _normalize_types(types: Sequence[str]) -> List[str]:
    seen: List[str] = []
    for t in types:
        if t and t not in seen:
            seen.append(t)
    return seen or [UNKNOWN_TYPE]


def _location(lat: Optional[float], lng: Optional[float]) -> Optional[LatLng]:
    if lat is None or lng is None:
        return None
    return LatLng(lat=lat, lng=lng)


def normalize_new_place(place: NewPlacePayload) -> StandardPlace:
    types = _normalize_types(place.types)
    opening = place.regular_opening_hours
    reviews = None
    if place.reviews:
        reviews = [
            {
                "author": r.author_attribution.display_name if r.author_attribution else None,
                "rating": r.rating,
                "text": r.text.text if r.text else None,
                "time": r.publish_time,
            }
            for r in place.reviews[:MAX_REVIEWS]
        ]
    return StandardPlace(
        place_id=place.id,
        name=place.display_name.text if place.display_name else UNKNOWN_PLACE_NAME,
        primary_category=place.primary_type or types[0],
        types=types,
        location=_location(place.location.latitude, place.location.longitude) if place.location else None,
        rating=place.rating,
        rating_count=place.user_rating_count,
        price_level=NEW_PRICE_LEVELS.get(place.price_level) if place.price_level else None,
        address=place.formatted_address or place.short_formatted_address,
        photos=[p.name for p in place.photos],
        attributions=[a.provider for a in place.attributions if a.provider],
        website=place.website_uri,
        phone_number=place.national_phone_number or place.international_phone_number,
        opening_hours=list(opening.weekday_descriptions) if opening else None,
        editorial_summary=place.editorial_summary.text if place.editorial_summary else None,
        reviews=reviews,
        source=NewPlacesStrategy.name,
    )


def normalize_legacy_place(place: LegacyPlacePayload, attributions: Sequence[str] = ()) -> StandardPlace:
    # Legacy has no explicit primary type; its first tag plays that role.
    types = _normalize_types(place.types)
    loc = place.geometry.location if place.geometry else None
    reviews = None
    if place.reviews:
        reviews = [
            {"author": r.author_name, "rating": r.rating, "text": r.text, "time": r.time}
            for r in place.reviews[:MAX_REVIEWS]
        ]
    return StandardPlace(
        place_id=place.place_id,
        name=place.name or UNKNOWN_PLACE_NAME,
        primary_category=types[0],
        types=types,
        location=_location(loc.lat, loc.lng) if loc else None,
        rating=place.rating,
        rating_count=place.user_ratings_total,
        price_level=place.price_level,
        address=place.formatted_address or place.vicinity,
        photos=[p.photo_reference for p in place.photos],
        attributions=list(attributions),
        website=place.website,
        phone_number=place.formatted_phone_number,
        opening_hours=list(place.opening_hours.weekday_text) if place.opening_hours else None,
        editorial_summary=place.editorial_summary.overview if place.editorial_summary else None,
        reviews=reviews,
        source=LegacyPlacesStrategy.name,
    )


class _HttpStrategy:
    name = "base"

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key if api_key is not None else settings.PLACES_API_KEY
        self.timeout = timeout or settings.PLACES_TIMEOUT_SECONDS
        self.session = session or _session

    def _attempt(self, endpoint: str, call: Callable[[], List[StandardPlace]]) -> ResolveAttempt:
        started = time.monotonic()
        try:
            places = call()
        except requests.RequestException as exc:
            error = f"transport error: {exc}"
        except ValidationError as exc:
            error = f"payload failed validation: {exc.error_count()} error(s)"
        except StrategyError as exc:
            error = str(exc)
        else:
            logger.debug(
                "places %s %s ok: %d place(s) in %.0fms",
                self.name,
                endpoint,
                len(places),
                (time.monotonic() - started) * 1000,
            )
            return ResolveAttempt(strategy=self.name, places=places)
        logger.debug(
            "places %s %s failed in %.0fms: %s",
            self.name,
            endpoint,
            (time.monotonic() - started) * 1000,
            error,
        )
        return ResolveAttempt(strategy=self.name, error=error)


class NewPlacesStrategy(_HttpStrategy):
    """Current-generation API: JSON POST search, field mask header."""

    name = "new"

    def __init__(self, base_url: Optional[str] = None, **kwargs):
        super().__init__(base_url or settings.PLACES_NEW_BASE_URL, **kwargs)

    def _headers(self, field_mask: str) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "X-Goog-Api-Key": self.api_key,
            "X-Goog-FieldMask": field_mask,
        }

    def nearby(
        self,
        point: RoutePoint,
        radius_m: float,
        type_filter: Optional[Sequence[str]],
        profile: FieldProfile,
        language: str,
        primary_types: Optional[Sequence[str]] = None,
    ) -> ResolveAttempt:
        # includedTypes is capped per request, so longer tag lists are split
        tags = list(type_filter or [])
        chunks: List[Optional[List[str]]] = [
            tags[i:i + MAX_INCLUDED_TYPES] for i in range(0, len(tags), MAX_INCLUDED_TYPES)
        ] or [None]

        def search(included: Optional[List[str]]) -> List[StandardPlace]:
            body: Dict[str, Any] = {
                "locationRestriction": {
                    "circle": {
                        "center": {"latitude": point.lat, "longitude": point.lng},
                        "radius": float(radius_m),
                    }
                },
                "languageCode": language,
            }
            if included:
                body["includedTypes"] = included
            resp = self.session.post(
                f"{self.base_url}/places:searchNearby",
                json=body,
                headers=self._headers(profile.new_field_mask(prefix="places.")),
                timeout=self.timeout,
            )
            data = NewSearchResponse.model_validate(_decode_json(resp))
            return [normalize_new_place(p) for p in data.places]

        return self._attempt("places:searchNearby", lambda: _union_places(search(c) for c in chunks))

    def details(self, place_id: str, language: str, profile: FieldProfile) -> ResolveAttempt:
        def call() -> List[StandardPlace]:
            resp = self.session.get(
                f"{self.base_url}/places/{place_id}",
                params={"languageCode": language},
                headers=self._headers(profile.new_field_mask()),
                timeout=self.timeout,
            )
            return [normalize_new_place(NewPlacePayload.model_validate(_decode_json(resp)))]

        return self._attempt("places:get", call)


class LegacyPlacesStrategy(_HttpStrategy):
    """Legacy API: GET with query parameters and a status field in the body."""

    name = "legacy"
    OK_STATUSES = {"OK", "ZERO_RESULTS"}

    def __init__(self, base_url: Optional[str] = None, **kwargs):
        super().__init__(base_url or settings.PLACES_LEGACY_BASE_URL, **kwargs)

    def nearby(
        self,
        point: RoutePoint,
        radius_m: float,
        type_filter: Optional[Sequence[str]],
        profile: FieldProfile,
        language: str,
        primary_types: Optional[Sequence[str]] = None,
    ) -> ResolveAttempt:
        # Legacy search accepts a single type, so one request is made per
        # primary type. Without primary types the first tag is the canonical one.
        types: List[Optional[str]] = list(primary_types or list(type_filter or [])[:1]) or [None]

        def search(place_type: Optional[str]) -> List[StandardPlace]:
            params = {
                "key": self.api_key,
                "location": f"{point.lat},{point.lng}",
                "radius": str(int(round(radius_m))),
                "language": language,
            }
            if place_type:
                params["type"] = place_type
            resp = self.session.get(
                f"{self.base_url}/nearbysearch/json",
                params=params,
                timeout=self.timeout,
            )
            data = LegacySearchResponse.model_validate(_decode_json(resp))
            if data.status not in self.OK_STATUSES:
                raise StrategyError(f"status {data.status}: {data.error_message or ''}".strip())
            return [normalize_legacy_place(p, data.html_attributions) for p in data.results]

        return self._attempt("nearbysearch", lambda: _union_places(search(t) for t in types))

    def details(self, place_id: str, language: str, profile: FieldProfile) -> ResolveAttempt:
        def call() -> List[StandardPlace]:
            resp = self.session.get(
                f"{self.base_url}/details/json",
                params={
                    "key": self.api_key,
                    "place_id": place_id,
                    "language": language,
                    "fields": profile.legacy_field_list(),
                },
                timeout=self.timeout,
            )
            data = LegacyDetailsResponse.model_validate(_decode_json(resp))
            if data.status != "OK" or data.result is None:
                raise StrategyError(f"status {data.status}: {data.error_message or ''}".strip())
            return [normalize_legacy_place(data.result, data.html_attributions)]

        return self._attempt("details", call)


def default_strategies() -> List[_HttpStrategy]:
    strategies: List[_HttpStrategy] = [NewPlacesStrategy(), LegacyPlacesStrategy()]
    if not settings.PLACES_USE_NEW_API:
        strategies = strategies[1:]
    return strategies


class PlacesResolver:
    """Resolve nearby places and place details across service generations."""

    def __init__(
        self,
        strategies: Optional[Sequence[Any]] = None,
        default_radius_m: Optional[float] = None,
    ):
        self.strategies = list(strategies) if strategies is not None else default_strategies()
        self.default_radius_m = default_radius_m or settings.DISCOVERY_RADIUS_M
        self.logger = logging.getLogger(__name__)

    def _first_success(self, operation: str, run: Callable[[Any], ResolveAttempt]) -> List[StandardPlace]:
        errors: List[str] = []
        for index, strategy in enumerate(self.strategies):
            attempt = run(strategy)
            if attempt.ok:
                if index > 0:
                    self.logger.warning(
                        "PlacesResolver.%s: served by fallback generation %s after %s",
                        operation,
                        attempt.strategy,
                        "; ".join(errors),
                    )
                return attempt.places
            errors.append(f"{attempt.strategy}: {attempt.error}")
        self.logger.error("PlacesResolver.%s: all generations failed: %s", operation, "; ".join(errors))
        raise PlacesUnavailable(f"Places lookup failed for {operation}", errors)

    def resolve_nearby(
        self,
        point: RoutePoint,
        radius_m: Optional[float] = None,
        type_filter: Optional[Sequence[str]] = None,
        field_profile: str = "search-standard",
        language: str = "en",
        primary_types: Optional[Sequence[str]] = None,
    ) -> List[StandardPlace]:
        """
        Places near ``point`` whose types intersect ``type_filter`` (None: any type).

        ``primary_types`` names the canonical tag of each requested filter; it
        is only used by generations that accept a single type per request.
        """
        profile = get_field_profile(field_profile)
        radius = radius_m or self.default_radius_m
        places = self._first_success(
            "resolve_nearby",
            lambda s: s.nearby(point, radius, type_filter, profile, language, primary_types),
        )
        self.logger.debug(
            "PlacesResolver.resolve_nearby: lat=%.6f lng=%.6f radius_m=%.1f types=%s got %d results",
            point.lat,
            point.lng,
            radius,
            list(type_filter or []),
            len(places),
        )
        return places

    def resolve_details(
        self,
        place_id: str,
        language: str = "en",
        field_profile: str = "details-full",
    ) -> StandardPlace:
        profile = get_field_profile(field_profile)
        places = self._first_success(
            "resolve_details",
            lambda s: s.details(place_id, language, profile),
        )
        return places[0]


_default_places_resolver: Optional[PlacesResolver] = None


def get_default_places_resolver() -> PlacesResolver:
    global _default_places_resolver
    if _default_places_resolver is None:
        _default_places_resolver = PlacesResolver()
    return _default_places_resolver
