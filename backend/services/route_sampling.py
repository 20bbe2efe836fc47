"""Helpers for turning a recorded walk into lookup points."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional

from domain.models import RoutePoint


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute distance in meters between two lat/lon points."""
    R = 6371000.0
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(dlon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return R * c


def _coerce_point(raw: Any) -> Optional[RoutePoint]:
    if isinstance(raw, RoutePoint):
        return raw
    if isinstance(raw, dict):
        lat = raw.get("lat", raw.get("latitude"))
        lng = raw.get("lng", raw.get("lon", raw.get("longitude")))
        ts = raw.get("timestamp")
    elif isinstance(raw, (tuple, list)) and len(raw) >= 2:
        lat, lng = raw[0], raw[1]
        ts = raw[2] if len(raw) > 2 else None
    else:
        return None
    if lat is None or lng is None:
        return None
    if isinstance(ts, (int, float)):
        # epoch milliseconds or seconds
        seconds = ts / 1000.0 if ts > 1e11 else ts
        ts = datetime.fromtimestamp(seconds, timezone.utc).replace(tzinfo=None)
    elif isinstance(ts, str):
        ts = datetime.fromisoformat(ts)
    return RoutePoint(lat=float(lat), lng=float(lng), timestamp=ts)


def coerce_route_points(coords: Iterable[Any]) -> List[RoutePoint]:
    """Accept RoutePoints, {lat, lng} / {latitude, longitude} dicts or (lat, lng) tuples."""
    points: List[RoutePoint] = []
    for raw in coords or []:
        point = _coerce_point(raw)
        if point is not None:
            points.append(point)
    return points


def sample_route(points: List[RoutePoint], spacing_m: float, max_samples: int) -> List[RoutePoint]:
    """
    Pick lookup points along a route.

    Keeps the first sample, then every sample at least ``spacing_m`` from the
    previously kept one, and always the final sample. When more than
    ``max_samples`` remain they are thinned evenly, keeping both ends.
    """
    if not points:
        return []
    kept = [points[0]]
    for point in points[1:]:
        last = kept[-1]
        if haversine_m(last.lat, last.lng, point.lat, point.lng) >= spacing_m:
            kept.append(point)
    final = points[-1]
    if kept[-1] is not final and (kept[-1].lat, kept[-1].lng) != (final.lat, final.lng):
        kept.append(final)
    if max_samples > 0 and len(kept) > max_samples:
        if max_samples == 1:
            return [kept[0]]
        step = (len(kept) - 1) / (max_samples - 1)
        kept = [kept[round(i * step)] for i in range(max_samples)]
    return kept

