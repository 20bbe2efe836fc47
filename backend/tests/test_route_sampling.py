from datetime import datetime

import pytest

from domain.models import RoutePoint
from services.route_sampling import coerce_route_points, haversine_m, sample_route


def _line(n, step_deg=0.001):
    return [RoutePoint(lat=41.88 + i * step_deg, lng=-87.63) for i in range(n)]


def test_haversine_one_millidegree_latitude():
    assert haversine_m(41.88, -87.63, 41.881, -87.63) == pytest.approx(111.2, abs=0.5)


def test_coerce_accepts_mixed_shapes():
    points = coerce_route_points([
        {"lat": 1.0, "lng": 2.0, "timestamp": 1717232400000},
        {"latitude": 3.0, "longitude": 4.0, "timestamp": "2025-06-01T09:00:00"},
        (5.0, 6.0),
        {"lat": None, "lng": 1.0},
        "garbage",
    ])

    assert [(p.lat, p.lng) for p in points] == [(1.0, 2.0), (3.0, 4.0), (5.0, 6.0)]
    assert points[0].timestamp == datetime(2024, 6, 1, 9, 0, 0)
    assert points[1].timestamp == datetime(2025, 6, 1, 9, 0, 0)
    assert points[2].timestamp is None


def test_sample_keeps_spaced_points_and_route_end():
    points = _line(10)  # ~111 m apart

    sampled = sample_route(points, spacing_m=250.0, max_samples=50)

    assert sampled[0] is points[0]
    assert sampled[-1] is points[-1]
    for a, b in zip(sampled[:-2], sampled[1:-1]):
        assert haversine_m(a.lat, a.lng, b.lat, b.lng) >= 250.0


def test_sample_thins_to_max_samples():
    points = _line(100)

    sampled = sample_route(points, spacing_m=50.0, max_samples=5)

    assert len(sampled) == 5
    assert sampled[0] is points[0]
    assert sampled[-1] is points[-1]


def test_sample_edge_cases():
    assert sample_route([], 100.0, 5) == []
    single = _line(1)
    assert sample_route(single, 100.0, 5) == single
    assert sample_route(_line(20), 50.0, 1) == [_line(20)[0]]
