import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest

# Ensure the backend package root is on sys.path for direct pytest runs
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.exc import OperationalError  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from db import init_db  # noqa: E402
from domain.errors import PlacesUnavailable  # noqa: E402
from domain.models import DiscoveryContext, LatLng, StandardPlace  # noqa: E402
from services.discovery_cache_sqlite import DiscoveryCache  # noqa: E402
from services.discovery_store import DiscoveryStore  # noqa: E402


class FakeClock:
    def __init__(self, now: datetime):
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class SwitchableSessionFactory:
    """Session factory whose remote store can be taken down and brought back."""

    def __init__(self, factory):
        self.factory = factory
        self.down = False

    def __call__(self):
        if self.down:
            raise OperationalError("SELECT 1", {}, Exception("remote store unreachable"))
        return self.factory()


class FakeResolver:
    def __init__(self, places=None, error=None):
        self.places = list(places or [])
        self.error = error
        self.calls = []

    def resolve_nearby(
        self,
        point,
        radius_m=None,
        type_filter=None,
        field_profile="search-standard",
        language="en",
        primary_types=None,
    ):
        self.calls.append((point, type_filter, field_profile, language))
        if self.error:
            raise PlacesUnavailable("places lookup failed", [self.error])
        return [StandardPlace.from_dict(p.to_dict()) for p in self.places]


def make_place(place_id, types, lat=41.88, lng=-87.63, name=None, primary=None):
    return StandardPlace(
        place_id=place_id,
        name=name or place_id,
        primary_category=primary or (types[0] if types else ""),
        types=list(types),
        location=LatLng(lat, lng) if lat is not None else None,
    )


ROUTE_COORDS = [
    {"lat": 41.8800, "lng": -87.6300},
    {"lat": 41.8810, "lng": -87.6300},
    {"lat": 41.8830, "lng": -87.6300},
]


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 6, 1, 9, 0, 0))


@pytest.fixture
def ctx(clock):
    return DiscoveryContext(user_id="user-1", clock=clock)


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=eng)
    return eng


@pytest.fixture
def session_factory(engine):
    return SwitchableSessionFactory(sessionmaker(bind=engine, autoflush=False, autocommit=False))


@pytest.fixture
def cache(tmp_path):
    return DiscoveryCache(str(tmp_path / "discovery_cache.sqlite"))


@pytest.fixture
def store(session_factory, cache):
    return DiscoveryStore(session_factory=session_factory, cache=cache)
