"""
Core domain models for route discoveries.
These are framework-agnostic and can be used across all services.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional
import uuid


TEMPORARY_DISMISSAL = timedelta(days=30)
UNKNOWN_TYPE = "unknown"


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what the SQL layer stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class DiscoveryStatus(str, Enum):
    """Review state of a discovered place."""
    UNREVIEWED = "unreviewed"
    SAVED = "saved"
    DISMISSED_TEMPORARY = "dismissed_temporary"
    DISMISSED_FOREVER = "dismissed_forever"

    @property
    def is_dismissed(self) -> bool:
        return self in (DiscoveryStatus.DISMISSED_TEMPORARY, DiscoveryStatus.DISMISSED_FOREVER)


class DismissalPolicy(str, Enum):
    """User-level default used when a dismiss call carries no duration."""
    ASK = "ask"
    ALWAYS_THIRTY_DAYS = "always_thirty_days"
    ALWAYS_FOREVER = "always_forever"


class DismissDuration(str, Enum):
    THIRTY_DAYS = "thirty_days"
    FOREVER = "forever"


class DiscoveryOrigin(str, Enum):
    """How a discovery entered the route's set."""
    ROUTE = "route"  # places lookup along the completed route
    PING = "ping"  # nearby lookups made during the walk
    MANUAL = "manual"  # saved directly by the user


@dataclass(frozen=True)
class LatLng:
    lat: float
    lng: float

    def to_dict(self) -> Dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}


@dataclass(frozen=True)
class RoutePoint:
    """One GPS sample of a completed walk."""
    lat: float
    lng: float
    timestamp: Optional[datetime] = None


@dataclass
class StandardPlace:
    """
    Normalized view of one point of interest, independent of which
    lookup-service generation produced it.

    Optional fields stay None when the service did not return them.
    """
    place_id: str
    name: str
    primary_category: str
    types: List[str] = field(default_factory=lambda: [UNKNOWN_TYPE])
    location: Optional[LatLng] = None
    rating: Optional[float] = None
    rating_count: Optional[int] = None
    price_level: Optional[int] = None
    address: Optional[str] = None
    photos: List[str] = field(default_factory=list)
    attributions: List[str] = field(default_factory=list)
    # details-only fields
    website: Optional[str] = None
    phone_number: Optional[str] = None
    opening_hours: Optional[List[str]] = None
    editorial_summary: Optional[str] = None
    reviews: Optional[List[Dict[str, Any]]] = None
    source: Optional[str] = None  # "new" | "legacy"

    def __post_init__(self) -> None:
        if not self.types:
            self.types = [UNKNOWN_TYPE]
        if not self.primary_category:
            self.primary_category = self.types[0]

    @property
    def has_valid_location(self) -> bool:
        if self.location is None:
            return False
        for value in (self.location.lat, self.location.lng):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                return False
            if value != value:  # NaN
                return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "place_id": self.place_id,
            "name": self.name,
            "primary_category": self.primary_category,
            "types": list(self.types),
            "location": self.location.to_dict() if self.location else None,
            "rating": self.rating,
            "rating_count": self.rating_count,
            "price_level": self.price_level,
            "address": self.address,
            "photos": list(self.photos),
            "attributions": list(self.attributions),
            "website": self.website,
            "phone_number": self.phone_number,
            "opening_hours": self.opening_hours,
            "editorial_summary": self.editorial_summary,
            "reviews": self.reviews,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StandardPlace":
        location = data.get("location")
        return cls(
            place_id=data["place_id"],
            name=data.get("name") or "",
            primary_category=data.get("primary_category") or "",
            types=list(data.get("types") or []),
            location=LatLng(lat=location["lat"], lng=location["lng"]) if location else None,
            rating=data.get("rating"),
            rating_count=data.get("rating_count"),
            price_level=data.get("price_level"),
            address=data.get("address"),
            photos=list(data.get("photos") or []),
            attributions=list(data.get("attributions") or []),
            website=data.get("website"),
            phone_number=data.get("phone_number"),
            opening_hours=data.get("opening_hours"),
            editorial_summary=data.get("editorial_summary"),
            reviews=data.get("reviews"),
            source=data.get("source"),
        )


@dataclass
class Discovery:
    """
    One (route, place) pairing surfaced for review.

    Created by the orchestrator with status UNREVIEWED; only the review
    state machine changes the status afterwards.
    """
    discovery_id: str
    user_id: str
    route_id: str
    place_id: str
    snapshot: StandardPlace
    status: DiscoveryStatus = DiscoveryStatus.UNREVIEWED
    discovered_at: datetime = field(default_factory=utcnow)
    decided_at: Optional[datetime] = None
    dismiss_expires_at: Optional[datetime] = None
    summary_requested_at: Optional[datetime] = None
    summary: Optional[Dict[str, Any]] = None
    origin: DiscoveryOrigin = DiscoveryOrigin.ROUTE

    @staticmethod
    def generate_id() -> str:
        return str(uuid.uuid4())

    def is_expired_dismissal(self, now: datetime) -> bool:
        return (
            self.status == DiscoveryStatus.DISMISSED_TEMPORARY
            and self.dismiss_expires_at is not None
            and self.dismiss_expires_at <= now
        )

    def effective(self, now: datetime) -> "Discovery":
        """Return the record as reads should see it at ``now``.

        An expired temporary dismissal reads back as unreviewed.
        """
        if not self.is_expired_dismissal(now):
            return self
        return replace(
            self,
            status=DiscoveryStatus.UNREVIEWED,
            decided_at=None,
            dismiss_expires_at=None,
        )

    def to_document(self) -> Dict[str, Any]:
        """Document shape used by the local cache (mirrors the remote row)."""
        return {
            "discovery_id": self.discovery_id,
            "user_id": self.user_id,
            "route_id": self.route_id,
            "place_id": self.place_id,
            "place_data": self.snapshot.to_dict(),
            "status": self.status.value,
            "discovered_at": _iso(self.discovered_at),
            "decided_at": _iso(self.decided_at),
            "dismiss_expires_at": _iso(self.dismiss_expires_at),
            "summary_requested_at": _iso(self.summary_requested_at),
            "summary": self.summary,
            "origin": self.origin.value,
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "Discovery":
        return cls(
            discovery_id=data["discovery_id"],
            user_id=data["user_id"],
            route_id=data["route_id"],
            place_id=data["place_id"],
            snapshot=StandardPlace.from_dict(data["place_data"]),
            status=DiscoveryStatus(data["status"]),
            discovered_at=_parse_dt(data.get("discovered_at")) or utcnow(),
            decided_at=_parse_dt(data.get("decided_at")),
            dismiss_expires_at=_parse_dt(data.get("dismiss_expires_at")),
            summary_requested_at=_parse_dt(data.get("summary_requested_at")),
            summary=data.get("summary"),
            origin=DiscoveryOrigin(data.get("origin") or DiscoveryOrigin.ROUTE.value),
        )


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


@dataclass
class RouteProgress:
    route_id: str
    total: int
    reviewed: int

    @property
    def completed(self) -> bool:
        return self.reviewed == self.total

    @property
    def completion_percentage(self) -> int:
        if self.total == 0:
            return 0
        return round(self.reviewed / self.total * 100)


@dataclass
class RouteDiscoverySet:
    """Ordered discoveries for one route, one per place."""
    route_id: str
    discoveries: List[Discovery] = field(default_factory=list)

    @classmethod
    def from_records(cls, route_id: str, records: Iterable[Discovery]) -> "RouteDiscoverySet":
        # Concurrent first-time discovery can leave duplicates; keep the oldest.
        by_place: Dict[str, Discovery] = {}
        for record in sorted(records, key=lambda d: d.discovered_at):
            by_place.setdefault(record.place_id, record)
        return cls(route_id=route_id, discoveries=list(by_place.values()))

    @property
    def is_empty(self) -> bool:
        return not self.discoveries

    @property
    def route_resolved(self) -> bool:
        """True once a places lookup along the route has produced records."""
        return any(d.origin == DiscoveryOrigin.ROUTE for d in self.discoveries)

    def __len__(self) -> int:
        return len(self.discoveries)

    def __iter__(self):
        return iter(self.discoveries)

    def by_status(self, status: DiscoveryStatus) -> List[Discovery]:
        return [d for d in self.discoveries if d.status == status]

    def unreviewed(self) -> List[Discovery]:
        return self.by_status(DiscoveryStatus.UNREVIEWED)

    def find(self, place_id: str) -> Optional[Discovery]:
        for d in self.discoveries:
            if d.place_id == place_id:
                return d
        return None

    def progress(self) -> RouteProgress:
        reviewed = sum(1 for d in self.discoveries if d.status != DiscoveryStatus.UNREVIEWED)
        return RouteProgress(route_id=self.route_id, total=len(self.discoveries), reviewed=reviewed)


@dataclass
class DiscoveryContext:
    """
    Per-user state handed to the orchestrator and review state machine.

    Keeps preferences and the clock out of module globals so that several
    users can be exercised side by side.
    """
    user_id: str
    dismissal_policy: DismissalPolicy = DismissalPolicy.ASK
    default_type_filters: List[str] = field(default_factory=list)
    language: str = "en"
    min_rating: float = 0.0
    clock: Callable[[], datetime] = utcnow

    def now(self) -> datetime:
        return self.clock()
