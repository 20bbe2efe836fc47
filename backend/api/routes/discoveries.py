"""
Discovery API routes.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel, Field

from domain.errors import (
    DismissalChoiceRequired,
    DiscoveryNotFound,
    InvalidPlaceLocation,
    InvalidTransition,
)
from domain.models import (
    Discovery,
    DiscoveryContext,
    DiscoveryStatus,
    DismissDuration,
    DismissalPolicy,
    StandardPlace,
)
from services.discovery import DiscoveryOrchestrator, DiscoveryOutcome
from services.discovery_store import DiscoveryStore
from services.review import ReviewStateMachine
from services.taxonomy import classify

router = APIRouter()

_store: Optional[DiscoveryStore] = None


def get_store() -> DiscoveryStore:
    global _store
    if _store is None:
        _store = DiscoveryStore()
    return _store


def get_orchestrator(store: DiscoveryStore = Depends(get_store)) -> DiscoveryOrchestrator:
    return DiscoveryOrchestrator(store)


def get_review(store: DiscoveryStore = Depends(get_store)) -> ReviewStateMachine:
    return ReviewStateMachine(store)


def get_context(
    x_user_id: str = Header(...),
    x_dismissal_policy: Optional[str] = Header(None),
    accept_language: Optional[str] = Header(None),
    x_min_rating: Optional[float] = Header(None, ge=0, le=5),
) -> DiscoveryContext:
    policy = DismissalPolicy.ASK
    if x_dismissal_policy:
        try:
            policy = DismissalPolicy(x_dismissal_policy)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid dismissal policy: {x_dismissal_policy}")
    language = (accept_language or "en").split(",")[0].split("-")[0].strip() or "en"
    return DiscoveryContext(
        user_id=x_user_id,
        dismissal_policy=policy,
        language=language,
        min_rating=x_min_rating or 0.0,
    )


class RoutePointSchema(BaseModel):
    lat: float
    lng: float
    timestamp: Optional[datetime] = None


class DiscoverRequest(BaseModel):
    coords: List[RoutePointSchema]
    type_filters: List[str] = Field(default_factory=list)
    language: Optional[str] = None


class PingRequest(BaseModel):
    places: List[Dict[str, Any]]
    type_filters: List[str] = Field(default_factory=list)


class DiscoverResponse(BaseModel):
    route_id: str
    places: List[Dict[str, Any]]
    resolver_called: bool
    unavailable: bool
    rejected_place_ids: List[str]


class DiscoveryResponse(BaseModel):
    id: str
    route_id: str
    place_id: str
    status: str
    category: str
    place_data: Dict[str, Any]
    discovered_at: datetime
    decided_at: Optional[datetime] = None
    dismiss_expires_at: Optional[datetime] = None
    summary_requested_at: Optional[datetime] = None
    summary: Optional[Dict[str, Any]] = None


class DismissRequest(BaseModel):
    duration: Optional[str] = None  # "thirty_days" or "forever"


class SummaryRequest(BaseModel):
    payload: Dict[str, Any]


class ProgressResponse(BaseModel):
    route_id: str
    total: int
    reviewed: int
    completed: bool
    completion_percentage: int


def discovery_to_response(discovery: Discovery) -> DiscoveryResponse:
    """Convert domain Discovery to API response."""
    return DiscoveryResponse(
        id=discovery.discovery_id,
        route_id=discovery.route_id,
        place_id=discovery.place_id,
        status=discovery.status.value,
        category=classify(discovery.snapshot),
        place_data=discovery.snapshot.to_dict(),
        discovered_at=discovery.discovered_at,
        decided_at=discovery.decided_at,
        dismiss_expires_at=discovery.dismiss_expires_at,
        summary_requested_at=discovery.summary_requested_at,
        summary=discovery.summary,
    )


def outcome_to_response(outcome: DiscoveryOutcome) -> DiscoverResponse:
    return DiscoverResponse(
        route_id=outcome.route_id,
        places=[p.to_dict() for p in outcome.places],
        resolver_called=outcome.resolver_called,
        unavailable=outcome.unavailable,
        rejected_place_ids=[r.place_id for r in outcome.rejected],
    )


def _review_call(fn, *args):
    try:
        return fn(*args)
    except DiscoveryNotFound:
        raise HTTPException(status_code=404, detail="Discovery not found")
    except InvalidTransition as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except DismissalChoiceRequired:
        raise HTTPException(
            status_code=428,
            detail="Choose a dismissal duration: thirty_days or forever",
        )
    except InvalidPlaceLocation as exc:
        raise HTTPException(status_code=422, detail=str(exc))


@router.post("/routes/{route_id}/discover", response_model=DiscoverResponse)
def discover_route(
    route_id: str,
    body: DiscoverRequest,
    ctx: DiscoveryContext = Depends(get_context),
    orchestrator: DiscoveryOrchestrator = Depends(get_orchestrator),
):
    """Unreviewed places for a completed route (resolved on first call only)."""
    coords = [{"lat": p.lat, "lng": p.lng, "timestamp": p.timestamp} for p in body.coords]
    outcome = orchestrator.run_discovery(ctx, route_id, coords, body.type_filters, body.language)
    return outcome_to_response(outcome)


@router.post("/routes/{route_id}/pings", response_model=DiscoverResponse)
def consolidate_pings(
    route_id: str,
    body: PingRequest,
    ctx: DiscoveryContext = Depends(get_context),
    orchestrator: DiscoveryOrchestrator = Depends(get_orchestrator),
):
    """Fold places found by nearby lookups during the walk into the route's discoveries."""
    try:
        places = [StandardPlace.from_dict(p) for p in body.places]
    except (KeyError, TypeError) as exc:
        raise HTTPException(status_code=422, detail=f"Invalid place: {exc}")
    return outcome_to_response(orchestrator.consolidate(ctx, route_id, places, body.type_filters))


@router.get("/routes/{route_id}/discoveries", response_model=List[DiscoveryResponse])
def list_route_discoveries(
    route_id: str,
    ctx: DiscoveryContext = Depends(get_context),
    store: DiscoveryStore = Depends(get_store),
):
    return [discovery_to_response(d) for d in store.load_route_discoveries(ctx, route_id)]


@router.get("/routes/{route_id}/progress", response_model=ProgressResponse)
def route_progress(
    route_id: str,
    ctx: DiscoveryContext = Depends(get_context),
    review: ReviewStateMachine = Depends(get_review),
):
    progress = review.review_progress(ctx, route_id)
    return ProgressResponse(
        route_id=route_id,
        total=progress.total,
        reviewed=progress.reviewed,
        completed=progress.completed,
        completion_percentage=progress.completion_percentage,
    )


@router.post("/routes/{route_id}/saved-places", response_model=DiscoveryResponse)
def save_route_place(
    route_id: str,
    place: Dict[str, Any],
    ctx: DiscoveryContext = Depends(get_context),
    review: ReviewStateMachine = Depends(get_review),
):
    """Save a place for a route directly (e.g. picked from place details)."""
    try:
        standard = StandardPlace.from_dict(place)
    except (KeyError, TypeError) as exc:
        raise HTTPException(status_code=422, detail=f"Invalid place: {exc}")
    return discovery_to_response(_review_call(review.save_place, ctx, route_id, standard))


@router.get("/discoveries", response_model=List[DiscoveryResponse])
def list_user_discoveries(
    status: Optional[str] = None,
    ctx: DiscoveryContext = Depends(get_context),
    store: DiscoveryStore = Depends(get_store),
):
    """List the caller's discoveries, optionally filtered by status."""
    status_enum = None
    if status:
        try:
            status_enum = DiscoveryStatus(status)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid status: {status}")
    return [discovery_to_response(d) for d in store.load_user_discoveries(ctx, status_enum)]


@router.get("/discoveries/stats")
def discovery_stats(
    ctx: DiscoveryContext = Depends(get_context),
    store: DiscoveryStore = Depends(get_store),
):
    return store.discovery_stats(ctx)


@router.post("/discoveries/{discovery_id}/save", response_model=DiscoveryResponse)
def save_discovery(
    discovery_id: str,
    ctx: DiscoveryContext = Depends(get_context),
    review: ReviewStateMachine = Depends(get_review),
):
    return discovery_to_response(_review_call(review.save, ctx, discovery_id))


@router.post("/discoveries/{discovery_id}/dismiss", response_model=DiscoveryResponse)
def dismiss_discovery(
    discovery_id: str,
    body: Optional[DismissRequest] = None,
    ctx: DiscoveryContext = Depends(get_context),
    review: ReviewStateMachine = Depends(get_review),
):
    duration = None
    if body and body.duration:
        try:
            duration = DismissDuration(body.duration)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid duration: {body.duration}")
    return discovery_to_response(_review_call(review.dismiss, ctx, discovery_id, duration))


@router.post("/discoveries/{discovery_id}/undo", response_model=DiscoveryResponse)
def undo_discovery(
    discovery_id: str,
    ctx: DiscoveryContext = Depends(get_context),
    review: ReviewStateMachine = Depends(get_review),
):
    return discovery_to_response(_review_call(review.undo, ctx, discovery_id))


@router.post("/discoveries/{discovery_id}/summary-request", response_model=DiscoveryResponse)
def request_summary(
    discovery_id: str,
    ctx: DiscoveryContext = Depends(get_context),
    review: ReviewStateMachine = Depends(get_review),
):
    return discovery_to_response(_review_call(review.request_summary, ctx, discovery_id))


@router.put("/discoveries/{discovery_id}/summary", response_model=DiscoveryResponse)
def attach_summary(
    discovery_id: str,
    body: SummaryRequest,
    ctx: DiscoveryContext = Depends(get_context),
    store: DiscoveryStore = Depends(get_store),
):
    """Attach an externally generated summary as opaque data."""
    return discovery_to_response(_review_call(store.attach_summary, ctx, discovery_id, body.payload))
