"""
Review workflow for discovered places.

States and the moves between them:

    unreviewed -> saved | dismissed_temporary | dismissed_forever
    saved -> unreviewed                         (undo save)
    dismissed_temporary | dismissed_forever -> unreviewed   (undo dismiss)

Repeating a move whose target state is already reached is a no-op.
Temporary dismissals expire 30 days after the decision; the store applies
that lazily when records are read.
"""
import logging
from typing import Dict, FrozenSet, Optional

from domain.errors import DismissalChoiceRequired, InvalidPlaceLocation, InvalidTransition
from domain.models import (
    Discovery,
    DiscoveryContext,
    DiscoveryOrigin,
    DiscoveryStatus,
    DismissDuration,
    DismissalPolicy,
    RouteProgress,
    StandardPlace,
    TEMPORARY_DISMISSAL,
)
from services.discovery_store import DiscoveryStore

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[DiscoveryStatus, FrozenSet[DiscoveryStatus]] = {
    DiscoveryStatus.UNREVIEWED: frozenset({
        DiscoveryStatus.SAVED,
        DiscoveryStatus.DISMISSED_TEMPORARY,
        DiscoveryStatus.DISMISSED_FOREVER,
    }),
    DiscoveryStatus.SAVED: frozenset({DiscoveryStatus.UNREVIEWED}),
    DiscoveryStatus.DISMISSED_TEMPORARY: frozenset({DiscoveryStatus.UNREVIEWED}),
    DiscoveryStatus.DISMISSED_FOREVER: frozenset({DiscoveryStatus.UNREVIEWED}),
}


def resolve_dismiss_duration(
    policy: Optional[DismissalPolicy], duration: Optional[DismissDuration]
) -> Optional[DismissDuration]:
    """Explicit duration wins; otherwise the policy decides. None means ask the user."""
    if duration is not None:
        return duration
    if policy == DismissalPolicy.ALWAYS_THIRTY_DAYS:
        return DismissDuration.THIRTY_DAYS
    if policy == DismissalPolicy.ALWAYS_FOREVER:
        return DismissDuration.FOREVER
    return None


class ReviewStateMachine:
    def __init__(self, store: DiscoveryStore):
        self.store = store

    def _transition(
        self, ctx: DiscoveryContext, current: Discovery, target: DiscoveryStatus
    ) -> Discovery:
        if current.status == target:
            return current
        if target not in ALLOWED_TRANSITIONS[current.status]:
            raise InvalidTransition(current.status.value, target.value)
        expires_at = None
        if target == DiscoveryStatus.DISMISSED_TEMPORARY:
            expires_at = ctx.now() + TEMPORARY_DISMISSAL
        updated = self.store.update_status(ctx, current.discovery_id, target, expires_at)
        logger.info(
            "Discovery %s (route=%s place=%s): %s -> %s",
            current.discovery_id,
            current.route_id,
            current.place_id,
            current.status.value,
            target.value,
        )
        return updated

    def save(self, ctx: DiscoveryContext, discovery_id: str) -> Discovery:
        """Keep a place."""
        current = self.store.get_discovery(ctx, discovery_id)
        return self._transition(ctx, current, DiscoveryStatus.SAVED)

    def dismiss(
        self,
        ctx: DiscoveryContext,
        discovery_id: str,
        duration: Optional[DismissDuration] = None,
    ) -> Discovery:
        """
        Hide a place for 30 days or for good.

        Without an explicit ``duration`` the context's dismissal policy is
        used; with the ``ask`` policy ``DismissalChoiceRequired`` is raised
        and nothing changes, so the caller can prompt and call again.
        """
        current = self.store.get_discovery(ctx, discovery_id)
        if duration is None and current.status.is_dismissed:
            return current
        chosen = resolve_dismiss_duration(ctx.dismissal_policy, duration)
        if chosen is None:
            raise DismissalChoiceRequired(discovery_id)
        target = (
            DiscoveryStatus.DISMISSED_FOREVER
            if chosen == DismissDuration.FOREVER
            else DiscoveryStatus.DISMISSED_TEMPORARY
        )
        return self._transition(ctx, current, target)

    def undo(self, ctx: DiscoveryContext, discovery_id: str) -> Discovery:
        """Return a saved or dismissed place to the review queue."""
        current = self.store.get_discovery(ctx, discovery_id)
        return self._transition(ctx, current, DiscoveryStatus.UNREVIEWED)

    def save_place(self, ctx: DiscoveryContext, route_id: str, place: StandardPlace) -> Discovery:
        """Save a place for a route, creating its discovery if the route never surfaced it."""
        if not place.has_valid_location:
            raise InvalidPlaceLocation(place.place_id, place.name)
        current = self.store.find_discovery(ctx, route_id, place.place_id)
        if current is None:
            current = self.store.create_discovery(
                ctx,
                Discovery(
                    discovery_id=Discovery.generate_id(),
                    user_id=ctx.user_id,
                    route_id=route_id,
                    place_id=place.place_id,
                    snapshot=place,
                    discovered_at=ctx.now(),
                    origin=DiscoveryOrigin.MANUAL,
                ),
            ).effective(ctx.now())
        return self._transition(ctx, current, DiscoveryStatus.SAVED)

    def request_summary(self, ctx: DiscoveryContext, discovery_id: str) -> Discovery:
        """Record that a written summary was requested for this place."""
        return self.store.mark_summary_requested(ctx, discovery_id)

    def review_progress(self, ctx: DiscoveryContext, route_id: str) -> RouteProgress:
        return self.store.load_route_discoveries(ctx, route_id).progress()
