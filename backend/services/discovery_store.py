"""
Discovery store adapter.

Primary persistence is the SQLAlchemy-backed remote store. When it cannot
be reached, reads are served from the local SQLite cache and writes are
queued there; the caller gets a ``DegradedPersistence`` warning instead of
an error. Temporary dismissals are expired lazily on every read.
"""
from __future__ import annotations

import logging
import sqlite3
import warnings
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from db import SessionLocal
from domain.errors import DegradedPersistence, DiscoveryNotFound
from domain.models import (
    Discovery,
    DiscoveryContext,
    DiscoveryStatus,
    RouteDiscoverySet,
)
from repositories.discoveries import DiscoveriesRepository
from services.discovery_cache_sqlite import DiscoveryCache, get_default_discovery_cache

logger = logging.getLogger(__name__)


def reconcile_pending(remote: Optional[Discovery], local: Discovery) -> Discovery:
    """
    Decide what a queued local document means for the remote record of its place.

    A document queued against the same record replaces it. When a different
    record already owns the (user, route, place) key, as happens when a
    degraded instance rediscovers a route it had no cached copy of, the
    remote record is kept and only fills in what it lacks: a review decision
    when it is still unreviewed, and summary fields. The remote record is
    returned unchanged when there is nothing to carry over.
    """
    if remote is None or remote.discovery_id == local.discovery_id:
        return local
    changes: Dict[str, Any] = {}
    if remote.status == DiscoveryStatus.UNREVIEWED and local.status != DiscoveryStatus.UNREVIEWED:
        changes.update(
            status=local.status,
            decided_at=local.decided_at,
            dismiss_expires_at=local.dismiss_expires_at,
        )
    if remote.summary is None and local.summary is not None:
        changes["summary"] = local.summary
    if remote.summary_requested_at is None and local.summary_requested_at is not None:
        changes["summary_requested_at"] = local.summary_requested_at
    return replace(remote, **changes) if changes else remote


class DiscoveryStore:
    def __init__(
        self,
        session_factory: Optional[Callable[[], Any]] = None,
        cache: Optional[DiscoveryCache] = None,
        repository: Optional[DiscoveriesRepository] = None,
    ):
        self.session_factory = session_factory or SessionLocal
        self.cache = cache or get_default_discovery_cache()
        self.repository = repository or DiscoveriesRepository()

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _degraded(self, operation: str, exc: Exception) -> None:
        message = f"Remote discovery store unavailable during {operation}; using local cache ({exc})"
        logger.warning(message)
        warnings.warn(message, DegradedPersistence, stacklevel=3)

    def _mirror(self, discovery: Discovery) -> None:
        try:
            self.cache.put(discovery)
        except sqlite3.Error as exc:
            logger.warning("Failed to mirror discovery %s locally: %s", discovery.discovery_id, exc)

    def _effective(self, records: List[Discovery], now: datetime) -> List[Discovery]:
        result = []
        for record in records:
            if record.is_expired_dismissal(now):
                logger.debug(
                    "Stale dismissal for discovery %s (expired %s) reads as unreviewed",
                    record.discovery_id,
                    record.dismiss_expires_at,
                )
            result.append(record.effective(now))
        return result

    def _overlay_pending(self, records: List[Discovery], pending: List[Discovery]) -> List[Discovery]:
        # Local writes not yet replayed are shown as they will be replayed.
        if not pending:
            return records
        by_key = {(d.route_id, d.place_id): d for d in records}
        for local in pending:
            key = (local.route_id, local.place_id)
            by_key[key] = reconcile_pending(by_key.get(key), local)
        return list(by_key.values())

    def _get_raw(self, ctx: DiscoveryContext, discovery_id: str) -> Discovery:
        try:
            with self.session_factory() as session:
                found = self.repository.get(session, ctx.user_id, discovery_id)
        except SQLAlchemyError as exc:
            self._degraded("get_discovery", exc)
            found = self.cache.get(discovery_id)
            if found is not None and found.user_id != ctx.user_id:
                found = None
        else:
            local = self.cache.get(discovery_id)
            if local is not None and local.user_id == ctx.user_id and self._is_pending(local):
                found = local
        if found is None:
            raise DiscoveryNotFound(discovery_id)
        return found

    def _is_pending(self, discovery: Discovery) -> bool:
        return any(p.discovery_id == discovery.discovery_id for p in self.cache.pending(discovery.user_id))

    def _write(self, ctx: DiscoveryContext, discovery: Discovery, operation: str) -> Discovery:
        try:
            with self.session_factory() as session:
                stored = self.repository.save(session, discovery)
        except SQLAlchemyError as exc:
            self._degraded(operation, exc)
            self.cache.put(discovery, pending=True)
            return discovery
        self._mirror(stored)
        # the full document reached the remote store, so nothing is left to replay
        self.cache.mark_synced(stored.discovery_id)
        return stored

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    def load_route_discoveries(self, ctx: DiscoveryContext, route_id: str) -> RouteDiscoverySet:
        try:
            with self.session_factory() as session:
                records = self.repository.list_route(session, ctx.user_id, route_id)
        except SQLAlchemyError as exc:
            self._degraded("load_route_discoveries", exc)
            records = self.cache.list_route(ctx.user_id, route_id)
        else:
            pending = [p for p in self.cache.pending(ctx.user_id) if p.route_id == route_id]
            records = self._overlay_pending(records, pending)
        return RouteDiscoverySet.from_records(route_id, self._effective(records, ctx.now()))

    def load_user_discoveries(
        self, ctx: DiscoveryContext, status: Optional[DiscoveryStatus] = None
    ) -> List[Discovery]:
        statuses: Optional[List[DiscoveryStatus]] = None
        if status is not None:
            statuses = [status]
            if status == DiscoveryStatus.UNREVIEWED:
                # expired temporary dismissals read back as unreviewed
                statuses.append(DiscoveryStatus.DISMISSED_TEMPORARY)
        try:
            with self.session_factory() as session:
                records = self.repository.list_user(session, ctx.user_id, statuses)
        except SQLAlchemyError as exc:
            self._degraded("load_user_discoveries", exc)
            records = self.cache.list_user(ctx.user_id)
        else:
            records = self._overlay_pending(records, self.cache.pending(ctx.user_id))
        records = self._effective(records, ctx.now())
        if status is not None:
            records = [d for d in records if d.status == status]
        records.sort(key=lambda d: d.discovered_at, reverse=True)
        return records

    def get_discovery(self, ctx: DiscoveryContext, discovery_id: str) -> Discovery:
        return self._get_raw(ctx, discovery_id).effective(ctx.now())

    def find_discovery(self, ctx: DiscoveryContext, route_id: str, place_id: str) -> Optional[Discovery]:
        return self.load_route_discoveries(ctx, route_id).find(place_id)

    def discovery_stats(self, ctx: DiscoveryContext) -> Dict[str, int]:
        records = self.load_user_discoveries(ctx)
        stats = {
            "total": len(records),
            "saved": 0,
            "dismissed": 0,
            "pending": 0,
        }
        for record in records:
            if record.status == DiscoveryStatus.SAVED:
                stats["saved"] += 1
            elif record.status.is_dismissed:
                stats["dismissed"] += 1
            else:
                stats["pending"] += 1
        return stats

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------

    def create_discovery(self, ctx: DiscoveryContext, discovery: Discovery) -> Discovery:
        """Create a discovery; an existing record for the same place is returned as is."""
        try:
            with self.session_factory() as session:
                stored = self.repository.create(session, discovery)
        except SQLAlchemyError as exc:
            self._degraded("create_discovery", exc)
            existing = self.cache.get_by_key(discovery.user_id, discovery.route_id, discovery.place_id)
            if existing is not None:
                return existing
            self.cache.put(discovery, pending=True)
            return discovery
        self._mirror(stored)
        logger.debug(
            "Created discovery %s for route=%s place=%s",
            stored.discovery_id,
            stored.route_id,
            stored.place_id,
        )
        return stored

    def update_status(
        self,
        ctx: DiscoveryContext,
        discovery_id: str,
        status: DiscoveryStatus,
        expires_at: Optional[datetime] = None,
    ) -> Discovery:
        decided_at = None if status == DiscoveryStatus.UNREVIEWED else ctx.now()
        if status != DiscoveryStatus.DISMISSED_TEMPORARY:
            expires_at = None
        try:
            with self.session_factory() as session:
                updated = self.repository.update_status(
                    session, ctx.user_id, discovery_id, status, decided_at, expires_at
                )
        except SQLAlchemyError as exc:
            self._degraded("update_status", exc)
            cached = self.cache.get(discovery_id)
            if cached is None or cached.user_id != ctx.user_id:
                raise DiscoveryNotFound(discovery_id) from exc
            updated = replace(cached, status=status, decided_at=decided_at, dismiss_expires_at=expires_at)
            self.cache.put(updated, pending=True)
            return updated
        if updated is None:
            local = self.cache.get(discovery_id)
            if local is None or local.user_id != ctx.user_id or not self._is_pending(local):
                raise DiscoveryNotFound(discovery_id)
            # created while degraded and not replayed yet
            updated = replace(local, status=status, decided_at=decided_at, dismiss_expires_at=expires_at)
            return self._write(ctx, updated, "update_status")
        self._mirror(updated)
        return updated

    def mark_summary_requested(self, ctx: DiscoveryContext, discovery_id: str) -> Discovery:
        record = self._get_raw(ctx, discovery_id)
        if record.summary_requested_at is not None:
            return record.effective(ctx.now())
        updated = replace(record, summary_requested_at=ctx.now())
        return self._write(ctx, updated, "mark_summary_requested").effective(ctx.now())

    def attach_summary(self, ctx: DiscoveryContext, discovery_id: str, payload: Dict[str, Any]) -> Discovery:
        """Store an externally generated summary as opaque data."""
        record = self._get_raw(ctx, discovery_id)
        updated = replace(
            record,
            summary=dict(payload),
            summary_requested_at=record.summary_requested_at or ctx.now(),
        )
        return self._write(ctx, updated, "attach_summary").effective(ctx.now())

    def flush_pending(self, user_id: Optional[str] = None) -> int:
        """Replay writes queued while degraded. Returns how many were synced."""
        synced = 0
        for discovery in self.cache.pending(user_id):
            try:
                with self.session_factory() as session:
                    remote = self.repository.get_by_place(
                        session, discovery.user_id, discovery.route_id, discovery.place_id
                    )
                    resolved = reconcile_pending(remote, discovery)
                    if resolved is remote:
                        stored = remote
                    else:
                        stored = self.repository.save(session, resolved)
            except SQLAlchemyError as exc:
                logger.warning("Remote store still unavailable, %d write(s) synced: %s", synced, exc)
                break
            if stored.discovery_id != discovery.discovery_id:
                logger.info(
                    "Queued discovery %s folded into existing record %s (status %s)",
                    discovery.discovery_id,
                    stored.discovery_id,
                    stored.status.value,
                )
            self.cache.mark_synced(discovery.discovery_id)
            self._mirror(stored)
            synced += 1
        if synced:
            logger.info("Replayed %d queued discovery write(s) to the remote store", synced)
        return synced
