"""
Discovery repository backed by SQLAlchemy.
"""
from datetime import datetime
from typing import List, Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from domain.models import Discovery, DiscoveryOrigin, DiscoveryStatus, StandardPlace
from repositories.models import DiscoveryORM


def _discovery_from_orm(orm: DiscoveryORM) -> Discovery:
    return Discovery(
        discovery_id=orm.id,
        user_id=orm.user_id,
        route_id=orm.route_id,
        place_id=orm.place_id,
        snapshot=StandardPlace.from_dict(orm.place_data),
        status=DiscoveryStatus(orm.status),
        discovered_at=orm.discovered_at,
        decided_at=orm.decided_at,
        dismiss_expires_at=orm.dismiss_expires_at,
        summary_requested_at=orm.summary_requested_at,
        summary=orm.summary,
        origin=DiscoveryOrigin(orm.origin or DiscoveryOrigin.ROUTE.value),
    )


def _apply_to_orm(orm: DiscoveryORM, discovery: Discovery) -> None:
    orm.status = discovery.status.value
    orm.place_data = discovery.snapshot.to_dict()
    orm.decided_at = discovery.decided_at
    orm.dismiss_expires_at = discovery.dismiss_expires_at
    orm.summary_requested_at = discovery.summary_requested_at
    orm.summary = discovery.summary


class DiscoveriesRepository:
    """CRUD operations for discoveries, always scoped to one user."""

    def list_route(self, session: Session, user_id: str, route_id: str) -> List[Discovery]:
        rows = (
            session.query(DiscoveryORM)
            .filter(DiscoveryORM.user_id == user_id, DiscoveryORM.route_id == route_id)
            .order_by(DiscoveryORM.discovered_at.asc())
            .all()
        )
        return [_discovery_from_orm(r) for r in rows]

    def list_user(
        self, session: Session, user_id: str, statuses: Optional[List[DiscoveryStatus]] = None
    ) -> List[Discovery]:
        query = session.query(DiscoveryORM).filter(DiscoveryORM.user_id == user_id)
        if statuses:
            query = query.filter(DiscoveryORM.status.in_([s.value for s in statuses]))
        rows = query.order_by(DiscoveryORM.discovered_at.desc()).all()
        return [_discovery_from_orm(r) for r in rows]

    def get(self, session: Session, user_id: str, discovery_id: str) -> Optional[Discovery]:
        orm = (
            session.query(DiscoveryORM)
            .filter(DiscoveryORM.id == discovery_id, DiscoveryORM.user_id == user_id)
            .first()
        )
        return _discovery_from_orm(orm) if orm else None

    def get_by_place(
        self, session: Session, user_id: str, route_id: str, place_id: str
    ) -> Optional[Discovery]:
        orm = (
            session.query(DiscoveryORM)
            .filter(
                DiscoveryORM.user_id == user_id,
                DiscoveryORM.route_id == route_id,
                DiscoveryORM.place_id == place_id,
            )
            .first()
        )
        return _discovery_from_orm(orm) if orm else None

    def create(self, session: Session, discovery: Discovery) -> Discovery:
        """Insert a discovery unless one already exists for (user, route, place)."""
        existing = self.get_by_place(session, discovery.user_id, discovery.route_id, discovery.place_id)
        if existing:
            return existing
        orm = DiscoveryORM(
            id=discovery.discovery_id,
            user_id=discovery.user_id,
            route_id=discovery.route_id,
            place_id=discovery.place_id,
            status=discovery.status.value,
            place_data=discovery.snapshot.to_dict(),
            discovered_at=discovery.discovered_at,
            decided_at=discovery.decided_at,
            dismiss_expires_at=discovery.dismiss_expires_at,
            summary_requested_at=discovery.summary_requested_at,
            summary=discovery.summary,
            origin=discovery.origin.value,
        )
        session.add(orm)
        try:
            session.commit()
        except IntegrityError:
            # lost a race with a concurrent first-time discovery
            session.rollback()
            existing = self.get_by_place(session, discovery.user_id, discovery.route_id, discovery.place_id)
            if existing is None:
                raise
            return existing
        session.refresh(orm)
        return _discovery_from_orm(orm)

    def update_status(
        self,
        session: Session,
        user_id: str,
        discovery_id: str,
        status: DiscoveryStatus,
        decided_at: Optional[datetime],
        expires_at: Optional[datetime] = None,
    ) -> Optional[Discovery]:
        orm = (
            session.query(DiscoveryORM)
            .filter(DiscoveryORM.id == discovery_id, DiscoveryORM.user_id == user_id)
            .first()
        )
        if not orm:
            return None
        orm.status = status.value
        orm.decided_at = decided_at
        orm.dismiss_expires_at = expires_at
        session.add(orm)
        session.commit()
        session.refresh(orm)
        return _discovery_from_orm(orm)

    def save(self, session: Session, discovery: Discovery) -> Discovery:
        """Write the full document, inserting it when missing."""
        orm = session.get(DiscoveryORM, discovery.discovery_id)
        if orm is None:
            orm = (
                session.query(DiscoveryORM)
                .filter(
                    DiscoveryORM.user_id == discovery.user_id,
                    DiscoveryORM.route_id == discovery.route_id,
                    DiscoveryORM.place_id == discovery.place_id,
                )
                .first()
            )
        if orm is None:
            return self.create(session, discovery)
        _apply_to_orm(orm, discovery)
        session.add(orm)
        session.commit()
        session.refresh(orm)
        return _discovery_from_orm(orm)
