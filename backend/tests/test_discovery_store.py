from dataclasses import replace
from datetime import timedelta

import pytest

from conftest import SwitchableSessionFactory, make_place
from domain.errors import DegradedPersistence, DiscoveryNotFound
from domain.models import Discovery, DiscoveryContext, DiscoveryStatus
from repositories.discoveries import DiscoveriesRepository
from services.discovery_cache_sqlite import DiscoveryCache
from services.discovery_store import DiscoveryStore, reconcile_pending


def _discovery(ctx, place_id="p1", route_id="route-1", **kwargs):
    return Discovery(
        discovery_id=Discovery.generate_id(),
        user_id=ctx.user_id,
        route_id=route_id,
        place_id=place_id,
        snapshot=make_place(place_id, ["restaurant"]),
        discovered_at=ctx.now(),
        **kwargs,
    )


def _remote_rows(session_factory, user_id, route_id="route-1"):
    with session_factory() as session:
        return DiscoveriesRepository().list_route(session, user_id, route_id)


def test_create_is_conditional_per_place(store, ctx, session_factory):
    first = store.create_discovery(ctx, _discovery(ctx))
    second = store.create_discovery(ctx, _discovery(ctx))

    assert second.discovery_id == first.discovery_id
    assert len(_remote_rows(session_factory, ctx.user_id)) == 1
    assert len(store.load_route_discoveries(ctx, "route-1")) == 1


def test_records_are_scoped_to_user(store, ctx, clock):
    created = store.create_discovery(ctx, _discovery(ctx))
    other = DiscoveryContext(user_id="user-2", clock=clock)

    assert store.load_route_discoveries(other, "route-1").is_empty
    with pytest.raises(DiscoveryNotFound):
        store.get_discovery(other, created.discovery_id)


def test_expired_temporary_dismissal_reads_as_unreviewed(store, ctx, clock, session_factory):
    created = store.create_discovery(ctx, _discovery(ctx))
    store.update_status(
        ctx,
        created.discovery_id,
        DiscoveryStatus.DISMISSED_TEMPORARY,
        expires_at=clock() + timedelta(days=30),
    )

    clock.advance(days=31)

    assert store.get_discovery(ctx, created.discovery_id).status == DiscoveryStatus.UNREVIEWED
    unreviewed = store.load_user_discoveries(ctx, DiscoveryStatus.UNREVIEWED)
    assert [d.discovery_id for d in unreviewed] == [created.discovery_id]
    # expiry is applied on read only
    raw = _remote_rows(session_factory, ctx.user_id)[0]
    assert raw.status == DiscoveryStatus.DISMISSED_TEMPORARY


def test_update_status_clears_decision_fields_on_undo(store, ctx, clock):
    created = store.create_discovery(ctx, _discovery(ctx))
    saved = store.update_status(ctx, created.discovery_id, DiscoveryStatus.SAVED, expires_at=clock())

    assert saved.decided_at == clock()
    assert saved.dismiss_expires_at is None

    undone = store.update_status(ctx, created.discovery_id, DiscoveryStatus.UNREVIEWED)
    assert undone.decided_at is None


def test_unknown_discovery_raises(store, ctx):
    with pytest.raises(DiscoveryNotFound):
        store.get_discovery(ctx, "missing")
    with pytest.raises(DiscoveryNotFound):
        store.update_status(ctx, "missing", DiscoveryStatus.SAVED)


def test_stats_count_by_status(store, ctx):
    a = store.create_discovery(ctx, _discovery(ctx, "a"))
    b = store.create_discovery(ctx, _discovery(ctx, "b"))
    store.create_discovery(ctx, _discovery(ctx, "c"))
    store.update_status(ctx, a.discovery_id, DiscoveryStatus.SAVED)
    store.update_status(ctx, b.discovery_id, DiscoveryStatus.DISMISSED_FOREVER)

    assert store.discovery_stats(ctx) == {"total": 3, "saved": 1, "dismissed": 1, "pending": 1}


def test_summary_request_and_attach(store, ctx, clock):
    created = store.create_discovery(ctx, _discovery(ctx))

    requested = store.mark_summary_requested(ctx, created.discovery_id)
    first_request = requested.summary_requested_at
    assert first_request == clock()

    clock.advance(hours=1)
    again = store.mark_summary_requested(ctx, created.discovery_id)
    assert again.summary_requested_at == first_request

    attached = store.attach_summary(ctx, created.discovery_id, {"text": "A cozy spot.", "model": "x"})
    assert attached.summary == {"text": "A cozy spot.", "model": "x"}
    assert store.get_discovery(ctx, created.discovery_id).summary["text"] == "A cozy spot."


class TestDegradedPersistence:
    def test_reads_and_writes_fall_back_to_local_cache(self, store, ctx, session_factory, cache):
        session_factory.down = True

        with pytest.warns(DegradedPersistence):
            created = store.create_discovery(ctx, _discovery(ctx))
        assert cache.counts() == {"total": 1, "pending": 1}

        with pytest.warns(DegradedPersistence):
            loaded = store.load_route_discoveries(ctx, "route-1")
        assert [d.place_id for d in loaded] == ["p1"]

        with pytest.warns(DegradedPersistence):
            saved = store.update_status(ctx, created.discovery_id, DiscoveryStatus.SAVED)
        assert saved.status == DiscoveryStatus.SAVED

    def test_pending_local_write_wins_until_replayed(self, store, ctx, session_factory):
        created = store.create_discovery(ctx, _discovery(ctx))

        session_factory.down = True
        with pytest.warns(DegradedPersistence):
            store.update_status(ctx, created.discovery_id, DiscoveryStatus.SAVED)
        session_factory.down = False

        # remote still holds the old status, the queued write is overlaid
        assert _remote_rows(session_factory, ctx.user_id)[0].status == DiscoveryStatus.UNREVIEWED
        assert store.get_discovery(ctx, created.discovery_id).status == DiscoveryStatus.SAVED
        assert store.load_route_discoveries(ctx, "route-1").find("p1").status == DiscoveryStatus.SAVED

    def test_flush_pending_replays_queued_writes(self, store, ctx, session_factory, cache):
        session_factory.down = True
        with pytest.warns(DegradedPersistence):
            created = store.create_discovery(ctx, _discovery(ctx))
        with pytest.warns(DegradedPersistence):
            store.update_status(ctx, created.discovery_id, DiscoveryStatus.SAVED)

        # still down: nothing replayed
        assert store.flush_pending() == 0

        session_factory.down = False
        assert store.flush_pending() == 1
        assert cache.counts()["pending"] == 0

        rows = _remote_rows(session_factory, ctx.user_id)
        assert len(rows) == 1
        assert rows[0].discovery_id == created.discovery_id
        assert rows[0].status == DiscoveryStatus.SAVED

    def test_record_created_while_degraded_can_be_updated_after_recovery(self, store, ctx, session_factory, cache):
        session_factory.down = True
        with pytest.warns(DegradedPersistence):
            created = store.create_discovery(ctx, _discovery(ctx))
        session_factory.down = False

        saved = store.update_status(ctx, created.discovery_id, DiscoveryStatus.SAVED)

        assert saved.status == DiscoveryStatus.SAVED
        assert _remote_rows(session_factory, ctx.user_id)[0].status == DiscoveryStatus.SAVED
        assert cache.counts()["pending"] == 0

    def test_replay_keeps_a_decision_made_elsewhere(self, store, ctx, session_factory, tmp_path):
        # a second instance with its own cache shares the remote store
        other_factory = SwitchableSessionFactory(session_factory.factory)
        other = DiscoveryStore(
            session_factory=other_factory,
            cache=DiscoveryCache(str(tmp_path / "other_cache.sqlite")),
        )
        created = store.create_discovery(ctx, _discovery(ctx))
        store.update_status(ctx, created.discovery_id, DiscoveryStatus.SAVED)

        other_factory.down = True
        with pytest.warns(DegradedPersistence):
            local = other.create_discovery(ctx, _discovery(ctx))
        assert local.discovery_id != created.discovery_id
        other_factory.down = False

        # the overlay shows the remote decision, not the queued unreviewed copy
        assert other.load_route_discoveries(ctx, "route-1").find("p1").status == DiscoveryStatus.SAVED

        assert other.flush_pending() == 1
        rows = _remote_rows(session_factory, ctx.user_id)
        assert len(rows) == 1
        assert rows[0].discovery_id == created.discovery_id
        assert rows[0].status == DiscoveryStatus.SAVED
        assert other.cache.counts() == {"total": 1, "pending": 0}
        assert other.cache.get_by_key(ctx.user_id, "route-1", "p1").status == DiscoveryStatus.SAVED

    def test_replay_carries_a_local_decision_onto_an_unreviewed_remote(
        self, store, ctx, session_factory, tmp_path
    ):
        other_factory = SwitchableSessionFactory(session_factory.factory)
        other = DiscoveryStore(
            session_factory=other_factory,
            cache=DiscoveryCache(str(tmp_path / "other_cache.sqlite")),
        )
        created = store.create_discovery(ctx, _discovery(ctx))

        other_factory.down = True
        with pytest.warns(DegradedPersistence):
            local = other.create_discovery(ctx, _discovery(ctx))
        with pytest.warns(DegradedPersistence):
            other.update_status(ctx, local.discovery_id, DiscoveryStatus.DISMISSED_FOREVER)
        other_factory.down = False

        assert other.flush_pending() == 1
        rows = _remote_rows(session_factory, ctx.user_id)
        assert [(r.discovery_id, r.status) for r in rows] == [
            (created.discovery_id, DiscoveryStatus.DISMISSED_FOREVER)
        ]


def test_reconcile_pending_rules(ctx):
    remote = _discovery(ctx, status=DiscoveryStatus.SAVED, decided_at=ctx.now())
    same_record = replace(remote, status=DiscoveryStatus.UNREVIEWED, decided_at=None)
    assert reconcile_pending(remote, same_record) is same_record
    assert reconcile_pending(None, same_record) is same_record

    stranger = _discovery(ctx)
    assert reconcile_pending(remote, stranger) is remote

    summarized = _discovery(ctx, summary={"text": "Open since 1923."})
    merged = reconcile_pending(remote, summarized)
    assert merged.discovery_id == remote.discovery_id
    assert merged.status == DiscoveryStatus.SAVED
    assert merged.summary == {"text": "Open since 1923."}
