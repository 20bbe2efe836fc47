"""
SQLite-backed local key-value cache for discovery documents.

Mirrors every record written to the remote store and queues writes made
while the remote store is unreachable (``pending = 1``) until they can be
replayed.
"""
from __future__ import annotations

import json
import os
import sqlite3
import threading
import time
from typing import Any, Dict, List, Optional, Tuple

from domain.models import Discovery
from settings import settings

BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
DATA_DIR = os.path.join(BASE_DIR, "data")
DISCOVERY_CACHE_DB_FILENAME = "discovery_cache.sqlite"


def cache_key(user_id: str, route_id: str, place_id: str) -> str:
    return f"{user_id}:{route_id}:{place_id}"


class DiscoveryCache:
    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or settings.DISCOVERY_CACHE_PATH or os.path.join(
            DATA_DIR, DISCOVERY_CACHE_DB_FILENAME
        )
        if self.db_path != ":memory:":
            os.makedirs(os.path.dirname(os.path.abspath(self.db_path)), exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS discovery_docs (
                doc_key TEXT PRIMARY KEY,
                discovery_id TEXT NOT NULL UNIQUE,
                user_id TEXT NOT NULL,
                route_id TEXT NOT NULL,
                status TEXT NOT NULL,
                document_json TEXT NOT NULL,
                pending INTEGER NOT NULL DEFAULT 0,
                updated_at INTEGER NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_discovery_docs_route
            ON discovery_docs(user_id, route_id)
            """
        )
        self._conn.commit()

    def _query(self, sql: str, params: Tuple[Any, ...] = ()) -> List[sqlite3.Row]:
        # the connection is shared across request threads
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def _rows_to_discoveries(self, rows: List[sqlite3.Row]) -> List[Discovery]:
        return [Discovery.from_document(json.loads(row["document_json"])) for row in rows]

    def put(self, discovery: Discovery, pending: bool = False) -> None:
        """Insert or replace the document for a discovery.

        A pending flag already set is kept until ``mark_synced``.
        """
        key = cache_key(discovery.user_id, discovery.route_id, discovery.place_id)
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO discovery_docs
                (doc_key, discovery_id, user_id, route_id, status, document_json, pending, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(doc_key) DO UPDATE SET
                    discovery_id = excluded.discovery_id,
                    status = excluded.status,
                    document_json = excluded.document_json,
                    pending = MAX(discovery_docs.pending, excluded.pending),
                    updated_at = excluded.updated_at
                """,
                (
                    key,
                    discovery.discovery_id,
                    discovery.user_id,
                    discovery.route_id,
                    discovery.status.value,
                    json.dumps(discovery.to_document()),
                    int(pending),
                    int(time.time()),
                ),
            )
            self._conn.commit()

    def get(self, discovery_id: str) -> Optional[Discovery]:
        rows = self._query(
            "SELECT document_json FROM discovery_docs WHERE discovery_id = ?",
            (discovery_id,),
        )
        return self._rows_to_discoveries(rows)[0] if rows else None

    def get_by_key(self, user_id: str, route_id: str, place_id: str) -> Optional[Discovery]:
        rows = self._query(
            "SELECT document_json FROM discovery_docs WHERE doc_key = ?",
            (cache_key(user_id, route_id, place_id),),
        )
        return self._rows_to_discoveries(rows)[0] if rows else None

    def list_route(self, user_id: str, route_id: str) -> List[Discovery]:
        rows = self._query(
            "SELECT document_json FROM discovery_docs WHERE user_id = ? AND route_id = ?",
            (user_id, route_id),
        )
        return self._rows_to_discoveries(rows)

    def list_user(self, user_id: str) -> List[Discovery]:
        rows = self._query(
            "SELECT document_json FROM discovery_docs WHERE user_id = ?",
            (user_id,),
        )
        return self._rows_to_discoveries(rows)

    def pending(self, user_id: Optional[str] = None) -> List[Discovery]:
        if user_id is None:
            rows = self._query(
                "SELECT document_json FROM discovery_docs WHERE pending = 1 ORDER BY updated_at"
            )
        else:
            rows = self._query(
                "SELECT document_json FROM discovery_docs WHERE pending = 1 AND user_id = ? ORDER BY updated_at",
                (user_id,),
            )
        return self._rows_to_discoveries(rows)

    def mark_synced(self, discovery_id: str) -> None:
        with self._lock:
            self._conn.execute(
                "UPDATE discovery_docs SET pending = 0 WHERE discovery_id = ?",
                (discovery_id,),
            )
            self._conn.commit()

    def counts(self) -> Dict[str, int]:
        row = self._query(
            "SELECT COUNT(*) AS total, COALESCE(SUM(pending), 0) AS pending FROM discovery_docs"
        )[0]
        return {"total": int(row["total"]), "pending": int(row["pending"])}


_default_discovery_cache: Optional[DiscoveryCache] = None


def get_default_discovery_cache() -> DiscoveryCache:
    global _default_discovery_cache
    if _default_discovery_cache is None:
        _default_discovery_cache = DiscoveryCache()
    return _default_discovery_cache
