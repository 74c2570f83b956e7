"""Snapshot database: the last published render tree per (session, view).

Trees are stored in their wire form (NDJSON payload bytes plus the manifest
JSON), so a stored snapshot is exactly what a client received and can be
rebuilt without re-rendering after a server restart.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from pathlib import Path

from ..core.models import ActivationManifest, RenderTree
from ..render.serializer import (
    decode_manifest,
    decode_payload,
    encode_manifest,
    encode_payload,
    rebuild_tree,
    serialize,
)
from .schemas import SnapshotRecord

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now().isoformat()


class SnapshotDB:
    """SQLite-backed store of published snapshots."""

    def __init__(self, path: Path | str):
        self.path = Path(path)
        if str(path) != ":memory:":
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._set_pragmas()
        self.init_schema()

    def _set_pragmas(self) -> None:
        cursor = self.conn.cursor()
        cursor.execute("PRAGMA journal_mode = WAL")
        cursor.execute("PRAGMA synchronous = NORMAL")
        cursor.execute("PRAGMA temp_store = MEMORY")
        self.conn.commit()

    def init_schema(self) -> None:
        cursor = self.conn.cursor()
        cursor.executescript(
            """
            CREATE TABLE IF NOT EXISTS snapshots (
                session_id TEXT NOT NULL,
                view TEXT NOT NULL,
                version INTEGER NOT NULL,
                tier TEXT NOT NULL,
                node_count INTEGER NOT NULL,
                payload BLOB NOT NULL,
                manifest TEXT NOT NULL,
                saved_at TEXT NOT NULL,
                PRIMARY KEY (session_id, view)
            );

            CREATE INDEX IF NOT EXISTS idx_snapshots_saved_at ON snapshots(saved_at);
            """
        )
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> "SnapshotDB":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False

    def save_snapshot(
        self,
        session_id: str,
        view: str,
        tree: RenderTree,
        manifest: ActivationManifest | None = None,
    ) -> SnapshotRecord:
        """Store (or replace) the published tree for a session's view.

        The manifest is recomputed from the tree when not given.
        """
        payload, derived = serialize(tree)
        manifest = manifest if manifest is not None else derived
        record = SnapshotRecord(
            session_id=session_id,
            view=view,
            version=tree.version,
            tier=tree.tier,
            node_count=len(payload.nodes),
            saved_at=_now_iso(),
        )
        cursor = self.conn.cursor()
        cursor.execute(
            """
            INSERT OR REPLACE INTO snapshots
            (session_id, view, version, tier, node_count, payload, manifest, saved_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.session_id,
                record.view,
                record.version,
                record.tier.value,
                record.node_count,
                encode_payload(payload),
                encode_manifest(manifest).decode("utf-8"),
                record.saved_at,
            ),
        )
        self.conn.commit()
        logger.debug(f"Saved snapshot {session_id}/{view} v{tree.version}")
        return record

    def load_snapshot(
        self, session_id: str, view: str
    ) -> tuple[RenderTree, ActivationManifest] | None:
        """Rebuild the stored tree for a session's view, if any."""
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT payload, manifest FROM snapshots WHERE session_id = ? AND view = ?",
            (session_id, view),
        )
        row = cursor.fetchone()
        if row is None:
            return None
        manifest = decode_manifest(row["manifest"])
        tree = rebuild_tree(decode_payload(bytes(row["payload"])), manifest)
        return tree, manifest

    def load_latest(
        self, session_id: str
    ) -> tuple[str, RenderTree, ActivationManifest] | None:
        """The most recently published snapshot of a session, with its view."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            SELECT view FROM snapshots WHERE session_id = ?
            ORDER BY version DESC, saved_at DESC LIMIT 1
            """,
            (session_id,),
        )
        row = cursor.fetchone()
        if row is None:
            return None
        view = str(row["view"])
        loaded = self.load_snapshot(session_id, view)
        if loaded is None:
            return None
        return view, loaded[0], loaded[1]

    def latest_version(self, session_id: str) -> int | None:
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT MAX(version) AS v FROM snapshots WHERE session_id = ?",
            (session_id,),
        )
        row = cursor.fetchone()
        return int(row["v"]) if row and row["v"] is not None else None

    def list_snapshots(self, session_id: str | None = None) -> list[SnapshotRecord]:
        cursor = self.conn.cursor()
        query = (
            "SELECT session_id, view, version, tier, node_count, saved_at FROM snapshots"
        )
        params: tuple = ()
        if session_id is not None:
            query += " WHERE session_id = ?"
            params = (session_id,)
        cursor.execute(query + " ORDER BY session_id, view", params)
        return [SnapshotRecord(**dict(row)) for row in cursor.fetchall()]

    def list_sessions(self) -> list[str]:
        cursor = self.conn.cursor()
        cursor.execute("SELECT DISTINCT session_id FROM snapshots ORDER BY session_id")
        return [str(row["session_id"]) for row in cursor.fetchall()]

    def delete_session(self, session_id: str) -> int:
        """Drop every snapshot of a session; returns the number removed."""
        cursor = self.conn.cursor()
        cursor.execute("DELETE FROM snapshots WHERE session_id = ?", (session_id,))
        self.conn.commit()
        return cursor.rowcount


def open_snapshot_db(path: Path | str) -> SnapshotDB:
    """Open the snapshot database and ensure the schema exists."""
    return SnapshotDB(path)
