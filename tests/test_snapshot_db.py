"""Tests for the SQLite snapshot store."""

import pytest

from canopy.core.models import (
    ActivationDescriptor,
    NodeKind,
    RenderNode,
    RenderTree,
    Tier,
)
from canopy.storage import SnapshotDB, SnapshotRecord, open_snapshot_db


def _tree(version: int, text: str = "hi") -> RenderTree:
    return RenderTree(
        version=version,
        tier=Tier.RUNTIME_STATIC,
        root=RenderNode(
            id="page@0",
            name="page",
            tier=Tier.RUNTIME_STATIC,
            children=(
                RenderNode(
                    id="page@0/text@0", name="text", payload=text, tier=Tier.RUNTIME_STATIC
                ),
                RenderNode(
                    id="page@0/w@1",
                    name="w",
                    kind=NodeKind.PLACEHOLDER,
                    payload=ActivationDescriptor(bundle_locator="w.js", ctor_args={"n": 1}),
                    tier=Tier.RUNTIME_STATIC,
                ),
            ),
        ),
    )


@pytest.fixture
def db(tmp_path):
    database = open_snapshot_db(tmp_path / "nested" / "snap.db")
    yield database
    database.close()


class TestSnapshotDB:
    def test_creates_parent_directory(self, tmp_path):
        path = tmp_path / "a" / "b" / "snap.db"
        with SnapshotDB(path):
            pass
        assert path.exists()

    def test_in_memory(self):
        with SnapshotDB(":memory:") as database:
            database.save_snapshot("s", "/", _tree(1))
            assert database.list_sessions() == ["s"]

    def test_save_returns_record(self, db):
        record = db.save_snapshot("s1", "/home", _tree(3))
        assert isinstance(record, SnapshotRecord)
        assert (record.session_id, record.view, record.version) == ("s1", "/home", 3)
        assert record.tier == Tier.RUNTIME_STATIC
        assert record.node_count == 3

    def test_load_rebuilds_tree(self, db):
        tree = _tree(3)
        db.save_snapshot("s1", "/home", tree)
        loaded, manifest = db.load_snapshot("s1", "/home")
        assert loaded.root == tree.root
        assert loaded.version == 3
        assert manifest.get("page@0/w@1").ctor_args == {"n": 1}

    def test_missing_snapshot(self, db):
        assert db.load_snapshot("s1", "/home") is None
        assert db.load_latest("s1") is None
        assert db.latest_version("s1") is None

    def test_save_replaces_per_view(self, db):
        db.save_snapshot("s1", "/home", _tree(1, "old"))
        db.save_snapshot("s1", "/home", _tree(2, "new"))
        loaded, _ = db.load_snapshot("s1", "/home")
        assert loaded.get("page@0/text@0").payload == "new"
        assert len(db.list_snapshots("s1")) == 1

    def test_load_latest_picks_highest_version(self, db):
        db.save_snapshot("s1", "/home", _tree(4))
        db.save_snapshot("s1", "/about", _tree(7, "about"))
        db.save_snapshot("s2", "/home", _tree(9))
        view, tree, _ = db.load_latest("s1")
        assert view == "/about"
        assert tree.version == 7
        assert db.latest_version("s1") == 7

    def test_list_and_delete(self, db):
        db.save_snapshot("s1", "/home", _tree(1))
        db.save_snapshot("s1", "/about", _tree(2))
        db.save_snapshot("s2", "/home", _tree(3))
        assert db.list_sessions() == ["s1", "s2"]
        assert [r.view for r in db.list_snapshots("s1")] == ["/about", "/home"]
        assert len(db.list_snapshots()) == 3
        assert db.delete_session("s1") == 2
        assert db.list_sessions() == ["s2"]
        assert db.delete_session("missing") == 0

    def test_persists_across_connections(self, tmp_path):
        path = tmp_path / "snap.db"
        with SnapshotDB(path) as first:
            first.save_snapshot("s1", "/home", _tree(5))
        with SnapshotDB(path) as second:
            view, tree, _ = second.load_latest("s1")
        assert (view, tree.version) == ("/home", 5)
