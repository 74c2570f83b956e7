"""Tests for RenderSession: full, diff and noop frames end to end."""

import asyncio

import pytest

from canopy import Frame, RenderSession
from canopy.cache import CacheStore
from canopy.config import CanopyConfig
from canopy.core.models import RouteDescriptor, Tier
from canopy.hydrate import BundleRegistry, HydrationCoordinator
from canopy.render import RenderExecutor, decode_diff, decode_payload, node, placeholder
from canopy.storage import SnapshotDB


HOME = RouteDescriptor(path="/home")
ABOUT = RouteDescriptor(path="/about", enumerable_params=True)

LIKE = placeholder("like", bundle="like.js")


class Like:
    def __init__(self, count=0):
        self.count = count

    def update(self, count=0):
        self.count = count


def _home(title="Home", likes=0, items=("a", "b")):
    return node(
        "page",
        node("title", payload=title),
        node("like", producer=LIKE, args={"count": likes}),
        node("list", *(node("item", key=k, payload=k) for k in items)),
    )


def _session(session_id="s1", snapshots=None) -> RenderSession:
    config = CanopyConfig()
    executor = RenderExecutor(CacheStore(config=config), config=config)
    return RenderSession(session_id, executor, snapshots=snapshots)


def _navigate(session, steps):
    async def run():
        return [await session.navigate(route, tree) for route, tree in steps]

    return asyncio.run(run())


@pytest.fixture
def client():
    bundles = BundleRegistry()
    bundles.register("like.js", Like)
    return HydrationCoordinator(bundles)


class TestFrames:
    def test_first_navigation_is_full(self):
        session = _session()
        (frame,) = _navigate(session, [(HOME, _home())])
        assert frame.kind == "full"
        assert frame.view == "/home"
        assert frame.tier == Tier.RUNTIME_STATIC
        assert frame.payload is not None
        assert frame.diff is None
        assert "page@0/like@1" in frame.manifest
        assert session.version == frame.version
        assert session.view == "/home"

    def test_same_view_gives_diff(self):
        session = _session()
        full, delta = _navigate(session, [(HOME, _home()), (HOME, _home(title="New"))])
        assert delta.kind == "diff"
        assert delta.diff.from_version == full.version
        assert delta.diff.to_version == delta.version
        assert [u.id for u in delta.diff.updated] == ["page@0/title@0"]
        assert delta.diff.removed == []
        assert delta.diff.added == []

    def test_unchanged_render_is_noop(self):
        session = _session()
        full, noop = _navigate(session, [(HOME, _home()), (HOME, _home())])
        assert noop.kind == "noop"
        assert noop.version == full.version
        assert noop.message is None
        assert noop.encode() == b""
        assert session.version == full.version

    def test_view_change_gives_full(self):
        session = _session()
        home, about = _navigate(
            session, [(HOME, _home()), (ABOUT, node("about", node("text", payload="x")))]
        )
        assert about.kind == "full"
        assert about.tier == Tier.BUILD_STATIC
        assert about.version > home.version

    def test_reset_forces_full(self):
        session = _session()
        _navigate(session, [(HOME, _home())])
        session.reset()
        (frame,) = _navigate(session, [(HOME, _home())])
        assert frame.kind == "full"

    def test_encoded_frames_decode(self):
        session = _session()
        full, delta = _navigate(session, [(HOME, _home()), (HOME, _home(likes=2))])
        assert decode_payload(full.encode()) == full.payload
        assert decode_diff(delta.encode()) == delta.diff

    def test_frame_is_immutable(self):
        (frame,) = _navigate(_session(), [(HOME, _home())])
        assert isinstance(frame, Frame)
        with pytest.raises(Exception):
            frame.version = 99


class TestClientConvergence:
    def test_client_tracks_every_frame(self, client):
        session = _session()
        steps = [
            (HOME, _home()),
            (HOME, _home(title="Two", items=("b", "a", "c"))),
            (HOME, _home(title="Two", items=("b", "a", "c"))),
            (HOME, _home(likes=4, items=("c",))),
            (ABOUT, node("about", node("text", payload="x"))),
        ]
        frames = _navigate(session, steps)
        like = None
        for frame in frames:
            if frame.message is not None:
                client.apply(frame.message, frame.manifest)
            if frame.view == "/home":
                like = like or client.behavior("page@0/like@1")
                assert client.behavior("page@0/like@1") is like
            assert client.version == session.version
            assert client.snapshot().root == session.current.root

        assert [f.kind for f in frames] == ["full", "diff", "noop", "diff", "full"]
        assert like.count == 4


class TestPersistence:
    def test_published_trees_are_saved(self, tmp_path):
        with SnapshotDB(tmp_path / "snap.db") as db:
            session = _session("s1", db)
            _, delta = _navigate(session, [(HOME, _home()), (HOME, _home(title="x"))])
            records = db.list_snapshots("s1")
            assert [(r.view, r.version) for r in records] == [("/home", delta.version)]

    def test_new_session_resumes_from_snapshot(self, tmp_path):
        path = tmp_path / "snap.db"
        with SnapshotDB(path) as db:
            (first,) = _navigate(_session("s1", db), [(HOME, _home())])

        with SnapshotDB(path) as db:
            resumed = _session("s1", db)
            same, changed = _navigate(
                resumed, [(HOME, _home()), (HOME, _home(title="After restart"))]
            )

        assert same.kind == "noop"
        assert same.version == first.version
        assert changed.kind == "diff"
        assert changed.diff.from_version == first.version
        assert changed.version > first.version

    def test_other_sessions_start_fresh(self, tmp_path):
        with SnapshotDB(tmp_path / "snap.db") as db:
            _navigate(_session("s1", db), [(HOME, _home())])
            (frame,) = _navigate(_session("s2", db), [(HOME, _home())])
        assert frame.kind == "full"
