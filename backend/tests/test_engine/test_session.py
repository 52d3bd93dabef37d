"""Tests for the editing session: asset callbacks, setters, snapshots."""

import threading

import numpy as np
import pytest

from assets.background import from_array
from assets.loading import AssetLoadError, AssetSlot, AssetState
from engine.session import Session
from engine.transform import VideoTransform


class FakeVideo:
    def __init__(self, width=1600, height=900):
        self.width = width
        self.height = height
        self.playing = False
        self.closed = False

    def play(self):
        self.playing = True

    def current_frame(self):
        return np.zeros((self.height, self.width, 4), dtype=np.uint8)

    def info(self):
        return {"width": self.width, "height": self.height}

    def close(self):
        self.closed = True


def make_session(videos=None, bg_gate=None):
    """Session whose slots decode from in-memory fakes keyed by path."""
    videos = videos or {}

    def decode_bg(path):
        if bg_gate is not None and path.startswith("slow"):
            bg_gate.wait(5)
        if path == "broken.png":
            raise AssetLoadError("Failed to decode background image")
        w, h = (int(v) for v in path.split(".")[0].split("_")[-1].split("x"))
        return from_array(np.zeros((h, w, 3), dtype=np.uint8), path=path)

    def decode_video(path):
        if path not in videos:
            raise AssetLoadError("Failed to open video")
        return videos[path]

    return Session(
        background=AssetSlot("background", decode_bg),
        video=AssetSlot("video", decode_video),
    )


class TestAssets:
    def test_background_ready_sets_canvas_size(self):
        session = make_session()
        session.load_background("640x360.png")
        assert session.background.wait(5)
        assert session.background.state == AssetState.READY
        assert session.background_size == (640, 360)

    def test_failed_background_clears_size(self):
        session = make_session()
        session.load_background("640x360.png")
        session.background.wait(5)
        session.load_background("broken.png")
        session.background.wait(5)
        assert session.background.state == AssetState.FAILED
        assert session.background_size is None
        assert "decode" in session.background.error

    def test_size_unknown_while_loading(self):
        gate = threading.Event()
        session = make_session(bg_gate=gate)
        session.load_background("640x360.png")
        session.background.wait(5)
        session.load_background("slow_20x10.png")
        assert session.background_size is None
        assert session.snapshot().background is None
        gate.set()
        session.background.wait(5)
        assert session.background_size == (20, 10)

    def test_video_ready_sets_aspect_and_plays(self):
        video = FakeVideo(1600, 900)
        session = make_session({"clip.mp4": video})
        session.load_video("clip.mp4")
        assert session.video.wait(5)
        assert session.aspect_ratio == pytest.approx(16 / 9)
        assert video.playing
        assert session.transform.height == 1000

    def test_replacing_video_closes_previous(self):
        first, second = FakeVideo(), FakeVideo(640, 480)
        session = make_session({"a.mp4": first, "b.mp4": second})
        session.load_video("a.mp4")
        session.video.wait(5)
        session.load_video("b.mp4")
        session.video.wait(5)
        assert first.closed
        assert session.aspect_ratio == pytest.approx(4 / 3)

    def test_failed_video_clears_aspect(self):
        session = make_session()
        session.load_video("missing.mp4")
        session.video.wait(5)
        assert session.video.state == AssetState.FAILED
        assert session.aspect_ratio is None


class TestEdits:
    def test_chroma_survives_asset_changes(self):
        session = make_session({"clip.mp4": FakeVideo()})
        session.update_chroma_key(hex_color="#00FF00", tolerance=80)
        session.load_background("640x360.png")
        session.load_video("clip.mp4")
        session.background.wait(5)
        session.video.wait(5)
        assert session.chroma.hex_color == "#00FF00"
        assert session.chroma.tolerance == 80

    def test_percent_edit_requires_assets(self):
        session = make_session()
        assert session.set_transform_percent("width_percent", 50) is False

    def test_percent_edit(self):
        session = make_session({"clip.mp4": FakeVideo()})
        session.load_background("800x600.png")
        session.load_video("clip.mp4")
        session.background.wait(5)
        session.video.wait(5)
        assert session.set_transform_percent("width_percent", 50)
        assert session.transform.width == 400
        assert session.transform.height == 225

    def test_set_transform(self):
        session = make_session()
        assert session.set_transform(1, 2, 30, 40)
        assert session.transform == VideoTransform(1, 2, 30, 40)


class TestSnapshot:
    def test_snapshot_is_frozen_view(self):
        session = make_session()
        snap = session.snapshot()
        session.update_chroma_key(tolerance=1)
        assert snap.chroma.tolerance == 255
        assert session.snapshot().chroma.tolerance == 1

    def test_composite_ready_needs_both_assets(self):
        session = make_session({"clip.mp4": FakeVideo()})
        session.load_background("64x36.png")
        session.background.wait(5)
        assert not session.snapshot().composite_ready
        session.load_video("clip.mp4")
        session.video.wait(5)
        assert session.snapshot().composite_ready

    def test_describe(self):
        session = make_session({"clip.mp4": FakeVideo()})
        session.load_background("1000x500.png")
        session.load_video("clip.mp4")
        session.background.wait(5)
        session.video.wait(5)
        state = session.describe()
        assert state["background"] == {"state": "ready", "dimensions": [1000, 500], "error": None}
        assert state["video"]["state"] == "ready"
        assert state["chroma"]["hex_color"] == "#FFFFFF"
        assert state["percentages"]["width"] == 177.8

    def test_close_unloads_assets(self):
        video = FakeVideo()
        session = make_session({"clip.mp4": video})
        session.load_video("clip.mp4")
        session.video.wait(5)
        session.close()
        assert video.closed
        assert session.video.state == AssetState.UNLOADED


def stall_on(slot, path):
    """Block the settle of ``path`` before later listeners see it.

    Returns (reached, release). Must be added before the Session's listener.
    """
    reached, release = threading.Event(), threading.Event()

    def listener(state, value, generation):
        if value is not None and getattr(value, "path", None) == path:
            reached.set()
            release.wait(5)

    slot.add_listener(listener)
    return reached, release


def settled_events(slot):
    """Event per settled generation, fired after every earlier listener ran."""
    events = {}

    def listener(state, value, generation):
        events.setdefault(generation, threading.Event()).set()

    slot.add_listener(listener)
    return lambda gen: events.setdefault(gen, threading.Event())


class TestSupersededSettle:
    def test_old_background_size_not_restored(self):
        slow_gate = threading.Event()

        def decode_bg(path):
            if path.startswith("slow"):
                slow_gate.wait(5)
            w, h = (int(v) for v in path.split(".")[0].split("_")[-1].split("x"))
            return from_array(np.zeros((h, w, 3), dtype=np.uint8), path=path)

        background = AssetSlot("background", decode_bg)
        reached, release = stall_on(background, "200x100.png")
        session = Session(background=background, video=AssetSlot("video", FakeVideo))
        settled = settled_events(background)

        session.load_background("200x100.png")
        first = background.generation
        assert reached.wait(5)
        session.load_background("slow_20x10.png")
        release.set()
        assert settled(first).wait(5)

        assert background.state == AssetState.LOADING
        assert session.background_size is None
        assert session.snapshot().background_size is None

        slow_gate.set()
        assert background.wait(5)
        assert session.background_size == (20, 10)

    def test_old_video_aspect_not_restored(self):
        wide, square = FakeVideo(1600, 400), FakeVideo(500, 500)
        wide.path, square.path = "wide.mp4", "square.mp4"
        square_gate = threading.Event()

        def decode_video(path):
            if path == "square.mp4":
                square_gate.wait(5)
            return {"wide.mp4": wide, "square.mp4": square}[path]

        video = AssetSlot("video", decode_video)
        reached, release = stall_on(video, "wide.mp4")
        session = Session(video=video)
        settled = settled_events(video)
        session.set_transform(0, 0, 800, 450)

        session.load_video("wide.mp4")
        first = video.generation
        assert reached.wait(5)
        session.load_video("square.mp4")
        release.set()
        assert settled(first).wait(5)

        assert session.aspect_ratio is None
        assert session.transform.height == 450
        assert not wide.playing

        square_gate.set()
        assert video.wait(5)
        assert session.aspect_ratio == pytest.approx(1.0)
        assert session.transform.height == 800
