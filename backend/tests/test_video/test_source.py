"""Tests for the looping video source."""

import av
import numpy as np
import pytest

from assets.loading import AssetLoadError
from video.source import VideoSource


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class FakeReader:
    """Reader stub: frame i is filled with value i; may over-report its length."""

    def __init__(self, frames=30, reported=None, fps=30.0, fail_at=None):
        self.width = 8
        self.height = 4
        self.fps = fps
        self.frame_count = frames if reported is None else reported
        self._frames = frames
        self.fail_at = fail_at
        self.decoded = []
        self.closed = False

    def decode_frame(self, index):
        self.decoded.append(index)
        if index == self.fail_at:
            raise av.error.InvalidDataError(1094995529, "Invalid data")
        if index >= self._frames:
            raise IndexError(index)
        return np.full((self.height, self.width, 4), index, dtype=np.uint8)

    def close(self):
        self.closed = True


def make_source(**kwargs):
    clock = FakeClock()
    return VideoSource(FakeReader(**kwargs), clock=clock), clock


class TestPlayback:
    def test_paused_at_start(self):
        source, clock = make_source()
        clock.now = 5
        assert not source.is_playing
        assert source.position_s == 0

    def test_position_advances_while_playing(self):
        source, clock = make_source()
        source.play()
        clock.now = 0.5
        assert source.position_s == pytest.approx(0.5)
        assert source.target_frame_index == 15

    def test_loops_at_end(self):
        source, clock = make_source(frames=30)
        source.play()
        clock.now = 1.25
        assert source.position_s == pytest.approx(0.25)

    def test_pause_freezes_position(self):
        source, clock = make_source()
        source.play()
        clock.now = 0.3
        source.pause()
        clock.now = 0.9
        assert source.position_s == pytest.approx(0.3)

    def test_seek_clamped(self):
        source, clock = make_source(frames=30)
        source.seek(0.5)
        assert source.position_s == pytest.approx(0.5)
        source.seek(-3)
        assert source.position_s == 0

    def test_info(self):
        source, _ = make_source()
        info = source.info()
        assert info["width"] == 8
        assert info["aspect_ratio"] == 2.0
        assert info["duration_s"] == 1.0
        assert info["is_playing"] is False


class TestCurrentFrame:
    def test_decodes_frame_for_position(self):
        source, clock = make_source()
        source.play()
        clock.now = 10 / 30 + 0.001
        assert source.current_frame()[0, 0, 0] == 10

    def test_same_index_is_cached(self):
        source, _ = make_source()
        source.current_frame()
        source.current_frame()
        assert source._reader.decoded == [0]

    def test_over_reported_length_wraps_to_start(self):
        source, clock = make_source(frames=20, reported=30)
        source.seek(25 / 30 + 0.001)
        frame = source.current_frame()
        assert frame[0, 0, 0] == 0
        assert source.frame_count == 25

    def test_decode_error_returns_last_frame(self):
        source, clock = make_source(fail_at=3)
        source.current_frame()
        source.seek(3 / 30 + 0.001)
        frame = source.current_frame()
        assert frame[0, 0, 0] == 0

    def test_closed_source_returns_none(self):
        source, _ = make_source()
        source.close()
        source.close()
        assert source.current_frame() is None
        assert source._reader.closed


class TestOpen:
    def test_open_real_clip(self, synthetic_video_path):
        source = VideoSource.open(synthetic_video_path)
        try:
            assert (source.width, source.height) == (320, 180)
            assert source.frame_count == 60
            frame = source.current_frame()
            assert frame.shape == (180, 320, 4)
        finally:
            source.close()

    def test_open_missing_file(self):
        with pytest.raises(AssetLoadError):
            VideoSource.open("/nonexistent/clip.mp4")
