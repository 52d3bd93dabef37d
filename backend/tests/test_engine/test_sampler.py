"""Tests for the frame sampler."""

import numpy as np
import pytest

from engine.sampler import FrameSampler


class FakeSource:
    def __init__(self, width, height, frame=None):
        self.width = width
        self.height = height
        self.frame = frame

    def current_frame(self):
        return self.frame


def test_zero_dimension_skips_without_error():
    sampler = FrameSampler()
    assert sampler.sample(FakeSource(0, 0, np.zeros((1, 1, 4), np.uint8))) is None
    assert sampler.sample(FakeSource(10, 0)) is None
    assert sampler.buffer_shape is None


def test_no_decoded_frame_yet():
    assert FrameSampler().sample(FakeSource(4, 2, None)) is None


def test_buffer_matches_native_size():
    frame = np.full((2, 4, 4), 9, dtype=np.uint8)
    sampler = FrameSampler()
    out = sampler.sample(FakeSource(4, 2, frame))
    assert out.shape == (2, 4, 4)
    np.testing.assert_array_equal(out, frame)


def test_buffer_is_a_copy():
    frame = np.full((2, 2, 4), 9, dtype=np.uint8)
    out = FrameSampler().sample(FakeSource(2, 2, frame))
    out[:, :, 3] = 0
    assert (frame[:, :, 3] == 9).all()


def test_buffer_reused_for_same_size():
    sampler = FrameSampler()
    a = sampler.sample(FakeSource(2, 2, np.zeros((2, 2, 4), np.uint8)))
    b = sampler.sample(FakeSource(2, 2, np.ones((2, 2, 4), np.uint8)))
    assert a is b


def test_buffer_reallocated_on_resolution_change():
    sampler = FrameSampler()
    sampler.sample(FakeSource(2, 2, np.zeros((2, 2, 4), np.uint8)))
    out = sampler.sample(FakeSource(6, 3, np.zeros((3, 6, 4), np.uint8)))
    assert out.shape == (3, 6, 4)
    assert sampler.buffer_shape == (3, 6, 4)


def test_rgb_frame_gets_opaque_alpha():
    frame = np.full((2, 2, 3), 40, dtype=np.uint8)
    out = FrameSampler().sample(FakeSource(2, 2, frame))
    assert (out[:, :, :3] == 40).all()
    assert (out[:, :, 3] == 255).all()


def test_size_mismatch_raises():
    sampler = FrameSampler()
    with pytest.raises(ValueError, match="does not match"):
        sampler.sample(FakeSource(4, 4, np.zeros((2, 2, 4), np.uint8)))


def test_reset_drops_buffer():
    sampler = FrameSampler()
    sampler.sample(FakeSource(2, 2, np.zeros((2, 2, 4), np.uint8)))
    sampler.reset()
    assert sampler.buffer_shape is None
