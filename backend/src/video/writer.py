"""Video encoding via PyAV."""

import av
import numpy as np

# Realtime VP9 settings; the default "good" deadline is far too slow for live capture.
VP9_OPTIONS = {"deadline": "realtime", "cpu-used": "8", "row-mt": "1"}


class VideoWriter:
    def __init__(
        self,
        path: str,
        width: int,
        height: int,
        fps: int = 30,
        codec: str = "libx264",
        options: dict | None = None,
    ):
        self.container = av.open(path, mode="w")
        self.stream = self.container.add_stream(codec, rate=fps)
        self.stream.width = width
        self.stream.height = height
        self.stream.pix_fmt = "yuv420p"
        if options is None and codec == "libvpx-vp9":
            options = VP9_OPTIONS
        if options:
            self.stream.options = dict(options)
        self.width = width
        self.height = height
        self.frame_count = 0

    def write_frame(self, frame_rgba: np.ndarray):
        """Write an RGBA frame (alpha is dropped)."""
        rgb = np.ascontiguousarray(frame_rgba[:, :, :3])
        frame = av.VideoFrame.from_ndarray(rgb, format="rgb24")
        for packet in self.stream.encode(frame):
            self.container.mux(packet)
        self.frame_count += 1

    def close(self):
        for packet in self.stream.encode():
            self.container.mux(packet)
        self.container.close()
