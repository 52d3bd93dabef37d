"""Ring buffer shared memory writer for live preview frames.

Layout: a 64-byte header followed by ``ring_size`` fixed-size slots. Each slot
holds a little-endian uint32 length and a JPEG payload. Header fields (all
``<I``): write_index, frame_count, slot_size, ring_size, width, height.
"""

import mmap
import os
import struct
from pathlib import Path

import numpy as np

from engine.cache import encode_mjpeg_fit

HEADER_SIZE = 64
HEADER_FORMAT = "<IIIIII"
DEFAULT_RING_SIZE = 4
DEFAULT_SLOT_SIZE = 4 * 1024 * 1024  # 4MB


def default_shm_path() -> str:
    return os.environ.get(
        "BACKDROP_SHM_PATH",
        str(Path.home() / ".cache" / "backdrop" / "preview"),
    )


class SharedMemoryWriter:
    def __init__(
        self,
        path: str | None = None,
        ring_size: int = DEFAULT_RING_SIZE,
        slot_size: int = DEFAULT_SLOT_SIZE,
    ):
        self.path = path or default_shm_path()
        self.ring_size = ring_size
        self.slot_size = slot_size
        self.total_size = HEADER_SIZE + (ring_size * slot_size)
        self.write_index = 0
        self.frame_count = 0
        self.last_quality = 0
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self.fd = os.open(self.path, os.O_RDWR | os.O_CREAT | os.O_TRUNC, 0o600)
        os.ftruncate(self.fd, self.total_size)
        self.buf = mmap.mmap(self.fd, self.total_size)
        self._closed = False
        self._write_header(0, 0)

    def _write_header(self, width: int, height: int):
        struct.pack_into(
            HEADER_FORMAT,
            self.buf,
            0,
            self.write_index,
            self.frame_count,
            self.slot_size,
            self.ring_size,
            width,
            height,
        )

    def write_frame(self, frame_rgba: np.ndarray) -> int:
        """Write one composite; quality steps down until it fits a slot.

        Returns the index of the slot write.
        """
        data, quality = encode_mjpeg_fit(frame_rgba, max_bytes=self.slot_size - 4)
        self.last_quality = quality
        slot = self.write_index % self.ring_size
        offset = HEADER_SIZE + (slot * self.slot_size)
        struct.pack_into("<I", self.buf, offset, len(data))
        self.buf[offset + 4 : offset + 4 + len(data)] = data
        self.write_index += 1
        self.frame_count += 1
        h, w = frame_rgba.shape[:2]
        self._write_header(w, h)
        return self.write_index - 1

    def close(self):
        if self._closed:
            return
        self._closed = True
        self.buf.close()
        os.close(self.fd)
