import os
import shutil
import threading
import time
import uuid
from pathlib import Path

import numpy as np
import pytest
import zmq
from PIL import Image

from project.settings import SettingsStore
from zmq_server import ZMQServer

FIXTURE_DIR = Path.home() / ".cache" / "backdrop" / "test-fixtures"

# Synthetic clip: white backdrop with a green box in the middle
VIDEO_W, VIDEO_H, VIDEO_FPS, VIDEO_FRAMES = 320, 180, 30, 60
BOX_RGB = (0, 200, 0)


def _wait_for_server(srv: ZMQServer, timeout: float = 2.0) -> bool:
    """Ping the server until it responds or timeout expires."""
    ctx = zmq.Context()
    sock = ctx.socket(zmq.REQ)
    sock.setsockopt(zmq.LINGER, 0)
    sock.setsockopt(zmq.RCVTIMEO, 500)
    sock.connect(f"tcp://127.0.0.1:{srv.port}")
    deadline = time.monotonic() + timeout
    alive = False
    while time.monotonic() < deadline:
        try:
            sock.send_json({"cmd": "ping", "id": "health", "_token": srv.token})
            resp = sock.recv_json()
            if resp.get("status") == "alive":
                alive = True
                break
        except zmq.Again:
            time.sleep(0.05)
    sock.close()
    ctx.term()
    return alive


def _make_server(base: Path) -> ZMQServer:
    output_dir = base / "downloads"
    output_dir.mkdir(parents=True, exist_ok=True)
    settings = SettingsStore(path=str(base / "settings.json"))
    return ZMQServer(settings=settings, output_dir=str(output_dir), render_hz=30)


@pytest.fixture(scope="session")
def _server_home():
    base = FIXTURE_DIR / f"server_{uuid.uuid4().hex[:8]}"
    base.mkdir(parents=True, exist_ok=True)
    yield base
    shutil.rmtree(base, ignore_errors=True)


@pytest.fixture(scope="session")
def _zmq_server_session(_server_home):
    """Start ONE ZMQ server per xdist worker (session-scoped)."""
    srv = _make_server(_server_home)
    thread = threading.Thread(target=srv.run, daemon=True)
    thread.start()
    if not _wait_for_server(srv):
        pytest.skip("ZMQ server failed to start within 2s")
    yield srv
    srv.running = False
    # Wait for poller timeout cycle to complete
    time.sleep(0.6)


@pytest.fixture
def zmq_server(_zmq_server_session):
    """Function-scoped wrapper: resets state between tests, shares session server."""
    _zmq_server_session.reset_state()
    _zmq_server_session.settings.set_api_key("")
    _zmq_server_session.running = True
    yield _zmq_server_session


@pytest.fixture
def zmq_server_disposable(home_tmp_path):
    """Disposable server for shutdown tests that destroy sockets/context."""
    srv = _make_server(home_tmp_path)
    thread = threading.Thread(target=srv.run, daemon=True)
    thread.start()
    if not _wait_for_server(srv):
        pytest.skip("ZMQ server failed to start within 2s")
    yield srv
    srv.running = False
    time.sleep(0.6)


class AuthenticatedZmqClient:
    """Wraps a ZMQ REQ socket and auto-injects the auth token."""

    def __init__(self, sock: zmq.Socket, token: str):
        self._sock = sock
        self._token = token

    def send_json(self, msg: dict) -> None:
        msg["_token"] = self._token
        self._sock.send_json(msg)

    def recv_json(self) -> dict:
        return self._sock.recv_json()

    def request(self, msg: dict) -> dict:
        self.send_json(msg)
        return self.recv_json()

    def close(self) -> None:
        self._sock.close()


@pytest.fixture
def zmq_client(zmq_server):
    """REQ socket connected to the test server (auto-injects auth token)."""
    ctx = zmq.Context()
    sock = ctx.socket(zmq.REQ)
    sock.setsockopt(zmq.RCVTIMEO, 10_000)
    sock.connect(f"tcp://127.0.0.1:{zmq_server.port}")
    client = AuthenticatedZmqClient(sock, zmq_server.token)
    yield client
    sock.close()
    ctx.term()


@pytest.fixture
def zmq_ping_client(zmq_server):
    """REQ socket connected to the test server's ping port."""
    ctx = zmq.Context()
    sock = ctx.socket(zmq.REQ)
    sock.connect(f"tcp://127.0.0.1:{zmq_server.ping_port}")
    client = AuthenticatedZmqClient(sock, zmq_server.token)
    yield client
    sock.close()
    ctx.term()


def _clip_frame(width: int = VIDEO_W, height: int = VIDEO_H) -> np.ndarray:
    """White RGBA frame with a solid green box over the middle third."""
    frame = np.full((height, width, 4), 255, dtype=np.uint8)
    frame[height // 3 : 2 * height // 3, width // 3 : 2 * width // 3, :3] = BOX_RGB
    return frame


@pytest.fixture(scope="session")
def synthetic_video_path():
    """2s 320x180 clip under ~/ (required by validate_upload).

    White backdrop, green box over the middle third, and a 16x16 gray marker in
    the top-left corner whose level rises by 4 per frame.
    """
    from video.writer import VideoWriter

    FIXTURE_DIR.mkdir(parents=True, exist_ok=True)
    path = str(FIXTURE_DIR / f"clip_{uuid.uuid4().hex[:8]}.mp4")
    w = VideoWriter(path, VIDEO_W, VIDEO_H, fps=VIDEO_FPS)
    for i in range(VIDEO_FRAMES):
        frame = _clip_frame()
        # Per-frame marker so seeks land on distinguishable frames
        frame[:16, :16, :3] = 4 * i
        w.write_frame(frame)
    w.close()
    yield path
    os.unlink(path)


@pytest.fixture(scope="session")
def background_image_path():
    """640x360 two-tone PNG under ~/: left half red, right half blue."""
    FIXTURE_DIR.mkdir(parents=True, exist_ok=True)
    path = str(FIXTURE_DIR / f"bg_{uuid.uuid4().hex[:8]}.png")
    pixels = np.zeros((360, 640, 3), dtype=np.uint8)
    pixels[:, :320] = (200, 30, 30)
    pixels[:, 320:] = (30, 30, 200)
    Image.fromarray(pixels).save(path)
    yield path
    os.unlink(path)


@pytest.fixture
def home_tmp_path():
    """tmp_path equivalent under ~/ for tests that go through validate_upload."""
    base = Path.home() / ".cache" / "backdrop" / "test-tmp"
    base.mkdir(parents=True, exist_ok=True)
    d = base / f"test_{uuid.uuid4().hex[:8]}"
    d.mkdir()
    yield d
    shutil.rmtree(d, ignore_errors=True)
