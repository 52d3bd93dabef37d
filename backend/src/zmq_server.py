import json
import logging
import time
import uuid

import sentry_sdk
import zmq

from ai.color_suggest import ColorSuggester
from engine.cache import encode_jpeg_b64
from engine.recorder import Recorder
from engine.render_loop import DEFAULT_HZ, RenderLoop
from engine.session import Session
from engine.sinks import SharedMemorySink
from engine.transform import PERCENT_FIELDS
from memory.writer import SharedMemoryWriter
from project.settings import SettingsStore
from security import (
    validate_frame_count,
    validate_output_dir,
    validate_preview_path,
    validate_upload,
)
from video.ingest import probe

logger = logging.getLogger(__name__)

INTERNAL_ERROR = "Internal processing error"


class ZMQServer:
    def __init__(
        self,
        settings: SettingsStore | None = None,
        output_dir: str | None = None,
        render_hz: float = DEFAULT_HZ,
    ):
        self.context = zmq.Context()
        self.socket = self.context.socket(zmq.REP)
        self.socket.setsockopt(zmq.MAXMSGSIZE, 1_048_576)  # 1 MB limit
        self.port = self.socket.bind_to_random_port("tcp://127.0.0.1")
        # Dedicated ping socket, never blocked by heavy commands
        self.ping_socket = self.context.socket(zmq.REP)
        self.ping_socket.setsockopt(zmq.MAXMSGSIZE, 4096)  # 4 KB limit (pings only)
        self.ping_port = self.ping_socket.bind_to_random_port("tcp://127.0.0.1")
        # Auth token keeps other local processes off the command socket
        self.token = str(uuid.uuid4())
        self.start_time = time.time()
        self.running = False
        self.settings = settings or SettingsStore()
        self._output_dir = output_dir
        self._render_hz = render_hz
        self._build_session()

    def _build_session(self):
        self.session = Session()
        self.render_loop = RenderLoop(self.session, hz=self._render_hz)
        self.recorder = Recorder(output_dir=self._output_dir)
        self.render_loop.add_sink(self.recorder)
        self.preview_sink: SharedMemorySink | None = None
        self.suggester = ColorSuggester(
            apply=lambda hex_color: self.session.update_chroma_key(hex_color=hex_color)
        )
        self.render_loop.start()

    def reset_state(self):
        """Tear down the session and start a fresh one without closing sockets.

        Used by session-scoped test fixtures to reset between tests.
        """
        self.render_loop.stop()
        self.session.close()
        self._build_session()

    def _validate_token(self, message: dict) -> str | None:
        """Validate auth token. Returns error message or None if valid."""
        msg_token = message.get("_token")
        if msg_token != self.token:
            return "invalid or missing auth token"
        return None

    def _make_ping_response(self, msg_id: str | None) -> dict:
        return {
            "id": msg_id,
            "status": "alive",
            "uptime_s": round(time.time() - self.start_time, 1),
            "render_state": self.render_loop.state.value,
        }

    def handle_message(self, message: dict) -> dict:
        cmd = message.get("cmd")
        msg_id = message.get("id")

        token_err = self._validate_token(message)
        if token_err:
            return {"id": msg_id, "ok": False, "error": token_err}

        if cmd == "ping":
            return self._make_ping_response(msg_id)
        elif cmd == "shutdown":
            self.running = False
            return {"id": msg_id, "ok": True}

        handler = self._handlers().get(cmd)
        if handler is None:
            return {"id": msg_id, "ok": False, "error": f"unknown: {cmd}"}
        try:
            response = handler(message)
        except Exception as e:
            sentry_sdk.capture_exception(e)
            logger.error("%s handler error: %s", cmd, type(e).__name__)
            return {"id": msg_id, "ok": False, "error": INTERNAL_ERROR}
        response["id"] = msg_id
        return response

    def _handlers(self) -> dict:
        return {
            "load_background": self._handle_load_background,
            "load_video": self._handle_load_video,
            "video_play": self._handle_video_play,
            "video_pause": self._handle_video_pause,
            "video_seek": self._handle_video_seek,
            "set_transform": self._handle_set_transform,
            "set_transform_percent": self._handle_set_transform_percent,
            "set_chroma_key": self._handle_set_chroma_key,
            "get_state": self._handle_get_state,
            "preview_frame": self._handle_preview_frame,
            "attach_preview": self._handle_attach_preview,
            "record_start": self._handle_record_start,
            "record_stop": self._handle_record_stop,
            "record_status": self._handle_record_status,
            "suggest_color": self._handle_suggest_color,
            "set_api_key": self._handle_set_api_key,
            "render_stats": self._handle_render_stats,
            "flush_state": self._handle_flush_state,
        }

    # --- assets ---

    def _handle_load_background(self, message: dict) -> dict:
        path = message.get("path")
        if not path:
            return {"ok": False, "error": "missing path"}

        errors = validate_upload(path, kind="image")
        if errors:
            return {"ok": False, "error": "; ".join(errors)}

        self.session.load_background(path)
        return {"ok": True, "state": self.session.background.state.value}

    def _handle_load_video(self, message: dict) -> dict:
        path = message.get("path")
        if not path:
            return {"ok": False, "error": "missing path"}

        # SEC-5: Validate upload
        errors = validate_upload(path, kind="video")
        if errors:
            return {"ok": False, "error": "; ".join(errors)}

        info = probe(path)
        if not info["ok"]:
            return {"ok": False, "error": info["error"]}

        # SEC-6: Validate frame count
        if info.get("frame_count", 0) > 0:
            fc_errors = validate_frame_count(info["frame_count"])
            if fc_errors:
                return {"ok": False, "error": "; ".join(fc_errors)}

        self.session.load_video(path)
        return {
            "ok": True,
            "state": self.session.video.state.value,
            "width": info["width"],
            "height": info["height"],
            "fps": info["fps"],
        }

    def _current_video(self):
        return self.session.video.value

    def _handle_video_play(self, message: dict) -> dict:
        video = self._current_video()
        if video is None:
            return {"ok": False, "error": "no video loaded"}
        video.play()
        return {"ok": True, "is_playing": True}

    def _handle_video_pause(self, message: dict) -> dict:
        video = self._current_video()
        if video is None:
            return {"ok": False, "error": "no video loaded"}
        video.pause()
        return {"ok": True, "is_playing": False}

    def _handle_video_seek(self, message: dict) -> dict:
        video = self._current_video()
        if video is None:
            return {"ok": False, "error": "no video loaded"}
        try:
            time_s = float(message.get("time", 0.0))
        except (TypeError, ValueError):
            return {"ok": False, "error": "invalid time"}
        video.seek(time_s)
        return {"ok": True, "position_s": video.position_s}

    # --- transform / key ---

    def _transform_response(self, applied: bool) -> dict:
        percentages = self.session.transform_percentages()
        return {
            "ok": True,
            "applied": applied,
            "transform": self.session.transform.to_dict(),
            "percentages": percentages.to_dict() if percentages else None,
        }

    def _handle_set_transform(self, message: dict) -> dict:
        applied = self.session.set_transform(
            message.get("x"),
            message.get("y"),
            message.get("width"),
            message.get("height"),
        )
        return self._transform_response(applied)

    def _handle_set_transform_percent(self, message: dict) -> dict:
        field = message.get("field")
        if field not in PERCENT_FIELDS:
            return {"ok": False, "error": f"unknown field: {field}"}
        applied = self.session.set_transform_percent(field, message.get("value"))
        return self._transform_response(applied)

    def _handle_set_chroma_key(self, message: dict) -> dict:
        settings = self.session.update_chroma_key(
            hex_color=message.get("hex_color"),
            color=message.get("color"),
            tolerance=message.get("tolerance"),
        )
        return {"ok": True, "chroma": settings.to_dict()}

    def _handle_get_state(self, message: dict) -> dict:
        state = self.session.describe()
        state["recording"] = self.recorder.get_status()
        state["suggestion"] = self.suggester.status()
        state["api_key_available"] = self.settings.api_key_available
        state["ok"] = True
        return state

    # --- preview ---

    def _handle_preview_frame(self, message: dict) -> dict:
        frame, timestamp = self.render_loop.latest.latest()
        if frame is None:
            return {"ok": False, "error": "no composite available"}
        max_dim = message.get("max_dim")
        if max_dim is not None:
            try:
                max_dim = int(max_dim)
            except (TypeError, ValueError, OverflowError):
                return {"ok": False, "error": "invalid max_dim"}
            if max_dim < 1:
                return {"ok": False, "error": "invalid max_dim"}
        return {
            "ok": True,
            "frame_data": encode_jpeg_b64(frame, max_dim=max_dim),
            "width": frame.shape[1],
            "height": frame.shape[0],
            "timestamp": timestamp,
        }

    def _handle_attach_preview(self, message: dict) -> dict:
        if self.preview_sink is None:
            path = message.get("path")
            if path is not None:
                errors = (
                    validate_preview_path(path)
                    if isinstance(path, str)
                    else ["Preview path must be a string"]
                )
                if errors:
                    return {"ok": False, "error": "; ".join(errors)}
            writer = SharedMemoryWriter(path=path)
            self.preview_sink = SharedMemorySink(writer)
            self.render_loop.add_sink(self.preview_sink)
        return {
            "ok": True,
            "path": self.preview_sink.writer.path,
            "ring_size": self.preview_sink.writer.ring_size,
            "slot_size": self.preview_sink.writer.slot_size,
        }

    # --- recording ---

    def _handle_record_start(self, message: dict) -> dict:
        errors = validate_output_dir(self.recorder.output_dir)
        if errors:
            return {"ok": False, "error": "; ".join(errors)}
        try:
            self.recorder.start(composite_active=self.render_loop.composite_active)
        except RuntimeError as e:
            return {"ok": False, "error": str(e)}
        return {"ok": True, "is_recording": True}

    def _handle_record_stop(self, message: dict) -> dict:
        path = self.recorder.stop()
        status = self.recorder.get_status()
        return {"ok": True, "is_recording": False, "output_path": path, "error": status.get("error")}

    def _handle_record_status(self, message: dict) -> dict:
        status = self.recorder.get_status()
        status["ok"] = True
        return status

    # --- collaborators ---

    def _handle_suggest_color(self, message: dict) -> dict:
        video = self._current_video()
        frame = video.current_frame() if video is not None else None
        started = self.suggester.suggest_async(
            None if frame is None else frame.copy(), self.settings.api_key
        )
        return {"ok": True, "started": started, "suggesting": self.suggester.suggesting}

    def _handle_set_api_key(self, message: dict) -> dict:
        self.settings.set_api_key(message.get("api_key", ""))
        return {"ok": True, "api_key_available": self.settings.api_key_available}

    def _handle_render_stats(self, message: dict) -> dict:
        return {"ok": True, "stats": self.render_loop.stats()}

    def _handle_flush_state(self, message: dict) -> dict:
        self.render_loop.flush_stats()
        return {"ok": True}

    def run(self):
        self.running = True
        poller = zmq.Poller()
        poller.register(self.socket, zmq.POLLIN)
        poller.register(self.ping_socket, zmq.POLLIN)
        while self.running:
            events = dict(poller.poll(timeout=500))

            # Handle ping socket first (lightweight, never blocked)
            if self.ping_socket in events:
                try:
                    raw = self.ping_socket.recv()
                    message = json.loads(raw)
                    if not isinstance(message, dict):
                        raise json.JSONDecodeError("not an object", "", 0)
                    msg_id = message.get("id")
                    token_err = self._validate_token(message)
                    if token_err:
                        self.ping_socket.send_json(
                            {"id": msg_id, "ok": False, "error": token_err}
                        )
                    else:
                        self.ping_socket.send_json(self._make_ping_response(msg_id))
                except (json.JSONDecodeError, UnicodeDecodeError):
                    self.ping_socket.send_json(
                        {"ok": False, "error": "Invalid message format"}
                    )
                except zmq.ZMQError:
                    logger.error("ZMQ error on ping socket")
                    break  # socket state is unrecoverable

            if self.socket in events:
                try:
                    raw = self.socket.recv()
                    message = json.loads(raw)
                except (json.JSONDecodeError, UnicodeDecodeError):
                    # MUST send reply before next recv (REP protocol)
                    self.socket.send_json(
                        {"ok": False, "error": "Invalid message format"}
                    )
                    continue
                except zmq.ZMQError:
                    logger.error("ZMQ error on main socket")
                    break

                if not isinstance(message, dict):
                    self.socket.send_json({"ok": False, "error": "Invalid message format"})
                    continue

                try:
                    response = self.handle_message(message)
                except Exception as e:
                    sentry_sdk.capture_exception(e)
                    logger.error("Unhandled handler error: %s", type(e).__name__)
                    response = {"ok": False, "error": INTERNAL_ERROR}

                self.socket.send_json(response)
        self.close()

    def close(self):
        self.render_loop.stop()
        self.session.close()
        self.ping_socket.close()
        self.socket.close()
        self.context.term()
