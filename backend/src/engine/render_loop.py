"""Render loop: drives the compositor at a fixed cadence.

IDLE -> ACTIVE -> STOPPED. While ACTIVE a daemon thread runs one compositor
pass per tick and publishes the result to every registered sink. Inputs are
re-read from a fresh session snapshot each tick, so edits land on the next
frame without a restart. A tick with no valid canvas draws nothing and the
loop keeps going until dimensions become valid.
"""

import logging
import threading
import time
from collections import deque
from enum import Enum

import sentry_sdk

from engine.compositor import Compositor
from engine.session import Session
from engine.sinks import FrameSink, LatestFrameSink

logger = logging.getLogger(__name__)

DEFAULT_HZ = 60.0

# Per-tick timing thresholds (milliseconds)
TICK_WARN_MS = 100

# Rolling tick timings
TIMING_WINDOW = 240


class LoopState(Enum):
    IDLE = "idle"
    ACTIVE = "active"
    STOPPED = "stopped"


class RenderLoop:
    def __init__(
        self,
        session: Session,
        compositor: Compositor | None = None,
        hz: float = DEFAULT_HZ,
    ) -> None:
        self.session = session
        self.compositor = compositor or Compositor()
        self.interval = 1.0 / max(1.0, min(240.0, hz))
        self.latest = LatestFrameSink()
        self.state = LoopState.IDLE
        self.tick_count = 0
        self.frames_drawn = 0
        self._sinks: list[FrameSink] = []
        self._sinks_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._timing: deque = deque(maxlen=TIMING_WINDOW)

    # --- sinks ---

    def add_sink(self, sink: FrameSink) -> None:
        with self._sinks_lock:
            if sink not in self._sinks:
                self._sinks.append(sink)

    def remove_sink(self, sink: FrameSink) -> None:
        with self._sinks_lock:
            if sink in self._sinks:
                self._sinks.remove(sink)

    # --- lifecycle ---

    @property
    def is_active(self) -> bool:
        return self.state == LoopState.ACTIVE

    def start(self) -> None:
        """Start ticking. No-op if already active; a stopped loop cannot restart."""
        if self.state == LoopState.ACTIVE:
            return
        if self.state == LoopState.STOPPED:
            raise RuntimeError("Render loop already stopped")
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="render-loop", daemon=True)
        self.state = LoopState.ACTIVE
        self._thread.start()
        logger.info("Render loop started at %.1f Hz", 1.0 / self.interval)

    def stop(self, timeout: float = 2.0) -> None:
        """Stop ticking and tear down sinks. Safe to call repeatedly."""
        if self.state == LoopState.STOPPED:
            return
        self._stop_event.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        self._thread = None
        self.state = LoopState.STOPPED
        with self._sinks_lock:
            sinks = list(self._sinks)
            self._sinks.clear()
        for sink in sinks:
            try:
                sink.close()
            except Exception as e:
                logger.warning("Sink close failed: %s", type(e).__name__)
        logger.info("Render loop stopped after %d ticks", self.tick_count)

    def _run(self) -> None:
        next_due = time.monotonic()
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception as e:
                # Never let one bad tick kill the loop
                sentry_sdk.capture_exception(e)
                logger.error("Render tick failed: %s", type(e).__name__)
            next_due += self.interval
            delay = next_due - time.monotonic()
            if delay < 0:
                # Fell behind; resync instead of bursting to catch up
                next_due = time.monotonic()
                delay = 0
            self._stop_event.wait(delay)

    # --- one pass ---

    def tick(self):
        """Run one compositor pass and publish it. Returns the frame or None."""
        t0 = time.monotonic()
        self.tick_count += 1
        snap = self.session.snapshot()
        frame = self.compositor.render(
            snap.background_size,
            snap.background,
            snap.video,
            snap.transform,
            snap.chroma,
        )
        if frame is None:
            self.latest.clear()
        else:
            self.frames_drawn += 1
            self.latest.push(frame, t0)
            with self._sinks_lock:
                sinks = list(self._sinks)
            for sink in sinks:
                try:
                    sink.push(frame, t0)
                except Exception as e:
                    sentry_sdk.capture_exception(e)
                    logger.error("Frame sink %s failed: %s", type(sink).__name__, type(e).__name__)

        elapsed_ms = (time.monotonic() - t0) * 1000
        self._timing.append(elapsed_ms)
        if elapsed_ms > TICK_WARN_MS:
            logger.warning(
                "Render tick took %.0fms (>%dms warn threshold)", elapsed_ms, TICK_WARN_MS
            )
        return frame

    @property
    def composite_active(self) -> bool:
        """True once a frame with both background and video has been drawn."""
        snap = self.session.snapshot()
        frame, _ = self.latest.latest()
        return frame is not None and snap.composite_ready

    def stats(self) -> dict:
        """Return p50/p95/max tick time and the overrun rate."""
        s = sorted(self._timing)
        budget_ms = self.interval * 1000
        return {
            "state": self.state.value,
            "ticks": self.tick_count,
            "frames_drawn": self.frames_drawn,
            "fallback_frames": self.compositor.fallback_count,
            "target_hz": round(1.0 / self.interval, 2),
            "p50": s[len(s) // 2] if s else 0,
            "p95": s[int(len(s) * 0.95)] if len(s) >= 20 else None,
            "max": max(s) if s else 0,
            "overrun_rate": sum(1 for t in s if t > budget_ms) / len(s) if s else 0,
            "samples": len(s),
        }

    def flush_stats(self) -> None:
        self._timing.clear()
