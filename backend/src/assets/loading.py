"""Asset loading state machine: Unloaded / Loading / Ready / Failed.

Decoding happens on a daemon thread; the render loop polls ``state`` each tick
and never blocks on a load. Each ``load()`` bumps a generation counter so a
slow decode that finishes after a newer upload is discarded instead of
overwriting the newer asset.
"""

import logging
import threading
from enum import Enum
from typing import Callable, Generic, TypeVar

import sentry_sdk

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AssetState(Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class AssetLoadError(Exception):
    """Raised by decode functions for an undecodable asset."""


class AssetSlot(Generic[T]):
    """Holds at most one asset of a kind plus its load state."""

    def __init__(self, kind: str, decode: Callable[[str], T]) -> None:
        self.kind = kind
        self._decode = decode
        self._lock = threading.Lock()
        self._generation = 0
        self._state = AssetState.UNLOADED
        self._value: T | None = None
        self._error: str | None = None
        self._path: str | None = None
        self._done = threading.Event()
        self._done.set()
        self._listeners: list[Callable[[AssetState, T | None, int], None]] = []

    @property
    def state(self) -> AssetState:
        return self._state

    @property
    def value(self) -> T | None:
        """The decoded asset while READY, else None."""
        with self._lock:
            return self._value if self._state == AssetState.READY else None

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def path(self) -> str | None:
        return self._path

    @property
    def generation(self) -> int:
        return self._generation

    def is_current(self, generation: int) -> bool:
        """False once a newer load() or clear() has superseded ``generation``."""
        with self._lock:
            return generation == self._generation

    def add_listener(self, fn: Callable[[AssetState, T | None, int], None]) -> None:
        """Call ``fn(state, value, generation)`` when a load settles (READY or FAILED).

        Listeners run outside the slot lock, so a newer load may already have
        started; check :meth:`is_current` before acting on ``value``.
        """
        self._listeners.append(fn)

    def load(self, path: str) -> int:
        """Start decoding ``path`` in the background. Returns the generation."""
        with self._lock:
            self._generation += 1
            generation = self._generation
            previous = self._value
            self._state = AssetState.LOADING
            self._value = None
            self._error = None
            self._path = path
            self._done.clear()
        _close_quietly(previous)

        thread = threading.Thread(
            target=self._run_load,
            args=(generation, path),
            name=f"load-{self.kind}",
            daemon=True,
        )
        thread.start()
        return generation

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the current load settles. Returns False on timeout."""
        return self._done.wait(timeout)

    def clear(self) -> None:
        with self._lock:
            self._generation += 1
            previous = self._value
            self._state = AssetState.UNLOADED
            self._value = None
            self._error = None
            self._path = None
            self._done.set()
        _close_quietly(previous)

    def _run_load(self, generation: int, path: str) -> None:
        value = None
        error = None
        try:
            value = self._decode(path)
        except AssetLoadError as e:
            error = str(e)
            logger.warning("Failed to load %s: %s", self.kind, e)
        except Exception as e:
            sentry_sdk.capture_exception(e)
            error = f"Failed to load {self.kind}: {type(e).__name__}"
            logger.exception("Unexpected error loading %s", self.kind)

        with self._lock:
            if generation != self._generation:
                stale = True
            else:
                stale = False
                if error is None:
                    self._state = AssetState.READY
                    self._value = value
                else:
                    self._state = AssetState.FAILED
                    self._error = error
                state = self._state

        if stale:
            logger.debug("Discarding stale %s load (generation %d)", self.kind, generation)
            _close_quietly(value)
            return

        for listener in list(self._listeners):
            try:
                listener(state, value, generation)
            except Exception as e:
                sentry_sdk.capture_exception(e)
                logger.error("%s load listener failed: %s", self.kind, type(e).__name__)
        with self._lock:
            if generation == self._generation:
                self._done.set()


def _close_quietly(value) -> None:
    close = getattr(value, "close", None)
    if close is None:
        return
    try:
        close()
    except Exception as e:
        logger.debug("Error closing asset: %s", e)
