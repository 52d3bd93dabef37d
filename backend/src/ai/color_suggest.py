"""AI key-color suggestion via the Gemini ``generateContent`` REST API.

The current video frame is downscaled (max side 200 px), JPEG-encoded and sent
with a prompt asking for the dominant solid background color. Anything that is
not a ``#RRGGBB`` hex string is replaced with white. Failures never touch the
compositor; they surface as an error string for the UI.
"""

import logging
import os
import re
import threading
from typing import Callable

import numpy as np
import requests
import sentry_sdk

from engine.cache import encode_jpeg_b64

logger = logging.getLogger(__name__)

API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"
DEFAULT_MODEL = "gemini-2.5-flash"
SNAPSHOT_MAX_DIM = 200
REQUEST_TIMEOUT_S = 30
FALLBACK_HEX = "#FFFFFF"

PROMPT = (
    "Analyze this video frame. What is the dominant solid background color most "
    "suitable for chroma keying? Respond with only the HEX color code (e.g., #00FF00). "
    "If no clear solid background, respond with #FFFFFF."
)

_HEX_RESPONSE = re.compile(r"^#[0-9A-F]{6}$", re.IGNORECASE)


class SuggestionError(Exception):
    """User-facing failure of the suggestion call."""


def suggestion_model() -> str:
    return os.environ.get("BACKDROP_SUGGEST_MODEL", DEFAULT_MODEL)


def normalize_suggestion(text) -> str:
    """Uppercase a valid '#RRGGBB' reply; anything else becomes white."""
    candidate = text.strip() if isinstance(text, str) else ""
    if not _HEX_RESPONSE.match(candidate):
        logger.warning("Suggestion was not a valid HEX color, defaulting to white")
        return FALLBACK_HEX
    return candidate.upper()


def build_request(frame: np.ndarray) -> dict:
    return {
        "contents": [
            {
                "parts": [
                    {
                        "inline_data": {
                            "mime_type": "image/jpeg",
                            "data": encode_jpeg_b64(frame, max_dim=SNAPSHOT_MAX_DIM),
                        }
                    },
                    {"text": PROMPT},
                ]
            }
        ]
    }


def _response_text(payload: dict) -> str:
    try:
        parts = payload["candidates"][0]["content"]["parts"]
    except (KeyError, IndexError, TypeError):
        raise SuggestionError("Unexpected response from suggestion service")
    return "".join(p.get("text", "") for p in parts if isinstance(p, dict))


def request_suggestion(
    frame: np.ndarray,
    api_key: str,
    model: str | None = None,
    session: requests.Session | None = None,
) -> str:
    """Ask the model for a key color. Returns an uppercase '#RRGGBB'.

    Raises:
        SuggestionError: On missing key, network, auth, or parse failure.
    """
    if not api_key or not api_key.strip():
        raise SuggestionError("API key is missing")
    http = session or requests
    url = f"{API_BASE}/{model or suggestion_model()}:generateContent"
    try:
        resp = http.post(
            url,
            json=build_request(frame),
            headers={"x-goog-api-key": api_key.strip()},
            timeout=REQUEST_TIMEOUT_S,
        )
    except requests.RequestException as e:
        raise SuggestionError(f"Network error: {type(e).__name__}")

    if resp.status_code in (401, 403):
        raise SuggestionError("API key was rejected")
    if resp.status_code != 200:
        raise SuggestionError(f"Suggestion service returned HTTP {resp.status_code}")
    try:
        payload = resp.json()
    except ValueError:
        raise SuggestionError("Suggestion service returned invalid JSON")
    return normalize_suggestion(_response_text(payload))


class ColorSuggester:
    """Tracks one in-flight suggestion and its last error.

    ``apply`` receives the suggested hex on success (the session's chroma
    setter); it is never called on failure.
    """

    def __init__(
        self,
        apply: Callable[[str], object],
        request: Callable[[np.ndarray, str], str] = request_suggestion,
    ) -> None:
        self._apply = apply
        self._request = request
        self._lock = threading.Lock()
        self.suggesting = False
        self.error: str | None = None
        self.last_suggestion: str | None = None
        self._thread: threading.Thread | None = None

    def _claim(self) -> bool:
        with self._lock:
            if self.suggesting:
                return False
            self.suggesting = True
            self.error = None
            return True

    def suggest(self, frame: np.ndarray | None, api_key: str) -> str | None:
        """Run a suggestion synchronously. Returns the hex or None on failure."""
        if not self._claim():
            return None
        return self._run(frame, api_key)

    def _run(self, frame: np.ndarray | None, api_key: str) -> str | None:
        try:
            if not api_key or not api_key.strip():
                raise SuggestionError(
                    "API key is missing. Enter it in the settings to enable color suggestion."
                )
            if frame is None:
                raise SuggestionError("Video not ready for color suggestion")
            hex_color = self._request(frame, api_key)
            self._apply(hex_color)
            self.last_suggestion = hex_color
            logger.info("Suggested key color %s", hex_color)
            return hex_color
        except SuggestionError as e:
            self.error = f"Failed to suggest color: {e}"
            logger.warning("Color suggestion failed: %s", e)
            return None
        except Exception as e:
            sentry_sdk.capture_exception(e)
            self.error = f"Failed to suggest color: {type(e).__name__}"
            logger.error("Color suggestion crashed: %s", type(e).__name__)
            return None
        finally:
            with self._lock:
                self.suggesting = False

    def suggest_async(self, frame: np.ndarray | None, api_key: str) -> bool:
        """Start a suggestion on a daemon thread. False if one is in flight.

        ``suggesting`` is already True when this returns True.
        """
        if not self._claim():
            return False
        thread = threading.Thread(
            target=self._run, args=(frame, api_key), name="color-suggest", daemon=True
        )
        self._thread = thread
        thread.start()
        return True

    def wait(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def status(self) -> dict:
        return {
            "suggesting": self.suggesting,
            "error": self.error,
            "last_suggestion": self.last_suggestion,
        }
