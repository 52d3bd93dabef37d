"""Security validation gates for the compositing sidecar."""

import json
import os
import re
from pathlib import Path

# SEC-5: Upload validation
MAX_UPLOAD_SIZE = 500 * 1024 * 1024  # 500 MB
VIDEO_EXTENSIONS = {".mp4", ".mov", ".avi", ".mkv", ".webm", ".m4v"}
IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp", ".bmp", ".gif", ".tif", ".tiff"}
ALLOWED_EXTENSIONS = {"video": VIDEO_EXTENSIONS, "image": IMAGE_EXTENSIONS}

# SEC-6: Frame count cap (300K = ~2.7 hours at 30fps)
MAX_FRAME_COUNT = 300_000


def _unsafe_name(name: str) -> bool:
    return ".." in name or "/" in name or "\\" in name or "\x00" in name


def validate_upload(path: str, kind: str = "video") -> list[str]:
    """Validate an uploaded asset path. Returns list of errors (empty = valid).

    Checks (SEC-5):
    - Path resolves under the user's home directory
    - File exists and is not a symlink
    - Extension in the whitelist for ``kind`` ("video" or "image")
    - File size <= 500 MB
    - Filename is safe (no path traversal)
    """
    errors: list[str] = []
    allowed = ALLOWED_EXTENSIONS.get(kind)
    if allowed is None:
        errors.append(f"Unknown asset kind: {kind}")
        return errors

    p = Path(path)

    resolved = str(p.resolve())
    if not resolved.startswith(str(Path.home())):
        errors.append("Path must be within user home directory")
        return errors

    if not p.exists():
        errors.append(f"File not found: {path}")
        return errors

    if p.is_symlink():
        errors.append("Symlinks are not allowed")
        return errors

    ext = p.suffix.lower()
    if ext not in allowed:
        errors.append(f"Extension '{ext}' not allowed. Allowed: {sorted(allowed)}")

    size = p.stat().st_size
    if size > MAX_UPLOAD_SIZE:
        size_mb = size / (1024 * 1024)
        errors.append(
            f"File too large: {size_mb:.1f} MB (max {MAX_UPLOAD_SIZE // (1024 * 1024)} MB)"
        )

    if _unsafe_name(p.name):
        errors.append(f"Unsafe filename: {p.name}")

    return errors


def validate_frame_count(count: int) -> list[str]:
    """Validate frame count against SEC-6 cap. Returns list of errors."""
    errors: list[str] = []
    if count > MAX_FRAME_COUNT:
        errors.append(f"Frame count {count} exceeds maximum {MAX_FRAME_COUNT} (SEC-6)")
    return errors


BLOCKED_OUTPUT_PREFIXES = (
    "/System",
    "/Library",
    "/usr",
    "/bin",
    "/sbin",
    "/etc",
    "/private/var",
    "/private/etc",
)


def validate_output_dir(path: str) -> list[str]:
    """Validate the recording output directory. Returns list of errors.

    Checks:
    - Path is absolute
    - Not a system directory
    - Exists (or can be created under an existing parent) and is writable
    """
    errors: list[str] = []
    p = Path(path)

    if not p.is_absolute():
        errors.append("Output directory must be absolute")
        return errors

    resolved = str(p.resolve())
    for prefix in BLOCKED_OUTPUT_PREFIXES:
        if resolved.startswith(prefix):
            errors.append(f"Cannot write to system directory: {prefix}")
            return errors

    target = p if p.exists() else p.parent
    if not target.exists():
        errors.append(f"Output directory does not exist: {p}")
    elif not target.is_dir():
        errors.append(f"Output path is not a directory: {target}")
    elif not os.access(str(target), os.W_OK):
        errors.append(f"Output directory is not writable: {target}")

    return errors


def validate_preview_path(path: str) -> list[str]:
    """Validate a client-chosen shared-memory preview file. Returns list of errors.

    The writer creates and truncates the file, so it must stay under the
    user's home directory and must not be a symlink or a directory.
    """
    errors: list[str] = []
    p = Path(path)

    if not p.is_absolute():
        errors.append("Preview path must be absolute")
        return errors

    resolved = str(p.resolve())
    if not resolved.startswith(str(Path.home()) + os.sep):
        errors.append("Path must be within user home directory")
        return errors

    if p.is_symlink():
        errors.append("Symlinks are not allowed")
    elif p.is_dir():
        errors.append(f"Preview path is a directory: {p.name}")

    if _unsafe_name(p.name):
        errors.append(f"Unsafe filename: {p.name}")

    return errors


# --- PII stripping for Sentry and crash dumps ---

_HOME = os.path.expanduser("~")
_USERNAME = os.path.basename(_HOME)
_PATH_PATTERN = re.compile(r"/Users/[^/\s]+|/home/[^/\s]+|C:\\Users\\[^\\\s]+")
_SENSITIVE_KEYS = {"_token", "token", "auth", "key", "secret", "password", "dsn"}
# Google API keys embedded in URLs or messages
_API_KEY_PATTERN = re.compile(r"AIza[0-9A-Za-z_\-]{35}")


def _scrub_dict(d: dict):
    """Redact values for keys that look sensitive."""
    for key in list(d.keys()):
        if any(s in key.lower() for s in _SENSITIVE_KEYS):
            d[key] = "<REDACTED>"


def strip_pii(event: dict, hint: dict) -> dict:
    """Sentry before_send hook. Strips file paths, auth tokens and API keys.

    Also usable for crash dump sanitization.
    """
    event_str = json.dumps(event)
    event_str = event_str.replace(_HOME, "<HOME>")
    if _USERNAME:
        event_str = event_str.replace(_USERNAME, "<USER>")
    event_str = _PATH_PATTERN.sub("<REDACTED_PATH>", event_str)
    event_str = _API_KEY_PATTERN.sub("<REDACTED_KEY>", event_str)
    event = json.loads(event_str)

    _scrub_dict(event.get("extra", {}))
    for ctx in event.get("contexts", {}).values():
        if isinstance(ctx, dict):
            _scrub_dict(ctx)
    return event
