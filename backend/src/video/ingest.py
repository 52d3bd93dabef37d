"""Fast video header probing."""

import logging

import av

logger = logging.getLogger(__name__)


def probe(path: str) -> dict:
    """Probe video file for metadata. Reads only headers."""
    try:
        container = av.open(path)
    except av.error.FFmpegError as e:
        logger.warning("Probe failed for video: %s", type(e).__name__)
        return {"ok": False, "error": f"Failed to open video: {type(e).__name__}"}

    try:
        if not container.streams.video:
            return {"ok": False, "error": "No video stream found"}

        stream = container.streams.video[0]
        width = stream.width or 0
        height = stream.height or 0
        return {
            "ok": True,
            "width": width,
            "height": height,
            "aspect_ratio": width / height if width > 0 and height > 0 else None,
            "fps": float(stream.average_rate) if stream.average_rate else 0.0,
            "duration_s": float(container.duration / av.time_base)
            if container.duration
            else 0.0,
            "codec": stream.codec_context.name,
            "has_audio": len(container.streams.audio) > 0,
            "frame_count": stream.frames or 0,
        }
    finally:
        container.close()
