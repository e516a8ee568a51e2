"""Derived reel metadata, human-readable formatting and the metadata document."""

from __future__ import annotations

import json
import re
from datetime import datetime
from typing import Any, Dict, Optional

from click_reel.models import PRE_CLICK, Reel, ReelMetadata, Size, now_ms

BUTTON_NAMES = {0: "left", 1: "middle", 2: "right", -1: "manual"}
FALLBACK_FILENAME = "recording"
_SIZE_UNITS = ("Bytes", "KB", "MB", "GB", "TB")


def generate_reel_metadata(
    reel: Reel,
    *,
    user_agent: str = "",
    url: Optional[str] = None,
    now: Optional[int] = None,
) -> ReelMetadata:
    """Compute duration, click count and viewport for ``reel``.

    Duration runs to ``end_time`` when the reel is finalized, otherwise to
    ``now``. Clicks are counted as pre-click frames.
    """
    end = reel.end_time if reel.end_time is not None else (now if now is not None else now_ms())
    clicks = sum(1 for frame in reel.frames if frame.metadata.capture_type == PRE_CLICK)
    viewport = reel.frames[0].metadata.viewport_size if reel.frames else Size()
    return ReelMetadata(
        duration=max(0, end - reel.start_time),
        click_count=clicks,
        viewport_size=viewport,
        user_agent=user_agent or reel.metadata.user_agent,
        url=url if url is not None else reel.metadata.url,
        custom=reel.metadata.custom,
    )


def estimate_reel_size(reel: Reel) -> int:
    return sum(frame.size_bytes for frame in reel.frames)


def format_bytes(size: int) -> str:
    if size <= 0:
        return "0 Bytes"
    exponent = 0
    while size >= 1024 ** (exponent + 1) and exponent < len(_SIZE_UNITS) - 1:
        exponent += 1
    value = round(size / (1024 ** exponent), 2)
    return f"{value:g} {_SIZE_UNITS[exponent]}"


def format_duration(milliseconds: int) -> str:
    return f"{milliseconds / 1000:.2f}s"


def button_name(code: int) -> str:
    return BUTTON_NAMES.get(code, "unknown")


def sanitize_title(title: str) -> str:
    """Lower-case ``title`` and collapse non-alphanumeric runs into single dashes."""
    return re.sub(r"[^a-z0-9]+", "-", (title or "").lower()).strip("-")


def generate_filename(reel: Reel, extension: str, now: Optional[datetime] = None) -> str:
    stamp = (now or datetime.now()).strftime("%Y-%m-%d-%H%M%S")
    slug = sanitize_title(reel.title) or FALLBACK_FILENAME
    return f"{slug}-{stamp}.{extension.lstrip('.')}"


def build_metadata_document(reel: Reel) -> Dict[str, Any]:
    derived = reel.metadata if reel.end_time is not None else generate_reel_metadata(reel)
    metadata = derived.to_dict()
    metadata["duration"] = format_duration(derived.duration)

    frames = []
    for frame in reel.frames:
        info = frame.metadata
        frames.append(
            {
                "id": frame.id,
                "order": frame.order,
                "timestamp": frame.timestamp,
                "captureType": info.capture_type,
                "elementPath": info.element_path,
                "coordinates": {
                    "viewport": info.viewport_coords.to_dict(),
                    "relative": info.relative_coords.to_dict(),
                },
                "buttonType": button_name(info.button_type),
                "viewportSize": info.viewport_size.to_dict(),
                "scrollPosition": info.scroll_position.to_dict(),
            }
        )

    return {
        "reel": {
            "id": reel.id,
            "title": reel.title,
            "description": reel.description,
            "startTime": reel.start_time,
            "endTime": reel.end_time,
            "frameCount": len(reel.frames),
        },
        "metadata": metadata,
        "frames": frames,
        "settings": reel.settings.to_dict(),
    }


def export_metadata_json(reel: Reel) -> str:
    return json.dumps(build_metadata_document(reel), indent=2, ensure_ascii=False)


__all__ = [
    "BUTTON_NAMES",
    "build_metadata_document",
    "button_name",
    "estimate_reel_size",
    "export_metadata_json",
    "format_bytes",
    "format_duration",
    "generate_filename",
    "generate_reel_metadata",
    "sanitize_title",
]
