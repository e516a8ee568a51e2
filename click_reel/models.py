"""Data models used across the click reel recorder."""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional

PRE_CLICK = "pre-click"
POST_CLICK = "post-click"
CAPTURE_TYPES = (PRE_CLICK, POST_CLICK)

MANUAL_BUTTON = -1
MANUAL_ELEMENT_PATH = "manual-capture"


def now_ms() -> int:
    """Current wall-clock time as integer epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Point:
    x: float = 0.0
    y: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y}

    @classmethod
    def from_dict(cls, raw: Optional[Mapping[str, Any]]) -> "Point":
        if not raw:
            return cls()
        return cls(x=float(raw.get("x", 0.0)), y=float(raw.get("y", 0.0)))


@dataclass(frozen=True)
class Size:
    width: int = 0
    height: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, raw: Optional[Mapping[str, Any]]) -> "Size":
        if not raw:
            return cls()
        return cls(width=int(raw.get("width", 0)), height=int(raw.get("height", 0)))


@dataclass(frozen=True)
class FrameMetadata:
    """Interaction and viewport details recorded alongside a frame."""

    viewport_coords: Point
    relative_coords: Point
    element_path: str
    button_type: int
    viewport_size: Size
    scroll_position: Point
    capture_type: str = PRE_CLICK
    marker_coords: Optional[Point] = None
    html_snapshot: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "viewportCoords": self.viewport_coords.to_dict(),
            "relativeCoords": self.relative_coords.to_dict(),
            "elementPath": self.element_path,
            "buttonType": self.button_type,
            "viewportSize": self.viewport_size.to_dict(),
            "scrollPosition": self.scroll_position.to_dict(),
            "captureType": self.capture_type,
        }
        if self.marker_coords is not None:
            payload["markerCoords"] = self.marker_coords.to_dict()
        if self.html_snapshot is not None:
            payload["htmlSnapshot"] = self.html_snapshot
        return payload

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "FrameMetadata":
        marker = raw.get("markerCoords")
        return cls(
            viewport_coords=Point.from_dict(raw.get("viewportCoords")),
            relative_coords=Point.from_dict(raw.get("relativeCoords")),
            element_path=str(raw.get("elementPath", "")),
            button_type=int(raw.get("buttonType", MANUAL_BUTTON)),
            viewport_size=Size.from_dict(raw.get("viewportSize")),
            scroll_position=Point.from_dict(raw.get("scrollPosition")),
            capture_type=str(raw.get("captureType", PRE_CLICK)),
            marker_coords=Point.from_dict(marker) if marker else None,
            html_snapshot=raw.get("htmlSnapshot"),
        )


@dataclass(frozen=True)
class Frame:
    """One captured raster image plus its interaction metadata.

    ``image`` holds the encoded PNG payload. Frames are never mutated once
    created; ``with_order`` returns a renumbered copy.
    """

    id: str
    reel_id: str
    image: bytes
    timestamp: int
    order: int
    metadata: FrameMetadata

    @property
    def size_bytes(self) -> int:
        return len(self.image)

    def with_order(self, order: int) -> "Frame":
        return replace(self, order=order)


@dataclass(frozen=True)
class ReelSettings:
    """Capture-time configuration copied into a reel when it is created."""

    marker_size: int = 50
    marker_color: str = "#ff0000"
    export_format: str = "gif"
    post_click_delay: int = 500
    post_click_interval: int = 100
    max_capture_duration: int = 4000
    scale: float = 2.0
    max_width: Optional[int] = None
    max_height: Optional[int] = None
    obfuscation_enabled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "markerSize": self.marker_size,
            "markerColor": self.marker_color,
            "exportFormat": self.export_format,
            "postClickDelay": self.post_click_delay,
            "postClickInterval": self.post_click_interval,
            "maxCaptureDuration": self.max_capture_duration,
            "scale": self.scale,
            "maxWidth": self.max_width,
            "maxHeight": self.max_height,
            "obfuscationEnabled": self.obfuscation_enabled,
        }

    @classmethod
    def from_dict(cls, raw: Optional[Mapping[str, Any]]) -> "ReelSettings":
        if not raw:
            return cls()
        default = cls()
        max_width = raw.get("maxWidth")
        max_height = raw.get("maxHeight")
        return cls(
            marker_size=int(raw.get("markerSize", default.marker_size)),
            marker_color=str(raw.get("markerColor", default.marker_color)),
            export_format=str(raw.get("exportFormat", default.export_format)),
            post_click_delay=int(raw.get("postClickDelay", default.post_click_delay)),
            post_click_interval=int(raw.get("postClickInterval", default.post_click_interval)),
            max_capture_duration=int(
                raw.get("maxCaptureDuration", default.max_capture_duration)
            ),
            scale=float(raw.get("scale", default.scale)),
            max_width=int(max_width) if max_width is not None else None,
            max_height=int(max_height) if max_height is not None else None,
            obfuscation_enabled=bool(raw.get("obfuscationEnabled", False)),
        )


@dataclass(frozen=True)
class ReelMetadata:
    """Derived reel metadata, computed when a recording is finalized."""

    duration: int = 0
    click_count: int = 0
    viewport_size: Size = field(default_factory=Size)
    user_agent: str = ""
    url: Optional[str] = None
    custom: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "duration": self.duration,
            "clickCount": self.click_count,
            "viewportSize": self.viewport_size.to_dict(),
            "userAgent": self.user_agent,
        }
        if self.url is not None:
            payload["url"] = self.url
        if self.custom is not None:
            payload["custom"] = dict(self.custom)
        return payload

    @classmethod
    def from_dict(cls, raw: Optional[Mapping[str, Any]]) -> "ReelMetadata":
        if not raw:
            return cls()
        custom = raw.get("custom")
        return cls(
            duration=int(raw.get("duration", 0)),
            click_count=int(raw.get("clickCount", 0)),
            viewport_size=Size.from_dict(raw.get("viewportSize")),
            user_agent=str(raw.get("userAgent", "")),
            url=raw.get("url"),
            custom=dict(custom) if isinstance(custom, Mapping) else None,
        )


@dataclass
class Reel:
    """One recording session.

    Only ``append_frame`` and ``finalize``-style replacement of ``end_time``
    and ``metadata`` touch a reel after creation; ``frames[i].order == i``
    holds at all times.
    """

    id: str
    title: str
    description: str
    start_time: int
    settings: ReelSettings
    frames: List[Frame] = field(default_factory=list)
    end_time: Optional[int] = None
    metadata: ReelMetadata = field(default_factory=ReelMetadata)

    @property
    def next_order(self) -> int:
        return len(self.frames)

    def append_frame(self, frame: Frame) -> Frame:
        expected = self.next_order
        if frame.order != expected:
            raise ValueError(
                f"Frame order {frame.order} does not continue reel {self.id} (expected {expected})"
            )
        if frame.reel_id != self.id:
            raise ValueError(f"Frame {frame.id} belongs to reel {frame.reel_id}, not {self.id}")
        self.frames.append(frame)
        return frame


@dataclass(frozen=True)
class ReelSummary:
    """Frame-less projection of a reel for inventory listings."""

    id: str
    title: str
    description: str
    start_time: int
    end_time: Optional[int]
    frame_count: int
    estimated_size: int
    thumbnail: Optional[bytes] = None


@dataclass(frozen=True)
class StorageInfo:
    reels_count: int
    frames_count: int
    estimated_size: int
    quota: int
    usage: int

    @property
    def available(self) -> int:
        return max(0, self.quota - self.usage)

    @property
    def percent_used(self) -> float:
        if self.quota <= 0:
            return 0.0
        return (self.usage / self.quota) * 100.0


__all__ = [
    "CAPTURE_TYPES",
    "Frame",
    "FrameMetadata",
    "MANUAL_BUTTON",
    "MANUAL_ELEMENT_PATH",
    "POST_CLICK",
    "PRE_CLICK",
    "Point",
    "Reel",
    "ReelMetadata",
    "ReelSettings",
    "ReelSummary",
    "Size",
    "StorageInfo",
    "now_ms",
]
