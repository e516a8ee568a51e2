"""Boundary to the external rasterizer plus the still-frame codec helpers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Tuple

import cv2
import numpy as np

from click_reel.config import _parse_color
from click_reel.models import Point
from click_reel.surface import Node

DEGENERATE_PAYLOAD_BYTES = 200
DEFAULT_BACKGROUND = "#ffffff"


@dataclass(frozen=True)
class RenderOptions:
    """Parameters for a single render call.

    ``width``/``height`` describe the viewport window in CSS pixels; the
    returned buffer is expected to be ``scale`` times larger. ``translate``
    is applied to the whole document (``-scroll``).
    """

    scale: float = 1.0
    width: int = 0
    height: int = 0
    background_color: str = DEFAULT_BACKGROUND
    translate: Point = Point(0, 0)
    exclude: Optional[Callable[[Node], bool]] = None


class Renderer(Protocol):
    def render(self, node: Node, options: RenderOptions) -> np.ndarray:
        """Rasterize ``node`` into an ``HxWx3`` (or ``HxWx4``) BGR uint8 buffer."""
        ...


def resolve_background_color(root: Node) -> str:
    """Use the root's declared background colour, falling back to white."""
    return _parse_color(root.style.get("background-color"), DEFAULT_BACKGROUND)


def encode_png(image: np.ndarray, *, compression: int = 3) -> bytes:
    ok, buffer = cv2.imencode(".png", image, [cv2.IMWRITE_PNG_COMPRESSION, compression])
    if not ok:
        raise ValueError("OpenCV failed to encode PNG image")
    return buffer.tobytes()


def decode_png(payload: bytes, *, keep_alpha: bool = False) -> np.ndarray:
    array = np.frombuffer(payload, dtype=np.uint8)
    flag = cv2.IMREAD_UNCHANGED if keep_alpha else cv2.IMREAD_COLOR
    image = cv2.imdecode(array, flag)
    if image is None:
        raise ValueError("Unable to decode PNG payload")
    return image


def image_size(payload: bytes) -> Tuple[int, int]:
    """Return ``(width, height)`` of an encoded image."""
    image = decode_png(payload)
    height, width = image.shape[:2]
    return width, height


def is_degenerate(image: np.ndarray, payload: bytes) -> bool:
    """Heuristic for renders that came back blank or near-empty."""
    if image.size == 0:
        return True
    height, width = image.shape[:2]
    return width * height <= 1 or len(payload) < DEGENERATE_PAYLOAD_BYTES


__all__ = [
    "DEFAULT_BACKGROUND",
    "RenderOptions",
    "Renderer",
    "decode_png",
    "encode_png",
    "image_size",
    "is_degenerate",
    "resolve_background_color",
]
