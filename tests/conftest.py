import sys
import zlib
from pathlib import Path
from typing import Callable, List, Optional

import cv2
import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from click_reel.config import hex_to_bgr  # noqa: E402
from click_reel.models import (  # noqa: E402
    POST_CLICK,
    PRE_CLICK,
    Frame,
    FrameMetadata,
    Point,
    Reel,
    ReelSettings,
    Size,
)
from click_reel.renderer import encode_png  # noqa: E402
from click_reel.surface import Node, Rect, Surface  # noqa: E402


def _node_color(node: Node):
    style = ";".join(f"{key}:{value}" for key, value in sorted(node.style.items()))
    fingerprint = "|".join(
        [
            node.tag,
            node.text,
            node.value or "",
            node.get_attribute("src") or "",
            node.get_attribute("placeholder") or "",
            style,
        ]
    )
    digest = zlib.crc32(fingerprint.encode("utf-8"))
    return (digest & 0xFF, (digest >> 8) & 0xFF, (digest >> 16) & 0xFF)


def _hidden(node: Node) -> bool:
    return any(
        item.style.get("visibility") == "hidden" for item in (node, *node.ancestors())
    )


class FakeRenderer:
    """Paints every visible node's rectangle in a colour derived from its state."""

    def __init__(self, on_render: Optional[Callable[[int], None]] = None, fail: bool = False):
        self.on_render = on_render
        self.fail = fail
        self.calls = 0
        self.snapshots: List[List[dict]] = []
        self.options = []

    def render(self, node, options):
        index = self.calls
        self.calls += 1
        if self.on_render is not None:
            self.on_render(index)
        self.options.append(options)
        self.snapshots.append(
            [
                {
                    "node": item,
                    "tag": item.tag,
                    "id": item.id,
                    "text": item.text,
                    "value": item.value,
                    "style": dict(item.style),
                    "attributes": dict(item.attributes),
                    "rect": item.rect,
                }
                for item in node.iter()
            ]
        )
        if self.fail:
            raise RuntimeError("renderer exploded")

        width = max(1, int(options.width * options.scale))
        height = max(1, int(options.height * options.scale))
        canvas = np.zeros((height, width, 3), dtype=np.uint8)
        canvas[:, :] = hex_to_bgr(options.background_color)
        for item in node.descendants():
            rect = item.rect
            if rect.width <= 0 or rect.height <= 0 or _hidden(item):
                continue
            if options.exclude is not None and options.exclude(item):
                continue
            top_left = (int(rect.x * options.scale), int(rect.y * options.scale))
            bottom_right = (
                int((rect.x + rect.width) * options.scale) - 1,
                int((rect.y + rect.height) * options.scale) - 1,
            )
            cv2.rectangle(canvas, top_left, bottom_right, _node_color(item), thickness=-1)
        return canvas

    def last_snapshot_of(self, node):
        for entry in self.snapshots[-1]:
            if entry["node"] is node:
                return entry
        return None


class FakeClock:
    """Monotonic clock where sleeping only advances the counter."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def monotonic_ms(self):
        return self.now

    def sleep_ms(self, milliseconds, token=None):
        self.sleeps.append(milliseconds)
        self.now += milliseconds


def build_page():
    """Small page: header with brand, a form, an image and a submit button."""
    root = Node("body", style={"background-color": "#ffffff"}, rect=Rect(0, 0, 320, 180))
    header = root.append_child(Node("header", rect=Rect(0, 0, 320, 30)))
    header.append_child(Node("span", attributes={"class": "brand"}, text="Acme", rect=Rect(5, 5, 60, 20)))
    header.append_child(
        Node(
            "div",
            attributes={"id": "toolbar", "data-screenshot-exclude": "true"},
            text="Recorder UI",
            style={"position": "fixed"},
            rect=Rect(200, 0, 120, 30),
        )
    )
    form = root.append_child(Node("form", attributes={"id": "signup"}, rect=Rect(0, 40, 320, 100)))
    form.append_child(
        Node(
            "input",
            attributes={"id": "email", "placeholder": "you@example.com"},
            value="jane@example.com",
            rect=Rect(10, 50, 200, 20),
        )
    )
    form.append_child(
        Node("p", attributes={"class": "user-content"}, text="Hello, Jane!", rect=Rect(10, 80, 200, 20))
    )
    form.append_child(
        Node(
            "img",
            attributes={"src": "avatar.png", "alt": "Jane Doe"},
            rect=Rect(220, 50, 40, 40),
        )
    )
    form.append_child(
        Node("button", attributes={"id": "submit"}, text="Sign up", rect=Rect(100, 110, 80, 20))
    )
    return root


@pytest.fixture
def page():
    return build_page()


@pytest.fixture
def surface(page):
    return Surface(page, viewport=Size(320, 180), url="https://example.test/signup", user_agent="pytest")


@pytest.fixture
def renderer():
    return FakeRenderer()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def renderer_factory():
    return FakeRenderer


def solid_png(color, width=60, height=40):
    canvas = np.zeros((height, width, 3), dtype=np.uint8)
    canvas[:, :] = color
    # A diagonal line keeps payloads from collapsing to a trivially small PNG.
    cv2.line(canvas, (0, 0), (width - 1, height - 1), (255 - color[0], 255 - color[1], 255 - color[2]), 2)
    return encode_png(canvas)


def make_frame(
    reel_id="reel-1",
    order=0,
    timestamp=1_000,
    color=(10, 20, 30),
    capture_type=PRE_CLICK,
    size=(60, 40),
    image=None,
):
    return Frame(
        id=f"{reel_id}-frame-{order}",
        reel_id=reel_id,
        image=image if image is not None else solid_png(color, *size),
        timestamp=timestamp,
        order=order,
        metadata=FrameMetadata(
            viewport_coords=Point(10, 20),
            relative_coords=Point(10, 20),
            element_path="#submit",
            button_type=0 if capture_type == PRE_CLICK else -1,
            viewport_size=Size(320, 180),
            scroll_position=Point(0, 0),
            capture_type=capture_type,
        ),
    )


def make_reel(reel_id="reel-1", frame_count=3, start_time=1_000, title="Demo Reel", step_ms=500):
    reel = Reel(
        id=reel_id,
        title=title,
        description="A short demo",
        start_time=start_time,
        settings=ReelSettings(),
    )
    for index in range(frame_count):
        capture_type = PRE_CLICK if index % 2 == 0 else POST_CLICK
        reel.append_frame(
            make_frame(
                reel_id=reel_id,
                order=index,
                timestamp=start_time + index * step_ms,
                color=((index * 53) % 256, (index * 97 + 40) % 256, (index * 31 + 80) % 256),
                capture_type=capture_type,
            )
        )
    return reel


@pytest.fixture
def frame_factory():
    return make_frame


@pytest.fixture
def reel_factory():
    return make_reel
