import logging
import sys
from pathlib import Path

import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from click_reel.capture import (  # noqa: E402
    MARKER_ATTRIBUTE,
    CaptureEngine,
    CaptureOptions,
    InteractionContext,
)
from click_reel.errors import CaptureFailure  # noqa: E402
from click_reel.interaction import PointerEvent  # noqa: E402
from click_reel.models import (  # noqa: E402
    MANUAL_BUTTON,
    MANUAL_ELEMENT_PATH,
    POST_CLICK,
    PRE_CLICK,
    Point,
)
from click_reel.renderer import decode_png  # noqa: E402
from click_reel.surface import Rect, sanitized_html  # noqa: E402


def _find(root, node_id):
    return next(node for node in root.iter() if node.id == node_id)


def _click_on(surface, node_id, x, y, button=0):
    event = PointerEvent("pointerdown", x, y, button=button, target=_find(surface.root, node_id))
    return InteractionContext.from_event(event, surface)


def _styles(root):
    return [dict(node.style) for node in root.iter()]


def _markers(snapshot):
    return [entry for entry in snapshot if MARKER_ATTRIBUTE in entry["attributes"]]


def test_pre_click_capture_records_metadata_and_draws_marker(surface, renderer):
    engine = CaptureEngine(renderer)
    interaction = _click_on(surface, "submit", 110, 120)

    frame = engine.capture(
        surface,
        CaptureOptions(scale=1.0),
        reel_id="reel-1",
        order=0,
        capture_type=PRE_CLICK,
        interaction=interaction,
    )

    assert frame.reel_id == "reel-1"
    assert frame.order == 0
    assert frame.metadata.capture_type == PRE_CLICK
    assert frame.metadata.element_path == "#submit"
    assert frame.metadata.button_type == 0
    assert frame.metadata.viewport_coords == Point(110, 120)
    assert frame.metadata.marker_coords == Point(110, 120)
    assert decode_png(frame.image).shape == (180, 320, 3)

    markers = _markers(renderer.snapshots[-1])
    assert len(markers) == 1
    assert markers[0]["rect"].x == pytest.approx(110 - 25)
    assert markers[0]["rect"].y == pytest.approx(120 - 25)
    assert not any(node.has_attribute(MARKER_ATTRIBUTE) for node in surface.root.iter())


def test_post_click_and_manual_captures_have_no_marker(surface, renderer):
    engine = CaptureEngine(renderer)
    interaction = _click_on(surface, "submit", 110, 120)

    post = engine.capture(
        surface,
        CaptureOptions(scale=1.0),
        reel_id="reel-1",
        order=1,
        capture_type=POST_CLICK,
        interaction=interaction,
    )
    assert post.metadata.marker_coords is None
    assert _markers(renderer.snapshots[-1]) == []

    manual = engine.capture_manual(surface, CaptureOptions(scale=1.0), reel_id="reel-1", order=2)
    assert manual.metadata.capture_type == POST_CLICK
    assert manual.metadata.button_type == MANUAL_BUTTON
    assert manual.metadata.element_path == MANUAL_ELEMENT_PATH
    assert _markers(renderer.snapshots[-1]) == []


def test_marker_follows_clicked_node_when_it_moves_before_render(surface, renderer):
    engine = CaptureEngine(renderer)
    interaction = _click_on(surface, "submit", 110, 120)
    button = _find(surface.root, "submit")
    button.rect = Rect(200, 140, 80, 20)

    frame = engine.capture(
        surface,
        CaptureOptions(scale=1.0),
        reel_id="reel-1",
        order=0,
        interaction=interaction,
    )

    marker = _markers(renderer.snapshots[-1])[0]
    assert marker["rect"].x == pytest.approx(200 + 10 - 25)
    assert marker["rect"].y == pytest.approx(140 + 10 - 25)
    assert frame.metadata.marker_coords == Point(110, 120)


def test_marker_falls_back_to_click_point_when_node_is_detached(surface, renderer):
    engine = CaptureEngine(renderer)
    interaction = _click_on(surface, "submit", 110, 120)
    _find(surface.root, "submit").remove()

    engine.capture(surface, CaptureOptions(scale=1.0), reel_id="reel-1", order=0, interaction=interaction)

    marker = _markers(renderer.snapshots[-1])[0]
    assert marker["rect"].x == pytest.approx(85)
    assert marker["rect"].y == pytest.approx(95)


def test_excluded_nodes_hidden_only_during_render(surface, renderer):
    engine = CaptureEngine(renderer)
    toolbar = _find(surface.root, "toolbar")

    engine.capture_manual(surface, CaptureOptions(scale=1.0), reel_id="reel-1", order=0)

    during = renderer.last_snapshot_of(toolbar)
    assert during["style"]["visibility"] == "hidden"
    assert "visibility" not in toolbar.style


def test_fixed_nodes_get_scroll_compensation_during_render(surface, renderer):
    engine = CaptureEngine(renderer)
    toolbar = _find(surface.root, "toolbar")
    toolbar.style["transform"] = "scale(1.5)"
    surface.scroll = Point(0, 240)

    engine.capture_manual(surface, CaptureOptions(scale=1.0), reel_id="reel-1", order=0)

    during = renderer.last_snapshot_of(toolbar)
    assert during["style"]["transform"] == "scale(1.5) translate(0px, 240px)"
    assert toolbar.style["transform"] == "scale(1.5)"
    assert renderer.options[-1].translate == Point(0, -240)


def test_obfuscation_applies_during_render_only(surface, renderer):
    engine = CaptureEngine(renderer)
    email = _find(surface.root, "email")
    options = CaptureOptions(scale=1.0, obfuscation_enabled=True)

    engine.capture_manual(surface, options, reel_id="reel-1", order=0)
    masked = renderer.last_snapshot_of(email)["value"]

    engine.capture(
        surface,
        options,
        reel_id="reel-1",
        order=1,
        capture_type=POST_CLICK,
        skip_obfuscation=True,
    )
    unmasked = renderer.last_snapshot_of(email)["value"]

    assert masked == "█" * len("jane@example.com")
    assert unmasked == "jane@example.com"
    assert email.value == "jane@example.com"


def test_render_failure_restores_surface_and_raises_capture_failure(surface, renderer_factory):
    engine = CaptureEngine(renderer_factory(fail=True))
    surface.scroll = Point(0, 100)
    before_html = sanitized_html(surface.root)
    before_styles = _styles(surface.root)
    interaction = _click_on(surface, "submit", 110, 120)

    with pytest.raises(CaptureFailure) as excinfo:
        engine.capture(
            surface,
            CaptureOptions(scale=1.0, obfuscation_enabled=True),
            reel_id="reel-1",
            order=0,
            interaction=interaction,
        )

    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert sanitized_html(surface.root) == before_html
    assert _styles(surface.root) == before_styles


def test_max_dimensions_clip_render_window(surface, renderer):
    engine = CaptureEngine(renderer)

    frame = engine.capture_manual(
        surface,
        CaptureOptions(scale=2.0, max_width=100, max_height=50),
        reel_id="reel-1",
        order=0,
    )

    assert renderer.options[-1].width == 100
    assert renderer.options[-1].height == 50
    assert decode_png(frame.image).shape == (100, 200, 3)


def test_html_snapshot_collected_when_enabled(surface, renderer):
    engine = CaptureEngine(renderer)

    frame = engine.capture_manual(
        surface, CaptureOptions(scale=1.0, collect_html=True), reel_id="reel-1", order=0
    )

    assert frame.metadata.html_snapshot.startswith("<body")
    assert "Sign up" in frame.metadata.html_snapshot


def test_degenerate_render_only_warns(surface, caplog):
    class BlankRenderer:
        def render(self, node, options):
            return np.zeros((1, 1, 3), dtype=np.uint8)

    engine = CaptureEngine(BlankRenderer(), logger=logging.getLogger("capture-tests"))

    with caplog.at_level(logging.WARNING, logger="capture-tests"):
        frame = engine.capture_manual(surface, CaptureOptions(scale=1.0), reel_id="reel-1", order=0)

    assert frame.image
    assert any("degenerate" in record.getMessage() for record in caplog.records)
