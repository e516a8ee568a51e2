"""Single-frame capture: exclusion, masking, marker overlay, render, cleanup."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from click_reel.config import MarkerStyle, ObfuscationConfig
from click_reel.errors import CaptureFailure
from click_reel.models import (
    MANUAL_BUTTON,
    MANUAL_ELEMENT_PATH,
    POST_CLICK,
    PRE_CLICK,
    Frame,
    FrameMetadata,
    Point,
    ReelSettings,
    now_ms,
)
from click_reel.obfuscation import EXCLUDE_ATTRIBUTE, ObfuscationBackup, Obfuscator
from click_reel.renderer import (
    RenderOptions,
    Renderer,
    encode_png,
    is_degenerate,
    resolve_background_color,
)
from click_reel.surface import Node, Rect, Surface, element_path, sanitized_html

MARKER_ATTRIBUTE = "data-click-reel-marker"


@dataclass(frozen=True)
class CaptureOptions:
    scale: float = 2.0
    max_width: Optional[int] = None
    max_height: Optional[int] = None
    marker_style: MarkerStyle = field(default_factory=MarkerStyle)
    exclude_attribute: str = EXCLUDE_ATTRIBUTE
    obfuscation_enabled: bool = False
    obfuscation: ObfuscationConfig = field(default_factory=ObfuscationConfig)
    collect_html: bool = False

    @classmethod
    def from_settings(
        cls,
        settings: ReelSettings,
        *,
        marker_style: Optional[MarkerStyle] = None,
        obfuscation: Optional[ObfuscationConfig] = None,
        collect_html: bool = False,
    ) -> "CaptureOptions":
        """Derive capture options from the settings snapshot stored on a reel."""
        base_style = marker_style or MarkerStyle()
        return cls(
            scale=settings.scale,
            max_width=settings.max_width,
            max_height=settings.max_height,
            marker_style=MarkerStyle(
                size=settings.marker_size,
                color=settings.marker_color,
                opacity=base_style.opacity,
                border_width=base_style.border_width,
                border_color=base_style.border_color,
            ),
            obfuscation_enabled=settings.obfuscation_enabled,
            obfuscation=obfuscation or ObfuscationConfig(),
            collect_html=collect_html,
        )


@dataclass(frozen=True)
class MarkerAnchor:
    """Click position expressed relative to the clicked node's box at click time."""

    node: Node
    offset: Point

    @classmethod
    def at(cls, node: Node, viewport_point: Point) -> "MarkerAnchor":
        return cls(node=node, offset=node.rect.offset_of(viewport_point))

    def project(self, surface: Surface) -> Optional[Point]:
        """Document position of the anchor against the node's current box and scroll."""
        if not surface.root.contains(self.node):
            return None
        rect = self.node.rect
        return Point(
            rect.x + self.offset.x + surface.scroll.x,
            rect.y + self.offset.y + surface.scroll.y,
        )


@dataclass(frozen=True)
class InteractionContext:
    """What the capture engine needs to know about the triggering interaction."""

    viewport_coords: Point
    button: int
    target: Optional[Node] = None
    anchor: Optional[MarkerAnchor] = None

    @classmethod
    def from_event(cls, event: object, surface: Surface) -> "InteractionContext":
        point = Point(float(getattr(event, "client_x")), float(getattr(event, "client_y")))
        target = getattr(event, "target", None) or surface.node_at(point)
        return cls(
            viewport_coords=point,
            button=int(getattr(event, "button", 0)),
            target=target,
            anchor=MarkerAnchor.at(target, point),
        )


@dataclass
class _SurfaceOverrides:
    hidden: List[Tuple[Node, Optional[str]]] = field(default_factory=list)
    fixed: List[Tuple[Node, Optional[str]]] = field(default_factory=list)
    backup: Optional[ObfuscationBackup] = None
    marker: Optional[Node] = None


def _create_marker(position: Point, surface: Surface, style: MarkerStyle) -> Node:
    radius = style.size / 2
    left = position.x - radius
    top = position.y - radius
    return Node(
        "div",
        attributes={MARKER_ATTRIBUTE: "true"},
        style={
            "position": "absolute",
            "left": f"{left}px",
            "top": f"{top}px",
            "width": f"{style.size}px",
            "height": f"{style.size}px",
            "border-radius": "50%",
            "background-color": style.color,
            "opacity": str(style.opacity),
            "border": f"{style.border_width}px solid {style.border_color}",
            "pointer-events": "none",
            "z-index": "2147483647",
        },
        rect=Rect(
            left - surface.scroll.x,
            top - surface.scroll.y,
            style.size,
            style.size,
        ),
    )


class CaptureEngine:
    """Capture frames of a :class:`Surface` through an external renderer."""

    def __init__(
        self,
        renderer: Renderer,
        obfuscator: Optional[Obfuscator] = None,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.renderer = renderer
        self.obfuscator = obfuscator or Obfuscator()
        self.logger = logger or logging.getLogger("click_reel.capture")

    def capture(
        self,
        surface: Surface,
        options: CaptureOptions,
        *,
        reel_id: str,
        order: int,
        capture_type: str = PRE_CLICK,
        interaction: Optional[InteractionContext] = None,
        skip_obfuscation: bool = False,
    ) -> Frame:
        """Capture one frame.

        A marker is drawn only for pre-click frames with an interaction. The
        surface is returned to its exact prior state whether or not the render
        succeeds.
        """
        root = surface.root
        timestamp = now_ms()

        if interaction is None:
            viewport_coords = Point(0, 0)
            button = MANUAL_BUTTON
            path = MANUAL_ELEMENT_PATH
        else:
            viewport_coords = interaction.viewport_coords
            button = interaction.button
            path = element_path(interaction.target or root, root)

        scroll = surface.scroll
        marker_coords: Optional[Point] = None
        if capture_type == PRE_CLICK and interaction is not None:
            marker_coords = Point(viewport_coords.x + scroll.x, viewport_coords.y + scroll.y)

        html_snapshot = sanitized_html(root) if options.collect_html else None
        metadata = FrameMetadata(
            viewport_coords=viewport_coords,
            relative_coords=Point(viewport_coords.x - root.rect.x, viewport_coords.y - root.rect.y),
            element_path=path,
            button_type=button,
            viewport_size=surface.viewport,
            scroll_position=scroll,
            capture_type=capture_type,
            marker_coords=marker_coords,
            html_snapshot=html_snapshot,
        )

        image = self._render(
            surface,
            options,
            interaction=interaction if marker_coords is not None else None,
            fallback_marker=marker_coords,
            obfuscate=options.obfuscation_enabled and not skip_obfuscation,
        )

        return Frame(
            id=uuid.uuid4().hex,
            reel_id=reel_id,
            image=image,
            timestamp=timestamp,
            order=order,
            metadata=metadata,
        )

    def capture_manual(self, surface: Surface, options: CaptureOptions, *, reel_id: str, order: int) -> Frame:
        """Capture a user-triggered frame: no marker, synthetic button, post-click phase."""
        return self.capture(
            surface,
            options,
            reel_id=reel_id,
            order=order,
            capture_type=POST_CLICK,
            interaction=None,
        )

    # ------------------------------------------------------------------
    # Rendering with reversible overrides
    # ------------------------------------------------------------------

    def _render(
        self,
        surface: Surface,
        options: CaptureOptions,
        *,
        interaction: Optional[InteractionContext],
        fallback_marker: Optional[Point],
        obfuscate: bool,
    ) -> bytes:
        overrides = _SurfaceOverrides()
        root = surface.root
        try:
            self._hide_excluded(root, options.exclude_attribute, overrides)

            if obfuscate:
                overrides.backup = self.obfuscator.mask(root, options.obfuscation)

            if fallback_marker is not None:
                # Re-project after masking, which may have resized the clicked node.
                position = None
                if interaction is not None and interaction.anchor is not None:
                    position = interaction.anchor.project(surface)
                if position is None:
                    position = fallback_marker
                overrides.marker = root.append_child(
                    _create_marker(position, surface, options.marker_style)
                )

            self._compensate_fixed(root, surface.scroll, overrides)

            render_options = RenderOptions(
                scale=options.scale,
                width=_clip(surface.viewport.width, options.max_width),
                height=_clip(surface.viewport.height, options.max_height),
                background_color=resolve_background_color(root),
                translate=Point(-surface.scroll.x, -surface.scroll.y),
                exclude=lambda node: node.has_attribute(options.exclude_attribute),
            )
            try:
                pixels = self.renderer.render(root, render_options)
                payload = encode_png(pixels)
            except Exception as exc:
                raise CaptureFailure("Failed to render frame", cause=exc) from exc

            if is_degenerate(pixels, payload):
                self.logger.warning(
                    "Rendered frame looks degenerate (%s bytes, shape %s)",
                    len(payload),
                    getattr(pixels, "shape", None),
                )
            return payload
        finally:
            self._cleanup(overrides)

    @staticmethod
    def _hide_excluded(root: Node, attribute: str, overrides: _SurfaceOverrides) -> None:
        for node in root.iter():
            if node.has_attribute(attribute):
                overrides.hidden.append((node, node.style.get("visibility")))
                node.style["visibility"] = "hidden"

    @staticmethod
    def _compensate_fixed(root: Node, scroll: Point, overrides: _SurfaceOverrides) -> None:
        if scroll.x == 0 and scroll.y == 0:
            return
        counter = f"translate({scroll.x}px, {scroll.y}px)"
        for node in root.iter():
            if node.position != "fixed":
                continue
            original = node.style.get("transform")
            overrides.fixed.append((node, original))
            node.style["transform"] = f"{original} {counter}" if original and original != "none" else counter

    def _cleanup(self, overrides: _SurfaceOverrides) -> None:
        try:
            if overrides.marker is not None:
                overrides.marker.remove()
            for node, original in reversed(overrides.fixed):
                _restore_style(node, "transform", original)
        finally:
            try:
                if overrides.backup is not None:
                    self.obfuscator.restore(overrides.backup)
            finally:
                for node, original in reversed(overrides.hidden):
                    _restore_style(node, "visibility", original)


def _restore_style(node: Node, name: str, original: Optional[str]) -> None:
    if original is None:
        node.style.pop(name, None)
    else:
        node.style[name] = original


def _clip(value: int, maximum: Optional[int]) -> int:
    if maximum is None or maximum <= 0:
        return value
    return min(value, maximum)


__all__ = [
    "CaptureEngine",
    "CaptureOptions",
    "InteractionContext",
    "MARKER_ATTRIBUTE",
    "MarkerAnchor",
]
