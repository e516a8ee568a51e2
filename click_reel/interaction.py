"""Two-phase interception of pointer interactions.

Phase one suppresses a natural interaction on page content and hands it to a
capture callback. Phase two re-dispatches a marked synthetic duplicate that
the interceptor lets through, so the surface still reacts to the user.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Callable, Optional, Sequence

from click_reel.surface import Node, Surface

POINTER_DOWN = "pointerdown"
CLICK = "click"

DEFAULT_UI_SELECTORS = ('[data-screenshot-exclude="true"]', ".pii-disable")


@dataclass
class PointerEvent:
    type: str
    client_x: float
    client_y: float
    button: int = 0
    target: Optional[Node] = None
    ctrl_key: bool = False
    shift_key: bool = False
    alt_key: bool = False
    meta_key: bool = False
    synthetic: bool = False
    default_prevented: bool = False
    propagation_stopped: bool = False

    def prevent_default(self) -> None:
        self.default_prevented = True

    def stop_propagation(self) -> None:
        self.propagation_stopped = True

    def synthetic_copy(self, event_type: str = CLICK) -> "PointerEvent":
        """Marked duplicate used to replay the interaction downstream."""
        return replace(
            self,
            type=event_type,
            synthetic=True,
            default_prevented=False,
            propagation_stopped=False,
        )


class InteractionInterceptor:
    def __init__(
        self,
        surface: Surface,
        on_capture: Callable[[PointerEvent], None],
        *,
        ui_selectors: Sequence[str] = DEFAULT_UI_SELECTORS,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.surface = surface
        self.on_capture = on_capture
        self.ui_selectors = tuple(ui_selectors)
        self.logger = logger or logging.getLogger("click_reel.interaction")
        self.attached = False
        self.armed = False
        self._block_next_click = False

    def attach(self) -> None:
        if self.attached:
            return
        self.surface.add_listener(POINTER_DOWN, self._on_pointer_down, capture=True)
        self.surface.add_listener(CLICK, self._on_click, capture=True)
        self.attached = True

    def detach(self) -> None:
        if not self.attached:
            return
        self.surface.remove_listener(POINTER_DOWN, self._on_pointer_down, capture=True)
        self.surface.remove_listener(CLICK, self._on_click, capture=True)
        self.attached = False
        self.armed = False
        self._block_next_click = False

    def is_recorder_ui(self, node: Optional[Node]) -> bool:
        if node is None:
            return False
        return any(node.closest(selector) is not None for selector in self.ui_selectors)

    def _on_pointer_down(self, event: PointerEvent) -> None:
        if not self.armed or event.synthetic or self.is_recorder_ui(event.target):
            return
        event.prevent_default()
        event.stop_propagation()
        self._block_next_click = True
        self.logger.debug("Intercepted pointer down at (%s, %s)", event.client_x, event.client_y)
        self.on_capture(event)

    def _on_click(self, event: PointerEvent) -> None:
        # The natural click that follows an intercepted pointer down is
        # dropped; the replay delivers the click instead.
        if event.synthetic or self.is_recorder_ui(event.target):
            return
        if not self._block_next_click:
            return
        self._block_next_click = False
        event.prevent_default()
        event.stop_propagation()

    def replay(self, event: PointerEvent) -> PointerEvent:
        synthetic = event.synthetic_copy()
        self.surface.dispatch(synthetic)
        self.logger.debug("Replayed interaction on %r", synthetic.target)
        return synthetic


__all__ = [
    "CLICK",
    "DEFAULT_UI_SELECTORS",
    "InteractionInterceptor",
    "POINTER_DOWN",
    "PointerEvent",
]
