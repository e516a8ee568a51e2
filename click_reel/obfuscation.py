"""Reversible masking of sensitive surface content ahead of a render."""

from __future__ import annotations

import base64
import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from click_reel.config import ObfuscationConfig, hex_to_bgr
from click_reel.renderer import encode_png
from click_reel.surface import NON_VISUAL_TAGS, Node

PRESERVE_ATTRIBUTE = "data-screenshot-preserve"
OBFUSCATE_ATTRIBUTE = "data-screenshot-obfuscate"
EXCLUDE_ATTRIBUTE = "data-screenshot-exclude"

INPUT_TAGS = frozenset({"input", "textarea", "select"})
_KEPT_CHARACTERS = re.compile(r"[\s.,!?;:(){}\[\]\"'`]")
_DEFAULT_IMAGE_EXTENT = 100

# Field kinds recorded in the backup.
TEXT = "text"
VALUE = "value"
ATTRIBUTE = "attribute"
STYLE = "style"


@dataclass
class _Mutation:
    node: Node
    kind: str
    key: str
    original: Optional[str]


@dataclass
class ObfuscationBackup:
    """Exact record of a masking pass; consumed by :meth:`Obfuscator.restore`."""

    root: Node
    mutations: List[_Mutation] = field(default_factory=list)
    restored: bool = False

    def __len__(self) -> int:
        return len(self.mutations)


def replace_text(text: str, replacement_char: str = "█") -> str:
    """Mask visible characters while keeping whitespace and punctuation in place."""
    if not text or not text.strip():
        return text
    return "".join(
        char if _KEPT_CHARACTERS.match(char) else replacement_char for char in text
    )


def _solid_png_data_url(width: int, height: int, color: str) -> str:
    canvas = np.zeros((max(1, height), max(1, width), 3), dtype=np.uint8)
    canvas[:, :] = hex_to_bgr(color)
    encoded = base64.b64encode(encode_png(canvas)).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def _is_excluded(node: Node) -> bool:
    return node.closest(f"[{EXCLUDE_ATTRIBUTE}]") is not None


def _inside_non_visual(node: Node) -> bool:
    return node.tag in NON_VISUAL_TAGS or any(
        ancestor.tag in NON_VISUAL_TAGS for ancestor in node.ancestors()
    )


def should_mask(node: Node, config: ObfuscationConfig) -> bool:
    """Decide whether ``node`` is masked.

    Precedence: exclusion, explicit opt-out, explicit opt-in, preserve
    selectors, obfuscate selectors, then the global default.
    """
    if _is_excluded(node):
        return False
    if node.closest(f"[{PRESERVE_ATTRIBUTE}]") is not None:
        return False
    if node.closest(f"[{OBFUSCATE_ATTRIBUTE}]") is not None:
        return True
    if any(node.closest(selector) is not None for selector in config.preserve_selectors):
        return False
    if any(node.closest(selector) is not None for selector in config.obfuscate_selectors):
        return True
    return config.mask_by_default


class Obfuscator:
    """Apply and undo masking passes over a live node tree."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger("click_reel.obfuscation")

    def mask(self, root: Node, config: ObfuscationConfig) -> ObfuscationBackup:
        backup = ObfuscationBackup(root=root)
        try:
            for node in root.iter():
                if _inside_non_visual(node) or not should_mask(node, config):
                    continue
                self._mask_node(node, config, backup)
        except Exception:
            self.restore(backup)
            raise

        self.logger.debug("Masked %s field(s) under %r", len(backup), root)
        return backup

    def _mask_node(self, node: Node, config: ObfuscationConfig, backup: ObfuscationBackup) -> None:
        char = config.replacement_char

        if config.obfuscate_text and node.text and node.tag not in INPUT_TAGS:
            self._record(backup, node, TEXT, "", node.text)
            node.text = replace_text(node.text, char)

        if config.obfuscate_images:
            if node.tag == "img":
                width = int(node.rect.width) or _DEFAULT_IMAGE_EXTENT
                height = int(node.rect.height) or _DEFAULT_IMAGE_EXTENT
                self._set_attribute(
                    backup, node, "src", _solid_png_data_url(width, height, config.mask_color)
                )
                alt = node.get_attribute("alt")
                if alt:
                    self._set_attribute(backup, node, "alt", replace_text(alt, char))
            background = node.style.get("background-image")
            if background and background != "none":
                self._set_style(backup, node, "background-image", "none")
                self._set_style(backup, node, "background-color", config.mask_color)

        if config.obfuscate_inputs and node.tag in INPUT_TAGS and node.tag != "select":
            if node.value:
                self._record(backup, node, VALUE, "", node.value)
                node.value = char * len(node.value)
                self._set_attribute(backup, node, "value", node.value)
            placeholder = node.get_attribute("placeholder")
            if placeholder:
                self._set_attribute(backup, node, "placeholder", char * len(placeholder))

        if config.obfuscate_data_attributes:
            for name, value in list(node.attributes.items()):
                if not name.startswith("data-") or not value:
                    continue
                if name.startswith("data-screenshot-") or name == "data-testid":
                    continue
                self._set_attribute(backup, node, name, replace_text(value, char))

    @staticmethod
    def _record(
        backup: ObfuscationBackup, node: Node, kind: str, key: str, original: Optional[str]
    ) -> None:
        backup.mutations.append(_Mutation(node=node, kind=kind, key=key, original=original))

    def _set_attribute(self, backup: ObfuscationBackup, node: Node, name: str, value: str) -> None:
        self._record(backup, node, ATTRIBUTE, name, node.get_attribute(name))
        node.set_attribute(name, value)

    def _set_style(self, backup: ObfuscationBackup, node: Node, name: str, value: str) -> None:
        self._record(backup, node, STYLE, name, node.style.get(name))
        node.style[name] = value

    def restore(self, backup: ObfuscationBackup) -> None:
        """Undo ``backup`` in reverse order; nodes detached since masking are skipped."""
        if backup.restored:
            return

        skipped = 0
        for mutation in reversed(backup.mutations):
            node = mutation.node
            if not backup.root.contains(node):
                skipped += 1
                continue
            if mutation.kind == TEXT:
                node.text = mutation.original or ""
            elif mutation.kind == VALUE:
                node.value = mutation.original
            elif mutation.kind == ATTRIBUTE:
                if mutation.original is None:
                    node.remove_attribute(mutation.key)
                else:
                    node.set_attribute(mutation.key, mutation.original)
            elif mutation.kind == STYLE:
                if mutation.original is None:
                    node.style.pop(mutation.key, None)
                else:
                    node.style[mutation.key] = mutation.original

        backup.restored = True
        if skipped:
            self.logger.debug("Skipped restoring %s mutation(s) on detached nodes", skipped)


__all__ = [
    "EXCLUDE_ATTRIBUTE",
    "OBFUSCATE_ATTRIBUTE",
    "ObfuscationBackup",
    "Obfuscator",
    "PRESERVE_ATTRIBUTE",
    "replace_text",
    "should_mask",
]
