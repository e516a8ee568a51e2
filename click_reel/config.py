"""Configuration dataclasses and loading helpers for the click reel recorder."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional, Tuple

from click_reel.models import ReelSettings

DITHERING_MODES = ("none", "floyd-steinberg")
EXPORT_FORMATS = ("gif", "apng")

DEFAULT_MARKER_COLOR = "#ff0000"
DEFAULT_MASK_COLOR = "#cbd5e1"


def _parse_bool(value: Any, default: bool) -> bool:
    """Parse truthy/falsy values from multiple input types."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    if isinstance(value, (int, float)):
        return value != 0
    return default


def _parse_positive_int(value: Any, default: int) -> int:
    """Parse a positive integer with fallback to default."""
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


def _parse_optional_positive_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return None
    return parsed if parsed > 0 else None


def _parse_float(value: Any, default: float) -> float:
    """Parse a positive floating point number with fallback to default."""
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


def _parse_color(value: Any, default: str) -> str:
    """Normalise ``#rrggbb`` / ``rrggbb`` / RGB triplets to a lowercase hex string."""
    if isinstance(value, (list, tuple)) and len(value) == 3:
        try:
            r, g, b = (max(0, min(255, int(channel))) for channel in value)
        except (TypeError, ValueError):
            return default
        return f"#{r:02x}{g:02x}{b:02x}"

    if isinstance(value, str):
        hex_value = value.strip().lstrip("#")
        if len(hex_value) == 3:
            hex_value = "".join(ch * 2 for ch in hex_value)
        if len(hex_value) == 6:
            try:
                int(hex_value, 16)
            except ValueError:
                return default
            return f"#{hex_value.lower()}"

    return default


def _parse_choice(value: Any, choices: Tuple[str, ...], default: str) -> str:
    if isinstance(value, str) and value.strip().lower() in choices:
        return value.strip().lower()
    return default


def hex_to_bgr(value: str) -> Tuple[int, int, int]:
    """Convert ``#rrggbb`` into the BGR tuple order OpenCV expects."""
    hex_value = _parse_color(value, "#000000").lstrip("#")
    r = int(hex_value[0:2], 16)
    g = int(hex_value[2:4], 16)
    b = int(hex_value[4:6], 16)
    return (b, g, r)


@dataclass(frozen=True)
class MarkerStyle:
    """Appearance of the click marker overlaid on pre-click frames."""

    size: int = 50
    color: str = DEFAULT_MARKER_COLOR
    opacity: float = 0.5
    border_width: int = 2
    border_color: str = "#ffffff"


@dataclass(frozen=True)
class GifOptions:
    """Palette animation encoding options."""

    max_colors: int = 256
    dithering: str = "floyd-steinberg"
    quality: int = 80
    loop: bool = True


@dataclass(frozen=True)
class ApngOptions:
    """Full-colour animation encoding options."""

    compression_level: int = 6
    loop: bool = True


@dataclass(frozen=True)
class ObfuscationConfig:
    """Rules deciding which parts of the surface get masked before capture."""

    obfuscate_text: bool = True
    obfuscate_images: bool = True
    obfuscate_inputs: bool = True
    obfuscate_data_attributes: bool = True
    mask_by_default: bool = True
    preserve_selectors: Tuple[str, ...] = (
        ".logo",
        ".brand",
        "nav a",
        "button",
    )
    obfuscate_selectors: Tuple[str, ...] = (
        "input",
        "textarea",
        ".user-content",
        ".sensitive",
    )
    replacement_char: str = "█"
    mask_color: str = DEFAULT_MASK_COLOR


@dataclass(frozen=True)
class Preferences:
    """User-facing capture preferences; snapshotted into each new reel."""

    marker_size: int = 50
    marker_color: str = DEFAULT_MARKER_COLOR
    export_format: str = "gif"
    post_click_delay: int = 500
    post_click_interval: int = 100
    max_capture_duration: int = 4000
    scale: float = 2.0
    max_width: Optional[int] = 1920
    max_height: Optional[int] = 1080
    obfuscation_enabled: bool = False
    collect_html: bool = False
    promote_on_timeout: bool = False

    def snapshot(self) -> ReelSettings:
        return ReelSettings(
            marker_size=self.marker_size,
            marker_color=self.marker_color,
            export_format=self.export_format,
            post_click_delay=self.post_click_delay,
            post_click_interval=self.post_click_interval,
            max_capture_duration=self.max_capture_duration,
            scale=self.scale,
            max_width=self.max_width,
            max_height=self.max_height,
            obfuscation_enabled=self.obfuscation_enabled,
        )


@dataclass(frozen=True)
class StoreSettings:
    """Location and retention policy of the local reel store."""

    database_path: Path = Path("data/click_reel.sqlite3")
    chunk_size: int = 10
    keep_count: int = 5
    max_reels: int = 50
    quota_warning_percent: float = 80.0
    maintenance_interval_minutes: int = 60


@dataclass(frozen=True)
class Config:
    """Root configuration object for the click reel recorder."""

    preferences: Preferences = field(default_factory=Preferences)
    marker_style: MarkerStyle = field(default_factory=MarkerStyle)
    gif: GifOptions = field(default_factory=GifOptions)
    apng: ApngOptions = field(default_factory=ApngOptions)
    obfuscation: ObfuscationConfig = field(default_factory=ObfuscationConfig)
    store: StoreSettings = field(default_factory=StoreSettings)
    export_dir: Path = Path("exports")
    log_file: Optional[Path] = Path("logs/click_reel.log")
    log_level: str = "INFO"


def _parse_preferences(raw: Mapping[str, Any]) -> Preferences:
    default = Preferences()
    if not isinstance(raw, Mapping):
        return default
    max_width = raw.get("max_width", default.max_width)
    max_height = raw.get("max_height", default.max_height)
    return Preferences(
        marker_size=_parse_positive_int(raw.get("marker_size"), default.marker_size),
        marker_color=_parse_color(raw.get("marker_color"), default.marker_color),
        export_format=_parse_choice(raw.get("export_format"), EXPORT_FORMATS, default.export_format),
        post_click_delay=_parse_positive_int(raw.get("post_click_delay"), default.post_click_delay),
        post_click_interval=_parse_positive_int(
            raw.get("post_click_interval"),
            default.post_click_interval,
        ),
        max_capture_duration=_parse_positive_int(
            raw.get("max_capture_duration"),
            default.max_capture_duration,
        ),
        scale=_parse_float(raw.get("scale"), default.scale),
        max_width=_parse_optional_positive_int(max_width),
        max_height=_parse_optional_positive_int(max_height),
        obfuscation_enabled=_parse_bool(raw.get("obfuscation_enabled"), default.obfuscation_enabled),
        collect_html=_parse_bool(raw.get("collect_html"), default.collect_html),
        promote_on_timeout=_parse_bool(raw.get("promote_on_timeout"), default.promote_on_timeout),
    )


def _parse_marker_style(raw: Mapping[str, Any], preferences: Preferences) -> MarkerStyle:
    default = MarkerStyle(size=preferences.marker_size, color=preferences.marker_color)
    if not isinstance(raw, Mapping):
        return default
    opacity = _parse_float(raw.get("opacity"), default.opacity)
    return MarkerStyle(
        size=_parse_positive_int(raw.get("size"), default.size),
        color=_parse_color(raw.get("color"), default.color),
        opacity=min(1.0, opacity),
        border_width=_parse_positive_int(raw.get("border_width"), default.border_width),
        border_color=_parse_color(raw.get("border_color"), default.border_color),
    )


def _parse_gif_options(raw: Mapping[str, Any]) -> GifOptions:
    default = GifOptions()
    if not isinstance(raw, Mapping):
        return default
    return GifOptions(
        max_colors=max(2, min(256, _parse_positive_int(raw.get("max_colors"), default.max_colors))),
        dithering=_parse_choice(raw.get("dithering"), DITHERING_MODES, default.dithering),
        quality=max(1, min(100, _parse_positive_int(raw.get("quality"), default.quality))),
        loop=_parse_bool(raw.get("loop"), default.loop),
    )


def _parse_apng_options(raw: Mapping[str, Any]) -> ApngOptions:
    default = ApngOptions()
    if not isinstance(raw, Mapping):
        return default
    level = raw.get("compression_level")
    try:
        parsed_level = int(level) if level is not None else default.compression_level
    except (TypeError, ValueError):
        parsed_level = default.compression_level
    return ApngOptions(
        compression_level=max(0, min(9, parsed_level)),
        loop=_parse_bool(raw.get("loop"), default.loop),
    )


def _parse_selector_list(value: Any, default: Tuple[str, ...]) -> Tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        return default
    return tuple(str(item).strip() for item in value if str(item).strip())


def _parse_obfuscation(raw: Mapping[str, Any]) -> ObfuscationConfig:
    default = ObfuscationConfig()
    if not isinstance(raw, Mapping):
        return default
    replacement = raw.get("replacement_char")
    if not isinstance(replacement, str) or len(replacement) != 1:
        replacement = default.replacement_char
    return ObfuscationConfig(
        obfuscate_text=_parse_bool(raw.get("obfuscate_text"), default.obfuscate_text),
        obfuscate_images=_parse_bool(raw.get("obfuscate_images"), default.obfuscate_images),
        obfuscate_inputs=_parse_bool(raw.get("obfuscate_inputs"), default.obfuscate_inputs),
        obfuscate_data_attributes=_parse_bool(
            raw.get("obfuscate_data_attributes"),
            default.obfuscate_data_attributes,
        ),
        mask_by_default=_parse_bool(raw.get("mask_by_default"), default.mask_by_default),
        preserve_selectors=_parse_selector_list(
            raw.get("preserve_selectors"),
            default.preserve_selectors,
        ),
        obfuscate_selectors=_parse_selector_list(
            raw.get("obfuscate_selectors"),
            default.obfuscate_selectors,
        ),
        replacement_char=replacement,
        mask_color=_parse_color(raw.get("mask_color"), default.mask_color),
    )


def _parse_store_settings(raw: Mapping[str, Any]) -> StoreSettings:
    default = StoreSettings()
    if not isinstance(raw, Mapping):
        return default
    return StoreSettings(
        database_path=Path(raw.get("database_path", default.database_path)),
        chunk_size=_parse_positive_int(raw.get("chunk_size"), default.chunk_size),
        keep_count=_parse_positive_int(raw.get("keep_count"), default.keep_count),
        max_reels=_parse_positive_int(raw.get("max_reels"), default.max_reels),
        quota_warning_percent=min(
            100.0,
            _parse_float(raw.get("quota_warning_percent"), default.quota_warning_percent),
        ),
        maintenance_interval_minutes=_parse_positive_int(
            raw.get("maintenance_interval_minutes"),
            default.maintenance_interval_minutes,
        ),
    )


def _parse_log_file(value: Any, default: Optional[Path]) -> Optional[Path]:
    if value is None:
        return default
    if isinstance(value, str) and value.strip().lower() in {"", "none", "off"}:
        return None
    return Path(value)


def _config_from_mapping(data: Mapping[str, Any]) -> Config:
    default = Config()
    preferences = _parse_preferences(data.get("preferences", {}))
    return Config(
        preferences=preferences,
        marker_style=_parse_marker_style(data.get("marker_style", {}), preferences),
        gif=_parse_gif_options(data.get("gif", {})),
        apng=_parse_apng_options(data.get("apng", {})),
        obfuscation=_parse_obfuscation(data.get("obfuscation", {})),
        store=_parse_store_settings(data.get("store", {})),
        export_dir=Path(data.get("export_dir", default.export_dir)),
        log_file=_parse_log_file(data.get("log_file"), default.log_file),
        log_level=str(data.get("log_level", default.log_level)).upper(),
    )


def _load_env_config(env: Mapping[str, str]) -> Config:
    """Fallback configuration derived from ``CLICK_REEL_*`` environment variables."""
    return _config_from_mapping(
        {
            "preferences": {
                "marker_size": env.get("CLICK_REEL_MARKER_SIZE"),
                "marker_color": env.get("CLICK_REEL_MARKER_COLOR"),
                "export_format": env.get("CLICK_REEL_EXPORT_FORMAT"),
                "post_click_delay": env.get("CLICK_REEL_POST_CLICK_DELAY"),
                "post_click_interval": env.get("CLICK_REEL_POST_CLICK_INTERVAL"),
                "max_capture_duration": env.get("CLICK_REEL_MAX_CAPTURE_DURATION"),
                "scale": env.get("CLICK_REEL_SCALE"),
                "max_width": env.get("CLICK_REEL_MAX_WIDTH", Preferences.max_width),
                "max_height": env.get("CLICK_REEL_MAX_HEIGHT", Preferences.max_height),
                "obfuscation_enabled": env.get("CLICK_REEL_OBFUSCATION"),
                "collect_html": env.get("CLICK_REEL_COLLECT_HTML"),
                "promote_on_timeout": env.get("CLICK_REEL_PROMOTE_ON_TIMEOUT"),
            },
            "gif": {
                "max_colors": env.get("CLICK_REEL_GIF_MAX_COLORS"),
                "dithering": env.get("CLICK_REEL_GIF_DITHERING"),
                "quality": env.get("CLICK_REEL_GIF_QUALITY"),
            },
            "apng": {
                "compression_level": env.get("CLICK_REEL_APNG_COMPRESSION"),
            },
            "store": {
                "database_path": env.get("CLICK_REEL_DB_PATH", str(StoreSettings.database_path)),
                "chunk_size": env.get("CLICK_REEL_CHUNK_SIZE"),
                "keep_count": env.get("CLICK_REEL_KEEP_COUNT"),
                "max_reels": env.get("CLICK_REEL_MAX_REELS"),
                "quota_warning_percent": env.get("CLICK_REEL_QUOTA_WARNING_PERCENT"),
                "maintenance_interval_minutes": env.get("CLICK_REEL_MAINTENANCE_MINUTES"),
            },
            "export_dir": env.get("CLICK_REEL_EXPORT_DIR", "exports"),
            "log_file": env.get("CLICK_REEL_LOG_FILE"),
            "log_level": env.get("CLICK_REEL_LOG_LEVEL", "INFO"),
        }
    )


def load_config(config_path: Path | str, env: Mapping[str, str] | None = None) -> Config:
    """Load configuration from a JSON file or environment defaults."""
    source_env = env if env is not None else os.environ
    path = Path(config_path)

    if path.exists():
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        if not isinstance(data, Mapping):
            data = {}
        return _config_from_mapping(data)

    return _load_env_config(source_env)


__all__ = [
    "ApngOptions",
    "Config",
    "GifOptions",
    "MarkerStyle",
    "ObfuscationConfig",
    "Preferences",
    "StoreSettings",
    "hex_to_bgr",
    "load_config",
    "_parse_bool",
    "_parse_color",
    "_parse_positive_int",
]
