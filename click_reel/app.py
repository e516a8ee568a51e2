"""
Click Reel recorder facade.
Wires configuration, logging, the reel store and the capture pipeline together.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import List, Mapping, Optional, Union

from dotenv import load_dotenv

from click_reel import scheduler as scheduler_module
from click_reel.capture import CaptureEngine
from click_reel.config import Config, load_config
from click_reel.errors import ExportFailure, ReelNotFound
from click_reel.export import ExportOptions, ExportResult, Exporter, estimate_export_size, write_export
from click_reel.logging_setup import configure_logging
from click_reel.metadata import estimate_reel_size, format_bytes, format_duration, generate_reel_metadata
from click_reel.models import Reel, ReelSummary, StorageInfo
from click_reel.obfuscation import Obfuscator
from click_reel.progress import ProgressCallback
from click_reel.recorder import Recorder
from click_reel.renderer import Renderer
from click_reel.settlement import Clock, SettlementDetector
from click_reel.storage import ReelStore
from click_reel.surface import Surface

# Load environment variables
load_dotenv()


class ClickReel:
    """Application object owning the store and, when a surface is attached, a recorder."""

    def __init__(
        self,
        config_file: Union[str, Path] = "config.json",
        *,
        renderer: Optional[Renderer] = None,
        surface: Optional[Surface] = None,
        clock: Optional[Clock] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.config_path = Path(config_file)
        self.config: Config = load_config(self.config_path, env if env is not None else os.environ)

        self.setup_logging()

        self.store = ReelStore(self.config.store.database_path, logger=self.logger).init()
        self.exporter = Exporter(logger=self.logger)

        self.engine: Optional[CaptureEngine] = None
        self.detector: Optional[SettlementDetector] = None
        self.recorder: Optional[Recorder] = None
        if renderer is not None:
            self.engine = CaptureEngine(renderer, Obfuscator(self.logger), logger=self.logger)
            self.detector = SettlementDetector(self.engine, clock=clock, logger=self.logger)
        if surface is not None and self.engine is not None:
            self.attach_surface(surface)

    def setup_logging(self) -> None:
        """Setup logging configuration"""
        self.logger = configure_logging(
            logger_name="click_reel",
            level=self.config.log_level,
            log_file=self.config.log_file,
        )

    def attach_surface(self, surface: Surface) -> Recorder:
        """Create the recorder driving ``surface``; requires a renderer."""
        if self.engine is None or self.detector is None:
            raise ValueError("A renderer is required before a surface can be recorded")
        self.recorder = Recorder(
            surface,
            self.engine,
            self.detector,
            self.store,
            self.exporter,
            preferences=self.config.preferences,
            marker_style=self.config.marker_style,
            obfuscation=self.config.obfuscation,
            gif_options=self.config.gif,
            apng_options=self.config.apng,
            logger=self.logger,
        )
        return self.recorder

    # ------------------------------------------------------------------
    # Inventory
    # ------------------------------------------------------------------

    def list_reels(self, *, include_thumbnails: bool = False) -> List[ReelSummary]:
        return self.store.load_all_reels(include_thumbnails=include_thumbnails)

    def reel_info(self, reel_id: str) -> dict:
        """Human-readable description of one stored reel."""
        reel = self.store.load_reel(reel_id)
        metadata = reel.metadata if reel.end_time is not None else generate_reel_metadata(reel)
        return {
            "id": reel.id,
            "title": reel.title,
            "description": reel.description,
            "frames": len(reel.frames),
            "clicks": metadata.click_count,
            "duration": format_duration(metadata.duration),
            "viewport": f"{metadata.viewport_size.width}x{metadata.viewport_size.height}",
            "size": format_bytes(estimate_reel_size(reel)),
            "estimated_gif": format_bytes(estimate_export_size(reel, "gif")),
            "estimated_apng": format_bytes(estimate_export_size(reel, "apng")),
            "estimated_zip": format_bytes(estimate_export_size(reel, "zip")),
        }

    def storage_info(self) -> StorageInfo:
        return self.store.get_storage_info()

    def rename(self, reel_id: str, *, title: Optional[str] = None, description: Optional[str] = None) -> Reel:
        self.store.update_reel(reel_id, title=title, description=description)
        self.logger.info("Updated reel %s", reel_id)
        return self.store.load_reel(reel_id)

    def delete(self, reel_id: str) -> bool:
        deleted = self.store.delete_reel(reel_id)
        if not deleted:
            self.logger.warning("Reel %s was not in the store", reel_id)
        return deleted

    def cleanup(self, keep_count: Optional[int] = None) -> List[str]:
        keep = self.config.store.keep_count if keep_count is None else keep_count
        return self.store.cleanup_old_reels(keep)

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export(
        self,
        reel_id: str,
        fmt: Optional[str] = None,
        *,
        output_dir: Union[str, Path, None] = None,
        include_metadata: bool = True,
        include_html: Optional[bool] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Path:
        """Export a stored reel and write it under ``output_dir``."""
        result = self.export_bytes(
            reel_id,
            fmt or self.config.preferences.export_format,
            include_metadata=include_metadata,
            include_html=include_html,
            on_progress=on_progress,
        )
        return write_export(result, output_dir or self.config.export_dir)

    def export_bytes(
        self,
        reel_id: str,
        fmt: str,
        *,
        include_metadata: bool = True,
        include_html: Optional[bool] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ExportResult:
        if self.recorder is not None:
            return self.recorder.export_reel(
                reel_id,
                fmt,
                include_metadata=include_metadata,
                include_html=include_html,
                on_progress=on_progress,
            )

        options = ExportOptions.for_format(
            fmt,
            include_metadata=include_metadata,
            include_html=include_html,
            gif=self.config.gif,
            apng=self.config.apng,
            on_progress=on_progress,
        )
        try:
            reel = self.store.load_reel(reel_id)
        except ReelNotFound as exc:
            raise ExportFailure(f"Reel not found: {reel_id}", cause=exc) from exc
        return self.exporter.export(reel, options)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def enforce_storage_quota(self) -> List[str]:
        """Evict the oldest reels when the store is over its count or usage limits."""
        settings = self.config.store
        info = self.store.get_storage_info()
        over_count = info.reels_count > settings.max_reels
        quota_low = info.percent_used >= settings.quota_warning_percent
        if not over_count and not quota_low:
            self.logger.info(
                "Store holds %s reel(s), %s used (%.1f%%)",
                info.reels_count,
                format_bytes(info.usage),
                info.percent_used,
            )
            return []

        if quota_low:
            self.logger.warning(
                "Storage usage at %.1f%% (threshold %.0f%%); evicting old reels",
                info.percent_used,
                settings.quota_warning_percent,
            )
        return self.store.cleanup_old_reels(settings.keep_count)

    def run(self) -> None:
        """Run periodic store maintenance until interrupted."""
        scheduler_module.run(self)

    def close(self) -> None:
        if self.recorder is not None:
            thread = self.recorder.flush_on_exit()
            if thread is not None:
                thread.join(timeout=5)
        self.store.close()


__all__ = ["ClickReel"]
