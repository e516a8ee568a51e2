"""Reel export: single animations and the zipped bundle."""

from __future__ import annotations

import html
import io
import logging
import uuid
import zipfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from string import Template
from typing import Optional, Union

from click_reel.config import ApngOptions, GifOptions
from click_reel.encoder import encode_apng, encode_gif
from click_reel.errors import EncodingFailure, ExportFailure
from click_reel.metadata import (
    export_metadata_json,
    format_duration,
    generate_filename,
    generate_reel_metadata,
)
from click_reel.models import Reel
from click_reel.progress import ProgressCallback, ProgressReporter

GIF = "gif"
APNG = "apng"
ZIP = "zip"

FORMAT_ALIASES = {
    "gif": GIF,
    "single-gif": GIF,
    "apng": APNG,
    "png": APNG,
    "single-apng": APNG,
    "zip": ZIP,
    "bundle": ZIP,
}

MIME_TYPES = {GIF: "image/gif", APNG: "image/png", ZIP: "application/zip"}
EXTENSIONS = {GIF: "gif", APNG: "png", ZIP: "zip"}

GIF_BYTES_PER_FRAME = 30000
APNG_BYTES_PER_FRAME = 50000
METADATA_BYTES = 5000

logger = logging.getLogger("click_reel.export")

VIEWER_TEMPLATE = Template(
    r"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>$title - Click Reel Viewer</title>
  <style>
    * { margin: 0; padding: 0; box-sizing: border-box; }
    body {
      font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif;
      background: #f5f5f5;
      padding: 2rem;
    }
    .container {
      max-width: 1200px;
      margin: 0 auto;
      background: white;
      border-radius: 8px;
      box-shadow: 0 2px 8px rgba(0, 0, 0, 0.1);
      padding: 2rem;
    }
    h1 { color: #333; margin-bottom: 0.5rem; }
    .description { color: #666; margin-bottom: 2rem; }
    .metadata { background: #f9f9f9; padding: 1rem; border-radius: 4px; margin-bottom: 2rem; }
    .metadata dl { display: grid; grid-template-columns: 150px 1fr; gap: 0.5rem; }
    .metadata dt { font-weight: 600; color: #666; }
    .media-container img { max-width: 100%; height: auto; border-radius: 4px; }
    .tabs { display: flex; gap: 1rem; margin-bottom: 1rem; }
    .tab { padding: 0.5rem 1rem; background: #e0e0e0; border: none; border-radius: 4px; cursor: pointer; }
    .tab.active { background: #007bff; color: white; }
    .tab-content { display: none; }
    .tab-content.active { display: block; }
  </style>
</head>
<body>
  <div class="container">
    <h1>$title</h1>
    <p class="description">$description</p>
    <div class="metadata">
      <h2>Recording Information</h2>
      <dl>
        <dt>Date:</dt><dd>$date</dd>
        <dt>Duration:</dt><dd>$duration</dd>
        <dt>Frames:</dt><dd>$frame_count</dd>
        <dt>Clicks:</dt><dd>$click_count</dd>
        <dt>Client:</dt><dd>$user_agent</dd>
        <dt>Viewport:</dt><dd>$viewport</dd>
        $url_row
      </dl>
    </div>
    <div class="tabs">
      <button class="tab active" data-tab="gif">GIF</button>
      <button class="tab" data-tab="apng">APNG</button>
    </div>
    <div id="gif-content" class="tab-content active media-container">
      <img src="$gif_name" alt="$title GIF">
    </div>
    <div id="apng-content" class="tab-content media-container">
      <img src="$apng_name" alt="$title APNG">
    </div>
  </div>
  <script>
    document.querySelectorAll('.tab').forEach(function (button) {
      button.addEventListener('click', function () {
        document.querySelectorAll('.tab').forEach(function (b) { b.classList.remove('active'); });
        document.querySelectorAll('.tab-content').forEach(function (c) { c.classList.remove('active'); });
        button.classList.add('active');
        document.getElementById(button.dataset.tab + '-content').classList.add('active');
      });
    });
  </script>
</body>
</html>
"""
)


@dataclass(frozen=True)
class ExportOptions:
    format: str = GIF
    include_metadata: bool = True
    include_html: bool = False
    filename: Optional[str] = None
    gif: GifOptions = field(default_factory=GifOptions)
    apng: ApngOptions = field(default_factory=ApngOptions)
    on_progress: Optional[ProgressCallback] = None

    @classmethod
    def for_format(
        cls,
        fmt: str,
        *,
        include_metadata: bool = True,
        include_html: Optional[bool] = None,
        filename: Optional[str] = None,
        gif: Optional[GifOptions] = None,
        apng: Optional[ApngOptions] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> "ExportOptions":
        """Options for ``fmt``; the viewer page defaults on for bundles only."""
        normalized = normalize_format(fmt)
        return cls(
            format=normalized,
            include_metadata=include_metadata,
            include_html=normalized == ZIP if include_html is None else include_html,
            filename=filename,
            gif=gif or GifOptions(),
            apng=apng or ApngOptions(),
            on_progress=on_progress,
        )


@dataclass(frozen=True)
class ExportResult:
    payload: bytes
    filename: str
    mime_type: str

    @property
    def size(self) -> int:
        return len(self.payload)


def normalize_format(fmt: str) -> str:
    try:
        return FORMAT_ALIASES[(fmt or "").strip().lower()]
    except KeyError as exc:
        raise ExportFailure(f"Unsupported export format: {fmt}", cause=exc) from exc


def render_viewer_html(reel: Reel, base_name: str) -> str:
    metadata = reel.metadata if reel.end_time is not None else generate_reel_metadata(reel)
    escape = html.escape
    url_row = ""
    if metadata.url:
        url_row = f"<dt>URL:</dt><dd>{escape(metadata.url)}</dd>"
    return VIEWER_TEMPLATE.substitute(
        title=escape(reel.title),
        description=escape(reel.description or "No description provided"),
        date=escape(datetime.fromtimestamp(reel.start_time / 1000).strftime("%Y-%m-%d %H:%M:%S")),
        duration=format_duration(metadata.duration),
        frame_count=len(reel.frames),
        click_count=metadata.click_count,
        user_agent=escape(metadata.user_agent),
        viewport=f"{metadata.viewport_size.width}x{metadata.viewport_size.height}",
        url_row=url_row,
        gif_name=escape(f"{base_name}.gif"),
        apng_name=escape(f"{base_name}.png"),
    )


class Exporter:
    def __init__(self, *, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger("click_reel.export")

    def export(self, reel: Reel, options: ExportOptions = ExportOptions()) -> ExportResult:
        fmt = normalize_format(options.format)
        base_name = options.filename or generate_filename(reel, EXTENSIONS[fmt]).rsplit(".", 1)[0]

        self.logger.info("Exporting reel %s (%s frames) as %s", reel.id, len(reel.frames), fmt)
        if fmt == GIF:
            if options.on_progress is not None:
                options.on_progress(0, 1, "Encoding GIF...")
            payload = encode_gif(reel.frames, options.gif, options.on_progress)
        elif fmt == APNG:
            if options.on_progress is not None:
                options.on_progress(0, 1, "Encoding APNG...")
            payload = encode_apng(reel.frames, options.apng, options.on_progress)
        else:
            payload = self._export_bundle(reel, base_name, options)

        result = ExportResult(
            payload=payload,
            filename=f"{base_name}.{EXTENSIONS[fmt]}",
            mime_type=MIME_TYPES[fmt],
        )
        self.logger.info("Export %s ready (%s bytes)", result.filename, result.size)
        return result

    def _export_bundle(self, reel: Reel, base_name: str, options: ExportOptions) -> bytes:
        frame_count = len(reel.frames)
        total = 3 + frame_count + int(options.include_metadata) + int(options.include_html)
        reporter = ProgressReporter(
            total,
            label=f"Bundle export {reel.id}",
            callback=options.on_progress,
            logger=self.logger,
        )

        buffer = io.BytesIO()
        with zipfile.ZipFile(
            buffer, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=6
        ) as archive:
            reporter.update(0, "Encoding GIF...")
            archive.writestr(f"{base_name}.gif", encode_gif(reel.frames, options.gif))

            reporter.update(1, "Encoding APNG...")
            archive.writestr(f"{base_name}.png", encode_apng(reel.frames, options.apng))

            step = 2
            reporter.update(step, f"Adding {frame_count} individual frames...")
            for index, frame in enumerate(reel.frames, start=1):
                padded = f"{index:03d}"
                archive.writestr(f"pngs/frame-{padded}.png", frame.image)
                try:
                    single = encode_gif([frame], options.gif)
                except EncodingFailure as exc:
                    raise EncodingFailure(
                        f"Failed to encode frame {index}/{frame_count}: {exc.message}",
                        frame_index=index,
                        cause=exc,
                    ) from exc
                archive.writestr(f"gifs/frame-{padded}.gif", single)
                reporter.update(step + index, f"Adding frame {index}/{frame_count}...")
            step += frame_count

            if options.include_metadata:
                reporter.update(step, "Generating metadata...")
                archive.writestr(f"{base_name}-metadata.json", export_metadata_json(reel))
                step += 1

            if options.include_html:
                reporter.update(step, "Adding HTML viewer...")
                archive.writestr(f"{base_name}-viewer.html", render_viewer_html(reel, base_name))
                step += 1

            reporter.update(step, "Generating ZIP...")

        reporter.finish()
        return buffer.getvalue()


def estimate_export_size(reel: Reel, fmt: str, include_metadata: bool = True) -> int:
    """Rough export size in bytes for display before exporting."""
    normalized = normalize_format(fmt)
    frames = len(reel.frames)
    size = 0
    if normalized in (GIF, ZIP):
        size += frames * GIF_BYTES_PER_FRAME
    if normalized in (APNG, ZIP):
        size += frames * APNG_BYTES_PER_FRAME
    if include_metadata and normalized == ZIP:
        size += METADATA_BYTES
    return size


def write_export(result: ExportResult, directory: Union[str, Path]) -> Path:
    """Write ``result`` into ``directory`` via a temporary file and atomic replace."""
    target_dir = Path(directory)
    target_dir.mkdir(parents=True, exist_ok=True)
    target = target_dir / result.filename
    temp_path = target.with_name(f".tmp_{uuid.uuid4().hex}_{target.name}")
    try:
        temp_path.write_bytes(result.payload)
        temp_path.replace(target)
    except OSError as exc:
        temp_path.unlink(missing_ok=True)
        raise ExportFailure(f"Failed to write export to {target}", cause=exc) from exc
    logger.info("Wrote %s (%s bytes)", target, result.size)
    return target


__all__ = [
    "APNG",
    "ExportOptions",
    "ExportResult",
    "Exporter",
    "GIF",
    "ZIP",
    "estimate_export_size",
    "normalize_format",
    "render_viewer_html",
    "write_export",
]
