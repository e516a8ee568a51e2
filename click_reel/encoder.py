"""Frame sequence to palette (GIF) and full-colour (APNG) animation encoding."""

from __future__ import annotations

import io
import logging
from dataclasses import replace
from typing import List, Optional, Sequence

import cv2
import numpy as np
from PIL import Image

from click_reel.config import ApngOptions, GifOptions
from click_reel.errors import EncodingFailure
from click_reel.models import Frame
from click_reel.progress import ProgressCallback, ProgressReporter
from click_reel.renderer import decode_png, encode_png

MIN_DELAY_MS = 10
MAX_DELAY_MS = 10000
LAST_FRAME_DELAY_MS = 100
MAX_GIF_COLORS = 256

AVERAGE_FRAME_BYTES = 50000
PREVIEW_GIF_OPTIONS = GifOptions(max_colors=128, dithering="none", quality=50)

logger = logging.getLogger("click_reel.encoder")


def frame_delays(frames: Sequence[Frame]) -> List[int]:
    """Per-frame delay from consecutive timestamps, clamped to ``[10, 10000]`` ms."""
    delays: List[int] = []
    for index, frame in enumerate(frames):
        if index < len(frames) - 1:
            delay = frames[index + 1].timestamp - frame.timestamp
        else:
            delay = LAST_FRAME_DELAY_MS
        delays.append(max(MIN_DELAY_MS, min(int(delay), MAX_DELAY_MS)))
    return delays


def _decode_rgba(frame: Frame, target_size: Optional[tuple]) -> np.ndarray:
    image = decode_png(frame.image, keep_alpha=True)
    if image.ndim == 2:
        image = cv2.cvtColor(image, cv2.COLOR_GRAY2BGRA)
    elif image.shape[2] == 3:
        image = cv2.cvtColor(image, cv2.COLOR_BGR2BGRA)
    if target_size is not None and (image.shape[1], image.shape[0]) != target_size:
        image = cv2.resize(image, target_size, interpolation=cv2.INTER_AREA)
    return cv2.cvtColor(image, cv2.COLOR_BGRA2RGBA)


def _decode_all(frames: Sequence[Frame], reporter: ProgressReporter) -> List[np.ndarray]:
    buffers: List[np.ndarray] = []
    target_size = None
    for index, frame in enumerate(frames):
        reporter.update(index, f"Processing frame {index + 1}/{len(frames)}...")
        try:
            rgba = _decode_rgba(frame, target_size)
        except Exception as exc:
            raise EncodingFailure(
                f"Failed to encode frame {index + 1}/{len(frames)}",
                frame_index=index + 1,
                cause=exc,
            ) from exc
        if target_size is None:
            target_size = (rgba.shape[1], rgba.shape[0])
        buffers.append(rgba)
    return buffers


def _quantize(rgba: np.ndarray, options: GifOptions) -> Image.Image:
    dither = Image.Dither.FLOYDSTEINBERG if options.dithering == "floyd-steinberg" else Image.Dither.NONE
    method = Image.Quantize.MEDIANCUT if options.quality >= 50 else Image.Quantize.FASTOCTREE
    rgb = Image.fromarray(rgba).convert("RGB")
    # One palette slot stays free for the duplicate entry added in _add_spare_entry.
    colors = min(options.max_colors, MAX_GIF_COLORS - 1)
    return rgb.quantize(colors=colors, method=method, dither=dither)


def _add_spare_entry(image: Image.Image) -> int:
    """Append a copy of the corner pixel's colour to the palette and return its index."""
    palette = image.getpalette() or []
    corner = image.getpixel((0, 0))
    colour = palette[corner * 3 : corner * 3 + 3]
    entries = len(palette) // 3
    if entries < MAX_GIF_COLORS and len(colour) == 3:
        image.putpalette(palette + colour)
        return entries
    swatches = np.array(palette[: entries * 3], dtype=np.int32).reshape(-1, 3)
    distances = np.abs(swatches - swatches[corner]).sum(axis=1)
    distances[corner] = np.iinfo(np.int32).max
    return int(distances.argmin())


def _keep_distinct_gif(images: List[Image.Image], spares: List[int]) -> None:
    """Repoint the corner of any frame equal to its predecessor at the spare entry.

    Pillow folds identical consecutive frames into one; the spare entry has the
    same colour, so the frame looks unchanged but keeps its own delay.
    """
    for index in range(1, len(images)):
        previous, current = images[index - 1], images[index]
        if previous.getpalette() != current.getpalette():
            continue
        if np.array_equal(np.asarray(previous), np.asarray(current)):
            current.putpixel((0, 0), spares[index])


def _keep_distinct_rgba(buffers: List[np.ndarray]) -> List[np.ndarray]:
    """Nudge the corner alpha of any frame equal to its predecessor by one step."""
    distinct: List[np.ndarray] = []
    for rgba in buffers:
        if distinct and np.array_equal(distinct[-1], rgba):
            rgba = rgba.copy()
            rgba[0, 0, 3] ^= 1
        distinct.append(rgba)
    return distinct


def encode_gif(
    frames: Sequence[Frame],
    options: GifOptions = GifOptions(),
    on_progress: Optional[ProgressCallback] = None,
) -> bytes:
    """Encode ``frames`` into an animated palette GIF."""
    if not frames:
        raise EncodingFailure("Cannot encode GIF: no frames provided")

    reporter = ProgressReporter(len(frames), label="GIF encode", callback=on_progress, logger=logger)
    reporter.update(0, "Initializing GIF encoder...")
    buffers = _decode_all(frames, reporter)

    images: List[Image.Image] = []
    spares: List[int] = []
    for index, rgba in enumerate(buffers):
        try:
            image = _quantize(rgba, options)
            spares.append(_add_spare_entry(image))
            images.append(image)
        except Exception as exc:
            raise EncodingFailure(
                f"Failed to quantize frame {index + 1}/{len(frames)}",
                frame_index=index + 1,
                cause=exc,
            ) from exc

    _keep_distinct_gif(images, spares)

    save_kwargs = {
        "format": "GIF",
        "save_all": True,
        "append_images": images[1:],
        "duration": frame_delays(frames),
        "disposal": 2,
        "optimize": False,
    }
    if options.loop:
        save_kwargs["loop"] = 0

    output = io.BytesIO()
    try:
        images[0].save(output, **save_kwargs)
    except Exception as exc:
        raise EncodingFailure("Failed to write GIF stream", cause=exc) from exc
    finally:
        for image in images:
            image.close()

    reporter.finish()
    return output.getvalue()


def encode_apng(
    frames: Sequence[Frame],
    options: ApngOptions = ApngOptions(),
    on_progress: Optional[ProgressCallback] = None,
) -> bytes:
    """Encode ``frames`` into a full-colour animated PNG."""
    if not frames:
        raise EncodingFailure("Cannot encode APNG: no frames provided")

    reporter = ProgressReporter(len(frames), label="APNG encode", callback=on_progress, logger=logger)
    reporter.update(0, "Initializing APNG encoder...")
    images = [Image.fromarray(rgba) for rgba in _keep_distinct_rgba(_decode_all(frames, reporter))]

    save_kwargs = {
        "format": "PNG",
        "save_all": True,
        "append_images": images[1:],
        "duration": frame_delays(frames),
        "compress_level": options.compression_level,
    }
    if options.loop:
        save_kwargs["loop"] = 0
    else:
        save_kwargs["loop"] = 1

    output = io.BytesIO()
    try:
        images[0].save(output, **save_kwargs)
    except Exception as exc:
        raise EncodingFailure("Failed to write APNG stream", cause=exc) from exc
    finally:
        for image in images:
            image.close()

    reporter.finish()
    return output.getvalue()


def optimize_frames(frames: Sequence[Frame]) -> List[Frame]:
    """Drop frames whose payload equals the previously kept frame; order is preserved."""
    if len(frames) <= 1:
        return list(frames)
    kept = [frames[0]]
    for frame in frames[1:]:
        if frame.image != kept[-1].image:
            kept.append(frame)
    return kept


def estimate_encoded_size(
    frames: Sequence[Frame],
    fmt: str,
    options: Optional[object] = None,
) -> int:
    """Rough output size in bytes, used before committing to a real encode."""
    if not frames:
        return 0
    if fmt == "gif":
        gif = options if isinstance(options, GifOptions) else GifOptions()
        quality_factor = gif.quality / 100
        color_factor = min(gif.max_colors / 256, 1.0)
        return round(len(frames) * AVERAGE_FRAME_BYTES * quality_factor * color_factor * 0.3)
    apng = options if isinstance(options, ApngOptions) else ApngOptions()
    compression_factor = 1 - (apng.compression_level / 9) * 0.5
    return round(len(frames) * AVERAGE_FRAME_BYTES * compression_factor * 0.5)


def prepare_frames_for_encoding(
    frames: Sequence[Frame],
    max_width: Optional[int] = None,
    max_height: Optional[int] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> List[Frame]:
    """Downscale frames to fit within ``max_width`` x ``max_height``, keeping aspect ratio."""
    if not max_width and not max_height:
        return list(frames)

    prepared: List[Frame] = []
    for index, frame in enumerate(frames):
        if on_progress is not None:
            on_progress(index, len(frames), f"Resizing frame {index + 1}/{len(frames)}...")
        image = decode_png(frame.image, keep_alpha=True)
        height, width = image.shape[:2]
        ratio = min(
            (max_width or width) / width,
            (max_height or height) / height,
            1.0,
        )
        if ratio >= 1.0:
            prepared.append(frame)
            continue
        size = (max(1, round(width * ratio)), max(1, round(height * ratio)))
        resized = cv2.resize(image, size, interpolation=cv2.INTER_AREA)
        prepared.append(replace(frame, image=encode_png(resized)))
    return prepared


def create_preview_gif(
    frames: Sequence[Frame],
    max_frames: int = 10,
    on_progress: Optional[ProgressCallback] = None,
) -> bytes:
    """Low-colour GIF built from up to ``max_frames`` evenly sampled frames."""
    step = max(1, len(frames) // max(1, max_frames))
    sampled = [frame for index, frame in enumerate(frames) if index % step == 0][:max_frames]
    return encode_gif(sampled, PREVIEW_GIF_OPTIONS, on_progress)


__all__ = [
    "LAST_FRAME_DELAY_MS",
    "MAX_DELAY_MS",
    "MIN_DELAY_MS",
    "create_preview_gif",
    "encode_apng",
    "encode_gif",
    "estimate_encoded_size",
    "frame_delays",
    "optimize_frames",
    "prepare_frames_for_encoding",
]
