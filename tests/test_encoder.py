import io
import sys
from dataclasses import replace
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from click_reel.config import ApngOptions, GifOptions  # noqa: E402
from click_reel.encoder import (  # noqa: E402
    create_preview_gif,
    encode_apng,
    encode_gif,
    estimate_encoded_size,
    frame_delays,
    optimize_frames,
    prepare_frames_for_encoding,
)
from click_reel.errors import EncodingFailure  # noqa: E402
from click_reel.renderer import image_size  # noqa: E402


def _open(payload):
    return Image.open(io.BytesIO(payload))


def test_frame_delays_clamp_and_default_last_frame(frame_factory):
    frames = [
        frame_factory(order=0, timestamp=0),
        frame_factory(order=1, timestamp=5),
        frame_factory(order=2, timestamp=20_005),
        frame_factory(order=3, timestamp=20_505),
    ]

    assert frame_delays(frames) == [10, 10_000, 500, 100]


def test_gif_has_one_frame_per_input_and_loops(reel_factory):
    reel = reel_factory(frame_count=3)

    payload = encode_gif(reel.frames)

    image = _open(payload)
    assert payload.startswith(b"GIF8")
    assert image.n_frames == 3
    assert image.size == (60, 40)
    assert image.info.get("loop") == 0
    assert image.info.get("duration") == 500


def test_gif_honours_palette_and_dithering_options(reel_factory):
    reel = reel_factory(frame_count=2)

    payload = encode_gif(reel.frames, GifOptions(max_colors=16, dithering="none", quality=30))

    image = _open(payload)
    assert image.n_frames == 2
    assert len(image.getpalette()) // 3 <= 256


def test_apng_is_animated_full_colour_png(reel_factory):
    reel = reel_factory(frame_count=3)

    payload = encode_apng(reel.frames, ApngOptions(compression_level=9))

    image = _open(payload)
    assert image.format == "PNG"
    assert getattr(image, "is_animated", False) is True
    assert image.n_frames == 3
    assert image.info.get("loop") == 0


def test_frames_with_different_sizes_are_resized_to_the_first(frame_factory):
    frames = [
        frame_factory(order=0, timestamp=0, color=(0, 0, 255)),
        frame_factory(order=1, timestamp=100, color=(0, 255, 0), size=(120, 80)),
    ]

    image = _open(encode_apng(frames))

    assert image.size == (60, 40)
    assert image.n_frames == 2


def test_empty_input_fails():
    with pytest.raises(EncodingFailure):
        encode_gif([])
    with pytest.raises(EncodingFailure):
        encode_apng([])


def test_undecodable_frame_reports_its_position(reel_factory):
    reel = reel_factory(frame_count=3)
    frames = list(reel.frames)
    frames[1] = replace(frames[1], image=b"not a png")

    with pytest.raises(EncodingFailure) as excinfo:
        encode_gif(frames)

    assert excinfo.value.frame_index == 2
    assert excinfo.value.__cause__ is not None


def test_progress_callback_reaches_total(reel_factory):
    reel = reel_factory(frame_count=4)
    updates = []

    encode_gif(reel.frames, on_progress=lambda done, total, status: updates.append((done, total, status)))

    assert updates[0][0] == 0
    assert updates[-1] == (4, 4, "Complete!")
    assert all(total == 4 for _, total, _ in updates)


def test_optimize_frames_drops_repeats_of_the_last_kept_frame(frame_factory):
    red = frame_factory(order=0, color=(0, 0, 255))
    red_again = frame_factory(order=1, color=(0, 0, 255))
    green = frame_factory(order=2, color=(0, 255, 0))
    red_later = frame_factory(order=3, color=(0, 0, 255))

    kept = optimize_frames([red, red_again, green, red_later])

    assert [frame.order for frame in kept] == [0, 2, 3]
    assert optimize_frames([]) == []


def test_estimates_grow_with_frame_count(reel_factory):
    small = reel_factory(frame_count=2).frames
    large = reel_factory(frame_count=8).frames

    assert estimate_encoded_size([], "gif") == 0
    assert estimate_encoded_size(small, "gif") < estimate_encoded_size(large, "gif")
    assert estimate_encoded_size(small, "apng") < estimate_encoded_size(large, "apng")
    assert estimate_encoded_size(small, "gif", GifOptions(max_colors=64)) < estimate_encoded_size(small, "gif")
    assert estimate_encoded_size(small, "apng", ApngOptions(compression_level=9)) < estimate_encoded_size(
        small, "apng", ApngOptions(compression_level=0)
    )


def test_prepare_frames_downscales_keeping_aspect_ratio(frame_factory):
    frame = frame_factory(size=(120, 80))

    prepared = prepare_frames_for_encoding([frame], max_width=60)
    untouched = prepare_frames_for_encoding([frame], max_width=500, max_height=500)

    assert image_size(prepared[0].image) == (60, 40)
    assert prepared[0].id == frame.id
    assert untouched[0] is frame


def test_preview_gif_samples_at_most_max_frames(reel_factory):
    reel = reel_factory(frame_count=25)

    image = _open(create_preview_gif(reel.frames, max_frames=10))

    assert image.n_frames == 10


def _durations(image):
    durations = []
    for index in range(image.n_frames):
        image.seek(index)
        durations.append(image.info.get("duration"))
    return durations


def test_identical_consecutive_frames_stay_separate(frame_factory):
    red = (0, 0, 255)
    frames = [
        frame_factory(order=0, timestamp=0, color=red),
        frame_factory(order=1, timestamp=10_000, color=red),
        frame_factory(order=2, timestamp=20_000, color=red),
        frame_factory(order=3, timestamp=30_000, color=(0, 255, 0)),
    ]

    gif = _open(encode_gif(frames))
    apng = _open(encode_apng(frames))

    assert gif.n_frames == 4
    assert _durations(gif) == [10_000, 10_000, 10_000, 100]
    assert apng.n_frames == 4
    assert _durations(apng) == [10_000, 10_000, 10_000, 100]


def test_repeated_frames_keep_their_pixels(frame_factory):
    frames = [frame_factory(order=index, timestamp=index * 500) for index in range(2)]

    gif = _open(encode_gif(frames))
    gif.seek(0)
    first = np.asarray(gif.convert("RGB"))
    gif.seek(1)
    second = np.asarray(gif.convert("RGB"))

    assert np.array_equal(first, second)
