import io
import logging
import sys
import zipfile
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from click_reel.app import ClickReel  # noqa: E402
from click_reel.errors import ExportFailure, ReelNotFound  # noqa: E402
from click_reel.interaction import CLICK, POINTER_DOWN, PointerEvent  # noqa: E402
from click_reel.logging_setup import configure_logging, resolve_level  # noqa: E402


def _env(tmp_path, **overrides):
    env = {
        "CLICK_REEL_DB_PATH": str(tmp_path / "reels.sqlite3"),
        "CLICK_REEL_EXPORT_DIR": str(tmp_path / "exports"),
        "CLICK_REEL_LOG_FILE": "off",
        "CLICK_REEL_SCALE": "1",
    }
    env.update(overrides)
    return env


@pytest.fixture
def app_factory(tmp_path):
    created = []

    def factory(**kwargs):
        env = _env(tmp_path, **kwargs.pop("env", {}))
        app = ClickReel(tmp_path / "missing-config.json", env=env, **kwargs)
        created.append(app)
        return app

    yield factory
    for app in created:
        app.close()


def test_app_without_renderer_manages_store_only(app_factory, reel_factory):
    app = app_factory()
    app.store.save_reel(reel_factory(frame_count=3))

    assert app.recorder is None
    assert [summary.id for summary in app.list_reels()] == ["reel-1"]
    info = app.reel_info("reel-1")
    assert info["frames"] == 3
    assert info["clicks"] == 2
    assert info["viewport"] == "320x180"
    assert info["estimated_gif"] == "87.89 KB"
    with pytest.raises(ValueError):
        app.attach_surface(object())


def test_rename_delete_and_cleanup(app_factory, reel_factory):
    app = app_factory()
    for index in range(4):
        app.store.save_reel(reel_factory(reel_id=f"reel-{index}", frame_count=1, start_time=1_000 + index))

    renamed = app.rename("reel-3", title="Checkout")
    assert renamed.title == "Checkout"
    assert app.delete("reel-0") is True
    assert app.delete("reel-0") is False
    assert app.cleanup(keep_count=1) == ["reel-1", "reel-2"]
    assert [summary.id for summary in app.list_reels()] == ["reel-3"]


def test_export_writes_file_to_configured_directory(app_factory, reel_factory, tmp_path):
    app = app_factory()
    app.store.save_reel(reel_factory(frame_count=2, title="Signup"))

    path = app.export("reel-1", "zip")

    assert path.parent == tmp_path / "exports"
    assert path.suffix == ".zip"
    with zipfile.ZipFile(io.BytesIO(path.read_bytes())) as archive:
        assert any(name.endswith("-viewer.html") for name in archive.namelist())


def test_export_of_missing_reel_fails(app_factory):
    app = app_factory()

    with pytest.raises(ExportFailure):
        app.export_bytes("missing", "gif")
    with pytest.raises(ReelNotFound):
        app.reel_info("missing")


def test_enforce_storage_quota_evicts_when_over_reel_limit(app_factory, reel_factory):
    app = app_factory(env={"CLICK_REEL_MAX_REELS": "3", "CLICK_REEL_KEEP_COUNT": "2"})
    for index in range(3):
        app.store.save_reel(reel_factory(reel_id=f"reel-{index}", frame_count=1, start_time=1_000 + index))

    assert app.enforce_storage_quota() == []

    app.store.save_reel(reel_factory(reel_id="reel-3", frame_count=1, start_time=1_003))
    assert app.enforce_storage_quota() == ["reel-0", "reel-1"]
    assert app.storage_info().reels_count == 2


def test_recording_through_the_app_persists_on_close(app_factory, renderer, clock, surface, tmp_path):
    app = app_factory(renderer=renderer, clock=clock, surface=surface)
    recorder = app.recorder
    reel = recorder.start_recording(title="From app")
    recorder.arm()
    button = next(node for node in surface.root.iter() if node.id == "submit")
    surface.dispatch(PointerEvent(POINTER_DOWN, 110, 120, target=button))
    surface.dispatch(PointerEvent(CLICK, 110, 120, target=button))

    app.close()

    reopened = app_factory()
    stored = reopened.store.load_reel(reel.id)
    assert stored.title == "From app"
    assert len(stored.frames) == 2


def test_configure_logging_returns_named_logger(tmp_path):
    log_file = tmp_path / "logs" / "click_reel.log"

    logger = configure_logging("click_reel.tests", level="debug", log_file=log_file, include_stream=False)
    logger.debug("hello")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert logger.level == logging.DEBUG
    assert "hello" in log_file.read_text(encoding="utf-8")
    assert resolve_level("bogus", logging.WARNING) == logging.WARNING
    assert resolve_level(10) == logging.DEBUG
