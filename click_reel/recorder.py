"""Recording lifecycle: idle, recording and armed states plus frame sequencing."""

from __future__ import annotations

import logging
import threading
import uuid
from copy import copy
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from click_reel.capture import CaptureEngine, CaptureOptions, InteractionContext
from click_reel.config import ApngOptions, GifOptions, MarkerStyle, ObfuscationConfig, Preferences
from click_reel.errors import ClickReelError, ExportFailure, ReelNotFound, StorageFailure
from click_reel.export import ExportOptions, ExportResult, Exporter
from click_reel.interaction import InteractionInterceptor, PointerEvent
from click_reel.metadata import generate_reel_metadata
from click_reel.models import PRE_CLICK, Frame, Reel, ReelMetadata, now_ms
from click_reel.settlement import CancellationToken, SettlementDetector, SettlementPolicy
from click_reel.storage import ReelStore
from click_reel.surface import Surface

STOP_WAIT_SECONDS = 10.0


class RecorderState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    ARMED = "armed"


class RecorderEvent(str, Enum):
    START = "start"
    ARM = "arm"
    DISARM = "disarm"
    STOP = "stop"


_TRANSITIONS: Dict[tuple, RecorderState] = {
    (RecorderState.IDLE, RecorderEvent.START): RecorderState.RECORDING,
    (RecorderState.RECORDING, RecorderEvent.ARM): RecorderState.ARMED,
    (RecorderState.ARMED, RecorderEvent.DISARM): RecorderState.RECORDING,
    (RecorderState.RECORDING, RecorderEvent.STOP): RecorderState.IDLE,
    (RecorderState.ARMED, RecorderEvent.STOP): RecorderState.IDLE,
}


def transition(state: RecorderState, event: RecorderEvent) -> RecorderState:
    """Next state for ``event``; events that do not apply leave the state unchanged."""
    return _TRANSITIONS.get((state, event), state)


@dataclass(frozen=True)
class RecorderError:
    message: str
    timestamp: int
    cause: Optional[BaseException] = None


@dataclass
class LoadingFlags:
    capturing: bool = False
    encoding: bool = False
    saving: bool = False
    loading: bool = False


class Recorder:
    """Drive capture sequences against a surface and persist finished reels."""

    def __init__(
        self,
        surface: Surface,
        engine: CaptureEngine,
        detector: SettlementDetector,
        store: ReelStore,
        exporter: Optional[Exporter] = None,
        *,
        preferences: Optional[Preferences] = None,
        marker_style: Optional[MarkerStyle] = None,
        obfuscation: Optional[ObfuscationConfig] = None,
        gif_options: Optional[GifOptions] = None,
        apng_options: Optional[ApngOptions] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.surface = surface
        self.engine = engine
        self.detector = detector
        self.store = store
        self.exporter = exporter or Exporter()
        self.preferences = preferences or Preferences()
        self.marker_style = marker_style or MarkerStyle()
        self.obfuscation = obfuscation or ObfuscationConfig()
        self.gif_options = gif_options or GifOptions()
        self.apng_options = apng_options or ApngOptions()
        self.logger = logger or logging.getLogger("click_reel.recorder")

        self.interceptor = InteractionInterceptor(surface, self.handle_interaction, logger=self.logger)
        self.loading = LoadingFlags()
        self.last_error: Optional[RecorderError] = None

        self._state = RecorderState.IDLE
        self._current: Optional[Reel] = None
        self._capture_lock = threading.Lock()
        self._token: Optional[CancellationToken] = None

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def state(self) -> RecorderState:
        return self._state

    @property
    def current_reel(self) -> Optional[Reel]:
        return self._current

    def _apply(self, event: RecorderEvent) -> RecorderState:
        previous = self._state
        self._state = transition(previous, event)
        self.interceptor.armed = self._state is RecorderState.ARMED
        if previous is not self._state:
            self.logger.debug("Recorder %s -> %s (%s)", previous.value, self._state.value, event.value)
        return self._state

    def _record_error(self, message: str, cause: Optional[BaseException] = None) -> None:
        self.last_error = RecorderError(message=message, timestamp=now_ms(), cause=cause)
        self.logger.error("%s: %s", message, cause if cause is not None else "no details")

    def clear_error(self) -> None:
        self.last_error = None

    def _capture_options(self, reel: Reel) -> CaptureOptions:
        return CaptureOptions.from_settings(
            reel.settings,
            marker_style=self.marker_style,
            obfuscation=self.obfuscation,
            collect_html=self.preferences.collect_html,
        )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def start_recording(self, title: Optional[str] = None, description: str = "") -> Reel:
        if self._current is not None:
            self.logger.warning("Recording already in progress (%s)", self._current.id)
            return self._current

        started = datetime.now()
        reel = Reel(
            id=uuid.uuid4().hex,
            title=title or f"Recording {started.strftime('%Y-%m-%d %H:%M:%S')}",
            description=description,
            start_time=now_ms(),
            settings=self.preferences.snapshot(),
            metadata=ReelMetadata(user_agent=self.surface.user_agent, url=self.surface.url),
        )
        self._current = reel
        self.interceptor.attach()
        self._apply(RecorderEvent.START)
        self.logger.info("Started recording %s (%s)", reel.id, reel.title)
        return reel

    def arm(self) -> RecorderState:
        if self._state is not RecorderState.RECORDING:
            self.logger.debug("Ignoring arm while %s", self._state.value)
        return self._apply(RecorderEvent.ARM)

    def disarm(self) -> RecorderState:
        self._cancel_in_flight()
        return self._apply(RecorderEvent.DISARM)

    def _cancel_in_flight(self) -> None:
        token = self._token
        if token is not None:
            token.cancel()

    def add_frame(self) -> Optional[Frame]:
        """Capture one manual frame and append it; ``None`` while a sequence is in flight."""
        reel = self._current
        if reel is None:
            raise ClickReelError("Cannot add a frame without an active recording")
        if not self._capture_lock.acquire(blocking=False):
            self.logger.warning("Capture already in progress; manual frame skipped")
            return None

        self.loading.capturing = True
        try:
            frame = self.engine.capture_manual(
                self.surface,
                self._capture_options(reel),
                reel_id=reel.id,
                order=reel.next_order,
            )
            reel.append_frame(frame)
        except ClickReelError as exc:
            self._record_error("Failed to capture frame", exc)
            raise
        finally:
            self.loading.capturing = False
            self._capture_lock.release()

        self.logger.info("Added manual frame %s to reel %s", frame.order, reel.id)
        return frame

    def handle_interaction(self, event: PointerEvent) -> bool:
        """Run the armed capture sequence for ``event``.

        Returns ``True`` when the sequence ran. Failures are recorded in
        ``last_error`` because the caller is the event dispatch loop. The
        intercepted event is replayed exactly once on every path.
        """
        reel = self._current
        if self._state is not RecorderState.ARMED or reel is None:
            self.interceptor.replay(event)
            return False
        if not self._capture_lock.acquire(blocking=False):
            self.logger.info("Interaction not captured: capture sequence already running")
            self.interceptor.replay(event)
            return False

        token = CancellationToken()
        self._token = token
        self.loading.capturing = True
        replayed = False
        try:
            options = self._capture_options(reel)
            context = InteractionContext.from_event(event, self.surface)

            pre_click = self.engine.capture(
                self.surface,
                options,
                reel_id=reel.id,
                order=reel.next_order,
                capture_type=PRE_CLICK,
                interaction=context,
            )
            reel.append_frame(pre_click)

            replayed = True
            self.interceptor.replay(event)

            result = self.detector.detect_and_capture(
                self.surface,
                options,
                reel_id=reel.id,
                order=reel.next_order,
                interaction=context,
                policy=SettlementPolicy.from_settings(
                    reel.settings,
                    promote_on_timeout=self.preferences.promote_on_timeout,
                ),
                token=token,
            )
            if result.frame is not None and not token.cancelled and self._current is reel:
                reel.append_frame(result.frame)
            self.logger.info(
                "Interaction captured on reel %s: post-click %s after %s detection frame(s)",
                reel.id,
                result.outcome,
                result.attempts,
            )
            return True
        except ClickReelError as exc:
            self._record_error("Failed to capture click frame", exc)
            return False
        finally:
            self._token = None
            self.loading.capturing = False
            self._capture_lock.release()
            if self._state is RecorderState.ARMED:
                self._apply(RecorderEvent.DISARM)
            if not replayed:
                self.interceptor.replay(event)

    def stop_recording(self) -> Optional[Reel]:
        """Finalize and persist the current reel; empty reels are discarded."""
        reel = self._current
        if reel is None:
            return None

        self._cancel_in_flight()
        if not self._capture_lock.acquire(timeout=STOP_WAIT_SECONDS):
            self._record_error("Failed to stop recording: capture sequence still running")
            return None
        try:
            if not reel.frames:
                self.logger.info("Discarding empty reel %s", reel.id)
                self._finish()
                return None

            reel.end_time = now_ms()
            reel.metadata = generate_reel_metadata(
                reel,
                user_agent=self.surface.user_agent,
                url=self.surface.url,
            )
            self.loading.saving = True
            try:
                self.store.save_reel(reel)
            except StorageFailure as exc:
                self._record_error("Failed to save reel", exc)
                self._apply(RecorderEvent.DISARM)
                raise
            finally:
                self.loading.saving = False

            self.logger.info("Stopped recording %s with %s frame(s)", reel.id, len(reel.frames))
            self._finish()
            return reel
        finally:
            self._capture_lock.release()

    def _finish(self) -> None:
        self._current = None
        self._apply(RecorderEvent.STOP)
        self.interceptor.detach()

    def export_reel(
        self,
        reel_id: str,
        fmt: str = "gif",
        *,
        include_metadata: bool = True,
        include_html: Optional[bool] = None,
        filename: Optional[str] = None,
        on_progress=None,
    ) -> ExportResult:
        options = ExportOptions.for_format(
            fmt,
            include_metadata=include_metadata,
            include_html=include_html,
            filename=filename,
            gif=self.gif_options,
            apng=self.apng_options,
            on_progress=on_progress,
        )
        reel = self._current if self._current is not None and self._current.id == reel_id else None

        if reel is None:
            self.loading.loading = True
            try:
                reel = self.store.load_reel(reel_id)
            except ReelNotFound as exc:
                self._record_error("Failed to export reel", exc)
                raise ExportFailure(f"Reel not found: {reel_id}", cause=exc) from exc
            finally:
                self.loading.loading = False

        self.loading.encoding = True
        try:
            return self.exporter.export(reel, options)
        except ClickReelError as exc:
            self._record_error("Failed to export reel", exc)
            raise
        finally:
            self.loading.encoding = False

    def flush_on_exit(self) -> Optional[threading.Thread]:
        """Best-effort save of the in-progress reel on a daemon thread."""
        reel = self._current
        if reel is None or not reel.frames:
            return None

        snapshot = copy(reel)
        snapshot.frames = list(reel.frames)
        snapshot.end_time = now_ms()
        snapshot.metadata = generate_reel_metadata(
            snapshot,
            user_agent=self.surface.user_agent,
            url=self.surface.url,
        )

        def _flush() -> None:
            try:
                self.store.save_reel(snapshot)
            except Exception as exc:  # noqa: BLE001
                self.logger.warning("Exit flush of reel %s failed: %s", snapshot.id, exc)

        thread = threading.Thread(target=_flush, name=f"click-reel-flush-{snapshot.id}", daemon=True)
        thread.start()
        return thread


__all__ = [
    "LoadingFlags",
    "Recorder",
    "RecorderError",
    "RecorderEvent",
    "RecorderState",
    "transition",
]
