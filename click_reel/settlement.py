"""Post-interaction settlement detection.

After an interaction the surface may keep animating. The detector renders
bare detection frames (no masking, no marker) at a fixed interval until two
consecutive renders are byte-identical, then captures one final frame with
masking applied as configured. Detection frames are never returned.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional, Protocol

from click_reel.capture import CaptureEngine, CaptureOptions, InteractionContext
from click_reel.models import POST_CLICK, Frame, ReelSettings
from click_reel.surface import Surface

SETTLED = "settled"
TIMEOUT = "timeout"
CANCELLED = "cancelled"


class CancellationToken:
    """Thread-safe cancellation flag that also interrupts waits."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Block up to ``seconds``; returns ``True`` when cancelled meanwhile."""
        return self._event.wait(max(0.0, seconds))


class Clock(Protocol):
    def monotonic_ms(self) -> float:
        ...

    def sleep_ms(self, milliseconds: float, token: Optional[CancellationToken] = None) -> None:
        ...


class SystemClock:
    def monotonic_ms(self) -> float:
        return time.monotonic() * 1000.0

    def sleep_ms(self, milliseconds: float, token: Optional[CancellationToken] = None) -> None:
        if milliseconds <= 0:
            return
        if token is not None:
            token.wait(milliseconds / 1000.0)
        else:
            time.sleep(milliseconds / 1000.0)


@dataclass(frozen=True)
class SettlementPolicy:
    delay_ms: int = 500
    interval_ms: int = 100
    max_duration_ms: int = 4000
    max_attempts: Optional[int] = None
    promote_on_timeout: bool = False

    @classmethod
    def from_settings(cls, settings: ReelSettings, *, promote_on_timeout: bool = False) -> "SettlementPolicy":
        return cls(
            delay_ms=settings.post_click_delay,
            interval_ms=settings.post_click_interval,
            max_duration_ms=settings.max_capture_duration,
            promote_on_timeout=promote_on_timeout,
        )


@dataclass(frozen=True)
class SettlementResult:
    frame: Optional[Frame]
    outcome: str
    attempts: int
    promoted: bool = False

    @property
    def settled(self) -> bool:
        return self.outcome == SETTLED


class SettlementDetector:
    def __init__(
        self,
        engine: CaptureEngine,
        *,
        clock: Optional[Clock] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.engine = engine
        self.clock = clock or SystemClock()
        self.logger = logger or logging.getLogger("click_reel.settlement")

    def detect_and_capture(
        self,
        surface: Surface,
        options: CaptureOptions,
        *,
        reel_id: str,
        order: int,
        interaction: Optional[InteractionContext],
        policy: SettlementPolicy,
        token: Optional[CancellationToken] = None,
    ) -> SettlementResult:
        """Wait for the surface to stop changing and capture one post-click frame.

        Capture errors raised during detection propagate to the caller.
        """
        token = token or CancellationToken()

        self.clock.sleep_ms(policy.delay_ms, token)
        if token.cancelled:
            self.logger.info("Settlement detection cancelled during initial delay")
            return SettlementResult(frame=None, outcome=CANCELLED, attempts=0)

        started = self.clock.monotonic_ms()
        previous: Optional[Frame] = None
        attempts = 0

        while self.clock.monotonic_ms() - started < policy.max_duration_ms:
            if token.cancelled:
                self.logger.info("Settlement detection cancelled after %s attempt(s)", attempts)
                return SettlementResult(frame=None, outcome=CANCELLED, attempts=attempts)
            if policy.max_attempts is not None and attempts >= policy.max_attempts:
                break

            detection = self.engine.capture(
                surface,
                options,
                reel_id=reel_id,
                order=order,
                capture_type=POST_CLICK,
                interaction=interaction,
                skip_obfuscation=True,
            )
            attempts += 1

            if previous is not None and detection.image == previous.image:
                self.logger.debug("Surface settled after %s detection frame(s)", attempts)
                final = self.engine.capture(
                    surface,
                    options,
                    reel_id=reel_id,
                    order=order,
                    capture_type=POST_CLICK,
                    interaction=interaction,
                )
                return SettlementResult(frame=final, outcome=SETTLED, attempts=attempts)

            previous = detection
            self.clock.sleep_ms(policy.interval_ms, token)

        if token.cancelled:
            return SettlementResult(frame=None, outcome=CANCELLED, attempts=attempts)

        self.logger.info(
            "Surface did not settle within %sms (%s detection frame(s))",
            policy.max_duration_ms,
            attempts,
        )
        if policy.promote_on_timeout and previous is not None:
            # Detection frames are unmasked, so the promoted frame is re-captured.
            promoted = self.engine.capture(
                surface,
                options,
                reel_id=reel_id,
                order=order,
                capture_type=POST_CLICK,
                interaction=interaction,
            )
            return SettlementResult(frame=promoted, outcome=TIMEOUT, attempts=attempts, promoted=True)
        return SettlementResult(frame=None, outcome=TIMEOUT, attempts=attempts)


__all__ = [
    "CANCELLED",
    "CancellationToken",
    "Clock",
    "SETTLED",
    "SettlementDetector",
    "SettlementPolicy",
    "SettlementResult",
    "SystemClock",
    "TIMEOUT",
]
