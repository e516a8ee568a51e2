"""Progress reporting for long-running encode and export steps."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from time import perf_counter
from typing import Callable, Optional

ProgressCallback = Callable[[int, int, str], None]


def _format_duration(seconds: float) -> str:
    """Return a compact human-readable duration string."""
    total_seconds = int(round(seconds))
    if total_seconds <= 0:
        return "<1s"
    minutes, seconds_remaining = divmod(total_seconds, 60)
    if minutes:
        return f"{minutes}m{seconds_remaining:02d}s"
    return f"{seconds_remaining}s"


def eta_string(elapsed: float, completed: int, total: int) -> str:
    """Format an ETA string given elapsed seconds and progress counters."""
    if completed <= 0 or total <= 0 or completed > total or elapsed <= 0.0:
        return "ETA estimating"

    remaining = max(0.0, elapsed * (total - completed) / completed)
    finish_time = datetime.now() + timedelta(seconds=remaining)
    return f"ETA {_format_duration(remaining)} (finish {finish_time.strftime('%H:%M:%S')})"


class ProgressReporter:
    """Forward ``(completed, total, status)`` updates to a callback and the log."""

    def __init__(
        self,
        total: int,
        *,
        label: str,
        callback: Optional[ProgressCallback] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.total = max(0, total)
        self.label = label
        self.callback = callback
        self.logger = logger or logging.getLogger("click_reel.progress")
        self.started = perf_counter()
        self.completed = 0
        self._log_every = max(1, self.total // 10)

    def update(self, completed: int, status: str) -> None:
        self.completed = completed
        if self.callback is not None:
            self.callback(completed, self.total, status)
        if completed in (0, self.total) or completed % self._log_every == 0:
            self.logger.debug(
                "%s: %s/%s %s - %s",
                self.label,
                completed,
                self.total,
                status,
                eta_string(perf_counter() - self.started, completed, self.total),
            )

    def finish(self, status: str = "Complete!") -> None:
        self.update(self.total, status)
        self.logger.info(
            "%s finished in %.2fs",
            self.label,
            perf_counter() - self.started,
        )


__all__ = ["ProgressCallback", "ProgressReporter", "eta_string"]
