"""Logging configuration for the click reel recorder."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Tuple, Union

DEFAULT_LOGGER_NAME = "click_reel"
DEFAULT_LOG_FILE = Path("logs") / "click_reel.log"
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def resolve_level(level: Union[int, str, None], default: int = logging.INFO) -> int:
    """Map ``"DEBUG"``/``"info"``/``20`` style values onto a logging level."""
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        candidate = logging.getLevelName(level.strip().upper())
        if isinstance(candidate, int):
            return candidate
    return default


def _open_log_file(log_file: Union[str, Path]) -> Tuple[Optional[logging.Handler], Optional[str]]:
    """Open a file handler, trying the working directory when the target is unusable."""
    log_path = Path(log_file)
    if not log_path.is_absolute():
        log_path = Path.cwd() / log_path

    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(log_path, encoding="utf-8"), None
    except OSError as exc:
        fallback_path = Path.cwd() / log_path.name
        try:
            handler = logging.FileHandler(fallback_path, encoding="utf-8")
        except OSError as fallback_exc:
            return None, (
                f"Cannot write log file '{log_path}' or fallback '{fallback_path}': {fallback_exc}"
            )
        return handler, f"Cannot write log file '{log_path}' ({exc}); logging to '{fallback_path}'"


def configure_logging(
    logger_name: Optional[str] = None,
    *,
    level: Union[int, str] = logging.INFO,
    log_file: Union[str, Path, None] = DEFAULT_LOG_FILE,
    include_stream: bool = True,
) -> logging.Logger:
    """Configure root handlers and return the application logger.

    Parameters
    ----------
    logger_name:
        Logger to return; ``"click_reel"`` when omitted so module loggers
        (``click_reel.capture`` and friends) inherit its level.
    level:
        Level name or number applied to the returned logger and root handlers.
    log_file:
        Log file path, or ``None`` to log to the stream only.
    include_stream:
        Attach a ``StreamHandler`` for console feedback.
    """

    numeric_level = resolve_level(level)
    formatter = logging.Formatter(LOG_FORMAT)

    handlers: List[logging.Handler] = []
    pending_warning: Optional[str] = None
    if log_file:
        file_handler, pending_warning = _open_log_file(log_file)
        if file_handler is not None:
            handlers.append(file_handler)

    if include_stream:
        handlers.append(logging.StreamHandler())

    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=numeric_level, handlers=handlers, force=True)

    logger = logging.getLogger(logger_name or DEFAULT_LOGGER_NAME)
    logger.setLevel(numeric_level)

    if pending_warning:
        logger.warning(pending_warning)

    return logger


__all__ = ["DEFAULT_LOG_FILE", "DEFAULT_LOGGER_NAME", "configure_logging", "resolve_level"]
