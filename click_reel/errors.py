"""Exception taxonomy for the click reel recorder."""

from __future__ import annotations

from typing import Optional


class ClickReelError(RuntimeError):
    """Base class for failures surfaced to the caller."""

    def __init__(self, message: str, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        if self.cause is None:
            return self.message
        return f"{self.message}: {self.cause}"


class CaptureFailure(ClickReelError):
    """Raised when rendering a frame fails (after surface state is restored)."""


class EncodingFailure(ClickReelError):
    """Raised when animation encoding is rejected or a frame cannot be encoded."""

    def __init__(
        self,
        message: str,
        *,
        frame_index: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.frame_index = frame_index


class StorageFailure(ClickReelError):
    """Raised when a store operation fails or a transaction is aborted."""


class ReelNotFound(StorageFailure):
    """Raised when a reel id is not present in the store."""

    def __init__(self, reel_id: str) -> None:
        super().__init__(f"Reel not found: {reel_id}")
        self.reel_id = reel_id


class ChunkedWriteFailure(StorageFailure):
    """Raised when a chunk of a bulk frame write fails.

    Chunks committed before the failing one stay committed; ``committed``
    reports how many frames made it to disk.
    """

    def __init__(
        self,
        message: str,
        *,
        committed: int,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.committed = committed


class ExportFailure(ClickReelError):
    """Raised for unsupported export formats or missing reels."""


__all__ = [
    "CaptureFailure",
    "ChunkedWriteFailure",
    "ClickReelError",
    "EncodingFailure",
    "ExportFailure",
    "ReelNotFound",
    "StorageFailure",
]
