"""
Click reel recorder: captures before/after frames around user interactions on
a visual surface and turns them into animated GIF/APNG reels.
"""

from .app import ClickReel
from .capture import CaptureEngine, CaptureOptions
from .cli import main
from .encoder import encode_apng, encode_gif
from .errors import (
    CaptureFailure,
    ChunkedWriteFailure,
    ClickReelError,
    EncodingFailure,
    ExportFailure,
    ReelNotFound,
    StorageFailure,
)
from .export import ExportOptions, ExportResult, Exporter
from .models import Frame, Reel
from .recorder import Recorder, RecorderState
from .settlement import SettlementDetector, SettlementPolicy
from .storage import ReelStore

__version__ = "0.1.0"

__all__ = [
    "main",
    "CaptureEngine",
    "CaptureFailure",
    "CaptureOptions",
    "ChunkedWriteFailure",
    "ClickReel",
    "ClickReelError",
    "EncodingFailure",
    "ExportFailure",
    "ExportOptions",
    "ExportResult",
    "Exporter",
    "Frame",
    "Reel",
    "ReelNotFound",
    "ReelStore",
    "Recorder",
    "RecorderState",
    "SettlementDetector",
    "SettlementPolicy",
    "StorageFailure",
    "encode_apng",
    "encode_gif",
]
