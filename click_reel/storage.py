"""Durable local reel store backed by a single SQLite database file."""

from __future__ import annotations

import json
import logging
import shutil
import sqlite3
import threading
from pathlib import Path
from typing import List, Optional, Sequence, Union

import cv2

from click_reel.errors import ChunkedWriteFailure, ReelNotFound, StorageFailure
from click_reel.models import (
    Frame,
    FrameMetadata,
    Reel,
    ReelMetadata,
    ReelSettings,
    ReelSummary,
    StorageInfo,
)
from click_reel.renderer import decode_png, encode_png

DEFAULT_CHUNK_SIZE = 10
THUMBNAIL_WIDTH = 160

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS reels (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        start_time INTEGER NOT NULL,
        end_time INTEGER,
        settings TEXT NOT NULL,
        metadata TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_reels_start_time ON reels (start_time)",
    """
    CREATE TABLE IF NOT EXISTS frames (
        id TEXT PRIMARY KEY,
        reel_id TEXT NOT NULL,
        frame_order INTEGER NOT NULL,
        timestamp INTEGER NOT NULL,
        image BLOB NOT NULL,
        metadata TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_frames_reel_id ON frames (reel_id)",
    "CREATE INDEX IF NOT EXISTS idx_frames_reel_order ON frames (reel_id, frame_order)",
)


def _frame_row(frame: Frame) -> tuple:
    return (
        frame.id,
        frame.reel_id,
        frame.order,
        frame.timestamp,
        sqlite3.Binary(frame.image),
        json.dumps(frame.metadata.to_dict()),
    )


def _frame_from_row(row: sqlite3.Row) -> Frame:
    return Frame(
        id=row["id"],
        reel_id=row["reel_id"],
        image=bytes(row["image"]),
        timestamp=int(row["timestamp"]),
        order=int(row["frame_order"]),
        metadata=FrameMetadata.from_dict(json.loads(row["metadata"])),
    )


def make_thumbnail(payload: bytes, width: int = THUMBNAIL_WIDTH) -> Optional[bytes]:
    try:
        image = decode_png(payload)
    except ValueError:
        return None
    height, original_width = image.shape[:2]
    if original_width > width:
        target = (width, max(1, round(height * width / original_width)))
        image = cv2.resize(image, target, interpolation=cv2.INTER_AREA)
    return encode_png(image)


class ReelStore:
    """Reels and frames persisted in two tables.

    Every multi-record write runs in one transaction, except ``save_frames``
    which commits per chunk.
    """

    def __init__(
        self,
        database_path: Union[str, Path],
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.database_path = Path(database_path)
        self.logger = logger or logging.getLogger("click_reel.storage")
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def init(self) -> "ReelStore":
        with self._lock:
            if self._conn is None:
                try:
                    self.database_path.parent.mkdir(parents=True, exist_ok=True)
                    conn = sqlite3.connect(str(self.database_path), check_same_thread=False)
                except (OSError, sqlite3.Error) as exc:
                    raise StorageFailure(
                        f"Unable to open reel store at {self.database_path}", cause=exc
                    ) from exc
                conn.row_factory = sqlite3.Row
                self._conn = conn
            try:
                with self._conn:
                    for statement in _SCHEMA:
                        self._conn.execute(statement)
            except sqlite3.Error as exc:
                raise StorageFailure("Failed to initialise reel store schema", cause=exc) from exc
        return self

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> "ReelStore":
        return self.init()

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            self.init()
        assert self._conn is not None
        return self._conn

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def save_reel(self, reel: Reel) -> None:
        """Insert or replace ``reel`` and all of its frames atomically."""
        with self._lock:
            conn = self.connection
            try:
                with conn:
                    conn.execute(
                        """
                        INSERT OR REPLACE INTO reels
                            (id, title, description, start_time, end_time, settings, metadata)
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            reel.id,
                            reel.title,
                            reel.description,
                            reel.start_time,
                            reel.end_time,
                            json.dumps(reel.settings.to_dict()),
                            json.dumps(reel.metadata.to_dict()),
                        ),
                    )
                    conn.execute("DELETE FROM frames WHERE reel_id = ?", (reel.id,))
                    conn.executemany(
                        """
                        INSERT INTO frames (id, reel_id, frame_order, timestamp, image, metadata)
                        VALUES (?, ?, ?, ?, ?, ?)
                        """,
                        [_frame_row(frame) for frame in reel.frames],
                    )
            except (sqlite3.Error, TypeError, ValueError) as exc:
                raise StorageFailure(f"Failed to save reel {reel.id}", cause=exc) from exc

        self.logger.info("Saved reel %s with %s frame(s)", reel.id, len(reel.frames))

    def save_frames(self, frames: Sequence[Frame], chunk_size: int = DEFAULT_CHUNK_SIZE) -> int:
        """Write ``frames`` in chunks of ``chunk_size``; returns the number written.

        A failing chunk raises :class:`ChunkedWriteFailure`; earlier chunks
        stay committed.
        """
        chunk_size = max(1, chunk_size)
        committed = 0
        with self._lock:
            conn = self.connection
            for start in range(0, len(frames), chunk_size):
                chunk = frames[start : start + chunk_size]
                try:
                    with conn:
                        conn.executemany(
                            """
                            INSERT OR REPLACE INTO frames
                                (id, reel_id, frame_order, timestamp, image, metadata)
                            VALUES (?, ?, ?, ?, ?, ?)
                            """,
                            [_frame_row(frame) for frame in chunk],
                        )
                except (sqlite3.Error, TypeError, ValueError) as exc:
                    raise ChunkedWriteFailure(
                        f"Failed to save frame chunk starting at index {start}",
                        committed=committed,
                        cause=exc,
                    ) from exc
                committed += len(chunk)
                self.logger.debug("Committed %s/%s frame(s)", committed, len(frames))
        return committed

    def update_reel(
        self,
        reel_id: str,
        *,
        title: Optional[str] = None,
        description: Optional[str] = None,
    ) -> None:
        assignments = []
        params: List[object] = []
        if title is not None:
            assignments.append("title = ?")
            params.append(title)
        if description is not None:
            assignments.append("description = ?")
            params.append(description)

        with self._lock:
            conn = self.connection
            try:
                with conn:
                    exists = conn.execute("SELECT 1 FROM reels WHERE id = ?", (reel_id,)).fetchone()
                    if exists is None:
                        raise ReelNotFound(reel_id)
                    if assignments:
                        conn.execute(
                            f"UPDATE reels SET {', '.join(assignments)} WHERE id = ?",
                            (*params, reel_id),
                        )
            except sqlite3.Error as exc:
                raise StorageFailure(f"Failed to update reel {reel_id}", cause=exc) from exc

    def delete_reel(self, reel_id: str) -> bool:
        """Remove the reel and every frame referencing it; ``False`` if it did not exist."""
        with self._lock:
            conn = self.connection
            try:
                with conn:
                    conn.execute("DELETE FROM frames WHERE reel_id = ?", (reel_id,))
                    deleted = conn.execute("DELETE FROM reels WHERE id = ?", (reel_id,)).rowcount
            except sqlite3.Error as exc:
                raise StorageFailure(f"Failed to delete reel {reel_id}", cause=exc) from exc
        if deleted:
            self.logger.info("Deleted reel %s", reel_id)
        return bool(deleted)

    def delete_frames_by_reel_id(self, reel_id: str) -> int:
        with self._lock:
            conn = self.connection
            try:
                with conn:
                    return conn.execute("DELETE FROM frames WHERE reel_id = ?", (reel_id,)).rowcount
            except sqlite3.Error as exc:
                raise StorageFailure(f"Failed to delete frames of reel {reel_id}", cause=exc) from exc

    def cleanup_old_reels(self, keep_count: int) -> List[str]:
        """Delete all but the ``keep_count`` most recent reels; returns deleted ids."""
        keep_count = max(0, keep_count)
        with self._lock:
            conn = self.connection
            ids = [
                row["id"]
                for row in conn.execute("SELECT id FROM reels ORDER BY start_time ASC, id ASC")
            ]
            if len(ids) <= keep_count:
                return []
            doomed = ids[: len(ids) - keep_count]
            try:
                with conn:
                    for reel_id in doomed:
                        conn.execute("DELETE FROM frames WHERE reel_id = ?", (reel_id,))
                        conn.execute("DELETE FROM reels WHERE id = ?", (reel_id,))
            except sqlite3.Error as exc:
                raise StorageFailure("Failed to clean up old reels", cause=exc) from exc

        self.logger.info("Evicted %s old reel(s), kept %s", len(doomed), keep_count)
        return doomed

    def clear_all(self) -> None:
        with self._lock:
            conn = self.connection
            try:
                with conn:
                    conn.execute("DELETE FROM frames")
                    conn.execute("DELETE FROM reels")
            except sqlite3.Error as exc:
                raise StorageFailure("Failed to clear reel store", cause=exc) from exc

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def load_frames_by_reel_id(self, reel_id: str) -> List[Frame]:
        with self._lock:
            rows = self.connection.execute(
                "SELECT * FROM frames WHERE reel_id = ? ORDER BY frame_order ASC",
                (reel_id,),
            ).fetchall()
        return [_frame_from_row(row) for row in rows]

    def load_reel(self, reel_id: str) -> Reel:
        with self._lock:
            row = self.connection.execute("SELECT * FROM reels WHERE id = ?", (reel_id,)).fetchone()
            if row is None:
                raise ReelNotFound(reel_id)
            frames = self.load_frames_by_reel_id(reel_id)

        return Reel(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            start_time=int(row["start_time"]),
            end_time=int(row["end_time"]) if row["end_time"] is not None else None,
            settings=ReelSettings.from_dict(json.loads(row["settings"])),
            frames=frames,
            metadata=ReelMetadata.from_dict(json.loads(row["metadata"])),
        )

    def load_all_reels(self, *, include_thumbnails: bool = True) -> List[ReelSummary]:
        """Frame-less summaries, most recent first."""
        with self._lock:
            conn = self.connection
            rows = conn.execute(
                """
                SELECT r.id, r.title, r.description, r.start_time, r.end_time,
                       COUNT(f.id) AS frame_count,
                       COALESCE(SUM(LENGTH(f.image)), 0) AS estimated_size
                FROM reels r
                LEFT JOIN frames f ON f.reel_id = r.id
                GROUP BY r.id
                ORDER BY r.start_time DESC
                """
            ).fetchall()

            summaries = []
            for row in rows:
                thumbnail = None
                if include_thumbnails and row["frame_count"]:
                    first = conn.execute(
                        "SELECT image FROM frames WHERE reel_id = ? ORDER BY frame_order ASC LIMIT 1",
                        (row["id"],),
                    ).fetchone()
                    if first is not None:
                        thumbnail = make_thumbnail(bytes(first["image"]))
                summaries.append(
                    ReelSummary(
                        id=row["id"],
                        title=row["title"],
                        description=row["description"],
                        start_time=int(row["start_time"]),
                        end_time=int(row["end_time"]) if row["end_time"] is not None else None,
                        frame_count=int(row["frame_count"]),
                        estimated_size=int(row["estimated_size"]),
                        thumbnail=thumbnail,
                    )
                )
        return summaries

    def get_storage_info(self) -> StorageInfo:
        with self._lock:
            conn = self.connection
            reels_count = conn.execute("SELECT COUNT(*) FROM reels").fetchone()[0]
            frames_count, estimated = conn.execute(
                "SELECT COUNT(*), COALESCE(SUM(LENGTH(image)), 0) FROM frames"
            ).fetchone()

        usage = 0
        for suffix in ("", "-wal", "-journal"):
            candidate = Path(f"{self.database_path}{suffix}")
            if candidate.exists():
                usage += candidate.stat().st_size
        try:
            quota = shutil.disk_usage(self.database_path.parent).total
        except OSError:
            quota = 0

        return StorageInfo(
            reels_count=int(reels_count),
            frames_count=int(frames_count),
            estimated_size=int(estimated),
            quota=int(quota),
            usage=int(usage),
        )

    def is_quota_low(self, threshold: float = 80.0) -> bool:
        return self.get_storage_info().percent_used >= threshold


__all__ = ["DEFAULT_CHUNK_SIZE", "ReelStore", "make_thumbnail"]
