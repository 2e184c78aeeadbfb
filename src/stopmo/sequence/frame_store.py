"""
Frame Store

Ordered, append-only collection of captured composited frames plus the
"current frame" cursor shared by preview, playback and export.

Insertion order is capture order is playback order. The cursor is always
clamped into range: 0 <= cursor < max(1, len(sequence)).
"""

import logging
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from io import BytesIO
from typing import Iterator

import numpy as np
from PIL import Image

from ..errors import OutOfRange

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class Frame:
    """A single captured frame. The image buffer is read-only."""

    id: str
    image: np.ndarray  # RGBA (H, W, 4) uint8
    captured_at: float  # time.monotonic()
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def width(self) -> int:
        return self.image.shape[1]

    @property
    def height(self) -> int:
        return self.image.shape[0]

    def to_jpeg(self, quality: int = 90) -> bytes:
        """Encode the frame as JPEG bytes (alpha dropped)."""
        img = Image.fromarray(np.ascontiguousarray(self.image[..., :3]))
        buf = BytesIO()
        img.save(buf, "JPEG", quality=quality)
        return buf.getvalue()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "width": self.width,
            "height": self.height,
            "created_at": self.created_at.isoformat(),
        }


class FrameStore:
    """
    Session-owned frame sequence with a clamped cursor.

    Captures, deletes and clears are serialised against exports through
    exclusive(): a capture issued while an export holds the store blocks
    until the export has finished, so an export never sees the sequence
    change mid-run.
    """

    def __init__(self):
        self._sequence: list[Frame] = []
        self._cursor = 0
        self._lock = threading.RLock()
        self._exclusive_lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._sequence)

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def is_empty(self) -> bool:
        return not self._sequence

    def capture(self, image: np.ndarray) -> Frame:
        """
        Append a new frame holding a private copy of the image.

        The cursor moves to the new frame.

        Args:
            image: Composited RGBA image (H, W, 4)

        Returns:
            The new Frame
        """
        data = np.array(image, dtype=np.uint8, copy=True)
        data.setflags(write=False)
        frame = Frame(id=uuid.uuid4().hex, image=data, captured_at=time.monotonic())

        with self._exclusive_lock:
            with self._lock:
                self._sequence.append(frame)
                self._cursor = len(self._sequence) - 1
                count = len(self._sequence)

        logger.info(f"Frame captured: #{count} ({frame.width}x{frame.height}, id={frame.id[:8]})")
        return frame

    def clear(self, confirm: bool = False) -> int:
        """
        Remove every frame and reset the cursor to 0.

        Args:
            confirm: Must be True; clearing is destructive

        Returns:
            Number of frames removed

        Raises:
            ValueError: If confirm is not True
        """
        if confirm is not True:
            raise ValueError("clear() requires confirm=True")

        with self._exclusive_lock:
            with self._lock:
                removed = len(self._sequence)
                self._sequence.clear()
                self._cursor = 0

        logger.info(f"Frame store cleared ({removed} frames removed)")
        return removed

    def delete(self, frame_id: str) -> Frame:
        """
        Remove one frame by id, keeping the cursor clamped.

        Raises:
            KeyError: Unknown frame id
        """
        with self._exclusive_lock:
            with self._lock:
                for index, frame in enumerate(self._sequence):
                    if frame.id == frame_id:
                        break
                else:
                    raise KeyError(frame_id)

                del self._sequence[index]
                if index < self._cursor:
                    self._cursor -= 1
                self._cursor = self._clamp(self._cursor)

        logger.info(f"Frame deleted: {frame_id[:8]} (was #{index + 1})")
        return frame

    def set_cursor(self, index: int) -> int:
        """Clamp index into the sequence and store it. Returns the stored value."""
        with self._lock:
            self._cursor = self._clamp(index)
            return self._cursor

    def advance(self) -> int:
        """
        Move the cursor one step forward, wrapping to the start.

        No-op on an empty sequence. Returns the new cursor.
        """
        with self._lock:
            if self._sequence:
                self._cursor = (self._cursor + 1) % len(self._sequence)
            return self._cursor

    def frame_at(self, index: int) -> Frame:
        """
        Direct lookup by position.

        Raises:
            OutOfRange: Empty sequence or index outside [0, len)
        """
        with self._lock:
            if not self._sequence:
                raise OutOfRange("Frame store is empty")
            if not 0 <= index < len(self._sequence):
                raise OutOfRange(f"Frame index {index} out of range 0-{len(self._sequence) - 1}")
            return self._sequence[index]

    def current_frame(self) -> Frame | None:
        """Frame under the cursor, None if the sequence is empty."""
        with self._lock:
            if not self._sequence:
                return None
            return self._sequence[self._cursor]

    def snapshot(self) -> tuple[Frame, ...]:
        """Consistent, immutable view of the current sequence."""
        with self._lock:
            return tuple(self._sequence)

    @contextmanager
    def exclusive(self) -> Iterator[tuple[Frame, ...]]:
        """
        Hold off captures, deletes and clears for the duration of the block.

        Yields the sequence snapshot the block should work on.
        """
        with self._exclusive_lock:
            yield self.snapshot()

    def _clamp(self, index: int) -> int:
        if not self._sequence:
            return 0
        return max(0, min(index, len(self._sequence) - 1))

    def get_status(self) -> dict:
        with self._lock:
            return {
                "frame_count": len(self._sequence),
                "cursor": self._cursor,
                "exporting": self._exclusive_lock.locked(),
            }
