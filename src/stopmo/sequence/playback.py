"""
Playback Clock

Timed driver that loops the frame store cursor at a configurable rate:
IDLE --start()--> PLAYING --stop()--> IDLE

Ticks fire every 1000/fps ms on a daemon timer thread. Changing fps while
playing reschedules immediately: the new period is counted from the moment
of the change, the old period is not waited out.
"""

import logging
import threading
from enum import Enum, auto
from typing import Callable

from .frame_store import FrameStore

logger = logging.getLogger(__name__)


class PlaybackState(Enum):
    """Session playback state."""

    IDLE = auto()
    PLAYING = auto()


class PlaybackClock:
    """
    Looping cursor driver for the frame store.

    Every cursor mutation happens under the clock lock after re-checking
    the state, so once stop() returns no further tick can advance the
    cursor.
    """

    def __init__(
        self,
        store: FrameStore,
        fps: float = 12.0,
        use_timer: bool = True,
    ):
        """
        Initialize the playback clock.

        Args:
            store: Frame store whose cursor is driven
            fps: Ticks per second (1-24 recommended, any positive value accepted)
            use_timer: Run the timer thread; False leaves ticking to the caller
        """
        self.store = store
        self._fps = self._validate_fps(fps)
        self.use_timer = use_timer

        self._state = PlaybackState.IDLE
        self._lock = threading.Lock()
        self._wake = threading.Event()
        self._thread: threading.Thread | None = None
        self._generation = 0
        self._tick_count = 0

        self._on_state_change_callbacks: list[Callable[[PlaybackState], None]] = []

        logger.info(f"PlaybackClock initialized: fps={fps}, timer={use_timer}")

    @staticmethod
    def _validate_fps(fps: float) -> float:
        if fps <= 0:
            raise ValueError(f"fps must be positive, got {fps}")
        return float(fps)

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def is_playing(self) -> bool:
        return self._state is PlaybackState.PLAYING

    @property
    def fps(self) -> float:
        return self._fps

    @fps.setter
    def fps(self, value: float) -> None:
        value = self._validate_fps(value)
        with self._lock:
            self._fps = value
            # Wake the timer so it restarts its wait with the new period
            self._wake.set()
        logger.info(f"Playback fps set to {value} (period={self.period_ms:.1f}ms)")

    @property
    def period_ms(self) -> float:
        return 1000.0 / self._fps

    @property
    def tick_count(self) -> int:
        return self._tick_count

    def start(self) -> bool:
        """
        Start looping playback.

        Returns:
            True if now playing, False if the store is empty (stays IDLE)
        """
        with self._lock:
            if self._state is PlaybackState.PLAYING:
                return True
            if self.store.is_empty:
                logger.info("Playback not started: no frames captured")
                return False

            self._state = PlaybackState.PLAYING
            self._generation += 1
            generation = self._generation
            self._wake.clear()

            if self.use_timer:
                self._thread = threading.Thread(
                    target=self._run,
                    args=(generation,),
                    name="PlaybackClockThread",
                    daemon=True,
                )
                self._thread.start()

        logger.info(f"Playback started: {len(self.store)} frames @ {self._fps}fps")
        self._notify(PlaybackState.PLAYING)
        return True

    def stop(self) -> None:
        """Stop playback. The cursor keeps its last value."""
        with self._lock:
            if self._state is PlaybackState.IDLE:
                return
            self._state = PlaybackState.IDLE
            self._generation += 1
            self._wake.set()
            thread = self._thread
            self._thread = None

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=2.0)

        logger.info(f"Playback stopped at frame {self.store.cursor + 1}/{len(self.store)}")
        self._notify(PlaybackState.IDLE)

    def toggle(self) -> PlaybackState:
        if self.is_playing:
            self.stop()
        else:
            self.start()
        return self._state

    def tick(self) -> int:
        """
        Advance the cursor by one frame (wrapping) if playing.

        Returns:
            The cursor after the tick
        """
        with self._lock:
            cursor, emptied = self._tick_locked(self._generation)
        if emptied:
            self._notify(PlaybackState.IDLE)
        return cursor

    def _tick_locked(self, generation: int) -> tuple[int, bool]:
        """Returns (cursor, whether playback just stopped on an empty store)."""
        if self._state is not PlaybackState.PLAYING or generation != self._generation:
            return self.store.cursor, False
        if self.store.is_empty:
            # Sequence cleared while playing
            self._state = PlaybackState.IDLE
            self._generation += 1
            self._thread = None
            logger.info("Playback stopped: sequence is empty")
            return self.store.cursor, True
        self._tick_count += 1
        return self.store.advance(), False

    def _run(self, generation: int) -> None:
        logger.debug("Playback timer started")
        while True:
            with self._lock:
                if self._state is not PlaybackState.PLAYING or generation != self._generation:
                    break
                period = 1.0 / self._fps
                self._wake.clear()

            if self._wake.wait(period):
                # Rescheduled (fps change) or stopped: re-check before waiting again
                continue

            with self._lock:
                _, emptied = self._tick_locked(generation)
            if emptied:
                self._notify(PlaybackState.IDLE)
        logger.debug("Playback timer stopped")

    def on_state_change(self, callback: Callable[[PlaybackState], None]) -> None:
        """Register callback for playback state changes."""
        self._on_state_change_callbacks.append(callback)

    def _notify(self, state: PlaybackState) -> None:
        for callback in self._on_state_change_callbacks:
            try:
                callback(state)
            except Exception as e:
                logger.error(f"Playback state callback error: {e}")

    def get_status(self) -> dict:
        return {
            "state": self._state.name,
            "fps": self._fps,
            "period_ms": self.period_ms,
            "cursor": self.store.cursor,
            "frame_count": len(self.store),
            "tick_count": self._tick_count,
        }

    def cleanup(self) -> None:
        self.stop()
