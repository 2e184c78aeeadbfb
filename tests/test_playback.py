"""
Tests for the playback clock state machine and looping.
"""

import time

import pytest

from conftest import solid_image
from stopmo.sequence.frame_store import FrameStore
from stopmo.sequence.playback import PlaybackClock, PlaybackState


@pytest.fixture
def clock(filled_store):
    """Manually ticked clock over five frames."""
    return PlaybackClock(filled_store, fps=12, use_timer=False)


class TestStateMachine:
    """Tests for IDLE/PLAYING transitions."""

    def test_starts_idle(self, clock):
        assert clock.state is PlaybackState.IDLE
        assert not clock.is_playing

    def test_empty_store_never_plays(self, store):
        clock = PlaybackClock(store, use_timer=False)
        assert clock.start() is False
        assert clock.state is PlaybackState.IDLE

    def test_start_stop(self, clock):
        assert clock.start() is True
        assert clock.is_playing
        clock.stop()
        assert clock.state is PlaybackState.IDLE

    def test_start_twice_is_idempotent(self, clock):
        clock.start()
        assert clock.start() is True
        assert clock.is_playing

    def test_toggle(self, clock):
        assert clock.toggle() is PlaybackState.PLAYING
        assert clock.toggle() is PlaybackState.IDLE

    def test_state_callbacks(self, clock):
        states = []
        clock.on_state_change(states.append)
        clock.start()
        clock.stop()
        assert states == [PlaybackState.PLAYING, PlaybackState.IDLE]

    def test_failing_callback_does_not_break_clock(self, clock):
        def boom(state):
            raise RuntimeError("boom")

        clock.on_state_change(boom)
        assert clock.start() is True


class TestTicks:
    """Tests for cursor advancement."""

    def test_tick_while_idle_does_nothing(self, clock):
        clock.store.set_cursor(2)
        assert clock.tick() == 2
        assert clock.tick_count == 0

    def test_seven_ticks_over_five_frames(self, clock):
        """Starting at 0, seven ticks land on frame 2."""
        clock.store.set_cursor(0)
        clock.start()
        for _ in range(7):
            clock.tick()
        assert clock.store.cursor == 2
        assert clock.tick_count == 7

    def test_loops_back_to_start(self, clock):
        clock.store.set_cursor(4)
        clock.start()
        assert clock.tick() == 0

    def test_stop_keeps_cursor(self, clock):
        clock.store.set_cursor(0)
        clock.start()
        clock.tick()
        clock.tick()
        clock.stop()
        assert clock.tick() == 2
        assert clock.store.cursor == 2

    def test_single_frame_stays_put(self):
        store = FrameStore()
        store.capture(solid_image((0, 0, 0)))
        clock = PlaybackClock(store, use_timer=False)
        clock.start()
        assert clock.tick() == 0
        assert clock.tick() == 0

    def test_cleared_store_stops_playback(self, clock):
        clock.start()
        clock.store.clear(confirm=True)
        clock.tick()
        assert clock.state is PlaybackState.IDLE

    def test_cleared_store_notifies_idle(self, clock):
        states = []
        clock.on_state_change(states.append)
        clock.start()
        clock.store.clear(confirm=True)
        clock.tick()
        clock.tick()
        assert states == [PlaybackState.PLAYING, PlaybackState.IDLE]


class TestFps:
    """Tests for the playback rate."""

    def test_period(self, clock):
        clock.fps = 10
        assert clock.period_ms == pytest.approx(100.0)
        clock.fps = 24
        assert clock.period_ms == pytest.approx(41.667, abs=0.001)

    def test_invalid_fps(self, clock, filled_store):
        with pytest.raises(ValueError):
            clock.fps = 0
        with pytest.raises(ValueError):
            PlaybackClock(filled_store, fps=-1)

    def test_status(self, clock):
        status = clock.get_status()
        assert status["state"] == "IDLE"
        assert status["fps"] == 12.0
        assert status["frame_count"] == 5


class TestTimer:
    """Tests with the real timer thread."""

    def test_timer_advances_cursor(self, filled_store):
        clock = PlaybackClock(filled_store, fps=50)
        filled_store.set_cursor(0)
        clock.start()
        time.sleep(0.3)
        clock.stop()
        assert clock.tick_count > 0

    def test_no_advance_after_stop(self, filled_store):
        clock = PlaybackClock(filled_store, fps=100)
        clock.start()
        time.sleep(0.1)
        clock.stop()
        ticks = clock.tick_count
        cursor = filled_store.cursor
        time.sleep(0.1)
        assert clock.tick_count == ticks
        assert filled_store.cursor == cursor

    def test_fps_change_while_playing(self, filled_store):
        """Dropping to a very low rate stops ticks almost immediately."""
        clock = PlaybackClock(filled_store, fps=100)
        clock.start()
        time.sleep(0.1)
        clock.fps = 0.5
        ticks = clock.tick_count
        time.sleep(0.3)
        assert clock.tick_count <= ticks + 1
        assert clock.is_playing
        clock.stop()
