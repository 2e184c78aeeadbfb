"""
Tests for the frame store: capture order, cursor clamping and export exclusion.
"""

import threading
import time

import numpy as np
import pytest

from conftest import solid_image
from stopmo.errors import OutOfRange


class TestCapture:
    """Tests for appending frames."""

    def test_captures_in_order(self, store):
        frames = [store.capture(solid_image((i, i, i), alpha=255)) for i in range(4)]
        assert len(store) == 4
        assert store.snapshot() == tuple(frames)
        assert [store.frame_at(i) for i in range(4)] == frames

    def test_cursor_moves_to_new_frame(self, store):
        for i in range(3):
            store.capture(solid_image((i, i, i)))
            assert store.cursor == i

    def test_ids_unique(self, filled_store):
        ids = [f.id for f in filled_store.snapshot()]
        assert len(set(ids)) == len(ids)

    def test_frame_owns_a_readonly_copy(self, store):
        image = solid_image((1, 2, 3), alpha=255)
        frame = store.capture(image)
        image[:] = 0

        assert frame.image[0, 0].tolist() == [1, 2, 3, 255]
        with pytest.raises(ValueError):
            frame.image[0, 0, 0] = 9

    def test_frame_metadata(self, store):
        frame = store.capture(solid_image((0, 0, 0), width=10, height=4))
        assert (frame.width, frame.height) == (10, 4)
        assert frame.to_dict()["id"] == frame.id

    def test_frame_to_jpeg(self, store):
        frame = store.capture(solid_image((0, 0, 0), alpha=255))
        assert frame.to_jpeg()[:2] == b"\xff\xd8"


class TestCursor:
    """Tests for cursor clamping."""

    def test_empty_store_cursor_zero(self, store):
        assert store.cursor == 0
        assert store.set_cursor(5) == 0
        assert store.current_frame() is None

    def test_set_cursor_clamped(self, filled_store):
        assert filled_store.set_cursor(2) == 2
        assert filled_store.set_cursor(99) == 4
        assert filled_store.set_cursor(-3) == 0

    def test_current_frame_follows_cursor(self, filled_store):
        filled_store.set_cursor(1)
        assert filled_store.current_frame() is filled_store.frame_at(1)

    def test_advance_wraps(self, filled_store):
        filled_store.set_cursor(4)
        assert filled_store.advance() == 0
        assert filled_store.advance() == 1

    def test_advance_on_empty_is_noop(self, store):
        assert store.advance() == 0


class TestFrameAt:
    """Tests for direct lookup."""

    def test_out_of_range(self, filled_store):
        with pytest.raises(OutOfRange):
            filled_store.frame_at(5)
        with pytest.raises(OutOfRange):
            filled_store.frame_at(-1)

    def test_empty_store(self, store):
        with pytest.raises(OutOfRange):
            store.frame_at(0)

    def test_out_of_range_is_index_error(self, store):
        with pytest.raises(IndexError):
            store.frame_at(0)


class TestClearAndDelete:
    """Tests for removing frames."""

    def test_clear_requires_confirm(self, filled_store):
        with pytest.raises(ValueError):
            filled_store.clear()
        assert len(filled_store) == 5

    def test_clear(self, filled_store):
        assert filled_store.clear(confirm=True) == 5
        assert filled_store.is_empty
        assert filled_store.cursor == 0

    def test_capture_after_clear(self, filled_store):
        filled_store.clear(confirm=True)
        filled_store.capture(solid_image((0, 0, 0)))
        assert len(filled_store) == 1
        assert filled_store.cursor == 0

    def test_delete_before_cursor_shifts_cursor(self, filled_store):
        filled_store.set_cursor(3)
        current = filled_store.current_frame()
        filled_store.delete(filled_store.frame_at(0).id)
        assert filled_store.cursor == 2
        assert filled_store.current_frame() is current

    def test_delete_last_clamps_cursor(self, filled_store):
        last = filled_store.frame_at(4)
        filled_store.delete(last.id)
        assert len(filled_store) == 4
        assert filled_store.cursor == 3

    def test_delete_unknown(self, filled_store):
        with pytest.raises(KeyError):
            filled_store.delete("nope")

    def test_delete_keeps_order(self, filled_store):
        frames = filled_store.snapshot()
        filled_store.delete(frames[2].id)
        assert filled_store.snapshot() == frames[:2] + frames[3:]


class TestExclusive:
    """Tests for export/capture serialisation."""

    def test_snapshot_is_stable(self, filled_store):
        with filled_store.exclusive() as frames:
            assert len(frames) == 5
            assert filled_store.get_status()["exporting"] is True
        assert filled_store.get_status()["exporting"] is False

    def test_capture_waits_for_exclusive_block(self, filled_store):
        captured = threading.Event()

        def capture():
            filled_store.capture(solid_image((255, 255, 255)))
            captured.set()

        with filled_store.exclusive() as frames:
            worker = threading.Thread(target=capture)
            worker.start()
            time.sleep(0.1)
            assert not captured.is_set()
            assert len(filled_store) == 5
            # The cursor stays usable for progress reporting
            assert filled_store.set_cursor(2) == 2

        worker.join(timeout=2)
        assert captured.is_set()
        assert len(filled_store) == 6
        assert len(frames) == 5

    def test_frames_are_not_value_equal(self, store):
        """Two captures of the same image are different frames."""
        a = store.capture(np.zeros((2, 2, 4), dtype=np.uint8))
        b = store.capture(np.zeros((2, 2, 4), dtype=np.uint8))
        assert a != b
