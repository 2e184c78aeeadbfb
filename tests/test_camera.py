"""
Tests for live sources, the camera controller and the compositing loop.
"""

import threading
import time

import numpy as np
import pytest

from conftest import solid_image
from stopmo.camera.controller import CameraController
from stopmo.camera.live_loop import CompositingLoop
from stopmo.camera.source import (
    EXPOSURE_COMPENSATION,
    FOCUS_DISTANCE,
    FOCUS_MODE,
    POINT_OF_INTEREST,
    DeviceCapabilities,
    FocusMode,
    SyntheticScene,
    SyntheticSource,
    create_source,
)
from stopmo.compositing.compositor import ChromaKeyConfig
from stopmo.compositing.keyer import Pixel
from stopmo.errors import DeviceCapabilityUnsupported


class FailingSource(SyntheticSource):
    """Synthetic source whose device rejects every control."""

    def _apply(self, controls):
        raise RuntimeError("device busy")


class TestSyntheticSource:
    """Tests for the generated live source."""

    def test_frame_shape(self, synthetic_source):
        frame = synthetic_source.read()
        assert frame.shape == (24, 32, 3)
        assert frame.dtype == np.uint8

    def test_screen_color(self, synthetic_source):
        frame = synthetic_source.read()
        assert frame[0, 0].tolist() == [20, 220, 30]

    def test_exposure_simulated(self, synthetic_source):
        synthetic_source.apply_controls({EXPOSURE_COMPENSATION: -1.0})
        assert synthetic_source.read()[0, 0].tolist() == [10, 110, 15]

    def test_unsupported_control_raises(self):
        source = SyntheticSource(resolution=(8, 8), capabilities=DeviceCapabilities())
        with pytest.raises(DeviceCapabilityUnsupported):
            source.apply_controls({FOCUS_MODE: FocusMode.AUTO})
        assert source.applied_controls == {}

    def test_capture_thread_delivers_frames(self, synthetic_source):
        received = threading.Event()
        synthetic_source.on_frame(lambda frame, ts: received.set())
        with synthetic_source:
            assert received.wait(timeout=2)
        assert not synthetic_source.started

    def test_callback_errors_do_not_stop_capture(self, synthetic_source):
        frames = []

        def boom(frame, ts):
            raise RuntimeError("boom")

        synthetic_source.on_frame(boom)
        synthetic_source.on_frame(lambda frame, ts: frames.append(frame))
        with synthetic_source:
            time.sleep(0.2)
        assert len(frames) >= 2

    def test_create_source(self):
        assert isinstance(create_source("synthetic", (16, 16), 10), SyntheticSource)
        with pytest.raises(ValueError):
            create_source("webcam", (16, 16), 10)


class TestCameraController:
    """Tests for best-effort optics control."""

    def test_initial_state(self, synthetic_source):
        controller = CameraController(synthetic_source)
        assert controller.focus_mode is FocusMode.AUTO
        assert controller.focus_distance == 0.0
        assert controller.exposure_compensation == 0.0

    def test_unsupported_capabilities_are_noops(self):
        source = SyntheticSource(resolution=(8, 8), capabilities=DeviceCapabilities())
        controller = CameraController(source)

        assert controller.set_focus_mode("manual") is False
        assert controller.set_focus_distance(3.0) is False
        assert controller.set_exposure_compensation(1.0) is False
        assert controller.set_point_of_interest(0.5, 0.5) is False
        assert source.applied_controls == {}

    def test_unknown_focus_mode(self, synthetic_source):
        with pytest.raises(ValueError):
            CameraController(synthetic_source).set_focus_mode("macro")

    def test_manual_focus_sends_distance(self, synthetic_source):
        controller = CameraController(synthetic_source)
        controller.set_focus_distance(4.0)
        assert FOCUS_DISTANCE not in synthetic_source.applied_controls

        assert controller.set_focus_mode(FocusMode.MANUAL) is True
        controls = synthetic_source.applied_controls
        assert controls[FOCUS_MODE] is FocusMode.MANUAL
        assert controls[FOCUS_DISTANCE] == 4.0

    def test_focus_distance_clamped(self, synthetic_source):
        controller = CameraController(synthetic_source)
        controller.set_focus_mode("manual")
        assert controller.set_focus_distance(50.0) is True
        assert synthetic_source.applied_controls[FOCUS_DISTANCE] == 10.0

    def test_exposure_clamped_to_device_range(self):
        source = SyntheticSource(
            resolution=(8, 8),
            capabilities=DeviceCapabilities(exposure_range=(-1.0, 1.0)),
        )
        controller = CameraController(source)
        assert controller.set_exposure_compensation(2.0) is True
        assert source.applied_controls[EXPOSURE_COMPENSATION] == 1.0
        assert controller.exposure_compensation == 2.0

    def test_point_of_interest_clamped(self, synthetic_source):
        controller = CameraController(synthetic_source)
        controller.set_point_of_interest(1.5, -0.2)
        assert synthetic_source.applied_controls[POINT_OF_INTEREST] == (1.0, 0.0)

    def test_device_errors_swallowed(self):
        controller = CameraController(FailingSource(resolution=(8, 8)))
        assert controller.set_exposure_compensation(1.0) is False

    def test_status(self, synthetic_source):
        status = CameraController(synthetic_source).get_status()
        assert status["focus_mode"] == "auto"
        assert status["capabilities"]["supports_point_of_interest"] is True


class TestCompositingLoop:
    """Tests for the live compositing loop."""

    def test_process_frame_publishes_preview(self):
        loop = CompositingLoop()
        assert loop.get_preview() is None
        loop.process_frame(solid_image((1, 2, 3)))
        preview = loop.get_preview()
        assert preview.shape == (6, 8, 4)
        assert preview[0, 0].tolist() == [1, 2, 3, 255]

    def test_preview_is_a_copy(self):
        loop = CompositingLoop()
        loop.process_frame(solid_image((1, 2, 3)))
        loop.get_preview()[:] = 0
        assert loop.get_preview()[0, 0, 0] == 1

    def test_failure_degrades_to_pass_through(self):
        loop = CompositingLoop()

        def broken_render(*args):
            raise RuntimeError("bad frame")

        loop.compositor.render = broken_render
        result = loop.process_frame(solid_image((9, 8, 7)))
        assert result[0, 0].tolist() == [9, 8, 7, 255]
        assert loop.get_status()["error_count"] == 1

    def test_unusable_frame_dropped(self):
        loop = CompositingLoop()
        assert loop.process_frame(np.zeros((4, 4), dtype=np.uint8)) is None
        assert loop.get_preview() is None

    def test_latest_frame_wins(self):
        loop = CompositingLoop()
        loop.submit(solid_image((1, 1, 1)))
        loop.submit(solid_image((2, 2, 2)))
        loop.submit(solid_image((3, 3, 3)))
        assert loop.get_status()["dropped_count"] == 2

        loop.start()
        try:
            deadline = time.time() + 2
            while loop.get_preview() is None and time.time() < deadline:
                time.sleep(0.01)
        finally:
            loop.stop()
        assert loop.get_preview()[0, 0, 0] == 3
        assert loop.get_status()["frame_count"] == 1

    def test_settings_replaced_wholesale(self, red_background):
        loop = CompositingLoop()
        loop.chroma = ChromaKeyConfig(background=red_background)
        loop.process_frame(solid_image((0, 255, 0)))
        assert loop.get_preview()[0, 0].tolist() == [255, 0, 0, 255]

    def test_sample_color_uses_raw_source(self, red_background):
        loop = CompositingLoop(chroma=ChromaKeyConfig(background=red_background))
        assert loop.sample_color(0.5, 0.5) is None

        frame = solid_image((0, 255, 0))
        frame[3, 4] = (12, 34, 56)
        loop.process_frame(frame)
        assert loop.sample_color(0.5, 0.5) == Pixel(12, 34, 56)
        # Clamped to the image
        assert loop.sample_color(2.0, 2.0) == Pixel(0, 255, 0)

    def test_source_to_loop_wiring(self):
        source = SyntheticSource(resolution=(16, 12), framerate=60, scene=SyntheticScene(noise=0))
        loop = CompositingLoop()
        source.on_frame(loop.submit)
        loop.start()
        try:
            with source:
                deadline = time.time() + 2
                while loop.get_preview() is None and time.time() < deadline:
                    time.sleep(0.01)
        finally:
            loop.stop()
        assert loop.get_preview().shape == (12, 16, 4)
