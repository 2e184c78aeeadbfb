"""
Pytest configuration and shared fixtures for stopmo tests.
"""

import sys
from pathlib import Path

import pytest
import numpy as np

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from stopmo.camera.source import SyntheticScene, SyntheticSource
from stopmo.compositing.backgrounds import BackgroundImage
from stopmo.errors import EncodingFailed, EncodingUnavailable
from stopmo.export.exporter import Exporter
from stopmo.sequence.frame_store import FrameStore
from stopmo.session import StopMotionSession


def solid_image(color, width=8, height=6, alpha=None):
    """An (H, W, 3) image of one color, or (H, W, 4) if alpha is given."""
    channels = 3 if alpha is None else 4
    image = np.zeros((height, width, channels), dtype=np.uint8)
    image[..., :3] = color
    if alpha is not None:
        image[..., 3] = alpha
    return image


class FakeEncoder:
    """In-memory encoder recording what the exporter hands it."""

    def __init__(self, codecs=("libx264", "mjpeg"), fail_on_write=None, fail_open=False):
        self.codecs = set(codecs)
        self.fail_on_write = fail_on_write
        self.fail_open = fail_open
        self.opened = None
        self.frames = []
        self.finished = False
        self.aborted = False

    def supported_codecs(self):
        return self.codecs

    def open(self, option, width, height, fps):
        if self.fail_open:
            raise EncodingUnavailable("encoder missing")
        self.opened = (option, width, height, fps)

    def write(self, rgb):
        if self.fail_on_write is not None and len(self.frames) == self.fail_on_write:
            raise EncodingFailed("pipe broken")
        self.frames.append(rgb.copy())

    def finish(self):
        self.finished = True
        return b"VIDEO" * len(self.frames)

    def abort(self):
        self.aborted = True


@pytest.fixture
def green_image():
    """A 8x6 pure green frame."""
    return solid_image((0, 255, 0))


@pytest.fixture
def red_background():
    """A ready 4x3 red background (smaller than the frames, forces resampling)."""
    return BackgroundImage.from_array(solid_image((255, 0, 0), width=4, height=3), label="red")


@pytest.fixture
def store():
    return FrameStore()


@pytest.fixture
def filled_store():
    """A store with five distinguishable frames (gray levels 0, 10, ..., 40)."""
    store = FrameStore()
    for level in range(5):
        store.capture(solid_image((level * 10,) * 3, alpha=255))
    return store


@pytest.fixture
def fake_encoder():
    return FakeEncoder()


@pytest.fixture
def synthetic_source():
    """A small, deterministic synthetic source (not started)."""
    return SyntheticSource(resolution=(32, 24), framerate=30, scene=SyntheticScene(noise=0, seed=1))


@pytest.fixture
def session(synthetic_source, fake_encoder):
    """A session with no timer thread, a fake encoder and a live preview ready."""
    session = StopMotionSession(
        source=synthetic_source,
        exporter=Exporter(encoder=fake_encoder),
        fps=12.0,
        use_timer=False,
    )
    session.loop.process_frame(synthetic_source.read())
    yield session
    session.cleanup()
