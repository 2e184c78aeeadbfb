"""
Background images for chroma key compositing.

A BackgroundImage is a handle that resolves to a decoded RGB raster.
Remote images are fetched in a background thread; until they arrive the
compositor paints a solid fallback instead.
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum, auto
from io import BytesIO
from pathlib import Path

import numpy as np
import requests
from PIL import Image

from ..errors import BackgroundLoadPending

logger = logging.getLogger(__name__)

FETCH_TIMEOUT = 20.0  # seconds


class LoadState(Enum):
    """Decode state of a background image."""

    PENDING = auto()
    READY = auto()
    FAILED = auto()


class BackgroundImage:
    """Decoded background raster with a per-size resample cache."""

    def __init__(self, label: str = "background", source: str | None = None):
        self.label = label
        self.source = source
        self._state = LoadState.PENDING
        self._raster: np.ndarray | None = None
        self._resized: dict[tuple[int, int], np.ndarray] = {}
        self._lock = threading.Lock()
        self._ready_event = threading.Event()

    @classmethod
    def from_array(cls, raster: np.ndarray, label: str = "background") -> "BackgroundImage":
        image = cls(label=label)
        image._set_raster(raster[..., :3].astype(np.uint8, copy=True))
        return image

    @classmethod
    def from_bytes(cls, data: bytes, label: str = "background") -> "BackgroundImage":
        """Decode an encoded image (JPEG, PNG, ...) synchronously."""
        image = cls(label=label)
        image._set_raster(_decode(data))
        return image

    @classmethod
    def from_path(cls, path: str | Path, label: str | None = None) -> "BackgroundImage":
        path = Path(path)
        return cls.from_bytes(path.read_bytes(), label=label or path.stem)

    @classmethod
    def load_async(cls, source: str, label: str = "background") -> "BackgroundImage":
        """
        Start loading from a URL or file path in a worker thread.

        Returns immediately with a PENDING handle.
        """
        image = cls(label=label, source=source)
        thread = threading.Thread(
            target=image._fetch,
            name=f"BackgroundLoader-{label}",
            daemon=True,
        )
        thread.start()
        return image

    @property
    def state(self) -> LoadState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is LoadState.READY

    @property
    def size(self) -> tuple[int, int] | None:
        """(width, height) of the decoded raster, None until ready."""
        if self._raster is None:
            return None
        h, w = self._raster.shape[:2]
        return (w, h)

    def wait(self, timeout: float | None = None) -> bool:
        """Block until loading finished (ready or failed)."""
        return self._ready_event.wait(timeout)

    def resized(self, width: int, height: int) -> np.ndarray:
        """
        Return the raster stretched to (width, height), bilinear.

        Raises:
            BackgroundLoadPending: If the image is not decoded (yet)
        """
        if not self.is_ready:
            raise BackgroundLoadPending(f"Background '{self.label}' is {self._state.name}")

        key = (width, height)
        with self._lock:
            cached = self._resized.get(key)
            if cached is not None:
                return cached

            if self.size == key:
                resized = self._raster
            else:
                img = Image.fromarray(self._raster).resize(key, Image.Resampling.BILINEAR)
                resized = np.asarray(img, dtype=np.uint8)
            # Only the latest size is kept; source dimensions rarely change
            self._resized = {key: resized}
            return resized

    def _fetch(self) -> None:
        start = time.perf_counter()
        try:
            if self.source.startswith(("http://", "https://")):
                response = requests.get(self.source, timeout=FETCH_TIMEOUT)
                response.raise_for_status()
                data = response.content
            else:
                data = Path(self.source).read_bytes()
            self._set_raster(_decode(data))
            elapsed_ms = (time.perf_counter() - start) * 1000
            logger.info(f"Background '{self.label}' loaded: {self.size} in {elapsed_ms:.0f}ms")
        except Exception as e:
            self._state = LoadState.FAILED
            self._ready_event.set()
            logger.warning(f"Background '{self.label}' failed to load from {self.source}: {e}")

    def _set_raster(self, raster: np.ndarray) -> None:
        with self._lock:
            self._raster = raster
            self._resized = {}
            self._state = LoadState.READY
        self._ready_event.set()


def _decode(data: bytes) -> np.ndarray:
    with Image.open(BytesIO(data)) as img:
        return np.asarray(img.convert("RGB"), dtype=np.uint8)


@dataclass(frozen=True)
class BackgroundEntry:
    """Catalog entry; an empty url means 'no background' (keying off)."""

    id: str
    label: str
    url: str

    def to_dict(self) -> dict:
        return {"id": self.id, "label": self.label, "url": self.url}


DEFAULT_BACKGROUNDS = (
    BackgroundEntry("none", "None", ""),
    BackgroundEntry(
        "space",
        "Deep Space",
        "https://images.unsplash.com/photo-1446776811953-b23d57bd21aa?auto=format&fit=crop&w=1280&q=80",
    ),
    BackgroundEntry(
        "forest",
        "Mystic Forest",
        "https://images.unsplash.com/photo-1441974231531-c6227db76b6e?auto=format&fit=crop&w=1280&q=80",
    ),
    BackgroundEntry(
        "city",
        "Cyber City",
        "https://images.unsplash.com/photo-1519608487953-e999c86e7455?auto=format&fit=crop&w=1280&q=80",
    ),
    BackgroundEntry(
        "sunset",
        "Desert Sunset",
        "https://images.unsplash.com/photo-1473580044384-7ba9967e16a0?auto=format&fit=crop&w=1280&q=80",
    ),
)


class BackgroundLibrary:
    """
    Built-in background catalog plus images imported during the session.

    Images are resolved lazily and cached per id. Imported images live
    in memory only.
    """

    def __init__(self, entries: tuple[BackgroundEntry, ...] = DEFAULT_BACKGROUNDS):
        self._entries: dict[str, BackgroundEntry] = {e.id: e for e in entries}
        self._images: dict[str, BackgroundImage] = {}
        self._lock = threading.Lock()

    def entries(self) -> list[BackgroundEntry]:
        with self._lock:
            return list(self._entries.values())

    def __contains__(self, background_id: str) -> bool:
        return background_id in self._entries

    def resolve(self, background_id: str) -> BackgroundImage | None:
        """
        Get the image handle for a catalog id.

        Returns:
            None for the 'no background' entry, otherwise a (possibly
            still pending) BackgroundImage

        Raises:
            KeyError: Unknown id
        """
        with self._lock:
            entry = self._entries[background_id]
            if not entry.url:
                return None
            image = self._images.get(background_id)
            if image is not None and image.state is LoadState.FAILED:
                # Retry on the next selection
                logger.info(f"Retrying background '{entry.label}' after failed load")
                image = None
            if image is None:
                image = BackgroundImage.load_async(entry.url, label=entry.label)
                self._images[background_id] = image
            return image

    def add_custom(self, data: bytes, label: str = "Custom") -> BackgroundEntry:
        """
        Register a user-imported image.

        Raises:
            PIL.UnidentifiedImageError: If the bytes are not a decodable image
        """
        image = BackgroundImage.from_bytes(data, label=label)
        background_id = f"c-{int(time.time() * 1000)}"
        with self._lock:
            while background_id in self._entries:
                background_id += "x"
            entry = BackgroundEntry(background_id, label, f"memory://{background_id}")
            self._entries[background_id] = entry
            self._images[background_id] = image
        logger.info(f"Custom background added: {background_id} ({label}, {image.size})")
        return entry
