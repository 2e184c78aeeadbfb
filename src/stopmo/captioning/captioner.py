"""
Sequence Captioner

Asks Gemini for a title and one-sentence story for a finished sequence,
using the first, middle and last frames. Captioning is optional: any
failure (no key, network, bad JSON) returns a fixed fallback caption.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Sequence

from google import genai
from google.genai import types
from pydantic import BaseModel
from tenacity import Retrying, before_sleep_log, stop_after_attempt, wait_exponential

from ..sequence.frame_store import Frame

logger = logging.getLogger(__name__)

PROMPT = (
    "These are frames from a stop motion animation. Based on these frames, "
    "generate a creative title and a one-sentence story for this animation. "
    "Return as JSON."
)


class StoryCaption(BaseModel):
    """Title and short story for a sequence."""

    title: str
    story: str


FALLBACK_CAPTION = StoryCaption(title="My Masterpiece", story="A beautiful stop motion story.")


def sample_indices(count: int) -> list[int]:
    """First, middle and last index, de-duplicated in that order."""
    if count <= 0:
        return []
    indices: list[int] = []
    for i in (0, count // 2, count - 1):
        if i not in indices:
            indices.append(i)
    return indices


class Captioner:
    """Gemini-backed captioner with retry and a graceful fallback."""

    def __init__(
        self,
        api_key: str = "",
        model: str = "gemini-2.5-flash",
        enabled: bool = True,
        max_attempts: int = 3,
        client: Any = None,
    ):
        """
        Initialize the captioner.

        Args:
            api_key: Gemini API key (captioning falls back without one)
            model: Gemini model name
            enabled: Whether captioning is enabled at all
            max_attempts: Attempts before falling back
            client: Pre-built genai client (created lazily otherwise)
        """
        self.api_key = api_key
        self.model = model
        self.enabled = enabled
        self.max_attempts = max_attempts
        self._client = client
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="caption")

        if enabled and not api_key and client is None:
            logger.warning("No Gemini API key configured - captions will use the fallback")

    @property
    def available(self) -> bool:
        return self.enabled and (self._client is not None or bool(self.api_key))

    def caption(self, frames: Sequence[Frame]) -> StoryCaption | None:
        """
        Caption a sequence.

        Returns:
            None for an empty sequence, otherwise a caption (the fallback on any failure)
        """
        if not frames:
            return None
        if not self.available:
            logger.debug("Captioning unavailable, returning fallback caption")
            return FALLBACK_CAPTION

        try:
            for attempt in Retrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=1, min=1, max=10),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    caption = self._generate(frames)
            logger.info(f"Caption generated: {caption.title!r}")
            return caption
        except Exception as e:
            logger.error(f"Gemini analysis failed: {e}")
            return FALLBACK_CAPTION

    def caption_async(self, frames: Sequence[Frame]) -> Future:
        """Caption in the background; the future never raises."""
        return self._executor.submit(self.caption, tuple(frames))

    def _generate(self, frames: Sequence[Frame]) -> StoryCaption:
        client = self._get_client()
        parts: list[Any] = [
            types.Part.from_bytes(data=frames[i].to_jpeg(quality=85), mime_type="image/jpeg")
            for i in sample_indices(len(frames))
        ]
        parts.append(PROMPT)

        response = client.models.generate_content(
            model=self.model,
            contents=parts,
            config=types.GenerateContentConfig(
                response_mime_type="application/json",
                response_schema=StoryCaption,
            ),
        )

        parsed = getattr(response, "parsed", None)
        if isinstance(parsed, StoryCaption):
            return parsed
        return StoryCaption.model_validate_json(response.text or "{}")

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    def get_status(self) -> dict:
        return {
            "enabled": self.enabled,
            "available": self.available,
            "model": self.model,
            "max_attempts": self.max_attempts,
        }

    def cleanup(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
