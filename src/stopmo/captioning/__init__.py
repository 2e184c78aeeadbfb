"""
Captioning module for stopmo.

Provides:
- Captioner: Gemini title/story generation with fallback
- StoryCaption / FALLBACK_CAPTION / sample_indices
"""

from .captioner import FALLBACK_CAPTION, Captioner, StoryCaption, sample_indices

__all__ = ["Captioner", "StoryCaption", "FALLBACK_CAPTION", "sample_indices"]
