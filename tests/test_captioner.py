"""
Tests for sequence captioning with a mocked Gemini client.
"""

from unittest.mock import MagicMock

import pytest

from stopmo.captioning.captioner import (
    FALLBACK_CAPTION,
    Captioner,
    StoryCaption,
    sample_indices,
)


@pytest.fixture
def mock_client():
    """A genai client stub returning a parsed caption."""
    client = MagicMock()
    client.models.generate_content.return_value = MagicMock(
        parsed=StoryCaption(title="Brick Heist", story="A toy robber escapes."),
        text=None,
    )
    return client


class TestSampleIndices:
    """Tests for first/middle/last sampling."""

    def test_three_or_more(self):
        assert sample_indices(5) == [0, 2, 4]
        assert sample_indices(3) == [0, 1, 2]

    def test_deduplicated(self):
        assert sample_indices(1) == [0]
        assert sample_indices(2) == [0, 1]

    def test_empty(self):
        assert sample_indices(0) == []


class TestCaptioner:
    """Tests for caption generation and fallback."""

    def test_empty_sequence(self, mock_client):
        assert Captioner(client=mock_client).caption([]) is None
        mock_client.models.generate_content.assert_not_called()

    def test_caption_from_model(self, mock_client, filled_store):
        captioner = Captioner(client=mock_client, model="test-model")
        caption = captioner.caption(filled_store.snapshot())

        assert caption.title == "Brick Heist"
        kwargs = mock_client.models.generate_content.call_args.kwargs
        assert kwargs["model"] == "test-model"
        # Three image parts plus the prompt
        assert len(kwargs["contents"]) == 4

    def test_caption_from_json_text(self, mock_client, filled_store):
        mock_client.models.generate_content.return_value = MagicMock(
            parsed=None,
            text='{"title": "Clay Days", "story": "A lump becomes a cat."}',
        )
        caption = Captioner(client=mock_client).caption(filled_store.snapshot())
        assert caption == StoryCaption(title="Clay Days", story="A lump becomes a cat.")

    def test_no_api_key_uses_fallback(self, filled_store):
        captioner = Captioner(api_key="")
        assert not captioner.available
        assert captioner.caption(filled_store.snapshot()) == FALLBACK_CAPTION

    def test_disabled_uses_fallback(self, mock_client, filled_store):
        captioner = Captioner(client=mock_client, enabled=False)
        assert captioner.caption(filled_store.snapshot()) == FALLBACK_CAPTION
        mock_client.models.generate_content.assert_not_called()

    def test_client_error_uses_fallback(self, mock_client, filled_store):
        mock_client.models.generate_content.side_effect = RuntimeError("quota exceeded")
        captioner = Captioner(client=mock_client, max_attempts=1)
        assert captioner.caption(filled_store.snapshot()) == FALLBACK_CAPTION

    def test_bad_json_uses_fallback(self, mock_client, filled_store):
        mock_client.models.generate_content.return_value = MagicMock(parsed=None, text="not json")
        captioner = Captioner(client=mock_client, max_attempts=1)
        assert captioner.caption(filled_store.snapshot()) == FALLBACK_CAPTION

    def test_retries_before_fallback(self, mock_client, filled_store, monkeypatch):
        monkeypatch.setattr("time.sleep", lambda seconds: None)
        mock_client.models.generate_content.side_effect = [
            RuntimeError("flaky"),
            MagicMock(parsed=StoryCaption(title="Second Try", story="It worked."), text=None),
        ]
        captioner = Captioner(client=mock_client, max_attempts=3)
        assert captioner.caption(filled_store.snapshot()).title == "Second Try"
        assert mock_client.models.generate_content.call_count == 2

    def test_caption_async(self, mock_client, filled_store):
        captioner = Captioner(client=mock_client)
        try:
            future = captioner.caption_async(filled_store.snapshot())
            assert future.result(timeout=5).title == "Brick Heist"
        finally:
            captioner.cleanup()

    def test_status(self):
        status = Captioner(api_key="key", model="m").get_status()
        assert status == {"enabled": True, "available": True, "model": "m", "max_attempts": 3}
