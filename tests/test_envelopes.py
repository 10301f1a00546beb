"""Tests for adapting provider response shapes to plain text."""

from types import SimpleNamespace

import pytest

from app.modules.generation.envelopes import adapt_response


class TestAdaptResponse:
    """Test suite for the provider response adapter."""

    def test_plain_string(self) -> None:
        assert adapt_response("hello") == "hello"

    def test_text_field(self) -> None:
        assert adapt_response({"text": "hello"}) == "hello"

    def test_run_result_object(self) -> None:
        assert adapt_response(SimpleNamespace(output="from agent")) == "from agent"

    def test_gemini_candidates(self) -> None:
        raw = {"candidates": [{"content": {"parts": [{"text": "he"}, {"text": "llo"}]}}]}
        assert adapt_response(raw) == "hello"

    def test_openai_choices(self) -> None:
        raw = {"choices": [{"message": {"content": "hello"}}]}
        assert adapt_response(raw) == "hello"

    def test_empty_candidates(self) -> None:
        assert adapt_response({"candidates": []}) == ""

    def test_unknown_shape(self) -> None:
        with pytest.raises(ValueError):
            adapt_response({"result": "hello"})
