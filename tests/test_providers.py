"""Tests for analysis providers, prompts and the provider registry."""

import logging
from unittest.mock import MagicMock, patch

import pytest

from glean.providers.base import (
    AnalysisProvider,
    ProviderRegistry,
    build_refinement_prompt,
    build_summarization_prompt,
    get_registry,
    strip_preamble,
)
from glean.providers.llm import MAX_INPUT_CHARS, OllamaAnalysis, PassthroughAnalysis
from glean.types import make_data_uri

from tests.conftest import MockAnalysisProvider


class TestPrompts:

    def test_summarization_options(self):
        prompt = build_summarization_prompt(
            "BODY", length="short", focus="technical", format="list", language="Spanish",
        )
        assert "in Spanish" in prompt
        assert "two or three sentences" in prompt
        assert "technical details" in prompt
        assert "bulleted list" in prompt
        assert prompt.endswith("BODY")

    def test_refinement_carries_everything(self):
        prompt = build_refinement_prompt("ORIGINAL", "CURRENT", "FEEDBACK", "INSTRUCTIONS")
        for part in ("ORIGINAL", "CURRENT", "FEEDBACK", "INSTRUCTIONS"):
            assert part in prompt

    @pytest.mark.parametrize("raw,expected", [
        ("Here is a summary of the text:\nThe point.", "The point."),
        ("Here's the revised version: Better.", "Better."),
        ("Summary: Short one.", "Short one."),
        ("  Plain answer.  ", "Plain answer."),
    ])
    def test_strip_preamble(self, raw, expected):
        assert strip_preamble(raw) == expected


class TestRegistry:

    def test_builtin_providers(self):
        names = get_registry().list_analysis_providers()
        for name in ("anthropic", "openai", "ollama", "gemini", "passthrough"):
            assert name in names

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown analysis provider"):
            ProviderRegistry().create_analysis("nope")

    def test_constructor_failure_wrapped(self):
        registry = ProviderRegistry()
        registry._lazy_loaded = True

        class Broken:
            def __init__(self):
                raise ValueError("missing key")

        registry.register_analysis("broken", Broken)
        with pytest.raises(RuntimeError, match="missing key"):
            registry.create_analysis("broken")

    def test_mock_satisfies_protocol(self):
        assert isinstance(MockAnalysisProvider(), AnalysisProvider)


class TestPassthrough:

    def test_short_text_unchanged(self):
        assert PassthroughAnalysis().summarize("A short text.") == "A short text."

    def test_long_text_truncated_at_word(self):
        text = "word " * 200
        summary = PassthroughAnalysis(max_chars=23).summarize(text)
        assert summary == "word word word word..."

    def test_describe_image(self):
        uri = make_data_uri("image/jpeg", b"12345")
        assert PassthroughAnalysis().describe_image(uri) == "Image (image/jpeg, 5 bytes)"

    def test_refine_returns_current(self):
        assert PassthroughAnalysis().refine("orig", "current", "fb", "do it") == "current"


class TestOllama:

    def _response(self, content, ok=True, status=200):
        response = MagicMock()
        response.ok = ok
        response.status_code = status
        response.text = "error body"
        response.json.return_value = {"message": {"content": content}}
        return response

    def test_summarize(self):
        provider = OllamaAnalysis(model="gemma3", base_url="localhost:11434", language="French")
        with patch("requests.post", return_value=self._response("Here is a summary: Résumé.")) as post:
            assert provider.summarize("Some text", length="long") == "Résumé."
        url = post.call_args.args[0]
        payload = post.call_args.kwargs["json"]
        assert url == "http://localhost:11434/api/chat"
        assert payload["model"] == "gemma3"
        assert payload["stream"] is False
        assert "in French" in payload["messages"][1]["content"]

    def test_describe_image_sends_payload(self):
        provider = OllamaAnalysis(base_url="http://localhost:11434")
        uri = make_data_uri("image/png", b"\x89PNG")
        with patch("requests.post", return_value=self._response("A picture.")) as post:
            assert provider.describe_image(uri) == "A picture."
        message = post.call_args.kwargs["json"]["messages"][0]
        assert message["images"] == [uri.split(",", 1)[1]]

    def test_long_input_truncated_with_warning(self, caplog):
        provider = OllamaAnalysis(base_url="http://localhost:11434")
        text = "x" * (MAX_INPUT_CHARS + 10)
        with patch("requests.post", return_value=self._response("Short.")) as post:
            with caplog.at_level(logging.WARNING, logger="glean.providers.llm"):
                provider.summarize(text)
        prompt = post.call_args.kwargs["json"]["messages"][1]["content"]
        assert "x" * MAX_INPUT_CHARS in prompt
        assert "x" * (MAX_INPUT_CHARS + 1) not in prompt
        assert "truncated" in caplog.text

    def test_short_input_no_warning(self, caplog):
        provider = OllamaAnalysis(base_url="http://localhost:11434")
        with patch("requests.post", return_value=self._response("Short.")):
            with caplog.at_level(logging.WARNING, logger="glean.providers.llm"):
                provider.summarize("Some text")
        assert "truncated" not in caplog.text

    def test_http_error(self):
        provider = OllamaAnalysis(base_url="http://localhost:11434")
        with patch("requests.post", return_value=self._response("", ok=False, status=500)):
            with pytest.raises(RuntimeError, match="HTTP 500"):
                provider.summarize("Some text")
