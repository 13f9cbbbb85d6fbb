"""
Analysis providers using LLMs.
"""

import logging
import os

from ..types import parse_data_uri
from .base import (
    SUMMARIZATION_SYSTEM_PROMPT,
    REFINEMENT_SYSTEM_PROMPT,
    build_description_prompt,
    build_refinement_prompt,
    build_summarization_prompt,
    get_registry,
    strip_preamble,
)

logger = logging.getLogger(__name__)

# Longest input sent to a model, in characters
MAX_INPUT_CHARS = 50000


def _truncate(text: str) -> str:
    if len(text) <= MAX_INPUT_CHARS:
        return text
    logger.warning(
        "Input of %d characters truncated to %d before analysis", len(text), MAX_INPUT_CHARS
    )
    return text[:MAX_INPUT_CHARS]


class AnthropicAnalysis:
    """
    Analysis provider using Anthropic's Claude API.

    Authentication: api_key parameter, else ANTHROPIC_API_KEY.

    Default model is claude-haiku-4.5. Configure via glean.toml [analysis]
    section for other models.
    """

    def __init__(
        self,
        model: str = "claude-haiku-4-5-20251001",
        api_key: str | None = None,
        max_tokens: int = 1024,
        language: str = "English",
    ):
        try:
            from anthropic import Anthropic
        except ImportError:
            raise RuntimeError("AnthropicAnalysis requires 'anthropic' library")

        self.model = model
        self.max_tokens = max_tokens
        self.language = language

        key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        if not key:
            raise ValueError("Anthropic authentication required. Set ANTHROPIC_API_KEY")

        self.client = Anthropic(api_key=key)

    def _complete(self, system: str, content) -> str:
        response = self.client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            system=system,
            messages=[{"role": "user", "content": content}],
        )
        if not response.content:
            raise RuntimeError(f"Empty response from {self.model}")
        return strip_preamble(response.content[0].text)

    def summarize(self, text: str, *, length: str = "medium",
                  focus: str = "informative", format: str = "paragraph") -> str:
        """Generate summary using Anthropic Claude."""
        prompt = build_summarization_prompt(
            _truncate(text), length=length, focus=focus, format=format, language=self.language,
        )
        return self._complete(SUMMARIZATION_SYSTEM_PROMPT, prompt)

    def describe_image(self, image_data_uri: str) -> str:
        """Describe an image using Claude vision."""
        mime, _ = parse_data_uri(image_data_uri)
        payload = image_data_uri.split(",", 1)[1]
        content = [
            {"type": "image", "source": {"type": "base64", "media_type": mime, "data": payload}},
            {"type": "text", "text": build_description_prompt(self.language)},
        ]
        return self._complete("You describe images accurately.", content)

    def refine(self, original_text: str, initial_summary: str,
               user_feedback: str, refinement_instructions: str) -> str:
        prompt = build_refinement_prompt(
            _truncate(original_text), initial_summary, user_feedback,
            refinement_instructions, self.language,
        )
        return self._complete(REFINEMENT_SYSTEM_PROMPT, prompt)


class OpenAIAnalysis:
    """
    Analysis provider using OpenAI's chat API.

    Requires: GLEAN_OPENAI_API_KEY or OPENAI_API_KEY environment variable.

    Default model is gpt-4.1-mini, which also accepts images.
    """

    def __init__(
        self,
        model: str = "gpt-4.1-mini",
        api_key: str | None = None,
        max_tokens: int = 1024,
        language: str = "English",
    ):
        try:
            from openai import OpenAI
        except ImportError:
            raise RuntimeError("OpenAIAnalysis requires 'openai' library")

        self.model = model
        self.max_tokens = max_tokens
        self.language = language

        key = api_key or os.environ.get("GLEAN_OPENAI_API_KEY") or os.environ.get("OPENAI_API_KEY")
        if not key:
            raise ValueError(
                "OpenAI API key required. Set GLEAN_OPENAI_API_KEY or OPENAI_API_KEY"
            )

        self._client = OpenAI(api_key=key)

        # GPT-5+ and reasoning models use a different API surface:
        # - max_completion_tokens instead of max_tokens
        # - temperature must be omitted (only default=1 supported)
        self._new_api = self.model.startswith(("gpt-5", "o3", "o4"))

    def _completion_kwargs(self) -> dict:
        """Return model-appropriate kwargs for token limit and temperature."""
        if self._new_api:
            return {"max_completion_tokens": self.max_tokens}
        return {"max_tokens": self.max_tokens, "temperature": 0.3}

    def _complete(self, system: str, content) -> str:
        response = self._client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": content},
            ],
            **self._completion_kwargs(),
        )
        if not response.choices or not response.choices[0].message.content:
            raise RuntimeError(f"Empty response from {self.model}")
        return strip_preamble(response.choices[0].message.content)

    def summarize(self, text: str, *, length: str = "medium",
                  focus: str = "informative", format: str = "paragraph") -> str:
        """Generate a summary using OpenAI."""
        prompt = build_summarization_prompt(
            _truncate(text), length=length, focus=focus, format=format, language=self.language,
        )
        return self._complete(SUMMARIZATION_SYSTEM_PROMPT, prompt)

    def describe_image(self, image_data_uri: str) -> str:
        content = [
            {"type": "text", "text": build_description_prompt(self.language)},
            {"type": "image_url", "image_url": {"url": image_data_uri}},
        ]
        return self._complete("You describe images accurately.", content)

    def refine(self, original_text: str, initial_summary: str,
               user_feedback: str, refinement_instructions: str) -> str:
        prompt = build_refinement_prompt(
            _truncate(original_text), initial_summary, user_feedback,
            refinement_instructions, self.language,
        )
        return self._complete(REFINEMENT_SYSTEM_PROMPT, prompt)


class OllamaAnalysis:
    """
    Analysis provider using Ollama's local API.

    Image description needs a multimodal model (llava, gemma3, etc.).
    Respects OLLAMA_HOST env var (default: http://localhost:11434).
    """

    def __init__(
        self,
        model: str = "gemma3",
        base_url: str | None = None,
        language: str = "English",
    ):
        self.model = model
        self.language = language
        base = base_url or os.environ.get("OLLAMA_HOST") or "http://localhost:11434"
        if not base.startswith(("http://", "https://")):
            base = f"http://{base}"
        self.base_url = base.rstrip("/")

    def _chat(self, messages: list[dict], timeout=(10, 300)) -> str:
        import requests

        response = requests.post(
            f"{self.base_url}/api/chat",
            json={"model": self.model, "messages": messages, "stream": False},
            timeout=timeout,  # (connect, read)
        )
        if not response.ok:
            detail = response.text[:200] if response.text else ""
            raise RuntimeError(
                f"Ollama request failed (model={self.model}): "
                f"HTTP {response.status_code} from {self.base_url}. {detail}"
            )
        return strip_preamble(response.json()["message"]["content"])

    def summarize(self, text: str, *, length: str = "medium",
                  focus: str = "informative", format: str = "paragraph") -> str:
        """Generate a summary using Ollama."""
        prompt = build_summarization_prompt(
            _truncate(text), length=length, focus=focus, format=format, language=self.language,
        )
        return self._chat([
            {"role": "system", "content": SUMMARIZATION_SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ])

    def describe_image(self, image_data_uri: str) -> str:
        """Describe an image using an Ollama vision model."""
        parse_data_uri(image_data_uri)
        payload = image_data_uri.split(",", 1)[1]
        return self._chat([{
            "role": "user",
            "content": build_description_prompt(self.language),
            "images": [payload],
        }])

    def refine(self, original_text: str, initial_summary: str,
               user_feedback: str, refinement_instructions: str) -> str:
        prompt = build_refinement_prompt(
            _truncate(original_text), initial_summary, user_feedback,
            refinement_instructions, self.language,
        )
        return self._chat([
            {"role": "system", "content": REFINEMENT_SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ])


class GeminiAnalysis:
    """
    Analysis provider using Google's Gemini API.

    Authentication: api_key parameter, else GEMINI_API_KEY or GOOGLE_API_KEY.

    Default model is gemini-2.5-flash.
    """

    def __init__(
        self,
        model: str = "gemini-2.5-flash",
        api_key: str | None = None,
        language: str = "English",
    ):
        try:
            from google import genai
        except ImportError:
            raise RuntimeError("GeminiAnalysis requires 'google-genai' library")

        self.model = model
        self.language = language
        key = api_key or os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY")
        if not key:
            raise ValueError("Gemini API key required. Set GEMINI_API_KEY or GOOGLE_API_KEY")
        self._client = genai.Client(api_key=key)

    def _generate(self, system: str, contents) -> str:
        from google.genai import types

        response = self._client.models.generate_content(
            model=self.model,
            contents=contents,
            config=types.GenerateContentConfig(system_instruction=system),
        )
        if not response.text:
            raise RuntimeError(f"Empty response from {self.model}")
        return strip_preamble(response.text)

    def summarize(self, text: str, *, length: str = "medium",
                  focus: str = "informative", format: str = "paragraph") -> str:
        """Generate summary using Google Gemini."""
        prompt = build_summarization_prompt(
            _truncate(text), length=length, focus=focus, format=format, language=self.language,
        )
        return self._generate(SUMMARIZATION_SYSTEM_PROMPT, prompt)

    def describe_image(self, image_data_uri: str) -> str:
        from google.genai import types

        mime, data = parse_data_uri(image_data_uri)
        contents = [
            types.Part.from_bytes(data=data, mime_type=mime),
            build_description_prompt(self.language),
        ]
        return self._generate("You describe images accurately.", contents)

    def refine(self, original_text: str, initial_summary: str,
               user_feedback: str, refinement_instructions: str) -> str:
        prompt = build_refinement_prompt(
            _truncate(original_text), initial_summary, user_feedback,
            refinement_instructions, self.language,
        )
        return self._generate(REFINEMENT_SYSTEM_PROMPT, prompt)


class PassthroughAnalysis:
    """
    Analysis provider with no LLM behind it.

    Summaries are the first N characters of the text; image descriptions
    and refinements are placeholders. Useful for testing or offline use.
    """

    def __init__(self, max_chars: int = 500, language: str = "English"):
        self.max_chars = max_chars

    def summarize(self, text: str, *, length: str = "medium",
                  focus: str = "informative", format: str = "paragraph") -> str:
        """Return truncated text as summary (ignores options)."""
        if len(text) <= self.max_chars:
            return text
        return text[:self.max_chars].rsplit(" ", 1)[0] + "..."

    def describe_image(self, image_data_uri: str) -> str:
        mime, data = parse_data_uri(image_data_uri)
        return f"Image ({mime}, {len(data):,} bytes)"

    def refine(self, original_text: str, initial_summary: str,
               user_feedback: str, refinement_instructions: str) -> str:
        """Passthrough has no LLM, so the current text is returned unchanged."""
        return initial_summary


# Register providers
_registry = get_registry()
_registry.register_analysis("anthropic", AnthropicAnalysis)
_registry.register_analysis("openai", OpenAIAnalysis)
_registry.register_analysis("ollama", OllamaAnalysis)
_registry.register_analysis("gemini", GeminiAnalysis)
_registry.register_analysis("passthrough", PassthroughAnalysis)
