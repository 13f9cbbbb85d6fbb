"""
Base provider protocols.

These define the interface that analysis providers must implement.
Using Protocol for structural subtyping - no explicit inheritance required.
"""

import re
from typing import Protocol, runtime_checkable


# -----------------------------------------------------------------------------
# Prompts
# -----------------------------------------------------------------------------

LENGTH_GUIDANCE = {
    "short": "two or three sentences",
    "medium": "one or two paragraphs",
    "long": "a thorough summary covering every main point",
}

FOCUS_GUIDANCE = {
    "informative": "Report the key facts and ideas neutrally.",
    "critical": "Evaluate the arguments, noting strengths, weaknesses and gaps.",
    "narrative": "Retell the content as a flowing story in chronological order.",
    "technical": "Concentrate on technical details, terminology, methods and figures.",
}

FORMAT_GUIDANCE = {
    "list": "Write the summary as a bulleted list.",
    "paragraph": "Write the summary as prose paragraphs.",
    "mixed": "Open with a short paragraph, then list the key points as bullets.",
}

SUMMARIZATION_SYSTEM_PROMPT = """You are an expert summarizer who writes summaries of varying length and focus.

Begin with the subject directly - do not start with meta-phrases like "This text describes..." or "The main purpose is..."."""

IMAGE_DESCRIPTION_PROMPT = (
    "You are an expert at describing images. Describe this image in detail. "
    "Include the subject, setting, colors, composition, and any text visible "
    "in the image. Be specific and factual."
)

REFINEMENT_SYSTEM_PROMPT = """You revise summaries and descriptions.

Rewrite the current version according to the user's feedback and instructions, staying faithful to the original material. Return only the revised text."""


def build_summarization_prompt(
    text: str,
    *,
    length: str = "medium",
    focus: str = "informative",
    format: str = "paragraph",
    language: str = "English",
) -> str:
    """Build the user prompt for a summary with the requested options."""
    return (
        f"Summarize the following text in {language}.\n\n"
        f"Length: {LENGTH_GUIDANCE.get(length, length)}.\n"
        f"Focus: {FOCUS_GUIDANCE.get(focus, focus)}\n"
        f"Format: {FORMAT_GUIDANCE.get(format, format)}\n\n"
        f"Text:\n{text}"
    )


def build_description_prompt(language: str = "English") -> str:
    return f"{IMAGE_DESCRIPTION_PROMPT} Write the description in {language}."


def build_refinement_prompt(
    original_text: str,
    initial_summary: str,
    user_feedback: str,
    refinement_instructions: str,
    language: str = "English",
) -> str:
    """Build the user prompt for a refinement request."""
    return (
        f"Original material:\n{original_text}\n\n"
        f"Current version:\n{initial_summary}\n\n"
        f"User feedback: {user_feedback}\n"
        f"Instructions: {refinement_instructions}\n\n"
        f"Write the revised version in {language}."
    )


def strip_preamble(text: str) -> str:
    """
    Remove common LLM preambles from generated text.

    Strips phrases like "Here is a summary:", "Here's the revised version:".
    """
    patterns = [
        r"^here(?:'s| is) (?:a |the )?(?:revised |refined |concise )?(?:summary|description|version)[^:\n]*:\s*",
        r"^(?:summary|description):\s*",
    ]
    result = text.strip()
    for pattern in patterns:
        result = re.sub(pattern, "", result, flags=re.IGNORECASE)
    return result


# -----------------------------------------------------------------------------
# Analysis
# -----------------------------------------------------------------------------

@runtime_checkable
class AnalysisProvider(Protocol):
    """
    Generates summaries, image descriptions and refinements.

    Calls are potentially slow remote requests. Implementations raise on
    failure and do not retry; the caller decides what to do.

    Example implementation:
        class OpenAIAnalysis:
            def __init__(self, model: str = "gpt-4.1-mini"):
                self.client = OpenAI()
                self.model = model

            def summarize(self, text, *, length, focus, format) -> str:
                response = self.client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": SUMMARIZATION_SYSTEM_PROMPT},
                        {"role": "user", "content": build_summarization_prompt(text, ...)},
                    ],
                )
                return response.choices[0].message.content
    """

    def summarize(
        self,
        text: str,
        *,
        length: str = "medium",
        focus: str = "informative",
        format: str = "paragraph",
    ) -> str:
        """
        Summarize text.

        Args:
            text: The full extracted or pasted text
            length: "short", "medium" or "long"
            focus: "informative", "critical", "narrative" or "technical"
            format: "list", "paragraph" or "mixed"

        Returns:
            The summary
        """
        ...

    def describe_image(self, image_data_uri: str) -> str:
        """
        Describe an image.

        Args:
            image_data_uri: "data:<mime>;base64,<payload>"

        Returns:
            The description
        """
        ...

    def refine(
        self,
        original_text: str,
        initial_summary: str,
        user_feedback: str,
        refinement_instructions: str,
    ) -> str:
        """
        Rewrite a summary or description following user instructions.

        Returns:
            The refined text
        """
        ...


# -----------------------------------------------------------------------------
# Provider Registry
# -----------------------------------------------------------------------------

class ProviderRegistry:
    """
    Registry for discovering and instantiating providers.

    Providers are registered by name and can be instantiated from configuration.
    This allows the store configuration (TOML) to specify providers by name
    rather than requiring code changes.

    Example:
        registry = ProviderRegistry()
        registry.register_analysis("anthropic", AnthropicAnalysis)

        # Later, from config:
        provider = registry.create_analysis("anthropic", {"model": "claude-haiku-4-5"})
    """

    def __init__(self):
        self._analysis_providers: dict[str, type] = {}
        self._lazy_loaded = False

    def _ensure_providers_loaded(self) -> None:
        """Lazily load provider modules."""
        if self._lazy_loaded:
            return
        self._lazy_loaded = True
        # Importing the module registers its classes; nothing is instantiated
        from . import llm  # noqa: F401

    def register_analysis(self, name: str, provider_class: type) -> None:
        """Register an analysis provider class."""
        self._analysis_providers[name] = provider_class

    def create_analysis(self, name: str, params: dict | None = None) -> AnalysisProvider:
        """Create an analysis provider instance."""
        self._ensure_providers_loaded()
        if name not in self._analysis_providers:
            available = ", ".join(self._analysis_providers.keys()) or "none"
            raise ValueError(
                f"Unknown analysis provider: '{name}'. "
                f"Available providers: {available}. "
                f"Install missing dependencies or check provider name."
            )
        try:
            return self._analysis_providers[name](**(params or {}))
        except ImportError as e:
            raise RuntimeError(
                f"Failed to create analysis provider '{name}': {e}\n"
                f"Install required dependencies."
            ) from e
        except Exception as e:
            raise RuntimeError(
                f"Failed to create analysis provider '{name}': {e}"
            ) from e

    def list_analysis_providers(self) -> list[str]:
        """List registered analysis provider names."""
        self._ensure_providers_loaded()
        return list(self._analysis_providers.keys())


# Global registry instance
# Concrete providers register themselves on import
_registry = ProviderRegistry()


def get_registry() -> ProviderRegistry:
    """Get the global provider registry."""
    return _registry
