"""
Providers for glean: text extraction and LLM analysis.
"""

from .base import AnalysisProvider, ProviderRegistry, get_registry
from .extractors import Extraction, TextExtractor

__all__ = [
    "AnalysisProvider",
    "Extraction",
    "ProviderRegistry",
    "TextExtractor",
    "get_registry",
]
