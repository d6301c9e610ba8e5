from __future__ import annotations

from .base import SummaryProvider, SummaryProviderError
from .factory import SUPPORTED_PROVIDERS, build_summary_provider
from .llama_cpp import LlamaCppSummaryProvider
from .mock import MockSummaryProvider
from .openai_compat import OpenAICompatSummaryProvider

__all__ = [
    "SummaryProvider",
    "SummaryProviderError",
    "SUPPORTED_PROVIDERS",
    "build_summary_provider",
    "LlamaCppSummaryProvider",
    "MockSummaryProvider",
    "OpenAICompatSummaryProvider",
]
