"""AI backends and the email analysis gateway."""

from clinbox.llm.analysis import Analysis, AnalysisGateway, Category, Priority
from clinbox.llm.client import (
    AnthropicBackend,
    BaseChatBackend,
    OpenRouterBackend,
    build_backend,
)

__all__ = [
    "Analysis",
    "AnalysisGateway",
    "AnthropicBackend",
    "BaseChatBackend",
    "Category",
    "OpenRouterBackend",
    "Priority",
    "build_backend",
]
