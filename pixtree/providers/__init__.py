"""Image generation, analysis, and prompt blending backends."""

from .base import (
    AnalysisProvider,
    BlendResult,
    GenerationProvider,
    GenerationRequest,
    GenerationResult,
    PromptBlender,
    ProviderRegistry,
    get_registry,
)

__all__ = [
    "AnalysisProvider",
    "BlendResult",
    "GenerationProvider",
    "GenerationRequest",
    "GenerationResult",
    "PromptBlender",
    "ProviderRegistry",
    "get_registry",
]
