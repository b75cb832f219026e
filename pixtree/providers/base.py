"""
Base provider protocols.

These define the interfaces that image backends must implement.
Using Protocol for structural subtyping - no explicit inheritance required.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, runtime_checkable

from ..types import AnalysisResult


BLEND_STRATEGIES = ("blend", "combine", "average")


# -----------------------------------------------------------------------------
# Image Generation
# -----------------------------------------------------------------------------

@dataclass
class GenerationRequest:
    """
    What to ask a generation backend for.

    Attributes:
        prompt: Text prompt
        negative_prompt: Things to keep out of the image
        params: Backend parameters (from the node's model config)
        input_images: Source images for image-to-image generation
    """
    prompt: str
    negative_prompt: Optional[str] = None
    params: dict[str, Any] = field(default_factory=dict)
    input_images: list[bytes] = field(default_factory=list)


@dataclass
class GenerationResult:
    """
    A generated image and how it was made.

    Attributes:
        image_bytes: Encoded image (PNG, JPEG, ...)
        parameters: Parameters the backend actually used
        duration_seconds: Wall-clock generation time
        model: Backend model identifier
    """
    image_bytes: bytes
    parameters: dict[str, Any] = field(default_factory=dict)
    duration_seconds: float = 0.0
    model: str = ""


@runtime_checkable
class GenerationProvider(Protocol):
    """
    Produces images from prompts.

    Example implementation:
        class EchoGenerator:
            name = "echo"

            def generate(self, request: GenerationRequest) -> GenerationResult:
                return GenerationResult(image_bytes=PNG_BYTES, model="echo")
    """

    name: str

    def generate(self, request: GenerationRequest) -> GenerationResult:
        """
        Generate one image.

        Raises:
            RuntimeError: If the backend call fails (message is user-facing)
        """
        ...


# -----------------------------------------------------------------------------
# Image Analysis
# -----------------------------------------------------------------------------

@runtime_checkable
class AnalysisProvider(Protocol):
    """Describes an existing image (used by smart import)."""

    def analyze(self, image_bytes: bytes) -> AnalysisResult:
        """
        Describe the image.

        Returns:
            AnalysisResult with description, detected objects, and style
        """
        ...


# -----------------------------------------------------------------------------
# Prompt Blending
# -----------------------------------------------------------------------------

@dataclass
class BlendResult:
    blended_prompt: str
    explanation: str
    expected_changes: list[str] = field(default_factory=list)
    confidence: float = 0.0


@runtime_checkable
class PromptBlender(Protocol):
    """Merges two prompts into one."""

    def blend(
        self,
        prompt1: str,
        prompt2: str,
        strategy: str = "blend",
        weights: Optional[tuple[float, float]] = None,
    ) -> BlendResult:
        ...


def fallback_blend(prompt1: str, prompt2: str) -> BlendResult:
    """Plain concatenation, used when no blender is available."""
    return BlendResult(
        blended_prompt=f"{prompt1} combined with {prompt2}",
        explanation="Automatic blending of the two prompts",
        expected_changes=["Combined elements from both prompts"],
        confidence=0.7,
    )


# -----------------------------------------------------------------------------
# Provider Registry
# -----------------------------------------------------------------------------

class ProviderRegistry:
    """
    Registry for discovering and instantiating generation backends.

    Providers are registered by model name and can be instantiated from
    configuration. This allows ``pixtree.toml`` to name models rather than
    requiring code changes.

    Example:
        registry = ProviderRegistry()
        registry.register_generator("nano-banana", NanoBananaProvider)

        # Later, from config:
        provider = registry.create_generator("nano-banana", {"api_key": "..."})
    """

    def __init__(self):
        self._generators: dict[str, type] = {}
        self._lazy_loaded = False

    def _ensure_providers_loaded(self) -> None:
        """Lazily load the built-in provider modules."""
        if self._lazy_loaded:
            return

        self._lazy_loaded = True

        # Import provider modules to trigger registration
        from . import gemini, seedream  # noqa: F401

    def register_generator(self, name: str, provider_class: type) -> None:
        """Register a generation provider class."""
        self._generators[name] = provider_class

    @staticmethod
    def _create_provider(kind: str, name: str, providers: dict, params: dict | None):
        """Shared factory logic for all provider types."""
        if name not in providers:
            available = ", ".join(sorted(providers)) or "none"
            raise ValueError(
                f"Unknown {kind} provider: '{name}'. "
                f"Available providers: {available}."
            )
        try:
            return providers[name](**(params or {}))
        except ImportError as e:
            raise RuntimeError(
                f"Failed to create {kind} provider '{name}': {e}\n"
                f"Install required dependencies."
            ) from e
        except Exception as e:
            raise RuntimeError(
                f"Failed to create {kind} provider '{name}': {e}"
            ) from e

    def create_generator(self, name: str, params: dict | None = None) -> GenerationProvider:
        """Create a generation provider instance."""
        self._ensure_providers_loaded()
        return self._create_provider("generation", name, self._generators, params)

    def list_generators(self) -> list[str]:
        """List registered generation provider names."""
        self._ensure_providers_loaded()
        return sorted(self._generators)


# Global registry instance
# Concrete providers register themselves on import
_registry = ProviderRegistry()


def get_registry() -> ProviderRegistry:
    """Get the global provider registry."""
    return _registry
