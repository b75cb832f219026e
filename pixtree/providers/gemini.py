"""
Gemini image provider ("nano-banana").

Generates images, describes existing images, and blends prompts using
Google's Gemini models through the google-genai SDK.
"""

import json
import logging
import time
from typing import Any, Optional

from ..types import AnalysisResult
from .base import (
    BLEND_STRATEGIES,
    BlendResult,
    GenerationRequest,
    GenerationResult,
    fallback_blend,
    get_registry,
)
from .gemini_client import create_gemini_client, strip_code_fence

logger = logging.getLogger(__name__)


class NanoBananaProvider:
    """
    Image generation with Gemini image models.

    Authentication follows ``create_gemini_client``: explicit api_key,
    then Vertex AI, then GEMINI_API_KEY / GOOGLE_API_KEY.

    Default image model is gemini-2.5-flash-image; analysis and blending use
    a text model (gemini-2.5-flash).
    """

    name = "nano-banana"

    ANALYSIS_PROMPT = (
        "Analyze this image. Respond with a JSON object with keys: "
        '"description" (one or two sentences), "detected_objects" (list of '
        'short nouns), "style" (one or two words), "mood" (one word), '
        '"composition" (short phrase), "confidence" (0-1). '
        "Respond with JSON only."
    )

    def __init__(
        self,
        model: str = "gemini-2.5-flash-image",
        text_model: str = "gemini-2.5-flash",
        api_key: str | None = None,
    ):
        self.model = model
        self.text_model = text_model
        self._client = create_gemini_client(api_key)

    def _generation_config(self, params: dict[str, Any]):
        from google.genai import types

        image_config = None
        if params.get("aspect_ratio"):
            image_config = types.ImageConfig(aspect_ratio=params["aspect_ratio"])
        return types.GenerateContentConfig(
            temperature=params.get("temperature"),
            top_p=params.get("top_p"),
            top_k=params.get("top_k"),
            candidate_count=params.get("candidate_count"),
            seed=params.get("seed"),
            response_modalities=["IMAGE"],
            image_config=image_config,
        )

    def generate(self, request: GenerationRequest) -> GenerationResult:
        """Generate one image; the first inline image in the response wins."""
        from google.genai import types

        params = {k: v for k, v in request.params.items() if k != "prompt"}
        model = params.pop("model", None) or self.model

        contents: list[Any] = [request.prompt]
        for image in request.input_images:
            contents.append(types.Part.from_bytes(data=image, mime_type="image/png"))
        if request.negative_prompt:
            contents.append(f"Negative prompt: {request.negative_prompt}")

        start = time.monotonic()
        response = self._client.models.generate_content(
            model=model,
            contents=contents,
            config=self._generation_config(params),
        )
        duration = time.monotonic() - start

        image_bytes = _first_inline_image(response)
        if image_bytes is None:
            text = getattr(response, "text", None) or "no image in response"
            raise RuntimeError(f"Gemini returned no image (model={model}): {text[:200]}")

        logger.debug("Gemini generated %d bytes in %.1fs", len(image_bytes), duration)
        return GenerationResult(
            image_bytes=image_bytes,
            parameters={"model": model, **params},
            duration_seconds=duration,
            model=model,
        )

    def analyze(self, image_bytes: bytes) -> AnalysisResult:
        """Describe an image with the text model."""
        from google.genai import types

        response = self._client.models.generate_content(
            model=self.text_model,
            contents=[
                self.ANALYSIS_PROMPT,
                types.Part.from_bytes(data=image_bytes, mime_type="image/png"),
            ],
        )
        text = strip_code_fence(response.text or "")
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            # Free-form answer: keep the text as the description
            return AnalysisResult(description=text[:200], confidence=0.5)
        return AnalysisResult(
            description=str(data.get("description", "")),
            detected_objects=[str(o) for o in data.get("detected_objects") or []],
            style=str(data.get("style", "")),
            confidence=float(data.get("confidence", 0.8)),
            mood=data.get("mood"),
            composition=data.get("composition"),
        )

    def blend(
        self,
        prompt1: str,
        prompt2: str,
        strategy: str = "blend",
        weights: Optional[tuple[float, float]] = None,
    ) -> BlendResult:
        """Ask the text model to merge two prompts."""
        if strategy not in BLEND_STRATEGIES:
            raise ValueError(f"Unknown blend strategy: {strategy!r}")

        lines = [
            "Intelligently blend these two image generation prompts.",
            f'Prompt 1: "{prompt1}"',
            f'Prompt 2: "{prompt2}"',
            f"Strategy: {strategy}",
        ]
        if weights:
            lines.append(f"Weights: prompt 1 ({weights[0]}), prompt 2 ({weights[1]})")
        lines.append(
            "Respond with JSON only, with keys: blended_prompt, explanation, "
            "expected_changes (list of strings), confidence (0-1)."
        )

        response = self._client.models.generate_content(
            model=self.text_model,
            contents="\n".join(lines),
        )
        try:
            data = json.loads(strip_code_fence(response.text or ""))
            return BlendResult(
                blended_prompt=data["blended_prompt"],
                explanation=data.get("explanation", ""),
                expected_changes=list(data.get("expected_changes") or []),
                confidence=float(data.get("confidence", 0.8)),
            )
        except (json.JSONDecodeError, KeyError, TypeError):
            logger.warning("Could not parse Gemini blend response; using plain blend")
            return fallback_blend(prompt1, prompt2)


def _first_inline_image(response) -> Optional[bytes]:
    for candidate in response.candidates or []:
        content = candidate.content
        if content is None:
            continue
        for part in content.parts or []:
            if part.inline_data is not None and part.inline_data.data:
                return part.inline_data.data
    return None


# Register provider
get_registry().register_generator("nano-banana", NanoBananaProvider)
