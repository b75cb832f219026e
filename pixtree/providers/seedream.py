"""
Seedream image provider (BytePlus ModelArk HTTP API).
"""

import base64
import logging
import os
import time

import requests

from .base import GenerationRequest, GenerationResult, get_registry

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://ark.ap-southeast.bytepluses.com/api/v3"


class SeedreamProvider:
    """
    Image generation with ByteDance Seedream models.

    Authentication: api_key parameter, else the ARK_API_KEY env var.
    Respects ARK_BASE_URL for regional endpoints. Generation only; no
    analysis or prompt blending.
    """

    name = "seedream-4.0"

    def __init__(
        self,
        model: str = "seedream-4-0-250828",
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: int = 300,
    ):
        self.model = model
        self.api_key = api_key or os.environ.get("ARK_API_KEY")
        if not self.api_key:
            raise ValueError("Seedream API key required. Set ARK_API_KEY")
        self.base_url = (base_url or os.environ.get("ARK_BASE_URL") or DEFAULT_BASE_URL).rstrip("/")
        self.timeout = timeout

    def generate(self, request: GenerationRequest) -> GenerationResult:
        params = {k: v for k, v in request.params.items() if k != "prompt"}
        model = params.pop("model", None) or self.model

        payload = {
            "model": model,
            "prompt": request.prompt,
            "response_format": "b64_json",
            **params,
        }
        if request.negative_prompt:
            payload["prompt"] = f"{request.prompt}\nAvoid: {request.negative_prompt}"
        if request.input_images:
            payload["image"] = [
                "data:image/png;base64," + base64.b64encode(img).decode("ascii")
                for img in request.input_images
            ]

        start = time.monotonic()
        response = requests.post(
            f"{self.base_url}/images/generations",
            headers={"Authorization": f"Bearer {self.api_key}"},
            json=payload,
            timeout=(10, self.timeout),
        )
        duration = time.monotonic() - start
        if not response.ok:
            detail = response.text[:200] if response.text else ""
            raise RuntimeError(
                f"Seedream generation failed (model={model}): "
                f"HTTP {response.status_code}. {detail}"
            )

        try:
            encoded = response.json()["data"][0]["b64_json"]
        except (ValueError, KeyError, IndexError) as e:
            raise RuntimeError(f"Seedream returned no image (model={model}): {e}") from e

        image_bytes = base64.b64decode(encoded)
        logger.debug("Seedream generated %d bytes in %.1fs", len(image_bytes), duration)
        return GenerationResult(
            image_bytes=image_bytes,
            parameters={"model": model, **params},
            duration_seconds=duration,
            model=model,
        )


# Register provider
get_registry().register_generator("seedream-4.0", SeedreamProvider)
