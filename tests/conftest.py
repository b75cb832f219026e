"""
Shared pytest fixtures for pixtree tests.

Provides mock providers so no test talks to a real image model.
"""

import hashlib
import io
from pathlib import Path
from typing import Optional

import pytest
from PIL import Image

from pixtree.api import Pixtree
from pixtree.providers.base import BlendResult, GenerationResult
from pixtree.types import AnalysisResult


def make_png(seed: str = "", size: tuple[int, int] = (8, 8), mode: str = "RGB") -> bytes:
    """Small PNG whose color is derived from seed (same seed, same bytes)."""
    h = hashlib.md5(seed.encode()).digest()
    color = tuple(h[:4]) if mode == "RGBA" else tuple(h[:3])
    buf = io.BytesIO()
    Image.new(mode, size, color).save(buf, format="PNG")
    return buf.getvalue()


class MockGenerator:
    """
    Deterministic mock generation backend.

    The image depends only on the prompt, so equal prompts produce
    identical bytes (and share one blob).
    """

    name = "mock"

    def __init__(self, fail: bool = False, **params):
        self.fail = fail
        self.params = params
        self.requests = []

    def generate(self, request):
        self.requests.append(request)
        if self.fail:
            raise RuntimeError("mock backend unavailable")
        return GenerationResult(
            image_bytes=make_png(request.prompt),
            parameters=dict(request.params),
            duration_seconds=0.01,
            model=self.name,
        )


class MockAnalyzer:
    """Mock analysis backend with a fixed answer (or a failure)."""

    def __init__(self, result: Optional[AnalysisResult] = None, fail: bool = False):
        self.result = result or AnalysisResult(
            description="A red square on white",
            detected_objects=["square", "shape"],
            style="Flat Design",
            confidence=0.9,
            mood="calm",
        )
        self.fail = fail
        self.calls = 0

    def analyze(self, image_bytes: bytes) -> AnalysisResult:
        self.calls += 1
        if self.fail:
            raise RuntimeError("analysis service down")
        return self.result


class MockBlender:
    """Mock prompt blender: joins the prompts with 'and'."""

    def __init__(self):
        self.calls = []

    def blend(self, prompt1, prompt2, strategy="blend", weights=None):
        self.calls.append((prompt1, prompt2, strategy, weights))
        return BlendResult(
            blended_prompt=f"{prompt1} and {prompt2}",
            explanation=f"{strategy} of both prompts",
            expected_changes=["mixed subjects"],
            confidence=0.8,
        )


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep tests away from a real project or API keys in the environment."""
    for var in ("PIXTREE_PROJECT_PATH", "PIXTREE_VERBOSE", "GEMINI_API_KEY",
                "GOOGLE_API_KEY", "GOOGLE_CLOUD_PROJECT", "ARK_API_KEY"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))


@pytest.fixture
def mock_generator():
    return MockGenerator()


@pytest.fixture
def mock_analyzer():
    return MockAnalyzer()


@pytest.fixture
def mock_blender():
    return MockBlender()


@pytest.fixture
def project_dir(tmp_path) -> Path:
    path = tmp_path / "art"
    path.mkdir()
    return path


@pytest.fixture
def pixtree(project_dir, mock_generator, mock_analyzer, mock_blender):
    """An initialized project whose default model is the mock backend."""
    pt = Pixtree(
        project_dir,
        generators={"mock": mock_generator},
        analyzer=mock_analyzer,
        blender=mock_blender,
    )
    pt.init(name="Test Project", default_model="mock")
    yield pt
    pt.close()


@pytest.fixture
def image_file(tmp_path) -> Path:
    """A PNG on disk, outside the project."""
    path = tmp_path / "incoming" / "photo.png"
    path.parent.mkdir(parents=True)
    path.write_bytes(make_png("imported photo"))
    return path
