"""
Tests for the provider registry and built-in backends.

Network calls are replaced; no test reaches a real image service.
"""

import base64

import pytest

from pixtree.api import Pixtree
from pixtree.config import ProviderConfig, load_config, save_config
from pixtree.errors import BackendFailure
from pixtree.providers.base import (
    AnalysisProvider,
    GenerationProvider,
    GenerationRequest,
    PromptBlender,
    ProviderRegistry,
    fallback_blend,
    get_registry,
)
from pixtree.providers.gemini_client import strip_code_fence
from pixtree.providers.seedream import SeedreamProvider
from tests.conftest import MockAnalyzer, MockBlender, MockGenerator, make_png


class TestRegistry:

    def test_register_and_create(self):
        registry = ProviderRegistry()
        registry._lazy_loaded = True
        registry.register_generator("mock", MockGenerator)
        provider = registry.create_generator("mock", {"seed": 3})
        assert isinstance(provider, MockGenerator)
        assert provider.params == {"seed": 3}
        assert registry.list_generators() == ["mock"]

    def test_unknown_provider(self):
        registry = ProviderRegistry()
        registry._lazy_loaded = True
        with pytest.raises(ValueError, match="Unknown generation provider"):
            registry.create_generator("nope")

    def test_constructor_failure(self):
        registry = ProviderRegistry()
        registry._lazy_loaded = True

        class Broken:
            def __init__(self):
                raise ValueError("no key")

        registry.register_generator("broken", Broken)
        with pytest.raises(RuntimeError, match="no key"):
            registry.create_generator("broken")

    def test_builtins_registered(self):
        names = get_registry().list_generators()
        assert "nano-banana" in names
        assert "seedream-4.0" in names


class TestProtocols:

    def test_mocks_satisfy_protocols(self):
        assert isinstance(MockGenerator(), GenerationProvider)
        assert isinstance(MockAnalyzer(), AnalysisProvider)
        assert isinstance(MockBlender(), PromptBlender)

    def test_generator_is_not_a_blender(self):
        assert not isinstance(MockGenerator(), PromptBlender)


def test_fallback_blend():
    result = fallback_blend("a cat", "a hat")
    assert result.blended_prompt == "a cat combined with a hat"
    assert result.confidence == 0.7


@pytest.mark.parametrize("text,expected", [
    ('{"a": 1}', '{"a": 1}'),
    ('```json\n{"a": 1}\n```', '{"a": 1}'),
    ("  plain  ", "plain"),
])
def test_strip_code_fence(text, expected):
    assert strip_code_fence(text) == expected


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self.ok = status_code < 400
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class TestSeedream:

    def test_requires_key(self):
        with pytest.raises(ValueError, match="ARK_API_KEY"):
            SeedreamProvider()

    def test_key_from_env(self, monkeypatch):
        monkeypatch.setenv("ARK_API_KEY", "k")
        assert SeedreamProvider().api_key == "k"

    def test_generate(self, monkeypatch):
        image = make_png("seedream")
        calls = []

        def fake_post(url, headers, json, timeout):
            calls.append((url, headers, json))
            return FakeResponse(payload={"data": [{"b64_json": base64.b64encode(image).decode()}]})

        monkeypatch.setattr("pixtree.providers.seedream.requests.post", fake_post)
        provider = SeedreamProvider(api_key="k", base_url="https://example.test/api/")
        result = provider.generate(GenerationRequest(
            prompt="a kite",
            negative_prompt="rain",
            params={"size": "1K"},
        ))

        assert result.image_bytes == image
        assert result.model == "seedream-4-0-250828"
        assert result.parameters == {"model": "seedream-4-0-250828", "size": "1K"}
        url, headers, payload = calls[0]
        assert url == "https://example.test/api/images/generations"
        assert headers == {"Authorization": "Bearer k"}
        assert payload["prompt"] == "a kite\nAvoid: rain"
        assert payload["size"] == "1K"

    def test_http_error(self, monkeypatch):
        monkeypatch.setattr(
            "pixtree.providers.seedream.requests.post",
            lambda *a, **kw: FakeResponse(status_code=401, text="unauthorized"),
        )
        with pytest.raises(RuntimeError, match="HTTP 401"):
            SeedreamProvider(api_key="k").generate(GenerationRequest(prompt="x"))

    def test_missing_image(self, monkeypatch):
        monkeypatch.setattr(
            "pixtree.providers.seedream.requests.post",
            lambda *a, **kw: FakeResponse(payload={"data": []}),
        )
        with pytest.raises(RuntimeError, match="no image"):
            SeedreamProvider(api_key="k").generate(GenerationRequest(prompt="x"))


class TestProjectProviders:

    def test_disabled_provider(self, pixtree, project_dir):
        config = load_config(pixtree.pixtree_dir)
        config.providers["seedream-4.0"].enabled = False
        save_config(config)

        with Pixtree(project_dir) as pt:
            with pytest.raises(BackendFailure, match="disabled"):
                pt.generate("a kite", model="seedream-4.0")
            assert pt.search() == []

    def test_unknown_model(self, pixtree):
        with pytest.raises(BackendFailure) as exc_info:
            pixtree.generate("a kite", model="no-such-model")
        assert exc_info.value.provider == "no-such-model"

    def test_provider_created_from_config(self, pixtree, project_dir, monkeypatch):
        monkeypatch.setitem(get_registry()._generators, "mock-configured", MockGenerator)
        config = load_config(pixtree.pixtree_dir)
        config.providers["mock-configured"] = ProviderConfig(
            "mock-configured", params={"quality": "high"},
        )
        save_config(config)

        with Pixtree(project_dir) as pt:
            node = pt.generate("a kite", model="mock-configured")
            assert node.model == "mock-configured"
            assert pt._get_generator("mock-configured").params == {"quality": "high"}
