"""Tests for pixtree.toml handling and project discovery."""

import pytest

from pixtree.config import (
    CONFIG_FILENAME,
    PixtreeConfig,
    ProviderConfig,
    api_key_from_env,
    create_default_config,
    find_project_root,
    load_config,
    load_or_create_config,
    save_config,
)


class TestConfigFile:

    def test_default_roundtrip(self, tmp_path):
        config = create_default_config(tmp_path, default_model="seedream-4.0", api_key="secret")
        save_config(config)

        loaded = load_config(tmp_path)
        assert loaded.default_model == "seedream-4.0"
        assert loaded.provider("seedream-4.0").params == {"api_key": "secret"}
        assert loaded.provider("nano-banana").enabled
        assert loaded.created == config.created
        assert loaded.recent_trees_limit == 10

    def test_toml_layout(self, tmp_path):
        config = PixtreeConfig(
            path=tmp_path,
            providers={"nano-banana": ProviderConfig("nano-banana", enabled=False, params={"model": "x"})},
        )
        save_config(config)
        text = (tmp_path / CONFIG_FILENAME).read_text()
        assert "[project]" in text
        assert "[providers.nano-banana]" in text
        assert "enabled = false" in text

    def test_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path)

    def test_newer_version_rejected(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text("[project]\nversion = 99\n")
        with pytest.raises(ValueError, match="newer"):
            load_config(tmp_path)

    def test_bad_recent_limit(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text("[project]\nrecent_trees_limit = 0\n")
        with pytest.raises(ValueError):
            load_config(tmp_path)

    def test_invalid_toml(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text("[project\n")
        with pytest.raises(ValueError):
            load_config(tmp_path)

    def test_load_or_create(self, tmp_path):
        config = load_or_create_config(tmp_path / ".pixtree")
        assert config.exists()
        assert load_or_create_config(tmp_path / ".pixtree").created == config.created

    def test_unset_provider_is_enabled(self, tmp_path):
        config = PixtreeConfig(path=tmp_path)
        assert config.provider("anything") == ProviderConfig("anything")


class TestDiscovery:

    def test_explicit(self, tmp_path):
        assert find_project_root(tmp_path) == tmp_path.resolve()

    def test_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PIXTREE_PROJECT_PATH", str(tmp_path))
        assert find_project_root() == tmp_path.resolve()

    def test_walk_up(self, tmp_path, monkeypatch):
        (tmp_path / ".pixtree").mkdir()
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        monkeypatch.chdir(nested)
        assert find_project_root() == tmp_path.resolve()

    def test_not_found(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert find_project_root() is None


def test_api_key_from_env(monkeypatch):
    assert api_key_from_env("nano-banana") is None
    monkeypatch.setenv("GOOGLE_API_KEY", "g")
    assert api_key_from_env("nano-banana") == "g"
    monkeypatch.setenv("GEMINI_API_KEY", "gem")
    assert api_key_from_env("nano-banana") == "gem"
    assert api_key_from_env("unknown") is None
