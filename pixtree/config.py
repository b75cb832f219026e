"""
Configuration management for pixtree projects.

The configuration is stored as a TOML file in the ``.pixtree`` directory.
It names the default generation model and holds per-provider parameters.
"""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import tomli_w

from .types import utc_now


CONFIG_FILENAME = "pixtree.toml"
CONFIG_VERSION = 1
PIXTREE_DIRNAME = ".pixtree"
PROJECT_PATH_ENV = "PIXTREE_PROJECT_PATH"

DEFAULT_MODEL = "nano-banana"
DEFAULT_RECENT_TREES_LIMIT = 10

# Environment variables consulted for each built-in provider's API key
API_KEY_ENV = {
    "nano-banana": ("GEMINI_API_KEY", "GOOGLE_API_KEY"),
    "seedream-4.0": ("ARK_API_KEY",),
}


@dataclass
class ProviderConfig:
    """Configuration for a single generation provider."""
    name: str
    enabled: bool = True
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class PixtreeConfig:
    """Complete project configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=utc_now)
    default_model: str = DEFAULT_MODEL
    recent_trees_limit: int = DEFAULT_RECENT_TREES_LIMIT

    # Provider configurations, keyed by model name
    providers: dict[str, ProviderConfig] = field(default_factory=dict)

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    def exists(self) -> bool:
        return self.config_path.exists()

    def provider(self, name: str) -> ProviderConfig:
        """Config for a provider (an enabled, parameterless one if unset)."""
        return self.providers.get(name) or ProviderConfig(name)


def api_key_from_env(model: str) -> Optional[str]:
    """First API key found in the environment for a built-in model."""
    for var in API_KEY_ENV.get(model, ()):
        value = os.environ.get(var)
        if value:
            return value
    return None


def find_project_root(start: Optional[Path] = None) -> Optional[Path]:
    """
    Locate the working copy that holds a ``.pixtree`` directory.

    Priority:
    1. ``start`` if given (returned as-is, initialized or not)
    2. PIXTREE_PROJECT_PATH environment variable
    3. Walk up from the current directory

    Returns None when no project is found by walking up.
    """
    if start is not None:
        return Path(start).resolve()

    env_path = os.environ.get(PROJECT_PATH_ENV)
    if env_path:
        return Path(env_path).resolve()

    current = Path.cwd().resolve()
    for candidate in (current, *current.parents):
        if (candidate / PIXTREE_DIRNAME).is_dir():
            return candidate
    return None


def create_default_config(pixtree_dir: Path, default_model: str = DEFAULT_MODEL,
                          api_key: Optional[str] = None) -> PixtreeConfig:
    """
    Create a new config for a project.

    Built-in providers are listed with empty params so users can see what
    is available. An explicit api_key is stored for the default model.
    """
    providers = {name: ProviderConfig(name) for name in API_KEY_ENV}
    providers.setdefault(default_model, ProviderConfig(default_model))
    if api_key:
        providers[default_model].params["api_key"] = api_key
    return PixtreeConfig(path=pixtree_dir, default_model=default_model, providers=providers)


def load_config(pixtree_dir: Path) -> PixtreeConfig:
    """
    Load configuration from a ``.pixtree`` directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = pixtree_dir / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid config {config_path}: {e}") from e

    project = data.get("project", {})
    version = project.get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    recent_limit = project.get("recent_trees_limit", DEFAULT_RECENT_TREES_LIMIT)
    if not isinstance(recent_limit, int) or recent_limit < 1:
        raise ValueError(f"recent_trees_limit must be a positive integer: {recent_limit!r}")

    def parse_provider(name: str, section: dict) -> ProviderConfig:
        return ProviderConfig(
            name=name,
            enabled=bool(section.get("enabled", True)),
            params={k: v for k, v in section.items() if k != "enabled"},
        )

    return PixtreeConfig(
        path=pixtree_dir,
        version=version,
        created=project.get("created", ""),
        default_model=project.get("default_model", DEFAULT_MODEL),
        recent_trees_limit=recent_limit,
        providers={
            name: parse_provider(name, section)
            for name, section in data.get("providers", {}).items()
        },
    )


def save_config(config: PixtreeConfig) -> None:
    """
    Save configuration to the ``.pixtree`` directory.

    Creates the directory if it doesn't exist.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    def provider_to_dict(p: ProviderConfig) -> dict:
        d: dict[str, Any] = {"enabled": p.enabled}
        d.update(p.params)
        return d

    data = {
        "project": {
            "version": config.version,
            "created": config.created,
            "default_model": config.default_model,
            "recent_trees_limit": config.recent_trees_limit,
        },
        "providers": {
            name: provider_to_dict(p) for name, p in sorted(config.providers.items())
        },
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(pixtree_dir: Path) -> PixtreeConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    config_path = pixtree_dir / CONFIG_FILENAME

    if config_path.exists():
        return load_config(pixtree_dir)
    else:
        config = create_default_config(pixtree_dir)
        save_config(config)
        return config
