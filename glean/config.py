"""
Configuration management for glean stores.

The configuration is stored as a TOML file in the store directory.
It specifies which analysis provider to use and its parameters.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import tomli_w


CONFIG_FILENAME = "glean.toml"
CONFIG_VERSION = 1
DATABASE_FILENAME = "history.db"

# Default max upload size: 100MB
DEFAULT_MAX_FILE_SIZE = 100_000_000
DEFAULT_LANGUAGE = "English"


@dataclass
class ProviderConfig:
    """Configuration for a single provider."""
    name: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class StoreConfig:
    """Complete store configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    analysis: ProviderConfig = field(default_factory=lambda: ProviderConfig("passthrough"))
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    # Language the analysis provider should answer in
    language: str = DEFAULT_LANGUAGE

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def database_path(self) -> Path:
        """Path to the SQLite history database."""
        return self.path / DATABASE_FILENAME

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def get_default_store_path() -> Path:
    """Store directory: GLEAN_STORE_PATH if set, else ~/.glean."""
    env = os.environ.get("GLEAN_STORE_PATH")
    if env:
        return Path(env).expanduser().resolve()
    return Path.home() / ".glean"


def detect_default_provider() -> ProviderConfig:
    """
    Pick an analysis provider for the current environment.

    Priority:
    1. Gemini (GEMINI_API_KEY or GOOGLE_API_KEY)
    2. Anthropic (ANTHROPIC_API_KEY)
    3. OpenAI (GLEAN_OPENAI_API_KEY or OPENAI_API_KEY)
    4. Fallback: passthrough (no LLM)
    """
    if os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY"):
        return ProviderConfig("gemini")
    if os.environ.get("ANTHROPIC_API_KEY"):
        return ProviderConfig("anthropic")
    if os.environ.get("GLEAN_OPENAI_API_KEY") or os.environ.get("OPENAI_API_KEY"):
        return ProviderConfig("openai")
    return ProviderConfig("passthrough")


def create_default_config(store_path: Path) -> StoreConfig:
    """Create a new config with auto-detected defaults."""
    return StoreConfig(path=store_path, analysis=detect_default_provider())


def load_config(store_path: Path) -> StoreConfig:
    """
    Load configuration from a store directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid config file {config_path}: {e}") from e

    store = data.get("store", {})
    version = store.get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    analysis = data.get("analysis", {"name": "passthrough"})
    max_file_size = store.get("max_file_size", DEFAULT_MAX_FILE_SIZE)
    if not isinstance(max_file_size, int) or max_file_size <= 0:
        raise ValueError(f"max_file_size must be a positive integer: {max_file_size!r}")

    return StoreConfig(
        path=store_path,
        version=version,
        created=store.get("created", ""),
        analysis=ProviderConfig(
            name=analysis.get("name", "passthrough"),
            params={k: v for k, v in analysis.items() if k != "name"},
        ),
        max_file_size=max_file_size,
        language=store.get("language", DEFAULT_LANGUAGE),
    )


def save_config(config: StoreConfig) -> None:
    """
    Save configuration to the store directory.

    Creates the directory if it doesn't exist.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    analysis = {"name": config.analysis.name}
    analysis.update(config.analysis.params)

    data = {
        "store": {
            "version": config.version,
            "created": config.created,
            "max_file_size": config.max_file_size,
            "language": config.language,
        },
        "analysis": analysis,
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Path) -> StoreConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    config_path = store_path / CONFIG_FILENAME

    if config_path.exists():
        return load_config(store_path)
    config = create_default_config(store_path)
    save_config(config)
    return config
