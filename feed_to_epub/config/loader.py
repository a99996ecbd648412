"""Configuration loading helpers for feed-to-epub."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

import yaml
from pydantic import ValidationError

from ..errors import ConfigError
from .models import AppConfig

CONFIG_EXTENSIONS = (".yaml", ".yml", ".json")
CONFIG_ENV_VAR = "FEED_TO_EPUB_CONFIG"
DEFAULT_CONFIG_PATH = Path("~/.config/feed-to-epub/config.yaml")


def _read_file(path: Path) -> dict:
    text = path.read_text(encoding="utf-8")
    if path.suffix in (".yaml", ".yml"):
        data = yaml.safe_load(text) or {}
    else:
        data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file must contain a mapping: {path}")
    return data


@dataclass(slots=True)
class ConfigLocator:
    """Resolve the configuration file path.

    Precedence: explicit ``config_path``, then ``$FEED_TO_EPUB_CONFIG``, then
    ``~/.config/feed-to-epub/config.yaml``.
    """

    config_path: Path | None = None

    def __post_init__(self) -> None:
        if self.config_path is not None:
            path = Path(self.config_path)
        else:
            env_path = os.environ.get(CONFIG_ENV_VAR)
            path = Path(env_path) if env_path else DEFAULT_CONFIG_PATH
        self.config_path = path.expanduser().resolve()

    @property
    def config_dir(self) -> Path:
        return self.config_path.parent


class ConfigRepository:
    """Repository encapsulating config IO and schema validation."""

    def __init__(self, locator: ConfigLocator | None = None) -> None:
        self.locator = locator or ConfigLocator()
        self._cache: AppConfig | None = None

    @property
    def path(self) -> Path:
        return self.locator.config_path

    def load(self) -> AppConfig:
        if self._cache is not None:
            return self._cache
        path = self.path
        if not path.is_file():
            raise ConfigError(f"Configuration file not found: {path}")
        if path.suffix not in CONFIG_EXTENSIONS:
            raise ConfigError(
                f"Unsupported configuration format {path.suffix!r}; "
                f"expected one of {', '.join(CONFIG_EXTENSIONS)}"
            )
        try:
            payload = _read_file(path)
        except (OSError, ValueError, yaml.YAMLError) as exc:
            raise ConfigError(f"Cannot read configuration {path}: {exc}") from exc
        try:
            config = AppConfig.model_validate(payload)
        except ValidationError as exc:
            raise ConfigError(f"Invalid configuration {path}:\n{exc}") from exc
        config = config.resolve_paths(self.locator.config_dir)
        self._cache = config
        return config


__all__ = [
    "CONFIG_ENV_VAR",
    "CONFIG_EXTENSIONS",
    "ConfigLocator",
    "ConfigRepository",
    "DEFAULT_CONFIG_PATH",
]
