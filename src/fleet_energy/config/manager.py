"""Configuration loading and validation.

Layers, lowest precedence first: ``config.defaults.yaml``, the operator's
``config.yaml`` and runtime overrides (command-line flags). Mappings are
merged key by key; any other value replaces the lower layer's.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from fleet_energy.config.schema import AppConfig

logger = logging.getLogger(__name__)


class ConfigManager:
    """Loads config from YAML files plus runtime overrides and validates it."""

    def __init__(
        self,
        defaults_path: Path | None = None,
        user_path: Path | None = None,
    ) -> None:
        self._defaults_path = defaults_path or Path("config.defaults.yaml")
        self._user_path = user_path or Path("config.yaml")
        self._config: AppConfig | None = None

    @property
    def config(self) -> AppConfig:
        if self._config is None:
            raise RuntimeError("Config not loaded. Call load() first.")
        return self._config

    def load(self, overrides: dict[str, Any] | None = None) -> AppConfig:
        """Load defaults, then the user file, then ``overrides``; validate the result."""
        merged = self._load_yaml(self._defaults_path)
        sources = [str(self._defaults_path)] if self._defaults_path.exists() else []
        if self._user_path.exists():
            merged = self._deep_merge(merged, self._load_yaml(self._user_path))
            sources.append(str(self._user_path))
        if overrides:
            merged = self._deep_merge(merged, overrides)
            sources.append("command line")

        self._config = AppConfig.model_validate(merged)
        logger.info(
            "Configuration loaded from %s (db=%s)",
            ", ".join(sources) or "built-in defaults", self._config.db.path,
        )
        return self._config

    @staticmethod
    def _load_yaml(path: Path) -> dict[str, Any]:
        if not path.exists():
            return {}
        with open(path) as f:
            data = yaml.safe_load(f)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
        return data

    @staticmethod
    def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Recursively merge override into base, returning a new dict."""
        result = dict(base)
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = ConfigManager._deep_merge(result[key], value)
            else:
                result[key] = value
        return result
