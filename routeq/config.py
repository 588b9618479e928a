"""
Configuration management for routeq.

Loads the backend pricing table, routing thresholds, batching parameters,
and queue limits from JSON configuration files.
"""

import copy
import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import ConfigError

SECTIONS = {'backends', 'fallback', 'routing', 'costs', 'batching', 'queue'}


class Config:
    """Configuration manager for pricing, routing, and queue settings."""

    def __init__(self, config_path: str = None, overrides: Dict[str, Any] = None):
        """Initialize configuration.

        Args:
            config_path: Path to config directory containing ``config.json``.
                If None, uses the packaged defaults.
            overrides: Optional per-section values merged over the loaded
                document, e.g. ``{"costs": {"budget_limit": 5.0}}``.
        """
        self.config_path = config_path
        self.config = self._load_config()
        if overrides:
            self.merge(overrides)

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from file or defaults."""
        defaults_path = Path(__file__).parent / 'defaults.json'
        with open(defaults_path, 'r') as f:
            defaults = json.load(f)

        if not (self.config_path and os.path.exists(os.path.join(self.config_path, 'config.json'))):
            return defaults

        config_file = os.path.join(self.config_path, 'config.json')
        try:
            with open(config_file, 'r') as f:
                loaded = json.load(f)
        except json.JSONDecodeError as exc:
            raise ConfigError(
                f"Config at {config_file} is not valid JSON: {exc}"
            ) from exc
        if not isinstance(loaded, dict):
            raise ConfigError(f"Config at {config_file} must be a JSON object")

        # Sections missing from the file fall back to the packaged defaults
        for section, value in defaults.items():
            loaded.setdefault(section, value)
        return loaded

    def merge(self, overrides: Dict[str, Any]) -> None:
        """Merge per-section overrides into the current configuration."""
        unknown = set(overrides) - SECTIONS
        if unknown:
            raise ConfigError(f"Unknown configuration sections: {sorted(unknown)}")
        for section, values in overrides.items():
            if isinstance(values, dict) and isinstance(self.config.get(section), dict):
                self.config[section].update(copy.deepcopy(values))
            else:
                self.config[section] = copy.deepcopy(values)

    def get_pricing(self) -> Dict[str, Any]:
        """Get backend → model pricing definitions."""
        return self.config.get('backends', {})

    def get_fallback(self) -> Dict[str, str]:
        """Get the backend/model used when no candidate qualifies."""
        return self.config.get('fallback', {})

    def get_routing(self) -> Dict[str, Any]:
        """Get candidate selection settings."""
        return self.config.get('routing', {})

    def get_quality_thresholds(self) -> Dict[str, float]:
        """Get minimum quality per complexity level."""
        return self.get_routing().get('quality_thresholds', {})

    def get_costs(self) -> Dict[str, Any]:
        """Get cost model settings (budget, output ratio, history size)."""
        return self.config.get('costs', {})

    def get_budget(self) -> Optional[float]:
        """Get the spend ceiling, or None when unbounded."""
        return self.get_costs().get('budget_limit')

    def get_batching(self) -> Dict[str, Any]:
        """Get batch accumulator settings."""
        return self.config.get('batching', {})

    def get_queue(self) -> Dict[str, Any]:
        """Get work queue settings."""
        return self.config.get('queue', {})

    def save_config(self, config_path: str) -> None:
        """Save current configuration to file.

        Args:
            config_path: Path to config directory
        """
        os.makedirs(config_path, exist_ok=True)
        config_file = os.path.join(config_path, 'config.json')
        from .utils import atomic_write_json
        atomic_write_json(config_file, self.config)

    def add_backend(self, backend: str, models: Dict[str, Dict[str, Any]],
                    local: Optional[bool] = None) -> None:
        """Add or replace a backend's model pricing.

        Backends are not discovered at runtime; anything routing should see
        must be registered here.

        Args:
            backend: Backend identifier (e.g. ``"openai"``)
            models: Mapping of model id to pricing fields
            local: Mark every model as local/free regardless of its rates
        """
        entry: Dict[str, Any] = {'models': copy.deepcopy(models)}
        if local is not None:
            entry['local'] = local
        self.config.setdefault('backends', {})[backend] = entry

    def remove_backend(self, backend: str) -> bool:
        """Remove a backend definition.

        Args:
            backend: Backend identifier

        Returns:
            True if the backend was found and removed, False otherwise
        """
        return self.config.get('backends', {}).pop(backend, None) is not None
