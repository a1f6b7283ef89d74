"""Defaults management for caption options and provider settings"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from models.generation import CreativeOptions, GenerationOptions, validate_options

logger = logging.getLogger("Caption_MCP")

# Configuration paths
CONFIG_DIR = Path.home() / ".config" / "caption-mcp"
CONFIG_FILE = CONFIG_DIR / "config.json"

NAMESPACES = ("caption", "provider")

# Environment variable -> (namespace, key, parser)
ENV_VARS: Dict[str, tuple] = {
    "CAPTION_MCP_MODEL": ("provider", "model", str),
    "CAPTION_MCP_TIMEOUT": ("provider", "timeout_seconds", float),
    "CAPTION_MCP_MAX_RETRIES": ("provider", "max_retries", int),
    "CAPTION_MCP_PAYLOAD_BUDGET": ("provider", "payload_budget_bytes", int),
    "CAPTION_MCP_DEFAULT_TONE": ("caption", "tone", str),
}

POSITIVE_NUMBERS = ("max_tokens", "timeout_seconds", "max_images", "payload_budget_bytes", "cache_ttl_hours")


def _validate_provider(values: Dict[str, Any]) -> List[str]:
    errors = []
    for key in POSITIVE_NUMBERS:
        if key in values:
            value = values[key]
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                errors.append(f"Invalid {key} {value!r}. Must be a positive number")
    if "max_retries" in values:
        value = values["max_retries"]
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            errors.append(f"Invalid max_retries {value!r}. Must be a non-negative integer")
    if "temperature" in values:
        value = values["temperature"]
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0 <= value <= 2:
            errors.append(f"Invalid temperature {value!r}. Must be between 0 and 2")
    if "model" in values and (not isinstance(values["model"], str) or not values["model"].strip()):
        errors.append("Invalid model. Must be a non-empty string")
    return errors


VALIDATORS: Dict[str, Callable[[Dict[str, Any]], List[str]]] = {
    "caption": validate_options,
    "provider": _validate_provider,
}


class DefaultsManager:
    """Manages default values with precedence: per-call > runtime > config > env > hardcoded"""

    def __init__(self, config_file: Optional[Path] = None):
        self.config_file = Path(config_file) if config_file else CONFIG_FILE
        self._runtime_defaults: Dict[str, Dict[str, Any]] = {"caption": {}, "provider": {}}
        self._config_defaults = self._load_config_defaults()
        self._hardcoded_defaults = {
            "caption": {
                **GenerationOptions().to_dict(),
            },
            "provider": {
                "model": "gpt-4o",
                "max_tokens": 1000,
                "temperature": 0.8,
                "timeout_seconds": 30.0,
                "max_retries": 3,
                "max_images": 5,
                "payload_budget_bytes": 1_000_000,
                "cache_ttl_hours": 24,
            },
        }

    def _load_config_defaults(self) -> Dict[str, Dict[str, Any]]:
        """Load defaults from config file"""
        defaults: Dict[str, Dict[str, Any]] = {"caption": {}, "provider": {}}
        if self.config_file.exists():
            try:
                with open(self.config_file, "r", encoding="utf-8") as f:
                    config = json.load(f)
                for namespace in NAMESPACES:
                    defaults[namespace] = dict(config.get("defaults", {}).get(namespace, {}))
            except (json.JSONDecodeError, IOError, AttributeError) as e:
                logger.warning(f"Failed to load config file {self.config_file}: {e}")
        return defaults

    def _get_env_defaults(self) -> Dict[str, Dict[str, Any]]:
        """Load defaults from environment variables"""
        defaults: Dict[str, Dict[str, Any]] = {"caption": {}, "provider": {}}
        for env_name, (namespace, key, parser) in ENV_VARS.items():
            raw = os.getenv(env_name)
            if not raw:
                continue
            try:
                defaults[namespace][key] = parser(raw)
            except ValueError:
                logger.warning(f"Ignoring {env_name}={raw!r}: expected {parser.__name__}")
        return defaults

    def get_default(self, namespace: str, key: str, provided_value: Any = None) -> Any:
        """Get default value with precedence: provided > runtime > config > env > hardcoded"""
        if provided_value is not None:
            return provided_value

        if key in self._runtime_defaults.get(namespace, {}):
            return self._runtime_defaults[namespace][key]

        if key in self._config_defaults.get(namespace, {}):
            return self._config_defaults[namespace][key]

        env_defaults = self._get_env_defaults()
        if key in env_defaults.get(namespace, {}):
            return env_defaults[namespace][key]

        return self._hardcoded_defaults.get(namespace, {}).get(key)

    def get_all_defaults(self) -> Dict[str, Dict[str, Any]]:
        """Get all effective defaults (merged from all sources)"""
        env_defaults = self._get_env_defaults()
        result = {}
        for namespace in NAMESPACES:
            merged = self._hardcoded_defaults[namespace].copy()
            merged.update(env_defaults.get(namespace, {}))
            merged.update(self._config_defaults.get(namespace, {}))
            merged.update(self._runtime_defaults.get(namespace, {}))
            result[namespace] = merged
        return result

    def resolve_options(self, **provided: Any) -> GenerationOptions:
        """Build ``GenerationOptions`` from per-call values layered over the defaults"""
        values = {
            key: self.get_default("caption", key, provided.get(key))
            for key in self._hardcoded_defaults["caption"]
        }
        creative = provided.get("creative")
        if creative is None:
            creative = {
                name: provided[name]
                for name in ("word_invention", "alliteration", "rhyming")
                if provided.get(name) is not None
            }
            values["creative"] = {**CreativeOptions.from_value(values["creative"]).to_dict(), **creative}
        return GenerationOptions.from_dict(values)

    def set_defaults(self, namespace: str, defaults: Dict[str, Any]) -> Dict[str, Any]:
        """Set runtime defaults for a namespace. Returns validation errors if any."""
        if namespace not in NAMESPACES:
            return {"error": f"Invalid namespace: {namespace}. Must be one of: {', '.join(NAMESPACES)}"}

        unknown = sorted(set(defaults) - set(self._hardcoded_defaults[namespace]))
        errors = [f"Unknown {namespace} setting '{key}'" for key in unknown]
        errors.extend(VALIDATORS[namespace](defaults))
        if errors:
            return {"errors": errors}

        self._runtime_defaults[namespace].update(defaults)
        return {"success": True, "updated": defaults}

    def persist_defaults(self, namespace: str, defaults: Dict[str, Any]) -> Dict[str, Any]:
        """Persist defaults to config file"""
        self.config_file.parent.mkdir(parents=True, exist_ok=True)

        config: Dict[str, Any] = {}
        if self.config_file.exists():
            try:
                with open(self.config_file, "r", encoding="utf-8") as f:
                    config = json.load(f)
            except (json.JSONDecodeError, IOError):
                config = {}

        config.setdefault("defaults", {}).setdefault(namespace, {}).update(defaults)

        try:
            with open(self.config_file, "w", encoding="utf-8") as f:
                json.dump(config, f, indent=2)
            self._config_defaults = self._load_config_defaults()
            return {"success": True, "persisted": defaults}
        except IOError as e:
            return {"error": f"Failed to write config file: {e}"}
