"""Tests for defaults precedence and validation"""

import json

import pytest

from managers.defaults_manager import DefaultsManager
from models.generation import GenerationOptions


@pytest.fixture
def config_file(tmp_path):
    return tmp_path / "caption-mcp" / "config.json"


@pytest.fixture
def manager(config_file, monkeypatch):
    for name in ("CAPTION_MCP_MODEL", "CAPTION_MCP_TIMEOUT", "CAPTION_MCP_MAX_RETRIES",
                 "CAPTION_MCP_PAYLOAD_BUDGET", "CAPTION_MCP_DEFAULT_TONE"):
        monkeypatch.delenv(name, raising=False)
    return DefaultsManager(config_file=config_file)


class TestPrecedence:
    """Tests for per-call > runtime > config > env > hardcoded"""

    def test_hardcoded(self, manager):
        assert manager.get_default("provider", "model") == "gpt-4o"
        assert manager.get_default("provider", "max_retries") == 3
        assert manager.get_default("caption", "length") == "micro"

    def test_env_over_hardcoded(self, manager, monkeypatch):
        monkeypatch.setenv("CAPTION_MCP_MODEL", "gpt-4o-mini")
        monkeypatch.setenv("CAPTION_MCP_TIMEOUT", "12.5")
        assert manager.get_default("provider", "model") == "gpt-4o-mini"
        assert manager.get_default("provider", "timeout_seconds") == 12.5

    def test_bad_env_value_ignored(self, manager, monkeypatch):
        monkeypatch.setenv("CAPTION_MCP_MAX_RETRIES", "lots")
        assert manager.get_default("provider", "max_retries") == 3

    def test_config_over_env(self, config_file, monkeypatch):
        monkeypatch.setenv("CAPTION_MCP_MODEL", "from-env")
        config_file.parent.mkdir(parents=True)
        config_file.write_text(json.dumps({"defaults": {"provider": {"model": "from-config"}}}))
        assert DefaultsManager(config_file=config_file).get_default("provider", "model") == "from-config"

    def test_runtime_and_per_call(self, manager):
        assert manager.set_defaults("caption", {"tone": "funny"})["success"] is True
        assert manager.get_default("caption", "tone") == "funny"
        assert manager.get_default("caption", "tone", "professional") == "professional"

    def test_get_all_defaults(self, manager):
        manager.set_defaults("provider", {"max_images": 3})
        merged = manager.get_all_defaults()
        assert merged["provider"]["max_images"] == 3
        assert merged["caption"]["caption_count"] == 5


class TestValidation:
    """Tests for set_defaults error reporting"""

    def test_invalid_option_values(self, manager):
        result = manager.set_defaults("caption", {"tone": "angry", "caption_count": 50})
        assert len(result["errors"]) == 2
        assert manager.get_default("caption", "tone") == "casual"

    def test_invalid_provider_values(self, manager):
        result = manager.set_defaults("provider", {"timeout_seconds": 0, "max_retries": -1, "temperature": 3})
        assert len(result["errors"]) == 3

    def test_non_bool_flags_rejected(self, manager):
        """String flags would be truthy later, so they are refused up front"""
        result = manager.set_defaults("caption", {"include_hashtags": "false", "include_emojis": 0})
        assert len(result["errors"]) == 2
        assert manager.get_default("caption", "include_hashtags") is True

    def test_invalid_creative_rejected(self, manager):
        assert "errors" in manager.set_defaults("caption", {"creative": "yes"})
        assert "errors" in manager.set_defaults("caption", {"creative": {"rhyming": "yes"}})
        assert "errors" in manager.set_defaults("caption", {"creative": {"puns": True}})

        options = manager.resolve_options()
        assert options.creative.rhyming is False

    def test_valid_creative_accepted(self, manager):
        result = manager.set_defaults("caption", {"creative": {"rhyming": True}})
        assert "errors" not in result
        assert manager.resolve_options().creative.rhyming is True

    def test_unknown_key_and_namespace(self, manager):
        assert "errors" in manager.set_defaults("provider", {"colour": "blue"})
        assert "error" in manager.set_defaults("image", {"width": 512})


class TestResolveOptions:
    """Tests for building GenerationOptions from tool arguments"""

    def test_per_call_over_defaults(self, manager):
        manager.set_defaults("caption", {"length": "short"})
        options = manager.resolve_options(tone="funny", alliteration=True)

        assert isinstance(options, GenerationOptions)
        assert options.tone == "funny"
        assert options.length == "short"
        assert options.creative.alliteration is True
        assert options.creative.rhyming is False

    def test_invalid_per_call_value(self, manager):
        with pytest.raises(ValueError):
            manager.resolve_options(length="epic")


class TestPersist:
    """Tests for writing the config file"""

    def test_persist_round_trip(self, manager, config_file):
        result = manager.persist_defaults("caption", {"tone": "funny"})
        assert result["success"] is True

        saved = json.loads(config_file.read_text())
        assert saved["defaults"]["caption"]["tone"] == "funny"
        assert DefaultsManager(config_file=config_file).get_default("caption", "tone") == "funny"
