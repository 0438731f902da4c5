"""
Tests for ConfigManager: YAML loading, defaults and hot reload.
"""
import os

import pytest

from chatrelay.core.config_manager import ConfigManager


class TestConfigManager:

    def test_defaults_are_merged(self, config_dir):
        config_manager = ConfigManager(str(config_dir))

        assert config_manager.streaming_defaults == {"target_chunk_size": 4, "target_interval_ms": 5}
        assert config_manager.google_settings["location"] == "us-central1"
        assert config_manager.pricing_table["llama3"] == {"prompt": 1.0, "completion": 2.0}
        assert config_manager.image_models == ["gpt-image-1"]

    def test_missing_directory_uses_defaults(self, tmp_path):
        config_manager = ConfigManager(str(tmp_path / "absent"))

        assert config_manager.get_user_keys() == {}
        assert config_manager.get_personas() == {}
        assert config_manager.streaming_defaults["target_chunk_size"] == 3

    def test_invalid_yaml_is_ignored(self, config_dir):
        (config_dir / "prompts.yaml").write_text("prompts: [unclosed\n", encoding="utf-8")

        config_manager = ConfigManager(str(config_dir))

        assert config_manager.get_prompts() == {}
        assert "alice" in config_manager.get_user_keys()

    def test_provider_settings_fallback(self, config_dir):
        config_manager = ConfigManager(str(config_dir))

        assert config_manager.get_provider_settings("alice", "ollama")["default_model"] == "mistral"
        assert config_manager.get_provider_settings("carol", "ollama")["default_model"] == "llama3"
        assert config_manager.get_provider_settings("carol", "google") == {}

    def test_reload_on_change(self, config_dir):
        config_manager = ConfigManager(str(config_dir))
        keys_path = config_dir / "user_keys.yaml"
        keys_path.write_text("user_keys:\n  carol:\n    api_key: carol-key\n", encoding="utf-8")
        stat = os.stat(keys_path)
        os.utime(keys_path, (stat.st_atime, stat.st_mtime + 10))

        changed = config_manager._detect_changes()
        config_manager.reload_config()

        assert changed == [str(keys_path)]
        assert list(config_manager.get_user_keys()) == ["carol"]

    @pytest.mark.asyncio
    async def test_reloader_task_lifecycle(self, config_dir):
        config_manager = ConfigManager(str(config_dir))

        task = config_manager.start_reloader_task()
        await config_manager.stop_reloader_task()

        assert task.cancelled()
        assert config_manager._reloader_task is None
