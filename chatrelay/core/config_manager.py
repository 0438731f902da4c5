import copy
import yaml
import os
import asyncio
from typing import Dict, Any, List, Optional
from .logging import logger
from ..utils.deep_merge import deep_merge

CONFIG_FILES = {
    "settings": "settings.yaml",
    "user_keys": "user_keys.yaml",
    "provider_settings": "provider_settings.yaml",
    "personas": "personas.yaml",
    "prompts": "prompts.yaml",
}

DEFAULT_SETTINGS = {
    "streaming": {
        "target_chunk_size": 3,
        "target_interval_ms": 5,
    },
    "google": {
        "project_id": None,
        "location": "us-central1",
    },
    "pricing": {},
    "image_models": ["gpt-image-1"],
}


class ConfigManager:
    def __init__(self, config_dir: Optional[str] = None):
        self.config_dir = config_dir or os.getenv("CHATRELAY_CONFIG_DIR", "config")
        self.paths = {key: os.path.join(self.config_dir, name) for key, name in CONFIG_FILES.items()}
        self.config = self._load_config()
        self.version = 0
        self.last_mtimes = {}
        self._initialize_mtimes()
        self._reloader_task = None

        self.debug = os.getenv("DEBUG", "false").lower() == "true"
        self.log_level = os.getenv("LOG_LEVEL", "INFO")
        self.files_dir = os.getenv("CHATRELAY_FILES_DIR", "data/files")

        logger.info(
            "Configuration manager initialized",
            config={
                "config_dir": self.config_dir,
                "debug_enabled": self.debug,
                "log_level": self.log_level,
                "existing_files": [key for key, path in self.paths.items() if os.path.exists(path)],
            }
        )

    def _load_file(self, key: str) -> Dict[str, Any]:
        path = self.paths[key]
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            logger.warning(f"Configuration file not found: {path}", config={"file_path": path})
            return {}
        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML file {path}: {e}", config={"file_path": path})
            return {}
        return data.get(key, {}) if isinstance(data, dict) else {}

    def _load_config(self) -> Dict[str, Any]:
        config = {key: self._load_file(key) for key in CONFIG_FILES}
        config["settings"] = deep_merge(copy.deepcopy(DEFAULT_SETTINGS), config["settings"])
        return config

    def get_config(self) -> Dict[str, Any]:
        return self.config

    @property
    def is_debug_enabled(self) -> bool:
        return self.debug

    @property
    def streaming_defaults(self) -> Dict[str, int]:
        """Pacer defaults, overridable in settings.yaml under `streaming`."""
        return self.config["settings"]["streaming"]

    @property
    def google_settings(self) -> Dict[str, Any]:
        return self.config["settings"]["google"]

    @property
    def pricing_table(self) -> Dict[str, Dict[str, float]]:
        """Model id -> {"prompt": usd_per_million, "completion": usd_per_million}."""
        return self.config["settings"]["pricing"] or {}

    @property
    def image_models(self) -> List[str]:
        return self.config["settings"]["image_models"] or []

    def get_user_keys(self) -> Dict[str, Any]:
        return self.config.get("user_keys", {}) or {}

    def get_provider_settings(self, user_id: str, provider: str) -> Dict[str, Any]:
        """
        Per-user provider settings with a `default` user as fallback.

        `api_key_env` names an environment variable holding the key.
        """
        all_settings = self.config.get("provider_settings", {}) or {}
        user_settings = (all_settings.get(user_id) or {}).get(provider)
        if user_settings is None:
            user_settings = (all_settings.get("default") or {}).get(provider)
        settings = dict(user_settings or {})

        api_key_env = settings.pop("api_key_env", None)
        if not settings.get("api_key") and api_key_env:
            settings["api_key"] = os.environ.get(api_key_env)
        return settings

    def get_personas(self) -> Dict[str, Any]:
        return self.config.get("personas", {}) or {}

    def get_prompts(self) -> Dict[str, Any]:
        return self.config.get("prompts", {}) or {}

    def reload_config(self):
        logger.info("Reloading configuration", config={"config_dir": self.config_dir})
        self.config = self._load_config()
        self.version += 1
        logger.info(
            "Configuration reloaded",
            config={
                "user_keys_count": len(self.get_user_keys()),
                "personas_count": len(self.get_personas()),
                "prompts_count": len(self.get_prompts()),
            }
        )

    def _initialize_mtimes(self):
        for fpath in self.paths.values():
            try:
                self.last_mtimes[fpath] = os.path.getmtime(fpath)
            except FileNotFoundError:
                pass

    def _detect_changes(self) -> List[str]:
        changed = []
        for fpath in self.paths.values():
            try:
                mtime = os.path.getmtime(fpath)
            except FileNotFoundError:
                continue
            if fpath not in self.last_mtimes or self.last_mtimes[fpath] < mtime:
                self.last_mtimes[fpath] = mtime
                changed.append(fpath)
        return changed

    async def _reload_config_task(self, interval: float = 5.0):
        while True:
            changed = self._detect_changes()
            if changed:
                logger.debug("Configuration files changed, triggering reload", config={"changed_files": changed})
                self.reload_config()
            await asyncio.sleep(interval)

    def start_reloader_task(self):
        self._reloader_task = asyncio.create_task(self._reload_config_task())
        return self._reloader_task

    async def stop_reloader_task(self):
        if self._reloader_task is None:
            return
        self._reloader_task.cancel()
        try:
            await self._reloader_task
        except asyncio.CancelledError:
            pass
        self._reloader_task = None
