"""Configuration management.

Loads and merges configuration from multiple sources with proper precedence.
"""

import json
import os
from contextvars import ContextVar
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .config_loader import deep_merge, load_json_file
from .config_schema import Config, LoggingConfig, ServerConfig
from .global_paths import GlobalPath
from ..util.log import Log

log = Log.create({"service": "config"})

__all__ = [
    "CONFIG_FILENAMES",
    "Config",
    "ConfigError",
    "ConfigManager",
    "LoggingConfig",
    "ServerConfig",
]

CONFIG_FILENAMES = ("crosspls.json", "crosspls.jsonc")
ENV_CONFIG_CONTENT = "CROSSPLS_CONFIG_CONTENT"


class ConfigError(Exception):
    """Configuration error."""

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(f"Config error in {path}: {message}")


_config_var: ContextVar['ConfigManager'] = ContextVar('_config_var')


class ConfigManager:
    """Configuration management.

    Instance-based with ContextVar for scoping. Class methods delegate
    to the current instance.

    Sources, lowest precedence first:
    1. Global config (crosspls.json in the user config directory)
    2. Project config (crosspls.json from the filesystem root down to the directory)
    3. CROSSPLS_CONFIG_CONTENT environment variable
    """

    def __init__(self) -> None:
        self._cache: Optional[Config] = None
        self._sources: List[str] = []

    @classmethod
    def current(cls) -> 'ConfigManager':
        try:
            return _config_var.get()
        except LookupError:
            instance = cls()
            _config_var.set(instance)
            return instance

    @classmethod
    def reset(cls) -> None:
        """Reset cached configuration."""
        inst = cls.current()
        inst._cache = None
        inst._sources = []

    @classmethod
    async def load(cls, directory: str = ".") -> Config:
        return await cls.current()._load(directory)

    @classmethod
    async def get(cls) -> Config:
        inst = cls.current()
        if inst._cache is None:
            return await inst._load()
        return inst._cache

    @classmethod
    def sources(cls) -> List[str]:
        """Files and variables that contributed to the cached config."""
        return cls.current()._sources.copy()

    async def _load(self, directory: str = ".") -> Config:
        if self._cache is not None:
            return self._cache

        result: Dict[str, Any] = {}
        sources: List[str] = []

        def merge_file(filepath: str, kind: str) -> None:
            nonlocal result
            data = load_json_file(filepath)
            if not data:
                return
            result = deep_merge(result, data)
            sources.append(filepath)
            log.info(f"loaded {kind} config", {"path": filepath})

        # 1. Global config
        for filename in CONFIG_FILENAMES:
            merge_file(os.path.join(GlobalPath.config(), filename), "global")

        # 2. Project config, root first so nearer files win
        current = Path(directory).resolve()
        ancestors: List[Path] = []
        while True:
            ancestors.append(current)
            if current == current.parent:
                break
            current = current.parent

        for ancestor in reversed(ancestors):
            for filename in CONFIG_FILENAMES:
                merge_file(str(ancestor / filename), "project")

        # 3. Environment variable config
        env_config = os.environ.get(ENV_CONFIG_CONTENT)
        if env_config:
            try:
                data = json.loads(env_config)
            except json.JSONDecodeError as e:
                raise ConfigError(ENV_CONFIG_CONTENT, str(e)) from e
            result = deep_merge(result, data)
            sources.append(ENV_CONFIG_CONTENT)
            log.info("loaded config from environment", {"variable": ENV_CONFIG_CONTENT})

        try:
            config = Config.model_validate(result)
        except ValidationError as e:
            origin = sources[-1] if sources else "<defaults>"
            raise ConfigError(origin, str(e)) from e

        self._sources = sources
        self._cache = config
        return config
