"""
Configuration loader
Supports loading configuration from TOML and YAML files, with environment variable override support
"""

import os
import re
from pathlib import Path
from typing import Any, Dict, Optional

import toml
import yaml

from worklens.core.logger import get_logger
from worklens.core.paths import get_config_dir

logger = get_logger(__name__)

# Sections owned by the backend; a user config cannot override them
SYSTEM_SECTIONS = {
    "pipeline",  # Batch sizes, similarity bands, merge thresholds
    "worker",  # Sweep cadence, background queue sizing
    "logging",  # Log level, file rotation
}

_ENV_PATTERN = re.compile(r"\$\{([^}:]+)(?::([^}]*))?\}")


class ConfigLoader:
    """Configuration loader class"""

    def __init__(self, config_file: Optional[str] = None):
        self.config_file = config_file or self._get_default_config_file()
        self._config: Dict[str, Any] = {}

    def _get_default_config_file(self) -> str:
        """User configuration file, created from a template on first load"""
        user_config_file = get_config_dir() / "config.toml"
        logger.debug(f"Using user configuration file: {user_config_file}")
        return str(user_config_file)

    def load(self) -> Dict[str, Any]:
        """Load configuration, create default configuration if it doesn't exist

        Configuration hierarchy (later overrides earlier):
        1. Project default config (worklens/config/config.toml)
        2. User config (~/.config/worklens/config.toml)
        """
        config_path = Path(self.config_file)

        if not config_path.exists():
            logger.debug(f"Configuration file doesn't exist: {self.config_file}")
            self._create_default_config(config_path)

        try:
            project_config = self._load_project_config()

            with open(self.config_file, "r", encoding="utf-8") as f:
                config_content = f.read()

            config_content = self._replace_env_vars(config_content)

            if self.config_file.endswith((".yaml", ".yml")):
                user_config = yaml.safe_load(config_content) or {}
            else:
                user_config = toml.loads(config_content)

            self._config = self._merge_configs(project_config, user_config)

            logger.debug(f"✓ Configuration file loaded successfully: {self.config_file}")
            return self._config

        except (yaml.YAMLError, toml.TomlDecodeError) as e:
            logger.error(f"Configuration file parsing error: {e}")
            raise
        except Exception as e:
            logger.error(f"Configuration loading failed: {e}")
            raise

    def _load_project_config(self) -> Dict[str, Any]:
        """Load project default configuration shipped next to this module

        Returns:
            Project configuration dictionary, or empty dict if file doesn't exist
        """
        project_config_file = Path(__file__).parent / "config.toml"

        if not project_config_file.exists():
            logger.debug(f"Project config file not found: {project_config_file}")
            return {}

        try:
            with open(project_config_file, "r", encoding="utf-8") as f:
                config_content = f.read()

            project_config = toml.loads(self._replace_env_vars(config_content))
            logger.debug(f"✓ Project config loaded: {project_config_file}")
            return project_config

        except Exception as e:
            logger.warning(f"Failed to load project config: {e}")
            return {}

    def _merge_configs(
        self, base: Dict[str, Any], override: Dict[str, Any], top_level: bool = True
    ) -> Dict[str, Any]:
        """Deep merge two configuration dictionaries

        Args:
            base: Base configuration (project defaults)
            override: Override configuration (user config)
            top_level: Whether system sections should be filtered at this level

        Returns:
            Merged configuration dictionary
        """
        result = base.copy()

        for key, value in override.items():
            if top_level and key in SYSTEM_SECTIONS:
                logger.debug(
                    f"Ignoring system-level section in user config: [{key}] "
                    "(use project config for system settings)"
                )
                continue

            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value, top_level=False)
            else:
                result[key] = value

        return result

    def _create_default_config(self, config_path: Path) -> None:
        """Create default configuration file"""
        try:
            config_path.parent.mkdir(parents=True, exist_ok=True)

            with open(config_path, "w", encoding="utf-8") as f:
                f.write(self._get_default_config_content(config_path.parent))

            logger.debug(f"✓ Default configuration file created: {config_path}")

        except Exception as e:
            logger.error(f"Failed to create default configuration file: {e}")
            raise

    def _get_default_config_content(self, config_dir: Path) -> str:
        """Template for the user configuration file

        Only user-level settings belong here; thresholds and worker sizing
        live in worklens/config/config.toml.
        """
        return f"""# WorkLens User Configuration File
#
# This file contains USER-LEVEL settings only.
# [pipeline], [worker] and [logging] sections are ignored here.

[database]
# Database storage location
path = '{config_dir / "worklens.db"}'

[llm]
# OpenAI-compatible endpoint used for classification and embeddings
base_url = "${{WORKLENS_LLM_BASE_URL:https://api.openai.com/v1}}"
api_key = "${{WORKLENS_LLM_API_KEY:}}"
model = "gpt-4o-mini"
embedding_model = "text-embedding-3-small"
"""

    def _replace_env_vars(self, content: str) -> str:
        """Replace ${VAR_NAME} or ${VAR_NAME:default_value} placeholders"""

        def replace_var(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) else ""
            return os.getenv(var_name, default_value)

        return _ENV_PATTERN.sub(replace_var, content)

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value, supports dot-separated nested keys"""
        value: Any = self._config

        try:
            for k in key.split("."):
                value = value[k]
            return value
        except (KeyError, TypeError):
            return default

    def as_dict(self) -> Dict[str, Any]:
        return self._config


# Global configuration instance
_config_instance: Optional[ConfigLoader] = None


def get_config(config_file: Optional[str] = None) -> ConfigLoader:
    """Get global configuration instance"""
    global _config_instance
    if config_file is not None:
        _config_instance = ConfigLoader(config_file)
        _config_instance.load()
    elif _config_instance is None:
        _config_instance = ConfigLoader()
        _config_instance.load()
    return _config_instance


def reset_config() -> None:
    """Drop the global instance (mainly for testing)"""
    global _config_instance
    _config_instance = None
