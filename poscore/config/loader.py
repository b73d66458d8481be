"""
Configuration loader with environment variable handling.

Loads configuration from:
1. config.yaml (main config)
2. .env.local (loaded into process env, never overrides OS env)
3. Environment variables (highest priority)
"""

import os
from pathlib import Path
from typing import Any, Dict

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

# Environment variable -> (section, key)
ENV_OVERRIDES = {
    "POS_BRANCH_ID": ("terminal", "branch_id"),
    "POS_DEVICE_ID": ("terminal", "device_id"),
    "POS_TIMEZONE": ("terminal", "timezone"),
    "POS_DB_PATH": ("storage", "db_path"),
    "POS_LOG_DIR": ("logging", "log_dir"),
    "POS_LOG_LEVEL": ("logging", "log_level"),
    "POS_EXPIRY_HOURS": ("transactions", "expiry_hours"),
    "POS_RULES_FILE": ("pricing", "rules_file"),
}


class ConfigLoader:
    """
    Loads and merges configuration from multiple sources.

    Priority (highest to lowest):
    1. OS Environment variables
    2. .env.local file
    3. config.yaml
    """

    def __init__(self, config_dir: Path = Path("config")):
        self.config_dir = Path(config_dir)
        self.config_file = self.config_dir / "config.yaml"
        self.env_file = self.config_dir / ".env.local"

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from all sources.

        Returns:
            Merged configuration dictionary

        Raises:
            FileNotFoundError: If config.yaml doesn't exist
            ValueError: If the YAML file is empty
        """
        if not self.config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_file}")

        with open(self.config_file, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f)

        if config is None:
            raise ValueError(f"Empty configuration file: {self.config_file}")

        if self.env_file.exists():
            load_dotenv(self.env_file, override=False)

        return self.apply_env_overrides(config)

    @staticmethod
    def apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
        """Overlay POS_* environment variables onto a config dict."""
        for env_name, (section, key) in ENV_OVERRIDES.items():
            value = os.getenv(env_name)
            if value is None or value.strip() == "":
                continue
            config.setdefault(section, {})[key] = value.strip()
        return config

    def load_and_validate(self):
        """PosConfig from load(); pydantic errors are re-raised as ValueError."""
        from .schema import PosConfig

        config_dict = self.load()

        try:
            return PosConfig(**config_dict)
        except ValidationError as e:
            raise ValueError(f"Configuration validation failed: {e}") from e


def load_config(config_dir: Path = Path("config")):
    """Validated PosConfig from `config_dir` (config.yaml, .env.local, POS_* env)."""
    return ConfigLoader(config_dir).load_and_validate()
