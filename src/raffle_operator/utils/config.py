"""
Configuration Management
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from raffle_operator.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_FILE = Path(__file__).resolve().parents[3] / "config" / "raffle.conf"

# Environment prefix -> config section
ENV_SECTIONS = {
    "RAFFLE_": "raffle",
    "VRF_": "vrf",
    "BLOCKCHAIN_": "blockchain",
    "OPERATOR_": "operator",
    "SERVER_": "server",
    "APP_": "app",
}


def load_config(config_file: Optional[Path] = None, environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Load configuration from the JSON config file and environment variables"""
    config: Dict[str, Any] = {}

    config_file = Path(config_file) if config_file else DEFAULT_CONFIG_FILE
    if config_file.exists():
        try:
            with open(config_file, 'r') as f:
                file_config = json.load(f)
                config.update(file_config)
                logger.info(f"Loaded configuration from {config_file}")
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error loading config file: {e}")
    else:
        logger.warning(f"Config file {config_file} not found. Will only use environment variables.")

    # Override with environment variables, usually defined in .env
    config = _apply_env_overrides(config, os.environ if environ is None else environ)

    logger.debug(f"Configuration after applying environment overrides: {json.dumps(_redacted(config), indent=2)}")

    return config


def _apply_env_overrides(config: Dict[str, Any], environ: Dict[str, str]) -> Dict[str, Any]:
    """Apply environment variable overrides to configuration"""
    for key, value in environ.items():
        # Convert key from PREFIX_NAME to section.name format
        for prefix, section in ENV_SECTIONS.items():
            if key.startswith(prefix):
                name = key[len(prefix):].lower()
                config.setdefault(section, {})[name] = value
                break

    return config


def _redacted(config: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of config with secrets masked for logging"""
    masked: Dict[str, Any] = {}
    for section, values in config.items():
        if isinstance(values, dict):
            masked[section] = {
                k: ("***" if "private_key" in k or "secret" in k else v) for k, v in values.items()
            }
        else:
            masked[section] = values
    return masked


def get_config_value(config: Dict[str, Any], key_path: str, default=None):
    """Get configuration value by dot-separated key path"""
    keys = key_path.split('.')
    value = config

    try:
        for key in keys:
            value = value[key]
        return value
    except (KeyError, TypeError):
        return default
