#!/usr/bin/env python3
"""
Head-end Configuration Manager

Manages backend settings (channel range, unit name patterns, feed locations,
timeouts) with priority:
1. Environment variables (override, optionally loaded from CONFIG_DIR/.env)
2. JSON configuration file (headend_config.json)
3. Built-in defaults
"""

import json
import os
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from logging_config import setup_logging

logger = setup_logging(__name__)

# Configuration directory
CONFIG_DIR = Path(os.environ.get('CONFIG_DIR', '/etc/headend'))
HEADEND_CONFIG_FILE = CONFIG_DIR / 'headend_config.json'

DEFAULTS: Dict[str, Any] = {
    'channel_start': 5001,
    'channel_count': 9,
    'service_pattern_ingest': 'rx{channel}.service',
    'service_pattern_record': 'rec{channel}.service',
    'service_pattern_publish': 'rtmp{channel}.service',
    'feed_dir': '/var/run/headend',
    'feed_pattern': 'channel{channel}.ts',
    'allow_regular_feed': False,
    'channel_config_dir': '/etc/headend/channels',
    'use_sudo': True,
    'systemctl_timeout': 30.0,
    'settle_delay': 0.5,
    'bulk_max_workers': 10,
    'bulk_timeout': 60.0,
    'analysis_ttl': 2.0,
    'analyzer_timeout': 5.0,
    'capture_timeout': 3,
    'quick_timeout': 3.0,
    'quick_capture_timeout': 2,
    'sample_seconds': 1,
    'journal_timeout': 10.0,
    'log_max_lines': 200,
    'mock_mode': False,
}

TRUTHY = ('true', '1', 'yes', 'on')


def _coerce(key: str, value: Any) -> Any:
    """Coerce a raw value (usually a string from the environment) to the default's type."""
    default = DEFAULTS[key]
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in TRUTHY
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    return str(value)


class HeadendConfig:
    """
    Manages head-end backend configuration.

    Priority order:
    1. Environment variables (override)
    2. JSON configuration file
    3. Defaults
    """

    def __init__(self, config_file: Optional[Path] = None):
        """Initialize the configuration manager.

        Args:
            config_file: Path of the JSON file, defaults to CONFIG_DIR/headend_config.json
        """
        self._lock = threading.Lock()
        self._config_file = Path(config_file) if config_file else HEADEND_CONFIG_FILE
        self._config: Dict[str, Any] = {}
        self._load_env_file()
        self._load_config()
        logger.info("Head-end configuration manager initialized")

    def _load_env_file(self) -> None:
        """Load variables from a .env file next to the JSON config, if present."""
        env_path = self._config_file.parent / '.env'
        if env_path.exists():
            load_dotenv(dotenv_path=env_path)
            logger.info(f"Loaded environment overrides from {env_path}")

    def _load_config(self) -> None:
        """Load configuration from file."""
        try:
            if self._config_file.exists():
                with open(self._config_file, 'r') as f:
                    data = json.load(f)
                unknown = [k for k in data if k not in DEFAULTS]
                if unknown:
                    logger.warning(f"Ignoring unknown configuration keys: {', '.join(sorted(unknown))}")
                self._config = {k: v for k, v in data.items() if k in DEFAULTS}
                logger.info("Loaded head-end configuration from file")
            else:
                self._config = {}
                logger.info("No existing head-end configuration file, using defaults")
        except Exception as e:
            logger.error(f"Error loading head-end configuration: {e}", exc_info=True)
            self._config = {}

    def _save_config(self) -> bool:
        """Save configuration to file.

        Returns:
            True if successful, False otherwise
        """
        try:
            self._config_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self._config_file, 'w') as f:
                json.dump(self._config, f, indent=2)
            logger.info("Head-end configuration saved to file")
            return True
        except Exception as e:
            logger.error(f"Error saving head-end configuration: {e}", exc_info=True)
            return False

    def get(self, key: str) -> Any:
        """Get a setting.

        Priority: Environment variable > Config file > Default

        Raises:
            KeyError: If the key is not a known setting
        """
        if key not in DEFAULTS:
            raise KeyError(key)

        env_value = os.getenv(key.upper())
        if env_value is not None and env_value != '':
            try:
                return _coerce(key, env_value)
            except ValueError:
                logger.warning(f"Invalid value for {key.upper()}={env_value!r}, ignoring")

        with self._lock:
            if key in self._config:
                try:
                    return _coerce(key, self._config[key])
                except (TypeError, ValueError):
                    logger.warning(f"Invalid value for {key} in config file, using default")
        return DEFAULTS[key]

    def get_channel_ids(self) -> List[int]:
        """Get the list of configured channel IDs.

        Returns:
            Consecutive channel IDs starting at channel_start
        """
        start = self.get('channel_start')
        count = max(0, self.get('channel_count'))
        return list(range(start, start + count))

    def get_service_patterns(self) -> Dict[str, str]:
        """Get the unit name template for each service kind."""
        return {
            'ingest': self.get('service_pattern_ingest'),
            'record': self.get('service_pattern_record'),
            'publish': self.get('service_pattern_publish'),
        }

    def get_config(self) -> Dict[str, Any]:
        """Get the complete effective configuration.

        Returns:
            Dictionary of every setting with its effective value
        """
        return {key: self.get(key) for key in DEFAULTS}

    def update_config(self, **values) -> bool:
        """Update configuration and save to file.

        Args:
            **values: Settings to change; unknown keys are rejected

        Returns:
            True if successful, False otherwise
        """
        unknown = [k for k in values if k not in DEFAULTS]
        if unknown:
            logger.error(f"Unknown configuration keys: {', '.join(sorted(unknown))}")
            return False

        with self._lock:
            for key, value in values.items():
                try:
                    self._config[key] = _coerce(key, value)
                except (TypeError, ValueError):
                    logger.error(f"Invalid value for {key}: {value!r}")
                    return False
            return self._save_config()


# Global singleton instance
_headend_config: Optional[HeadendConfig] = None
_config_lock = threading.Lock()


def get_headend_config() -> HeadendConfig:
    """Get the global head-end configuration singleton instance.

    Returns:
        The head-end configuration instance
    """
    global _headend_config
    with _config_lock:
        if _headend_config is None:
            _headend_config = HeadendConfig()
        return _headend_config
