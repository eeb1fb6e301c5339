#!/usr/bin/env python3
"""
JSON file store for per-channel configurations.

Each channel's configuration lives in `<config_dir>/channel{id}.json`. The
service launch scripts read these files, so writes go to a temporary file
that is renamed into place.
"""

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Union

from channel_config import ChannelConfig
from headend_errors import InvalidRequest
from logging_config import setup_logging

logger = setup_logging(__name__)


class ChannelConfigStore:
    """Loads and saves channel configurations as JSON files."""

    def __init__(self, config_dir: Union[str, Path]):
        self.config_dir = Path(config_dir)
        self._lock = threading.Lock()

    def path_for(self, channel_id: int) -> Path:
        return self.config_dir / f"channel{channel_id}.json"

    def exists(self, channel_id: int) -> bool:
        return self.path_for(channel_id).exists()

    def load(self, channel_id: int) -> ChannelConfig:
        """Load a channel's configuration.

        Returns:
            The stored configuration, or the channel defaults if no file
            exists or the file cannot be read
        """
        path = self.path_for(channel_id)
        if not path.exists():
            logger.debug(f"No config file for channel {channel_id}, using defaults")
            return ChannelConfig.default_for(channel_id)
        try:
            with open(path, 'r') as f:
                data = json.load(f)
            return ChannelConfig.from_dict(data)
        except (OSError, ValueError, InvalidRequest) as e:
            logger.error(f"Error loading config for channel {channel_id} from {path}: {e}")
            return ChannelConfig.default_for(channel_id)

    def save(self, channel_id: int, config: ChannelConfig) -> bool:
        """Save a channel's configuration.

        Returns:
            True if successful, False otherwise
        """
        path = self.path_for(channel_id)
        with self._lock:
            try:
                self.config_dir.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(prefix=f".channel{channel_id}.", suffix='.tmp',
                                                dir=str(self.config_dir))
                try:
                    with os.fdopen(fd, 'w') as f:
                        json.dump(config.to_dict(), f, indent=2)
                    os.replace(tmp_name, path)
                except BaseException:
                    if os.path.exists(tmp_name):
                        os.unlink(tmp_name)
                    raise
                logger.info(f"Saved config for channel {channel_id} to {path}")
                return True
            except OSError as e:
                logger.error(f"Error saving config for channel {channel_id}: {e}", exc_info=True)
                return False
