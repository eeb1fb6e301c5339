#!/usr/bin/env python3
"""
Unit tests for the head-end configuration manager.

Tests the priority order: environment variable > JSON file > default.
"""

import json
import os
import shutil
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from headend_config import DEFAULTS, HeadendConfig


class TestHeadendConfig(unittest.TestCase):
    """Test configuration loading and priority."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.temp_dir)
        self.config_file = Path(self.temp_dir) / 'headend_config.json'

        env_patch = patch.dict(os.environ)
        env_patch.start()
        self.addCleanup(env_patch.stop)
        for key in DEFAULTS:
            os.environ.pop(key.upper(), None)

    def write_config(self, data):
        with open(self.config_file, 'w') as f:
            json.dump(data, f)

    def test_defaults(self):
        config = HeadendConfig(self.config_file)
        self.assertEqual(config.get_channel_ids(), list(range(5001, 5010)))
        self.assertEqual(config.get('service_pattern_ingest'), 'rx{channel}.service')
        self.assertEqual(config.get('analysis_ttl'), 2.0)
        self.assertFalse(config.get('mock_mode'))

    def test_file_overrides_default(self):
        self.write_config({'channel_start': 6001, 'channel_count': 2, 'bogus': 1})
        config = HeadendConfig(self.config_file)
        self.assertEqual(config.get_channel_ids(), [6001, 6002])

    def test_env_overrides_file(self):
        self.write_config({'channel_count': 2})
        os.environ['CHANNEL_COUNT'] = '4'
        os.environ['MOCK_MODE'] = 'true'
        config = HeadendConfig(self.config_file)
        self.assertEqual(len(config.get_channel_ids()), 4)
        self.assertTrue(config.get('mock_mode'))

    def test_invalid_env_value_falls_back(self):
        os.environ['CHANNEL_COUNT'] = 'many'
        config = HeadendConfig(self.config_file)
        self.assertEqual(config.get('channel_count'), 9)

    def test_dotenv_file_is_loaded(self):
        with open(Path(self.temp_dir) / '.env', 'w') as f:
            f.write('SETTLE_DELAY=1.5\n')
        config = HeadendConfig(self.config_file)
        self.assertEqual(config.get('settle_delay'), 1.5)

    def test_unknown_key(self):
        with self.assertRaises(KeyError):
            HeadendConfig(self.config_file).get('no_such_key')

    def test_update_config_persists(self):
        config = HeadendConfig(self.config_file)
        self.assertTrue(config.update_config(channel_count='3', use_sudo='false'))

        with open(self.config_file) as f:
            data = json.load(f)
        self.assertEqual(data, {'channel_count': 3, 'use_sudo': False})
        self.assertEqual(HeadendConfig(self.config_file).get_channel_ids(), [5001, 5002, 5003])

    def test_update_rejects_unknown_keys(self):
        config = HeadendConfig(self.config_file)
        self.assertFalse(config.update_config(colour='blue'))
        self.assertFalse(self.config_file.exists())

    def test_service_patterns(self):
        os.environ['SERVICE_PATTERN_PUBLISH'] = 'publish@{channel}.service'
        patterns = HeadendConfig(self.config_file).get_service_patterns()
        self.assertEqual(patterns['publish'], 'publish@{channel}.service')
        self.assertEqual(set(patterns), {'ingest', 'record', 'publish'})


if __name__ == '__main__':
    unittest.main()
