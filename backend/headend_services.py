#!/usr/bin/env python3
"""
Wiring of the backend components.

HeadendServices builds every component from a HeadendConfig and owns the
shared instances (one analysis cache, one controller). The web layer reaches
them through get_services(); tests install fakes with set_services().
"""

import threading
from typing import List, Optional

from analysis_cache import AnalysisCache
from bulk_orchestrator import BulkOrchestrator
from channel_config_store import ChannelConfigStore
from command_executor import CommandExecutor
from config_applier import ConfigApplier
from headend_config import HeadendConfig, get_headend_config
from headend_errors import NotFound
from log_service import LogService
from logging_config import setup_logging
from process_controller import ProcessController
from stream_analyzer import MockStreamAnalyzer, StreamAnalyzer
from unit_resolver import UnitResolver

logger = setup_logging(__name__)


class HeadendServices:
    """Container for the configured backend components."""

    def __init__(self, config: HeadendConfig, executor: Optional[CommandExecutor] = None):
        self.config = config
        self.executor = executor or CommandExecutor()
        self.mock_mode = config.get('mock_mode')

        self.resolver = UnitResolver(config.get_service_patterns())
        self.controller = ProcessController(
            self.resolver,
            executor=self.executor,
            timeout=config.get('systemctl_timeout'),
            settle_delay=config.get('settle_delay'),
            use_sudo=config.get('use_sudo'),
        )
        self.bulk = BulkOrchestrator(
            self.controller,
            self.channel_ids,
            max_workers=config.get('bulk_max_workers'),
            timeout=config.get('bulk_timeout'),
        )

        analyzer_cls = MockStreamAnalyzer if self.mock_mode else StreamAnalyzer
        self.analyzer = analyzer_cls(
            executor=self.executor,
            feed_dir=config.get('feed_dir'),
            feed_pattern=config.get('feed_pattern'),
            analyzer_timeout=config.get('analyzer_timeout'),
            capture_timeout=config.get('capture_timeout'),
            quick_timeout=config.get('quick_timeout'),
            quick_capture_timeout=config.get('quick_capture_timeout'),
            sample_seconds=config.get('sample_seconds'),
            allow_regular_feed=config.get('allow_regular_feed'),
        )
        self.analysis_cache = AnalysisCache(self.analyzer.analyze, ttl=config.get('analysis_ttl'))

        self.store = ChannelConfigStore(config.get('channel_config_dir'))
        self.applier = ConfigApplier(self.store, self.controller)
        self.logs = LogService(
            self.resolver,
            executor=self.executor,
            timeout=config.get('journal_timeout'),
            max_lines=config.get('log_max_lines'),
        )

        if self.mock_mode:
            logger.info("Mock mode enabled: stream analysis uses synthetic data")

    def channel_ids(self) -> List[int]:
        return self.config.get_channel_ids()

    def require_channel(self, channel_id: int) -> int:
        """Return channel_id if it is configured.

        Raises:
            NotFound: If the channel is outside the configured range
        """
        if channel_id not in self.channel_ids():
            raise NotFound(f"Channel {channel_id} not found")
        return channel_id


# Global singleton instance
_services: Optional[HeadendServices] = None
_services_lock = threading.Lock()


def get_services() -> HeadendServices:
    """Get the global service container, building it on first use."""
    global _services
    with _services_lock:
        if _services is None:
            _services = HeadendServices(get_headend_config())
        return _services


def set_services(services: Optional[HeadendServices]) -> None:
    """Replace the global service container (None rebuilds it on next use)."""
    global _services
    with _services_lock:
        _services = services
