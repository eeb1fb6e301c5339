#!/usr/bin/env python3
"""
Live transport-stream sampling for the head-end console.

Every channel's ingest writes its transport stream to a named pipe (the
feed). This module samples that feed with TSDuck:
- Full analysis: `tsanalyze --json` over a ~1 second window (bitrate, PIDs, services)
- Quick bitrate: `tsbitrate`, a single bits/s reading for summary views

A missing feed short-circuits both modes without running any tool. Every
failure is reported as an unavailable result carrying a distinct reason.
"""

import os
import random
import stat
import time
from pathlib import Path
from typing import Iterable, List, Optional

from analysis_models import BitrateReading, StreamAnalysis
from analysis_parser import parse_analyzer_output, parse_quick_bitrate
from command_executor import CommandExecutor, CommandTimeout
from headend_errors import AnalysisUnavailable
from logging_config import log_elapsed, setup_logging

logger = setup_logging(__name__)

FEED_NOT_FOUND = 'feed not found'
NO_STREAM_DATA = 'no stream data (timeout)'
PARSE_FAILURE = 'parse failure'
NO_BITRATE_READING = 'no bitrate reading'

# Exit status of coreutils `timeout` when the capture window expired
TIMEOUT_EXIT_CODE = 124

MAX_ERROR_CHARS = 300


class StreamAnalyzer:
    """Samples per-channel transport-stream feeds with TSDuck tools."""

    def __init__(
        self,
        executor: Optional[CommandExecutor] = None,
        feed_dir: str = '/var/run/headend',
        feed_pattern: str = 'channel{channel}.ts',
        analyzer_timeout: float = 5.0,
        capture_timeout: int = 3,
        quick_timeout: float = 3.0,
        quick_capture_timeout: int = 2,
        sample_seconds: int = 1,
        allow_regular_feed: bool = False
    ):
        """
        Args:
            executor: Runs the analyzer tools
            feed_dir: Directory holding the per-channel feeds
            feed_pattern: Feed file name template ({channel} placeholder)
            analyzer_timeout: Hard limit in seconds for a full analysis call
            capture_timeout: Seconds passed to `timeout` around tsanalyze
            quick_timeout: Hard limit in seconds for a quick bitrate call
            quick_capture_timeout: Seconds passed to `timeout` around tsbitrate
            sample_seconds: Capture window handed to the analyzer
            allow_regular_feed: Accept regular files as feeds (captures, tests)
        """
        self.executor = executor or CommandExecutor()
        self.feed_dir = Path(feed_dir)
        self.feed_pattern = feed_pattern
        self.analyzer_timeout = analyzer_timeout
        self.capture_timeout = capture_timeout
        self.quick_timeout = quick_timeout
        self.quick_capture_timeout = quick_capture_timeout
        self.sample_seconds = sample_seconds
        self.allow_regular_feed = allow_regular_feed

    def feed_path(self, channel_id: int) -> Path:
        return self.feed_dir / self.feed_pattern.format(channel=channel_id)

    def feed_available(self, channel_id: int) -> bool:
        """Check that the channel's feed exists, is a pipe and is readable."""
        path = self.feed_path(channel_id)
        try:
            mode = os.stat(path).st_mode
        except OSError:
            return False
        if not (stat.S_ISFIFO(mode) or (self.allow_regular_feed and stat.S_ISREG(mode))):
            logger.debug(f"  → {path} exists but is not a pipe")
            return False
        return os.access(path, os.R_OK)

    def _require_feed(self, channel_id: int) -> Path:
        if not self.feed_available(channel_id):
            raise AnalysisUnavailable(FEED_NOT_FOUND)
        return self.feed_path(channel_id)

    def _sample_full(self, channel_id: int) -> StreamAnalysis:
        path = self._require_feed(channel_id)
        command = [
            'timeout', str(self.capture_timeout),
            'tsanalyze', '--json', str(path),
            '--duration', str(self.sample_seconds),
        ]
        try:
            result = self.executor.run(command, timeout=self.analyzer_timeout)
        except CommandTimeout:
            raise AnalysisUnavailable(NO_STREAM_DATA)

        if result.returncode == TIMEOUT_EXIT_CODE:
            raise AnalysisUnavailable(NO_STREAM_DATA)
        if not result.ok and result.stderr.strip():
            logger.warning(f"tsanalyze failed for channel {channel_id} (exit {result.returncode})")
            logger.debug(f"  → tsanalyze stderr: {result.stderr.strip()}")
            raise AnalysisUnavailable(result.stderr.strip()[:MAX_ERROR_CHARS])
        if not result.stdout.strip():
            raise AnalysisUnavailable(NO_STREAM_DATA)
        if not result.ok:
            raise AnalysisUnavailable(result.diagnostic())

        analysis = parse_analyzer_output(result.stdout)
        if analysis is None:
            raise AnalysisUnavailable(PARSE_FAILURE)
        return analysis

    def analyze(self, channel_id: int) -> StreamAnalysis:
        """
        Run a full analysis of one channel's feed.

        Returns:
            StreamAnalysis; available=False with a reason on any failure
        """
        started = time.monotonic()
        try:
            analysis = self._sample_full(channel_id)
        except AnalysisUnavailable as e:
            logger.debug(f"Analysis unavailable for channel {channel_id}: {e.reason}")
            return StreamAnalysis.unavailable(e.reason)
        log_elapsed(logger, f"analyze channel {channel_id}", started,
                    f"{analysis.total_bps} b/s, {len(analysis.pids or [])} PIDs")
        return analysis

    def _sample_bitrate(self, channel_id: int) -> int:
        path = self._require_feed(channel_id)
        command = [
            'timeout', str(self.quick_capture_timeout),
            'tsbitrate', str(path),
            '--duration', str(self.sample_seconds),
        ]
        try:
            result = self.executor.run(command, timeout=self.quick_timeout)
        except CommandTimeout:
            raise AnalysisUnavailable(NO_STREAM_DATA)

        if result.returncode == TIMEOUT_EXIT_CODE:
            raise AnalysisUnavailable(NO_STREAM_DATA)

        bps = parse_quick_bitrate(result.stdout)
        if bps is None:
            if not result.ok and result.stderr.strip():
                raise AnalysisUnavailable(result.stderr.strip()[:MAX_ERROR_CHARS])
            raise AnalysisUnavailable(NO_BITRATE_READING)
        return bps

    def quick_bitrate(self, channel_id: int) -> BitrateReading:
        """Get a single total-bitrate reading for one channel."""
        try:
            bps = self._sample_bitrate(channel_id)
        except AnalysisUnavailable as e:
            return BitrateReading(channel_id, False, error=e.reason)
        return BitrateReading(channel_id, True, bps=bps)

    def summarize(self, channel_ids: Iterable[int]) -> List[BitrateReading]:
        """Quick bitrate readings for several channels, one after another."""
        return [self.quick_bitrate(channel_id) for channel_id in channel_ids]


class MockStreamAnalyzer(StreamAnalyzer):
    """
    Synthetic analyzer for development without live feeds.

    Roughly 30% of samples report the stream as unavailable; the others
    describe a single-service HEVC stream of 20-30 Mb/s.
    """

    def __init__(self, seed: Optional[int] = None, **kwargs):
        super().__init__(**kwargs)
        self._random = random.Random(seed)

    def feed_available(self, channel_id: int) -> bool:
        return True

    def _synthetic_payload(self, channel_id: int) -> dict:
        total = int(20_000_000 + self._random.random() * 10_000_000)
        return {
            'ts': {'bitrate': total, 'packets': total // (188 * 8), 'invalid_sync': 0, 'suspect_ignored': 0},
            'pids': [
                {'pid': 0, 'bitrate': 15_000},
                {'pid': 17, 'description': 'SDT', 'bitrate': 3_000},
                {'pid': 256, 'description': 'PMT', 'bitrate': 15_000},
                {'pid': 257, 'description': 'Video (HEVC)', 'bitrate': int(total * 0.85)},
                {'pid': 258, 'description': 'Audio (AAC)', 'bitrate': int(total * 0.08)},
                {'pid': 259, 'description': 'Audio (AC3)', 'bitrate': int(total * 0.05)},
                {'pid': 8191, 'bitrate': int(total * 0.01)},
            ],
            'services': [
                {'id': 1, 'name': f"Channel {channel_id} HD", 'provider': 'Head-end',
                 'type_name': 'Digital TV', 'pmt_pid': 256, 'pcr_pid': 257},
            ],
        }

    def analyze(self, channel_id: int) -> StreamAnalysis:
        if self._random.random() < 0.3:
            return StreamAnalysis.unavailable('Stream not available')
        return parse_analyzer_output(self._synthetic_payload(channel_id))

    def quick_bitrate(self, channel_id: int) -> BitrateReading:
        analysis = self.analyze(channel_id)
        if not analysis.available:
            return BitrateReading(channel_id, False, error=analysis.error)
        return BitrateReading(channel_id, True, bps=analysis.total_bps)
