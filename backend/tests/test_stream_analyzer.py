#!/usr/bin/env python3
"""
Unit tests for transport-stream sampling.

Feeds are real FIFOs in a temporary directory; the TSDuck tools are
replaced by a fake executor, so nothing ever reads the pipes.
"""

import json
import os
import shutil
import sys
import tempfile
import unittest

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fake_executor import FakeExecutor
from stream_analyzer import (
    FEED_NOT_FOUND,
    NO_STREAM_DATA,
    PARSE_FAILURE,
    MockStreamAnalyzer,
    StreamAnalyzer,
)

ANALYSIS_JSON = json.dumps({
    'ts': {'bitrate': 10_000_000},
    'pids': [{'pid': 256, 'bitrate': 9_000_000}, {'pid': 8191, 'bitrate': 500_000}],
    'services': [],
})


class AnalyzerTestCase(unittest.TestCase):
    def setUp(self):
        self.feed_dir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.feed_dir)
        self.executor = FakeExecutor()
        self.analyzer = StreamAnalyzer(executor=self.executor, feed_dir=self.feed_dir)

    def make_feed(self, channel_id):
        os.mkfifo(os.path.join(self.feed_dir, f'channel{channel_id}.ts'))


class TestFeedCheck(AnalyzerTestCase):
    """Test feed presence checks."""

    def test_fifo_is_available(self):
        self.make_feed(5001)
        self.assertTrue(self.analyzer.feed_available(5001))

    def test_missing_feed(self):
        self.assertFalse(self.analyzer.feed_available(5001))

    def test_regular_file_needs_opt_in(self):
        path = os.path.join(self.feed_dir, 'channel5001.ts')
        with open(path, 'wb') as f:
            f.write(b'\x47' * 188)
        self.assertFalse(self.analyzer.feed_available(5001))
        self.analyzer.allow_regular_feed = True
        self.assertTrue(self.analyzer.feed_available(5001))


class TestFullAnalysis(AnalyzerTestCase):
    """Test tsanalyze invocation and failure reasons."""

    def test_missing_feed_runs_nothing(self):
        analysis = self.analyzer.analyze(5001)
        self.assertFalse(analysis.available)
        self.assertEqual(analysis.error, FEED_NOT_FOUND)
        self.assertEqual(self.executor.calls, [])

    def test_successful_analysis(self):
        self.make_feed(5001)
        self.executor.on('tsanalyze', stdout=ANALYSIS_JSON)
        analysis = self.analyzer.analyze(5001)

        self.assertTrue(analysis.available)
        self.assertEqual(analysis.total_bps, 10_000_000)
        self.assertEqual([p.pid for p in analysis.pids], [256])

        command, timeout = self.executor.calls[0]
        feed = os.path.join(self.feed_dir, 'channel5001.ts')
        self.assertEqual(command, ['timeout', '3', 'tsanalyze', '--json', feed, '--duration', '1'])
        self.assertEqual(timeout, 5.0)

    def test_capture_timeout_exit(self):
        self.make_feed(5001)
        self.executor.on('tsanalyze', returncode=124)
        self.assertEqual(self.analyzer.analyze(5001).error, NO_STREAM_DATA)

    def test_executor_timeout(self):
        self.make_feed(5001)
        self.executor.on('tsanalyze', timeout=True)
        self.assertEqual(self.analyzer.analyze(5001).error, NO_STREAM_DATA)

    def test_empty_output(self):
        self.make_feed(5001)
        self.executor.on('tsanalyze', stdout='  \n')
        self.assertEqual(self.analyzer.analyze(5001).error, NO_STREAM_DATA)

    def test_tool_error_reports_raw_text(self):
        self.make_feed(5001)
        self.executor.on('tsanalyze', stderr='* Error: tsanalyze: unknown option --json\n', returncode=1)
        analysis = self.analyzer.analyze(5001)
        self.assertFalse(analysis.available)
        self.assertEqual(analysis.error, '* Error: tsanalyze: unknown option --json')

    def test_parse_failure(self):
        self.make_feed(5001)
        self.executor.on('tsanalyze', stdout='not json at all')
        self.assertEqual(self.analyzer.analyze(5001).error, PARSE_FAILURE)

    def test_wrong_shape_is_parse_failure(self):
        self.make_feed(5001)
        self.executor.on('tsanalyze', stdout='{"ts": {"bitrate": 1000}, "pids": 5}')
        analysis = self.analyzer.analyze(5001)
        self.assertFalse(analysis.available)
        self.assertEqual(analysis.error, PARSE_FAILURE)

    def test_unavailable_serialization(self):
        data = self.analyzer.analyze(5001).to_dict()
        self.assertEqual(set(data), {'available', 'timestamp', 'error'})


class TestQuickBitrate(AnalyzerTestCase):
    """Test tsbitrate invocation."""

    def test_missing_feed_runs_nothing(self):
        reading = self.analyzer.quick_bitrate(5001)
        self.assertFalse(reading.available)
        self.assertEqual(reading.error, FEED_NOT_FOUND)
        self.assertEqual(self.executor.calls, [])

    def test_reading(self):
        self.make_feed(5002)
        self.executor.on('tsbitrate', stdout='* Transport stream bitrate: 25,432,100 b/s\n')
        reading = self.analyzer.quick_bitrate(5002)

        self.assertTrue(reading.available)
        self.assertEqual(reading.bps, 25432100)
        self.assertEqual(reading.to_dict()['bitrate']['total_mbps'], '25.43')
        command, timeout = self.executor.calls[0]
        self.assertEqual(command[:3], ['timeout', '2', 'tsbitrate'])
        self.assertEqual(timeout, 3.0)

    def test_no_reading(self):
        self.make_feed(5002)
        self.executor.on('tsbitrate', stdout='')
        reading = self.analyzer.quick_bitrate(5002)
        self.assertFalse(reading.available)
        self.assertIsNotNone(reading.error)

    def test_timeout(self):
        self.make_feed(5002)
        self.executor.on('tsbitrate', returncode=124)
        self.assertEqual(self.analyzer.quick_bitrate(5002).error, NO_STREAM_DATA)

    def test_summarize(self):
        self.make_feed(5001)
        self.executor.on('tsbitrate', stdout='1,000 b/s')
        readings = self.analyzer.summarize([5001, 5002])
        self.assertEqual([r.available for r in readings], [True, False])
        self.assertEqual(len(self.executor.calls), 1)


class TestMockAnalyzer(unittest.TestCase):
    """Test the synthetic analyzer."""

    def test_produces_both_outcomes(self):
        analyzer = MockStreamAnalyzer(seed=7)
        results = [analyzer.analyze(5001) for _ in range(50)]
        available = [r for r in results if r.available]

        self.assertTrue(available)
        self.assertTrue(any(not r.available for r in results))
        for analysis in available:
            self.assertTrue(20_000_000 <= analysis.total_bps <= 30_000_000)
            self.assertNotIn(8191, [p.pid for p in analysis.pids])

    def test_quick_bitrate(self):
        reading = MockStreamAnalyzer(seed=1).quick_bitrate(5003)
        self.assertEqual(reading.channel_id, 5003)
        if reading.available:
            self.assertGreater(reading.bps, 0)


if __name__ == '__main__':
    unittest.main()
