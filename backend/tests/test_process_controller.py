#!/usr/bin/env python3
"""
Unit tests for systemd service control.

systemctl is replaced by a fake executor returning canned output.
"""

import unittest
import sys
import os
from datetime import datetime, timezone

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fake_executor import FakeExecutor, running_unit, show_output, stopped_unit
from headend_errors import InvalidAction, ProcessControlFailure, UnknownServiceKind
from process_controller import (
    ProcessController,
    ServiceStatus,
    format_uptime,
    map_status,
    parse_systemd_timestamp,
)
from unit_resolver import UnitResolver

NOW = datetime(2024, 3, 4, 11, 0, 0, tzinfo=timezone.utc)


def make_controller(executor, **kwargs):
    kwargs.setdefault('clock', lambda: NOW)
    kwargs.setdefault('sleep', lambda seconds: None)
    return ProcessController(UnitResolver(), executor=executor, **kwargs)


class TestStatusMapping(unittest.TestCase):
    """Test mapping of systemd states."""

    def test_active_states(self):
        self.assertEqual(map_status('active'), ServiceStatus.RUNNING)
        self.assertEqual(map_status('activating'), ServiceStatus.STARTING)
        self.assertEqual(map_status('deactivating'), ServiceStatus.STOPPING)
        self.assertEqual(map_status('failed'), ServiceStatus.ERROR)
        self.assertEqual(map_status('inactive'), ServiceStatus.STOPPED)

    def test_missing_unit(self):
        self.assertEqual(map_status('inactive', 'not-found'), ServiceStatus.NOT_FOUND)


class TestTimestampParsing(unittest.TestCase):
    """Test parsing of systemd timestamps."""

    def test_utc(self):
        parsed = parse_systemd_timestamp('Mon 2024-03-04 10:00:00 UTC')
        self.assertEqual(parsed, datetime(2024, 3, 4, 10, 0, 0, tzinfo=timezone.utc))

    def test_numeric_offset(self):
        parsed = parse_systemd_timestamp('Mon 2024-03-04 12:00:00 +0200')
        self.assertEqual(parsed, datetime(2024, 3, 4, 10, 0, 0, tzinfo=timezone.utc))

    def test_unix_form(self):
        parsed = parse_systemd_timestamp('@1709546400')
        self.assertEqual(parsed, datetime(2024, 3, 4, 10, 0, 0, tzinfo=timezone.utc))

    def test_empty_and_garbage(self):
        self.assertIsNone(parse_systemd_timestamp(''))
        self.assertIsNone(parse_systemd_timestamp('n/a'))
        self.assertIsNone(parse_systemd_timestamp('yesterday-ish'))

    def test_format_uptime(self):
        self.assertEqual(format_uptime(12), '12s')
        self.assertEqual(format_uptime(3725), '1h 2m 5s')
        self.assertEqual(format_uptime(93784), '1d 2h 3m')
        self.assertIsNone(format_uptime(None))


class TestProbe(unittest.TestCase):
    """Test probing of unit state."""

    def setUp(self):
        self.executor = FakeExecutor()
        self.controller = make_controller(self.executor)

    def test_running_unit(self):
        running_unit(self.executor, 'rx5001.service')
        state = self.controller.probe(5001, 'ingest')

        self.assertEqual(state.status, ServiceStatus.RUNNING)
        self.assertEqual(state.pid, 4242)
        self.assertEqual(state.uptime_seconds, 3600)
        self.assertEqual(state.memory_bytes, 52428800)
        self.assertEqual(state.to_dict()['memory_mb'], 50)
        self.assertEqual(state.to_dict()['uptime'], '1h 0m 0s')

    def test_stopped_unit_is_a_reading(self):
        """is-active exits 3 for inactive units; that is not a failure."""
        stopped_unit(self.executor, 'rec5001.service')
        state = self.controller.probe(5001, 'record')

        self.assertEqual(state.status, ServiceStatus.STOPPED)
        self.assertIsNone(state.pid)
        self.assertIsNone(state.uptime_seconds)
        self.assertIsNone(state.memory_bytes)

    def test_pid_only_for_live_statuses(self):
        """A failed unit reports no pid even if systemd still shows one."""
        self.executor.on('is-active', 'rx5001.service', stdout='failed\n', returncode=3)
        self.executor.on('show', 'rx5001.service',
                         stdout=show_output(999, 'Mon 2024-03-04 10:00:00 UTC', '1024', 'loaded', 'failed'))
        state = self.controller.probe(5001, 'ingest')

        self.assertEqual(state.status, ServiceStatus.ERROR)
        self.assertIsNone(state.pid)
        self.assertIsNone(state.uptime_seconds)

    def test_pid_invariant_across_states(self):
        for active, sub in (('active', 'running'), ('activating', 'start'), ('deactivating', 'stop-sigterm'),
                            ('inactive', 'dead'), ('failed', 'failed')):
            executor = FakeExecutor()
            executor.on('is-active', 'rx5001.service', stdout=f'{active}\n', returncode=0 if active == 'active' else 3)
            executor.on('show', 'rx5001.service',
                        stdout=show_output(77, 'Mon 2024-03-04 10:00:00 UTC', '1', 'loaded', sub))
            state = make_controller(executor).probe(5001, 'ingest')
            if state.status in (ServiceStatus.RUNNING, ServiceStatus.STOPPING):
                self.assertEqual(state.pid, 77, active)
            else:
                self.assertIsNone(state.pid, active)

    def test_not_found_unit(self):
        self.executor.on('is-active', 'rtmp5001.service', stdout='inactive\n', returncode=3)
        self.executor.on('show', 'rtmp5001.service', stdout=show_output(0, '', '[not set]', 'not-found', 'dead'))
        state = self.controller.probe(5001, 'publish')
        self.assertEqual(state.status, ServiceStatus.NOT_FOUND)

    def test_memory_sentinel_omitted(self):
        running_unit(self.executor, 'rx5001.service', memory=str(2 ** 64 - 1))
        self.assertIsNone(self.controller.probe(5001, 'ingest').memory_bytes)

    def test_future_start_has_no_uptime(self):
        running_unit(self.executor, 'rx5001.service', active_enter='Mon 2024-03-04 12:00:00 UTC')
        self.assertIsNone(self.controller.probe(5001, 'ingest').uptime_seconds)

    def test_unparseable_start_has_no_uptime(self):
        running_unit(self.executor, 'rx5001.service', active_enter='garbage')
        state = self.controller.probe(5001, 'ingest')
        self.assertEqual(state.status, ServiceStatus.RUNNING)
        self.assertIsNone(state.uptime_seconds)

    def test_probe_is_unprivileged(self):
        running_unit(self.executor, 'rx5001.service')
        self.controller.probe(5001, 'ingest')
        self.assertEqual(self.executor.commands('sudo'), [])

    def test_systemctl_timeout(self):
        self.executor.on('is-active', timeout=True)
        with self.assertRaises(ProcessControlFailure) as ctx:
            self.controller.probe(5001, 'ingest')
        self.assertEqual(ctx.exception.unit, 'rx5001.service')
        self.assertIn('timed out', ctx.exception.diagnostic)

    def test_missing_systemctl(self):
        self.executor.on('is-active', stderr='systemctl: command not found', returncode=127)
        with self.assertRaises(ProcessControlFailure) as ctx:
            self.controller.probe(5001, 'ingest')
        self.assertIn('command not found', ctx.exception.diagnostic)

    def test_probe_channel_isolates_failures(self):
        running_unit(self.executor, 'rx5001.service')
        stopped_unit(self.executor, 'rec5001.service')
        self.executor.on('show', 'rtmp5001.service', stderr='Failed to connect to bus', returncode=1)
        self.executor.on('is-active', 'rtmp5001.service', stdout='inactive\n', returncode=3)

        states = self.controller.probe_channel(5001)

        self.assertEqual(states['ingest'].status, ServiceStatus.RUNNING)
        self.assertEqual(states['record'].status, ServiceStatus.STOPPED)
        self.assertEqual(states['publish'].status, ServiceStatus.UNKNOWN)
        self.assertEqual(states['publish'].error, 'Failed to connect to bus')


class TestControl(unittest.TestCase):
    """Test start/stop/restart."""

    def setUp(self):
        self.executor = FakeExecutor()
        self.sleeps = []
        self.controller = make_controller(self.executor, sleep=self.sleeps.append)

    def test_start_then_probe(self):
        running_unit(self.executor, 'rx5001.service')
        state = self.controller.control(5001, 'ingest', 'start')

        self.assertEqual(state.status, ServiceStatus.RUNNING)
        self.assertIsNotNone(state.pid)
        self.assertEqual(self.executor.calls[0][0], ['sudo', '-n', 'systemctl', 'start', 'rx5001.service'])
        self.assertEqual(self.sleeps, [0.5])

    def test_stop_then_probe(self):
        stopped_unit(self.executor, 'rx5001.service')
        state = self.controller.control(5001, 'ingest', 'stop')

        self.assertEqual(state.status, ServiceStatus.STOPPED)
        self.assertIsNone(state.pid)

    def test_without_sudo(self):
        controller = make_controller(self.executor, use_sudo=False)
        stopped_unit(self.executor, 'rec5002.service')
        controller.control(5002, 'record', 'restart')
        self.assertEqual(self.executor.calls[0][0], ['systemctl', 'restart', 'rec5002.service'])

    def test_invalid_action_makes_no_call(self):
        with self.assertRaises(InvalidAction):
            self.controller.control(5001, 'ingest', 'reload')
        self.assertEqual(self.executor.calls, [])

    def test_unknown_kind_makes_no_call(self):
        with self.assertRaises(UnknownServiceKind):
            self.controller.control(5001, 'transcoder', 'start')
        self.assertEqual(self.executor.calls, [])

    def test_failed_action_raises_without_retry(self):
        self.executor.on('start', 'rx5001.service',
                         stderr='sudo: a password is required', returncode=1)
        with self.assertRaises(ProcessControlFailure) as ctx:
            self.controller.control(5001, 'ingest', 'start')

        self.assertEqual(ctx.exception.unit, 'rx5001.service')
        self.assertEqual(ctx.exception.diagnostic, 'sudo: a password is required')
        self.assertEqual(len(self.executor.commands('start')), 1)
        self.assertEqual(self.sleeps, [])


class TestAutostart(unittest.TestCase):
    """Test enable/disable and is-enabled."""

    def setUp(self):
        self.executor = FakeExecutor()
        self.controller = make_controller(self.executor)

    def test_enable(self):
        self.assertTrue(self.controller.set_enabled(5001, 'ingest', True))
        self.assertEqual(self.executor.calls[0][0], ['sudo', '-n', 'systemctl', 'enable', 'rx5001.service'])

    def test_disable_failure(self):
        self.executor.on('disable', stderr='Access denied', returncode=1)
        with self.assertRaises(ProcessControlFailure):
            self.controller.set_enabled(5001, 'ingest', False)

    def test_is_enabled(self):
        self.executor.on('is-enabled', 'rx5001.service', stdout='enabled\n')
        self.executor.on('is-enabled', 'rec5001.service', stdout='disabled\n', returncode=1)
        self.assertTrue(self.controller.is_enabled(5001, 'ingest'))
        self.assertFalse(self.controller.is_enabled(5001, 'record'))

    def test_is_enabled_timeout_is_false(self):
        self.executor.on('is-enabled', timeout=True)
        self.assertFalse(self.controller.is_enabled(5001, 'ingest'))

    def test_check_available(self):
        self.assertTrue(self.controller.check_available())
        self.executor.on('--version', stderr='systemctl: command not found', returncode=127)
        self.assertFalse(self.controller.check_available())


if __name__ == '__main__':
    unittest.main()
