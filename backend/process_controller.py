#!/usr/bin/env python3
"""
systemd service control for the head-end console.

Wraps systemctl for the three managed processes of every channel:
- probe: merge `is-active` and `show` output into a ServiceRuntimeState
- control: start/stop/restart, wait for the state to settle, re-probe
- autostart: enable/disable and is-enabled

Supervisor calls go through a CommandExecutor; failures surface as
ProcessControlFailure and are never retried here.
"""

import re
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from command_executor import CommandExecutor, CommandResult, CommandTimeout
from headend_errors import ProcessControlFailure
from logging_config import log_unit_transition, setup_logging
from unit_resolver import ControlAction, ServiceKind, UnitResolver

logger = setup_logging(__name__)

SHOW_PROPERTIES = 'MainPID,ActiveEnterTimestamp,MemoryCurrent,LoadState,SubState'

# systemd reports this for "infinity"/unavailable memory accounting
MEMORY_NOT_AVAILABLE = 2 ** 64 - 1

TIMESTAMP_PATTERN = re.compile(
    r'(\d{4}-\d{2}-\d{2})\s+(\d{2}:\d{2}:\d{2})(?:\.\d+)?(?:\s+([A-Za-z]+|[+-]\d{2}:?\d{2}))?'
)


class ServiceStatus(str, Enum):
    STOPPED = 'stopped'
    STARTING = 'starting'
    RUNNING = 'running'
    STOPPING = 'stopping'
    ERROR = 'error'
    NOT_FOUND = 'not_found'
    UNKNOWN = 'unknown'


# Statuses that have a live main process
PID_STATUSES = (ServiceStatus.RUNNING, ServiceStatus.STOPPING)


@dataclass
class ServiceRuntimeState:
    """Runtime state of one unit, produced fresh on every probe."""
    unit: str
    status: ServiceStatus
    pid: Optional[int] = None
    uptime_seconds: Optional[float] = None
    memory_bytes: Optional[int] = None
    sub_state: str = ''
    load_state: str = ''
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = {
            'unit': self.unit,
            'status': self.status.value,
            'pid': self.pid,
            'uptime': format_uptime(self.uptime_seconds),
            'uptime_seconds': self.uptime_seconds,
            'memory_bytes': self.memory_bytes,
            'memory_mb': round(self.memory_bytes / (1024 * 1024)) if self.memory_bytes is not None else None,
            'sub_state': self.sub_state,
            'load_state': self.load_state,
        }
        if self.error:
            data['error'] = self.error
        return data


def parse_show_output(output: str) -> Dict[str, str]:
    """Parse `systemctl show` KEY=VALUE lines into a dictionary."""
    props = {}
    for line in output.splitlines():
        key, sep, value = line.partition('=')
        if key and sep:
            props[key.strip()] = value.strip()
    return props


def map_status(active_state: str, load_state: str = '') -> ServiceStatus:
    """Map systemd ActiveState/LoadState onto a ServiceStatus."""
    active_state = (active_state or '').strip()
    if active_state == 'active':
        return ServiceStatus.RUNNING
    if active_state == 'activating':
        return ServiceStatus.STARTING
    if active_state == 'deactivating':
        return ServiceStatus.STOPPING
    if active_state == 'failed':
        return ServiceStatus.ERROR
    if (load_state or '').strip() == 'not-found':
        return ServiceStatus.NOT_FOUND
    return ServiceStatus.STOPPED


def parse_systemd_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a systemd timestamp into an aware datetime.

    Handles the default format ("Thu 2024-01-18 10:22:01 UTC") and the
    `--timestamp=unix` form ("@1705573321"). Zones other than UTC/GMT or a
    numeric offset are interpreted as local time.

    Returns:
        Aware datetime, or None if the value is empty, "n/a" or unparseable
    """
    if not value:
        return None
    value = value.strip()
    if not value or value.lower() == 'n/a':
        return None

    if value.startswith('@'):
        try:
            return datetime.fromtimestamp(float(value[1:]), tz=timezone.utc)
        except (ValueError, OverflowError, OSError):
            return None

    match = TIMESTAMP_PATTERN.search(value)
    if not match:
        return None
    date_part, time_part, zone = match.groups()
    try:
        parsed = datetime.strptime(f"{date_part} {time_part}", '%Y-%m-%d %H:%M:%S')
    except ValueError:
        return None

    if zone and zone.upper() in ('UTC', 'GMT', 'Z'):
        return parsed.replace(tzinfo=timezone.utc)
    if zone and zone[0] in '+-':
        digits = zone[1:].replace(':', '')
        offset = timedelta(hours=int(digits[:2]), minutes=int(digits[2:]))
        if zone[0] == '-':
            offset = -offset
        return parsed.replace(tzinfo=timezone(offset))
    return parsed.astimezone()


def format_uptime(seconds: Optional[float]) -> Optional[str]:
    """Format an uptime like "1d 2h 3m", "2h 5m 10s", "4m 2s" or "12s"."""
    if seconds is None:
        return None
    total = int(seconds)
    days, rest = divmod(total, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, secs = divmod(rest, 60)
    if days > 0:
        return f"{days}d {hours}h {minutes}m"
    if hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def _parse_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


class ProcessController:
    """Start/stop/restart and status probing of channel units via systemctl."""

    def __init__(
        self,
        resolver: UnitResolver,
        executor: Optional[CommandExecutor] = None,
        timeout: float = 30.0,
        settle_delay: float = 0.5,
        use_sudo: bool = True,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Args:
            resolver: Maps (channel, kind) onto unit names
            executor: Runs systemctl; defaults to a subprocess executor
            timeout: Seconds allowed for each systemctl call
            settle_delay: Seconds to wait after a control action before re-probing
            use_sudo: Prefix privileged calls with `sudo -n`
            clock: Returns the current aware datetime (for uptime)
            sleep: Sleeper used for the settle delay
        """
        self.resolver = resolver
        self.executor = executor or CommandExecutor()
        self.timeout = timeout
        self.settle_delay = settle_delay
        self.use_sudo = use_sudo
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep

    def _systemctl(self, args: List[str], unit: str, privileged: bool = False) -> CommandResult:
        """Run systemctl, converting a timeout into ProcessControlFailure."""
        command = ['systemctl'] + args
        if privileged and self.use_sudo:
            command = ['sudo', '-n'] + command
        try:
            return self.executor.run(command, timeout=self.timeout)
        except CommandTimeout:
            raise ProcessControlFailure(unit, f"systemctl {args[0]} timed out after {self.timeout}s",
                                        command=' '.join(command))

    def _is_active(self, unit: str) -> str:
        result = self._systemctl(['is-active', unit], unit)
        lines = result.stdout.strip().splitlines()
        # is-active exits non-zero for anything but "active"; that is a reading, not a failure
        if lines:
            return lines[-1].strip()
        if result.ok:
            return ''
        raise ProcessControlFailure(unit, result.diagnostic(), command='systemctl is-active')

    def _show(self, unit: str) -> Dict[str, str]:
        result = self._systemctl(['show', f'--property={SHOW_PROPERTIES}', unit], unit)
        if not result.ok:
            raise ProcessControlFailure(unit, result.diagnostic(), command='systemctl show')
        return parse_show_output(result.stdout)

    def _uptime(self, props: Dict[str, str]) -> Optional[float]:
        started = parse_systemd_timestamp(props.get('ActiveEnterTimestamp'))
        if started is None:
            return None
        elapsed = (self._clock() - started).total_seconds()
        if elapsed < 0:
            return None
        return elapsed

    def _build_state(self, unit: str, active_state: str, props: Dict[str, str]) -> ServiceRuntimeState:
        status = map_status(active_state, props.get('LoadState', ''))

        pid = None
        uptime = None
        if status in PID_STATUSES:
            pid = _parse_int(props.get('MainPID'))
            if not pid:
                pid = None
            uptime = self._uptime(props)

        memory = _parse_int(props.get('MemoryCurrent'))
        if memory is not None and (memory < 0 or memory >= MEMORY_NOT_AVAILABLE):
            memory = None

        return ServiceRuntimeState(
            unit=unit,
            status=status,
            pid=pid,
            uptime_seconds=uptime,
            memory_bytes=memory,
            sub_state=props.get('SubState', ''),
            load_state=props.get('LoadState', ''),
        )

    def probe(self, channel_id: int, kind: Any) -> ServiceRuntimeState:
        """
        Get the current state of one channel service.

        Raises:
            UnknownServiceKind: If kind is not recognized
            ProcessControlFailure: If systemctl fails or times out
        """
        unit = self.resolver.resolve(channel_id, kind)
        active_state = self._is_active(unit)
        props = self._show(unit)
        state = self._build_state(unit, active_state, props)
        logger.debug(f"Probed {unit}: {state.status.value} (active={active_state!r}, sub={state.sub_state!r})")
        return state

    def control(self, channel_id: int, kind: Any, action: Any) -> ServiceRuntimeState:
        """
        Start, stop or restart one channel service and return its fresh state.

        Raises:
            InvalidAction: If action is not start, stop or restart (no call is made)
            UnknownServiceKind: If kind is not recognized (no call is made)
            ProcessControlFailure: If the privileged systemctl call fails
        """
        service_action = ControlAction.parse(action)
        unit = self.resolver.resolve(channel_id, kind)

        logger.info(f"Executing {service_action.value} on {unit}")
        result = self._systemctl([service_action.value, unit], unit, privileged=True)
        if not result.ok:
            logger.warning(f"✗ {service_action.value} {unit} failed: {result.diagnostic()}")
            raise ProcessControlFailure(unit, result.diagnostic(), command=f"systemctl {service_action.value}")

        # Supervisor actions are asynchronous; give the unit time to transition
        if self.settle_delay > 0:
            self._sleep(self.settle_delay)

        state = self.probe(channel_id, kind)
        log_unit_transition(logger, unit, service_action.value, state.status.value)
        return state

    def set_enabled(self, channel_id: int, kind: Any, enabled: bool) -> bool:
        """Enable or disable autostart of a channel service.

        Raises:
            ProcessControlFailure: If systemctl enable/disable fails
        """
        unit = self.resolver.resolve(channel_id, kind)
        action = 'enable' if enabled else 'disable'
        result = self._systemctl([action, unit], unit, privileged=True)
        if not result.ok:
            raise ProcessControlFailure(unit, result.diagnostic(), command=f"systemctl {action}")
        logger.info(f"Autostart {action}d for {unit}")
        return enabled

    def is_enabled(self, channel_id: int, kind: Any) -> bool:
        """Check whether a channel service starts at boot."""
        unit = self.resolver.resolve(channel_id, kind)
        try:
            result = self._systemctl(['is-enabled', unit], unit)
        except ProcessControlFailure as e:
            logger.warning(f"Could not query autostart for {unit}: {e.message}")
            return False
        return result.stdout.strip() == 'enabled'

    def probe_channel(self, channel_id: int) -> Dict[str, ServiceRuntimeState]:
        """
        Probe all three services of a channel.

        A failing probe yields an `unknown` state carrying the error text
        instead of failing the whole channel.
        """
        states = {}
        for kind in ServiceKind:
            try:
                states[kind.value] = self.probe(channel_id, kind)
            except ProcessControlFailure as e:
                logger.warning(f"Failed to get status for {e.unit}: {e.diagnostic}")
                states[kind.value] = ServiceRuntimeState(
                    unit=e.unit,
                    status=ServiceStatus.UNKNOWN,
                    error=e.diagnostic
                )
        return states

    def check_available(self) -> bool:
        """Check if systemctl can be executed on this host."""
        try:
            result = self.executor.run(['systemctl', '--version'], timeout=self.timeout)
        except CommandTimeout:
            return False
        return result.ok
