#!/usr/bin/env python3
"""
journald log retrieval for channel services.

Runs `journalctl -o json` for one unit and converts each JSON line into a
LogEntry. Malformed lines are skipped.
"""

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from command_executor import CommandExecutor, CommandTimeout
from headend_errors import InvalidRequest, LogQueryFailure
from logging_config import setup_logging
from unit_resolver import UnitResolver

logger = setup_logging(__name__)

OUTPUT_FIELDS = '__REALTIME_TIMESTAMP,PRIORITY,MESSAGE,_SYSTEMD_UNIT,_PID'

# Syslog priority ranges passed to `journalctl -p`
LEVEL_PRIORITIES = {
    'error': '0..3',
    'warn': '0..4',
    'info': '0..6',
    'debug': '0..7',
}

DEFAULT_LINES = 100


def priority_to_level(priority: Any) -> str:
    try:
        p = int(priority)
    except (TypeError, ValueError):
        return 'info'
    if p <= 3:
        return 'error'
    if p <= 4:
        return 'warn'
    if p <= 6:
        return 'info'
    return 'debug'


@dataclass
class LogEntry:
    timestamp: Optional[str]
    level: str
    message: str
    unit: str = ''
    pid: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': self.timestamp,
            'level': self.level,
            'message': self.message,
            'unit': self.unit,
            'pid': self.pid,
        }


def _realtime_to_iso(value: Any) -> Optional[str]:
    """Convert a journald microsecond timestamp to ISO 8601 (UTC)."""
    try:
        micros = int(value)
    except (TypeError, ValueError):
        return None
    dt = datetime.fromtimestamp(micros / 1_000_000, tz=timezone.utc)
    return dt.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def parse_journal_line(line: str) -> Optional[LogEntry]:
    """Parse one `journalctl -o json` line, or None if it is malformed."""
    try:
        entry = json.loads(line)
    except ValueError:
        return None
    if not isinstance(entry, dict):
        return None

    message = entry.get('MESSAGE') or ''
    # journald encodes non-UTF-8 messages as byte arrays
    if isinstance(message, list):
        message = bytes(b for b in message if isinstance(b, int) and 0 <= b < 256).decode('utf-8', 'replace')

    pid = entry.get('_PID')
    try:
        pid = int(pid) if pid else None
    except (TypeError, ValueError):
        pid = None

    return LogEntry(
        timestamp=_realtime_to_iso(entry.get('__REALTIME_TIMESTAMP')),
        level=priority_to_level(entry.get('PRIORITY')),
        message=str(message),
        unit=entry.get('_SYSTEMD_UNIT') or '',
        pid=pid,
    )


class LogService:
    """Reads recent journal entries of channel services."""

    def __init__(
        self,
        resolver: UnitResolver,
        executor: Optional[CommandExecutor] = None,
        timeout: float = 10.0,
        max_lines: int = 200
    ):
        self.resolver = resolver
        self.executor = executor or CommandExecutor()
        self.timeout = timeout
        self.max_lines = max_lines

    def build_command(self, unit: str, lines: int, since: Optional[str] = None,
                      until: Optional[str] = None, level: Optional[str] = None) -> List[str]:
        command = [
            'journalctl', '-u', unit, '-n', str(lines),
            '--no-pager', '-o', 'json', f'--output-fields={OUTPUT_FIELDS}',
        ]
        if since:
            command.append(f'--since={since}')
        if until:
            command.append(f'--until={until}')
        if level:
            if level not in LEVEL_PRIORITIES:
                raise InvalidRequest(f"Invalid level '{level}'. Valid: {', '.join(LEVEL_PRIORITIES)}")
            command.extend(['-p', LEVEL_PRIORITIES[level]])
        return command

    def clamp_lines(self, lines: Any) -> int:
        try:
            value = int(lines)
        except (TypeError, ValueError):
            value = DEFAULT_LINES
        return max(1, min(value, self.max_lines))

    def get_logs(
        self,
        channel_id: int,
        kind: Any,
        lines: Any = DEFAULT_LINES,
        since: Optional[str] = None,
        until: Optional[str] = None,
        level: Optional[str] = None
    ) -> List[LogEntry]:
        """
        Get recent journal entries of one channel service.

        Raises:
            UnknownServiceKind: If kind is not recognized
            InvalidRequest: If level is not error, warn, info or debug
            LogQueryFailure: If journalctl fails or times out
        """
        unit = self.resolver.resolve(channel_id, kind)
        command = self.build_command(unit, self.clamp_lines(lines), since, until, level)
        logger.debug(f"Fetching logs: {' '.join(command)}")

        try:
            result = self.executor.run(command, timeout=self.timeout)
        except CommandTimeout:
            raise LogQueryFailure(f"Failed to fetch logs for {unit}: timed out after {self.timeout}s")

        if not result.ok:
            # journalctl exits 1 without output when there are no entries
            if result.returncode == 1 and not result.stderr.strip():
                return []
            logger.error(f"Failed to fetch logs for {unit}: {result.diagnostic()}")
            raise LogQueryFailure(f"Failed to fetch logs for {unit}: {result.diagnostic()}")

        entries = []
        for line in result.stdout.splitlines():
            if not line.strip():
                continue
            entry = parse_journal_line(line)
            if entry is not None:
                entries.append(entry)
        return entries
