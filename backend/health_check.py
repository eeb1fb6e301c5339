#!/usr/bin/env python3
"""
Health check utilities for the head-end console.

Verifies that the host tools the backend drives are present: systemd
(systemctl, journalctl) and the TSDuck analyzers (tsanalyze, tsbitrate).
"""

import sys
from datetime import datetime
from typing import Any, Dict, Optional

from command_executor import COMMAND_NOT_FOUND, CommandExecutor, CommandTimeout
from logging_config import setup_logging

logger = setup_logging(__name__)

SYSTEMD_TOOLS = ('systemctl', 'journalctl')
ANALYZER_TOOLS = ('tsanalyze', 'tsbitrate')


def check_tool_installed(tool: str, executor: Optional[CommandExecutor] = None, timeout: float = 5.0) -> bool:
    """
    Check if a command-line tool is installed and runs.

    Args:
        tool: Binary name, invoked as `<tool> --version`
        executor: Command runner
        timeout: Seconds to wait for the version output

    Returns:
        bool: True if the tool responded, False otherwise
    """
    executor = executor or CommandExecutor()
    try:
        result = executor.run([tool, '--version'], timeout=timeout)
    except CommandTimeout:
        logger.warning(f"⚠ {tool} --version timed out after {timeout}s")
        return False

    if result.returncode == COMMAND_NOT_FOUND:
        logger.error(f"✗ {tool} not found on this host")
        return False
    if not result.ok:
        logger.warning(f"⚠ {tool} --version exited with {result.returncode}")
        return False

    logger.debug(f"✓ {tool} is available")
    return True


def check_systemd_health(executor: Optional[CommandExecutor] = None) -> Dict[str, bool]:
    return {tool: check_tool_installed(tool, executor) for tool in SYSTEMD_TOOLS}


def check_analyzer_health(executor: Optional[CommandExecutor] = None) -> Dict[str, bool]:
    return {tool: check_tool_installed(tool, executor) for tool in ANALYZER_TOOLS}


def full_health_report(executor: Optional[CommandExecutor] = None, mock_mode: bool = False) -> Dict[str, Any]:
    """
    Build the full health report.

    The backend is `healthy` when every tool is available; analyzers may be
    missing in mock mode, where synthetic analyses are served instead.
    """
    systemd = check_systemd_health(executor)
    analyzer = check_analyzer_health(executor)

    healthy = all(systemd.values()) and (mock_mode or all(analyzer.values()))
    return {
        'status': 'healthy' if healthy else 'degraded',
        'timestamp': datetime.now().isoformat(),
        'mock_mode': mock_mode,
        'checks': {
            'systemd': systemd,
            'analyzer': analyzer,
        },
    }


if __name__ == '__main__':
    """
    Command-line interface for health checks.

    Usage:
        python health_check.py systemd
        python health_check.py analyzer
    """
    if len(sys.argv) < 2:
        print("Usage: health_check.py <systemd|analyzer>")
        sys.exit(1)

    target = sys.argv[1].lower()

    if target == 'systemd':
        checks = check_systemd_health()
    elif target == 'analyzer':
        checks = check_analyzer_health()
    else:
        print(f"Unknown check: {target}")
        print("Usage: health_check.py <systemd|analyzer>")
        sys.exit(1)

    sys.exit(0 if all(checks.values()) else 1)
