#!/usr/bin/env python3
"""
External command execution for the head-end console backend.

systemctl, journalctl and the TSDuck analyzers are all invoked through a
CommandExecutor so that the controllers and parsers stay unit-testable:
tests substitute an executor that returns canned output.
"""

import subprocess
import time
from dataclasses import dataclass
from typing import List, Sequence

from logging_config import setup_logging

logger = setup_logging(__name__)

# Exit status reported when the binary itself cannot be found (shell convention)
COMMAND_NOT_FOUND = 127


@dataclass
class CommandResult:
    """Outcome of one external command."""
    stdout: str
    stderr: str
    returncode: int

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def diagnostic(self) -> str:
        """Best human-readable failure text: stderr, then stdout, then the exit code."""
        text = self.stderr.strip() or self.stdout.strip()
        return text or f"exited with code {self.returncode}"


class CommandTimeout(Exception):
    """Raised when an external command exceeds its timeout."""

    def __init__(self, command: Sequence[str], timeout: float):
        super().__init__(f"Command timed out after {timeout}s: {' '.join(command)}")
        self.command = list(command)
        self.timeout = timeout


class CommandExecutor:
    """Runs external commands with a timeout and captures their output."""

    def run(self, command: List[str], timeout: float) -> CommandResult:
        """
        Run a command without a shell.

        Args:
            command: Program and arguments
            timeout: Seconds before the command is killed

        Returns:
            CommandResult with decoded stdout/stderr and the exit code

        Raises:
            CommandTimeout: If the command does not finish in time
        """
        logger.debug(f"Executing: {' '.join(command)} (timeout {timeout}s)")
        start = time.time()
        try:
            result = subprocess.run(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=timeout,
                text=True
            )
        except subprocess.TimeoutExpired:
            logger.warning(f"Timeout ({timeout}s) while running {command[0]}")
            raise CommandTimeout(command, timeout)
        except FileNotFoundError:
            logger.error(f"{command[0]} not found. Please install it and ensure it is in the system's PATH.")
            return CommandResult(stdout='', stderr=f"{command[0]}: command not found", returncode=COMMAND_NOT_FOUND)

        elapsed = time.time() - start
        logger.debug(f"  → {command[0]} exited with {result.returncode} in {elapsed:.2f}s")
        return CommandResult(
            stdout=result.stdout or '',
            stderr=result.stderr or '',
            returncode=result.returncode
        )
