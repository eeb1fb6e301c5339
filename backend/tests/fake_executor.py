"""
Fake CommandExecutor for unit tests.

Responses are registered with on(); a command matches a rule when it
contains every token of the rule. The most recently registered matching
rule wins. Every call is recorded.
"""

import os
import sys
import threading

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from command_executor import CommandResult, CommandTimeout


class FakeExecutor:
    def __init__(self, default=None):
        self.calls = []
        self.rules = []
        self.default = default or CommandResult('', '', 0)
        self._lock = threading.Lock()

    def on(self, *tokens, stdout='', stderr='', returncode=0, timeout=False, handler=None):
        """Register a canned response for commands containing all tokens."""
        self.rules.append((tokens, CommandResult(stdout, stderr, returncode), timeout, handler))
        return self

    def run(self, command, timeout):
        with self._lock:
            self.calls.append((list(command), timeout))
            rules = list(reversed(self.rules))
        for tokens, result, times_out, handler in rules:
            if all(token in command for token in tokens):
                if times_out:
                    raise CommandTimeout(command, timeout)
                if handler is not None:
                    return handler(command)
                return result
        return self.default

    def commands(self, *tokens):
        """Recorded commands that contain every token."""
        return [cmd for cmd, _ in self.calls if all(t in cmd for t in tokens)]


def show_output(main_pid=0, active_enter='', memory='[not set]', load_state='loaded', sub_state='dead'):
    """Render `systemctl show` output for the probed properties."""
    return (
        f"MainPID={main_pid}\n"
        f"ActiveEnterTimestamp={active_enter}\n"
        f"MemoryCurrent={memory}\n"
        f"LoadState={load_state}\n"
        f"SubState={sub_state}\n"
    )


def running_unit(executor, unit, pid=4242, active_enter='Mon 2024-03-04 10:00:00 UTC', memory='52428800'):
    executor.on('is-active', unit, stdout='active\n')
    executor.on('show', unit, stdout=show_output(pid, active_enter, memory, 'loaded', 'running'))


def stopped_unit(executor, unit):
    executor.on('is-active', unit, stdout='inactive\n', returncode=3)
    executor.on('show', unit, stdout=show_output(0, '', '[not set]', 'loaded', 'dead'))
