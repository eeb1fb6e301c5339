#!/usr/bin/env python3
"""
Mapping of (channel, service kind) pairs onto systemd unit names.

Each channel runs three managed processes: an SRT receiver (ingest), a
recorder (record) and an RTMP re-publisher (publish). The unit name for each
is produced from a per-kind template such as ``rx{channel}.service``.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from headend_errors import InvalidAction, UnknownServiceKind


class ServiceKind(str, Enum):
    INGEST = 'ingest'
    RECORD = 'record'
    PUBLISH = 'publish'

    @classmethod
    def parse(cls, value: Any) -> 'ServiceKind':
        """Parse a kind from its name or legacy short name (rx, rec, rtmp).

        Raises:
            UnknownServiceKind: If the value is not a recognized kind
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            name = value.strip().lower()
            name = LEGACY_KIND_NAMES.get(name, name)
            for kind in cls:
                if kind.value == name:
                    return kind
        raise UnknownServiceKind(value)


LEGACY_KIND_NAMES = {
    'rx': 'ingest',
    'rec': 'record',
    'rtmp': 'publish',
}


class ControlAction(str, Enum):
    START = 'start'
    STOP = 'stop'
    RESTART = 'restart'

    @classmethod
    def parse(cls, value: Any) -> 'ControlAction':
        """Parse a control action.

        Raises:
            InvalidAction: If the value is not start, stop or restart
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            name = value.strip().lower()
            for action in cls:
                if action.value == name:
                    return action
        raise InvalidAction(value)


DEFAULT_UNIT_TEMPLATES: Dict[ServiceKind, str] = {
    ServiceKind.INGEST: 'rx{channel}.service',
    ServiceKind.RECORD: 'rec{channel}.service',
    ServiceKind.PUBLISH: 'rtmp{channel}.service',
}


@dataclass(frozen=True)
class ManagedProcessHandle:
    """One managed process for one channel and service kind."""
    channel_id: int
    kind: ServiceKind
    unit: str

    def to_dict(self) -> Dict[str, Any]:
        return {'channel_id': self.channel_id, 'kind': self.kind.value, 'unit': self.unit}


class UnitResolver:
    """Resolves unit names from per-kind templates."""

    def __init__(self, templates: Optional[Mapping[Any, str]] = None):
        """
        Args:
            templates: Template per kind (keys may be ServiceKind or kind names).
                       Missing kinds fall back to DEFAULT_UNIT_TEMPLATES.

        Raises:
            ValueError: If a template has no channel placeholder
        """
        self._templates: Dict[ServiceKind, str] = dict(DEFAULT_UNIT_TEMPLATES)
        for key, template in (templates or {}).items():
            kind = ServiceKind.parse(key)
            if '{channel}' not in template and '{port}' not in template:
                raise ValueError(f"Unit template for {kind.value} must contain {{channel}}: {template!r}")
            try:
                template.format(channel=0, port=0, kind=kind.value)
            except (KeyError, IndexError, ValueError) as e:
                raise ValueError(f"Invalid unit template for {kind.value}: {template!r} ({e})")
            self._templates[kind] = template

    def resolve(self, channel_id: int, kind: Any) -> str:
        """Get the unit name for a channel and service kind.

        Raises:
            UnknownServiceKind: If kind is not ingest, record or publish
        """
        service_kind = ServiceKind.parse(kind)
        template = self._templates[service_kind]
        return template.format(channel=channel_id, port=channel_id, kind=service_kind.value)

    def handle(self, channel_id: int, kind: Any) -> ManagedProcessHandle:
        service_kind = ServiceKind.parse(kind)
        return ManagedProcessHandle(channel_id, service_kind, self.resolve(channel_id, service_kind))

    @property
    def templates(self) -> Dict[str, str]:
        return {kind.value: template for kind, template in self._templates.items()}
