#!/usr/bin/env python3
"""
Validate, persist and activate a channel configuration.

Applying a configuration is fail-fast: an invalid configuration is never
saved, and the restart sequence stops at the first service that fails.
Restarts run one after another because the recorder and publisher read the
ingest output of the same channel.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from channel_config import ChannelConfig, apply_quality_preset, validate_config
from channel_config_store import ChannelConfigStore
from headend_errors import ConfigPersistFailure, ProcessControlFailure, ValidationFailed
from logging_config import log_call, setup_logging
from process_controller import ProcessController, ServiceRuntimeState
from unit_resolver import ControlAction, ServiceKind

logger = setup_logging(__name__)

ALL_KINDS = (ServiceKind.INGEST, ServiceKind.RECORD, ServiceKind.PUBLISH)


@dataclass
class ApplyResult:
    """Outcome of applying a configuration to one channel."""
    channel_id: int
    success: bool
    saved: bool = False
    restarted: List[ServiceKind] = field(default_factory=list)
    failed_kind: Optional[ServiceKind] = None
    error: Optional[str] = None
    states: Dict[str, ServiceRuntimeState] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'success': self.success,
            'channel_id': self.channel_id,
            'saved': self.saved,
            'restarted': [k.value for k in self.restarted],
            'services': {kind: state.to_dict() for kind, state in self.states.items()},
        }
        if self.failed_kind is not None:
            data['failed_kind'] = self.failed_kind.value
        if self.error is not None:
            data['error'] = self.error
        return data


class ConfigApplier:
    """Applies channel configurations through the store and the process controller."""

    def __init__(self, store: ChannelConfigStore, controller: ProcessController):
        self.store = store
        self.controller = controller

    def prepare(self, config: Any) -> ChannelConfig:
        """Decode (if needed) and fill preset defaults."""
        if not isinstance(config, ChannelConfig):
            config = ChannelConfig.from_dict(config)
        apply_quality_preset(config.publish)
        return config

    def validate(self, config: Any) -> List[str]:
        return validate_config(self.prepare(config))

    def save(self, channel_id: int, config: Any) -> ChannelConfig:
        """
        Validate and persist a configuration without restarting anything.

        Raises:
            ValidationFailed: With every violation, nothing is written
            ConfigPersistFailure: If the store could not write the file
        """
        prepared = self.prepare(config)
        errors = validate_config(prepared)
        if errors:
            logger.warning(f"Rejected config for channel {channel_id}: {'; '.join(errors)}")
            raise ValidationFailed(errors)
        if not self.store.save(channel_id, prepared):
            raise ConfigPersistFailure(channel_id)
        return prepared

    def apply(self, channel_id: int, config: Any, services_to_restart: Optional[Iterable[Any]] = None) -> ApplyResult:
        """
        Validate, persist, then restart the requested services in order.

        Args:
            channel_id: Channel to configure
            config: ChannelConfig or its decoded JSON
            services_to_restart: Kinds to restart (None for all three)

        Returns:
            ApplyResult; success=False names the kind whose restart failed

        Raises:
            UnknownServiceKind: If a kind is not recognized (nothing is saved)
            ValidationFailed: If the configuration is invalid (nothing is saved)
            ConfigPersistFailure: If the configuration could not be written
        """
        if services_to_restart is None:
            kinds = list(ALL_KINDS)
        else:
            kinds = [ServiceKind.parse(k) for k in services_to_restart]
        log_call(logger, 'apply', channel_id=channel_id, kinds=[k.value for k in kinds])

        self.save(channel_id, config)
        result = ApplyResult(channel_id=channel_id, success=True, saved=True)

        for kind in kinds:
            try:
                result.states[kind.value] = self.controller.control(channel_id, kind, ControlAction.RESTART)
            except ProcessControlFailure as e:
                logger.warning(f"✗ Apply on channel {channel_id} stopped at {kind.value}: {e.message}")
                result.success = False
                result.failed_kind = kind
                result.error = e.message
                return result
            result.restarted.append(kind)

        logger.info(f"✓ Applied config to channel {channel_id}, restarted "
                    f"{', '.join(k.value for k in kinds) or 'nothing'}")
        return result
