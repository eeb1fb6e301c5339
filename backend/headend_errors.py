#!/usr/bin/env python3
"""
Error taxonomy for the head-end console backend.

Every failure carries a machine-checkable ``kind`` and a human-readable
message. The web layer turns any HeadendError into a JSON body with the
matching HTTP status.
"""

from typing import Any, Dict, List, Optional


class HeadendError(Exception):
    """Base class for errors reported to API callers."""

    kind = 'internal_error'
    http_status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def details(self) -> Dict[str, Any]:
        """Extra fields included in the error body."""
        return {}

    def to_dict(self) -> Dict[str, Any]:
        body = {'success': False, 'error': self.message, 'kind': self.kind}
        body.update(self.details())
        return body


class UnknownServiceKind(HeadendError):
    kind = 'unknown_service_kind'
    http_status = 400

    def __init__(self, value: Any):
        super().__init__(f"Unknown service kind: {value!r}. Valid: ingest, record, publish")
        self.value = value


class InvalidAction(HeadendError):
    kind = 'invalid_action'
    http_status = 400

    def __init__(self, value: Any):
        super().__init__(f"Invalid action: {value!r}. Valid: start, stop, restart")
        self.value = value


class InvalidRequest(HeadendError):
    kind = 'invalid_request'
    http_status = 400


class NotFound(HeadendError):
    kind = 'not_found'
    http_status = 404


class ValidationFailed(HeadendError):
    """Configuration failed one or more rules; all violations are reported."""

    kind = 'validation_failed'
    http_status = 400

    def __init__(self, errors: List[str]):
        super().__init__(f"Configuration is invalid ({len(errors)} error(s))")
        self.errors = list(errors)

    def details(self) -> Dict[str, Any]:
        return {'errors': self.errors}


class NoValidTargets(HeadendError):
    kind = 'no_valid_targets'
    http_status = 400

    def __init__(self, requested: Optional[List[Any]] = None):
        super().__init__('No valid channel IDs specified')
        self.requested = list(requested or [])


class ProcessControlFailure(HeadendError):
    """A process supervisor call failed or timed out."""

    kind = 'process_control_failure'
    http_status = 502

    def __init__(self, unit: str, diagnostic: str, command: Optional[str] = None):
        super().__init__(f"{unit}: {diagnostic}" if diagnostic else f"{unit}: supervisor call failed")
        self.unit = unit
        self.diagnostic = diagnostic
        self.command = command

    def details(self) -> Dict[str, Any]:
        return {'unit': self.unit, 'diagnostic': self.diagnostic}


class AnalysisUnavailable(HeadendError):
    """The transport-stream feed could not be sampled."""

    kind = 'analysis_unavailable'
    http_status = 503

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class LogQueryFailure(HeadendError):
    kind = 'log_query_failure'
    http_status = 502


class ConfigPersistFailure(HeadendError):
    """The channel configuration could not be written."""

    kind = 'config_persist_failure'
    http_status = 500

    def __init__(self, channel_id: int):
        super().__init__(f"Failed to save configuration for channel {channel_id}")
        self.channel_id = channel_id
