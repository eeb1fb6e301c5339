#!/usr/bin/env python3
"""
Web API Server for the head-end console

Provides REST API endpoints for the operator frontend: channel and service
status, start/stop/restart (single and bulk), channel configuration, live
stream analysis and service logs.
"""

import os
from datetime import datetime
from typing import Any, Dict

from flask import Flask, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from headend_errors import HeadendError, InvalidRequest
from headend_services import get_services
from health_check import full_health_report
from logging_config import log_exception, setup_logging
from process_controller import ServiceStatus
from unit_resolver import ServiceKind

logger = setup_logging(__name__)

DEFAULT_LOG_LINES = 100
DEFAULT_CHANNEL_LOG_LINES = 50

app = Flask(__name__)
CORS(app)  # Enable CORS for the frontend


@app.errorhandler(HeadendError)
def handle_headend_error(e: HeadendError):
    """Render any backend error as JSON with its HTTP status."""
    if e.http_status >= 500:
        logger.error(f"{request.method} {request.path} failed: {e.message}")
    else:
        logger.debug(f"{request.method} {request.path} rejected: {e.message}")
    return jsonify(e.to_dict()), e.http_status


@app.errorhandler(Exception)
def handle_unexpected_error(e: Exception):
    if isinstance(e, HTTPException):
        return jsonify({"success": False, "error": e.description, "kind": "http_error"}), e.code
    log_exception(logger, e, f"{request.method} {request.path}")
    return jsonify({"success": False, "error": str(e), "kind": "internal_error"}), 500


def _json_body(required: bool = True) -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None:
        if required:
            raise InvalidRequest("Request body must be a JSON object")
        return {}
    if not isinstance(data, dict):
        raise InvalidRequest("Request body must be a JSON object")
    return data


def _channel_view(channel_id: int) -> Dict[str, Any]:
    states = get_services().controller.probe_channel(channel_id)
    return {
        'id': channel_id,
        'name': f"Channel {channel_id}",
        'services': {kind: state.to_dict() for kind, state in states.items()},
        # A channel is active while any of its services runs
        'status': 'active' if any(s.status == ServiceStatus.RUNNING for s in states.values()) else 'inactive',
    }


# ==================== HEALTH ====================

@app.route('/api/health', methods=['GET'])
def health_check():
    """Health check endpoint."""
    services = get_services()
    channel_ids = services.channel_ids()
    return jsonify({
        "status": "ok",
        "timestamp": datetime.now().isoformat(),
        "config": {
            "channel_range": f"{channel_ids[0]}-{channel_ids[-1]}" if channel_ids else "",
            "channel_count": len(channel_ids),
            "systemd_available": services.controller.check_available(),
            "unit_templates": services.resolver.templates,
            "mock_mode": services.mock_mode,
        }
    })


@app.route('/api/health/full', methods=['GET'])
def health_check_full():
    """Detailed health check of systemd and the analyzer tools."""
    services = get_services()
    report = full_health_report(services.executor, mock_mode=services.mock_mode)
    report['analysis_cache'] = services.analysis_cache.get_status()
    report['settings'] = services.config.get_config()
    return jsonify(report)


# ==================== CHANNELS ====================

@app.route('/api/channels', methods=['GET'])
def get_channels():
    """List all channels with their service states."""
    channels = [_channel_view(channel_id) for channel_id in get_services().channel_ids()]
    return jsonify({"success": True, "data": channels})


@app.route('/api/channels/<int:channel_id>', methods=['GET'])
def get_channel(channel_id):
    get_services().require_channel(channel_id)
    return jsonify({"success": True, "data": _channel_view(channel_id)})


@app.route('/api/channels/<int:channel_id>/config', methods=['GET'])
def get_channel_config(channel_id):
    services = get_services()
    services.require_channel(channel_id)
    config = services.store.load(channel_id)
    return jsonify({"success": True, "data": config.to_dict()})


@app.route('/api/channels/<int:channel_id>/config', methods=['PUT'])
def update_channel_config(channel_id):
    """Validate and save a channel configuration without restarting services."""
    services = get_services()
    services.require_channel(channel_id)
    saved = services.applier.save(channel_id, _json_body())
    logger.info(f"Config updated for channel {channel_id}")
    return jsonify({"success": True, "message": "Configuration saved", "data": saved.to_dict()})


@app.route('/api/channels/<int:channel_id>/config/validate', methods=['POST'])
def validate_channel_config(channel_id):
    services = get_services()
    services.require_channel(channel_id)
    errors = services.applier.validate(_json_body())
    return jsonify({"success": True, "data": {"valid": not errors, "errors": errors}})


@app.route('/api/channels/<int:channel_id>/config/apply', methods=['POST'])
def apply_channel_config(channel_id):
    """Validate, save and restart the selected services of a channel.

    Body: {"config": {...}, "services": ["ingest", "record", "publish"]}
    """
    services = get_services()
    services.require_channel(channel_id)
    body = _json_body()
    if 'config' not in body:
        raise InvalidRequest("Missing 'config'")
    kinds = body.get('services')
    if kinds is not None and not isinstance(kinds, list):
        raise InvalidRequest("'services' must be a list")

    result = services.applier.apply(channel_id, body['config'], kinds)
    services.analysis_cache.invalidate(channel_id)
    return jsonify(result.to_dict()), 200 if result.success else 502


# ==================== SERVICES ====================

@app.route('/api/services/status', methods=['GET'])
def get_all_service_status():
    services = get_services()
    data = {}
    for channel_id in services.channel_ids():
        states = services.controller.probe_channel(channel_id)
        data[str(channel_id)] = {kind: state.to_dict() for kind, state in states.items()}
    return jsonify({"success": True, "data": data})


@app.route('/api/services/bulk/<kind>/<action>', methods=['POST'])
def bulk_service_action(kind, action):
    """Run one action on a service kind across channels.

    Body (optional): {"channel_ids": [5001, 5002]}; all channels if omitted.
    Partial failures are reported per channel with HTTP 200.
    """
    services = get_services()
    channel_ids = _json_body(required=False).get('channel_ids')
    if channel_ids is not None and not isinstance(channel_ids, list):
        raise InvalidRequest("'channel_ids' must be a list")

    report = services.bulk.bulk_control(kind, action, channel_ids)
    if ServiceKind.parse(kind) == ServiceKind.INGEST:
        services.analysis_cache.invalidate()
    return jsonify(report.to_dict())


@app.route('/api/services/<int:channel_id>/<kind>', methods=['GET'])
def get_service_status(channel_id, kind):
    services = get_services()
    services.require_channel(channel_id)
    handle = services.resolver.handle(channel_id, kind)
    state = services.controller.probe(channel_id, handle.kind)
    return jsonify({"success": True, "data": {**handle.to_dict(), **state.to_dict()}})


@app.route('/api/services/<int:channel_id>/<kind>/autostart', methods=['GET'])
def get_service_autostart(channel_id, kind):
    services = get_services()
    services.require_channel(channel_id)
    handle = services.resolver.handle(channel_id, kind)
    enabled = services.controller.is_enabled(channel_id, handle.kind)
    return jsonify({"success": True, "data": {**handle.to_dict(), "enabled": enabled}})


@app.route('/api/services/<int:channel_id>/<kind>/autostart', methods=['PUT'])
def set_service_autostart(channel_id, kind):
    services = get_services()
    services.require_channel(channel_id)
    enabled = _json_body().get('enabled')
    if not isinstance(enabled, bool):
        raise InvalidRequest("'enabled' must be true or false")
    handle = services.resolver.handle(channel_id, kind)
    services.controller.set_enabled(channel_id, handle.kind, enabled)
    return jsonify({"success": True, "data": {**handle.to_dict(), "enabled": enabled}})


@app.route('/api/services/<int:channel_id>/<kind>/<action>', methods=['POST'])
def service_action(channel_id, kind, action):
    """Start, stop or restart one service and return its new state."""
    services = get_services()
    services.require_channel(channel_id)
    state = services.controller.control(channel_id, kind, action)
    if ServiceKind.parse(kind) == ServiceKind.INGEST:
        services.analysis_cache.invalidate(channel_id)
    return jsonify({
        "success": True,
        "message": f"{action} executed on {state.unit}",
        "data": state.to_dict(),
    })


# ==================== ANALYSIS ====================

@app.route('/api/analyze', methods=['GET'])
def get_analysis_summary():
    """Quick bitrate reading for every channel."""
    services = get_services()
    readings = services.analyzer.summarize(services.channel_ids())
    return jsonify({"success": True, "data": [r.to_dict() for r in readings]})


@app.route('/api/analyze/<int:channel_id>', methods=['GET'])
def get_channel_analysis(channel_id):
    """Full analysis (bitrate, PIDs, services), cached for a short time."""
    services = get_services()
    services.require_channel(channel_id)
    analysis = services.analysis_cache.get(channel_id)
    return jsonify({"success": True, "data": analysis.to_dict()})


@app.route('/api/analyze/<int:channel_id>/bitrate', methods=['GET'])
def get_channel_bitrate(channel_id):
    services = get_services()
    services.require_channel(channel_id)
    reading = services.analyzer.quick_bitrate(channel_id)
    return jsonify({"success": True, "data": reading.to_dict()})


# ==================== LOGS ====================

@app.route('/api/logs/<int:channel_id>/<kind>', methods=['GET'])
def get_service_logs(channel_id, kind):
    services = get_services()
    services.require_channel(channel_id)
    entries = services.logs.get_logs(
        channel_id,
        kind,
        lines=request.args.get('lines', DEFAULT_LOG_LINES),
        since=request.args.get('since'),
        until=request.args.get('until'),
        level=request.args.get('level'),
    )
    return jsonify({"success": True, "data": [e.to_dict() for e in entries]})


@app.route('/api/logs/<int:channel_id>', methods=['GET'])
def get_channel_logs(channel_id):
    """Recent logs of all three services of a channel."""
    services = get_services()
    services.require_channel(channel_id)
    lines = request.args.get('lines', DEFAULT_CHANNEL_LOG_LINES)
    data = {
        kind.value: [e.to_dict() for e in services.logs.get_logs(channel_id, kind, lines=lines)]
        for kind in ServiceKind
    }
    return jsonify({"success": True, "data": data})


if __name__ == '__main__':
    import argparse

    parser = argparse.ArgumentParser(description='Head-end Console Web API')
    parser.add_argument('--host', default=os.environ.get('API_HOST', '0.0.0.0'), help='Host to bind to')
    parser.add_argument('--port', type=int, default=int(os.environ.get('API_PORT', '3001')), help='Port to bind to')
    parser.add_argument('--debug', action='store_true', help='Enable debug mode')

    args = parser.parse_args()

    services = get_services()
    channel_ids = services.channel_ids()
    logger.info(f"Starting Head-end Console Web API on {args.host}:{args.port}")
    if channel_ids:
        logger.info(f"Managing channels {channel_ids[0]}-{channel_ids[-1]} ({len(channel_ids)} channels)")
    if not services.controller.check_available():
        logger.warning("⚠ systemctl is not available; service control will fail")

    app.run(host=args.host, port=args.port, debug=args.debug, threaded=True)
