#!/usr/bin/env python3
"""
Parsing of TSDuck analyzer output.

Converts `tsanalyze --json` output into a StreamAnalysis (total bitrate,
PID table, service table) and extracts the single bits-per-second reading
printed by `tsbitrate`.

Both the flat field names (`pid`, `invalid_sync`, `type_name`, ...) and
TSDuck's hyphenated JSON names (`id`, `invalid-syncs`, `type-name`, ...) are
accepted.
"""

import json
import re
from typing import Any, Dict, List, Mapping, Optional, Union

from analysis_models import PidStat, ServiceInfo, StreamAnalysis
from logging_config import setup_logging

logger = setup_logging(__name__)

NULL_PID = 8191
MAX_PID = 8191

WELL_KNOWN_PIDS = {
    0: 'PAT',
    1: 'CAT',
    16: 'NIT',
    17: 'SDT/BAT',
    18: 'EIT',
    20: 'TDT/TOT',
    8191: 'Null',
}

# tsbitrate prints lines like "Transport stream bitrate: 25,432,100 b/s"
BITRATE_PATTERN = re.compile(r'(\d[\d,]*)\s*b/s')


def pid_type_label(pid: int) -> str:
    """Get the type label for a well-known PID, or "Unknown"."""
    return WELL_KNOWN_PIDS.get(pid, 'Unknown')


def _first(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the value of the first key present (and not None) in data."""
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return default


def _as_int(value: Any, default: Optional[int] = 0) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default


def _packet_counts(ts: Mapping[str, Any]) -> Dict[str, int]:
    """Extract packet counters from either a flat or a nested `packets` layout."""
    packets = ts.get('packets')
    nested = packets if isinstance(packets, Mapping) else {}
    return {
        'packets': _as_int(_first(nested, 'total') if nested else packets),
        'invalid': _as_int(_first(ts, 'invalid_sync', 'invalid-syncs', default=_first(nested, 'invalid-syncs'))),
        'suspect': _as_int(_first(ts, 'suspect_ignored', 'suspect-ignored',
                                  default=_first(nested, 'suspect-ignored'))),
    }


def _parse_pid(entry: Mapping[str, Any], total_bps: int) -> Optional[PidStat]:
    pid = _as_int(_first(entry, 'pid', 'id'), default=None)
    if pid is None or pid < 0 or pid > MAX_PID:
        logger.debug(f"  → Skipping PID entry without a valid PID: {entry!r:.80}")
        return None

    bitrate = _as_int(entry.get('bitrate'))
    percent = (bitrate / total_bps) * 100 if total_bps else 0.0

    packets = entry.get('packets')
    discontinuities = _first(entry, 'discontinuities')
    if discontinuities is None and isinstance(packets, Mapping):
        discontinuities = packets.get('discontinuities')

    return PidStat(
        pid=pid,
        type_label=entry.get('description') or pid_type_label(pid),
        bits_per_second=bitrate,
        percent_of_total=percent,
        scrambled=bool(_first(entry, 'scrambled', 'is-scrambled', default=False)),
        discontinuities=_as_int(discontinuities),
    )


def _parse_service(entry: Mapping[str, Any]) -> ServiceInfo:
    service_id = _as_int(_first(entry, 'id', 'service_id'), default=None)
    return ServiceInfo(
        id=service_id,
        name=_first(entry, 'name', 'service_name') or f"Service {service_id}",
        provider=_first(entry, 'provider', 'provider_name', default=''),
        type_label=_first(entry, 'type_name', 'service_type_name', 'type-name') or 'Unknown',
        pmt_pid=_as_int(_first(entry, 'pmt_pid', 'pmt-pid'), default=None),
        pcr_pid=_as_int(_first(entry, 'pcr_pid', 'pcr-pid'), default=None),
    )


def parse_analyzer_output(raw: Union[str, bytes, Mapping[str, Any], None]) -> Optional[StreamAnalysis]:
    """
    Parse full analyzer output into a StreamAnalysis.

    Args:
        raw: JSON text/bytes, or an already-decoded mapping

    Returns:
        StreamAnalysis with available=True, or None if the payload is not
        well-formed structured data
    """
    if raw is None:
        return None
    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw)
        except (ValueError, UnicodeDecodeError) as e:
            logger.warning(f"Failed to decode analyzer JSON: {e}")
            return None
    else:
        data = raw

    if not isinstance(data, Mapping):
        logger.warning(f"Analyzer output is not a JSON object ({type(data).__name__})")
        return None

    for key in ('pids', 'services'):
        if data.get(key) is not None and not isinstance(data[key], list):
            logger.warning(f"Analyzer output has a non-list '{key}' ({type(data[key]).__name__})")
            return None

    ts = data.get('ts') if isinstance(data.get('ts'), Mapping) else {}
    total_bps = _as_int(ts.get('bitrate'))

    pids: List[PidStat] = []
    for entry in data.get('pids') or []:
        if not isinstance(entry, Mapping):
            continue
        stat = _parse_pid(entry, total_bps)
        # The null PID is stuffing, never part of the returned table
        if stat is not None and stat.pid != NULL_PID:
            pids.append(stat)
    pids.sort(key=lambda p: p.bits_per_second, reverse=True)

    services = [_parse_service(entry) for entry in data.get('services') or [] if isinstance(entry, Mapping)]

    counts = _packet_counts(ts)
    return StreamAnalysis(
        available=True,
        total_bps=total_bps,
        pids=pids,
        services=services,
        packets=counts['packets'],
        invalid_sync_count=counts['invalid'],
        suspect_ignored_count=counts['suspect'],
    )


def parse_quick_bitrate(output: Optional[str]) -> Optional[int]:
    """
    Extract the bits-per-second reading from tsbitrate output.

    The last "<number> b/s" occurrence wins; thousands separators are stripped.

    Returns:
        Bitrate in bits/s, or None if no reading is present
    """
    if not output:
        return None
    matches = BITRATE_PATTERN.findall(output)
    if not matches:
        return None
    try:
        return int(matches[-1].replace(',', ''))
    except ValueError:
        return None
