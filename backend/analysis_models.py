"""
Data models for live transport-stream analysis.

Defines the structure for:
- StreamAnalysis: latest full analysis of one channel feed
- PidStat: per-PID bitrate statistics
- ServiceInfo: programs announced in the stream
- BitrateReading: quick total-bitrate reading
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


def now_iso() -> str:
    return datetime.now().isoformat()


def format_mbps(bits_per_second: float, digits: int = 2) -> str:
    """Format bits/s as a Mbps string, e.g. 25432100 -> "25.43"."""
    return f"{bits_per_second / 1_000_000:.{digits}f}"


@dataclass
class PidStat:
    """Statistics for one PID of the transport stream."""
    pid: int
    type_label: str
    bits_per_second: int = 0
    percent_of_total: float = 0.0
    scrambled: bool = False
    discontinuities: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'pid': self.pid,
            'type': self.type_label,
            'bitrate': self.bits_per_second,
            'bitrate_mbps': format_mbps(self.bits_per_second, 3),
            'percentage': f"{self.percent_of_total:.1f}",
            'scrambled': self.scrambled,
            'discontinuities': self.discontinuities,
        }


@dataclass
class ServiceInfo:
    """A program (service) announced in the transport stream."""
    id: Optional[int]
    name: str
    provider: str = ''
    type_label: str = 'Unknown'
    pmt_pid: Optional[int] = None
    pcr_pid: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'id': self.id,
            'name': self.name,
            'provider': self.provider,
            'type': self.type_label,
            'pmt_pid': self.pmt_pid,
            'pcr_pid': self.pcr_pid,
        }


@dataclass
class StreamAnalysis:
    """
    Latest analysis sample of one channel feed.

    When available is False only error and timestamp are meaningful.
    """
    available: bool
    timestamp: str = field(default_factory=now_iso)
    error: Optional[str] = None
    total_bps: Optional[int] = None
    pids: Optional[List[PidStat]] = None
    services: Optional[List[ServiceInfo]] = None
    packets: int = 0
    invalid_sync_count: int = 0
    suspect_ignored_count: int = 0

    @classmethod
    def unavailable(cls, error: str) -> 'StreamAnalysis':
        return cls(available=False, error=error)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        if not self.available:
            return {'available': False, 'timestamp': self.timestamp, 'error': self.error}
        return {
            'available': True,
            'timestamp': self.timestamp,
            'bitrate': {
                'total': self.total_bps or 0,
                'total_mbps': format_mbps(self.total_bps or 0, 2),
            },
            'pids': [p.to_dict() for p in self.pids or []],
            'services': [s.to_dict() for s in self.services or []],
            'packets': self.packets,
            'invalid': self.invalid_sync_count,
            'suspect_ignored': self.suspect_ignored_count,
        }


@dataclass
class BitrateReading:
    """Quick total-bitrate reading of one channel feed."""
    channel_id: int
    available: bool
    bps: Optional[int] = None
    timestamp: str = field(default_factory=now_iso)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data: Dict[str, Any] = {
            'channel_id': self.channel_id,
            'available': self.available,
            'timestamp': self.timestamp,
        }
        if self.available and self.bps is not None:
            data['bitrate'] = {'total': self.bps, 'total_mbps': format_mbps(self.bps, 2)}
        if self.error:
            data['error'] = self.error
        return data
