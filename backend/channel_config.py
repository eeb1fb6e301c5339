#!/usr/bin/env python3
"""
Per-channel configuration model and validation.

A channel configuration has three sections, one per managed service:
- ingest: SRT receiver (caller/listener mode, ports, encryption, multicast)
- recording: transport-stream recorder (path, segmenting, MP4 repack)
- publish: RTMP publisher (target URL, quality preset, encoder settings)

JSON field names are snake_case and match the dataclass attributes.
"""

from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Mapping, Optional

from headend_errors import InvalidRequest

INGEST_MODES = ('caller', 'listener')
AUDIO_PAIRS = ('primary', 'secondary', 'both')
KEY_LENGTHS = (16, 24, 32)

MIN_PORT = 1024
MAX_PORT = 65535
MIN_PASSPHRASE_LENGTH = 10
MAX_PASSPHRASE_LENGTH = 79

# Encoder settings filled in by each named quality preset
QUALITY_PRESETS: Dict[str, Dict[str, Any]] = {
    'passthrough': {'video_codec': 'copy', 'audio_codec': 'copy'},
    '1080p': {'video_codec': 'libx264', 'video_bitrate_kbps': 6000, 'video_width': 1920, 'video_height': 1080},
    '720p': {'video_codec': 'libx264', 'video_bitrate_kbps': 3500, 'video_width': 1280, 'video_height': 720},
    '480p': {'video_codec': 'libx264', 'video_bitrate_kbps': 1500, 'video_width': 854, 'video_height': 480},
    'custom': {},
}


def _coerce_section(cls, data: Any, section: str):
    """Build a section dataclass from a mapping, ignoring unknown keys."""
    if data is None:
        return cls()
    if not isinstance(data, Mapping):
        raise InvalidRequest(f"'{section}' must be an object")

    values = {}
    for f in fields(cls):
        if f.name not in data:
            continue
        value = data[f.name]
        if value is not None and f.name in cls.INT_FIELDS:
            if isinstance(value, bool):
                raise InvalidRequest(f"{section}.{f.name} must be a number")
            try:
                value = int(value)
            except (TypeError, ValueError, OverflowError):
                raise InvalidRequest(f"{section}.{f.name} must be a number")
        elif value is not None and f.name in cls.BOOL_FIELDS:
            if not isinstance(value, bool):
                raise InvalidRequest(f"{section}.{f.name} must be true or false")
        elif value is not None and f.name in cls.STR_FIELDS:
            if not isinstance(value, str):
                raise InvalidRequest(f"{section}.{f.name} must be a string")
        values[f.name] = value
    return cls(**values)


@dataclass
class IngestConfig:
    mode: str = 'listener'
    listen_port: Optional[int] = None
    target_host: Optional[str] = None
    target_port: Optional[int] = None
    stream_id: Optional[str] = None
    latency_ms: int = 200
    bandwidth_overhead: int = 25
    passphrase: Optional[str] = None
    keylen: Optional[int] = None
    multicast_enabled: bool = False
    multicast_dst_ip: Optional[str] = None
    multicast_dst_port: Optional[int] = None
    interface: Optional[str] = None
    max_bitrate_mbps: Optional[int] = None

    INT_FIELDS = ('listen_port', 'target_port', 'latency_ms', 'bandwidth_overhead', 'keylen',
                  'multicast_dst_port', 'max_bitrate_mbps')
    BOOL_FIELDS = ('multicast_enabled',)
    STR_FIELDS = ('mode', 'target_host', 'stream_id', 'passphrase', 'multicast_dst_ip', 'interface')


@dataclass
class RecordingConfig:
    enabled: bool = False
    path: Optional[str] = None
    filename_template: str = 'channel{channel}_%Y%m%d_%H%M%S.ts'
    segment_mode: bool = False
    segment_duration_sec: int = 3600
    repack_to_mp4: bool = False
    repack_path: Optional[str] = None

    INT_FIELDS = ('segment_duration_sec',)
    BOOL_FIELDS = ('enabled', 'segment_mode', 'repack_to_mp4')
    STR_FIELDS = ('path', 'filename_template', 'repack_path')


@dataclass
class PublishConfig:
    enabled: bool = False
    url: Optional[str] = None
    stream_key: Optional[str] = None
    quality_preset: str = 'passthrough'
    video_codec: Optional[str] = None
    video_preset: Optional[str] = None
    video_width: Optional[int] = None
    video_height: Optional[int] = None
    video_bitrate_kbps: Optional[int] = None
    audio_codec: Optional[str] = None
    audio_bitrate_kbps: Optional[int] = None
    audio_pair: str = 'primary'

    INT_FIELDS = ('video_width', 'video_height', 'video_bitrate_kbps', 'audio_bitrate_kbps')
    BOOL_FIELDS = ('enabled',)
    STR_FIELDS = ('url', 'stream_key', 'quality_preset', 'video_codec', 'video_preset', 'audio_codec',
                  'audio_pair')


@dataclass
class ChannelConfig:
    """Complete configuration of one channel's ingest, recording and publish services."""
    ingest: IngestConfig = field(default_factory=IngestConfig)
    recording: RecordingConfig = field(default_factory=RecordingConfig)
    publish: PublishConfig = field(default_factory=PublishConfig)

    @classmethod
    def default_for(cls, channel_id: int) -> 'ChannelConfig':
        """Listener on a port equal to the channel ID; recording and publishing off."""
        return cls(ingest=IngestConfig(mode='listener', listen_port=channel_id))

    @classmethod
    def from_dict(cls, data: Any) -> 'ChannelConfig':
        """
        Build a configuration from decoded JSON.

        Raises:
            InvalidRequest: If the payload or one of its sections is not an
                object, or a field has the wrong type
        """
        if not isinstance(data, Mapping):
            raise InvalidRequest("Configuration must be a JSON object")
        return cls(
            ingest=_coerce_section(IngestConfig, data.get('ingest'), 'ingest'),
            recording=_coerce_section(RecordingConfig, data.get('recording'), 'recording'),
            publish=_coerce_section(PublishConfig, data.get('publish'), 'publish'),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def apply_quality_preset(publish: PublishConfig) -> PublishConfig:
    """Fill unset encoder fields from the named quality preset (in place)."""
    for name, value in QUALITY_PRESETS.get(publish.quality_preset, {}).items():
        if getattr(publish, name) is None:
            setattr(publish, name, value)
    return publish


def _check_port(errors: List[str], label: str, port: Optional[int]) -> None:
    if port is not None and port > MAX_PORT:
        errors.append(f"{label} must be at most {MAX_PORT}")


def validate_config(config: ChannelConfig) -> List[str]:
    """
    Validate a channel configuration.

    Returns:
        Every rule violation as a message, in rule order (empty if valid)
    """
    errors: List[str] = []
    ingest = config.ingest

    if ingest.mode not in INGEST_MODES:
        errors.append(f"Ingest mode must be one of {', '.join(INGEST_MODES)}")
    elif ingest.mode == 'caller':
        if not ingest.target_host:
            errors.append("Target host is required in caller mode")
        if ingest.target_port is None:
            errors.append("Target port is required in caller mode")
        elif ingest.target_port < MIN_PORT:
            errors.append(f"Target port must be at least {MIN_PORT}")
    else:
        if ingest.listen_port is None:
            errors.append("Listen port is required in listener mode")
        elif ingest.listen_port < MIN_PORT:
            errors.append(f"Listen port must be at least {MIN_PORT}")

    _check_port(errors, "Listen port", ingest.listen_port)
    _check_port(errors, "Target port", ingest.target_port)
    _check_port(errors, "Multicast destination port", ingest.multicast_dst_port)

    if ingest.multicast_enabled and not ingest.multicast_dst_ip:
        errors.append("Multicast destination IP is required when multicast is enabled")

    if ingest.passphrase and not MIN_PASSPHRASE_LENGTH <= len(ingest.passphrase) <= MAX_PASSPHRASE_LENGTH:
        errors.append(f"Passphrase must be {MIN_PASSPHRASE_LENGTH}-{MAX_PASSPHRASE_LENGTH} characters")
    if ingest.keylen is not None and ingest.keylen not in KEY_LENGTHS:
        errors.append(f"Key length must be one of {', '.join(str(k) for k in KEY_LENGTHS)}")

    if config.recording.enabled and not config.recording.path:
        errors.append("Record path is required when recording is enabled")

    publish = config.publish
    if publish.enabled and not publish.url:
        errors.append("Publish URL is required when publishing is enabled")
    if publish.quality_preset not in QUALITY_PRESETS:
        errors.append(f"Unknown quality preset '{publish.quality_preset}'")
    if publish.audio_pair not in AUDIO_PAIRS:
        errors.append(f"Audio pair must be one of {', '.join(AUDIO_PAIRS)}")

    return errors
