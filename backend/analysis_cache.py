"""
Short-lived cache of stream analysis results.

Keeps the latest analysis per channel so that frequent UI polling does not
spawn an analyzer process for every request. Unavailable results are cached
as well; they expire like any other sample.
"""

import time
from typing import Any, Callable, Dict, Optional, Tuple

from analysis_models import StreamAnalysis
from logging_config import setup_logging

logger = setup_logging(__name__)

# Default TTL in seconds
DEFAULT_ANALYSIS_TTL = 2.0


class AnalysisCache:
    """Per-channel cache of the latest StreamAnalysis."""

    def __init__(
        self,
        sampler: Callable[[int], StreamAnalysis],
        ttl: float = DEFAULT_ANALYSIS_TTL,
        clock: Callable[[], float] = time.monotonic
    ):
        """Initialize the cache.

        Args:
            sampler: Produces a fresh analysis for a channel on a miss
            ttl: Seconds a sample stays valid
            clock: Monotonic time source
        """
        self.sampler = sampler
        self.ttl = ttl
        self._clock = clock
        # channel_id -> (captured_at, analysis)
        self._entries: Dict[int, Tuple[float, StreamAnalysis]] = {}

    def _fresh(self, channel_id: int, now: float) -> Optional[StreamAnalysis]:
        entry = self._entries.get(channel_id)
        if entry is None:
            return None
        captured_at, analysis = entry
        if now - captured_at < self.ttl:
            return analysis
        return None

    def get(self, channel_id: int) -> StreamAnalysis:
        """Get the channel's analysis, sampling anew if the cached one expired.

        Two concurrent misses may both sample; the later result wins.
        """
        cached = self._fresh(channel_id, self._clock())
        if cached is not None:
            logger.debug(f"Analysis cache hit for channel {channel_id}")
            return cached

        logger.debug(f"Analysis cache miss for channel {channel_id}, sampling")
        analysis = self.sampler(channel_id)
        self._entries[channel_id] = (self._clock(), analysis)
        return analysis

    def invalidate(self, channel_id: Optional[int] = None) -> None:
        """Drop one channel's sample, or every sample when channel_id is None."""
        if channel_id is None:
            self._entries.clear()
            logger.debug("Invalidated all analysis samples")
        else:
            self._entries.pop(channel_id, None)
            logger.debug(f"Invalidated analysis sample for channel {channel_id}")

    def get_status(self) -> Dict[str, Any]:
        now = self._clock()
        channels = {}
        for channel_id, (captured_at, analysis) in list(self._entries.items()):
            age = now - captured_at
            channels[str(channel_id)] = {
                'age_seconds': round(age, 3),
                'valid': age < self.ttl,
                'available': analysis.available,
            }
        return {'ttl_seconds': self.ttl, 'entries': len(channels), 'channels': channels}
