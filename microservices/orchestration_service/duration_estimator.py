"""
Channel Duration Estimator

Estimated execution time of one channel batch: a fixed base cost plus a
per-recipient cost. The table is tuning configuration, not a measurement.
"""

from typing import Dict, Optional

from .models import ChannelType


DEFAULT_BASE_MS: Dict[ChannelType, int] = {
    ChannelType.EMAIL: 120_000,
    ChannelType.SMS: 60_000,
    ChannelType.MMS: 60_000,
    ChannelType.WHATSAPP: 60_000,
}

DEFAULT_PER_RECIPIENT_MS: Dict[ChannelType, int] = {
    ChannelType.EMAIL: 10,      # bulk content, cheapest per message
    ChannelType.SMS: 100,       # carrier rate limits
    ChannelType.MMS: 200,       # media processing
    ChannelType.WHATSAPP: 100,
}

FALLBACK_BASE_MS = 60_000
FALLBACK_PER_RECIPIENT_MS = 50


class DurationEstimator:
    """Pure estimate of channel execution time in milliseconds"""

    def __init__(
        self,
        base_ms: Optional[Dict[ChannelType, int]] = None,
        per_recipient_ms: Optional[Dict[ChannelType, int]] = None,
    ):
        self.base_ms = {**DEFAULT_BASE_MS, **(base_ms or {})}
        self.per_recipient_ms = {**DEFAULT_PER_RECIPIENT_MS, **(per_recipient_ms or {})}

    def estimate(self, channel_type: ChannelType, audience_size: int) -> int:
        base = self.base_ms.get(channel_type, FALLBACK_BASE_MS)
        per_recipient = self.per_recipient_ms.get(channel_type, FALLBACK_PER_RECIPIENT_MS)
        return base + per_recipient * max(audience_size, 0)


__all__ = ["DurationEstimator"]
