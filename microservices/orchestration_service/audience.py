"""
Audience Partitioning and Channel Filtering

partition_audience splits a population into balanced, randomized groups for
experiments. prepare_channel_audience narrows the campaign audience for one
channel by set-membership filters only; it never randomizes.
"""

import logging
import random
from datetime import datetime, timedelta
from typing import List, Optional, Sequence, TypeVar

from .models import Audience, AudienceSlice, ChannelSpec, Contact
from .protocols import InvalidSpecError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def partition_audience(
    items: Sequence[T],
    group_count: int,
    rng: Optional[random.Random] = None,
) -> List[List[T]]:
    """
    Split items into group_count shuffled groups.

    Sizes sum to len(items) and differ by at most one; the remainder goes
    to the earliest groups.
    """
    if group_count < 1:
        raise InvalidSpecError("Partition count must be at least 1", "group_count")

    shuffled = list(items)
    (rng or random.Random()).shuffle(shuffled)

    base_size, remainder = divmod(len(shuffled), group_count)
    groups = []
    start = 0
    for index in range(group_count):
        size = base_size + (1 if index < remainder else 0)
        groups.append(shuffled[start:start + size])
        start += size

    return groups


def window_audience(audience: Audience, start: Optional[int], end: Optional[int]) -> Audience:
    """Contiguous sub-audience [start, end) used by auto-generated stages"""
    lower = start or 0
    upper = audience.total_size if end is None else min(end, audience.total_size)
    upper = max(upper, lower)
    return Audience(
        contacts=audience.contacts[lower:upper],
        lists=audience.lists,
        segments=audience.segments,
        total_size=upper - lower,
    )


def prepare_channel_audience(
    channel: ChannelSpec,
    audience: Audience,
    now: datetime,
) -> AudienceSlice:
    """Build the audience slice a channel execution targets"""
    channel_filter = channel.audience_filter
    if channel_filter is None or channel_filter.is_empty:
        return AudienceSlice(
            size=audience.total_size,
            contacts=audience.contacts,
            lists=audience.lists,
            segments=audience.segments,
        )

    contacts: List[Contact] = list(audience.contacts)

    if channel_filter.preferred_channel is not None:
        contacts = [
            c for c in contacts
            if channel_filter.preferred_channel in c.preferred_channels
        ]

    if channel_filter.exclude_recent_ms is not None:
        cutoff = now - timedelta(milliseconds=channel_filter.exclude_recent_ms)
        contacts = [
            c for c in contacts
            if _last_touch(c, channel) is None or _last_touch(c, channel) < cutoff
        ]

    logger.info(
        f"Applied {channel.type.value} audience filters: "
        f"{audience.total_size} -> {len(contacts)} contacts"
    )

    return AudienceSlice(
        size=len(contacts),
        contacts=contacts,
        lists=audience.lists,
        segments=audience.segments,
    )


def _last_touch(contact: Contact, channel: ChannelSpec) -> Optional[datetime]:
    return contact.last_contacted_at.get(channel.type)


__all__ = ["partition_audience", "window_audience", "prepare_channel_audience"]
