"""
Channel Performance Aggregator

Polls provider telemetry per channel, merges the reported deltas into a
tracking session, and derives rates, a cross-channel summary and a delivery
trend.

Collection cycles for one session never overlap: fetches run concurrently,
and the session is updated only after every fetch has completed or failed.
"""

import asyncio
import logging
import math
from typing import Any, Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel

from core.config import TrackingConfig

from .models import (
    COUNT_FIELDS,
    AggregatedMetrics,
    BestChannel,
    ChannelContribution,
    ChannelCounts,
    ChannelMetrics,
    ChannelRates,
    ChannelType,
    CrossChannelReach,
    CurrentMetrics,
    PerformanceSession,
    ReachMethod,
    StopTrackingResult,
    TimeSeriesSnapshot,
    TrackingStatus,
    TrendAnalysis,
    TrendDirection,
)
from .protocols import (
    ClockProtocol,
    CollaboratorFailureError,
    InvalidSpecError,
    MetricsFetcherProtocol,
    NotFoundError,
    SessionStoreProtocol,
)

logger = logging.getLogger(__name__)

DELIVERY_WEIGHT = 0.4
ENGAGEMENT_WEIGHT = 0.6


# ====================
# Metric Calculations
# ====================


def _ratio(numerator: int, denominator: int) -> float:
    return numerator / denominator if denominator > 0 else 0.0


def calculate_rates(counts: ChannelCounts) -> ChannelRates:
    """Delivery and bounce over sent; engagement rates over delivered"""
    return ChannelRates(
        delivery_rate=_ratio(counts.delivered, counts.sent),
        open_rate=_ratio(counts.opened, counts.delivered),
        click_rate=_ratio(counts.clicked, counts.delivered),
        bounce_rate=_ratio(counts.bounced, counts.sent),
        unsubscribe_rate=_ratio(counts.unsubscribed, counts.delivered),
        reply_rate=_ratio(counts.replied, counts.delivered),
    )


def sum_counts(counts: Iterable[ChannelCounts]) -> ChannelCounts:
    totals = {name: 0 for name in COUNT_FIELDS}
    for item in counts:
        for name in COUNT_FIELDS:
            totals[name] += getattr(item, name)
    return ChannelCounts(**totals)


def find_best_channel(channel_metrics: Dict[ChannelType, ChannelMetrics]) -> Optional[BestChannel]:
    """Argmax of 0.4 * delivery + 0.6 * engagement; None when nothing scored"""
    best: Optional[BestChannel] = None
    for channel_type, metrics in channel_metrics.items():
        score = (
            DELIVERY_WEIGHT * metrics.rates.delivery_rate
            + ENGAGEMENT_WEIGHT * metrics.rates.engagement_rate
        )
        if score > 0 and (best is None or score > best.score):
            best = BestChannel(
                channel_type=channel_type,
                score=score,
                delivery_rate=metrics.rates.delivery_rate,
                engagement_rate=metrics.rates.engagement_rate,
            )
    return best


def calculate_reach(
    session: PerformanceSession, overlap_fraction: float
) -> CrossChannelReach:
    """
    Unique reach across channels.

    When every channel with deliveries reported contact ids the overlap is
    exact. Otherwise a fixed fraction of deliveries is assumed to overlap
    whenever more than one channel is tracked.
    """
    total_delivered = sum(m.counts.delivered for m in session.channel_metrics.values())
    delivering = [m for m in session.channel_metrics.values() if m.counts.delivered > 0]

    if delivering and all(m.reports_contacts for m in delivering):
        unique = min(len(set(session.reached_contact_ids)), total_delivered)
        overlap = total_delivered - unique
        method = ReachMethod.CONTACT_DEDUP
    else:
        overlap = 0
        if len(session.channel_metrics) > 1:
            overlap = math.floor(total_delivered * overlap_fraction)
        unique = total_delivered - overlap
        method = ReachMethod.ESTIMATED

    return CrossChannelReach(
        total_delivered=total_delivered,
        estimated_overlap=overlap,
        unique_reach=unique,
        overlap_percentage=_ratio(overlap, total_delivered) * 100,
        method=method,
    )


def calculate_aggregated_metrics(
    session: PerformanceSession, overlap_fraction: float
) -> AggregatedMetrics:
    overall = session.overall_metrics

    contribution = {}
    for channel_type, metrics in session.channel_metrics.items():
        contribution[channel_type] = ChannelContribution(
            sent_contribution=_ratio(metrics.counts.sent, overall.sent) * 100,
            delivered_contribution=_ratio(metrics.counts.delivered, overall.delivered) * 100,
            engagement_contribution=_ratio(metrics.counts.engaged, overall.engaged) * 100,
        )

    return AggregatedMetrics(
        overall_delivery_rate=_ratio(overall.delivered, overall.sent),
        overall_engagement_rate=_ratio(overall.engaged, overall.delivered),
        overall_bounce_rate=_ratio(overall.bounced, overall.sent),
        cross_channel_reach=calculate_reach(session, overlap_fraction),
        best_performing_channel=find_best_channel(session.channel_metrics),
        channel_contribution=contribution,
    )


def analyze_trend(time_series: Sequence[TimeSeriesSnapshot], window: int) -> TrendAnalysis:
    """Compare first and last cumulative delivery rate over the recent window"""
    if len(time_series) < 2:
        return TrendAnalysis(
            trend=TrendDirection.INSUFFICIENT_DATA,
            data_points=len(time_series),
            analysis="Not enough data points to determine a trend",
        )

    recent = list(time_series)[-window:]
    first_rate = recent[0].delivery_rate
    last_rate = recent[-1].delivery_rate
    change = last_rate - first_rate

    if change > 0:
        trend = TrendDirection.IMPROVING
        analysis = f"Delivery rate improving by {abs(change) * 100:.0f} points"
    elif change < 0:
        trend = TrendDirection.DECLINING
        analysis = f"Delivery rate declining by {abs(change) * 100:.0f} points"
    else:
        trend = TrendDirection.STABLE
        analysis = "Delivery rate is stable"

    return TrendAnalysis(
        trend=trend,
        data_points=len(time_series),
        first_rate=first_rate,
        last_rate=last_rate,
        change=change,
        analysis=analysis,
    )


def _clamped_counts(delta: Any) -> Dict[str, int]:
    raw = delta.model_dump() if isinstance(delta, BaseModel) else dict(delta)
    return {name: max(int(raw.get(name) or 0), 0) for name in COUNT_FIELDS}


# ====================
# Aggregator
# ====================


class ChannelPerformanceAggregator:
    """Tracking sessions, one per orchestration"""

    def __init__(
        self,
        session_store: SessionStoreProtocol,
        metrics_fetcher: MetricsFetcherProtocol,
        clock: ClockProtocol,
        config: Optional[TrackingConfig] = None,
        event_publisher=None,
    ):
        self.session_store = session_store
        self.metrics_fetcher = metrics_fetcher
        self.clock = clock
        self.config = config or TrackingConfig()
        self.event_publisher = event_publisher
        self._loops: Dict[str, asyncio.Task] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    async def start_tracking(
        self,
        orchestration_id: str,
        channels: Sequence[ChannelType],
        initial_channel_results: Optional[Dict[ChannelType, str]] = None,
    ) -> str:
        """Create a session, collect once, then poll on the configured interval"""
        existing = await self.session_store.get_session_by_orchestration(orchestration_id)
        if existing is not None and existing.status == TrackingStatus.ACTIVE:
            raise InvalidSpecError(
                f"Orchestration {orchestration_id} is already tracked by {existing.tracking_id}",
                "orchestration_id",
            )

        channel_types = list(dict.fromkeys(channels))
        results = {
            ct: campaign_id
            for ct, campaign_id in (initial_channel_results or {}).items()
            if campaign_id
        }
        session = PerformanceSession(
            orchestration_id=orchestration_id,
            channels=channel_types,
            channel_results=results,
            channel_metrics={
                ct: ChannelMetrics(channel_type=ct, provider_campaign_id=results.get(ct))
                for ct in channel_types
            },
            started_at=self.clock.now(),
        )
        await self.session_store.save_session(session)
        self._locks[session.tracking_id] = asyncio.Lock()

        logger.info(
            f"Started tracking {orchestration_id} as {session.tracking_id} "
            f"({len(channel_types)} channels)"
        )

        await self.collect_metrics(orchestration_id)
        self._loops[session.tracking_id] = asyncio.ensure_future(
            self._collection_loop(session.tracking_id)
        )

        if self.event_publisher:
            await self.event_publisher.publish_tracking_started(
                orchestration_id, session.tracking_id, [ct.value for ct in channel_types]
            )
        return session.tracking_id

    async def register_channel_result(
        self,
        orchestration_id: str,
        channel_type: ChannelType,
        provider_campaign_id: str,
    ) -> None:
        """Record the provider campaign id of a channel that has been sent"""
        session = await self._get_session(orchestration_id)
        session.channel_results[channel_type] = provider_campaign_id
        if channel_type not in session.channels:
            session.channels.append(channel_type)
        metrics = session.channel_metrics.setdefault(
            channel_type, ChannelMetrics(channel_type=channel_type)
        )
        metrics.provider_campaign_id = provider_campaign_id
        await self.session_store.save_session(session)
        logger.debug(
            f"Registered {channel_type.value} campaign {provider_campaign_id} "
            f"for {orchestration_id}"
        )

    async def collect_metrics(self, orchestration_id: str) -> bool:
        """
        Run one collection cycle.

        Returns False when the session is stopped or a cycle is already
        running for it.
        """
        session = await self._get_session(orchestration_id)
        if session.status != TrackingStatus.ACTIVE:
            return False

        lock = self._locks.setdefault(session.tracking_id, asyncio.Lock())
        if lock.locked():
            logger.debug(f"Collection already running for {session.tracking_id}, skipping tick")
            return False

        async with lock:
            await self._run_cycle(session.tracking_id)
        return True

    async def get_current_metrics(self, orchestration_id: str) -> CurrentMetrics:
        session = await self._get_session(orchestration_id)
        return self._build_current_metrics(session)

    async def stop_tracking(self, orchestration_id: str) -> StopTrackingResult:
        session = await self.session_store.get_session_by_orchestration(orchestration_id)
        if session is None or session.status != TrackingStatus.ACTIVE:
            return StopTrackingResult(orchestration_id=orchestration_id, found=False)

        loop_task = self._loops.pop(session.tracking_id, None)
        if loop_task is not None:
            loop_task.cancel()
        self._locks.pop(session.tracking_id, None)

        stopped_at = self.clock.now()
        session.status = TrackingStatus.STOPPED
        session.stopped_at = stopped_at
        await self.session_store.save_session(session)

        duration_ms = int((stopped_at - session.started_at).total_seconds() * 1000)
        logger.info(f"Stopped tracking {orchestration_id} after {duration_ms}ms")

        if self.event_publisher:
            await self.event_publisher.publish_tracking_stopped(
                orchestration_id, session.tracking_id, duration_ms
            )

        return StopTrackingResult(
            orchestration_id=orchestration_id,
            found=True,
            tracking_id=session.tracking_id,
            duration_ms=duration_ms,
            final_metrics=self._build_current_metrics(session),
        )

    async def active_session_count(self) -> int:
        sessions = await self.session_store.list_sessions()
        return sum(1 for s in sessions if s.status == TrackingStatus.ACTIVE)

    async def shutdown(self) -> None:
        """Stop every collection loop and drop all sessions"""
        loops = list(self._loops.values())
        for task in loops:
            task.cancel()
        if loops:
            await asyncio.gather(*loops, return_exceptions=True)

        self._loops.clear()
        self._locks.clear()
        await self.session_store.clear()
        logger.info(f"Performance aggregator shut down, {len(loops)} loops stopped")

    # ====================
    # Internals
    # ====================

    async def _get_session(self, orchestration_id: str) -> PerformanceSession:
        session = await self.session_store.get_session_by_orchestration(orchestration_id)
        if session is None:
            raise NotFoundError(
                f"No tracking session for orchestration {orchestration_id}",
                "tracking_session",
                orchestration_id,
            )
        return session

    async def _collection_loop(self, tracking_id: str) -> None:
        while True:
            await self.clock.sleep(self.config.collection_interval_ms)

            session = await self.session_store.get_session(tracking_id)
            if session is None or session.status != TrackingStatus.ACTIVE:
                return

            try:
                await self.collect_metrics(session.orchestration_id)
            except Exception as e:
                logger.error(f"Error in metric collection for {tracking_id}: {e}")

    async def _run_cycle(self, tracking_id: str) -> None:
        session = await self.session_store.get_session(tracking_id)
        targets = [
            (channel_type, campaign_id)
            for channel_type, campaign_id in session.channel_results.items()
            if campaign_id
        ]

        results = await asyncio.gather(
            *[
                self.metrics_fetcher.fetch_channel_metrics(channel_type, campaign_id)
                for channel_type, campaign_id in targets
            ],
            return_exceptions=True,
        )

        # Re-read after the awaits so registrations made meanwhile are kept
        session = await self.session_store.get_session(tracking_id)
        if session is None or session.status != TrackingStatus.ACTIVE:
            logger.debug(f"Tracking {tracking_id} ended during collection, results dropped")
            return

        now = self.clock.now()
        snapshot_channels: Dict[ChannelType, ChannelCounts] = {}
        failed: List[ChannelType] = []
        reached = set(session.reached_contact_ids)

        for (channel_type, _), result in zip(targets, results):
            metrics = session.channel_metrics.setdefault(
                channel_type, ChannelMetrics(channel_type=channel_type)
            )

            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                error = CollaboratorFailureError(
                    f"Metrics fetch failed for {channel_type.value}: {result}", channel_type
                )
                logger.warning(str(error))
                metrics.failed_fetches += 1
                failed.append(channel_type)
                continue

            delta = _clamped_counts(result)
            merged = {
                name: getattr(metrics.counts, name) + delta[name] for name in COUNT_FIELDS
            }
            metrics.counts = ChannelCounts(**merged)
            metrics.rates = calculate_rates(metrics.counts)
            metrics.last_update = now
            snapshot_channels[channel_type] = ChannelCounts(**delta)

            contact_ids = getattr(result, "delivered_contact_ids", None)
            if contact_ids is None and isinstance(result, dict):
                contact_ids = result.get("delivered_contact_ids")
            if contact_ids is not None:
                metrics.reports_contacts = True
                for contact_id in contact_ids:
                    if contact_id not in reached:
                        reached.add(contact_id)
                        session.reached_contact_ids.append(contact_id)

        session.overall_metrics = sum_counts(
            m.counts for m in session.channel_metrics.values()
        )
        overall = session.overall_metrics
        session.time_series.append(TimeSeriesSnapshot(
            timestamp=now,
            channels=snapshot_channels,
            failed_channels=failed,
            total_sent=overall.sent,
            total_delivered=overall.delivered,
            delivery_rate=_ratio(overall.delivered, overall.sent),
        ))
        limit = self.config.time_series_limit
        if len(session.time_series) > limit:
            session.time_series = session.time_series[-limit:]
        session.last_update = now

        await self.session_store.save_session(session)
        logger.debug(
            f"Collected metrics for {tracking_id}: {len(snapshot_channels)} channels, "
            f"{len(failed)} failed, sent={overall.sent} delivered={overall.delivered}"
        )

    def _build_current_metrics(self, session: PerformanceSession) -> CurrentMetrics:
        return CurrentMetrics(
            orchestration_id=session.orchestration_id,
            tracking_id=session.tracking_id,
            status=session.status,
            channel_metrics=session.channel_metrics,
            overall_metrics=session.overall_metrics,
            calculated_metrics=calculate_aggregated_metrics(
                session, self.config.estimated_overlap_fraction
            ),
            trend_analysis=analyze_trend(session.time_series, self.config.trend_window),
            time_series=session.time_series,
            last_update=session.last_update,
        )


__all__ = [
    "ChannelPerformanceAggregator",
    "calculate_rates",
    "sum_counts",
    "find_best_channel",
    "calculate_reach",
    "calculate_aggregated_metrics",
    "analyze_trend",
]
