"""
Orchestration Event Publishers

Publishes events through the injected event bus.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .models import (
    OrchestrationEventType,
    PlanCreatedEventData,
    PlanScheduledEventData,
    PlanCancelledEventData,
    ChannelExecutionEventData,
    TrackingEventData,
    ExperimentCreatedEventData,
    WinnerDeclaredEventData,
)

logger = logging.getLogger(__name__)


class OrchestrationEventPublisher:
    """Publisher for orchestration service events"""

    def __init__(self, event_bus=None):
        self.event_bus = event_bus
        self.source = "orchestration_service"

    async def publish(
        self,
        event_type: OrchestrationEventType,
        data: Dict[str, Any],
    ) -> bool:
        """
        Publish an event to the bus.

        Args:
            event_type: The event type enum
            data: Event data payload

        Returns:
            True if published successfully, False otherwise
        """
        if not self.event_bus:
            logger.debug(f"Event bus not configured, skipping publish: {event_type.value}")
            return False

        try:
            event = {
                "event_type": event_type.value,
                "source": self.source,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "data": data,
            }

            await self.event_bus.publish(event_type.value, event)
            logger.debug(f"Published event: {event_type.value}")
            return True

        except Exception as e:
            logger.error(f"Failed to publish event {event_type.value}: {e}")
            return False

    # ====================
    # Plan Events
    # ====================

    async def publish_plan_created(
        self,
        plan_id: str,
        strategy: str,
        requested_strategy: str,
        channel_count: int,
        total_duration_ms: int,
        orchestration_id: Optional[str] = None,
    ) -> bool:
        """Publish orchestration.plan.created event"""
        data = PlanCreatedEventData(
            plan_id=plan_id,
            orchestration_id=orchestration_id,
            strategy=strategy,
            requested_strategy=requested_strategy,
            channel_count=channel_count,
            total_duration_ms=total_duration_ms,
            timestamp=datetime.now(timezone.utc),
        )
        return await self.publish(OrchestrationEventType.PLAN_CREATED, data.model_dump(mode="json"))

    async def publish_plan_scheduled(
        self,
        plan_id: str,
        scheduled_count: int,
        immediate_count: int,
        next_execution: Optional[datetime] = None,
    ) -> bool:
        """Publish orchestration.plan.scheduled event"""
        data = PlanScheduledEventData(
            plan_id=plan_id,
            scheduled_count=scheduled_count,
            immediate_count=immediate_count,
            next_execution=next_execution,
            timestamp=datetime.now(timezone.utc),
        )
        return await self.publish(OrchestrationEventType.PLAN_SCHEDULED, data.model_dump(mode="json"))

    async def publish_plan_cancelled(self, plan_id: str, cancelled_timers: int) -> bool:
        """Publish orchestration.plan.cancelled event"""
        data = PlanCancelledEventData(
            plan_id=plan_id,
            cancelled_timers=cancelled_timers,
            timestamp=datetime.now(timezone.utc),
        )
        return await self.publish(OrchestrationEventType.PLAN_CANCELLED, data.model_dump(mode="json"))

    # ====================
    # Channel Events
    # ====================

    async def publish_channel_executed(
        self,
        orchestration_id: str,
        execution_id: str,
        channel_type: str,
        audience_size: int,
        provider_campaign_id: Optional[str] = None,
    ) -> bool:
        """Publish orchestration.channel.executed event"""
        data = ChannelExecutionEventData(
            orchestration_id=orchestration_id,
            execution_id=execution_id,
            channel_type=channel_type,
            audience_size=audience_size,
            provider_campaign_id=provider_campaign_id,
            timestamp=datetime.now(timezone.utc),
        )
        return await self.publish(OrchestrationEventType.CHANNEL_EXECUTED, data.model_dump(mode="json"))

    async def publish_channel_failed(
        self,
        orchestration_id: str,
        execution_id: str,
        channel_type: str,
        error: str,
    ) -> bool:
        """Publish orchestration.channel.failed event"""
        data = ChannelExecutionEventData(
            orchestration_id=orchestration_id,
            execution_id=execution_id,
            channel_type=channel_type,
            error=error,
            timestamp=datetime.now(timezone.utc),
        )
        return await self.publish(OrchestrationEventType.CHANNEL_FAILED, data.model_dump(mode="json"))

    # ====================
    # Tracking Events
    # ====================

    async def publish_tracking_started(
        self, orchestration_id: str, tracking_id: str, channels: List[str]
    ) -> bool:
        """Publish orchestration.tracking.started event"""
        data = TrackingEventData(
            orchestration_id=orchestration_id,
            tracking_id=tracking_id,
            channels=channels,
            timestamp=datetime.now(timezone.utc),
        )
        return await self.publish(OrchestrationEventType.TRACKING_STARTED, data.model_dump(mode="json"))

    async def publish_tracking_stopped(
        self, orchestration_id: str, tracking_id: str, duration_ms: int
    ) -> bool:
        """Publish orchestration.tracking.stopped event"""
        data = TrackingEventData(
            orchestration_id=orchestration_id,
            tracking_id=tracking_id,
            duration_ms=duration_ms,
            timestamp=datetime.now(timezone.utc),
        )
        return await self.publish(OrchestrationEventType.TRACKING_STOPPED, data.model_dump(mode="json"))

    # ====================
    # Experiment Events
    # ====================

    async def publish_experiment_created(
        self,
        test_id: str,
        name: str,
        primary_metric: str,
        variant_ids: List[str],
        required_sample_size: int,
    ) -> bool:
        """Publish orchestration.experiment.created event"""
        data = ExperimentCreatedEventData(
            test_id=test_id,
            name=name,
            primary_metric=primary_metric,
            variant_ids=variant_ids,
            required_sample_size=required_sample_size,
            timestamp=datetime.now(timezone.utc),
        )
        return await self.publish(OrchestrationEventType.EXPERIMENT_CREATED, data.model_dump(mode="json"))

    async def publish_winner_declared(
        self,
        test_id: str,
        variant_id: str,
        improvement: float,
        confidence: float,
    ) -> bool:
        """Publish orchestration.experiment.winner_declared event"""
        data = WinnerDeclaredEventData(
            test_id=test_id,
            variant_id=variant_id,
            improvement=improvement,
            confidence=confidence,
            timestamp=datetime.now(timezone.utc),
        )
        return await self.publish(
            OrchestrationEventType.EXPERIMENT_WINNER_DECLARED, data.model_dump(mode="json")
        )
