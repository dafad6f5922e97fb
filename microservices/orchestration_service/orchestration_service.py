"""
Orchestration Service Business Logic

Launches multi-channel campaigns: validates the request, builds the execution
plan, arms its triggers, dispatches each channel through the channel sender
when its trigger fires, and tracks delivery performance.
"""

import logging
import uuid
from datetime import timedelta
from functools import partial
from typing import Any, Dict, List, Optional

from .experiment_service import ExperimentEngine
from .models import (
    CampaignRequest,
    CancelResult,
    ChannelExecution,
    ChannelResult,
    CurrentMetrics,
    OrchestrationProgress,
    OrchestrationRecord,
    OrchestrationResult,
    OrchestrationState,
    OrchestrationStatus,
    ScheduleStrategy,
    ScheduledTrigger,
    TriggerState,
)
from .performance_tracker import ChannelPerformanceAggregator
from .plan_builder import ExecutionPlanBuilder
from .protocols import (
    ChannelSenderProtocol,
    ClockProtocol,
    CollaboratorFailureError,
    InvalidSpecError,
    NotFoundError,
    OrchestrationStoreProtocol,
)
from .scheduler import PlanScheduler

logger = logging.getLogger(__name__)


class OrchestrationService:
    """Multi-channel campaign orchestration"""

    def __init__(
        self,
        orchestration_store: OrchestrationStoreProtocol,
        plan_builder: ExecutionPlanBuilder,
        scheduler: PlanScheduler,
        aggregator: ChannelPerformanceAggregator,
        sender: ChannelSenderProtocol,
        clock: ClockProtocol,
        experiment_engine: Optional[ExperimentEngine] = None,
        event_publisher=None,
    ):
        self.orchestration_store = orchestration_store
        self.plan_builder = plan_builder
        self.scheduler = scheduler
        self.aggregator = aggregator
        self.sender = sender
        self.clock = clock
        self.experiment_engine = experiment_engine
        self.event_publisher = event_publisher
        self.metrics = {
            "total_campaigns": 0,
            "channel_executions": 0,
            "channel_failures": 0,
        }

    # ====================
    # Campaign Launch
    # ====================

    async def orchestrate_campaign(self, request: CampaignRequest) -> OrchestrationResult:
        """
        Launch a campaign across its channels.

        Raises:
            InvalidSpecError: request is malformed; nothing has been created
            UnsupportedStrategyError: unknown strategy name
        """
        self._validate_request(request)

        orchestration_id = f"orch_{uuid.uuid4().hex[:16]}"
        logger.info(
            f"Starting orchestration {orchestration_id} '{request.name}': "
            f"{len(request.channels)} channels, strategy {request.strategy}"
        )

        plan = await self.plan_builder.build_plan(
            request.strategy, request.channels, request.audience, request.plan_options
        )
        if self.event_publisher:
            await self.event_publisher.publish_plan_created(
                plan_id=plan.plan_id,
                strategy=plan.type.value,
                requested_strategy=plan.requested_strategy.value,
                channel_count=len(plan.channels),
                total_duration_ms=plan.total_duration_ms,
                orchestration_id=orchestration_id,
            )

        estimated_completion = plan.created_at + timedelta(milliseconds=plan.total_duration_ms)
        record = OrchestrationRecord(
            orchestration_id=orchestration_id,
            name=request.name,
            plan_id=plan.plan_id,
            started_at=self.clock.now(),
            estimated_completion=estimated_completion,
        )
        await self.orchestration_store.save_orchestration(record)

        # Session must exist before the first trigger can register a result
        record.tracking_id = await self.aggregator.start_tracking(
            orchestration_id, [execution.channel.type for execution in plan.channels]
        )
        await self.orchestration_store.save_orchestration(record)

        schedule = await self.scheduler.schedule(
            plan, partial(self._execute_channel, orchestration_id)
        )
        if self.event_publisher:
            await self.event_publisher.publish_plan_scheduled(
                plan_id=plan.plan_id,
                scheduled_count=schedule.scheduled_count,
                immediate_count=schedule.immediate_count,
                next_execution=schedule.next_execution,
            )

        self.metrics["total_campaigns"] += 1
        logger.info(
            f"Orchestration {orchestration_id} executing: plan {plan.plan_id} "
            f"({plan.type.value}), estimated completion {estimated_completion.isoformat()}"
        )

        return OrchestrationResult(
            orchestration_id=orchestration_id,
            plan=plan,
            scheduled_count=schedule.scheduled_count,
            tracking_id=record.tracking_id,
            estimated_completion=estimated_completion,
            state=record.state,
        )

    def _validate_request(self, request: CampaignRequest) -> None:
        if not request.name or not request.name.strip():
            raise InvalidSpecError("Campaign name is required", "name")
        if not request.channels:
            raise InvalidSpecError("At least one channel is required", "channels")

        strategy = self.plan_builder.resolve_strategy(request.strategy)
        if strategy == ScheduleStrategy.STAGED and not request.plan_options.stages:
            raise InvalidSpecError(
                "Staged orchestration requires stages configuration", "stages"
            )

    # ====================
    # Channel Execution
    # ====================

    async def _execute_channel(self, orchestration_id: str, execution: ChannelExecution) -> None:
        channel_type = execution.channel.type
        try:
            handle = await self.sender.send_via_channel(channel_type, execution)
            provider_campaign_id = handle.get("campaign_id") if handle else None
            if not provider_campaign_id:
                raise ValueError("delivery handle has no campaign_id")
        except Exception as e:
            error = CollaboratorFailureError(
                f"Channel {channel_type.value} send failed for {orchestration_id}: {e}",
                channel_type,
            )
            logger.warning(str(error))
            self.metrics["channel_failures"] += 1
            await self._record_channel_result(orchestration_id, ChannelResult(
                channel_type=channel_type,
                execution_id=execution.execution_id,
                success=False,
                error=str(e),
                executed_at=self.clock.now(),
                audience_size=execution.audience.size,
            ))
            if self.event_publisher:
                await self.event_publisher.publish_channel_failed(
                    orchestration_id=orchestration_id,
                    execution_id=execution.execution_id,
                    channel_type=channel_type.value,
                    error=str(e),
                )
            return

        self.metrics["channel_executions"] += 1
        logger.info(
            f"Channel {channel_type.value} executed for {orchestration_id}: "
            f"campaign {provider_campaign_id}, {execution.audience.size} recipients"
        )

        try:
            await self.aggregator.register_channel_result(
                orchestration_id, channel_type, provider_campaign_id
            )
        except NotFoundError:
            logger.warning(f"No tracking session for {orchestration_id}, result not tracked")

        await self._record_channel_result(orchestration_id, ChannelResult(
            channel_type=channel_type,
            execution_id=execution.execution_id,
            success=True,
            provider_campaign_id=provider_campaign_id,
            executed_at=self.clock.now(),
            audience_size=execution.audience.size,
        ))
        if self.event_publisher:
            await self.event_publisher.publish_channel_executed(
                orchestration_id=orchestration_id,
                execution_id=execution.execution_id,
                channel_type=channel_type.value,
                audience_size=execution.audience.size,
                provider_campaign_id=provider_campaign_id,
            )

    async def _record_channel_result(self, orchestration_id: str, result: ChannelResult) -> None:
        record = await self.orchestration_store.get_orchestration(orchestration_id)
        if record is None:
            return
        record.channel_results[result.execution_id] = result

        triggers = await self.scheduler.get_triggers(record.plan_id)
        outstanding = [t for t in triggers if t.state in (TriggerState.PENDING, TriggerState.ARMED)]
        executed = [t for t in triggers if t.state == TriggerState.FIRED]
        all_reported = all(t.execution_id in record.channel_results for t in executed)

        if record.state == OrchestrationState.EXECUTING and not outstanding and all_reported:
            succeeded = any(r.success for r in record.channel_results.values())
            record.state = OrchestrationState.COMPLETED if succeeded else OrchestrationState.FAILED
            record.completed_at = self.clock.now()
            logger.info(f"Orchestration {orchestration_id} {record.state.value}")

        await self.orchestration_store.save_orchestration(record)

    # ====================
    # Status and Control
    # ====================

    async def get_orchestration(self, orchestration_id: str) -> OrchestrationRecord:
        record = await self.orchestration_store.get_orchestration(orchestration_id)
        if record is None:
            raise NotFoundError(
                f"Orchestration not found: {orchestration_id}", "orchestration", orchestration_id
            )
        return record

    async def get_status(self, orchestration_id: str) -> OrchestrationStatus:
        record = await self.get_orchestration(orchestration_id)
        triggers = await self.scheduler.get_triggers(record.plan_id)

        metrics: Optional[CurrentMetrics] = None
        try:
            metrics = await self.aggregator.get_current_metrics(orchestration_id)
        except NotFoundError:
            logger.debug(f"No tracking session for {orchestration_id}")

        return OrchestrationStatus(
            orchestration_id=record.orchestration_id,
            name=record.name,
            state=record.state,
            progress=self._calculate_progress(triggers, record),
            triggers=triggers,
            channel_results=record.channel_results,
            metrics=metrics,
            started_at=record.started_at,
            estimated_completion=record.estimated_completion,
        )

    @staticmethod
    def _calculate_progress(
        triggers: List[ScheduledTrigger], record: OrchestrationRecord
    ) -> OrchestrationProgress:
        failed = sum(1 for r in record.channel_results.values() if not r.success)
        fired = sum(1 for t in triggers if t.state == TriggerState.FIRED)
        pending = sum(
            1 for t in triggers if t.state in (TriggerState.PENDING, TriggerState.ARMED)
        )
        cancelled = sum(1 for t in triggers if t.state == TriggerState.CANCELLED)
        total = len(triggers)
        return OrchestrationProgress(
            total=total,
            fired=fired,
            failed=failed,
            pending=pending,
            cancelled=cancelled,
            percentage=round(fired / total * 100) if total else 0,
        )

    async def pause_campaign(self, orchestration_id: str) -> OrchestrationStatus:
        """Cancel outstanding triggers; channels already sent are not recalled"""
        record = await self.get_orchestration(orchestration_id)
        if record.state != OrchestrationState.EXECUTING:
            logger.info(f"Orchestration {orchestration_id} is {record.state.value}, nothing to pause")
            return await self.get_status(orchestration_id)

        await self.cancel_plan(record.plan_id)
        record.state = OrchestrationState.PAUSED
        record.paused_at = self.clock.now()
        await self.orchestration_store.save_orchestration(record)

        logger.info(f"Orchestration {orchestration_id} paused")
        return await self.get_status(orchestration_id)

    async def stop_campaign(self, orchestration_id: str) -> OrchestrationStatus:
        """Cancel outstanding triggers and stop tracking"""
        record = await self.get_orchestration(orchestration_id)
        await self.cancel_plan(record.plan_id)
        await self.aggregator.stop_tracking(orchestration_id)

        if record.state in (OrchestrationState.EXECUTING, OrchestrationState.PAUSED):
            record.state = OrchestrationState.COMPLETED
            record.completed_at = self.clock.now()
            await self.orchestration_store.save_orchestration(record)

        logger.info(f"Orchestration {orchestration_id} stopped")
        return await self.get_status(orchestration_id)

    async def cancel_plan(self, plan_id: str) -> CancelResult:
        result = await self.scheduler.cancel(plan_id)
        if result.found and self.event_publisher:
            await self.event_publisher.publish_plan_cancelled(plan_id, result.cancelled_timers)
        return result

    async def get_metrics(self, orchestration_id: str) -> CurrentMetrics:
        return await self.aggregator.get_current_metrics(orchestration_id)

    # ====================
    # Health and Lifecycle
    # ====================

    async def get_health(self) -> Dict[str, Any]:
        records = await self.orchestration_store.list_orchestrations()
        health = {
            "status": "healthy",
            "timestamp": self.clock.now().isoformat(),
            "active_orchestrations": sum(
                1 for r in records if r.state == OrchestrationState.EXECUTING
            ),
            "tracked_sessions": await self.aggregator.active_session_count(),
            "metrics": dict(self.metrics),
        }
        if self.experiment_engine is not None:
            health["active_experiments"] = await self.experiment_engine.active_experiment_count()
        return health

    async def shutdown(self) -> None:
        logger.info("Shutting down orchestration service")
        await self.scheduler.shutdown()
        await self.aggregator.shutdown()
        if self.experiment_engine is not None:
            await self.experiment_engine.shutdown()
        logger.info(
            f"Orchestration service shutdown complete, "
            f"{self.metrics['total_campaigns']} campaigns handled"
        )


__all__ = ["OrchestrationService"]
