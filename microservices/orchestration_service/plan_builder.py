"""
Execution Plan Builder

Turns a campaign's channel specs and audience into a timed ExecutionPlan.

Strategies:
- sequential: channels one after another, cumulative inter-channel delays
- parallel: every channel shares one start delay
- staged: caller-defined stages, each with its own delay and channel subset
- optimal: a fixed decision table that resolves to one of the above
"""

import logging
import math
from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Tuple, Union

from core.config import SchedulingConfig

from .audience import prepare_channel_audience, window_audience
from .duration_estimator import DurationEstimator
from .models import (
    BULK_CONTENT_CHANNELS,
    INSTANT_CHANNELS,
    Audience,
    ChannelExecution,
    ChannelSpec,
    ChannelTiming,
    ExecutionPlan,
    PlanOptions,
    ScheduleStrategy,
    StageInfo,
    StageSpec,
)
from .protocols import (
    ClockProtocol,
    InvalidSpecError,
    NotFoundError,
    PlanStoreProtocol,
    UnsupportedStrategyError,
)

logger = logging.getLogger(__name__)


class ExecutionPlanBuilder:
    """Selects a scheduling strategy and produces a timed plan"""

    def __init__(
        self,
        plan_store: PlanStoreProtocol,
        clock: ClockProtocol,
        estimator: Optional[DurationEstimator] = None,
        config: Optional[SchedulingConfig] = None,
    ):
        self.plan_store = plan_store
        self.clock = clock
        self.estimator = estimator or DurationEstimator()
        self.config = config or SchedulingConfig()

    @staticmethod
    def resolve_strategy(strategy: Union[str, ScheduleStrategy, None]) -> ScheduleStrategy:
        if strategy is None:
            return ScheduleStrategy.SEQUENTIAL
        try:
            return ScheduleStrategy(strategy)
        except ValueError:
            raise UnsupportedStrategyError(strategy)

    async def build_plan(
        self,
        strategy: Union[str, ScheduleStrategy, None],
        channels: Sequence[ChannelSpec],
        audience: Audience,
        options: Optional[PlanOptions] = None,
    ) -> ExecutionPlan:
        """
        Build and store an execution plan.

        Raises:
            UnsupportedStrategyError: strategy is not one of the four names
            InvalidSpecError: no channels, or staged without stages
        """
        requested = self.resolve_strategy(strategy)
        options = options or PlanOptions()

        if not channels:
            raise InvalidSpecError("At least one channel is required", "channels")
        if requested == ScheduleStrategy.STAGED and not options.stages:
            raise InvalidSpecError(
                "Staged orchestration requires stages configuration", "stages"
            )

        created_at = self.clock.now()
        logger.info(
            f"Creating {requested.value} execution plan: {len(channels)} channels, "
            f"audience {audience.total_size}"
        )

        reason = None
        if requested == ScheduleStrategy.SEQUENTIAL:
            resolved = requested
            executions, stages, total = self._sequential(
                channels, audience, created_at,
                self._pick(options.delay_ms, self.config.default_channel_delay_ms),
            )
        elif requested == ScheduleStrategy.PARALLEL:
            resolved = requested
            executions, stages, total = self._parallel(
                channels, audience, created_at,
                self._pick(options.start_delay_ms, self.config.default_start_delay_ms),
            )
        elif requested == ScheduleStrategy.STAGED:
            resolved = requested
            executions, stages, total = self._staged(
                channels, audience, created_at, options.stages
            )
        else:
            resolved, reason, (executions, stages, total) = self._optimal(
                channels, audience, created_at
            )

        plan = ExecutionPlan(
            type=resolved,
            requested_strategy=requested,
            strategy_reason=reason,
            channels=executions,
            stages=stages,
            total_duration_ms=total,
            created_at=created_at,
        )
        await self.plan_store.save_plan(plan)

        logger.info(
            f"Execution plan created: {plan.plan_id} ({resolved.value}), "
            f"{len(executions)} executions, total duration {total}ms"
        )
        return plan

    async def get_plan(self, plan_id: str) -> ExecutionPlan:
        plan = await self.plan_store.get_plan(plan_id)
        if plan is None:
            raise NotFoundError(f"Execution plan not found: {plan_id}", "plan", plan_id)
        return plan

    # ====================
    # Strategies
    # ====================

    def _sequential(
        self,
        channels: Sequence[ChannelSpec],
        audience: Audience,
        created_at: datetime,
        default_delay_ms: int,
    ) -> Tuple[List[ChannelExecution], List[StageInfo], int]:
        executions = []
        cumulative = 0

        for index, channel in enumerate(channels):
            if index > 0:
                cumulative += self._pick(channel.delay_ms, default_delay_ms)
            executions.append(
                self._execution(channel, audience, created_at, cumulative, order=index + 1)
            )

        total = max(e.end_offset_ms for e in executions)
        return executions, [], total

    def _parallel(
        self,
        channels: Sequence[ChannelSpec],
        audience: Audience,
        created_at: datetime,
        start_delay_ms: int,
    ) -> Tuple[List[ChannelExecution], List[StageInfo], int]:
        executions = [
            self._execution(channel, audience, created_at, start_delay_ms, order=index + 1)
            for index, channel in enumerate(channels)
        ]
        longest = max(e.timing.estimated_duration_ms for e in executions)
        return executions, [], start_delay_ms + longest

    def _staged(
        self,
        channels: Sequence[ChannelSpec],
        audience: Audience,
        created_at: datetime,
        stage_specs: Sequence[StageSpec],
    ) -> Tuple[List[ChannelExecution], List[StageInfo], int]:
        executions: List[ChannelExecution] = []
        stages: List[StageInfo] = []
        cumulative = 0

        for index, stage in enumerate(stage_specs):
            stage_number = index + 1
            cumulative += stage.delay_ms

            stage_audience = audience
            if stage.audience_start is not None or stage.audience_end is not None:
                stage_audience = window_audience(
                    audience, stage.audience_start, stage.audience_end
                )

            members = [
                ch for ch in channels
                if ch.stage == stage_number or ch.type in stage.channels
            ]
            stage_executions = [
                self._execution(ch, stage_audience, created_at, cumulative, stage=stage_number)
                for ch in members
            ]
            longest = max(
                (e.timing.estimated_duration_ms for e in stage_executions), default=0
            )

            stages.append(StageInfo(
                stage_number=stage_number,
                name=stage.name or f"Stage {stage_number}",
                delay_ms=stage.delay_ms,
                start_delay_ms=cumulative,
                scheduled_time=created_at + timedelta(milliseconds=cumulative),
                estimated_duration_ms=longest,
                execution_ids=[e.execution_id for e in stage_executions],
            ))
            executions.extend(stage_executions)
            cumulative += longest

        if not executions:
            raise InvalidSpecError("No channel matched any stage", "stages")

        return executions, stages, cumulative

    def _optimal(
        self,
        channels: Sequence[ChannelSpec],
        audience: Audience,
        created_at: datetime,
    ) -> Tuple[ScheduleStrategy, str, Tuple[List[ChannelExecution], List[StageInfo], int]]:
        """
        Fixed decision table:
        1. instant (sms/mms) and email both present -> sequential, instant first
        2. audience above the large-audience threshold -> staged in audience chunks
        3. otherwise -> parallel after a short start delay
        """
        instant = [ch for ch in channels if ch.type in INSTANT_CHANNELS]
        bulk = [ch for ch in channels if ch.type in BULK_CONTENT_CHANNELS]

        if instant and bulk:
            others = [ch for ch in channels if ch not in instant and ch not in bulk]
            reordered = instant + bulk + others
            reason = "Mixed instant and email channels, sequential with instant channels first"
            logger.info(f"Optimal strategy resolved to sequential: {reason}")
            return ScheduleStrategy.SEQUENTIAL, reason, self._sequential(
                reordered, audience, created_at, self.config.optimal_channel_delay_ms
            )

        if audience.total_size > self.config.large_audience_threshold:
            stages = self.create_optimal_stages(channels, audience)
            reason = (
                f"Large audience ({audience.total_size}), staged in chunks of "
                f"{self.config.optimal_stage_size}"
            )
            logger.info(f"Optimal strategy resolved to staged: {reason}")
            return ScheduleStrategy.STAGED, reason, self._staged(
                channels, audience, created_at, stages
            )

        reason = "Small audience or single channel family, parallel for speed"
        logger.info(f"Optimal strategy resolved to parallel: {reason}")
        return ScheduleStrategy.PARALLEL, reason, self._parallel(
            channels, audience, created_at, self.config.optimal_start_delay_ms
        )

    def create_optimal_stages(
        self, channels: Sequence[ChannelSpec], audience: Audience
    ) -> List[StageSpec]:
        size = self.config.optimal_stage_size
        segment_count = math.ceil(audience.total_size / size)
        channel_types = list(dict.fromkeys(ch.type for ch in channels))

        return [
            StageSpec(
                name=f"Segment {i + 1}",
                delay_ms=0 if i == 0 else self.config.optimal_stage_delay_ms,
                channels=channel_types,
                audience_start=i * size,
                audience_end=min((i + 1) * size, audience.total_size),
            )
            for i in range(segment_count)
        ]

    # ====================
    # Helpers
    # ====================

    def _execution(
        self,
        channel: ChannelSpec,
        audience: Audience,
        created_at: datetime,
        delay_ms: int,
        order: Optional[int] = None,
        stage: Optional[int] = None,
    ) -> ChannelExecution:
        channel_audience = prepare_channel_audience(channel, audience, created_at)
        return ChannelExecution(
            channel=channel,
            timing=ChannelTiming(
                delay_ms=delay_ms,
                scheduled_time=created_at + timedelta(milliseconds=delay_ms),
                estimated_duration_ms=self.estimator.estimate(
                    channel.type, channel_audience.size
                ),
            ),
            audience=channel_audience,
            order=order,
            stage=stage,
        )

    @staticmethod
    def _pick(value: Optional[int], default: int) -> int:
        return default if value is None else value


__all__ = ["ExecutionPlanBuilder"]
