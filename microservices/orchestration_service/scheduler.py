"""
Plan Scheduler

Arms one deferred trigger per channel execution of a plan through the
injected clock. Each trigger moves pending -> armed -> fired | cancelled.
A zero delay still goes through the clock so the callback never runs inside
the caller's stack.
"""

import asyncio
import inspect
import logging
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Set

from .models import (
    CancelResult,
    ChannelExecution,
    ExecutionPlan,
    ScheduleResult,
    ScheduledTrigger,
    TriggerState,
)
from .protocols import (
    ClockProtocol,
    InvalidSpecError,
    PlanStoreProtocol,
    TimerHandleProtocol,
)

logger = logging.getLogger(__name__)

ExecuteCallback = Callable[[ChannelExecution], Any]


class PlanScheduler:
    """Arms, fires and cancels the triggers of execution plans"""

    def __init__(self, plan_store: PlanStoreProtocol, clock: ClockProtocol):
        self.plan_store = plan_store
        self.clock = clock
        self._triggers: Dict[str, Dict[str, ScheduledTrigger]] = {}
        self._handles: Dict[str, Dict[str, TimerHandleProtocol]] = {}
        self._tasks: Set[asyncio.Future] = set()

    async def schedule(self, plan: ExecutionPlan, on_execute: ExecuteCallback) -> ScheduleResult:
        """
        Arm a trigger for every channel execution of the plan.

        on_execute receives the ChannelExecution; it may be a plain function
        or a coroutine function.
        """
        if self._armed(plan.plan_id):
            raise InvalidSpecError(f"Plan already scheduled: {plan.plan_id}", "plan_id")

        triggers: Dict[str, ScheduledTrigger] = {}
        handles: Dict[str, TimerHandleProtocol] = {}
        self._triggers[plan.plan_id] = triggers
        self._handles[plan.plan_id] = handles

        immediate = 0
        for execution in plan.channels:
            trigger = ScheduledTrigger(
                plan_id=plan.plan_id,
                execution_id=execution.execution_id,
                channel_type=execution.channel.type,
                delay_ms=execution.timing.delay_ms,
            )
            triggers[execution.execution_id] = trigger

            handles[execution.execution_id] = self.clock.call_later(
                execution.timing.delay_ms,
                partial(self._fire, plan.plan_id, execution, on_execute),
            )
            trigger.state = TriggerState.ARMED
            trigger.armed_at = self.clock.now()

            if execution.timing.delay_ms == 0:
                immediate += 1
            logger.debug(
                f"Armed {execution.channel.type.value} trigger {execution.execution_id} "
                f"in {execution.timing.delay_ms}ms"
            )

        await self.plan_store.save_triggers(plan.plan_id, list(triggers.values()))

        next_execution = min(
            (e.timing.scheduled_time for e in plan.channels), default=None
        )
        logger.info(
            f"Scheduled plan {plan.plan_id}: {len(triggers)} triggers "
            f"({immediate} immediate)"
        )
        return ScheduleResult(
            plan_id=plan.plan_id,
            scheduled_count=len(triggers),
            immediate_count=immediate,
            next_execution=next_execution,
        )

    async def cancel(self, plan_id: str) -> CancelResult:
        """Cancel every still-armed trigger; unknown or fully fired plans are not an error"""
        triggers = self._triggers.get(plan_id)
        if not triggers:
            logger.info(f"No scheduled triggers for plan {plan_id}")
            return CancelResult(plan_id=plan_id, cancelled_timers=0, found=False)

        handles = self._handles.get(plan_id, {})
        cancelled = 0
        for execution_id, trigger in triggers.items():
            if trigger.state != TriggerState.ARMED:
                continue
            handle = handles.pop(execution_id, None)
            if handle is not None:
                handle.cancel()
            trigger.state = TriggerState.CANCELLED
            trigger.cancelled_at = self.clock.now()
            cancelled += 1

        if cancelled == 0:
            logger.info(f"Plan {plan_id} has no armed triggers left")
            return CancelResult(plan_id=plan_id, cancelled_timers=0, found=False)

        await self._release(plan_id, triggers)
        logger.info(f"Cancelled {cancelled} triggers for plan {plan_id}")
        return CancelResult(plan_id=plan_id, cancelled_timers=cancelled, found=True)

    @property
    def active_plan_count(self) -> int:
        """Plans still held in memory, i.e. with triggers left to fire"""
        return len(self._triggers)

    async def get_triggers(self, plan_id: str) -> List[ScheduledTrigger]:
        triggers = self._triggers.get(plan_id)
        if triggers is not None:
            return list(triggers.values())
        return await self.plan_store.get_triggers(plan_id)

    async def drain(self) -> None:
        """Wait for in-flight async callbacks to finish"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel every armed trigger and in-flight callback"""
        total = 0
        for plan_id in list(self._triggers):
            result = await self.cancel(plan_id)
            total += result.cancelled_timers

        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

        logger.info(f"Plan scheduler shut down, {total} triggers cancelled")

    # ====================
    # Trigger Execution
    # ====================

    def _fire(self, plan_id: str, execution: ChannelExecution, on_execute: ExecuteCallback) -> None:
        trigger = self._triggers.get(plan_id, {}).get(execution.execution_id)
        if trigger is None or trigger.state != TriggerState.ARMED:
            return

        trigger.state = TriggerState.FIRED
        trigger.fired_at = self.clock.now()
        self._handles.get(plan_id, {}).pop(execution.execution_id, None)
        if not self._armed(plan_id):
            self._track(self._release(plan_id, self._triggers[plan_id]), plan_id)
        logger.info(
            f"Executing {execution.channel.type.value} for plan {plan_id} "
            f"({execution.execution_id})"
        )

        try:
            result = on_execute(execution)
        except Exception as e:
            logger.error(f"Channel execution {execution.execution_id} failed: {e}", exc_info=True)
            return

        if inspect.isawaitable(result):
            self._track(result, execution.execution_id)

    def _track(self, awaitable: Any, label: str) -> None:
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)
        task.add_done_callback(partial(self._task_done, label))

    async def _release(self, plan_id: str, triggers: Dict[str, ScheduledTrigger]) -> None:
        """Persist final trigger states and forget a plan with nothing left armed"""
        await self.plan_store.save_triggers(plan_id, list(triggers.values()))
        if self._triggers.get(plan_id) is triggers and not self._armed(plan_id):
            del self._triggers[plan_id]
            self._handles.pop(plan_id, None)
            logger.debug(f"Released plan {plan_id}")

    def _task_done(self, label: str, task: asyncio.Future) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.debug(f"Task for {label} cancelled")
            return
        error: Optional[BaseException] = task.exception()
        if error is not None:
            logger.error(f"Task for {label} failed: {error}")

    def _armed(self, plan_id: str) -> bool:
        return any(
            t.state == TriggerState.ARMED
            for t in self._triggers.get(plan_id, {}).values()
        )


__all__ = ["PlanScheduler"]
