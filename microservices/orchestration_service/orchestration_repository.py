"""
Orchestration Repository

In-memory implementations of the plan, session, experiment and orchestration
stores. State lives in process memory and is lost on restart; swap in a
persistent implementation of the store protocols for durability.
"""

import logging
from typing import Dict, List, Optional

from .models import (
    ExecutionPlan,
    ExperimentDefinition,
    OrchestrationRecord,
    PerformanceSession,
    ScheduledTrigger,
)

logger = logging.getLogger(__name__)


class InMemoryPlanStore:
    """Plan and trigger store backed by dicts"""

    def __init__(self):
        self.plans: Dict[str, ExecutionPlan] = {}
        self.triggers: Dict[str, List[ScheduledTrigger]] = {}

    async def save_plan(self, plan: ExecutionPlan) -> ExecutionPlan:
        self.plans[plan.plan_id] = plan
        return plan

    async def get_plan(self, plan_id: str) -> Optional[ExecutionPlan]:
        return self.plans.get(plan_id)

    async def delete_plan(self, plan_id: str) -> bool:
        self.triggers.pop(plan_id, None)
        return self.plans.pop(plan_id, None) is not None

    async def list_plans(self) -> List[ExecutionPlan]:
        return list(self.plans.values())

    async def save_triggers(
        self, plan_id: str, triggers: List[ScheduledTrigger]
    ) -> List[ScheduledTrigger]:
        self.triggers[plan_id] = triggers
        return triggers

    async def get_triggers(self, plan_id: str) -> List[ScheduledTrigger]:
        return self.triggers.get(plan_id, [])

    async def delete_triggers(self, plan_id: str) -> bool:
        return self.triggers.pop(plan_id, None) is not None


class InMemorySessionStore:
    """Tracking session store backed by dicts"""

    def __init__(self):
        self.sessions: Dict[str, PerformanceSession] = {}
        self._by_orchestration: Dict[str, str] = {}

    async def save_session(self, session: PerformanceSession) -> PerformanceSession:
        self.sessions[session.tracking_id] = session
        self._by_orchestration[session.orchestration_id] = session.tracking_id
        return session

    async def get_session(self, tracking_id: str) -> Optional[PerformanceSession]:
        return self.sessions.get(tracking_id)

    async def get_session_by_orchestration(
        self, orchestration_id: str
    ) -> Optional[PerformanceSession]:
        tracking_id = self._by_orchestration.get(orchestration_id)
        if tracking_id is None:
            return None
        return self.sessions.get(tracking_id)

    async def list_sessions(self) -> List[PerformanceSession]:
        return list(self.sessions.values())

    async def clear(self) -> None:
        logger.debug(f"Clearing {len(self.sessions)} tracking sessions")
        self.sessions.clear()
        self._by_orchestration.clear()


class InMemoryExperimentStore:
    """Experiment store backed by a dict"""

    def __init__(self):
        self.experiments: Dict[str, ExperimentDefinition] = {}

    async def save_experiment(
        self, experiment: ExperimentDefinition
    ) -> ExperimentDefinition:
        self.experiments[experiment.test_id] = experiment
        return experiment

    async def get_experiment(self, test_id: str) -> Optional[ExperimentDefinition]:
        return self.experiments.get(test_id)

    async def list_experiments(self) -> List[ExperimentDefinition]:
        return list(self.experiments.values())


class InMemoryOrchestrationStore:
    """Orchestration record store backed by a dict"""

    def __init__(self):
        self.records: Dict[str, OrchestrationRecord] = {}

    async def save_orchestration(
        self, record: OrchestrationRecord
    ) -> OrchestrationRecord:
        self.records[record.orchestration_id] = record
        return record

    async def get_orchestration(
        self, orchestration_id: str
    ) -> Optional[OrchestrationRecord]:
        return self.records.get(orchestration_id)

    async def list_orchestrations(self) -> List[OrchestrationRecord]:
        return list(self.records.values())


__all__ = [
    "InMemoryPlanStore",
    "InMemorySessionStore",
    "InMemoryExperimentStore",
    "InMemoryOrchestrationStore",
]
