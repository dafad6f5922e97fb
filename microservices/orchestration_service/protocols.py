"""
Orchestration Service Protocols

Defines interfaces for dependency injection and testing.
Following the protocol-based architecture pattern.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol

from .models import (
    ChannelExecution,
    ChannelMetricsDelta,
    ChannelType,
    ExecutionPlan,
    ExperimentDefinition,
    OrchestrationRecord,
    PerformanceSession,
    ScheduledTrigger,
)


# ====================
# Store Protocols
# ====================


class PlanStoreProtocol(Protocol):
    """Protocol for execution plan and trigger storage"""

    async def save_plan(self, plan: ExecutionPlan) -> ExecutionPlan:
        """Save an execution plan"""
        ...

    async def get_plan(self, plan_id: str) -> Optional[ExecutionPlan]:
        """Get plan by ID"""
        ...

    async def delete_plan(self, plan_id: str) -> bool:
        """Delete plan and its triggers"""
        ...

    async def list_plans(self) -> List[ExecutionPlan]:
        """List stored plans"""
        ...

    async def save_triggers(
        self, plan_id: str, triggers: List[ScheduledTrigger]
    ) -> List[ScheduledTrigger]:
        """Save scheduled triggers for a plan"""
        ...

    async def get_triggers(self, plan_id: str) -> List[ScheduledTrigger]:
        """Get scheduled triggers for a plan"""
        ...

    async def delete_triggers(self, plan_id: str) -> bool:
        """Delete scheduled triggers for a plan"""
        ...


class SessionStoreProtocol(Protocol):
    """Protocol for performance tracking session storage"""

    async def save_session(self, session: PerformanceSession) -> PerformanceSession:
        """Save a tracking session"""
        ...

    async def get_session(self, tracking_id: str) -> Optional[PerformanceSession]:
        """Get session by tracking ID"""
        ...

    async def get_session_by_orchestration(
        self, orchestration_id: str
    ) -> Optional[PerformanceSession]:
        """Get the most recent session for an orchestration"""
        ...

    async def list_sessions(self) -> List[PerformanceSession]:
        """List stored sessions"""
        ...

    async def clear(self) -> None:
        """Remove all sessions"""
        ...


class ExperimentStoreProtocol(Protocol):
    """Protocol for experiment storage"""

    async def save_experiment(
        self, experiment: ExperimentDefinition
    ) -> ExperimentDefinition:
        """Save an experiment"""
        ...

    async def get_experiment(self, test_id: str) -> Optional[ExperimentDefinition]:
        """Get experiment by test ID"""
        ...

    async def list_experiments(self) -> List[ExperimentDefinition]:
        """List stored experiments"""
        ...


class OrchestrationStoreProtocol(Protocol):
    """Protocol for orchestration record storage"""

    async def save_orchestration(
        self, record: OrchestrationRecord
    ) -> OrchestrationRecord:
        """Save an orchestration record"""
        ...

    async def get_orchestration(
        self, orchestration_id: str
    ) -> Optional[OrchestrationRecord]:
        """Get orchestration by ID"""
        ...

    async def list_orchestrations(self) -> List[OrchestrationRecord]:
        """List stored orchestrations"""
        ...


# ====================
# Time Protocols
# ====================


class TimerHandleProtocol(Protocol):
    """Handle of a one-shot deferred trigger"""

    def cancel(self) -> None:
        """Prevent the trigger from firing"""
        ...


class ClockProtocol(Protocol):
    """The only time source of the engine"""

    def now(self) -> datetime:
        """Current timezone-aware time"""
        ...

    def call_later(
        self, delay_ms: int, callback: Callable[[], Any]
    ) -> TimerHandleProtocol:
        """Invoke callback once after delay_ms; 0 means the next tick"""
        ...

    async def sleep(self, delay_ms: int) -> None:
        """Suspend the current coroutine for delay_ms"""
        ...


# ====================
# Collaborator Protocols
# ====================


class ChannelSenderProtocol(Protocol):
    """Protocol for channel delivery providers"""

    async def send_via_channel(
        self, channel_type: ChannelType, execution: ChannelExecution
    ) -> Dict[str, Any]:
        """Dispatch a message batch; returns a delivery handle with campaign_id"""
        ...


class MetricsFetcherProtocol(Protocol):
    """Protocol for pollable provider telemetry"""

    async def fetch_channel_metrics(
        self, channel_type: ChannelType, provider_campaign_id: str
    ) -> ChannelMetricsDelta:
        """Fetch counts accumulated since the previous fetch"""
        ...


class EventBusProtocol(Protocol):
    """Protocol for event bus operations"""

    async def publish(self, subject: str, event: Dict[str, Any]) -> Any:
        """Publish an event to the event bus"""
        ...

    async def close(self) -> None:
        """Close event bus connection"""
        ...


# ====================
# Custom Exceptions
# ====================


class OrchestrationServiceError(Exception):
    """Base exception for orchestration service errors"""
    pass


class InvalidSpecError(OrchestrationServiceError):
    """Raised when plan or experiment input is malformed"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class UnsupportedStrategyError(OrchestrationServiceError):
    """Raised when the scheduling strategy name is not recognized"""

    def __init__(self, strategy: Any):
        super().__init__(f"Unsupported orchestration strategy: {strategy}")
        self.strategy = strategy


class NotFoundError(OrchestrationServiceError):
    """Raised when a plan, session, experiment or variant id is unknown"""

    def __init__(
        self,
        message: str,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.resource_type = resource_type
        self.resource_id = resource_id


class CollaboratorFailureError(OrchestrationServiceError):
    """Raised when a send or metrics fetch fails"""

    def __init__(self, message: str, channel_type: Optional[ChannelType] = None):
        super().__init__(message)
        self.channel_type = channel_type


__all__ = [
    "PlanStoreProtocol",
    "SessionStoreProtocol",
    "ExperimentStoreProtocol",
    "OrchestrationStoreProtocol",
    "TimerHandleProtocol",
    "ClockProtocol",
    "ChannelSenderProtocol",
    "MetricsFetcherProtocol",
    "EventBusProtocol",
    "OrchestrationServiceError",
    "InvalidSpecError",
    "UnsupportedStrategyError",
    "NotFoundError",
    "CollaboratorFailureError",
]
