"""
Orchestration Service Events

Event models and publisher for orchestration service.
"""

from .models import (
    OrchestrationEventType,
    OrchestrationStreamConfig,
    PlanCreatedEventData,
    PlanScheduledEventData,
    PlanCancelledEventData,
    ChannelExecutionEventData,
    TrackingEventData,
    ExperimentCreatedEventData,
    WinnerDeclaredEventData,
)
from .publishers import OrchestrationEventPublisher

__all__ = [
    # Event Types
    "OrchestrationEventType",
    "OrchestrationStreamConfig",
    # Event Data Models
    "PlanCreatedEventData",
    "PlanScheduledEventData",
    "PlanCancelledEventData",
    "ChannelExecutionEventData",
    "TrackingEventData",
    "ExperimentCreatedEventData",
    "WinnerDeclaredEventData",
    # Publisher
    "OrchestrationEventPublisher",
]
