"""
Orchestration Event Data Models

Event type definitions and data structures for orchestration service events.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


# =============================================================================
# Event Type Definitions
# =============================================================================


class OrchestrationEventType(str, Enum):
    """
    Events published by orchestration_service.

    Other services should reference these when subscribing.
    """
    # Plan lifecycle events
    PLAN_CREATED = "orchestration.plan.created"
    PLAN_SCHEDULED = "orchestration.plan.scheduled"
    PLAN_CANCELLED = "orchestration.plan.cancelled"

    # Channel execution events
    CHANNEL_EXECUTED = "orchestration.channel.executed"
    CHANNEL_FAILED = "orchestration.channel.failed"

    # Tracking events
    TRACKING_STARTED = "orchestration.tracking.started"
    TRACKING_STOPPED = "orchestration.tracking.stopped"

    # Experiment events
    EXPERIMENT_CREATED = "orchestration.experiment.created"
    EXPERIMENT_WINNER_DECLARED = "orchestration.experiment.winner_declared"


class OrchestrationStreamConfig:
    """Stream configuration for orchestration_service"""
    STREAM_NAME = "orchestration-stream"
    SUBJECTS = ["orchestration.>"]
    MAX_MESSAGES = 100000
    CONSUMER_PREFIX = "orchestration"


# =============================================================================
# Event Data Models - Published Events
# =============================================================================


class PlanCreatedEventData(BaseModel):
    """orchestration.plan.created event data"""
    plan_id: str = Field(..., description="Execution plan ID")
    orchestration_id: Optional[str] = Field(None, description="Owning orchestration")
    strategy: str = Field(..., description="Resolved strategy")
    requested_strategy: str = Field(..., description="Strategy asked for by the caller")
    channel_count: int = Field(..., description="Number of channel executions")
    total_duration_ms: int = Field(..., description="Estimated plan duration")
    timestamp: Optional[datetime] = Field(None, description="Event timestamp")


class PlanScheduledEventData(BaseModel):
    """orchestration.plan.scheduled event data"""
    plan_id: str = Field(..., description="Execution plan ID")
    scheduled_count: int = Field(..., description="Triggers armed")
    immediate_count: int = Field(..., description="Triggers with zero delay")
    next_execution: Optional[datetime] = Field(None, description="Earliest trigger time")
    timestamp: Optional[datetime] = Field(None, description="Event timestamp")


class PlanCancelledEventData(BaseModel):
    """orchestration.plan.cancelled event data"""
    plan_id: str = Field(..., description="Execution plan ID")
    cancelled_timers: int = Field(..., description="Triggers cancelled")
    timestamp: Optional[datetime] = Field(None, description="Event timestamp")


class ChannelExecutionEventData(BaseModel):
    """orchestration.channel.executed / orchestration.channel.failed event data"""
    orchestration_id: str = Field(..., description="Orchestration ID")
    execution_id: str = Field(..., description="Channel execution ID")
    channel_type: str = Field(..., description="Channel type")
    audience_size: int = Field(0, description="Recipients targeted")
    provider_campaign_id: Optional[str] = Field(None, description="Provider delivery handle")
    error: Optional[str] = Field(None, description="Failure reason")
    timestamp: Optional[datetime] = Field(None, description="Event timestamp")


class TrackingEventData(BaseModel):
    """orchestration.tracking.* event data"""
    orchestration_id: str = Field(..., description="Orchestration ID")
    tracking_id: str = Field(..., description="Tracking session ID")
    channels: List[str] = Field(default_factory=list, description="Tracked channels")
    duration_ms: Optional[int] = Field(None, description="Session duration when stopped")
    timestamp: Optional[datetime] = Field(None, description="Event timestamp")


class ExperimentCreatedEventData(BaseModel):
    """orchestration.experiment.created event data"""
    test_id: str = Field(..., description="Experiment ID")
    name: str = Field(..., description="Experiment name")
    primary_metric: str = Field(..., description="Metric the winner is decided on")
    variant_ids: List[str] = Field(..., description="Variant IDs, control first")
    required_sample_size: int = Field(..., description="Per-variant sample size")
    timestamp: Optional[datetime] = Field(None, description="Event timestamp")


class WinnerDeclaredEventData(BaseModel):
    """orchestration.experiment.winner_declared event data"""
    test_id: str = Field(..., description="Experiment ID")
    variant_id: str = Field(..., description="Winning variant")
    improvement: float = Field(..., description="Improvement over control in percent")
    confidence: float = Field(..., description="Confidence level")
    timestamp: Optional[datetime] = Field(None, description="Event timestamp")
