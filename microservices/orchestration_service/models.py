"""
Orchestration Service Data Models

Canonical data structures for execution plans, scheduled triggers,
performance tracking sessions and A/B experiments.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator


# =============================================================================
# ENUMS
# =============================================================================

class ChannelType(str, Enum):
    """Delivery channel type"""
    EMAIL = "email"
    SMS = "sms"
    MMS = "mms"
    WHATSAPP = "whatsapp"
    IN_APP = "in_app"


INSTANT_CHANNELS = frozenset({ChannelType.SMS, ChannelType.MMS})
BULK_CONTENT_CHANNELS = frozenset({ChannelType.EMAIL})


class ScheduleStrategy(str, Enum):
    """Execution plan scheduling strategy"""
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    STAGED = "staged"
    OPTIMAL = "optimal"


class TriggerState(str, Enum):
    """Lifecycle of a single channel execution trigger"""
    PENDING = "pending"
    ARMED = "armed"
    FIRED = "fired"
    CANCELLED = "cancelled"


class TrackingStatus(str, Enum):
    """Performance tracking session status"""
    ACTIVE = "active"
    STOPPED = "stopped"


class TrendDirection(str, Enum):
    """Delivery rate trend classification"""
    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"
    INSUFFICIENT_DATA = "insufficient_data"


class ReachMethod(str, Enum):
    """How unique reach was computed"""
    CONTACT_DEDUP = "contact_dedup"
    ESTIMATED = "estimated"


class OrchestrationState(str, Enum):
    """Campaign orchestration lifecycle"""
    EXECUTING = "executing"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


class ExperimentStatus(str, Enum):
    """Experiment lifecycle"""
    ACTIVE = "active"
    COMPLETED = "completed"


class ExperimentMetric(str, Enum):
    """Primary metrics an experiment can be decided on"""
    OPEN_RATE = "open_rate"
    CLICK_RATE = "click_rate"
    CONVERSION_RATE = "conversion_rate"


class ExperimentEventType(str, Enum):
    """Per-variant counters"""
    SENT = "sent"
    DELIVERED = "delivered"
    OPENED = "opened"
    CLICKED = "clicked"
    CONVERTED = "converted"
    UNSUBSCRIBED = "unsubscribed"


CONTROL_VARIANT_ID = "control"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# BASE MODELS
# =============================================================================

class BaseContract(BaseModel):
    """Base model for all contracts"""

    model_config = {
        "from_attributes": True,
    }


class FrozenContract(BaseModel):
    """Immutable contract; changes require building a new instance"""

    model_config = {
        "from_attributes": True,
        "frozen": True,
    }


# =============================================================================
# AUDIENCE MODELS
# =============================================================================

class Contact(FrozenContract):
    """Single campaign recipient"""
    contact_id: str = Field(default_factory=lambda: f"ct_{uuid4().hex[:16]}")
    email: Optional[str] = None
    phone: Optional[str] = None
    preferred_channels: List[ChannelType] = Field(default_factory=list)
    last_contacted_at: Dict[ChannelType, datetime] = Field(default_factory=dict)
    attributes: Dict[str, Any] = Field(default_factory=dict)


class Audience(BaseContract):
    """Full campaign audience"""
    contacts: List[Contact] = Field(default_factory=list)
    lists: List[str] = Field(default_factory=list)
    segments: List[str] = Field(default_factory=list)
    total_size: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _default_total_size(self) -> "Audience":
        if self.total_size < len(self.contacts):
            self.total_size = len(self.contacts)
        return self


class AudienceFilter(FrozenContract):
    """Channel-level audience filter; both conditions compose with AND"""
    preferred_channel: Optional[ChannelType] = None
    exclude_recent_ms: Optional[int] = Field(None, gt=0)

    @property
    def is_empty(self) -> bool:
        return self.preferred_channel is None and self.exclude_recent_ms is None


class AudienceSlice(FrozenContract):
    """Read-only view of the audience a channel execution targets"""
    size: int = Field(..., ge=0)
    contacts: List[Contact] = Field(default_factory=list)
    lists: List[str] = Field(default_factory=list)
    segments: List[str] = Field(default_factory=list)


# =============================================================================
# PLAN MODELS
# =============================================================================

class ChannelSpec(FrozenContract):
    """One channel's participation in a campaign"""
    type: ChannelType
    name: Optional[str] = None
    stage: Optional[int] = Field(None, ge=1, description="1-based stage number")
    delay_ms: Optional[int] = Field(None, ge=0)
    audience_filter: Optional[AudienceFilter] = None
    content: Dict[str, Any] = Field(default_factory=dict)


class StageSpec(FrozenContract):
    """Caller-supplied (or auto-generated) stage of a staged plan"""
    name: Optional[str] = None
    delay_ms: int = Field(default=0, ge=0)
    channels: List[ChannelType] = Field(default_factory=list)
    audience_start: Optional[int] = Field(None, ge=0)
    audience_end: Optional[int] = Field(None, ge=0)


class PlanOptions(BaseContract):
    """Strategy parameters for plan building"""
    delay_ms: Optional[int] = Field(None, ge=0, description="Sequential inter-channel delay")
    start_delay_ms: Optional[int] = Field(None, ge=0, description="Parallel start delay")
    stages: List[StageSpec] = Field(default_factory=list)


class ChannelTiming(FrozenContract):
    """When a channel execution starts and how long it is expected to take"""
    delay_ms: int = Field(..., ge=0)
    scheduled_time: datetime
    estimated_duration_ms: int = Field(..., ge=0)


class ChannelExecution(FrozenContract):
    """One channel's slot in an execution plan"""
    execution_id: str = Field(default_factory=lambda: f"exe_{uuid4().hex[:16]}")
    channel: ChannelSpec
    timing: ChannelTiming
    audience: AudienceSlice
    order: Optional[int] = None
    stage: Optional[int] = None

    @property
    def end_offset_ms(self) -> int:
        return self.timing.delay_ms + self.timing.estimated_duration_ms


class StageInfo(FrozenContract):
    """Resolved timing of one stage"""
    stage_number: int
    name: str
    delay_ms: int
    start_delay_ms: int
    scheduled_time: datetime
    estimated_duration_ms: int
    execution_ids: List[str] = Field(default_factory=list)


class ExecutionPlan(FrozenContract):
    """Timed plan of per-channel executions"""
    plan_id: str = Field(default_factory=lambda: f"pln_{uuid4().hex[:16]}")
    type: ScheduleStrategy
    requested_strategy: ScheduleStrategy
    strategy_reason: Optional[str] = None
    channels: List[ChannelExecution] = Field(default_factory=list)
    stages: List[StageInfo] = Field(default_factory=list)
    total_duration_ms: int = Field(..., ge=0)
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def total_delay_ms(self) -> int:
        return sum(execution.timing.delay_ms for execution in self.channels)

    def get_execution(self, execution_id: str) -> Optional[ChannelExecution]:
        for execution in self.channels:
            if execution.execution_id == execution_id:
                return execution
        return None


class ScheduledTrigger(BaseContract):
    """Deferred trigger for one channel execution"""
    plan_id: str
    execution_id: str
    channel_type: ChannelType
    delay_ms: int
    state: TriggerState = TriggerState.PENDING
    armed_at: Optional[datetime] = None
    fired_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class ScheduleResult(BaseContract):
    """Outcome of arming a plan"""
    plan_id: str
    scheduled_count: int
    immediate_count: int
    next_execution: Optional[datetime] = None


class CancelResult(BaseContract):
    """Outcome of cancelling a plan; found=False is not an error"""
    plan_id: str
    cancelled_timers: int = 0
    found: bool = True


# =============================================================================
# PERFORMANCE MODELS
# =============================================================================

class ChannelCounts(BaseContract):
    """Raw delivery and engagement counts"""
    sent: int = Field(default=0, ge=0)
    delivered: int = Field(default=0, ge=0)
    opened: int = Field(default=0, ge=0)
    clicked: int = Field(default=0, ge=0)
    bounced: int = Field(default=0, ge=0)
    unsubscribed: int = Field(default=0, ge=0)
    replied: int = Field(default=0, ge=0)

    @property
    def engaged(self) -> int:
        return self.opened + self.clicked + self.replied


COUNT_FIELDS = ("sent", "delivered", "opened", "clicked", "bounced", "unsubscribed", "replied")


class ChannelMetricsDelta(BaseContract):
    """Counts reported by a provider since the previous fetch; negatives clamp on merge"""
    sent: int = 0
    delivered: int = 0
    opened: int = 0
    clicked: int = 0
    bounced: int = 0
    unsubscribed: int = 0
    replied: int = 0
    delivered_contact_ids: Optional[List[str]] = None


class ChannelRates(BaseContract):
    """Rates derived from channel counts (fractions 0..1)"""
    delivery_rate: float = 0.0
    open_rate: float = 0.0
    click_rate: float = 0.0
    bounce_rate: float = 0.0
    unsubscribe_rate: float = 0.0
    reply_rate: float = 0.0

    @property
    def engagement_rate(self) -> float:
        return self.open_rate + self.click_rate + self.reply_rate


class ChannelMetrics(BaseContract):
    """Running totals for one channel within a tracking session"""
    channel_type: ChannelType
    provider_campaign_id: Optional[str] = None
    counts: ChannelCounts = Field(default_factory=ChannelCounts)
    rates: ChannelRates = Field(default_factory=ChannelRates)
    failed_fetches: int = 0
    reports_contacts: bool = False
    last_update: Optional[datetime] = None


class TimeSeriesSnapshot(BaseContract):
    """State after one collection cycle"""
    timestamp: datetime
    channels: Dict[ChannelType, ChannelCounts] = Field(default_factory=dict)
    failed_channels: List[ChannelType] = Field(default_factory=list)
    total_sent: int = 0
    total_delivered: int = 0
    delivery_rate: float = 0.0


class PerformanceSession(BaseContract):
    """Live delivery/engagement record of one orchestration"""
    tracking_id: str = Field(default_factory=lambda: f"trk_{uuid4().hex[:16]}")
    orchestration_id: str
    channels: List[ChannelType] = Field(default_factory=list)
    channel_results: Dict[ChannelType, str] = Field(default_factory=dict)
    channel_metrics: Dict[ChannelType, ChannelMetrics] = Field(default_factory=dict)
    overall_metrics: ChannelCounts = Field(default_factory=ChannelCounts)
    time_series: List[TimeSeriesSnapshot] = Field(default_factory=list)
    reached_contact_ids: List[str] = Field(default_factory=list)
    status: TrackingStatus = TrackingStatus.ACTIVE
    started_at: datetime = Field(default_factory=utcnow)
    stopped_at: Optional[datetime] = None
    last_update: Optional[datetime] = None


class BestChannel(BaseContract):
    channel_type: ChannelType
    score: float
    delivery_rate: float
    engagement_rate: float


class ChannelContribution(BaseContract):
    """Share of each aggregate metric, in percent"""
    sent_contribution: float = 0.0
    delivered_contribution: float = 0.0
    engagement_contribution: float = 0.0


class CrossChannelReach(BaseContract):
    total_delivered: int = 0
    estimated_overlap: int = 0
    unique_reach: int = 0
    overlap_percentage: float = 0.0
    method: ReachMethod = ReachMethod.ESTIMATED


class AggregatedMetrics(BaseContract):
    """Cross-channel summary"""
    overall_delivery_rate: float = 0.0
    overall_engagement_rate: float = 0.0
    overall_bounce_rate: float = 0.0
    cross_channel_reach: CrossChannelReach = Field(default_factory=CrossChannelReach)
    best_performing_channel: Optional[BestChannel] = None
    channel_contribution: Dict[ChannelType, ChannelContribution] = Field(default_factory=dict)


class TrendAnalysis(BaseContract):
    trend: TrendDirection
    data_points: int
    first_rate: Optional[float] = None
    last_rate: Optional[float] = None
    change: Optional[float] = None
    analysis: str = ""


class CurrentMetrics(BaseContract):
    """Response of get_current_metrics"""
    orchestration_id: str
    tracking_id: str
    status: TrackingStatus
    channel_metrics: Dict[ChannelType, ChannelMetrics]
    overall_metrics: ChannelCounts
    calculated_metrics: AggregatedMetrics
    trend_analysis: TrendAnalysis
    time_series: List[TimeSeriesSnapshot] = Field(default_factory=list)
    last_update: Optional[datetime] = None


class StopTrackingResult(BaseContract):
    orchestration_id: str
    found: bool = True
    tracking_id: Optional[str] = None
    duration_ms: Optional[int] = None
    final_metrics: Optional[CurrentMetrics] = None


# =============================================================================
# ORCHESTRATION MODELS
# =============================================================================

class CampaignRequest(BaseContract):
    """Caller request to launch a multi-channel campaign"""
    name: str = ""
    channels: List[ChannelSpec] = Field(default_factory=list)
    audience: Audience = Field(default_factory=Audience)
    strategy: str = ScheduleStrategy.SEQUENTIAL.value
    plan_options: PlanOptions = Field(default_factory=PlanOptions)


class ChannelResult(BaseContract):
    """Outcome of one channel send"""
    channel_type: ChannelType
    execution_id: str
    success: bool
    provider_campaign_id: Optional[str] = None
    error: Optional[str] = None
    executed_at: datetime = Field(default_factory=utcnow)
    audience_size: int = 0


class OrchestrationRecord(BaseContract):
    """State of one launched campaign"""
    orchestration_id: str = Field(default_factory=lambda: f"orch_{uuid4().hex[:16]}")
    name: str
    plan_id: str
    tracking_id: Optional[str] = None
    state: OrchestrationState = OrchestrationState.EXECUTING
    channel_results: Dict[str, ChannelResult] = Field(default_factory=dict)
    started_at: datetime = Field(default_factory=utcnow)
    estimated_completion: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class OrchestrationResult(BaseContract):
    orchestration_id: str
    plan: ExecutionPlan
    scheduled_count: int
    tracking_id: str
    estimated_completion: datetime
    state: OrchestrationState


class OrchestrationProgress(BaseContract):
    total: int = 0
    fired: int = 0
    failed: int = 0
    pending: int = 0
    cancelled: int = 0
    percentage: int = 0


class OrchestrationStatus(BaseContract):
    orchestration_id: str
    name: str
    state: OrchestrationState
    progress: OrchestrationProgress
    triggers: List[ScheduledTrigger] = Field(default_factory=list)
    channel_results: Dict[str, ChannelResult] = Field(default_factory=dict)
    metrics: Optional[CurrentMetrics] = None
    started_at: datetime
    estimated_completion: Optional[datetime] = None


# =============================================================================
# EXPERIMENT MODELS
# =============================================================================

class ExperimentSpec(BaseContract):
    """Caller request to create an A/B experiment"""
    name: str = ""
    primary_metric: Optional[ExperimentMetric] = None
    variant_contents: List[Dict[str, Any]] = Field(default_factory=list)
    variant_names: List[str] = Field(default_factory=list)
    channel_type: ChannelType = ChannelType.EMAIL
    hypothesis: Optional[str] = None
    expected_improvement: Optional[float] = Field(None, gt=0)
    secondary_metrics: List[ExperimentMetric] = Field(default_factory=list)


class Variant(BaseContract):
    """One version of content; the control is identified by its reserved id"""
    variant_id: str
    name: str
    content: Dict[str, Any] = Field(default_factory=dict)
    audience: List[Contact] = Field(default_factory=list)
    traffic_share: float = 0.0

    @property
    def is_control(self) -> bool:
        return self.variant_id == CONTROL_VARIANT_ID


class SampleSizeCalculation(BaseContract):
    required_sample_size: int
    total_required: int
    traffic_split: float
    expected_duration_days: int
    z_alpha: float
    z_beta: float
    effect_size: float
    baseline_conversion_rate: float


class ExperimentStatistics(BaseContract):
    confidence_level: float
    significance_threshold: float
    required_sample_size: int
    sample_size: SampleSizeCalculation


class VariantRates(BaseContract):
    delivery_rate: float = 0.0
    open_rate: float = 0.0
    click_rate: float = 0.0
    conversion_rate: float = 0.0
    unsubscribe_rate: float = 0.0


class VariantCounts(BaseContract):
    sent: int = 0
    delivered: int = 0
    opened: int = 0
    clicked: int = 0
    converted: int = 0
    unsubscribed: int = 0
    rates: VariantRates = Field(default_factory=VariantRates)


class Winner(BaseContract):
    variant_id: str
    improvement: float
    confidence: float
    declared_at: datetime = Field(default_factory=utcnow)


class ExperimentResults(BaseContract):
    total_sent: int = 0
    variant_results: Dict[str, VariantCounts] = Field(default_factory=dict)
    significance_reached: bool = False
    winner: Optional[Winner] = None


class ExperimentDefinition(BaseContract):
    test_id: str = Field(default_factory=lambda: f"abt_{uuid4().hex[:16]}")
    name: str
    channel_type: ChannelType = ChannelType.EMAIL
    status: ExperimentStatus = ExperimentStatus.ACTIVE
    hypothesis: Optional[str] = None
    primary_metric: ExperimentMetric
    secondary_metrics: List[ExperimentMetric] = Field(default_factory=list)
    variants: List[Variant]
    statistics: ExperimentStatistics
    results: ExperimentResults = Field(default_factory=ExperimentResults)
    created_at: datetime = Field(default_factory=utcnow)
    start_date: datetime = Field(default_factory=utcnow)
    expected_end_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def control(self) -> Variant:
        return next(v for v in self.variants if v.is_control)

    def get_variant(self, variant_id: str) -> Optional[Variant]:
        for variant in self.variants:
            if variant.variant_id == variant_id:
                return variant
        return None


class VariantAnalysis(BaseContract):
    variant_id: str
    rate: float
    improvement: float
    z_score: float
    p_value: float
    is_significant: bool
    confidence_level: float
    sample_size: int
    chi_square_statistic: Optional[float] = None


class ExperimentAnalysis(BaseContract):
    """Result of a significance analysis"""
    test_id: str
    test_name: str
    primary_metric: ExperimentMetric
    control_rate: float
    variants: Dict[str, VariantAnalysis] = Field(default_factory=dict)
    significance_reached: bool
    winner: Optional[Winner] = None
    test_duration_days: int = 0
    recommendations: List[str] = Field(default_factory=list)
    analyzed_at: datetime = Field(default_factory=utcnow)


class EventRecordResult(BaseContract):
    test_id: str
    variant_id: str
    event_type: ExperimentEventType
    recorded_at: datetime
    analysis_triggered: bool = False
    winner_declared: bool = False


# =============================================================================
# SERVICE MODELS
# =============================================================================

class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    service: str
    port: int
    version: str
    components: Dict[str, Any] = Field(default_factory=dict)


class LivenessResponse(BaseModel):
    """Liveness check response"""
    alive: bool
    uptime_seconds: float


class ErrorResponse(BaseModel):
    """Error response"""
    error: str
    detail: Optional[str] = None
    field: Optional[str] = None


class ExperimentCreateRequest(BaseModel):
    """Request body to create an experiment"""
    spec: ExperimentSpec
    control_content: Dict[str, Any] = Field(default_factory=dict)
    audience: List[Contact] = Field(default_factory=list)


class ExperimentEventRequest(BaseModel):
    """Request body to record an experiment event"""
    variant_id: str
    event_type: str
