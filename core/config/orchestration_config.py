#!/usr/bin/env python3
"""Orchestration engine configuration

Tunable constants for plan building, performance tracking and experiment
statistics. All values are heuristics, not measured facts; override them
through environment variables.
"""
import os
from dataclasses import dataclass, field

from .logging_config import LoggingConfig

def _bool(val: str) -> bool:
    return val.lower() == "true"

def _int(val: str, default: int) -> int:
    try:
        return int(val) if val else default
    except ValueError:
        return default

def _float(val: str, default: float) -> float:
    try:
        return float(val) if val else default
    except ValueError:
        return default


@dataclass
class SchedulingConfig:
    """Execution plan defaults"""
    default_channel_delay_ms: int = 300_000          # 5 minutes between sequential channels
    default_start_delay_ms: int = 0                  # parallel start
    optimal_channel_delay_ms: int = 900_000          # 15 minutes, mixed instant/email
    optimal_start_delay_ms: int = 60_000             # 1 minute, small audiences
    large_audience_threshold: int = 10_000
    optimal_stage_size: int = 5_000
    optimal_stage_delay_ms: int = 600_000            # 10 minutes between auto stages

    @classmethod
    def from_env(cls) -> 'SchedulingConfig':
        return cls(
            default_channel_delay_ms=_int(os.getenv("ORCH_CHANNEL_DELAY_MS", ""), 300_000),
            default_start_delay_ms=_int(os.getenv("ORCH_START_DELAY_MS", ""), 0),
            optimal_channel_delay_ms=_int(os.getenv("ORCH_OPTIMAL_CHANNEL_DELAY_MS", ""), 900_000),
            optimal_start_delay_ms=_int(os.getenv("ORCH_OPTIMAL_START_DELAY_MS", ""), 60_000),
            large_audience_threshold=_int(os.getenv("ORCH_LARGE_AUDIENCE_THRESHOLD", ""), 10_000),
            optimal_stage_size=_int(os.getenv("ORCH_OPTIMAL_STAGE_SIZE", ""), 5_000),
            optimal_stage_delay_ms=_int(os.getenv("ORCH_OPTIMAL_STAGE_DELAY_MS", ""), 600_000),
        )


@dataclass
class TrackingConfig:
    """Performance tracking settings"""
    collection_interval_ms: int = 300_000
    time_series_limit: int = 100
    trend_window: int = 10
    estimated_overlap_fraction: float = 0.2

    @classmethod
    def from_env(cls) -> 'TrackingConfig':
        return cls(
            collection_interval_ms=_int(os.getenv("TRACKING_INTERVAL_MS", ""), 300_000),
            time_series_limit=_int(os.getenv("TRACKING_TIME_SERIES_LIMIT", ""), 100),
            trend_window=_int(os.getenv("TRACKING_TREND_WINDOW", ""), 10),
            estimated_overlap_fraction=_float(os.getenv("TRACKING_OVERLAP_FRACTION", ""), 0.2),
        )


@dataclass
class ExperimentConfig:
    """A/B test statistics settings (simplified power analysis)"""
    min_sample_size: int = 100
    confidence_level: float = 0.95
    significance_threshold: float = 0.05
    statistical_power: float = 0.80
    baseline_conversion_rate: float = 0.03
    expected_improvement: float = 0.1
    min_test_duration_days: float = 2
    default_test_duration_days: int = 7
    daily_send_fraction: float = 0.1
    max_variants: int = 5
    auto_optimization: bool = True

    @classmethod
    def from_env(cls) -> 'ExperimentConfig':
        return cls(
            min_sample_size=_int(os.getenv("AB_MIN_SAMPLE_SIZE", ""), 100),
            confidence_level=_float(os.getenv("AB_CONFIDENCE_LEVEL", ""), 0.95),
            significance_threshold=_float(os.getenv("AB_SIGNIFICANCE_THRESHOLD", ""), 0.05),
            statistical_power=_float(os.getenv("AB_STATISTICAL_POWER", ""), 0.80),
            baseline_conversion_rate=_float(os.getenv("AB_BASELINE_RATE", ""), 0.03),
            expected_improvement=_float(os.getenv("AB_EXPECTED_IMPROVEMENT", ""), 0.1),
            min_test_duration_days=_float(os.getenv("AB_MIN_DURATION_DAYS", ""), 2),
            default_test_duration_days=_int(os.getenv("AB_DEFAULT_DURATION_DAYS", ""), 7),
            daily_send_fraction=_float(os.getenv("AB_DAILY_SEND_FRACTION", ""), 0.1),
            max_variants=_int(os.getenv("AB_MAX_VARIANTS", ""), 5),
            auto_optimization=_bool(os.getenv("AB_AUTO_OPTIMIZATION", "true")),
        )


@dataclass
class ProviderConfig:
    """Channel provider gateway used for sends and telemetry"""
    host: str = "localhost"
    port: int = 8270
    timeout_seconds: float = 30.0

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    @classmethod
    def from_env(cls) -> 'ProviderConfig':
        return cls(
            host=os.getenv("CHANNEL_PROVIDER_HOST", "localhost"),
            port=_int(os.getenv("CHANNEL_PROVIDER_PORT", ""), 8270),
            timeout_seconds=_float(os.getenv("CHANNEL_PROVIDER_TIMEOUT", ""), 30.0),
        )


@dataclass
class OrchestrationConfig:
    """Main configuration for the orchestration engine"""
    service_name: str = "orchestration_service"
    service_port: int = 8260
    environment: str = "development"

    scheduling: SchedulingConfig = field(default_factory=SchedulingConfig)
    tracking: TrackingConfig = field(default_factory=TrackingConfig)
    experiments: ExperimentConfig = field(default_factory=ExperimentConfig)
    providers: ProviderConfig = field(default_factory=ProviderConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @classmethod
    def from_env(cls) -> 'OrchestrationConfig':
        """Load full configuration from environment variables"""
        return cls(
            service_name=os.getenv("SERVICE_NAME", "orchestration_service"),
            service_port=_int(os.getenv("SERVICE_PORT", ""), 8260),
            environment=os.getenv("ENV") or os.getenv("ENVIRONMENT", "development"),
            scheduling=SchedulingConfig.from_env(),
            tracking=TrackingConfig.from_env(),
            experiments=ExperimentConfig.from_env(),
            providers=ProviderConfig.from_env(),
            logging=LoggingConfig.from_env(),
        )
