"""
Orchestration Service Factory

Factory for creating orchestration service instances with proper dependency injection.
"""

import logging
from typing import Optional

from core.config import OrchestrationConfig, get_settings

from .clients.channel_provider_client import ChannelProviderClient
from .clock import SystemClock
from .duration_estimator import DurationEstimator
from .events.publishers import OrchestrationEventPublisher
from .experiment_service import ExperimentEngine
from .orchestration_repository import (
    InMemoryExperimentStore,
    InMemoryOrchestrationStore,
    InMemoryPlanStore,
    InMemorySessionStore,
)
from .orchestration_service import OrchestrationService
from .performance_tracker import ChannelPerformanceAggregator
from .plan_builder import ExecutionPlanBuilder
from .protocols import (
    ChannelSenderProtocol,
    ClockProtocol,
    EventBusProtocol,
    MetricsFetcherProtocol,
)
from .scheduler import PlanScheduler

logger = logging.getLogger(__name__)


class OrchestrationServiceFactory:
    """Factory for creating orchestration service components"""

    def __init__(
        self,
        config: Optional[OrchestrationConfig] = None,
        clock: Optional[ClockProtocol] = None,
        sender: Optional[ChannelSenderProtocol] = None,
        metrics_fetcher: Optional[MetricsFetcherProtocol] = None,
        event_bus: Optional[EventBusProtocol] = None,
    ):
        self.config = config or get_settings()
        self.clock = clock or SystemClock()
        self._sender = sender
        self._metrics_fetcher = metrics_fetcher
        self._event_bus = event_bus
        self._provider_client: Optional[ChannelProviderClient] = None
        self._event_publisher: Optional[OrchestrationEventPublisher] = None
        self._scheduler: Optional[PlanScheduler] = None
        self._aggregator: Optional[ChannelPerformanceAggregator] = None
        self._experiment_engine: Optional[ExperimentEngine] = None
        self._service: Optional[OrchestrationService] = None

    async def initialize(self) -> None:
        """Initialize all components"""
        logger.info("Initializing Orchestration Service components...")

        # Provider gateway backs whichever collaborator was not injected
        if self._sender is None or self._metrics_fetcher is None:
            self._provider_client = ChannelProviderClient(self.config.providers)
            self._sender = self._sender or self._provider_client
            self._metrics_fetcher = self._metrics_fetcher or self._provider_client

        self._event_publisher = OrchestrationEventPublisher(self._event_bus)
        if self._event_bus is None:
            logger.info("Event bus not configured, events will not be published")

        plan_store = InMemoryPlanStore()

        self._scheduler = PlanScheduler(plan_store, self.clock)
        self._aggregator = ChannelPerformanceAggregator(
            session_store=InMemorySessionStore(),
            metrics_fetcher=self._metrics_fetcher,
            clock=self.clock,
            config=self.config.tracking,
            event_publisher=self._event_publisher,
        )
        self._experiment_engine = ExperimentEngine(
            experiment_store=InMemoryExperimentStore(),
            clock=self.clock,
            config=self.config.experiments,
            event_publisher=self._event_publisher,
        )
        self._service = OrchestrationService(
            orchestration_store=InMemoryOrchestrationStore(),
            plan_builder=ExecutionPlanBuilder(
                plan_store, self.clock, DurationEstimator(), self.config.scheduling
            ),
            scheduler=self._scheduler,
            aggregator=self._aggregator,
            sender=self._sender,
            clock=self.clock,
            experiment_engine=self._experiment_engine,
            event_publisher=self._event_publisher,
        )

        logger.info("Orchestration Service components initialized")

    async def close(self) -> None:
        """Close all components"""
        logger.info("Closing Orchestration Service components...")

        if self._service:
            await self._service.shutdown()

        if self._provider_client:
            await self._provider_client.close()

        if self._event_bus:
            await self._event_bus.close()

        logger.info("Orchestration Service components closed")

    @property
    def service(self) -> OrchestrationService:
        """Get orchestration service"""
        if not self._service:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._service

    @property
    def experiment_engine(self) -> ExperimentEngine:
        """Get experiment engine"""
        if not self._experiment_engine:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._experiment_engine

    @property
    def scheduler(self) -> PlanScheduler:
        """Get plan scheduler"""
        if not self._scheduler:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._scheduler

    @property
    def aggregator(self) -> ChannelPerformanceAggregator:
        """Get performance aggregator"""
        if not self._aggregator:
            raise RuntimeError("Factory not initialized. Call initialize() first.")
        return self._aggregator

    @property
    def event_publisher(self) -> Optional[OrchestrationEventPublisher]:
        """Get event publisher"""
        return self._event_publisher

    @property
    def event_bus(self) -> Optional[EventBusProtocol]:
        """Get event bus"""
        return self._event_bus


__all__ = [
    "OrchestrationServiceFactory",
]
