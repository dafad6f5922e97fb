"""
Component Test Fixtures for Orchestration Service

Provides fixtures for component testing with mocked collaborators.
Time is driven by ManualClock; providers are replaced by recording mocks.
"""

import asyncio
import random
from typing import Any, Dict, List, Optional, Set

import pytest
import pytest_asyncio

import sys
import os

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from core.config import ExperimentConfig, SchedulingConfig, TrackingConfig
from microservices.orchestration_service.clock import ManualClock
from microservices.orchestration_service.duration_estimator import DurationEstimator
from microservices.orchestration_service.events.publishers import OrchestrationEventPublisher
from microservices.orchestration_service.experiment_service import ExperimentEngine
from microservices.orchestration_service.orchestration_repository import (
    InMemoryExperimentStore,
    InMemoryOrchestrationStore,
    InMemoryPlanStore,
    InMemorySessionStore,
)
from microservices.orchestration_service.orchestration_service import OrchestrationService
from microservices.orchestration_service.performance_tracker import ChannelPerformanceAggregator
from microservices.orchestration_service.plan_builder import ExecutionPlanBuilder
from microservices.orchestration_service.scheduler import PlanScheduler
from tests.contracts.orchestration.data_contract import (
    ChannelMetricsDelta,
    ChannelType,
    OrchestrationTestDataFactory,
)


async def _settle(rounds: int = 10) -> None:
    """Let callbacks scheduled on the running loop complete"""
    for _ in range(rounds):
        await asyncio.sleep(0)


# ====================
# Mock Event Bus
# ====================


class MockEventBus:
    """Mock event bus for testing event publishing"""

    def __init__(self):
        self.published_events: List[Dict[str, Any]] = []
        self.closed = False
        self.fail = False

    async def publish(self, subject: str, event: Dict[str, Any]):
        if self.fail:
            raise ConnectionError("event bus unavailable")
        self.published_events.append({"subject": subject, **event})

    async def close(self):
        self.closed = True

    def get_events_by_type(self, event_type: str) -> List[Dict[str, Any]]:
        return [e for e in self.published_events if e.get("event_type") == event_type]

    def clear(self):
        self.published_events = []


# ====================
# Mock Channel Collaborators
# ====================


class MockChannelSender:
    """Records dispatched executions and returns delivery handles"""

    def __init__(self):
        self.calls: List[Any] = []
        self.failing: Set[ChannelType] = set()
        self.missing_handle: Set[ChannelType] = set()
        self._counter = 0

    async def send_via_channel(self, channel_type: ChannelType, execution) -> Dict[str, Any]:
        self.calls.append((channel_type, execution))
        if channel_type in self.failing:
            raise ConnectionError(f"{channel_type.value} provider unavailable")
        if channel_type in self.missing_handle:
            return {}
        self._counter += 1
        return {"campaign_id": f"{channel_type.value}_cmp_{self._counter}"}

    @property
    def sent_types(self) -> List[ChannelType]:
        return [channel_type for channel_type, _ in self.calls]


class MockMetricsFetcher:
    """Returns queued deltas per channel; an Exception in the queue is raised"""

    def __init__(self):
        self.queued: Dict[ChannelType, List[Any]] = {}
        self.calls: List[Any] = []
        self.gate: Optional[asyncio.Event] = None

    def queue(self, channel_type: ChannelType, *results: Any) -> None:
        self.queued.setdefault(channel_type, []).extend(results)

    async def fetch_channel_metrics(self, channel_type: ChannelType, provider_campaign_id: str):
        self.calls.append((channel_type, provider_campaign_id))
        if self.gate is not None:
            await self.gate.wait()
        pending = self.queued.get(channel_type)
        result = pending.pop(0) if pending else ChannelMetricsDelta()
        if isinstance(result, Exception):
            raise result
        return result


# ====================
# Fixtures
# ====================


@pytest.fixture
def settle():
    """Await to let scheduled tasks run"""
    return _settle


@pytest.fixture
def factory():
    """Provide OrchestrationTestDataFactory"""
    return OrchestrationTestDataFactory


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def mock_event_bus():
    return MockEventBus()


@pytest.fixture
def event_publisher(mock_event_bus):
    return OrchestrationEventPublisher(mock_event_bus)


@pytest.fixture
def sender():
    return MockChannelSender()


@pytest.fixture
def fetcher():
    return MockMetricsFetcher()


@pytest.fixture
def plan_store():
    return InMemoryPlanStore()


@pytest.fixture
def session_store():
    return InMemorySessionStore()


@pytest.fixture
def experiment_store():
    return InMemoryExperimentStore()


@pytest.fixture
def orchestration_store():
    return InMemoryOrchestrationStore()


@pytest.fixture
def tracking_config():
    return TrackingConfig(collection_interval_ms=60_000)


@pytest.fixture
def experiment_config():
    return ExperimentConfig()


@pytest.fixture
def builder(plan_store, clock):
    return ExecutionPlanBuilder(plan_store, clock, DurationEstimator(), SchedulingConfig())


@pytest_asyncio.fixture
async def scheduler(plan_store, clock):
    scheduler = PlanScheduler(plan_store, clock)
    yield scheduler
    await scheduler.shutdown()


@pytest_asyncio.fixture
async def aggregator(session_store, fetcher, clock, tracking_config, event_publisher):
    aggregator = ChannelPerformanceAggregator(
        session_store=session_store,
        metrics_fetcher=fetcher,
        clock=clock,
        config=tracking_config,
        event_publisher=event_publisher,
    )
    yield aggregator
    await aggregator.shutdown()


@pytest.fixture
def engine(experiment_store, clock, experiment_config, event_publisher):
    return ExperimentEngine(
        experiment_store=experiment_store,
        clock=clock,
        config=experiment_config,
        event_publisher=event_publisher,
        rng=random.Random(1234),
    )


@pytest.fixture
def service(orchestration_store, builder, scheduler, aggregator, sender, clock, engine, event_publisher):
    return OrchestrationService(
        orchestration_store=orchestration_store,
        plan_builder=builder,
        scheduler=scheduler,
        aggregator=aggregator,
        sender=sender,
        clock=clock,
        experiment_engine=engine,
        event_publisher=event_publisher,
    )
