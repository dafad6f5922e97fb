"""
API Test Fixtures for Orchestration Service

Serves the application in-process with a factory wired to ManualClock and
stub channel providers.
"""

from typing import Any, Dict, List

import httpx
import pytest
import pytest_asyncio

import sys
import os

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from core.config import OrchestrationConfig
from microservices.orchestration_service import main
from microservices.orchestration_service.clock import ManualClock
from microservices.orchestration_service.factory import OrchestrationServiceFactory
from tests.contracts.orchestration.data_contract import (
    ChannelMetricsDelta,
    OrchestrationTestDataFactory,
)


class StubChannelProvider:
    """Accepts every batch and reports no telemetry"""

    def __init__(self):
        self.sent: List[Any] = []

    async def send_via_channel(self, channel_type, execution) -> Dict[str, Any]:
        self.sent.append(execution)
        return {"campaign_id": f"{channel_type.value}_cmp_{len(self.sent)}"}

    async def fetch_channel_metrics(self, channel_type, provider_campaign_id):
        return ChannelMetricsDelta()


class StubEventBus:

    def __init__(self):
        self.published_events: List[Dict[str, Any]] = []

    async def publish(self, subject: str, event: Dict[str, Any]):
        self.published_events.append(event)

    async def close(self):
        pass


@pytest.fixture
def factory():
    """Provide OrchestrationTestDataFactory"""
    return OrchestrationTestDataFactory


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def provider():
    return StubChannelProvider()


@pytest.fixture
def event_bus():
    return StubEventBus()


@pytest_asyncio.fixture
async def service_factory(clock, provider, event_bus, monkeypatch):
    """Initialized service factory installed as the application's factory"""
    service_factory = OrchestrationServiceFactory(
        config=OrchestrationConfig(environment="testing"),
        clock=clock,
        sender=provider,
        metrics_fetcher=provider,
        event_bus=event_bus,
    )
    await service_factory.initialize()
    monkeypatch.setattr(main, "factory", service_factory)
    yield service_factory
    await service_factory.close()


@pytest_asyncio.fixture
async def http_client(service_factory):
    """HTTP client bound to the application"""
    transport = httpx.ASGITransport(app=main.app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest_asyncio.fixture
async def uninitialized_client(monkeypatch):
    """HTTP client for an application whose factory is not ready"""
    monkeypatch.setattr(main, "factory", None)
    transport = httpx.ASGITransport(app=main.app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
