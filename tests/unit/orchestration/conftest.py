"""
Unit Test Fixtures for Orchestration Service

Plan building and metric math run against an in-memory plan store and a
virtual clock, so nothing here touches the network or real time.
"""

import pytest

import sys
import os

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from core.config import ExperimentConfig, SchedulingConfig
from microservices.orchestration_service.clock import ManualClock
from microservices.orchestration_service.duration_estimator import DurationEstimator
from microservices.orchestration_service.orchestration_repository import InMemoryPlanStore
from microservices.orchestration_service.plan_builder import ExecutionPlanBuilder
from tests.contracts.orchestration.data_contract import OrchestrationTestDataFactory


@pytest.fixture
def factory():
    """Provide OrchestrationTestDataFactory"""
    return OrchestrationTestDataFactory


@pytest.fixture
def clock():
    """Virtual clock pinned to 2024-01-01T00:00:00Z"""
    return ManualClock()


@pytest.fixture
def scheduling_config():
    return SchedulingConfig()


@pytest.fixture
def experiment_config():
    return ExperimentConfig()


@pytest.fixture
def plan_store():
    return InMemoryPlanStore()


@pytest.fixture
def builder(plan_store, clock, scheduling_config):
    """Plan builder with default estimator and scheduling defaults"""
    return ExecutionPlanBuilder(plan_store, clock, DurationEstimator(), scheduling_config)
