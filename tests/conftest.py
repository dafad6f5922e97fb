"""
Root conftest.py - Global configuration for all test layers.

Test Layers:
    - api/        : HTTP surface tests (in-process ASGI transport)
    - component/  : Component tests (mocked collaborators, virtual clock)
    - unit/       : Unit tests (pure functions, no I/O)

Each layer provides its own fixtures, including the shared
OrchestrationTestDataFactory from tests/contracts/orchestration.
"""
import os
import sys

# Set testing environment BEFORE any service imports
os.environ.setdefault("ENV", "testing")

# Add project root to path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)


# =============================================================================
# Markers
# =============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line("markers", "api: HTTP surface tests")
    config.addinivalue_line("markers", "component: Component tests")
    config.addinivalue_line("markers", "unit: Unit tests")
