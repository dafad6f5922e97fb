"""
API Test Layer Configuration

HTTP contract tests against the FastAPI application, served in-process
through httpx's ASGI transport. Collaborators behind the service factory are
replaced, so no provider gateway or event bus is needed.

Usage:
    pytest tests/api -v
    pytest tests/api -v -k "experiment"
"""

import os
import sys

# Add project root
sys.path.insert(
    0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
)


class APITestConfig:
    """API test configuration"""

    BASE_URL = "http://test"
    API_PREFIX = "/api/v1"
