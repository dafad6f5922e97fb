"""
Component Test Layer Configuration

Components run against in-memory stores, a virtual clock and mocked
channel collaborators.

Usage:
    pytest tests/component -v
    pytest tests/component/orchestration -v
"""
import os
import sys

# Set testing environment BEFORE any imports
os.environ["ENV"] = "testing"
os.environ["ENVIRONMENT"] = "testing"

# Add project root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))
