"""
Unit Test Layer Configuration

Pure functions only: estimators, partitioning, plan strategies,
rate and significance calculations.

Usage:
    pytest tests/unit -v
    pytest tests/unit/orchestration -v
"""
import os
import sys

# Add project root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))
