#!/usr/bin/env python3
"""
Core Module for the Orchestration Engine

Shared components used by the orchestration microservice.

COMPONENTS:
    - config/: Environment-driven configuration (scheduling, tracking,
      experiments, provider gateway, logging)

USAGE:
    from core.config import get_settings, configure_logging

    settings = get_settings()
    configure_logging(settings.logging)
"""

__version__ = "1.0.0"
