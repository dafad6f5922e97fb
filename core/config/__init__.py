#!/usr/bin/env python3
"""Modular configuration system for the orchestration engine

Configuration hierarchy:
- orchestration_config: plan building, tracking and experiment settings
- logging_config: Logging configuration
"""
import os
from dotenv import load_dotenv
from .logging_config import LoggingConfig, configure_logging
from .orchestration_config import (
    OrchestrationConfig,
    SchedulingConfig,
    TrackingConfig,
    ExperimentConfig,
    ProviderConfig,
)

# Load environment file based on ENV
env = os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")
env_files = {
    "development": "deployment/environments/dev.env",
    "dev": "deployment/environments/dev.env",
    "testing": "deployment/environments/test.env",
    "test": "deployment/environments/test.env",
    "staging": "deployment/environments/staging.env",
    "production": "deployment/environments/production.env",
}
env_file = env_files.get(env, "deployment/environments/dev.env")
load_dotenv(env_file, override=False)

# Create global settings instance
settings = OrchestrationConfig.from_env()

def get_settings() -> OrchestrationConfig:
    """Get global settings instance"""
    return settings

def reload_settings() -> OrchestrationConfig:
    """Reload settings from environment"""
    global settings
    load_dotenv(env_file, override=True)
    settings = OrchestrationConfig.from_env()
    return settings

__all__ = [
    "OrchestrationConfig",
    "SchedulingConfig",
    "TrackingConfig",
    "ExperimentConfig",
    "ProviderConfig",
    "LoggingConfig",
    "configure_logging",
    "settings",
    "get_settings",
    "reload_settings",
]
