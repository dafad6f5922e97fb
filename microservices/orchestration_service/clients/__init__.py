"""
Orchestration Service Clients

Clients for the services the orchestration engine depends on.
"""

from .channel_provider_client import ChannelProviderClient

__all__ = ["ChannelProviderClient"]
