"""
Provider clients
One ProviderClient subclass per external service
"""
from tether.services.sync.providers.asana import AsanaClient
from tether.services.sync.providers.base import (
    ProviderClient,
    ProviderRegistry,
    build_provider_registry,
)
from tether.services.sync.providers.notion import NotionClient
from tether.services.sync.providers.slack import SlackClient

__all__ = [
    "ProviderClient",
    "ProviderRegistry",
    "build_provider_registry",
    "SlackClient",
    "NotionClient",
    "AsanaClient",
]
