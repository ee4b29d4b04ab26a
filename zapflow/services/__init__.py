"""
Services Module
Collaborators the flow engine talks to
"""

# Persistence
from .store import FlowStore, InMemoryFlowStore
from .database import SupabaseFlowStore

# WhatsApp delivery (UAZAPI)
from .transport import MessagingTransport, UazapiTransport

# Integration nodes
from .external_api import ExternalApiClient, HttpxApiClient, ApiResponse
from .ai import AIQueryClient, OpenAIQueryClient

# Tenants / background work
from .registry import TenantRegistry
from .delay_scheduler import DelaySchedulerService

__all__ = [
    # Persistence
    "FlowStore",
    "InMemoryFlowStore",
    "SupabaseFlowStore",

    # Transport
    "MessagingTransport",
    "UazapiTransport",

    # Integrations
    "ExternalApiClient",
    "HttpxApiClient",
    "ApiResponse",
    "AIQueryClient",
    "OpenAIQueryClient",

    # Tenants / scheduling
    "TenantRegistry",
    "DelaySchedulerService",
]
