"""
Adapters to external systems (the expense backend).
"""

from .backend_client import BackendApiClient, DirectoryTransport, EndpointTransport

__all__ = ["BackendApiClient", "DirectoryTransport", "EndpointTransport"]
