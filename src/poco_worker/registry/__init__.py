"""Remote task registry adapters."""

from poco_worker.registry.base import RemoteTaskSource
from poco_worker.registry.client import HttpRegistryClient

__all__ = [
    "HttpRegistryClient",
    "RemoteTaskSource",
]
