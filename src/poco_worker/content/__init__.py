"""Content store adapters."""

from poco_worker.content.base import ContentStore
from poco_worker.content.ipfs import IpfsContentStore

__all__ = [
    "ContentStore",
    "IpfsContentStore",
]
