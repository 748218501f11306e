"""Interface of the content-addressed blob store."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol


class ContentStore(Protocol):
    """Put/get blobs addressed by content hash. Errors raise ``ContentStoreError``."""

    def check(self) -> str:
        """Return the store version, raising when it is unreachable."""

    def put(self, file_path: Path) -> str:
        """Store a file and return its content reference."""

    def get(self, content_ref: str, dest_path: Path) -> None:
        """Write the referenced blob to ``dest_path``."""
