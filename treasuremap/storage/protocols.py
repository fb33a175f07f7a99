from __future__ import annotations

from pathlib import Path
from typing import Protocol


class FileStorageGateway(Protocol):
    """Byte storage for per-user map documents, addressed by relative path."""

    def save_bytes(self, data: bytes, destination: Path) -> Path:
        ...

    def read_bytes(self, path: Path) -> bytes:
        ...

    def exists(self, path: Path) -> bool:
        ...

    def delete(self, path: Path) -> bool:
        ...
