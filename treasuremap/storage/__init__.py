from treasuremap.storage.local import LocalFileStorage, LocalFileStorageError
from treasuremap.storage.protocols import FileStorageGateway

__all__ = ["FileStorageGateway", "LocalFileStorage", "LocalFileStorageError"]
