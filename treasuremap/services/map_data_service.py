from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from flask import current_app

from treasuremap.services.persistence_codec import PersistenceError, decode
from treasuremap.storage import LocalFileStorage, LocalFileStorageError
from treasuremap.storage.protocols import FileStorageGateway

logger = logging.getLogger(__name__)


class MapDataError(PersistenceError):
    """Base exception raised for stored map data issues."""


class MapDataNotFoundError(MapDataError):
    """Raised when a user has no stored map data."""


class StaleMapDataError(MapDataError):
    """Raised when a save carries an older revision than the stored one."""


class MapDataService:
    """Store one GeoJSON FeatureCollection per user."""

    def __init__(self, storage: FileStorageGateway) -> None:
        self._storage = storage

    @classmethod
    def from_app_config(cls) -> "MapDataService":
        map_data_dir = Path(current_app.config["MAP_DATA_DIR"])
        if not map_data_dir.is_absolute():
            map_data_dir = Path(current_app.instance_path) / map_data_dir
        return cls(storage=LocalFileStorage(map_data_dir))

    def get_map_data(self, user_id: int) -> Dict[str, Any]:
        """Return the stored collection or raise MapDataNotFoundError."""
        collection = self.load(user_id)
        if collection is None:
            raise MapDataNotFoundError(f"No map data stored for user {user_id}")
        return collection

    def load(self, user_id: int) -> Optional[Dict[str, Any]]:
        path = self._path_for(user_id)
        if not self._storage.exists(path):
            return None
        try:
            return json.loads(self._storage.read_bytes(path).decode("utf-8"))
        except (LocalFileStorageError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise MapDataError(f"Failed to load map data for user {user_id}: {exc}") from exc

    def save(self, user_id: int, collection: Dict[str, Any]) -> int:
        """
        Validate and store a full map snapshot.

        Returns:
            The revision under which the snapshot was stored

        Raises:
            PersistenceError: If the payload is not a valid map FeatureCollection
            StaleMapDataError: If the payload revision is older than the stored one
        """
        decoded = decode(collection)
        stored_revision = self._stored_revision(user_id)

        if decoded.revision is None:
            revision = stored_revision + 1
        elif decoded.revision < stored_revision:
            raise StaleMapDataError(
                f"Revision {decoded.revision} is older than stored revision {stored_revision}"
            )
        else:
            revision = decoded.revision

        payload = dict(collection)
        payload["metadata"] = {**(collection.get("metadata") or {}), "revision": revision}
        try:
            data = json.dumps(payload, ensure_ascii=False).encode("utf-8")
            self._storage.save_bytes(data, self._path_for(user_id))
        except (LocalFileStorageError, TypeError, ValueError) as exc:
            raise MapDataError(f"Failed to save map data for user {user_id}: {exc}") from exc

        logger.info(
            "Stored map data for user %s at revision %s (%d features)",
            user_id, revision, len(payload.get("features") or []),
        )
        return revision

    def delete_map_data(self, user_id: int) -> None:
        try:
            removed = self._storage.delete(self._path_for(user_id))
        except LocalFileStorageError as exc:
            raise MapDataError(f"Failed to delete map data for user {user_id}: {exc}") from exc
        if not removed:
            raise MapDataNotFoundError(f"No map data stored for user {user_id}")
        logger.info("Deleted map data for user %s", user_id)

    def _stored_revision(self, user_id: int) -> int:
        stored = self.load(user_id)
        if not stored:
            return 0
        revision = (stored.get("metadata") or {}).get("revision")
        return int(revision) if revision is not None else 0

    @staticmethod
    def _path_for(user_id: int) -> Path:
        return Path(f"user_{int(user_id)}.json")
