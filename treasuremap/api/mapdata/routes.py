from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from treasuremap.app.container import get_map_data_service
from treasuremap.services.map_data_service import (
    MapDataError,
    MapDataNotFoundError,
    StaleMapDataError,
)
from treasuremap.services.persistence_codec import PersistenceError

mapdata_bp = Blueprint("mapdata", __name__)


@mapdata_bp.get("/users/<int:user_id>/mapdata")
def get_map_data(user_id: int):
    """Return the stored FeatureCollection for a user."""
    service = get_map_data_service()
    try:
        return jsonify(service.get_map_data(user_id)), 200
    except MapDataNotFoundError as exc:
        return jsonify({"message": str(exc)}), 404
    except MapDataError as exc:
        current_app.logger.error(f"Error loading map data for user {user_id}: {exc}", exc_info=True)
        return jsonify({"message": "Map data unavailable"}), 500


@mapdata_bp.post("/users/<int:user_id>/mapdata")
def save_map_data(user_id: int):
    """Store a full map snapshot."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"message": "Request body must be a GeoJSON FeatureCollection"}), 400

    service = get_map_data_service()
    try:
        revision = service.save(user_id, data)
        return jsonify({
            "message": f"Map data for user with ID {user_id} saved successfully",
            "revision": revision,
        }), 200
    except StaleMapDataError as exc:
        return jsonify({"message": str(exc)}), 409
    except MapDataError as exc:
        current_app.logger.error(f"Error saving map data for user {user_id}: {exc}", exc_info=True)
        return jsonify({"message": "Internal server error"}), 500
    except PersistenceError as exc:
        return jsonify({"message": str(exc)}), 400


@mapdata_bp.delete("/users/<int:user_id>/mapdata")
def delete_map_data(user_id: int):
    """Remove a user's stored map."""
    service = get_map_data_service()
    try:
        service.delete_map_data(user_id)
        return jsonify({"message": f"Map data for user with ID {user_id} removed"}), 200
    except MapDataNotFoundError as exc:
        return jsonify({"message": str(exc)}), 404
    except MapDataError as exc:
        current_app.logger.error(f"Error deleting map data for user {user_id}: {exc}", exc_info=True)
        return jsonify({"message": "Internal server error"}), 500
