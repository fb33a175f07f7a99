from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from treasuremap.api.identity import current_username
from treasuremap.app.container import get_sharing_service
from treasuremap.domain.sharing import CircleSnapshot
from treasuremap.services.sharing_service import (
    ShareConflictError,
    ShareError,
    ShareExpiredError,
    ShareNotFoundError,
    ShareValidationError,
)

circles_bp = Blueprint("circles", __name__)


def _unauthorized():
    return jsonify({"message": "Authentication required"}), 401


def _share_error(exc: ShareError):
    if isinstance(exc, ShareNotFoundError):
        status = 404
    elif isinstance(exc, ShareExpiredError):
        status = 410
    elif isinstance(exc, ShareConflictError):
        status = 409
    else:
        status = 400
    return jsonify({"message": str(exc)}), status


@circles_bp.post("/api/circles/share")
def share_circles():
    """Publish a snapshot of the caller's circles."""
    username = current_username()
    if not username:
        return _unauthorized()

    data = request.get_json(silent=True) or {}
    raw_circles = data.get("circles")
    if not isinstance(raw_circles, list):
        return jsonify({"message": "circles must be a list"}), 400

    try:
        snapshots = [CircleSnapshot.from_frontend_json(c) for c in raw_circles]
        created = get_sharing_service().create_share(username, snapshots)
        return jsonify(created.to_frontend_json()), 201
    except ValueError as exc:
        return jsonify({"message": f"Invalid circle: {exc}"}), 400
    except ShareValidationError as exc:
        return _share_error(exc)


@circles_bp.get("/api/circles/shared/<share_id>")
def get_shared_circles(share_id: str):
    """Read-only list of the circles in a share."""
    try:
        circles = get_sharing_service().fetch_share(share_id)
        return jsonify([c.to_frontend_json() for c in circles]), 200
    except ShareError as exc:
        return _share_error(exc)


@circles_bp.get("/api/circles/preview/<share_id>")
def preview_share(share_id: str):
    """Share summary for the accept/decline dialog."""
    try:
        return jsonify(get_sharing_service().preview(share_id).to_frontend_json()), 200
    except ShareError as exc:
        return _share_error(exc)


@circles_bp.get("/api/circles/my-shared")
def my_shared_circles():
    username = current_username()
    if not username:
        return _unauthorized()
    circles = get_sharing_service().my_shares(username)
    return jsonify([c.to_frontend_json() for c in circles]), 200


@circles_bp.post("/api/circles/accept/<share_id>")
def accept_share(share_id: str):
    """Accept a share; accepting it again returns the existing acceptance."""
    username = current_username()
    if not username:
        return _unauthorized()
    try:
        accepted = get_sharing_service().accept(share_id, username)
        return jsonify(accepted.to_frontend_json()), 200
    except ShareError as exc:
        return _share_error(exc)
    except Exception as exc:
        current_app.logger.error(f"Error accepting share {share_id}: {exc}", exc_info=True)
        return jsonify({"message": "Internal server error"}), 500


@circles_bp.get("/api/circles/accepted")
def list_accepted_shares():
    username = current_username()
    if not username:
        return _unauthorized()
    accepted = get_sharing_service().list_accepted(username)
    return jsonify([a.to_frontend_json() for a in accepted]), 200


@circles_bp.get("/api/circles/accepted/<share_id>/check")
def check_accepted_share(share_id: str):
    username = current_username()
    if not username:
        return _unauthorized()
    accepted = get_sharing_service().check_accepted(share_id, username)
    return jsonify({"accepted": accepted}), 200


@circles_bp.put("/api/circles/accepted/<share_id>/toggle-visibility")
def toggle_accepted_share_visibility(share_id: str):
    """Flip visibility, or set it when the body carries ``{"visible": bool}``."""
    username = current_username()
    if not username:
        return _unauthorized()

    data = request.get_json(silent=True) or {}
    visible = data.get("visible")
    if visible is not None and not isinstance(visible, bool):
        return jsonify({"message": "visible must be a boolean"}), 400
    try:
        accepted = get_sharing_service().set_visibility(share_id, username, visible)
        return jsonify(accepted.to_frontend_json()), 200
    except ShareError as exc:
        return _share_error(exc)


@circles_bp.delete("/api/circles/accepted/<share_id>")
def remove_accepted_share(share_id: str):
    username = current_username()
    if not username:
        return _unauthorized()
    try:
        get_sharing_service().remove(share_id, username)
        return jsonify({"message": "Accepted share removed."}), 200
    except ShareError as exc:
        return _share_error(exc)
