from __future__ import annotations

from typing import Callable, Optional

from flask import current_app

from treasuremap.rendering.protocols import MapRenderer
from treasuremap.services.map_data_service import MapDataService
from treasuremap.services.map_persistence import MapPersistence, Scheduler
from treasuremap.services.map_workspace import MapWorkspace
from treasuremap.services.sharing_service import SharingService

MAP_DATA_SERVICE_KEY = "map_data_service"
SHARING_SERVICE_KEY = "sharing_service"
IDENTITY_RESOLVER_KEY = "identity_resolver"

IdentityResolver = Callable[[str], Optional[str]]


def token_as_username(token: str) -> Optional[str]:
    """Development resolver: the bearer token is the username itself."""
    return token or None


def register_services(app) -> None:
    """Pre-instantiate core services and store them on the application."""
    with app.app_context():
        app.extensions[MAP_DATA_SERVICE_KEY] = MapDataService.from_app_config()
        app.extensions[SHARING_SERVICE_KEY] = SharingService.from_app_config()
        app.extensions.setdefault(IDENTITY_RESOLVER_KEY, token_as_username)


def get_map_data_service() -> MapDataService:
    """Return the shared map data service instance."""
    service = current_app.extensions.get(MAP_DATA_SERVICE_KEY)
    if service is None:
        service = MapDataService.from_app_config()
        current_app.extensions[MAP_DATA_SERVICE_KEY] = service
    return service


def get_sharing_service() -> SharingService:
    """Return the shared sharing service instance."""
    service = current_app.extensions.get(SHARING_SERVICE_KEY)
    if service is None:
        service = SharingService.from_app_config()
        current_app.extensions[SHARING_SERVICE_KEY] = service
    return service


def get_identity_resolver() -> IdentityResolver:
    return current_app.extensions.get(IDENTITY_RESOLVER_KEY, token_as_username)


def create_workspace(
    user_id: int,
    renderer: Optional[MapRenderer] = None,
    scheduler: Optional[Scheduler] = None,
) -> MapWorkspace:
    """Build a map session for ``user_id`` that saves to the app's map data store."""
    config = current_app.config
    persistence = MapPersistence(
        get_map_data_service(),
        user_id,
        debounce_seconds=config["SAVE_DEBOUNCE_SECONDS"],
        scheduler=scheduler,
    )
    return MapWorkspace(
        renderer=renderer,
        persistence=persistence,
        steps=config["CIRCLE_POLYGON_STEPS"],
        reward_threshold=config["REWARD_CIRCLE_THRESHOLD"],
    )
