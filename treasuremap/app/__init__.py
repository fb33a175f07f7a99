from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional

from flask import Flask

from treasuremap.config import resolve_config
from treasuremap.extensions import init_extensions
from treasuremap.app.container import register_services


def create_app(config_name: str | None = None, overrides: Optional[Dict[str, Any]] = None) -> Flask:
    """Application factory."""
    project_root = Path(__file__).resolve().parents[2]
    app = Flask(
        __name__,
        instance_relative_config=True,
        instance_path=str(project_root / "instance"),
    )

    config_class = resolve_config(config_name or os.getenv("FLASK_ENV"))
    app.config.from_object(config_class)
    if overrides:
        app.config.update(overrides)
    _ensure_instance_dirs(app)

    init_extensions(app)
    register_services(app)
    _register_blueprints(app)
    return app


def _register_blueprints(app: Flask) -> None:
    from treasuremap.api.circles.routes import circles_bp
    from treasuremap.api.mapdata.routes import mapdata_bp

    app.register_blueprint(circles_bp)
    app.register_blueprint(mapdata_bp)


def _ensure_instance_dirs(app: Flask) -> None:
    """Ensure the instance directory exists. Map data files are created per user on save."""
    instance_path = Path(app.instance_path)
    instance_path.mkdir(parents=True, exist_ok=True)
