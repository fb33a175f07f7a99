from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Optional, Type


def _optional_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    return int(value) if value else None


class Config:
    """Base application configuration."""

    SECRET_KEY: str = os.getenv("SECRET_KEY", "change-me")
    SQLALCHEMY_DATABASE_URI: str = os.getenv(
        "DATABASE_URL",
        os.getenv(
            "SQLALCHEMY_DATABASE_URI",
            "sqlite:///treasuremap.db",
        ),
    )
    SQLALCHEMY_TRACK_MODIFICATIONS: bool = False
    MAP_DATA_DIR: Path = Path(os.getenv("MAP_DATA_DIR", "mapdata"))
    SHARE_BASE_URL: str = os.getenv("SHARE_BASE_URL", "http://localhost:3000/shared-circles")
    SHARE_TTL_DAYS: Optional[int] = _optional_int("SHARE_TTL_DAYS")
    SAVE_DEBOUNCE_SECONDS: float = float(os.getenv("SAVE_DEBOUNCE_SECONDS", "1.0"))
    CIRCLE_POLYGON_STEPS: int = int(os.getenv("CIRCLE_POLYGON_STEPS", "64"))
    REWARD_CIRCLE_THRESHOLD: int = int(os.getenv("REWARD_CIRCLE_THRESHOLD", "8"))


class DevelopmentConfig(Config):
    DEBUG: bool = True


class ProductionConfig(Config):
    DEBUG: bool = False


class TestingConfig(Config):
    TESTING: bool = True
    SQLALCHEMY_DATABASE_URI: str = "sqlite:///:memory:"


CONFIG_MAP: Dict[str, Type[Config]] = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
    "default": Config,
}


def resolve_config(config_name: str | None) -> Type[Config]:
    """Return the configuration class for the given name."""
    if not config_name:
        return CONFIG_MAP["default"]
    return CONFIG_MAP.get(config_name, CONFIG_MAP["default"])
