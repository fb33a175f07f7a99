"""Tests for the application factory and configuration."""
from treasuremap.app.container import (
    IDENTITY_RESOLVER_KEY,
    create_workspace,
    get_map_data_service,
    get_sharing_service,
    token_as_username,
)
from treasuremap.config import Config, DevelopmentConfig, TestingConfig, resolve_config


class TestConfig:
    def test_resolve_known_names(self):
        assert resolve_config("development") is DevelopmentConfig
        assert resolve_config("testing") is TestingConfig

    def test_unknown_name_falls_back(self):
        assert resolve_config("staging") is Config
        assert resolve_config(None) is Config

    def test_defaults(self):
        assert Config.SHARE_BASE_URL.endswith("/shared-circles")
        assert Config.CIRCLE_POLYGON_STEPS == 64
        assert Config.REWARD_CIRCLE_THRESHOLD == 8


class TestFactory:
    def test_testing_config_applied(self, app):
        assert app.config["TESTING"] is True
        assert app.config["SQLALCHEMY_DATABASE_URI"] == "sqlite:///:memory:"

    def test_services_registered(self, app_ctx):
        assert get_map_data_service() is get_map_data_service()
        assert get_sharing_service() is get_sharing_service()
        assert app_ctx.extensions[IDENTITY_RESOLVER_KEY] is token_as_username

    def test_blueprints_registered(self, app):
        rules = {rule.rule for rule in app.url_map.iter_rules()}
        assert "/api/circles/share" in rules
        assert "/users/<int:user_id>/mapdata" in rules

    def test_token_as_username(self):
        assert token_as_username("alice") == "alice"
        assert token_as_username("") is None

    def test_create_workspace_uses_app_settings(self, app_ctx, scheduler):
        app_ctx.config["REWARD_CIRCLE_THRESHOLD"] = 1
        workspace = create_workspace(5, scheduler=scheduler)
        workspace.load()

        workspace.add_circle((50.85, 4.35), 100, True)
        assert workspace.earned_reward is True
        assert scheduler.active[0].delay == app_ctx.config["SAVE_DEBOUNCE_SECONDS"]

        workspace.flush()
        assert get_map_data_service().get_map_data(5)["metadata"]["circleCount"] == 1
