import pytest
from fastapi.testclient import TestClient

from config import Settings
from database import Database
from errors import ConfigurationError
from main import create_app


def test_from_env(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "mongodb://db:27017")
    monkeypatch.setenv("JWT_SECRET", "s3")
    monkeypatch.setenv("APP_ENV", "development")
    monkeypatch.setenv("ORDER_SEQUENCE", "count")
    monkeypatch.setenv("CORS_ORIGINS", "https://homeshoppers.test, https://admin.homeshoppers.test")
    settings = Settings.from_env()
    assert settings.database_url == "mongodb://db:27017"
    assert settings.jwt_secret == "s3"
    assert settings.is_development
    assert settings.order_sequence == "count"
    assert settings.cors_origins == ["https://homeshoppers.test", "https://admin.homeshoppers.test"]
    assert settings.missing() == []


def test_require_names_missing_variables():
    settings = Settings(database_url=None, jwt_secret=None)
    assert settings.missing() == ["DATABASE_URL", "JWT_SECRET"]
    with pytest.raises(ConfigurationError) as exc:
        settings.require("database_url", "jwt_secret")
    assert "DATABASE_URL" in exc.value.details
    assert "JWT_SECRET" in exc.value.details
    assert exc.value.message == "Server configuration error"


def test_startup_fails_fast_without_secret():
    settings = Settings(database_url="mongodb://db:27017", jwt_secret=None)
    app = create_app(settings, Database(settings))
    with pytest.raises(ConfigurationError):
        with TestClient(app):
            pass


def test_database_without_url_is_a_configuration_error():
    db = Database(Settings(database_url=None))
    assert not db.configured
    with pytest.raises(ConfigurationError):
        db["orders"]


def test_diagnostics_report_missing_database():
    settings = Settings(jwt_secret="s")
    client = TestClient(create_app(settings, Database(settings)))
    body = client.get("/test").json()
    assert body["database_url"] == "❌ Not Set"
    assert body["database"].startswith("⚠️")
