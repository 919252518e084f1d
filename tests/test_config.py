import pytest

from services.dessert import config


def test_production_rejects_missing_keys_and_open_cors(monkeypatch):
    monkeypatch.setattr(config, "ENVIRONMENT", "production")
    monkeypatch.setattr(config, "GEMINI_API_KEY", None)
    monkeypatch.setattr(config, "OPENAI_API_KEY", None)
    monkeypatch.setattr(config, "ALLOWED_ORIGINS", ["*"])

    with pytest.raises(RuntimeError) as exc_info:
        config.validate_env()

    assert "GEMINI_API_KEY" in str(exc_info.value)
    assert "ALLOWED_ORIGINS" in str(exc_info.value)


def test_production_rejects_weak_jwt_secret(monkeypatch):
    monkeypatch.setattr(config, "ENVIRONMENT", "production")
    monkeypatch.setattr(config, "GEMINI_API_KEY", "g-key")
    monkeypatch.setattr(config, "ALLOWED_ORIGINS", ["https://sweetmagic.app"])
    monkeypatch.setenv("SUPABASE_JWT_SECRET", "a" * 40)

    with pytest.raises(RuntimeError, match="repeated"):
        config.validate_env()


def test_development_only_warns(monkeypatch):
    monkeypatch.setattr(config, "ENVIRONMENT", "development")
    monkeypatch.setattr(config, "GEMINI_API_KEY", None)
    monkeypatch.setattr(config, "OPENAI_API_KEY", None)
    monkeypatch.setenv("SUPABASE_JWT_SECRET", "short")

    warnings = config.validate_env()

    assert any("mocked" in w for w in warnings)
