"""
Tests for settings loading from the environment and .env files.
"""
from config import Settings


def test_environment_overrides_defaults(monkeypatch):
    monkeypatch.setenv("FREE_RADIUS_KM", "8")
    monkeypatch.setenv("business_postcode", "NG1 1AA")

    settings = Settings(_env_file=None)

    assert settings.free_radius_km == 8.0
    assert settings.business_postcode == "NG1 1AA"


def test_env_file_with_unknown_keys(tmp_path, monkeypatch):
    monkeypatch.delenv("SURCHARGE_PER_KM", raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text(
        "SURCHARGE_PER_KM=2.25\n"
        "DATABASE_URL=postgresql://localhost/love4detailing\n",
        encoding="utf-8",
    )

    settings = Settings(_env_file=env_file)

    assert settings.surcharge_per_km == 2.25
    assert not hasattr(settings, "database_url")


def test_settings_use_model_config():
    assert Settings.model_config["extra"] == "ignore"
    assert Settings.model_config["env_file"] == ".env"
    assert "Config" not in vars(Settings)
