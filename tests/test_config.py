from ridedispatch.config import Settings


def test_defaults():
    config = Settings(_env_file=None)

    assert config.api_prefix == "/api"
    assert config.timezone == "Europe/Moscow"
    assert config.dispatch_rate_limit == 50
    assert config.dispatch_rate_window_seconds == 60.0
    assert config.provider_max_attempts == 3
    assert config.dispatch_lease_seconds == 30.0


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("RIDE_PROVIDER_BASE_URL", "https://provider.test/")
    monkeypatch.setenv("RIDE_DISPATCH_RATE_LIMIT", "10")

    config = Settings(_env_file=None)

    assert config.provider_base_url == "https://provider.test"
    assert config.dispatch_rate_limit == 10


def test_origins_from_json(monkeypatch):
    monkeypatch.setenv("RIDE_FRONTEND_ALLOWED_ORIGINS", '["https://a.test"]')

    assert Settings(_env_file=None).frontend_allowed_origins == ("https://a.test",)
