# Tests for settings loading.
# Created: 2026-10-18

from pathlib import Path

import pytest
from pydantic import ValidationError

from quoteauth.config import Settings, get_settings, reset_settings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("JWT_SECRET", "STORAGE_PATH", "API_PORT", "SESSION_SECRET"):
        monkeypatch.delenv(f"QUOTEAUTH_{name}", raising=False)
    reset_settings()
    yield
    reset_settings()


class TestSettings:
    def test_env_prefix(self, monkeypatch, tmp_path):
        monkeypatch.setenv("QUOTEAUTH_STORAGE_PATH", str(tmp_path / "oauth.json"))
        monkeypatch.setenv("QUOTEAUTH_API_PORT", "9001")
        settings = Settings()
        assert settings.storage_path == Path(tmp_path / "oauth.json")
        assert settings.api_port == 9001

    def test_short_jwt_secret_rejected(self, monkeypatch):
        monkeypatch.setenv("QUOTEAUTH_JWT_SECRET", "too-short")
        with pytest.raises(ValidationError):
            Settings()

    def test_configured_jwt_secret_used(self, monkeypatch):
        key = "k" * 40
        monkeypatch.setenv("QUOTEAUTH_JWT_SECRET", key)
        assert Settings().signing_key() == key

    def test_missing_jwt_secret_generates_stable_key(self):
        settings = Settings()
        assert settings.jwt_secret is None
        key = settings.signing_key()
        assert len(key) >= 32
        assert settings.signing_key() == key

    def test_session_secret_random_per_instance(self):
        assert (
            Settings().session_secret.get_secret_value()
            != Settings().session_secret.get_secret_value()
        )

    def test_get_settings_cached(self):
        assert get_settings() is get_settings()
        first = get_settings()
        reset_settings()
        assert get_settings() is not first
