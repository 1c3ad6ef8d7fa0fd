"""
Tests for startup environment validation
"""

import pytest

from booking_engine.startup_validation import EnvironmentSettings, validate_environment


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    # Keep a developer's .env out of the picture
    monkeypatch.chdir(tmp_path)
    for name in ("SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY", "SUPABASE_ANON_KEY", "OPENAI_API_KEY",
                 "EVOLUTION_API_URL", "EVOLUTION_API_KEY", "REDIS_URL", "LOCK_BACKEND"):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestValidateEnvironment:

    def test_missing_supabase_url(self, clean_env):
        assert not validate_environment()

    def test_missing_supabase_key(self, clean_env):
        clean_env.setenv("SUPABASE_URL", "https://db.example.com")
        assert not validate_environment()

    def test_minimal_configuration_passes(self, clean_env):
        clean_env.setenv("SUPABASE_URL", "https://db.example.com")
        clean_env.setenv("SUPABASE_SERVICE_ROLE_KEY", "service-key")
        assert validate_environment()

    def test_invalid_lock_backend(self, clean_env):
        clean_env.setenv("SUPABASE_URL", "https://db.example.com")
        clean_env.setenv("SUPABASE_ANON_KEY", "anon-key")
        clean_env.setenv("LOCK_BACKEND", "memcached")
        assert not validate_environment()

    def test_missing_optional_credentials_are_listed(self, clean_env):
        clean_env.setenv("SUPABASE_URL", "https://db.example.com")
        clean_env.setenv("LOCK_BACKEND", "redis")
        clean_env.setenv("OPENAI_API_KEY", "sk-test")

        settings = EnvironmentSettings()

        assert settings.missing_optional() == ["EVOLUTION_API_URL", "EVOLUTION_API_KEY", "REDIS_URL"]
