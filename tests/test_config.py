"""
tests/test_config.py -- Settings validation and key derivation.

Settings are built directly with init kwargs and _env_file=None so the
process environment set up by conftest does not leak in for the fields
under test.
"""

from __future__ import annotations

import pytest

from core.config import Settings

KEY = "s" * 32


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


class TestSecretKeyPolicy:
    def test_production_requires_secret_key(self):
        with pytest.raises(ValueError, match="SECRET_KEY is required"):
            _settings(debug=False, secret_key="")

    def test_debug_generates_secret_key(self):
        settings = _settings(debug=True, secret_key="")
        assert len(settings.secret_key) >= 32

    def test_generated_keys_differ_per_instance(self):
        assert _settings(debug=True, secret_key="").secret_key != _settings(debug=True, secret_key="").secret_key

    def test_short_secret_key_rejected(self):
        with pytest.raises(ValueError, match="at least 32"):
            _settings(debug=True, secret_key="too-short")

    def test_short_csrf_secret_rejected(self):
        with pytest.raises(ValueError, match="CSRF_SECRET"):
            _settings(secret_key=KEY, csrf_secret="short")

    def test_samesite_none_requires_secure(self):
        with pytest.raises(ValueError, match="SECURE_COOKIES"):
            _settings(secret_key=KEY, cookie_samesite="none", secure_cookies=False)
        assert _settings(secret_key=KEY, cookie_samesite="none", secure_cookies=True).secure_cookies

    def test_env_vars_are_read(self, monkeypatch):
        monkeypatch.setenv("SECRET_KEY", KEY)
        monkeypatch.setenv("CSRF_TOKEN_MAX_AGE_SECONDS", "600")
        settings = Settings(_env_file=None)
        assert settings.secret_key == KEY
        assert settings.csrf_token_max_age_seconds == 600


class TestDeriveKey:
    def test_purposes_get_different_keys(self):
        settings = _settings(secret_key=KEY)
        keys = {settings.derive_key(p) for p in ("jwt-access", "jwt-refresh", "csrf")}
        assert len(keys) == 3

    def test_derivation_is_stable(self):
        assert _settings(secret_key=KEY).derive_key("csrf") == _settings(secret_key=KEY).derive_key("csrf")

    def test_derived_key_is_32_bytes(self):
        assert len(_settings(secret_key=KEY).derive_key("csrf")) == 32

    def test_dedicated_csrf_secret_wins(self):
        csrf = "c" * 40
        settings = _settings(secret_key=KEY, csrf_secret=csrf)
        assert settings.derive_key("csrf") == csrf.encode()
        assert settings.derive_key("jwt-access") == _settings(secret_key=KEY).derive_key("jwt-access")
