"""Unit tests for core/config.py -- Settings validation.

Covers:
- production mode without SECRET_KEY refuses to start
- SECRET_KEY shorter than 32 characters is rejected in every mode
- DEBUG=true generates a random 64-hex-char key
- token lifetimes are read in milliseconds and exposed as timedeltas
- AuthEngine.from_settings() wires the configured lifetimes through
"""

from datetime import timedelta

import pytest

from auth.engine import AuthEngine
from core.config import Settings

GOOD_KEY = "k" * 32


def test_production_requires_secret_key():
    with pytest.raises(ValueError):
        Settings(_env_file=None, debug=False, secret_key="")


@pytest.mark.parametrize("debug", [True, False])
def test_short_secret_key_rejected(debug):
    with pytest.raises(ValueError):
        Settings(_env_file=None, debug=debug, secret_key="short")


def test_debug_generates_secret_key():
    settings = Settings(_env_file=None, debug=True, secret_key="")
    assert len(settings.secret_key) == 64


def test_default_lifetimes():
    settings = Settings(_env_file=None, secret_key=GOOD_KEY)
    assert settings.access_token_lifetime == timedelta(hours=1)
    assert settings.refresh_token_lifetime == timedelta(days=7)


def test_lifetimes_from_environment(monkeypatch):
    monkeypatch.setenv("ACCESS_TOKEN_EXPIRE_MS", "60000")
    monkeypatch.setenv("REFRESH_TOKEN_EXPIRE_MS", "86400000")
    settings = Settings(_env_file=None, secret_key=GOOD_KEY)
    assert settings.access_token_lifetime == timedelta(minutes=1)
    assert settings.refresh_token_lifetime == timedelta(days=1)


def test_non_positive_lifetime_rejected():
    with pytest.raises(ValueError):
        Settings(_env_file=None, secret_key=GOOD_KEY, access_token_expire_ms=0)


def test_engine_from_settings(identity_store, token_store, clock):
    settings = Settings(_env_file=None, secret_key=GOOD_KEY, access_token_expire_ms=120_000)
    engine = AuthEngine.from_settings(settings, identity_store, token_store, clock=clock)
    assert engine.access_expires_in_ms == 120_000
    session = engine.register("A", "B", "cfg@x.com", "password123").unwrap()
    claims = engine.codec.verify(session.access_token)
    assert claims.expires_at - claims.issued_at == timedelta(minutes=2)
