"""Tests for identity module."""

from __future__ import annotations

import json
import os
import stat
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import yaml

from rpg_manager_storage.events import LoggedOut, LoginSucceeded, SessionExpired
from rpg_manager_storage.exceptions import AuthenticationRequiredError, FormatError, TransportError
from rpg_manager_storage.identity import (
    AuthSession,
    ConfigTokenProvider,
    Credential,
    CredentialCache,
)


def write_cached(path: Path, token: str, expires_in_seconds: float) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    expiry = datetime.now(UTC) + timedelta(seconds=expires_in_seconds)
    path.write_text(json.dumps({"access_token": token, "expiry": int(expiry.timestamp() * 1000)}))


class TestCredential:
    def test_from_token_response(self):
        now = datetime(2024, 1, 1, tzinfo=UTC)
        credential = Credential.from_token_response(
            {"access_token": "abc", "expires_in": 3599}, now=now
        )
        assert credential.access_token == "abc"
        assert credential.expiry == now + timedelta(seconds=3599)

    def test_default_lifetime(self):
        now = datetime(2024, 1, 1, tzinfo=UTC)
        credential = Credential.from_token_response({"access_token": "abc"}, now=now)
        assert credential.expiry == now + timedelta(hours=1)

    def test_missing_token_rejected(self):
        with pytest.raises(FormatError):
            Credential.from_token_response({"expires_in": 10})

    def test_validity_uses_safety_margin(self):
        now = datetime(2024, 1, 1, tzinfo=UTC)
        assert Credential("t", now + timedelta(seconds=61)).is_valid(now=now)
        assert not Credential("t", now + timedelta(seconds=60)).is_valid(now=now)
        assert not Credential("t", now + timedelta(seconds=30)).is_valid(now=now)
        assert not Credential("t", now - timedelta(seconds=1)).is_valid(now=now)

    def test_dict_roundtrip_in_epoch_millis(self):
        expiry = datetime(2024, 1, 1, 12, 0, 0, 500000, tzinfo=UTC)
        data = Credential("t", expiry).to_dict()
        assert data["expiry"] == int(expiry.timestamp() * 1000)
        assert Credential.from_dict(data) == Credential("t", expiry)

    def test_token_hidden_from_repr(self):
        assert "secret" not in repr(Credential("secret", datetime.now(UTC)))


class TestCredentialCache:
    async def test_save_and_load(self, credential_path):
        cache = CredentialCache(credential_path)
        credential = Credential("abc", datetime.now(UTC) + timedelta(hours=1))
        await cache.save(credential)

        loaded = await cache.load()
        assert loaded.access_token == "abc"
        assert stat.S_IMODE(os.stat(credential_path).st_mode) == 0o600

    async def test_missing_file(self, credential_path):
        assert await CredentialCache(credential_path).load() is None

    async def test_expiry_inside_margin_discarded(self, credential_path):
        write_cached(credential_path, "abc", 30)
        assert await CredentialCache(credential_path).load() is None
        assert not credential_path.exists()

    async def test_corrupt_file_discarded(self, credential_path):
        credential_path.parent.mkdir(parents=True)
        credential_path.write_text("{garbage")
        assert await CredentialCache(credential_path).load() is None
        assert not credential_path.exists()

    async def test_malformed_content_discarded(self, credential_path):
        credential_path.parent.mkdir(parents=True)
        credential_path.write_text(json.dumps({"token": "abc"}))
        assert await CredentialCache(credential_path).load() is None
        assert not credential_path.exists()


class TestAuthSession:
    async def test_starts_unauthenticated(self, token_provider, credential_path):
        session = AuthSession(token_provider, CredentialCache(credential_path))
        assert not session.is_authenticated
        with pytest.raises(AuthenticationRequiredError):
            _ = session.access_token

    async def test_token_inside_expiry_margin_not_handed_out(self, token_provider, credential_path):
        token_provider.expires_in = 30
        session = AuthSession(token_provider, CredentialCache(credential_path))
        await session.login()

        assert session.credential is not None
        assert not session.is_authenticated
        with pytest.raises(AuthenticationRequiredError):
            _ = session.access_token

    async def test_login_caches_and_publishes(self, token_provider, credential_path, bus):
        session = AuthSession(token_provider, CredentialCache(credential_path), bus)
        await session.login()

        assert session.access_token == "token-1"
        assert credential_path.exists()
        assert bus.of_type(LoginSucceeded)[0].restored is False

    async def test_restore_reuses_valid_cache(self, token_provider, credential_path, bus):
        write_cached(credential_path, "cached", 3600)
        session = AuthSession(token_provider, CredentialCache(credential_path), bus)

        assert await session.ensure_authenticated() == "cached"
        assert token_provider.issued == 0
        assert bus.of_type(LoginSucceeded)[0].restored is True

    async def test_near_expiry_cache_triggers_fresh_login(self, token_provider, credential_path):
        write_cached(credential_path, "stale", 30)
        session = AuthSession(token_provider, CredentialCache(credential_path))

        assert await session.ensure_authenticated() == "token-1"
        assert token_provider.issued == 1

    async def test_login_failure_propagates(self, token_provider, credential_path):
        token_provider.available = False
        session = AuthSession(token_provider, CredentialCache(credential_path))
        with pytest.raises(AuthenticationRequiredError):
            await session.ensure_authenticated()

    async def test_invalidate_clears_cache(self, session, credential_path, bus):
        await session.invalidate()
        assert not session.is_authenticated
        assert not credential_path.exists()
        assert bus.of_type(SessionExpired)

    async def test_logout_revokes(self, session, token_provider, credential_path, bus):
        await session.logout()
        assert token_provider.revoked == ["token-1"]
        assert not session.is_authenticated
        assert not credential_path.exists()
        assert bus.of_type(LoggedOut)

    async def test_logout_survives_revoke_failure(self, session, token_provider, credential_path):
        async def failing_revoke(token):
            raise TransportError("revoke", status=503)

        token_provider.revoke = failing_revoke
        await session.logout()
        assert not session.is_authenticated
        assert not credential_path.exists()


class TestConfigTokenProvider:
    async def test_reads_settings_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("RPG_MANAGER_ACCESS_TOKEN", raising=False)
        monkeypatch.delenv("RPG_MANAGER_TOKEN_EXPIRES_IN", raising=False)
        config_path = tmp_path / "settings.yaml"
        config_path.write_text(
            yaml.dump({"identity": {"access_token": "from-file", "expires_in": 120}})
        )

        credential = await ConfigTokenProvider(config_path).request_access_token()
        assert credential.access_token == "from-file"
        remaining = credential.expiry - datetime.now(UTC)
        assert timedelta(seconds=100) < remaining <= timedelta(seconds=120)

    async def test_environment_wins(self, tmp_path, monkeypatch):
        monkeypatch.setenv("RPG_MANAGER_ACCESS_TOKEN", "from-env")
        config_path = tmp_path / "settings.yaml"
        config_path.write_text(yaml.dump({"identity": {"access_token": "from-file"}}))

        credential = await ConfigTokenProvider(config_path).request_access_token()
        assert credential.access_token == "from-env"

    async def test_nothing_configured(self, tmp_path, monkeypatch):
        monkeypatch.delenv("RPG_MANAGER_ACCESS_TOKEN", raising=False)
        with pytest.raises(AuthenticationRequiredError):
            await ConfigTokenProvider(tmp_path / "missing.yaml").request_access_token()

    async def test_revoke_disabled(self):
        await ConfigTokenProvider(revoke_url=None).revoke("abc")
