"""Tests for the auth emulator."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from localbase.auth import hash_password, is_session_valid, verify_password
from localbase.client import create_client


class TestPasswords:
    """Tests for password hashing helpers."""

    def test_roundtrip(self):
        stored = hash_password("secret")
        assert stored.startswith("pbkdf2_sha256$")
        assert verify_password("secret", stored)
        assert not verify_password("Secret", stored)

    def test_salted(self):
        assert hash_password("secret") != hash_password("secret")

    @pytest.mark.parametrize("stored", [None, "", "plain", "md5$1$salt$abc", "pbkdf2_sha256$x$salt$abc"])
    def test_malformed_hash_never_verifies(self, stored):
        assert not verify_password("secret", stored)


class TestSessionValidity:
    """Tests for lazy session expiry."""

    def test_valid(self):
        expires = (datetime.now(timezone.utc) + timedelta(days=1)).isoformat()
        assert is_session_valid({"is_valid": True, "expires_at": expires})

    def test_expired(self):
        expires = (datetime.now(timezone.utc) - timedelta(seconds=1)).isoformat()
        assert not is_session_valid({"is_valid": True, "expires_at": expires})

    def test_invalidated(self):
        expires = (datetime.now(timezone.utc) + timedelta(days=1)).isoformat()
        assert not is_session_valid({"is_valid": False, "expires_at": expires})

    def test_explicit_now(self):
        session = {"is_valid": True, "expires_at": "2024-01-08T00:00:00+00:00"}
        assert is_session_valid(session, now=datetime(2024, 1, 7, tzinfo=timezone.utc))
        assert not is_session_valid(session, now=datetime(2024, 1, 8, tzinfo=timezone.utc))

    def test_missing(self):
        assert not is_session_valid(None)


class TestSignUp:
    """Tests for registration."""

    async def test_sign_up(self, client):
        result = await client.auth.sign_up("a@x.com", "secret")
        assert result.error is None
        user = result.data["user"]
        assert user["id"].startswith("user_")
        assert user["email"] == "a@x.com"
        assert user["role"] == "USER"
        assert user["account_status"] == "active"
        assert "password_hash" not in user
        assert result.data["session"] is None

    async def test_password_stored_hashed(self, client):
        result = await client.auth.sign_up("a@x.com", "secret")
        row = await client.store.get_one("SELECT password_hash FROM users WHERE id = ?", [result.data["user"]["id"]])
        assert row["password_hash"] != "secret"
        assert verify_password("secret", row["password_hash"])

    async def test_creates_user_settings(self, client):
        result = await client.auth.sign_up("a@x.com", "secret")
        settings_row = await client.table("user_settings").eq("user_id", result.data["user"]["id"]).single()
        assert settings_row.data["language"] == "it"
        assert settings_row.data["notifications_enabled"] is True

    async def test_duplicate_email(self, client):
        await client.auth.sign_up("a@x.com", "secret")
        result = await client.auth.sign_up("a@x.com", "other")
        assert result.data is None
        assert result.error.code == "conflict"
        assert result.error.message == "User already registered"

    async def test_invalid_email_type(self, client):
        result = await client.auth.sign_up(None, "secret")
        assert result.error.code == "validation_error"

    async def test_failed_settings_insert_leaves_no_user(self, client):
        await client.store.execute("DROP TABLE user_settings")
        failed = await client.auth.sign_up("a@x.com", "secret")
        assert failed.error.code == "store_error"
        assert (await client.table("users").eq("email", "a@x.com")).data == []

        await client.store.initialize()
        retried = await client.auth.sign_up("a@x.com", "secret")
        assert retried.error is None
        assert retried.data["user"]["email"] == "a@x.com"

    async def test_default_account_status_configurable(self, tmp_path):
        from localbase.config import Settings
        client = await create_client(Settings(
            data_dir=tmp_path, default_account_status="pending_confirmation", _env_file=None
        ))
        await client.auth.sign_up("a@x.com", "secret")
        result = await client.auth.sign_in("a@x.com", "secret")
        assert result.error.code == "invalid_credentials"


class TestSignIn:
    """Tests for sign-in and session lifecycle."""

    async def test_sign_in_creates_session(self, client):
        await client.auth.sign_up("a@x.com", "secret")
        result = await client.auth.sign_in("a@x.com", "secret", ip_address="127.0.0.1")
        assert result.error is None
        session = result.data["session"]
        assert session["id"].startswith("session_")
        assert session["user_id"] == result.data["user"]["id"]
        assert session["is_valid"] is True
        assert session["ip_address"] == "127.0.0.1"

        created = datetime.fromisoformat(session["created_at"])
        expires = datetime.fromisoformat(session["expires_at"])
        assert expires - created == timedelta(days=7)
        assert is_session_valid(session)

    async def test_sign_in_updates_last_login(self, client):
        await client.auth.sign_up("a@x.com", "secret")
        result = await client.auth.sign_in("a@x.com", "secret")
        user = await client.table("users").eq("id", result.data["user"]["id"]).single()
        assert user.data["last_login"] is not None

    async def test_unknown_user(self, client):
        result = await client.auth.sign_in("ghost@x.com", "secret", user_agent="pytest")
        assert result.data is None
        assert result.error.code == "invalid_credentials"
        assert result.error.message == "Invalid login credentials"

        attempts = await client.table("failed_login_attempts").eq("email", "ghost@x.com")
        assert len(attempts.data) == 1
        assert attempts.data[0]["id"].startswith("fail_")
        assert attempts.data[0]["user_agent"] == "pytest"

    @pytest.mark.parametrize("email, recorded", [(None, "<NoneType:None>"), (123, "<int:123>")])
    async def test_non_string_email_audit_key(self, client, email, recorded):
        result = await client.auth.sign_in(email, "secret")
        assert result.error.code == "validation_error"

        attempts = await client.table("failed_login_attempts")
        assert [row["email"] for row in attempts.data] == [recorded]

    async def test_inactive_account_same_error(self, client):
        signed = await client.auth.sign_up("a@x.com", "secret")
        await client.update("users").eq("id", signed.data["user"]["id"]).set({"account_status": "suspended"})
        result = await client.auth.sign_in("a@x.com", "secret")
        assert result.error.code == "invalid_credentials"
        assert result.error.message == "Invalid login credentials"

    async def test_locked_account(self, client):
        signed = await client.auth.sign_up("a@x.com", "secret")
        locked_until = datetime.now(timezone.utc) + timedelta(hours=1)
        await client.update("users").eq("id", signed.data["user"]["id"]).set({"locked_until": locked_until})
        result = await client.auth.sign_in("a@x.com", "secret")
        assert result.error.code == "invalid_credentials"

    async def test_password_ignored_by_default(self, client):
        await client.auth.sign_up("a@x.com", "secret")
        result = await client.auth.sign_in("a@x.com", "wrong")
        assert result.error is None

    async def test_password_checked_when_enabled(self, strict_settings):
        client = await create_client(strict_settings)
        await client.auth.sign_up("a@x.com", "secret")

        wrong = await client.auth.sign_in("a@x.com", "wrong")
        assert wrong.error.code == "invalid_credentials"
        right = await client.auth.sign_in("a@x.com", "secret")
        assert right.error is None

    async def test_get_user_uses_current_session(self, client):
        await client.auth.sign_up("a@x.com", "secret")
        await client.auth.sign_in("a@x.com", "secret")
        result = await client.auth.get_user()
        assert result.data["user"]["email"] == "a@x.com"

    async def test_get_user_without_session(self, client):
        result = await client.auth.get_user()
        assert result.error.code == "session_missing"

    async def test_sign_out(self, client):
        await client.auth.sign_up("a@x.com", "secret")
        signed_in = await client.auth.sign_in("a@x.com", "secret")
        session_id = signed_in.data["session"]["id"]

        result = await client.auth.sign_out()
        assert result.error is None
        assert client.auth.current_session is None

        row = await client.table("auth_sessions").eq("id", session_id).single()
        assert row.data["is_valid"] is False
        assert (await client.auth.get_session(session_id)).data == {"session": None}
        assert (await client.auth.get_user(session_id)).error.code == "session_missing"

    async def test_sign_out_idempotent(self, client):
        assert (await client.auth.sign_out("session_unknown")).error is None
        assert (await client.auth.sign_out()).error is None

    async def test_sessions_are_independent(self, client):
        await client.auth.sign_up("a@x.com", "secret")
        first = (await client.auth.sign_in("a@x.com", "secret")).data["session"]["id"]
        second = (await client.auth.sign_in("a@x.com", "secret")).data["session"]["id"]
        await client.auth.sign_out(first)
        assert (await client.auth.get_session(first)).data["session"] is None
        assert (await client.auth.get_session(second)).data["session"]["id"] == second


class TestConcurrency:
    """Tests for auth calls issued concurrently with asyncio.gather."""

    async def test_concurrent_sign_ins(self, client):
        await client.auth.sign_up("a@x.com", "secret")
        results = await asyncio.gather(*[client.auth.sign_in("a@x.com", "secret") for _ in range(20)])
        assert [r.error for r in results] == [None] * 20
        assert len({r.data["session"]["id"] for r in results}) == 20

        sessions = await client.table("auth_sessions").select("id")
        assert len(sessions.data) == 20
        assert (await client.table("failed_login_attempts")).data == []

    async def test_concurrent_sign_ups(self, client):
        results = await asyncio.gather(*[client.auth.sign_up(f"user{i}@x.com", "pw") for i in range(15)])
        assert [r.error for r in results] == [None] * 15
        assert len((await client.table("users")).data) == 15
        assert len((await client.table("user_settings")).data) == 15

    async def test_concurrent_duplicate_sign_ups(self, client):
        results = await asyncio.gather(*[client.auth.sign_up("same@x.com", "pw") for _ in range(5)])
        assert sorted(r.error.code if r.error else "ok" for r in results) == ["conflict"] * 4 + ["ok"]
        assert len((await client.table("users")).data) == 1
        assert len((await client.table("user_settings")).data) == 1
