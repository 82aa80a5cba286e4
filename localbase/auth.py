"""Auth emulator: sign-up, sign-in and sign-out against the users and
auth_sessions tables.

Session lifecycle:
- sign_in creates an auth_sessions row expiring after ``session_ttl_days``
- sign_out flips ``is_valid`` to false; the row and its ``expires_at`` stay
- nothing sweeps expired sessions; ``is_session_valid`` is applied lazily

Password policy: sign_up always stores a salted PBKDF2 hash, but sign_in
only checks it when ``verify_passwords`` is enabled. With it disabled any
password is accepted for an active account, which keeps parity with the
hosted client this module stands in for during local development.
"""

import hashlib
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from localbase import metrics
from localbase.errors import AuthError, LocalbaseError, StoreError, ValidationError, translate_store_error
from localbase.query import InsertQuery
from localbase.results import returns_result
from localbase.schema import utc_now
from localbase.store import RecordStore

logger = structlog.get_logger()

PASSWORD_HASH_ALGORITHM = "pbkdf2_sha256"
PASSWORD_HASH_ITERATIONS = 260_000

INVALID_CREDENTIALS = "Invalid login credentials"


def hash_password(password: str, salt: str | None = None) -> str:
    """
    Hash a password for storage.

    Format: pbkdf2_sha256${iterations}${salt}${hex digest}

    Example:
        >>> stored = hash_password("secret")
        >>> stored.startswith("pbkdf2_sha256$")
        True
    """
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode(), salt.encode(), PASSWORD_HASH_ITERATIONS
    ).hex()
    return f"{PASSWORD_HASH_ALGORITHM}${PASSWORD_HASH_ITERATIONS}${salt}${digest}"


def verify_password(password: str, stored_hash: str | None) -> bool:
    """
    Verify a password against a stored hash.

    Constant-time comparison; malformed or missing hashes never verify.
    """
    if not stored_hash or not isinstance(password, str):
        return False
    try:
        algorithm, iterations, salt, digest = stored_hash.split("$")
        rounds = int(iterations)
    except ValueError:
        return False
    if algorithm != PASSWORD_HASH_ALGORITHM:
        return False
    computed = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), rounds).hex()
    return secrets.compare_digest(computed, digest)


def _as_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def is_session_valid(session: dict[str, Any] | None, now: datetime | None = None) -> bool:
    """A session is usable iff is_valid is true and now < expires_at."""
    if not session or not session.get("is_valid"):
        return False
    expires_at = _as_datetime(session.get("expires_at"))
    if expires_at is None:
        return False
    return (now or datetime.now(timezone.utc)) < expires_at


def _submitted_email(email: Any) -> str:
    """Audit key for a sign-in attempt; non-strings are tagged with their type."""
    if isinstance(email, str):
        return email
    return f"<{type(email).__name__}:{email!r}>"


def public_user(row: dict[str, Any]) -> dict[str, Any]:
    """User row without credential material."""
    return {k: v for k, v in row.items() if k != "password_hash"}


class AuthEmulator:
    """
    Sign-up/sign-in/sign-out over the record store.

    The emulator remembers the session created by the last successful
    sign_in as its current session; ``get_user()`` and ``sign_out()`` fall
    back to it when no session id is passed.
    """

    def __init__(
        self,
        store: RecordStore,
        session_ttl_days: int = 7,
        default_account_status: str = "active",
        verify_passwords: bool = False,
    ) -> None:
        self.store = store
        self.session_ttl = timedelta(days=session_ttl_days)
        self.default_account_status = default_account_status
        self.verify_passwords = verify_passwords
        self.current_session: dict[str, Any] | None = None
        if not verify_passwords:
            logger.warning("password_verification_disabled")

    async def _insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        compiled = InsertQuery(self.store, table).compile_row(row)
        try:
            rows = await self.store.get_all(compiled.sql, compiled.params)
        except StoreError as e:
            raise translate_store_error(e, table=table)
        return self.store.decode_row(table, rows[0])

    # ========================================
    # Sign up
    # ========================================

    @returns_result("sign_up")
    async def sign_up(self, email: str, password: str | None = None) -> dict[str, Any]:
        """
        Register a user with role USER and the default account status.

        Also creates the user's default user_settings row. No session is
        issued; call sign_in afterwards.

        Returns:
            {"user": {...}, "session": None}
        """
        if not isinstance(email, str) or not email:
            raise ValidationError("Email must be a non-empty string", details={"email": repr(email)})

        user_id = f"user_{uuid.uuid4()}"
        try:
            user = await self._insert("users", {
                "id": user_id,
                "email": email,
                "role": "USER",
                "account_status": self.default_account_status,
                "password_hash": hash_password(password) if isinstance(password, str) else None,
            })
        except LocalbaseError as e:
            metrics.AUTH_ATTEMPTS_TOTAL.labels(operation="sign_up", status="error").inc()
            if e.code == "conflict":
                e.message = "User already registered"
                e.details = {**e.details, "email": email}
            raise

        try:
            await self._insert("user_settings", {"user_id": user_id})
        except Exception:
            metrics.AUTH_ATTEMPTS_TOTAL.labels(operation="sign_up", status="error").inc()
            # no half-registered users: a retry must not hit "already registered"
            await self.store.execute("DELETE FROM users WHERE id = ?", [user_id])
            raise

        metrics.AUTH_ATTEMPTS_TOTAL.labels(operation="sign_up", status="success").inc()
        logger.info("user_signed_up", user_id=user_id, account_status=self.default_account_status)
        return {"user": public_user(user), "session": None}

    # ========================================
    # Sign in
    # ========================================

    async def _authenticate(self, email: str, password: str | None) -> dict[str, Any]:
        if not isinstance(email, str) or not email:
            raise ValidationError("Email must be a non-empty string", details={"email": repr(email)})

        user = await self.store.get_one("SELECT * FROM users WHERE email = ?", [email])
        if user is None:
            logger.info("sign_in_rejected", reason="user_not_found")
            raise AuthError(INVALID_CREDENTIALS)
        user = self.store.decode_row("users", user)

        if user.get("account_status") != "active":
            logger.info("sign_in_rejected", reason="account_not_active", user_id=user["id"])
            raise AuthError(INVALID_CREDENTIALS)

        locked_until = _as_datetime(user.get("locked_until"))
        if locked_until is not None and locked_until > datetime.now(timezone.utc):
            logger.info("sign_in_rejected", reason="account_locked", user_id=user["id"])
            raise AuthError(INVALID_CREDENTIALS)

        if self.verify_passwords and not verify_password(password, user.get("password_hash")):
            logger.info("sign_in_rejected", reason="bad_password", user_id=user["id"])
            raise AuthError(INVALID_CREDENTIALS)

        return user

    async def _record_failed_attempt(
        self, email: Any, ip_address: str | None, user_agent: str | None
    ) -> None:
        """Append an audit row keyed by the submitted email. Never raises."""
        try:
            await self._insert("failed_login_attempts", {
                "id": f"fail_{uuid.uuid4()}",
                "email": _submitted_email(email),
                "ip_address": ip_address,
                "user_agent": user_agent,
            })
        except Exception as e:
            logger.error("failed_login_attempt_not_recorded", error=str(e))

    @returns_result("sign_in")
    async def sign_in(
        self,
        email: str,
        password: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> dict[str, Any]:
        """
        Sign in by email and open a session.

        Fails with a generic "Invalid login credentials" error when the user
        does not exist or the account is not active. Every failure appends a
        failed_login_attempts row.

        Returns:
            {"user": {...}, "session": {"id", "user_id", "expires_at", ...}}
        """
        try:
            user = await self._authenticate(email, password)

            now = utc_now()
            session = await self._insert("auth_sessions", {
                "id": f"session_{uuid.uuid4()}",
                "user_id": user["id"],
                "created_at": now,
                "expires_at": now + self.session_ttl,
                "ip_address": ip_address,
                "user_agent": user_agent,
                "is_valid": True,
            })
            await self.store.execute(
                "UPDATE users SET last_login = ?, updated_at = ? WHERE id = ?",
                [now, now, user["id"]],
            )
        except Exception:
            metrics.AUTH_ATTEMPTS_TOTAL.labels(operation="sign_in", status="error").inc()
            await self._record_failed_attempt(email, ip_address, user_agent)
            raise

        self.current_session = session
        metrics.AUTH_ATTEMPTS_TOTAL.labels(operation="sign_in", status="success").inc()
        logger.info("user_signed_in", user_id=user["id"], session_id=session["id"])
        return {"user": public_user(user), "session": session}

    # ========================================
    # Sign out / current user
    # ========================================

    @returns_result("sign_out")
    async def sign_out(self, session_id: str | None = None) -> None:
        """
        Invalidate a session (defaults to the current one).

        Unknown or already invalid ids are a no-op success.
        """
        if session_id is None and self.current_session is not None:
            session_id = self.current_session["id"]
        if not session_id:
            return None

        count = await self.store.execute(
            "UPDATE auth_sessions SET is_valid = false WHERE id = ?", [session_id]
        )
        if self.current_session is not None and self.current_session["id"] == session_id:
            self.current_session = None

        metrics.AUTH_ATTEMPTS_TOTAL.labels(operation="sign_out", status="success").inc()
        logger.info("session_invalidated", session_id=session_id, matched=bool(count))
        return None

    async def _valid_session(self, session_id: str | None) -> dict[str, Any] | None:
        if session_id is None:
            if self.current_session is None:
                return None
            session_id = self.current_session["id"]
        row = await self.store.get_one("SELECT * FROM auth_sessions WHERE id = ?", [session_id])
        if row is None:
            return None
        session = self.store.decode_row("auth_sessions", row)
        return session if is_session_valid(session) else None

    @returns_result("get_session")
    async def get_session(self, session_id: str | None = None) -> dict[str, Any]:
        """Return {"session": row} for a valid session, {"session": None} otherwise."""
        return {"session": await self._valid_session(session_id)}

    @returns_result("get_user")
    async def get_user(self, session_id: str | None = None) -> dict[str, Any]:
        """
        Resolve the user behind a valid session (defaults to the current one).

        Returns:
            {"user": {...}}; AuthError when the session is missing, expired
            or signed out
        """
        session = await self._valid_session(session_id)
        if session is None:
            raise AuthError("Auth session missing or expired", code="session_missing")
        user = await self.store.get_one("SELECT * FROM users WHERE id = ?", [session["user_id"]])
        if user is None:
            raise AuthError("Auth session missing or expired", code="session_missing")
        return {"user": public_user(self.store.decode_row("users", user))}
