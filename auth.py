"""
Authentication helpers for Ride United.

Two kinds of caller:
  - admins, holding a short-lived session token (X-Admin-Token header)
    obtained with the admin password or an allow-listed provider account
  - riders, holding an auth-provider access token (Authorization: Bearer)

Admin sessions are never renewed; once expired the admin logs in again.
"""

import hmac
import logging
import secrets
import time
from functools import wraps

import bcrypt
from flask import current_app, g, request

import identity
import kv_store
from errors import AuthenticationError, SessionExpired, ValidationError

log = logging.getLogger(__name__)

ADMIN_PASSWORD_KEY = "admin:password"
MIN_PASSWORD_LENGTH = 8
# bcrypt only hashes the first 72 bytes and refuses anything longer
MAX_PASSWORD_BYTES = 72


def _session_key(token: str) -> str:
    return f"admin:session:{token}"


def now_ms() -> int:
    return int(time.time() * 1000)


# ---------------------------------------------------------------------------
# Password utilities
# ---------------------------------------------------------------------------

def hash_password(plain: str) -> str:
    return bcrypt.hashpw(plain.encode(), bcrypt.gensalt()).decode()


def check_password(plain: str, hashed: str) -> bool:
    if len(plain.encode()) > MAX_PASSWORD_BYTES:
        return False
    return bcrypt.checkpw(plain.encode(), hashed.encode())


def set_admin_password(new_password: str):
    if not new_password or len(new_password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Admin password must be at least {MIN_PASSWORD_LENGTH} characters.")
    if len(new_password.encode()) > MAX_PASSWORD_BYTES:
        raise ValidationError(
            f"Admin password must be at most {MAX_PASSWORD_BYTES} bytes.")
    kv_store.set(ADMIN_PASSWORD_KEY, hash_password(new_password))
    log.info("Admin password changed")


# ---------------------------------------------------------------------------
# Admin sessions
# ---------------------------------------------------------------------------

def create_admin_session(who: str) -> dict:
    hours = current_app.config.get("ADMIN_SESSION_HOURS", 24)
    token = secrets.token_urlsafe(32)
    session = {"expiresAt": now_ms() + int(hours * 3600 * 1000), "identity": who}
    kv_store.set(_session_key(token), session)
    return {"token": token, **session}


def login_with_password(password: str) -> dict:
    """Start an admin session for the admin password. Raises AuthenticationError."""
    if not password:
        raise AuthenticationError("Invalid password")
    stored = kv_store.get(ADMIN_PASSWORD_KEY)
    if stored:
        ok = check_password(password, stored)
    else:
        configured = current_app.config.get("ADMIN_PASSWORD") or ""
        ok = bool(configured) and hmac.compare_digest(password.encode(), configured.encode())
    if not ok:
        log.warning("Admin password login failed")
        raise AuthenticationError("Invalid password")
    log.info("Admin login via password")
    return create_admin_session("admin")


def login_with_access_token(access_token: str) -> dict:
    """Start an admin session for an allow-listed provider account."""
    user = identity.get_user(access_token)
    allowed = {e.lower() for e in current_app.config.get("ADMIN_EMAILS", [])}
    if not user or not user.get("email") or user["email"].lower() not in allowed:
        log.warning("Admin token login refused for %s", user.get("email") if user else None)
        raise AuthenticationError("Unauthorized access")
    log.info("Admin login via token for %s", user["email"])
    return create_admin_session(user["email"])


def verify_admin_session(token: str | None) -> dict:
    """Return the session for a token, or raise AuthenticationError / SessionExpired."""
    if not token:
        raise AuthenticationError("No admin token")
    session = kv_store.get(_session_key(token))
    if not session:
        raise AuthenticationError("Invalid or expired session")
    if now_ms() > session["expiresAt"]:
        kv_store.delete(_session_key(token))
        raise SessionExpired()
    return session


def logout_admin(token: str):
    kv_store.delete(_session_key(token))


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------

def admin_token() -> str | None:
    return request.headers.get("X-Admin-Token")


def bearer_token() -> str | None:
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return None


def current_admin() -> dict | None:
    """Admin session for this request, or None. Never raises for bad tokens."""
    token = admin_token()
    if not token:
        return None
    try:
        return verify_admin_session(token)
    except AuthenticationError:
        return None


def current_user() -> dict | None:
    """Rider behind the bearer token, or None."""
    return identity.get_user(bearer_token())


# ---------------------------------------------------------------------------
# Decorators
# ---------------------------------------------------------------------------

def admin_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        g.admin = verify_admin_session(admin_token())
        return f(*args, **kwargs)
    return decorated


def user_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        if not bearer_token():
            raise AuthenticationError("Missing Authorization header")
        user = current_user()
        if not user:
            raise AuthenticationError("Invalid user token")
        g.user = user
        return f(*args, **kwargs)
    return decorated
