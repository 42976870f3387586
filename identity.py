"""
Client for the hosted auth provider (Supabase Auth REST API).

Riders sign in on the front end; the backend only ever sees their access
token. This module turns a token into a user and handles the two
service-role calls the site needs: auto-confirmed sign-up and account
deletion.

Public API:
  get_user(access_token)            → {"id", "email", "name"} or None
  create_user(email, password, name) → user dict
  delete_user(user_id)              → None
"""

import json
import logging
import urllib.error
import urllib.request

from flask import current_app

from errors import StorageError, ValidationError

log = logging.getLogger(__name__)

TIMEOUT = 10


def _base_url() -> str:
    url = current_app.config.get("SUPABASE_URL", "")
    if not url:
        raise RuntimeError("SUPABASE_URL is not configured")
    return url.rstrip("/") + "/auth/v1"


def _request(method: str, path: str, bearer: str, payload: dict | None = None) -> dict:
    service_key = current_app.config.get("SUPABASE_SERVICE_ROLE_KEY", "")
    data = json.dumps(payload).encode() if payload is not None else None
    req = urllib.request.Request(
        _base_url() + path,
        data=data,
        headers={
            "apikey":        service_key,
            "Authorization": f"Bearer {bearer}",
            "Content-Type":  "application/json",
        },
        method=method,
    )
    with urllib.request.urlopen(req, timeout=TIMEOUT) as resp:
        body = resp.read()
    return json.loads(body) if body else {}


def _to_user(data: dict) -> dict:
    meta = data.get("user_metadata") or {}
    return {
        "id":    data["id"],
        "email": data.get("email"),
        "name":  meta.get("full_name") or meta.get("name"),
    }


def display_name(user: dict) -> str:
    """Full name, else the email's local part, else Anonymous."""
    if user.get("name"):
        return user["name"]
    if user.get("email"):
        return user["email"].split("@")[0]
    return "Anonymous"


def get_user(access_token: str | None) -> dict | None:
    """Resolve a rider's access token. Invalid tokens and provider errors give None."""
    if not access_token:
        return None
    try:
        data = _request("GET", "/user", access_token)
    except urllib.error.HTTPError as exc:
        if exc.code not in (401, 403):
            log.error("Auth provider HTTP %s on user lookup", exc.code)
        return None
    except Exception as exc:
        log.error("Auth provider error on user lookup: %s", exc)
        return None
    if not data.get("id"):
        return None
    return _to_user(data)


def create_user(email: str, password: str, name: str | None = None) -> dict:
    """Create an auto-confirmed account. Provider rejections raise ValidationError."""
    service_key = current_app.config.get("SUPABASE_SERVICE_ROLE_KEY", "")
    payload = {
        "email":         email,
        "password":      password,
        "user_metadata": {"full_name": name},
        "email_confirm": True,
    }
    try:
        data = _request("POST", "/admin/users", service_key, payload)
    except urllib.error.HTTPError as exc:
        try:
            detail = json.loads(exc.read() or b"{}")
        except ValueError:
            detail = {}
        message = detail.get("msg") or detail.get("message") or "Signup failed"
        log.warning("Signup rejected for %s: %s", email, message)
        raise ValidationError(message)
    except Exception as exc:
        log.error("Auth provider error on signup: %s", exc)
        raise StorageError("Signup failed") from exc
    log.info("Account created for %s", email)
    return _to_user(data)


def delete_user(user_id: str):
    service_key = current_app.config.get("SUPABASE_SERVICE_ROLE_KEY", "")
    try:
        _request("DELETE", f"/admin/users/{user_id}", service_key)
    except Exception as exc:
        log.error("Auth provider error deleting user %s: %s", user_id, exc)
        raise StorageError("Failed to delete user account") from exc
    log.info("Auth account deleted: %s", user_id)
