"""
Route image storage for Ride United.

Images live in the route_images table; routes keep only the ref. Readers
never see the ref itself: resolve_image_url() turns it into a signed,
time-limited /images/<token> URL.

Refs that are already http(s) URLs are external and are never deleted.
"""

import logging
import mimetypes
import time
import uuid

import psycopg2
from flask import current_app
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

import db
from errors import NotFoundError, StorageError, ValidationError

log = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 5 * 1024 * 1024
SIGNED_URL_SECONDS = 3600
_SALT = "route-image"


def is_external(ref: str | None) -> bool:
    return bool(ref) and ref.startswith(("http://", "https://"))


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=_SALT)


# ---------------------------------------------------------------------------
# Upload / delete
# ---------------------------------------------------------------------------

def upload_image(data: bytes, content_type: str, filename: str | None = None) -> str:
    """Store an image and return its ref. Raises ValidationError / StorageError."""
    content_type = (content_type or "").split(";")[0].strip()
    if not content_type.startswith("image/"):
        raise ValidationError("Route image must be an image file.")
    if not data:
        raise ValidationError("Route image is empty.")
    if len(data) > MAX_IMAGE_BYTES:
        raise ValidationError("Route image must be 5 MB or smaller.")

    ext = mimetypes.guess_extension(content_type) or ""
    ext = {".jpe": ".jpg", ".jpeg": ".jpg"}.get(ext, ext)
    ref = f"{int(time.time() * 1000)}-{uuid.uuid4().hex}{ext}"
    try:
        db.execute(
            "INSERT INTO route_images (ref, content_type, filename, data) "
            "VALUES (%s, %s, %s, %s)",
            (ref, content_type, filename, psycopg2.Binary(data)),
            fetch=False,
        )
    except psycopg2.Error as exc:
        log.error("Image upload failed (%s): %s", filename, exc)
        raise StorageError("Failed to upload image") from exc
    log.info("Image stored: %s (%s, %d bytes)", ref, content_type, len(data))
    return ref


def delete_image(ref: str | None) -> bool:
    """Delete a stored image. External URLs and empty refs are left alone."""
    if not ref or is_external(ref):
        return False
    try:
        db.execute("DELETE FROM route_images WHERE ref = %s", (ref,), fetch=False)
    except psycopg2.Error as exc:
        log.error("Image delete failed for %s: %s", ref, exc)
        raise StorageError("Failed to delete image") from exc
    log.info("Image deleted: %s", ref)
    return True


def load_image(ref: str):
    try:
        return db.fetchone(
            "SELECT ref, content_type, data FROM route_images WHERE ref = %s", (ref,))
    except psycopg2.Error as exc:
        log.error("Image read failed for %s: %s", ref, exc)
        raise StorageError("Failed to read image") from exc


# ---------------------------------------------------------------------------
# Signed URLs
# ---------------------------------------------------------------------------

def signed_url(ref: str, expires_in: int = SIGNED_URL_SECONDS) -> str:
    # The expiry is enforced in read_token(); the token only carries a timestamp.
    token = _serializer().dumps({"ref": ref, "ttl": expires_in})
    cfg = current_app.config
    base = cfg.get("IMAGE_BASE_URL", "").rstrip("/") + cfg.get("API_PREFIX", "")
    return f"{base}/images/{token}"


def read_token(token: str) -> str:
    """Return the ref a signed token points at. Raises NotFoundError if stale or forged."""
    serializer = _serializer()
    try:
        payload, signed_at = serializer.loads(token, return_timestamp=True)
    except SignatureExpired:
        raise NotFoundError("Image link expired")
    except BadSignature:
        raise NotFoundError("Image not found")
    age = time.time() - signed_at.timestamp()
    if age > payload.get("ttl", SIGNED_URL_SECONDS):
        raise NotFoundError("Image link expired")
    return payload["ref"]


def resolve_image_url(ref: str | None) -> str | None:
    """Public URL for a stored ref; external URLs pass through unchanged."""
    if not ref:
        return None
    if is_external(ref):
        return ref
    return signed_url(ref)
