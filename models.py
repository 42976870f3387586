"""
Business logic for Ride United.
All state lives in the key-value store; see kv_store.py for the key layout.

Route lifecycle:
  pending → approved    (admin approve)
  pending → rejected    (admin reject; image removed)
  any     → deleted     (admin hard delete, or the owner deleting their account)

Owners may edit their own routes only while pending. Admins may edit anything.
"""

import json
import logging
import uuid
from datetime import datetime, timezone

import identity
import kv_store
import route_stats
import storage
from errors import AuthorizationError, NotFoundError, StorageError, ValidationError

log = logging.getLogger(__name__)

PENDING = "pending"
APPROVED = "approved"
REJECTED = "rejected"

PENDING_INDEX = "routes:pending"
APPROVED_INDEX = "routes:approved"
STATUS_INDEX = {PENDING: PENDING_INDEX, APPROVED: APPROVED_INDEX}

CONTACT_INDEX = "contact:submissions"
CHAT_HISTORY_LIMIT = 50


def now_iso() -> str:
    """Current UTC time, e.g. 2025-12-02T17:00:00.000Z."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def route_key(route_id: str) -> str:
    return f"route:{route_id}"


def user_routes_key(user_id: str) -> str:
    return f"user:{user_id}:routes"


def contact_key(submission_id: str) -> str:
    return f"contact:{submission_id}"


def chat_key(ride_id: str) -> str:
    return f"chat:{ride_id}:messages"


# ---------------------------------------------------------------------------
# Route validation
# ---------------------------------------------------------------------------

def _decode_json(value, default):
    if value is None or value == "":
        return default
    if isinstance(value, str):
        return json.loads(value)
    return value


def clean_route_fields(fields: dict) -> dict:
    """
    Validate submitted route fields and return the stored subset.

    Required: routeName, leaderName and at least two waypoints.
    waypoints / tags may arrive as JSON strings (multipart forms) or lists.
    """
    route_name = (fields.get("routeName") or "").strip()
    leader_name = (fields.get("leaderName") or "").strip()
    try:
        raw_waypoints = _decode_json(fields.get("waypoints"), [])
        raw_tags = _decode_json(fields.get("tags"), [])
    except ValueError:
        raise ValidationError("waypoints and tags must be valid JSON")

    if not route_name or not leader_name or not isinstance(raw_waypoints, list) \
            or len(raw_waypoints) < 2:
        raise ValidationError("Missing required fields")

    try:
        waypoints = route_stats.normalize_waypoints(raw_waypoints)
    except ValueError as exc:
        raise ValidationError(f"Invalid waypoints: {exc}")

    if not isinstance(raw_tags, list):
        raise ValidationError("tags must be a list")
    tags = []
    for tag in raw_tags:
        label = str(tag).strip()
        if label and label not in tags:
            tags.append(label)

    return {
        "routeName":        route_name,
        "description":      (fields.get("description") or "").strip(),
        "leaderName":       leader_name,
        "waypoints":        waypoints,
        "startingLocation": (fields.get("startingLocation") or "").strip(),
        "startTime":        (fields.get("startTime") or "").strip(),
        "tags":             tags,
    }


def _with_derived(cleaned: dict) -> dict:
    """Distance, duration and map link always come from the waypoints."""
    stats = route_stats.compute_route_stats(cleaned["waypoints"])
    return {
        **cleaned,
        "distance": stats["distance"],
        "duration": stats["duration"],
        "mapUrl":   route_stats.build_map_url(cleaned["waypoints"]),
    }


def _discard_image(ref: str | None):
    """Remove an image that no record points at any more."""
    try:
        storage.delete_image(ref)
    except StorageError:
        log.warning("Orphaned route image left in storage: %s", ref)


def public_view(route: dict) -> dict:
    """Route as returned to clients: the stored ref becomes a signed imageUrl."""
    out = {k: v for k, v in route.items() if k != "imageRef"}
    out["imageUrl"] = storage.resolve_image_url(route.get("imageRef"))
    return out


# ---------------------------------------------------------------------------
# Route submission and listing
# ---------------------------------------------------------------------------

def submit_route(fields: dict, owner_id: str | None = None,
                 image_bytes: bytes | None = None, image_type: str | None = None,
                 image_name: str | None = None) -> dict:
    """Create a pending route. Client-supplied distance/time/mapUrl are ignored."""
    route = _with_derived(clean_route_fields(fields))

    image_ref = None
    if image_bytes:
        image_ref = storage.upload_image(image_bytes, image_type, image_name)

    route_id = str(uuid.uuid4())
    route = {
        "id":        route_id,
        **route,
        "imageRef":  image_ref,
        "ownerId":   owner_id or None,
        "status":    PENDING,
        "createdAt": now_iso(),
    }

    keys = [route_key(route_id), PENDING_INDEX]
    if owner_id:
        keys.append(user_routes_key(owner_id))
    try:
        with kv_store.transaction() as tx:
            tx.lock(*keys)
            tx.set(route_key(route_id), route)
            tx.append_to_list(PENDING_INDEX, route_id)
            if owner_id:
                tx.append_to_list(user_routes_key(owner_id), route_id)
    except Exception:
        if image_ref:
            _discard_image(image_ref)
        raise

    log.info("New route submitted: %s by %s (ID: %s)",
             route["routeName"], route["leaderName"], route_id)
    return route


def _list_from_index(index_key: str) -> list[dict]:
    with kv_store.transaction() as tx:
        ids = tx.get(index_key) or []
        records = tx.mget([route_key(i) for i in ids])
    # Index lists may hold ids whose record is gone
    return [public_view(r) for r in records if r is not None]


def list_approved_routes() -> list[dict]:
    return _list_from_index(APPROVED_INDEX)


def list_pending_routes() -> list[dict]:
    return _list_from_index(PENDING_INDEX)


def list_routes_for_owner(user_id: str) -> list[dict]:
    return _list_from_index(user_routes_key(user_id))


def get_route(route_id: str) -> dict:
    route = kv_store.get(route_key(route_id))
    if not route:
        raise NotFoundError("Route not found")
    return route


# ---------------------------------------------------------------------------
# Moderation
# ---------------------------------------------------------------------------

def approve_route(route_id: str) -> dict:
    """pending → approved. Unknown or already-reviewed ids raise NotFoundError."""
    with kv_store.transaction() as tx:
        tx.lock(route_key(route_id), PENDING_INDEX, APPROVED_INDEX)
        route = tx.get(route_key(route_id))
        if not route:
            raise NotFoundError("Route not found")
        if route["status"] != PENDING:
            raise NotFoundError("Route is not pending review")
        route["status"] = APPROVED
        route["reviewedAt"] = now_iso()
        tx.set(route_key(route_id), route)
        tx.remove_from_list(PENDING_INDEX, route_id)
        tx.append_to_list(APPROVED_INDEX, route_id)

    log.info("Route approved: %s (ID: %s)", route["routeName"], route_id)
    return route


def reject_route(route_id: str) -> dict:
    """pending → rejected. Rejected routes never show an image."""
    with kv_store.transaction() as tx:
        tx.lock(route_key(route_id), PENDING_INDEX)
        route = tx.get(route_key(route_id))
        if not route:
            raise NotFoundError("Route not found")
        if route["status"] != PENDING:
            raise NotFoundError("Route is not pending review")
        image_ref = route.get("imageRef")
        route["status"] = REJECTED
        route["imageRef"] = None
        route["reviewedAt"] = now_iso()
        tx.set(route_key(route_id), route)
        tx.remove_from_list(PENDING_INDEX, route_id)

    if image_ref:
        _discard_image(image_ref)
    log.info("Route rejected: %s (ID: %s)", route["routeName"], route_id)
    return route


def _check_can_edit(route: dict, user_id: str | None, is_admin: bool):
    if is_admin:
        return
    if not user_id or route.get("ownerId") != user_id:
        raise AuthorizationError("Unauthorized")
    if route["status"] != PENDING:
        raise AuthorizationError("Cannot edit route that has been processed")


def update_route(route_id: str, fields: dict, user_id: str | None = None,
                 is_admin: bool = False, image_bytes: bytes | None = None,
                 image_type: str | None = None, image_name: str | None = None) -> dict:
    """
    Replace a route's editable fields and recompute its stats.

    The permission check is repeated under the record lock, so an owner edit
    that loses a race with an approval is refused rather than applied.
    """
    existing = get_route(route_id)
    _check_can_edit(existing, user_id, is_admin)
    cleaned = _with_derived(clean_route_fields(fields))

    new_ref = None
    if image_bytes:
        new_ref = storage.upload_image(image_bytes, image_type, image_name)

    try:
        with kv_store.transaction() as tx:
            tx.lock(route_key(route_id))
            current = tx.get(route_key(route_id))
            if not current:
                raise NotFoundError("Route not found")
            _check_can_edit(current, user_id, is_admin)
            old_ref = current.get("imageRef")
            updated = {**current, **cleaned, "updatedAt": now_iso()}
            if new_ref:
                updated["imageRef"] = new_ref
            tx.set(route_key(route_id), updated)
    except Exception:
        if new_ref:
            _discard_image(new_ref)
        raise

    if new_ref and old_ref and not storage.is_external(old_ref):
        _discard_image(old_ref)
    log.info("Route updated: %s (ID: %s, admin=%s)", updated["routeName"], route_id, is_admin)
    return updated


def delete_route(route_id: str) -> dict:
    """Hard delete from any state: record, index entries and image."""
    with kv_store.transaction() as tx:
        tx.lock(route_key(route_id), PENDING_INDEX, APPROVED_INDEX)
        route = tx.get(route_key(route_id))
        if not route:
            raise NotFoundError("Route not found")
        tx.delete(route_key(route_id))
        index = STATUS_INDEX.get(route["status"])
        if index:
            tx.remove_from_list(index, route_id)
        owner_id = route.get("ownerId")
        if owner_id:
            tx.lock(user_routes_key(owner_id))
            tx.remove_from_list(user_routes_key(owner_id), route_id)

    if route.get("imageRef"):
        _discard_image(route["imageRef"])
    log.info("Route deleted: %s (ID: %s)", route.get("routeName"), route_id)
    return route


def delete_routes_for_owner(user_id: str) -> int:
    """Delete every route a rider owns. Returns how many records were removed."""
    ids = kv_store.get(user_routes_key(user_id)) or []
    deleted = 0
    for route_id in ids:
        try:
            delete_route(route_id)
            deleted += 1
        except NotFoundError:
            continue
    kv_store.delete(user_routes_key(user_id))
    log.info("Deleted %d route(s) for user %s", deleted, user_id)
    return deleted


# ---------------------------------------------------------------------------
# Contact form
# ---------------------------------------------------------------------------

def submit_contact(name: str, email: str, subject: str, text: str) -> dict:
    name = (name or "").strip()
    email = (email or "").strip()
    text = (text or "").strip()
    if not name or not email or not text:
        raise ValidationError("Name, email, and message are required")

    submission = {
        "id":        str(uuid.uuid4()),
        "name":      name,
        "email":     email,
        "subject":   (subject or "").strip(),
        "text":      text,
        "read":      False,
        "createdAt": now_iso(),
    }
    with kv_store.transaction() as tx:
        tx.lock(CONTACT_INDEX)
        tx.set(contact_key(submission["id"]), submission)
        tx.append_to_list(CONTACT_INDEX, submission["id"])

    log.info("New contact submission from %s (%s)", name, email)
    return submission


def list_contact_submissions() -> list[dict]:
    """Newest first."""
    with kv_store.transaction() as tx:
        ids = tx.get(CONTACT_INDEX) or []
        records = tx.mget([contact_key(i) for i in ids])
    submissions = [s for s in records if s is not None]
    submissions.sort(key=lambda s: s.get("createdAt", ""), reverse=True)
    return submissions


# ---------------------------------------------------------------------------
# Ride chat
# ---------------------------------------------------------------------------

def get_chat_messages(ride_id: str) -> list[dict]:
    return kv_store.get(chat_key(ride_id)) or []


def post_chat_message(ride_id: str, user: dict, text: str) -> dict:
    """Append to a ride's chat; only the newest CHAT_HISTORY_LIMIT are kept."""
    text = (text or "").strip()
    if not text:
        raise ValidationError("Message text is required")

    message = {
        "id":        str(uuid.uuid4()),
        "rideId":    ride_id,
        "userId":    user["id"],
        "userName":  identity.display_name(user),
        "text":      text,
        "createdAt": now_iso(),
    }
    with kv_store.transaction() as tx:
        tx.lock(chat_key(ride_id))
        messages = tx.get(chat_key(ride_id)) or []
        messages.append(message)
        tx.set(chat_key(ride_id), messages[-CHAT_HISTORY_LIMIT:])
    return message


def delete_chat_message(ride_id: str, message_id: str, user_id: str | None = None,
                        is_admin: bool = False) -> dict:
    with kv_store.transaction() as tx:
        tx.lock(chat_key(ride_id))
        messages = tx.get(chat_key(ride_id)) or []
        message = next((m for m in messages if m["id"] == message_id), None)
        if not message:
            raise NotFoundError("Message not found")
        if not is_admin and message.get("userId") != user_id:
            raise AuthorizationError("You can only delete your own messages")
        tx.set(chat_key(ride_id), [m for m in messages if m["id"] != message_id])

    log.info("Chat message %s deleted from ride %s (admin=%s)", message_id, ride_id, is_admin)
    return message
