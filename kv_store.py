"""
Key-value store for Ride United, kept in the `kv_store` table (JSONB values).

Key layout:
  route:{id}                 route record
  routes:pending             id list, insertion order
  routes:approved            id list, insertion order
  user:{id}:routes           id list of a rider's submissions
  contact:{id}               contact form submission
  contact:submissions        id list
  chat:{rideId}:messages     message list, capped
  admin:session:{token}      admin session
  admin:password             bcrypt hash of the admin password

Multi-key operations go through transaction(): the record write and the
index-list edits commit together or not at all.
"""

import logging
from contextlib import contextmanager

import psycopg2
from psycopg2.extras import Json

import db
from errors import StorageError

log = logging.getLogger(__name__)


def _like_escape(prefix: str) -> str:
    return prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class KVTransaction:
    """All reads and writes share one connection; commit happens on exit."""

    def __init__(self, cur):
        self.cur = cur

    def lock(self, *keys: str):
        """Serialize writers on these keys until the transaction ends."""
        for key in sorted(frozenset(keys)):
            self.cur.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (key,))

    def get(self, key: str, default=None):
        self.cur.execute("SELECT value FROM kv_store WHERE key = %s", (key,))
        row = self.cur.fetchone()
        return row["value"] if row else default

    def set(self, key: str, value):
        self.cur.execute(
            "INSERT INTO kv_store (key, value) VALUES (%s, %s) "
            "ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value, updated_at = NOW()",
            (key, Json(value)),
        )

    def delete(self, key: str):
        self.cur.execute("DELETE FROM kv_store WHERE key = %s", (key,))

    def mget(self, keys: list[str]) -> list:
        """Values in the order of `keys`; None where a key is missing."""
        if not keys:
            return []
        self.cur.execute("SELECT key, value FROM kv_store WHERE key = ANY(%s)", (list(keys),))
        found = {row["key"]: row["value"] for row in self.cur.fetchall()}
        return [found.get(k) for k in keys]

    def get_by_prefix(self, prefix: str) -> list:
        self.cur.execute(
            "SELECT value FROM kv_store WHERE key LIKE %s ESCAPE '\\' ORDER BY key",
            (_like_escape(prefix) + "%",),
        )
        return [row["value"] for row in self.cur.fetchall()]

    # -- id index lists --------------------------------------------------

    def append_to_list(self, key: str, item):
        items = self.get(key) or []
        if item not in items:
            items.append(item)
            self.set(key, items)

    def remove_from_list(self, key: str, item) -> bool:
        items = self.get(key) or []
        if item not in items:
            return False
        self.set(key, [i for i in items if i != item])
        return True


@contextmanager
def transaction():
    """Yield a KVTransaction; database failures surface as StorageError."""
    try:
        with db.get_db() as conn:
            with conn.cursor() as cur:
                yield KVTransaction(cur)
    except psycopg2.Error as exc:
        log.error("Key-value store error: %s", exc)
        raise StorageError("Key-value store unavailable") from exc


# ---------------------------------------------------------------------------
# Single-call helpers
# ---------------------------------------------------------------------------

def get(key: str, default=None):
    with transaction() as tx:
        return tx.get(key, default)


def set(key: str, value):
    with transaction() as tx:
        tx.set(key, value)


def delete(key: str):
    with transaction() as tx:
        tx.delete(key)

