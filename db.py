"""
Database connection module for Ride United.

  - get_connection() reads DATABASE_URL from the Flask app config
  - Falls back to the DATABASE_URL env var outside an app context (scripts)
  - Connection attempts are retried with backoff on transient failures

Knows nothing about keys or routes; kv_store.py and storage.py sit on top.
"""

import logging
import os
from contextlib import contextmanager

import psycopg2
import psycopg2.extras
from tenacity import (
    before_sleep_log, retry, retry_if_exception_type,
    stop_after_attempt, wait_exponential,
)

log = logging.getLogger(__name__)

SCHEMA_FILE = os.path.join(os.path.dirname(os.path.abspath(__file__)), "schema.sql")


def _get_dsn() -> str:
    """Return the DSN from the current app's config, else the environment."""
    try:
        from flask import current_app
        dsn = current_app.config.get("DATABASE_URL")
        if dsn:
            return dsn
    except RuntimeError:
        # Outside app context (scripts, cron)
        pass
    return os.environ.get("DATABASE_URL", "")


@retry(
    retry=retry_if_exception_type(psycopg2.OperationalError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.2, max=2),
    before_sleep=before_sleep_log(log, logging.WARNING),
    reraise=True,
)
def _connect(dsn: str):
    return psycopg2.connect(dsn, cursor_factory=psycopg2.extras.RealDictCursor)


def get_connection():
    """Return a new psycopg2 connection with RealDictCursor rows."""
    dsn = _get_dsn()
    if not dsn:
        raise RuntimeError("No database DSN available. Set DATABASE_URL.")
    return _connect(dsn)


@contextmanager
def get_db():
    """Context manager: yields a connection, commits on success, rolls back on error."""
    conn = get_connection()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def execute(query, params=None, fetch=True):
    """
    Run a query and return results.

    fetch=True  → read-only (no commit), returns list of rows
    fetch=False → write operation, commits, returns None
    """
    with get_db() as conn:
        with conn.cursor() as cur:
            cur.execute(query, params)
            if fetch:
                return cur.fetchall()
            return None


def fetchone(query, params=None):
    """Run a query and return a single row (or None)."""
    with get_db() as conn:
        with conn.cursor() as cur:
            cur.execute(query, params)
            return cur.fetchone()


def init_schema():
    """Apply schema.sql. Every statement is idempotent."""
    with open(SCHEMA_FILE) as f:
        ddl = f.read()
    with get_db() as conn:
        with conn.cursor() as cur:
            cur.execute(ddl)
    log.info("Schema applied from %s", SCHEMA_FILE)
