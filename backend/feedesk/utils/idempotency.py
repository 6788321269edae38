# feedesk/utils/idempotency.py
#
# Small SQLite store shared by every worker on the host:
#
#   batch latch   - at most one in-flight submission per payment batch
#   gateway seen  - replay protection for gateway webhook events
#   link replay   - same selection within the TTL returns the same link
#
# Rows older than their TTL are swept on every access, so a latch left
# behind by a crashed worker stops blocking after BATCH_LATCH_TTL_SECONDS.

from contextlib import contextmanager
import hashlib
import json
import sqlite3
import time
from pathlib import Path
from typing import Any, Iterator, Optional

from feedesk.core.config import settings
from feedesk.schemas.fees import LedgerScope
from feedesk.schemas.payments import PaymentSelection

_DEFAULT_DB_PATH = settings.IDEMPOTENCY_DB_PATH


def _connect(db_path: Optional[str] = None) -> sqlite3.Connection:
    path = Path(db_path or _DEFAULT_DB_PATH)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), timeout=5, isolation_level=None)
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS idempotency_cache (
            kind TEXT NOT NULL,
            cache_key TEXT NOT NULL,
            created_at INTEGER NOT NULL,
            payload TEXT,
            PRIMARY KEY (kind, cache_key)
        )
        """
    )
    return conn


def _cleanup(conn: sqlite3.Connection, kind: str, ttl_seconds: int, now_ts: int) -> None:
    cutoff = now_ts - int(ttl_seconds)
    conn.execute(
        "DELETE FROM idempotency_cache WHERE kind = ? AND created_at < ?",
        (kind, cutoff),
    )


def batch_key(scope: LedgerScope, selection: PaymentSelection) -> str:
    """
    Fingerprint of a payment batch: same student, same lines, same amounts,
    same mode and reference → same key, whatever order the lines came in.
    """
    body = {
        "branch": scope.branch_id,
        "session": scope.session_id,
        "student": selection.student_id,
        "mode": selection.mode.value,
        "reference": selection.transaction_reference or "",
        "lines": sorted((i.fee_item_id, str(i.amount)) for i in selection.items),
    }
    digest = hashlib.sha256(json.dumps(body, sort_keys=True).encode()).hexdigest()
    return f"{scope.branch_id}:{selection.student_id}:{digest[:32]}"


def acquire_batch_latch(
    key: str,
    ttl_seconds: Optional[int] = None,
    db_path: Optional[str] = None,
) -> bool:
    """True if this caller now owns the batch; False if it is already in flight."""
    ttl_seconds = settings.BATCH_LATCH_TTL_SECONDS if ttl_seconds is None else ttl_seconds
    now_ts = int(time.time())
    conn = _connect(db_path)
    try:
        _cleanup(conn, "batch", ttl_seconds, now_ts)
        cur = conn.execute(
            """
            INSERT OR IGNORE INTO idempotency_cache (kind, cache_key, created_at, payload)
            VALUES (?, ?, ?, NULL)
            """,
            ("batch", key, now_ts),
        )
        return cur.rowcount == 1
    finally:
        conn.close()


def release_batch_latch(key: str, db_path: Optional[str] = None) -> None:
    conn = _connect(db_path)
    try:
        conn.execute(
            "DELETE FROM idempotency_cache WHERE kind = ? AND cache_key = ?",
            ("batch", key),
        )
    finally:
        conn.close()


@contextmanager
def batch_latch(
    key: str,
    ttl_seconds: Optional[int] = None,
    db_path: Optional[str] = None,
) -> Iterator[bool]:
    """
    with batch_latch(key) as acquired:
        if not acquired: ...   # someone else is submitting this batch
    Released on exit only by the caller that acquired it.
    """
    acquired = acquire_batch_latch(key, ttl_seconds, db_path)
    try:
        yield acquired
    finally:
        if acquired:
            release_batch_latch(key, db_path)


def mark_gateway_event_seen(
    event_key: str,
    ttl_seconds: Optional[int] = None,
    db_path: Optional[str] = None,
) -> bool:
    """
    Returns True if duplicate (already seen), else False after recording.
    """
    ttl_seconds = settings.IDEMPOTENCY_TTL_SECONDS if ttl_seconds is None else ttl_seconds
    now_ts = int(time.time())
    conn = _connect(db_path)
    try:
        _cleanup(conn, "gateway", ttl_seconds, now_ts)
        cur = conn.execute(
            """
            INSERT OR IGNORE INTO idempotency_cache (kind, cache_key, created_at, payload)
            VALUES (?, ?, ?, NULL)
            """,
            ("gateway", event_key, now_ts),
        )
        return cur.rowcount == 0
    finally:
        conn.close()


def get_link_replay(
    cache_key: str,
    ttl_seconds: Optional[int] = None,
    db_path: Optional[str] = None,
) -> Optional[dict[str, Any]]:
    ttl_seconds = settings.IDEMPOTENCY_TTL_SECONDS if ttl_seconds is None else ttl_seconds
    now_ts = int(time.time())
    conn = _connect(db_path)
    try:
        _cleanup(conn, "link", ttl_seconds, now_ts)
        row = conn.execute(
            "SELECT payload FROM idempotency_cache WHERE kind = ? AND cache_key = ?",
            ("link", cache_key),
        ).fetchone()
        if not row or not row[0]:
            return None
        return json.loads(row[0])
    finally:
        conn.close()


def remember_link_replay(
    cache_key: str,
    payload: dict[str, Any],
    db_path: Optional[str] = None,
) -> None:
    now_ts = int(time.time())
    conn = _connect(db_path)
    try:
        conn.execute(
            """
            INSERT INTO idempotency_cache (kind, cache_key, created_at, payload)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(kind, cache_key) DO UPDATE SET
                created_at = excluded.created_at,
                payload = excluded.payload
            """,
            ("link", cache_key, now_ts, json.dumps(payload)),
        )
    finally:
        conn.close()


def forget_gateway_event(event_key: str, db_path: Optional[str] = None) -> None:
    """Un-see an event whose processing failed, so the gateway's retry is accepted."""
    conn = _connect(db_path)
    try:
        conn.execute(
            "DELETE FROM idempotency_cache WHERE kind = ? AND cache_key = ?",
            ("gateway", event_key),
        )
    finally:
        conn.close()
