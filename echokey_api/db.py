"""
Database module for the EchoKey service.

SQLite storage for transactions, live signals and the hash-chained
validation audit log. One connection per thread, WAL journal.
"""

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import config

# Thread-local storage for connection pooling
_local = threading.local()

# Serializes audit appends so prev_entry_hash is read and linked atomically
_append_lock = threading.Lock()


def _db_path() -> Path:
    return Path(config.DB_PATH)


def _get_connection() -> sqlite3.Connection:
    """
    Get a thread-local database connection.
    Connections are reused within the same thread.
    """
    if not hasattr(_local, 'conn') or _local.conn is None:
        path = _db_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(path), check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.execute("PRAGMA temp_store=MEMORY;")
        conn.row_factory = sqlite3.Row
        _local.conn = conn
    return _local.conn


@contextmanager
def _transaction():
    """
    Context manager for database transactions.
    Commits on success, rolls back on failure.
    """
    conn = _get_connection()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def init_db() -> None:
    """
    Initialize database schema.
    Safe to call multiple times (uses IF NOT EXISTS).
    """
    with _transaction() as conn:
        conn.execute("""
        CREATE TABLE IF NOT EXISTS transactions (
            id TEXT PRIMARY KEY,
            network_id TEXT NOT NULL,
            created_at TEXT NOT NULL,
            status TEXT NOT NULL,
            sender TEXT NOT NULL DEFAULT '',
            recipient TEXT NOT NULL DEFAULT '',
            amount TEXT NOT NULL DEFAULT ''
        );""")

        # One live signal per transaction; reissue replaces the row
        conn.execute("""
        CREATE TABLE IF NOT EXISTS signals (
            transaction_id TEXT PRIMARY KEY,
            code TEXT NOT NULL,
            issued_at TEXT NOT NULL,
            expires_at TEXT NOT NULL
        );""")

        conn.execute("""
        CREATE TABLE IF NOT EXISTS audit_log (
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            entry_id TEXT NOT NULL,
            transaction_id TEXT NOT NULL,
            validated_at TEXT NOT NULL,
            payload_hash TEXT NOT NULL,
            prev_entry_hash TEXT,
            entry_hash TEXT NOT NULL,
            kid TEXT NOT NULL,
            sig_b64 TEXT NOT NULL,
            entry_json TEXT NOT NULL
        );""")
        conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_audit_log_transaction
        ON audit_log(transaction_id);""")


# ============================================================
# Transactions
# ============================================================

def insert_transaction(row: Dict[str, Any]) -> None:
    with _transaction() as conn:
        conn.execute(
            "INSERT OR REPLACE INTO transactions(id, network_id, created_at, status, sender, recipient, amount) "
            "VALUES(:id, :network_id, :created_at, :status, :sender, :recipient, :amount)",
            row
        )


def get_transaction_row(transaction_id: str) -> Optional[Dict[str, Any]]:
    conn = _get_connection()
    cur = conn.execute("SELECT * FROM transactions WHERE id=?", (transaction_id,))
    row = cur.fetchone()
    return dict(row) if row else None


def update_transaction_status(transaction_id: str, status: str) -> bool:
    """Returns True if the transaction exists."""
    with _transaction() as conn:
        cur = conn.execute("UPDATE transactions SET status=? WHERE id=?", (status, transaction_id))
        return cur.rowcount == 1


def list_transaction_rows() -> List[Dict[str, Any]]:
    conn = _get_connection()
    cur = conn.execute("SELECT * FROM transactions ORDER BY rowid DESC")
    return [dict(row) for row in cur.fetchall()]


def clear_transactions() -> None:
    with _transaction() as conn:
        conn.execute("DELETE FROM transactions")


# ============================================================
# Signals
# ============================================================

def upsert_signal(row: Dict[str, Any]) -> None:
    """Store a signal row, replacing the previous one for the transaction."""
    with _transaction() as conn:
        conn.execute(
            "INSERT OR REPLACE INTO signals(transaction_id, code, issued_at, expires_at) "
            "VALUES(:transaction_id, :code, :issued_at, :expires_at)",
            row
        )


def get_signal_row(transaction_id: str) -> Optional[Dict[str, Any]]:
    conn = _get_connection()
    cur = conn.execute("SELECT * FROM signals WHERE transaction_id=?", (transaction_id,))
    row = cur.fetchone()
    return dict(row) if row else None


def delete_signal(transaction_id: str) -> None:
    with _transaction() as conn:
        conn.execute("DELETE FROM signals WHERE transaction_id=?", (transaction_id,))


def delete_all_signals() -> None:
    with _transaction() as conn:
        conn.execute("DELETE FROM signals")


# ============================================================
# Audit Log (hash chain)
# ============================================================

def latest_entry_hash() -> Optional[str]:
    """Get the hash of the most recent log entry for chain linking."""
    conn = _get_connection()
    cur = conn.execute("SELECT entry_hash FROM audit_log ORDER BY seq DESC LIMIT 1")
    row = cur.fetchone()
    return row['entry_hash'] if row else None


def append_audit_entry(
    entry_id: str,
    transaction_id: str,
    validated_at: str,
    payload_hash: str,
    entry_hash_func,
    kid: str,
    sig_b64: str,
    entry_json: str
) -> str:
    """
    Append an entry linked to the current chain head.

    entry_hash_func(prev_entry_hash, payload_hash) computes the new link.
    Returns the new entry hash.
    """
    with _append_lock:
        with _transaction() as conn:
            prev = latest_entry_hash()
            entry_hash = entry_hash_func(prev, payload_hash)
            conn.execute(
                "INSERT INTO audit_log(entry_id, transaction_id, validated_at, payload_hash, "
                "prev_entry_hash, entry_hash, kid, sig_b64, entry_json) VALUES(?,?,?,?,?,?,?,?,?)",
                (entry_id, transaction_id, validated_at, payload_hash, prev, entry_hash, kid, sig_b64, entry_json)
            )
            return entry_hash


def export_audit_log_full() -> List[Dict[str, Any]]:
    """Export the complete audit log, oldest first."""
    conn = _get_connection()
    cur = conn.execute(
        "SELECT seq, entry_id, transaction_id, validated_at, payload_hash, "
        "prev_entry_hash, entry_hash, kid, sig_b64, entry_json FROM audit_log ORDER BY seq ASC"
    )
    return [dict(row) for row in cur.fetchall()]


def clear_audit_log() -> None:
    with _transaction() as conn:
        conn.execute("DELETE FROM audit_log")


# ============================================================
# Metrics and Health
# ============================================================

def get_db_stats() -> Dict[str, int]:
    """Get row counts for monitoring."""
    conn = _get_connection()
    stats = {}
    for table in ['transactions', 'signals', 'audit_log']:
        cur = conn.execute(f"SELECT COUNT(*) as cnt FROM {table}")
        stats[f"{table}_count"] = cur.fetchone()['cnt']
    return stats


# ============================================================
# Test Support
# ============================================================

def reset_db() -> None:
    """
    Clear all tables but keep the schema.
    """
    with _transaction() as conn:
        conn.execute("DELETE FROM transactions")
        conn.execute("DELETE FROM signals")
        conn.execute("DELETE FROM audit_log")


def close_connection() -> None:
    """Close the thread-local connection."""
    if hasattr(_local, 'conn') and _local.conn is not None:
        _local.conn.close()
        _local.conn = None
