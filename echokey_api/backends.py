"""
SQLite implementations of the EchoKey persistence collaborators.

The audit log is a hash chain: every row stores the SHA-256 of its
canonical payload, the previous row's entry hash and

    entry_hash = sha256(prev_entry_hash || payload_hash)

along with an Ed25519 signature over the payload. verify_audit_chain()
recomputes every link and signature.
"""

import hashlib
import json
import logging
import sqlite3
from typing import Any, Dict, List, Optional, Union

from starlette.concurrency import run_in_threadpool

from echokey.clock import format_timestamp
from echokey.errors import StoreUnavailable
from echokey.models import Signal, TransactionRecord, TransactionStatus, ValidationLogEntry
from echokey.signing import AuditSigner, canonicalize, verify_signature
from echokey.storage import AuditLog, SignalBackend, TransactionRepository

from . import db

logger = logging.getLogger(__name__)


def sha256_hex(data: Union[bytes, str]) -> str:
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha256(data).hexdigest()


def chain_entry_hash(prev_entry_hash: Optional[str], payload_hash: str) -> str:
    """Link a payload hash to the previous entry (empty for the first entry)."""
    data = (prev_entry_hash or "").encode("utf-8") + payload_hash.encode("utf-8")
    return sha256_hex(data)


def _call(operation: str, fn, *args):
    try:
        return fn(*args)
    except sqlite3.Error as e:
        logger.error("SQLite failure during %s: %s", operation, e)
        raise StoreUnavailable(operation, e) from e


async def _run(operation: str, fn, *args):
    """Run a blocking SQLite call in the worker threadpool, off the event loop."""
    return await run_in_threadpool(_call, operation, fn, *args)


class SqliteSignalBackend(SignalBackend):

    async def get(self, transaction_id: str) -> Optional[Signal]:
        row = await _run("get_signal", db.get_signal_row, transaction_id)
        return Signal.from_dict(row) if row else None

    async def put(self, signal: Signal) -> None:
        await _run("put_signal", db.upsert_signal, signal.to_dict())

    async def delete(self, transaction_id: str) -> None:
        await _run("delete_signal", db.delete_signal, transaction_id)

    async def delete_all(self) -> None:
        await _run("delete_all_signals", db.delete_all_signals)


class SqliteTransactionRepository(TransactionRepository):

    async def add(self, record: TransactionRecord) -> None:
        await _run("add_transaction", db.insert_transaction, record.to_dict())

    async def get(self, transaction_id: str) -> Optional[TransactionRecord]:
        row = await _run("get_transaction", db.get_transaction_row, transaction_id)
        return TransactionRecord.from_dict(row) if row else None

    async def update_status(self, transaction_id: str, status: TransactionStatus) -> bool:
        return await _run("update_status", db.update_transaction_status, transaction_id, status.value)

    async def list_recent(self) -> List[TransactionRecord]:
        rows = await _run("list_transactions", db.list_transaction_rows)
        return [TransactionRecord.from_dict(row) for row in rows]

    async def clear(self) -> None:
        await _run("clear_transactions", db.clear_transactions)


class SqliteAuditLog(AuditLog):
    """Hash-chained, Ed25519-signed validation log."""

    def __init__(self, signer: AuditSigner):
        self.signer = signer

    async def append(self, entry: ValidationLogEntry) -> None:
        body = entry.to_dict()
        payload = canonicalize(body)
        signed = dict(body)
        signed["signatures"] = [{"kid": self.signer.kid, "alg": "ed25519", "sig_b64": self.signer.sign(payload)}]
        await _run(
            "append_audit_entry",
            db.append_audit_entry,
            entry.id,
            entry.transaction_id,
            format_timestamp(entry.validated_at),
            sha256_hex(payload),
            chain_entry_hash,
            self.signer.kid,
            signed["signatures"][0]["sig_b64"],
            json.dumps(signed, sort_keys=True),
        )

    async def list_recent(self) -> List[ValidationLogEntry]:
        rows = await _run("list_audit_log", db.export_audit_log_full)
        return [ValidationLogEntry.from_dict(json.loads(row["entry_json"])) for row in reversed(rows)]

    async def clear(self) -> None:
        await _run("clear_audit_log", db.clear_audit_log)


def verify_audit_chain(verify_key_b64: str) -> Dict[str, Any]:
    """
    Re-check every link and signature of the audit log.

    Returns:
        {"ok": bool, "entries": int, "head_entry_hash": str|None, "errors": [...]}
    """
    rows = _call("verify_audit_chain", db.export_audit_log_full)
    errors = []
    prev = None
    for row in rows:
        seq = row["seq"]
        signed = json.loads(row["entry_json"])
        signed.pop("signatures", None)
        payload = canonicalize(signed)

        if sha256_hex(payload) != row["payload_hash"]:
            errors.append({"seq": seq, "error": "PAYLOAD_HASH_MISMATCH"})
        if row["prev_entry_hash"] != prev:
            errors.append({"seq": seq, "error": "BROKEN_LINK"})
        if chain_entry_hash(row["prev_entry_hash"], row["payload_hash"]) != row["entry_hash"]:
            errors.append({"seq": seq, "error": "ENTRY_HASH_MISMATCH"})
        if not verify_signature(payload, row["sig_b64"], verify_key_b64):
            errors.append({"seq": seq, "error": "INVALID_SIGNATURE"})
        prev = row["entry_hash"]

    return {
        "ok": not errors,
        "entries": len(rows),
        "head_entry_hash": prev,
        "errors": errors,
    }
