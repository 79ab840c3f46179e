"""
EchoKey Persistence Collaborators

Three logical tables back the engine:

    transactions  - one TransactionRecord per id
    signals       - one live Signal per transaction id
    audit log     - append-only ValidationLogEntry rows

Each is an abstract interface with async methods, since implementations
may be remote. Implementations report I/O failures as StoreUnavailable.

The in-memory implementations here are for development and testing:
- Not persistent across restarts
- Not shared between processes
"""

import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from .errors import EchoKeyError, StoreUnavailable
from .models import Signal, TransactionRecord, TransactionStatus, ValidationLogEntry


class SignalBackend(ABC):
    """Key-value storage of the live signal per transaction id."""

    @abstractmethod
    async def get(self, transaction_id: str) -> Optional[Signal]:
        pass

    @abstractmethod
    async def put(self, signal: Signal) -> None:
        """Store a signal, replacing any existing one for the same transaction."""
        pass

    @abstractmethod
    async def delete(self, transaction_id: str) -> None:
        pass

    @abstractmethod
    async def delete_all(self) -> None:
        pass


class TransactionRepository(ABC):
    """Storage of transaction records."""

    @abstractmethod
    async def add(self, record: TransactionRecord) -> None:
        pass

    @abstractmethod
    async def get(self, transaction_id: str) -> Optional[TransactionRecord]:
        pass

    @abstractmethod
    async def update_status(self, transaction_id: str, status: TransactionStatus) -> bool:
        """
        Set the status of a transaction.

        Returns:
            True if the transaction exists, False otherwise
        """
        pass

    @abstractmethod
    async def list_recent(self) -> List[TransactionRecord]:
        """All transactions, most recent first."""
        pass

    @abstractmethod
    async def clear(self) -> None:
        pass


class AuditLog(ABC):
    """Append-only record of validation outcomes."""

    @abstractmethod
    async def append(self, entry: ValidationLogEntry) -> None:
        pass

    @abstractmethod
    async def list_recent(self) -> List[ValidationLogEntry]:
        """All entries, most recent first."""
        pass

    @abstractmethod
    async def clear(self) -> None:
        pass


class InMemorySignalBackend(SignalBackend):

    def __init__(self):
        self._signals: Dict[str, Signal] = {}
        self._lock = threading.Lock()

    async def get(self, transaction_id: str) -> Optional[Signal]:
        with self._lock:
            return self._signals.get(transaction_id)

    async def put(self, signal: Signal) -> None:
        with self._lock:
            self._signals[signal.transaction_id] = signal

    async def delete(self, transaction_id: str) -> None:
        with self._lock:
            self._signals.pop(transaction_id, None)

    async def delete_all(self) -> None:
        with self._lock:
            self._signals.clear()


class InMemoryTransactionRepository(TransactionRepository):

    def __init__(self):
        self._records: Dict[str, TransactionRecord] = {}
        self._lock = threading.Lock()

    async def add(self, record: TransactionRecord) -> None:
        with self._lock:
            self._records[record.id] = record

    async def get(self, transaction_id: str) -> Optional[TransactionRecord]:
        with self._lock:
            return self._records.get(transaction_id)

    async def update_status(self, transaction_id: str, status: TransactionStatus) -> bool:
        with self._lock:
            record = self._records.get(transaction_id)
            if record is None:
                return False
            self._records[transaction_id] = record.with_status(status)
            return True

    async def list_recent(self) -> List[TransactionRecord]:
        with self._lock:
            return list(reversed(list(self._records.values())))

    async def clear(self) -> None:
        with self._lock:
            self._records.clear()


class InMemoryAuditLog(AuditLog):
    """
    In-memory audit log.

    WARNING: Not tamper-evident. Use the SQLite hash-chained log of the
    service package for anything beyond tests.
    """

    def __init__(self, max_records: int = 10000):
        self._entries: List[ValidationLogEntry] = []
        self._lock = threading.Lock()
        self._max_records = max_records

    async def append(self, entry: ValidationLogEntry) -> None:
        with self._lock:
            self._entries.append(entry)
            if len(self._entries) > self._max_records:
                self._entries = self._entries[-self._max_records:]

    async def list_recent(self) -> List[ValidationLogEntry]:
        with self._lock:
            return list(reversed(self._entries))

    async def clear(self) -> None:
        with self._lock:
            self._entries.clear()


async def call_backend(operation: str, awaitable):
    """Await a collaborator call, reporting unexpected failures as StoreUnavailable."""
    try:
        return await awaitable
    except EchoKeyError:
        raise
    except Exception as e:
        raise StoreUnavailable(operation, e) from e
