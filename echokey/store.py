"""
EchoKey Signal Store

Owns the single live signal per transaction id. Issuing replaces any
previous signal for the id; superseded signals are not retained.

issue/get/clear on the same id are serialized by a per-id lock so a
reader never observes a half-applied replacement. Different ids never
contend. A lock lives only while some call on its id holds or awaits it.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Dict, Optional

from .clock import Clock, SystemClock, format_timestamp, truncate_ms
from .deriver import CodeDeriver
from .models import Signal
from .storage import InMemorySignalBackend, SignalBackend, call_backend
from .ttl import TTLPolicy

logger = logging.getLogger(__name__)


class _IdLock:
    """A lock plus the number of calls holding or waiting on it."""

    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


class SignalStore:

    def __init__(
        self,
        deriver: CodeDeriver,
        backend: Optional[SignalBackend] = None,
        ttl_policy: Optional[TTLPolicy] = None,
        clock: Optional[Clock] = None
    ):
        self.deriver = deriver
        self.backend = backend or InMemorySignalBackend()
        self.ttl_policy = ttl_policy or TTLPolicy()
        self.clock = clock or SystemClock()
        self._locks: Dict[str, _IdLock] = {}

    @asynccontextmanager
    async def _locked(self, transaction_id: str):
        entry = self._locks.get(transaction_id)
        if entry is None:
            entry = self._locks[transaction_id] = _IdLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[transaction_id]

    async def issue(
        self,
        transaction_id: str,
        network_id: str,
        now: Optional[datetime] = None
    ) -> Signal:
        """
        Issue a fresh signal for a transaction, replacing any live one.

        Args:
            transaction_id: Channel 1 identifier
            network_id: Network whose latency sets the validity window
            now: Issuance instant (defaults to the store clock)

        Returns:
            The new Signal

        Raises:
            CryptoUnavailable: If the code cannot be derived
            StoreUnavailable: If the backend cannot persist the signal
        """
        issued_at = truncate_ms(now or self.clock.now())
        window = self.ttl_policy.window_seconds(network_id)
        code = self.deriver.derive(transaction_id, format_timestamp(issued_at))
        signal = Signal(
            transaction_id=transaction_id,
            code=code,
            issued_at=issued_at,
            expires_at=issued_at + timedelta(seconds=window),
        )
        async with self._locked(transaction_id):
            await call_backend("issue", self.backend.put(signal))
        logger.debug("Signal issued for %s (window %ss, network %s)", transaction_id, window, network_id)
        return signal

    async def get(self, transaction_id: str) -> Optional[Signal]:
        async with self._locked(transaction_id):
            return await call_backend("get", self.backend.get(transaction_id))

    async def clear(self, transaction_id: str) -> None:
        async with self._locked(transaction_id):
            await call_backend("clear", self.backend.delete(transaction_id))

    async def clear_all(self) -> None:
        await call_backend("clear_all", self.backend.delete_all())
