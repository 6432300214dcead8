import asyncio
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Tuple

from domain.interfaces import JobStore, Mutation
from domain.models import utcnow


class InMemoryJobStore(JobStore):
    """
    For tests and local development.
    Mimics a KV namespace: string values, optional per-key expiry.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        # key -> (value, expires_at)
        self.data: Dict[str, Tuple[str, Optional[datetime]]] = {}
        self.clock = clock
        self._lock = asyncio.Lock()

    def _read(self, key: str) -> Optional[str]:
        entry = self.data.get(key)
        if entry is None:
            return None

        value, expires_at = entry
        if expires_at is not None and self.clock() >= expires_at:
            del self.data[key]
            return None
        return value

    async def get(self, key: str) -> Optional[str]:
        return self._read(key)

    async def put(self, key: str, value: str, ttl: Optional[timedelta] = None) -> None:
        expires_at = self.clock() + ttl if ttl is not None else None
        self.data[key] = (value, expires_at)

    async def update(self, key: str, mutate: Mutation) -> str:
        async with self._lock:
            current = self._read(key)
            new_value = mutate(current)
            expires_at = self.data[key][1] if key in self.data else None
            self.data[key] = (new_value, expires_at)
            return new_value
