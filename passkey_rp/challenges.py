"""Challenge generation and the per-session key-value store."""

from __future__ import annotations

import secrets
import threading
import time
from typing import Dict, Optional, Protocol, Tuple

MIN_CHALLENGE_SIZE = 16

REGISTRATION = "registration"
AUTHENTICATION = "authentication"


class ChallengeGenerator:
    def __init__(self, size: int = 32) -> None:
        if size < MIN_CHALLENGE_SIZE:
            raise ValueError(f"Challenges must be at least {MIN_CHALLENGE_SIZE} bytes")
        self.size = size

    def generate(self) -> bytes:
        return secrets.token_bytes(self.size)


class SessionStore(Protocol):
    def get(self, session_id: str, key: str) -> Optional[bytes]:
        ...

    def set(self, session_id: str, key: str, value: bytes) -> None:
        ...

    def delete(self, session_id: str, key: str) -> None:
        ...

    def pop(self, session_id: str, key: str) -> Optional[bytes]:
        """Atomically read and delete ``key``."""
        ...


class InMemorySessionStore:
    """Thread-safe session store; entries expire ``ttl`` seconds after ``set``."""

    def __init__(self, ttl: Optional[float] = None) -> None:
        self.ttl = ttl
        self._entries: Dict[Tuple[str, str], Tuple[bytes, Optional[float]]] = {}
        self._lock = threading.Lock()

    def _expires_at(self) -> Optional[float]:
        if self.ttl is None:
            return None
        return time.monotonic() + self.ttl

    @staticmethod
    def _live(entry: Tuple[bytes, Optional[float]]) -> bool:
        expires_at = entry[1]
        return expires_at is None or time.monotonic() < expires_at

    def get(self, session_id: str, key: str) -> Optional[bytes]:
        with self._lock:
            entry = self._entries.get((session_id, key))
            if entry is None:
                return None
            if not self._live(entry):
                del self._entries[(session_id, key)]
                return None
            return entry[0]

    def set(self, session_id: str, key: str, value: bytes) -> None:
        with self._lock:
            self._purge()
            self._entries[(session_id, key)] = (bytes(value), self._expires_at())

    def delete(self, session_id: str, key: str) -> None:
        with self._lock:
            self._entries.pop((session_id, key), None)

    def pop(self, session_id: str, key: str) -> Optional[bytes]:
        with self._lock:
            entry = self._entries.pop((session_id, key), None)
        if entry is None or not self._live(entry):
            return None
        return entry[0]

    def _purge(self) -> None:
        expired = [key for key, entry in self._entries.items() if not self._live(entry)]
        for key in expired:
            del self._entries[key]
