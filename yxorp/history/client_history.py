import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from yxorp.vars import CLIENT_HISTORY_STORE, HISTORY_TIMEOUT_MS


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class ClientHistoryEntry:
    last_host: str
    last_seen_at: int


class ClientHistoryBase(ABC):
    """Last target host contacted per client source, forgotten after a timeout."""

    @abstractmethod
    def touch(self, source_id: str, host: str, now: Optional[int] = None) -> None:
        pass

    @abstractmethod
    def get(self, source_id: str, now: Optional[int] = None) -> Optional[str]:
        pass


def client_history(
    name: str = CLIENT_HISTORY_STORE, timeout_ms: int = HISTORY_TIMEOUT_MS
) -> ClientHistoryBase:
    if name == "InMemoryClientHistory":
        return InMemoryClientHistory(timeout_ms)
    cls = globals().get(name)
    if cls and isinstance(cls, type) and issubclass(cls, ClientHistoryBase):
        return cls(timeout_ms)
    else:
        raise ValueError(f"Unknown client history store: {name}")


class InMemoryClientHistory(ClientHistoryBase):
    """
    Process-local history. Stale entries are dropped when they are read;
    there is no background sweep.
    """

    def __init__(self, timeout_ms: int = HISTORY_TIMEOUT_MS):
        self.timeout_ms = timeout_ms
        self._entries: dict[str, ClientHistoryEntry] = {}
        self._lock = threading.Lock()

    def touch(self, source_id: str, host: str, now: Optional[int] = None) -> None:
        entry = ClientHistoryEntry(host, now_ms() if now is None else now)
        with self._lock:
            self._entries[source_id] = entry

    def get(self, source_id: str, now: Optional[int] = None) -> Optional[str]:
        now = now_ms() if now is None else now
        with self._lock:
            entry = self._entries.get(source_id)
            if entry is None:
                return None
            if now - entry.last_seen_at > self.timeout_ms:
                del self._entries[source_id]
                return None
            return entry.last_host

    def __len__(self) -> int:
        return len(self._entries)
