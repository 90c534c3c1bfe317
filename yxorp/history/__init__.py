from .client_history import (
    ClientHistoryBase,
    ClientHistoryEntry,
    InMemoryClientHistory,
    client_history,
    now_ms,
)

__all__ = [
    "ClientHistoryBase",
    "ClientHistoryEntry",
    "InMemoryClientHistory",
    "client_history",
    "now_ms",
]
