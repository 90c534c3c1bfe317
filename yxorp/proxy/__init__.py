from .dispatcher import ClientDisconnected, ProxyDispatcher, client_source_id
from .route import get_dispatcher, router

__all__ = [
    "ClientDisconnected",
    "ProxyDispatcher",
    "client_source_id",
    "get_dispatcher",
    "router",
]
