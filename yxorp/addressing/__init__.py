from .codec import (
    AddressCodec,
    AddressDecodeError,
    ProxyOrigin,
    TargetAddress,
    looks_like_host,
)
from .protocols import port_for, scheme_for

__all__ = [
    "AddressCodec",
    "AddressDecodeError",
    "ProxyOrigin",
    "TargetAddress",
    "looks_like_host",
    "port_for",
    "scheme_for",
]
