"""
Well-known URL schemes and their canonical ports.

The table is fixed at import time and never mutated. Scheme names are stored
without the trailing colon (``"https"``, not ``"https:"``).
"""

from typing import Optional

PROTOCOL_PORTS: dict[str, int] = {
    "http": 80,
    "https": 443,
    "ftp": 21,
    "ssh": 22,
    "telnet": 23,
    "smtp": 25,
    "gopher": 70,
    "finger": 79,
    "pop3": 110,
    "sftp": 115,
    "nntp": 119,
    "imap": 143,
    "snmp": 161,
    "irc": 194,
    "ldap": 389,
    "smtps": 465,
    "rtsp": 554,
    "ipp": 631,
    "ldaps": 636,
    "rsync": 873,
    "ftps": 990,
    "imaps": 993,
    "pop3s": 995,
    "mssql": 1433,
    "oracle": 1521,
    "mqtt": 1883,
    "nfs": 2049,
    "mysql": 3306,
    "rdp": 3389,
    "svn": 3690,
    "sip": 5060,
    "xmpp": 5222,
    "postgres": 5432,
    "amqp": 5672,
    "vnc": 5900,
    "redis": 6379,
    "ircs": 6697,
    "git": 9418,
    "memcached": 11211,
    "mongodb": 27017,
}

# Ports that only map back to a scheme (never chosen when encoding)
ALTERNATE_PORT_SCHEMES: dict[int, str] = {
    8000: "http",
    8008: "http",
    8080: "http",
    8888: "http",
    8443: "https",
}

PORT_PROTOCOLS: dict[int, str] = {
    **ALTERNATE_PORT_SCHEMES,
    **{port: scheme for scheme, port in PROTOCOL_PORTS.items()},
}


def normalize_scheme(scheme: str) -> str:
    return scheme.lower().rstrip(":")


def port_for(scheme: str, default_scheme: Optional[str] = None) -> Optional[int]:
    """
    Canonical port for ``scheme``.

    An unmapped scheme falls back to the canonical port of ``default_scheme``
    when one is given, otherwise ``None``.
    """
    port = PROTOCOL_PORTS.get(normalize_scheme(scheme))
    if port is None and default_scheme is not None:
        return PROTOCOL_PORTS.get(normalize_scheme(default_scheme))
    return port


def scheme_for(port: int, default_scheme: Optional[str] = None) -> Optional[str]:
    """Scheme registered for ``port``, or ``default_scheme`` when unmapped."""
    return PORT_PROTOCOLS.get(port, default_scheme)
