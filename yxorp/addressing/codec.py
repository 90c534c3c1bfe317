"""
Mapping between target URLs and paths under the proxy origin.

A target ``https://example.com/a?b`` is carried as ``/example.com/a?b`` and a
target on a non-default scheme or port as ``/<port>/<host>/<path>``. The wire
form has no scheme text: a missing port segment means the default target
scheme, an explicit port segment selects the scheme registered for that port.
"""

import logging
import re
from dataclasses import dataclass, replace
from typing import Optional, TYPE_CHECKING
from urllib.parse import urlsplit

from yxorp.addressing.protocols import normalize_scheme, port_for, scheme_for

if TYPE_CHECKING:
    from yxorp.history.client_history import ClientHistoryBase

logger = logging.getLogger("uvicorn.error")

ABSOLUTE_URL = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")
_PORT_SEGMENT = re.compile(r"^(\d+)/(.*)$", re.S)
_HOST_SEGMENT = re.compile(r"^([^/?#]*)(.*)$", re.S)
_AUTHORITY = re.compile(
    r"^(?:\[(?P<ipv6>[0-9a-f:.]+)\]|(?P<name>[a-z0-9_-]+(?:\.[a-z0-9_-]+)*))"
    r"(?::(?P<port>\d+))?$",
    re.I,
)
_HOST_LIKE = re.compile(
    r"^(?:(?:[a-z0-9_-]+\.)+[a-z]{2,}|localhost|\d{1,3}(?:\.\d{1,3}){3}"
    r"|\[[0-9a-f:.]+\])(?::\d+)?$",
    re.I,
)


class AddressDecodeError(ValueError):
    """Raised when a path under the proxy origin is not a valid encoded target."""


def looks_like_host(segment: str) -> bool:
    """True when a path segment reads as a hostname (optionally with a port)."""
    return bool(_HOST_LIKE.match(segment))


@dataclass(frozen=True)
class ProxyOrigin:
    scheme: str
    hostname: str
    port: Optional[int]
    authority: str

    @classmethod
    def from_url(cls, url: str) -> "ProxyOrigin":
        parts = urlsplit(url)
        if not parts.scheme or not parts.hostname:
            raise ValueError(f"Invalid proxy origin: {url!r}")
        return cls(
            scheme=normalize_scheme(parts.scheme),
            hostname=parts.hostname,
            port=parts.port,
            authority=parts.netloc.lower(),
        )

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.authority}"


@dataclass(frozen=True)
class TargetAddress:
    """
    A target to fetch upstream.

    ``port`` is set only when it is not the canonical port of ``scheme``;
    ``path`` holds path, query and fragment exactly as they should be sent.
    """

    scheme: str
    hostname: str
    port: Optional[int] = None
    path: str = ""

    @classmethod
    def build(
        cls, scheme: str, hostname: str, port: Optional[int] = None, path: str = ""
    ) -> "TargetAddress":
        scheme = normalize_scheme(scheme)
        if port is not None and port == port_for(scheme):
            port = None
        return cls(scheme=scheme, hostname=hostname.lower(), port=port, path=path)

    @classmethod
    def from_url(cls, url: str) -> "TargetAddress":
        try:
            parts = urlsplit(url)
            port = parts.port
        except ValueError as e:
            raise AddressDecodeError(f"Invalid URL {url!r}: {e}") from e
        if not parts.scheme or not parts.hostname:
            raise AddressDecodeError(f"URL has no scheme or host: {url!r}")

        path = parts.path
        if parts.query:
            path += f"?{parts.query}"
        if parts.fragment:
            path += f"#{parts.fragment}"
        return cls.build(parts.scheme, parts.hostname, port, path)

    @property
    def netloc(self) -> str:
        host = f"[{self.hostname}]" if ":" in self.hostname else self.hostname
        return f"{host}:{self.port}" if self.port is not None else host

    @property
    def origin(self) -> str:
        return f"{self.scheme}://{self.netloc}"

    @property
    def url(self) -> str:
        return f"{self.origin}{self.path}"

    def with_path(self, path: str) -> "TargetAddress":
        return replace(self, path=path)


class AddressCodec:
    """
    Encodes targets into proxy paths and decodes them back.

    The codec only reads the client history; the dispatcher owns and writes it.
    """

    def __init__(
        self,
        origin: ProxyOrigin,
        history: Optional["ClientHistoryBase"] = None,
        default_scheme: str = "https",
    ):
        self.origin = origin
        self.history = history
        self.default_scheme = normalize_scheme(default_scheme)

    def is_proxy_host(self, hostname: str) -> bool:
        return self.origin.hostname in hostname

    def encode_authority(self, target: TargetAddress) -> str:
        """The ``[<port>/]<host>`` part of an encoded path."""
        host = f"[{target.hostname}]" if ":" in target.hostname else target.hostname
        canonical = port_for(target.scheme, self.default_scheme)
        port = target.port if target.port != canonical else None
        if port is None and target.scheme != self.default_scheme:
            # the port segment is the only scheme signal on the wire
            port = canonical
        return f"{port}/{host}" if port is not None else host

    def encode(self, target: TargetAddress, literal: Optional[str] = None) -> str:
        if self.is_proxy_host(target.hostname):
            return target.path or "/"

        path = target.path
        if path == "/" and literal is not None and not literal.endswith("/"):
            path = ""
        return f"/{self.encode_authority(target)}{path}"

    def proxy_url(self, target: TargetAddress, literal: Optional[str] = None) -> str:
        return f"{self.origin.base_url}{self.encode(target, literal)}"

    def decode(
        self,
        encoded_path: str,
        fallback_scheme: Optional[str] = None,
        source_id: Optional[str] = None,
        now: Optional[int] = None,
        prefer_history: bool = False,
    ) -> TargetAddress:
        """
        Decode a path under the proxy origin into a target.

        When the first segment does not read as a hostname and the client has a
        live history entry, the remembered host is prepended: the browser
        resolved a root-relative URL against the proxy origin instead of the
        target it was rewritten from. ``prefer_history`` applies the same
        resolution to a host-like first segment, for asset names such as
        ``app.js`` that also parse as hostnames.
        """
        fallback_scheme = normalize_scheme(fallback_scheme or self.default_scheme)
        relative = encoded_path.lstrip("/")

        rest = relative
        port: Optional[int] = None
        scheme = fallback_scheme
        port_match = _PORT_SEGMENT.match(rest)
        if port_match:
            port = int(port_match.group(1))
            rest = port_match.group(2)
            scheme = scheme_for(port, fallback_scheme)

        host_segment, path = _HOST_SEGMENT.match(rest).groups()

        if (
            source_id is not None
            and self.history is not None
            and (prefer_history or not looks_like_host(host_segment))
        ):
            last_host = self.history.get(source_id, now)
            if last_host:
                logger.debug(
                    f"Resolving {encoded_path} against last host {last_host} for {source_id}"
                )
                return self.decode(f"/{last_host}/{relative}", fallback_scheme)

        authority = _AUTHORITY.match(host_segment)
        if not authority:
            raise AddressDecodeError(f"Invalid host in encoded path: {encoded_path!r}")

        hostname = authority.group("ipv6") or authority.group("name")
        if authority.group("port"):
            if port is not None:
                raise AddressDecodeError(
                    f"Encoded path carries two ports: {encoded_path!r}"
                )
            port = int(authority.group("port"))
            scheme = scheme_for(port, fallback_scheme)

        if port is not None and not 0 < port < 65536:
            raise AddressDecodeError(f"Port out of range in {encoded_path!r}")

        return TargetAddress.build(scheme, hostname, port, path)

    def decode_proxy_url(self, url: str) -> Optional[TargetAddress]:
        """Target behind an absolute URL on the proxy origin, if it is one."""
        base = self.origin.base_url
        if not url.lower().startswith(base) or len(url) == len(base):
            return None
        try:
            return self.decode(url[len(base):])
        except AddressDecodeError:
            return None

    def rewrite_url(self, literal: str, context: TargetAddress) -> str:
        """
        Rewrite a URL found in a body so it resolves through the proxy.

        ``context`` is the target of the page the literal was found in; it
        resolves protocol-relative and root-relative forms. Plain relative URLs
        already resolve under the rewritten page and are returned unchanged.
        """
        try:
            if ABSOLUTE_URL.match(literal):
                target = TargetAddress.from_url(literal)
            elif literal.startswith("//"):
                target = TargetAddress.from_url(f"{context.scheme}:{literal}")
            elif literal.startswith("/"):
                target = context.with_path(literal)
            else:
                return literal
        except AddressDecodeError:
            return literal

        if self.is_proxy_host(target.hostname):
            return literal
        return self.proxy_url(target, literal)
