import asyncio
import contextlib
import logging
import re
from http.cookies import CookieError, SimpleCookie
from typing import Awaitable, Optional, TypeVar

import httpx
from fastapi import Request
from fastapi.responses import (
    HTMLResponse,
    PlainTextResponse,
    RedirectResponse,
    Response,
    StreamingResponse,
)
from opentelemetry import trace
from starlette.background import BackgroundTask
from starlette.requests import ClientDisconnect

from yxorp.addressing import (
    AddressCodec,
    AddressDecodeError,
    ProxyOrigin,
    TargetAddress,
)
from yxorp.history import ClientHistoryBase, client_history
from yxorp.rewrite import (
    Pipeline,
    RewriteContext,
    buffer_and_rewrite,
    charset_of,
    select_pipeline,
)
from yxorp.utils import first_header_value, strip_header_prefixes
from yxorp.utils.exception_logging import (
    describe_upstream_error,
    format_exception_message,
    log_exception_with_details,
)
from yxorp.utils.traced_requests import traced_request
from yxorp.vars import DISCONNECT_POLL_INTERVAL, PROXY_TIMEOUT

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

T = TypeVar("T")

# Hop-by-hop headers that should NOT be forwarded (RFC 2616)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

# Headers that would identify the proxy or its clients to the target
FORWARDED_HEADERS = {
    "forwarded",
    "x-forwarded-for",
    "x-forwarded-host",
    "x-forwarded-proto",
    "x-forwarded-prefix",
    "x-real-ip",
    "x-scheme",
}

STRIPPED_REQUEST_HEADERS = HOP_BY_HOP_HEADERS | FORWARDED_HEADERS | {
    "host",
    "content-length",
    "accept-encoding",
}
STRIPPED_REQUEST_PREFIXES = ("sec-fetch-",)

STRIPPED_RESPONSE_HEADERS = HOP_BY_HOP_HEADERS | {
    "access-control-allow-origin",
    "content-security-policy",
    "content-security-policy-report-only",
}
# No longer true once a body has been rewritten
REWRITTEN_BODY_HEADERS = {"content-length", "content-encoding"}

CORS_PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "*",
    "Access-Control-Allow-Headers": "*",
    "Access-Control-Max-Age": "86400",
}

# Sec-Fetch-Dest values (or none at all) that may be a typed-in bare domain
NAVIGATION_DESTINATIONS = {"", "document", "iframe", "frame", "embed", "object"}

# Last labels of a single-segment path that name a file rather than a TLD
ASSET_EXTENSIONS = {
    "js",
    "mjs",
    "css",
    "map",
    "json",
    "wasm",
    "png",
    "jpg",
    "jpeg",
    "gif",
    "svg",
    "webp",
    "avif",
    "ico",
    "woff",
    "woff2",
    "ttf",
    "otf",
    "mp3",
    "mp4",
    "webm",
    "txt",
    "xml",
    "html",
    "htm",
    "pdf",
    "zip",
}

BARE_DOMAIN = re.compile(r"^(?:\d+/)?[\w-]+(?:\.[\w-]+)+$")
ABSOLUTE_URL_PATH = re.compile(r"^(?P<scheme>[a-zA-Z][a-zA-Z0-9+.-]*):/+(?P<rest>.*)$", re.S)

# nginx convention for "client closed request"; never reaches the client
CLIENT_CLOSED_REQUEST = 499


class ClientDisconnected(Exception):
    """The client went away while the proxy was still working on its request."""


def client_source_id(request: Request) -> str:
    forwarded_for = first_header_value(request.headers.get("x-forwarded-for"))
    if forwarded_for:
        return forwarded_for
    return request.client.host if request.client else "unknown"


def is_subresource_request(request: Request) -> bool:
    """True for fetches the browser labels as scripts, styles, images and the like."""
    destination = request.headers.get("sec-fetch-dest", "").lower()
    return destination not in NAVIGATION_DESTINATIONS


def is_asset_request(request: Request, route_path: str) -> bool:
    """
    True for a subresource fetch of one root-relative file, e.g. /app.js.

    Such a path also reads as a hostname; when the browser says it is loading
    a script or style the page's own host is the better guess.
    """
    segment = route_path[1:]
    if "/" in segment or "." not in segment or not is_subresource_request(request):
        return False
    return segment.rsplit(".", 1)[1].lower() in ASSET_EXTENSIONS


async def _discard_result(task: "asyncio.Future") -> None:
    """Close a streamed response that arrived while the client was leaving."""
    if not task.done() or task.cancelled() or task.exception() is not None:
        return
    result = task.result()
    if isinstance(result, httpx.Response):
        await result.aclose()


def request_path(request: Request) -> str:
    """Undecoded path plus query, so percent-escapes reach the target untouched."""
    raw_path = request.scope.get("raw_path")
    if raw_path:
        path = raw_path.decode("latin-1").split("?", 1)[0]
    else:
        path = request.url.path
    query = request.url.query
    return f"{path}?{query}" if query else path


class ProxyDispatcher:
    """
    Request lifecycle of the proxy: classify, decode the target, fetch,
    sanitize headers, rewrite the body and relay.

    The dispatcher owns the client history and is its only writer.
    """

    def __init__(
        self,
        origin: ProxyOrigin,
        landing_page: bytes,
        history: Optional[ClientHistoryBase] = None,
        default_scheme: str = "https",
        timeout: float = PROXY_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        pipelines: Optional[dict[str, Pipeline]] = None,
        disconnect_poll_interval: float = DISCONNECT_POLL_INTERVAL,
    ):
        self.origin = origin
        self.landing_page = landing_page
        self.history = history if history is not None else client_history()
        self.codec = AddressCodec(origin, self.history, default_scheme)
        self.pipelines = pipelines
        self.disconnect_poll_interval = disconnect_poll_interval
        # Redirects are relayed with a rewritten Location instead of followed
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            follow_redirects=False,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    async def handle(self, request: Request) -> Response:
        path = request_path(request)
        try:
            return await self._dispatch(request, path)
        except (ClientDisconnected, ClientDisconnect):
            logger.info(f"Client disconnected, abandoning {request.method} {path}")
            return Response(status_code=CLIENT_CLOSED_REQUEST)
        except Exception as e:
            log_exception_with_details(logger, f"[Proxy] {request.method} {path}", e)
            return self._bad_gateway(path)

    async def _dispatch(self, request: Request, path: str) -> Response:
        route_path, _, query = path.partition("?")

        if route_path == "/":
            return HTMLResponse(self.landing_page)

        if request.method == "OPTIONS":
            return Response(status_code=200, headers=CORS_PREFLIGHT_HEADERS)

        if route_path == "/favicon.ico":
            return PlainTextResponse("not found", status_code=404)

        if BARE_DOMAIN.match(route_path[1:]) and not is_subresource_request(request):
            location = f"{route_path}/" + (f"?{query}" if query else "")
            logger.info(f"Normalizing bare domain {route_path} -> {location}")
            return RedirectResponse(location, status_code=302)

        absolute = ABSOLUTE_URL_PATH.match(path[1:])
        if absolute:
            url = f"{absolute.group('scheme')}://{absolute.group('rest')}"
            try:
                target = TargetAddress.from_url(url)
            except AddressDecodeError as e:
                logger.warning(f"Cannot encode pasted URL {url}: {e}")
                return self._bad_gateway(url)
            location = self.codec.encode(target, url)
            logger.info(f"Redirecting absolute URL {url} -> {location}")
            return RedirectResponse(location, status_code=302)

        return await self._proxy(request, path)

    async def _proxy(self, request: Request, path: str) -> Response:
        source_id = client_source_id(request)
        body = await request.body()

        attempted: Optional[TargetAddress] = None
        try:
            attempted = self.codec.decode(
                path,
                source_id=source_id,
                prefer_history=is_asset_request(request, path.partition("?")[0]),
            )
            return await self._fetch_and_relay(request, attempted, source_id, body)
        except (httpx.HTTPError, AddressDecodeError) as e:
            failed_url = attempted.url if attempted else path
            logger.error(
                f"Upstream fetch failed for {failed_url} ({describe_upstream_error(e)}): "
                f"{format_exception_message(e)}"
            )

        retry = self._retry_target(path, source_id, attempted)
        if retry is None:
            return self._bad_gateway(failed_url)

        logger.info(f"Retrying {path} against last host: {retry.url} ({source_id})")
        try:
            return await self._fetch_and_relay(
                request, retry, source_id, body, retried=True
            )
        except (httpx.HTTPError, AddressDecodeError) as e:
            logger.error(
                f"Retry failed for {retry.url} ({describe_upstream_error(e)}): "
                f"{format_exception_message(e)}"
            )
            return self._bad_gateway(failed_url)

    def _retry_target(
        self, path: str, source_id: str, attempted: Optional[TargetAddress]
    ) -> Optional[TargetAddress]:
        """The same path under the client's last host, if that is a different host."""
        last_host = self.history.get(source_id)
        if not last_host:
            return None
        if attempted is not None and self.codec.encode_authority(attempted) == last_host:
            return None
        try:
            return self.codec.decode(f"/{last_host}/{path.lstrip('/')}")
        except AddressDecodeError:
            return None

    async def _fetch_and_relay(
        self,
        request: Request,
        target: TargetAddress,
        source_id: str,
        body: bytes,
        retried: bool = False,
    ) -> Response:
        with traced_request(
            tracer,
            "proxy_request",
            source_id,
            target.url,
            f"> {request.method} {target.url} ({source_id})",
            {"proxy.method": request.method, "proxy.retry": retried},
        ) as span:
            upstream_request = self.client.build_request(
                request.method,
                target.url,
                headers=self.prepare_headers(request, target),
                content=body,
            )
            try:
                upstream = await self._until_disconnected(
                    request, self.client.send(upstream_request, stream=True)
                )
            except httpx.HTTPError as e:
                span.set_attribute("proxy.error", describe_upstream_error(e))
                raise

            span.set_attribute("proxy.status_code", upstream.status_code)
            self.history.touch(source_id, self.codec.encode_authority(target))

            try:
                return await self._relay(request, upstream, target, span)
            except BaseException:
                await upstream.aclose()
                raise

    async def _relay(
        self,
        request: Request,
        upstream: httpx.Response,
        target: TargetAddress,
        span,
    ) -> Response:
        content_types = upstream.headers.get_list("content-type")
        content_type = content_types[0] if content_types else None
        headers = self.response_headers(upstream, target)

        pipeline = None
        if request.method != "HEAD" and upstream.status_code not in (204, 304):
            pipeline = select_pipeline(content_type, self.pipelines)

        if pipeline is None:
            span.set_attribute("proxy.pipeline", "passthrough")
            response = StreamingResponse(
                upstream.aiter_raw(),
                status_code=upstream.status_code,
                background=BackgroundTask(upstream.aclose),
            )
            for name, value in headers:
                response.headers.append(name, value)
            return response

        span.set_attribute("proxy.pipeline", pipeline.name)
        context = RewriteContext(self.codec, target)
        try:
            rewritten = await self._until_disconnected(
                request,
                buffer_and_rewrite(
                    upstream.aiter_bytes(), pipeline, context, charset_of(content_type)
                ),
            )
        finally:
            await upstream.aclose()

        response = Response(content=rewritten.content, status_code=upstream.status_code)
        for name, value in headers:
            if name.lower() not in REWRITTEN_BODY_HEADERS:
                response.headers.append(name, value)
        response.headers["content-length"] = str(rewritten.content_length)
        return response

    async def _until_disconnected(self, request: Request, work: Awaitable[T]) -> T:
        """Await ``work``, cancelling it if the client disconnects first."""
        task = asyncio.ensure_future(work)
        try:
            while True:
                done, _ = await asyncio.wait({task}, timeout=self.disconnect_poll_interval)
                if done:
                    return task.result()
                if await request.is_disconnected():
                    await _discard_result(task)
                    raise ClientDisconnected()
        finally:
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    def prepare_headers(
        self, request: Request, target: TargetAddress
    ) -> list[tuple[str, str]]:
        """
        Headers for the upstream request.

        Proxy-identifying and negotiation headers are dropped, Referer and Origin
        are translated from the proxy origin back to the target, and Host names
        the target. Only the identity encoding is accepted from upstream.
        """
        headers = []
        for name, value in strip_header_prefixes(
            request.headers.items(), STRIPPED_REQUEST_HEADERS, STRIPPED_REQUEST_PREFIXES
        ):
            name_lower = name.lower()
            if name_lower == "referer":
                referred = self.codec.decode_proxy_url(value)
                if referred is None:
                    continue
                value = referred.url
            elif name_lower == "origin" and value.lower() == self.origin.base_url:
                value = target.origin
            headers.append((name, value))

        # httpx adds its own gzip/deflate offer when none is given
        headers.append(("accept-encoding", "identity"))
        headers.append(("host", target.netloc))
        return headers

    def response_headers(
        self, upstream: httpx.Response, target: TargetAddress
    ) -> list[tuple[str, str]]:
        headers = []
        for name, value in upstream.headers.multi_items():
            name_lower = name.lower()
            if name_lower in STRIPPED_RESPONSE_HEADERS:
                continue
            if name_lower == "location":
                value = self.codec.rewrite_url(value, target)
            elif name_lower == "set-cookie":
                value = self.rewrite_set_cookie(value, target)
            headers.append((name, value))
        return headers

    def rewrite_set_cookie(self, set_cookie: str, target: TargetAddress) -> str:
        """
        Scope a target's cookie to the target's encoded path on the proxy origin.
        """
        cookie = SimpleCookie()
        try:
            cookie.load(set_cookie)
        except CookieError as e:
            logger.warning(f"Failed to parse cookie: {set_cookie}, error: {e}")
            return set_cookie
        if not cookie:
            return set_cookie

        prefix = f"/{self.codec.encode_authority(target)}"
        for morsel in cookie.values():
            morsel["domain"] = ""
            path = morsel.get("path") or "/"
            morsel["path"] = prefix if path == "/" else f"{prefix}{path}"
            if self.origin.scheme != "https":
                # browsers drop Secure cookies set over plain http
                morsel["secure"] = False
                if str(morsel.get("samesite", "")).lower() == "none":
                    morsel["samesite"] = "Lax"

        return "; ".join(morsel.OutputString() for morsel in cookie.values())

    def _bad_gateway(self, url: str) -> Response:
        return PlainTextResponse(f"Bad gateway: unable to fetch {url}\n", status_code=502)
