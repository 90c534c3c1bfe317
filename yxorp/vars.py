import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "yxorp")
PORT = int(os.environ.get("PORT", "5050"))

# Public-facing origin of the proxy; every encoded path is relative to it
PUBLIC_URL = os.environ.get("PUBLIC_URL", f"http://localhost:{PORT}").rstrip("/")
LANDING_PAGE = os.environ.get(
    "LANDING_PAGE", os.path.join(os.path.dirname(__file__), "static", "index.html")
)

# Scheme of an encoded path that carries no port segment
DEFAULT_TARGET_SCHEME = os.getenv("DEFAULT_TARGET_SCHEME", "https").lower().rstrip(":")

PROXY_TIMEOUT = int(os.environ.get("PROXY_TIMEOUT", "300"))
DISCONNECT_POLL_INTERVAL = float(os.getenv("DISCONNECT_POLL_INTERVAL", "0.5"))

HISTORY_TIMEOUT_MS = int(os.getenv("HISTORY_TIMEOUT_MS", "600000"))
CLIENT_HISTORY_STORE = os.getenv("CLIENT_HISTORY_STORE", "InMemoryClientHistory")

REWRITE_HTML_URLS = os.environ.get("REWRITE_HTML_URLS", "true").lower() == "true"
REWRITE_CSS_URLS = os.environ.get("REWRITE_CSS_URLS", "true").lower() == "true"
REWRITE_JS_URLS = os.environ.get("REWRITE_JS_URLS", "true").lower() == "true"
REWRITE_JSON_URLS = os.environ.get("REWRITE_JSON_URLS", "true").lower() == "true"
# Domain-literal comparisons in scripts (approximate, may touch unrelated strings)
REWRITE_SCRIPT_HEURISTICS = (
    os.environ.get("REWRITE_SCRIPT_HEURISTICS", "true").lower() == "true"
)

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")
