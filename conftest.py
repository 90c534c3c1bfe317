# Ensure tests import the package from this checkout first.
import os
import sys

import pytest

SERVICE_ROOT = os.path.dirname(__file__)

if SERVICE_ROOT not in sys.path:
    sys.path.insert(0, SERVICE_ROOT)

from yxorp.addressing import AddressCodec, ProxyOrigin, TargetAddress  # noqa: E402
from yxorp.history import InMemoryClientHistory  # noqa: E402
from yxorp.rewrite import RewriteContext  # noqa: E402

PROXY_URL = "http://localhost:5050"


@pytest.fixture
def proxy_origin():
    return ProxyOrigin.from_url(PROXY_URL)


@pytest.fixture
def history():
    return InMemoryClientHistory(timeout_ms=600000)


@pytest.fixture
def codec(proxy_origin, history):
    return AddressCodec(proxy_origin, history, default_scheme="https")


@pytest.fixture
def rewrite_context(codec):
    """Context factory for a page at the given target URL."""

    def _context(url="https://example.com/dir/page"):
        return RewriteContext(codec, TargetAddress.from_url(url))

    return _context
