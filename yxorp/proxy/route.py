from fastapi import APIRouter, Depends, Request

from yxorp.proxy.dispatcher import ProxyDispatcher

router = APIRouter()

PROXY_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]


def get_dispatcher(request: Request) -> ProxyDispatcher:
    """Dispatcher created by the application lifespan."""
    return request.app.state.dispatcher


# Register catch-all route for proxying
@router.api_route("/{path:path}", methods=PROXY_METHODS)
async def proxy_all(
    request: Request,
    path: str,
    dispatcher: ProxyDispatcher = Depends(get_dispatcher),
):
    """Catch-all route: landing page, preflight, redirects and proxied fetches."""
    return await dispatcher.handle(request)
