"""aiohttp middlewares for the server's HTTP surface."""

from __future__ import annotations

from collections.abc import Sequence

from aiohttp import hdrs, web
from aiohttp.typedefs import Handler, Middleware

ALLOW_METHODS = "GET, POST, PUT, DELETE, OPTIONS"
ALLOW_HEADERS = "Content-Type, Authorization"


def cors_middleware(
    origins: Sequence[str] = ("*",), credentials: bool = False
) -> Middleware:
    """Build a middleware that adds CORS headers and answers preflights.

    Args:
        origins: Allowed origins, or ``("*",)`` for any
        credentials: Send ``Access-Control-Allow-Credentials: true``

    A request whose ``Origin`` is not allowed gets no CORS headers, which the
    browser treats as a refusal. Preflight ``OPTIONS`` requests are answered
    here and never reach the route handlers.
    """
    allow_any = "*" in origins

    def allowed_origin(request: web.Request) -> str | None:
        origin = request.headers.get(hdrs.ORIGIN)
        if allow_any:
            # Browsers reject a wildcard together with credentials
            return origin if credentials and origin else "*"
        if origin is not None and origin in origins:
            return origin
        return None

    @web.middleware
    async def cors(request: web.Request, handler: Handler) -> web.StreamResponse:
        origin = allowed_origin(request)
        if request.method == hdrs.METH_OPTIONS:
            response: web.StreamResponse = web.Response(status=200)
        else:
            response = await handler(request)

        # A WebSocket response has already been sent by the time it returns
        if origin is None or response.prepared:
            return response

        response.headers[hdrs.ACCESS_CONTROL_ALLOW_ORIGIN] = origin
        response.headers[hdrs.ACCESS_CONTROL_ALLOW_METHODS] = ALLOW_METHODS
        response.headers[hdrs.ACCESS_CONTROL_ALLOW_HEADERS] = ALLOW_HEADERS
        if credentials:
            response.headers[hdrs.ACCESS_CONTROL_ALLOW_CREDENTIALS] = "true"
        if origin != "*":
            response.headers[hdrs.VARY] = hdrs.ORIGIN
        return response

    return cors
