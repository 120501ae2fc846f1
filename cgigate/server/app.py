"""FastAPI application exposing the gateway.

Routes:
- <cgi_prefix>{script_path} (all methods): executes the addressed script
- GET /healthz: liveness check (only when the prefix is not "/")

The handler buffers the script's whole output before anything is sent, so
status and headers are written exactly once, followed by the body.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import Response

from cgigate import __version__
from cgigate.core.config import GatewayConfig
from cgigate.core.handler import RequestHandler
from cgigate.core.models import CGIRequest, CGIResponse

logger = logging.getLogger(__name__)

# Recomputed from the body by the response class.
_SKIPPED_RESPONSE_HEADERS = frozenset({"content-length"})


def to_cgi_request(request: Request, config: GatewayConfig) -> CGIRequest:
    """Adapt a Starlette request to the gateway's request model."""
    server = request.scope.get("server")
    server_port = str(server[1]) if server and server[1] is not None else str(config.port)

    return CGIRequest(
        method=request.method,
        path=request.path_params.get("script_path", ""),
        query_string=request.scope.get("query_string", b"").decode("latin-1"),
        headers=[
            (name.decode("latin-1"), value.decode("latin-1"))
            for name, value in request.headers.raw
        ],
        protocol=f"HTTP/{request.scope.get('http_version', '1.1')}",
        server_port=server_port,
        remote_addr=request.client.host if request.client else "",
        body=request.stream(),
    )


def to_http_response(result: CGIResponse) -> Response:
    """Write status, then headers in script order (case preserved), then body."""
    response = Response(content=result.body, status_code=result.status_code)
    for name, value in result.headers:
        if name.lower() in _SKIPPED_RESPONSE_HEADERS:
            continue
        response.raw_headers.append((name.encode("latin-1"), value.encode("latin-1")))
    return response


def create_app(config: GatewayConfig, handler: RequestHandler | None = None) -> FastAPI:
    """Build the gateway application for an immutable configuration."""
    app = FastAPI(
        title="cgigate",
        description="HTTP-to-CGI gateway",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.config = config
    app.state.handler = handler or RequestHandler(config)

    if config.cgi_prefix != "/":

        @app.get("/healthz")
        def healthz() -> dict[str, str]:
            return {"status": "ok"}

    async def run_script(request: Request) -> Response:
        gateway: RequestHandler = request.app.state.handler
        result = await gateway.handle(to_cgi_request(request, config))
        return to_http_response(result)

    app.add_route(
        f"{config.cgi_prefix}{{script_path:path}}",
        run_script,
        include_in_schema=False,
    )

    logger.debug("Registered CGI route at %s", config.cgi_prefix)
    return app
