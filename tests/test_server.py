"""Tests for the FastAPI application.

Exercises the full HTTP path with Starlette's TestClient:
- Script responses (status, headers in order with case, body)
- All methods and request bodies
- Error responses and the health check
"""

from __future__ import annotations

from unittest.mock import AsyncMock, Mock

import pytest
from fastapi.testclient import TestClient

from cgigate.core.handler import RequestHandler
from cgigate.core.models import CGIResponse
from cgigate.server.app import create_app


@pytest.fixture
def client(gateway_config) -> TestClient:
    return TestClient(create_app(gateway_config))


# =============================================================================
# Script Response Tests
# =============================================================================


@pytest.mark.posix
class TestScriptResponses:
    """Requests that run real scripts."""

    def test_hello_world(self, hello_script, client):
        """Scenario: GET /cgi-bin/hello.cgi."""
        response = client.get("/cgi-bin/hello.cgi")

        assert response.status_code == 200
        assert response.headers["content-type"] == "text/plain"
        assert response.text == "Hello"

    def test_headers_in_order_with_case(self, make_script, client):
        make_script(
            "cookies.cgi",
            "printf 'Status: 201 Created\\r\\n'\n"
            "printf 'Set-Cookie: a=1\\r\\nX-Custom: Value\\r\\nSet-Cookie: b=2\\r\\n'\n"
            "printf 'Content-Length: 999\\r\\n\\r\\ncreated'",
        )

        response = client.post("/cgi-bin/cookies.cgi")

        assert response.status_code == 201
        assert response.headers.get_list("set-cookie") == ["a=1", "b=2"]
        assert (b"X-Custom", b"Value") in response.headers.raw
        assert response.headers["content-length"] == str(len(b"created"))
        assert response.content == b"created"

    @pytest.mark.parametrize("method", ["POST", "PUT", "PATCH", "DELETE"])
    def test_body_methods(self, make_script, client, method):
        make_script(
            "echo.cgi",
            "printf 'Content-Type: text/plain\\n\\n%s:' \"$REQUEST_METHOD\"\ncat",
        )

        response = client.request(method, "/cgi-bin/echo.cgi", content=b"field=value")

        assert response.status_code == 200
        assert response.content == f"{method}:field=value".encode()

    def test_head_and_options_reach_script(self, make_script, client):
        make_script("m.cgi", "printf 'X-Method: %s\\n\\n' \"$REQUEST_METHOD\"")

        assert client.head("/cgi-bin/m.cgi").headers["x-method"] == "HEAD"
        assert client.options("/cgi-bin/m.cgi").headers["x-method"] == "OPTIONS"

    def test_request_metadata(self, make_script, client):
        make_script(
            "meta.cgi",
            "printf 'Content-Type: text/plain\\n\\n'\n"
            "printf 'QS=%s\\n' \"$QUERY_STRING\"\n"
            "printf 'UA=%s\\n' \"$HTTP_USER_AGENT\"\n"
            "printf 'TRACE=%s\\n' \"$HTTP_X_TRACE_ID\"\n"
            "printf 'PATH_INFO=%s\\n' \"$PATH_INFO\"\n"
            "printf 'PROTO=%s\\n' \"$SERVER_PROTOCOL\"\n"
            "printf 'TYPE=%s\\n' \"$CONTENT_TYPE\"",
        )

        response = client.post(
            "/cgi-bin/meta.cgi?a=1&b=x%20y",
            headers={
                "User-Agent": "tester;1",
                "X-Trace-Id": "abc",
                "Content-Type": "application/json",
            },
            content=b"{}",
        )

        lines = response.text.splitlines()
        assert "QS=a=1&b=x%20y" in lines
        assert "UA=tester 1" in lines
        assert "TRACE=" in lines
        assert "PATH_INFO=meta.cgi" in lines
        assert "PROTO=HTTP/1.1" in lines
        assert "TYPE=application/json" in lines

    def test_nested_script(self, make_script, client):
        make_script("tools/ping.cgi", "printf 'Content-Type: text/plain\\n\\npong'")

        assert client.get("/cgi-bin/tools/ping.cgi").text == "pong"

    def test_raw_output_without_headers(self, make_script, client):
        make_script("raw.cgi", "printf 'no headers at all'")

        response = client.get("/cgi-bin/raw.cgi")

        assert response.status_code == 200
        assert response.content == b"no headers at all"

    @pytest.mark.slow
    def test_timeout(self, make_script, make_config):
        make_script("slow.cgi", "sleep 30")
        client = TestClient(create_app(make_config(script_timeout=0.5)))

        response = client.get("/cgi-bin/slow.cgi")

        assert response.status_code == 504
        assert response.text == "Script execution timed out\n"


# =============================================================================
# Error Response Tests
# =============================================================================


class TestErrorResponses:
    """Gateway-generated error responses."""

    def test_missing_script(self, client):
        response = client.get("/cgi-bin/missing.cgi")

        assert response.status_code == 404
        assert response.text == "Script not found\n"
        assert response.headers["content-type"] == "text/plain; charset=utf-8"
        assert response.headers["x-content-type-options"] == "nosniff"

    def test_disallowed_extension(self, client):
        assert client.get("/cgi-bin/index.php").status_code == 403

    def test_non_executable(self, make_script, client):
        make_script("plain.cgi", "echo", executable=False)

        response = client.get("/cgi-bin/plain.cgi")

        assert response.status_code == 403
        assert response.text == "Script is not executable\n"

    def test_bare_prefix_is_not_found(self, client):
        response = client.get("/cgi-bin/")

        assert response.status_code == 404
        assert response.text == "Script not found\n"

    def test_double_slash_rejected(self, hello_script, client):
        assert client.get("/cgi-bin//hello.cgi").status_code == 400

    def test_outside_prefix_not_routed(self, client):
        assert client.get("/other/hello.cgi").status_code == 404


# =============================================================================
# Application Wiring Tests
# =============================================================================


class TestApplication:
    """Tests for create_app()."""

    def test_healthz(self, client):
        response = client.get("/healthz")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_docs_disabled(self, client):
        assert client.get("/docs").status_code == 404
        assert client.get("/openapi.json").status_code == 404

    def test_config_on_state(self, gateway_config):
        app = create_app(gateway_config)

        assert app.state.config is gateway_config
        assert isinstance(app.state.handler, RequestHandler)

    def test_custom_prefix(self, gateway_config, make_config):
        handler = Mock(spec=RequestHandler)
        handler.handle = AsyncMock(return_value=CGIResponse(body=b"hi"))
        client = TestClient(create_app(make_config(cgi_prefix="/scripts"), handler=handler))

        response = client.get("/scripts/a/b.cgi?x=1", headers={"X-Forwarded-For": "203.0.113.9"})

        assert response.content == b"hi"
        request = handler.handle.call_args.args[0]
        assert request.path == "a/b.cgi"
        assert request.query_string == "x=1"
        assert request.method == "GET"
        assert request.get_header("x-forwarded-for") == "203.0.113.9"
        assert request.server_port == "80"
