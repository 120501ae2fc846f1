# conftest.py - Shared pytest fixtures for all tests
"""Shared pytest fixtures for the cgigate test suite.

This module provides:
- A temporary cgi-bin directory and a factory for executable /bin/sh scripts
- Gateway configurations pointing at that directory
- Request builders for the transport-neutral CGIRequest model

Scripts assign PATH themselves because the gateway hands them an
environment that contains nothing but CGI variables.
"""

from __future__ import annotations

import os
import stat
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from cgigate.core.config import GatewayConfig
from cgigate.core.models import CGIRequest

SCRIPT_PREAMBLE = "#!/bin/sh\nPATH=/usr/local/bin:/usr/bin:/bin\n"


# =============================================================================
# Script Directory Fixtures
# =============================================================================


@pytest.fixture
def cgi_dir(tmp_path: Path) -> Path:
    """Create an empty cgi-bin directory inside tmp_path."""
    directory = tmp_path / "cgi-bin"
    directory.mkdir()
    return directory


@pytest.fixture
def make_script(cgi_dir: Path) -> Callable[..., Path]:
    """Factory writing a shell script into the cgi-bin directory.

    Example:
        def test_something(make_script):
            make_script("hello.cgi", "printf 'Content-Type: text/plain\\n\\nHello'")
    """

    def _make(
        name: str,
        body: str,
        executable: bool = True,
        preamble: str = SCRIPT_PREAMBLE,
    ) -> Path:
        path = cgi_dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(preamble + body + "\n")
        mode = stat.S_IRUSR | stat.S_IWUSR | stat.S_IRGRP | stat.S_IROTH
        if executable:
            mode |= stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH
        os.chmod(path, mode)
        return path

    return _make


@pytest.fixture
def hello_script(make_script) -> Path:
    """The canonical hello-world script."""
    return make_script("hello.cgi", "printf 'Content-Type: text/plain\\n\\nHello'")


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def make_config(cgi_dir: Path) -> Callable[..., GatewayConfig]:
    """Factory for configs rooted at the temporary cgi-bin directory."""

    def _make(**overrides: Any) -> GatewayConfig:
        values: dict[str, Any] = {"cgi_dir": cgi_dir, "script_timeout": 5.0}
        values.update(overrides)
        return GatewayConfig(**values)

    return _make


@pytest.fixture
def gateway_config(make_config) -> GatewayConfig:
    """Default test configuration (5s deadline)."""
    return make_config()


# =============================================================================
# Request Fixtures
# =============================================================================


@pytest.fixture
def make_request() -> Callable[..., CGIRequest]:
    """Factory for CGIRequest with sensible defaults."""

    def _make(path: str = "hello.cgi", **kwargs: Any) -> CGIRequest:
        kwargs.setdefault("method", "GET")
        kwargs.setdefault("headers", [("host", "example.test:8080")])
        kwargs.setdefault("server_port", "8080")
        kwargs.setdefault("remote_addr", "192.0.2.10")
        return CGIRequest(path=path, **kwargs)

    return _make


# =============================================================================
# Pytest Configuration
# =============================================================================


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line("markers", "posix: marks tests that spawn real /bin/sh scripts")


def pytest_collection_modifyitems(config, items):
    """Skip script-spawning tests where /bin/sh and process groups are unavailable."""
    if os.name == "posix" and sys.platform != "cygwin":
        return
    skip_posix = pytest.mark.skip(reason="requires a POSIX system")
    for item in items:
        if "posix" in item.keywords:
            item.add_marker(skip_posix)
