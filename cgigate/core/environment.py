"""CGI environment construction.

Builds the complete environment for a script from the request. Nothing from
the gateway's own process environment is inherited. Only allow-listed
request headers are mirrored as HTTP_* variables, which keeps attacker
controlled header names from setting variables such as LD_PRELOAD or
PYTHONPATH.
"""

from __future__ import annotations

from cgigate.core.config import GATEWAY_INTERFACE, SERVER_SOFTWARE, GatewayConfig
from cgigate.core.errors import EnvironmentLimitError
from cgigate.core.models import CGIRequest, EnvironmentSet
from cgigate.core.paths import ScriptReference
from cgigate.core.sanitize import sanitize

# Normalized names (uppercase, "-" -> "_") of headers mirrored as HTTP_<NAME>.
ALLOWED_HEADERS = frozenset(
    {
        "ACCEPT",
        "ACCEPT_CHARSET",
        "ACCEPT_ENCODING",
        "ACCEPT_LANGUAGE",
        "AUTHORIZATION",
        "CONTENT_LENGTH",
        "CONTENT_TYPE",
        "COOKIE",
        "HOST",
        "REFERER",
        "USER_AGENT",
        "X_FORWARDED_FOR",
    }
)

# Passed through unsanitized: never read by a shell, and legitimate query
# syntax uses characters the sanitizer would blank out.
UNSANITIZED_VARIABLES = frozenset({"QUERY_STRING"})


def normalize_header_name(name: str) -> str:
    return name.upper().replace("-", "_")


def client_address(request: CGIRequest) -> str:
    """Prefer the X-Forwarded-For header, fall back to the peer address."""
    return request.get_header("X-Forwarded-For") or request.remote_addr


def _check_size(name: str, value: str, limit: int) -> None:
    if len(value) > limit:
        raise EnvironmentLimitError(name, len(value), limit)


def build_environment(
    request: CGIRequest,
    script: ScriptReference,
    config: GatewayConfig,
) -> EnvironmentSet:
    """Build the environment for one script invocation.

    Any value longer than ``config.max_env_size`` fails the whole build; values
    are never truncated.

    Raises:
        EnvironmentLimitError: Naming the first variable over the limit.
    """
    env = EnvironmentSet()
    env.add("GATEWAY_INTERFACE", GATEWAY_INTERFACE)
    env.add("SERVER_SOFTWARE", SERVER_SOFTWARE)

    variables = [
        ("SERVER_NAME", request.host),
        ("SERVER_PROTOCOL", request.protocol),
        ("SERVER_PORT", request.server_port),
        ("REQUEST_METHOD", request.method),
        ("PATH_INFO", request.path),
        ("SCRIPT_NAME", config.cgi_prefix + script.name),
        ("QUERY_STRING", request.query_string),
        ("REMOTE_ADDR", client_address(request)),
        ("CONTENT_LENGTH", request.get_header("Content-Length") or ""),
        ("CONTENT_TYPE", request.get_header("Content-Type") or ""),
    ]

    for name, value in variables:
        _check_size(name, value, config.max_env_size)
        if name not in UNSANITIZED_VARIABLES:
            value = sanitize(value)
        env.add(name, value)

    for header, value in request.headers:
        # Underscored names would alias their hyphenated counterparts.
        if "_" in header:
            continue
        normalized = normalize_header_name(header)
        if normalized not in ALLOWED_HEADERS:
            continue
        name = f"HTTP_{normalized}"
        _check_size(name, value, config.max_env_size)
        env.add(name, sanitize(value))

    return env
