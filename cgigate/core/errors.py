"""Gateway exceptions and their HTTP status mapping.

Every failure the request handler can turn into a response derives from
GatewayError. The class carries the status code, the fixed text sent to the
client, and the level the handler logs it at. The message passed to the
constructor is for the operational log only and never reaches the client.
"""

from __future__ import annotations

import logging


class ConfigError(Exception):
    """Invalid gateway configuration."""

    pass


class GatewayError(Exception):
    """Base class for failures mapped to an HTTP response."""

    status_code: int = 500
    public_message: str = "Internal server error"
    log_level: int = logging.ERROR


# --- Path validation (never reach the process runner) ---


class UnsafePathError(GatewayError):
    """Request path contains traversal segments or other lexical tricks."""

    status_code = 400
    public_message = "Invalid path"
    log_level = logging.WARNING


class PathEscapeError(GatewayError):
    """Resolved script path falls outside the script directory."""

    status_code = 403
    public_message = "Invalid script path"
    log_level = logging.WARNING


class ExtensionNotAllowedError(GatewayError):
    """Script extension is not in the allow-list."""

    status_code = 403
    public_message = "Script type not allowed"
    log_level = logging.WARNING


class ScriptNotFoundError(GatewayError):
    """Script does not exist."""

    status_code = 404
    public_message = "Script not found"
    log_level = logging.INFO


class ScriptAccessError(GatewayError):
    """Script could not be inspected (permission or I/O error)."""

    status_code = 500
    public_message = "Internal server error"


class NotAScriptError(GatewayError):
    """Target exists but is not a regular file."""

    status_code = 403
    public_message = "Not a valid script"
    log_level = logging.WARNING


class ScriptNotExecutableError(GatewayError):
    """Target is a regular file without any executable bit (misconfiguration)."""

    status_code = 403
    public_message = "Script is not executable"
    log_level = logging.WARNING


# --- Environment ---


class EnvironmentLimitError(GatewayError):
    """A generated environment value exceeds the configured size limit."""

    status_code = 400
    public_message = "Invalid request data"
    log_level = logging.WARNING

    def __init__(self, name: str, size: int, limit: int):
        self.name = name
        self.size = size
        self.limit = limit
        super().__init__(
            f"environment variable {name} is {size} characters, "
            f"exceeds maximum allowed size {limit}"
        )


# --- Execution ---


class ScriptExecutionError(GatewayError):
    """Script ran but its execution or output failed."""

    status_code = 500
    public_message = "Error executing script"


class ScriptStartError(ScriptExecutionError):
    """Pipes could not be created or the script could not be spawned."""

    pass


class ScriptOutputError(ScriptExecutionError):
    """Script produced more output than the gateway buffers."""

    pass


class RequestBodyError(ScriptExecutionError):
    """The request body could not be read (e.g. the client disconnected)."""

    log_level = logging.WARNING


class ScriptTimeoutError(GatewayError):
    """Script exceeded the execution deadline and its process group was killed."""

    status_code = 504
    public_message = "Script execution timed out"
    log_level = logging.WARNING

    def __init__(self, script: str, timeout: float):
        self.script = script
        self.timeout = timeout
        super().__init__(f"script timed out after {timeout}s: {script}")
