"""Request orchestration: validate, build environment, run, translate.

Every GatewayError raised along the way ends up here and becomes a short
plain-text error response. Validation failures are raised before the
process runner is involved, so no subprocess is ever started for them.
"""

from __future__ import annotations

import logging

from cgigate.core.config import GatewayConfig
from cgigate.core.environment import build_environment
from cgigate.core.errors import GatewayError
from cgigate.core.models import CGIRequest, CGIResponse
from cgigate.core.paths import resolve_script
from cgigate.core.response import parse_cgi_output
from cgigate.core.sanitize import strip_control_characters
from cgigate.sandbox.runner import ProcessRunner

logger = logging.getLogger(__name__)


class RequestHandler:
    """Single entry point used by the HTTP layer."""

    def __init__(self, config: GatewayConfig, runner: ProcessRunner | None = None) -> None:
        self.config = config
        self.runner = runner or ProcessRunner(config)

    async def handle(self, request: CGIRequest) -> CGIResponse:
        """Execute the script addressed by ``request`` and return its response."""
        try:
            script = resolve_script(request.path, self.config)
            env = build_environment(request, script, self.config)
            result = await self.runner.run(script, env, request.body)
        except GatewayError as e:
            self._log_failure(request, e)
            return CGIResponse.error(e.status_code, e.public_message)

        logger.debug(
            "%s %s -> exit %d in %.3fs (%d bytes)",
            request.method,
            script.name,
            result.returncode,
            result.duration_seconds,
            len(result.stdout),
        )
        return parse_cgi_output(result.stdout)

    def _log_failure(self, request: CGIRequest, error: GatewayError) -> None:
        # Messages can embed request paths; keep control characters out of the log.
        logger.log(
            error.log_level,
            "%s %s: %s [%d %s]",
            strip_control_characters(request.method),
            strip_control_characters(self.config.cgi_prefix + request.path),
            strip_control_characters(str(error)),
            error.status_code,
            type(error).__name__,
        )
