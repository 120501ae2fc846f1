"""Core request-execution pipeline of the gateway."""

from cgigate.core.config import GatewayConfig, load_config
from cgigate.core.errors import ConfigError, GatewayError
from cgigate.core.models import CGIRequest, CGIResponse, EnvironmentSet

__all__ = [
    "CGIRequest",
    "CGIResponse",
    "ConfigError",
    "EnvironmentSet",
    "GatewayConfig",
    "GatewayError",
    "load_config",
]
