"""HTTP surface of the gateway."""

from cgigate.server.app import create_app

__all__ = ["create_app"]
