"""Gateway configuration.

Built once at startup (CLI flags over an optional YAML file over defaults)
and shared read-only by every request. The model is frozen; nothing may
mutate it after construction.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import pydantic
import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from cgigate import __version__
from cgigate.core.errors import ConfigError

GATEWAY_INTERFACE = "CGI/1.1"
SERVER_SOFTWARE = f"cgigate/{__version__}"


class GatewayConfig(BaseModel):
    """Resolved gateway settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Listener
    host: str = "0.0.0.0"
    port: int = Field(default=8080, ge=1, le=65535)

    # Script resolution
    cgi_dir: Path = Path("./cgi-bin")
    cgi_prefix: str = "/cgi-bin/"
    allowed_extensions: tuple[str, ...] = (".cgi",)

    # Limits
    max_env_size: int = Field(default=4096, gt=0)
    script_timeout: float = Field(default=30.0, gt=0)  # seconds
    max_output_bytes: int = Field(default=10 * 1024 * 1024, gt=0)

    @field_validator("cgi_prefix")
    @classmethod
    def _normalize_prefix(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith("/"):
            value = "/" + value
        if not value.endswith("/"):
            value += "/"
        return value

    @field_validator("allowed_extensions", mode="before")
    @classmethod
    def _parse_extensions(cls, value: Any) -> Any:
        """Accept "a,b" strings or sequences; normalize to lowercase ".ext"."""
        if isinstance(value, str):
            value = value.split(",")
        if not isinstance(value, (list, tuple)):
            return value
        extensions = []
        for item in value:
            ext = str(item).strip().lower()
            if not ext:
                continue
            if not ext.startswith("."):
                ext = "." + ext
            if ext not in extensions:
                extensions.append(ext)
        if not extensions:
            raise ValueError("at least one allowed extension is required")
        return tuple(extensions)

    @property
    def cgi_root(self) -> Path:
        """Absolute script directory (lexical, symlinks not resolved)."""
        return Path(os.path.abspath(self.cgi_dir))


def load_config(path: Path | str | None = None, **overrides: Any) -> GatewayConfig:
    """Build a GatewayConfig from an optional YAML file plus overrides.

    The YAML file holds a ``gateway:`` mapping whose keys are GatewayConfig
    fields. Overrides whose value is None are ignored so unset CLI flags
    fall through to the file or the defaults.

    Raises:
        ConfigError: If the file is missing or unparsable, or a value fails
            validation.
    """
    values: dict[str, Any] = {}

    if path is not None:
        config_path = Path(path)
        try:
            with open(config_path) as f:
                document = yaml.safe_load(f) or {}
        except OSError as e:
            raise ConfigError(f"Cannot read config file '{config_path}': {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in '{config_path}': {e}") from e

        if not isinstance(document, dict):
            raise ConfigError(
                f"Invalid config file '{config_path}': expected a mapping, "
                f"got {type(document).__name__}"
            )
        section = document.get("gateway", {})
        if not isinstance(section, dict):
            raise ConfigError(f"Invalid config file '{config_path}': 'gateway' must be a mapping")
        values.update(section)

    values.update({key: value for key, value in overrides.items() if value is not None})

    try:
        return GatewayConfig(**values)
    except pydantic.ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(x) for x in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigError(f"Invalid configuration: {problems}") from e
