"""Request, environment and response models passed between gateway stages."""

from __future__ import annotations

from collections.abc import AsyncIterable, Iterator
from dataclasses import dataclass, field

RequestBody = bytes | AsyncIterable[bytes] | None


@dataclass
class CGIRequest:
    """Transport-neutral view of an inbound HTTP request.

    ``path`` is the URL path tail after the gateway prefix has been stripped,
    ``query_string`` the raw (undecoded) query. Headers keep their arrival
    order and one entry per instance.
    """

    method: str
    path: str
    query_string: str = ""
    headers: list[tuple[str, str]] = field(default_factory=list)
    protocol: str = "HTTP/1.1"
    server_port: str = ""
    remote_addr: str = ""
    body: RequestBody = None

    def get_header(self, name: str) -> str | None:
        """First value of a header, case-insensitive."""
        lowered = name.lower()
        for key, value in self.headers:
            if key.lower() == lowered:
                return value
        return None

    @property
    def host(self) -> str:
        return self.get_header("Host") or ""


# Separator used when several entries share a name in the process environment.
_JOINERS = {"HTTP_COOKIE": "; "}


@dataclass
class EnvironmentSet:
    """Ordered NAME=VALUE entries handed to a script as its whole environment."""

    entries: list[tuple[str, str]] = field(default_factory=list)

    def add(self, name: str, value: str) -> None:
        self.entries.append((name, value))

    def names(self) -> list[str]:
        return [name for name, _ in self.entries]

    def get_all(self, name: str) -> list[str]:
        return [value for key, value in self.entries if key == name]

    def get(self, name: str) -> str | None:
        values = self.get_all(name)
        return values[0] if values else None

    def __iter__(self) -> Iterator[tuple[str, str]]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def to_process_env(self) -> dict[str, str]:
        """Collapse entries into the mapping a subprocess receives.

        Repeated names (multi-valued headers) are joined in arrival order,
        with ", " or, for cookies, "; ".
        """
        env: dict[str, str] = {}
        for name, value in self.entries:
            if name in env:
                env[name] = env[name] + _JOINERS.get(name, ", ") + value
            else:
                env[name] = value
        return env

    def render(self) -> list[str]:
        return [f"{name}={value}" for name, value in self.entries]


@dataclass
class CGIResponse:
    """Status, headers and body produced from a script's output.

    Headers are an ordered list of (name, value) pairs so repeatable headers
    such as Set-Cookie keep every instance. Name case is preserved as
    supplied; lookups are case-insensitive.
    """

    status_code: int = 200
    headers: list[tuple[str, str]] = field(default_factory=list)
    body: bytes = b""

    def get_header(self, name: str) -> str | None:
        values = self.get_all(name)
        return values[-1] if values else None

    def get_all(self, name: str) -> list[str]:
        lowered = name.lower()
        return [value for key, value in self.headers if key.lower() == lowered]

    @classmethod
    def error(cls, status_code: int, message: str) -> CGIResponse:
        """Plain-text error response generated by the gateway itself."""
        return cls(
            status_code=status_code,
            headers=[
                ("Content-Type", "text/plain; charset=utf-8"),
                ("X-Content-Type-Options", "nosniff"),
            ],
            body=(message + "\n").encode("utf-8"),
        )
