"""Translation of CGI script output into an HTTP response.

The script's stdout is fully buffered before translation: an optional block
of "Name: value" lines, a blank line, then the raw body.
"""

from __future__ import annotations

import logging
import re

from cgigate.core.models import CGIResponse

logger = logging.getLogger(__name__)

DEFAULT_STATUS = 200

_SEPARATORS = (b"\r\n\r\n", b"\n\n")

_HEADER_NAME = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")
_INVALID_VALUE_CHARS = re.compile(r"[\x00\r\n]")


def find_body_start(data: bytes) -> int | None:
    """Offset of the first body byte, or None if there is no header block.

    A CRLF-CRLF separator is looked for first, LF-LF only if there is none.
    """
    for separator in _SEPARATORS:
        index = data.find(separator)
        if index != -1:
            return index + len(separator)
    return None


def parse_status(value: str) -> int | None:
    """Status code from a ``Status: <code> <reason>`` value, if valid."""
    token = value.split(" ", 1)[0].strip()
    try:
        code = int(token)
    except ValueError:
        return None
    if not 100 <= code <= 599:
        return None
    return code


def parse_header_block(block: str) -> tuple[int, list[tuple[str, str]]]:
    """Parse header lines into (status, headers).

    Parsing stops at the first blank line or the first line that is not a
    "Name: value" pair with a valid header name.
    ``Status`` is absorbed into the status code and not returned as a header.
    """
    status = DEFAULT_STATUS
    headers: list[tuple[str, str]] = []

    for raw_line in block.split("\n"):
        line = raw_line.rstrip("\r")
        if not line.strip():
            break
        name, sep, value = line.partition(":")
        if not sep or not _HEADER_NAME.match(name.strip()):
            logger.debug("Header parsing stopped at unparsable line: %r", line[:80])
            break
        name = name.strip()
        value = value.strip()

        if name.lower() == "status":
            code = parse_status(value)
            if code is None:
                logger.warning("Ignoring invalid Status header from script: %r", value[:80])
            else:
                status = code
            continue

        if _INVALID_VALUE_CHARS.search(value):
            logger.warning("Dropping header %s with invalid characters in its value", name)
            continue

        headers.append((name, value))

    return status, headers


def parse_cgi_output(data: bytes) -> CGIResponse:
    """Translate a script's complete stdout into a CGIResponse.

    Output with no blank-line separator is treated as a bare body: no headers
    and status 200.
    """
    body_start = find_body_start(data)
    if body_start is None:
        return CGIResponse(status_code=DEFAULT_STATUS, headers=[], body=data)

    status, headers = parse_header_block(data[:body_start].decode("latin-1"))
    return CGIResponse(status_code=status, headers=headers, body=data[body_start:])
