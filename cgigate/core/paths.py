"""Script path validation.

Turns the URL path tail into a ScriptReference, rejecting anything that is
not an allow-listed, executable regular file lexically inside the script
directory. Containment is a prefix check on lexical absolute paths;
symlinks inside the directory are not canonicalized.
"""

from __future__ import annotations

import os
import posixpath
import stat
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from cgigate.core.config import GatewayConfig
from cgigate.core.errors import (
    ExtensionNotAllowedError,
    NotAScriptError,
    PathEscapeError,
    ScriptAccessError,
    ScriptNotExecutableError,
    ScriptNotFoundError,
    UnsafePathError,
)


@dataclass(frozen=True)
class ScriptReference:
    """A validated script.

    Attributes:
        name: Path tail as requested (relative to the URL prefix).
        path: Absolute path of the script inside the script directory.
    """

    name: str
    path: Path

    @property
    def directory(self) -> Path:
        return self.path.parent

    @property
    def executable(self) -> str:
        """Relative, basename-only reference used to spawn the script."""
        return "./" + self.path.name


def _clean(path: str) -> str:
    """Lexically clean an absolute slash path.

    Like posixpath.normpath, except that a leading "//" collapses to "/".
    """
    cleaned = posixpath.normpath(path)
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


def is_path_safe(path: str) -> bool:
    """Return True if the root-anchored form of ``path`` cleans to itself.

    Any "..", ".", repeated slash, trailing slash or absolute-path trick makes
    the cleaned form differ from the literal input and is rejected.
    """
    anchored = "/" + path
    return _clean(anchored) == anchored


def has_allowed_extension(path: str | Path, allowed: tuple[str, ...]) -> bool:
    """Check the file extension (case-insensitive) against the allow-list."""
    ext = os.path.splitext(str(path))[1].lower()
    return ext in allowed


def is_executable(mode: int) -> bool:
    return bool(mode & (stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH))


def resolve_script(path: str, config: GatewayConfig) -> ScriptReference:
    """Validate a request path tail and resolve it to a script.

    Checks run in order: lexical safety, containment, extension, existence,
    file type, executable bit. The lexical check runs before any filesystem
    access.

    Raises:
        UnsafePathError: Traversal segments or other lexical tricks.
        ScriptNotFoundError: Empty path, or nothing at that path.
        PathEscapeError: Resolved path is not strictly inside the root.
        ExtensionNotAllowedError: Extension not in the allow-list.
        ScriptAccessError: The path could not be inspected.
        NotAScriptError: Not a regular file.
        ScriptNotExecutableError: No executable bit set.
    """
    if not is_path_safe(path):
        raise UnsafePathError(f"Rejected unsafe path: {path}")
    if not path:
        raise ScriptNotFoundError("No script named in request path")

    root = config.cgi_root
    try:
        script_path = Path(os.path.abspath(os.path.join(root, path)))
    except (OSError, ValueError) as e:
        raise PathEscapeError(f"Cannot resolve script path {path}: {e}") from e

    if not str(script_path).startswith(str(root) + os.sep):
        raise PathEscapeError(f"Directory traversal attempt detected: {script_path}")

    if not has_allowed_extension(script_path, config.allowed_extensions):
        raise ExtensionNotAllowedError(
            f"Rejected script with disallowed extension: {script_path}"
        )

    try:
        info = script_path.stat()
    except (FileNotFoundError, NotADirectoryError, ValueError) as e:
        raise ScriptNotFoundError(f"Script not found: {script_path}") from e
    except OSError as e:
        raise ScriptAccessError(f"Error accessing script {script_path}: {e}") from e

    if not stat.S_ISREG(info.st_mode):
        raise NotAScriptError(f"Not a regular file: {script_path}")

    if not is_executable(info.st_mode):
        raise ScriptNotExecutableError(
            f"Script {script_path} is not executable (check its permissions)"
        )

    return ScriptReference(name=path, path=script_path)


def iter_scripts(config: GatewayConfig) -> Iterator[tuple[str, Path, bool]]:
    """Yield (url_name, path, executable) for every servable candidate.

    Walks the script directory for regular files with an allowed extension,
    in sorted order. Hidden files and directories are skipped.
    """
    root = config.cgi_root
    if not root.is_dir():
        return

    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
        for filename in sorted(filenames):
            if filename.startswith(".") or not has_allowed_extension(
                filename, config.allowed_extensions
            ):
                continue
            file_path = Path(dirpath) / filename
            try:
                info = file_path.stat()
            except OSError:
                continue
            if not stat.S_ISREG(info.st_mode):
                continue
            url_name = file_path.relative_to(root).as_posix()
            yield url_name, file_path, is_executable(info.st_mode)
