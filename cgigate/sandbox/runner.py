"""Execution of CGI scripts as subprocesses with a hard deadline.

One ExecutionSession per request owns the child process, its process group,
its three pipes and the stderr drainer task. ProcessRunner drives a session
inside the request's deadline.

SECURITY:
- The script is spawned as "./<basename>" from its own directory, so no PATH
  lookup can substitute another binary.
- The sanitized environment is the script's ENTIRE environment; nothing is
  inherited from the gateway process.
- The script leads a new process group. On deadline expiry or any other
  abnormal exit the whole group gets SIGKILL, even if the script itself has
  already exited, so children it spawned do not outlive the request.

Lifecycle: CREATED -> STARTED -> RUNNING -> COMPLETED | KILLED, or
CREATED -> START_FAILED when the pipes or the spawn fail.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import time
from collections.abc import AsyncIterable, AsyncIterator
from enum import Enum
from typing import Any

import psutil
from pydantic import BaseModel

from cgigate.core.config import GatewayConfig
from cgigate.core.errors import (
    RequestBodyError,
    ScriptExecutionError,
    ScriptOutputError,
    ScriptStartError,
    ScriptTimeoutError,
)
from cgigate.core.models import EnvironmentSet, RequestBody
from cgigate.core.paths import ScriptReference
from cgigate.core.sanitize import strip_control_characters

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024
# Longest stderr line logged; longer lines are discarded.
STDERR_LINE_LIMIT = 64 * 1024
# How long close() waits for pipes and the drainer after the child is gone.
CLEANUP_GRACE_SECONDS = 2.0


class SessionState(str, Enum):
    """Lifecycle state of an execution session."""

    CREATED = "created"
    STARTED = "started"
    RUNNING = "running"
    COMPLETED = "completed"
    KILLED = "killed"
    START_FAILED = "start_failed"


class ExecutionResult(BaseModel):
    """Result of a completed script run."""

    returncode: int
    stdout: bytes
    duration_seconds: float


def _kill_process_tree(pid: int) -> None:
    """Kill a process and all of its descendants (non-POSIX fallback)."""
    try:
        parent = psutil.Process(pid)
        children = parent.children(recursive=True)
    except psutil.NoSuchProcess:
        return
    for proc in [*children, parent]:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            continue


async def _read_body(body: AsyncIterable[bytes]) -> AsyncIterator[bytes]:
    """Re-yield body chunks, turning a failing source into RequestBodyError."""
    iterator = aiter(body)
    while True:
        try:
            chunk = await anext(iterator)
        except StopAsyncIteration:
            return
        except Exception as e:
            raise RequestBodyError(f"error reading request body: {e}") from e
        yield chunk


class ExecutionSession:
    """A single script invocation.

    Use as an async context manager: leaving the block kills the process group
    if the child is still alive, and whenever the block exits with an
    exception, even after the leader itself has exited. It then reaps the
    child, joins the stderr drainer and releases every pipe.
    """

    def __init__(
        self,
        script: ScriptReference,
        env: EnvironmentSet,
        max_output_bytes: int,
    ) -> None:
        self.script = script
        self.env = env
        self.max_output_bytes = max_output_bytes
        self.state = SessionState.CREATED
        self.process: asyncio.subprocess.Process | None = None
        self.pgid: int | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._started_at = 0.0

    async def __aenter__(self) -> ExecutionSession:
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.close(abandoned=exc_type is not None)

    @property
    def pid(self) -> int | None:
        return self.process.pid if self.process is not None else None

    async def start(self) -> None:
        """Spawn the script with piped stdio in a new process group.

        Raises:
            ScriptStartError: Pipe creation or spawn failed. Nothing is left
                running.
        """
        kwargs: dict[str, Any] = {}
        if os.name == "posix":
            kwargs["start_new_session"] = True
        else:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP

        try:
            self.process = await asyncio.create_subprocess_exec(
                self.script.executable,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.script.directory,
                env=self.env.to_process_env(),
                limit=STDERR_LINE_LIMIT,
                **kwargs,
            )
        except (OSError, ValueError) as e:
            self.state = SessionState.START_FAILED
            raise ScriptStartError(f"failed to start script {self.script.path}: {e}") from e

        self.state = SessionState.STARTED
        self._started_at = time.monotonic()
        self.pgid = self._lookup_pgid(self.process.pid)
        self._stderr_task = asyncio.create_task(
            self._drain_stderr(), name=f"cgi-stderr-{self.process.pid}"
        )

    def _require_process(self) -> asyncio.subprocess.Process:
        if self.process is None:
            raise ScriptExecutionError(f"script {self.script.path} has not been started")
        return self.process

    @staticmethod
    def _lookup_pgid(pid: int) -> int | None:
        if os.name != "posix":
            return None
        try:
            return os.getpgid(pid)
        except ProcessLookupError:
            # Already exited; as a session leader its group id was its pid.
            return pid

    async def feed(self, body: RequestBody) -> None:
        """Stream the request body to stdin, then close stdin.

        A script that exits or closes stdin early is not an error: the write is
        abandoned and logged.

        Raises:
            RequestBodyError: The body source failed, e.g. the client
                disconnected mid-upload.
        """
        stdin = self._require_process().stdin
        if stdin is None:
            raise ScriptExecutionError(f"script {self.script.path} has no stdin pipe")
        self.state = SessionState.RUNNING

        try:
            if isinstance(body, (bytes, bytearray)):
                if body:
                    stdin.write(body)
                    await stdin.drain()
            elif body is not None:
                async for chunk in _read_body(body):
                    if chunk:
                        stdin.write(chunk)
                        await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.warning("Error copying request body to %s: %s", self.script.path, e)
        finally:
            stdin.close()

        try:
            await stdin.wait_closed()
        except (BrokenPipeError, ConnectionResetError):
            pass

    async def collect(self) -> ExecutionResult:
        """Read stdout to EOF and wait for the script to exit.

        Raises:
            ScriptOutputError: Output exceeded ``max_output_bytes``; the process
                group is killed.
        """
        process = self._require_process()
        stdout = process.stdout
        if stdout is None:
            raise ScriptExecutionError(f"script {self.script.path} has no stdout pipe")
        chunks: list[bytes] = []
        total = 0

        while True:
            chunk = await stdout.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            total += len(chunk)
            if total > self.max_output_bytes:
                self.terminate()
                raise ScriptOutputError(
                    f"script {self.script.path} produced more than "
                    f"{self.max_output_bytes} bytes of output"
                )
            chunks.append(chunk)

        returncode = await process.wait()
        if self.state is SessionState.RUNNING:
            self.state = SessionState.COMPLETED
        if returncode != 0:
            logger.info("Script %s exited with status %d", self.script.path, returncode)

        return ExecutionResult(
            returncode=returncode,
            stdout=b"".join(chunks),
            duration_seconds=time.monotonic() - self._started_at,
        )

    def terminate(self) -> None:
        """Forcefully kill the script and every process in its group.

        Always SIGKILL, never a graceful terminate first. Safe to call more
        than once and after the child has exited.
        """
        if self.process is None:
            return

        logger.warning(
            "Force killing process group %s (PID %s) of %s",
            self.pgid,
            self.process.pid,
            self.script.path,
        )
        if self.pgid is not None:
            try:
                os.killpg(self.pgid, signal.SIGKILL)
            except ProcessLookupError:
                pass  # group already empty
            except PermissionError as e:
                logger.error("Cannot kill process group %s: %s", self.pgid, e)
                if self.process.returncode is None:
                    self.process.kill()
        else:
            _kill_process_tree(self.process.pid)

        self.state = SessionState.KILLED

    async def close(self, abandoned: bool = False) -> None:
        """Kill if still running, reap, join the drainer and release pipes.

        With ``abandoned`` the process group is killed even if the leader has
        already exited: a background descendant may still hold the pipes.
        """
        if self.process is None:
            return

        if self.state is not SessionState.KILLED and (
            abandoned or self.process.returncode is None
        ):
            self.terminate()

        if self.process.stdin is not None and not self.process.stdin.is_closing():
            self.process.stdin.close()

        try:
            await asyncio.wait_for(self._release(), CLEANUP_GRACE_SECONDS)
        except TimeoutError:
            # A descendant that left the process group still holds a pipe.
            logger.warning(
                "Pipes of %s (PID %s) still open %.1fs after exit; abandoning",
                self.script.path,
                self.process.pid,
                CLEANUP_GRACE_SECONDS,
            )

    async def _release(self) -> None:
        process = self._require_process()
        await process.wait()
        if process.stdout is not None:
            # Discard anything unread so the pipe reaches EOF and is closed.
            while await process.stdout.read(READ_CHUNK_SIZE):
                pass
        if self._stderr_task is not None:
            await self._stderr_task

    async def _drain_stderr(self) -> None:
        """Log each stderr line; it never reaches the HTTP response."""
        stream = self._require_process().stderr
        if stream is None:
            return

        while True:
            try:
                line = await stream.readline()
            except ValueError:
                logger.warning(
                    "CGI stderr [%s]: line longer than %d bytes discarded",
                    self.script.name,
                    STDERR_LINE_LIMIT,
                )
                continue
            if not line:
                break
            text = strip_control_characters(line.decode("utf-8", errors="replace"))
            logger.info("CGI stderr [%s]: %s", self.script.name, text)


class ProcessRunner:
    """Run scripts under the configured deadline and output limit."""

    def __init__(self, config: GatewayConfig) -> None:
        self.config = config

    def create_session(self, script: ScriptReference, env: EnvironmentSet) -> ExecutionSession:
        return ExecutionSession(script, env, max_output_bytes=self.config.max_output_bytes)

    async def run(
        self,
        script: ScriptReference,
        env: EnvironmentSet,
        body: RequestBody = None,
    ) -> ExecutionResult:
        """Run a script to completion and return its buffered stdout.

        stdin is fully written (or abandoned) and closed before stdout is read.
        The deadline covers spawn, body upload, output collection and exit.

        Raises:
            ScriptStartError: The script could not be spawned.
            ScriptTimeoutError: The deadline expired; the group was killed.
            ScriptOutputError: Output exceeded the configured ceiling.
            ScriptExecutionError: Any other I/O failure while running.
        """
        session = self.create_session(script, env)
        deadline = asyncio.timeout(self.config.script_timeout)

        try:
            async with deadline:
                async with session:
                    await session.start()
                    await session.feed(body)
                    return await session.collect()
        except TimeoutError as e:
            if deadline.expired():
                raise ScriptTimeoutError(str(script.path), self.config.script_timeout) from e
            raise ScriptExecutionError(f"error executing script {script.path}: {e}") from e
        except OSError as e:
            raise ScriptExecutionError(f"error executing script {script.path}: {e}") from e
