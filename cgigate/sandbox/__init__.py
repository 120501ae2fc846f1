"""Subprocess execution of CGI scripts."""

from cgigate.sandbox.runner import ExecutionResult, ExecutionSession, ProcessRunner

__all__ = ["ExecutionResult", "ExecutionSession", "ProcessRunner"]
