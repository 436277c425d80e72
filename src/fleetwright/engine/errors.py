# Copyright (c) 2024 Fleetwright Contributors
# MIT License

"""
Fleetwright Error Classes.

A closed taxonomy of failures. Every error raised while running a task is
scoped to one host; retry and fatal classification is structural (the
``transient`` flag on connection errors), never derived from message text.
"""

from __future__ import annotations

import enum
from typing import Optional


class ExitCode(enum.IntEnum):
    """Process exit codes produced by a run."""

    SUCCESS = 0
    GENERIC_ERROR = 1
    HOST_FAILED = 2
    INVALID_INPUT = 3
    KEYBOARD_INTERRUPT = 130


class FleetwrightError(Exception):
    """Base exception for all Fleetwright errors."""

    exit_code: int = ExitCode.GENERIC_ERROR

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        host: Optional[str] = None,
        task: Optional[str] = None,
    ) -> None:
        self.message = message
        self.details = details
        self.host = host
        self.task = task
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}\n  Details: {self.details}"
        return self.message

    def with_context(self, host: Optional[str] = None, task: Optional[str] = None) -> "FleetwrightError":
        """Attach host/task context if not already present and return self."""
        if self.host is None:
            self.host = host
        if self.task is None:
            self.task = task
        return self


class InventoryError(FleetwrightError):
    """Invalid inventory structure (unknown names, group cycles)."""

    exit_code: int = ExitCode.INVALID_INPUT


class PlaybookError(FleetwrightError):
    """Invalid play or task definition (unknown module, bad keys)."""

    exit_code: int = ExitCode.INVALID_INPUT


class ValidationError(FleetwrightError):
    """Bad task parameters. Raised before any connection use."""

    exit_code: int = ExitCode.HOST_FAILED

    def __init__(self, module: str, message: str, **context) -> None:
        self.module = module
        super().__init__(f"Invalid parameters for '{module}': {message}", **context)


class ExpressionError(FleetwrightError):
    """Template or condition could not be evaluated."""

    exit_code: int = ExitCode.HOST_FAILED

    def __init__(
        self,
        message: str,
        template: Optional[str] = None,
        **context,
    ) -> None:
        self.template = template

        details = None
        if template:
            # Truncate long templates
            truncated = template[:100] + "..." if len(template) > 100 else template
            details = f"Template: {truncated}"

        super().__init__(message, details, **context)


class UndefinedVariable(ExpressionError):
    """A template referenced a variable that is not defined."""

    def __init__(self, message: str, template: Optional[str] = None, **context) -> None:
        super().__init__(f"Undefined variable: {message}", template, **context)


class ConnectionError(FleetwrightError):
    """
    Transport-level failure talking to a host.

    ``transient`` marks failures worth retrying (timeouts, dropped sessions).
    Persistent failures (session establishment, authentication) fail the host
    for the remainder of the play.
    """

    exit_code: int = ExitCode.HOST_FAILED

    def __init__(
        self,
        host: str,
        message: str,
        connection_type: Optional[str] = None,
        transient: bool = False,
        details: Optional[str] = None,
    ) -> None:
        self.connection_type = connection_type
        self.transient = transient
        conn_info = f" ({connection_type})" if connection_type else ""
        super().__init__(
            f"Connection to {host}{conn_info} failed: {message}",
            details,
            host=host,
        )


class TransferError(ConnectionError):
    """A file could not be transferred to or from a host."""

    def __init__(
        self,
        host: str,
        path: str,
        message: str,
        connection_type: Optional[str] = None,
        transient: bool = False,
    ) -> None:
        self.path = path
        super().__init__(
            host,
            f"transfer of {path} failed: {message}",
            connection_type=connection_type,
            transient=transient,
        )


class ExecutionError(FleetwrightError):
    """A module reported failure (non-zero exit, resource conflict)."""

    exit_code: int = ExitCode.HOST_FAILED

    def __init__(
        self,
        module: str,
        message: str,
        rc: Optional[int] = None,
        stdout: Optional[str] = None,
        stderr: Optional[str] = None,
        **context,
    ) -> None:
        self.module = module
        self.rc = rc
        self.stdout = stdout
        self.stderr = stderr

        details_parts = []
        if rc is not None:
            details_parts.append(f"rc={rc}")
        if stderr:
            details_parts.append(f"stderr: {stderr[:200]}")

        super().__init__(
            f"Module '{module}' failed: {message}",
            "; ".join(details_parts) if details_parts else None,
            **context,
        )


def is_transient(error: BaseException) -> bool:
    """Return True if ``error`` is a connection failure worth retrying."""
    return isinstance(error, ConnectionError) and error.transient
