"""Harness error taxonomy.

Process-level and connection-level errors are the object under test, so they
are surfaced to the calling scenario as-is and never retried silently.
"""

from typing import Any, Dict, Optional


class HarnessError(Exception):
    """Base harness error with user-friendly messages."""

    def __init__(
        self,
        message: str,
        suggestion: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.suggestion = suggestion
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class StartupFailure(HarnessError):
    """Server process exited before it became ready."""

    def __init__(
        self,
        message: str,
        output: str = "",
        exit_code: Optional[int] = None,
        lock_contention: bool = False,
    ):
        self.output = output
        self.exit_code = exit_code
        self.lock_contention = lock_contention
        super().__init__(
            message,
            "Check the captured server output below",
            {"exit_code": exit_code, "lock_contention": lock_contention},
        )

    def __str__(self) -> str:
        return f"{super().__str__()}\n--- captured output ---\n{self.output}"


class HarnessTimeout(HarnessError):
    """No readiness or response within the configured bound."""

    def __init__(self, operation: str, timeout: float, message: Optional[str] = None):
        self.operation = operation
        self.timeout = timeout
        super().__init__(
            message or f"Operation '{operation}' timed out after {timeout}s",
            details={"operation": operation, "timeout_seconds": timeout},
        )


class ConnectError(HarnessError):
    """Network or TLS handshake failure."""


class AuthFailure(HarnessError):
    """Credentials rejected, or a second principal refused on a single-auth session."""

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        already_authenticated: bool = False,
    ):
        self.code = code
        self.already_authenticated = already_authenticated
        super().__init__(
            message,
            details={"code": code, "already_authenticated": already_authenticated},
        )


class CommandError(HarnessError):
    """Structured failure returned by the server for a command."""

    def __init__(self, code: Optional[int], message: str, command: Optional[str] = None):
        self.code = code
        self.command = command
        super().__init__(message, details={"code": code, "command": command})


class ProgramError(HarnessError):
    """External client program could not be launched."""


class ResolutionError(HarnessError):
    """Connection string could not be turned into targets."""


class InvalidStateTransition(HarnessError):
    """Process handle lifecycle violated."""


class AssertionFailure(HarnessError):
    """Expectation mismatch raised by the harness itself."""

    _MISSING = object()

    def __init__(self, message: str, actual: Any = _MISSING, expected: Any = _MISSING):
        self.actual = actual
        self.expected = expected
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.actual is not self._MISSING:
            parts.append(f"actual: {self.actual!r}")
        if self.expected is not self._MISSING:
            parts.append(f"expected: {self.expected!r}")
        return " | ".join(parts)


class ConfigurationError(HarnessError):
    """Invalid harness configuration."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details=details)
