"""
Exception hierarchy for the bridge core.

Transports, the container runtime and the config store raise these
exceptions internally. Component boundaries convert them to
``AppError`` values (see ``src.core.result_pattern``) so that nothing
escapes into the shared front-facing server.
"""

from datetime import datetime, timezone
from enum import Enum, auto
from typing import Any, Dict, Optional

from .result_pattern import ErrorKind


class ErrorSeverity(Enum):
    """Error severity levels for classification and logging."""

    CRITICAL = auto()  # Bridge cannot continue
    HIGH = auto()  # A managed server is unusable
    MEDIUM = auto()  # A single operation failed
    LOW = auto()  # Caller input problems


class ErrorCategory(Enum):
    """Where an error originated."""

    PROCESS = auto()  # Child process or container lifecycle
    TRANSPORT = auto()  # Child server communication
    CONFIGURATION = auto()  # External config file
    RUNTIME = auto()  # Container engine
    MCP_PROTOCOL = auto()  # Malformed or error JSON-RPC responses


class BridgeError(Exception):
    """Base exception with classification metadata."""

    kind: ErrorKind = ErrorKind.SYSTEM

    def __init__(
        self,
        message: str,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.PROCESS,
        context: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
    ) -> None:
        """
        Initialize the error.

        Args:
            message: Human-readable error message
            severity: Error severity level
            category: Error category for classification
            context: Additional context information (never secrets)
            recoverable: Whether retrying the operation can succeed
        """
        super().__init__(message)
        self.message = message
        self.severity = severity
        self.category = category
        self.context = context or {}
        self.recoverable = recoverable
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for serialization."""
        return {
            "kind": self.kind.value,
            "message": self.message,
            "severity": self.severity.name,
            "category": self.category.name,
            "context": self.context,
            "recoverable": self.recoverable,
            "timestamp": self.timestamp.isoformat(),
        }


class LaunchError(BridgeError):
    """A child process or container failed to start."""

    kind = ErrorKind.LAUNCH_FAILURE

    def __init__(self, message: str, command: Optional[str] = None, **kwargs: Any) -> None:
        context = kwargs.pop("context", {})
        if command:
            context["command"] = command
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.PROCESS,
            context=context,
            **kwargs,
        )


class TransportError(BridgeError):
    """Communication with a child server failed."""

    kind = ErrorKind.INVOCATION

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("category", ErrorCategory.TRANSPORT)
        super().__init__(message, **kwargs)


class InvocationError(TransportError):
    """The child server answered a request with a JSON-RPC error."""

    def __init__(
        self,
        message: str,
        method: Optional[str] = None,
        code: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", {})
        if method:
            context["method"] = method
        if code is not None:
            context["code"] = code
        super().__init__(
            message,
            category=ErrorCategory.MCP_PROTOCOL,
            context=context,
            **kwargs,
        )


class ConfigIOError(BridgeError):
    """The external config file could not be read or written."""

    kind = ErrorKind.CONFIG_IO

    def __init__(self, message: str, path: Optional[str] = None, **kwargs: Any) -> None:
        context = kwargs.pop("context", {})
        if path:
            context["path"] = path
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.CONFIGURATION,
            context=context,
            recoverable=False,
            **kwargs,
        )


class RuntimeUnavailableError(BridgeError):
    """The container engine binary is missing or not responding."""

    kind = ErrorKind.RUNTIME_UNAVAILABLE

    def __init__(self, runtime: str, **kwargs: Any) -> None:
        super().__init__(
            f"Container runtime '{runtime}' is not available",
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.RUNTIME,
            context={"runtime": runtime},
            **kwargs,
        )
