"""
Tests for the bridge exception hierarchy.
"""

from datetime import datetime

import pytest

from src.core.error_handling import (
    BridgeError,
    ConfigIOError,
    ErrorCategory,
    ErrorSeverity,
    InvocationError,
    LaunchError,
    RuntimeUnavailableError,
    TransportError,
)
from src.core.result_pattern import AppError, ErrorKind


class TestBridgeError:
    """Test BridgeError and its subclasses."""

    def test_initialization(self):
        error = BridgeError(
            "Test error",
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.TRANSPORT,
            context={"key": "value"},
            recoverable=False,
        )

        assert error.message == "Test error"
        assert error.severity == ErrorSeverity.HIGH
        assert error.category == ErrorCategory.TRANSPORT
        assert error.context == {"key": "value"}
        assert error.recoverable is False
        assert error.kind == ErrorKind.SYSTEM
        assert isinstance(error.timestamp, datetime)

    def test_to_dict(self):
        data = LaunchError("npm install failed", command="docker run").to_dict()

        assert data["kind"] == "launch_failure"
        assert data["severity"] == "HIGH"
        assert data["category"] == "PROCESS"
        assert data["context"] == {"command": "docker run"}
        assert "timestamp" in data

    @pytest.mark.parametrize(
        "error, kind",
        [
            (LaunchError("x"), ErrorKind.LAUNCH_FAILURE),
            (TransportError("x"), ErrorKind.INVOCATION),
            (InvocationError("x", method="tools/call", code=-32602), ErrorKind.INVOCATION),
            (ConfigIOError("x", path="/tmp/c.json"), ErrorKind.CONFIG_IO),
            (RuntimeUnavailableError("podman"), ErrorKind.RUNTIME_UNAVAILABLE),
        ],
    )
    def test_kind_survives_conversion(self, error, kind):
        assert AppError.from_exception(error).kind == kind

    def test_invocation_error_context(self):
        error = InvocationError("MCP error: Invalid params", method="tools/call", code=-32602)

        assert isinstance(error, TransportError)
        assert error.category == ErrorCategory.MCP_PROTOCOL
        assert error.context == {"method": "tools/call", "code": -32602}

    def test_config_io_error_not_recoverable(self):
        error = ConfigIOError("Permission denied", path="/etc/config.json")

        assert error.recoverable is False
        assert error.context["path"] == "/etc/config.json"

    def test_runtime_unavailable_message(self):
        error = RuntimeUnavailableError("podman")

        assert str(error) == "Container runtime 'podman' is not available"
        assert error.category == ErrorCategory.RUNTIME
