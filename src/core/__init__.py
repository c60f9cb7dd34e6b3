"""Core error handling infrastructure."""

from .error_handling import (
    BridgeError,
    ConfigIOError,
    InvocationError,
    LaunchError,
    RuntimeUnavailableError,
    TransportError,
)
from .result_pattern import AppError, ErrorKind

__all__ = [
    "AppError",
    "BridgeError",
    "ConfigIOError",
    "ErrorKind",
    "InvocationError",
    "LaunchError",
    "RuntimeUnavailableError",
    "TransportError",
]
