"""
Result pattern helpers built on the returns library.

Component-level operations of the bridge return ``Result[T, AppError]``
instead of raising past their own boundary. This module provides:
- AppError, the single error value carried by every Failure
- ErrorKind, the error taxonomy shared by all components
- Constructors for the common error kinds
- Decorators and helpers to wrap, collect and render Results
"""

import asyncio
import functools
import inspect
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar

from returns.result import Failure, Result, Success

T = TypeVar("T")


class ErrorKind(Enum):
    """Error taxonomy for the bridge core."""

    DUPLICATE_NAME = "duplicate_name"
    NOT_FOUND = "not_found"
    NOT_RUNNING = "not_running"
    LAUNCH_FAILURE = "launch_failure"
    CONFIG_IO = "config_io"
    CONFIG_VALIDATION = "config_validation"
    RUNTIME_UNAVAILABLE = "runtime_unavailable"
    INVOCATION = "invocation"
    VALIDATION = "validation"
    TIMEOUT = "timeout"
    SYSTEM = "system"


@dataclass(frozen=True)
class AppError:
    """Error value carried inside a Failure."""

    kind: ErrorKind
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    recoverable: bool = False

    def __str__(self) -> str:
        return f"[{self.kind.value}] {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "code": self.kind.value,
            "message": self.message,
            "details": dict(self.details),
            "recoverable": self.recoverable,
        }

    @classmethod
    def from_exception(
        cls,
        exc: BaseException,
        kind: Optional[ErrorKind] = None,
        **details: Any,
    ) -> "AppError":
        """
        Build an AppError from an exception.

        Exceptions from ``src.core.error_handling`` carry their own kind and
        context; anything else falls back to ``kind`` (SYSTEM by default).
        """
        exc_kind = getattr(exc, "kind", None)
        resolved = kind or (exc_kind if isinstance(exc_kind, ErrorKind) else ErrorKind.SYSTEM)
        merged = dict(getattr(exc, "context", None) or {})
        merged.update(details)
        merged["exception_type"] = type(exc).__name__
        return cls(
            kind=resolved,
            message=str(exc) or type(exc).__name__,
            details=merged,
            recoverable=bool(getattr(exc, "recoverable", False)),
        )


# Error constructors


def validation_error(message: str, field: Optional[str] = None, **details: Any) -> AppError:
    if field:
        details["field"] = field
    return AppError(ErrorKind.VALIDATION, message, details)


def not_found_error(resource: str, identifier: str) -> AppError:
    return AppError(
        ErrorKind.NOT_FOUND,
        f"{resource} not found: {identifier}",
        {"resource": resource, "id": identifier},
    )


def duplicate_name_error(name: str, namespace: str) -> AppError:
    return AppError(
        ErrorKind.DUPLICATE_NAME,
        f"Server '{name}' already exists in {namespace}",
        {"name": name, "namespace": namespace},
    )


def not_running_error(name: str) -> AppError:
    return AppError(
        ErrorKind.NOT_RUNNING,
        f"Server {name} is not running",
        {"name": name},
        recoverable=True,
    )


def launch_failure_error(name: str, message: str, **details: Any) -> AppError:
    details["name"] = name
    return AppError(ErrorKind.LAUNCH_FAILURE, message, details, recoverable=True)


def config_io_error(message: str, path: Optional[str] = None) -> AppError:
    details = {"path": path} if path else {}
    return AppError(ErrorKind.CONFIG_IO, message, details)


def config_validation_error(message: str, errors: List[str]) -> AppError:
    return AppError(ErrorKind.CONFIG_VALIDATION, message, {"errors": list(errors)})


def runtime_unavailable_error(runtime: str) -> AppError:
    return AppError(
        ErrorKind.RUNTIME_UNAVAILABLE,
        f"Container runtime '{runtime}' is not available",
        {"runtime": runtime},
        recoverable=True,
    )


def invocation_error(server: str, tool: str, message: str) -> AppError:
    return AppError(
        ErrorKind.INVOCATION,
        message,
        {"server": server, "tool": tool},
        recoverable=True,
    )


def timeout_error(operation: str, seconds: float, **details: Any) -> AppError:
    details.update({"operation": operation, "timeout": seconds})
    return AppError(
        ErrorKind.TIMEOUT,
        f"{operation} timed out after {seconds}s",
        details,
        recoverable=True,
    )


# Decorators and helpers


def with_result(
    error_kind: Optional[ErrorKind] = None,
    error_constructor: Optional[Callable[[str], AppError]] = None,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Wrap a function so that exceptions become ``Failure(AppError)``.

    Exceptions that carry their own kind keep it unless ``error_kind`` is
    given. Works for sync and async functions. Functions that already
    return a Result are passed through untouched.
    """

    def to_failure(exc: Exception) -> Failure:
        if error_constructor is not None:
            return Failure(error_constructor(str(exc)))
        return Failure(AppError.from_exception(exc, kind=error_kind))

    def to_result(value: Any) -> Result:
        if isinstance(value, (Success, Failure)):
            return value
        return Success(value)

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Result:
                try:
                    return to_result(await func(*args, **kwargs))
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    return to_failure(exc)

            return async_wrapper

        @functools.wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Result:
            try:
                return to_result(func(*args, **kwargs))
            except Exception as exc:
                return to_failure(exc)

        return sync_wrapper

    return decorator


def collect_results(results: Iterable[Result[T, AppError]]) -> Result[List[T], AppError]:
    """Collect Results into one; the first Failure wins."""
    values: List[T] = []
    for result in results:
        if isinstance(result, Failure):
            return result
        values.append(result.unwrap())
    return Success(values)


def map_error(
    result: Result[T, AppError], mapper: Callable[[AppError], AppError]
) -> Result[T, AppError]:
    """Transform the error of a Failure, leaving Success untouched."""
    if isinstance(result, Failure):
        return Failure(mapper(result.failure()))
    return result


def result_to_response(result: Result[Any, AppError]) -> Dict[str, Any]:
    """Render a Result as a plain response dictionary."""
    if isinstance(result, Success):
        return {"success": True, "data": result.unwrap()}
    return {"success": False, "error": result.failure().to_dict()}
