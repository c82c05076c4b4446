"""Serialized error shape shared by the CLI, logs and chat collaborators."""

from __future__ import annotations

from typing import Any, TypedDict

__all__ = ["ErrorDict"]


class ErrorDict(TypedDict):
    """Structure returned by ``MergerError.to_dict()``.

    Attributes:
        error_type: Exception class name (e.g. 'AccessDeniedError')
        message: Diagnostic message (internal; not shown to chat users)
        context: Structured details such as paths, URLs, exit codes
        suggestions: Actionable hints
        timestamp: ISO 8601 creation time (UTC)
        cause: Text of the wrapped exception, or None

    Example:
        >>> def log_failure(error: ErrorDict) -> None:
        ...     print(f"{error['error_type']}: {error['message']}")
    """

    error_type: str
    message: str
    context: dict[str, Any]
    suggestions: list[str]
    timestamp: str
    cause: str | None
