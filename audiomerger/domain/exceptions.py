"""Rich error hierarchy for audiomerger.

Every error carries a human-readable message plus structured ``context`` and
actionable ``suggestions``. The full detail is meant for logs; end users only
ever see ``user_message``, one short category per failure kind.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping, Sequence

if TYPE_CHECKING:
    from rich.panel import Panel

    from audiomerger.domain.error_schema import ErrorDict

__all__ = [
    "AccessDeniedError",
    "AlreadyInProgressError",
    "ConfigurationError",
    "DeliveryError",
    "DependencyError",
    "InsufficientItemsError",
    "InvalidReferenceError",
    "JobTimeoutError",
    "MergerError",
    "NetworkTimeoutError",
    "NotFoundError",
    "QueueError",
    "QueueFullError",
    "SourceError",
    "TranscodeError",
    "TransportError",
]

PROCESSING_FAILED_MESSAGE = "❌ Error processing audio files. Please try again with smaller or fewer files."


class MergerError(Exception):
    """Base class for all audiomerger errors.

    Attributes:
        message: Human-readable description of what went wrong
        cause: Original exception, if this error wraps another one
        context: Structured details (paths, exit codes, limits)
        suggestions: Actionable hints for whoever reads the error
        timestamp: When the error was created (UTC)
    """

    user_message: str = PROCESSING_FAILED_MESSAGE

    def __init__(
        self,
        message: str,
        *,
        cause: BaseException | None = None,
        context: Mapping[str, Any] | None = None,
        suggestions: Sequence[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause
        self.context: dict[str, Any] = dict(context or {})
        self.suggestions: list[str] = list(suggestions or [])
        self.timestamp = datetime.now(timezone.utc)

    def __str__(self) -> str:
        return self.message

    def format_error(self) -> str:
        """Format as plain multi-line text for logs and terminals without Rich."""
        lines = [f"✗ Error: {self.message}"]

        if self.context:
            lines.append("")
            lines.append("Details:")
            for key, value in self.context.items():
                lines.append(f"  • {key}: {value}")

        if self.suggestions:
            lines.append("")
            lines.append("Possible solutions:")
            for suggestion in self.suggestions:
                lines.append(f"  • {suggestion}")

        if self.cause is not None:
            lines.append("")
            lines.append(f"Caused by: {type(self.cause).__name__}: {self.cause}")

        return "\n".join(lines)

    def format_rich(self) -> Panel:
        """Format as a Rich panel for CLI display."""
        from rich.panel import Panel
        from rich.text import Text

        body = Text()
        body.append(self.message, style="bold")

        if self.context:
            body.append("\n\nDetails:\n", style="dim")
            for key, value in self.context.items():
                body.append(f"  • {key}: {value}\n")

        if self.suggestions:
            body.append("\nPossible solutions:\n", style="cyan")
            for suggestion in self.suggestions:
                body.append(f"  • {suggestion}\n")

        if self.cause is not None:
            body.append(f"\nCaused by: {type(self.cause).__name__}: {self.cause}", style="dim")

        return Panel(body, title=f"[red]{type(self).__name__}[/red]", border_style="red", expand=False)

    def to_dict(self) -> ErrorDict:
        """Serialize for API consumers and structured logs."""
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "context": dict(self.context),
            "suggestions": list(self.suggestions),
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> MergerError:
        """Rebuild an error from ``to_dict`` output.

        The original cause cannot be restored; its text is kept in context.
        """
        context = dict(data.get("context") or {})
        if data.get("cause"):
            context.setdefault("original_cause", data["cause"])
        error = MergerError(
            data["message"],
            context=context,
            suggestions=data.get("suggestions") or [],
        )
        timestamp = data.get("timestamp")
        if timestamp:
            error.timestamp = datetime.fromisoformat(timestamp)
        return error


# ============================================================================
# Queue preconditions (never enter the job state machine)
# ============================================================================


class QueueError(MergerError):
    """A request was rejected before any work started."""


class QueueFullError(QueueError):
    """The owner's queue already holds the maximum number of items."""

    user_message = "❌ Queue full. Use /merge or /clear first."

    @classmethod
    def for_owner(cls, owner_id: int, capacity: int) -> QueueFullError:
        return cls(
            f"Queue for owner {owner_id} is full ({capacity}/{capacity})",
            context={"owner_id": owner_id, "capacity": capacity},
            suggestions=["Merge the queued items or clear the queue first"],
        )


class InsufficientItemsError(QueueError):
    """Fewer than two items are queued."""

    user_message = "❌ Need at least 2 items in queue before /merge."

    @classmethod
    def for_owner(cls, owner_id: int, count: int, required: int = 2) -> InsufficientItemsError:
        return cls(
            f"Need at least {required} queued items to merge, found {count}",
            context={"owner_id": owner_id, "count": count, "required": required},
            suggestions=["Queue more audio files or links before merging"],
        )


class AlreadyInProgressError(QueueError):
    """A merge job is already running for this owner."""

    user_message = "⏳ Merge in progress..."

    @classmethod
    def for_owner(cls, owner_id: int, job_id: str | None = None) -> AlreadyInProgressError:
        context: dict[str, Any] = {"owner_id": owner_id}
        if job_id:
            context["active_job"] = job_id
        return cls(
            f"A merge is already in progress for owner {owner_id}",
            context=context,
            suggestions=["Wait for the current merge to finish"],
        )


# ============================================================================
# Source acquisition
# ============================================================================


class SourceError(MergerError):
    """A queued reference could not be turned into a readable local file."""


class NotFoundError(SourceError):
    """The referenced file or URL does not exist."""

    @classmethod
    def missing_file(cls, path: Path) -> NotFoundError:
        return cls(
            f"Source file not found: {path.name}",
            context={"path": str(path)},
            suggestions=[
                "The file may have been removed by the storage sweep",
                "Send the file again",
            ],
        )


class AccessDeniedError(SourceError):
    """The reference points somewhere the resolver may not read."""

    @classmethod
    def outside_root(cls, reference: str, root: Path) -> AccessDeniedError:
        return cls(
            "Reference resolves outside the storage root",
            context={"reference": reference, "storage_root": str(root)},
            suggestions=["Only files inside the configured storage root can be merged"],
        )

    @classmethod
    def unreadable(cls, path: Path, cause: BaseException | None = None) -> AccessDeniedError:
        return cls(
            f"Source file is not readable: {path.name}",
            cause=cause,
            context={"path": str(path)},
            suggestions=["Check file permissions on the storage volume"],
        )


class NetworkTimeoutError(SourceError):
    """A remote download did not finish before its deadline."""

    @classmethod
    def for_url(cls, url: str, timeout_s: float, cause: BaseException | None = None) -> NetworkTimeoutError:
        return cls(
            "Download timed out",
            cause=cause,
            context={"url": url, "timeout_seconds": round(timeout_s, 1)},
            suggestions=[
                "The remote server may be slow or the file very large",
                "Try again later or send a smaller file",
            ],
        )


class InvalidReferenceError(SourceError):
    """The reference cannot be interpreted at all."""


class TransportError(SourceError):
    """A remote stream failed before completion (connection reset, HTTP error)."""

    @classmethod
    def for_url(
        cls,
        url: str,
        *,
        status_code: int | None = None,
        cause: BaseException | None = None,
    ) -> TransportError:
        context: dict[str, Any] = {"url": url}
        if status_code is not None:
            context["status_code"] = status_code
        return cls(
            "Download failed before completion",
            cause=cause,
            context=context,
            suggestions=["Check the link is reachable and try again"],
        )


# ============================================================================
# Merge, delivery, timeouts, environment
# ============================================================================


class TranscodeError(MergerError):
    """The external transcoder exited non-zero or produced no usable output."""

    @classmethod
    def from_ffmpeg_error(cls, returncode: int, stderr: str, *, input_count: int) -> TranscodeError:
        stderr_lower = stderr.lower()
        suggestions: list[str] = []

        if "invalid data" in stderr_lower or "could not find codec" in stderr_lower:
            suggestions.append("One of the inputs may be corrupted or not an audio file")
        elif "no space left" in stderr_lower:
            suggestions.append("The work directory ran out of disk space")
        elif "permission denied" in stderr_lower:
            suggestions.append("Check write permission on the work directory")
        else:
            suggestions.append("Run ffmpeg manually with -loglevel verbose to see details")

        return cls(
            f"ffmpeg failed to merge {input_count} inputs",
            context={
                "ffmpeg_exit_code": returncode,
                "stderr_tail": stderr[-500:],
                "input_count": input_count,
            },
            suggestions=suggestions,
        )


class JobTimeoutError(MergerError):
    """The job exceeded its configured time ceiling."""

    user_message = "❌ Processing timed out. Files may be too large for current server capacity. Try with smaller files."

    @classmethod
    def exceeded(cls, stage: str, limit_s: float) -> JobTimeoutError:
        return cls(
            f"Merge job exceeded {limit_s:.0f}s during {stage}",
            context={"stage": stage, "limit_seconds": limit_s},
            suggestions=["Merge fewer or shorter files", "Raise merge_timeout_s in the config"],
        )


class DeliveryError(MergerError):
    """The caller failed to deliver the merged output (for example an upload)."""


class ConfigurationError(MergerError):
    """Configuration is missing or invalid."""

    @classmethod
    def invalid_value(cls, field: str, value: Any, reason: str) -> ConfigurationError:
        return cls(
            f"Invalid configuration value for '{field}': {reason}",
            context={"field": field, "value": value},
            suggestions=[f"Fix '{field}' in the config file or environment"],
        )


class DependencyError(MergerError):
    """A required external program is not installed."""

    @classmethod
    def missing_ffmpeg(cls, binary: str = "ffmpeg") -> DependencyError:
        return cls(
            f"FFmpeg is required but '{binary}' was not found",
            context={"binary": binary},
            suggestions=[
                "Install ffmpeg: sudo apt install ffmpeg (Linux)",
                "Install ffmpeg: brew install ffmpeg (macOS)",
                "Or set ffmpeg_path / ffprobe_path in the config",
            ],
        )
