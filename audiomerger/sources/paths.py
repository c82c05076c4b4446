"""Canonicalization of local references against the storage root.

This is the single place where a reference becomes a filesystem path. The
result is always absolute, fully resolved (``..`` segments and symlinks
included) and tagged with whether it lies inside the root. Callers must refuse
anything outside.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from urllib.parse import unquote, urlsplit

from audiomerger.domain.exceptions import InvalidReferenceError

__all__ = [
    "CanonicalPath",
    "canonicalize",
    "decode_reference",
    "reference_to_path_text",
]

# Enough to undo double and triple encoding such as %252e%252e
_MAX_DECODE_PASSES = 4

# Path prefix of the local Bot API file endpoint: /file/bot<token>/<file_path>
_FILE_ENDPOINT_SEGMENT = "file"
_BOT_SEGMENT_PREFIX = "bot"


@dataclass(frozen=True)
class CanonicalPath:
    path: Path
    inside_root: bool


def decode_reference(reference: str) -> str:
    """Percent-decode until stable and treat backslashes as separators."""
    decoded = reference.strip()
    for _ in range(_MAX_DECODE_PASSES):
        unquoted = unquote(decoded)
        if unquoted == decoded:
            break
        decoded = unquoted
    if "\x00" in decoded:
        raise InvalidReferenceError(
            "Reference contains a NUL byte",
            context={"reference": reference},
        )
    return decoded.replace("\\", "/")


def reference_to_path_text(reference: str, root: Path | None = None) -> str:
    """Extract the path part of a local reference.

    ``file://`` URLs contribute their path, local file-endpoint URLs the part
    after ``/file/bot<token>/``, and anything else is taken as a path already.
    A local API running in local mode serves absolute paths under ``root``;
    those are returned absolute, everything else relative to the root.
    """
    parts = urlsplit(reference.strip())
    scheme = parts.scheme.lower()

    if scheme == "file":
        return parts.path
    if scheme in ("http", "https"):
        segments = [segment for segment in PurePosixPath(parts.path).parts if segment != "/"]
        if (
            len(segments) > 2
            and segments[0] == _FILE_ENDPOINT_SEGMENT
            and segments[1].startswith(_BOT_SEGMENT_PREFIX)
        ):
            segments = segments[2:]
        if not segments:
            raise InvalidReferenceError(
                "Local storage URL has no file path",
                context={"reference": reference},
            )
        relative = "/".join(segments)
        if root is not None and PurePosixPath("/" + unquote(relative)).is_relative_to(root.as_posix()):
            return "/" + relative
        return relative
    return reference


def canonicalize(root: Path, reference: str) -> CanonicalPath:
    """Resolve ``reference`` to an absolute path and test containment in ``root``.

    Relative references are taken relative to ``root``. Symlinks are followed,
    so a link inside the root that points elsewhere is reported as outside.

    Example:
        >>> canonicalize(Path("/srv/files"), "../../etc/passwd").inside_root
        False
    """
    text = decode_reference(reference)
    if not text:
        raise InvalidReferenceError("Reference is empty", context={"reference": reference})

    resolved_root = root.expanduser().resolve()
    candidate = Path(text)
    if not candidate.is_absolute():
        candidate = resolved_root / candidate

    resolved = candidate.resolve(strict=False)
    return CanonicalPath(path=resolved, inside_root=resolved.is_relative_to(resolved_root))
