"""Deciding whether a reference is local or remote, and parsing pasted text.

The rule, applied everywhere a reference needs a strategy:

1. An absolute filesystem path is local.
2. A well-formed http(s) URL whose host matches a configured local endpoint
   is local.
3. Anything that is not a well-formed http(s) URL is local.
4. Every other URL is remote.
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import PurePosixPath
from urllib.parse import unquote, urlsplit

from audiomerger.domain.model import QueueItem, SourceKind

__all__ = [
    "classify_reference",
    "is_http_url",
    "matches_local_endpoint",
    "parse_references",
]

_HTTP_SCHEMES = ("http", "https")


def is_http_url(reference: str) -> bool:
    """True for an http(s) URL with a host and a valid port."""
    parts = urlsplit(reference.strip())
    if parts.scheme.lower() not in _HTTP_SCHEMES or not parts.hostname:
        return False
    try:
        parts.port
    except ValueError:
        return False
    return True


def matches_local_endpoint(reference: str, local_endpoints: Iterable[str]) -> bool:
    """True when the URL's host (and port, if the endpoint names one) is local.

    Endpoints are ``host`` or ``host:port`` strings; a bare host matches any port.
    """
    parts = urlsplit(reference.strip())
    host = (parts.hostname or "").lower()
    try:
        port = parts.port
    except ValueError:
        return False

    for endpoint in local_endpoints:
        endpoint_host, _, endpoint_port = endpoint.strip().lower().rpartition(":")
        if not endpoint_host:
            endpoint_host, endpoint_port = endpoint_port, ""
        if endpoint_host != host:
            continue
        if not endpoint_port or (port is not None and str(port) == endpoint_port):
            return True
    return False


def classify_reference(reference: str, local_endpoints: Iterable[str] = ()) -> SourceKind:
    """Pick the acquisition strategy for a path or URL reference."""
    text = reference.strip()
    if text.startswith("/"):
        return SourceKind.LOCAL_REFERENCE
    if not is_http_url(text):
        return SourceKind.LOCAL_REFERENCE
    if matches_local_endpoint(text, local_endpoints):
        return SourceKind.LOCAL_REFERENCE
    return SourceKind.REMOTE_URL


def _label_for(reference: str) -> str:
    if is_http_url(reference):
        name = PurePosixPath(unquote(urlsplit(reference).path)).name
        return name or urlsplit(reference).hostname or reference
    return PurePosixPath(reference.replace("\\", "/")).name or reference


def parse_references(
    text: str,
    *,
    local_endpoints: Iterable[str] = (),
    remote_only: bool = False,
) -> list[QueueItem]:
    """Turn pasted text (one reference per line) into queue items.

    Blank lines and surrounding whitespace are ignored. With ``remote_only``,
    lines that classify as local are dropped, which is how links pasted into a
    chat are picked out of free text.

    Example:
        >>> [i.kind.value for i in parse_references("https://a.example/x.mp3\\n/srv/y.flac")]
        ['remote_url', 'local_reference']
    """
    endpoints = list(local_endpoints)
    items: list[QueueItem] = []
    for line in text.splitlines():
        reference = line.strip()
        if not reference:
            continue
        kind = classify_reference(reference, endpoints)
        if remote_only and kind is not SourceKind.REMOTE_URL:
            continue
        items.append(QueueItem(kind=kind, content=reference, label=_label_for(reference)))
    return items
