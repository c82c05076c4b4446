"""Source acquisition - turn queued references into job-private local files."""

from .base import Source
from .classify import classify_reference, is_http_url, parse_references
from .deadline import Deadline
from .local import LocalFileSource
from .paths import CanonicalPath, canonicalize
from .remote import PlatformExtractor, RemoteFileSource
from .resolver import SourceResolver
from .token import TokenLinkResolver

__all__ = [
    "CanonicalPath",
    "Deadline",
    "LocalFileSource",
    "PlatformExtractor",
    "RemoteFileSource",
    "Source",
    "SourceResolver",
    "TokenLinkResolver",
    "canonicalize",
    "classify_reference",
    "is_http_url",
    "parse_references",
]
