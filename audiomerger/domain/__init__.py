"""Domain models, error taxonomy and protocols for audiomerger."""

from .constants import (
    CONTAINER_CODECS,
    DEFAULT_QUEUE_CAPACITY,
    encoder_for_container,
    is_lossless_codec,
)
from .exceptions import (
    AccessDeniedError,
    AlreadyInProgressError,
    ConfigurationError,
    DeliveryError,
    DependencyError,
    InsufficientItemsError,
    InvalidReferenceError,
    JobTimeoutError,
    MergerError,
    NetworkTimeoutError,
    NotFoundError,
    QueueError,
    QueueFullError,
    SourceError,
    TranscodeError,
    TransportError,
)
from .model import (
    JobState,
    MergeJob,
    MergeOutcome,
    QualityProfile,
    QueueItem,
    QueueStatus,
    Session,
    SourceHandle,
    SourceKind,
)
from .protocols import ProgressCallback, ProgressUpdateData

__all__ = [
    "AccessDeniedError",
    "AlreadyInProgressError",
    "CONTAINER_CODECS",
    "ConfigurationError",
    "DEFAULT_QUEUE_CAPACITY",
    "DeliveryError",
    "DependencyError",
    "InsufficientItemsError",
    "InvalidReferenceError",
    "JobState",
    "JobTimeoutError",
    "MergeJob",
    "MergeOutcome",
    "MergerError",
    "NetworkTimeoutError",
    "NotFoundError",
    "ProgressCallback",
    "ProgressUpdateData",
    "QualityProfile",
    "QueueError",
    "QueueFullError",
    "QueueItem",
    "QueueStatus",
    "Session",
    "SourceError",
    "SourceHandle",
    "SourceKind",
    "TranscodeError",
    "TransportError",
    "encoder_for_container",
    "is_lossless_codec",
]
