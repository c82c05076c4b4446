"""Application layer: job orchestration, progress relay and service wiring."""

import logging

import structlog

from .jobs import JobRegistry
from .orchestrator import DeliverCallback, Orchestrator
from .progress import (
    CallbackProgressTracker,
    MergeProgress,
    NullProgressTracker,
    ProgressTracker,
    RichProgressTracker,
)
from .service import MergeService


def configure_logging(level: str = "INFO") -> None:
    """Configure structlog for application logging."""
    numeric_level = logging.getLevelNamesMapping().get(level.upper(), logging.INFO)
    logging.basicConfig(level=numeric_level, format="%(message)s")

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

__all__ = [
    "CallbackProgressTracker",
    "DeliverCallback",
    "JobRegistry",
    "MergeProgress",
    "MergeService",
    "NullProgressTracker",
    "Orchestrator",
    "ProgressTracker",
    "RichProgressTracker",
    "configure_logging",
]
