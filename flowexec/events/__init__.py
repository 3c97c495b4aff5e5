"""Progress events for execution observers."""

from flowexec.events.publisher import (
    ProgressEvent,
    ProgressPublisher,
    Subscription,
    progress_publisher,
)

__all__ = [
    "ProgressEvent",
    "ProgressPublisher",
    "Subscription",
    "progress_publisher",
]
