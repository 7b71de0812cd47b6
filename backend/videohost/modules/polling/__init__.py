"""Polling Module.

Waits for uploaded videos to finish processing.
"""

from videohost.modules.polling.service import (
    StatusPoller,
    PollPhase,
    ProcessingFailedError,
    ProcessingTimeoutError,
)

__all__ = [
    "StatusPoller",
    "PollPhase",
    "ProcessingFailedError",
    "ProcessingTimeoutError",
]
