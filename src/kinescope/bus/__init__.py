"""Address-based request/reply message bus and worker base class."""

from .message_bus import Envelope, Mailbox, MessageBus
from .messages import (
    Failure,
    NotFound,
    Outcome,
    Postbox,
    Request,
    Response,
    Success,
    TimedOut,
)
from .worker import Worker

__all__ = [
    "Envelope",
    "Mailbox",
    "MessageBus",
    "Postbox",
    "Request",
    "Response",
    "Outcome",
    "Success",
    "NotFound",
    "TimedOut",
    "Failure",
    "Worker",
]
