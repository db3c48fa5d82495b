"""Transport, scheduling and sanitising helpers."""

from .backoff import LoopScheduler, Scheduler, TimerHandle, reconnect_delay
from .sanitize import mask_identifier, redact_frame
from .transport import Transport, TransportFactory, WebSocketTransport, device_url

__all__ = [
    "LoopScheduler",
    "Scheduler",
    "TimerHandle",
    "Transport",
    "TransportFactory",
    "WebSocketTransport",
    "device_url",
    "mask_identifier",
    "reconnect_delay",
    "redact_frame",
]
