from .logging_service import (
    SecurityEventLevel,
    SecurityEventLogger,
    SecurityEventType,
    security_event_logger,
)

__all__ = [
    "SecurityEventLevel",
    "SecurityEventLogger",
    "SecurityEventType",
    "security_event_logger",
]
