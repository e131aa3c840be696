"""
Audit Logger

DESIGN DECISION: Every ledger mutation is logged.
This provides:
1. Complete traceability of balance changes
2. Debugging capability
3. An event stream for collaborators (e.g. name caches) to react to

The audit logger:
- Always writes a structured local log line
- Notifies subscribers after the mutation has committed
- Gracefully handles subscriber failures (a broken cache never breaks a spend)
- Supports correlation IDs to trace related events
"""

import logging
from typing import Callable, Optional
from uuid import uuid4

import structlog

from envelope_ledger.models.audit import AuditEvent, AuditEventBuilder


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


AuditListener = Callable[[AuditEvent], None]


def configure_logging(level: str = "INFO") -> None:
    """Route structlog output through stdlib logging at `level`."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, level.upper()))


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Registered listeners (for cache invalidation and the like)
    """

    def __init__(self, listeners: Optional[list[AuditListener]] = None):
        """
        Initialize audit logger.

        Args:
            listeners: Callables notified with every event.
                       If None, only logs locally.
        """
        self._listeners: list[AuditListener] = list(listeners or [])
        self._logger = structlog.get_logger("envelope_ledger.audit")

    def subscribe(self, listener: AuditListener) -> None:
        """Register a listener for all future events."""
        self._listeners.append(listener)

    def unsubscribe(self, listener: AuditListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Notifies every listener.

        Returns True if all listeners handled the event.
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        elif event.severity.value == "debug":
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        delivered = True
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_listener_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                    event_type=event.event_type.value,
                )
                delivered = False

        return delivered

    def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[str] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        self.log(event)


def create_correlation_id() -> str:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a command invocation when the caller has
    no external id of its own. Pass it through all subsequent operations.
    """
    return str(uuid4())
