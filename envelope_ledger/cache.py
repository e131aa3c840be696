"""
Name Cache

Read-through cache of active envelope names and product names, so
repeated name lookups do not hit the store.

Subscribe `handle_event` to the AuditLogger; any event that can change
the set of names marks the affected list stale, and the next read
reloads it from the store.
"""

import threading
from typing import Optional

import structlog

from envelope_ledger.ledger import EnvelopeStore, ProductCatalog
from envelope_ledger.models.audit import AuditEvent, AuditEventType

logger = structlog.get_logger(__name__)

ENVELOPE_EVENTS = frozenset({
    AuditEventType.ENVELOPE_CREATED,
    AuditEventType.ENVELOPE_REENABLED,
    AuditEventType.ENVELOPE_DELETED,
    AuditEventType.ENVELOPES_SEEDED,
})

PRODUCT_EVENTS = frozenset({
    AuditEventType.PRODUCT_ADDED,
    AuditEventType.PRODUCT_DELETED,
})


class NameCache:
    """Lazily loaded name lists, invalidated by audit events."""

    def __init__(self, store: EnvelopeStore, catalog: ProductCatalog):
        self._store = store
        self._catalog = catalog
        self._lock = threading.Lock()
        self._envelope_names: Optional[list[str]] = None
        self._product_names: Optional[list[str]] = None

    def envelope_names(self) -> list[str]:
        with self._lock:
            if self._envelope_names is None:
                self._envelope_names = self._store.list_names()
                logger.debug("envelope_names_refreshed", count=len(self._envelope_names))
            return list(self._envelope_names)

    def product_names(self) -> list[str]:
        with self._lock:
            if self._product_names is None:
                self._product_names = self._catalog.list_names()
                logger.debug("product_names_refreshed", count=len(self._product_names))
            return list(self._product_names)

    def invalidate(self) -> None:
        with self._lock:
            self._envelope_names = None
            self._product_names = None

    def handle_event(self, event: AuditEvent) -> None:
        """AuditLogger listener."""
        with self._lock:
            if event.event_type in ENVELOPE_EVENTS:
                self._envelope_names = None
            elif event.event_type in PRODUCT_EVENTS:
                self._product_names = None

