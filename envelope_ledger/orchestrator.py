"""
Main Orchestrator for Envelope Ledger

This module ties together all the ledger components around one
Database and one AuditLogger, and defines the name-based flows a
command front end calls:
1. Record (envelope name + requesting user -> envelope -> ledger)
2. Consume product (product name -> envelope type -> user's instance)
3. Monthly update and reports

DESIGN DECISION: The orchestrator owns no state of its own.
Every rule lives in the component that owns the data; this layer only
resolves names and threads correlation ids through.
"""

from datetime import datetime
from typing import Iterable, Optional

import structlog

from envelope_ledger.audit import AuditLogger, configure_logging, create_correlation_id
from envelope_ledger.config import HouseholdSettings, Settings, get_settings
from envelope_ledger.ledger import (
    EnvelopeStore,
    MonthlyProcessor,
    ProductCatalog,
    ReportEngine,
    TransactionLedger,
)
from envelope_ledger.ledger.amounts import Amount
from envelope_ledger.ledger.transactions import Clock, utcnow
from envelope_ledger.models.ledger import (
    EnvelopeSeed,
    ProductConsumeResult,
    RecordResult,
    SeedResult,
    TransactionKind,
)
from envelope_ledger.services.storage import Database

logger = structlog.get_logger(__name__)


class LedgerEngine:
    """
    The assembled engine.

    Components are public attributes; the methods below are the flows
    that need more than one component.
    """

    def __init__(
        self,
        database: Database,
        store: EnvelopeStore,
        ledger: TransactionLedger,
        catalog: ProductCatalog,
        processor: MonthlyProcessor,
        reports: ReportEngine,
        audit_logger: AuditLogger,
        household: Optional[HouseholdSettings] = None,
        clock: Clock = utcnow,
    ):
        self.database = database
        self.store = store
        self.ledger = ledger
        self.catalog = catalog
        self.processor = processor
        self.reports = reports
        self.audit_logger = audit_logger
        self.household = household
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    def record(
        self,
        envelope_name: str,
        amount: Amount,
        kind: TransactionKind,
        user_id: str,
        description: str = "",
        correlation_id: Optional[str] = None,
    ) -> RecordResult:
        """
        Record against the envelope `user_id` means by `envelope_name`.

        Shared envelopes win over the user's individual one of the same name.
        """
        correlation_id = correlation_id or create_correlation_id()
        envelope = self.store.resolve(envelope_name, user_id)
        return self.ledger.record(
            envelope_id=envelope.id,
            amount=amount,
            kind=kind,
            user_id=user_id,
            description=description,
            correlation_id=correlation_id,
        )

    def use_product(
        self,
        product_name: str,
        quantity: int,
        user_id: str,
        correlation_id: Optional[str] = None,
    ) -> ProductConsumeResult:
        correlation_id = correlation_id or create_correlation_id()
        return self.catalog.consume(product_name, quantity, user_id, correlation_id)

    def seed(self, seeds: Iterable[EnvelopeSeed]) -> SeedResult:
        return self.store.seed(seeds)

    def close(self) -> None:
        self.database.dispose()


def create_ledger_engine(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    user_ids: Optional[tuple[str, str]] = None,
    seeds: Optional[Iterable[EnvelopeSeed]] = None,
    audit_logger: Optional[AuditLogger] = None,
    clock: Clock = utcnow,
) -> LedgerEngine:
    """
    Factory function to create all engine components.

    Args:
        settings: Root settings; loaded from the environment if omitted
        database: Pre-built Database (tests pass one on a temp file)
        user_ids: The two household users; read from COUPLE_* if omitted
        seeds: Envelopes to create or reactivate at startup
        audit_logger: Shared audit logger; a local-only one if omitted
        clock: Source of "now" for transaction timestamps

    Returns:
        A LedgerEngine with its schema created and seeds applied
    """
    settings = settings or get_settings()
    ledger_settings = settings.ledger
    configure_logging(ledger_settings.log_level)

    household = None
    if user_ids is None:
        household = settings.household
        user_ids = household.user_ids

    database = database or Database(settings.database)
    database.create_schema()

    audit_logger = audit_logger or AuditLogger()

    store = EnvelopeStore(
        database,
        user_ids,
        audit_logger=audit_logger,
        default_category=ledger_settings.default_category,
    )
    ledger = TransactionLedger(database, audit_logger=audit_logger, clock=clock)
    catalog = ProductCatalog(database, ledger, audit_logger=audit_logger)
    processor = MonthlyProcessor(
        database,
        audit_logger=audit_logger,
        retention_months=ledger_settings.retention_months,
    )
    reports = ReportEngine(
        store,
        ledger,
        caution_ratio=ledger_settings.caution_ratio,
        over_pace_ratio=ledger_settings.over_pace_ratio,
    )

    engine = LedgerEngine(
        database=database,
        store=store,
        ledger=ledger,
        catalog=catalog,
        processor=processor,
        reports=reports,
        audit_logger=audit_logger,
        household=household,
        clock=clock,
    )

    if seeds is not None:
        result = engine.seed(seeds)
        logger.info("envelopes_seeded", applied=len(result.applied), skipped=len(result.skipped))

    return engine
