"""
Shared fixtures.

Every test gets its own file-backed SQLite database under tmp_path so
that threads in concurrency tests really share one store.
"""

from datetime import datetime, timezone

import pytest

from envelope_ledger.audit import AuditLogger
from envelope_ledger.config import DatabaseSettings, Settings
from envelope_ledger.ledger import (
    EnvelopeStore,
    MonthlyProcessor,
    ProductCatalog,
    ReportEngine,
    TransactionLedger,
)
from envelope_ledger.orchestrator import create_ledger_engine
from envelope_ledger.services.storage import Database

USER_A = "user-a"
USER_B = "user-b"
FIXED_NOW = datetime(2024, 4, 10, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    """A clock tests can move by assigning `now`."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def database(tmp_path):
    db = Database(DatabaseSettings(url=f"sqlite:///{tmp_path / 'ledger.db'}"))
    db.create_schema()
    yield db
    db.dispose()


@pytest.fixture
def events():
    """Audit events captured in emission order."""
    return []


@pytest.fixture
def audit_logger(events):
    return AuditLogger(listeners=[events.append])


@pytest.fixture
def store(database, audit_logger):
    return EnvelopeStore(database, (USER_A, USER_B), audit_logger=audit_logger)


@pytest.fixture
def ledger(database, audit_logger, clock):
    return TransactionLedger(database, audit_logger=audit_logger, clock=clock)


@pytest.fixture
def catalog(database, ledger, audit_logger):
    return ProductCatalog(database, ledger, audit_logger=audit_logger)


@pytest.fixture
def processor(database, audit_logger):
    return MonthlyProcessor(database, audit_logger=audit_logger, retention_months=13)


@pytest.fixture
def reports(store, ledger):
    return ReportEngine(store, ledger)


@pytest.fixture
def engine(database, audit_logger, clock):
    return create_ledger_engine(
        settings=Settings(),
        database=database,
        user_ids=(USER_A, USER_B),
        audit_logger=audit_logger,
        clock=clock,
    )
