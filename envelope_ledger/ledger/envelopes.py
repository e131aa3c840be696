"""
Envelope Store

Owns envelope records: creation and re-enablement, soft deletion,
attribute edits, name/owner resolution and startup seeding.

DESIGN DECISION: Rows are never duplicated. A soft-deleted envelope keeps
its (name, owner) slot and is reactivated by the next create request, with
its balance reset to the effective allocation. The shared/individual nature
of an envelope is fixed by its first creation.

Balances are not changed here except on (re)creation. Everything else that
moves a balance goes through the transaction ledger.
"""

from decimal import Decimal
from typing import Iterable, Optional, Sequence

import structlog
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from envelope_ledger.audit import AuditLogger
from envelope_ledger.errors import (
    AlreadyExistsError,
    ConfigurationError,
    InvalidNameError,
    NotFoundError,
)
from envelope_ledger.ledger.amounts import Amount, allocation_amount
from envelope_ledger.models.audit import AuditEvent, AuditEventBuilder
from envelope_ledger.models.ledger import Envelope, EnvelopeSeed, SeedResult
from envelope_ledger.services.storage import Database, EnvelopeRow

logger = structlog.get_logger(__name__)


def clean_name(name: str, what: str = "Envelope") -> str:
    if name is None or not str(name).strip():
        raise InvalidNameError(f"{what} name cannot be empty")
    return str(name).strip()


def find_active(session: Session, name: str, user_id: Optional[str]) -> Optional[EnvelopeRow]:
    """
    Active shared envelope named `name`, else the user's active individual one.

    Shared and individual envelopes never share a name, so at most one
    of the two lookups can match.
    """
    shared = session.scalar(
        select(EnvelopeRow).where(
            EnvelopeRow.name == name,
            EnvelopeRow.user_id.is_(None),
            EnvelopeRow.is_deleted.is_(False),
        )
    )
    if shared is not None or user_id is None:
        return shared
    return session.scalar(
        select(EnvelopeRow).where(
            EnvelopeRow.name == name,
            EnvelopeRow.user_id == user_id,
            EnvelopeRow.is_deleted.is_(False),
        )
    )


def find_deleted(session: Session, name: str, user_id: Optional[str]) -> Optional[EnvelopeRow]:
    """Soft-deleted counterpart of find_active."""
    return session.scalar(
        select(EnvelopeRow)
        .where(
            EnvelopeRow.name == name,
            or_(EnvelopeRow.user_id.is_(None), EnvelopeRow.user_id == user_id),
            EnvelopeRow.is_deleted.is_(True),
        )
        .order_by(EnvelopeRow.user_id.asc().nulls_first())
        .limit(1)
    )


class EnvelopeStore:
    """
    Envelope lifecycle and lookup.

    Individual envelope types get one instance per configured user;
    `user_ids` must name exactly two distinct users for those.
    """

    def __init__(
        self,
        database: Database,
        user_ids: Sequence[str],
        audit_logger: Optional[AuditLogger] = None,
        default_category: str = "uncategorized",
    ):
        self._db = database
        self._user_ids = tuple(user_ids)
        self._audit_logger = audit_logger
        self._default_category = default_category

    @property
    def user_ids(self) -> tuple[str, ...]:
        return self._user_ids

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def resolve(self, name: str, requesting_user: Optional[str]) -> Envelope:
        """
        Find the envelope `requesting_user` means by `name`.

        Raises:
            NotFoundError: No active shared or own individual envelope by that name
        """
        name = clean_name(name)
        with self._db.read_session() as session:
            row = find_active(session, name, requesting_user)
            if row is None:
                raise NotFoundError("envelope", name)
            return Envelope.model_validate(row)

    def get(self, envelope_id: int) -> Envelope:
        """Get an envelope by id, soft-deleted ones included."""
        with self._db.read_session() as session:
            row = session.get(EnvelopeRow, envelope_id)
            if row is None:
                raise NotFoundError("envelope", envelope_id)
            return Envelope.model_validate(row)

    def list_active(self) -> list[Envelope]:
        """All active envelopes by name; shared instance first, then by owner."""
        with self._db.read_session() as session:
            rows = session.scalars(
                select(EnvelopeRow)
                .where(EnvelopeRow.is_deleted.is_(False))
                .order_by(EnvelopeRow.name, EnvelopeRow.user_id.asc().nulls_first())
            ).all()
            return [Envelope.model_validate(row) for row in rows]

    def list_names(self) -> list[str]:
        """Distinct names of active envelopes."""
        with self._db.read_session() as session:
            return list(
                session.scalars(
                    select(EnvelopeRow.name)
                    .where(EnvelopeRow.is_deleted.is_(False))
                    .distinct()
                    .order_by(EnvelopeRow.name)
                ).all()
            )

    def list_categories(self) -> list[str]:
        with self._db.read_session() as session:
            return list(
                session.scalars(
                    select(EnvelopeRow.category)
                    .where(EnvelopeRow.is_deleted.is_(False))
                    .distinct()
                    .order_by(EnvelopeRow.category)
                ).all()
            )

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def create_or_reenable(
        self,
        name: str,
        category: Optional[str] = None,
        allocation: Optional[Amount] = None,
        is_individual: Optional[bool] = None,
        rollover: Optional[bool] = None,
        user_ids: Optional[Sequence[str]] = None,
    ) -> list[int]:
        """
        Create an envelope type, or bring a soft-deleted one back.

        Omitted attributes (None) keep their stored values on re-enable and
        take defaults on creation. Balance always starts at the allocation.

        Returns:
            Ids of every envelope row created or reactivated

        Raises:
            AlreadyExistsError: An active envelope with this name exists
            InvalidAmountError: Allocation is negative or not a number
            ConfigurationError: Individual type without two distinct users
        """
        name = clean_name(name)
        if category is not None:
            category = clean_name(category, "Category")
        if allocation is not None:
            allocation = allocation_amount(allocation)
        users = tuple(user_ids) if user_ids is not None else self._user_ids

        events: list[AuditEvent] = []
        with self._db.unit_of_work() as session:
            rows = session.scalars(
                select(EnvelopeRow)
                .where(EnvelopeRow.name == name)
                .order_by(EnvelopeRow.user_id.asc().nulls_first())
            ).all()

            if any(not row.is_deleted for row in rows):
                raise AlreadyExistsError("envelope", name)

            if rows:
                touched = self._reenable(session, rows, category, allocation, is_individual, rollover, users)
                session.flush()
                for row, created in touched:
                    build = AuditEventBuilder.envelope_created if created else AuditEventBuilder.envelope_reenabled
                    events.append(build(row.id, row.name, row.user_id, row.allocation))
            else:
                created_rows = self._insert(
                    session,
                    name=name,
                    category=category or self._default_category,
                    allocation=allocation if allocation is not None else Decimal("0.00"),
                    is_individual=bool(is_individual),
                    rollover=bool(rollover),
                    users=users,
                )
                session.flush()
                touched = [(row, True) for row in created_rows]
                for row in created_rows:
                    events.append(
                        AuditEventBuilder.envelope_created(row.id, row.name, row.user_id, row.allocation)
                    )

            envelope_ids = [row.id for row, _ in touched]

        self._emit(events)
        return envelope_ids

    def _reenable(
        self,
        session: Session,
        rows: Sequence[EnvelopeRow],
        category: Optional[str],
        allocation: Optional[Decimal],
        is_individual: Optional[bool],
        rollover: Optional[bool],
        users: tuple[str, ...],
    ) -> list[tuple[EnvelopeRow, bool]]:
        stored_individual = rows[0].is_individual
        if is_individual is not None and is_individual != stored_individual:
            logger.warning(
                "envelope_type_change_ignored",
                name=rows[0].name,
                stored_is_individual=stored_individual,
                requested_is_individual=is_individual,
            )

        if stored_individual:
            self._require_household(users)
            targets = [row for row in rows if row.user_id in users]
        else:
            targets = [row for row in rows if row.user_id is None]

        touched: list[tuple[EnvelopeRow, bool]] = []
        template = targets[0] if targets else rows[0]
        effective_category = category if category is not None else template.category
        effective_allocation = allocation if allocation is not None else template.allocation
        effective_rollover = rollover if rollover is not None else template.rollover

        for row in targets:
            row.category = category if category is not None else row.category
            row.allocation = allocation if allocation is not None else row.allocation
            row.rollover = rollover if rollover is not None else row.rollover
            row.balance = row.allocation
            row.is_deleted = False
            touched.append((row, False))

        if stored_individual:
            # A configured user with no row yet (e.g. user ids changed) gets one
            present = {row.user_id for row in targets}
            missing = [user for user in users if user not in present]
            for row in self._insert_rows(
                session,
                name=template.name,
                category=effective_category,
                allocation=effective_allocation,
                is_individual=True,
                rollover=effective_rollover,
                owners=missing,
            ):
                touched.append((row, True))

        logger.info(
            "envelope_reenabled",
            name=template.name,
            is_individual=stored_individual,
            rows=len(touched),
        )
        return touched

    def _insert(
        self,
        session: Session,
        name: str,
        category: str,
        allocation: Decimal,
        is_individual: bool,
        rollover: bool,
        users: tuple[str, ...],
    ) -> list[EnvelopeRow]:
        if is_individual:
            self._require_household(users)
            owners: list[Optional[str]] = list(users)
        else:
            owners = [None]
        logger.info("envelope_inserting", name=name, is_individual=is_individual, rows=len(owners))
        return self._insert_rows(session, name, category, allocation, is_individual, rollover, owners)

    @staticmethod
    def _insert_rows(
        session: Session,
        name: str,
        category: str,
        allocation: Decimal,
        is_individual: bool,
        rollover: bool,
        owners: Iterable[Optional[str]],
    ) -> list[EnvelopeRow]:
        rows = [
            EnvelopeRow(
                name=name,
                category=category,
                allocation=allocation,
                balance=allocation,
                is_individual=is_individual,
                user_id=owner,
                rollover=rollover,
                is_deleted=False,
            )
            for owner in owners
        ]
        session.add_all(rows)
        return rows

    @staticmethod
    def _require_household(users: tuple[str, ...]) -> None:
        if len(users) != 2 or users[0] == users[1]:
            raise ConfigurationError(
                f"Individual envelopes need exactly two distinct users, got {list(users)}"
            )

    def soft_delete(self, name: str, owner: Optional[str] = None) -> Envelope:
        """
        Mark the active (name, owner) envelope deleted.

        Balance and history are untouched; the slot stays reserved.

        Raises:
            NotFoundError: No active envelope for (name, owner)
        """
        name = clean_name(name)
        with self._db.unit_of_work() as session:
            owner_clause = EnvelopeRow.user_id.is_(None) if owner is None else EnvelopeRow.user_id == owner
            row = session.scalar(
                select(EnvelopeRow).where(
                    EnvelopeRow.name == name,
                    owner_clause,
                    EnvelopeRow.is_deleted.is_(False),
                )
            )
            if row is None:
                raise NotFoundError("envelope", name if owner is None else f"{name} ({owner})")
            row.is_deleted = True
            envelope = Envelope.model_validate(row)

        self._emit([AuditEventBuilder.envelope_deleted(envelope.id, envelope.name, envelope.user_id)])
        return envelope

    def update(
        self,
        name: str,
        category: Optional[str] = None,
        allocation: Optional[Amount] = None,
        rollover: Optional[bool] = None,
    ) -> list[Envelope]:
        """
        Edit the shared attributes of an envelope type.

        Applies to every active instance so individual twins stay in step.
        Balances are left alone; a new allocation takes effect at the next
        monthly run.
        """
        name = clean_name(name)
        changes: dict[str, object] = {}
        if category is not None:
            changes["category"] = clean_name(category, "Category")
        if allocation is not None:
            changes["allocation"] = allocation_amount(allocation)
        if rollover is not None:
            changes["rollover"] = rollover

        with self._db.unit_of_work() as session:
            rows = session.scalars(
                select(EnvelopeRow)
                .where(EnvelopeRow.name == name, EnvelopeRow.is_deleted.is_(False))
                .order_by(EnvelopeRow.user_id.asc().nulls_first())
            ).all()
            if not rows:
                raise NotFoundError("envelope", name)
            for row in rows:
                for field, value in changes.items():
                    setattr(row, field, value)
            envelopes = [Envelope.model_validate(row) for row in rows]

        if changes:
            self._emit([
                AuditEventBuilder.envelope_updated(envelope.id, envelope.name, changes)
                for envelope in envelopes
            ])
        return envelopes

    def seed(self, seeds: Iterable[EnvelopeSeed]) -> SeedResult:
        """
        Startup seeding: create or reactivate each configured envelope.

        Active rows always win - a seed never updates an active envelope.
        """
        result = SeedResult()
        for seed in seeds:
            try:
                ids = self.create_or_reenable(
                    name=seed.name,
                    category=seed.category,
                    allocation=seed.allocation,
                    is_individual=seed.is_individual,
                    rollover=seed.rollover,
                )
            except AlreadyExistsError:
                logger.debug("seed_skipped_active", name=seed.name)
                result.skipped.append(seed.name)
                continue
            result.applied.append(seed.name)
            result.envelope_ids.extend(ids)

        self._emit([AuditEventBuilder.envelopes_seeded(result.applied, result.skipped)])
        return result

    def _emit(self, events: Iterable[AuditEvent]) -> None:
        if self._audit_logger:
            for event in events:
                self._audit_logger.log(event)
