"""
Monthly Processing and Report Models

Structured results only. Formatting (emoji, progress bars, embeds)
belongs to whoever presents them.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from envelope_ledger.models.ledger import Transaction


# =============================================================================
# MONTHLY PROCESSING
# =============================================================================

class ProcessorState(str, Enum):
    """
    Monthly processor state machine.

    IDLE -> RUNNING -> COMMITTED
                    -> FAILED (nothing from the run is visible)
    """
    IDLE = "idle"
    RUNNING = "running"
    COMMITTED = "committed"
    FAILED = "failed"


class EnvelopeRollover(BaseModel):
    """What the monthly run did to one envelope."""

    envelope_id: int
    name: str
    user_id: Optional[str] = None
    old_balance: Decimal
    new_balance: Decimal
    allocation: Decimal
    rollover: bool


class MonthlySummary(BaseModel):
    """Result of a committed monthly run."""

    month: str = Field(
        ...,
        pattern=r"^\d{4}-\d{2}$",
        description="Calendar month processed (YYYY-MM)"
    )
    processed_at: datetime
    rolled_over: int = Field(ge=0, description="Envelopes that carried their balance")
    reset: int = Field(ge=0, description="Envelopes reset to their allocation")
    pruned: int = Field(ge=0, description="Transactions deleted by retention")
    prune_cutoff: datetime
    envelopes: list[EnvelopeRollover] = Field(default_factory=list)

    @property
    def total_envelopes(self) -> int:
        return self.rolled_over + self.reset


class AlreadyProcessed(BaseModel):
    """
    The month was already processed. Nothing was changed.

    This is the expected outcome of a repeated manual run, not a failure.
    """

    month: str = Field(..., pattern=r"^\d{4}-\d{2}$")


# =============================================================================
# REPORTS
# =============================================================================

class PaceStatus(str, Enum):
    """Spend pace classification, lowest severity first."""
    NEUTRAL = "neutral"        # No allocation to pace against
    ON_TRACK = "on_track"
    CAUTION = "caution"
    OVER_PACE = "over_pace"


class EnvelopeStat(BaseModel):
    """Pace figures for one envelope at a point in the month."""

    envelope_id: int
    name: str
    user_id: Optional[str] = None
    category: str
    allocation: Decimal
    balance: Decimal
    actual_spent_this_month: Decimal = Field(
        ...,
        description="Sum of spend transactions this calendar month"
    )
    expected_pace: Decimal = Field(
        ...,
        description="Allocation scaled by the elapsed fraction of the month"
    )
    spent_from_allocation: Decimal = Field(
        ...,
        description="allocation - balance; includes deposits and adjustments"
    )
    remaining_percent: Decimal = Field(
        ...,
        description="balance / allocation * 100 (0 when there is no allocation)"
    )
    status: PaceStatus


class EnvelopeDetail(BaseModel):
    """Single-envelope report: pace figures plus recent history."""

    stat: EnvelopeStat
    recent_transactions: list[Transaction] = Field(default_factory=list)
    day_of_month: int = Field(ge=1, le=31)
    days_in_month: int = Field(ge=28, le=31)
