"""Commission models — campaign rules, tracked events, staged credits.

Rules are owned by campaign configuration and are read-only to the
ledger. Values use Decimal; a Fixed rule's value is in major units of
the campaign currency, a Percentage rule's value is a percent in
[0, 100].
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from payout_ledger.models.money import Money, to_decimal


class CommissionEventType(str, enum.Enum):
    """What the affiliate is paid for."""
    PER_CLICK = "per_click"
    PER_SALE = "per_sale"


class ApprovalType(str, enum.Enum):
    """Whether a computed credit is applied at once or waits for a human."""
    MANUAL = "manual"
    AUTOMATIC = "automatic"


class CommissionValueType(str, enum.Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"


class StagedCommissionStatus(str, enum.Enum):
    """Lifecycle of a manual-approval credit.

        AWAITING_APPROVAL → APPROVED   (credit applied)
        AWAITING_APPROVAL → REJECTED   (credit discarded)
    """
    AWAITING_APPROVAL = "awaiting_approval"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(frozen=True)
class CommissionRule:
    """How a campaign pays for one event type.

    Invariants:
    - value >= 0
    - value <= 100 when value_type is PERCENTAGE
    - a disabled rule never produces credit
    """
    event_type: CommissionEventType
    enabled: bool
    approval_type: ApprovalType
    value_type: CommissionValueType
    value: Decimal
    currency: str = "USD"

    def __post_init__(self) -> None:
        value = to_decimal(self.value)
        object.__setattr__(self, "value", value)
        if value < Decimal("0"):
            raise ValueError(f"Commission value must be non-negative, got {value}")
        if self.value_type == CommissionValueType.PERCENTAGE and value > Decimal("100"):
            raise ValueError(f"Percentage commission must be in [0, 100], got {value}")

    @property
    def requires_base_amount(self) -> bool:
        return self.value_type == CommissionValueType.PERCENTAGE

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> CommissionRule:
        return cls(
            event_type=CommissionEventType(record["event_type"]),
            enabled=bool(record.get("enabled", True)),
            approval_type=ApprovalType(record.get("approval_type", "automatic")),
            value_type=CommissionValueType(record["value_type"]),
            value=to_decimal(record["value"]),
            currency=record.get("currency", "USD"),
        )


@dataclass(frozen=True)
class CommissionEvent:
    """A tracked click or sale delivered by the upstream tracker.

    event_id is unique across all events; it is the idempotency key for
    crediting.
    """
    event_id: str
    affiliate_id: str
    campaign_id: str
    event_type: CommissionEventType
    base_amount: Optional[Money] = None
    occurred_utc: Optional[datetime] = None


@dataclass(frozen=True)
class ApprovalSignal:
    """External decision on a manual-approval credit."""
    event_id: str
    approve: bool
    decided_by: str = "system"


@dataclass
class StagedCommission:
    """A computed credit held until an approval signal arrives.

    Mutable — status moves once from AWAITING_APPROVAL.
    """
    event_id: str
    affiliate_id: str
    campaign_id: str
    event_type: CommissionEventType
    amount: Money
    status: StagedCommissionStatus = StagedCommissionStatus.AWAITING_APPROVAL
    staged_utc: Optional[datetime] = None
    decided_utc: Optional[datetime] = None
    decided_by: Optional[str] = None
    occurred_utc: Optional[datetime] = None
