"""Payout models — method profiles, affiliate accounts, payout requests,
payout destinations.

Money fields use the fixed-point Money type. Records that change over
their lifetime (accounts, requests) are mutable dataclasses owned by the
LedgerService; everything handed to callers is a copy.

Payout request state machine:
    PENDING → PROCESSING → COMPLETED
    PENDING → PROCESSING → FAILED
    PENDING → FAILED
    PENDING | PROCESSING → CANCELLED
    FAILED → PENDING                      (retry)
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from payout_ledger.errors import InvalidStatusTransition
from payout_ledger.models.money import Money, to_decimal


class PayoutMethodType(str, enum.Enum):
    """Payment rail used to disburse funds."""
    STRIPE = "stripe"
    PAYPAL = "paypal"
    WISE = "wise"
    BANK_TRANSFER = "bank_transfer"


class PayoutStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Valid payout status transitions
PAYOUT_TRANSITIONS: dict[PayoutStatus, frozenset] = {
    PayoutStatus.PENDING: frozenset({
        PayoutStatus.PROCESSING,
        PayoutStatus.FAILED,
        PayoutStatus.CANCELLED,
    }),
    PayoutStatus.PROCESSING: frozenset({
        PayoutStatus.COMPLETED,
        PayoutStatus.FAILED,
        PayoutStatus.CANCELLED,
    }),
    PayoutStatus.FAILED: frozenset({PayoutStatus.PENDING}),
    PayoutStatus.COMPLETED: frozenset(),
    PayoutStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset({PayoutStatus.COMPLETED, PayoutStatus.CANCELLED})


@dataclass(frozen=True)
class PayoutMethodProfile:
    """Per-rail payout configuration.

    A payout may only be requested through a configured method, for a
    supported country, within [min_amount, max_amount].
    """
    method_type: PayoutMethodType
    is_configured: bool
    processing_fee_percent: Decimal
    min_amount: Money
    max_amount: Money
    supported_countries: frozenset
    supported_currencies: frozenset = frozenset()
    processing_time_estimate: str = ""
    reference_prefix: str = ""
    display_name: str = ""

    def __post_init__(self) -> None:
        fee = to_decimal(self.processing_fee_percent)
        object.__setattr__(self, "processing_fee_percent", fee)
        object.__setattr__(
            self, "supported_countries",
            frozenset(c.upper() for c in self.supported_countries),
        )
        currencies = frozenset(self.supported_currencies) or frozenset({self.min_amount.currency})
        object.__setattr__(self, "supported_currencies", currencies)
        if fee < Decimal("0") or fee > Decimal("100"):
            raise ValueError(
                f"Processing fee for {self.method_type.value} must be in [0, 100], got {fee}"
            )
        if self.min_amount.currency != self.max_amount.currency:
            raise ValueError(
                f"Limits for {self.method_type.value} use different currencies: "
                f"{self.min_amount.currency} vs {self.max_amount.currency}"
            )
        if self.min_amount.is_negative:
            raise ValueError(f"Minimum payout for {self.method_type.value} is negative")
        if self.min_amount > self.max_amount:
            raise ValueError(
                f"Minimum payout {self.min_amount} exceeds maximum {self.max_amount} "
                f"for {self.method_type.value}"
            )

    @property
    def limit_currency(self) -> str:
        return self.min_amount.currency


@dataclass(frozen=True)
class FeeQuote:
    """Fee and net amount for a payout of a given size through one method."""
    method_type: PayoutMethodType
    requested_amount: Money
    processing_fee: Money
    net_amount: Money
    processing_fee_percent: Decimal
    processing_time_estimate: str


@dataclass
class AffiliateAccount:
    """Balances for one affiliate.

    Invariants: credit_balance >= 0 and pending_payout_balance >= 0.
    Only the LedgerService writes these fields.
    """
    affiliate_id: str
    credit_balance: Money
    pending_payout_balance: Money
    created_utc: Optional[datetime] = None
    last_updated_utc: Optional[datetime] = None

    @property
    def currency(self) -> str:
        return self.credit_balance.currency


@dataclass
class PayoutRequest:
    """A single payout instance.

    processing_fee and net_amount are fixed at creation; re-quoting needs
    a new request. Transitions are validated against PAYOUT_TRANSITIONS.
    """
    request_id: str
    affiliate_id: str
    method_type: PayoutMethodType
    requested_amount: Money
    processing_fee: Money
    net_amount: Money
    country: str
    reference: str
    status: PayoutStatus = PayoutStatus.PENDING
    created_utc: Optional[datetime] = None
    last_updated_utc: Optional[datetime] = None
    retry_count: int = 0
    notes: Optional[str] = None
    payout_account_id: Optional[str] = None

    @property
    def currency(self) -> str:
        return self.requested_amount.currency

    def transition_to(self, new_status: PayoutStatus) -> None:
        """Transition to a new status, validating the transition is legal."""
        allowed = PAYOUT_TRANSITIONS.get(self.status, frozenset())
        if new_status not in allowed:
            raise InvalidStatusTransition(
                self.status.value,
                new_status.value,
                sorted(s.value for s in allowed),
            )
        self.status = new_status

    def to_record(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "affiliate_id": self.affiliate_id,
            "method_type": self.method_type.value,
            "requested_amount": self.requested_amount.to_dict(),
            "processing_fee": self.processing_fee.to_dict(),
            "net_amount": self.net_amount.to_dict(),
            "country": self.country,
            "reference": self.reference,
            "status": self.status.value,
            "created_utc": self.created_utc.isoformat() if self.created_utc else None,
            "retry_count": self.retry_count,
            "notes": self.notes,
            "payout_account_id": self.payout_account_id,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> PayoutRequest:
        created = datetime.fromisoformat(record["created_utc"]) if record.get("created_utc") else None
        return cls(
            request_id=record["request_id"],
            affiliate_id=record["affiliate_id"],
            method_type=PayoutMethodType(record["method_type"]),
            requested_amount=Money.from_dict(record["requested_amount"]),
            processing_fee=Money.from_dict(record["processing_fee"]),
            net_amount=Money.from_dict(record["net_amount"]),
            country=record["country"],
            reference=record["reference"],
            status=PayoutStatus(record.get("status", "pending")),
            created_utc=created,
            last_updated_utc=created,
            retry_count=int(record.get("retry_count", 0)),
            notes=record.get("notes"),
            payout_account_id=record.get("payout_account_id"),
        )


@dataclass(frozen=True)
class PayoutFilter:
    """Selection criteria for listing payout requests and computing stats.

    Unset fields match everything.
    """
    affiliate_id: Optional[str] = None
    status: Optional[PayoutStatus] = None
    method_type: Optional[PayoutMethodType] = None
    currency: Optional[str] = None

    def matches(self, request: PayoutRequest) -> bool:
        if self.affiliate_id is not None and request.affiliate_id != self.affiliate_id:
            return False
        if self.status is not None and request.status != self.status:
            return False
        if self.method_type is not None and request.method_type != self.method_type:
            return False
        if self.currency is not None and request.currency != self.currency:
            return False
        return True


@dataclass(frozen=True)
class PayoutPreferences:
    """How an affiliate wants to be paid when they ask for "everything"."""
    default_method: PayoutMethodType
    country: str
    auto_payout_enabled: bool = False
    minimum_payout: Optional[Money] = None


@dataclass(frozen=True)
class PayoutAccount:
    """An affiliate's own destination on one payout rail.

    ``account`` is the rail-side identifier (PayPal email, Stripe connected
    account, IBAN, ...). A newly registered or re-pointed account is
    unverified until verification is recorded. The account stays usable
    through the end of its expiry_date.
    """
    account_id: str
    affiliate_id: str
    method_type: PayoutMethodType
    account: str
    display_name: str = ""
    is_verified: bool = False
    is_default: bool = False
    expiry_date: Optional[date] = None
    created_utc: Optional[datetime] = None
    last_used_utc: Optional[datetime] = None

    def days_until_expiry(self, today: date) -> Optional[int]:
        if self.expiry_date is None:
            return None
        return (self.expiry_date - today).days

    def is_expired(self, today: date) -> bool:
        days = self.days_until_expiry(today)
        return days is not None and days < 0

    def is_expiring_soon(self, today: date, window_days: int = 30) -> bool:
        """True while the expiry date is within window_days but not passed."""
        days = self.days_until_expiry(today)
        return days is not None and 0 <= days <= window_days

    def to_record(self) -> dict[str, Any]:
        return {
            "account_id": self.account_id,
            "affiliate_id": self.affiliate_id,
            "method_type": self.method_type.value,
            "account": self.account,
            "display_name": self.display_name,
            "is_verified": self.is_verified,
            "expiry_date": self.expiry_date.isoformat() if self.expiry_date else None,
            "created_utc": self.created_utc.isoformat() if self.created_utc else None,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> PayoutAccount:
        expiry = record.get("expiry_date")
        created = record.get("created_utc")
        return cls(
            account_id=record["account_id"],
            affiliate_id=record["affiliate_id"],
            method_type=PayoutMethodType(record["method_type"]),
            account=record["account"],
            display_name=record.get("display_name", ""),
            is_verified=bool(record.get("is_verified", False)),
            expiry_date=date.fromisoformat(expiry) if expiry else None,
            created_utc=datetime.fromisoformat(created) if created else None,
        )
