"""Core data models for the payout ledger."""

from payout_ledger.models.money import Money
from payout_ledger.models.commission import (
    ApprovalSignal,
    ApprovalType,
    CommissionEvent,
    CommissionEventType,
    CommissionRule,
    CommissionValueType,
    StagedCommission,
    StagedCommissionStatus,
)
from payout_ledger.models.payout import (
    AffiliateAccount,
    FeeQuote,
    PayoutFilter,
    PayoutAccount,
    PayoutMethodProfile,
    PayoutMethodType,
    PayoutPreferences,
    PayoutRequest,
    PayoutStatus,
)

__all__ = [
    "Money",
    "ApprovalSignal",
    "ApprovalType",
    "CommissionEvent",
    "CommissionEventType",
    "CommissionRule",
    "CommissionValueType",
    "StagedCommission",
    "StagedCommissionStatus",
    "AffiliateAccount",
    "FeeQuote",
    "PayoutFilter",
    "PayoutAccount",
    "PayoutMethodProfile",
    "PayoutMethodType",
    "PayoutPreferences",
    "PayoutRequest",
    "PayoutStatus",
]
