"""Payout method registry — per-rail profiles, request validation, fee quotes.

The ledger never talks to a payment rail. It only needs each rail's
terms: whether it is configured, where it pays out, its limits and its
fee. Adding a rail means registering a profile; no ledger logic changes.

Validation order for a payout request (first failure wins):
    1. profile exists and is configured   → MethodNotConfigured
    2. country is supported               → UnsupportedCountry
    3. currency supported, amount within
       [min_amount, max_amount]           → CurrencyMismatch / AmountOutOfRange
The balance check (InsufficientFunds) is the service's, under the
account lock.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

from payout_ledger.errors import (
    AmountOutOfRange,
    CurrencyMismatch,
    MethodNotConfigured,
    UnsupportedCountry,
)
from payout_ledger.models.money import Money, to_decimal
from payout_ledger.models.payout import FeeQuote, PayoutMethodProfile, PayoutMethodType


def profile_from_record(record: dict[str, Any]) -> PayoutMethodProfile:
    """Build a profile from a ledger_params.json entry."""
    currency = record.get("currency", "USD")
    return PayoutMethodProfile(
        method_type=PayoutMethodType(record["method_type"]),
        is_configured=bool(record.get("is_configured", False)),
        processing_fee_percent=to_decimal(record.get("processing_fee_percent", "0")),
        min_amount=Money.of(record.get("min_amount", "0"), currency),
        max_amount=Money.of(record["max_amount"], currency),
        supported_countries=frozenset(record.get("supported_countries", [])),
        supported_currencies=frozenset(record.get("supported_currencies", [currency])),
        processing_time_estimate=record.get("processing_time_estimate", ""),
        reference_prefix=record.get("reference_prefix", ""),
        display_name=record.get("display_name", ""),
    )


class PayoutMethodRegistry:
    """Registry of payout method profiles.

    Usage:
        registry = PayoutMethodRegistry.from_records(params["payout_methods"])
        profile = registry.validate_request(PayoutMethodType.PAYPAL, amount, "US")
        quote = registry.quote(PayoutMethodType.PAYPAL, amount)
    """

    def __init__(self, profiles: Optional[Iterable[PayoutMethodProfile]] = None) -> None:
        self._profiles: dict[PayoutMethodType, PayoutMethodProfile] = {}
        for profile in profiles or ():
            self.register_profile(profile)

    @classmethod
    def from_records(cls, records: Iterable[dict[str, Any]]) -> PayoutMethodRegistry:
        return cls(profile_from_record(r) for r in records)

    def register_profile(self, profile: PayoutMethodProfile) -> None:
        """Add or replace the profile for profile.method_type."""
        self._profiles[profile.method_type] = profile

    def get_profile(self, method_type: PayoutMethodType) -> Optional[PayoutMethodProfile]:
        return self._profiles.get(method_type)

    def profiles(self) -> list[PayoutMethodProfile]:
        return sorted(self._profiles.values(), key=lambda p: p.method_type.value)

    def configured_methods(self) -> list[PayoutMethodType]:
        return [p.method_type for p in self.profiles() if p.is_configured]

    def validate_request(
        self,
        method_type: PayoutMethodType,
        amount: Money,
        country: str,
    ) -> PayoutMethodProfile:
        """Run checks 1-3 and return the profile to price the payout with."""
        profile = self._profiles.get(method_type)
        if profile is None or not profile.is_configured:
            raise MethodNotConfigured(method_type.value)
        if country.upper() not in profile.supported_countries:
            raise UnsupportedCountry(method_type.value, country)
        if amount.currency not in profile.supported_currencies:
            raise CurrencyMismatch(amount.currency, profile.limit_currency)
        if amount.is_zero or amount.is_negative or amount < profile.min_amount or amount > profile.max_amount:
            raise AmountOutOfRange(str(amount), str(profile.min_amount), str(profile.max_amount))
        return profile

    def quote(self, method_type: PayoutMethodType, amount: Money) -> FeeQuote:
        """Price a payout without validating limits or touching balances."""
        profile = self._profiles.get(method_type)
        if profile is None:
            raise MethodNotConfigured(method_type.value)
        return price(profile, amount)


def price(profile: PayoutMethodProfile, amount: Money) -> FeeQuote:
    """fee = amount × fee% (half-up); net = amount − fee."""
    fee = amount.multiply_by_percent(profile.processing_fee_percent)
    return FeeQuote(
        method_type=profile.method_type,
        requested_amount=amount,
        processing_fee=fee,
        net_amount=amount.subtract(fee),
        processing_fee_percent=profile.processing_fee_percent,
        processing_time_estimate=profile.processing_time_estimate,
    )
