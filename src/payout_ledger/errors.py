"""Typed error taxonomy for the payout ledger.

Every expected business failure has its own class with a machine-readable
``code``. Callers branch on the type (or the code), never on the message.

    LedgerError (base)
    |
    +-- LedgerValidationError      caller/input fault, not retryable as-is
    |   +-- CurrencyMismatch
    |   +-- RuleDisabled
    |   +-- MissingBaseAmount
    |   +-- InvalidAmount
    |   +-- MethodNotConfigured
    |   +-- UnsupportedCountry
    |   +-- AmountOutOfRange
    |   +-- InvalidStatusTransition
    |   +-- CommissionRuleNotFound
    |   +-- PayoutRequestNotFound
    |   +-- StagedCommissionNotFound
    |   +-- PayoutPreferencesNotSet
    |   +-- PayoutAccountNotFound
    |   +-- PayoutAccountNotVerified
    |   +-- PayoutAccountExpired
    |   +-- InvalidPayoutAccount
    |
    +-- ResourceStateError         may succeed later without input changes
    |   +-- InsufficientFunds
    |   +-- DuplicateCommissionEvent
    |
    +-- LedgerConcurrencyError
        +-- LockTimeout            retryable
        +-- OperationCancelled

Anything that is not a LedgerError (programming errors, journal storage
failures) is not caught by the service layer and propagates.
"""

from __future__ import annotations

from typing import Any, Optional


class LedgerError(Exception):
    """Base class for all ledger business errors."""

    code: str = "LEDGER_ERROR"
    category: str = "ledger"
    retryable: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Structured form for API/reporting layers."""
        data: dict[str, Any] = {
            "code": self.code,
            "category": self.category,
            "retryable": self.retryable,
            "message": str(self),
        }
        for key, value in vars(self).items():
            if not key.startswith("_"):
                data[key] = value
        return data


# ---------------------------------------------------------------------------
# Validation errors
# ---------------------------------------------------------------------------


class LedgerValidationError(LedgerError):
    code = "VALIDATION_ERROR"
    category = "validation"


class CurrencyMismatch(LedgerValidationError):
    """Arithmetic or comparison attempted across two currencies."""

    code = "CURRENCY_MISMATCH"

    def __init__(self, left: str, right: str) -> None:
        self.left = left
        self.right = right
        super().__init__(f"Currency mismatch: {left} vs {right}")


class RuleDisabled(LedgerValidationError):
    code = "RULE_DISABLED"

    def __init__(self, event_type: str, campaign_id: Optional[str] = None) -> None:
        self.event_type = event_type
        self.campaign_id = campaign_id
        where = f" for campaign {campaign_id}" if campaign_id else ""
        super().__init__(f"Commission rule {event_type}{where} is disabled")


class MissingBaseAmount(LedgerValidationError):
    """Percentage rule evaluated without a base sale amount."""

    code = "MISSING_BASE_AMOUNT"

    def __init__(self, event_id: str) -> None:
        self.event_id = event_id
        super().__init__(
            f"Percentage commission for event {event_id} requires a base amount"
        )


class InvalidAmount(LedgerValidationError):
    code = "INVALID_AMOUNT"

    def __init__(self, amount: str, reason: str) -> None:
        self.amount = amount
        self.reason = reason
        super().__init__(f"Invalid amount {amount}: {reason}")


class MethodNotConfigured(LedgerValidationError):
    code = "METHOD_NOT_CONFIGURED"

    def __init__(self, method_type: str) -> None:
        self.method_type = method_type
        super().__init__(f"Payout method {method_type} is not configured")


class UnsupportedCountry(LedgerValidationError):
    code = "UNSUPPORTED_COUNTRY"

    def __init__(self, method_type: str, country: str) -> None:
        self.method_type = method_type
        self.country = country
        super().__init__(
            f"Payout method {method_type} does not support country {country}"
        )


class AmountOutOfRange(LedgerValidationError):
    code = "AMOUNT_OUT_OF_RANGE"

    def __init__(self, amount: str, minimum: str, maximum: str) -> None:
        self.amount = amount
        self.minimum = minimum
        self.maximum = maximum
        super().__init__(
            f"Amount {amount} outside allowed range [{minimum}, {maximum}]"
        )


class InvalidStatusTransition(LedgerValidationError):
    code = "INVALID_STATUS_TRANSITION"

    def __init__(self, current: str, target: str, allowed: list[str]) -> None:
        self.current = current
        self.target = target
        self.allowed = allowed
        super().__init__(
            f"Invalid payout transition: {current} → {target}. "
            f"Allowed from {current}: [{', '.join(allowed)}]"
        )


class CommissionRuleNotFound(LedgerValidationError):
    code = "COMMISSION_RULE_NOT_FOUND"

    def __init__(self, campaign_id: str, event_type: str) -> None:
        self.campaign_id = campaign_id
        self.event_type = event_type
        super().__init__(
            f"No commission rule for campaign {campaign_id} ({event_type})"
        )


class PayoutRequestNotFound(LedgerValidationError):
    code = "PAYOUT_REQUEST_NOT_FOUND"

    def __init__(self, request_id: str) -> None:
        self.request_id = request_id
        super().__init__(f"Payout request not found: {request_id}")


class StagedCommissionNotFound(LedgerValidationError):
    code = "STAGED_COMMISSION_NOT_FOUND"

    def __init__(self, event_id: str) -> None:
        self.event_id = event_id
        super().__init__(f"No staged commission awaiting approval: {event_id}")


class PayoutPreferencesNotSet(LedgerValidationError):
    """Full or automatic payout asked for without a method or country."""

    code = "PAYOUT_PREFERENCES_NOT_SET"

    def __init__(self, affiliate_id: str) -> None:
        self.affiliate_id = affiliate_id
        super().__init__(f"No payout method and country on file for {affiliate_id}")


class PayoutAccountNotFound(LedgerValidationError):
    """Unknown account id, or no destination for the affiliate and method."""

    code = "PAYOUT_ACCOUNT_NOT_FOUND"

    def __init__(
        self,
        affiliate_id: Optional[str] = None,
        method_type: Optional[str] = None,
        account_id: Optional[str] = None,
    ) -> None:
        self.affiliate_id = affiliate_id
        self.method_type = method_type
        self.account_id = account_id
        if account_id is None:
            message = f"No {method_type} payout account registered for {affiliate_id}"
        elif affiliate_id is None:
            message = f"Payout account not found: {account_id}"
        else:
            message = f"Payout account {account_id} is not a {method_type} account of {affiliate_id}"
        super().__init__(message)


class PayoutAccountNotVerified(LedgerValidationError):
    code = "PAYOUT_ACCOUNT_NOT_VERIFIED"

    def __init__(self, account_id: str) -> None:
        self.account_id = account_id
        super().__init__(f"Payout account {account_id} has not been verified")


class PayoutAccountExpired(LedgerValidationError):
    code = "PAYOUT_ACCOUNT_EXPIRED"

    def __init__(self, account_id: str, expiry_date: str) -> None:
        self.account_id = account_id
        self.expiry_date = expiry_date
        super().__init__(f"Payout account {account_id} expired on {expiry_date}")


class InvalidPayoutAccount(LedgerValidationError):
    code = "INVALID_PAYOUT_ACCOUNT"

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Invalid payout account: {reason}")


# ---------------------------------------------------------------------------
# Resource-state errors
# ---------------------------------------------------------------------------


class ResourceStateError(LedgerError):
    code = "RESOURCE_STATE_ERROR"
    category = "resource_state"


class InsufficientFunds(ResourceStateError):
    code = "INSUFFICIENT_FUNDS"

    def __init__(self, requested: str, available: str) -> None:
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient funds: requested {requested}, available {available}"
        )


class DuplicateCommissionEvent(ResourceStateError):
    code = "DUPLICATE_COMMISSION_EVENT"

    def __init__(self, event_id: str) -> None:
        self.event_id = event_id
        super().__init__(f"Commission event already applied: {event_id}")


# ---------------------------------------------------------------------------
# Concurrency errors
# ---------------------------------------------------------------------------


class LedgerConcurrencyError(LedgerError):
    code = "CONCURRENCY_ERROR"
    category = "concurrency"


class LockTimeout(LedgerConcurrencyError):
    code = "LOCK_TIMEOUT"
    retryable = True

    def __init__(self, affiliate_id: str, timeout_seconds: float) -> None:
        self.affiliate_id = affiliate_id
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Timed out after {timeout_seconds}s waiting for account lock "
            f"of {affiliate_id}"
        )


class OperationCancelled(LedgerConcurrencyError):
    """Cancelled by the caller before the account lock was acquired."""

    code = "OPERATION_CANCELLED"

    def __init__(self, subject: str) -> None:
        self.subject = subject
        super().__init__(f"Operation on {subject} cancelled before execution")
