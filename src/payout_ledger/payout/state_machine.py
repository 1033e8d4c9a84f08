"""Payout state machine — legal transitions and their balance effects.

    PENDING → PROCESSING      no balance change
    PROCESSING → COMPLETED    pending −= amount                     terminal
    PENDING|PROCESSING → FAILED
                              pending −= amount, credit += amount   retryable
    FAILED → PENDING          credit −= amount, pending += amount,
                              retry_count += 1 (needs credit >= amount)
    PENDING|PROCESSING → CANCELLED
                              pending −= amount, credit += amount   terminal

Pure computation: this module plans a transition. The service applies
the plan to the account and request under the account lock.
"""

from __future__ import annotations

from dataclasses import dataclass

from payout_ledger.models.payout import (
    PAYOUT_TRANSITIONS,
    TERMINAL_STATUSES,
    PayoutRequest,
    PayoutStatus,
)
from payout_ledger.errors import InvalidStatusTransition


@dataclass(frozen=True)
class TransitionPlan:
    """Signed minor-unit deltas a transition applies to the account."""
    source: PayoutStatus
    target: PayoutStatus
    credit_delta: int
    pending_delta: int
    is_retry: bool = False

    @property
    def debits_credit(self) -> bool:
        return self.credit_delta < 0


class PayoutStateMachine:
    """Validates payout transitions and computes their balance effects."""

    @staticmethod
    def validate_transition(request: PayoutRequest, target: PayoutStatus) -> None:
        """Raise InvalidStatusTransition if target is not reachable."""
        allowed = PAYOUT_TRANSITIONS.get(request.status, frozenset())
        if target not in allowed:
            raise InvalidStatusTransition(
                request.status.value,
                target.value,
                sorted(s.value for s in allowed),
            )

    @staticmethod
    def plan(request: PayoutRequest, target: PayoutStatus) -> TransitionPlan:
        PayoutStateMachine.validate_transition(request, target)
        amount = request.requested_amount.amount_minor
        source = request.status

        if target == PayoutStatus.PROCESSING:
            return TransitionPlan(source, target, 0, 0)
        if target == PayoutStatus.COMPLETED:
            return TransitionPlan(source, target, 0, -amount)
        if target in (PayoutStatus.FAILED, PayoutStatus.CANCELLED):
            return TransitionPlan(source, target, amount, -amount)
        # FAILED → PENDING
        return TransitionPlan(source, target, -amount, amount, is_retry=True)

    @staticmethod
    def is_terminal(status: PayoutStatus) -> bool:
        return status in TERMINAL_STATUSES

    @staticmethod
    def valid_transitions(status: PayoutStatus) -> set[PayoutStatus]:
        return set(PAYOUT_TRANSITIONS.get(status, frozenset()))
