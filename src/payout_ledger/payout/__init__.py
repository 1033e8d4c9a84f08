"""Payout subsystem — method registry, payout accounts, state machine, references."""

from payout_ledger.payout.accounts import PayoutAccountRegistry
from payout_ledger.payout.methods import PayoutMethodRegistry
from payout_ledger.payout.references import ReferenceGenerator
from payout_ledger.payout.state_machine import PayoutStateMachine, TransitionPlan

__all__ = [
    "PayoutAccountRegistry",
    "PayoutMethodRegistry",
    "PayoutStateMachine",
    "ReferenceGenerator",
    "TransitionPlan",
]
