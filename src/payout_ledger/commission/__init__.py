"""Commission subsystem — rule catalog, evaluation, approval staging."""

from payout_ledger.commission.engine import CommissionDecision, CommissionEngine
from payout_ledger.commission.evaluator import evaluate
from payout_ledger.commission.rules import CommissionRuleCatalog

__all__ = [
    "CommissionDecision",
    "CommissionEngine",
    "CommissionRuleCatalog",
    "evaluate",
]
