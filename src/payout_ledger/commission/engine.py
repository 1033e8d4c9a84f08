"""Commission engine — rule lookup, evaluation, and manual-approval staging.

Automatic rules produce a credit that the service applies immediately.
Manual rules produce a StagedCommission that waits for an approval
signal; approving it releases the credit, rejecting it discards it.

The engine never touches account balances. The service layer bridges
engine decisions to LedgerService.apply_commission.

Staging lifecycle:
    AWAITING_APPROVAL → APPROVED
    AWAITING_APPROVAL → REJECTED
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from payout_ledger.commission.evaluator import evaluate
from payout_ledger.commission.rules import CommissionRuleCatalog
from payout_ledger.errors import DuplicateCommissionEvent, StagedCommissionNotFound
from payout_ledger.models.commission import (
    ApprovalSignal,
    ApprovalType,
    CommissionEvent,
    CommissionRule,
    StagedCommission,
    StagedCommissionStatus,
)
from payout_ledger.models.money import Money


@dataclass(frozen=True)
class CommissionDecision:
    """Outcome of evaluating one event."""
    event: CommissionEvent
    rule: CommissionRule
    amount: Money

    @property
    def apply_now(self) -> bool:
        return self.rule.approval_type == ApprovalType.AUTOMATIC


class CommissionEngine:
    """Evaluates commission events and holds manual-approval credits.

    Usage:
        engine = CommissionEngine(catalog)
        decision = engine.evaluate_event(event)
        if decision.apply_now:
            service.apply_commission(event.event_id, event.affiliate_id, decision.amount)
        else:
            engine.stage(decision)
        ...
        staged = engine.resolve(ApprovalSignal(event_id, approve=True))
    """

    def __init__(self, catalog: CommissionRuleCatalog) -> None:
        self._catalog = catalog
        self._staged: dict[str, StagedCommission] = {}
        self._lock = threading.Lock()

    @property
    def catalog(self) -> CommissionRuleCatalog:
        return self._catalog

    def evaluate_event(self, event: CommissionEvent) -> CommissionDecision:
        """Look up the campaign rule and compute the credit.

        Raises CommissionRuleNotFound, RuleDisabled or MissingBaseAmount.
        """
        rule = self._catalog.rule_for(event.campaign_id, event.event_type)
        amount = evaluate(rule, event)
        return CommissionDecision(event=event, rule=rule, amount=amount)

    def stage(
        self,
        decision: CommissionDecision,
        now: Optional[datetime] = None,
    ) -> StagedCommission:
        """Hold a manual-approval credit until a signal arrives."""
        if now is None:
            now = datetime.now(timezone.utc)
        event = decision.event
        staged = StagedCommission(
            event_id=event.event_id,
            affiliate_id=event.affiliate_id,
            campaign_id=event.campaign_id,
            event_type=event.event_type,
            amount=decision.amount,
            staged_utc=now,
            occurred_utc=event.occurred_utc,
        )
        self.restore(staged)
        return staged

    def restore(self, staged: StagedCommission) -> None:
        """Insert a staged record as-is (used by stage() and journal replay)."""
        with self._lock:
            if staged.event_id in self._staged:
                raise DuplicateCommissionEvent(staged.event_id)
            self._staged[staged.event_id] = staged

    def is_staged(self, event_id: str) -> bool:
        with self._lock:
            return event_id in self._staged

    def peek_awaiting(self, event_id: str) -> StagedCommission:
        """Return the staged record if it still awaits a decision."""
        with self._lock:
            staged = self._staged.get(event_id)
        if staged is None or staged.status != StagedCommissionStatus.AWAITING_APPROVAL:
            raise StagedCommissionNotFound(event_id)
        return staged

    def resolve(
        self,
        signal: ApprovalSignal,
        now: Optional[datetime] = None,
    ) -> StagedCommission:
        """Record an approval decision.

        Transitions: AWAITING_APPROVAL → APPROVED | REJECTED
        """
        if now is None:
            now = datetime.now(timezone.utc)
        with self._lock:
            staged = self._staged.get(signal.event_id)
            if staged is None or staged.status != StagedCommissionStatus.AWAITING_APPROVAL:
                raise StagedCommissionNotFound(signal.event_id)
            staged.status = (
                StagedCommissionStatus.APPROVED if signal.approve
                else StagedCommissionStatus.REJECTED
            )
            staged.decided_utc = now
            staged.decided_by = signal.decided_by
            return staged

    def list_staged(
        self,
        affiliate_id: Optional[str] = None,
        status: Optional[StagedCommissionStatus] = StagedCommissionStatus.AWAITING_APPROVAL,
    ) -> list[StagedCommission]:
        """List staged credits, by default only those awaiting approval."""
        with self._lock:
            records = list(self._staged.values())
        if affiliate_id is not None:
            records = [s for s in records if s.affiliate_id == affiliate_id]
        if status is not None:
            records = [s for s in records if s.status == status]
        return records
