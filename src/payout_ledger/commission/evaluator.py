"""Commission evaluation — turns one tracked event into a credit amount.

    Fixed rule:       credit = rule.value in the campaign currency
    Percentage rule:  credit = base_amount × rule.value / 100 (half-up)

Pure computation: no balances are touched here. Whether the credit is
applied now or staged for approval is the engine's decision.
"""

from __future__ import annotations

from payout_ledger.errors import MissingBaseAmount, RuleDisabled
from payout_ledger.models.commission import (
    CommissionEvent,
    CommissionRule,
    CommissionValueType,
)
from payout_ledger.models.money import Money


def evaluate(rule: CommissionRule, event: CommissionEvent) -> Money:
    """Compute the commission credit for an event under a rule.

    Raises:
        RuleDisabled: the rule is switched off.
        MissingBaseAmount: percentage rule without a base sale amount.
        ValueError: the rule is for a different event type.
    """
    if not rule.enabled:
        raise RuleDisabled(rule.event_type.value, event.campaign_id)
    if rule.event_type != event.event_type:
        raise ValueError(
            f"Rule for {rule.event_type.value} cannot evaluate "
            f"{event.event_type.value} event {event.event_id}"
        )

    if rule.value_type == CommissionValueType.FIXED:
        return Money.of(rule.value, rule.currency)

    if event.base_amount is None:
        raise MissingBaseAmount(event.event_id)
    return event.base_amount.multiply_by_percent(rule.value)
