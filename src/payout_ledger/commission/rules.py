"""Campaign rule catalog — commission rules keyed by campaign and event type.

The catalog is the ledger's view of campaign configuration, which lives
elsewhere. Rules are replaced wholesale when a campaign is edited; the
ledger never modifies them.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

from payout_ledger.errors import CommissionRuleNotFound
from payout_ledger.models.commission import CommissionEventType, CommissionRule


class CommissionRuleCatalog:
    """In-memory rule lookup.

    Usage:
        catalog = CommissionRuleCatalog()
        catalog.register("summer_sale", CommissionRule(...))
        rule = catalog.rule_for("summer_sale", CommissionEventType.PER_SALE)
    """

    def __init__(self) -> None:
        self._rules: dict[tuple[str, CommissionEventType], CommissionRule] = {}

    @classmethod
    def from_records(cls, records: dict[str, Iterable[dict[str, Any]]]) -> CommissionRuleCatalog:
        """Build from {campaign_id: [rule records]}."""
        catalog = cls()
        for campaign_id, rules in records.items():
            for record in rules:
                catalog.register(campaign_id, CommissionRule.from_record(record))
        return catalog

    def register(self, campaign_id: str, rule: CommissionRule) -> None:
        """Add or replace the rule for (campaign_id, rule.event_type)."""
        self._rules[(campaign_id, rule.event_type)] = rule

    def remove_campaign(self, campaign_id: str) -> None:
        for key in [k for k in self._rules if k[0] == campaign_id]:
            del self._rules[key]

    def get(self, campaign_id: str, event_type: CommissionEventType) -> Optional[CommissionRule]:
        return self._rules.get((campaign_id, event_type))

    def rule_for(self, campaign_id: str, event_type: CommissionEventType) -> CommissionRule:
        rule = self.get(campaign_id, event_type)
        if rule is None:
            raise CommissionRuleNotFound(campaign_id, event_type.value)
        return rule

    def campaigns(self) -> list[str]:
        return sorted({campaign_id for campaign_id, _ in self._rules})
