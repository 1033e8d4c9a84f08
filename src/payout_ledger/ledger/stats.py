"""Aggregate payout statistics — read-only, recomputed on every call.

Nothing here is cached or stored, so a summary can never be stale
relative to the request set it was computed from. Fees count as
collected only for COMPLETED payouts; failed and cancelled payouts are
assumed never charged by the rail.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from payout_ledger.models.money import Money
from payout_ledger.models.payout import PayoutRequest, PayoutStatus


@dataclass(frozen=True)
class StatsSummary:
    """Money totals for one currency, grouped by payout status."""
    currency: str
    request_count: int
    total_requested: Money
    total_pending: Money
    total_processing: Money
    total_completed: Money
    total_failed: Money
    total_cancelled: Money
    total_fees_collected: Money
    total_net_paid: Money
    count_by_status: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "currency": self.currency,
            "request_count": self.request_count,
            "total_requested": str(self.total_requested.to_decimal()),
            "total_pending": str(self.total_pending.to_decimal()),
            "total_processing": str(self.total_processing.to_decimal()),
            "total_completed": str(self.total_completed.to_decimal()),
            "total_failed": str(self.total_failed.to_decimal()),
            "total_cancelled": str(self.total_cancelled.to_decimal()),
            "total_fees_collected": str(self.total_fees_collected.to_decimal()),
            "total_net_paid": str(self.total_net_paid.to_decimal()),
            "count_by_status": dict(self.count_by_status),
        }


def compute_stats(requests: Iterable[PayoutRequest], currency: str) -> StatsSummary:
    """Sum requests by status.

    All requests must be in ``currency``; a different currency raises
    CurrencyMismatch (filter by currency first for multi-currency sets).
    """
    totals = {status: Money.zero(currency) for status in PayoutStatus}
    counts = {status.value: 0 for status in PayoutStatus}
    requested = Money.zero(currency)
    fees = Money.zero(currency)
    net_paid = Money.zero(currency)
    n = 0

    for request in requests:
        n += 1
        requested = requested.add(request.requested_amount)
        totals[request.status] = totals[request.status].add(request.requested_amount)
        counts[request.status.value] += 1
        if request.status == PayoutStatus.COMPLETED:
            fees = fees.add(request.processing_fee)
            net_paid = net_paid.add(request.net_amount)

    return StatsSummary(
        currency=currency,
        request_count=n,
        total_requested=requested,
        total_pending=totals[PayoutStatus.PENDING],
        total_processing=totals[PayoutStatus.PROCESSING],
        total_completed=totals[PayoutStatus.COMPLETED],
        total_failed=totals[PayoutStatus.FAILED],
        total_cancelled=totals[PayoutStatus.CANCELLED],
        total_fees_collected=fees,
        total_net_paid=net_paid,
        count_by_status=counts,
    )
