"""Tests for payout statistics — fresh totals grouped by status."""

import pytest

from payout_ledger.errors import CurrencyMismatch
from payout_ledger.ledger.stats import compute_stats
from payout_ledger.models.money import Money
from payout_ledger.models.payout import PayoutMethodType, PayoutRequest, PayoutStatus


def _req(n: int, amount: str, status: PayoutStatus, currency: str = "USD") -> PayoutRequest:
    requested = Money.of(amount, currency)
    fee = requested.multiply_by_percent("3")
    return PayoutRequest(
        request_id=f"payout_{n}",
        affiliate_id="aff1",
        method_type=PayoutMethodType.PAYPAL,
        requested_amount=requested,
        processing_fee=fee,
        net_amount=requested.subtract(fee),
        country="US",
        reference=f"PP-2026-{n:03d}",
        status=status,
    )


class TestComputeStats:
    def test_empty(self) -> None:
        stats = compute_stats([], "USD")
        assert stats.request_count == 0
        assert stats.total_requested == Money.zero("USD")
        assert stats.count_by_status == {s.value: 0 for s in PayoutStatus}

    def test_totals_by_status(self) -> None:
        requests = [
            _req(1, "100", PayoutStatus.COMPLETED),
            _req(2, "200", PayoutStatus.COMPLETED),
            _req(3, "50", PayoutStatus.PENDING),
            _req(4, "25", PayoutStatus.PROCESSING),
            _req(5, "10", PayoutStatus.FAILED),
            _req(6, "40", PayoutStatus.CANCELLED),
        ]
        stats = compute_stats(requests, "USD")
        assert stats.request_count == 6
        assert stats.total_requested == Money.of("425", "USD")
        assert stats.total_completed == Money.of("300", "USD")
        assert stats.total_pending == Money.of("50", "USD")
        assert stats.total_processing == Money.of("25", "USD")
        assert stats.total_failed == Money.of("10", "USD")
        assert stats.total_cancelled == Money.of("40", "USD")
        assert stats.count_by_status["completed"] == 2

    def test_fees_only_for_completed(self) -> None:
        requests = [
            _req(1, "100", PayoutStatus.COMPLETED),
            _req(2, "100", PayoutStatus.FAILED),
            _req(3, "100", PayoutStatus.CANCELLED),
        ]
        stats = compute_stats(requests, "USD")
        assert stats.total_fees_collected == Money.of("3", "USD")
        assert stats.total_net_paid == Money.of("97", "USD")

    def test_mixed_currency_rejected(self) -> None:
        with pytest.raises(CurrencyMismatch):
            compute_stats([_req(1, "10", PayoutStatus.PENDING, "EUR")], "USD")

    def test_dict_form(self) -> None:
        stats = compute_stats([_req(1, "100", PayoutStatus.COMPLETED)], "USD")
        data = stats.to_dict()
        assert data["total_fees_collected"] == "3.00"
        assert data["total_net_paid"] == "97.00"
        assert data["currency"] == "USD"
