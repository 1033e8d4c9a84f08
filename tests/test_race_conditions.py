"""Race-condition tests — concurrent operations must conserve funds.

Each test releases its threads together through a Barrier so the
operations genuinely overlap on the same account.
"""

import pytest
import threading
from pathlib import Path

from payout_ledger.config import LedgerConfig
from payout_ledger.errors import DuplicateCommissionEvent, InsufficientFunds
from payout_ledger.ledger.journal import JournalEntry
from payout_ledger.models.money import Money
from payout_ledger.models.payout import PayoutMethodType, PayoutStatus
from payout_ledger.service import LedgerResult, LedgerService


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


def _usd(amount: str) -> Money:
    return Money.of(amount, "USD")


def _service() -> LedgerService:
    return LedgerService(LedgerConfig.from_config_dir(CONFIG_DIR))


def _run_together(targets: list) -> list[LedgerResult]:
    barrier = threading.Barrier(len(targets))
    results: list = [None] * len(targets)
    errors: list[BaseException] = []

    def _worker(i: int) -> None:
        try:
            barrier.wait(timeout=5)
            results[i] = targets[i]()
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=_worker, args=(i,)) for i in range(len(targets))]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert errors == []
    return results


class TestConcurrentPayouts:
    def test_two_full_balance_requests(self) -> None:
        service = _service()
        service.apply_commission("e1", "aff1", _usd("100"))

        def _request() -> LedgerResult:
            return service.request_full_payout("aff1", PayoutMethodType.PAYPAL, "US")

        results = _run_together([_request, _request])

        succeeded = [r for r in results if r.success]
        failed = [r for r in results if not r.success]
        assert len(succeeded) == 1
        assert len(failed) == 1
        assert isinstance(failed[0].error, InsufficientFunds)
        account = service.get_account("aff1")
        assert account.credit_balance == _usd("0")
        assert account.pending_payout_balance == _usd("100")

    def test_concurrent_requests_respect_balance(self) -> None:
        service = _service()
        service.apply_commission("e1", "aff1", _usd("500"))

        def _request() -> LedgerResult:
            return service.create_payout_request("aff1", PayoutMethodType.STRIPE, _usd("100"), "US")

        results = _run_together([_request] * 10)

        assert sum(1 for r in results if r.success) == 5
        account = service.get_account("aff1")
        assert account.credit_balance == _usd("0")
        assert account.pending_payout_balance == _usd("500")
        assert len({r.reference for r in service.list_payout_requests()}) == 5


class TestConcurrentCredits:
    def test_distinct_events_sum(self) -> None:
        service = _service()
        targets = [
            (lambda n=n: service.apply_commission(f"e{n}", "aff1", _usd("10")))
            for n in range(20)
        ]
        results = _run_together(targets)

        assert all(r.success for r in results)
        assert service.get_account("aff1").credit_balance == _usd("200")

    def test_duplicate_event_applied_once(self) -> None:
        service = _service()

        def _credit() -> LedgerResult:
            return service.apply_commission("e1", "aff1", _usd("25"))

        results = _run_together([_credit] * 8)

        assert sum(1 for r in results if r.success) == 1
        assert all(
            isinstance(r.error, DuplicateCommissionEvent) for r in results if not r.success
        )
        assert service.get_account("aff1").credit_balance == _usd("25")

    def test_duplicate_event_across_affiliates(self) -> None:
        service = _service()
        targets = [
            (lambda a=a: service.apply_commission("shared", a, _usd("5")))
            for a in ("aff1", "aff2", "aff3", "aff4")
        ]
        results = _run_together(targets)
        assert sum(1 for r in results if r.success) == 1


class TestMixedOperations:
    def test_funds_conserved(self) -> None:
        service = _service()
        service.apply_commission("seed", "aff1", _usd("1000"))
        requests = [
            service.create_payout_request("aff1", PayoutMethodType.PAYPAL, _usd("50"), "US").value
            for _ in range(4)
        ]

        targets = [
            lambda: service.apply_commission("late_1", "aff1", _usd("40")),
            lambda: service.apply_commission("late_2", "aff1", _usd("60")),
            lambda: service.advance_status(requests[0].request_id, PayoutStatus.FAILED),
            lambda: service.advance_status(requests[1].request_id, PayoutStatus.CANCELLED),
            lambda: service.advance_status(requests[2].request_id, PayoutStatus.PROCESSING),
            lambda: service.create_payout_request("aff1", PayoutMethodType.WISE, _usd("300"), "US"),
        ]
        results = _run_together(targets)
        assert all(r.success for r in results)

        account = service.get_account("aff1")
        completed = service.compute_stats().total_completed
        # credits in == credit + pending + completed
        total = account.credit_balance.add(account.pending_payout_balance).add(completed)
        assert total == _usd("1100")
        assert account.pending_payout_balance == _usd("400")

    def test_bulk_advance_mixed_accounts(self) -> None:
        service = _service()
        ids = []
        for n in range(6):
            affiliate = f"aff{n % 3}"
            service.apply_commission(f"e{n}", affiliate, _usd("100"))
            ids.append(service.create_payout_request(
                affiliate, PayoutMethodType.STRIPE, _usd("100"), "US",
            ).value.request_id)

        service.bulk_advance(ids, PayoutStatus.PROCESSING)
        results = service.bulk_advance(ids, PayoutStatus.COMPLETED)

        assert [rid for rid, _ in results] == ids
        assert all(r.success for _, r in results)
        stats = service.compute_stats()
        assert stats.total_completed == _usd("600")
        assert stats.total_fees_collected == _usd("15")
        for n in range(3):
            account = service.get_account(f"aff{n}")
            assert account.credit_balance == _usd("0")
            assert account.pending_payout_balance == _usd("0")


class TestEventClaims:
    def test_claim_released_after_storage_failure(self, monkeypatch: pytest.MonkeyPatch) -> None:
        service = _service()

        def _fail(entry: JournalEntry) -> None:
            raise OSError("disk full")

        monkeypatch.setattr(service.journal, "append", _fail)
        with pytest.raises(OSError):
            service.apply_commission("e1", "aff1", _usd("10"))
        monkeypatch.undo()

        assert service.get_account("aff1") is None
        result = service.apply_commission("e1", "aff1", _usd("10"))
        assert result.success
        assert service.get_account("aff1").credit_balance == _usd("10")

    def test_slow_journal_write_does_not_block_other_affiliates(
        self, monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        service = _service()
        original = service.journal.append
        writing = threading.Event()
        release = threading.Event()

        def _append(entry: JournalEntry) -> None:
            if entry.affiliate_id == "slow":
                writing.set()
                release.wait(timeout=5)
            original(entry)

        monkeypatch.setattr(service.journal, "append", _append)
        results: dict[str, LedgerResult] = {}
        slow = threading.Thread(target=lambda: results.update(
            slow=service.apply_commission("e_slow", "slow", _usd("10")),
        ))
        fast = threading.Thread(target=lambda: results.update(
            fast=service.apply_commission("e_fast", "fast", _usd("10")),
        ))
        slow.start()
        try:
            assert writing.wait(timeout=5)
            fast.start()
            fast.join(timeout=2)
            assert not fast.is_alive()
            assert results["fast"].success

            # the id in flight is taken even before its write lands
            clash = service.apply_commission("e_slow", "other", _usd("10"))
            assert isinstance(clash.error, DuplicateCommissionEvent)
        finally:
            release.set()
            slow.join(timeout=5)
            fast.join(timeout=5)

        assert results["slow"].success
        assert service.get_account("slow").credit_balance == _usd("10")
        assert service.get_account("other") is None
