"""Tests for payout accounts — registration, defaults, verification and expiry."""

import dataclasses
import pytest
from datetime import date, datetime, timezone
from pathlib import Path

from payout_ledger.config import LedgerConfig
from payout_ledger.errors import (
    InvalidPayoutAccount,
    MethodNotConfigured,
    PayoutAccountExpired,
    PayoutAccountNotFound,
    PayoutAccountNotVerified,
)
from payout_ledger.ledger.journal import JournalKind
from payout_ledger.models.money import Money
from payout_ledger.models.payout import PayoutAccount, PayoutMethodType
from payout_ledger.payout.accounts import PayoutAccountRegistry, ensure_usable
from payout_ledger.service import LedgerService


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


def _now() -> datetime:
    return datetime(2026, 3, 2, 9, 30, 0, tzinfo=timezone.utc)


def _usd(amount: str) -> Money:
    return Money.of(amount, "USD")


def _account(
    account_id: str,
    affiliate: str = "aff1",
    method: PayoutMethodType = PayoutMethodType.PAYPAL,
    expiry: date | None = None,
    verified: bool = True,
) -> PayoutAccount:
    return PayoutAccount(
        account_id=account_id,
        affiliate_id=affiliate,
        method_type=method,
        account=f"{account_id}@example.com",
        is_verified=verified,
        expiry_date=expiry,
        created_utc=_now(),
    )


@pytest.fixture
def config() -> LedgerConfig:
    return LedgerConfig.from_config_dir(CONFIG_DIR)


@pytest.fixture
def service(config: LedgerConfig) -> LedgerService:
    service = LedgerService(config)
    assert service.apply_commission("e1", "aff1", _usd("500"), now=_now()).success
    return service


def _register(service: LedgerService, method: str = "paypal", account: str = "aff1@example.com",
              expiry: date | None = None, verify: bool = True) -> PayoutAccount:
    result = service.register_payout_account("aff1", method, account,
                                             expiry_date=expiry, now=_now())
    assert result.success, result.errors
    if verify:
        result = service.verify_payout_account(result.value.account_id, now=_now())
        assert result.success, result.errors
    return result.value


class TestPayoutAccountModel:
    def test_usable_through_expiry_day(self) -> None:
        account = _account("a", expiry=date(2026, 3, 31))
        assert not account.is_expired(date(2026, 3, 31))
        assert account.is_expired(date(2026, 4, 1))
        assert account.days_until_expiry(date(2026, 3, 1)) == 30

    def test_expiring_soon_window(self) -> None:
        account = _account("a", expiry=date(2026, 3, 31))
        assert account.is_expiring_soon(date(2026, 3, 1))
        assert not account.is_expiring_soon(date(2026, 2, 28))
        assert account.is_expiring_soon(date(2026, 2, 28), window_days=31)
        assert not account.is_expiring_soon(date(2026, 4, 1))

    def test_no_expiry_never_expires(self) -> None:
        account = _account("a")
        assert account.days_until_expiry(date(2099, 1, 1)) is None
        assert not account.is_expired(date(2099, 1, 1))
        assert not account.is_expiring_soon(date(2099, 1, 1))

    def test_ensure_usable(self) -> None:
        with pytest.raises(PayoutAccountNotVerified):
            ensure_usable(_account("a", verified=False), date(2026, 3, 2))
        with pytest.raises(PayoutAccountExpired) as exc:
            ensure_usable(_account("a", expiry=date(2026, 3, 1)), date(2026, 3, 2))
        assert exc.value.expiry_date == "2026-03-01"
        ensure_usable(_account("a", expiry=date(2026, 3, 2)), date(2026, 3, 2))


class TestPayoutAccountRegistry:
    def test_first_account_is_default(self) -> None:
        registry = PayoutAccountRegistry()
        assert registry.add(_account("a")).is_default
        assert not registry.add(_account("b")).is_default
        assert registry.default_for("aff1").account_id == "a"
        assert registry.default_for("aff2") is None

    def test_duplicate_id_rejected(self) -> None:
        registry = PayoutAccountRegistry()
        registry.add(_account("a"))
        with pytest.raises(ValueError):
            registry.add(_account("a"))

    def test_removing_default_promotes_oldest(self) -> None:
        registry = PayoutAccountRegistry()
        for account_id in ("a", "b", "c"):
            registry.add(_account(account_id))
        registry.set_default("c")
        removed = registry.remove("c")
        assert not removed.is_default
        assert registry.default_for("aff1").account_id == "a"
        registry.remove("a")
        registry.remove("b")
        assert registry.default_for("aff1") is None

    def test_resolve_prefers_default_on_rail(self) -> None:
        registry = PayoutAccountRegistry()
        registry.add(_account("wise", method=PayoutMethodType.WISE))
        registry.add(_account("pp1"))
        registry.add(_account("pp2"))
        registry.set_default("pp2")
        assert registry.resolve("aff1", PayoutMethodType.PAYPAL).account_id == "pp2"
        registry.set_default("wise")
        assert registry.resolve("aff1", PayoutMethodType.PAYPAL).account_id == "pp1"
        assert registry.resolve("aff1", PayoutMethodType.STRIPE) is None

    def test_resolve_explicit_account_must_match(self) -> None:
        registry = PayoutAccountRegistry()
        registry.add(_account("pp1"))
        registry.add(_account("other", affiliate="aff2"))
        assert registry.resolve("aff1", PayoutMethodType.PAYPAL, "pp1").account_id == "pp1"
        with pytest.raises(PayoutAccountNotFound):
            registry.resolve("aff1", PayoutMethodType.WISE, "pp1")
        with pytest.raises(PayoutAccountNotFound):
            registry.resolve("aff1", PayoutMethodType.PAYPAL, "other")
        with pytest.raises(PayoutAccountNotFound):
            registry.resolve("aff1", PayoutMethodType.PAYPAL, "missing")

    def test_replace_keeps_last_use(self) -> None:
        registry = PayoutAccountRegistry()
        registry.add(_account("a"))
        registry.mark_used("a", _now())
        updated = registry.replace(dataclasses.replace(_account("a"), display_name="Main"))
        assert updated.display_name == "Main"
        assert updated.last_used_utc == _now()

    def test_replace_cannot_change_owner(self) -> None:
        registry = PayoutAccountRegistry()
        registry.add(_account("a"))
        with pytest.raises(PayoutAccountNotFound):
            registry.replace(_account("a", affiliate="aff2"))


class TestManagement:
    def test_register_starts_unverified(self, service: LedgerService) -> None:
        result = service.register_payout_account("aff1", "paypal", "  aff1@example.com ",
                                                 now=_now())
        account = result.value
        assert account.account_id.startswith("pacct_")
        assert account.account == "aff1@example.com"
        assert account.display_name == "PayPal"
        assert account.is_default
        assert not account.is_verified

    def test_register_unconfigured_method(self, service: LedgerService) -> None:
        result = service.register_payout_account("aff1", "bank_transfer", "123", now=_now())
        assert isinstance(result.error, MethodNotConfigured)
        result = service.register_payout_account("aff1", "venmo", "123", now=_now())
        assert isinstance(result.error, MethodNotConfigured)
        assert service.list_payout_accounts("aff1") == []

    def test_register_rejects_bad_input(self, service: LedgerService) -> None:
        result = service.register_payout_account("aff1", "paypal", "   ", now=_now())
        assert isinstance(result.error, InvalidPayoutAccount)
        result = service.register_payout_account("aff1", "paypal", "a@example.com",
                                                 expiry_date=date(2026, 3, 1), now=_now())
        assert isinstance(result.error, InvalidPayoutAccount)
        assert service.transaction_history(kind=JournalKind.PAYOUT_ACCOUNT_SAVED) == []

    def test_new_destination_clears_verification(self, service: LedgerService) -> None:
        account = _register(service)
        result = service.update_payout_account(account.account_id, display_name="Main",
                                               now=_now())
        assert result.value.is_verified
        result = service.update_payout_account(account.account_id, account="new@example.com",
                                               now=_now())
        assert result.value.account == "new@example.com"
        assert result.value.display_name == "Main"
        assert not result.value.is_verified

    def test_set_default_and_remove(self, service: LedgerService) -> None:
        first = _register(service)
        second = _register(service, method="wise", account="GB00BANK")
        assert service.set_default_payout_account(second.account_id, now=_now()).value.is_default
        assert not service.get_payout_account(first.account_id).is_default

        removed = service.remove_payout_account(second.account_id, now=_now()).value
        assert removed.account_id == second.account_id
        assert service.get_payout_account(first.account_id).is_default
        assert [a.account_id for a in service.list_payout_accounts("aff1")] == [first.account_id]

    def test_unknown_account_id(self, service: LedgerService) -> None:
        for result in (
            service.update_payout_account("pacct_missing", display_name="x"),
            service.verify_payout_account("pacct_missing"),
            service.set_default_payout_account("pacct_missing"),
            service.remove_payout_account("pacct_missing"),
        ):
            assert isinstance(result.error, PayoutAccountNotFound)
            assert result.error.account_id == "pacct_missing"

    def test_every_change_journaled(self, service: LedgerService) -> None:
        account = _register(service)
        service.set_default_payout_account(account.account_id, now=_now())
        service.remove_payout_account(account.account_id, now=_now())
        kinds = [e.kind for e in service.transaction_history("aff1")]
        assert kinds[1:] == [
            JournalKind.PAYOUT_ACCOUNT_SAVED,
            JournalKind.PAYOUT_ACCOUNT_SAVED,
            JournalKind.PAYOUT_ACCOUNT_DEFAULT_SET,
            JournalKind.PAYOUT_ACCOUNT_REMOVED,
        ]

    def test_expiring_list(self, service: LedgerService) -> None:
        soon = _register(service, expiry=date(2026, 3, 20))
        _register(service, method="wise", account="GB00BANK", expiry=date(2026, 9, 1))
        _register(service, method="stripe", account="acct_123")
        assert [a.account_id for a in service.list_expiring_payout_accounts(now=_now())] == [
            soon.account_id,
        ]
        assert len(service.list_expiring_payout_accounts(now=_now(), within_days=365)) == 2


class TestPayoutDestination:
    def test_payout_records_destination(self, service: LedgerService) -> None:
        account = _register(service)
        result = service.create_payout_request("aff1", "paypal", _usd("100"), "US", now=_now())
        assert result.value.payout_account_id == account.account_id
        assert service.get_payout_account(account.account_id).last_used_utc == _now()

    def test_unverified_destination_rejected(self, service: LedgerService) -> None:
        _register(service, verify=False)
        result = service.create_payout_request("aff1", "paypal", _usd("100"), "US", now=_now())
        assert isinstance(result.error, PayoutAccountNotVerified)
        assert service.get_account("aff1").credit_balance == _usd("500")
        assert service.list_payout_requests() == []

    def test_expired_destination_rejected(self, service: LedgerService) -> None:
        _register(service, expiry=date(2026, 3, 10))
        later = datetime(2026, 3, 11, 8, 0, 0, tzinfo=timezone.utc)
        result = service.create_payout_request("aff1", "paypal", _usd("100"), "US", now=later)
        assert isinstance(result.error, PayoutAccountExpired)
        assert service.get_account("aff1").pending_payout_balance == _usd("0")

    def test_explicit_destination_must_belong(self, service: LedgerService) -> None:
        wise = _register(service, method="wise", account="GB00BANK")
        result = service.create_payout_request("aff1", "paypal", _usd("100"), "US",
                                               now=_now(), payout_account_id=wise.account_id)
        assert isinstance(result.error, PayoutAccountNotFound)
        result = service.create_payout_request("aff1", "paypal", _usd("100"), "US",
                                               now=_now(), payout_account_id="pacct_missing")
        assert isinstance(result.error, PayoutAccountNotFound)

    def test_explicit_destination_used(self, service: LedgerService) -> None:
        _register(service)
        backup = _register(service, account="backup@example.com")
        result = service.create_payout_request("aff1", "paypal", _usd("100"), "US",
                                               now=_now(), payout_account_id=backup.account_id)
        assert result.value.payout_account_id == backup.account_id

    def test_no_account_on_rail_allowed_by_default(self, service: LedgerService) -> None:
        _register(service, verify=False)
        result = service.create_payout_request("aff1", "stripe", _usd("100"), "US", now=_now())
        assert result.success
        assert result.value.payout_account_id is None

    def test_registered_account_required(self, config: LedgerConfig) -> None:
        strict = LedgerService(dataclasses.replace(config, require_payout_account=True))
        strict.apply_commission("e1", "aff1", _usd("500"), now=_now())
        result = strict.create_payout_request("aff1", "paypal", _usd("100"), "US", now=_now())
        assert isinstance(result.error, PayoutAccountNotFound)
        assert result.error.method_type == "paypal"

        _register(strict)
        assert strict.create_payout_request("aff1", "paypal", _usd("100"), "US",
                                            now=_now()).success

    def test_full_payout_uses_default_account_rail(self, service: LedgerService) -> None:
        account = _register(service, method="wise", account="GB00BANK")
        result = service.request_full_payout("aff1", country="US", now=_now())
        assert result.value.method_type == PayoutMethodType.WISE
        assert result.value.payout_account_id == account.account_id
        assert result.value.requested_amount == _usd("500")


class TestRecovery:
    def test_replay_restores_accounts(self, service: LedgerService) -> None:
        kept = _register(service, expiry=date(2026, 12, 31))
        dropped = _register(service, method="wise", account="GB00BANK")
        spare = _register(service, method="stripe", account="acct_123", verify=False)
        service.set_default_payout_account(dropped.account_id, now=_now())
        service.update_payout_account(kept.account_id, display_name="Main", now=_now())
        service.create_payout_request("aff1", "paypal", _usd("100"), "US", now=_now())
        service.remove_payout_account(dropped.account_id, now=_now())

        rebuilt = LedgerService.from_journal(service.config, service.journal)
        assert rebuilt.list_payout_accounts("aff1") == service.list_payout_accounts("aff1")
        restored = rebuilt.get_payout_account(kept.account_id)
        assert restored.is_default
        assert restored.display_name == "Main"
        assert restored.expiry_date == date(2026, 12, 31)
        assert restored.last_used_utc == _now()
        assert not rebuilt.get_payout_account(spare.account_id).is_verified
        assert rebuilt.get_payout_request(
            service.list_payout_requests()[0].request_id,
        ).payout_account_id == kept.account_id
