"""Ledger service — unified facade for commissions and payouts.

This is the primary interface for programmatic access to the ledger.
It orchestrates all subsystems:
- Commission intake (rule evaluation, manual-approval staging, credit)
- Payout requests (method validation, fee pricing, balance reservation)
- Payout status changes (single and bulk, with per-item results)
- Payout accounts (affiliate destinations, verification, expiry)
- Preferences and automatic payouts
- Statistics and transaction history

All operations return a LedgerResult for expected business failures.
Every mutation is appended to the transaction journal before in-memory
state changes; a journal storage failure propagates and leaves state
untouched.

Locking: balance-mutating work for one affiliate runs under that
affiliate's account lock. Commission event ids are claimed under a short
global event lock that is released before any journal write, so credits
for different affiliates run in parallel. Lock order is account lock,
then event lock, then index lock; the index lock is never held while
waiting for an account lock.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Iterator, Optional, Union
from uuid import uuid4

from payout_ledger.commission.engine import CommissionEngine
from payout_ledger.commission.rules import CommissionRuleCatalog
from payout_ledger.config import LedgerConfig
from payout_ledger.errors import (
    CurrencyMismatch,
    DuplicateCommissionEvent,
    InsufficientFunds,
    InvalidAmount,
    InvalidPayoutAccount,
    InvalidStatusTransition,
    LedgerError,
    MethodNotConfigured,
    PayoutAccountNotFound,
    PayoutPreferencesNotSet,
    PayoutRequestNotFound,
    UnsupportedCountry,
)
from payout_ledger.ledger.journal import JournalEntry, JournalKind, TransactionJournal
from payout_ledger.ledger.locks import AccountLockManager
from payout_ledger.ledger.stats import StatsSummary, compute_stats
from payout_ledger.models.commission import (
    ApprovalSignal,
    CommissionEvent,
    CommissionEventType,
    StagedCommission,
)
from payout_ledger.models.money import Money
from payout_ledger.models.payout import (
    PAYOUT_TRANSITIONS,
    AffiliateAccount,
    PayoutAccount,
    PayoutFilter,
    PayoutMethodType,
    PayoutPreferences,
    PayoutRequest,
    PayoutStatus,
)
from payout_ledger.payout.accounts import PayoutAccountRegistry, ensure_usable
from payout_ledger.payout.methods import PayoutMethodRegistry, price
from payout_ledger.payout.references import COMMISSION_PREFIX, ReferenceGenerator, prefix_for
from payout_ledger.payout.state_machine import PayoutStateMachine, TransitionPlan

logger = logging.getLogger(__name__)


@dataclass
class LedgerResult:
    """Result of a service operation.

    On success ``value`` holds a copy of the affected record; on failure
    ``error`` holds the typed LedgerError.
    """
    success: bool
    value: Any = None
    error: Optional[LedgerError] = None

    @classmethod
    def ok(cls, value: Any = None) -> LedgerResult:
        return cls(success=True, value=value)

    @classmethod
    def fail(cls, error: LedgerError) -> LedgerResult:
        return cls(success=False, error=error)

    @property
    def errors(self) -> list[str]:
        return [str(self.error)] if self.error is not None else []

    @property
    def error_code(self) -> Optional[str]:
        return self.error.code if self.error is not None else None


def _shift(money: Money, delta_minor: int) -> Money:
    return Money(money.amount_minor + delta_minor, money.currency)


class LedgerService:
    """Affiliate commission and payout ledger facade.

    Usage:
        config = LedgerConfig.from_config_dir(config_dir)
        service = LedgerService(config)
        service.apply_commission("evt_1", "aff1", Money.of("150", "USD"))
        result = service.create_payout_request(
            "aff1", PayoutMethodType.PAYPAL, Money.of("100", "USD"), "US",
        )
        service.advance_status(result.value.request_id, PayoutStatus.PROCESSING)
    """

    def __init__(
        self,
        config: Optional[LedgerConfig] = None,
        registry: Optional[PayoutMethodRegistry] = None,
        catalog: Optional[CommissionRuleCatalog] = None,
        journal: Optional[TransactionJournal] = None,
    ) -> None:
        self._config = config or LedgerConfig()
        self._registry = registry or self._config.method_registry()
        self._commissions = CommissionEngine(catalog or CommissionRuleCatalog())
        self._journal = journal or TransactionJournal()
        self._locks = AccountLockManager(
            timeout_seconds=self._config.lock_timeout_seconds,
            retry_attempts=self._config.lock_retry_attempts,
            retry_backoff_seconds=self._config.lock_retry_backoff_seconds,
        )
        self._references = ReferenceGenerator()
        self._payout_accounts = PayoutAccountRegistry()

        self._accounts: dict[str, AffiliateAccount] = {}
        self._requests: dict[str, PayoutRequest] = {}
        self._applied_events: set[str] = set()
        self._claimed_events: set[str] = set()
        self._preferences: dict[str, PayoutPreferences] = {}

        # Guards applied and claimed event ids; never held across I/O.
        self._event_lock = threading.Lock()
        # Guards the record maps for snapshot reads.
        self._index_lock = threading.Lock()

    @property
    def config(self) -> LedgerConfig:
        return self._config

    @property
    def registry(self) -> PayoutMethodRegistry:
        return self._registry

    @property
    def catalog(self) -> CommissionRuleCatalog:
        return self._commissions.catalog

    @property
    def journal(self) -> TransactionJournal:
        return self._journal

    # ------------------------------------------------------------------
    # Commission intake
    # ------------------------------------------------------------------

    def apply_commission(
        self,
        event_id: str,
        affiliate_id: str,
        amount: Money,
        now: Optional[datetime] = None,
    ) -> LedgerResult:
        """Credit an affiliate for a commission event.

        The only way credit_balance increases. A repeated event_id is
        rejected with DuplicateCommissionEvent and changes nothing.
        """
        try:
            if amount.is_negative:
                raise InvalidAmount(str(amount), "commission credit must not be negative")
            with self._locks.hold(affiliate_id):
                with self._event_claim(event_id):
                    account = self._credit_locked(
                        event_id, affiliate_id, amount, self._now(now), {},
                    )
        except LedgerError as exc:
            return self._rejected("apply_commission", exc, affiliate_id=affiliate_id,
                                  event_id=event_id)
        return LedgerResult.ok(account)

    def ingest_commission_event(
        self,
        event: CommissionEvent,
        now: Optional[datetime] = None,
    ) -> LedgerResult:
        """Evaluate a tracked click or sale against its campaign rule.

        Automatic rules credit at once (value is the account). Manual
        rules stage the credit until resolve_commission_approval (value
        is the StagedCommission).
        """
        now = self._now(now)
        try:
            decision = self._commissions.evaluate_event(event)
            details = _event_details(
                event.campaign_id, event.event_type, event.occurred_utc,
            )
            with self._locks.hold(event.affiliate_id):
                with self._event_claim(event.event_id):
                    if decision.apply_now:
                        value: Any = self._credit_locked(
                            event.event_id, event.affiliate_id, decision.amount, now, details,
                        )
                    else:
                        payload = {"event_id": event.event_id,
                                   "amount": decision.amount.to_dict()}
                        payload.update(details)
                        self._journal.append(JournalEntry.create(
                            self._entry_id(),
                            JournalKind.COMMISSION_STAGED,
                            event.affiliate_id,
                            payload,
                            now,
                        ))
                        value = dataclasses.replace(self._commissions.stage(decision, now))
                        logger.info(
                            "Commission staged for approval",
                            extra={"affiliate_id": event.affiliate_id,
                                   "event_id": event.event_id,
                                   "amount": str(decision.amount)},
                        )
        except LedgerError as exc:
            return self._rejected("ingest_commission_event", exc,
                                  affiliate_id=event.affiliate_id, event_id=event.event_id)
        return LedgerResult.ok(value)

    def resolve_commission_approval(
        self,
        event_id: str,
        approve: bool,
        decided_by: str = "system",
        now: Optional[datetime] = None,
    ) -> LedgerResult:
        """Approve (credit) or reject (discard) a staged commission."""
        now = self._now(now)
        signal = ApprovalSignal(event_id=event_id, approve=approve, decided_by=decided_by)
        try:
            affiliate_id = self._commissions.peek_awaiting(event_id).affiliate_id
            # A staged id can never be claimed again, so the account lock
            # alone serialises decisions on it.
            with self._locks.hold(affiliate_id):
                staged = self._commissions.peek_awaiting(event_id)
                if approve:
                    details = _event_details(
                        staged.campaign_id, staged.event_type, staged.occurred_utc,
                    )
                    details.update({"from_staged": True, "decided_by": decided_by})
                    self._credit_locked(event_id, affiliate_id, staged.amount, now, details)
                else:
                    self._journal.append(JournalEntry.create(
                        self._entry_id(),
                        JournalKind.COMMISSION_REJECTED,
                        affiliate_id,
                        {"event_id": event_id, "decided_by": decided_by},
                        now,
                    ))
                    logger.info(
                        "Staged commission rejected",
                        extra={"affiliate_id": affiliate_id, "event_id": event_id},
                    )
                resolved = dataclasses.replace(self._commissions.resolve(signal, now))
        except LedgerError as exc:
            return self._rejected("resolve_commission_approval", exc, event_id=event_id)
        return LedgerResult.ok(resolved)

    def list_staged_commissions(
        self,
        affiliate_id: Optional[str] = None,
    ) -> list[StagedCommission]:
        """Staged commissions still awaiting an approval decision."""
        return [
            dataclasses.replace(s)
            for s in self._commissions.list_staged(affiliate_id=affiliate_id)
        ]

    # ------------------------------------------------------------------
    # Payout requests
    # ------------------------------------------------------------------

    def create_payout_request(
        self,
        affiliate_id: str,
        method_type: Union[PayoutMethodType, str],
        amount: Money,
        country: str,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
        payout_account_id: Optional[str] = None,
    ) -> LedgerResult:
        """Reserve credit for a payout through one method.

        Method, country and limit checks come first. Under the account
        lock the destination is resolved (explicit payout_account_id, else
        the affiliate's default or oldest account on this rail) and must
        be verified and unexpired; then the balance is checked. Fee and
        net are fixed here.
        """
        now = self._now(now)
        country = country.upper()
        try:
            method = _method_type(method_type)
            profile = self._registry.validate_request(method, amount, country)
            quote = price(profile, amount)
            with self._locks.hold(affiliate_id):
                destination = self._resolve_destination(
                    affiliate_id, method, payout_account_id, now,
                )
                account = self._accounts.get(affiliate_id)
                if account is None:
                    raise InsufficientFunds(str(amount), str(Money.zero(amount.currency)))
                if account.currency != amount.currency:
                    raise CurrencyMismatch(account.currency, amount.currency)
                new_credit = account.credit_balance.subtract(amount, non_negative=True)

                request = PayoutRequest(
                    request_id=f"payout_{uuid4().hex[:12]}",
                    affiliate_id=affiliate_id,
                    method_type=method,
                    requested_amount=amount,
                    processing_fee=quote.processing_fee,
                    net_amount=quote.net_amount,
                    country=country,
                    reference=self._references.next(
                        prefix_for(method, profile.reference_prefix), now,
                    ),
                    status=PayoutStatus.PENDING,
                    created_utc=now,
                    last_updated_utc=now,
                    retry_count=0,
                    notes=notes,
                    payout_account_id=destination.account_id if destination else None,
                )
                self._journal.append(JournalEntry.create(
                    self._entry_id(),
                    JournalKind.PAYOUT_REQUESTED,
                    affiliate_id,
                    {"request": request.to_record()},
                    now,
                ))
                with self._index_lock:
                    account.credit_balance = new_credit
                    account.pending_payout_balance = account.pending_payout_balance.add(amount)
                    account.last_updated_utc = now
                    self._requests[request.request_id] = request
                    snapshot = dataclasses.replace(request)
                if destination is not None:
                    self._payout_accounts.mark_used(destination.account_id, now)
        except LedgerError as exc:
            return self._rejected("create_payout_request", exc, affiliate_id=affiliate_id,
                                  method_type=_label(method_type))

        logger.info(
            "Payout requested",
            extra={"affiliate_id": affiliate_id, "request_id": snapshot.request_id,
                   "reference": snapshot.reference, "method_type": method.value,
                   "amount": str(amount), "fee": str(snapshot.processing_fee)},
        )
        return LedgerResult.ok(snapshot)

    def advance_status(
        self,
        request_id: str,
        target: Union[PayoutStatus, str],
        cancel_event: Optional[threading.Event] = None,
        now: Optional[datetime] = None,
    ) -> LedgerResult:
        """Move one payout request to a new status.

        cancel_event is honoured only until the account lock is held.
        """
        now = self._now(now)
        try:
            with self._index_lock:
                request = self._requests.get(request_id)
            if request is None:
                raise PayoutRequestNotFound(request_id)
            affiliate_id = request.affiliate_id

            with self._locks.hold(affiliate_id, cancel_event=cancel_event):
                plan = PayoutStateMachine.plan(request, _target_status(request, target))
                account = self._accounts[affiliate_id]
                amount = request.requested_amount
                if plan.is_retry:
                    new_credit = account.credit_balance.subtract(amount, non_negative=True)
                else:
                    new_credit = _shift(account.credit_balance, plan.credit_delta)
                new_pending = _shift(account.pending_payout_balance, plan.pending_delta)
                retry_count = request.retry_count + (1 if plan.is_retry else 0)

                self._journal.append(JournalEntry.create(
                    self._entry_id(),
                    JournalKind.PAYOUT_TRANSITION,
                    affiliate_id,
                    {
                        "request_id": request_id,
                        "from_status": plan.source.value,
                        "to_status": plan.target.value,
                        "retry_count": retry_count,
                    },
                    now,
                ))
                with self._index_lock:
                    self._apply_plan(account, request, plan, new_credit, new_pending,
                                     retry_count, now)
                    snapshot = dataclasses.replace(request)
        except LedgerError as exc:
            return self._rejected("advance_status", exc, request_id=request_id,
                                  target=_label(target))

        logger.info(
            "Payout status changed",
            extra={"request_id": request_id, "affiliate_id": affiliate_id,
                   "from_status": plan.source.value, "to_status": plan.target.value,
                   "retry_count": snapshot.retry_count},
        )
        return LedgerResult.ok(snapshot)

    def bulk_advance(
        self,
        request_ids: list[str],
        target: Union[PayoutStatus, str],
        cancel_event: Optional[threading.Event] = None,
    ) -> list[tuple[str, LedgerResult]]:
        """Advance many requests independently; results follow input order.

        Not atomic: each member takes its own account lock, and one
        failure does not affect the others. An unknown target fails
        each existing request with InvalidStatusTransition.
        """
        if not request_ids:
            return []
        workers = min(self._config.bulk_max_workers, len(request_ids))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(
                lambda rid: (rid, self.advance_status(rid, target, cancel_event=cancel_event)),
                request_ids,
            ))
        failed = sum(1 for _, r in results if not r.success)
        logger.info(
            "Bulk status change finished",
            extra={"target": _label(target), "requested": len(request_ids), "failed": failed},
        )
        return results

    # ------------------------------------------------------------------
    # Payout accounts
    # ------------------------------------------------------------------

    def register_payout_account(
        self,
        affiliate_id: str,
        method_type: Union[PayoutMethodType, str],
        account: str,
        display_name: str = "",
        expiry_date: Optional[date] = None,
        now: Optional[datetime] = None,
    ) -> LedgerResult:
        """Add a payout destination for an affiliate.

        The account starts unverified. An affiliate's first account
        becomes their default.
        """
        now = self._now(now)
        try:
            method = _method_type(method_type)
            profile = self._registry.get_profile(method)
            if profile is None or not profile.is_configured:
                raise MethodNotConfigured(method.value)
            record = PayoutAccount(
                account_id=f"pacct_{uuid4().hex[:12]}",
                affiliate_id=affiliate_id,
                method_type=method,
                account=_clean_destination(account),
                display_name=display_name or profile.display_name,
                expiry_date=_check_expiry(expiry_date, now),
                created_utc=now,
            )
            with self._locks.hold(affiliate_id):
                self._journal_payout_account(JournalKind.PAYOUT_ACCOUNT_SAVED, record, now)
                saved = self._payout_accounts.add(record)
        except LedgerError as exc:
            return self._rejected("register_payout_account", exc, affiliate_id=affiliate_id,
                                  method_type=_label(method_type))
        logger.info(
            "Payout account registered",
            extra={"affiliate_id": affiliate_id, "account_id": saved.account_id,
                   "method_type": method.value, "is_default": saved.is_default},
        )
        return LedgerResult.ok(saved)

    def update_payout_account(
        self,
        account_id: str,
        account: Optional[str] = None,
        display_name: Optional[str] = None,
        expiry_date: Optional[date] = None,
        now: Optional[datetime] = None,
    ) -> LedgerResult:
        """Edit a payout account; unset arguments keep their value.

        Pointing the account at a new destination clears verification.
        """
        now = self._now(now)
        try:
            changes: dict[str, Any] = {}
            if display_name is not None:
                changes["display_name"] = display_name
            if expiry_date is not None:
                changes["expiry_date"] = _check_expiry(expiry_date, now)
            destination = _clean_destination(account) if account is not None else None
            with self._payout_account_locked(account_id) as current:
                if destination is not None and destination != current.account:
                    changes["account"] = destination
                    changes["is_verified"] = False
                updated = dataclasses.replace(current, **changes)
                self._journal_payout_account(JournalKind.PAYOUT_ACCOUNT_SAVED, updated, now)
                saved = self._payout_accounts.replace(updated)
        except LedgerError as exc:
            return self._rejected("update_payout_account", exc, account_id=account_id)
        logger.info(
            "Payout account updated",
            extra={"account_id": account_id, "fields": sorted(changes)},
        )
        return LedgerResult.ok(saved)

    def verify_payout_account(
        self,
        account_id: str,
        verified: bool = True,
        now: Optional[datetime] = None,
    ) -> LedgerResult:
        """Record the outcome of verifying a payout destination."""
        now = self._now(now)
        try:
            with self._payout_account_locked(account_id) as current:
                updated = dataclasses.replace(current, is_verified=verified)
                self._journal_payout_account(JournalKind.PAYOUT_ACCOUNT_SAVED, updated, now)
                saved = self._payout_accounts.replace(updated)
        except LedgerError as exc:
            return self._rejected("verify_payout_account", exc, account_id=account_id)
        logger.info(
            "Payout account verification recorded",
            extra={"account_id": account_id, "is_verified": verified},
        )
        return LedgerResult.ok(saved)

    def set_default_payout_account(
        self,
        account_id: str,
        now: Optional[datetime] = None,
    ) -> LedgerResult:
        now = self._now(now)
        try:
            with self._payout_account_locked(account_id) as current:
                self._journal.append(JournalEntry.create(
                    self._entry_id(),
                    JournalKind.PAYOUT_ACCOUNT_DEFAULT_SET,
                    current.affiliate_id,
                    {"account_id": account_id},
                    now,
                ))
                saved = self._payout_accounts.set_default(account_id)
        except LedgerError as exc:
            return self._rejected("set_default_payout_account", exc, account_id=account_id)
        logger.info(
            "Default payout account changed",
            extra={"affiliate_id": saved.affiliate_id, "account_id": account_id},
        )
        return LedgerResult.ok(saved)

    def remove_payout_account(
        self,
        account_id: str,
        now: Optional[datetime] = None,
    ) -> LedgerResult:
        """Delete a payout account.

        Requests already sent to it keep their payout_account_id. If it
        was the default, the affiliate's oldest remaining account takes
        over.
        """
        now = self._now(now)
        try:
            with self._payout_account_locked(account_id) as current:
                self._journal.append(JournalEntry.create(
                    self._entry_id(),
                    JournalKind.PAYOUT_ACCOUNT_REMOVED,
                    current.affiliate_id,
                    {"account_id": account_id},
                    now,
                ))
                removed = self._payout_accounts.remove(account_id)
        except LedgerError as exc:
            return self._rejected("remove_payout_account", exc, account_id=account_id)
        logger.info(
            "Payout account removed",
            extra={"affiliate_id": removed.affiliate_id, "account_id": account_id},
        )
        return LedgerResult.ok(removed)

    def get_payout_account(self, account_id: str) -> Optional[PayoutAccount]:
        return self._payout_accounts.get(account_id)

    def list_payout_accounts(self, affiliate_id: str) -> list[PayoutAccount]:
        return self._payout_accounts.for_affiliate(affiliate_id)

    def list_expiring_payout_accounts(
        self,
        now: Optional[datetime] = None,
        within_days: Optional[int] = None,
    ) -> list[PayoutAccount]:
        """Accounts still valid but expiring within the warning window."""
        if within_days is None:
            within_days = self._config.expiry_warning_days
        return self._payout_accounts.expiring(self._now(now).date(), within_days)

    # ------------------------------------------------------------------
    # Preferences and automatic payouts
    # ------------------------------------------------------------------

    def set_payout_preferences(
        self,
        affiliate_id: str,
        preferences: PayoutPreferences,
        now: Optional[datetime] = None,
    ) -> LedgerResult:
        """Store how an affiliate wants full and automatic payouts sent."""
        now = self._now(now)
        country = preferences.country.upper()
        preferences = dataclasses.replace(preferences, country=country)
        try:
            profile = self._registry.get_profile(preferences.default_method)
            if profile is None or not profile.is_configured:
                raise MethodNotConfigured(preferences.default_method.value)
            if country not in profile.supported_countries:
                raise UnsupportedCountry(preferences.default_method.value, country)
            self._journal.append(JournalEntry.create(
                self._entry_id(),
                JournalKind.PREFERENCES_UPDATED,
                affiliate_id,
                _preferences_to_payload(preferences),
                now,
            ))
            with self._index_lock:
                self._preferences[affiliate_id] = preferences
        except LedgerError as exc:
            return self._rejected("set_payout_preferences", exc, affiliate_id=affiliate_id)
        logger.info(
            "Payout preferences updated",
            extra={"affiliate_id": affiliate_id,
                   "method_type": preferences.default_method.value,
                   "auto_payout_enabled": preferences.auto_payout_enabled},
        )
        return LedgerResult.ok(preferences)

    def get_payout_preferences(self, affiliate_id: str) -> Optional[PayoutPreferences]:
        with self._index_lock:
            return self._preferences.get(affiliate_id)

    def request_full_payout(
        self,
        affiliate_id: str,
        method_type: Optional[Union[PayoutMethodType, str]] = None,
        country: Optional[str] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
        payout_account_id: Optional[str] = None,
    ) -> LedgerResult:
        """Request the whole credit balance as of the call ("payout now").

        The method comes from, in order: the argument, the chosen payout
        account, the preferences, the default payout account. Country
        defaults to the preferences. If the balance shrinks before the
        lock is taken, the request fails with InsufficientFunds.
        """
        preferences = self.get_payout_preferences(affiliate_id)
        if method_type is None and payout_account_id is not None:
            chosen = self._payout_accounts.get(payout_account_id)
            if chosen is not None:
                method_type = chosen.method_type
        if method_type is None and preferences is not None:
            method_type = preferences.default_method
        if method_type is None:
            default = self._payout_accounts.default_for(affiliate_id)
            if default is not None:
                method_type = default.method_type
        if country is None and preferences is not None:
            country = preferences.country
        if method_type is None or country is None:
            return self._rejected("request_full_payout",
                                  PayoutPreferencesNotSet(affiliate_id),
                                  affiliate_id=affiliate_id)

        account = self.get_account(affiliate_id)
        if account is None or account.credit_balance.is_zero:
            currency = account.currency if account else self._config.default_currency
            return self._rejected(
                "request_full_payout",
                InsufficientFunds("full balance", str(Money.zero(currency))),
                affiliate_id=affiliate_id,
            )
        return self.create_payout_request(
            affiliate_id, method_type, account.credit_balance, country, notes=notes, now=now,
            payout_account_id=payout_account_id,
        )

    def run_auto_payouts(self, now: Optional[datetime] = None) -> list[tuple[str, LedgerResult]]:
        """Request full payouts for every auto-payout affiliate at threshold.

        Affiliates below their threshold are skipped and do not appear in
        the result list.
        """
        with self._index_lock:
            candidates = sorted(
                (aid, prefs) for aid, prefs in self._preferences.items()
                if prefs.auto_payout_enabled
            )
        results: list[tuple[str, LedgerResult]] = []
        for affiliate_id, prefs in candidates:
            account = self.get_account(affiliate_id)
            if account is None:
                continue
            threshold = prefs.minimum_payout or self._config.minimum_payout(account.currency)
            if threshold.currency != account.currency or account.credit_balance < threshold:
                logger.debug(
                    "Auto payout skipped",
                    extra={"affiliate_id": affiliate_id,
                           "balance": str(account.credit_balance),
                           "threshold": str(threshold)},
                )
                continue
            results.append((
                affiliate_id,
                self.request_full_payout(affiliate_id, notes="auto payout", now=now),
            ))
        logger.info(
            "Auto payout run finished",
            extra={"candidates": len(candidates), "requested": len(results)},
        )
        return results

    def quote(
        self,
        method_type: Union[PayoutMethodType, str],
        amount: Money,
    ) -> LedgerResult:
        """Fee and net for a payout of amount, without touching balances."""
        try:
            return LedgerResult.ok(self._registry.quote(_method_type(method_type), amount))
        except LedgerError as exc:
            return LedgerResult.fail(exc)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_account(self, affiliate_id: str) -> Optional[AffiliateAccount]:
        """A copy of the account, or None if it was never credited."""
        with self._index_lock:
            account = self._accounts.get(affiliate_id)
            return dataclasses.replace(account) if account is not None else None

    def get_payout_request(self, request_id: str) -> Optional[PayoutRequest]:
        with self._index_lock:
            request = self._requests.get(request_id)
            return dataclasses.replace(request) if request is not None else None

    def list_payout_requests(
        self,
        payout_filter: Optional[PayoutFilter] = None,
    ) -> list[PayoutRequest]:
        """Copies of matching requests in creation order."""
        payout_filter = payout_filter or PayoutFilter()
        with self._index_lock:
            return [
                dataclasses.replace(r) for r in self._requests.values()
                if payout_filter.matches(r)
            ]

    def compute_stats(self, payout_filter: Optional[PayoutFilter] = None) -> StatsSummary:
        """Totals by status over a snapshot; no account locks are taken.

        The summary covers one currency: the filter's, or the default.
        """
        payout_filter = payout_filter or PayoutFilter()
        if payout_filter.currency is None:
            payout_filter = dataclasses.replace(
                payout_filter, currency=self._config.default_currency,
            )
        return compute_stats(self.list_payout_requests(payout_filter), payout_filter.currency)

    def transaction_history(
        self,
        affiliate_id: Optional[str] = None,
        kind: Optional[JournalKind] = None,
    ) -> list[JournalEntry]:
        return self._journal.entries(kind=kind, affiliate_id=affiliate_id)

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    @classmethod
    def from_journal(
        cls,
        config: LedgerConfig,
        journal: TransactionJournal,
        registry: Optional[PayoutMethodRegistry] = None,
        catalog: Optional[CommissionRuleCatalog] = None,
    ) -> LedgerService:
        """Rebuild a service by replaying every journal entry in order.

        Replay is fail-closed: an entry that does not fit the state built
        so far raises ValueError or a LedgerError.
        """
        service = cls(config, registry=registry, catalog=catalog, journal=journal)
        entries = journal.entries()
        for entry in entries:
            service._replay(entry)
        logger.info(
            "Ledger rebuilt from journal",
            extra={"entries": len(entries), "accounts": len(service._accounts),
                   "payout_requests": len(service._requests)},
        )
        return service

    def _replay(self, entry: JournalEntry) -> None:
        payload = entry.payload
        ts = datetime.fromisoformat(entry.timestamp_utc)

        if entry.kind == JournalKind.COMMISSION_CREDITED:
            amount = Money.from_dict(payload["amount"])
            self._applied_events.add(payload["event_id"])
            self._references.observe(payload["reference"])
            account = self._accounts.get(entry.affiliate_id)
            if account is None:
                self._accounts[entry.affiliate_id] = AffiliateAccount(
                    affiliate_id=entry.affiliate_id,
                    credit_balance=amount,
                    pending_payout_balance=Money.zero(amount.currency),
                    created_utc=ts,
                    last_updated_utc=ts,
                )
            else:
                account.credit_balance = account.credit_balance.add(amount)
                account.last_updated_utc = ts
            if payload.get("from_staged"):
                self._commissions.resolve(
                    ApprovalSignal(payload["event_id"], True, payload.get("decided_by", "system")),
                    ts,
                )

        elif entry.kind == JournalKind.COMMISSION_STAGED:
            self._commissions.restore(StagedCommission(
                event_id=payload["event_id"],
                affiliate_id=entry.affiliate_id,
                campaign_id=payload["campaign_id"],
                event_type=CommissionEventType(payload["event_type"]),
                amount=Money.from_dict(payload["amount"]),
                staged_utc=ts,
                occurred_utc=_parse_utc(payload.get("occurred_utc")),
            ))

        elif entry.kind == JournalKind.COMMISSION_REJECTED:
            self._commissions.resolve(
                ApprovalSignal(payload["event_id"], False, payload.get("decided_by", "system")),
                ts,
            )

        elif entry.kind == JournalKind.PAYOUT_REQUESTED:
            request = PayoutRequest.from_record(payload["request"])
            account = self._accounts.get(request.affiliate_id)
            if account is None:
                raise ValueError(
                    f"Journal entry {entry.entry_id} pays out unknown account "
                    f"{request.affiliate_id}"
                )
            account.credit_balance = account.credit_balance.subtract(
                request.requested_amount, non_negative=True,
            )
            account.pending_payout_balance = account.pending_payout_balance.add(
                request.requested_amount,
            )
            account.last_updated_utc = ts
            self._requests[request.request_id] = request
            self._references.observe(request.reference)
            if request.payout_account_id is not None:
                self._payout_accounts.mark_used(request.payout_account_id, ts)

        elif entry.kind == JournalKind.PAYOUT_TRANSITION:
            request = self._requests.get(payload["request_id"])
            if request is None:
                raise ValueError(
                    f"Journal entry {entry.entry_id} moves unknown request "
                    f"{payload['request_id']}"
                )
            plan = PayoutStateMachine.plan(request, PayoutStatus(payload["to_status"]))
            account = self._accounts[request.affiliate_id]
            self._apply_plan(
                account, request, plan,
                _shift(account.credit_balance, plan.credit_delta),
                _shift(account.pending_payout_balance, plan.pending_delta),
                int(payload["retry_count"]),
                ts,
            )

        elif entry.kind == JournalKind.PREFERENCES_UPDATED:
            self._preferences[entry.affiliate_id] = _preferences_from_payload(payload)

        elif entry.kind == JournalKind.PAYOUT_ACCOUNT_SAVED:
            record = PayoutAccount.from_record(payload["account"])
            if self._payout_accounts.get(record.account_id) is None:
                self._payout_accounts.add(record)
            else:
                self._payout_accounts.replace(record)

        elif entry.kind in (JournalKind.PAYOUT_ACCOUNT_REMOVED,
                            JournalKind.PAYOUT_ACCOUNT_DEFAULT_SET):
            account_id = payload["account_id"]
            if self._payout_accounts.get(account_id) is None:
                raise ValueError(
                    f"Journal entry {entry.entry_id} refers to unknown payout account "
                    f"{account_id}"
                )
            if entry.kind == JournalKind.PAYOUT_ACCOUNT_REMOVED:
                self._payout_accounts.remove(account_id)
            else:
                self._payout_accounts.set_default(account_id)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _event_claim(self, event_id: str) -> Iterator[None]:
        """Reserve an event id for the duration of the block.

        Raises DuplicateCommissionEvent if the id is applied, staged or
        claimed by another thread. The claim is dropped on exit; a
        successful credit or staging has recorded the id by then.
        """
        with self._event_lock:
            if (event_id in self._applied_events or event_id in self._claimed_events
                    or self._commissions.is_staged(event_id)):
                raise DuplicateCommissionEvent(event_id)
            self._claimed_events.add(event_id)
        try:
            yield
        finally:
            with self._event_lock:
                self._claimed_events.discard(event_id)

    @contextmanager
    def _payout_account_locked(self, account_id: str) -> Iterator[PayoutAccount]:
        """Hold the owner's account lock and yield the current record."""
        account = self._payout_accounts.get(account_id)
        if account is None:
            raise PayoutAccountNotFound(account_id=account_id)
        with self._locks.hold(account.affiliate_id):
            current = self._payout_accounts.get(account_id)
            if current is None:
                raise PayoutAccountNotFound(account_id=account_id)
            yield current

    def _resolve_destination(
        self,
        affiliate_id: str,
        method: PayoutMethodType,
        account_id: Optional[str],
        now: datetime,
    ) -> Optional[PayoutAccount]:
        """Destination for a payout. Caller holds the account lock."""
        destination = self._payout_accounts.resolve(affiliate_id, method, account_id)
        if destination is None:
            if self._config.require_payout_account:
                raise PayoutAccountNotFound(affiliate_id, method.value)
            return None
        ensure_usable(destination, now.date())
        return destination

    def _journal_payout_account(
        self,
        kind: JournalKind,
        account: PayoutAccount,
        now: datetime,
    ) -> None:
        self._journal.append(JournalEntry.create(
            self._entry_id(), kind, account.affiliate_id, {"account": account.to_record()}, now,
        ))

    def _credit_locked(
        self,
        event_id: str,
        affiliate_id: str,
        amount: Money,
        now: datetime,
        details: dict[str, Any],
    ) -> AffiliateAccount:
        """Journal and apply one credit.

        Caller holds the account lock and owns event_id (claimed or staged).
        """
        account = self._accounts.get(affiliate_id)
        if account is not None and account.currency != amount.currency:
            raise CurrencyMismatch(account.currency, amount.currency)

        reference = self._references.next(COMMISSION_PREFIX, now)
        payload = {"event_id": event_id, "amount": amount.to_dict(), "reference": reference}
        payload.update(details)
        self._journal.append(JournalEntry.create(
            self._entry_id(), JournalKind.COMMISSION_CREDITED, affiliate_id, payload, now,
        ))
        with self._event_lock:
            self._applied_events.add(event_id)

        with self._index_lock:
            if account is None:
                account = AffiliateAccount(
                    affiliate_id=affiliate_id,
                    credit_balance=amount,
                    pending_payout_balance=Money.zero(amount.currency),
                    created_utc=now,
                    last_updated_utc=now,
                )
                self._accounts[affiliate_id] = account
            else:
                account.credit_balance = account.credit_balance.add(amount)
                account.last_updated_utc = now
            snapshot = dataclasses.replace(account)

        logger.info(
            "Commission credited",
            extra={"affiliate_id": affiliate_id, "event_id": event_id,
                   "amount": str(amount), "reference": reference,
                   "credit_balance": str(snapshot.credit_balance)},
        )
        return snapshot

    @staticmethod
    def _apply_plan(
        account: AffiliateAccount,
        request: PayoutRequest,
        plan: TransitionPlan,
        new_credit: Money,
        new_pending: Money,
        retry_count: int,
        now: datetime,
    ) -> None:
        request.transition_to(plan.target)
        request.retry_count = retry_count
        request.last_updated_utc = now
        account.credit_balance = new_credit
        account.pending_payout_balance = new_pending
        account.last_updated_utc = now

    def _rejected(self, operation: str, exc: LedgerError, **fields: Any) -> LedgerResult:
        logger.warning(
            "Ledger operation rejected",
            extra={"operation": operation, "error_code": exc.code,
                   "error": str(exc), **fields},
        )
        return LedgerResult.fail(exc)

    @staticmethod
    def _entry_id() -> str:
        return f"jrn_{uuid4().hex[:12]}"

    @staticmethod
    def _now(now: Optional[datetime]) -> datetime:
        return now if now is not None else datetime.now(timezone.utc)


def _preferences_to_payload(preferences: PayoutPreferences) -> dict[str, Any]:
    return {
        "default_method": preferences.default_method.value,
        "country": preferences.country,
        "auto_payout_enabled": preferences.auto_payout_enabled,
        "minimum_payout": (
            preferences.minimum_payout.to_dict() if preferences.minimum_payout else None
        ),
    }


def _preferences_from_payload(payload: dict[str, Any]) -> PayoutPreferences:
    minimum = payload.get("minimum_payout")
    return PayoutPreferences(
        default_method=PayoutMethodType(payload["default_method"]),
        country=payload["country"],
        auto_payout_enabled=bool(payload.get("auto_payout_enabled", False)),
        minimum_payout=Money.from_dict(minimum) if minimum else None,
    )


def _label(value: Any) -> str:
    return value.value if isinstance(value, enum.Enum) else str(value)


def _method_type(value: Union[PayoutMethodType, str]) -> PayoutMethodType:
    try:
        return PayoutMethodType(value)
    except ValueError:
        raise MethodNotConfigured(_label(value)) from None


def _target_status(request: PayoutRequest, target: Union[PayoutStatus, str]) -> PayoutStatus:
    try:
        return PayoutStatus(target)
    except ValueError:
        allowed = PAYOUT_TRANSITIONS.get(request.status, frozenset())
        raise InvalidStatusTransition(
            request.status.value, _label(target), sorted(s.value for s in allowed),
        ) from None


def _event_details(
    campaign_id: str,
    event_type: CommissionEventType,
    occurred_utc: Optional[datetime],
) -> dict[str, Any]:
    details: dict[str, Any] = {"campaign_id": campaign_id, "event_type": event_type.value}
    if occurred_utc is not None:
        details["occurred_utc"] = occurred_utc.isoformat()
    return details


def _parse_utc(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _clean_destination(account: str) -> str:
    destination = account.strip()
    if not destination:
        raise InvalidPayoutAccount("destination must not be empty")
    return destination


def _check_expiry(expiry_date: Optional[date], now: datetime) -> Optional[date]:
    if expiry_date is not None and expiry_date < now.date():
        raise InvalidPayoutAccount(f"expiry date {expiry_date.isoformat()} is already past")
    return expiry_date
