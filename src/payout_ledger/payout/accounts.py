"""Payout account registry — each affiliate's own payout destinations.

An affiliate may register several destinations, on one or more rails.
Exactly one of an affiliate's accounts is the default while any exist:
the first registered account becomes the default, and removing the
default promotes the oldest remaining account.

A payout may only be sent to a verified, unexpired account.
"""

from __future__ import annotations

import dataclasses
import threading
from datetime import date, datetime
from typing import Optional

from payout_ledger.errors import (
    PayoutAccountExpired,
    PayoutAccountNotFound,
    PayoutAccountNotVerified,
)
from payout_ledger.models.payout import PayoutAccount, PayoutMethodType


def ensure_usable(account: PayoutAccount, today: date) -> None:
    """Raise PayoutAccountNotVerified or PayoutAccountExpired."""
    if not account.is_verified:
        raise PayoutAccountNotVerified(account.account_id)
    if account.is_expired(today):
        raise PayoutAccountExpired(account.account_id, account.expiry_date.isoformat())


class PayoutAccountRegistry:
    """In-memory store of payout accounts keyed by account_id.

    Returned accounts are copies with ``is_default`` filled in from the
    registry; the flag on a stored record is ignored.

    Usage:
        registry = PayoutAccountRegistry()
        registry.add(account)
        registry.set_default(account.account_id)
        destination = registry.resolve("aff1", PayoutMethodType.PAYPAL)
    """

    def __init__(self) -> None:
        self._accounts: dict[str, PayoutAccount] = {}
        self._defaults: dict[str, str] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add(self, account: PayoutAccount) -> PayoutAccount:
        with self._lock:
            if account.account_id in self._accounts:
                raise ValueError(f"Payout account already registered: {account.account_id}")
            self._accounts[account.account_id] = account
            self._defaults.setdefault(account.affiliate_id, account.account_id)
            return self._view(account)

    def replace(self, account: PayoutAccount) -> PayoutAccount:
        """Store a new version of an existing account; last use is kept."""
        with self._lock:
            current = self._accounts.get(account.account_id)
            if current is None or current.affiliate_id != account.affiliate_id:
                raise PayoutAccountNotFound(
                    account.affiliate_id, account.method_type.value, account.account_id,
                )
            account = dataclasses.replace(account, last_used_utc=current.last_used_utc)
            self._accounts[account.account_id] = account
            return self._view(account)

    def remove(self, account_id: str) -> PayoutAccount:
        with self._lock:
            account = self._accounts.pop(account_id, None)
            if account is None:
                raise KeyError(account_id)
            affiliate_id = account.affiliate_id
            if self._defaults.get(affiliate_id) == account_id:
                del self._defaults[affiliate_id]
                for other in self._accounts.values():
                    if other.affiliate_id == affiliate_id:
                        self._defaults[affiliate_id] = other.account_id
                        break
            return dataclasses.replace(account, is_default=False)

    def set_default(self, account_id: str) -> PayoutAccount:
        with self._lock:
            account = self._accounts[account_id]
            self._defaults[account.affiliate_id] = account_id
            return self._view(account)

    def mark_used(self, account_id: str, when: datetime) -> None:
        with self._lock:
            account = self._accounts.get(account_id)
            if account is not None:
                self._accounts[account_id] = dataclasses.replace(account, last_used_utc=when)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, account_id: str) -> Optional[PayoutAccount]:
        with self._lock:
            account = self._accounts.get(account_id)
            return self._view(account) if account is not None else None

    def for_affiliate(self, affiliate_id: str) -> list[PayoutAccount]:
        """The affiliate's accounts in registration order."""
        with self._lock:
            return [
                self._view(a) for a in self._accounts.values()
                if a.affiliate_id == affiliate_id
            ]

    def default_for(self, affiliate_id: str) -> Optional[PayoutAccount]:
        with self._lock:
            account_id = self._defaults.get(affiliate_id)
            return self._view(self._accounts[account_id]) if account_id else None

    def resolve(
        self,
        affiliate_id: str,
        method_type: PayoutMethodType,
        account_id: Optional[str] = None,
    ) -> Optional[PayoutAccount]:
        """Pick the destination for a payout through method_type.

        An explicit account_id must belong to the affiliate and the
        method. Otherwise the default account is used if it is on this
        rail, else the oldest account on this rail. None means the
        affiliate has no account on this rail.
        """
        if account_id is not None:
            account = self.get(account_id)
            if (account is None or account.affiliate_id != affiliate_id
                    or account.method_type != method_type):
                raise PayoutAccountNotFound(affiliate_id, method_type.value, account_id)
            return account
        candidates = [a for a in self.for_affiliate(affiliate_id) if a.method_type == method_type]
        for account in candidates:
            if account.is_default:
                return account
        return candidates[0] if candidates else None

    def expiring(self, today: date, window_days: int = 30) -> list[PayoutAccount]:
        """Accounts of all affiliates whose expiry falls within the window."""
        with self._lock:
            return [
                self._view(a) for a in self._accounts.values()
                if a.is_expiring_soon(today, window_days)
            ]

    def _view(self, account: PayoutAccount) -> PayoutAccount:
        is_default = self._defaults.get(account.affiliate_id) == account.account_id
        return dataclasses.replace(account, is_default=is_default)
