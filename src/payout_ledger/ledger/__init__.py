"""Ledger infrastructure — account locks, transaction journal, statistics."""

from payout_ledger.ledger.journal import JournalEntry, JournalKind, TransactionJournal
from payout_ledger.ledger.locks import AccountLockManager
from payout_ledger.ledger.stats import StatsSummary, compute_stats

__all__ = [
    "AccountLockManager",
    "JournalEntry",
    "JournalKind",
    "StatsSummary",
    "TransactionJournal",
    "compute_stats",
]
