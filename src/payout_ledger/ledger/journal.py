"""Append-only transaction journal — the audit record of every ledger mutation.

Each credit, staging decision, payout request and status change is
appended as an immutable JournalEntry before the in-memory state
changes. The journal serves as:
1. The transaction history shown to affiliates and merchants.
2. The audit trail (each entry carries a SHA-256 of its canonical JSON).
3. The source for rebuilding ledger state (LedgerService.from_journal).

Entries can be persisted to a JSONL file (one JSON object per line) and
loaded back. Loading is fail-closed: a tampered line or a duplicate
entry id raises.
"""

from __future__ import annotations

import enum
import hashlib
import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


class JournalKind(str, enum.Enum):
    """Classification of ledger mutations."""
    COMMISSION_CREDITED = "commission_credited"
    COMMISSION_STAGED = "commission_staged"
    COMMISSION_REJECTED = "commission_rejected"
    PAYOUT_REQUESTED = "payout_requested"
    PAYOUT_TRANSITION = "payout_transition"
    PREFERENCES_UPDATED = "preferences_updated"
    PAYOUT_ACCOUNT_SAVED = "payout_account_saved"
    PAYOUT_ACCOUNT_REMOVED = "payout_account_removed"
    PAYOUT_ACCOUNT_DEFAULT_SET = "payout_account_default_set"


def _canonical_hash(
    entry_id: str,
    kind: str,
    timestamp_utc: str,
    affiliate_id: str,
    payload: dict[str, Any],
) -> str:
    canonical = json.dumps(
        {
            "entry_id": entry_id,
            "kind": kind,
            "timestamp_utc": timestamp_utc,
            "affiliate_id": affiliate_id,
            "payload": payload,
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


@dataclass(frozen=True)
class JournalEntry:
    """A single immutable ledger record.

    payload holds only JSON-native values (money as
    {"amount_minor", "currency"} dicts) so the hash is reproducible.
    """
    entry_id: str
    kind: JournalKind
    timestamp_utc: str
    affiliate_id: str
    payload: dict[str, Any]
    entry_hash: str

    @staticmethod
    def create(
        entry_id: str,
        kind: JournalKind,
        affiliate_id: str,
        payload: dict[str, Any],
        timestamp_utc: Optional[datetime] = None,
    ) -> JournalEntry:
        """Create a new entry with computed hash."""
        ts = timestamp_utc or datetime.now(timezone.utc)
        ts_str = ts.isoformat()
        return JournalEntry(
            entry_id=entry_id,
            kind=kind,
            timestamp_utc=ts_str,
            affiliate_id=affiliate_id,
            payload=payload,
            entry_hash=_canonical_hash(entry_id, kind.value, ts_str, affiliate_id, payload),
        )

    def to_record(self) -> dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "kind": self.kind.value,
            "timestamp_utc": self.timestamp_utc,
            "affiliate_id": self.affiliate_id,
            "payload": self.payload,
            "entry_hash": self.entry_hash,
        }


class TransactionJournal:
    """Append-only journal with optional JSONL persistence.

    Entries can only be appended, never modified or deleted. Appends are
    serialised; the file write happens before the entry becomes visible,
    so an OSError leaves both the file and the in-memory list unchanged.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._entries: list[JournalEntry] = []
        self._entry_ids: set[str] = set()
        self._storage_path = storage_path
        self._lock = threading.Lock()

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    @property
    def storage_path(self) -> Optional[Path]:
        return self._storage_path

    def append(self, entry: JournalEntry) -> None:
        """Append an entry.

        Raises ValueError on a duplicate entry_id and OSError if the
        backing file cannot be written.
        """
        with self._lock:
            if entry.entry_id in self._entry_ids:
                raise ValueError(f"Duplicate journal entry ID: {entry.entry_id}")
            if self._storage_path:
                self._append_to_file(entry)
            self._entries.append(entry)
            self._entry_ids.add(entry.entry_id)

    def entries(
        self,
        kind: Optional[JournalKind] = None,
        affiliate_id: Optional[str] = None,
    ) -> list[JournalEntry]:
        """Return entries in append order, optionally filtered."""
        with self._lock:
            result = list(self._entries)
        if kind is not None:
            result = [e for e in result if e.kind == kind]
        if affiliate_id is not None:
            result = [e for e in result if e.affiliate_id == affiliate_id]
        return result

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def last_entry(self) -> Optional[JournalEntry]:
        with self._lock:
            return self._entries[-1] if self._entries else None

    def _append_to_file(self, entry: JournalEntry) -> None:
        with self._storage_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(entry.to_record(), sort_keys=True, ensure_ascii=False) + "\n")

    def _load_from_file(self, path: Path) -> None:
        """Load entries with integrity verification."""
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)
                entry_id = data["entry_id"]

                if entry_id in self._entry_ids:
                    raise ValueError(
                        f"Duplicate journal entry ID on recovery (line {line_num}): {entry_id}"
                    )

                expected = _canonical_hash(
                    entry_id,
                    data["kind"],
                    data["timestamp_utc"],
                    data["affiliate_id"],
                    data["payload"],
                )
                if data["entry_hash"] != expected:
                    raise ValueError(
                        f"Integrity check failed (line {line_num}): entry {entry_id} "
                        f"stored hash {data['entry_hash']} != computed {expected}"
                    )

                entry = JournalEntry(
                    entry_id=entry_id,
                    kind=JournalKind(data["kind"]),
                    timestamp_utc=data["timestamp_utc"],
                    affiliate_id=data["affiliate_id"],
                    payload=data["payload"],
                    entry_hash=data["entry_hash"],
                )
                self._entries.append(entry)
                self._entry_ids.add(entry_id)
        logger.info(
            "Journal loaded",
            extra={"path": str(path), "entries": len(self._entries)},
        )
