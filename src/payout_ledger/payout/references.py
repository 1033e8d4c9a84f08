"""Human-readable references: <PREFIX>-<YEAR>-<NNN>.

One global sequence is shared by every prefix, so a reference is unique
even across methods (STR-2026-001, PP-2026-002, WISE-2026-003, ...).
The sequence is zero-padded to three digits and grows past 999.
"""

from __future__ import annotations

import re
import threading
from datetime import datetime, timezone
from typing import Optional

from payout_ledger.models.payout import PayoutMethodType

DEFAULT_PREFIXES: dict[PayoutMethodType, str] = {
    PayoutMethodType.STRIPE: "STR",
    PayoutMethodType.PAYPAL: "PP",
    PayoutMethodType.WISE: "WISE",
    PayoutMethodType.BANK_TRANSFER: "BANK",
}
COMMISSION_PREFIX = "COM"

_REFERENCE_RE = re.compile(r"^[A-Z]+-\d{4}-(\d+)$")


class ReferenceGenerator:
    """Thread-safe generator of unique references."""

    def __init__(self, start: int = 0) -> None:
        self._sequence = start
        self._lock = threading.Lock()

    @property
    def sequence(self) -> int:
        return self._sequence

    def next(self, prefix: str, now: Optional[datetime] = None) -> str:
        if now is None:
            now = datetime.now(timezone.utc)
        with self._lock:
            self._sequence += 1
            seq = self._sequence
        return f"{prefix}-{now.year}-{seq:03d}"

    def observe(self, reference: str) -> None:
        """Advance past an existing reference (journal replay)."""
        match = _REFERENCE_RE.match(reference)
        if match is None:
            return
        seq = int(match.group(1))
        with self._lock:
            if seq > self._sequence:
                self._sequence = seq


def prefix_for(method_type: PayoutMethodType, configured: str = "") -> str:
    return configured or DEFAULT_PREFIXES[method_type]
