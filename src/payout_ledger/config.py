"""Ledger configuration — parameters and payout method profiles.

Defaults live in config/ledger_params.json at the repository root.
Environment variables (optionally from a .env file, read with
python-dotenv) override individual settings:

    PAYOUT_LEDGER_CONFIG_DIR            directory holding ledger_params.json
    PAYOUT_LEDGER_DEFAULT_CURRENCY      e.g. USD
    PAYOUT_LEDGER_LOCK_TIMEOUT_SECONDS  bounded wait per lock attempt
    PAYOUT_LEDGER_LOG_LEVEL             DEBUG, INFO, WARNING, ...
    PAYOUT_LEDGER_DATA_DIR              where the CLI keeps its journal

Invalid configuration raises ValueError at load time; the ledger never
starts with a half-understood method profile.
"""

from __future__ import annotations

import dataclasses
import json
import os
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

from payout_ledger.models.money import Money, to_decimal
from payout_ledger.models.payout import PayoutMethodProfile
from payout_ledger.payout.methods import PayoutMethodRegistry, profile_from_record

DEFAULT_CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"
DEFAULT_DATA_DIR = Path(__file__).resolve().parents[2] / "data"
CONFIG_FILENAME = "ledger_params.json"
ENV_PREFIX = "PAYOUT_LEDGER_"


@dataclass(frozen=True)
class LedgerConfig:
    """Immutable runtime configuration for a LedgerService."""

    default_currency: str = "USD"
    lock_timeout_seconds: float = 2.0
    lock_retry_attempts: int = 3
    lock_retry_backoff_seconds: float = 0.05
    bulk_max_workers: int = 4
    minimum_payout_threshold: Decimal = Decimal("50")
    require_payout_account: bool = False
    expiry_warning_days: int = 30
    payout_methods: tuple[PayoutMethodProfile, ...] = ()
    log_level: str = "INFO"
    data_dir: Path = DEFAULT_DATA_DIR

    def __post_init__(self) -> None:
        if self.lock_timeout_seconds <= 0:
            raise ValueError(
                f"lock_timeout_seconds must be positive, got {self.lock_timeout_seconds}"
            )
        if self.lock_retry_attempts < 1:
            raise ValueError(
                f"lock_retry_attempts must be at least 1, got {self.lock_retry_attempts}"
            )
        if self.bulk_max_workers < 1:
            raise ValueError(f"bulk_max_workers must be at least 1, got {self.bulk_max_workers}")
        if self.expiry_warning_days < 0:
            raise ValueError(
                f"expiry_warning_days must not be negative, got {self.expiry_warning_days}"
            )
        seen = set()
        for profile in self.payout_methods:
            if profile.method_type in seen:
                raise ValueError(f"Duplicate payout method profile: {profile.method_type.value}")
            seen.add(profile.method_type)

    @classmethod
    def from_params(cls, params: dict[str, Any]) -> LedgerConfig:
        """Build from the parsed contents of ledger_params.json."""
        locking = params.get("locking", {})
        bulk = params.get("bulk", {})
        auto = params.get("auto_payout", {})
        accounts = params.get("payout_accounts", {})
        return cls(
            default_currency=params.get("default_currency", "USD"),
            lock_timeout_seconds=float(locking.get("lock_timeout_seconds", 2.0)),
            lock_retry_attempts=int(locking.get("lock_retry_attempts", 3)),
            lock_retry_backoff_seconds=float(locking.get("lock_retry_backoff_seconds", 0.05)),
            bulk_max_workers=int(bulk.get("max_workers", 4)),
            minimum_payout_threshold=to_decimal(auto.get("minimum_payout_threshold", "50")),
            require_payout_account=bool(accounts.get("require_registered", False)),
            expiry_warning_days=int(accounts.get("expiry_warning_days", 30)),
            payout_methods=tuple(
                profile_from_record(record) for record in params.get("payout_methods", [])
            ),
        )

    @classmethod
    def from_config_dir(cls, config_dir: Path = DEFAULT_CONFIG_DIR) -> LedgerConfig:
        """Load ledger_params.json from a config directory."""
        path = Path(config_dir) / CONFIG_FILENAME
        params = json.loads(path.read_text(encoding="utf-8"))
        return cls.from_params(params)

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> LedgerConfig:
        """Load .env (if any), then the config dir, then apply overrides."""
        load_dotenv(env_file)
        config_dir = Path(os.getenv(f"{ENV_PREFIX}CONFIG_DIR", str(DEFAULT_CONFIG_DIR)))
        config = cls.from_config_dir(config_dir)

        overrides: dict[str, Any] = {}
        currency = os.getenv(f"{ENV_PREFIX}DEFAULT_CURRENCY", "").strip()
        if currency:
            overrides["default_currency"] = currency.upper()
        timeout = os.getenv(f"{ENV_PREFIX}LOCK_TIMEOUT_SECONDS", "").strip()
        if timeout:
            overrides["lock_timeout_seconds"] = float(timeout)
        level = os.getenv(f"{ENV_PREFIX}LOG_LEVEL", "").strip()
        if level:
            overrides["log_level"] = level.upper()
        data_dir = os.getenv(f"{ENV_PREFIX}DATA_DIR", "").strip()
        if data_dir:
            overrides["data_dir"] = Path(data_dir)
        return dataclasses.replace(config, **overrides) if overrides else config

    def method_registry(self) -> PayoutMethodRegistry:
        return PayoutMethodRegistry(self.payout_methods)

    def minimum_payout(self, currency: Optional[str] = None) -> Money:
        return Money.of(self.minimum_payout_threshold, currency or self.default_currency)
