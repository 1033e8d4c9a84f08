"""Tests for configuration loading and structured logging."""

import io
import json
import logging
import os
import pytest
import sys
from decimal import Decimal
from pathlib import Path
from typing import Iterator

from payout_ledger.config import LedgerConfig
from payout_ledger.errors import LockTimeout
from payout_ledger.logging_config import StructuredFormatter, configure_logging, reset_logging
from payout_ledger.models.money import Money
from payout_ledger.models.payout import PayoutMethodType
from payout_ledger.service import LedgerService


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Isolate os.environ so load_dotenv cannot leak into other tests."""
    env = {k: v for k, v in os.environ.items() if not k.startswith("PAYOUT_LEDGER_")}
    monkeypatch.setattr(os, "environ", env)


@pytest.fixture
def log_stream() -> Iterator[io.StringIO]:
    stream = io.StringIO()
    reset_logging()
    configure_logging(logging.INFO, stream=stream)
    yield stream
    reset_logging()


class TestConfigDir:
    def test_defaults_from_file(self) -> None:
        config = LedgerConfig.from_config_dir(CONFIG_DIR)
        assert config.default_currency == "USD"
        assert config.lock_timeout_seconds == 2.0
        assert config.lock_retry_attempts == 3
        assert config.minimum_payout_threshold == Decimal("50.00")
        assert config.minimum_payout() == Money.of("50", "USD")
        assert len(config.payout_methods) == 4

    def test_paypal_profile(self) -> None:
        registry = LedgerConfig.from_config_dir(CONFIG_DIR).method_registry()
        paypal = registry.get_profile(PayoutMethodType.PAYPAL)
        assert paypal.is_configured
        assert paypal.processing_fee_percent == Decimal("3")
        assert paypal.reference_prefix == "PP"
        assert "US" in paypal.supported_countries

    def test_missing_dir(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            LedgerConfig.from_config_dir(tmp_path)

    def test_bad_method_profile(self) -> None:
        with pytest.raises(ValueError):
            LedgerConfig.from_params({"payout_methods": [{
                "method_type": "paypal",
                "processing_fee_percent": "-3",
                "max_amount": "100",
            }]})

    def test_duplicate_method_profile(self) -> None:
        record = {"method_type": "paypal", "max_amount": "100"}
        with pytest.raises(ValueError):
            LedgerConfig.from_params({"payout_methods": [record, record]})

    @pytest.mark.parametrize("locking", [
        {"lock_timeout_seconds": 0},
        {"lock_retry_attempts": 0},
    ])
    def test_bad_locking(self, locking: dict) -> None:
        with pytest.raises(ValueError):
            LedgerConfig.from_params({"locking": locking})

    def test_empty_params_use_defaults(self) -> None:
        config = LedgerConfig.from_params({})
        assert config.payout_methods == ()
        assert config.bulk_max_workers == 4


class TestFromEnv:
    def test_env_overrides(self, clean_env: None, tmp_path: Path) -> None:
        os.environ["PAYOUT_LEDGER_CONFIG_DIR"] = str(CONFIG_DIR)
        os.environ["PAYOUT_LEDGER_LOCK_TIMEOUT_SECONDS"] = "0.5"
        os.environ["PAYOUT_LEDGER_DATA_DIR"] = str(tmp_path)
        config = LedgerConfig.from_env(env_file=tmp_path / "absent.env")
        assert config.lock_timeout_seconds == 0.5
        assert config.data_dir == tmp_path
        assert len(config.payout_methods) == 4

    def test_dotenv_file(self, clean_env: None, tmp_path: Path) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text(
            f"PAYOUT_LEDGER_CONFIG_DIR={CONFIG_DIR}\n"
            "PAYOUT_LEDGER_LOG_LEVEL=debug\n"
            "PAYOUT_LEDGER_DEFAULT_CURRENCY=eur\n",
            encoding="utf-8",
        )
        config = LedgerConfig.from_env(env_file=env_file)
        assert config.log_level == "DEBUG"
        assert config.default_currency == "EUR"

    def test_process_env_beats_dotenv(self, clean_env: None, tmp_path: Path) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text("PAYOUT_LEDGER_LOG_LEVEL=debug\n", encoding="utf-8")
        os.environ["PAYOUT_LEDGER_CONFIG_DIR"] = str(CONFIG_DIR)
        os.environ["PAYOUT_LEDGER_LOG_LEVEL"] = "warning"
        assert LedgerConfig.from_env(env_file=env_file).log_level == "WARNING"


class TestLogging:
    def test_service_logs_json(self, log_stream: io.StringIO) -> None:
        service = LedgerService(LedgerConfig.from_config_dir(CONFIG_DIR))
        service.apply_commission("e1", "aff1", Money.of("10", "USD"))
        records = [json.loads(line) for line in log_stream.getvalue().splitlines()]
        credited = [r for r in records if r["message"] == "Commission credited"]
        assert len(credited) == 1
        assert credited[0]["affiliate_id"] == "aff1"
        assert credited[0]["level"] == "INFO"
        assert credited[0]["logger"] == "payout_ledger.service"

    def test_rejections_logged_as_warning(self, log_stream: io.StringIO) -> None:
        service = LedgerService(LedgerConfig.from_config_dir(CONFIG_DIR))
        service.create_payout_request("aff1", PayoutMethodType.BANK_TRANSFER,
                                      Money.of("200", "USD"), "US")
        records = [json.loads(line) for line in log_stream.getvalue().splitlines()]
        (warning,) = [r for r in records if r["level"] == "WARNING"]
        assert warning["error_code"] == "METHOD_NOT_CONFIGURED"
        assert warning["operation"] == "create_payout_request"

    def test_configure_is_idempotent(self, log_stream: io.StringIO) -> None:
        configure_logging(logging.DEBUG, stream=io.StringIO())
        ledger_logger = logging.getLogger("payout_ledger")
        # pytest may attach its own capture handlers to the logger
        installed = [h for h in ledger_logger.handlers if type(h) is logging.StreamHandler]
        assert len(installed) == 1
        assert installed[0].stream is log_stream
        assert ledger_logger.level == logging.DEBUG

    def test_reset_removes_installed_handler(self, log_stream: io.StringIO) -> None:
        reset_logging()
        ledger_logger = logging.getLogger("payout_ledger")
        assert not [h for h in ledger_logger.handlers if type(h) is logging.StreamHandler]
        assert ledger_logger.propagate is True

    def test_level_by_name(self, log_stream: io.StringIO) -> None:
        configure_logging("warning")
        assert logging.getLogger("payout_ledger").level == logging.WARNING
        with pytest.raises(ValueError):
            configure_logging("loud")

    def test_exception_code_in_output(self) -> None:
        formatter = StructuredFormatter()
        try:
            raise LockTimeout("aff1", 2.0)
        except LockTimeout:
            record = logging.LogRecord(
                "payout_ledger.test", logging.ERROR, __file__, 1, "failed", (), sys.exc_info(),
            )
        data = json.loads(formatter.format(record))
        assert data["exc_code"] == "LOCK_TIMEOUT"
        assert data["exc_type"] == "LockTimeout"
