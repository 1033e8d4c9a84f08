"""Payout ledger CLI — operate a journal-backed ledger from the shell.

Usage:
    payout-ledger methods
    payout-ledger quote --method paypal --amount 100
    payout-ledger credit --affiliate aff1 --event-id evt_1 --amount 150
    payout-ledger request-payout --affiliate aff1 --method paypal --amount 100 --country US
    payout-ledger advance --request-id payout_0123456789ab --status processing
    payout-ledger bulk-advance --status completed payout_a payout_b
    payout-ledger add-account --affiliate aff1 --method paypal --account aff1@example.com
    payout-ledger verify-account --account-id pacct_0123456789ab
    payout-ledger accounts --affiliate aff1
    payout-ledger account --affiliate aff1
    payout-ledger payouts --affiliate aff1 --status pending
    payout-ledger stats
    payout-ledger history --affiliate aff1

State lives in <data-dir>/journal.jsonl and is rebuilt on every run.
"""

from __future__ import annotations

import argparse
import json
import sys
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Optional

from payout_ledger.config import LedgerConfig
from payout_ledger.ledger.journal import JournalKind, TransactionJournal
from payout_ledger.logging_config import configure_logging
from payout_ledger.models.money import Money
from payout_ledger.models.payout import (
    AffiliateAccount,
    FeeQuote,
    PayoutAccount,
    PayoutFilter,
    PayoutMethodType,
    PayoutRequest,
    PayoutStatus,
)
from payout_ledger.service import LedgerResult, LedgerService

JOURNAL_FILENAME = "journal.jsonl"


def _decimal_arg(value: str) -> Decimal:
    try:
        amount = Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"not a decimal amount: {value!r}")
    if not amount.is_finite():
        raise argparse.ArgumentTypeError(f"amount must be finite: {value!r}")
    return amount


def _date_arg(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a YYYY-MM-DD date: {value!r}")


def _load_config(args: argparse.Namespace) -> LedgerConfig:
    if args.config is not None:
        return LedgerConfig.from_config_dir(args.config)
    return LedgerConfig.from_env()


def _make_service(args: argparse.Namespace) -> LedgerService:
    """Rebuild the ledger from the data directory's journal."""
    config = _load_config(args)
    configure_logging(args.log_level or config.log_level)
    data_dir = args.data_dir or config.data_dir
    data_dir.mkdir(parents=True, exist_ok=True)
    journal = TransactionJournal(storage_path=data_dir / JOURNAL_FILENAME)
    return LedgerService.from_journal(config, journal)


def _money(amount: Decimal, currency: Optional[str], service: LedgerService) -> Money:
    return Money.of(amount, (currency or service.config.default_currency).upper())


def _emit(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _fail(result: LedgerResult) -> int:
    print(f"Failed [{result.error_code}]: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def _account_dict(account: AffiliateAccount) -> dict[str, Any]:
    return {
        "affiliate_id": account.affiliate_id,
        "currency": account.currency,
        "credit_balance": str(account.credit_balance.to_decimal()),
        "pending_payout_balance": str(account.pending_payout_balance.to_decimal()),
        "last_updated_utc": account.last_updated_utc,
    }


def _request_dict(request: PayoutRequest) -> dict[str, Any]:
    return {
        "request_id": request.request_id,
        "reference": request.reference,
        "affiliate_id": request.affiliate_id,
        "method_type": request.method_type.value,
        "status": request.status.value,
        "currency": request.currency,
        "requested_amount": str(request.requested_amount.to_decimal()),
        "processing_fee": str(request.processing_fee.to_decimal()),
        "net_amount": str(request.net_amount.to_decimal()),
        "country": request.country,
        "retry_count": request.retry_count,
        "created_utc": request.created_utc,
        "last_updated_utc": request.last_updated_utc,
        "notes": request.notes,
        "payout_account_id": request.payout_account_id,
    }


def _payout_account_dict(account: PayoutAccount) -> dict[str, Any]:
    return {
        "account_id": account.account_id,
        "affiliate_id": account.affiliate_id,
        "method_type": account.method_type.value,
        "account": account.account,
        "display_name": account.display_name,
        "is_verified": account.is_verified,
        "is_default": account.is_default,
        "expiry_date": account.expiry_date,
        "last_used_utc": account.last_used_utc,
    }


def _quote_dict(quote: FeeQuote) -> dict[str, Any]:
    return {
        "method_type": quote.method_type.value,
        "currency": quote.requested_amount.currency,
        "requested_amount": str(quote.requested_amount.to_decimal()),
        "processing_fee_percent": str(quote.processing_fee_percent),
        "processing_fee": str(quote.processing_fee.to_decimal()),
        "net_amount": str(quote.net_amount.to_decimal()),
        "processing_time_estimate": quote.processing_time_estimate,
    }


def cmd_methods(args: argparse.Namespace) -> int:
    config = _load_config(args)
    _emit([
        {
            "method_type": p.method_type.value,
            "display_name": p.display_name,
            "is_configured": p.is_configured,
            "processing_fee_percent": str(p.processing_fee_percent),
            "min_amount": str(p.min_amount),
            "max_amount": str(p.max_amount),
            "supported_countries": sorted(p.supported_countries),
            "processing_time_estimate": p.processing_time_estimate,
        }
        for p in config.method_registry().profiles()
    ])
    return 0


def cmd_quote(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.quote(args.method, _money(args.amount, args.currency, service))
    if not result.success:
        return _fail(result)
    _emit(_quote_dict(result.value))
    return 0


def cmd_credit(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.apply_commission(
        args.event_id, args.affiliate, _money(args.amount, args.currency, service),
    )
    if not result.success:
        return _fail(result)
    _emit(_account_dict(result.value))
    return 0


def cmd_request_payout(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.create_payout_request(
        args.affiliate,
        args.method,
        _money(args.amount, args.currency, service),
        args.country,
        notes=args.notes,
        payout_account_id=args.payout_account,
    )
    if not result.success:
        return _fail(result)
    _emit(_request_dict(result.value))
    return 0


def cmd_add_account(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.register_payout_account(
        args.affiliate, args.method, args.account,
        display_name=args.name or "", expiry_date=args.expires,
    )
    if not result.success:
        return _fail(result)
    _emit(_payout_account_dict(result.value))
    return 0


def cmd_verify_account(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.verify_payout_account(args.account_id, verified=not args.revoke)
    if not result.success:
        return _fail(result)
    _emit(_payout_account_dict(result.value))
    return 0


def cmd_default_account(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.set_default_payout_account(args.account_id)
    if not result.success:
        return _fail(result)
    _emit(_payout_account_dict(result.value))
    return 0


def cmd_remove_account(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.remove_payout_account(args.account_id)
    if not result.success:
        return _fail(result)
    _emit(_payout_account_dict(result.value))
    return 0


def cmd_accounts(args: argparse.Namespace) -> int:
    service = _make_service(args)
    if args.expiring:
        accounts = service.list_expiring_payout_accounts()
        if args.affiliate:
            accounts = [a for a in accounts if a.affiliate_id == args.affiliate]
    elif args.affiliate:
        accounts = service.list_payout_accounts(args.affiliate)
    else:
        print("Failed: give --affiliate or --expiring", file=sys.stderr)
        return 1
    _emit([_payout_account_dict(a) for a in accounts])
    return 0


def cmd_advance(args: argparse.Namespace) -> int:
    service = _make_service(args)
    result = service.advance_status(args.request_id, args.status)
    if not result.success:
        return _fail(result)
    _emit(_request_dict(result.value))
    return 0


def cmd_bulk_advance(args: argparse.Namespace) -> int:
    service = _make_service(args)
    results = service.bulk_advance(args.request_ids, args.status)
    report = []
    for request_id, result in results:
        if result.success:
            report.append({"request_id": request_id, "success": True,
                           "status": result.value.status.value})
        else:
            report.append({"request_id": request_id, "success": False,
                           "error": result.error.to_dict()})
    _emit(report)
    return 0 if all(r.success for _, r in results) else 1


def cmd_account(args: argparse.Namespace) -> int:
    service = _make_service(args)
    account = service.get_account(args.affiliate)
    if account is None:
        print(f"Failed: no account for {args.affiliate}", file=sys.stderr)
        return 1
    _emit(_account_dict(account))
    return 0


def cmd_payouts(args: argparse.Namespace) -> int:
    service = _make_service(args)
    payout_filter = PayoutFilter(
        affiliate_id=args.affiliate,
        status=PayoutStatus(args.status) if args.status else None,
        method_type=PayoutMethodType(args.method) if args.method else None,
    )
    _emit([_request_dict(r) for r in service.list_payout_requests(payout_filter)])
    return 0


def cmd_stats(args: argparse.Namespace) -> int:
    service = _make_service(args)
    payout_filter = PayoutFilter(
        affiliate_id=args.affiliate,
        currency=args.currency.upper() if args.currency else None,
    )
    _emit(service.compute_stats(payout_filter).to_dict())
    return 0


def cmd_history(args: argparse.Namespace) -> int:
    service = _make_service(args)
    kind = JournalKind(args.kind) if args.kind else None
    _emit([e.to_record() for e in service.transaction_history(args.affiliate, kind)])
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="payout-ledger",
        description="Affiliate commission and payout ledger CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config directory (default: $PAYOUT_LEDGER_CONFIG_DIR or config/)",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Directory holding journal.jsonl (default: $PAYOUT_LEDGER_DATA_DIR or data/)",
    )
    parser.add_argument("--log-level", default=None, help="Log level (default: from config)")
    sub = parser.add_subparsers(dest="command")

    methods = [m.value for m in PayoutMethodType]
    statuses = [s.value for s in PayoutStatus]

    # methods
    sub.add_parser("methods", help="List payout method profiles")

    # quote
    p_quote = sub.add_parser("quote", help="Show fee and net for a payout amount")
    p_quote.add_argument("--method", required=True, choices=methods)
    p_quote.add_argument("--amount", required=True, type=_decimal_arg)
    p_quote.add_argument("--currency", help="Currency (default: config default)")

    # credit
    p_credit = sub.add_parser("credit", help="Apply a commission credit")
    p_credit.add_argument("--affiliate", required=True, help="Affiliate ID")
    p_credit.add_argument("--event-id", required=True, help="Commission event ID")
    p_credit.add_argument("--amount", required=True, type=_decimal_arg)
    p_credit.add_argument("--currency", help="Currency (default: config default)")

    # request-payout
    p_req = sub.add_parser("request-payout", help="Create a payout request")
    p_req.add_argument("--affiliate", required=True, help="Affiliate ID")
    p_req.add_argument("--method", required=True, choices=methods)
    p_req.add_argument("--amount", required=True, type=_decimal_arg)
    p_req.add_argument("--country", required=True, help="ISO country code")
    p_req.add_argument("--currency", help="Currency (default: config default)")
    p_req.add_argument("--notes", help="Free-text notes")
    p_req.add_argument("--payout-account", help="Payout account ID (default: default account)")

    # add-account
    p_add = sub.add_parser("add-account", help="Register a payout destination")
    p_add.add_argument("--affiliate", required=True, help="Affiliate ID")
    p_add.add_argument("--method", required=True, choices=methods)
    p_add.add_argument("--account", required=True, help="Destination (email, IBAN, ...)")
    p_add.add_argument("--name", help="Display name")
    p_add.add_argument("--expires", type=_date_arg, help="Expiry date YYYY-MM-DD")

    # verify-account
    p_ver = sub.add_parser("verify-account", help="Mark a payout account verified")
    p_ver.add_argument("--account-id", required=True)
    p_ver.add_argument("--revoke", action="store_true", help="Mark unverified instead")

    # default-account
    p_def = sub.add_parser("default-account", help="Make a payout account the default")
    p_def.add_argument("--account-id", required=True)

    # remove-account
    p_rm = sub.add_parser("remove-account", help="Delete a payout account")
    p_rm.add_argument("--account-id", required=True)

    # accounts
    p_accts = sub.add_parser("accounts", help="List payout accounts")
    p_accts.add_argument("--affiliate", help="Affiliate ID")
    p_accts.add_argument("--expiring", action="store_true",
                         help="Only accounts inside the expiry warning window")

    # advance
    p_adv = sub.add_parser("advance", help="Move a payout request to a new status")
    p_adv.add_argument("--request-id", required=True)
    p_adv.add_argument("--status", required=True, choices=statuses)

    # bulk-advance
    p_bulk = sub.add_parser("bulk-advance", help="Move several payout requests")
    p_bulk.add_argument("--status", required=True, choices=statuses)
    p_bulk.add_argument("request_ids", nargs="+", help="Payout request IDs")

    # account
    p_acct = sub.add_parser("account", help="Show an affiliate's balances")
    p_acct.add_argument("--affiliate", required=True, help="Affiliate ID")

    # payouts
    p_list = sub.add_parser("payouts", help="List payout requests")
    p_list.add_argument("--affiliate", help="Affiliate ID")
    p_list.add_argument("--status", choices=statuses)
    p_list.add_argument("--method", choices=methods)

    # stats
    p_stats = sub.add_parser("stats", help="Payout totals by status")
    p_stats.add_argument("--affiliate", help="Affiliate ID")
    p_stats.add_argument("--currency", help="Currency (default: config default)")

    # history
    p_hist = sub.add_parser("history", help="Transaction history")
    p_hist.add_argument("--affiliate", help="Affiliate ID")
    p_hist.add_argument("--kind", choices=[k.value for k in JournalKind])

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "methods": cmd_methods,
        "quote": cmd_quote,
        "credit": cmd_credit,
        "request-payout": cmd_request_payout,
        "advance": cmd_advance,
        "bulk-advance": cmd_bulk_advance,
        "add-account": cmd_add_account,
        "verify-account": cmd_verify_account,
        "default-account": cmd_default_account,
        "remove-account": cmd_remove_account,
        "accounts": cmd_accounts,
        "account": cmd_account,
        "payouts": cmd_payouts,
        "stats": cmd_stats,
        "history": cmd_history,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
