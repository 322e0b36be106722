# SMB Ledger - Double-entry bookkeeping core for French SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Command-line interface for SMB Ledger.

This module exposes the bookkeeping core from the command line. It reads
the application configuration, opens the SQLite database and dispatches to
one command group:

- ``init``:
    Register the organization, seed the default French chart of accounts
    (or the CSV configured in [accounting].chart_of_accounts) and declare
    the configured fiscal year.

- ``accounts list|add|delete``:
    Browse and maintain the chart of accounts.

- ``entries list|show|create|import|post|cancel``:
    Record and inspect journal entries.

- ``ledger``:
    General ledger with running balance, optionally for one account.

- ``trial-balance``:
    Trial balance ("balance générale") at a date.

- ``report balance-sheet|income-statement|vat|kpis``:
    Financial statements and dashboard figures.

- ``fec``:
    Write the FEC file of a period.

- ``fiscal-years list|create|close``:
    Manage fiscal years.


Period selection
----------------

Commands working on a period (``entries list``, ``ledger``,
``report income-statement``, ``report vat``, ``fec``) accept:

- ``--period fy|ytd|mtd|last-month|last-fy``
- ``--from-date YYYY-MM-DD`` / ``--to-date YYYY-MM-DD``

The fiscal year used as reference is the stored fiscal year containing
today, or the [fiscal_year] table of the configuration.


Output rendering
----------------

Tables are rendered according to ``display.mode`` (``table``, ``csv`` or
``both``), which can be overridden with ``--display-mode``. CSV files are
written to ``--output DIR`` or to ``display.output_dir`` with a
timestamp-based name, e.g. ``trial_balance_YYYY-MM-DD-HH-MM-SS.csv``.


Examples
--------

    python -m smb_ledger.cli init
    python -m smb_ledger.cli entries create --date 2025-01-15 \\
        --description "Apport en capital" \\
        --line 512000:10000:0 --line 101000:0:10000
    python -m smb_ledger.cli trial-balance --as-of 2025-12-31
    python -m smb_ledger.cli report balance-sheet --as-of 2025-12-31 --view simplified
    python -m smb_ledger.cli fec --period fy


Errors raised by the accounting core are reported on stderr and the
process exits with status 1.


End of module description.
"""

import argparse
import logging
import sys
from datetime import date, datetime
from pathlib import Path
from typing import Optional

import pandas as pd

from . import __version__, accounts, fec, fiscal_years, io, journal, ledger, reports
from .authz import ROLE_DEFAULTS, ActorContext, actor_for_role
from .config import AppConfig, load_app_config
from .db import EntriesFilter, NewAccount, ensure_organization
from .errors import AccountingError
from .journal import NewJournalEntry, NewJournalLine
from .logging_config import configure_logging
from .periods import Period, determine_period_from_args
from .views import (
    accounts_to_dataframe,
    apply_view_level_filter,
    balance_sheet_to_dataframe,
    entries_to_dataframe,
    general_ledger_to_dataframe,
    income_statement_to_dataframe,
    kpis_to_dataframe,
    trial_balance_to_dataframe,
    vat_report_to_dataframe,
)

logger = logging.getLogger(__name__)


def _add_period_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--period",
        choices=["fy", "ytd", "mtd", "last-month", "last-fy"],
        help="Predefined reporting period (overrides --from-date/--to-date).",
    )
    parser.add_argument("--from-date", dest="from_date", help="Start date (YYYY-MM-DD).")
    parser.add_argument("--to-date", dest="to_date", help="End date (YYYY-MM-DD).")


def _build_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for the CLI."""
    ap = argparse.ArgumentParser(
        prog="python -m smb_ledger.cli",
        description=(
            "SMB Ledger - Double-entry bookkeeping core for French SMBs. "
            "Maintains the chart of accounts and the journal, and produces "
            "ledgers, financial statements and the FEC export."
        ),
    )
    ap.add_argument("--version", action="store_true", help="Show version and exit.")
    ap.add_argument(
        "--config",
        dest="config_path",
        help="Path to the TOML configuration (default: smb_ledger_config.toml).",
    )
    ap.add_argument(
        "--display-mode",
        choices=["table", "csv", "both"],
        help="Override [display].mode.",
    )
    ap.add_argument("--output", dest="output_dir", help="Directory for CSV outputs.")
    ap.add_argument("--log-level", dest="log_level", help="Override [logging].level.")
    ap.add_argument("--user", default="cli", help="User id recorded in audit columns.")
    ap.add_argument(
        "--role",
        default="admin",
        choices=sorted(ROLE_DEFAULTS),
        help="Role whose permissions apply to the command (default: admin).",
    )

    sub = ap.add_subparsers(dest="command")

    # init
    sub.add_parser("init", help="Initialize the organization, accounts and fiscal year.")

    # accounts
    acc = sub.add_parser("accounts", help="Chart of accounts.")
    acc_sub = acc.add_subparsers(dest="accounts_command")
    acc_list = acc_sub.add_parser("list", help="List accounts.")
    acc_list.add_argument("--class", dest="account_class", type=int)
    acc_list.add_argument("--type", dest="account_type")
    acc_list.add_argument("--prefix", dest="number_prefix")
    acc_list.add_argument("--active-only", action="store_true")
    acc_add = acc_sub.add_parser("add", help="Create an account.")
    acc_add.add_argument("number")
    acc_add.add_argument("name")
    acc_add.add_argument(
        "--type",
        dest="account_type",
        help="asset, liability, equity, income or expense (guessed when omitted).",
    )
    acc_add.add_argument("--parent", dest="parent_account_number")
    acc_add.add_argument("--description")
    acc_delete = acc_sub.add_parser("delete", help="Delete an account.")
    acc_delete.add_argument("number")

    # entries
    ent = sub.add_parser("entries", help="Journal entries.")
    ent_sub = ent.add_subparsers(dest="entries_command")
    ent_list = ent_sub.add_parser("list", help="List entries of a period.")
    _add_period_arguments(ent_list)
    ent_list.add_argument("--status", choices=["draft", "posted", "cancelled"])
    ent_list.add_argument("--journal", choices=["sales", "purchases", "bank", "general"])
    ent_list.add_argument("--description-contains")
    ent_list.add_argument("--limit", type=int)
    ent_list.add_argument("--offset", type=int, default=0)
    ent_show = ent_sub.add_parser("show", help="Show one entry.")
    ent_show.add_argument("entry_number")
    ent_create = ent_sub.add_parser("create", help="Record an entry.")
    ent_create.add_argument("--date", required=True)
    ent_create.add_argument("--description", required=True)
    ent_create.add_argument(
        "--journal", default="general", choices=["sales", "purchases", "bank", "general"]
    )
    ent_create.add_argument(
        "--line",
        dest="lines",
        action="append",
        required=True,
        help="ACCOUNT:DEBIT:CREDIT[:LABEL], repeat for each line.",
    )
    ent_create.add_argument("--draft", action="store_true", help="Store as draft.")
    ent_import = ent_sub.add_parser("import", help="Import entries from CSV.")
    ent_import.add_argument("path")
    ent_import.add_argument("--draft", action="store_true", help="Store as drafts.")
    ent_post = ent_sub.add_parser("post", help="Post a draft entry.")
    ent_post.add_argument("entry_number")
    ent_cancel = ent_sub.add_parser("cancel", help="Cancel an entry.")
    ent_cancel.add_argument("entry_number")
    ent_cancel.add_argument("--reason")

    # ledger
    led = sub.add_parser("ledger", help="General ledger.")
    _add_period_arguments(led)
    led.add_argument("--account", dest="account_number")
    led.add_argument("--opening-balance", action="store_true")

    # trial balance
    tb = sub.add_parser("trial-balance", help="Trial balance at a date.")
    tb.add_argument("--as-of", dest="as_of")

    # reports
    rep = sub.add_parser("report", help="Financial statements.")
    rep_sub = rep.add_subparsers(dest="report_command")
    rep_bs = rep_sub.add_parser("balance-sheet", help="Balance sheet at a date.")
    rep_bs.add_argument("--as-of", dest="as_of")
    rep_bs.add_argument("--view", choices=["simplified", "detailed"], default="detailed")
    rep_is = rep_sub.add_parser("income-statement", help="Income statement.")
    _add_period_arguments(rep_is)
    rep_is.add_argument("--view", choices=["simplified", "detailed"], default="detailed")
    rep_vat = rep_sub.add_parser("vat", help="VAT report.")
    _add_period_arguments(rep_vat)
    rep_kpis = rep_sub.add_parser("kpis", help="Dashboard KPIs.")
    rep_kpis.add_argument("--today")

    # fec
    fec_p = sub.add_parser("fec", help="Export the FEC file of a period.")
    _add_period_arguments(fec_p)

    # fiscal years
    fy = sub.add_parser("fiscal-years", help="Fiscal years.")
    fy_sub = fy.add_subparsers(dest="fiscal_years_command")
    fy_sub.add_parser("list", help="List fiscal years.")
    fy_create = fy_sub.add_parser("create", help="Declare a fiscal year.")
    fy_create.add_argument("name")
    fy_create.add_argument("start")
    fy_create.add_argument("end")
    fy_close = fy_sub.add_parser("close", help="Close a fiscal year.")
    fy_close.add_argument("name")

    return ap


def _parse_optional_date(value: Optional[str]) -> Optional[date]:
    """
    Parse an optional CLI date argument (YYYY-MM-DD).

    Raises
    ------
    SystemExit
        If the date format is invalid.
    """
    if value is None:
        return None

    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        msg = f"Invalid date format: {value!r}. Expected YYYY-MM-DD."
        raise SystemExit(msg) from exc


def _parse_line(raw: str) -> tuple[str, float, float, Optional[str]]:
    """Parse ACCOUNT:DEBIT:CREDIT[:LABEL]."""
    parts = raw.split(":", 3)
    if len(parts) < 3:
        raise SystemExit(f"Invalid --line {raw!r}. Expected ACCOUNT:DEBIT:CREDIT[:LABEL].")
    try:
        debit = float(parts[1] or 0)
        credit = float(parts[2] or 0)
    except ValueError as exc:
        raise SystemExit(f"Invalid amount in --line {raw!r}.") from exc
    label = parts[3] if len(parts) == 4 and parts[3] else None
    return parts[0].strip(), debit, credit, label


def _reference_fiscal_year(config: AppConfig, actor: ActorContext):
    """Stored fiscal year containing today, else the configured one."""
    current = fiscal_years.current_fiscal_year(config.database, actor)
    return current if current is not None else config.fiscal_year


def _period(args: argparse.Namespace, config: AppConfig, actor: ActorContext) -> Period:
    try:
        return determine_period_from_args(args, _reference_fiscal_year(config, actor))
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc


def _print_period(period: Period) -> None:
    print(
        f"Applied period: {period.label} "
        f"({period.start.isoformat()} → {period.end.isoformat()})"
    )


def _render(
    df: pd.DataFrame,
    name: str,
    title: str,
    args: argparse.Namespace,
    config: AppConfig,
) -> None:
    """Print a DataFrame and/or write it as CSV according to the display mode."""
    display_mode = args.display_mode or config.display_mode

    if display_mode in {"table", "both"}:
        print()
        print(f"=== {title} ===")
        if df.empty:
            print("(no rows)")
        else:
            print(df.to_string(index=False))

    if display_mode in {"csv", "both"}:
        output_dir = Path(args.output_dir) if args.output_dir else config.output_dir
        output_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y-%m-%d-%H-%M-%S")
        path = output_dir / f"{name}_{timestamp}.csv"
        df.to_csv(path, index=False)
        print(f"Wrote {path} ({len(df)} rows)")


def _print_entry(entry) -> None:
    print(f"Entry {entry.entry_number}")
    print(f"  date:         {entry.date.isoformat()}")
    print(f"  description:  {entry.description}")
    print(f"  journal:      {entry.journal_type}")
    print(f"  status:       {entry.status}")
    if entry.reference_type:
        print(f"  reference:    {entry.reference_type} {entry.reference_id}")
    if entry.cancelled_reason:
        print(f"  cancelled:    {entry.cancelled_reason}")
    for line in entry.lines:
        label = line.description or ""
        print(
            f"    {line.account_number:<10} {line.debit:>12.2f} "
            f"{line.credit:>12.2f}  {label}"
        )
    print(f"  totals:       {entry.total_debit:.2f} / {entry.total_credit:.2f}")


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def _handle_init(args: argparse.Namespace, config: AppConfig, actor: ActorContext) -> None:
    inserted = accounts.init_chart_of_accounts(
        config.database, actor, config.chart_of_accounts
    )
    print(f"Chart of accounts: {inserted} accounts created.")

    fy = config.fiscal_year
    existing = fiscal_years.list_fiscal_years(config.database, actor)
    if any(f.start_date == fy.start_date and f.end_date == fy.end_date for f in existing):
        print("Fiscal year already declared.")
        return
    created = fiscal_years.create_fiscal_year(
        config.database, actor, str(fy.start_date.year), fy.start_date, fy.end_date
    )
    print(
        f"Fiscal year {created.name} declared "
        f"({created.start_date.isoformat()} → {created.end_date.isoformat()})."
    )


def _handle_accounts(args: argparse.Namespace, config: AppConfig, actor: ActorContext) -> None:
    subcmd = getattr(args, "accounts_command", None)
    cfg = config.database

    if subcmd == "list":
        rows = accounts.list_accounts(
            cfg,
            actor,
            account_class=args.account_class,
            account_type=args.account_type,
            number_prefix=args.number_prefix,
            active_only=args.active_only,
        )
        _render(accounts_to_dataframe(rows), "accounts", "Chart of accounts", args, config)
    elif subcmd == "add":
        account = accounts.create_account(
            cfg,
            actor,
            NewAccount(
                account_number=args.number,
                name=args.name,
                account_type=args.account_type or accounts.default_account_type(args.number),
                parent_account_number=args.parent_account_number,
                description=args.description,
            ),
        )
        print(f"Created account {account.account_number} {account.name} ({account.account_type}).")
    elif subcmd == "delete":
        account = accounts.get_account_by_number(cfg, actor, args.number)
        accounts.delete_account(cfg, actor, account.id)
        print(f"Deleted account {account.account_number}.")
    else:
        print(
            "No accounts subcommand specified. "
            "Available subcommands are: 'list', 'add', 'delete'."
        )


def _handle_entries(args: argparse.Namespace, config: AppConfig, actor: ActorContext) -> None:
    subcmd = getattr(args, "entries_command", None)
    cfg = config.database

    if subcmd == "list":
        period = _period(args, config, actor)
        _print_period(period)
        rows = journal.list_journal_entries(
            cfg,
            actor,
            EntriesFilter(
                start=period.start,
                end=period.end,
                status=args.status,
                journal_type=args.journal,
                description_contains=args.description_contains,
            ),
            limit=args.limit,
            offset=args.offset,
        )
        if not rows:
            print("No entries found for the given criteria.")
            return
        _render(entries_to_dataframe(rows), "entries", "Journal entries", args, config)
        print()
        print(f"Total entries: {len(rows)}")
    elif subcmd == "show":
        _print_entry(journal.get_journal_entry_by_number(cfg, actor, args.entry_number))
    elif subcmd == "create":
        entry_date = _parse_optional_date(args.date)
        lines = []
        for raw in args.lines:
            number, debit, credit, label = _parse_line(raw)
            account = accounts.get_account_by_number(cfg, actor, number)
            lines.append(
                NewJournalLine(
                    account_id=account.id, debit=debit, credit=credit, description=label
                )
            )
        new_entry = NewJournalEntry(
            date=entry_date,
            description=args.description,
            journal_type=args.journal,
            reference_type="manual",
            lines=tuple(lines),
        )
        record = journal.create_draft_entry if args.draft else journal.create_journal_entry
        entry = record(cfg, actor, new_entry, numbering=config.numbering)
        print(f"Recorded {entry.status} entry {entry.entry_number}.")
    elif subcmd == "import":
        csv_path = Path(args.path)
        if not csv_path.is_file():
            raise SystemExit(f"CSV file not found: {csv_path}")
        print(f"Importing journal entries from {csv_path}...")
        try:
            created = io.import_journal_entries(
                cfg, actor, csv_path, post=not args.draft, numbering=config.numbering
            )
        except ValueError as exc:
            raise SystemExit(f"Invalid CSV file: {exc}") from exc
        print(f"Imported {len(created)} entries.")
    elif subcmd == "post":
        entry = journal.get_journal_entry_by_number(cfg, actor, args.entry_number)
        journal.post_journal_entry(cfg, actor, entry.id)
        print(f"Posted entry {entry.entry_number}.")
    elif subcmd == "cancel":
        entry = journal.get_journal_entry_by_number(cfg, actor, args.entry_number)
        journal.cancel_journal_entry(cfg, actor, entry.id, reason=args.reason)
        print(f"Cancelled entry {entry.entry_number}.")
    else:
        print(
            "No entries subcommand specified. "
            "Available subcommands are: "
            "'list', 'show', 'create', 'import', 'post', 'cancel'."
        )


def _handle_ledger(args: argparse.Namespace, config: AppConfig, actor: ActorContext) -> None:
    period = _period(args, config, actor)
    _print_period(period)
    account_id = None
    title = "General ledger"
    if args.account_number:
        account = accounts.get_account_by_number(config.database, actor, args.account_number)
        account_id = account.id
        title = f"General ledger - {account.account_number} {account.name}"
    rows = ledger.general_ledger(
        config.database,
        actor,
        account_id=account_id,
        start=period.start,
        end=period.end,
        include_opening_balance=args.opening_balance,
    )
    _render(general_ledger_to_dataframe(rows), "general_ledger", title, args, config)


def _handle_trial_balance(
    args: argparse.Namespace, config: AppConfig, actor: ActorContext
) -> None:
    as_of = _parse_optional_date(args.as_of) or date.today()
    tb = ledger.trial_balance(config.database, actor, as_of)
    _render(
        trial_balance_to_dataframe(tb),
        "trial_balance",
        f"Trial balance at {as_of.isoformat()}",
        args,
        config,
    )
    if not tb.is_balanced:
        print("Warning: the trial balance does not balance.")


def _handle_report(args: argparse.Namespace, config: AppConfig, actor: ActorContext) -> None:
    subcmd = getattr(args, "report_command", None)
    cfg = config.database

    if subcmd == "balance-sheet":
        as_of = _parse_optional_date(args.as_of) or date.today()
        sheet = reports.balance_sheet(cfg, actor, as_of)
        df = apply_view_level_filter(balance_sheet_to_dataframe(sheet), args.view)
        _render(df, "balance_sheet", f"Bilan au {as_of.isoformat()}", args, config)
    elif subcmd == "income-statement":
        period = _period(args, config, actor)
        _print_period(period)
        statement = reports.income_statement(cfg, actor, period.start, period.end)
        df = apply_view_level_filter(income_statement_to_dataframe(statement), args.view)
        _render(df, "income_statement", "Compte de résultat", args, config)
    elif subcmd == "vat":
        period = _period(args, config, actor)
        _print_period(period)
        report = reports.vat_report(cfg, actor, period.start, period.end)
        _render(vat_report_to_dataframe(report), "vat_report", "TVA", args, config)
    elif subcmd == "kpis":
        today = _parse_optional_date(args.today)
        kpis = reports.accounting_kpis(cfg, actor, today)
        _render(kpis_to_dataframe(kpis), "kpis", "Indicateurs", args, config)
    else:
        print(
            "No report subcommand specified. Available subcommands are: "
            "'balance-sheet', 'income-statement', 'vat', 'kpis'."
        )


def _handle_fec(args: argparse.Namespace, config: AppConfig, actor: ActorContext) -> None:
    period = _period(args, config, actor)
    _print_period(period)
    output_dir = Path(args.output_dir) if args.output_dir else config.output_dir
    path = fec.export_fec(
        config.database,
        actor,
        period.start,
        period.end,
        output_dir,
        siren=config.organization.siren,
        currency=config.currency,
    )
    print(f"Wrote {path}")


def _handle_fiscal_years(
    args: argparse.Namespace, config: AppConfig, actor: ActorContext
) -> None:
    subcmd = getattr(args, "fiscal_years_command", None)
    cfg = config.database

    if subcmd == "list":
        rows = fiscal_years.list_fiscal_years(cfg, actor)
        df = pd.DataFrame(
            [
                {
                    "name": f.name,
                    "start_date": f.start_date.isoformat(),
                    "end_date": f.end_date.isoformat(),
                    "is_closed": f.is_closed,
                    "closed_by": f.closed_by or "",
                }
                for f in rows
            ],
            columns=["name", "start_date", "end_date", "is_closed", "closed_by"],
        )
        _render(df, "fiscal_years", "Fiscal years", args, config)
    elif subcmd == "create":
        created = fiscal_years.create_fiscal_year(
            cfg,
            actor,
            args.name,
            _parse_optional_date(args.start),
            _parse_optional_date(args.end),
        )
        print(f"Fiscal year {created.name} declared.")
    elif subcmd == "close":
        match = [f for f in fiscal_years.list_fiscal_years(cfg, actor) if f.name == args.name]
        if not match:
            raise SystemExit(f"Fiscal year {args.name!r} not found.")
        closed = fiscal_years.close_fiscal_year(cfg, actor, match[0].id)
        print(f"Fiscal year {closed.name} closed.")
    else:
        print(
            "No fiscal-years subcommand specified. "
            "Available subcommands are: 'list', 'create', 'close'."
        )


_HANDLERS = {
    "init": _handle_init,
    "accounts": _handle_accounts,
    "entries": _handle_entries,
    "ledger": _handle_ledger,
    "trial-balance": _handle_trial_balance,
    "report": _handle_report,
    "fec": _handle_fec,
    "fiscal-years": _handle_fiscal_years,
}


def main(argv: Optional[list[str]] = None) -> None:
    """Entry point for the SMB Ledger CLI.

    Parses command-line arguments, loads the configuration, configures
    logging, registers the organization and dispatches to the requested
    command. Accounting errors are printed on stderr and turned into exit
    status 1.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    # --version: short-circuit and exit early.
    if args.version:
        print(f"smb_ledger version {__version__}")
        return

    handler = _HANDLERS.get(args.command)
    if handler is None:
        parser.print_help()
        return

    # 1) Load application configuration
    try:
        config = load_app_config(args.config_path)
    except (FileNotFoundError, ValueError) as exc:
        raise SystemExit(f"Configuration error: {exc}") from exc

    configure_logging(args.log_level or config.log_level)

    # 2) Register the organization (creates the database when needed)
    org = config.organization
    ensure_organization(config.database, org.id, org.name, org.siret)
    actor = actor_for_role(org.id, args.role, args.user)

    # 3) Dispatch
    try:
        handler(args, config, actor)
    except AccountingError as exc:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
