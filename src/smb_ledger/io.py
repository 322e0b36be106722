# SMB Ledger - Double-entry bookkeeping core for French SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
I/O module for SMB Ledger.

This module reads manual journal entries from a CSV file, one row per
journal line, and records them through the journal engine.

Expected input formats
----------------------

Two canonical input formats are supported (column names are case-insensitive):

1) Debit / credit format
   ----------------------
       entry, date, account, debit, credit, description

   - ``entry``:       free key grouping the lines of one entry
                      (e.g. a voucher number)
   - ``date``:        date of the entry (YYYY-MM-DD)
   - ``account``:     PCG account number
   - ``debit``:       debit amount (positive number or 0)
   - ``credit``:      credit amount (positive number or 0)
   - ``description``: free text label for the line

2) Signed amount format
   --------------------
       entry, date, account, amount, description

   - ``amount`` is signed as ``credit - debit``: a positive amount is a
     credit, a negative amount a debit.

Optional columns: ``entry_description`` (label of the whole entry) and
``journal`` (sales, purchases, bank or general, default general).

Aliases: ``account_number`` / ``code`` for ``account``, ``label`` for
``description``, ``piece`` / ``entry_key`` for ``entry``.

All entries of a file are recorded in one transaction: a rejected entry
leaves the journal untouched.
"""

from __future__ import annotations

import logging
import os
from typing import Optional, Union

import pandas as pd

from . import db, journal
from .authz import ActorContext, require
from .config import NumberingConfig
from .db import DatabaseConfig, JournalEntry
from .errors import NotFoundError
from .journal import NewJournalEntry, NewJournalLine

logger = logging.getLogger(__name__)

_ALIASES = {
    "account_number": "account",
    "code": "account",
    "label": "description",
    "piece": "entry",
    "entry_key": "entry",
    "journal_type": "journal",
}

LINE_COLUMNS = [
    "entry",
    "date",
    "account",
    "debit",
    "credit",
    "description",
    "entry_description",
    "journal",
]


def read_journal_lines(path: Union[str, "os.PathLike[str]"]) -> pd.DataFrame:
    """
    Read journal lines from a CSV file and normalize them.

    Returns
    -------
    pandas.DataFrame
        One row per line with the columns of ``LINE_COLUMNS``: ``date`` is
        datetime64[ns], ``debit`` / ``credit`` are non-negative floats and
        the text columns are strings ("" when absent).

    Raises
    ------
    ValueError
        If the CSV does not contain one of the supported column sets or if
        numeric/date parsing fails.
    """
    df = pd.read_csv(path, dtype=str, keep_default_na=False)

    # Normalize column names to lowercase (to make the check case-insensitive)
    df.columns = [str(c).lower().strip() for c in df.columns]
    df = df.rename(columns={k: v for k, v in _ALIASES.items() if v not in df.columns})
    cols = set(df.columns)

    base = {"entry", "date", "account", "description"}
    if not base.issubset(cols) or not (
        {"debit", "credit"}.issubset(cols) or "amount" in cols
    ):
        raise ValueError(
            "Invalid journal lines structure. Expected either:\n"
            "  - entry, date, account, debit, credit, description\n"
            "  - entry, date, account, amount, description\n"
            "(column names are case-insensitive; 'label' is accepted as an alias "
            "for 'description' and 'code' for 'account')."
        )

    d = df.copy()

    # Parse date strictly: invalid dates should fail loudly
    try:
        d["date"] = pd.to_datetime(d["date"], errors="raise", format="%Y-%m-%d")
    except (TypeError, ValueError) as exc:
        raise ValueError("Invalid values in 'date' column.") from exc

    if {"debit", "credit"}.issubset(cols):
        for col in ("debit", "credit"):
            d[col] = pd.to_numeric(d[col].replace("", "0"), errors="coerce")
        if d[["debit", "credit"]].isna().any().any():
            raise ValueError("Invalid numeric values in 'debit'/'credit' columns.")
    else:
        amount = pd.to_numeric(d["amount"], errors="coerce")
        if amount.isna().any():
            raise ValueError("Invalid numeric values in 'amount' column.")
        d["debit"] = (-amount).clip(lower=0)
        d["credit"] = amount.clip(lower=0)

    for col in ("entry_description", "journal"):
        if col not in d.columns:
            d[col] = ""

    out = d[LINE_COLUMNS].copy()
    for col in ("entry", "account", "description", "entry_description", "journal"):
        out[col] = out[col].astype(str).str.strip()
    return out


def _first_non_empty(values: pd.Series) -> str:
    for value in values:
        if value:
            return value
    return ""


def entries_from_frame(
    lines: pd.DataFrame, account_ids: dict[str, int]
) -> list[NewJournalEntry]:
    """
    Group normalized lines into entries, keeping the order of the file.

    Parameters
    ----------
    lines:
        Output of ``read_journal_lines``.
    account_ids:
        Mapping account number -> account id of the organization.

    Raises
    ------
    ValueError
        If the lines of one entry carry different dates.
    NotFoundError
        If account numbers are unknown (all of them are listed).
    """
    missing = sorted(set(lines["account"]) - set(account_ids))
    if missing:
        raise NotFoundError("Account", ", ".join(missing))

    entries = []
    for key, group in lines.groupby("entry", sort=False):
        dates = group["date"].dt.date.unique()
        if len(dates) != 1:
            raise ValueError(f"Entry {key!r} has lines with different dates.")

        description = (
            _first_non_empty(group["entry_description"])
            or _first_non_empty(group["description"])
            or f"Import {key}"
        )
        entries.append(
            NewJournalEntry(
                date=dates[0],
                description=description,
                journal_type=_first_non_empty(group["journal"]) or "general",
                reference_type="manual",
                reference_id=str(key),
                lines=tuple(
                    NewJournalLine(
                        account_id=account_ids[row.account],
                        debit=float(row.debit),
                        credit=float(row.credit),
                        description=row.description or None,
                    )
                    for row in group.itertuples(index=False)
                ),
            )
        )
    return entries


def import_journal_entries(
    cfg: DatabaseConfig,
    actor: ActorContext,
    path: Union[str, "os.PathLike[str]"],
    *,
    post: bool = True,
    numbering: Optional[NumberingConfig] = None,
) -> list[JournalEntry]:
    """
    Record every entry of a journal lines CSV file.

    With ``post=True`` (default) entries are posted and must balance;
    otherwise they are stored as drafts.
    """
    require(actor, "journal.create")
    if post:
        require(actor, "journal.post")

    lines = read_journal_lines(path)
    account_ids = {
        a.account_number: a.id for a in db.list_accounts(cfg, actor.organization_id)
    }
    entries = entries_from_frame(lines, account_ids)
    created = journal.record_journal_entries(
        cfg, actor, entries, post=post, numbering=numbering
    )
    logger.info("Imported %d journal entries from %s", len(created), path)
    return created
