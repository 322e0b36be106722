# SMB Ledger - Double-entry bookkeeping core for French SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
FEC export (Fichier des Écritures Comptables).

The FEC is the flat file of every accounting line that French companies
must hand over to the tax administration on request (article A47 A-1 of
the Livre des procédures fiscales). This module writes the 18-column,
pipe-delimited variant:

- first row: the literal column header;
- one row per posted line, ordered by entry date, entry number and line
  position;
- rows separated by CRLF, UTF-8 encoded;
- dates as YYYYMMDD, amounts with two decimals and a comma separator.

Draft and cancelled entries are never exported.
"""

from __future__ import annotations

import logging
from datetime import date
from pathlib import Path
from typing import Optional, Union

from . import db
from .authz import ActorContext, require
from .db import DatabaseConfig, PostedLine
from .errors import ValidationError

logger = logging.getLogger(__name__)

FEC_COLUMNS: tuple[str, ...] = (
    "JournalCode",
    "JournalLib",
    "EcritureNum",
    "EcritureDate",
    "CompteNum",
    "CompteLib",
    "CompAuxNum",
    "CompAuxLib",
    "PieceRef",
    "PieceDate",
    "EcritureLib",
    "Debit",
    "Credit",
    "EcritureLet",
    "DateLet",
    "ValidDate",
    "Montantdevise",
    "Idevise",
)

FEC_SEPARATOR = "|"
FEC_LINE_END = "\r\n"

JOURNAL_CODES: dict[str, tuple[str, str]] = {
    "sales": ("VE", "Journal des ventes"),
    "purchases": ("AC", "Journal des achats"),
    "bank": ("BQ", "Journal de banque"),
    "general": ("OD", "Journal des OD"),
}
DEFAULT_JOURNAL = ("OD", "Opérations diverses")

DEFAULT_SIREN = "000000000"


def _clean(text: Optional[str]) -> str:
    """Make a label safe for a pipe-delimited, line-oriented file."""
    if not text:
        return ""
    for char in (FEC_SEPARATOR, "\r", "\n"):
        text = text.replace(char, " ")
    return text


def _fec_date(day: date) -> str:
    return day.strftime("%Y%m%d")


def _fec_amount(cents: int) -> str:
    return f"{db.from_cents(cents):.2f}".replace(".", ",")


def _fec_row(line: PostedLine, currency: str) -> str:
    code, label = JOURNAL_CODES.get(line.journal_type, DEFAULT_JOURNAL)
    entry_date = _fec_date(line.entry_date)
    fields = [
        code,
        label,
        line.entry_number,
        entry_date,
        line.account_number,
        _clean(line.account_name),
        "",
        "",
        line.entry_number,
        entry_date,
        _clean(line.line_description or line.entry_description),
        _fec_amount(line.debit_cents),
        _fec_amount(line.credit_cents),
        "",
        "",
        entry_date,
        "",
        currency,
    ]
    return FEC_SEPARATOR.join(fields)


def generate_fec(
    cfg: DatabaseConfig,
    actor: ActorContext,
    start: date,
    end: date,
    *,
    currency: str = "EUR",
) -> str:
    """
    Build the FEC content of the posted lines dated in [start, end].

    Returns
    -------
    str
        Header and rows joined with CRLF, without a trailing line break.
    """
    require(actor, "reports.export")
    if end < start:
        raise ValidationError("FEC end date cannot be before start date.")

    lines = db.fetch_posted_lines(cfg, actor.organization_id, start=start, end=end)
    rows = [FEC_SEPARATOR.join(FEC_COLUMNS)]
    rows.extend(_fec_row(line, currency) for line in lines)
    return FEC_LINE_END.join(rows)


def fec_filename(siren: Optional[str], start: date) -> str:
    """Return the regulatory file name, e.g. "123456789FEC20241231.txt".

    The year is the year of the first exported day; a missing SIREN is
    replaced by nine zeros.
    """
    return f"{siren or DEFAULT_SIREN}FEC{start.year}1231.txt"


def export_fec(
    cfg: DatabaseConfig,
    actor: ActorContext,
    start: date,
    end: date,
    output_dir: Union[str, Path],
    *,
    siren: Optional[str] = None,
    currency: str = "EUR",
) -> Path:
    """Write the FEC file into ``output_dir`` and return its path."""
    content = generate_fec(cfg, actor, start, end, currency=currency)

    out_dir = Path(output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / fec_filename(siren, start)
    # newline="" keeps the CRLF separators untouched on every platform.
    with path.open("w", encoding="utf-8", newline="") as handle:
        handle.write(content)

    logger.info(
        "Exported FEC %s (%d lines, %s - %s)",
        path,
        content.count(FEC_LINE_END),
        start.isoformat(),
        end.isoformat(),
    )
    return path
