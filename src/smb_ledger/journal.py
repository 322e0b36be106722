# SMB Ledger - Double-entry bookkeeping core for French SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Journal entry engine.

This module records double-entry journal entries ("écritures comptables")
and drives their life cycle:

    draft ──post──> posted ──cancel──> cancelled
      └──────────────cancel──────────────┘

Guarantees
----------
- A posted entry always satisfies sum(debit) == sum(credit). Amounts are
  quantized to cents before the comparison, so only floating-point noise
  below one cent is tolerated.
- Entry numbers ("EC-000001") are allocated in the same write transaction
  as the insert of the entry and its lines: numbering is gap-free,
  monotonic and serialized between concurrent writers.
- Header and lines are persisted atomically; any failure rolls the whole
  unit back.
- Cancelled entries stay stored (audit trail) but are excluded from every
  aggregation.
- Entries dated inside a closed fiscal year cannot be created, posted or
  cancelled.

Every mutation invalidates the cached ledger aggregates of the organization.
"""

from __future__ import annotations

import logging
import math
import sqlite3
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from . import db, fiscal_years, ledger
from .authz import ActorContext, require
from .config import NumberingConfig
from .db import DatabaseConfig, EntriesFilter, JournalEntry, LineRecord
from .errors import (
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    UnbalancedEntryError,
    ValidationError,
)

logger = logging.getLogger(__name__)

DOCUMENT_NUMBER_DIGITS: dict[str, int] = {
    "journal_entry": 6,
    "invoice": 5,
    "quote": 5,
}


@dataclass(frozen=True)
class NewJournalLine:
    """A line of an entry being recorded. Exactly one side carries the amount."""

    account_id: int
    debit: float = 0.0
    credit: float = 0.0
    description: Optional[str] = None


@dataclass(frozen=True)
class NewJournalEntry:
    date: date
    description: str
    lines: Sequence[NewJournalLine] = field(default_factory=tuple)
    journal_type: str = "general"
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Numbering
# ---------------------------------------------------------------------------


def _prefix_for(document_type: str, numbering: Optional[NumberingConfig]) -> str:
    numbering = numbering or NumberingConfig()
    prefixes = {
        "journal_entry": numbering.journal_entry_prefix,
        "invoice": numbering.invoice_prefix,
        "quote": numbering.quote_prefix,
    }
    try:
        return prefixes[document_type]
    except KeyError as exc:
        raise ValidationError(
            f"Unknown document type {document_type!r}.", field="document_type"
        ) from exc


def format_document_number(
    document_type: str,
    number: int,
    numbering: Optional[NumberingConfig] = None,
) -> str:
    """Format a sequence number: ("journal_entry", 1) -> "EC-000001"."""
    prefix = _prefix_for(document_type, numbering)
    digits = DOCUMENT_NUMBER_DIGITS[document_type]
    return f"{prefix}-{number:0{digits}d}"


def next_document_number(
    cfg: DatabaseConfig,
    actor: ActorContext,
    document_type: str,
    numbering: Optional[NumberingConfig] = None,
) -> str:
    """Allocate and return the next invoice or quote number.

    Uses the same serialized allocator as journal entries: the number is
    consumed as soon as this call returns.
    """
    require(actor, "journal.create")
    if document_type == "journal_entry":
        raise ValidationError(
            "Journal entry numbers are allocated when the entry is recorded.",
            field="document_type",
        )
    _prefix_for(document_type, numbering)

    try:
        with db.transaction(cfg) as conn:
            number = db.allocate_sequence_number(conn, actor.organization_id, document_type)
    except sqlite3.Error as exc:
        raise PersistenceError(f"Could not allocate a {document_type} number.") from exc
    return format_document_number(document_type, number, numbering)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _amount_to_cents(value: float, position: int, side: str) -> int:
    try:
        amount = float(value or 0.0)
    except (TypeError, ValueError) as exc:
        raise ValidationError(
            f"Line {position}: {side} is not a number ({value!r}).", field=side
        ) from exc
    if not math.isfinite(amount):
        raise ValidationError(f"Line {position}: {side} must be finite.", field=side)
    if amount < 0:
        raise ValidationError(
            f"Line {position}: {side} cannot be negative ({amount}).", field=side
        )
    return db.to_cents(amount)


def _validate_header(entry: NewJournalEntry) -> None:
    if not (entry.description or "").strip():
        raise ValidationError("Entry description cannot be empty.", field="description")
    if entry.journal_type not in db.JOURNAL_TYPES:
        raise ValidationError(
            f"Unknown journal type {entry.journal_type!r}. "
            f"Expected one of: {', '.join(db.JOURNAL_TYPES)}.",
            field="journal_type",
        )
    if entry.reference_type is not None and entry.reference_type not in db.REFERENCE_TYPES:
        raise ValidationError(
            f"Unknown reference type {entry.reference_type!r}. "
            f"Expected one of: {', '.join(db.REFERENCE_TYPES)}.",
            field="reference_type",
        )
    if not isinstance(entry.date, date):
        raise ValidationError("Entry date must be a date.", field="date")


def _build_line_records(lines: Sequence[NewJournalLine]) -> list[LineRecord]:
    """Quantize lines to cents and check each of them on its own."""
    records = []
    for position, line in enumerate(lines, start=1):
        debit = _amount_to_cents(line.debit, position, "debit")
        credit = _amount_to_cents(line.credit, position, "credit")
        if debit == 0 and credit == 0:
            raise ValidationError(f"Line {position} has no amount.")
        if debit and credit:
            raise ValidationError(
                f"Line {position} carries both a debit and a credit; "
                "split it into two lines."
            )
        records.append(
            LineRecord(
                account_id=int(line.account_id),
                description=line.description,
                debit_cents=debit,
                credit_cents=credit,
                position=position,
            )
        )
    return records


def _check_balanced(records: Sequence[LineRecord]) -> None:
    if len(records) < 2:
        raise ValidationError("A journal entry needs at least two lines.", field="lines")
    total_debit = sum(r.debit_cents for r in records)
    total_credit = sum(r.credit_cents for r in records)
    if total_debit != total_credit:
        logger.warning(
            "Rejected unbalanced entry: debit %.2f, credit %.2f",
            db.from_cents(total_debit),
            db.from_cents(total_credit),
        )
        raise UnbalancedEntryError(db.from_cents(total_debit), db.from_cents(total_credit))


def _is_balanced(records: Sequence[LineRecord]) -> bool:
    return len(records) >= 2 and sum(r.debit_cents for r in records) == sum(
        r.credit_cents for r in records
    )


def _check_accounts(
    conn: sqlite3.Connection, organization_id: str, account_ids: Sequence[int]
) -> None:
    """Every account must exist in the organization and be active."""
    accounts = db.load_accounts_by_ids(conn, organization_id, account_ids)
    for account_id in account_ids:
        account = accounts.get(account_id)
        if account is None:
            raise NotFoundError("Account", account_id)
        if not account.is_active:
            raise ValidationError(
                f"Account {account.account_number} is inactive and cannot be used.",
                field="account_id",
            )


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


def _write_entry(
    conn: sqlite3.Connection,
    actor: ActorContext,
    entry: NewJournalEntry,
    records: list[LineRecord],
    status: str,
    numbering: Optional[NumberingConfig],
) -> tuple[int, str]:
    """Check, number and insert one entry on the caller's transaction."""
    org = actor.organization_id
    fiscal_years.assert_date_open(conn, org, entry.date)
    _check_accounts(conn, org, [r.account_id for r in records])
    number = db.allocate_sequence_number(conn, org, "journal_entry")
    entry_number = format_document_number("journal_entry", number, numbering)
    entry_id = db.insert_journal_entry(
        conn,
        org,
        entry_number=entry_number,
        entry_date=entry.date,
        description=entry.description.strip(),
        journal_type=entry.journal_type,
        reference_type=entry.reference_type,
        reference_id=entry.reference_id,
        status=status,
        is_balanced=_is_balanced(records),
        created_by=actor.user_id,
        lines=records,
    )
    return entry_id, entry_number


def _insert_entry(
    cfg: DatabaseConfig,
    actor: ActorContext,
    entry: NewJournalEntry,
    records: list[LineRecord],
    status: str,
    numbering: Optional[NumberingConfig],
) -> JournalEntry:
    org = actor.organization_id
    try:
        with db.transaction(cfg) as conn:
            entry_id, entry_number = _write_entry(
                conn, actor, entry, records, status, numbering
            )
    except sqlite3.Error as exc:
        raise PersistenceError(
            f"Could not record journal entry {entry.description!r}."
        ) from exc

    ledger.invalidate_cache(cfg, org)
    logger.info(
        "Recorded %s entry %s dated %s (%s)",
        status,
        entry_number,
        entry.date.isoformat(),
        entry.description,
    )
    return get_journal_entry(cfg, actor, entry_id)


def create_journal_entry(
    cfg: DatabaseConfig,
    actor: ActorContext,
    entry: NewJournalEntry,
    *,
    numbering: Optional[NumberingConfig] = None,
) -> JournalEntry:
    """
    Record a balanced entry directly in the posted state.

    Steps: validate the lines, check the balance, then in one write
    transaction check the fiscal year and accounts, allocate the entry
    number and insert the header with all of its lines.

    Raises
    ------
    UnbalancedEntryError
        If the quantized debit and credit totals differ.
    ValidationError
        On malformed input or an inactive account.
    NotFoundError
        If a line refers to an account outside the organization.
    ClosedFiscalYearError
        If the entry date falls in a closed fiscal year.
    PersistenceError
        If the database rejects the write; nothing is stored.
    """
    require(actor, "journal.create")
    require(actor, "journal.post")
    _validate_header(entry)
    records = _build_line_records(entry.lines)
    _check_balanced(records)
    return _insert_entry(cfg, actor, entry, records, "posted", numbering)


def create_draft_entry(
    cfg: DatabaseConfig,
    actor: ActorContext,
    entry: NewJournalEntry,
    *,
    numbering: Optional[NumberingConfig] = None,
) -> JournalEntry:
    """Record an entry as a draft. The balance is only required at posting."""
    require(actor, "journal.create")
    _validate_header(entry)
    records = _build_line_records(entry.lines)
    return _insert_entry(cfg, actor, entry, records, "draft", numbering)


def record_journal_entries(
    cfg: DatabaseConfig,
    actor: ActorContext,
    entries: Sequence[NewJournalEntry],
    *,
    post: bool = True,
    numbering: Optional[NumberingConfig] = None,
) -> list[JournalEntry]:
    """
    Record several entries in a single write transaction.

    Either every entry is stored (posted, or as drafts with ``post=False``)
    or none is: a closed fiscal year, an inactive account or a database
    error on any entry rolls the whole batch back, numbers included.
    """
    require(actor, "journal.create")
    if post:
        require(actor, "journal.post")

    prepared = []
    for entry in entries:
        _validate_header(entry)
        records = _build_line_records(entry.lines)
        if post:
            _check_balanced(records)
        prepared.append((entry, records))

    status = "posted" if post else "draft"
    org = actor.organization_id
    try:
        with db.transaction(cfg) as conn:
            written = [
                _write_entry(conn, actor, entry, records, status, numbering)
                for entry, records in prepared
            ]
    except sqlite3.Error as exc:
        raise PersistenceError(
            f"Could not record a batch of {len(prepared)} journal entries."
        ) from exc

    ledger.invalidate_cache(cfg, org)
    logger.info(
        "Recorded %d %s entries (%s)",
        len(written),
        status,
        ", ".join(number for _, number in written) or "none",
    )
    return [get_journal_entry(cfg, actor, entry_id) for entry_id, _ in written]


# ---------------------------------------------------------------------------
# Life cycle
# ---------------------------------------------------------------------------


def _read_status(conn: sqlite3.Connection, organization_id: str, entry_id: int):
    state = db.read_entry_status(conn, organization_id, entry_id)
    if state is None:
        raise NotFoundError("JournalEntry", entry_id)
    return state


def update_draft_lines(
    cfg: DatabaseConfig,
    actor: ActorContext,
    entry_id: int,
    lines: Sequence[NewJournalLine],
) -> JournalEntry:
    """Replace every line of a draft entry."""
    require(actor, "journal.create")
    records = _build_line_records(lines)
    org = actor.organization_id
    try:
        with db.transaction(cfg) as conn:
            entry_number, status, entry_date = _read_status(conn, org, entry_id)
            if status != "draft":
                raise ValidationError(
                    f"Entry {entry_number} is {status}: only drafts can be edited."
                )
            fiscal_years.assert_date_open(conn, org, entry_date)
            _check_accounts(conn, org, [r.account_id for r in records])
            db.replace_journal_lines(
                conn, entry_id, records, is_balanced=_is_balanced(records)
            )
    except sqlite3.Error as exc:
        raise PersistenceError(f"Could not update draft entry #{entry_id}.") from exc

    ledger.invalidate_cache(cfg, org)
    return get_journal_entry(cfg, actor, entry_id)


def post_journal_entry(
    cfg: DatabaseConfig, actor: ActorContext, entry_id: int
) -> JournalEntry:
    """
    Move a draft to the posted state.

    Raises
    ------
    InvalidTransitionError
        If the entry is not a draft.
    UnbalancedEntryError
        If the draft lines are not balanced.
    """
    require(actor, "journal.post")
    org = actor.organization_id
    try:
        with db.transaction(cfg) as conn:
            entry_number, status, entry_date = _read_status(conn, org, entry_id)
            if status != "draft":
                raise InvalidTransitionError(entry_number, status, "posted")
            fiscal_years.assert_date_open(conn, org, entry_date)
            records = [
                LineRecord(
                    account_id=line.account_id,
                    description=line.description,
                    debit_cents=db.to_cents(line.debit),
                    credit_cents=db.to_cents(line.credit),
                    position=line.position,
                )
                for line in db.load_entry_lines(conn, entry_id)
            ]
            _check_balanced(records)
            _check_accounts(conn, org, [r.account_id for r in records])
            db.update_entry_status(conn, entry_id, "posted")
    except sqlite3.Error as exc:
        raise PersistenceError(f"Could not post entry #{entry_id}.") from exc

    ledger.invalidate_cache(cfg, org)
    logger.info("Posted entry %s", entry_number)
    return get_journal_entry(cfg, actor, entry_id)


def cancel_journal_entry(
    cfg: DatabaseConfig,
    actor: ActorContext,
    entry_id: int,
    reason: Optional[str] = None,
) -> JournalEntry:
    """
    Cancel a draft or posted entry.

    The entry and its lines stay in the database with status "cancelled";
    reports stop counting them from the next read on.

    Raises
    ------
    InvalidTransitionError
        If the entry is already cancelled.
    ClosedFiscalYearError
        If the entry is dated in a closed fiscal year.
    """
    require(actor, "journal.cancel")
    org = actor.organization_id
    try:
        with db.transaction(cfg) as conn:
            entry_number, status, entry_date = _read_status(conn, org, entry_id)
            if status == "cancelled":
                raise InvalidTransitionError(entry_number, status, "cancelled")
            fiscal_years.assert_date_open(conn, org, entry_date)
            db.update_entry_status(conn, entry_id, "cancelled", reason=reason)
    except sqlite3.Error as exc:
        raise PersistenceError(f"Could not cancel entry #{entry_id}.") from exc

    ledger.invalidate_cache(cfg, org)
    logger.info("Cancelled entry %s (%s)", entry_number, reason or "no reason given")
    return get_journal_entry(cfg, actor, entry_id)


def cancel_entries_for_reference(
    cfg: DatabaseConfig,
    actor: ActorContext,
    reference_type: str,
    reference_id: str,
    reason: Optional[str] = None,
) -> list[JournalEntry]:
    """
    Cancel every draft or posted entry generated from a source document.

    Used when an invoice, bill or payment is deleted upstream. All entries
    are cancelled in one transaction.

    Returns
    -------
    list[JournalEntry]
        The entries that were cancelled by this call.
    """
    require(actor, "journal.cancel")
    if reference_type not in db.REFERENCE_TYPES:
        raise ValidationError(
            f"Unknown reference type {reference_type!r}.", field="reference_type"
        )
    org = actor.organization_id
    candidates = db.list_journal_entries(
        cfg,
        org,
        EntriesFilter(reference_type=reference_type, reference_id=reference_id),
    )
    cancelled_ids: list[int] = []
    try:
        with db.transaction(cfg) as conn:
            for candidate in candidates:
                _, status, entry_date = _read_status(conn, org, candidate.id)
                if status == "cancelled":
                    continue
                fiscal_years.assert_date_open(conn, org, entry_date)
                db.update_entry_status(
                    conn,
                    candidate.id,
                    "cancelled",
                    reason=reason or f"{reference_type} {reference_id} removed",
                )
                cancelled_ids.append(candidate.id)
    except sqlite3.Error as exc:
        raise PersistenceError(
            f"Could not cancel entries of {reference_type} {reference_id}."
        ) from exc

    if cancelled_ids:
        ledger.invalidate_cache(cfg, org)
        logger.info(
            "Cancelled %d entries linked to %s %s",
            len(cancelled_ids),
            reference_type,
            reference_id,
        )
    return [get_journal_entry(cfg, actor, entry_id) for entry_id in cancelled_ids]


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def get_journal_entry(
    cfg: DatabaseConfig, actor: ActorContext, entry_id: int
) -> JournalEntry:
    """Load an entry with its lines, or raise NotFoundError."""
    require(actor, "journal.view")
    entry = db.get_journal_entry(cfg, actor.organization_id, entry_id)
    if entry is None:
        raise NotFoundError("JournalEntry", entry_id)
    return entry


def get_journal_entry_by_number(
    cfg: DatabaseConfig, actor: ActorContext, entry_number: str
) -> JournalEntry:
    require(actor, "journal.view")
    entry_id = db.find_journal_entry_id(cfg, actor.organization_id, entry_number)
    if entry_id is None:
        raise NotFoundError("JournalEntry", entry_number)
    return get_journal_entry(cfg, actor, entry_id)


def list_journal_entries(
    cfg: DatabaseConfig,
    actor: ActorContext,
    filters: Optional[EntriesFilter] = None,
    *,
    limit: Optional[int] = None,
    offset: int = 0,
) -> list[JournalEntry]:
    """List entries ordered by date then number, with optional filters."""
    require(actor, "journal.view")
    if filters is not None and filters.status is not None:
        if filters.status not in db.ENTRY_STATUSES:
            raise ValidationError(f"Unknown status {filters.status!r}.", field="status")
    return db.list_journal_entries(
        cfg, actor.organization_id, filters, limit=limit, offset=offset
    )
