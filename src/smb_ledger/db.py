# SMB Ledger - Double-entry bookkeeping core for French SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.


"""
Database layer for SMB Ledger.

This module provides the low-level accessors used by the accounting services
to read and write the SQLite database. It is responsible for:

- Initializing the database schema.
- Opening serialized write transactions (``transaction``).
- Allocating gap-free document numbers per organization.
- CRUD helpers for accounts, journal entries, lines and fiscal years.
- Aggregation queries over posted journal lines (ledger, balances).

Business rules (balance checks, state machine, fiscal-year closure,
authorization) live in the service modules (``accounts``, ``journal``,
``fiscal_years``...). This module only guarantees referential integrity and
atomicity.

------------------------------------------------------------------------------
Schema Overview
------------------------------------------------------------------------------

1) organizations
   Tenants. Every other table is scoped by ``organization_id``.

   - id          TEXT PRIMARY KEY
   - name        TEXT NOT NULL
   - siret       TEXT            -- 14 digits, the first 9 form the SIREN
   - created_at  TEXT NOT NULL   -- ISO datetime, UTC

2) document_sequences
   One counter per (organization, document type).

   - organization_id  TEXT    NOT NULL
   - document_type    TEXT    NOT NULL  -- "journal_entry" | "invoice" | "quote"
   - next_number      INTEGER NOT NULL

3) chart_of_accounts
   - id                     INTEGER PRIMARY KEY AUTOINCREMENT
   - organization_id        TEXT    NOT NULL
   - account_number         TEXT    NOT NULL  -- unique per organization
   - name                   TEXT    NOT NULL
   - account_class          INTEGER NOT NULL  -- 1..8, first digit of number
   - account_type           TEXT    NOT NULL  -- asset | liability | equity
                                                 | income | expense
   - parent_account_number  TEXT
   - description            TEXT
   - is_system              INTEGER NOT NULL DEFAULT 0
   - is_active              INTEGER NOT NULL DEFAULT 1
   - created_at / updated_at

4) journal_entries
   - id                INTEGER PRIMARY KEY AUTOINCREMENT
   - organization_id   TEXT    NOT NULL
   - entry_number      TEXT    NOT NULL  -- "EC-000001", unique per organization
   - date              TEXT    NOT NULL  -- ISO date 'YYYY-MM-DD'
   - description       TEXT    NOT NULL
   - journal_type      TEXT    NOT NULL  -- sales | purchases | bank | general
   - reference_type    TEXT              -- invoice | bill | payment | ...
   - reference_id      TEXT
   - status            TEXT    NOT NULL  -- draft | posted | cancelled
   - is_balanced       INTEGER NOT NULL
   - created_by        TEXT
   - created_at / updated_at / posted_at / cancelled_at
   - cancelled_reason  TEXT

5) journal_entry_lines
   - id                INTEGER PRIMARY KEY AUTOINCREMENT
   - journal_entry_id  INTEGER NOT NULL  -- ON DELETE CASCADE
   - account_id        INTEGER NOT NULL
   - description       TEXT
   - debit_cents       INTEGER NOT NULL  -- >= 0
   - credit_cents      INTEGER NOT NULL  -- >= 0
   - position          INTEGER NOT NULL

6) fiscal_years
   - id               INTEGER PRIMARY KEY AUTOINCREMENT
   - organization_id  TEXT    NOT NULL
   - name             TEXT    NOT NULL  -- unique per organization
   - start_date       TEXT    NOT NULL
   - end_date         TEXT    NOT NULL
   - is_closed        INTEGER NOT NULL DEFAULT 0
   - closed_at        TEXT
   - closed_by        TEXT
   - created_at       TEXT    NOT NULL

------------------------------------------------------------------------------
SQLite Notes
------------------------------------------------------------------------------

- All timestamps are stored as ISO-8601 text (UTC).
- Amounts are stored as signed integer cents; aggregation is therefore exact
  and the conversion to float only happens when results leave this module.
- Foreign key enforcement is explicitly enabled on every connection.
- Write transactions start with ``BEGIN IMMEDIATE``, which takes the database
  write lock up front: two concurrent writers are serialized, which is what
  makes number allocation gap-free.

------------------------------------------------------------------------------
End of module description.
------------------------------------------------------------------------------
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Literal

# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseConfig:
    """
    Database configuration for SMB Ledger.

    Attributes
    ----------
    engine:
        Database engine identifier. Only "sqlite" is supported.
    path:
        Path to the SQLite database file.
    """

    engine: str
    path: Path


AccountType = Literal["asset", "liability", "equity", "income", "expense"]
JournalType = Literal["sales", "purchases", "bank", "general"]
EntryStatus = Literal["draft", "posted", "cancelled"]
ReferenceType = Literal[
    "invoice",
    "bill",
    "payment",
    "bill_payment",
    "bank_transaction",
    "manual",
    "expense",
]
DocumentType = Literal["journal_entry", "invoice", "quote"]
"""
Type aliases for the enumerated columns.

Values
------
- AccountType   : asset, liability, equity, income, expense.
- JournalType   : sales (VE), purchases (AC), bank (BQ), general (OD).
- EntryStatus   : draft -> posted -> cancelled.
- ReferenceType : kind of source document an entry was generated from.
- DocumentType  : sequences handed out by ``allocate_sequence_number``.
"""

ACCOUNT_TYPES: tuple[str, ...] = ("asset", "liability", "equity", "income", "expense")
JOURNAL_TYPES: tuple[str, ...] = ("sales", "purchases", "bank", "general")
ENTRY_STATUSES: tuple[str, ...] = ("draft", "posted", "cancelled")
REFERENCE_TYPES: tuple[str, ...] = (
    "invoice",
    "bill",
    "payment",
    "bill_payment",
    "bank_transaction",
    "manual",
    "expense",
)
DOCUMENT_TYPES: tuple[str, ...] = ("journal_entry", "invoice", "quote")


@dataclass(frozen=True)
class Organization:
    """Tenant owning accounts, entries and fiscal years."""

    id: str
    name: str
    siret: str | None
    created_at: datetime | None


@dataclass(frozen=True)
class Account:
    """
    A ledger bucket of the chart of accounts.

    ``account_class`` is redundant with the first digit of ``account_number``
    and kept in sync by the service layer.
    """

    id: int
    organization_id: str
    account_number: str
    name: str
    account_class: int
    account_type: AccountType
    parent_account_number: str | None
    description: str | None
    is_system: bool
    is_active: bool
    created_at: datetime | None
    updated_at: datetime | None


@dataclass(frozen=True)
class NewAccount:
    """
    Data required to create an account.

    Notes
    -----
    - ``account_class`` may be omitted: it is then derived from the first
      digit of ``account_number``.
    """

    account_number: str
    name: str
    account_type: AccountType
    account_class: int | None = None
    parent_account_number: str | None = None
    description: str | None = None
    is_system: bool = False
    is_active: bool = True


@dataclass(frozen=True)
class AccountUpdate:
    """
    Fields that can be updated on an existing account.

    Only non-None values are applied. Activation is handled by a dedicated
    service function rather than overloading this type.
    """

    account_number: str | None = None
    name: str | None = None
    account_type: AccountType | None = None
    parent_account_number: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class JournalLine:
    """One persisted debit or credit row of a journal entry."""

    id: int
    journal_entry_id: int
    account_id: int
    account_number: str
    account_name: str
    description: str | None
    debit: float
    credit: float
    position: int


@dataclass(frozen=True)
class JournalEntry:
    """
    Journal entry header together with its ordered lines.

    ``lines`` is a tuple sorted by ``position``.
    """

    id: int
    organization_id: str
    entry_number: str
    date: date
    description: str
    journal_type: JournalType
    reference_type: ReferenceType | None
    reference_id: str | None
    status: EntryStatus
    is_balanced: bool
    created_by: str | None
    created_at: datetime | None
    updated_at: datetime | None
    posted_at: datetime | None
    cancelled_at: datetime | None
    cancelled_reason: str | None
    lines: tuple[JournalLine, ...] = ()

    @property
    def total_debit(self) -> float:
        return round(sum(line.debit for line in self.lines), 2)

    @property
    def total_credit(self) -> float:
        return round(sum(line.credit for line in self.lines), 2)


@dataclass(frozen=True)
class LineRecord:
    """A line ready to be written: amounts already quantized to cents."""

    account_id: int
    description: str | None
    debit_cents: int
    credit_cents: int
    position: int


@dataclass(frozen=True)
class EntriesFilter:
    """
    Filters used to list journal entries.

    Date bounds are inclusive. All filters can be combined.
    """

    start: date | None = None
    end: date | None = None
    status: EntryStatus | None = None
    journal_type: JournalType | None = None
    reference_type: ReferenceType | None = None
    reference_id: str | None = None
    description_contains: str | None = None


@dataclass(frozen=True)
class FiscalYearRecord:
    """A persisted fiscal year of an organization."""

    id: int
    organization_id: str
    name: str
    start_date: date
    end_date: date
    is_closed: bool
    closed_at: datetime | None
    closed_by: str | None

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


@dataclass(frozen=True)
class PostedLine:
    """
    Strongly typed join of a posted line with its account and entry.

    Amounts stay in integer cents; ``ledger`` converts them for display.
    """

    entry_id: int
    entry_number: str
    entry_date: date
    entry_description: str
    journal_type: JournalType
    line_id: int
    position: int
    account_id: int
    account_number: str
    account_name: str
    account_type: AccountType
    line_description: str | None
    debit_cents: int
    credit_cents: int


@dataclass(frozen=True)
class AccountTotals:
    """Posted debit and credit totals of one account, in cents."""

    account_id: int
    account_number: str
    name: str
    account_class: int
    account_type: AccountType
    is_active: bool
    debit_cents: int
    credit_cents: int

    @property
    def balance_cents(self) -> int:
        return self.debit_cents - self.credit_cents


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _ensure_sqlite(cfg: DatabaseConfig) -> None:
    """Raise if the configuration does not refer to a supported engine."""
    if cfg.engine.lower() != "sqlite":
        msg = (
            f"Unsupported database engine: {cfg.engine!r}. "
            "Only 'sqlite' is supported for now."
        )
        raise ValueError(msg)


def _connect(cfg: DatabaseConfig) -> sqlite3.Connection:
    """
    Open a SQLite connection with foreign keys enabled.

    The caller is responsible for closing the connection.
    """
    _ensure_sqlite(cfg)
    conn = sqlite3.connect(cfg.path, timeout=30.0)
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def _create_schema_if_needed(conn: sqlite3.Connection) -> None:
    """
    Create tables and indexes if they do not exist yet.

    This function is idempotent and can be called multiple times safely.
    """
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS organizations (
            id          TEXT PRIMARY KEY,
            name        TEXT NOT NULL,
            siret       TEXT,
            created_at  TEXT NOT NULL
        );
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS document_sequences (
            organization_id  TEXT    NOT NULL,
            document_type    TEXT    NOT NULL,
            next_number      INTEGER NOT NULL DEFAULT 1,

            PRIMARY KEY (organization_id, document_type),
            FOREIGN KEY (organization_id) REFERENCES organizations(id)
        );
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS chart_of_accounts (
            id                     INTEGER PRIMARY KEY AUTOINCREMENT,
            organization_id        TEXT    NOT NULL,
            account_number         TEXT    NOT NULL,
            name                   TEXT    NOT NULL,
            account_class          INTEGER NOT NULL
                CHECK (account_class BETWEEN 1 AND 8),
            account_type           TEXT    NOT NULL
                CHECK (account_type IN
                       ('asset', 'liability', 'equity', 'income', 'expense')),
            parent_account_number  TEXT,
            description            TEXT,
            is_system              INTEGER NOT NULL DEFAULT 0,
            is_active              INTEGER NOT NULL DEFAULT 1,
            created_at             TEXT    NOT NULL,
            updated_at             TEXT,

            UNIQUE (organization_id, account_number),
            FOREIGN KEY (organization_id) REFERENCES organizations(id)
        );
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS journal_entries (
            id                INTEGER PRIMARY KEY AUTOINCREMENT,
            organization_id   TEXT    NOT NULL,
            entry_number      TEXT    NOT NULL,
            date              TEXT    NOT NULL,  -- ISO date 'YYYY-MM-DD'
            description       TEXT    NOT NULL,
            journal_type      TEXT    NOT NULL DEFAULT 'general'
                CHECK (journal_type IN ('sales', 'purchases', 'bank', 'general')),
            reference_type    TEXT,
            reference_id      TEXT,
            status            TEXT    NOT NULL DEFAULT 'draft'
                CHECK (status IN ('draft', 'posted', 'cancelled')),
            is_balanced       INTEGER NOT NULL DEFAULT 0,
            created_by        TEXT,
            created_at        TEXT    NOT NULL,
            updated_at        TEXT,
            posted_at         TEXT,
            cancelled_at      TEXT,
            cancelled_reason  TEXT,

            UNIQUE (organization_id, entry_number),
            FOREIGN KEY (organization_id) REFERENCES organizations(id)
        );
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS journal_entry_lines (
            id                INTEGER PRIMARY KEY AUTOINCREMENT,
            journal_entry_id  INTEGER NOT NULL,
            account_id        INTEGER NOT NULL,
            description       TEXT,
            debit_cents       INTEGER NOT NULL DEFAULT 0 CHECK (debit_cents >= 0),
            credit_cents      INTEGER NOT NULL DEFAULT 0 CHECK (credit_cents >= 0),
            position          INTEGER NOT NULL DEFAULT 0,

            FOREIGN KEY (journal_entry_id) REFERENCES journal_entries(id)
                ON DELETE CASCADE,
            FOREIGN KEY (account_id) REFERENCES chart_of_accounts(id)
        );
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS fiscal_years (
            id               INTEGER PRIMARY KEY AUTOINCREMENT,
            organization_id  TEXT    NOT NULL,
            name             TEXT    NOT NULL,
            start_date       TEXT    NOT NULL,
            end_date         TEXT    NOT NULL,
            is_closed        INTEGER NOT NULL DEFAULT 0,
            closed_at        TEXT,
            closed_by        TEXT,
            created_at       TEXT    NOT NULL,

            UNIQUE (organization_id, name),
            CHECK (end_date >= start_date),
            FOREIGN KEY (organization_id) REFERENCES organizations(id)
        );
        """
    )

    # Indexes
    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_journal_entries_org_date
            ON journal_entries(organization_id, date);
        """
    )
    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_journal_entries_reference
            ON journal_entries(organization_id, reference_type, reference_id);
        """
    )
    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_journal_entry_lines_entry
            ON journal_entry_lines(journal_entry_id);
        """
    )
    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_journal_entry_lines_account
            ON journal_entry_lines(account_id);
        """
    )

    conn.commit()


def _to_iso_date(value) -> str:
    """Convert a date-like value to ISO 'YYYY-MM-DD' string."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return date.fromisoformat(str(value)).isoformat()


def _now_utc_iso() -> str:
    """Return the current UTC datetime as ISO string."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value is not None else None


def to_cents(amount: float) -> int:
    """Quantize a monetary amount to integer cents."""
    return int(round(float(amount) * 100))


def from_cents(cents: int) -> float:
    """Convert integer cents back to a float amount."""
    return float(cents) / 100.0


# ---------------------------------------------------------------------------
# Public API: schema, connections, transactions
# ---------------------------------------------------------------------------


def init_database(cfg: DatabaseConfig) -> None:
    """
    Initialize the database schema if needed.

    - Creates the SQLite file (and its parent directory) if it does not exist.
    - Creates tables and indexes if they are missing.
    - This function is idempotent: calling it multiple times is safe.

    Raises
    ------
    ValueError
        If cfg.engine is not supported.
    sqlite3.Error
        If schema creation fails.
    """
    cfg.path.parent.mkdir(parents=True, exist_ok=True)

    conn = _connect(cfg)
    try:
        _create_schema_if_needed(conn)
    finally:
        conn.close()


@contextmanager
def transaction(cfg: DatabaseConfig) -> Iterator[sqlite3.Connection]:
    """
    Open a serialized write transaction.

    The transaction starts with ``BEGIN IMMEDIATE`` so that the write lock
    is held from the first statement: concurrent writers wait instead of
    interleaving. Everything executed on the yielded connection is committed
    together when the block exits normally and rolled back if it raises.

    Examples
    --------
    >>> with transaction(cfg) as conn:                       # doctest: +SKIP
    ...     number = allocate_sequence_number(conn, "org", "journal_entry")
    ...     insert_journal_entry(conn, ...)
    """
    init_database(cfg)

    conn = _connect(cfg)
    try:
        conn.execute("BEGIN IMMEDIATE;")
        try:
            yield conn
        except BaseException:
            conn.rollback()
            raise
        conn.commit()
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Organizations and document sequences
# ---------------------------------------------------------------------------


def ensure_organization(
    cfg: DatabaseConfig,
    organization_id: str,
    name: str,
    siret: str | None = None,
) -> Organization:
    """
    Register an organization, or refresh its name and SIRET if it exists.

    Returns
    -------
    Organization
        The stored organization.
    """
    init_database(cfg)

    conn = _connect(cfg)
    try:
        conn.execute(
            """
            INSERT INTO organizations (id, name, siret, created_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                siret = excluded.siret;
            """,
            (organization_id, name, siret, _now_utc_iso()),
        )
        conn.commit()
    finally:
        conn.close()

    org = get_organization(cfg, organization_id)
    if org is None:
        msg = f"Organization {organization_id!r} was just stored but could not be reloaded."
        raise RuntimeError(msg)
    return org


def get_organization(cfg: DatabaseConfig, organization_id: str) -> Organization | None:
    """Load an organization by id, or None if it does not exist."""
    init_database(cfg)

    conn = _connect(cfg)
    try:
        row = conn.execute(
            "SELECT id, name, siret, created_at FROM organizations WHERE id = ?;",
            (organization_id,),
        ).fetchone()
    finally:
        conn.close()

    if row is None:
        return None
    return Organization(id=row[0], name=row[1], siret=row[2], created_at=_parse_ts(row[3]))


def allocate_sequence_number(
    conn: sqlite3.Connection,
    organization_id: str,
    document_type: str,
) -> int:
    """
    Reserve the next number of a document sequence.

    Must be called inside ``transaction()``: the number is only consumed if
    the surrounding transaction commits, so a rolled-back insert leaves no
    gap in the sequence.

    Parameters
    ----------
    conn:
        Connection of an open write transaction.
    organization_id:
        Owner of the sequence.
    document_type:
        One of DOCUMENT_TYPES.

    Returns
    -------
    int
        The allocated number (1 for the first document).
    """
    if document_type not in DOCUMENT_TYPES:
        raise ValueError(f"Unknown document type: {document_type!r}")

    conn.execute(
        """
        INSERT OR IGNORE INTO document_sequences
            (organization_id, document_type, next_number)
        VALUES (?, ?, 1);
        """,
        (organization_id, document_type),
    )
    row = conn.execute(
        """
        SELECT next_number
          FROM document_sequences
         WHERE organization_id = ? AND document_type = ?;
        """,
        (organization_id, document_type),
    ).fetchone()
    number = int(row[0])
    conn.execute(
        """
        UPDATE document_sequences
           SET next_number = next_number + 1
         WHERE organization_id = ? AND document_type = ?;
        """,
        (organization_id, document_type),
    )
    return number


# ---------------------------------------------------------------------------
# Chart of accounts
# ---------------------------------------------------------------------------

_ACCOUNT_COLUMNS = """
    id, organization_id, account_number, name, account_class, account_type,
    parent_account_number, description, is_system, is_active,
    created_at, updated_at
"""


def _row_to_account(row: tuple) -> Account:
    """
    Convert a database row into an Account instance.

    Expected row layout: the columns of ``_ACCOUNT_COLUMNS``, in order.
    """
    (
        account_id,
        organization_id,
        account_number,
        name,
        account_class,
        account_type,
        parent_account_number,
        description,
        is_system,
        is_active,
        created_at,
        updated_at,
    ) = row
    return Account(
        id=account_id,
        organization_id=organization_id,
        account_number=account_number,
        name=name,
        account_class=int(account_class),
        account_type=account_type,
        parent_account_number=parent_account_number,
        description=description,
        is_system=bool(is_system),
        is_active=bool(is_active),
        created_at=_parse_ts(created_at),
        updated_at=_parse_ts(updated_at),
    )


def get_account(
    cfg: DatabaseConfig, organization_id: str, account_id: int
) -> Account | None:
    """Load an account by id within an organization, or None."""
    init_database(cfg)

    conn = _connect(cfg)
    try:
        row = conn.execute(
            f"""
            SELECT {_ACCOUNT_COLUMNS}
              FROM chart_of_accounts
             WHERE organization_id = ? AND id = ?;
            """,
            (organization_id, account_id),
        ).fetchone()
    finally:
        conn.close()

    return _row_to_account(row) if row is not None else None


def get_account_by_number(
    cfg: DatabaseConfig, organization_id: str, account_number: str
) -> Account | None:
    """Load an account by its number within an organization, or None."""
    init_database(cfg)

    conn = _connect(cfg)
    try:
        row = conn.execute(
            f"""
            SELECT {_ACCOUNT_COLUMNS}
              FROM chart_of_accounts
             WHERE organization_id = ? AND account_number = ?;
            """,
            (organization_id, account_number),
        ).fetchone()
    finally:
        conn.close()

    return _row_to_account(row) if row is not None else None


def list_accounts(
    cfg: DatabaseConfig,
    organization_id: str,
    *,
    account_class: int | None = None,
    account_type: str | None = None,
    number_prefix: str | None = None,
    active_only: bool = False,
) -> list[Account]:
    """
    List the accounts of an organization ordered by account number.

    Parameters
    ----------
    account_class:
        Restrict to one PCG class (1..8).
    account_type:
        Restrict to one account type.
    number_prefix:
        Restrict to account numbers starting with this prefix.
    active_only:
        If True, inactive accounts are skipped.
    """
    init_database(cfg)

    where = ["organization_id = ?"]
    params: list[object] = [organization_id]
    if account_class is not None:
        where.append("account_class = ?")
        params.append(int(account_class))
    if account_type is not None:
        where.append("account_type = ?")
        params.append(account_type)
    if number_prefix:
        where.append("account_number LIKE ?")
        params.append(f"{number_prefix}%")
    if active_only:
        where.append("is_active = 1")

    conn = _connect(cfg)
    try:
        rows = conn.execute(
            f"""
            SELECT {_ACCOUNT_COLUMNS}
              FROM chart_of_accounts
             WHERE {" AND ".join(where)}
             ORDER BY account_number;
            """,
            params,
        ).fetchall()
    finally:
        conn.close()

    return [_row_to_account(row) for row in rows]


def insert_accounts(
    conn: sqlite3.Connection,
    organization_id: str,
    accounts: Iterable[NewAccount],
) -> list[int]:
    """
    Insert accounts on an open connection and return their ids.

    ``account_class`` must already be resolved on every NewAccount.

    Raises
    ------
    sqlite3.IntegrityError
        On a duplicate account number or a constraint violation.
    """
    now = _now_utc_iso()
    ids: list[int] = []
    for acc in accounts:
        cur = conn.execute(
            """
            INSERT INTO chart_of_accounts (
                organization_id, account_number, name, account_class,
                account_type, parent_account_number, description,
                is_system, is_active, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, NULL);
            """,
            (
                organization_id,
                acc.account_number,
                acc.name,
                acc.account_class,
                acc.account_type,
                acc.parent_account_number,
                acc.description,
                int(acc.is_system),
                int(acc.is_active),
                now,
            ),
        )
        ids.append(int(cur.lastrowid))
    return ids


def load_accounts_by_ids(
    conn: sqlite3.Connection, organization_id: str, account_ids: Iterable[int]
) -> dict[int, Account]:
    """Load several accounts of an organization on an open connection."""
    ids = sorted(set(account_ids))
    if not ids:
        return {}
    placeholders = ", ".join("?" for _ in ids)
    rows = conn.execute(
        f"""
        SELECT {_ACCOUNT_COLUMNS}
          FROM chart_of_accounts
         WHERE organization_id = ? AND id IN ({placeholders});
        """,
        [organization_id, *ids],
    ).fetchall()
    return {row[0]: _row_to_account(row) for row in rows}


def update_account_fields(
    cfg: DatabaseConfig,
    organization_id: str,
    account_id: int,
    fields: dict[str, Any],
) -> Account:
    """
    Apply a partial update to an account and return the reloaded account.

    Raises
    ------
    ValueError
        If ``fields`` is empty.
    sqlite3.IntegrityError
        On a duplicate account number.
    """
    if not fields:
        raise ValueError("No fields to update.")

    init_database(cfg)

    assignments = [f"{name} = ?" for name in fields]
    params: list[object] = list(fields.values())
    assignments.append("updated_at = ?")
    params.append(_now_utc_iso())
    params.extend([organization_id, account_id])

    conn = _connect(cfg)
    try:
        conn.execute(
            f"""
            UPDATE chart_of_accounts
               SET {", ".join(assignments)}
             WHERE organization_id = ? AND id = ?;
            """,
            params,
        )
        conn.commit()
    finally:
        conn.close()

    result = get_account(cfg, organization_id, account_id)
    if result is None:
        msg = f"Account #{account_id} was updated but could not be reloaded."
        raise RuntimeError(msg)
    return result


def delete_account_row(cfg: DatabaseConfig, organization_id: str, account_id: int) -> None:
    """Physically delete an account row."""
    init_database(cfg)

    conn = _connect(cfg)
    try:
        conn.execute(
            "DELETE FROM chart_of_accounts WHERE organization_id = ? AND id = ?;",
            (organization_id, account_id),
        )
        conn.commit()
    finally:
        conn.close()


def count_lines_for_account(
    cfg: DatabaseConfig, account_id: int, *, status: str | None = None
) -> int:
    """Return how many journal lines reference the account.

    Lines of every status are counted unless ``status`` restricts them to
    entries in that state.
    """
    init_database(cfg)

    sql = "SELECT COUNT(*) FROM journal_entry_lines AS l"
    params: list[object] = []
    if status is not None:
        sql += " JOIN journal_entries AS e ON e.id = l.journal_entry_id AND e.status = ?"
        params.append(status)
    sql += " WHERE l.account_id = ?;"
    params.append(account_id)

    conn = _connect(cfg)
    try:
        row = conn.execute(sql, params).fetchone()
    finally:
        conn.close()
    return int(row[0])


# ---------------------------------------------------------------------------
# Journal entries
# ---------------------------------------------------------------------------

_ENTRY_COLUMNS = """
    id, organization_id, entry_number, date, description, journal_type,
    reference_type, reference_id, status, is_balanced, created_by,
    created_at, updated_at, posted_at, cancelled_at, cancelled_reason
"""


_IN_CHUNK = 500


def _row_to_journal_line(row: tuple) -> JournalLine:
    """
    Convert a line row joined with its account into a JournalLine.

    Expected row layout:
      (id, journal_entry_id, account_id, account_number, account_name,
       description, debit_cents, credit_cents, position)
    """
    (
        line_id,
        entry_id,
        account_id,
        account_number,
        account_name,
        description,
        debit_cents,
        credit_cents,
        position,
    ) = row
    return JournalLine(
        id=line_id,
        journal_entry_id=entry_id,
        account_id=account_id,
        account_number=account_number,
        account_name=account_name,
        description=description,
        debit=from_cents(debit_cents),
        credit=from_cents(credit_cents),
        position=int(position),
    )


def _row_to_journal_entry(row: tuple, lines: Sequence[JournalLine]) -> JournalEntry:
    """Convert a header row (``_ENTRY_COLUMNS`` layout) into a JournalEntry."""
    (
        entry_id,
        organization_id,
        entry_number,
        date_str,
        description,
        journal_type,
        reference_type,
        reference_id,
        status,
        is_balanced,
        created_by,
        created_at,
        updated_at,
        posted_at,
        cancelled_at,
        cancelled_reason,
    ) = row
    return JournalEntry(
        id=entry_id,
        organization_id=organization_id,
        entry_number=entry_number,
        date=date.fromisoformat(date_str),
        description=description,
        journal_type=journal_type,
        reference_type=reference_type,
        reference_id=reference_id,
        status=status,
        is_balanced=bool(is_balanced),
        created_by=created_by,
        created_at=_parse_ts(created_at),
        updated_at=_parse_ts(updated_at),
        posted_at=_parse_ts(posted_at),
        cancelled_at=_parse_ts(cancelled_at),
        cancelled_reason=cancelled_reason,
        lines=tuple(lines),
    )


def _load_lines(
    conn: sqlite3.Connection, entry_ids: Sequence[int]
) -> dict[int, list[JournalLine]]:
    """Load the lines of several entries, grouped by entry id."""
    grouped: dict[int, list[JournalLine]] = {entry_id: [] for entry_id in entry_ids}
    if not entry_ids:
        return grouped

    ids = list(entry_ids)
    # Chunked to stay under the SQLite host parameter limit.
    for i in range(0, len(ids), _IN_CHUNK):
        chunk = ids[i : i + _IN_CHUNK]
        placeholders = ", ".join("?" for _ in chunk)
        rows = conn.execute(
            f"""
            SELECT l.id, l.journal_entry_id, l.account_id, a.account_number, a.name,
                   l.description, l.debit_cents, l.credit_cents, l.position
              FROM journal_entry_lines AS l
              JOIN chart_of_accounts AS a ON a.id = l.account_id
             WHERE l.journal_entry_id IN ({placeholders})
             ORDER BY l.journal_entry_id, l.position, l.id;
            """,
            chunk,
        ).fetchall()
        for row in rows:
            line = _row_to_journal_line(row)
            grouped[line.journal_entry_id].append(line)
    return grouped


def load_entry_lines(conn: sqlite3.Connection, entry_id: int) -> list[JournalLine]:
    """Load the lines of one entry on an open connection, ordered by position."""
    return _load_lines(conn, [entry_id])[entry_id]


def get_journal_entry(
    cfg: DatabaseConfig, organization_id: str, entry_id: int
) -> JournalEntry | None:
    """
    Load a journal entry and its lines.

    Returns
    -------
    JournalEntry | None
        The matching entry, or None if it does not exist in the organization.
    """
    init_database(cfg)

    conn = _connect(cfg)
    try:
        row = conn.execute(
            f"""
            SELECT {_ENTRY_COLUMNS}
              FROM journal_entries
             WHERE organization_id = ? AND id = ?;
            """,
            (organization_id, entry_id),
        ).fetchone()
        if row is None:
            return None
        lines = _load_lines(conn, [entry_id])[entry_id]
    finally:
        conn.close()

    return _row_to_journal_entry(row, lines)


def find_journal_entry_id(
    cfg: DatabaseConfig, organization_id: str, entry_number: str
) -> int | None:
    """Return the id of the entry carrying ``entry_number``, if any."""
    init_database(cfg)

    conn = _connect(cfg)
    try:
        row = conn.execute(
            """
            SELECT id
              FROM journal_entries
             WHERE organization_id = ? AND entry_number = ?;
            """,
            (organization_id, entry_number),
        ).fetchone()
    finally:
        conn.close()
    return int(row[0]) if row is not None else None


def list_journal_entries(
    cfg: DatabaseConfig,
    organization_id: str,
    filters: EntriesFilter | None = None,
    *,
    limit: int | None = None,
    offset: int = 0,
) -> list[JournalEntry]:
    """
    List journal entries (with their lines) ordered by date and number.

    Parameters
    ----------
    filters:
        Optional EntriesFilter; None lists every entry.
    limit, offset:
        Optional pagination.
    """
    init_database(cfg)
    filters = filters or EntriesFilter()

    where = ["organization_id = ?"]
    params: list[object] = [organization_id]
    if filters.start is not None:
        where.append("date >= ?")
        params.append(filters.start.isoformat())
    if filters.end is not None:
        where.append("date <= ?")
        params.append(filters.end.isoformat())
    if filters.status is not None:
        where.append("status = ?")
        params.append(filters.status)
    if filters.journal_type is not None:
        where.append("journal_type = ?")
        params.append(filters.journal_type)
    if filters.reference_type is not None:
        where.append("reference_type = ?")
        params.append(filters.reference_type)
    if filters.reference_id is not None:
        where.append("reference_id = ?")
        params.append(filters.reference_id)
    if filters.description_contains:
        where.append("LOWER(description) LIKE ?")
        params.append(f"%{filters.description_contains.lower()}%")

    sql = f"""
        SELECT {_ENTRY_COLUMNS}
          FROM journal_entries
         WHERE {" AND ".join(where)}
         ORDER BY date, entry_number, id
    """
    if limit is not None:
        sql += " LIMIT ? OFFSET ?"
        params.extend([int(limit), int(offset)])

    conn = _connect(cfg)
    try:
        rows = conn.execute(sql + ";", params).fetchall()
        lines_by_entry = _load_lines(conn, [row[0] for row in rows])
    finally:
        conn.close()

    return [_row_to_journal_entry(row, lines_by_entry[row[0]]) for row in rows]


def insert_journal_entry(
    conn: sqlite3.Connection,
    organization_id: str,
    *,
    entry_number: str,
    entry_date: date,
    description: str,
    journal_type: str,
    reference_type: str | None,
    reference_id: str | None,
    status: str,
    is_balanced: bool,
    created_by: str | None,
    lines: Sequence[LineRecord],
) -> int:
    """
    Insert an entry header and all of its lines on an open transaction.

    Returns
    -------
    int
        Identifier of the new journal entry.

    Raises
    ------
    sqlite3.Error
        If any statement fails. The caller's transaction is then rolled back,
        so the header is never left without its lines.
    """
    now = _now_utc_iso()
    cur = conn.execute(
        """
        INSERT INTO journal_entries (
            organization_id, entry_number, date, description, journal_type,
            reference_type, reference_id, status, is_balanced, created_by,
            created_at, updated_at, posted_at, cancelled_at, cancelled_reason
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, NULL, ?, NULL, NULL);
        """,
        (
            organization_id,
            entry_number,
            _to_iso_date(entry_date),
            description,
            journal_type,
            reference_type,
            reference_id,
            status,
            int(is_balanced),
            created_by,
            now,
            now if status == "posted" else None,
        ),
    )
    entry_id = int(cur.lastrowid)
    _insert_lines(conn, entry_id, lines)
    return entry_id


def _insert_lines(
    conn: sqlite3.Connection, entry_id: int, lines: Sequence[LineRecord]
) -> None:
    conn.executemany(
        """
        INSERT INTO journal_entry_lines (
            journal_entry_id, account_id, description,
            debit_cents, credit_cents, position
        )
        VALUES (?, ?, ?, ?, ?, ?);
        """,
        [
            (
                entry_id,
                line.account_id,
                line.description,
                line.debit_cents,
                line.credit_cents,
                line.position,
            )
            for line in lines
        ],
    )


def replace_journal_lines(
    conn: sqlite3.Connection,
    entry_id: int,
    lines: Sequence[LineRecord],
    *,
    is_balanced: bool,
) -> None:
    """Replace every line of an entry (used for drafts only)."""
    conn.execute(
        "DELETE FROM journal_entry_lines WHERE journal_entry_id = ?;", (entry_id,)
    )
    _insert_lines(conn, entry_id, lines)
    conn.execute(
        """
        UPDATE journal_entries
           SET is_balanced = ?, updated_at = ?
         WHERE id = ?;
        """,
        (int(is_balanced), _now_utc_iso(), entry_id),
    )


def update_entry_status(
    conn: sqlite3.Connection,
    entry_id: int,
    status: str,
    *,
    reason: str | None = None,
) -> None:
    """
    Change the status of an entry and stamp the matching timestamp.

    ``posted_at`` is set when moving to "posted"; ``cancelled_at`` and
    ``cancelled_reason`` when moving to "cancelled".
    """
    now = _now_utc_iso()
    if status == "posted":
        conn.execute(
            """
            UPDATE journal_entries
               SET status = 'posted', is_balanced = 1,
                   posted_at = ?, updated_at = ?
             WHERE id = ?;
            """,
            (now, now, entry_id),
        )
    elif status == "cancelled":
        conn.execute(
            """
            UPDATE journal_entries
               SET status = 'cancelled', cancelled_at = ?,
                   cancelled_reason = ?, updated_at = ?
             WHERE id = ?;
            """,
            (now, reason, now, entry_id),
        )
    else:
        raise ValueError(f"Unsupported target status: {status!r}")


def read_entry_status(
    conn: sqlite3.Connection, organization_id: str, entry_id: int
) -> tuple[str, str, date] | None:
    """Return (entry_number, status, date) of an entry, read on ``conn``."""
    row = conn.execute(
        """
        SELECT entry_number, status, date
          FROM journal_entries
         WHERE organization_id = ? AND id = ?;
        """,
        (organization_id, entry_id),
    ).fetchone()
    if row is None:
        return None
    return row[0], row[1], date.fromisoformat(row[2])


def count_entries(
    cfg: DatabaseConfig,
    organization_id: str,
    *,
    status: str | None = None,
    start: date | None = None,
    end: date | None = None,
) -> int:
    """Count the entries of an organization, optionally by status and dates."""
    init_database(cfg)

    conn = _connect(cfg)
    try:
        return count_entries_on(
            conn, organization_id, status=status, start=start, end=end
        )
    finally:
        conn.close()


def count_entries_on(
    conn: sqlite3.Connection,
    organization_id: str,
    *,
    status: str | None = None,
    start: date | None = None,
    end: date | None = None,
) -> int:
    """Same as ``count_entries`` but on an already open connection."""
    where = ["organization_id = ?"]
    params: list[object] = [organization_id]
    if status is not None:
        where.append("status = ?")
        params.append(status)
    if start is not None:
        where.append("date >= ?")
        params.append(start.isoformat())
    if end is not None:
        where.append("date <= ?")
        params.append(end.isoformat())

    row = conn.execute(
        f"SELECT COUNT(*) FROM journal_entries WHERE {' AND '.join(where)};",
        params,
    ).fetchone()
    return int(row[0])


# ---------------------------------------------------------------------------
# Aggregation queries over posted lines
# ---------------------------------------------------------------------------


def fetch_posted_lines(
    cfg: DatabaseConfig,
    organization_id: str,
    *,
    account_id: int | None = None,
    start: date | None = None,
    end: date | None = None,
) -> list[PostedLine]:
    """
    Return posted lines joined with their account and entry.

    Rows are ordered by entry date, entry number and line position. Draft and
    cancelled entries are never returned.
    """
    init_database(cfg)

    where = ["e.organization_id = ?", "e.status = 'posted'"]
    params: list[object] = [organization_id]
    if account_id is not None:
        where.append("l.account_id = ?")
        params.append(account_id)
    if start is not None:
        where.append("e.date >= ?")
        params.append(start.isoformat())
    if end is not None:
        where.append("e.date <= ?")
        params.append(end.isoformat())

    conn = _connect(cfg)
    try:
        rows = conn.execute(
            f"""
            SELECT e.id, e.entry_number, e.date, e.description, e.journal_type,
                   l.id, l.position, a.id, a.account_number, a.name,
                   a.account_type, l.description, l.debit_cents, l.credit_cents
              FROM journal_entry_lines AS l
              JOIN journal_entries AS e ON e.id = l.journal_entry_id
              JOIN chart_of_accounts AS a ON a.id = l.account_id
             WHERE {" AND ".join(where)}
             ORDER BY e.date, e.entry_number, l.position, l.id;
            """,
            params,
        ).fetchall()
    finally:
        conn.close()

    return [
        PostedLine(
            entry_id=row[0],
            entry_number=row[1],
            entry_date=date.fromisoformat(row[2]),
            entry_description=row[3],
            journal_type=row[4],
            line_id=row[5],
            position=int(row[6]),
            account_id=row[7],
            account_number=row[8],
            account_name=row[9],
            account_type=row[10],
            line_description=row[11],
            debit_cents=int(row[12]),
            credit_cents=int(row[13]),
        )
        for row in rows
    ]


def sum_posted_lines_by_account(
    cfg: DatabaseConfig,
    organization_id: str,
    *,
    start: date | None = None,
    end: date | None = None,
) -> list[AccountTotals]:
    """
    Sum posted debits and credits per account over an optional date range.

    Every account of the organization is returned (zero totals included),
    ordered by account number, so callers can apply their own activity and
    active-flag filters.
    """
    init_database(cfg)

    join_conditions = ["e.id = l.journal_entry_id", "e.status = 'posted'"]
    params: list[object] = []
    if start is not None:
        join_conditions.append("e.date >= ?")
        params.append(start.isoformat())
    if end is not None:
        join_conditions.append("e.date <= ?")
        params.append(end.isoformat())
    params.append(organization_id)

    conn = _connect(cfg)
    try:
        rows = conn.execute(
            f"""
            SELECT a.id, a.account_number, a.name, a.account_class,
                   a.account_type, a.is_active,
                   COALESCE(SUM(CASE WHEN e.id IS NOT NULL THEN l.debit_cents END), 0),
                   COALESCE(SUM(CASE WHEN e.id IS NOT NULL THEN l.credit_cents END), 0)
              FROM chart_of_accounts AS a
              LEFT JOIN journal_entry_lines AS l ON l.account_id = a.id
              LEFT JOIN journal_entries AS e ON {" AND ".join(join_conditions)}
             WHERE a.organization_id = ?
             GROUP BY a.id
             ORDER BY a.account_number;
            """,
            params,
        ).fetchall()
    finally:
        conn.close()

    return [
        AccountTotals(
            account_id=row[0],
            account_number=row[1],
            name=row[2],
            account_class=int(row[3]),
            account_type=row[4],
            is_active=bool(row[5]),
            debit_cents=int(row[6]),
            credit_cents=int(row[7]),
        )
        for row in rows
    ]


# ---------------------------------------------------------------------------
# Fiscal years
# ---------------------------------------------------------------------------

_FISCAL_YEAR_COLUMNS = """
    id, organization_id, name, start_date, end_date, is_closed, closed_at, closed_by
"""


def _row_to_fiscal_year(row: tuple) -> FiscalYearRecord:
    (fy_id, organization_id, name, start, end, is_closed, closed_at, closed_by) = row
    return FiscalYearRecord(
        id=fy_id,
        organization_id=organization_id,
        name=name,
        start_date=date.fromisoformat(start),
        end_date=date.fromisoformat(end),
        is_closed=bool(is_closed),
        closed_at=_parse_ts(closed_at),
        closed_by=closed_by,
    )


def insert_fiscal_year(
    conn: sqlite3.Connection,
    organization_id: str,
    name: str,
    start_date: date,
    end_date: date,
) -> int:
    """
    Insert a fiscal year on an open transaction and return its id.

    Raises
    ------
    sqlite3.IntegrityError
        On a duplicate name or when end_date < start_date.
    """
    cur = conn.execute(
        """
        INSERT INTO fiscal_years (
            organization_id, name, start_date, end_date,
            is_closed, closed_at, closed_by, created_at
        )
        VALUES (?, ?, ?, ?, 0, NULL, NULL, ?);
        """,
        (
            organization_id,
            name,
            start_date.isoformat(),
            end_date.isoformat(),
            _now_utc_iso(),
        ),
    )
    return int(cur.lastrowid)


def get_fiscal_year(
    cfg: DatabaseConfig, organization_id: str, fiscal_year_id: int
) -> FiscalYearRecord | None:
    init_database(cfg)

    conn = _connect(cfg)
    try:
        row = conn.execute(
            f"""
            SELECT {_FISCAL_YEAR_COLUMNS}
              FROM fiscal_years
             WHERE organization_id = ? AND id = ?;
            """,
            (organization_id, fiscal_year_id),
        ).fetchone()
    finally:
        conn.close()

    return _row_to_fiscal_year(row) if row is not None else None


def list_fiscal_years(cfg: DatabaseConfig, organization_id: str) -> list[FiscalYearRecord]:
    """Return the fiscal years of an organization, most recent first."""
    init_database(cfg)

    conn = _connect(cfg)
    try:
        rows = conn.execute(
            f"""
            SELECT {_FISCAL_YEAR_COLUMNS}
              FROM fiscal_years
             WHERE organization_id = ?
             ORDER BY start_date DESC;
            """,
            (organization_id,),
        ).fetchall()
    finally:
        conn.close()

    return [_row_to_fiscal_year(row) for row in rows]


def find_conflicting_fiscal_years(
    conn: sqlite3.Connection,
    organization_id: str,
    name: str,
    start_date: date,
    end_date: date,
) -> list[FiscalYearRecord]:
    """Fiscal years sharing ``name`` or overlapping [start_date, end_date]."""
    rows = conn.execute(
        f"""
        SELECT {_FISCAL_YEAR_COLUMNS}
          FROM fiscal_years
         WHERE organization_id = ?
           AND (name = ? OR (start_date <= ? AND end_date >= ?))
         ORDER BY start_date;
        """,
        (organization_id, name, end_date.isoformat(), start_date.isoformat()),
    ).fetchall()
    return [_row_to_fiscal_year(row) for row in rows]


def find_fiscal_years_for_date(
    conn: sqlite3.Connection, organization_id: str, day: date
) -> list[FiscalYearRecord]:
    """Return the fiscal years whose window contains ``day``, read on ``conn``."""
    rows = conn.execute(
        f"""
        SELECT {_FISCAL_YEAR_COLUMNS}
          FROM fiscal_years
         WHERE organization_id = ? AND start_date <= ? AND end_date >= ?;
        """,
        (organization_id, day.isoformat(), day.isoformat()),
    ).fetchall()
    return [_row_to_fiscal_year(row) for row in rows]


def mark_fiscal_year_closed(
    conn: sqlite3.Connection,
    organization_id: str,
    fiscal_year_id: int,
    closed_by: str | None,
) -> None:
    """Flag a fiscal year as closed on an open transaction."""
    conn.execute(
        """
        UPDATE fiscal_years
           SET is_closed = 1, closed_at = ?, closed_by = ?
         WHERE organization_id = ? AND id = ?;
        """,
        (_now_utc_iso(), closed_by, organization_id, fiscal_year_id),
    )
