# SMB Ledger - Double-entry bookkeeping core for French SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Chart of accounts manager for SMB Ledger.

The chart of accounts follows the French Plan Comptable Général (PCG):
account numbers are strings of digits whose first digit is the account
class (1 to 8), and whose prefixes define the hierarchy ("44" > "44571" >
"445710").

Responsibilities:
- Load a chart of accounts from CSV (the packaged default PCG or a
  user-maintained file) and seed an organization with it.
- Create, update, (de)activate and delete accounts with the protection
  rules of system accounts.
- Group accounts by PCG class and build the parent/child tree used by
  presentation layers.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional, Union

import pandas as pd

from . import db, ledger
from .authz import ActorContext, require
from .db import Account, AccountUpdate, DatabaseConfig, NewAccount
from .errors import (
    NotFoundError,
    PersistenceError,
    ProtectedAccountError,
    ValidationError,
)

logger = logging.getLogger(__name__)

DEFAULT_CHART_PATH = Path(__file__).parent / "data" / "pcg_default.csv"

CLASS_LABELS: dict[int, str] = {
    1: "Capitaux",
    2: "Immobilisations",
    3: "Stocks",
    4: "Tiers",
    5: "Financier",
    6: "Charges",
    7: "Produits",
    8: "Comptes spéciaux",
}

_ACCOUNT_NUMBER_RE = re.compile(r"^[1-8][0-9]{0,19}$")

# Class 4 prefixes that hold debit-natured (asset) balances.
_CLASS_4_ASSET_PREFIXES = ("409", "41", "4456", "44567")


@dataclass(frozen=True)
class AccountClassGroup:
    """Accounts of one PCG class, tagged with the French class label."""

    account_class: int
    label: str
    accounts: tuple[Account, ...]


@dataclass
class AccountNode:
    """Node of the account tree built by ``build_account_tree``."""

    account: Account
    children: list["AccountNode"] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def account_class_from_number(account_number: str) -> int:
    """Return the PCG class (first digit) of an account number.

    Raises:
        ValidationError: if the number is not made of digits or its first
            digit is outside 1..8.
    """
    number = str(account_number).strip()
    if not _ACCOUNT_NUMBER_RE.match(number):
        raise ValidationError(
            f"Invalid account number {account_number!r}: expected digits "
            "starting with a PCG class between 1 and 8.",
            field="account_number",
        )
    return int(number[0])


def default_account_type(account_number: str) -> str:
    """Guess the account type of a PCG account number.

    Used when a chart of accounts CSV has no type column: class 1 is
    equity, classes 2, 3, 5 and 8 are assets, class 6 expenses, class 7
    income. Class 4 is a liability except customer and VAT-receivable
    accounts.
    """
    account_class = account_class_from_number(account_number)
    if account_class == 1:
        return "equity"
    if account_class == 4:
        if account_number.startswith(_CLASS_4_ASSET_PREFIXES):
            return "asset"
        return "liability"
    if account_class == 6:
        return "expense"
    if account_class == 7:
        return "income"
    return "asset"


def load_list_of_accounts(path: Union[str, Path]) -> pd.DataFrame:
    """Load a chart of accounts from CSV.

    Expected structure
    ------------------
    The CSV must contain at least:
        - one column with the account code:
            'account_number', 'account' or 'code'
        - one column with the account label:
            'name', 'label' or 'description'

    Optional columns:
        - 'account_class' or 'class'
        - 'account_type' or 'type'
        - 'parent_account_number' or 'parent'

    Column names are matched case-insensitively and trimmed. Missing classes
    are derived from the first digit, missing types from
    ``default_account_type``.

    Args:
        path: Path to the CSV file containing the chart of accounts.

    Returns:
        A DataFrame with the columns account_number, name, account_class,
        account_type and parent_account_number (empty string when absent).

    Raises:
        ValueError: if no suitable account code or label column can be found.
        ValidationError: if an account number is malformed.
    """
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    # Normalize column names: lowercase + stripped, to be robust to variations.
    col_map = {str(c).strip().lower(): c for c in df.columns}

    def _find(candidates: Sequence[str]) -> Optional[str]:
        for cand in candidates:
            if cand in col_map:
                return col_map[cand]
        return None

    code_col = _find(["account_number", "account", "code"])
    if code_col is None:
        raise ValueError(
            "Could not find an account code column in list_of_accounts file. "
            "Expected one of: 'account_number', 'account', 'code'."
        )

    name_col = _find(["name", "label", "description"])
    if name_col is None:
        raise ValueError(
            "Could not find an account name/label column in list_of_accounts file. "
            "Expected one of: 'name', 'label', 'description'."
        )

    class_col = _find(["account_class", "class"])
    type_col = _find(["account_type", "type"])
    parent_col = _find(["parent_account_number", "parent"])

    out = pd.DataFrame()
    out["account_number"] = df[code_col].astype(str).str.strip()
    out["name"] = df[name_col].astype(str).str.strip()

    derived_classes = out["account_number"].map(account_class_from_number)
    if class_col is not None:
        given = pd.to_numeric(df[class_col].str.strip(), errors="coerce")
        out["account_class"] = given.fillna(derived_classes).astype(int)
    else:
        out["account_class"] = derived_classes

    derived_types = out["account_number"].map(default_account_type)
    if type_col is not None:
        given_types = df[type_col].astype(str).str.strip().str.lower()
        out["account_type"] = given_types.where(given_types != "", derived_types)
    else:
        out["account_type"] = derived_types

    if parent_col is not None:
        out["parent_account_number"] = df[parent_col].astype(str).str.strip()
    else:
        out["parent_account_number"] = ""

    return out


def group_accounts_by_class(accounts: Iterable[Account]) -> list[AccountClassGroup]:
    """Partition accounts into the 8 PCG classes, in ascending class order.

    Every class is present in the result, possibly with no account. Inside a
    class, accounts are sorted by account number.
    """
    buckets: dict[int, list[Account]] = {cls: [] for cls in CLASS_LABELS}
    for account in accounts:
        buckets.setdefault(account.account_class, []).append(account)

    return [
        AccountClassGroup(
            account_class=cls,
            label=CLASS_LABELS.get(cls, f"Classe {cls}"),
            accounts=tuple(sorted(buckets[cls], key=lambda a: a.account_number)),
        )
        for cls in sorted(buckets)
    ]


def find_dangling_parents(accounts: Iterable[Account]) -> list[Account]:
    """Return the accounts whose parent_account_number matches no account."""
    accounts = list(accounts)
    known = {a.account_number for a in accounts}
    return [
        a
        for a in accounts
        if a.parent_account_number and a.parent_account_number not in known
    ]


def build_account_tree(accounts: Iterable[Account]) -> list[AccountNode]:
    """Build the parent/child hierarchy of a list of accounts.

    Children are attached by matching ``parent_account_number`` with the
    ``account_number`` of another account. Accounts without parent, and
    accounts whose parent is not in the list, become roots. Roots and
    children are sorted by account number.
    """
    ordered = sorted(accounts, key=lambda a: a.account_number)
    nodes = {a.account_number: AccountNode(account=a) for a in ordered}

    roots: list[AccountNode] = []
    for account in ordered:
        node = nodes[account.account_number]
        parent_number = account.parent_account_number
        parent = nodes.get(parent_number) if parent_number else None
        if parent is None or parent is node:
            if parent_number and parent is None:
                logger.debug(
                    "Account %s refers to missing parent %s, shown as a root",
                    account.account_number,
                    parent_number,
                )
            roots.append(node)
        else:
            parent.children.append(node)
    return roots


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _validate_new_account(new: NewAccount) -> NewAccount:
    """Check a NewAccount and return it with its class resolved."""
    number = str(new.account_number).strip()
    derived_class = account_class_from_number(number)

    if new.account_class is not None and int(new.account_class) != derived_class:
        raise ValidationError(
            f"Account class {new.account_class} does not match account number "
            f"{number} (class {derived_class}).",
            field="account_class",
        )
    if new.account_type not in db.ACCOUNT_TYPES:
        raise ValidationError(
            f"Invalid account type {new.account_type!r}. "
            f"Expected one of: {', '.join(db.ACCOUNT_TYPES)}.",
            field="account_type",
        )
    name = (new.name or "").strip()
    if not name:
        raise ValidationError("Account name cannot be empty.", field="name")

    parent = (new.parent_account_number or "").strip() or None
    return replace(
        new,
        account_number=number,
        name=name,
        account_class=derived_class,
        parent_account_number=parent,
    )


# ---------------------------------------------------------------------------
# Service API
# ---------------------------------------------------------------------------


def get_account(cfg: DatabaseConfig, actor: ActorContext, account_id: int) -> Account:
    """Load an account of the actor's organization.

    Raises:
        NotFoundError: if the account does not exist.
    """
    require(actor, "accounts.view")
    account = db.get_account(cfg, actor.organization_id, account_id)
    if account is None:
        raise NotFoundError("Account", account_id)
    return account


def get_account_by_number(
    cfg: DatabaseConfig, actor: ActorContext, account_number: str
) -> Account:
    """Load an account by number.

    Raises:
        NotFoundError: if no account carries this number.
    """
    require(actor, "accounts.view")
    account = db.get_account_by_number(cfg, actor.organization_id, account_number)
    if account is None:
        raise NotFoundError("Account", account_number)
    return account


def list_accounts(
    cfg: DatabaseConfig,
    actor: ActorContext,
    *,
    account_class: Optional[int] = None,
    account_type: Optional[str] = None,
    number_prefix: Optional[str] = None,
    active_only: bool = False,
) -> list[Account]:
    """List accounts ordered by account number, with optional filters."""
    require(actor, "accounts.view")
    return db.list_accounts(
        cfg,
        actor.organization_id,
        account_class=account_class,
        account_type=account_type,
        number_prefix=number_prefix,
        active_only=active_only,
    )


def create_account(cfg: DatabaseConfig, actor: ActorContext, new: NewAccount) -> Account:
    """Create an account in the actor's organization.

    Raises:
        ValidationError: if the account number already exists or the input
            is malformed.
    """
    require(actor, "accounts.manage")
    new = _validate_new_account(new)

    if db.get_account_by_number(cfg, actor.organization_id, new.account_number):
        raise ValidationError(
            f"Account number {new.account_number} already exists.",
            field="account_number",
        )

    try:
        with db.transaction(cfg) as conn:
            (account_id,) = db.insert_accounts(conn, actor.organization_id, [new])
    except sqlite3.IntegrityError as exc:
        # Concurrent creation of the same number.
        raise ValidationError(
            f"Account number {new.account_number} already exists.",
            field="account_number",
        ) from exc
    except sqlite3.Error as exc:
        raise PersistenceError(f"Could not create account {new.account_number}.") from exc

    ledger.invalidate_cache(cfg, actor.organization_id)
    logger.info(
        "Created account %s %s in organization %s",
        new.account_number,
        new.name,
        actor.organization_id,
    )
    return get_account(cfg, actor, account_id)


def update_account(
    cfg: DatabaseConfig,
    actor: ActorContext,
    account_id: int,
    update: AccountUpdate,
) -> Account:
    """Apply a partial update to a non-system account.

    Raises:
        NotFoundError: if the account does not exist.
        ProtectedAccountError: if the account is a system account.
        ValidationError: on a duplicate number or malformed values.
    """
    require(actor, "accounts.manage")
    current = get_account(cfg, actor, account_id)
    if current.is_system:
        raise ProtectedAccountError(current.account_number, "modified")

    merged = _validate_new_account(
        NewAccount(
            account_number=update.account_number or current.account_number,
            name=update.name if update.name is not None else current.name,
            account_type=update.account_type or current.account_type,
            parent_account_number=(
                update.parent_account_number
                if update.parent_account_number is not None
                else current.parent_account_number
            ),
        )
    )

    if merged.account_number != current.account_number:
        if db.count_lines_for_account(cfg, account_id):
            raise ValidationError(
                f"Account {current.account_number} has journal lines: "
                "its number cannot change.",
                field="account_number",
            )
        if db.get_account_by_number(cfg, actor.organization_id, merged.account_number):
            raise ValidationError(
                f"Account number {merged.account_number} already exists.",
                field="account_number",
            )

    fields: dict[str, object] = {}
    if merged.account_number != current.account_number:
        fields["account_number"] = merged.account_number
        fields["account_class"] = merged.account_class
    if merged.name != current.name:
        fields["name"] = merged.name
    if merged.account_type != current.account_type:
        fields["account_type"] = merged.account_type
    if merged.parent_account_number != current.parent_account_number:
        fields["parent_account_number"] = merged.parent_account_number
    if update.description is not None and update.description != current.description:
        fields["description"] = update.description

    if not fields:
        return current

    try:
        updated = db.update_account_fields(cfg, actor.organization_id, account_id, fields)
    except sqlite3.IntegrityError as exc:
        raise ValidationError(
            f"Account number {merged.account_number} already exists.",
            field="account_number",
        ) from exc

    ledger.invalidate_cache(cfg, actor.organization_id)
    return updated


def set_account_active(
    cfg: DatabaseConfig, actor: ActorContext, account_id: int, active: bool
) -> Account:
    """Activate or deactivate an account.

    Reports only read active accounts, so an account referenced by posted
    lines stays active: even settled today, it carries a balance on earlier
    dates that the trial balance and balance sheet still need.
    """
    require(actor, "accounts.manage")
    account = get_account(cfg, actor, account_id)
    if account.is_active == active:
        return account

    if not active:
        posted = db.count_lines_for_account(cfg, account_id, status="posted")
        if posted:
            logger.warning(
                "Refused deactivation of account %s (%d posted lines)",
                account.account_number,
                posted,
            )
            raise ValidationError(
                f"Account {account.account_number} is used by {posted} posted "
                "journal lines and cannot be deactivated."
            )

    updated = db.update_account_fields(
        cfg, actor.organization_id, account_id, {"is_active": int(active)}
    )
    ledger.invalidate_cache(cfg, actor.organization_id)
    logger.info(
        "Account %s %s", account.account_number, "activated" if active else "deactivated"
    )
    return updated


def delete_account(cfg: DatabaseConfig, actor: ActorContext, account_id: int) -> None:
    """Delete a non-system account that no journal line references.

    Raises:
        NotFoundError: if the account does not exist.
        ProtectedAccountError: if the account is a system account.
        ValidationError: if journal lines reference the account.
    """
    require(actor, "accounts.manage")
    account = get_account(cfg, actor, account_id)
    if account.is_system:
        logger.warning("Refused deletion of system account %s", account.account_number)
        raise ProtectedAccountError(account.account_number, "deleted")

    if db.count_lines_for_account(cfg, account_id):
        raise ValidationError(
            f"Account {account.account_number} is used by journal lines; "
            "deactivate it instead."
        )

    db.delete_account_row(cfg, actor.organization_id, account_id)
    ledger.invalidate_cache(cfg, actor.organization_id)
    logger.info("Deleted account %s", account.account_number)


def init_chart_of_accounts(
    cfg: DatabaseConfig,
    actor: ActorContext,
    path: Optional[Union[str, Path]] = None,
    *,
    is_system: bool = True,
) -> int:
    """Seed the organization's chart of accounts from a CSV file.

    By default the packaged French PCG chart is used and its accounts are
    flagged as system accounts. Account numbers that already exist are
    skipped, so the function is idempotent.

    Returns:
        The number of accounts inserted.
    """
    require(actor, "accounts.manage")
    chart = load_list_of_accounts(path or DEFAULT_CHART_PATH)

    existing = {
        a.account_number for a in db.list_accounts(cfg, actor.organization_id)
    }
    to_insert = [
        _validate_new_account(
            NewAccount(
                account_number=row.account_number,
                name=row.name,
                account_type=row.account_type,
                account_class=int(row.account_class),
                parent_account_number=row.parent_account_number,
                is_system=is_system,
            )
        )
        for row in chart.itertuples(index=False)
        if row.account_number not in existing
    ]

    if not to_insert:
        return 0

    try:
        with db.transaction(cfg) as conn:
            db.insert_accounts(conn, actor.organization_id, to_insert)
    except sqlite3.Error as exc:
        raise PersistenceError("Could not initialize the chart of accounts.") from exc

    ledger.invalidate_cache(cfg, actor.organization_id)
    logger.info(
        "Initialized %d accounts in organization %s",
        len(to_insert),
        actor.organization_id,
    )
    return len(to_insert)
