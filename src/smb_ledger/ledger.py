# SMB Ledger - Double-entry bookkeeping core for French SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
General ledger, trial balance and account balances.

All figures are computed from posted journal lines only: drafts and
cancelled entries never contribute. Sums are done in integer cents and
converted to floats when the typed rows are built.

Results are memoized in a process-wide ``AggregateCache`` keyed by database
file, organization and query arguments. Every journal or chart-of-accounts
mutation calls ``invalidate_cache`` for its organization, so a read issued
after a successful write always recomputes.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from datetime import date
from typing import Optional, TypeVar

from . import db
from .authz import ActorContext, require
from .db import AccountTotals, DatabaseConfig, from_cents
from .errors import NotFoundError

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Aggregate cache
# ---------------------------------------------------------------------------


DEFAULT_CACHE_SIZE = 512


class AggregateCache:
    """Thread-safe memo of aggregate results, scoped per organization.

    Each (database, organization) scope carries a generation counter. A value
    computed while the scope was invalidated is returned to its caller but
    never stored, so a slow reader cannot resurrect stale figures.

    At most ``max_entries`` values are kept; the least recently used one is
    evicted first.
    """

    def __init__(self, max_entries: int = DEFAULT_CACHE_SIZE) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._lock = threading.Lock()
        self._values: OrderedDict[tuple, object] = OrderedDict()
        self._generations: dict[tuple[str, str], int] = {}

    @staticmethod
    def _scope(cfg: DatabaseConfig, organization_id: str) -> tuple[str, str]:
        return (str(cfg.path), organization_id)

    def get_or_compute(
        self,
        cfg: DatabaseConfig,
        organization_id: str,
        key: Hashable,
        compute: Callable[[], T],
    ) -> T:
        scope = self._scope(cfg, organization_id)
        full_key = (scope, key)
        with self._lock:
            if full_key in self._values:
                self._values.move_to_end(full_key)
                return self._values[full_key]  # type: ignore[return-value]
            generation = self._generations.get(scope, 0)

        value = compute()

        with self._lock:
            if self._generations.get(scope, 0) == generation:
                self._values[full_key] = value
                self._values.move_to_end(full_key)
                while len(self._values) > self.max_entries:
                    self._values.popitem(last=False)
        return value

    def invalidate(self, cfg: DatabaseConfig, organization_id: str) -> None:
        scope = self._scope(cfg, organization_id)
        with self._lock:
            self._generations[scope] = self._generations.get(scope, 0) + 1
            for full_key in [k for k in self._values if k[0] == scope]:
                del self._values[full_key]

    def clear(self) -> None:
        with self._lock:
            self._values.clear()
            self._generations.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)


_cache = AggregateCache()


def invalidate_cache(cfg: DatabaseConfig, organization_id: str) -> None:
    """Drop every cached aggregate of an organization."""
    _cache.invalidate(cfg, organization_id)
    logger.debug("Invalidated cached aggregates of organization %s", organization_id)


def clear_cache() -> None:
    _cache.clear()


def posted_totals_by_account(
    cfg: DatabaseConfig,
    organization_id: str,
    *,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> tuple[AccountTotals, ...]:
    """Cached posted debit/credit totals of every account over a date range.

    This is the shared building block of the trial balance and of the
    financial reports. No permission check is done here: callers check the
    capability of their own operation.
    """
    return _cache.get_or_compute(
        cfg,
        organization_id,
        ("totals", start, end),
        lambda: tuple(
            db.sum_posted_lines_by_account(cfg, organization_id, start=start, end=end)
        ),
    )


# ---------------------------------------------------------------------------
# General ledger
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GeneralLedgerRow:
    """One posted line of the general ledger with its running balance."""

    entry_id: int
    entry_number: str
    date: date
    entry_description: str
    journal_type: str
    line_id: int
    position: int
    account_id: int
    account_number: str
    account_name: str
    description: Optional[str]
    debit: float
    credit: float
    balance: float


def _compute_general_ledger(
    cfg: DatabaseConfig,
    organization_id: str,
    account_id: Optional[int],
    start: Optional[date],
    end: Optional[date],
    include_opening_balance: bool,
) -> tuple[GeneralLedgerRow, ...]:
    running = 0
    if include_opening_balance and start is not None:
        before = db.fetch_posted_lines(
            cfg,
            organization_id,
            account_id=account_id,
            end=date.fromordinal(start.toordinal() - 1),
        )
        running = sum(line.debit_cents - line.credit_cents for line in before)

    rows: list[GeneralLedgerRow] = []
    for line in db.fetch_posted_lines(
        cfg, organization_id, account_id=account_id, start=start, end=end
    ):
        running += line.debit_cents - line.credit_cents
        rows.append(
            GeneralLedgerRow(
                entry_id=line.entry_id,
                entry_number=line.entry_number,
                date=line.entry_date,
                entry_description=line.entry_description,
                journal_type=line.journal_type,
                line_id=line.line_id,
                position=line.position,
                account_id=line.account_id,
                account_number=line.account_number,
                account_name=line.account_name,
                description=line.line_description,
                debit=from_cents(line.debit_cents),
                credit=from_cents(line.credit_cents),
                balance=from_cents(running),
            )
        )
    return tuple(rows)


def general_ledger(
    cfg: DatabaseConfig,
    actor: ActorContext,
    *,
    account_id: Optional[int] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    include_opening_balance: bool = False,
) -> list[GeneralLedgerRow]:
    """
    Return the posted lines of a date range with a running balance.

    Rows are ordered by entry date, entry number and line position. The
    running balance is ``previous + debit - credit``; it starts at 0 at the
    first row of the range unless ``include_opening_balance`` is True, in
    which case it starts at the balance of every posted line dated before
    ``start``.

    Parameters
    ----------
    account_id:
        Restrict the ledger to one account. None lists every account.
    start, end:
        Inclusive date bounds; None leaves the side open.

    Raises
    ------
    NotFoundError
        If ``account_id`` does not belong to the organization.
    """
    require(actor, "reports.view")
    org = actor.organization_id
    if account_id is not None and db.get_account(cfg, org, account_id) is None:
        raise NotFoundError("Account", account_id)

    rows = _cache.get_or_compute(
        cfg,
        org,
        ("general_ledger", account_id, start, end, include_opening_balance),
        lambda: _compute_general_ledger(
            cfg, org, account_id, start, end, include_opening_balance
        ),
    )
    return list(rows)


# ---------------------------------------------------------------------------
# Trial balance
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TrialBalanceRow:
    account_id: int
    account_number: str
    account_name: str
    account_class: int
    total_debit: float
    total_credit: float
    solde_debit: float
    solde_credit: float


@dataclass(frozen=True)
class TrialBalance:
    """Trial balance ("balance générale") at a given date."""

    as_of: Optional[date]
    rows: tuple[TrialBalanceRow, ...]

    @property
    def total_debit(self) -> float:
        return round(sum(r.total_debit for r in self.rows), 2)

    @property
    def total_credit(self) -> float:
        return round(sum(r.total_credit for r in self.rows), 2)

    @property
    def total_solde_debit(self) -> float:
        return round(sum(r.solde_debit for r in self.rows), 2)

    @property
    def total_solde_credit(self) -> float:
        return round(sum(r.solde_credit for r in self.rows), 2)

    @property
    def is_balanced(self) -> bool:
        return abs(self.total_solde_debit - self.total_solde_credit) <= 0.01


def _compute_trial_balance(
    cfg: DatabaseConfig, organization_id: str, as_of: Optional[date]
) -> TrialBalance:
    rows = []
    for totals in posted_totals_by_account(cfg, organization_id, end=as_of):
        if not totals.is_active:
            continue
        if totals.debit_cents == 0 and totals.credit_cents == 0:
            continue
        balance = totals.balance_cents
        rows.append(
            TrialBalanceRow(
                account_id=totals.account_id,
                account_number=totals.account_number,
                account_name=totals.name,
                account_class=totals.account_class,
                total_debit=from_cents(totals.debit_cents),
                total_credit=from_cents(totals.credit_cents),
                solde_debit=from_cents(balance) if balance > 0 else 0.0,
                solde_credit=from_cents(-balance) if balance < 0 else 0.0,
            )
        )
    return TrialBalance(as_of=as_of, rows=tuple(rows))


def trial_balance(
    cfg: DatabaseConfig,
    actor: ActorContext,
    as_of: Optional[date] = None,
) -> TrialBalance:
    """
    Return the trial balance of the active accounts up to ``as_of``.

    For each account with posted activity, total debit and credit are summed
    up to and including ``as_of`` (every posted line when None). A positive
    balance is reported under ``solde_debit``, a negative one under
    ``solde_credit`` as a magnitude. Accounts without posted activity are
    left out.
    """
    require(actor, "reports.view")
    org = actor.organization_id
    return _cache.get_or_compute(
        cfg,
        org,
        ("trial_balance", as_of),
        lambda: _compute_trial_balance(cfg, org, as_of),
    )


# ---------------------------------------------------------------------------
# Account balance
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccountBalance:
    account_id: int
    account_number: str
    total_debit: float
    total_credit: float
    balance: float


def account_balance(
    cfg: DatabaseConfig,
    actor: ActorContext,
    account_id: int,
    as_of: Optional[date] = None,
) -> AccountBalance:
    """Total debit, total credit and balance of one account up to ``as_of``."""
    require(actor, "reports.view")
    for totals in posted_totals_by_account(cfg, actor.organization_id, end=as_of):
        if totals.account_id == account_id:
            return AccountBalance(
                account_id=totals.account_id,
                account_number=totals.account_number,
                total_debit=from_cents(totals.debit_cents),
                total_credit=from_cents(totals.credit_cents),
                balance=from_cents(totals.balance_cents),
            )
    raise NotFoundError("Account", account_id)
