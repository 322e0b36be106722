# SMB Ledger - Double-entry bookkeeping core for French SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Financial statements built from posted journal lines.

This module turns the per-account posted totals of ``ledger`` into:

- the balance sheet ("bilan") at a given date,
- the income statement ("compte de résultat") over a period,
- the VAT report (collected vs deductible VAT) over a period,
- a few dashboard KPIs (cash, VAT due, month and year to date profit).

Classification rules (French PCG)
---------------------------------
Balance sheet, classes 1 to 5 plus the unallocated result:

    Actif (debit - credit)                Passif (credit - debit)
    - fixed:   class 2                    - equity:     class 1 except 15*
    - current: class 3, class 4 not       - provisions: class 1, 15*
               typed "liability"          - debts:      class 4 typed
    - cash:    class 5                                  "liability"
                                          - result:     classes 7 - 6

Income statement, absolute balances over the period:

    Produits                              Charges
    - sales: 70*                          - purchases: 60*
    - other: rest of class 7              - external:  61*, 62*
                                          - taxes:     63*
                                          - personnel: 64*
                                          - other:     rest of class 6

Balances whose magnitude does not exceed one cent are left out of every
statement. All sums are done in integer cents.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import date
from typing import Optional

from . import ledger
from .authz import ActorContext, require
from .db import AccountTotals, DatabaseConfig, from_cents
from .errors import BalanceSheetImbalanceError, ValidationError

logger = logging.getLogger(__name__)

# Balances of at most one cent are treated as zero.
_NEGLIGIBLE_CENTS = 1


@dataclass(frozen=True)
class StatementLine:
    account_number: str
    account_name: str
    amount: float


@dataclass(frozen=True)
class StatementSection:
    """A group of statement lines and their total."""

    lines: tuple[StatementLine, ...]
    total: float


def _section(
    accounts: Iterable[AccountTotals],
    amount_cents: Callable[[AccountTotals], int],
) -> StatementSection:
    lines = []
    total = 0
    for acc in accounts:
        cents = amount_cents(acc)
        if abs(cents) <= _NEGLIGIBLE_CENTS:
            continue
        total += cents
        lines.append(StatementLine(acc.account_number, acc.name, from_cents(cents)))
    return StatementSection(lines=tuple(lines), total=from_cents(total))


def _debit_positive(acc: AccountTotals) -> int:
    return acc.debit_cents - acc.credit_cents


def _credit_positive(acc: AccountTotals) -> int:
    return acc.credit_cents - acc.debit_cents


def _absolute(acc: AccountTotals) -> int:
    return abs(acc.debit_cents - acc.credit_cents)


def _cents(section: StatementSection) -> int:
    return round(section.total * 100)


def _active_totals(
    cfg: DatabaseConfig,
    organization_id: str,
    *,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> list[AccountTotals]:
    return [
        t
        for t in ledger.posted_totals_by_account(cfg, organization_id, start=start, end=end)
        if t.is_active
    ]


def _check_period(start: date, end: date) -> None:
    if end < start:
        raise ValidationError("Period end date cannot be before start date.")


# ---------------------------------------------------------------------------
# Balance sheet
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BalanceSheetAssets:
    fixed: StatementSection
    current: StatementSection
    cash: StatementSection
    total: float


@dataclass(frozen=True)
class BalanceSheetLiabilities:
    equity: StatementSection
    provisions: StatementSection
    debts: StatementSection
    result: float
    total: float


@dataclass(frozen=True)
class BalanceSheet:
    as_of: date
    assets: BalanceSheetAssets
    liabilities: BalanceSheetLiabilities
    is_balanced: bool


def balance_sheet(
    cfg: DatabaseConfig,
    actor: ActorContext,
    as_of: date,
    *,
    verify: bool = True,
) -> BalanceSheet:
    """
    Build the balance sheet from posted lines dated up to ``as_of``.

    Parameters
    ----------
    as_of:
        Inclusive closing date.
    verify:
        When True (default), a difference above one cent between total
        assets and total liabilities raises BalanceSheetImbalanceError.
        When False the sheet is returned with ``is_balanced=False``.
    """
    require(actor, "reports.view")
    totals = _active_totals(cfg, actor.organization_id, end=as_of)

    def of_class(*classes: int) -> list[AccountTotals]:
        return [t for t in totals if t.account_class in classes]

    class_1 = of_class(1)
    class_4 = of_class(4)

    fixed = _section(of_class(2), _debit_positive)
    # Class 3/4 accounts typed neither asset nor liability belong to no
    # section; the verification below reports their balances.
    current = _section(
        [t for t in of_class(3, 4) if t.account_type == "asset"], _debit_positive
    )
    cash = _section(of_class(5), _debit_positive)

    equity = _section(
        [t for t in class_1 if not t.account_number.startswith("15")], _credit_positive
    )
    provisions = _section(
        [t for t in class_1 if t.account_number.startswith("15")], _credit_positive
    )
    debts = _section(
        [t for t in class_4 if t.account_type == "liability"], _credit_positive
    )
    result_cents = sum(_credit_positive(t) for t in of_class(6, 7))

    assets_cents = sum(_cents(section) for section in (fixed, current, cash))
    liabilities_cents = (
        sum(_cents(section) for section in (equity, provisions, debts))
        + result_cents
    )
    is_balanced = abs(assets_cents - liabilities_cents) <= _NEGLIGIBLE_CENTS

    sheet = BalanceSheet(
        as_of=as_of,
        assets=BalanceSheetAssets(
            fixed=fixed,
            current=current,
            cash=cash,
            total=from_cents(assets_cents),
        ),
        liabilities=BalanceSheetLiabilities(
            equity=equity,
            provisions=provisions,
            debts=debts,
            result=from_cents(result_cents),
            total=from_cents(liabilities_cents),
        ),
        is_balanced=is_balanced,
    )

    if not is_balanced:
        logger.warning(
            "Balance sheet at %s does not balance: assets %.2f, liabilities %.2f",
            as_of.isoformat(),
            sheet.assets.total,
            sheet.liabilities.total,
        )
        if verify:
            raise BalanceSheetImbalanceError(sheet.assets.total, sheet.liabilities.total)
    return sheet


# ---------------------------------------------------------------------------
# Income statement
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class IncomeSide:
    sales: StatementSection
    other: StatementSection
    total: float


@dataclass(frozen=True)
class ExpensesSide:
    purchases: StatementSection
    external: StatementSection
    taxes: StatementSection
    personnel: StatementSection
    other: StatementSection
    total: float


@dataclass(frozen=True)
class IncomeStatement:
    start: date
    end: date
    income: IncomeSide
    expenses: ExpensesSide
    result: float


def income_statement(
    cfg: DatabaseConfig, actor: ActorContext, start: date, end: date
) -> IncomeStatement:
    """Build the income statement of the posted lines dated in [start, end]."""
    require(actor, "reports.view")
    _check_period(start, end)
    totals = _active_totals(cfg, actor.organization_id, start=start, end=end)

    class_6 = [t for t in totals if t.account_class == 6]
    class_7 = [t for t in totals if t.account_class == 7]

    def starting(accounts: list[AccountTotals], *prefixes: str) -> list[AccountTotals]:
        return [t for t in accounts if t.account_number.startswith(prefixes)]

    def not_starting(accounts: list[AccountTotals], *prefixes: str) -> list[AccountTotals]:
        return [t for t in accounts if not t.account_number.startswith(prefixes)]

    sales = _section(starting(class_7, "70"), _absolute)
    other_income = _section(not_starting(class_7, "70"), _absolute)

    purchases = _section(starting(class_6, "60"), _absolute)
    external = _section(starting(class_6, "61", "62"), _absolute)
    taxes = _section(starting(class_6, "63"), _absolute)
    personnel = _section(starting(class_6, "64"), _absolute)
    other_expenses = _section(
        not_starting(class_6, "60", "61", "62", "63", "64"), _absolute
    )

    income_cents = _cents(sales) + _cents(other_income)
    expense_cents = sum(
        _cents(s)
        for s in (purchases, external, taxes, personnel, other_expenses)
    )

    return IncomeStatement(
        start=start,
        end=end,
        income=IncomeSide(
            sales=sales, other=other_income, total=from_cents(income_cents)
        ),
        expenses=ExpensesSide(
            purchases=purchases,
            external=external,
            taxes=taxes,
            personnel=personnel,
            other=other_expenses,
            total=from_cents(expense_cents),
        ),
        result=from_cents(income_cents - expense_cents),
    )


# ---------------------------------------------------------------------------
# VAT report
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VatReport:
    start: date
    end: date
    collected: StatementSection
    deductible: StatementSection
    balance: float

    @property
    def is_payable(self) -> bool:
        """True when VAT is owed to the State, False for a VAT credit."""
        return self.balance > 0


def vat_report(
    cfg: DatabaseConfig, actor: ActorContext, start: date, end: date
) -> VatReport:
    """
    VAT collected (44571*) against deductible VAT (44566*) over a period.

    A positive balance is VAT to pay, a negative one a VAT credit.
    """
    require(actor, "reports.view")
    _check_period(start, end)
    totals = _active_totals(cfg, actor.organization_id, start=start, end=end)

    collected = _section(
        [t for t in totals if t.account_number.startswith("44571")], _credit_positive
    )
    deductible = _section(
        [t for t in totals if t.account_number.startswith("44566")], _absolute
    )
    balance_cents = _cents(collected) - _cents(deductible)
    return VatReport(
        start=start,
        end=end,
        collected=collected,
        deductible=deductible,
        balance=from_cents(balance_cents),
    )


# ---------------------------------------------------------------------------
# Dashboard KPIs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccountingKPIs:
    today: date
    cash_balance: float
    vat_due: float
    monthly_profit: float
    yearly_profit: float


def _profit_cents(totals: Iterable[AccountTotals]) -> int:
    income = sum(_credit_positive(t) for t in totals if t.account_class == 7)
    expenses = sum(_debit_positive(t) for t in totals if t.account_class == 6)
    return income - expenses


def accounting_kpis(
    cfg: DatabaseConfig, actor: ActorContext, today: Optional[date] = None
) -> AccountingKPIs:
    """
    Headline figures for a dashboard.

    - cash_balance: debit - credit of class 5 over every posted line;
    - vat_due: collected VAT (44571*) minus deductible VAT (44566*);
    - monthly_profit / yearly_profit: class 7 minus class 6 since the first
      day of the month / calendar year of ``today``.
    """
    require(actor, "reports.view")
    org = actor.organization_id
    today = today or date.today()

    all_time = ledger.posted_totals_by_account(cfg, org)
    cash = sum(_debit_positive(t) for t in all_time if t.account_class == 5)
    vat_collected = sum(
        _credit_positive(t) for t in all_time if t.account_number.startswith("44571")
    )
    vat_deductible = sum(
        _debit_positive(t) for t in all_time if t.account_number.startswith("44566")
    )

    month_totals = ledger.posted_totals_by_account(cfg, org, start=today.replace(day=1))
    year_totals = ledger.posted_totals_by_account(
        cfg, org, start=today.replace(month=1, day=1)
    )

    return AccountingKPIs(
        today=today,
        cash_balance=from_cents(cash),
        vat_due=from_cents(vat_collected - vat_deductible),
        monthly_profit=from_cents(_profit_cents(month_totals)),
        yearly_profit=from_cents(_profit_cents(year_totals)),
    )
