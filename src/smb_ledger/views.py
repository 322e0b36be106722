# SMB Ledger - Double-entry bookkeeping core for French SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
View utilities for SMB Ledger.

The accounting services return typed dataclasses. This module converts them
into pandas DataFrames ready for display (``DataFrame.to_string``) or CSV
export, which is what the CLI and any Web front-end consume.

Financial statements are flattened into rows with a ``level`` column:

- level 0: statement side or grand total (e.g. "Actif", "Total actif"),
- level 1: section total (e.g. "Immobilisations"),
- level 2: account lines under their section.

Two views are available for statements:

- simplified: levels 0-1 (sections and totals only),
- detailed:   every level, account lines included.
"""

from collections.abc import Iterable
from dataclasses import asdict

import pandas as pd

from .db import Account, JournalEntry
from .ledger import GeneralLedgerRow, TrialBalance
from .reports import (
    AccountingKPIs,
    BalanceSheet,
    IncomeStatement,
    StatementSection,
    VatReport,
)

STATEMENT_COLUMNS = ["display_order", "level", "label", "account_number", "amount"]


def _renumber_display_order(df: pd.DataFrame) -> pd.DataFrame:
    """Renumber display_order to 10, 20, 30, ... in the current row order."""
    df = df.reset_index(drop=True)
    df["display_order"] = (df.index + 1) * 10
    return df[[c for c in STATEMENT_COLUMNS if c in df.columns]]


def apply_view_level_filter(out: pd.DataFrame, view: str) -> pd.DataFrame:
    """Return a view-specific slice of a statement DataFrame.

    - "simplified": keep rows with level <= 1,
    - any other value ("detailed"): keep all rows.

    display_order is renumbered after filtering.
    """
    if view == "simplified":
        df = out[out["level"] <= 1].copy()
    else:
        df = out.copy()
    return _renumber_display_order(df)


class _StatementRows:
    """Accumulates the flattened rows of a statement."""

    def __init__(self) -> None:
        self.rows: list[dict] = []

    def add(self, level: int, label: str, amount, account_number: str = "") -> None:
        self.rows.append(
            {
                "level": level,
                "label": label,
                "account_number": account_number,
                "amount": None if amount is None else round(float(amount), 2),
            }
        )

    def section(self, label: str, section: StatementSection) -> None:
        self.add(1, label, section.total)
        for line in section.lines:
            self.add(2, line.account_name, line.amount, line.account_number)

    def frame(self) -> pd.DataFrame:
        return _renumber_display_order(pd.DataFrame(self.rows, columns=STATEMENT_COLUMNS))


def balance_sheet_to_dataframe(sheet: BalanceSheet) -> pd.DataFrame:
    rows = _StatementRows()
    rows.add(0, "Actif", None)
    rows.section("Immobilisations", sheet.assets.fixed)
    rows.section("Actif circulant", sheet.assets.current)
    rows.section("Trésorerie", sheet.assets.cash)
    rows.add(0, "Total actif", sheet.assets.total)

    rows.add(0, "Passif", None)
    rows.section("Capitaux propres", sheet.liabilities.equity)
    rows.section("Provisions", sheet.liabilities.provisions)
    rows.section("Dettes", sheet.liabilities.debts)
    rows.add(1, "Résultat de l'exercice", sheet.liabilities.result)
    rows.add(0, "Total passif", sheet.liabilities.total)
    return rows.frame()


def income_statement_to_dataframe(statement: IncomeStatement) -> pd.DataFrame:
    rows = _StatementRows()
    rows.add(0, "Produits", None)
    rows.section("Ventes", statement.income.sales)
    rows.section("Autres produits", statement.income.other)
    rows.add(0, "Total produits", statement.income.total)

    rows.add(0, "Charges", None)
    rows.section("Achats", statement.expenses.purchases)
    rows.section("Charges externes", statement.expenses.external)
    rows.section("Impôts et taxes", statement.expenses.taxes)
    rows.section("Charges de personnel", statement.expenses.personnel)
    rows.section("Autres charges", statement.expenses.other)
    rows.add(0, "Total charges", statement.expenses.total)

    rows.add(0, "Résultat", statement.result)
    return rows.frame()


def vat_report_to_dataframe(report: VatReport) -> pd.DataFrame:
    rows = _StatementRows()
    rows.section("TVA collectée", report.collected)
    rows.section("TVA déductible", report.deductible)
    rows.add(0, "TVA à payer" if report.balance >= 0 else "Crédit de TVA", report.balance)
    return rows.frame()


def kpis_to_dataframe(kpis: AccountingKPIs) -> pd.DataFrame:
    return pd.DataFrame(
        [
            {"kpi": "cash_balance", "label": "Trésorerie", "value": kpis.cash_balance},
            {"kpi": "vat_due", "label": "TVA due", "value": kpis.vat_due},
            {
                "kpi": "monthly_profit",
                "label": "Résultat du mois",
                "value": kpis.monthly_profit,
            },
            {
                "kpi": "yearly_profit",
                "label": "Résultat de l'année",
                "value": kpis.yearly_profit,
            },
        ]
    )


def trial_balance_to_dataframe(
    tb: TrialBalance, *, with_totals: bool = True
) -> pd.DataFrame:
    """One row per account, plus an optional TOTAL row."""
    columns = [
        "account_number",
        "account_name",
        "total_debit",
        "total_credit",
        "solde_debit",
        "solde_credit",
    ]
    df = pd.DataFrame([asdict(r) for r in tb.rows], columns=columns)
    if with_totals:
        totals = {
            "account_number": "TOTAL",
            "account_name": "",
            "total_debit": tb.total_debit,
            "total_credit": tb.total_credit,
            "solde_debit": tb.total_solde_debit,
            "solde_credit": tb.total_solde_credit,
        }
        df = pd.concat([df, pd.DataFrame([totals])], ignore_index=True)
    return df


def general_ledger_to_dataframe(rows: Iterable[GeneralLedgerRow]) -> pd.DataFrame:
    columns = [
        "date",
        "entry_number",
        "account_number",
        "account_name",
        "description",
        "debit",
        "credit",
        "balance",
    ]
    records = []
    for row in rows:
        record = asdict(row)
        record["description"] = row.description or row.entry_description
        records.append(record)
    return pd.DataFrame(records, columns=columns)


def entries_to_dataframe(entries: Iterable[JournalEntry]) -> pd.DataFrame:
    """Flatten entries to one row per line (entries without lines get one row)."""
    columns = [
        "entry_number",
        "date",
        "status",
        "journal_type",
        "description",
        "account_number",
        "debit",
        "credit",
    ]
    records = []
    for entry in entries:
        base = {
            "entry_number": entry.entry_number,
            "date": entry.date,
            "status": entry.status,
            "journal_type": entry.journal_type,
        }
        if not entry.lines:
            records.append({**base, "description": entry.description})
        for line in entry.lines:
            records.append(
                {
                    **base,
                    "description": line.description or entry.description,
                    "account_number": line.account_number,
                    "debit": line.debit,
                    "credit": line.credit,
                }
            )
    return pd.DataFrame(records, columns=columns)


def accounts_to_dataframe(accounts: Iterable[Account]) -> pd.DataFrame:
    columns = [
        "account_number",
        "name",
        "account_class",
        "account_type",
        "parent_account_number",
        "is_system",
        "is_active",
    ]
    return pd.DataFrame(
        [{c: getattr(a, c) for c in columns} for a in accounts], columns=columns
    )
