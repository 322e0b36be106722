from datetime import date

import pytest

from conftest import ORG_ID
from smb_ledger import accounts, reports
from smb_ledger.authz import ActorContext
from smb_ledger.db import NewAccount
from smb_ledger.errors import (
    BalanceSheetImbalanceError,
    PermissionDeniedError,
    ValidationError,
)

JAN_1 = date(2025, 1, 1)
JAN_31 = date(2025, 1, 31)


def _numbers(section) -> list[str]:
    return [line.account_number for line in section.lines]


def test_balance_sheet_balances(seeded_cfg, actor, january_books) -> None:
    """Assets equal liabilities once the period result is included."""
    sheet = reports.balance_sheet(seeded_cfg, actor, JAN_31)

    assert sheet.is_balanced
    assert sheet.assets.fixed.lines == ()
    assert _numbers(sheet.assets.current) == ["445660"]
    assert sheet.assets.cash.total == 11200
    assert sheet.assets.total == 11300

    assert sheet.liabilities.equity.total == 10000
    assert _numbers(sheet.liabilities.debts) == ["401000", "445710"]
    assert sheet.liabilities.debts.total == 800
    assert sheet.liabilities.result == 500
    assert sheet.liabilities.total == sheet.assets.total


def test_balance_sheet_skips_settled_accounts(seeded_cfg, actor, january_books) -> None:
    sheet = reports.balance_sheet(seeded_cfg, actor, JAN_31)
    assert "411000" not in _numbers(sheet.assets.current)


def test_balance_sheet_before_any_entry_is_empty(seeded_cfg, actor, january_books) -> None:
    sheet = reports.balance_sheet(seeded_cfg, actor, date(2024, 12, 31))
    assert sheet.assets.total == sheet.liabilities.total == 0
    assert sheet.is_balanced


def test_provisions_are_reported_apart_from_equity(seeded_cfg, actor, post) -> None:
    accounts.create_account(
        seeded_cfg,
        actor,
        NewAccount(account_number="151000", name="Provisions pour risques", account_type="liability"),
    )
    post(date(2025, 1, 5), "Apport", [("512000", 1000, 0), ("101000", 0, 1000)])
    post(date(2025, 1, 6), "Provision litige", [("671000", 300, 0), ("151000", 0, 300)])

    sheet = reports.balance_sheet(seeded_cfg, actor, JAN_31)

    assert _numbers(sheet.liabilities.provisions) == ["151000"]
    assert sheet.liabilities.provisions.total == 300
    assert sheet.liabilities.equity.total == 1000
    assert sheet.liabilities.result == -300
    assert sheet.is_balanced


def test_balance_sheet_imbalance_is_detected(seeded_cfg, actor, post) -> None:
    """Class 8 accounts are outside the sheet, so their counterpart unbalances it."""
    accounts.create_account(
        seeded_cfg,
        actor,
        NewAccount(account_number="801000", name="Engagements donnés", account_type="asset"),
    )
    post(date(2025, 1, 5), "Engagement", [("512000", 50, 0), ("801000", 0, 50)])

    with pytest.raises(BalanceSheetImbalanceError) as excinfo:
        reports.balance_sheet(seeded_cfg, actor, JAN_31)
    assert excinfo.value.discrepancy == pytest.approx(50.0)

    sheet = reports.balance_sheet(seeded_cfg, actor, JAN_31, verify=False)
    assert not sheet.is_balanced


def test_current_assets_keep_only_asset_typed_accounts(seeded_cfg, actor, post) -> None:
    """A class 4 account typed neither asset nor liability is left out and reported."""
    accounts.create_account(
        seeded_cfg,
        actor,
        NewAccount(account_number="455000", name="Associés - comptes courants", account_type="equity"),
    )
    post(date(2025, 1, 5), "Apport en compte courant", [("455000", 200, 0), ("101000", 0, 200)])

    with pytest.raises(BalanceSheetImbalanceError) as excinfo:
        reports.balance_sheet(seeded_cfg, actor, JAN_31)
    assert abs(excinfo.value.discrepancy) == pytest.approx(200.0)

    sheet = reports.balance_sheet(seeded_cfg, actor, JAN_31, verify=False)
    assert _numbers(sheet.assets.current) == []
    assert sheet.assets.total == 0
    assert sheet.liabilities.equity.total == 200


def test_income_statement_sales(seeded_cfg, actor, post) -> None:
    """701 credited 1000 in January shows as 1000 of sales."""
    post(date(2025, 1, 15), "Vente", [("411000", 1000, 0), ("701000", 0, 1000)])

    january = reports.income_statement(seeded_cfg, actor, JAN_1, JAN_31)
    assert january.income.sales.total == 1000
    assert january.result == 1000

    february = reports.income_statement(
        seeded_cfg, actor, date(2025, 2, 1), date(2025, 2, 28)
    )
    assert february.income.total == 0
    assert february.income.sales.lines == ()


def test_income_statement_categories(seeded_cfg, actor, january_books, post) -> None:
    post(date(2025, 1, 25), "Loyer", [("613000", 400, 0), ("512000", 0, 400)])
    post(date(2025, 1, 26), "Honoraires", [("622000", 150, 0), ("512000", 0, 150)])
    post(date(2025, 1, 27), "CFE", [("635000", 50, 0), ("512000", 0, 50)])
    post(date(2025, 1, 28), "Salaires", [("641000", 2000, 0), ("512000", 0, 2000)])
    post(date(2025, 1, 29), "Amende", [("671000", 10, 0), ("512000", 0, 10)])
    post(date(2025, 1, 30), "Produit divers", [("512000", 70, 0), ("771000", 0, 70)])

    statement = reports.income_statement(seeded_cfg, actor, JAN_1, JAN_31)

    assert statement.income.sales.total == 1000
    assert statement.income.other.total == 70
    assert statement.expenses.purchases.total == 500
    assert statement.expenses.external.total == 550
    assert statement.expenses.taxes.total == 50
    assert statement.expenses.personnel.total == 2000
    assert statement.expenses.other.total == 10
    assert statement.expenses.total == 3110
    assert statement.result == pytest.approx(1070 - 3110)


def test_income_statement_rejects_inverted_period(seeded_cfg, actor) -> None:
    with pytest.raises(ValidationError):
        reports.income_statement(seeded_cfg, actor, JAN_31, JAN_1)


def test_vat_report(seeded_cfg, actor, january_books) -> None:
    report = reports.vat_report(seeded_cfg, actor, JAN_1, JAN_31)

    assert report.collected.total == 200
    assert report.deductible.total == 100
    assert report.balance == 100
    assert report.is_payable


def test_vat_credit(seeded_cfg, actor, post) -> None:
    post(
        date(2025, 1, 12),
        "Achat",
        [("607000", 500, 0), ("445660", 100, 0), ("401000", 0, 600)],
    )
    report = reports.vat_report(seeded_cfg, actor, JAN_1, JAN_31)
    assert report.balance == -100
    assert not report.is_payable


def test_accounting_kpis(seeded_cfg, actor, january_books) -> None:
    kpis = reports.accounting_kpis(seeded_cfg, actor, today=JAN_31)

    assert kpis.cash_balance == 11200
    assert kpis.vat_due == 100
    assert kpis.monthly_profit == 500
    assert kpis.yearly_profit == 500

    february = reports.accounting_kpis(seeded_cfg, actor, today=date(2025, 2, 15))
    assert february.monthly_profit == 0
    assert february.yearly_profit == 500


def test_reports_require_permission(seeded_cfg) -> None:
    nobody = ActorContext(organization_id=ORG_ID)
    with pytest.raises(PermissionDeniedError):
        reports.balance_sheet(seeded_cfg, nobody, JAN_31)
