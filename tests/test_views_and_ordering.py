from datetime import date

from smb_ledger import accounts, journal, ledger, reports
from smb_ledger.views import (
    STATEMENT_COLUMNS,
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

JAN_31 = date(2025, 1, 31)


def test_balance_sheet_views(seeded_cfg, actor, january_books) -> None:
    """Detailed view lists accounts, simplified view keeps sections only."""
    df = balance_sheet_to_dataframe(reports.balance_sheet(seeded_cfg, actor, JAN_31))

    assert list(df.columns) == STATEMENT_COLUMNS
    assert df["display_order"].tolist() == [10 * (i + 1) for i in range(len(df))]
    assert "512000" in df["account_number"].tolist()
    totals = df.set_index("label")["amount"]
    assert totals["Total actif"] == totals["Total passif"] == 11300

    simplified = apply_view_level_filter(df, "simplified")
    assert simplified["level"].max() <= 1
    assert set(simplified["account_number"]) == {""}
    assert simplified["display_order"].tolist() == [
        10 * (i + 1) for i in range(len(simplified))
    ]

    detailed = apply_view_level_filter(df, "detailed")
    assert len(detailed) == len(df)


def test_income_statement_and_vat_views(seeded_cfg, actor, january_books) -> None:
    statement = reports.income_statement(seeded_cfg, actor, date(2025, 1, 1), JAN_31)
    df = income_statement_to_dataframe(statement)
    assert df.iloc[-1]["label"] == "Résultat"
    assert df.iloc[-1]["amount"] == 500

    vat = vat_report_to_dataframe(
        reports.vat_report(seeded_cfg, actor, date(2025, 1, 1), JAN_31)
    )
    assert vat.iloc[-1]["label"] == "TVA à payer"
    assert vat.iloc[-1]["amount"] == 100


def test_trial_balance_view_has_total_row(seeded_cfg, actor, january_books) -> None:
    df = trial_balance_to_dataframe(ledger.trial_balance(seeded_cfg, actor, JAN_31))

    assert df.iloc[-1]["account_number"] == "TOTAL"
    assert df.iloc[-1]["solde_debit"] == df.iloc[-1]["solde_credit"] == 11800
    assert len(df) == 8 + 1

    bare = trial_balance_to_dataframe(
        ledger.trial_balance(seeded_cfg, actor, JAN_31), with_totals=False
    )
    assert len(bare) == 8


def test_ledger_and_entries_views(seeded_cfg, actor, january_books) -> None:
    gl = general_ledger_to_dataframe(ledger.general_ledger(seeded_cfg, actor))
    assert len(gl) == 10
    # Lines without their own label fall back to the entry description.
    assert gl.iloc[0]["description"] == "Apport en capital"

    entries = entries_to_dataframe(journal.list_journal_entries(seeded_cfg, actor))
    assert len(entries) == 10
    assert entries["entry_number"].unique().tolist() == [
        "EC-000001",
        "EC-000002",
        "EC-000003",
        "EC-000004",
    ]


def test_kpis_and_accounts_views(seeded_cfg, actor, january_books) -> None:
    kpis = kpis_to_dataframe(reports.accounting_kpis(seeded_cfg, actor, today=JAN_31))
    assert kpis.set_index("kpi")["value"].to_dict() == {
        "cash_balance": 11200,
        "vat_due": 100,
        "monthly_profit": 500,
        "yearly_profit": 500,
    }

    df = accounts_to_dataframe(accounts.list_accounts(seeded_cfg, actor, account_class=5))
    assert df["account_number"].tolist() == ["51", "512000", "53", "531000"]
