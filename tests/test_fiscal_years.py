from concurrent.futures import ThreadPoolExecutor
from datetime import date
from threading import Barrier

import pytest

from smb_ledger import documents, fiscal_years, journal
from smb_ledger.documents import InvoiceDocument
from smb_ledger.errors import ClosedFiscalYearError, NotFoundError, ValidationError


def _create(cfg, actor, name, start, end):
    return fiscal_years.create_fiscal_year(cfg, actor, name, start, end)


def test_create_and_list(db_cfg, actor) -> None:
    fy24 = _create(db_cfg, actor, "2024", date(2024, 1, 1), date(2024, 12, 31))
    fy25 = _create(db_cfg, actor, "2025", date(2025, 1, 1), date(2025, 12, 31))

    assert not fy25.is_closed
    assert [f.name for f in fiscal_years.list_fiscal_years(db_cfg, actor)] == ["2025", "2024"]
    assert fiscal_years.get_fiscal_year(db_cfg, actor, fy24.id) == fy24


@pytest.mark.parametrize(
    "name, start, end",
    [
        ("", date(2026, 1, 1), date(2026, 12, 31)),
        ("2026", date(2026, 12, 31), date(2026, 1, 1)),
        ("2025", date(2026, 1, 1), date(2026, 12, 31)),
        ("2025-bis", date(2025, 6, 1), date(2026, 5, 31)),
    ],
)
def test_create_rejects_invalid_windows(db_cfg, actor, name, start, end) -> None:
    _create(db_cfg, actor, "2025", date(2025, 1, 1), date(2025, 12, 31))
    with pytest.raises(ValidationError):
        _create(db_cfg, actor, name, start, end)


def test_current_fiscal_year(db_cfg, actor) -> None:
    _create(db_cfg, actor, "2024-2025", date(2024, 7, 1), date(2025, 6, 30))

    current = fiscal_years.current_fiscal_year(db_cfg, actor, today=date(2025, 1, 15))
    assert current is not None and current.name == "2024-2025"
    assert fiscal_years.current_fiscal_year(db_cfg, actor, today=date(2025, 7, 1)) is None


def test_unknown_fiscal_year(db_cfg, actor) -> None:
    with pytest.raises(NotFoundError):
        fiscal_years.get_fiscal_year(db_cfg, actor, 42)


def test_close_is_refused_while_drafts_remain(seeded_cfg, actor, post) -> None:
    fy = _create(seeded_cfg, actor, "2025", date(2025, 1, 1), date(2025, 12, 31))
    draft = post(date(2025, 3, 1), "Brouillon", [("512000", 10, 0)], draft=True)

    with pytest.raises(ValidationError):
        fiscal_years.close_fiscal_year(seeded_cfg, actor, fy.id)

    journal.cancel_journal_entry(seeded_cfg, actor, draft.id)
    closed = fiscal_years.close_fiscal_year(seeded_cfg, actor, fy.id)

    assert closed.is_closed
    assert closed.closed_by == "system"
    assert closed.closed_at is not None
    with pytest.raises(ValidationError):
        fiscal_years.close_fiscal_year(seeded_cfg, actor, fy.id)


def test_closed_fiscal_year_is_frozen(seeded_cfg, actor, post) -> None:
    """No entry can be created, posted or cancelled inside a closed year."""
    _create(seeded_cfg, actor, "2025", date(2025, 1, 1), date(2025, 12, 31))
    posted = post(date(2025, 1, 5), "Apport", [("512000", 100, 0), ("101000", 0, 100)])
    fy = fiscal_years.list_fiscal_years(seeded_cfg, actor)[0]
    fiscal_years.close_fiscal_year(seeded_cfg, actor, fy.id)

    with pytest.raises(ClosedFiscalYearError) as excinfo:
        post(date(2025, 6, 1), "Tardive", [("512000", 10, 0), ("101000", 0, 10)])
    assert excinfo.value.fiscal_year_name == "2025"

    with pytest.raises(ClosedFiscalYearError):
        journal.cancel_journal_entry(seeded_cfg, actor, posted.id)

    with pytest.raises(ClosedFiscalYearError):
        documents.record_invoice(
            seeded_cfg,
            actor,
            InvoiceDocument("inv-1", "FAC-00001", date(2025, 2, 1), 100, 20, 120),
        )

    # Dates outside any closed year stay open.
    later = post(date(2026, 1, 2), "Nouvel exercice", [("512000", 10, 0), ("101000", 0, 10)])
    assert later.entry_number == "EC-000002"


def test_concurrent_overlapping_declarations(db_cfg, actor) -> None:
    """Of two overlapping fiscal years declared at once, only one is stored."""
    barrier = Barrier(2, timeout=30)
    windows = {
        "2025": (date(2025, 1, 1), date(2025, 12, 31)),
        "2025-bis": (date(2025, 7, 1), date(2026, 6, 30)),
    }

    def declare(name: str) -> str:
        barrier.wait()
        try:
            _create(db_cfg, actor, name, *windows[name])
        except ValidationError:
            return "rejected"
        return "created"

    with ThreadPoolExecutor(max_workers=2) as executor:
        outcomes = sorted(executor.map(declare, windows))

    assert outcomes == ["created", "rejected"]
    assert len(fiscal_years.list_fiscal_years(db_cfg, actor)) == 1
