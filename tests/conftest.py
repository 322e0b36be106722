from datetime import date

import pytest

from smb_ledger import ledger
from smb_ledger.accounts import init_chart_of_accounts
from smb_ledger.authz import system_actor
from smb_ledger.db import DatabaseConfig, ensure_organization, get_account_by_number
from smb_ledger.journal import (
    NewJournalEntry,
    NewJournalLine,
    create_draft_entry,
    create_journal_entry,
)

ORG_ID = "acme"


def make_tmp_db_cfg(tmp_path) -> DatabaseConfig:
    """Helper to build a DatabaseConfig pointing to a temporary SQLite file."""
    db_path = tmp_path / "test_db.sqlite"
    return DatabaseConfig(engine="sqlite", path=db_path)


@pytest.fixture(autouse=True)
def _fresh_aggregate_cache():
    ledger.clear_cache()
    yield
    ledger.clear_cache()


@pytest.fixture
def db_cfg(tmp_path):
    """Temporary database with the test organization registered."""
    cfg = make_tmp_db_cfg(tmp_path)
    ensure_organization(cfg, ORG_ID, "ACME SAS", "12345678900011")
    return cfg


@pytest.fixture
def actor():
    return system_actor(ORG_ID)


@pytest.fixture
def seeded_cfg(db_cfg, actor):
    """Temporary database seeded with the default PCG chart."""
    init_chart_of_accounts(db_cfg, actor)
    return db_cfg


@pytest.fixture
def account_id(seeded_cfg):
    """Return a function mapping an account number to its id."""

    def _lookup(number: str) -> int:
        account = get_account_by_number(seeded_cfg, ORG_ID, number)
        assert account is not None, f"account {number} missing from the seed"
        return account.id

    return _lookup


@pytest.fixture
def post(seeded_cfg, actor, account_id):
    """Return a function recording an entry from (number, debit, credit) tuples."""

    def _post(day, description, lines, *, journal_type="general", draft=False, reference=None):
        entry = NewJournalEntry(
            date=day,
            description=description,
            journal_type=journal_type,
            reference_type=reference[0] if reference else None,
            reference_id=reference[1] if reference else None,
            lines=tuple(
                NewJournalLine(account_id=account_id(number), debit=debit, credit=credit)
                for number, debit, credit in lines
            ),
        )
        record = create_draft_entry if draft else create_journal_entry
        return record(seeded_cfg, actor, entry)

    return _post


@pytest.fixture
def january_books(post):
    """Capital contribution, one sale, one purchase and one customer payment.

    Expected figures at 2025-01-31:
    - bank 512000: 11 200 debit
    - VAT collected 200, VAT deductible 100
    - sales 1 000, purchases 500, result 500
    """
    return [
        post(
            date(2025, 1, 5),
            "Apport en capital",
            [("512000", 10000, 0), ("101000", 0, 10000)],
            journal_type="bank",
        ),
        post(
            date(2025, 1, 10),
            "Facture FAC-00001",
            [("411000", 1200, 0), ("707000", 0, 1000), ("445710", 0, 200)],
            journal_type="sales",
        ),
        post(
            date(2025, 1, 12),
            "Achat marchandises",
            [("607000", 500, 0), ("445660", 100, 0), ("401000", 0, 600)],
            journal_type="purchases",
        ),
        post(
            date(2025, 1, 20),
            "Paiement reçu",
            [("512000", 1200, 0), ("411000", 0, 1200)],
            journal_type="bank",
        ),
    ]
