import sqlite3
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from threading import Barrier

import pytest

from conftest import ORG_ID
from smb_ledger import journal, ledger
from smb_ledger.config import NumberingConfig
from smb_ledger.db import EntriesFilter, count_entries, count_lines_for_account
from smb_ledger.errors import (
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    UnbalancedEntryError,
    ValidationError,
)
from smb_ledger.journal import NewJournalEntry, NewJournalLine

JAN_5 = date(2025, 1, 5)


def test_balanced_entry_is_posted_with_first_number(seeded_cfg, post) -> None:
    entry = post(JAN_5, "Apport en capital", [("512000", 10000, 0), ("101000", 0, 10000)])

    assert entry.entry_number == "EC-000001"
    assert entry.status == "posted"
    assert entry.is_balanced
    assert entry.posted_at is not None
    assert entry.total_debit == entry.total_credit == 10000
    assert [line.position for line in entry.lines] == [1, 2]
    assert [line.account_number for line in entry.lines] == ["512000", "101000"]


def test_unbalanced_entry_is_rejected_and_consumes_no_number(seeded_cfg, post) -> None:
    """Debit 100 / credit 99 is refused; the next entry still gets EC-000001."""
    with pytest.raises(UnbalancedEntryError) as excinfo:
        post(JAN_5, "Erreur", [("512000", 100, 0), ("101000", 0, 99)])
    assert excinfo.value.discrepancy == pytest.approx(1.0)
    assert count_entries(seeded_cfg, ORG_ID) == 0

    entry = post(JAN_5, "Apport", [("512000", 100, 0), ("101000", 0, 100)])
    assert entry.entry_number == "EC-000001"


def test_sub_cent_noise_is_tolerated(post) -> None:
    entry = post(
        JAN_5,
        "Ventilation",
        [("607000", 0.1, 0), ("606000", 0.2, 0), ("401000", 0, 0.3)],
    )
    assert entry.is_balanced


def test_numbers_are_sequential_without_gaps(post) -> None:
    numbers = [
        post(JAN_5, f"Apport {i}", [("512000", 10, 0), ("101000", 0, 10)]).entry_number
        for i in range(3)
    ]
    assert numbers == ["EC-000001", "EC-000002", "EC-000003"]


def test_custom_prefix(seeded_cfg, actor, account_id) -> None:
    entry = journal.create_journal_entry(
        seeded_cfg,
        actor,
        NewJournalEntry(
            date=JAN_5,
            description="Apport",
            lines=(
                NewJournalLine(account_id=account_id("512000"), debit=10),
                NewJournalLine(account_id=account_id("101000"), credit=10),
            ),
        ),
        numbering=NumberingConfig(journal_entry_prefix="JE"),
    )
    assert entry.entry_number == "JE-000001"


@pytest.mark.parametrize(
    "lines",
    [
        [("512000", 10, 0)],
        [("512000", 10, 10), ("101000", 0, 0)],
        [("512000", 0, 0), ("101000", 0, 0)],
        [("512000", -10, 0), ("101000", 0, -10)],
    ],
)
def test_malformed_lines_are_rejected(post, lines) -> None:
    with pytest.raises(ValidationError):
        post(JAN_5, "Mauvaise écriture", lines)


def test_header_validation(post) -> None:
    with pytest.raises(ValidationError):
        post(JAN_5, "   ", [("512000", 10, 0), ("101000", 0, 10)])
    with pytest.raises(ValidationError):
        post(
            JAN_5,
            "Apport",
            [("512000", 10, 0), ("101000", 0, 10)],
            journal_type="payroll",
        )


def test_unknown_account_is_not_found(seeded_cfg, actor, account_id) -> None:
    entry = NewJournalEntry(
        date=JAN_5,
        description="Apport",
        lines=(
            NewJournalLine(account_id=account_id("512000"), debit=10),
            NewJournalLine(account_id=999_999, credit=10),
        ),
    )
    with pytest.raises(NotFoundError):
        journal.create_journal_entry(seeded_cfg, actor, entry)
    assert count_entries(seeded_cfg, ORG_ID) == 0


def test_draft_life_cycle(seeded_cfg, actor, account_id, post) -> None:
    """A draft can be unbalanced, edited, then posted once balanced."""
    draft = post(JAN_5, "Brouillon", [("512000", 100, 0)], draft=True)
    assert draft.status == "draft"
    assert not draft.is_balanced
    assert ledger.trial_balance(seeded_cfg, actor).rows == ()

    with pytest.raises(ValidationError):
        journal.post_journal_entry(seeded_cfg, actor, draft.id)

    updated = journal.update_draft_lines(
        seeded_cfg,
        actor,
        draft.id,
        [
            NewJournalLine(account_id=account_id("512000"), debit=100),
            NewJournalLine(account_id=account_id("101000"), credit=100),
        ],
    )
    assert updated.is_balanced
    assert updated.entry_number == draft.entry_number

    posted = journal.post_journal_entry(seeded_cfg, actor, draft.id)
    assert posted.status == "posted"
    assert len(ledger.trial_balance(seeded_cfg, actor).rows) == 2

    with pytest.raises(InvalidTransitionError):
        journal.post_journal_entry(seeded_cfg, actor, draft.id)
    with pytest.raises(ValidationError):
        journal.update_draft_lines(seeded_cfg, actor, draft.id, [])


def test_unbalanced_draft_cannot_be_posted(seeded_cfg, actor, post) -> None:
    draft = post(JAN_5, "Brouillon", [("512000", 100, 0), ("101000", 0, 90)], draft=True)
    with pytest.raises(UnbalancedEntryError):
        journal.post_journal_entry(seeded_cfg, actor, draft.id)
    assert journal.get_journal_entry(seeded_cfg, actor, draft.id).status == "draft"


def test_cancel_keeps_the_entry_and_drops_it_from_aggregates(
    seeded_cfg, actor, post
) -> None:
    entry = post(JAN_5, "Apport", [("512000", 100, 0), ("101000", 0, 100)])
    assert len(ledger.trial_balance(seeded_cfg, actor).rows) == 2

    cancelled = journal.cancel_journal_entry(seeded_cfg, actor, entry.id, "Doublon")

    assert cancelled.status == "cancelled"
    assert cancelled.cancelled_reason == "Doublon"
    assert cancelled.cancelled_at is not None
    assert len(cancelled.lines) == 2
    assert count_entries(seeded_cfg, ORG_ID) == 1
    assert ledger.trial_balance(seeded_cfg, actor).rows == ()

    with pytest.raises(InvalidTransitionError):
        journal.cancel_journal_entry(seeded_cfg, actor, entry.id)
    with pytest.raises(InvalidTransitionError):
        journal.post_journal_entry(seeded_cfg, actor, entry.id)


def test_cancelled_numbers_are_not_reused(post, seeded_cfg, actor) -> None:
    first = post(JAN_5, "Apport", [("512000", 100, 0), ("101000", 0, 100)])
    journal.cancel_journal_entry(seeded_cfg, actor, first.id)
    second = post(JAN_5, "Apport", [("512000", 100, 0), ("101000", 0, 100)])
    assert second.entry_number == "EC-000002"


def test_cancel_entries_for_reference(seeded_cfg, actor, post) -> None:
    post(
        JAN_5,
        "Facture",
        [("411000", 120, 0), ("707000", 0, 100), ("445710", 0, 20)],
        reference=("invoice", "inv-1"),
    )
    post(
        JAN_5,
        "Paiement",
        [("512000", 120, 0), ("411000", 0, 120)],
        reference=("invoice", "inv-1"),
    )
    other = post(
        JAN_5,
        "Autre facture",
        [("411000", 60, 0), ("707000", 0, 60)],
        reference=("invoice", "inv-2"),
    )

    cancelled = journal.cancel_entries_for_reference(
        seeded_cfg, actor, "invoice", "inv-1"
    )

    assert len(cancelled) == 2
    assert {e.status for e in cancelled} == {"cancelled"}
    assert cancelled[0].cancelled_reason == "invoice inv-1 removed"
    assert journal.get_journal_entry(seeded_cfg, actor, other.id).status == "posted"
    assert journal.cancel_entries_for_reference(seeded_cfg, actor, "invoice", "inv-1") == []


def test_list_and_lookup(seeded_cfg, actor, january_books) -> None:
    entries = journal.list_journal_entries(seeded_cfg, actor)
    assert [e.entry_number for e in entries] == [
        "EC-000001",
        "EC-000002",
        "EC-000003",
        "EC-000004",
    ]

    bank = journal.list_journal_entries(
        seeded_cfg, actor, EntriesFilter(journal_type="bank")
    )
    assert len(bank) == 2

    page = journal.list_journal_entries(seeded_cfg, actor, limit=2, offset=2)
    assert [e.entry_number for e in page] == ["EC-000003", "EC-000004"]

    found = journal.get_journal_entry_by_number(seeded_cfg, actor, "EC-000002")
    assert found.description == "Facture FAC-00001"

    with pytest.raises(NotFoundError):
        journal.get_journal_entry_by_number(seeded_cfg, actor, "EC-999999")
    with pytest.raises(ValidationError):
        journal.list_journal_entries(seeded_cfg, actor, EntriesFilter(status="lost"))


def test_next_document_number(seeded_cfg, actor) -> None:
    assert journal.next_document_number(seeded_cfg, actor, "invoice") == "FAC-00001"
    assert journal.next_document_number(seeded_cfg, actor, "invoice") == "FAC-00002"
    assert journal.next_document_number(seeded_cfg, actor, "quote") == "DEV-00001"
    with pytest.raises(ValidationError):
        journal.next_document_number(seeded_cfg, actor, "journal_entry")


def test_format_document_number() -> None:
    assert journal.format_document_number("journal_entry", 42) == "EC-000042"
    with pytest.raises(ValidationError):
        journal.format_document_number("receipt", 1)


def test_concurrent_writers_get_distinct_gap_free_numbers(
    seeded_cfg, actor, account_id
) -> None:
    """Writers racing on the same database file never share or skip a number."""
    bank, capital = account_id("512000"), account_id("101000")
    num_threads, entries_per_thread = 4, 5
    barrier = Barrier(num_threads, timeout=30)

    def write(thread_id: int) -> list[str]:
        barrier.wait()
        numbers = []
        for i in range(entries_per_thread):
            entry = journal.create_journal_entry(
                seeded_cfg,
                actor,
                NewJournalEntry(
                    date=JAN_5,
                    description=f"Apport {thread_id}-{i}",
                    lines=(
                        NewJournalLine(account_id=bank, debit=10),
                        NewJournalLine(account_id=capital, credit=10),
                    ),
                ),
            )
            numbers.append(entry.entry_number)
        return numbers

    with ThreadPoolExecutor(max_workers=num_threads) as executor:
        futures = [executor.submit(write, i) for i in range(num_threads)]
        numbers = [number for f in futures for number in f.result()]

    total = num_threads * entries_per_thread
    assert sorted(numbers) == [f"EC-{n:06d}" for n in range(1, total + 1)]
    assert count_entries(seeded_cfg, ORG_ID, status="posted") == total
    trial_balance = ledger.trial_balance(seeded_cfg, actor)
    assert trial_balance.is_balanced
    assert trial_balance.total_debit == pytest.approx(10 * total)


def test_failed_line_insert_rolls_back_header_and_number(
    seeded_cfg, actor, account_id, post, monkeypatch
) -> None:
    """A database error after the header insert leaves no trace."""
    bank = account_id("512000")
    # Let the unknown account reach the INSERT so the foreign key rejects it.
    monkeypatch.setattr(journal, "_check_accounts", lambda conn, org, ids: None)
    entry = NewJournalEntry(
        date=JAN_5,
        description="Compte inexistant",
        lines=(
            NewJournalLine(account_id=bank, debit=10),
            NewJournalLine(account_id=999_999, credit=10),
        ),
    )

    with pytest.raises(PersistenceError) as excinfo:
        journal.create_journal_entry(seeded_cfg, actor, entry)
    assert isinstance(excinfo.value.__cause__, sqlite3.IntegrityError)
    assert count_entries(seeded_cfg, ORG_ID) == 0
    assert count_lines_for_account(seeded_cfg, bank) == 0

    monkeypatch.undo()
    recorded = post(JAN_5, "Apport", [("512000", 10, 0), ("101000", 0, 10)])
    assert recorded.entry_number == "EC-000001"
