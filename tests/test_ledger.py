from datetime import date

import pytest

from conftest import ORG_ID
from smb_ledger import journal, ledger
from smb_ledger.errors import NotFoundError


def test_trial_balance_of_january(seeded_cfg, actor, january_books) -> None:
    tb = ledger.trial_balance(seeded_cfg, actor, date(2025, 1, 31))

    by_number = {r.account_number: r for r in tb.rows}
    assert list(by_number) == [
        "101000",
        "401000",
        "411000",
        "445660",
        "445710",
        "512000",
        "607000",
        "707000",
    ]
    assert by_number["512000"].solde_debit == 11200
    assert by_number["101000"].solde_credit == 10000
    # Settled customer account: activity but no balance.
    assert by_number["411000"].total_debit == by_number["411000"].total_credit == 1200
    assert by_number["411000"].solde_debit == by_number["411000"].solde_credit == 0

    assert tb.total_debit == tb.total_credit == 13000
    assert tb.total_solde_debit == tb.total_solde_credit == 11800
    assert tb.is_balanced


def test_trial_balance_as_of_excludes_later_lines(seeded_cfg, actor, january_books) -> None:
    tb = ledger.trial_balance(seeded_cfg, actor, date(2025, 1, 10))
    numbers = {r.account_number for r in tb.rows}
    assert numbers == {"101000", "411000", "445710", "512000", "707000"}
    assert tb.is_balanced


def test_general_ledger_running_balance(seeded_cfg, actor, account_id, january_books) -> None:
    """The running balance of the bank ends on its net balance."""
    bank = account_id("512000")
    rows = ledger.general_ledger(seeded_cfg, actor, account_id=bank)

    assert [r.entry_number for r in rows] == ["EC-000001", "EC-000004"]
    assert [r.balance for r in rows] == [10000, 11200]
    assert rows[-1].balance == ledger.account_balance(seeded_cfg, actor, bank).balance


def test_general_ledger_of_all_accounts_nets_to_zero(seeded_cfg, actor, january_books) -> None:
    rows = ledger.general_ledger(seeded_cfg, actor)
    assert len(rows) == 10
    assert rows[-1].balance == pytest.approx(0.0)
    # Lines of one entry stay in position order.
    assert [r.position for r in rows if r.entry_number == "EC-000002"] == [1, 2, 3]


def test_general_ledger_opening_balance(seeded_cfg, actor, account_id, january_books) -> None:
    bank = account_id("512000")

    reset = ledger.general_ledger(
        seeded_cfg, actor, account_id=bank, start=date(2025, 1, 15)
    )
    assert [r.balance for r in reset] == [1200]

    seeded = ledger.general_ledger(
        seeded_cfg,
        actor,
        account_id=bank,
        start=date(2025, 1, 15),
        include_opening_balance=True,
    )
    assert [r.balance for r in seeded] == [11200]


def test_general_ledger_unknown_account(seeded_cfg, actor) -> None:
    with pytest.raises(NotFoundError):
        ledger.general_ledger(seeded_cfg, actor, account_id=999_999)


def test_account_balance(seeded_cfg, actor, account_id, january_books) -> None:
    vat = ledger.account_balance(seeded_cfg, actor, account_id("445710"))
    assert (vat.total_debit, vat.total_credit, vat.balance) == (0, 200, -200)

    before = ledger.account_balance(
        seeded_cfg, actor, account_id("512000"), as_of=date(2025, 1, 4)
    )
    assert before.balance == 0


def test_cache_is_invalidated_by_writes(seeded_cfg, actor, january_books) -> None:
    """A read after a successful write never returns a stale aggregate."""
    first = ledger.trial_balance(seeded_cfg, actor, date(2025, 1, 31))
    assert ledger.trial_balance(seeded_cfg, actor, date(2025, 1, 31)) is first

    journal.cancel_journal_entry(seeded_cfg, actor, january_books[0].id)

    second = ledger.trial_balance(seeded_cfg, actor, date(2025, 1, 31))
    assert second is not first
    assert "101000" not in {r.account_number for r in second.rows}
    assert second.is_balanced


def test_aggregate_cache_scopes_and_generations(seeded_cfg) -> None:
    cache = ledger.AggregateCache()
    calls = []

    def compute():
        calls.append(1)
        return len(calls)

    assert cache.get_or_compute(seeded_cfg, ORG_ID, "k", compute) == 1
    assert cache.get_or_compute(seeded_cfg, ORG_ID, "k", compute) == 1
    assert cache.get_or_compute(seeded_cfg, "other-org", "k", compute) == 2

    cache.invalidate(seeded_cfg, ORG_ID)
    assert len(cache) == 1
    assert cache.get_or_compute(seeded_cfg, ORG_ID, "k", compute) == 3


def test_value_computed_during_invalidation_is_not_stored(seeded_cfg) -> None:
    cache = ledger.AggregateCache()

    def racing_compute():
        # A write lands while the aggregate is being computed.
        cache.invalidate(seeded_cfg, ORG_ID)
        return "stale"

    assert cache.get_or_compute(seeded_cfg, ORG_ID, "k", racing_compute) == "stale"
    assert len(cache) == 0


def test_aggregate_cache_evicts_least_recently_used(seeded_cfg) -> None:
    cache = ledger.AggregateCache(max_entries=3)
    computed: list[int] = []

    def value(n: int):
        def compute() -> int:
            computed.append(n)
            return n

        return compute

    for n in range(3):
        cache.get_or_compute(seeded_cfg, ORG_ID, n, value(n))
    # Touch 0 so that 1 becomes the oldest entry.
    assert cache.get_or_compute(seeded_cfg, ORG_ID, 0, value(0)) == 0
    cache.get_or_compute(seeded_cfg, ORG_ID, 3, value(3))
    computed.clear()
    cache.get_or_compute(seeded_cfg, ORG_ID, 0, value(0))
    assert computed == []

    for n in range(4, 50):
        cache.get_or_compute(seeded_cfg, ORG_ID, n, value(n))
        assert len(cache) <= 3

    computed.clear()
    cache.get_or_compute(seeded_cfg, ORG_ID, 49, value(49))
    cache.get_or_compute(seeded_cfg, ORG_ID, 1, value(1))
    assert computed == [1]


def test_aggregate_cache_rejects_empty_capacity() -> None:
    with pytest.raises(ValueError):
        ledger.AggregateCache(max_entries=0)
