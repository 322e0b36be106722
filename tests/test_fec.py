from datetime import date

import pytest

from conftest import ORG_ID
from smb_ledger import fec, journal
from smb_ledger.authz import actor_for_role
from smb_ledger.errors import PermissionDeniedError, ValidationError

JAN_1 = date(2025, 1, 1)
JAN_31 = date(2025, 1, 31)

HEADER = (
    "JournalCode|JournalLib|EcritureNum|EcritureDate|CompteNum|CompteLib|"
    "CompAuxNum|CompAuxLib|PieceRef|PieceDate|EcritureLib|Debit|Credit|"
    "EcritureLet|DateLet|ValidDate|Montantdevise|Idevise"
)


def _rows(content: str) -> list[list[str]]:
    return [row.split("|") for row in content.split("\r\n")]


def test_fec_header_and_columns(seeded_cfg, actor, january_books) -> None:
    content = fec.generate_fec(seeded_cfg, actor, JAN_1, JAN_31)

    rows = content.split("\r\n")
    assert rows[0] == HEADER
    assert len(rows) == 1 + 10
    assert all(len(row.split("|")) == 18 for row in rows)
    assert not content.endswith("\r\n")


def test_fec_row_format(seeded_cfg, actor, january_books) -> None:
    first = _rows(fec.generate_fec(seeded_cfg, actor, JAN_1, JAN_31))[1]
    record = dict(zip(fec.FEC_COLUMNS, first))

    assert record["JournalCode"] == "BQ"
    assert record["JournalLib"] == "Journal de banque"
    assert record["EcritureNum"] == "EC-000001"
    assert record["EcritureDate"] == "20250105"
    assert record["CompteNum"] == "512000"
    assert record["PieceRef"] == "EC-000001"
    assert record["EcritureLib"] == "Apport en capital"
    assert record["Debit"] == "10000,00"
    assert record["Credit"] == "0,00"
    assert record["ValidDate"] == "20250105"
    assert record["Idevise"] == "EUR"
    assert record["CompAuxNum"] == record["EcritureLet"] == ""


def test_fec_journal_codes_follow_journal_type(seeded_cfg, actor, january_books) -> None:
    codes = [row[0] for row in _rows(fec.generate_fec(seeded_cfg, actor, JAN_1, JAN_31))[1:]]
    assert codes == ["BQ", "BQ", "VE", "VE", "VE", "AC", "AC", "AC", "BQ", "BQ"]


def test_fec_excludes_drafts_and_cancelled(seeded_cfg, actor, post) -> None:
    kept = post(date(2025, 1, 5), "Apport", [("512000", 100, 0), ("101000", 0, 100)])
    cancelled = post(date(2025, 1, 6), "Doublon", [("512000", 100, 0), ("101000", 0, 100)])
    post(date(2025, 1, 7), "Brouillon", [("512000", 5, 0), ("101000", 0, 5)], draft=True)
    journal.cancel_journal_entry(seeded_cfg, actor, cancelled.id)

    rows = _rows(fec.generate_fec(seeded_cfg, actor, JAN_1, JAN_31))[1:]
    assert {row[2] for row in rows} == {kept.entry_number}


def test_fec_labels_are_sanitized(seeded_cfg, actor, post) -> None:
    post(
        date(2025, 1, 5),
        "Apport | associé\nn°1",
        [("512000", 100, 0), ("101000", 0, 100)],
    )
    content = fec.generate_fec(seeded_cfg, actor, JAN_1, JAN_31)
    rows = _rows(content)

    assert len(rows) == 3
    assert rows[1][10] == "Apport   associé n°1"


def test_fec_period_bounds(seeded_cfg, actor, january_books) -> None:
    rows = _rows(fec.generate_fec(seeded_cfg, actor, date(2025, 1, 12), date(2025, 1, 12)))
    assert len(rows) == 1 + 3

    with pytest.raises(ValidationError):
        fec.generate_fec(seeded_cfg, actor, JAN_31, JAN_1)


def test_fec_filename() -> None:
    assert fec.fec_filename("123456789", date(2025, 1, 1)) == "123456789FEC20251231.txt"
    assert fec.fec_filename(None, date(2024, 7, 1)) == "000000000FEC20241231.txt"


def test_export_fec_writes_crlf_utf8(seeded_cfg, actor, january_books, tmp_path) -> None:
    path = fec.export_fec(
        seeded_cfg, actor, JAN_1, JAN_31, tmp_path / "fec", siren="123456789"
    )

    assert path.name == "123456789FEC20251231.txt"
    raw = path.read_bytes()
    assert raw.count(b"\r\n") == 10
    assert b"\n" not in raw.replace(b"\r\n", b"")
    assert raw.decode("utf-8").startswith("JournalCode|")


def test_fec_requires_export_permission(seeded_cfg, january_books) -> None:
    viewer = actor_for_role(ORG_ID, "viewer")
    with pytest.raises(PermissionDeniedError):
        fec.generate_fec(seeded_cfg, viewer, JAN_1, JAN_31)
