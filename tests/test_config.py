from datetime import date
from pathlib import Path

import pytest

from smb_ledger.config import load_app_config


def _write(tmp_path: Path, body: str) -> Path:
    path = tmp_path / "smb_ledger_config.toml"
    path.write_text(body, encoding="utf-8")
    return path


def test_load_app_config_full(tmp_path: Path) -> None:
    """All sections are parsed and relative paths resolved against the file."""
    path = _write(
        tmp_path,
        """
[organization]
id = "acme"
name = "ACME SAS"
siret = "123 456 789 00011"

[fiscal_year]
start_date = "2025-01-01"
end_date = "2025-12-31"

[accounting]
currency = "eur"
chart_of_accounts = "config/coa.csv"

[database]
engine = "sqlite"
path = "db/books.sqlite"

[numbering]
journal_entry_prefix = "JE"

[logging]
level = "info"

[display]
mode = "csv"
output_dir = "out"
""",
    )

    cfg = load_app_config(str(path))

    assert cfg.organization.id == "acme"
    assert cfg.organization.siret == "12345678900011"
    assert cfg.organization.siren == "123456789"
    assert cfg.fiscal_year.start_date == date(2025, 1, 1)
    assert cfg.currency == "EUR"
    assert cfg.chart_of_accounts == (tmp_path / "config" / "coa.csv").resolve()
    assert cfg.database.path == (tmp_path / "db" / "books.sqlite").resolve()
    assert cfg.numbering.journal_entry_prefix == "JE"
    assert cfg.numbering.invoice_prefix == "FAC"
    assert cfg.log_level == "INFO"
    assert cfg.display_mode == "csv"
    assert cfg.output_dir == (tmp_path / "out").resolve()


def test_load_app_config_defaults(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        """
[fiscal_year]
start_date = "2025-01-01"
end_date = "2025-12-31"
""",
    )

    cfg = load_app_config(str(path))

    assert cfg.organization.id == "default"
    assert cfg.organization.siren is None
    assert cfg.chart_of_accounts is None
    assert cfg.database.engine == "sqlite"
    assert cfg.display_mode == "table"
    assert cfg.log_level == "WARNING"


def test_missing_fiscal_year_is_rejected(tmp_path: Path) -> None:
    path = _write(tmp_path, "[organization]\nid = 'x'\n")
    with pytest.raises(ValueError):
        load_app_config(str(path))


def test_inverted_fiscal_year_is_rejected(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        "[fiscal_year]\nstart_date = '2025-12-31'\nend_date = '2025-01-01'\n",
    )
    with pytest.raises(ValueError):
        load_app_config(str(path))


def test_invalid_siret_is_rejected(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        """
[organization]
siret = "1234"

[fiscal_year]
start_date = "2025-01-01"
end_date = "2025-12-31"
""",
    )
    with pytest.raises(ValueError, match="siret"):
        load_app_config(str(path))


def test_unknown_log_level_is_rejected(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        """
[fiscal_year]
start_date = "2025-01-01"
end_date = "2025-12-31"

[logging]
level = "LOUD"
""",
    )
    with pytest.raises(ValueError):
        load_app_config(str(path))


def test_missing_config_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_app_config(str(tmp_path / "nope.toml"))
