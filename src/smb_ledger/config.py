# SMB Ledger - Double-entry bookkeeping core for French SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Configuration helpers for SMB Ledger.

This module is responsible for:
- loading the application configuration from a TOML file,
- validating it and resolving relative paths,
- exposing typed dataclasses used by the rest of the application.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Optional

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:  # pragma: no cover - fallback for older Python
    import tomli as tomllib  # type: ignore[import]

from .db import DatabaseConfig
from .logging_config import parse_level

DEFAULT_CONFIG_FILENAME = "smb_ledger_config.toml"


@dataclass(frozen=True)
class FiscalYear:
    """Represents a fiscal year with a start and end date."""

    start_date: date
    end_date: date


@dataclass(frozen=True)
class OrganizationConfig:
    """Identity of the organization whose books are kept."""

    id: str
    name: str
    siret: Optional[str]

    @property
    def siren(self) -> Optional[str]:
        """First 9 digits of the SIRET, or None when no SIRET is configured."""
        if not self.siret:
            return None
        return self.siret.replace(" ", "")[:9]


@dataclass(frozen=True)
class NumberingConfig:
    """Prefixes of the sequential document numbers."""

    journal_entry_prefix: str = "EC"
    invoice_prefix: str = "FAC"
    quote_prefix: str = "DEV"


@dataclass(frozen=True)
class AppConfig:
    """
    Application-wide configuration for SMB Ledger.

    This aggregates:
    - the organization identity (id, name, SIRET for the FEC file name),
    - the default fiscal year used by reporting periods,
    - the presentation currency and optional chart of accounts override,
    - the database configuration,
    - document numbering prefixes,
    - logging and display options.
    """

    organization: OrganizationConfig
    fiscal_year: FiscalYear
    currency: str
    database: DatabaseConfig
    chart_of_accounts: Optional[Path]
    numbering: NumberingConfig = field(default_factory=NumberingConfig)
    log_level: str = "WARNING"
    display_mode: str = "table"
    output_dir: Path = Path("data/output")


def _load_toml(path: Path) -> dict[str, Any]:
    """
    Load a TOML file and return its content as a dictionary.

    Raises:
        FileNotFoundError: if the file does not exist.
        ValueError: if the TOML content cannot be parsed or is not a table.
    """
    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ValueError(f"Failed to parse TOML config file: {path}") from exc

    if not isinstance(data, dict):
        raise ValueError(f"Invalid TOML root type in {path}, expected a table.")

    return data


def _section(raw: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    """Return a top-level table, or an empty mapping if absent or invalid."""
    value = raw.get(name) or {}
    if not isinstance(value, Mapping):
        return {}
    return value


def _parse_fiscal_year(config_data: Mapping[str, Any]) -> FiscalYear:
    """
    Extract and validate the fiscal year from raw TOML configuration data.

    Args:
        config_data: Parsed TOML root dictionary.

    Returns:
        A FiscalYear instance.

    Raises:
        ValueError: if the fiscal year section or dates are missing/invalid.
    """
    fiscal_data = config_data.get("fiscal_year") or {}
    if not isinstance(fiscal_data, Mapping):
        raise ValueError("Config file is missing [fiscal_year] table.")

    try:
        start_raw = fiscal_data["start_date"]
        end_raw = fiscal_data["end_date"]
    except KeyError as exc:
        raise ValueError(
            "Config file is missing [fiscal_year].start_date or end_date."
        ) from exc

    try:
        start = date.fromisoformat(str(start_raw))
        end = date.fromisoformat(str(end_raw))
    except ValueError as exc:
        raise ValueError(
            "Invalid fiscal year dates, expected YYYY-MM-DD format."
        ) from exc

    if end < start:
        raise ValueError("Fiscal year end_date cannot be before start_date.")

    return FiscalYear(start_date=start, end_date=end)


def _parse_organization(config_data: Mapping[str, Any]) -> OrganizationConfig:
    """
    Extract the [organization] table.

    Raises:
        ValueError: if the SIRET is present but is not made of 14 digits.
    """
    section = _section(config_data, "organization")

    org_id = str(section.get("id") or "default")
    name = str(section.get("name") or "My company")

    raw_siret = section.get("siret")
    siret: Optional[str]
    if raw_siret is None or str(raw_siret).strip() == "":
        siret = None
    else:
        siret = str(raw_siret).replace(" ", "")
        if not (siret.isdigit() and len(siret) == 14):
            raise ValueError(
                f"Invalid [organization].siret {raw_siret!r}: expected 14 digits."
            )

    return OrganizationConfig(id=org_id, name=name, siret=siret)


def load_app_config(config_path: Optional[str] = None) -> AppConfig:
    """
    Load the SMB Ledger application configuration from a TOML file.

    Expected top-level sections in the TOML file
    --------------------------------------------
    [organization]
        id, name and optional 14-digit siret of the organization.

    [fiscal_year]
        start_date / end_date of the default reporting window (mandatory).

    [accounting]
        currency (default "EUR") and optional chart_of_accounts CSV used
        instead of the packaged PCG seed.

    [database]
        engine (only "sqlite") and path of the SQLite file.

    [numbering]
        journal_entry_prefix, invoice_prefix, quote_prefix.

    [logging]
        level (DEBUG, INFO, WARNING, ...).

    [display]
        mode ("table", "csv" or "both") and output_dir for CSV exports.

    Notes
    -----
    - All file paths in the TOML are resolved relative to the directory of
      the TOML file itself.

    Parameters
    ----------
    config_path : str, optional
        Path to the TOML configuration file. Defaults to
        ``smb_ledger_config.toml`` in the current directory.

    Returns
    -------
    AppConfig
        Parsed and validated application configuration.
    """
    if config_path is None:
        config_file = Path(DEFAULT_CONFIG_FILENAME).resolve()
    else:
        config_file = Path(config_path).resolve()

    raw = _load_toml(config_file)
    base_dir = config_file.parent

    # 1) Organization and fiscal year
    organization = _parse_organization(raw)
    fiscal_year = _parse_fiscal_year(raw)

    # 2) Accounting section
    accounting_section = _section(raw, "accounting")
    currency = str(accounting_section.get("currency") or "EUR").upper()

    coa_raw = accounting_section.get("chart_of_accounts") or None
    chart_of_accounts = (base_dir / str(coa_raw)).resolve() if coa_raw else None

    # 3) Database section
    database_section = _section(raw, "database")
    db_engine = str(database_section.get("engine") or "sqlite")
    db_path_raw = database_section.get("path") or "data/db/smb_ledger.sqlite"
    db_path = (base_dir / str(db_path_raw)).resolve()
    database_config = DatabaseConfig(engine=db_engine, path=db_path)

    # 4) Numbering
    numbering_section = _section(raw, "numbering")
    defaults = NumberingConfig()
    numbering = NumberingConfig(
        journal_entry_prefix=str(
            numbering_section.get("journal_entry_prefix")
            or defaults.journal_entry_prefix
        ),
        invoice_prefix=str(
            numbering_section.get("invoice_prefix") or defaults.invoice_prefix
        ),
        quote_prefix=str(numbering_section.get("quote_prefix") or defaults.quote_prefix),
    )

    # 5) Logging
    logging_section = _section(raw, "logging")
    log_level = str(logging_section.get("level") or "WARNING").upper()
    parse_level(log_level)  # raises ValueError on unknown levels

    # 6) Display options
    display_section = _section(raw, "display")
    display_mode = str(display_section.get("mode", "table"))
    if display_mode not in {"table", "csv", "both"}:
        raise ValueError(
            f"Invalid [display].mode {display_mode!r}: expected table, csv or both."
        )
    output_dir = (base_dir / str(display_section.get("output_dir", "data/output"))).resolve()

    return AppConfig(
        organization=organization,
        fiscal_year=fiscal_year,
        currency=currency,
        database=database_config,
        chart_of_accounts=chart_of_accounts,
        numbering=numbering,
        log_level=log_level,
        display_mode=display_mode,
        output_dir=output_dir,
    )
