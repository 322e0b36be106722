# SMB Ledger - Double-entry bookkeeping core for French SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
SMB Ledger
----------

The accounting core of a small-business ERP for French companies. It keeps
double-entry books on a SQLite database and produces the documents an
accountant and the tax administration expect.

Main capabilities:
- French chart of accounts (Plan Comptable Général, classes 1 to 8) with
  protected system accounts and a packaged default chart,
- balanced journal entries with gap-free sequential numbering
  ("EC-000001"), atomic persistence and a draft / posted / cancelled life
  cycle,
- fiscal years with closure enforcement,
- general ledger and trial balance,
- balance sheet, income statement, VAT report and dashboard KPIs,
- FEC export (Fichier des Écritures Comptables),
- automatic entries for invoices, bills, payments and expenses,
- CSV import of manual entries and a command-line interface.

Every service call receives an explicit ``ActorContext`` (organization and
permissions) and raises typed errors from ``smb_ledger.errors``.


Version: 0.1.0

Usage:
    python -m smb_ledger.cli --help
"""

__all__ = [
    "accounts",
    "authz",
    "documents",
    "errors",
    "fec",
    "fiscal_years",
    "journal",
    "ledger",
    "reports",
    "views",
    "io",
]

__version__ = "0.1.0"
