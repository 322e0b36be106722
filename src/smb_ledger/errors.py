# SMB Ledger - Double-entry bookkeeping core for French SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Typed exceptions raised by the accounting core.

Every error carries a machine-readable ``code`` class attribute and keeps the
structured data it was raised with, so that callers (CLI, Web UI, API) can
react to the error type instead of parsing messages.

Hierarchy
---------

    AccountingError
    +-- ValidationError
    +-- NotFoundError
    +-- ProtectedResourceError
    |   +-- ProtectedAccountError
    +-- UnbalancedEntryError
    +-- InvalidTransitionError
    +-- ClosedFiscalYearError
    +-- BalanceSheetImbalanceError
    +-- PermissionDeniedError
    +-- PersistenceError
"""

from __future__ import annotations

from datetime import date


class AccountingError(Exception):
    """Base class for all errors raised by smb_ledger."""

    code: str = "ACCOUNTING_ERROR"


class ValidationError(AccountingError):
    """Malformed input or a business rule violated by the input."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, *, field: str | None = None):
        self.field = field
        super().__init__(message)


class NotFoundError(AccountingError):
    """Reference to a nonexistent account, entry or fiscal year."""

    code: str = "NOT_FOUND"

    def __init__(self, resource: str, identifier: object):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} not found: {identifier}")


class ProtectedResourceError(AccountingError):
    """Attempt to delete or modify a protected resource."""

    code: str = "PROTECTED_RESOURCE"


class ProtectedAccountError(ProtectedResourceError):
    """Attempt to delete or modify a system account of the chart."""

    code: str = "PROTECTED_ACCOUNT"

    def __init__(self, account_number: str, action: str = "modified"):
        self.account_number = account_number
        self.action = action
        super().__init__(
            f"Account {account_number} is a system account and cannot be {action}."
        )


class UnbalancedEntryError(AccountingError):
    """Total debit and total credit of a journal entry differ."""

    code: str = "UNBALANCED_ENTRY"

    def __init__(self, total_debit: float, total_credit: float):
        self.total_debit = total_debit
        self.total_credit = total_credit
        self.discrepancy = round(total_debit - total_credit, 2)
        super().__init__(
            "Unbalanced journal entry: "
            f"debit={total_debit:.2f}, credit={total_credit:.2f}, "
            f"discrepancy={self.discrepancy:.2f}"
        )


class InvalidTransitionError(AccountingError):
    """Illegal status change of a journal entry (e.g. cancelled -> posted)."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, entry_number: str, current: str, target: str):
        self.entry_number = entry_number
        self.current = current
        self.target = target
        super().__init__(
            f"Entry {entry_number} cannot go from '{current}' to '{target}'."
        )


class ClosedFiscalYearError(AccountingError):
    """The date falls inside a closed fiscal year."""

    code: str = "CLOSED_FISCAL_YEAR"

    def __init__(self, fiscal_year_name: str, entry_date: date):
        self.fiscal_year_name = fiscal_year_name
        self.entry_date = entry_date
        super().__init__(
            f"Fiscal year {fiscal_year_name!r} is closed: no entry may be "
            f"recorded or changed on {entry_date.isoformat()}."
        )


class BalanceSheetImbalanceError(AccountingError):
    """Assets total and liabilities total of a balance sheet differ."""

    code: str = "BALANCE_SHEET_IMBALANCE"

    def __init__(self, assets_total: float, liabilities_total: float):
        self.assets_total = assets_total
        self.liabilities_total = liabilities_total
        self.discrepancy = round(assets_total - liabilities_total, 2)
        super().__init__(
            f"Balance sheet does not balance: assets={assets_total:.2f}, "
            f"liabilities={liabilities_total:.2f}"
        )


class PermissionDeniedError(AccountingError):
    """The actor lacks the capability required by the operation."""

    code: str = "PERMISSION_DENIED"

    def __init__(self, permission: str, user_id: str | None = None):
        self.permission = permission
        self.user_id = user_id
        super().__init__(f"Permission denied: {permission}")


class PersistenceError(AccountingError):
    """The database rejected an operation; nothing was committed."""

    code: str = "PERSISTENCE_ERROR"
