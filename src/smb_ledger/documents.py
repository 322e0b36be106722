# SMB Ledger - Double-entry bookkeeping core for French SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Automatic journal entries generated from business documents.

Invoicing, purchasing and expense modules live outside the accounting core.
When one of their documents becomes final they call the functions below,
which turn it into a posted entry with fixed PCG accounts:

    invoice           Dr 411000 total     / Cr 707000 subtotal, 445710 VAT
    payment received  Dr 512000           / Cr 411000
    bill              Dr 607000 subtotal, 445660 VAT / Cr 401000 total
    bill payment      Dr 401000           / Cr 512000
    expense           Dr category account / Cr 512000 (531000 in cash)

VAT lines are only written when the VAT amount is positive. The entries go
through ``journal.create_journal_entry`` and get the same guarantees
(balance, numbering, atomicity, fiscal-year closure).
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from typing import Optional

from . import db, journal
from .authz import ActorContext, require
from .config import NumberingConfig
from .db import Account, DatabaseConfig, JournalEntry
from .errors import NotFoundError
from .journal import NewJournalEntry, NewJournalLine

CUSTOMERS_ACCOUNT = "411000"
SALES_ACCOUNT = "707000"
VAT_COLLECTED_ACCOUNT = "445710"
SUPPLIERS_ACCOUNT = "401000"
PURCHASES_ACCOUNT = "607000"
VAT_DEDUCTIBLE_ACCOUNT = "445660"
BANK_ACCOUNT = "512000"
CASH_ACCOUNT = "531000"
MISC_EXPENSES_ACCOUNT = "618000"

EXPENSE_CATEGORY_ACCOUNTS: dict[str, str] = {
    "restauration": "625000",
    "transport": "625000",
    "hebergement": "625000",
    "fournitures": "606000",
    "telecom": "626000",
    "abonnements": "613000",
    "frais_bancaires": "627000",
    "marketing": "623000",
    "formation": "618000",
    "autre": "618000",
}


@dataclass(frozen=True)
class InvoiceDocument:
    id: str
    number: str
    date: date
    subtotal: float
    tax_amount: float
    total: float
    client_name: Optional[str] = None


@dataclass(frozen=True)
class PaymentDocument:
    """A customer payment settling (part of) an invoice."""

    id: str
    invoice_number: str
    date: date
    amount: float
    client_name: Optional[str] = None


@dataclass(frozen=True)
class BillDocument:
    id: str
    date: date
    subtotal: float
    tax_amount: float
    total: float
    bill_number: Optional[str] = None
    vendor_name: Optional[str] = None

    @property
    def reference(self) -> str:
        """Supplier bill number, or the first 8 characters of the id."""
        return self.bill_number or self.id[:8]


@dataclass(frozen=True)
class BillPaymentDocument:
    id: str
    bill_id: str
    date: date
    amount: float
    bill_number: Optional[str] = None
    vendor_name: Optional[str] = None

    @property
    def reference(self) -> str:
        return self.bill_number or self.bill_id[:8]


@dataclass(frozen=True)
class ExpenseDocument:
    id: str
    date: date
    amount: float
    category: str
    payment_method: Optional[str] = None
    vendor: Optional[str] = None
    description: Optional[str] = None

    @property
    def reference(self) -> str:
        return self.vendor or self.description or "Dépense"


def _with_party(text: str, party: Optional[str]) -> str:
    return f"{text} - {party}" if party else text


def _resolve_accounts(
    cfg: DatabaseConfig, organization_id: str, numbers: Iterable[str]
) -> dict[str, Account]:
    """Load accounts by number, raising one NotFoundError for all missing ones."""
    found: dict[str, Account] = {}
    missing: list[str] = []
    for number in dict.fromkeys(numbers):
        account = db.get_account_by_number(cfg, organization_id, number)
        if account is None:
            missing.append(number)
        else:
            found[number] = account
    if missing:
        raise NotFoundError("Account", ", ".join(missing))
    return found


def _post(
    cfg: DatabaseConfig,
    actor: ActorContext,
    *,
    entry_date: date,
    description: str,
    journal_type: str,
    reference_type: str,
    reference_id: str,
    lines: list[tuple[str, float, float, str]],
    numbering: Optional[NumberingConfig],
) -> JournalEntry:
    """Resolve (account number, debit, credit, label) tuples and post them."""
    require(actor, "journal.create")
    accounts = _resolve_accounts(cfg, actor.organization_id, [ln[0] for ln in lines])
    entry = NewJournalEntry(
        date=entry_date,
        description=description,
        journal_type=journal_type,
        reference_type=reference_type,
        reference_id=reference_id,
        lines=tuple(
            NewJournalLine(
                account_id=accounts[number].id,
                debit=debit,
                credit=credit,
                description=label,
            )
            for number, debit, credit, label in lines
        ),
    )
    return journal.create_journal_entry(cfg, actor, entry, numbering=numbering)


def record_invoice(
    cfg: DatabaseConfig,
    actor: ActorContext,
    invoice: InvoiceDocument,
    *,
    numbering: Optional[NumberingConfig] = None,
) -> JournalEntry:
    """Sales entry of a customer invoice (journal VE)."""
    num = invoice.number
    lines = [
        (CUSTOMERS_ACCOUNT, invoice.total, 0.0, f"Client - {num}"),
        (SALES_ACCOUNT, 0.0, invoice.subtotal, f"Ventes - {num}"),
    ]
    if invoice.tax_amount > 0:
        lines.append(
            (VAT_COLLECTED_ACCOUNT, 0.0, invoice.tax_amount, f"TVA collectée - {num}")
        )
    return _post(
        cfg,
        actor,
        entry_date=invoice.date,
        description=_with_party(f"Facture {num}", invoice.client_name),
        journal_type="sales",
        reference_type="invoice",
        reference_id=invoice.id,
        lines=lines,
        numbering=numbering,
    )


def record_payment_received(
    cfg: DatabaseConfig,
    actor: ActorContext,
    payment: PaymentDocument,
    *,
    numbering: Optional[NumberingConfig] = None,
) -> JournalEntry:
    num = payment.invoice_number
    return _post(
        cfg,
        actor,
        entry_date=payment.date,
        description=_with_party(f"Paiement reçu - Facture {num}", payment.client_name),
        journal_type="bank",
        reference_type="payment",
        reference_id=payment.id,
        lines=[
            (BANK_ACCOUNT, payment.amount, 0.0, f"Encaissement - {num}"),
            (CUSTOMERS_ACCOUNT, 0.0, payment.amount, f"Règlement client - {num}"),
        ],
        numbering=numbering,
    )


def record_bill(
    cfg: DatabaseConfig,
    actor: ActorContext,
    bill: BillDocument,
    *,
    numbering: Optional[NumberingConfig] = None,
) -> JournalEntry:
    """Purchase entry of a supplier bill (journal AC)."""
    ref = bill.reference
    lines = [(PURCHASES_ACCOUNT, bill.subtotal, 0.0, f"Achats - {ref}")]
    if bill.tax_amount > 0:
        lines.append(
            (VAT_DEDUCTIBLE_ACCOUNT, bill.tax_amount, 0.0, f"TVA déductible - {ref}")
        )
    lines.append((SUPPLIERS_ACCOUNT, 0.0, bill.total, f"Fournisseur - {ref}"))
    return _post(
        cfg,
        actor,
        entry_date=bill.date,
        description=_with_party(f"Achat {ref}", bill.vendor_name),
        journal_type="purchases",
        reference_type="bill",
        reference_id=bill.id,
        lines=lines,
        numbering=numbering,
    )


def record_bill_payment(
    cfg: DatabaseConfig,
    actor: ActorContext,
    payment: BillPaymentDocument,
    *,
    numbering: Optional[NumberingConfig] = None,
) -> JournalEntry:
    ref = payment.reference
    return _post(
        cfg,
        actor,
        entry_date=payment.date,
        description=_with_party(f"Paiement fournisseur - {ref}", payment.vendor_name),
        journal_type="bank",
        reference_type="bill_payment",
        reference_id=payment.id,
        lines=[
            (SUPPLIERS_ACCOUNT, payment.amount, 0.0, f"Règlement - {ref}"),
            (BANK_ACCOUNT, 0.0, payment.amount, f"Décaissement - {ref}"),
        ],
        numbering=numbering,
    )


def expense_account_for(category: Optional[str]) -> str:
    """Charge account of an expense category; unknown categories go to 618000."""
    return EXPENSE_CATEGORY_ACCOUNTS.get((category or "").strip().lower(), MISC_EXPENSES_ACCOUNT)


def record_expense(
    cfg: DatabaseConfig,
    actor: ActorContext,
    expense: ExpenseDocument,
    *,
    numbering: Optional[NumberingConfig] = None,
) -> JournalEntry:
    """Expense report or receipt, paid from the bank or the till."""
    ref = expense.reference
    settlement = CASH_ACCOUNT if expense.payment_method == "cash" else BANK_ACCOUNT
    return _post(
        cfg,
        actor,
        entry_date=expense.date,
        description=f"Dépense - {ref}",
        journal_type="bank",
        reference_type="expense",
        reference_id=expense.id,
        lines=[
            (expense_account_for(expense.category), expense.amount, 0.0, f"Charge - {ref}"),
            (settlement, 0.0, expense.amount, f"Règlement - {ref}"),
        ],
        numbering=numbering,
    )
