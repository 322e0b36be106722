# SMB Ledger - Double-entry bookkeeping core for French SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Fiscal years ("exercices comptables").

A closed fiscal year is frozen: no entry dated inside its window can be
created, posted or cancelled anymore. Dates that belong to no declared
fiscal year stay open.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import date
from typing import Optional

from . import db
from .authz import ActorContext, require
from .db import DatabaseConfig, FiscalYearRecord
from .errors import ClosedFiscalYearError, NotFoundError, PersistenceError, ValidationError

logger = logging.getLogger(__name__)


def assert_date_open(conn: sqlite3.Connection, organization_id: str, day: date) -> None:
    """Raise ClosedFiscalYearError if ``day`` falls in a closed fiscal year.

    Runs on the caller's connection so the check and the write it guards
    belong to the same transaction.
    """
    for fiscal_year in db.find_fiscal_years_for_date(conn, organization_id, day):
        if fiscal_year.is_closed:
            logger.warning(
                "Rejected write dated %s: fiscal year %s is closed",
                day.isoformat(),
                fiscal_year.name,
            )
            raise ClosedFiscalYearError(fiscal_year.name, day)


def create_fiscal_year(
    cfg: DatabaseConfig,
    actor: ActorContext,
    name: str,
    start_date: date,
    end_date: date,
) -> FiscalYearRecord:
    """Declare a fiscal year.

    Raises:
        ValidationError: if the name is empty or already used, if end_date is
            before start_date, or if the window overlaps another fiscal year.
    """
    require(actor, "periods.manage")
    name = (name or "").strip()
    if not name:
        raise ValidationError("Fiscal year name cannot be empty.", field="name")
    if end_date < start_date:
        raise ValidationError(
            "Fiscal year end_date cannot be before start_date.", field="end_date"
        )

    org = actor.organization_id
    try:
        with db.transaction(cfg) as conn:
            # Checked under the write lock: a concurrent declaration waits.
            for other in db.find_conflicting_fiscal_years(
                conn, org, name, start_date, end_date
            ):
                if other.name == name:
                    raise ValidationError(
                        f"Fiscal year {name!r} already exists.", field="name"
                    )
                raise ValidationError(
                    f"Fiscal year {name!r} overlaps fiscal year {other.name!r} "
                    f"({other.start_date.isoformat()} - {other.end_date.isoformat()})."
                )
            fiscal_year_id = db.insert_fiscal_year(conn, org, name, start_date, end_date)
    except sqlite3.IntegrityError as exc:
        raise ValidationError(f"Fiscal year {name!r} already exists.", field="name") from exc
    except sqlite3.Error as exc:
        raise PersistenceError(f"Could not declare fiscal year {name!r}.") from exc

    fiscal_year = db.get_fiscal_year(cfg, org, fiscal_year_id)
    if fiscal_year is None:
        raise PersistenceError(f"Fiscal year {name!r} could not be reloaded.")

    logger.info(
        "Created fiscal year %s (%s - %s)",
        name,
        start_date.isoformat(),
        end_date.isoformat(),
    )
    return fiscal_year


def list_fiscal_years(cfg: DatabaseConfig, actor: ActorContext) -> list[FiscalYearRecord]:
    """Fiscal years of the organization, most recent first."""
    require(actor, "periods.view")
    return db.list_fiscal_years(cfg, actor.organization_id)


def get_fiscal_year(
    cfg: DatabaseConfig, actor: ActorContext, fiscal_year_id: int
) -> FiscalYearRecord:
    require(actor, "periods.view")
    fiscal_year = db.get_fiscal_year(cfg, actor.organization_id, fiscal_year_id)
    if fiscal_year is None:
        raise NotFoundError("FiscalYear", fiscal_year_id)
    return fiscal_year


def current_fiscal_year(
    cfg: DatabaseConfig, actor: ActorContext, today: Optional[date] = None
) -> Optional[FiscalYearRecord]:
    """Return the fiscal year containing ``today`` (defaults to the real today)."""
    require(actor, "periods.view")
    day = today or date.today()
    for fiscal_year in db.list_fiscal_years(cfg, actor.organization_id):
        if fiscal_year.contains(day):
            return fiscal_year
    return None


def close_fiscal_year(
    cfg: DatabaseConfig, actor: ActorContext, fiscal_year_id: int
) -> FiscalYearRecord:
    """
    Close a fiscal year.

    Closing is refused while draft entries remain in the fiscal year window:
    they must be posted or cancelled first.

    Raises:
        NotFoundError: if the fiscal year does not exist.
        ValidationError: if it is already closed or still holds drafts.
    """
    require(actor, "periods.close")
    fiscal_year = get_fiscal_year(cfg, actor, fiscal_year_id)
    if fiscal_year.is_closed:
        raise ValidationError(f"Fiscal year {fiscal_year.name!r} is already closed.")

    try:
        with db.transaction(cfg) as conn:
            drafts = db.count_entries_on(
                conn,
                actor.organization_id,
                status="draft",
                start=fiscal_year.start_date,
                end=fiscal_year.end_date,
            )
            if drafts:
                raise ValidationError(
                    f"Fiscal year {fiscal_year.name!r} still has {drafts} draft "
                    "entries; post or cancel them before closing."
                )
            db.mark_fiscal_year_closed(
                conn, actor.organization_id, fiscal_year_id, actor.user_id
            )
    except sqlite3.Error as exc:
        raise PersistenceError(f"Could not close fiscal year {fiscal_year.name!r}.") from exc

    logger.info("Closed fiscal year %s by %s", fiscal_year.name, actor.user_id)
    return get_fiscal_year(cfg, actor, fiscal_year_id)
