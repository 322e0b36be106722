# SMB Ledger - Double-entry bookkeeping core for French SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Reporting windows for the ledger commands.

A reporting window is always derived from a fiscal window (the stored
fiscal year containing today, or the [fiscal_year] table of the
configuration) and from the ``--period`` / ``--from-date`` / ``--to-date``
arguments of the CLI:

    fy          the whole fiscal year
    ytd         fiscal year start -> today
    mtd         first day of the current month -> today
    last-month  the previous calendar month
    last-fy     the fiscal window one year earlier

Windows computed from today never leave the fiscal year: when today lies
outside of it, the whole fiscal year is used instead.
"""

from calendar import monthrange
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Optional, Protocol


class FiscalWindow(Protocol):
    start_date: date
    end_date: date


@dataclass(frozen=True)
class Period:
    """Inclusive date window with the label printed by the CLI."""

    start: date
    end: date
    label: str


def _today() -> date:
    # Module-level so that tests can pin the date.
    return datetime.today().date()


def _shift_year(day: date, years: int) -> date:
    """Move a date by whole years; 29 February becomes the 28th."""
    try:
        return day.replace(year=day.year + years)
    except ValueError:
        return day.replace(year=day.year + years, day=28)


def _within(fy: FiscalWindow, start: date, end: date, label: str) -> Period:
    """Clamp [start, end] to the fiscal window, or return the whole window."""
    if end < fy.start_date or start > fy.end_date:
        return period_fy(fy)
    return Period(max(start, fy.start_date), min(end, fy.end_date), label)


def period_fy(fy: FiscalWindow) -> Period:
    return Period(fy.start_date, fy.end_date, f"Fiscal year {fy.start_date.year}")


def period_ytd(fy: FiscalWindow) -> Period:
    """From the first day of the fiscal year up to today.

    Past the end of the fiscal year the window stops at its last day.
    """
    end = min(max(_today(), fy.start_date), fy.end_date)
    return Period(fy.start_date, end, "Year to date")


def period_mtd(fy: FiscalWindow) -> Period:
    today = _today()
    if not fy.start_date <= today <= fy.end_date:
        return period_fy(fy)
    return _within(fy, today.replace(day=1), today, "Month to date")


def period_last_month(fy: FiscalWindow) -> Period:
    """The calendar month before today's, e.g. December when run in January."""
    first_of_month = _today().replace(day=1)
    year, month = (
        (first_of_month.year - 1, 12)
        if first_of_month.month == 1
        else (first_of_month.year, first_of_month.month - 1)
    )
    start = date(year, month, 1)
    end = date(year, month, monthrange(year, month)[1])
    return _within(fy, start, end, "Last month")


def period_last_fy(fy: FiscalWindow) -> Period:
    """The fiscal window shifted back one year.

    Works for calendar and non-calendar fiscal years alike (July to June
    gives the previous July to June).
    """
    start = _shift_year(fy.start_date, -1)
    end = _shift_year(fy.end_date, -1)
    return Period(start, end, f"Previous fiscal year ({start.year})")


_PRESETS: dict[str, Callable[[FiscalWindow], Period]] = {
    "fy": period_fy,
    "ytd": period_ytd,
    "mtd": period_mtd,
    "last-month": period_last_month,
    "last-fy": period_last_fy,
}


def determine_period_from_args(args, fy: FiscalWindow) -> Period:
    """
    Resolve the reporting window of a CLI command.

    ``args.period`` takes precedence; otherwise ``args.from_date`` and
    ``args.to_date`` (either one may be omitted and then defaults to the
    matching fiscal year bound); with neither, the whole fiscal year.

    Raises
    ------
    ValueError
        On an unknown preset, a malformed date or an end before the start.
    """
    preset: Optional[str] = getattr(args, "period", None)
    if preset:
        try:
            return _PRESETS[preset](fy)
        except KeyError as exc:
            raise ValueError(f"Unknown period: {preset!r}") from exc

    from_raw: Optional[str] = getattr(args, "from_date", None)
    to_raw: Optional[str] = getattr(args, "to_date", None)
    if not (from_raw or to_raw):
        return period_fy(fy)

    start = date.fromisoformat(from_raw) if from_raw else fy.start_date
    end = date.fromisoformat(to_raw) if to_raw else fy.end_date
    if end < start:
        raise ValueError("Custom period end date cannot be before start date.")
    return Period(start, end, f"Custom period ({start} → {end})")
