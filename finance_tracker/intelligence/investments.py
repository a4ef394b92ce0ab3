"""Derived investment values (compound growth)."""
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

from finance_tracker.core.models import Investment
from finance_tracker.intelligence.recurring_engine import add_years


def years_between(start: date, end: date) -> float:
    """Elapsed time in calendar years.

    Whole years are counted on the calendar (so one year after 2024-02-29 is
    2025-02-28), and the remainder is the fraction of the following year.
    Returns 0 when ``end`` is not after ``start``.
    """
    if end <= start:
        return 0.0

    whole = end.year - start.year
    if add_years(start, whole) > end:
        whole -= 1

    anchor = add_years(start, whole)
    next_anchor = add_years(start, whole + 1)
    return whole + (end - anchor).days / (next_anchor - anchor).days


def current_value(investment: Investment, as_of: Optional[date] = None) -> float:
    """``principal * (1 + rate/100) ** years`` from the start date to ``as_of``.

    Growth stops at the maturity date when one is set.
    """
    as_of = as_of or date.today()
    if investment.maturity_date is not None and as_of > investment.maturity_date:
        as_of = investment.maturity_date

    years = years_between(investment.start_date, as_of)
    return investment.principal * (1 + investment.annual_rate_percent / 100) ** years


def portfolio_summary(
    investments: Sequence[Investment],
    as_of: Optional[date] = None
) -> Dict[str, Any]:
    """Per-investment and total principal, current value and gain."""
    as_of = as_of or date.today()

    items: List[Dict[str, Any]] = []
    for inv in investments:
        value = current_value(inv, as_of)
        items.append({
            **inv.to_record(),
            "currentValue": round(value, 2),
            "gain": round(value - inv.principal, 2),
            "matured": inv.maturity_date is not None and as_of >= inv.maturity_date,
        })

    total_principal = sum(inv.principal for inv in investments)
    total_value = sum(item["currentValue"] for item in items)
    return {
        "asOf": as_of.isoformat(),
        "investments": items,
        "totalPrincipal": round(total_principal, 2),
        "totalValue": round(total_value, 2),
        "totalGain": round(total_value - total_principal, 2),
    }
