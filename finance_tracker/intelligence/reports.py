"""Aggregations over transactions for summaries and budgets."""
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from finance_tracker.config import (
    CATEGORY_BREAKDOWN_LIMIT,
    UNCATEGORIZED_COLOR,
    UNCATEGORIZED_LABEL,
)
from finance_tracker.core.models import Category, Transaction

FRAME_COLUMNS = ["id", "description", "amount", "type", "category_id", "date", "year", "month"]


def transactions_frame(transactions: Sequence[Transaction]) -> pd.DataFrame:
    """Build a DataFrame with one row per transaction plus year/month keys."""
    if not transactions:
        return pd.DataFrame(columns=FRAME_COLUMNS)

    df = pd.DataFrame([
        {
            "id": t.id,
            "description": t.description,
            "amount": t.amount,
            "type": t.type.value,
            "category_id": t.category_id,
            "date": pd.Timestamp(t.date),
        }
        for t in transactions
    ])
    df["year"] = df["date"].dt.year
    df["month"] = df["date"].dt.strftime("%Y-%m")
    return df


def _filter_period(df: pd.DataFrame, year: Optional[int], month: Optional[str]) -> pd.DataFrame:
    if year is not None:
        df = df[df["year"] == int(year)]
    if month is not None:
        df = df[df["month"] == month]
    return df


def totals(
    transactions: Sequence[Transaction],
    year: Optional[int] = None,
    month: Optional[str] = None
) -> Dict[str, float]:
    """Income, expense and balance, optionally restricted to a year and/or ``YYYY-MM``."""
    df = _filter_period(transactions_frame(transactions), year, month)
    income = float(df.loc[df["type"] == "income", "amount"].sum())
    expense = float(df.loc[df["type"] == "expense", "amount"].sum())
    return {
        "income": round(income, 2),
        "expense": round(expense, 2),
        "balance": round(income - expense, 2),
    }


def category_breakdown(
    transactions: Sequence[Transaction],
    categories: Sequence[Category],
    month: Optional[str] = None,
    limit: int = CATEGORY_BREAKDOWN_LIMIT
) -> List[Dict[str, Any]]:
    """Top expense categories by total, largest first.

    Transactions whose category no longer exists are reported under a single
    uncategorized bucket.
    """
    df = _filter_period(transactions_frame(transactions), None, month)
    df = df[df["type"] == "expense"]
    if df.empty:
        return []

    by_id = {c.id: c for c in categories}
    df = df.assign(
        bucket=df["category_id"].map(lambda cid: cid if cid in by_id else None)
    )
    grouped = (
        df.groupby("bucket", dropna=False)["amount"]
        .sum()
        .sort_values(ascending=False)
    )

    breakdown = []
    for bucket, total in grouped.items():
        if total <= 0:
            continue
        category = by_id.get(bucket) if not pd.isna(bucket) else None
        breakdown.append({
            "categoryId": category.id if category else None,
            "name": category.name if category else UNCATEGORIZED_LABEL,
            "color": category.color if category else UNCATEGORIZED_COLOR,
            "total": round(float(total), 2),
        })
    return breakdown[:limit]


def monthly_cash_flow(transactions: Sequence[Transaction]) -> List[Dict[str, Any]]:
    """Income, expense and balance per ``YYYY-MM``, oldest first."""
    df = transactions_frame(transactions)
    if df.empty:
        return []

    pivot = (
        df.pivot_table(index="month", columns="type", values="amount", aggfunc="sum", fill_value=0)
        .reindex(columns=["income", "expense"], fill_value=0)
        .sort_index()
    )
    return [
        {
            "month": month,
            "income": round(float(row["income"]), 2),
            "expense": round(float(row["expense"]), 2),
            "balance": round(float(row["income"] - row["expense"]), 2),
        }
        for month, row in pivot.iterrows()
    ]


def budget_status(
    transactions: Sequence[Transaction],
    budgets: Dict[str, float],
    month: str
) -> Dict[str, Any]:
    """Compare a month's expenses against its ceiling (None when no budget is set)."""
    spent = totals(transactions, month=month)["expense"]
    budget = budgets.get(month)
    if budget is None:
        return {
            "month": month,
            "budget": None,
            "spent": spent,
            "remaining": None,
            "percentUsed": None,
            "exceeded": False,
        }

    percent = round(spent / budget * 100, 1) if budget > 0 else None
    return {
        "month": month,
        "budget": budget,
        "spent": spent,
        "remaining": round(budget - spent, 2),
        "percentUsed": percent,
        "exceeded": spent > budget,
    }
