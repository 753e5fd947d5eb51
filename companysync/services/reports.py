"""
Financial report figures.

Reports summarize a company's approved finance records. Yearly and quarterly
reports look at the current period and fall back to every approved record
when the period has none.
"""
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from ..models.models import FinanceRecord, utcnow

REPORT_TYPES = ("yearly", "quarterly", "summary")


def approved_records(db: Session, company_id: int) -> List[FinanceRecord]:
    return (
        db.query(FinanceRecord)
        .filter(FinanceRecord.company_id == company_id, FinanceRecord.status == "approved")
        .order_by(FinanceRecord.created_at.asc(), FinanceRecord.id.asc())
        .all()
    )


def quarter_of(when: datetime) -> int:
    return (when.month - 1) // 3 + 1


def _figures(income: Decimal, expenses: Decimal) -> Dict[str, float]:
    return {"income": float(income), "expenses": float(expenses), "profit": float(income - expenses)}


def totals(records: Iterable[FinanceRecord]) -> dict:
    """Income, expenses and profit overall and per currency code."""
    income = Decimal(0)
    expenses = Decimal(0)
    by_currency: Dict[str, List[Decimal]] = {}
    for r in records:
        amount = Decimal(r.amount or 0)
        bucket = by_currency.setdefault(r.currency, [Decimal(0), Decimal(0)])
        if r.type == "income":
            income += amount
            bucket[0] += amount
        else:
            expenses += amount
            bucket[1] += amount
    data = _figures(income, expenses)
    data["byCurrency"] = {cur: _figures(*bucket) for cur, bucket in sorted(by_currency.items())}
    return data


def summarize(records: Iterable[FinanceRecord], kind: str, now: Optional[datetime] = None) -> dict:
    """
    Compute the figures for a report of type `kind`.

    Args:
        records: Approved finance records of one company
        kind: yearly, quarterly or summary
        now: Reference time, naive UTC

    Returns:
        JSON-ready dict with income, expenses, profit, byCurrency and
        generatedAt, plus year/monthsCovered or year/quarter
    """
    now = now or utcnow()
    records = list(records)
    extra: dict = {}
    scoped = records
    if kind == "yearly":
        scoped = [r for r in records if r.created_at.year == now.year]
        extra = {"year": now.year, "monthsCovered": now.month}
    elif kind == "quarterly":
        quarter = quarter_of(now)
        scoped = [r for r in records if r.created_at.year == now.year and quarter_of(r.created_at) == quarter]
        extra = {"year": now.year, "quarter": quarter}
    if not scoped:
        scoped = records
    data = totals(scoped)
    data.update(extra)
    data["generatedAt"] = now.isoformat()
    return data
