from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from zoneinfo import ZoneInfo

from config import get_settings


WEEKLY = "weekly"
MONTHLY = "monthly"


def local_zone() -> ZoneInfo:
    return ZoneInfo(get_settings().timezone)


def local_now() -> datetime:
    return datetime.now(local_zone()).replace(tzinfo=None)


def _to_local(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(local_zone()).replace(tzinfo=None)
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text[-1] in "Zz":
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return _to_local(parsed)
    return None


def _field(record: Any, name: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


def _period_value(period: Any) -> Any:
    if isinstance(period, Enum):
        return period.value
    return period


def period_start(period: Any, *, now: Optional[datetime] = None) -> datetime:
    """Local midnight opening the current weekly or monthly window.

    Weeks start on Monday. Anything other than ``"weekly"`` uses the monthly
    rule.
    """
    current = _to_local(now) if now is not None else local_now()
    today = current.date()
    if _period_value(period) == WEEKLY:
        start = today - timedelta(days=today.weekday())
    else:
        start = today.replace(day=1)
    return datetime.combine(start, time.min)


def filter_by_period(
    transactions: Iterable[Any], period: Any, *, now: Optional[datetime] = None
) -> list[Any]:
    start = period_start(period, now=now)
    kept = []
    for txn in transactions:
        moment = _to_local(_field(txn, "date") or _field(txn, "created_at"))
        if moment is not None and moment >= start:
            kept.append(txn)
    return kept


def spendable_amount(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return 0.0
    if not isinstance(value, (int, float, Decimal)):
        return 0.0
    try:
        amount = float(value)
    except OverflowError:
        return 0.0
    if not math.isfinite(amount) or amount <= 0:
        return 0.0
    return amount


def _total(transactions: Iterable[Any]) -> float:
    return sum((spendable_amount(_field(txn, "amount")) for txn in transactions), 0.0)


def active_period(budgets: Iterable[Any]) -> str:
    # Weekly is the tighter window, so it wins when present.
    for budget in budgets:
        if _period_value(_field(budget, "period")) == WEEKLY:
            return WEEKLY
    return MONTHLY


def current_period_spending(
    transactions: Iterable[Any],
    budgets: Iterable[Any],
    *,
    now: Optional[datetime] = None,
) -> float:
    period = active_period(budgets)
    return _total(filter_by_period(transactions, period, now=now))


def spending_by_period(
    transactions: Iterable[Any],
    budgets: Iterable[Any],
    *,
    now: Optional[datetime] = None,
) -> dict[str, float]:
    transactions = list(transactions)
    totals = {WEEKLY: 0.0, MONTHLY: 0.0}
    for budget in budgets:
        period = _period_value(_field(budget, "period")) or MONTHLY
        if period not in totals:
            period = MONTHLY
        totals[period] += _total(filter_by_period(transactions, period, now=now))
    return totals
