"""
Fold raw platform orders into per-day totals.
Pure: no I/O. The connector supplies the platform's exclusion, date and total rules.
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional, Protocol

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
# metrics_diarias amounts are NUMERIC(14,2); one order at or above this is a vendor data error
MAX_ORDER_AMOUNT = Decimal("1e10")


class OrderRules(Protocol):
    def is_excluded(self, order: dict) -> bool: ...

    def order_date(self, order: dict) -> Optional[str]: ...

    def order_total(self, order: dict) -> Any: ...


@dataclass
class DailyBucket:
    """Totals for one (user, date, platform). faturamento and vendas_valor are the same sum."""

    faturamento: Decimal = field(default_factory=lambda: Decimal("0"))
    vendas_quantidade: int = 0
    vendas_valor: Decimal = field(default_factory=lambda: Decimal("0"))

    def add(self, amount: Decimal) -> None:
        self.faturamento += amount
        self.vendas_valor += amount
        self.vendas_quantidade += 1


def parse_amount(value: Any) -> Decimal:
    """
    Vendor amount (string, int or float) as Decimal rounded to cents.
    Unparsable, non-finite or implausibly large values count as zero.
    """
    if value is None or value == "" or isinstance(value, bool):
        return Decimal("0")
    try:
        amount = Decimal(str(value).strip())
        if not amount.is_finite():
            return Decimal("0")
        amount = amount.quantize(CENTS)
    except (InvalidOperation, ValueError):
        logger.warning("Unparsable order total %r, counted as zero", value)
        return Decimal("0")
    if abs(amount) >= MAX_ORDER_AMOUNT:
        logger.warning("Order total %s out of range, counted as zero", value)
        return Decimal("0")
    return amount


def normalize_date_key(value: Optional[str]) -> Optional[str]:
    """YYYY-MM-DD, or None when value is not a calendar date."""
    if not value or not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value[:10]).isoformat()
    except ValueError:
        return None


def aggregate_orders(orders: Iterable[Any], rules: OrderRules) -> dict[str, DailyBucket]:
    buckets: dict[str, DailyBucket] = {}
    skipped = 0
    for order in orders:
        if not isinstance(order, dict):
            skipped += 1
            continue
        if rules.is_excluded(order):
            continue
        day = normalize_date_key(rules.order_date(order))
        if day is None:
            skipped += 1
            continue
        buckets.setdefault(day, DailyBucket()).add(parse_amount(rules.order_total(order)))
    if skipped:
        logger.warning("Skipped %s order(s) without a usable date", skipped)
    return buckets
