# Overview: Read-only inventory valuation; cost, selling value, profit and markup with a category drill-down.

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from flask import current_app

from ..extensions import db
from ..models import StockItem
from backoffice.time_utils import utcnow
from .errors import ValidationError


UNCATEGORIZED = "Uncategorized"
UNKNOWN_SUB_TYPE = "Unknown"

_CENT = Decimal("1")
_PERCENT = Decimal("0.01")


# =============================================================================
# FX
# =============================================================================

def _base_rate(from_currency: str, to_currency: str, base_rates: dict) -> Decimal:
    direct = base_rates.get(f"{from_currency}_{to_currency}")
    if direct is not None:
        return Decimal(str(direct))

    inverse = base_rates.get(f"{to_currency}_{from_currency}")
    if inverse is not None and Decimal(str(inverse)) != 0:
        return Decimal(1) / Decimal(str(inverse))

    raise ValidationError(
        f"No exchange rate for {from_currency} -> {to_currency}",
        code="FX_RATE_MISSING",
        details={"from": from_currency, "to": to_currency},
    )


def get_rate_with_markup(
    from_currency: str,
    to_currency: str,
    base_rates: dict,
    base_currency: str,
    markup,
) -> Decimal:
    """
    Conversion rate from one currency to another.

    Markup is added only when converting INTO the base currency; every other
    direction uses the plain rate. A missing pair (direct or inverse) raises
    ValidationError.
    """
    if from_currency == to_currency:
        return Decimal(1)

    rate = _base_rate(from_currency, to_currency, base_rates)
    if to_currency == base_currency:
        rate += Decimal(str(markup))
    return rate


def resolve_rates(
    currencies: Iterable[str],
    *,
    base_rates: dict,
    base_currency: str,
    reporting_currency: str,
    markup,
) -> dict[str, Decimal]:
    """Effective "FROM_TO" rates for every currency into base and reporting currency."""
    rates: dict[str, Decimal] = {}
    for currency in sorted(set(currencies)):
        for target in (base_currency, reporting_currency):
            if currency != target:
                rates[f"{currency}_{target}"] = get_rate_with_markup(
                    currency, target, base_rates, base_currency, markup
                )
    return rates


def _convert(amount: Decimal, from_currency: str, to_currency: str, rates: dict) -> Decimal:
    if from_currency == to_currency:
        return amount
    key = f"{from_currency}_{to_currency}"
    if key not in rates:
        raise ValidationError(
            f"No exchange rate for {from_currency} -> {to_currency}",
            code="FX_RATE_MISSING",
            details={"from": from_currency, "to": to_currency},
        )
    return amount * rates[key]


def _cents(value: Decimal) -> int:
    return int(value.quantize(_CENT, rounding=ROUND_HALF_UP))


# =============================================================================
# METRICS
# =============================================================================

def calculate_metrics(
    items: Iterable[dict],
    rates: dict,
    *,
    base_currency: str,
    reporting_currency: str,
) -> dict:
    """
    Sum cost and selling value (unit amount x on hand) in both currencies.

    `items` are dicts with on_hand, cost_cents, cost_currency, price_cents,
    price_currency. A cost or price that is missing or not positive counts
    as missing and contributes nothing. Totals are integer cents, rounded
    half-up once per total.

    markup_percent = profit / cost * 100 in the base currency, None when
    cost is zero.
    """
    targets = (base_currency, reporting_currency)
    cost = {c: Decimal(0) for c in targets}
    selling = {c: Decimal(0) for c in targets}

    counts = {
        "item_count": 0,
        "total_quantity": 0,
        "items_with_cost": 0,
        "items_with_price": 0,
        "items_missing_cost": 0,
        "items_missing_price": 0,
    }

    for item in items:
        qty = int(item.get("on_hand") or 0)
        counts["item_count"] += 1
        counts["total_quantity"] += qty

        cost_cents = item.get("cost_cents")
        if cost_cents is not None and cost_cents > 0:
            amount = Decimal(cost_cents) * qty
            for target in targets:
                cost[target] += _convert(amount, item.get("cost_currency") or "USD", target, rates)
            counts["items_with_cost"] += 1
        else:
            counts["items_missing_cost"] += 1

        price_cents = item.get("price_cents")
        if price_cents is not None and price_cents > 0:
            amount = Decimal(price_cents) * qty
            for target in targets:
                selling[target] += _convert(amount, item.get("price_currency") or base_currency, target, rates)
            counts["items_with_price"] += 1
        else:
            counts["items_missing_price"] += 1

    total_cost = {c: _cents(cost[c]) for c in targets}
    total_selling = {c: _cents(selling[c]) for c in targets}
    profit = {c: total_selling[c] - total_cost[c] for c in targets}

    markup_percent = None
    if total_cost[base_currency] > 0:
        ratio = Decimal(profit[base_currency]) / Decimal(total_cost[base_currency]) * 100
        markup_percent = float(ratio.quantize(_PERCENT, rounding=ROUND_HALF_UP))

    return {
        "total_cost": total_cost,
        "total_selling": total_selling,
        "profit": profit,
        "markup_percent": markup_percent,
        **counts,
    }


# =============================================================================
# SUMMARY
# =============================================================================

def _split_filter(value) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    return [v.strip() for v in value if v and v.strip()]


def _group(items: list[dict], key: str, default: str) -> dict[str, list[dict]]:
    grouped: dict[str, list[dict]] = {}
    for item in items:
        grouped.setdefault(item.get(key) or default, []).append(item)
    return grouped


def get_valuation_summary(filters: dict | None = None, rates: dict | None = None, markup=None) -> dict:
    """
    Valuation of live (not soft-deleted) stock, overall and per category and
    sub-type.

    filters: category / sub_type / status, each a value, a comma-separated
    string, or a list. rates/markup default to configuration.
    """
    filters = filters or {}
    config = current_app.config
    base_currency = config["BASE_CURRENCY"]
    reporting_currency = config["REPORTING_CURRENCY"]
    base_rates = rates if rates is not None else config["FX_RATES"]
    markup = Decimal(str(markup if markup is not None else config["FX_MARKUP"]))

    query = db.session.query(
        StockItem.id,
        StockItem.category,
        StockItem.sub_type,
        StockItem.on_hand,
        StockItem.cost_cents,
        StockItem.cost_currency,
        StockItem.price_cents,
        StockItem.price_currency,
    ).filter(StockItem.deleted_at.is_(None))

    for name, column in (
        ("category", StockItem.category),
        ("sub_type", StockItem.sub_type),
        ("status", StockItem.status),
    ):
        values = _split_filter(filters.get(name))
        if values:
            query = query.filter(column.in_(values))

    items = [dict(row._mapping) for row in query.order_by(StockItem.id).all()]

    currencies = set()
    for item in items:
        if item["cost_cents"]:
            currencies.add(item["cost_currency"])
        if item["price_cents"]:
            currencies.add(item["price_currency"])

    effective = resolve_rates(
        currencies,
        base_rates=base_rates,
        base_currency=base_currency,
        reporting_currency=reporting_currency,
        markup=markup,
    )

    def metrics(subset):
        return calculate_metrics(
            subset, effective, base_currency=base_currency, reporting_currency=reporting_currency
        )

    by_category = {}
    for category, category_items in sorted(_group(items, "category", UNCATEGORIZED).items()):
        by_category[category] = {
            **metrics(category_items),
            "by_sub_type": {
                sub_type: metrics(sub_items)
                for sub_type, sub_items in sorted(_group(category_items, "sub_type", UNKNOWN_SUB_TYPE).items())
            },
        }

    base_only = {
        pair: str(_base_rate(*pair.split("_"), base_rates))
        for pair in effective
    }

    current_app.logger.info("Valuation computed over %s items", len(items))

    return {
        "overall": metrics(items),
        "by_category": by_category,
        "fx": {
            "base_currency": base_currency,
            "reporting_currency": reporting_currency,
            "rates": {pair: str(rate) for pair, rate in effective.items()},
            "base_rates": base_only,
            "markup": str(markup),
            "date": utcnow().date().isoformat(),
        },
    }
