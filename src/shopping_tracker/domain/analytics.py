from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Sequence

from .models import PriceHistory, Receipt

UNNAMED_MARKET = "Não especificado"
UNNAMED_PRICE_MARKET = "Outros"


def _month_key(purchase_date: str) -> str:
    try:
        dt = datetime.fromisoformat(purchase_date.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return (purchase_date or "")[:7]
    return f"{dt.year:04d}-{dt.month:02d}"


def monthly_spending(receipts: Iterable[Receipt]) -> List[Dict[str, Any]]:
    """Total spend per YYYY-MM bucket, oldest month first."""
    buckets: Dict[str, float] = {}
    for receipt in receipts:
        if not receipt.purchase_date:
            continue
        key = _month_key(receipt.purchase_date)
        buckets[key] = buckets.get(key, 0.0) + receipt.total_amount
    return [{"month": key, "total": round(total, 2)} for key, total in sorted(buckets.items())]


def market_comparison(receipts: Iterable[Receipt]) -> List[Dict[str, Any]]:
    markets: Dict[str, Dict[str, float]] = {}
    for receipt in receipts:
        name = receipt.market or UNNAMED_MARKET
        entry = markets.setdefault(name, {"total": 0.0, "count": 0})
        entry["total"] += receipt.total_amount
        entry["count"] += 1
    rows = [
        {
            "market": name,
            "total": round(data["total"], 2),
            "count": int(data["count"]),
            "average": round(data["total"] / data["count"], 2),
        }
        for name, data in markets.items()
    ]
    rows.sort(key=lambda r: r["total"], reverse=True)
    return rows


def price_by_market(history: Iterable[PriceHistory], *, limit: int = 6) -> List[Dict[str, Any]]:
    sums: Dict[str, float] = {}
    for entry in history:
        name = entry.market or UNNAMED_PRICE_MARKET
        sums[name] = sums.get(name, 0.0) + entry.unit_price
    rows = [{"market": name, "value": round(value, 2)} for name, value in sums.items()]
    rows.sort(key=lambda r: r["value"], reverse=True)
    return rows[:limit]


def total_spent(receipts: Sequence[Receipt]) -> float:
    return round(sum(r.total_amount for r in receipts), 2)


def average_per_trip(receipts: Sequence[Receipt]) -> float:
    if not receipts:
        return 0.0
    return round(total_spent(receipts) / len(receipts), 2)


def most_used_market(receipts: Sequence[Receipt]) -> str:
    comparison = market_comparison(receipts)
    if not comparison:
        return "N/A"
    return comparison[0]["market"]


def summarize(receipts: Sequence[Receipt], history: Sequence[PriceHistory]) -> Dict[str, Any]:
    """Everything the analytics screen shows, in one payload."""
    return {
        "total_spent": total_spent(receipts),
        "average_per_trip": average_per_trip(receipts),
        "receipt_count": len(receipts),
        "most_used_market": most_used_market(receipts),
        "monthly_spending": monthly_spending(receipts),
        "market_comparison": market_comparison(receipts),
        "price_by_market": price_by_market(history),
    }
