"""
listing.py
Shared filter / sort / paginate / totals engine for the list pages.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Iterable, Mapping, Sequence

from utils import parse_date_value

FALLBACK_CURRENCY = "ILS"


def _text(value: Any) -> str:
    return "" if value is None else str(value).lower()


def _is_null(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def filter_rows(
    rows: Iterable[Mapping[str, Any]],
    search: str | None = None,
    search_fields: Sequence[str] = (),
    contains: Mapping[str, str | None] | None = None,
    equals: Mapping[str, Any] | None = None,
    date_field: str | None = None,
    date_from: date | str | None = None,
    date_to: date | str | None = None,
    amount_field: str | None = None,
    min_amount: float | None = None,
    max_amount: float | None = None,
) -> list[dict]:
    """
    Apply the list-page filters. Empty filters are ignored.

    - search: case-insensitive substring over the concatenation of search_fields
    - contains: per-field case-insensitive substring
    - equals: per-field exact match ("all"/None/"" means no filter)
    - date_from/date_to: inclusive bounds on date_field; rows without a date are dropped
    - min_amount/max_amount: inclusive bounds on amount_field
    """
    needle = (search or "").strip().lower()
    contains = {k: v.strip().lower() for k, v in (contains or {}).items() if v and v.strip()}
    equals = {k: v for k, v in (equals or {}).items() if v not in (None, "", "all")}
    start = parse_date_value(date_from) if date_from else None
    end = parse_date_value(date_to) if date_to else None

    out = []
    for row in rows:
        if needle:
            haystack = " ".join(_text(row.get(f)) for f in search_fields)
            if needle not in haystack:
                continue
        if any(v not in _text(row.get(k)) for k, v in contains.items()):
            continue
        if any(row.get(k) != v for k, v in equals.items()):
            continue
        if date_field and (start or end):
            d = parse_date_value(row.get(date_field))
            if d is None:
                continue
            if start and d < start:
                continue
            if end and d > end:
                continue
        if amount_field and (min_amount is not None or max_amount is not None):
            amount = float(row.get(amount_field) or 0)
            if min_amount is not None and amount < min_amount:
                continue
            if max_amount is not None and amount > max_amount:
                continue
        out.append(dict(row))
    return out


def _sort_key(kind: str) -> Callable[[Any], Any]:
    if kind == "number":
        return lambda v: float(v)
    if kind == "date":
        return lambda v: parse_date_value(v)
    return lambda v: str(v).lower()


def sort_rows(rows: Iterable[Mapping[str, Any]], field: str, direction: str = "asc", kind: str = "string") -> list[dict]:
    """
    Stable sort on one field. Null values (and dates that don't parse) go last
    in both directions.
    """
    key = _sort_key(kind)
    present, missing = [], []
    for row in rows:
        value = row.get(field)
        if _is_null(value) or (kind == "date" and parse_date_value(value) is None):
            missing.append(dict(row))
        else:
            present.append(dict(row))
    present.sort(key=lambda r: key(r[field]), reverse=(direction == "desc"))
    return present + missing


@dataclass(frozen=True)
class Page:
    rows: list[dict]
    page: int
    page_size: int
    total_rows: int
    total_pages: int

    @property
    def start_index(self) -> int:
        return 0 if not self.rows else (self.page - 1) * self.page_size + 1

    @property
    def end_index(self) -> int:
        return (self.page - 1) * self.page_size + len(self.rows)


def paginate(rows: Sequence[dict], page: int, page_size: int = 25) -> Page:
    total = len(rows)
    total_pages = max(1, -(-total // page_size))
    page = min(max(1, page), total_pages)
    begin = (page - 1) * page_size
    return Page(list(rows[begin:begin + page_size]), page, page_size, total, total_pages)


def currency_resolver(
    currency_by_org: Mapping[Any, str] | None = None,
    default: str = FALLBACK_CURRENCY,
) -> Callable[[Mapping[str, Any]], str]:
    """Row currency, else its organization's default currency, else the fallback."""
    currency_by_org = currency_by_org or {}

    def resolve(row: Mapping[str, Any]) -> str:
        return row.get("currency") or currency_by_org.get(row.get("organization_id")) or default

    return resolve


def totals_by_currency(
    rows: Iterable[Mapping[str, Any]],
    amount_field: str = "amount",
    resolve: Callable[[Mapping[str, Any]], str] | None = None,
) -> dict[str, float]:
    resolve = resolve or currency_resolver()
    totals: dict[str, float] = {}
    for row in rows:
        cur = resolve(row)
        totals[cur] = totals.get(cur, 0.0) + float(row.get(amount_field) or 0)
    return {k: round(v, 2) for k, v in totals.items()}


def sum_by_currency(
    rows: Iterable[Mapping[str, Any]],
    fields: Sequence[str],
    resolve: Callable[[Mapping[str, Any]], str] | None = None,
) -> dict[str, dict[str, float]]:
    """{currency: {field: total}} for several amount fields at once (pledge pages)."""
    resolve = resolve or currency_resolver()
    totals: dict[str, dict[str, float]] = {}
    for row in rows:
        bucket = totals.setdefault(resolve(row), {f: 0.0 for f in fields})
        for f in fields:
            bucket[f] += float(row.get(f) or 0)
    return {cur: {f: round(v, 2) for f, v in bucket.items()} for cur, bucket in totals.items()}


def distinct_count(rows: Iterable[Mapping[str, Any]], field: str) -> int:
    return len({row.get(field) for row in rows if row.get(field) is not None})
