"""
yahrzeits.py
Memorial anniversaries: CRUD, next occurrence, upcoming filter, month grouping.
"""

from __future__ import annotations

import calendar
import logging
from datetime import date
from typing import Any, Iterable, Mapping, Sequence

import db
import donations
from errors import NotFoundError, ValidationError
from utils import is_iso_date, parse_date_value

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "deceased_name",
    "hebrew_date",
    "secular_date",
    "relationship",
    "contact_name",
    "contact_email",
    "contact_phone",
    "reminder_enabled",
    "notes",
)

SEARCH_FIELDS = (
    "deceased_name",
    "relationship",
    "donor_name",
    "donor_email",
    "donor_phone",
    "contact_name",
    "contact_email",
    "contact_phone",
    "organization_name",
)

UNKNOWN_MONTH = "Unknown"


def _validate(values: Mapping[str, Any]) -> list[str]:
    errors: list[str] = []
    if not values.get("donor_id"):
        errors.append("Donor is required.")
    for field, label in (("deceased_name", "Deceased name"), ("hebrew_date", "Hebrew date"), ("secular_date", "Secular date")):
        if not str(values.get(field) or "").strip():
            errors.append(f"{label} is required.")
    secular = values.get("secular_date")
    if secular and not is_iso_date(str(secular)):
        errors.append("Secular date must be YYYY-MM-DD.")
    return errors


def create_yahrzeit(organization_id: int | None, donor_id: int | None, values: Mapping[str, Any]) -> int:
    errors = _validate({**values, "donor_id": donor_id})
    if errors:
        raise ValidationError(errors)
    donor = db.fetch_one("SELECT organization_id FROM donors WHERE id = ?", (donor_id,))
    if not donor:
        raise NotFoundError(f"Donor {donor_id} not found")
    if organization_id is None:
        organization_id = donor["organization_id"]
    clean = {k: (v.strip() or None if isinstance(v, str) else v) for k, v in values.items() if k in EDITABLE_FIELDS}
    now = db.now_iso()
    columns = list(clean) + ["donor_id", "organization_id", "created_at", "updated_at"]
    return db.execute(
        f"INSERT INTO yahrzeits({', '.join(columns)}) VALUES({','.join('?' * len(columns))})",
        tuple(clean.values()) + (donor_id, organization_id, now, now),
    )


def get_yahrzeit(yahrzeit_id: int) -> dict:
    row = db.fetch_one("SELECT * FROM yahrzeits WHERE id = ?", (yahrzeit_id,))
    if not row:
        raise NotFoundError(f"Yahrzeit {yahrzeit_id} not found")
    return dict(row)


def update_yahrzeit(yahrzeit_id: int, values: Mapping[str, Any]) -> None:
    current = get_yahrzeit(yahrzeit_id)
    errors = _validate({**current, **values})
    if errors:
        raise ValidationError(errors)
    db.update_row("yahrzeits", yahrzeit_id, dict(values), EDITABLE_FIELDS)


def delete_yahrzeit(yahrzeit_id: int) -> None:
    get_yahrzeit(yahrzeit_id)
    db.execute("DELETE FROM yahrzeits WHERE id = ?", (yahrzeit_id,))


def list_yahrzeits(organization_id: int | None = None) -> list[dict]:
    sql = """
        SELECT y.*,
               COALESCE(d.display_name, d.name) AS donor_name,
               d.email AS donor_email,
               d.phone AS donor_phone,
               o.name AS organization_name
        FROM yahrzeits y
        JOIN donors d ON d.id = y.donor_id
        LEFT JOIN organizations o ON o.id = y.organization_id
    """
    params: tuple = ()
    if organization_id is not None:
        sql += " WHERE y.organization_id = ?"
        params = (organization_id,)
    sql += " ORDER BY y.deceased_name COLLATE NOCASE"
    return db.fetch_dicts(sql, params)


# ---------- Dates ----------

def _anniversary(original: date, year: int) -> date:
    if original.month == 2 and original.day == 29 and not calendar.isleap(year):
        return date(year, 2, 28)
    return original.replace(year=year)


def next_occurrence(secular_date: Any, today: date | None = None) -> date | None:
    """This year's anniversary, or next year's when it already passed."""
    original = parse_date_value(secular_date)
    if original is None:
        return None
    today = today or date.today()
    candidate = _anniversary(original, today.year)
    if candidate < today:
        candidate = _anniversary(original, today.year + 1)
    return candidate


def days_until(secular_date: Any, today: date | None = None) -> int | None:
    today = today or date.today()
    nxt = next_occurrence(secular_date, today)
    if nxt is None:
        return None
    return (nxt - today).days


def filter_yahrzeits(
    rows: Iterable[Mapping[str, Any]],
    search: str | None = None,
    upcoming_only: bool = False,
    today: date | None = None,
    window: int = 30,
) -> list[dict]:
    today = today or date.today()
    needle = (search or "").strip().lower()
    out = []
    for row in rows:
        if needle:
            haystack = " ".join(str(row.get(f) or "") for f in SEARCH_FIELDS).lower()
            if needle not in haystack:
                continue
        if upcoming_only:
            diff = days_until(row.get("secular_date"), today)
            if diff is None or not 0 <= diff <= window:
                continue
        out.append(dict(row))
    return out


def group_by_month(rows: Sequence[Mapping[str, Any]]) -> dict[str, list[dict]]:
    """Month name of the secular date -> rows, in order of first appearance."""
    groups: dict[str, list[dict]] = {}
    for row in rows:
        d = parse_date_value(row.get("secular_date"))
        key = calendar.month_name[d.month] if d else UNKNOWN_MONTH
        groups.setdefault(key, []).append(dict(row))
    return groups


def yahrzeit_metrics(rows: Sequence[Mapping[str, Any]], today: date | None = None) -> dict[str, int]:
    today = today or date.today()
    upcoming = 0
    for row in rows:
        nxt = next_occurrence(row.get("secular_date"), today)
        if nxt is not None and nxt.month == today.month:
            upcoming += 1
    return {
        "total": len(rows),
        "upcoming_this_month": upcoming,
        "with_reminders": sum(1 for r in rows if r.get("reminder_enabled")),
    }


def latest_donation_by_yahrzeit(donation_rows: Iterable[Mapping[str, Any]]) -> dict[int, dict]:
    """yahrzeit_id -> {amount, date, currency} of its most recent donation."""
    latest: dict[int, dict] = {}
    for d in donation_rows:
        yid = d.get("yahrzeit_id")
        if yid is None:
            continue
        when = parse_date_value(d.get("date"))
        current = latest.get(yid)
        if current is None or (when is not None and (current["_when"] is None or when > current["_when"])):
            latest[yid] = {
                "amount": d.get("amount"),
                "date": d.get("date"),
                "currency": d.get("currency") or "USD",
                "_when": when,
            }
    return {yid: {k: v for k, v in info.items() if k != "_when"} for yid, info in latest.items()}


def record_yahrzeit_donation(
    yahrzeit_id: int,
    amount: float,
    payment_method: str = "Cash",
    date: str | None = None,
    currency: str | None = None,
    notes: str | None = None,
) -> dict:
    y = get_yahrzeit(yahrzeit_id)
    result = donations.create_donation(
        y["organization_id"],
        y["donor_id"],
        amount,
        currency=currency,
        type="Yahrzeit",
        payment_method=payment_method,
        date=date,
        designation=f"Yahrzeit: {y['deceased_name']}",
        notes=notes,
        yahrzeit_id=yahrzeit_id,
    )
    logger.info("Recorded donation %s for yahrzeit %s", result["id"], yahrzeit_id)
    return result
