"""
pledges.py
Pledges and the payments that pay them down.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Mapping

import db
from errors import NotFoundError, ValidationError
from models import PAYMENT_METHODS, PLEDGE_FREQUENCIES, PLEDGE_STATUSES
from utils import add_months, parse_date_value, today_iso

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "total_amount",
    "amount_paid",
    "balance_owed",
    "frequency",
    "start_date",
    "expected_completion_date",
    "status",
    "reminder_enabled",
    "notes",
)

EXPORT_COLUMNS = [
    ("donor_name", "Donor"),
    ("donor_phone", "Phone"),
    ("total_amount", "Total"),
    ("amount_paid", "Paid"),
    ("balance_owed", "Balance"),
    ("currency", "Currency"),
    ("frequency", "Frequency"),
    ("start_date", "Start Date"),
    ("status", "Status"),
    ("notes", "Notes"),
]


def _status_for(balance: float, current: str) -> str:
    if current == "cancelled":
        return "cancelled"
    return "completed" if balance <= 0 else "active"


def _validate(values: Mapping[str, Any]) -> list[str]:
    errors: list[str] = []
    if not values.get("donor_id"):
        errors.append("Donor is required.")
    try:
        total = float(values.get("total_amount") or 0)
    except (TypeError, ValueError):
        total = 0
    if total <= 0:
        errors.append("Total amount must be greater than 0.")
    if values.get("frequency") not in PLEDGE_FREQUENCIES:
        errors.append(f"Unknown frequency: {values.get('frequency')}")
    if values.get("status") not in PLEDGE_STATUSES:
        errors.append(f"Unknown pledge status: {values.get('status')}")
    for field in ("start_date", "expected_completion_date"):
        if values.get(field) and parse_date_value(values[field]) is None:
            errors.append(f"{field.replace('_', ' ').capitalize()} is not valid.")
    return errors


def create_pledge(
    organization_id: int | None,
    donor_id: int | None,
    total_amount: float,
    frequency: str = "monthly",
    start_date: str | None = None,
    expected_completion_date: str | None = None,
    notes: str | None = None,
    reminder_enabled: bool = True,
) -> int:
    values = {
        "donor_id": donor_id,
        "total_amount": total_amount,
        "frequency": frequency or "monthly",
        "status": "active",
        "start_date": start_date,
        "expected_completion_date": expected_completion_date,
    }
    errors = _validate(values)
    if errors:
        raise ValidationError(errors)
    donor = db.fetch_one("SELECT organization_id FROM donors WHERE id = ?", (donor_id,))
    if not donor:
        raise NotFoundError(f"Donor {donor_id} not found")
    if organization_id is None:
        organization_id = donor["organization_id"]

    total = round(float(total_amount), 2)
    start = parse_date_value(start_date).isoformat() if start_date else today_iso()
    expected = parse_date_value(expected_completion_date).isoformat() if expected_completion_date else None
    now = db.now_iso()
    return db.execute(
        """
        INSERT INTO pledges(donor_id, organization_id, total_amount, amount_paid, balance_owed, frequency,
                            start_date, expected_completion_date, status, reminder_enabled, notes,
                            created_at, updated_at)
        VALUES(?,?,?,0,?,?,?,?,'active',?,?,?,?)
        """,
        (donor_id, organization_id, total, total, values["frequency"], start, expected,
         int(reminder_enabled), notes, now, now),
    )


def get_pledge(pledge_id: int) -> dict:
    row = db.fetch_one("SELECT * FROM pledges WHERE id = ?", (pledge_id,))
    if not row:
        raise NotFoundError(f"Pledge {pledge_id} not found")
    return dict(row)


def update_pledge(pledge_id: int, values: Mapping[str, Any]) -> None:
    current = get_pledge(pledge_id)
    merged = {**current, **values}
    errors = _validate(merged)
    if errors:
        raise ValidationError(errors)
    changes = dict(values)
    if "total_amount" in changes or "amount_paid" in changes:
        total = round(float(merged["total_amount"]), 2)
        balance = round(total - float(merged["amount_paid"] or 0), 2)
        changes.update(total_amount=total, balance_owed=balance)
        if "status" not in values:
            changes["status"] = _status_for(balance, current["status"])
    db.update_row("pledges", pledge_id, changes, EDITABLE_FIELDS)


def cancel_pledge(pledge_id: int) -> None:
    get_pledge(pledge_id)
    db.update_row("pledges", pledge_id, {"status": "cancelled"}, EDITABLE_FIELDS)
    logger.info("Pledge %s cancelled", pledge_id)


def delete_pledge(pledge_id: int) -> None:
    get_pledge(pledge_id)
    db.execute("DELETE FROM pledges WHERE id = ?", (pledge_id,))


def list_pledges(organization_id: int | None = None, donor_id: int | None = None) -> list[dict]:
    sql = """
        SELECT p.*,
               COALESCE(d.display_name, d.name) AS donor_name,
               d.phone AS donor_phone,
               d.email AS donor_email,
               o.name AS organization_name,
               s.default_currency AS currency
        FROM pledges p
        JOIN donors d ON d.id = p.donor_id
        LEFT JOIN organizations o ON o.id = p.organization_id
        LEFT JOIN settings s ON s.organization_id = p.organization_id
        WHERE 1 = 1
    """
    params: list[Any] = []
    if organization_id is not None:
        sql += " AND p.organization_id = ?"
        params.append(organization_id)
    if donor_id is not None:
        sql += " AND p.donor_id = ?"
        params.append(donor_id)
    sql += " ORDER BY p.start_date DESC, p.id DESC"
    return db.fetch_dicts(sql, tuple(params))


# ---------- Payments ----------

def record_payment(
    organization_id: int | None,
    amount: float,
    method: str = "Cash",
    donor_id: int | None = None,
    pledge_id: int | None = None,
    date: str | None = None,
    reference_number: str | None = None,
    notes: str | None = None,
) -> int:
    """
    Insert a payment. When it is linked to a pledge, the pledge's amount_paid
    grows by the payment, balance_owed is recomputed and the status becomes
    `completed` once nothing is owed.
    """
    try:
        amount = round(float(amount), 2)
    except (TypeError, ValueError):
        amount = 0
    errors: list[str] = []
    if amount <= 0:
        errors.append("Amount must be greater than 0.")
    if method not in PAYMENT_METHODS:
        errors.append(f"Unknown payment method: {method}")
    if date and parse_date_value(date) is None:
        errors.append("Date is not valid.")

    pledge = get_pledge(pledge_id) if pledge_id is not None else None
    if pledge:
        if pledge["status"] == "cancelled":
            errors.append("Cannot record a payment on a cancelled pledge.")
        if donor_id is not None and donor_id != pledge["donor_id"]:
            errors.append("Payment donor does not match the pledge donor.")
        donor_id = pledge["donor_id"]
        if organization_id is None:
            organization_id = pledge["organization_id"]
    if not donor_id:
        errors.append("Donor is required.")
    if errors:
        raise ValidationError(errors)

    day = parse_date_value(date).isoformat() if date else today_iso()
    now = db.now_iso()
    with db.get_conn() as conn:
        cur = conn.execute(
            """
            INSERT INTO payments(donor_id, organization_id, pledge_id, amount, method, reference_number, notes, date, created_at)
            VALUES(?,?,?,?,?,?,?,?,?)
            """,
            (donor_id, organization_id, pledge_id, amount, method, reference_number, notes, day, now),
        )
        payment_id = cur.lastrowid
        if pledge:
            paid = round(float(pledge["amount_paid"] or 0) + amount, 2)
            balance = round(float(pledge["total_amount"]) - paid, 2)
            conn.execute(
                "UPDATE pledges SET amount_paid = ?, balance_owed = ?, status = ?, updated_at = ? WHERE id = ?",
                (paid, balance, _status_for(balance, pledge["status"]), now, pledge_id),
            )
    logger.info("Recorded payment %s of %.2f (pledge %s)", payment_id, amount, pledge_id)
    return payment_id


def pledge_totals(pledge_id: int) -> dict[str, float]:
    """Paid and balance computed from the payments table rather than the stored columns."""
    pledge = get_pledge(pledge_id)
    row = db.fetch_one("SELECT COALESCE(SUM(amount), 0) AS paid FROM payments WHERE pledge_id = ?", (pledge_id,))
    paid = round(float(row["paid"]), 2)
    total = float(pledge["total_amount"])
    return {"total": total, "paid": paid, "balance": round(total - paid, 2)}


def recompute_pledge(pledge_id: int) -> dict[str, float]:
    pledge = get_pledge(pledge_id)
    totals = pledge_totals(pledge_id)
    db.update_row(
        "pledges",
        pledge_id,
        {
            "amount_paid": totals["paid"],
            "balance_owed": totals["balance"],
            "status": _status_for(totals["balance"], pledge["status"]),
        },
        EDITABLE_FIELDS,
    )
    return totals


def list_payments(organization_id: int | None = None, pledge_id: int | None = None) -> list[dict]:
    sql = """
        SELECT pm.*,
               COALESCE(d.display_name, d.name) AS donor_name,
               d.phone AS donor_phone,
               o.name AS organization_name,
               s.default_currency AS currency
        FROM payments pm
        JOIN donors d ON d.id = pm.donor_id
        LEFT JOIN organizations o ON o.id = pm.organization_id
        LEFT JOIN settings s ON s.organization_id = pm.organization_id
        WHERE 1 = 1
    """
    params: list[Any] = []
    if organization_id is not None:
        sql += " AND pm.organization_id = ?"
        params.append(organization_id)
    if pledge_id is not None:
        sql += " AND pm.pledge_id = ?"
        params.append(pledge_id)
    sql += " ORDER BY pm.date DESC, pm.id DESC"
    return db.fetch_dicts(sql, tuple(params))


def delete_payment(payment_id: int) -> None:
    row = db.fetch_one("SELECT pledge_id FROM payments WHERE id = ?", (payment_id,))
    if not row:
        raise NotFoundError(f"Payment {payment_id} not found")
    db.execute("DELETE FROM payments WHERE id = ?", (payment_id,))
    if row["pledge_id"] is not None:
        recompute_pledge(row["pledge_id"])


def next_due_date(pledge: Mapping[str, Any], today: date | None = None) -> date | None:
    """Next installment date on or after today; None when nothing is due."""
    today = today or date.today()
    if pledge.get("status") != "active" or float(pledge.get("balance_owed") or 0) <= 0:
        return None
    start = parse_date_value(pledge.get("start_date"))
    if start is None:
        return None
    months = PLEDGE_FREQUENCIES.get(pledge.get("frequency"), 0)
    if months == 0 or start >= today:
        return start
    k = ((today.year - start.year) * 12 + today.month - start.month) // months
    due = add_months(start, k * months)
    while due < today:
        k += 1
        due = add_months(start, k * months)
    return due
