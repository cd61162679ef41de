"""
donations.py
Donation CRUD, credit-card surcharge fee and receipt numbering.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

import db
import organizations
from config import load_app_config
from errors import NotFoundError, ValidationError
from models import DONATION_STATUSES, DONATION_TYPES, PAYMENT_METHODS
from utils import parse_date_value, today_iso

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "amount",
    "currency",
    "type",
    "payment_method",
    "status",
    "designation",
    "notes",
    "date",
    "receipt_sent",
    "fee",
    "net_amount",
    "receipt_number",
    "campaign_id",
)

# (field, header) pairs for the list page CSV export
EXPORT_COLUMNS = [
    ("donor_name", "Name"),
    ("donor_phone", "Phone"),
    ("donor_email", "Email"),
    ("amount_label", "Amount"),
    ("date", "Date"),
    ("type", "Type"),
    ("payment_method", "Method"),
    ("campaign_label", "Campaign"),
    ("notes", "Notes"),
]


def compute_fee(amount: float, settings: Mapping[str, Any], payment_method: str = "CreditCard") -> float:
    """Surcharge for card payments: percent of the amount plus an optional fixed part."""
    if payment_method != "CreditCard" or not settings.get("surcharge_enabled"):
        return 0.0
    percent = float(settings.get("surcharge_percent") or 0)
    fixed = float(settings.get("surcharge_fixed") or 0)
    return round(amount * percent / 100 + fixed, 2)


def generate_receipt_number(organization_id: int | None, on_date: str | None = None) -> str:
    settings = organizations.get_settings(organization_id) if organization_id is not None else {}
    prefix = settings.get("receipt_prefix") or "R"
    year = (parse_date_value(on_date) or parse_date_value(today_iso())).year
    seq = db.next_sequence(f"receipt:{organization_id or 0}:{year}")
    return f"{prefix}-{year}-{seq:05d}"


def _check_campaign(campaign_id: int | None, organization_id: int | None) -> None:
    if campaign_id is None:
        return
    row = db.fetch_one("SELECT organization_id FROM campaigns WHERE id = ?", (campaign_id,))
    if not row:
        raise NotFoundError(f"Campaign {campaign_id} not found")
    if organization_id is not None and row["organization_id"] != organization_id:
        raise ValidationError("Campaign belongs to another organization.")


def _validate(values: Mapping[str, Any]) -> list[str]:
    errors: list[str] = []
    if not values.get("donor_id"):
        errors.append("Donor is required.")
    try:
        amount = float(values.get("amount") or 0)
    except (TypeError, ValueError):
        amount = 0
    if amount <= 0:
        errors.append("Amount must be greater than 0.")
    if values.get("type") not in DONATION_TYPES:
        errors.append(f"Unknown donation type: {values.get('type')}")
    if values.get("payment_method") not in PAYMENT_METHODS:
        errors.append(f"Unknown payment method: {values.get('payment_method')}")
    if values.get("status") not in DONATION_STATUSES:
        errors.append(f"Unknown donation status: {values.get('status')}")
    if values.get("date") and parse_date_value(values["date"]) is None:
        errors.append("Date is not valid.")
    return errors


def create_donation(
    organization_id: int | None,
    donor_id: int | None,
    amount: float,
    currency: str | None = None,
    type: str = "Regular",
    payment_method: str = "Cash",
    status: str = "Succeeded",
    date: str | None = None,
    designation: str | None = None,
    notes: str | None = None,
    pledge_id: int | None = None,
    yahrzeit_id: int | None = None,
    campaign_id: int | None = None,
) -> dict:
    """Insert a donation; returns {"id", "receipt_number"}."""
    values = {
        "donor_id": donor_id,
        "amount": amount,
        "type": type or "Regular",
        "payment_method": payment_method or "Cash",
        "status": status or "Succeeded",
        "date": date,
    }
    errors = _validate(values)
    if errors:
        raise ValidationError(errors)

    donor = db.fetch_one("SELECT id, organization_id FROM donors WHERE id = ?", (donor_id,))
    if not donor:
        raise NotFoundError(f"Donor {donor_id} not found")
    if organization_id is None:
        organization_id = donor["organization_id"]
    elif donor["organization_id"] not in (None, organization_id):
        raise ValidationError("Donor belongs to another organization.")
    _check_campaign(campaign_id, organization_id)

    settings = organizations.get_settings(organization_id) if organization_id is not None else {}
    currency = currency or settings.get("default_currency") or load_app_config().default_currency
    amount = round(float(amount), 2)
    fee = compute_fee(amount, settings, values["payment_method"])
    day = parse_date_value(date).isoformat() if date else today_iso()
    receipt = generate_receipt_number(organization_id, day) if values["status"] == "Succeeded" else None

    now = db.now_iso()
    donation_id = db.execute(
        """
        INSERT INTO donations(donor_id, organization_id, pledge_id, yahrzeit_id, campaign_id, amount, currency, type,
                              payment_method, status, fee, net_amount, designation, notes, receipt_number,
                              date, created_at, updated_at)
        VALUES(?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)
        """,
        (
            donor_id,
            organization_id,
            pledge_id,
            yahrzeit_id,
            campaign_id,
            amount,
            currency,
            values["type"],
            values["payment_method"],
            values["status"],
            fee,
            round(amount - fee, 2),
            designation,
            notes,
            receipt,
            day,
            now,
            now,
        ),
    )
    return {"id": donation_id, "receipt_number": receipt}


def get_donation(donation_id: int) -> dict:
    row = db.fetch_one("SELECT * FROM donations WHERE id = ?", (donation_id,))
    if not row:
        raise NotFoundError(f"Donation {donation_id} not found")
    return dict(row)


def update_donation(donation_id: int, values: Mapping[str, Any]) -> None:
    current = get_donation(donation_id)
    merged = {**current, **values}
    errors = _validate(merged)
    if errors:
        raise ValidationError(errors)
    changes = dict(values)
    if changes.get("campaign_id") is not None:
        _check_campaign(changes["campaign_id"], current["organization_id"])
    if "date" in changes and changes["date"]:
        changes["date"] = parse_date_value(changes["date"]).isoformat()
    if "amount" in changes or "payment_method" in changes:
        settings = organizations.get_settings(current["organization_id"]) if current["organization_id"] else {}
        amount = round(float(merged["amount"]), 2)
        fee = compute_fee(amount, settings, merged["payment_method"])
        changes.update(amount=amount, fee=fee, net_amount=round(amount - fee, 2))
    if merged["status"] == "Succeeded" and not current["receipt_number"]:
        changes["receipt_number"] = generate_receipt_number(current["organization_id"], merged["date"])
    db.update_row("donations", donation_id, changes, EDITABLE_FIELDS)


def set_status(donation_id: int, status: str) -> None:
    update_donation(donation_id, {"status": status})
    logger.info("Donation %s marked %s", donation_id, status)


def delete_donation(donation_id: int) -> None:
    get_donation(donation_id)
    db.execute("DELETE FROM donations WHERE id = ?", (donation_id,))


def list_donations(
    organization_id: int | None = None,
    donor_id: int | None = None,
    campaign_id: int | None = None,
) -> list[dict]:
    sql = """
        SELECT x.*,
               COALESCE(d.display_name, d.name) AS donor_name,
               d.phone AS donor_phone,
               d.email AS donor_email,
               o.name AS organization_name,
               c.name AS campaign_name,
               COALESCE(c.name, x.designation) AS campaign_label
        FROM donations x
        JOIN donors d ON d.id = x.donor_id
        LEFT JOIN organizations o ON o.id = x.organization_id
        LEFT JOIN campaigns c ON c.id = x.campaign_id
        WHERE 1 = 1
    """
    params: list[Any] = []
    if organization_id is not None:
        sql += " AND x.organization_id = ?"
        params.append(organization_id)
    if donor_id is not None:
        sql += " AND x.donor_id = ?"
        params.append(donor_id)
    if campaign_id is not None:
        sql += " AND x.campaign_id = ?"
        params.append(campaign_id)
    sql += " ORDER BY x.date DESC, x.id DESC"
    return db.fetch_dicts(sql, tuple(params))


def donations_today(organization_id: int | None = None) -> list[dict]:
    today = today_iso()
    return [d for d in list_donations(organization_id) if d["date"] == today]
