"""
organizations.py
Tenants: CRUD, self-service registration, per-organization settings, seat capacity.
"""

from __future__ import annotations

import logging
import re
from typing import Any

import auth
import db
from errors import CapacityExceeded, DonorDeskError, NotFoundError, ValidationError
from models import CURRENCIES, SUBSCRIPTION_STATUSES, SUBSCRIPTION_TIERS, tier_capacity, tier_for_member_estimate

logger = logging.getLogger(__name__)

_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

ORG_FIELDS = (
    "name",
    "contact_name",
    "contact_email",
    "contact_phone",
    "address",
    "city",
    "state",
    "zip",
    "logo_url",
    "primary_color",
    "secondary_color",
    "accent_color",
    "font_family",
    "member_count",
)

SETTINGS_FIELDS = (
    "default_currency",
    "receipt_prefix",
    "surcharge_enabled",
    "surcharge_percent",
    "surcharge_fixed",
    "zelle_name",
    "zelle_email_or_phone",
    "zelle_note",
)

DEFAULT_SETTINGS = {
    "default_currency": "ILS",
    "receipt_prefix": "R",
    "surcharge_enabled": 0,
    "surcharge_percent": 0.0,
    "surcharge_fixed": None,
    "zelle_name": None,
    "zelle_email_or_phone": None,
    "zelle_note": None,
}


def validate_organization_inputs(values: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    if not (values.get("name") or "").strip():
        errors.append("Organization name is required.")
    email = (values.get("contact_email") or "").strip()
    if email and not _EMAIL.match(email):
        errors.append("Contact email is not valid.")
    count = values.get("member_count")
    if count not in (None, ""):
        try:
            if int(count) < 0:
                errors.append("Member count cannot be negative.")
        except (TypeError, ValueError):
            errors.append("Member count must be a number.")
    return errors


def _clean(values: dict[str, Any]) -> dict[str, Any]:
    out = {}
    for k, v in values.items():
        out[k] = v.strip() or None if isinstance(v, str) else v
    return out


def create_organization(values: dict[str, Any]) -> int:
    errors = validate_organization_inputs(values)
    if errors:
        raise ValidationError(errors)
    tier = values.get("subscription_tier") or tier_for_member_estimate(int(values.get("member_count") or 0))
    values = _clean({k: v for k, v in values.items() if k in ORG_FIELDS})
    now = db.now_iso()
    columns = list(values) + ["subscription_tier", "created_at", "updated_at"]
    org_id = db.execute(
        f"INSERT INTO organizations({', '.join(columns)}) VALUES({','.join('?' * len(columns))})",
        tuple(values.values()) + (tier, now, now),
    )
    db.execute(
        "INSERT INTO settings(organization_id, created_at, updated_at) VALUES(?,?,?)",
        (org_id, now, now),
    )
    logger.info("Created organization %s (%s)", org_id, values.get("name"))
    return org_id


def update_organization(organization_id: int, values: dict[str, Any]) -> None:
    current = get_organization(organization_id)
    errors = validate_organization_inputs({**current, **values})
    if errors:
        raise ValidationError(errors)
    db.update_row("organizations", organization_id, _clean(values), ORG_FIELDS)


def delete_organization(organization_id: int) -> None:
    get_organization(organization_id)
    db.execute("DELETE FROM organizations WHERE id = ?", (organization_id,))
    logger.info("Deleted organization %s", organization_id)


def get_organization(organization_id: int) -> dict:
    row = db.fetch_one("SELECT * FROM organizations WHERE id = ?", (organization_id,))
    if not row:
        raise NotFoundError(f"Organization {organization_id} not found")
    return dict(row)


def list_organizations() -> list[dict]:
    return db.fetch_dicts(
        """
        SELECT o.*,
               (SELECT COUNT(DISTINCT ur.user_id) FROM user_roles ur WHERE ur.organization_id = o.id) AS user_count,
               (SELECT COUNT(*) FROM donors d WHERE d.organization_id = o.id) AS donor_count
        FROM organizations o
        ORDER BY o.name COLLATE NOCASE
        """
    )


def register_organization(
    name: str,
    admin_email: str,
    admin_password: str,
    member_estimate: int = 0,
    admin_first_name: str | None = None,
    admin_last_name: str | None = None,
    admin_phone: str | None = None,
    **details: Any,
) -> int:
    """
    Self-service sign-up.

    The organization starts `inactive` on the tier matching the member estimate.
    The admin user is reused when the email already exists, and gets a
    `synagogue_admin` role that stays suspended until a super admin activates it.
    """
    email = (admin_email or "").strip().lower()
    values = {**details, "name": name, "member_count": member_estimate, "contact_email": email}
    values.setdefault("contact_name", f"{admin_first_name or ''} {admin_last_name or ''}".strip() or None)
    values.setdefault("contact_phone", admin_phone)

    # Nothing is written until both the organization and the admin account are valid.
    errors = validate_organization_inputs({**values, "contact_email": None})
    if not _EMAIL.match(email):
        errors.append("Admin email is not valid.")
    elif not auth.get_user_by_email(email):
        errors.extend(auth.validate_new_user(email, admin_password))
    if errors:
        raise ValidationError(errors)
    org_id = create_organization(values)

    try:
        user_id = auth.get_or_create_user(
            email,
            admin_password,
            first_name=admin_first_name,
            last_name=admin_last_name,
            phone=admin_phone,
        )
    except DonorDeskError:
        delete_organization(org_id)
        raise
    db.execute(
        "INSERT OR IGNORE INTO user_roles(user_id, organization_id, role, suspended) VALUES(?,?,?,1)",
        (user_id, org_id, "synagogue_admin"),
    )
    logger.info(
        "Registered organization %s for %s on %s",
        org_id,
        email,
        tier_for_member_estimate(member_estimate),
        extra={"organization_id": org_id, "component": "registration"},
    )
    return org_id


# ---------- Settings ----------

def get_settings(organization_id: int) -> dict:
    row = db.fetch_one("SELECT * FROM settings WHERE organization_id = ?", (organization_id,))
    if not row:
        return {"organization_id": organization_id, **DEFAULT_SETTINGS}
    return dict(row)


def save_settings(organization_id: int, values: dict[str, Any]) -> None:
    unknown = set(values) - set(SETTINGS_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown settings: {', '.join(sorted(unknown))}")
    currency = values.get("default_currency")
    if currency is not None and currency not in CURRENCIES:
        raise ValidationError(f"Unsupported currency: {currency}")
    percent = values.get("surcharge_percent")
    if percent is not None and not 0 <= float(percent) <= 100:
        raise ValidationError("Surcharge percent must be between 0 and 100.")

    get_organization(organization_id)
    existing = db.fetch_one("SELECT id FROM settings WHERE organization_id = ?", (organization_id,))
    if existing:
        db.update_row("settings", existing["id"], values, SETTINGS_FIELDS)
        return
    merged = {**DEFAULT_SETTINGS, **values}
    now = db.now_iso()
    columns = list(merged) + ["organization_id", "created_at", "updated_at"]
    db.execute(
        f"INSERT INTO settings({', '.join(columns)}) VALUES({','.join('?' * len(columns))})",
        tuple(merged.values()) + (organization_id, now, now),
    )


def currency_map() -> dict[int, str]:
    """organization_id -> default currency."""
    rows = db.fetch_all("SELECT organization_id, default_currency FROM settings")
    return {r["organization_id"]: r["default_currency"] for r in rows}


# ---------- Subscription / capacity ----------

def seats_used(organization_id: int) -> int:
    row = db.fetch_one(
        "SELECT COUNT(DISTINCT user_id) AS c FROM user_roles WHERE organization_id = ?",
        (organization_id,),
    )
    return int(row["c"])


def ensure_capacity(organization_id: int, user_id: int | None = None) -> None:
    """Raise CapacityExceeded when adding a new member would exceed the tier."""
    if user_id is not None and db.fetch_one(
        "SELECT id FROM user_roles WHERE organization_id = ? AND user_id = ? LIMIT 1",
        (organization_id, user_id),
    ):
        return
    org = get_organization(organization_id)
    capacity = tier_capacity(org["subscription_tier"])
    if seats_used(organization_id) >= capacity:
        raise CapacityExceeded(
            f"{org['name']} has reached the {capacity}-member limit of its subscription tier."
        )


def set_subscription(organization_id: int, tier: str | None = None, status: str | None = None) -> None:
    values: dict[str, Any] = {}
    if tier is not None:
        if tier not in SUBSCRIPTION_TIERS:
            raise ValidationError(f"Unknown subscription tier: {tier}")
        values["subscription_tier"] = tier
    if status is not None:
        if status not in SUBSCRIPTION_STATUSES:
            raise ValidationError(f"Unknown subscription status: {status}")
        values["subscription_status"] = status
    get_organization(organization_id)
    db.update_row("organizations", organization_id, values, ("subscription_tier", "subscription_status"))
    logger.info("Subscription for organization %s set to %s", organization_id, values)
