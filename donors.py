"""
donors.py
Donor CRUD, search, duplicate detection and merge.
"""

from __future__ import annotations

import logging
import re
import uuid
from typing import Any, Mapping

import db
from errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

DONOR_FIELDS = (
    "name",
    "first_name",
    "last_name",
    "display_name",
    "phone",
    "email",
    "address_city",
    "notes",
    "tags",
    "communication_opt_out",
)

# child tables re-linked when donors are merged
_DONOR_CHILDREN = ("donations", "pledges", "payments", "yahrzeits")


def donor_display_name(donor: Mapping[str, Any]) -> str:
    if donor.get("display_name"):
        return donor["display_name"]
    full = f"{donor.get('first_name') or ''} {donor.get('last_name') or ''}".strip()
    return full or donor.get("name") or "Unknown"


def validate_donor_inputs(values: Mapping[str, Any]) -> list[str]:
    errors: list[str] = []
    if not (values.get("phone") or "").strip():
        errors.append("Phone is required.")
    if not values.get("name") and donor_display_name(values) == "Unknown":
        errors.append("Donor name is required.")
    email = (values.get("email") or "").strip()
    if email and not _EMAIL.match(email):
        errors.append("Email is not valid.")
    return errors


def _normalize(values: Mapping[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k, v in values.items():
        if isinstance(v, str):
            v = v.strip() or None
        out[k] = v
    if out.get("email"):
        out["email"] = out["email"].lower()
    return out


def create_donor(organization_id: int | None, values: Mapping[str, Any], created_by_user_id: int | None = None) -> int:
    errors = validate_donor_inputs(values)
    if errors:
        raise ValidationError(errors)
    clean = _normalize({k: v for k, v in values.items() if k in DONOR_FIELDS})
    clean["name"] = donor_display_name(clean)
    now = db.now_iso()
    columns = list(clean) + ["organization_id", "created_by_user_id", "created_at", "updated_at"]
    donor_id = db.execute(
        f"INSERT INTO donors({', '.join(columns)}) VALUES({','.join('?' * len(columns))})",
        tuple(clean.values()) + (organization_id, created_by_user_id, now, now),
    )
    return donor_id


def update_donor(donor_id: int, values: Mapping[str, Any]) -> None:
    current = get_donor(donor_id)
    merged = {**current, **values}
    errors = validate_donor_inputs(merged)
    if errors:
        raise ValidationError(errors)
    clean = _normalize(values)
    if {"display_name", "first_name", "last_name"} & set(clean):
        clean["name"] = donor_display_name(_normalize(merged))
    db.update_row("donors", donor_id, clean, DONOR_FIELDS)


def delete_donor(donor_id: int) -> None:
    get_donor(donor_id)
    db.execute("DELETE FROM donors WHERE id = ?", (donor_id,))


def get_donor(donor_id: int) -> dict:
    row = db.fetch_one("SELECT * FROM donors WHERE id = ?", (donor_id,))
    if not row:
        raise NotFoundError(f"Donor {donor_id} not found")
    return dict(row)


def list_donors(organization_id: int | None = None) -> list[dict]:
    """Donors with total donated, donation count and their last donation."""
    sql = """
        SELECT d.*, o.name AS organization_name,
               COALESCE(agg.total_donated, 0) AS total_donated,
               COALESCE(agg.donation_count, 0) AS donation_count,
               (SELECT x.amount FROM donations x WHERE x.donor_id = d.id ORDER BY x.date DESC, x.id DESC LIMIT 1)
                   AS last_donation_amount,
               (SELECT x.date FROM donations x WHERE x.donor_id = d.id ORDER BY x.date DESC, x.id DESC LIMIT 1)
                   AS last_donation_date
        FROM donors d
        LEFT JOIN organizations o ON o.id = d.organization_id
        LEFT JOIN (
            SELECT donor_id, SUM(amount) AS total_donated, COUNT(*) AS donation_count
            FROM donations
            WHERE status = 'Succeeded'
            GROUP BY donor_id
        ) agg ON agg.donor_id = d.id
    """
    params: tuple = ()
    if organization_id is not None:
        sql += " WHERE d.organization_id = ?"
        params = (organization_id,)
    sql += " ORDER BY d.name COLLATE NOCASE"
    return db.fetch_dicts(sql, params)


def search_donors(query: str, organization_id: int | None = None, limit: int = 20) -> list[dict]:
    like = f"%{(query or '').strip()}%"
    sql = """
        SELECT * FROM donors
        WHERE (name LIKE ? OR display_name LIKE ? OR phone LIKE ? OR email LIKE ?)
    """
    params: list[Any] = [like, like, like, like]
    if organization_id is not None:
        sql += " AND organization_id = ?"
        params.append(organization_id)
    sql += " ORDER BY name COLLATE NOCASE LIMIT ?"
    params.append(limit)
    return db.fetch_dicts(sql, tuple(params))


def existing_donor_snapshot(organization_id: int | None) -> list[dict]:
    """(id, phone, email) of every donor in scope, for import dedup."""
    if organization_id is None:
        return db.fetch_dicts("SELECT id, phone, email FROM donors")
    return db.fetch_dicts("SELECT id, phone, email FROM donors WHERE organization_id = ?", (organization_id,))


def find_duplicate_groups(organization_id: int | None = None) -> list[list[dict]]:
    """
    Groups of donors sharing a phone or an email (case-insensitive).
    Overlapping matches are chained: A~B by phone and B~C by email is one group.
    """
    donors = list_donors(organization_id)
    parent = {d["id"]: d["id"] for d in donors}

    def find(x: int) -> int:
        while parent[x] != x:
            parent[x] = parent[parent[x]]
            x = parent[x]
        return x

    first_by_key: dict[tuple, int] = {}
    for d in donors:
        keys = []
        if (d.get("phone") or "").strip():
            keys.append(("phone", d["organization_id"], d["phone"].strip()))
        if (d.get("email") or "").strip():
            keys.append(("email", d["organization_id"], d["email"].strip().lower()))
        for key in keys:
            if key in first_by_key:
                parent[find(d["id"])] = find(first_by_key[key])
            else:
                first_by_key[key] = d["id"]

    groups: dict[int, list[dict]] = {}
    for d in donors:
        groups.setdefault(find(d["id"]), []).append(d)
    return [g for g in groups.values() if len(g) > 1]


def merge_donors(primary_id: int, duplicate_ids: list[int]) -> str:
    """
    Fold duplicates into the primary donor: children are re-linked, empty
    primary fields are filled from the duplicates, duplicates are deleted.
    Returns the merge group id stamped on the primary.
    """
    duplicate_ids = [d for d in dict.fromkeys(duplicate_ids) if d != primary_id]
    if not duplicate_ids:
        raise ValidationError("Select at least one duplicate to merge.")
    primary = get_donor(primary_id)
    duplicates = [get_donor(d) for d in duplicate_ids]
    if any(d["organization_id"] != primary["organization_id"] for d in duplicates):
        raise ValidationError("Donors from different organizations cannot be merged.")

    fill: dict[str, Any] = {}
    for field in ("first_name", "last_name", "display_name", "phone", "email", "address_city", "notes", "tags"):
        if primary.get(field):
            continue
        for d in duplicates:
            if d.get(field):
                fill[field] = d[field]
                break
    if {"first_name", "last_name", "display_name"} & set(fill):
        fill["name"] = donor_display_name({**primary, **fill})

    group_id = primary.get("merge_group_id") or uuid.uuid4().hex
    placeholders = ",".join("?" * len(duplicate_ids))
    with db.get_conn() as conn:
        for table in _DONOR_CHILDREN:
            conn.execute(
                f"UPDATE {table} SET donor_id = ? WHERE donor_id IN ({placeholders})",
                (primary_id, *duplicate_ids),
            )
        conn.execute(f"DELETE FROM donors WHERE id IN ({placeholders})", tuple(duplicate_ids))
        assignments = "".join(f", {c} = ?" for c in fill)
        conn.execute(
            f"UPDATE donors SET merge_group_id = ?, updated_at = ?{assignments} WHERE id = ?",
            (group_id, db.now_iso(), *fill.values(), primary_id),
        )
    logger.info("Merged donors %s into %s (group %s)", duplicate_ids, primary_id, group_id)
    return group_id
