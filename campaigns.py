"""
campaigns.py
Fundraising campaigns: a goal, an optional date window and progress from the
Succeeded donations linked to them.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Mapping

import db
from errors import NotFoundError, ValidationError
from utils import parse_date_value

logger = logging.getLogger(__name__)

CAMPAIGN_FIELDS = ("name", "description", "goal_amount", "start_date", "end_date", "banner_url")


def validate_campaign(values: Mapping[str, Any]) -> list[str]:
    errors: list[str] = []
    if not (values.get("name") or "").strip():
        errors.append("Campaign name is required.")
    goal = values.get("goal_amount")
    if goal not in (None, ""):
        try:
            if float(goal) <= 0:
                errors.append("Goal amount must be greater than 0.")
        except (TypeError, ValueError):
            errors.append("Goal amount must be a number.")
    start = end = None
    for field, label in (("start_date", "Start date"), ("end_date", "End date")):
        raw = values.get(field)
        if raw in (None, ""):
            continue
        parsed = parse_date_value(raw)
        if parsed is None:
            errors.append(f"{label} is not valid.")
        elif field == "start_date":
            start = parsed
        else:
            end = parsed
    if start and end and end < start:
        errors.append("End date cannot be before the start date.")
    return errors


def _normalize(values: Mapping[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k, v in values.items():
        if isinstance(v, str):
            v = v.strip() or None
        if k in ("start_date", "end_date") and v is not None:
            v = parse_date_value(v).isoformat()
        if k == "goal_amount" and v is not None:
            v = round(float(v), 2)
        out[k] = v
    return out


def create_campaign(organization_id: int, values: Mapping[str, Any]) -> int:
    if organization_id is None:
        raise ValidationError("Select an organization before adding a campaign.")
    errors = validate_campaign(values)
    if errors:
        raise ValidationError(errors)
    clean = _normalize({k: v for k, v in values.items() if k in CAMPAIGN_FIELDS})
    now = db.now_iso()
    columns = list(clean) + ["organization_id", "created_at", "updated_at"]
    campaign_id = db.execute(
        f"INSERT INTO campaigns({', '.join(columns)}) VALUES({','.join('?' * len(columns))})",
        tuple(clean.values()) + (organization_id, now, now),
    )
    logger.info("Created campaign %s (%s)", campaign_id, clean.get("name"), extra={"organization_id": organization_id})
    return campaign_id


def get_campaign(campaign_id: int) -> dict:
    row = db.fetch_one("SELECT * FROM campaigns WHERE id = ?", (campaign_id,))
    if not row:
        raise NotFoundError(f"Campaign {campaign_id} not found")
    return dict(row)


def update_campaign(campaign_id: int, values: Mapping[str, Any]) -> None:
    current = get_campaign(campaign_id)
    errors = validate_campaign({**current, **values})
    if errors:
        raise ValidationError(errors)
    db.update_row("campaigns", campaign_id, _normalize(values), CAMPAIGN_FIELDS)


def delete_campaign(campaign_id: int) -> None:
    """Linked donations stay, with their campaign cleared."""
    get_campaign(campaign_id)
    with db.get_conn() as conn:
        conn.execute("UPDATE donations SET campaign_id = NULL WHERE campaign_id = ?", (campaign_id,))
        conn.execute("DELETE FROM campaigns WHERE id = ?", (campaign_id,))
    logger.info("Deleted campaign %s", campaign_id)


def progress_percent(raised: float, goal: float | None) -> float | None:
    """Share of the goal raised, capped at 100. None without a goal."""
    if not goal:
        return None
    return round(min(float(raised) / float(goal) * 100, 100.0), 1)


def is_running(campaign: Mapping[str, Any], today: date | None = None) -> bool:
    today = today or date.today()
    start = parse_date_value(campaign.get("start_date"))
    end = parse_date_value(campaign.get("end_date"))
    return (start is None or start <= today) and (end is None or today <= end)


def list_campaigns(organization_id: int | None = None, today: date | None = None) -> list[dict]:
    """Campaigns, newest first, with raised / donation_count / donor_count / progress / running."""
    sql = """
        SELECT c.*,
               o.name AS organization_name,
               COALESCE(SUM(d.amount), 0) AS raised,
               COUNT(d.id) AS donation_count,
               COUNT(DISTINCT d.donor_id) AS donor_count
        FROM campaigns c
        LEFT JOIN organizations o ON o.id = c.organization_id
        LEFT JOIN donations d ON d.campaign_id = c.id AND d.status = 'Succeeded'
    """
    params: tuple = ()
    if organization_id is not None:
        sql += " WHERE c.organization_id = ?"
        params = (organization_id,)
    sql += " GROUP BY c.id ORDER BY c.created_at DESC, c.id DESC"
    rows = db.fetch_dicts(sql, params)
    for row in rows:
        row["raised"] = round(float(row["raised"]), 2)
        row["progress"] = progress_percent(row["raised"], row["goal_amount"])
        row["running"] = is_running(row, today)
    return rows


def campaign_choices(organization_id: int | None) -> dict[int, str]:
    """campaign id -> name for pickers."""
    return {c["id"]: c["name"] for c in list_campaigns(organization_id)}
