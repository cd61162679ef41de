"""
invites.py
Team invitations: an admin invites an email address to an organization with a
role; the invitee accepts with the token from the invitation link.
"""

from __future__ import annotations

import logging
import re
import secrets
from datetime import datetime, timedelta, timezone

import auth
import db
import organizations
from errors import NotFoundError, PermissionDenied, ValidationError
from mailer import Sender
from models import APP_ROLES

logger = logging.getLogger(__name__)

INVITE_TTL = timedelta(days=7)
INVITE_STATUSES = ("pending", "accepted", "cancelled", "expired")

_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(timezone.utc)


def _stamp(moment: datetime) -> str:
    return moment.isoformat(timespec="seconds")


def _parse(value: str) -> datetime:
    moment = datetime.fromisoformat(value)
    return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)


def invite_status(invite: dict, now: datetime | None = None) -> str:
    if invite["accepted_at"]:
        return "accepted"
    if invite["cancelled_at"]:
        return "cancelled"
    if _parse(invite["expires_at"]) <= _now(now):
        return "expired"
    return "pending"


def _latest_for(email: str, organization_id: int):
    return db.fetch_one(
        "SELECT * FROM invites WHERE email = ? AND organization_id = ? ORDER BY created_at DESC, id DESC LIMIT 1",
        (email, organization_id),
    )


def create_invite(
    organization_id: int,
    email: str,
    role: str,
    invited_by: int | None = None,
    now: datetime | None = None,
) -> dict:
    """
    Create a pending invite, or reopen the latest cancelled/expired one for the
    same email and organization with a fresh token and expiry.
    """
    now = _now(now)
    email = (email or "").strip().lower()
    errors = []
    if not _EMAIL.match(email):
        errors.append("A valid email is required.")
    if role not in APP_ROLES or role == "super_admin":
        errors.append(f"Role cannot be granted by invitation: {role}")
    if errors:
        raise ValidationError(errors)
    organizations.get_organization(organization_id)

    token = secrets.token_urlsafe(24)
    expires = _stamp(now + INVITE_TTL)
    existing = _latest_for(email, organization_id)
    if existing:
        status = invite_status(dict(existing), now)
        if status == "accepted":
            raise ValidationError("This invitation was already accepted.")
        if status == "pending":
            raise ValidationError("An active invitation already exists for this user and organization.")
        db.execute(
            """
            UPDATE invites SET role = ?, token = ?, invited_by = ?, expires_at = ?, cancelled_at = NULL,
                               accepted_at = NULL
            WHERE id = ?
            """,
            (role, token, invited_by, expires, existing["id"]),
        )
        invite_id = existing["id"]
    else:
        invite_id = db.execute(
            """
            INSERT INTO invites(organization_id, email, role, token, invited_by, expires_at, created_at)
            VALUES(?,?,?,?,?,?,?)
            """,
            (organization_id, email, role, token, invited_by, expires, _stamp(now)),
        )
    logger.info("Invited %s as %s", email, role, extra={"organization_id": organization_id, "component": "invites"})
    return get_invite(invite_id)


def get_invite(invite_id: int) -> dict:
    row = db.fetch_one("SELECT * FROM invites WHERE id = ?", (invite_id,))
    if not row:
        raise NotFoundError(f"Invite {invite_id} not found")
    return dict(row)


def get_invite_by_token(token: str) -> dict:
    row = db.fetch_one("SELECT * FROM invites WHERE token = ?", ((token or "").strip(),))
    if not row:
        raise NotFoundError("Invitation not found.")
    return dict(row)


def list_invites(organization_id: int | None = None, now: datetime | None = None) -> list[dict]:
    sql = """
        SELECT i.*, o.name AS organization_name, u.email AS invited_by_email
        FROM invites i
        LEFT JOIN organizations o ON o.id = i.organization_id
        LEFT JOIN users u ON u.id = i.invited_by
    """
    params: tuple = ()
    if organization_id is not None:
        sql += " WHERE i.organization_id = ?"
        params = (organization_id,)
    sql += " ORDER BY i.created_at DESC, i.id DESC"
    rows = db.fetch_dicts(sql, params)
    for row in rows:
        row["status"] = invite_status(row, now)
    return rows


def cancel_invite(invite_id: int, now: datetime | None = None) -> None:
    invite = get_invite(invite_id)
    if invite["accepted_at"]:
        raise ValidationError("An accepted invitation cannot be cancelled.")
    db.execute("UPDATE invites SET cancelled_at = ? WHERE id = ?", (_stamp(_now(now)), invite_id))
    logger.info("Cancelled invite %s", invite_id, extra={"organization_id": invite["organization_id"]})


def accept_invite(
    token: str,
    email: str,
    password: str,
    first_name: str | None = None,
    last_name: str | None = None,
    now: datetime | None = None,
) -> dict:
    """
    Join the invited organization. An existing account must give its password;
    a new account is created with it. Returns user_id, organization_id and
    already_member.
    """
    now = _now(now)
    invite = get_invite_by_token(token)
    status = invite_status(invite, now)
    if status == "cancelled":
        raise ValidationError("This invitation was cancelled.")
    if status == "expired":
        raise ValidationError("This invitation has expired.")
    if status == "accepted":
        raise ValidationError("This invitation was already accepted.")
    if (email or "").strip().lower() != invite["email"]:
        raise PermissionDenied("Sign in with the email this invitation was sent to.")

    org_id = invite["organization_id"]
    user = auth.get_user_by_email(invite["email"])
    if user and not auth.verify_password(password or "", user["password_hash"]):
        raise PermissionDenied("Invalid email or password.")
    member = user and db.fetch_one(
        "SELECT id FROM user_roles WHERE user_id = ? AND organization_id = ? LIMIT 1", (user["id"], org_id)
    )
    if not member:
        organizations.ensure_capacity(org_id, user["id"] if user else None)

    if user:
        user_id = user["id"]
    else:
        user_id = auth.create_user(invite["email"], password, first_name=first_name, last_name=last_name)
    if not member:
        auth.assign_role(user_id, invite["role"], org_id)
    db.execute("UPDATE invites SET accepted_at = ? WHERE id = ?", (_stamp(now), invite["id"]))
    logger.info("Invite %s accepted by %s", invite["id"], invite["email"], extra={"organization_id": org_id})
    return {"user_id": user_id, "organization_id": org_id, "already_member": bool(member)}


def invite_link(invite: dict, app_url: str) -> str:
    return f"{app_url.rstrip('/')}/?invite={invite['token']}"


def invite_message(invite: dict, app_url: str) -> tuple[str, str]:
    org = organizations.get_organization(invite["organization_id"])
    subject = f"You are invited to join {org['name']} on DonorDesk"
    body = (
        f"You have been invited to join {org['name']} as {invite['role']}.\n\n"
        f"Accept the invitation here:\n{invite_link(invite, app_url)}\n\n"
        f"The invitation expires on {_parse(invite['expires_at']):%d %B %Y}."
    )
    return subject, body + "\n"


def send_invite(sender: Sender, invite: dict, app_url: str) -> None:
    subject, body = invite_message(invite, app_url)
    sender(invite["email"], subject, body)
