"""
auth.py
Authentication (bcrypt hashing, verify, login, change password) plus users,
role grants and organization scoping.

Hashing calls bcrypt directly rather than going through passlib.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import bcrypt

import db
import organizations
from errors import NotFoundError, PermissionDenied, ValidationError
from models import APP_ROLES

logger = logging.getLogger(__name__)

ADMIN_ROLES = ("super_admin", "synagogue_admin", "admin")


def _to_bcrypt_secret(password: str) -> bytes:
    """
    bcrypt only uses the first 72 BYTES of the password.
    We truncate to 72 bytes to avoid ValueError and to make behavior explicit.
    """
    pw = password.encode("utf-8")
    if len(pw) > 72:
        pw = pw[:72]
    return pw


def hash_password(password: str) -> str:
    """
    Returns a bcrypt hash as a UTF-8 string (stored in SQLite).
    """
    secret = _to_bcrypt_secret(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(secret, salt)
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    secret = _to_bcrypt_secret(password)
    stored = password_hash.encode("utf-8")
    return bcrypt.checkpw(secret, stored)


def get_user_by_email(email: str):
    return db.fetch_one("SELECT * FROM users WHERE email = ?", ((email or "").strip().lower(),))


def login(email: str, password: str) -> bool:
    user = get_user_by_email(email)
    if not user:
        return False
    return verify_password(password, user["password_hash"])


def must_change_password(email: str) -> bool:
    user = get_user_by_email(email)
    return bool(user and user["must_change_password"])


def change_password(email: str, new_password: str) -> None:
    """Set a new password for one user and clear only that user's forced-change flag."""
    if len(new_password) < 8:
        raise ValidationError("Password must be at least 8 characters.")
    user = get_user_by_email(email)
    if not user:
        raise NotFoundError(f"User {email} not found")
    db.execute(
        "UPDATE users SET password_hash = ?, must_change_password = 0 WHERE id = ?",
        (hash_password(new_password), user["id"]),
    )
    logger.info("Password changed for %s", user["email"])


# ---------- Identity / scope ----------

@dataclass(frozen=True)
class RoleGrant:
    id: int
    role: str
    organization_id: int | None
    suspended: bool


@dataclass(frozen=True)
class Identity:
    user_id: int
    email: str
    name: str
    roles: tuple[RoleGrant, ...] = field(default_factory=tuple)

    @property
    def active_roles(self) -> tuple[RoleGrant, ...]:
        return tuple(r for r in self.roles if not r.suspended)


def load_identity(email: str) -> Identity:
    user = get_user_by_email(email)
    if not user:
        raise NotFoundError(f"User {email} not found")
    rows = db.fetch_all(
        "SELECT id, role, organization_id, suspended FROM user_roles WHERE user_id = ? ORDER BY id",
        (user["id"],),
    )
    grants = tuple(RoleGrant(r["id"], r["role"], r["organization_id"], bool(r["suspended"])) for r in rows)
    name = f"{user['first_name'] or ''} {user['last_name'] or ''}".strip() or user["email"]
    return Identity(user["id"], user["email"], name, grants)


def is_super_admin(identity: Identity) -> bool:
    return any(r.role == "super_admin" for r in identity.active_roles)


def organization_ids(identity: Identity) -> list[int]:
    """Organizations the identity may act on (all of them for super admins)."""
    if is_super_admin(identity):
        return [r["id"] for r in db.fetch_all("SELECT id FROM organizations ORDER BY name COLLATE NOCASE")]
    seen: list[int] = []
    for r in identity.active_roles:
        if r.organization_id is not None and r.organization_id not in seen:
            seen.append(r.organization_id)
    return seen


def resolve_scope(identity: Identity, selected: int | str | None) -> int | None:
    """
    Turn the organization switcher value into a query scope.
    "all" (or None) is only allowed for super admins and maps to None.
    """
    if selected in (None, "all"):
        if is_super_admin(identity):
            return None
        allowed = organization_ids(identity)
        if len(allowed) == 1:
            return allowed[0]
        raise PermissionDenied("Select an organization.")
    org_id = int(selected)
    if org_id not in organization_ids(identity):
        raise PermissionDenied("You do not have access to this organization.")
    return org_id


def is_org_admin(identity: Identity, organization_id: int | None) -> bool:
    if is_super_admin(identity):
        return True
    return any(r.role in ADMIN_ROLES and r.organization_id == organization_id for r in identity.active_roles)


# ---------- Users / roles ----------

def validate_new_user(email: str, password: str) -> list[str]:
    errors = []
    if "@" not in (email or ""):
        errors.append("A valid email is required.")
    if len(password or "") < 8:
        errors.append("Password must be at least 8 characters.")
    return errors


def create_user(
    email: str,
    password: str,
    first_name: str | None = None,
    last_name: str | None = None,
    phone: str | None = None,
    position: str | None = None,
) -> int:
    email = (email or "").strip().lower()
    errors = validate_new_user(email, password)
    if errors:
        raise ValidationError(errors)
    if get_user_by_email(email):
        raise ValidationError(f"A user with email {email} already exists.")
    user_id = db.execute(
        """
        INSERT INTO users(email, password_hash, first_name, last_name, phone, position, created_at)
        VALUES(?,?,?,?,?,?,?)
        """,
        (email, hash_password(password), first_name, last_name, phone, position, db.now_iso()),
    )
    logger.info("Created user %s", email)
    return user_id


def get_or_create_user(email: str, password: str, **profile) -> int:
    existing = get_user_by_email(email)
    if existing:
        return existing["id"]
    return create_user(email, password, **profile)


def update_user(user_id: int, values: dict) -> None:
    if not db.fetch_one("SELECT id FROM users WHERE id = ?", (user_id,)):
        raise NotFoundError(f"User {user_id} not found")
    db.update_row("users", user_id, values, ("first_name", "last_name", "phone", "position"), touch=False)


def assign_role(user_id: int, role: str, organization_id: int | None, suspended: bool = False) -> int:
    if role not in APP_ROLES:
        raise ValidationError(f"Unknown role: {role}")
    if organization_id is None and role != "super_admin":
        raise ValidationError("Only super_admin can be granted without an organization.")
    if organization_id is not None:
        organizations.ensure_capacity(organization_id, user_id)
    existing = db.fetch_one(
        "SELECT id FROM user_roles WHERE user_id = ? AND organization_id IS ? AND role = ?",
        (user_id, organization_id, role),
    )
    if existing:
        return existing["id"]
    role_id = db.execute(
        "INSERT INTO user_roles(user_id, organization_id, role, suspended) VALUES(?,?,?,?)",
        (user_id, organization_id, role, int(suspended)),
    )
    logger.info("Granted %s on organization %s to user %s", role, organization_id, user_id)
    return role_id


def set_role_suspended(role_id: int, suspended: bool) -> None:
    if not db.fetch_one("SELECT id FROM user_roles WHERE id = ?", (role_id,)):
        raise NotFoundError(f"Role {role_id} not found")
    db.update_row("user_roles", role_id, {"suspended": int(suspended)}, ("suspended",), touch=False)
    logger.info("Role %s %s", role_id, "suspended" if suspended else "activated")


def remove_role(role_id: int) -> None:
    db.execute("DELETE FROM user_roles WHERE id = ?", (role_id,))


def user_status(user: dict) -> str:
    """'active' if any role is not suspended, else 'suspended'."""
    roles = user.get("roles") or []
    if any(not r["suspended"] for r in roles):
        return "active"
    return "suspended"


def list_team_users(organization_id: int | None = None) -> list[dict]:
    """
    One dict per user with their role rows grouped under "roles".
    organization_id=None lists every user with any role.
    """
    sql = """
        SELECT u.id AS user_id, u.email, u.first_name, u.last_name, u.phone, u.position,
               ur.id AS role_id, ur.role, ur.organization_id, ur.suspended,
               o.name AS organization_name
        FROM user_roles ur
        JOIN users u ON u.id = ur.user_id
        LEFT JOIN organizations o ON o.id = ur.organization_id
    """
    params: tuple = ()
    if organization_id is not None:
        sql += " WHERE ur.organization_id = ?"
        params = (organization_id,)
    sql += " ORDER BY u.email, ur.id"

    users: dict[int, dict] = {}
    for r in db.fetch_all(sql, params):
        user = users.get(r["user_id"])
        if user is None:
            user = {
                "id": r["user_id"],
                "email": r["email"],
                "name": f"{r['first_name'] or ''} {r['last_name'] or ''}".strip(),
                "phone": r["phone"],
                "position": r["position"],
                "roles": [],
            }
            users[r["user_id"]] = user
        user["roles"].append(
            {
                "id": r["role_id"],
                "role": r["role"],
                "organization_id": r["organization_id"],
                "organization_name": r["organization_name"],
                "suspended": bool(r["suspended"]),
            }
        )
    out = list(users.values())
    for user in out:
        user["status"] = user_status(user)
        user["role_names"] = ", ".join(sorted({r["role"] for r in user["roles"]}))
    return out
