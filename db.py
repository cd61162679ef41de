"""
db.py
SQLite helpers + initialization (creates DB/tables, inserts default admin, global home page).
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterable

from config import load_app_config
from models import (
    APP_ROLES,
    DONATION_STATUSES,
    DONATION_TYPES,
    PAYMENT_METHODS,
    PLEDGE_FREQUENCIES,
    PLEDGE_STATUSES,
    SUBSCRIPTION_STATUSES,
    SUBSCRIPTION_TIERS,
)

logger = logging.getLogger(__name__)

DB_FILE = load_app_config().db_file

DEFAULT_ADMIN_EMAIL = "admin@donordesk.local"


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@contextmanager
def get_conn():
    conn = sqlite3.connect(DB_FILE, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


def execute(sql: str, params: tuple = ()) -> int:
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.lastrowid


def executemany(sql: str, seq_of_params: list[tuple]) -> None:
    with get_conn() as conn:
        conn.executemany(sql, seq_of_params)


def fetch_one(sql: str, params: tuple = ()):
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.fetchone()


def fetch_all(sql: str, params: tuple = ()) -> list[sqlite3.Row]:
    with get_conn() as conn:
        cur = conn.execute(sql, params)
        return cur.fetchall()


def fetch_dicts(sql: str, params: tuple = ()) -> list[dict]:
    return [dict(r) for r in fetch_all(sql, params)]


def update_row(table: str, row_id: int, values: dict[str, Any], allowed: Iterable[str], touch: bool = True) -> int:
    """
    UPDATE only the whitelisted columns present in `values`.
    Stamps updated_at unless touch=False (tables without that column).
    Returns the number of columns written (0 means nothing to do).
    """
    allowed = set(allowed)
    unknown = set(values) - allowed
    if unknown:
        raise ValueError(f"Cannot update {table} columns: {sorted(unknown)}")
    if not values:
        return 0
    columns = list(values)
    assignments = ", ".join(f"{c} = ?" for c in columns)
    params = tuple(values[c] for c in columns) + (row_id,)
    if not touch:
        execute(f"UPDATE {table} SET {assignments} WHERE id = ?", params)
    else:
        execute(
            f"UPDATE {table} SET {assignments}, updated_at = ? WHERE id = ?",
            params[:-1] + (now_iso(), row_id),
        )
    return len(columns)


def next_sequence(name: str) -> int:
    """Increment and return a named counter stored in app_settings."""
    with get_conn() as conn:
        conn.execute(
            """
            INSERT INTO app_settings(key, value) VALUES(?, '1')
            ON CONFLICT(key) DO UPDATE SET value = CAST(CAST(value AS INTEGER) + 1 AS TEXT)
            """,
            (f"seq:{name}",),
        )
        row = conn.execute("SELECT value FROM app_settings WHERE key = ?", (f"seq:{name}",)).fetchone()
        return int(row["value"])


def _check_in(column: str, values: Iterable[str]) -> str:
    quoted = ",".join(f"'{v}'" for v in values)
    return f"CHECK({column} IN ({quoted}))"


def _create_tables() -> None:
    execute(
        f"""
        CREATE TABLE IF NOT EXISTS organizations (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            contact_name TEXT,
            contact_email TEXT,
            contact_phone TEXT,
            address TEXT,
            city TEXT,
            state TEXT,
            zip TEXT,
            logo_url TEXT,
            primary_color TEXT,
            secondary_color TEXT,
            accent_color TEXT,
            font_family TEXT,
            member_count INTEGER NOT NULL DEFAULT 0,
            subscription_tier TEXT NOT NULL DEFAULT 'tier_1' {_check_in('subscription_tier', SUBSCRIPTION_TIERS)},
            subscription_status TEXT NOT NULL DEFAULT 'inactive' {_check_in('subscription_status', SUBSCRIPTION_STATUSES)},
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )

    execute(
        """
        CREATE TABLE IF NOT EXISTS settings (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            organization_id INTEGER NOT NULL UNIQUE,
            default_currency TEXT NOT NULL DEFAULT 'ILS',
            receipt_prefix TEXT NOT NULL DEFAULT 'R',
            surcharge_enabled INTEGER NOT NULL DEFAULT 0,
            surcharge_percent REAL NOT NULL DEFAULT 0,
            surcharge_fixed REAL,
            zelle_name TEXT,
            zelle_email_or_phone TEXT,
            zelle_note TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY(organization_id) REFERENCES organizations(id) ON DELETE CASCADE
        )
        """
    )

    execute(
        """
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            email TEXT NOT NULL UNIQUE,
            password_hash TEXT NOT NULL,
            first_name TEXT,
            last_name TEXT,
            phone TEXT,
            position TEXT,
            must_change_password INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL
        )
        """
    )

    execute(
        f"""
        CREATE TABLE IF NOT EXISTS user_roles (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            organization_id INTEGER,
            role TEXT NOT NULL {_check_in('role', APP_ROLES)},
            suspended INTEGER NOT NULL DEFAULT 0,
            UNIQUE(user_id, organization_id, role),
            FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE,
            FOREIGN KEY(organization_id) REFERENCES organizations(id) ON DELETE CASCADE
        )
        """
    )

    execute(
        """
        CREATE TABLE IF NOT EXISTS donors (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            organization_id INTEGER,
            name TEXT NOT NULL,
            first_name TEXT,
            last_name TEXT,
            display_name TEXT,
            phone TEXT,
            email TEXT,
            address_city TEXT,
            notes TEXT,
            tags TEXT,
            communication_opt_out INTEGER NOT NULL DEFAULT 0,
            merge_group_id TEXT,
            created_by_user_id INTEGER,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY(organization_id) REFERENCES organizations(id) ON DELETE CASCADE
        )
        """
    )

    execute(
        f"""
        CREATE TABLE IF NOT EXISTS pledges (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            donor_id INTEGER NOT NULL,
            organization_id INTEGER,
            total_amount REAL NOT NULL CHECK(total_amount > 0),
            amount_paid REAL NOT NULL DEFAULT 0,
            balance_owed REAL,
            frequency TEXT NOT NULL DEFAULT 'monthly' {_check_in('frequency', PLEDGE_FREQUENCIES)},
            start_date TEXT NOT NULL,
            expected_completion_date TEXT,
            status TEXT NOT NULL DEFAULT 'active' {_check_in('status', PLEDGE_STATUSES)},
            reminder_enabled INTEGER NOT NULL DEFAULT 1,
            last_reminder_sent TEXT,
            completion_email_sent TEXT,
            notes TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY(donor_id) REFERENCES donors(id) ON DELETE CASCADE,
            FOREIGN KEY(organization_id) REFERENCES organizations(id) ON DELETE CASCADE
        )
        """
    )

    execute(
        """
        CREATE TABLE IF NOT EXISTS yahrzeits (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            donor_id INTEGER NOT NULL,
            organization_id INTEGER,
            deceased_name TEXT NOT NULL,
            hebrew_date TEXT NOT NULL,
            secular_date TEXT NOT NULL,
            relationship TEXT,
            contact_name TEXT,
            contact_email TEXT,
            contact_phone TEXT,
            reminder_enabled INTEGER NOT NULL DEFAULT 1,
            last_reminder_sent TEXT,
            notes TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY(donor_id) REFERENCES donors(id) ON DELETE CASCADE,
            FOREIGN KEY(organization_id) REFERENCES organizations(id) ON DELETE CASCADE
        )
        """
    )

    execute(
        """
        CREATE TABLE IF NOT EXISTS campaigns (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            organization_id INTEGER NOT NULL,
            name TEXT NOT NULL,
            description TEXT,
            goal_amount REAL CHECK(goal_amount IS NULL OR goal_amount > 0),
            start_date TEXT,
            end_date TEXT,
            banner_url TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY(organization_id) REFERENCES organizations(id) ON DELETE CASCADE
        )
        """
    )

    execute(
        f"""
        CREATE TABLE IF NOT EXISTS donations (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            donor_id INTEGER NOT NULL,
            organization_id INTEGER,
            pledge_id INTEGER,
            yahrzeit_id INTEGER,
            campaign_id INTEGER,
            amount REAL NOT NULL CHECK(amount > 0),
            currency TEXT NOT NULL DEFAULT 'ILS',
            type TEXT NOT NULL DEFAULT 'Regular' {_check_in('type', DONATION_TYPES)},
            payment_method TEXT NOT NULL DEFAULT 'Cash' {_check_in('payment_method', PAYMENT_METHODS)},
            status TEXT NOT NULL DEFAULT 'Succeeded' {_check_in('status', DONATION_STATUSES)},
            fee REAL,
            net_amount REAL,
            designation TEXT,
            notes TEXT,
            receipt_number TEXT,
            receipt_sent INTEGER NOT NULL DEFAULT 0,
            date TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY(donor_id) REFERENCES donors(id) ON DELETE CASCADE,
            FOREIGN KEY(organization_id) REFERENCES organizations(id) ON DELETE CASCADE,
            FOREIGN KEY(pledge_id) REFERENCES pledges(id) ON DELETE SET NULL,
            FOREIGN KEY(yahrzeit_id) REFERENCES yahrzeits(id) ON DELETE SET NULL,
            FOREIGN KEY(campaign_id) REFERENCES campaigns(id) ON DELETE SET NULL
        )
        """
    )

    execute(
        f"""
        CREATE TABLE IF NOT EXISTS payments (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            donor_id INTEGER NOT NULL,
            organization_id INTEGER,
            pledge_id INTEGER,
            amount REAL NOT NULL CHECK(amount > 0),
            method TEXT NOT NULL {_check_in('method', PAYMENT_METHODS)},
            reference_number TEXT,
            notes TEXT,
            date TEXT NOT NULL,
            created_at TEXT NOT NULL,
            FOREIGN KEY(donor_id) REFERENCES donors(id) ON DELETE CASCADE,
            FOREIGN KEY(organization_id) REFERENCES organizations(id) ON DELETE CASCADE,
            FOREIGN KEY(pledge_id) REFERENCES pledges(id) ON DELETE CASCADE
        )
        """
    )

    execute(
        """
        CREATE TABLE IF NOT EXISTS home_pages (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            organization_id INTEGER UNIQUE,
            is_global INTEGER NOT NULL DEFAULT 0,
            title TEXT NOT NULL DEFAULT '{}',
            hero_image_url TEXT,
            content TEXT NOT NULL,
            updated_by INTEGER,
            updated_at TEXT NOT NULL,
            FOREIGN KEY(organization_id) REFERENCES organizations(id) ON DELETE CASCADE
        )
        """
    )

    execute(
        f"""
        CREATE TABLE IF NOT EXISTS invites (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            organization_id INTEGER NOT NULL,
            email TEXT NOT NULL,
            role TEXT NOT NULL {_check_in('role', APP_ROLES)},
            token TEXT NOT NULL UNIQUE,
            invited_by INTEGER,
            expires_at TEXT NOT NULL,
            accepted_at TEXT,
            cancelled_at TEXT,
            created_at TEXT NOT NULL,
            FOREIGN KEY(organization_id) REFERENCES organizations(id) ON DELETE CASCADE,
            FOREIGN KEY(invited_by) REFERENCES users(id) ON DELETE SET NULL
        )
        """
    )

    # Key/value table holding named sequences
    execute(
        """
        CREATE TABLE IF NOT EXISTS app_settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )
        """
    )


def _ensure_column(table: str, column: str, definition: str) -> None:
    """Add a column to a table created by an older schema."""
    names = {r["name"] for r in fetch_all(f"PRAGMA table_info({table})")}
    if column not in names:
        execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")
        logger.info("Added column %s.%s", table, column)


def init_db(default_admin_hash: str) -> None:
    """
    Initialize the database.
    - Create tables
    - Insert default super admin if no user exists
    - Force that admin to change the password on first login
    - Seed an empty global home page
    """
    _create_tables()
    _ensure_column("users", "must_change_password", "INTEGER NOT NULL DEFAULT 0")
    _ensure_column("donations", "campaign_id", "INTEGER REFERENCES campaigns(id) ON DELETE SET NULL")
    _ensure_column("pledges", "completion_email_sent", "TEXT")

    user = fetch_one("SELECT id FROM users LIMIT 1")
    if not user:
        user_id = execute(
            """
            INSERT INTO users(email, password_hash, first_name, must_change_password, created_at)
            VALUES(?,?,?,1,?)
            """,
            (DEFAULT_ADMIN_EMAIL, default_admin_hash, "Admin", now_iso()),
        )
        execute(
            "INSERT INTO user_roles(user_id, organization_id, role) VALUES(?, NULL, 'super_admin')",
            (user_id,),
        )
        logger.info("Created default super admin %s", DEFAULT_ADMIN_EMAIL)

    if not fetch_one("SELECT id FROM home_pages WHERE is_global = 1"):
        content = {"version": 1, "rows": []}
        execute(
            "INSERT INTO home_pages(organization_id, is_global, title, content, updated_at) VALUES(NULL, 1, ?, ?, ?)",
            (json.dumps({"en": "Welcome"}), json.dumps(content), now_iso()),
        )
