"""
utils.py
Dates, money formatting, exports, monthly summaries, sample data.
"""

from __future__ import annotations

import io
import re
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Sequence

import pandas as pd

import db

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def today_iso() -> str:
    return date.today().isoformat()


def now_iso() -> str:
    return db.now_iso()


def parse_iso(d: str) -> date:
    return date.fromisoformat(d)


def is_iso_date(value: str | None) -> bool:
    """Strict YYYY-MM-DD check (what the Yahrzeit import requires)."""
    if not value or not _ISO_DATE.match(value.strip()):
        return False
    try:
        parse_iso(value.strip())
    except ValueError:
        return False
    return True


def parse_date_value(value: Any) -> date | None:
    """
    Lenient date parsing for spreadsheet cells and stored timestamps.
    Accepts date/datetime objects, ISO strings with or without a time part,
    and anything pandas can read. Returns None when unparseable.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        pass
    parsed = pd.to_datetime(text, errors="coerce")
    if pd.isna(parsed):
        return None
    return parsed.date()


def add_months(start: date, months: int) -> date:
    """
    Add months while keeping day in valid range (e.g., Jan 31 + 1 month => Feb 28/29).
    """
    y = start.year + (start.month - 1 + months) // 12
    m = (start.month - 1 + months) % 12 + 1
    # last day of target month
    if m == 12:
        next_month = date(y + 1, 1, 1)
    else:
        next_month = date(y, m + 1, 1)
    last_day = next_month - timedelta(days=1)
    day = min(start.day, last_day.day)
    return date(y, m, day)


def to_amount(value: Any) -> float:
    """Parse '₪1,200.50' / '$90' / 90 into a float; 0.0 when not numeric."""
    if value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    text = re.sub(r"[^\d.\-]", "", str(value))
    try:
        return float(text)
    except ValueError:
        return 0.0


def fmt_money(amount: float | None, currency: str) -> str:
    return f"{currency} {float(amount or 0):,.2f}"


def rows_to_csv_bytes(rows: Iterable[Any], columns: Sequence[tuple[str, str]] | None = None) -> bytes:
    """
    Serialize rows (dicts or sqlite3.Row) to CSV.
    `columns` is an optional list of (field, header) pairs selecting and renaming columns.
    """
    df = pd.DataFrame([dict(r) for r in rows])
    if columns:
        for field, _ in columns:
            if field not in df.columns:
                df[field] = None
        df = df[[field for field, _ in columns]].rename(columns=dict(columns))
    return df.to_csv(index=False).encode("utf-8")


def rows_to_xlsx_bytes(sheets: dict[str, list[dict]]) -> bytes:
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        for sheet_name, rows in sheets.items():
            pd.DataFrame(rows).to_excel(writer, sheet_name=sheet_name[:31], index=False)
    buffer.seek(0)
    return buffer.getvalue()


def donation_summary_by_month(organization_id: int | None = None) -> pd.DataFrame:
    sql = """
        SELECT strftime('%Y-%m', date) AS month, currency, SUM(amount) AS total, COUNT(*) AS donations
        FROM donations
        WHERE status = 'Succeeded'
    """
    params: list[Any] = []
    if organization_id is not None:
        sql += " AND organization_id = ?"
        params.append(organization_id)
    sql += " GROUP BY strftime('%Y-%m', date), currency ORDER BY month DESC, currency ASC"
    df = pd.DataFrame(db.fetch_dicts(sql, tuple(params)))
    if df.empty:
        return pd.DataFrame(columns=["month", "currency", "total", "donations"])
    return df


def insert_sample_data(organization_id: int) -> None:
    """
    Insert 3 donors with donations, a pledge and a yahrzeit
    (safe to run multiple times: adds new rows each time).
    """
    today = date.today()
    now = now_iso()

    donors = [
        ("David Cohen", "David", "Cohen", "0501111111", "david@example.com", "Jerusalem"),
        ("Sarah Levi", "Sarah", "Levi", "0502222222", "sarah@example.com", "Tel Aviv"),
        ("Moshe Katz", "Moshe", "Katz", "0503333333", None, "Haifa"),
    ]
    ids = []
    for name, first, last, phone, email, city in donors:
        did = db.execute(
            """
            INSERT INTO donors(organization_id, name, first_name, last_name, phone, email, address_city, created_at, updated_at)
            VALUES(?,?,?,?,?,?,?,?,?)
            """,
            (organization_id, name, first, last, phone, email, city, now, now),
        )
        ids.append(did)

    donations = [
        (ids[0], organization_id, 180.0, "ILS", "Regular", "Cash", today.isoformat(), now, now),
        (ids[1], organization_id, 360.0, "ILS", "Aliyot", "CreditCard", today.isoformat(), now, now),
        (ids[2], organization_id, 52.0, "ILS", "Nedarim", "Check", (today - timedelta(days=40)).isoformat(), now, now),
    ]
    db.executemany(
        """
        INSERT INTO donations(donor_id, organization_id, amount, currency, type, payment_method, date, created_at, updated_at)
        VALUES(?,?,?,?,?,?,?,?,?)
        """,
        donations,
    )

    db.execute(
        """
        INSERT INTO pledges(donor_id, organization_id, total_amount, amount_paid, balance_owed, frequency, start_date, created_at, updated_at)
        VALUES(?,?,?,?,?,?,?,?,?)
        """,
        (ids[1], organization_id, 1800.0, 0.0, 1800.0, "monthly", today.isoformat(), now, now),
    )

    # 2016 is a leap year, so a Feb 29 anniversary stays valid
    anniversary = today + timedelta(days=5)
    secular = date(2016, anniversary.month, anniversary.day).isoformat()
    db.execute(
        """
        INSERT INTO yahrzeits(donor_id, organization_id, deceased_name, hebrew_date, secular_date, relationship, created_at, updated_at)
        VALUES(?,?,?,?,?,?,?,?)
        """,
        (ids[0], organization_id, "Avraham Cohen", "", secular, "Father", now, now),
    )
