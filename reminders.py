"""
reminders.py
Yahrzeit and pledge reminder selection and sending.

Sending goes through a `sender(to, subject, body)` callable, normally
`mailer.SmtpSender`. Rows are stamped only after the sender returns.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Callable

import db
import pledges
import yahrzeits
from mailer import Sender
from utils import fmt_money

logger = logging.getLogger(__name__)

RESEND_GUARD = timedelta(hours=24)


def _recently_sent(last_sent: str | None, now: datetime) -> bool:
    if not last_sent:
        return False
    try:
        sent = datetime.fromisoformat(last_sent)
    except ValueError:
        return False
    if sent.tzinfo is None:
        sent = sent.replace(tzinfo=timezone.utc)
    return now - sent < RESEND_GUARD


def due_yahrzeit_reminders(
    today: date | None = None,
    lead_days: int = 7,
    organization_id: int | None = None,
    now: datetime | None = None,
) -> list[dict]:
    """
    Enabled yahrzeits whose next occurrence is today or exactly `lead_days`
    ahead. `recipient` is the contact email override, else the donor email
    (None when neither exists).
    """
    today = today or date.today()
    now = now or datetime.now(timezone.utc)
    due = []
    for y in yahrzeits.list_yahrzeits(organization_id):
        if not y["reminder_enabled"] or _recently_sent(y["last_reminder_sent"], now):
            continue
        nxt = yahrzeits.next_occurrence(y["secular_date"], today)
        if nxt is None:
            continue
        days = (nxt - today).days
        if days not in (0, lead_days):
            continue
        due.append({**y, "next_date": nxt, "days_until": days, "recipient": y["contact_email"] or y["donor_email"]})
    return due


def due_pledge_reminders(organization_id: int | None = None, now: datetime | None = None) -> list[dict]:
    now = now or datetime.now(timezone.utc)
    due = []
    for p in pledges.list_pledges(organization_id):
        if p["status"] != "active" or not p["reminder_enabled"]:
            continue
        if float(p["balance_owed"] or 0) <= 0 or not p["donor_email"]:
            continue
        if _recently_sent(p["last_reminder_sent"], now):
            continue
        due.append({**p, "recipient": p["donor_email"], "donor_name": p["donor_name"] or "Valued Donor"})
    return due


def yahrzeit_message(reminder: dict) -> tuple[str, str]:
    when = "today" if reminder["days_until"] == 0 else f"in {reminder['days_until']} days"
    subject = f"Yahrzeit reminder: {reminder['deceased_name']}"
    body = (
        f"Dear {reminder['contact_name'] or reminder['donor_name']},\n\n"
        f"The yahrzeit of {reminder['deceased_name']}"
        f"{' (' + reminder['hebrew_date'] + ')' if reminder['hebrew_date'] else ''} "
        f"falls {when}, on {reminder['next_date']:%A, %d %B %Y}.\n\n"
        f"{reminder['organization_name'] or ''}"
    )
    return subject, body.strip() + "\n"


def pledge_message(reminder: dict) -> tuple[str, str]:
    currency = reminder.get("currency") or "ILS"
    subject = "Pledge reminder"
    body = (
        f"Dear {reminder['donor_name']},\n\n"
        f"Thank you for your pledge of {fmt_money(reminder['total_amount'], currency)}. "
        f"You have paid {fmt_money(reminder['amount_paid'], currency)} so far; "
        f"the remaining balance is {fmt_money(reminder['balance_owed'], currency)}.\n\n"
        f"{reminder['organization_name'] or ''}"
    )
    return subject, body.strip() + "\n"


def _send_all(
    table: str,
    reminders: list[dict],
    compose: Callable[[dict], tuple[str, str]],
    sender: Sender,
    now: datetime,
    stamp: str = "last_reminder_sent",
) -> dict[str, int]:
    sent = failed = 0
    for reminder in reminders:
        if not reminder["recipient"]:
            failed += 1
            logger.warning("No email address for %s %s", table, reminder["id"])
            continue
        try:
            subject, body = compose(reminder)
            sender(reminder["recipient"], subject, body)
        except Exception:  # noqa: BLE001
            failed += 1
            logger.exception("Sending %s reminder %s failed", table, reminder["id"])
            continue
        db.update_row(table, reminder["id"], {stamp: now.isoformat(timespec="seconds")}, (stamp,))
        sent += 1
    logger.info("%s reminders: %d sent, %d failed", table, sent, failed, extra={"component": "reminders"})
    return {"sent": sent, "failed": failed, "total": len(reminders)}


def send_yahrzeit_reminders(
    sender: Sender,
    today: date | None = None,
    lead_days: int = 7,
    organization_id: int | None = None,
    now: datetime | None = None,
) -> dict[str, int]:
    now = now or datetime.now(timezone.utc)
    due = due_yahrzeit_reminders(today, lead_days, organization_id, now)
    return _send_all("yahrzeits", due, yahrzeit_message, sender, now)


def send_pledge_reminders(
    sender: Sender,
    organization_id: int | None = None,
    now: datetime | None = None,
) -> dict[str, int]:
    now = now or datetime.now(timezone.utc)
    due = due_pledge_reminders(organization_id, now)
    return _send_all("pledges", due, pledge_message, sender, now)


# ---------- Pledge completion ----------

def due_completion_emails(organization_id: int | None = None) -> list[dict]:
    """Completed pledges whose donor has an email and has not been thanked yet."""
    return [
        {**p, "recipient": p["donor_email"], "donor_name": p["donor_name"] or "Donor"}
        for p in pledges.list_pledges(organization_id)
        if p["status"] == "completed" and p["donor_email"] and not p["completion_email_sent"]
    ]


def completion_message(pledge: dict) -> tuple[str, str]:
    currency = pledge.get("currency") or "ILS"
    subject = "Thank you for completing your pledge"
    body = (
        f"Dear {pledge['donor_name']},\n\n"
        f"You have completed your pledge of {fmt_money(pledge['total_amount'], currency)}.\n\n"
        f"Total: {fmt_money(pledge['total_amount'], currency)}\n"
        f"Paid: {fmt_money(pledge['amount_paid'], currency)}\n"
        "Status: Completed\n\n"
        "Thank you for your generosity!\n\n"
        f"{pledge['organization_name'] or ''}"
    )
    return subject, body.strip() + "\n"


def send_pledge_completion_email(sender: Sender, pledge_id: int, now: datetime | None = None) -> bool:
    """
    Thank the donor once a pledge is completed. Returns False when the pledge
    is still open, the donor has no email or the thank-you already went out.
    """
    now = now or datetime.now(timezone.utc)
    pledge = pledges.get_pledge(pledge_id)
    due = [p for p in due_completion_emails(pledge["organization_id"]) if p["id"] == pledge_id]
    if not due:
        logger.info("No completion email due for pledge %s", pledge_id)
        return False
    subject, body = completion_message(due[0])
    sender(due[0]["recipient"], subject, body)
    db.update_row("pledges", pledge_id, {"completion_email_sent": now.isoformat(timespec="seconds")},
                  ("completion_email_sent",))
    return True


def send_completion_emails(
    sender: Sender,
    organization_id: int | None = None,
    now: datetime | None = None,
) -> dict[str, int]:
    now = now or datetime.now(timezone.utc)
    due = due_completion_emails(organization_id)
    return _send_all("pledges", due, completion_message, sender, now, stamp="completion_email_sent")
