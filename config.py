"""
config.py
Runtime configuration read from DONORDESK_* environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class AppConfig:
    """Runtime configuration for the application.

    Attributes
    ----------
    db_file:
        Location of the SQLite database.
    environment:
        One of ``development``, ``staging`` or ``production``.
    default_currency:
        Currency used when an organization has no settings row.
    page_size:
        Rows per page on list pages.
    upcoming_window_days:
        How far ahead the Yahrzeits page looks when "upcoming only" is on.
    reminder_lead_days:
        Days before a yahrzeit when the advance reminder goes out.
    log_level / log_json:
        Logging level name and whether to emit JSON lines.
    smtp_host / smtp_port / smtp_username / smtp_password:
        Outgoing mail server. Email sending is off while ``smtp_host`` is empty.
    smtp_from / smtp_from_name:
        Sender address and display name on outgoing mail.
    smtp_starttls:
        Upgrade the SMTP connection with STARTTLS before logging in.
    app_url:
        Public address of the app, used in invitation links.
    """

    db_file: Path
    environment: str = "development"
    default_currency: str = "ILS"
    page_size: int = 25
    upcoming_window_days: int = 30
    reminder_lead_days: int = 7
    log_level: str = "INFO"
    log_json: bool = False
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_from: str | None = None
    smtp_from_name: str = "DonorDesk"
    smtp_starttls: bool = True
    app_url: str = "http://localhost:8501"

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def email_enabled(self) -> bool:
        return bool(self.smtp_host and (self.smtp_from or self.smtp_username))


def _coerce_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        number = int(value)
    except ValueError:
        return default
    return number if number > 0 else default


def _coerce_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _coerce_str(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


def load_app_config(base_dir: str | None = None) -> AppConfig:
    """Load configuration from the environment.

    ``base_dir`` overrides the directory holding the default database file
    (the directory of this module).
    """

    base_path = Path(base_dir) if base_dir else Path(__file__).resolve().parent
    db_file = Path(os.environ.get("DONORDESK_DB_FILE", base_path / "donordesk.db"))

    return AppConfig(
        db_file=db_file,
        environment=os.environ.get("DONORDESK_ENVIRONMENT", "development"),
        default_currency=os.environ.get("DONORDESK_DEFAULT_CURRENCY", "ILS").strip().upper() or "ILS",
        page_size=_coerce_int(os.environ.get("DONORDESK_PAGE_SIZE"), 25),
        upcoming_window_days=_coerce_int(os.environ.get("DONORDESK_UPCOMING_WINDOW_DAYS"), 30),
        reminder_lead_days=_coerce_int(os.environ.get("DONORDESK_REMINDER_LEAD_DAYS"), 7),
        log_level=os.environ.get("DONORDESK_LOG_LEVEL", "INFO"),
        log_json=_coerce_bool(os.environ.get("DONORDESK_LOG_JSON"), False),
        smtp_host=_coerce_str(os.environ.get("DONORDESK_SMTP_HOST")),
        smtp_port=_coerce_int(os.environ.get("DONORDESK_SMTP_PORT"), 587),
        smtp_username=_coerce_str(os.environ.get("DONORDESK_SMTP_USERNAME")),
        smtp_password=os.environ.get("DONORDESK_SMTP_PASSWORD") or None,
        smtp_from=_coerce_str(os.environ.get("DONORDESK_SMTP_FROM")),
        smtp_from_name=_coerce_str(os.environ.get("DONORDESK_SMTP_FROM_NAME")) or "DonorDesk",
        smtp_starttls=_coerce_bool(os.environ.get("DONORDESK_SMTP_STARTTLS"), True),
        app_url=(_coerce_str(os.environ.get("DONORDESK_APP_URL")) or "http://localhost:8501").rstrip("/"),
    )
