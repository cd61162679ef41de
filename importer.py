"""
importer.py
Bulk import of donors, donations, pledges and yahrzeits from CSV/XLSX.

Pipeline: parse -> map columns -> validate -> simulate (no writes) -> commit.
Commit writes one record at a time; a failing record is logged as FAILED and
the run continues.
"""

from __future__ import annotations

import io
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Iterable, Sequence
from zipfile import BadZipFile

import pandas as pd
from openpyxl.utils.exceptions import InvalidFileException

import donations
import donors
import pledges
import yahrzeits
from errors import ValidationError
from models import DonationInput, DonorInput, PledgeInput, YahrzeitInput
from utils import is_iso_date, parse_date_value, rows_to_csv_bytes, rows_to_xlsx_bytes, to_amount, today_iso

logger = logging.getLogger(__name__)

IMPORT_KINDS = ("donors", "donations", "pledges", "yahrzeits")

# kind -> [(input field, spreadsheet header)]
IMPORT_FIELDS: dict[str, list[tuple[str, str]]] = {
    "donors": [
        ("phone", "Phone"),
        ("first_name", "First Name"),
        ("last_name", "Last Name"),
        ("display_name", "Display Name"),
        ("email", "Email"),
        ("address_city", "City"),
        ("notes", "Notes"),
    ],
    "donations": [
        ("phone", "Phone"),
        ("amount", "Amount"),
        ("date", "Date"),
        ("type", "Type"),
        ("designation", "Designation"),
        ("payment_method", "Payment Method"),
        ("notes", "Notes"),
    ],
    "pledges": [
        ("phone", "Phone"),
        ("total_amount", "Total Amount"),
        ("start_date", "Start Date"),
        ("frequency", "Frequency"),
        ("notes", "Notes"),
    ],
    "yahrzeits": [
        ("phone", "Phone"),
        ("deceased_name", "Deceased Name"),
        ("hebrew_date", "Hebrew Date"),
        ("secular_date", "Secular Date"),
        ("relationship", "Relationship"),
        ("notes", "Notes"),
        ("contact_email", "Contact Email"),
        ("contact_phone", "Contact Phone"),
    ],
}

REQUIRED_FIELDS = {
    "donors": ("phone",),
    "donations": ("phone", "amount"),
    "pledges": ("phone", "total_amount"),
    "yahrzeits": ("phone", "deceased_name", "hebrew_date", "secular_date"),
}

_ALIASES = {
    "phone": ("phonenumber", "mobile", "cell", "tel", "telephone"),
    "first_name": ("firstname", "first", "givenname"),
    "last_name": ("lastname", "last", "surname", "familyname"),
    "display_name": ("displayname", "name", "fullname"),
    "email": ("emailaddress", "mail"),
    "address_city": ("city", "addresscity", "town"),
    "amount": ("sum", "donation", "donationamount"),
    "total_amount": ("total", "pledge", "pledgeamount", "amount"),
    "payment_method": ("method", "paymentmethod", "payment"),
    "designation": ("campaign", "fund"),
    "deceased_name": ("deceased", "deceasedname", "nameofdeceased"),
    "secular_date": ("secular", "secular date", "dateofdeath", "gregoriandate"),
    "hebrew_date": ("hebrew", "hebrewdate"),
}

_INPUT_TYPES = {
    "donors": DonorInput,
    "donations": DonationInput,
    "pledges": PledgeInput,
    "yahrzeits": YahrzeitInput,
}

SAMPLE_ROWS = {
    "donors": {"Phone": "0501234567", "First Name": "David", "Last Name": "Cohen", "Display Name": "",
               "Email": "david@example.com", "City": "Jerusalem", "Notes": ""},
    "donations": {"Phone": "0501234567", "Amount": "180", "Date": "2024-01-15", "Type": "Regular",
                  "Designation": "Building fund", "Payment Method": "Cash", "Notes": ""},
    "pledges": {"Phone": "0501234567", "Total Amount": "1800", "Start Date": "2024-01-01",
                "Frequency": "monthly", "Notes": ""},
    "yahrzeits": {"Phone": "0501234567", "Deceased Name": "Avraham Cohen", "Hebrew Date": "5 Tevet 5770",
                  "Secular Date": "2009-12-22", "Relationship": "Father", "Notes": "",
                  "Contact Email": "", "Contact Phone": ""},
}


# ---------- Parse ----------

@dataclass
class ParseResult:
    rows: list[dict[str, str]]
    headers: list[str]
    warnings: list[str] = field(default_factory=list)


def _cell_text(value: Any) -> str:
    if value is None or value is pd.NaT:
        return ""
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
    if isinstance(value, (datetime, pd.Timestamp)):
        if value.hour == value.minute == value.second == 0:
            return value.date().isoformat()
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value).strip()


# Tried in order; latin-1 maps every byte, so it is the last resort.
CSV_ENCODINGS = ("utf-8-sig", "cp1255")


def _decode_csv(data: bytes) -> tuple[str, str]:
    for encoding in CSV_ENCODINGS:
        try:
            return data.decode(encoding), encoding
        except UnicodeDecodeError:
            continue
    return data.decode("latin-1"), "latin-1"


def _read_csv(data: bytes, warnings: list[str]) -> pd.DataFrame:
    text, encoding = _decode_csv(data)
    if encoding != "utf-8-sig":
        warnings.append(f"File is not UTF-8, read it as {encoding}")
    options = dict(header=None, dtype=str, keep_default_na=False, skip_blank_lines=False, engine="python")
    width = pd.read_csv(io.StringIO(text), nrows=1, **options).shape[1]
    trimmed: list[int] = []

    def trim(bad_line: list[str]) -> list[str]:
        trimmed.append(len(bad_line))
        return bad_line[:width]

    frame = pd.read_csv(io.StringIO(text), on_bad_lines=trim, **options)
    if trimmed:
        warnings.append(f"{len(trimmed)} row(s) had more values than headers; extra values were dropped")
    return frame


def parse_spreadsheet(data: bytes, filename: str) -> ParseResult:
    """
    Read the first sheet of an .xlsx file, or a CSV file (UTF-8, Hebrew
    Windows-1255 or Latin-1). The first row holds the headers; empty rows are
    skipped with a warning. Unreadable files come back as a warning, not an error.
    """
    name = filename.lower()
    if name.endswith(".xls"):
        return ParseResult(rows=[], headers=[], warnings=["Legacy .xls files are not supported; save as .xlsx or CSV"])

    warnings: list[str] = []
    try:
        if name.endswith((".xlsx", ".xlsm")):
            frame = pd.read_excel(io.BytesIO(data), header=None, sheet_name=0, engine="openpyxl")
        else:
            frame = _read_csv(data, warnings)
    except pd.errors.EmptyDataError:
        return ParseResult(rows=[], headers=[], warnings=["File is empty"])
    except (pd.errors.ParserError, ValueError, BadZipFile, InvalidFileException) as e:
        logger.warning("Could not read %s: %s", filename, e, extra={"component": "import"})
        return ParseResult(rows=[], headers=[], warnings=[f"Could not read {filename}: {e}"])

    table = [[_cell_text(v) for v in record] for record in frame.itertuples(index=False, name=None)]
    if not table:
        return ParseResult(rows=[], headers=[], warnings=warnings + ["File is empty"])

    headers = table[0]
    rows: list[dict[str, str]] = []
    for i, record in enumerate(table[1:], start=1):
        if not any(record):
            warnings.append(f"Row {i + 1}: Empty row, skipping")
            continue
        rows.append({h: (record[idx] if idx < len(record) else "") for idx, h in enumerate(headers)})
    return ParseResult(rows=rows, headers=headers, warnings=warnings)


def _key(text: str) -> str:
    return re.sub(r"[^a-z0-9]", "", text.lower())


def guess_mapping(headers: Sequence[str], kind: str) -> dict[str, str | None]:
    """Field -> header, matching on the field name, its template header or a known alias."""
    by_key = {_key(h): h for h in headers if h}
    mapping: dict[str, str | None] = {}
    used: set[str] = set()
    for field_name, header in IMPORT_FIELDS[kind]:
        candidates = [_key(header), _key(field_name), *(_key(a) for a in _ALIASES.get(field_name, ()))]
        match = next((by_key[c] for c in candidates if c in by_key and by_key[c] not in used), None)
        if match:
            used.add(match)
        mapping[field_name] = match
    return mapping


def missing_required(mapping: dict[str, str | None], kind: str) -> list[str]:
    return [f for f in REQUIRED_FIELDS[kind] if not mapping.get(f)]


def apply_mapping(rows: Iterable[dict[str, str]], mapping: dict[str, str | None], kind: str) -> list[Any]:
    """Turn header/value rows into the typed inputs for `kind`."""
    input_type = _INPUT_TYPES[kind]
    out = []
    for row in rows:
        values: dict[str, Any] = {}
        for field_name, _ in IMPORT_FIELDS[kind]:
            header = mapping.get(field_name)
            raw = (row.get(header) or "").strip() if header else ""
            if field_name in ("amount", "total_amount"):
                values[field_name] = to_amount(raw) if raw else 0.0
            elif field_name in REQUIRED_FIELDS[kind]:
                values[field_name] = raw
            else:
                values[field_name] = raw or None
        out.append(input_type(**values))
    return out


def template_xlsx(kind: str) -> bytes:
    return rows_to_xlsx_bytes({kind.capitalize(): [SAMPLE_ROWS[kind]]})


# ---------- Validate ----------

@dataclass
class RowIssues:
    row: Any
    issues: list[str]


@dataclass
class MergeCandidate:
    incoming: DonorInput
    existing_id: int
    reason: str  # "phone" | "email"


@dataclass
class LinkFailure:
    row: Any
    reason: str  # "missing_donor" | "invalid_amount" | "invalid_date" | "missing_required"


@dataclass
class DonorValidation:
    valid: list[DonorInput] = field(default_factory=list)
    to_merge: list[MergeCandidate] = field(default_factory=list)
    errors: list[RowIssues] = field(default_factory=list)


@dataclass
class LinkValidation:
    valid: list[Any] = field(default_factory=list)
    link_failed: list[LinkFailure] = field(default_factory=list)
    errors: list[RowIssues] = field(default_factory=list)


def _snapshot(existing: list[dict] | None, organization_id: int | None) -> list[dict]:
    return donors.existing_donor_snapshot(organization_id) if existing is None else existing


def _phone_map(existing: Iterable[dict]) -> dict[str, int]:
    out: dict[str, int] = {}
    for d in existing:
        phone = (d.get("phone") or "").strip()
        if phone:
            out.setdefault(phone, d["id"])
    return out


def _email_map(existing: Iterable[dict]) -> dict[str, int]:
    out: dict[str, int] = {}
    for d in existing:
        email = (d.get("email") or "").strip().lower()
        if email:
            out.setdefault(email, d["id"])
    return out


def validate_donors(
    rows: Sequence[DonorInput],
    organization_id: int | None = None,
    existing: list[dict] | None = None,
) -> DonorValidation:
    """
    Classify each row: an existing donor with the same phone wins, then one
    with the same email; otherwise a row without a phone is an error and the
    rest are new donors.
    """
    existing = _snapshot(existing, organization_id)
    phones = _phone_map(existing)
    emails = _email_map(existing)
    result = DonorValidation()
    for row in rows:
        issues = []
        phone = (row.phone or "").strip()
        if not phone:
            issues.append("Phone is required")
        if phone and phone in phones:
            result.to_merge.append(MergeCandidate(row, phones[phone], "phone"))
            continue
        email = (row.email or "").strip().lower()
        if email and email in emails:
            result.to_merge.append(MergeCandidate(row, emails[email], "email"))
            continue
        if issues:
            result.errors.append(RowIssues(row, issues))
        else:
            result.valid.append(row)
    return result


def _validate_linked(
    rows: Sequence[Any],
    amount_field: str,
    date_field: str,
    organization_id: int | None,
    existing: list[dict] | None,
) -> LinkValidation:
    phones = _phone_map(_snapshot(existing, organization_id))
    result = LinkValidation()
    for row in rows:
        issues = []
        phone = (row.phone or "").strip()
        if not phone:
            issues.append("Phone is required")
        elif phone not in phones:
            result.link_failed.append(LinkFailure(row, "missing_donor"))
            continue

        amount = getattr(row, amount_field)
        if not amount or math.isnan(amount) or amount <= 0:
            result.link_failed.append(LinkFailure(row, "invalid_amount"))
            continue

        when = getattr(row, date_field)
        if when and parse_date_value(when) is None:
            result.link_failed.append(LinkFailure(row, "invalid_date"))
            continue

        if issues:
            result.errors.append(RowIssues(row, issues))
        else:
            result.valid.append(row)
    return result


def validate_donations(
    rows: Sequence[DonationInput],
    organization_id: int | None = None,
    existing: list[dict] | None = None,
) -> LinkValidation:
    return _validate_linked(rows, "amount", "date", organization_id, existing)


def validate_pledges(
    rows: Sequence[PledgeInput],
    organization_id: int | None = None,
    existing: list[dict] | None = None,
) -> LinkValidation:
    return _validate_linked(rows, "total_amount", "start_date", organization_id, existing)


def validate_yahrzeits(
    rows: Sequence[YahrzeitInput],
    organization_id: int | None = None,
    existing: list[dict] | None = None,
) -> LinkValidation:
    phones = _phone_map(_snapshot(existing, organization_id))
    result = LinkValidation()
    for row in rows:
        if not all((row.phone, row.deceased_name, row.hebrew_date, row.secular_date)):
            result.link_failed.append(LinkFailure(row, "missing_required"))
            continue
        if row.phone.strip() not in phones:
            result.link_failed.append(LinkFailure(row, "missing_donor"))
            continue
        if not is_iso_date(row.secular_date):
            result.link_failed.append(LinkFailure(row, "invalid_date"))
            continue
        result.valid.append(row)
    return result


def validation_report(validation: DonorValidation | LinkValidation) -> list[dict]:
    """Flat rows describing every rejected or merged input, for display and download."""
    out = []
    for issue in validation.errors:
        out.append({"Phone": issue.row.phone, "Problem": "; ".join(issue.issues)})
    for failure in getattr(validation, "link_failed", []):
        out.append({"Phone": failure.row.phone, "Problem": failure.reason})
    for candidate in getattr(validation, "to_merge", []):
        out.append({"Phone": candidate.incoming.phone, "Problem": f"duplicate ({candidate.reason})"})
    return out


# ---------- Simulate ----------

@dataclass
class SimulationResult:
    to_add: int
    to_merge: int
    to_skip: int
    details: list[dict]

    @property
    def details_csv(self) -> bytes:
        return rows_to_csv_bytes(self.details)


def simulate_donors(validation: DonorValidation) -> SimulationResult:
    details = [
        {
            "Action": "ADD",
            "Phone": row.phone,
            "Name": row.full_name,
            "Email": row.email or "",
            "City": row.address_city or "",
        }
        for row in validation.valid
    ]
    details += [
        {
            "Action": "MERGE",
            "Phone": c.incoming.phone,
            "Name": c.incoming.full_name,
            "Email": c.incoming.email or "",
            "Existing ID": c.existing_id,
        }
        for c in validation.to_merge
    ]
    return SimulationResult(len(validation.valid), len(validation.to_merge), len(validation.errors), details)


def simulate_donations(validation: LinkValidation) -> SimulationResult:
    details = [
        {
            "Action": "ADD",
            "Phone": row.phone,
            "Amount": row.amount,
            "Date": row.date or today_iso(),
            "Type": row.type or "Regular",
            "Payment Method": row.payment_method or "Cash",
            "Designation": row.designation or "",
        }
        for row in validation.valid
    ]
    skipped = len(validation.errors) + len(validation.link_failed)
    return SimulationResult(len(validation.valid), 0, skipped, details)


def simulate_pledges(validation: LinkValidation) -> SimulationResult:
    details = [
        {
            "Action": "ADD",
            "Phone": row.phone,
            "Total Amount": row.total_amount,
            "Start Date": row.start_date or today_iso(),
            "Frequency": row.frequency or "monthly",
            "Notes": row.notes or "",
        }
        for row in validation.valid
    ]
    skipped = len(validation.errors) + len(validation.link_failed)
    return SimulationResult(len(validation.valid), 0, skipped, details)


def simulate_yahrzeits(validation: LinkValidation) -> SimulationResult:
    details = [
        {
            "Phone": row.phone,
            "Deceased Name": row.deceased_name,
            "Hebrew Date": row.hebrew_date,
            "Secular Date": row.secular_date,
            "Relationship": row.relationship or "",
            "Notes": row.notes or "",
            "Contact Email": row.contact_email or "",
            "Contact Phone": row.contact_phone or "",
            "Action": "Will Add",
        }
        for row in validation.valid
    ]
    skipped = len(validation.errors) + len(validation.link_failed)
    return SimulationResult(len(validation.valid), 0, skipped, details)


# ---------- Commit ----------

@dataclass(frozen=True)
class ImportProgress:
    processed: int
    total: int
    added: int
    merged: int
    skipped: int

    @property
    def fraction(self) -> float:
        return 1.0 if not self.total else self.processed / self.total


@dataclass
class CommitResult:
    added: int = 0
    merged: int = 0
    skipped: int = 0
    results: list[dict] = field(default_factory=list)

    @property
    def result_csv(self) -> bytes:
        return rows_to_csv_bytes(self.results)


ProgressCallback = Callable[[ImportProgress], None]


def _run(
    kind: str,
    items: Sequence[Any],
    total: int,
    result: CommitResult,
    write: Callable[[Any], dict],
    describe: Callable[[Any], dict],
    on_progress: ProgressCallback | None,
    processed: int = 0,
) -> int:
    """
    Write items one by one. `write` returns the result row for a success and
    sets the counters via its Status; any exception becomes a FAILED row.
    """
    for item in items:
        try:
            row = write(item)
            if row["Status"] == "MERGED":
                result.merged += 1
            else:
                result.added += 1
            result.results.append(row)
        except Exception as exc:  # noqa: BLE001
            result.skipped += 1
            result.results.append({"Status": "FAILED", **describe(item), "Error": str(exc)})
            logger.warning("Import %s: row %s failed: %s", kind, describe(item), exc)
        processed += 1
        if on_progress:
            on_progress(ImportProgress(processed, total, result.added, result.merged, result.skipped))
    return processed


def commit_donors(
    validation: DonorValidation,
    organization_id: int | None,
    created_by_user_id: int | None = None,
    on_progress: ProgressCallback | None = None,
) -> CommitResult:
    result = CommitResult()
    total = len(validation.valid) + len(validation.to_merge)

    def add(row: DonorInput) -> dict:
        donor_id = donors.create_donor(
            organization_id,
            {
                "phone": row.phone,
                "name": row.full_name or "Unknown",
                "first_name": row.first_name,
                "last_name": row.last_name,
                "display_name": row.display_name,
                "email": row.email,
                "address_city": row.address_city,
                "notes": row.notes,
            },
            created_by_user_id=created_by_user_id,
        )
        return {"Status": "ADDED", "Phone": row.phone, "Name": row.full_name, "Donor ID": donor_id}

    def merge(candidate: MergeCandidate) -> dict:
        incoming = candidate.incoming
        changes = {
            k: v
            for k, v in (
                ("first_name", incoming.first_name),
                ("last_name", incoming.last_name),
                ("display_name", incoming.display_name),
                ("email", incoming.email),
                ("address_city", incoming.address_city),
                ("notes", incoming.notes),
            )
            if v
        }
        if changes:
            donors.update_donor(candidate.existing_id, changes)
        return {"Status": "MERGED", "Phone": incoming.phone, "Existing ID": candidate.existing_id}

    processed = _run("donors", validation.valid, total, result, add, lambda r: {"Phone": r.phone}, on_progress)
    _run(
        "donors",
        validation.to_merge,
        total,
        result,
        merge,
        lambda c: {"Phone": c.incoming.phone},
        on_progress,
        processed,
    )
    logger.info(
        "Donor import: %d added, %d merged, %d failed",
        result.added,
        result.merged,
        result.skipped,
        extra={"organization_id": organization_id, "component": "import"},
    )
    return result


def _donor_lookup(organization_id: int | None) -> Callable[[str], int]:
    phones = _phone_map(donors.existing_donor_snapshot(organization_id))

    def lookup(phone: str) -> int:
        donor_id = phones.get((phone or "").strip())
        if not donor_id:
            raise ValidationError("Donor not found")
        return donor_id

    return lookup


def commit_donations(
    validation: LinkValidation,
    organization_id: int | None,
    on_progress: ProgressCallback | None = None,
) -> CommitResult:
    result = CommitResult()
    donor_for = _donor_lookup(organization_id)

    def add(row: DonationInput) -> dict:
        created = donations.create_donation(
            organization_id,
            donor_for(row.phone),
            row.amount,
            type=row.type or "Regular",
            payment_method=row.payment_method or "Cash",
            status="Succeeded",
            date=row.date,
            designation=row.designation,
            notes=row.notes,
        )
        return {
            "Status": "ADDED",
            "Phone": row.phone,
            "Amount": row.amount,
            "Receipt Number": created["receipt_number"],
            "Donation ID": created["id"],
        }

    _run(
        "donations",
        validation.valid,
        len(validation.valid),
        result,
        add,
        lambda r: {"Phone": r.phone, "Amount": r.amount},
        on_progress,
    )
    logger.info(
        "Donation import: %d added, %d failed",
        result.added,
        result.skipped,
        extra={"organization_id": organization_id, "component": "import"},
    )
    return result


def commit_pledges(
    validation: LinkValidation,
    organization_id: int | None,
    on_progress: ProgressCallback | None = None,
) -> CommitResult:
    result = CommitResult()
    donor_for = _donor_lookup(organization_id)

    def add(row: PledgeInput) -> dict:
        pledge_id = pledges.create_pledge(
            organization_id,
            donor_for(row.phone),
            row.total_amount,
            frequency=row.frequency or "monthly",
            start_date=row.start_date,
            notes=row.notes,
        )
        return {"Status": "ADDED", "Phone": row.phone, "Total Amount": row.total_amount, "Pledge ID": pledge_id}

    _run(
        "pledges",
        validation.valid,
        len(validation.valid),
        result,
        add,
        lambda r: {"Phone": r.phone, "Total Amount": r.total_amount},
        on_progress,
    )
    logger.info(
        "Pledge import: %d added, %d failed",
        result.added,
        result.skipped,
        extra={"organization_id": organization_id, "component": "import"},
    )
    return result


def commit_yahrzeits(
    validation: LinkValidation,
    organization_id: int | None,
    on_progress: ProgressCallback | None = None,
) -> CommitResult:
    result = CommitResult()
    donor_for = _donor_lookup(organization_id)

    def add(row: YahrzeitInput) -> dict:
        yahrzeit_id = yahrzeits.create_yahrzeit(
            organization_id,
            donor_for(row.phone),
            {
                "deceased_name": row.deceased_name,
                "hebrew_date": row.hebrew_date,
                "secular_date": row.secular_date,
                "relationship": row.relationship,
                "notes": row.notes,
                "contact_email": row.contact_email,
                "contact_phone": row.contact_phone,
            },
        )
        return {"Status": "SUCCESS", "Phone": row.phone, "Deceased Name": row.deceased_name, "Yahrzeit ID": yahrzeit_id}

    _run(
        "yahrzeits",
        validation.valid,
        len(validation.valid),
        result,
        add,
        lambda r: {"Phone": r.phone, "Deceased Name": r.deceased_name},
        on_progress,
    )
    logger.info(
        "Yahrzeit import: %d added, %d failed",
        result.added,
        result.skipped,
        extra={"organization_id": organization_id, "component": "import"},
    )
    return result
