"""
app.py
Streamlit donor management for synagogues and nonprofits (multi-organization).
Run: streamlit run app.py
"""

from __future__ import annotations

import smtplib
from datetime import date

import pandas as pd
import streamlit as st

import auth
import campaigns
import db
import donations
import donors
import homepage
import importer
import invites
import listing
import mailer
import organizations
import pledges
import reminders
import utils
import yahrzeits
from config import load_app_config
from errors import DonorDeskError
from logconfig import configure_logging
from models import (
    APP_ROLES,
    CURRENCIES,
    DONATION_STATUSES,
    DONATION_TYPES,
    PAYMENT_METHODS,
    PLEDGE_FREQUENCIES,
    PLEDGE_STATUSES,
    SUBSCRIPTION_STATUSES,
    SUBSCRIPTION_TIERS,
    tier_label,
)

CONFIG = load_app_config()
configure_logging(CONFIG)

st.set_page_config(page_title="DonorDesk", layout="wide")

ALL = "all"
LAYOUT_WEIGHTS = {"1": [1], "2": [1, 1], "3": [1, 1, 1], "1-2": [1, 2], "2-1": [2, 1]}


def init_once():
    # Initialize DB + default admin if needed
    default_hash = auth.hash_password("admin123")
    db.init_db(default_hash)


def require_login():
    if "logged_in" not in st.session_state:
        st.session_state.logged_in = False
    if "email" not in st.session_state:
        st.session_state.email = None


def logout():
    st.session_state.logged_in = False
    st.session_state.email = None
    st.session_state.pop("org_choice", None)
    st.success("Logged out.")


def login_screen():
    st.title("🔐 DonorDesk Login")

    token = st.query_params.get("invite")
    login_tab, register_tab, invite_tab = st.tabs(["Login", "Register organization", "Accept invite"])
    with login_tab:
        col1, col2 = st.columns([1, 1])
        with col1:
            email = st.text_input("Email", value=db.DEFAULT_ADMIN_EMAIL)
            password = st.text_input("Password", type="password")
            if st.button("Login", type="primary"):
                if auth.login(email.strip(), password):
                    st.session_state.logged_in = True
                    st.session_state.email = email.strip().lower()
                    st.rerun()
                else:
                    st.error("Invalid email or password.")

        with col2:
            st.info(
                "First run creates a default super admin:\n\n"
                f"- email: **{db.DEFAULT_ADMIN_EMAIL}**\n"
                "- password: **admin123**\n\n"
                "You will be forced to change it on first login."
            )

    with register_tab:
        registration_form()

    with invite_tab:
        accept_invite_form(token)


def registration_form():
    st.subheader("Register your organization")
    c1, c2 = st.columns(2)
    with c1:
        name = st.text_input("Organization name")
        estimate = st.number_input("Estimated members", min_value=0, value=50, step=10)
        st.caption(f"Plan: {tier_label(organizations.tier_for_member_estimate(int(estimate)))}")
        city = st.text_input("City")
    with c2:
        first = st.text_input("Your first name")
        last = st.text_input("Your last name")
        email = st.text_input("Your email")
        phone = st.text_input("Your phone")
        password = st.text_input("Choose a password", type="password")

    if st.button("Register", type="primary"):
        try:
            organizations.register_organization(
                name,
                email,
                password,
                member_estimate=int(estimate),
                admin_first_name=first,
                admin_last_name=last,
                admin_phone=phone,
                city=city,
            )
        except DonorDeskError as e:
            st.error(str(e))
            return
        st.success("Registration received. An administrator will activate your account.")


def accept_invite_form(token: str | None):
    st.subheader("Join an organization")
    if token:
        st.info("You have an invitation. Sign in with the invited email to accept it.")
    token = st.text_input("Invitation code", value=token or "", key="inv_token")
    c1, c2 = st.columns(2)
    with c1:
        email = st.text_input("Email the invitation was sent to", key="inv_email")
        password = st.text_input("Password (your existing one, or a new one)", type="password", key="inv_pw")
    with c2:
        first = st.text_input("First name (new accounts)", key="inv_first")
        last = st.text_input("Last name (new accounts)", key="inv_last")

    if st.button("Accept invitation", type="primary"):
        try:
            result = invites.accept_invite(token, email, password, first or None, last or None)
        except DonorDeskError as e:
            st.error(str(e))
            return
        st.session_state.logged_in = True
        st.session_state.email = email.strip().lower()
        st.session_state.org_choice = result["organization_id"]
        st.query_params.clear()
        st.rerun()


def force_change_password_screen():
    st.title("⚠️ Change Password (Required)")

    st.warning("You must change the default password before using the app.")
    new1 = st.text_input("New password", type="password")
    new2 = st.text_input("Confirm new password", type="password")

    if st.button("Update password", type="primary"):
        if new1 != new2:
            st.error("Passwords do not match.")
            return
        try:
            auth.change_password(st.session_state.email, new1)
        except DonorDeskError as e:
            st.error(str(e))
            return
        st.success("Password updated. You can continue.")
        st.rerun()


# ---------- Shared list-page helpers ----------

def currency_of():
    return listing.currency_resolver(organizations.currency_map(), CONFIG.default_currency)


def show_totals(totals: dict[str, float], label: str = "Total"):
    if not totals:
        return
    cols = st.columns(len(totals))
    for col, (cur, amount) in zip(cols, sorted(totals.items())):
        col.metric(f"{label} ({cur})", utils.fmt_money(amount, cur))


def sort_and_page(rows: list[dict], key: str, sort_fields: dict[str, tuple[str, str]]) -> listing.Page:
    """Sort selectors + pager. sort_fields maps label -> (field, kind)."""
    c1, c2, c3 = st.columns([2, 1, 1])
    with c1:
        label = st.selectbox("Sort by", list(sort_fields), key=f"{key}_sort")
    with c2:
        direction = st.radio("Order", ["asc", "desc"], horizontal=True, key=f"{key}_dir", index=1)
    field, kind = sort_fields[label]
    ordered = listing.sort_rows(rows, field, direction, kind)
    total_pages = listing.paginate(ordered, 1, CONFIG.page_size).total_pages
    with c3:
        page_no = st.number_input("Page", min_value=1, max_value=total_pages, value=1, step=1, key=f"{key}_page")
    page = listing.paginate(ordered, int(page_no), CONFIG.page_size)
    st.caption(f"Showing {page.start_index}-{page.end_index} of {page.total_rows}")
    return page


def show_table(rows: list[dict], columns: list[str]):
    if rows:
        df = pd.DataFrame(rows)
        st.dataframe(df[[c for c in columns if c in df.columns]], use_container_width=True, hide_index=True)
    else:
        st.caption("Nothing to show.")


def require_org(scope: int | None) -> bool:
    if scope is None:
        st.info("Select a single organization in the sidebar to add or import records.")
        return False
    return True


def donor_picker(scope: int | None, key: str) -> int | None:
    query = st.text_input("Find donor (name / phone / email)", key=f"{key}_q")
    found = donors.search_donors(query, scope)
    if not found:
        st.caption("No matching donors.")
        return None
    options = {f"{donors.donor_display_name(d)} ({d['phone'] or '-'}) - ID {d['id']}": d["id"] for d in found}
    return options[st.selectbox("Donor", list(options), key=f"{key}_donor")]


# ---------- Pages ----------

def dashboard_page(scope: int | None):
    st.header("📊 Dashboard")

    resolve = currency_of()
    today_rows = donations.donations_today(scope)
    all_pledges = [p for p in pledges.list_pledges(scope) if p["status"] == "active"]
    all_yahrzeits = yahrzeits.list_yahrzeits(scope)
    upcoming = yahrzeits.filter_yahrzeits(all_yahrzeits, upcoming_only=True, window=CONFIG.upcoming_window_days)

    c1, c2, c3 = st.columns(3)
    c1.metric("Donors", len(donors.list_donors(scope)))
    c2.metric("Active pledges", len(all_pledges))
    c3.metric(f"Yahrzeits in next {CONFIG.upcoming_window_days} days", len(upcoming))

    st.subheader("Donations today")
    show_totals(listing.totals_by_currency(today_rows, resolve=resolve))
    if not today_rows:
        st.caption("No donations recorded today.")

    st.subheader("Outstanding pledge balances")
    show_totals(listing.totals_by_currency(all_pledges, "balance_owed", resolve=resolve), "Balance")

    st.divider()

    st.subheader("Upcoming yahrzeits")
    for y in upcoming:
        y["next_date"] = yahrzeits.next_occurrence(y["secular_date"])
    show_table(
        listing.sort_rows(upcoming, "next_date", "asc", "date"),
        ["deceased_name", "hebrew_date", "next_date", "donor_name", "relationship"],
    )

    st.subheader("Donations by month")
    st.dataframe(utils.donation_summary_by_month(scope), use_container_width=True, hide_index=True)


def donor_form(scope: int | None, existing: dict | None = None):
    if existing:
        st.subheader(f"✏️ Edit Donor (ID: {existing['id']})")
    else:
        st.subheader("➕ Add Donor")

    existing = existing or {}
    c1, c2, c3 = st.columns(3)
    with c1:
        first = st.text_input("First name", value=existing.get("first_name") or "")
        last = st.text_input("Last name", value=existing.get("last_name") or "")
        display = st.text_input("Display name (optional)", value=existing.get("display_name") or "")
    with c2:
        phone = st.text_input("Phone", value=existing.get("phone") or "")
        email = st.text_input("Email", value=existing.get("email") or "")
        city = st.text_input("City", value=existing.get("address_city") or "")
    with c3:
        notes = st.text_area("Notes", value=existing.get("notes") or "")
        opt_out = st.checkbox("Opted out of communication", value=bool(existing.get("communication_opt_out")))

    values = {
        "first_name": first,
        "last_name": last,
        "display_name": display,
        "phone": phone,
        "email": email,
        "address_city": city,
        "notes": notes,
        "communication_opt_out": int(opt_out),
    }
    errors = donors.validate_donor_inputs(values)
    for e in errors:
        st.error(e)

    if st.button("Save donor", type="primary", disabled=bool(errors)):
        if existing:
            donors.update_donor(existing["id"], values)
            st.success("Donor updated.")
        else:
            user = auth.get_user_by_email(st.session_state.email)
            donors.create_donor(scope, values, created_by_user_id=user["id"] if user else None)
            st.success("Donor added.")
        st.session_state.edit_donor_id = None
        st.rerun()


def donors_page(scope: int | None):
    st.header("👥 Donors")

    rows = donors.list_donors(scope)
    with st.sidebar:
        st.subheader("Search")
        search = st.text_input("Search donors", key="donor_search")
    rows = listing.filter_rows(
        rows, search, ("name", "display_name", "phone", "email", "address_city", "organization_name")
    )
    page = sort_and_page(
        rows,
        "donors",
        {
            "Name": ("name", "string"),
            "Total donated": ("total_donated", "number"),
            "Last donation": ("last_donation_date", "date"),
            "City": ("address_city", "string"),
        },
    )
    columns = ["id", "name", "phone", "email", "address_city", "total_donated", "donation_count",
               "last_donation_amount", "last_donation_date"]
    if scope is None:
        columns.append("organization_name")
    show_table(page.rows, columns)
    st.download_button(
        "Download donors.csv",
        data=utils.rows_to_csv_bytes(rows, [(c, c) for c in columns]),
        file_name="donors.csv",
        mime="text/csv",
    )

    st.divider()

    colA, colB = st.columns([1, 2])
    with colA:
        st.subheader("Select donor")
        selected_id = st.selectbox("Donor ID", options=["(none)"] + [str(r["id"]) for r in page.rows])
    with colB:
        if selected_id != "(none)":
            st.subheader("Donor actions")
            c1, c2 = st.columns(2)
            with c1:
                if st.button("Edit"):
                    st.session_state.edit_donor_id = int(selected_id)
                    st.rerun()
            with c2:
                delete_confirm = st.checkbox("Confirm delete (removes donations, pledges, yahrzeits)", key="del_donor")
                if st.button("Delete", disabled=not delete_confirm):
                    donors.delete_donor(int(selected_id))
                    st.success("Donor deleted.")
                    st.rerun()

    st.divider()

    if st.session_state.get("edit_donor_id"):
        donor_form(scope, donors.get_donor(st.session_state.edit_donor_id))
        if st.button("Cancel edit"):
            st.session_state.edit_donor_id = None
            st.rerun()
    elif require_org(scope):
        donor_form(scope)

    st.divider()

    st.subheader("Possible duplicates")
    groups = donors.find_duplicate_groups(scope)
    if not groups:
        st.caption("No duplicates found.")
    for i, group in enumerate(groups):
        with st.expander(", ".join(donors.donor_display_name(d) for d in group)):
            show_table(group, ["id", "name", "phone", "email", "total_donated"])
            options = {f"{donors.donor_display_name(d)} - ID {d['id']}": d["id"] for d in group}
            keep = options[st.selectbox("Keep", list(options), key=f"dup_keep_{i}")]
            if st.button("Merge into selected", key=f"dup_merge_{i}"):
                donors.merge_donors(keep, [d["id"] for d in group if d["id"] != keep])
                st.success("Donors merged.")
                st.rerun()


def donations_page(scope: int | None):
    st.header("💰 Donations")

    rows = donations.list_donations(scope)
    with st.sidebar:
        st.subheader("Filters")
        search = st.text_input("Search", key="don_search")
        name = st.text_input("Name contains", key="don_name")
        phone = st.text_input("Phone contains", key="don_phone")
        email = st.text_input("Email contains", key="don_email")
        campaign = st.text_input("Campaign contains", key="don_campaign")
        names = campaigns.campaign_choices(scope)
        campaign_id = st.selectbox("Campaign", [ALL, *names], format_func=lambda c: names.get(c, "All"),
                                   key="don_campaign_id")
        date_from = st.date_input("From", value=None, key="don_from")
        date_to = st.date_input("To", value=None, key="don_to")
        min_amount = st.number_input("Min amount", min_value=0.0, value=0.0, key="don_min")
        max_amount = st.number_input("Max amount (0 = no limit)", min_value=0.0, value=0.0, key="don_max")
        dtype = st.selectbox("Type", [ALL, *DONATION_TYPES], key="don_type")
        method = st.selectbox("Method", [ALL, *PAYMENT_METHODS], key="don_method")
        status = st.selectbox("Status", [ALL, *DONATION_STATUSES], key="don_status")

    rows = listing.filter_rows(
        rows,
        search,
        ("donor_name", "donor_phone", "donor_email", "designation", "notes", "receipt_number", "organization_name"),
        contains={"donor_name": name, "donor_phone": phone, "donor_email": email, "campaign_label": campaign},
        equals={"type": dtype, "payment_method": method, "status": status, "campaign_id": campaign_id},
        date_field="date",
        date_from=date_from,
        date_to=date_to,
        amount_field="amount",
        min_amount=min_amount or None,
        max_amount=max_amount or None,
    )
    resolve = currency_of()
    for r in rows:
        r["currency"] = resolve(r)
        r["amount_label"] = utils.fmt_money(r["amount"], r["currency"])

    show_totals(listing.totals_by_currency(rows, resolve=resolve))
    st.caption(f"{len(rows)} donations from {listing.distinct_count(rows, 'donor_id')} donors")

    page = sort_and_page(
        rows,
        "donations",
        {
            "Date": ("date", "date"),
            "Amount": ("amount", "number"),
            "Name": ("donor_name", "string"),
            "Type": ("type", "string"),
            "Method": ("payment_method", "string"),
        },
    )
    columns = ["id", "donor_name", "donor_phone", "amount_label", "date", "type", "payment_method", "status",
               "campaign_label", "receipt_number", "notes"]
    export = list(donations.EXPORT_COLUMNS)
    if scope is None:
        columns.append("organization_name")
        export.append(("organization_name", "Organization"))
    show_table(page.rows, columns)
    st.download_button(
        "Download donations.csv",
        data=utils.rows_to_csv_bytes(rows, export),
        file_name="donations.csv",
        mime="text/csv",
    )

    st.divider()

    st.subheader("Update donation")
    c1, c2, c3 = st.columns(3)
    with c1:
        selected = st.selectbox("Donation ID", ["(none)"] + [str(r["id"]) for r in page.rows], key="don_sel")
    if selected != "(none)":
        with c2:
            new_status = st.selectbox("Status", DONATION_STATUSES, key="don_new_status")
            if st.button("Set status"):
                donations.set_status(int(selected), new_status)
                st.success("Status updated.")
                st.rerun()
        with c3:
            confirm = st.checkbox("Confirm delete", key="don_del_confirm")
            if st.button("Delete donation", disabled=not confirm):
                donations.delete_donation(int(selected))
                st.success("Donation deleted.")
                st.rerun()

    st.divider()

    st.subheader("➕ Add donation")
    if not require_org(scope):
        return
    donor_id = donor_picker(scope, "don_add")
    settings = organizations.get_settings(scope)
    c1, c2, c3 = st.columns(3)
    with c1:
        amount = st.number_input("Amount", min_value=0.0, value=0.0, step=18.0)
        currency = st.selectbox("Currency", CURRENCIES, index=CURRENCIES.index(settings["default_currency"])
                                if settings["default_currency"] in CURRENCIES else 0)
        when = st.date_input("Date", value=date.today()).isoformat()
    with c2:
        dtype = st.selectbox("Type", DONATION_TYPES, key="don_add_type")
        method = st.selectbox("Payment method", PAYMENT_METHODS, key="don_add_method")
        if method == "CreditCard" and settings.get("surcharge_enabled"):
            st.caption(f"Card fee: {utils.fmt_money(donations.compute_fee(amount, settings), currency)}")
    with c3:
        choices = campaigns.campaign_choices(scope)
        campaign_id = st.selectbox("Campaign", [None, *choices], format_func=lambda c: choices.get(c, "(none)"),
                                   key="don_add_campaign")
        designation = st.text_input("Designation")
        notes = st.text_input("Notes", key="don_add_notes")

    if st.button("Save donation", type="primary"):
        result = donations.create_donation(
            scope,
            donor_id,
            amount,
            currency=currency,
            type=dtype,
            payment_method=method,
            date=when,
            designation=designation,
            notes=notes,
            campaign_id=campaign_id,
        )
        st.success(f"Donation saved. Receipt {result['receipt_number']}")
        st.rerun()


def pledges_page(scope: int | None):
    st.header("🤝 Pledges")

    rows = pledges.list_pledges(scope)
    with st.sidebar:
        st.subheader("Filters")
        search = st.text_input("Search", key="pl_search")
        status = st.selectbox("Status", [ALL, *PLEDGE_STATUSES], key="pl_status")
        frequency = st.selectbox("Frequency", [ALL, *PLEDGE_FREQUENCIES], key="pl_freq")

    rows = listing.filter_rows(
        rows,
        search,
        ("donor_name", "donor_phone", "donor_email", "notes", "organization_name"),
        equals={"status": status, "frequency": frequency},
    )
    resolve = currency_of()
    for r in rows:
        r["currency"] = resolve(r)
        r["next_due"] = pledges.next_due_date(r)

    for cur, sums in sorted(listing.sum_by_currency(rows, ("total_amount", "amount_paid", "balance_owed"), resolve).items()):
        c1, c2, c3 = st.columns(3)
        c1.metric(f"Pledged ({cur})", utils.fmt_money(sums["total_amount"], cur))
        c2.metric(f"Paid ({cur})", utils.fmt_money(sums["amount_paid"], cur))
        c3.metric(f"Balance ({cur})", utils.fmt_money(sums["balance_owed"], cur))

    page = sort_and_page(
        rows,
        "pledges",
        {
            "Start date": ("start_date", "date"),
            "Total": ("total_amount", "number"),
            "Balance": ("balance_owed", "number"),
            "Donor": ("donor_name", "string"),
            "Next due": ("next_due", "date"),
        },
    )
    show_table(
        page.rows,
        ["id", "donor_name", "total_amount", "amount_paid", "balance_owed", "currency", "frequency", "start_date",
         "next_due", "status", "notes"],
    )
    st.download_button(
        "Download pledges.csv",
        data=utils.rows_to_csv_bytes(rows, pledges.EXPORT_COLUMNS),
        file_name="pledges.csv",
        mime="text/csv",
    )

    st.divider()

    c1, c2 = st.columns(2)
    with c1:
        selected = st.selectbox("Pledge ID", ["(none)"] + [str(r["id"]) for r in page.rows], key="pl_sel")
    if selected != "(none)":
        with c2:
            if st.button("Cancel pledge"):
                pledges.cancel_pledge(int(selected))
                st.success("Pledge cancelled.")
                st.rerun()
            if st.button("Recalculate from payments"):
                pledges.recompute_pledge(int(selected))
                st.rerun()
            confirm = st.checkbox("Confirm delete", key="pl_del_confirm")
            if st.button("Delete pledge", disabled=not confirm):
                pledges.delete_pledge(int(selected))
                st.success("Pledge deleted.")
                st.rerun()

    st.divider()

    st.subheader("➕ Add pledge")
    if not require_org(scope):
        return
    donor_id = donor_picker(scope, "pl_add")
    c1, c2, c3 = st.columns(3)
    with c1:
        total = st.number_input("Total amount", min_value=0.0, value=0.0, step=100.0)
    with c2:
        frequency = st.selectbox("Frequency", list(PLEDGE_FREQUENCIES), key="pl_add_freq")
        start = st.date_input("Start date", value=date.today(), key="pl_add_start").isoformat()
    with c3:
        reminder = st.checkbox("Send reminders", value=True)
        notes = st.text_input("Notes", key="pl_add_notes")
    if st.button("Save pledge", type="primary"):
        pledges.create_pledge(scope, donor_id, total, frequency, start, notes=notes, reminder_enabled=reminder)
        st.success("Pledge saved.")
        st.rerun()


def payments_page(scope: int | None):
    st.header("💳 Payments")

    rows = pledges.list_payments(scope)
    resolve = currency_of()
    show_totals(listing.totals_by_currency(rows, resolve=resolve))
    page = sort_and_page(
        rows,
        "payments",
        {"Date": ("date", "date"), "Amount": ("amount", "number"), "Donor": ("donor_name", "string")},
    )
    show_table(page.rows, ["id", "donor_name", "amount", "method", "date", "pledge_id", "reference_number", "notes"])

    selected = st.selectbox("Payment ID", ["(none)"] + [str(r["id"]) for r in page.rows], key="pay_sel")
    if selected != "(none)":
        confirm = st.checkbox("Confirm delete", key="pay_del_confirm")
        if st.button("Delete payment", disabled=not confirm):
            pledges.delete_payment(int(selected))
            st.success("Payment deleted.")
            st.rerun()

    st.divider()

    st.subheader("Record payment")
    if not require_org(scope):
        return
    open_pledges = [p for p in pledges.list_pledges(scope) if p["status"] == "active"]
    options = {"(no pledge)": None}
    options.update(
        {f"{p['donor_name']} - balance {p['balance_owed']:.2f} - pledge {p['id']}": p["id"] for p in open_pledges}
    )
    pledge_id = options[st.selectbox("Pledge", list(options))]
    donor_id = None if pledge_id else donor_picker(scope, "pay_add")

    c1, c2, c3, c4 = st.columns([1, 1, 1, 2])
    with c1:
        amount = st.number_input("Amount", min_value=0.0, value=0.0, key="pay_amount")
    with c2:
        pay_date = st.date_input("Date", value=date.today(), key="pay_date").isoformat()
    with c3:
        method = st.selectbox("Method", PAYMENT_METHODS, key="pay_method")
    with c4:
        reference = st.text_input("Reference number")
        notes = st.text_input("Notes", value="", key="pay_notes")

    if st.button("Record payment", type="primary"):
        pledges.record_payment(
            scope,
            amount,
            method,
            donor_id=donor_id,
            pledge_id=pledge_id,
            date=pay_date,
            reference_number=reference,
            notes=notes.strip() or None,
        )
        st.success("Payment recorded.")
        sender = mailer.get_sender(CONFIG)
        if pledge_id and sender:
            try:
                if reminders.send_pledge_completion_email(sender, pledge_id):
                    st.success("Pledge completed. A thank-you email was sent to the donor.")
            except (smtplib.SMTPException, OSError) as e:
                st.warning(f"Pledge completed, but the thank-you email failed: {e}")
        st.rerun()


def yahrzeits_page(scope: int | None):
    st.header("🕯️ Yahrzeits")

    rows = yahrzeits.list_yahrzeits(scope)
    metrics = yahrzeits.yahrzeit_metrics(rows)
    c1, c2, c3 = st.columns(3)
    c1.metric("Total", metrics["total"])
    c2.metric("This month", metrics["upcoming_this_month"])
    c3.metric("With reminders", metrics["with_reminders"])

    with st.sidebar:
        st.subheader("Filters")
        search = st.text_input("Search", key="yz_search")
        upcoming_only = st.checkbox(f"Next {CONFIG.upcoming_window_days} days only", key="yz_upcoming")

    rows = yahrzeits.filter_yahrzeits(rows, search, upcoming_only, window=CONFIG.upcoming_window_days)
    latest = yahrzeits.latest_donation_by_yahrzeit(donations.list_donations(scope))
    for r in rows:
        r["next_date"] = yahrzeits.next_occurrence(r["secular_date"])
        r["days_until"] = yahrzeits.days_until(r["secular_date"])
        last = latest.get(r["id"])
        r["last_donation"] = utils.fmt_money(last["amount"], last["currency"]) if last else ""

    columns = ["id", "deceased_name", "hebrew_date", "secular_date", "next_date", "days_until", "relationship",
               "donor_name", "last_donation"]
    for month, group in yahrzeits.group_by_month(rows).items():
        with st.expander(f"{month} ({len(group)})", expanded=upcoming_only):
            show_table(group, columns)

    st.divider()

    st.subheader("Record yahrzeit donation")
    selected = st.selectbox("Yahrzeit ID", ["(none)"] + [str(r["id"]) for r in rows], key="yz_sel")
    if selected != "(none)":
        c1, c2, c3 = st.columns(3)
        with c1:
            amount = st.number_input("Amount", min_value=0.0, value=0.0, key="yz_amount")
        with c2:
            method = st.selectbox("Method", PAYMENT_METHODS, key="yz_method")
        with c3:
            if st.button("Save donation", key="yz_donate"):
                result = yahrzeits.record_yahrzeit_donation(int(selected), amount, method)
                st.success(f"Donation saved. Receipt {result['receipt_number']}")
                st.rerun()
            confirm = st.checkbox("Confirm delete", key="yz_del_confirm")
            if st.button("Delete yahrzeit", disabled=not confirm):
                yahrzeits.delete_yahrzeit(int(selected))
                st.success("Yahrzeit deleted.")
                st.rerun()

    st.divider()

    st.subheader("➕ Add yahrzeit")
    if not require_org(scope):
        return
    donor_id = donor_picker(scope, "yz_add")
    c1, c2 = st.columns(2)
    with c1:
        deceased = st.text_input("Deceased name")
        hebrew = st.text_input("Hebrew date")
        secular = st.date_input("Secular date", value=None, min_value=date(1900, 1, 1))
        relationship = st.text_input("Relationship")
    with c2:
        contact_name = st.text_input("Contact name (optional)")
        contact_email = st.text_input("Contact email (optional)")
        contact_phone = st.text_input("Contact phone (optional)")
        reminder = st.checkbox("Send reminders", value=True, key="yz_reminder")
    if st.button("Save yahrzeit", type="primary"):
        yahrzeits.create_yahrzeit(
            scope,
            donor_id,
            {
                "deceased_name": deceased,
                "hebrew_date": hebrew,
                "secular_date": secular.isoformat() if secular else "",
                "relationship": relationship,
                "contact_name": contact_name,
                "contact_email": contact_email,
                "contact_phone": contact_phone,
                "reminder_enabled": int(reminder),
            },
        )
        st.success("Yahrzeit saved.")
        st.rerun()


def import_page(scope: int | None):
    st.header("📥 Import")
    if not require_org(scope):
        return

    kind = st.selectbox("What are you importing?", importer.IMPORT_KINDS)
    st.download_button(
        f"Download {kind} template",
        data=importer.template_xlsx(kind),
        file_name=f"{kind}_template.xlsx",
        mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    )

    uploaded = st.file_uploader("CSV or Excel file", type=["csv", "xlsx"])
    if not uploaded:
        return

    parsed = importer.parse_spreadsheet(uploaded.getvalue(), uploaded.name)
    for w in parsed.warnings:
        st.warning(w)
    if not parsed.rows:
        return
    st.caption(f"{len(parsed.rows)} rows")

    st.subheader("Map columns")
    guessed = importer.guess_mapping(parsed.headers, kind)
    mapping = {}
    cols = st.columns(3)
    choices = ["(skip)"] + parsed.headers
    for i, (field, label) in enumerate(importer.IMPORT_FIELDS[kind]):
        with cols[i % 3]:
            pick = st.selectbox(label, choices, index=choices.index(guessed[field]) if guessed[field] else 0,
                                key=f"map_{kind}_{field}")
            mapping[field] = None if pick == "(skip)" else pick
    missing = importer.missing_required(mapping, kind)
    if missing:
        st.error(f"Map the required columns: {', '.join(missing)}")
        return

    inputs = importer.apply_mapping(parsed.rows, mapping, kind)
    validate = {
        "donors": importer.validate_donors,
        "donations": importer.validate_donations,
        "pledges": importer.validate_pledges,
        "yahrzeits": importer.validate_yahrzeits,
    }[kind]
    simulate = {
        "donors": importer.simulate_donors,
        "donations": importer.simulate_donations,
        "pledges": importer.simulate_pledges,
        "yahrzeits": importer.simulate_yahrzeits,
    }[kind]
    validation = validate(inputs, organization_id=scope)
    preview = simulate(validation)

    c1, c2, c3 = st.columns(3)
    c1.metric("To add", preview.to_add)
    c2.metric("To merge", preview.to_merge)
    c3.metric("To skip", preview.to_skip)
    report = importer.validation_report(validation)
    if report:
        with st.expander(f"Problems ({len(report)})"):
            st.dataframe(pd.DataFrame(report), use_container_width=True, hide_index=True)
    st.download_button("Download preview", data=preview.details_csv, file_name=f"{kind}_preview.csv", mime="text/csv")

    if st.button("Import", type="primary", disabled=not (preview.to_add or preview.to_merge)):
        bar = st.progress(0.0, text="Importing…")

        def on_progress(p: importer.ImportProgress):
            bar.progress(p.fraction, text=f"{p.processed}/{p.total}: {p.added} added, {p.merged} merged, {p.skipped} failed")

        if kind == "donors":
            user = auth.get_user_by_email(st.session_state.email)
            result = importer.commit_donors(validation, scope, user["id"] if user else None, on_progress)
        else:
            commit = {
                "donations": importer.commit_donations,
                "pledges": importer.commit_pledges,
                "yahrzeits": importer.commit_yahrzeits,
            }[kind]
            result = commit(validation, scope, on_progress)
        st.success(f"Done: {result.added} added, {result.merged} merged, {result.skipped} failed.")
        st.download_button("Download results", data=result.result_csv, file_name=f"{kind}_results.csv", mime="text/csv")


def organizations_page(identity: auth.Identity):
    st.header("🏛️ Organizations")
    if not auth.is_super_admin(identity):
        st.info("Only super admins can manage organizations.")
        return

    rows = organizations.list_organizations()
    for r in rows:
        r["plan"] = tier_label(r["subscription_tier"])
    search = st.text_input("Search organizations")
    rows = listing.filter_rows(rows, search, ("name", "contact_name", "contact_email", "city"))
    show_table(rows, ["id", "name", "city", "contact_email", "plan", "subscription_status", "member_count",
                      "user_count", "donor_count"])

    st.divider()

    selected = st.selectbox("Organization", ["(none)"] + [f"{r['id']}: {r['name']}" for r in rows])
    if selected != "(none)":
        org = organizations.get_organization(int(selected.split(":")[0]))
        c1, c2, c3 = st.columns(3)
        with c1:
            tier = st.selectbox("Tier", list(SUBSCRIPTION_TIERS), index=list(SUBSCRIPTION_TIERS).index(org["subscription_tier"]),
                                format_func=lambda t: f"{tier_label(t)} (up to {SUBSCRIPTION_TIERS[t][1]})")
        with c2:
            status = st.selectbox("Status", SUBSCRIPTION_STATUSES, index=SUBSCRIPTION_STATUSES.index(org["subscription_status"]))
        with c3:
            st.metric("Seats used", f"{organizations.seats_used(org['id'])} / {SUBSCRIPTION_TIERS[tier][1]}")
        if st.button("Save subscription"):
            organizations.set_subscription(org["id"], tier, status)
            st.success("Subscription updated.")
            st.rerun()
        confirm = st.checkbox("Confirm delete (removes all of its data)", key="org_del")
        if st.button("Delete organization", disabled=not confirm):
            organizations.delete_organization(org["id"])
            st.success("Organization deleted.")
            st.rerun()

    st.divider()

    st.subheader("➕ Add organization")
    c1, c2 = st.columns(2)
    with c1:
        name = st.text_input("Name", key="org_name")
        city = st.text_input("City", key="org_city")
        members = st.number_input("Member estimate", min_value=0, value=50, key="org_members")
    with c2:
        contact = st.text_input("Contact name", key="org_contact")
        email = st.text_input("Contact email", key="org_email")
        phone = st.text_input("Contact phone", key="org_phone")
    if st.button("Create organization", type="primary"):
        organizations.create_organization(
            {"name": name, "city": city, "member_count": int(members), "contact_name": contact,
             "contact_email": email, "contact_phone": phone}
        )
        st.success("Organization created.")
        st.rerun()


def users_page(scope: int | None, identity: auth.Identity):
    st.header("🧑‍💼 Users")
    if not auth.is_org_admin(identity, scope):
        st.info("Only administrators can manage users.")
        return

    users = auth.list_team_users(scope)
    with st.sidebar:
        st.subheader("Filters")
        search = st.text_input("Search users", key="usr_search")
        status = st.selectbox("Status", [ALL, "active", "suspended"], key="usr_status")
        role = st.selectbox("Role", [ALL, *APP_ROLES], key="usr_role")
    users = listing.filter_rows(users, search, ("name", "email", "phone", "position"), equals={"status": status})
    if role != ALL:
        users = [u for u in users if any(r["role"] == role for r in u["roles"])]
    page = sort_and_page(
        users,
        "users",
        {
            "Name": ("name", "string"),
            "Email": ("email", "string"),
            "Phone": ("phone", "string"),
            "Position": ("position", "string"),
            "Status": ("status", "string"),
        },
    )
    show_table(page.rows, ["id", "name", "email", "phone", "position", "role_names", "status"])

    st.divider()

    st.subheader("Profiles and roles")
    for u in page.rows:
        with st.expander(f"{u['name'] or u['email']} ({u['status']})"):
            first, _, last = (u["name"] or "").partition(" ")
            p1, p2, p3, p4 = st.columns(4)
            new_first = p1.text_input("First name", value=first, key=f"usr_first_{u['id']}")
            new_last = p2.text_input("Last name", value=last, key=f"usr_last_{u['id']}")
            new_phone = p3.text_input("Phone", value=u["phone"] or "", key=f"usr_phone_{u['id']}")
            new_position = p4.text_input("Position", value=u["position"] or "", key=f"usr_pos_{u['id']}")
            if st.button("Save profile", key=f"usr_save_{u['id']}"):
                auth.update_user(
                    u["id"],
                    {
                        "first_name": new_first.strip() or None,
                        "last_name": new_last.strip() or None,
                        "phone": new_phone.strip() or None,
                        "position": new_position.strip() or None,
                    },
                )
                st.success("Profile saved.")
                st.rerun()
            for r in u["roles"]:
                c1, c2, c3 = st.columns([2, 1, 1])
                c1.write(f"**{r['role']}** at {r['organization_name'] or 'all organizations'}"
                         f"{' (suspended)' if r['suspended'] else ''}")
                if c2.button("Activate" if r["suspended"] else "Suspend", key=f"role_toggle_{r['id']}"):
                    auth.set_role_suspended(r["id"], not r["suspended"])
                    st.rerun()
                if c3.button("Remove", key=f"role_remove_{r['id']}"):
                    auth.remove_role(r["id"])
                    st.rerun()

    st.divider()

    st.subheader("➕ Add user")
    if not require_org(scope):
        return
    c1, c2 = st.columns(2)
    with c1:
        email = st.text_input("Email", key="usr_email")
        password = st.text_input("Initial password", type="password", key="usr_pw")
        new_role = st.selectbox("Role", [r for r in APP_ROLES if r != "super_admin"], key="usr_new_role")
    with c2:
        first = st.text_input("First name", key="usr_first")
        last = st.text_input("Last name", key="usr_last")
        phone = st.text_input("Phone", key="usr_phone")
        position = st.text_input("Position", key="usr_position")
    if st.button("Add user", type="primary"):
        user_id = auth.get_or_create_user(email, password, first_name=first, last_name=last, phone=phone,
                                          position=position)
        auth.assign_role(user_id, new_role, scope)
        st.success("User added.")
        st.rerun()

    st.divider()

    st.subheader("✉️ Invitations")
    sender = mailer.get_sender(CONFIG)
    c1, c2 = st.columns(2)
    with c1:
        invite_email = st.text_input("Invite email", key="inv_new_email")
    with c2:
        invite_role = st.selectbox("Role", [r for r in APP_ROLES if r != "super_admin"], key="inv_new_role")
    if st.button("Send invitation"):
        invite = invites.create_invite(scope, invite_email, invite_role, identity.user_id)
        link = invites.invite_link(invite, CONFIG.app_url)
        if sender is None:
            st.info(f"Email is not configured. Share this link with {invite['email']}: {link}")
        else:
            try:
                invites.send_invite(sender, invite, CONFIG.app_url)
                st.success(f"Invitation sent to {invite['email']}.")
            except (smtplib.SMTPException, OSError) as e:
                st.warning(f"Invitation created but the email failed ({e}). Share this link instead: {link}")

    rows = invites.list_invites(scope)
    show_table(rows, ["id", "email", "role", "status", "invited_by_email", "expires_at", "accepted_at"])
    open_ids = [r["id"] for r in rows if r["status"] == "pending"]
    if open_ids:
        c1, c2 = st.columns([2, 1])
        cancel_id = c1.selectbox("Pending invitation", open_ids, key="inv_cancel_id")
        if c2.button("Cancel invitation"):
            invites.cancel_invite(cancel_id)
            st.success("Invitation cancelled.")
            st.rerun()


def campaign_form(existing: dict | None = None) -> dict | None:
    """Campaign fields; returns the values when the form is submitted."""
    existing = existing or {}
    key = f"camp_{existing.get('id', 'new')}"
    c1, c2 = st.columns(2)
    with c1:
        name = st.text_input("Name", value=existing.get("name") or "", key=f"{key}_name")
        goal = st.number_input("Goal (0 = no goal)", min_value=0.0, value=float(existing.get("goal_amount") or 0),
                               step=100.0, key=f"{key}_goal")
        banner = st.text_input("Banner image URL", value=existing.get("banner_url") or "", key=f"{key}_banner")
    with c2:
        start = st.date_input("Start date", value=utils.parse_date_value(existing.get("start_date")),
                              key=f"{key}_start")
        end = st.date_input("End date", value=utils.parse_date_value(existing.get("end_date")), key=f"{key}_end")
        description = st.text_area("Description", value=existing.get("description") or "", key=f"{key}_desc")
    if not st.button("Save campaign", type="primary", key=f"{key}_save"):
        return None
    return {
        "name": name,
        "goal_amount": goal or None,
        "banner_url": banner,
        "start_date": start.isoformat() if start else None,
        "end_date": end.isoformat() if end else None,
        "description": description,
    }


def campaigns_page(scope: int | None):
    st.header("🎯 Campaigns")

    rows = campaigns.list_campaigns(scope)
    resolve = currency_of()
    if not rows:
        st.caption("No campaigns yet.")
    for c in rows:
        currency = resolve(c)
        with st.expander(f"{c['name']}{'' if c['running'] else ' (not running)'}"):
            if c["banner_url"]:
                st.image(c["banner_url"], use_container_width=True)
            if c["description"]:
                st.write(c["description"])
            m1, m2, m3 = st.columns(3)
            m1.metric("Raised", utils.fmt_money(c["raised"], currency))
            m2.metric("Donations", c["donation_count"])
            m3.metric("Donors", c["donor_count"])
            if c["progress"] is not None:
                st.progress(c["progress"] / 100,
                            text=f"{c['progress']}% of {utils.fmt_money(c['goal_amount'], currency)}")
            st.caption(f"{c['start_date'] or 'open'} to {c['end_date'] or 'open'}"
                       + (f" · {c['organization_name']}" if scope is None else ""))
            show_table(donations.list_donations(scope, campaign_id=c["id"]),
                       ["date", "donor_name", "amount", "status", "receipt_number"])

            values = campaign_form(c)
            if values is not None:
                campaigns.update_campaign(c["id"], values)
                st.success("Campaign saved.")
                st.rerun()
            confirm = st.checkbox("Confirm delete", key=f"camp_del_confirm_{c['id']}")
            if st.button("Delete campaign", disabled=not confirm, key=f"camp_del_{c['id']}"):
                campaigns.delete_campaign(c["id"])
                st.success("Campaign deleted. Its donations were kept.")
                st.rerun()

    st.divider()

    st.subheader("➕ Add campaign")
    if not require_org(scope):
        return
    values = campaign_form()
    if values is not None:
        campaigns.create_campaign(scope, values)
        st.success("Campaign created.")
        st.rerun()


def render_home(page: dict | None, lang: str):
    if not page:
        st.caption("No home page yet.")
        return
    st.title(homepage.localized(page["title"], lang, "Welcome"))
    if page.get("hero_image_url"):
        st.image(page["hero_image_url"], use_container_width=True)
    for row in page["content"]["rows"]:
        cols = st.columns(LAYOUT_WEIGHTS.get(row["layout"], [1]))
        for col, column in zip(cols, row["columns"]):
            with col:
                for block in column["blocks"]:
                    caption = homepage.localized(block.get("caption"), lang)
                    if block["type"] == "text":
                        st.markdown(homepage.localized(block.get("content"), lang))
                    elif block["type"] == "image" and block.get("src"):
                        st.image(block["src"], caption=caption or None)
                    elif block["type"] == "video" and block.get("embedUrl"):
                        st.video(block["embedUrl"])
                        if caption:
                            st.caption(caption)


def home_editor(page: dict, lang: str, key: str) -> tuple[dict, str | None, dict]:
    """Edit title, hero image and the content tree held in session state."""
    draft_key = f"home_draft_{key}"
    if draft_key not in st.session_state:
        st.session_state[draft_key] = page["content"]
    content = st.session_state[draft_key]

    title = homepage.set_localized(page["title"], lang, st.text_input(f"Title ({lang})",
                                   value=homepage.localized(page["title"], lang)))
    hero = st.text_input("Hero image URL", value=page.get("hero_image_url") or "") or None
    targets = {
        (row["id"], column["id"]): f"Row {r + 1}, column {c + 1}"
        for r, row in enumerate(content["rows"])
        for c, column in enumerate(row["columns"])
    }

    for row in content["rows"]:
        st.markdown("---")
        c1, c2, c3, c4 = st.columns([2, 1, 1, 1])
        layouts = list(homepage.ROW_LAYOUTS)
        layout = c1.selectbox("Layout", layouts, index=layouts.index(row["layout"]), key=f"lay_{row['id']}")
        if layout != row["layout"]:
            st.session_state[draft_key] = homepage.change_row_layout(content, row["id"], layout)
            st.rerun()
        if c2.button("↑", key=f"up_{row['id']}"):
            st.session_state[draft_key] = homepage.move_row(content, row["id"], -1)
            st.rerun()
        if c3.button("↓", key=f"down_{row['id']}"):
            st.session_state[draft_key] = homepage.move_row(content, row["id"], 1)
            st.rerun()
        if c4.button("Remove row", key=f"rm_{row['id']}"):
            st.session_state[draft_key] = homepage.remove_row(content, row["id"])
            st.rerun()

        cols = st.columns(len(row["columns"]))
        for col, column in zip(cols, row["columns"]):
            with col:
                for block in column["blocks"]:
                    bid = block["id"]
                    if block["type"] == "text":
                        text = st.text_area(f"Text ({lang})", value=homepage.localized(block.get("content"), lang),
                                            key=f"txt_{bid}")
                        patch = {"content": homepage.set_localized(block.get("content"), lang, text)}
                    elif block["type"] == "image":
                        patch = {"src": st.text_input("Image URL", value=block.get("src", ""), key=f"src_{bid}")}
                    else:
                        patch = {"embedUrl": st.text_input("Video URL", value=block.get("embedUrl", ""), key=f"vid_{bid}")}
                    if block["type"] != "text":
                        cap = st.text_input(f"Caption ({lang})", value=homepage.localized(block.get("caption"), lang),
                                            key=f"cap_{bid}")
                        patch["caption"] = homepage.set_localized(block.get("caption"), lang, cap)
                    content = homepage.update_block(content, row["id"], column["id"], bid, patch)
                    if st.button("Delete block", key=f"del_{bid}"):
                        st.session_state[draft_key] = homepage.remove_block(content, row["id"], column["id"], bid)
                        st.rerun()
                    here = (row["id"], column["id"])
                    target = st.selectbox("Move to", list(targets), index=list(targets).index(here),
                                          format_func=targets.get, key=f"mv_{bid}")
                    if target != here and st.button("Move block", key=f"mvb_{bid}"):
                        st.session_state[draft_key] = homepage.move_block(content, bid, *target)
                        st.rerun()
                factories = {"Text": homepage.text_block, "Image": lambda: homepage.image_block(""),
                             "Video": lambda: homepage.video_block("")}
                kind = st.selectbox("New block", list(factories), key=f"new_{column['id']}")
                if st.button("Add block", key=f"add_{column['id']}"):
                    st.session_state[draft_key] = homepage.add_block(content, row["id"], column["id"], factories[kind]())
                    st.rerun()
    st.session_state[draft_key] = content

    if st.button("Add row"):
        st.session_state[draft_key] = homepage.add_row(content)
        st.rerun()
    return title, hero, content


def home_page(scope: int | None, identity: auth.Identity):
    st.header("🏠 Home page")
    lang = st.radio("Language", ["en", "he"], horizontal=True)
    can_edit = auth.is_org_admin(identity, scope)
    user_id = identity.user_id

    view_tab, edit_tab = st.tabs(["View", "Edit"])
    with view_tab:
        render_home(homepage.fetch_effective_page(scope), lang)

    with edit_tab:
        if not can_edit:
            st.info("Only administrators can edit the home page.")
            return
        if scope is None:
            page = homepage.fetch_global_page()
            st.caption("Editing the global template used by organizations without their own page.")
        else:
            page = homepage.fetch_org_page(scope)
            if not page:
                st.info("This organization uses the global home page.")
                if st.button("Clone from global to customize"):
                    homepage.clone_global_to_org(scope, user_id)
                    st.rerun()
                return
        page = page or {"title": {}, "hero_image_url": None, "content": homepage.make_default_content()}
        key = "global" if scope is None else str(scope)
        title, hero, content = home_editor(page, lang, key)
        if st.button("Save home page", type="primary"):
            if scope is None:
                homepage.save_global_page(title, hero, content, user_id)
            else:
                homepage.save_org_page(scope, title, hero, content, user_id)
            st.session_state.pop(f"home_draft_{key}", None)
            st.success("Home page saved.")
            st.rerun()


def reminders_page(scope: int | None):
    st.header("⏰ Reminders")

    sender = mailer.get_sender(CONFIG)
    if sender is None:
        st.warning("Email is not configured (DONORDESK_SMTP_HOST, DONORDESK_SMTP_FROM). Reminders cannot be sent.")

    st.subheader(f"Yahrzeits (today and in {CONFIG.reminder_lead_days} days)")
    due_y = reminders.due_yahrzeit_reminders(lead_days=CONFIG.reminder_lead_days, organization_id=scope)
    show_table(due_y, ["deceased_name", "next_date", "days_until", "donor_name", "recipient"])
    if st.button("Send yahrzeit reminders", disabled=sender is None or not due_y):
        run = reminders.send_yahrzeit_reminders(sender, lead_days=CONFIG.reminder_lead_days, organization_id=scope)
        st.success(f"{run['sent']} sent, {run['failed']} failed of {run['total']}.")

    st.divider()

    st.subheader("Pledges with a balance")
    due_p = reminders.due_pledge_reminders(scope)
    show_table(due_p, ["donor_name", "recipient", "total_amount", "amount_paid", "balance_owed"])
    if st.button("Send pledge reminders", disabled=sender is None or not due_p):
        run = reminders.send_pledge_reminders(sender, organization_id=scope)
        st.success(f"{run['sent']} sent, {run['failed']} failed of {run['total']}.")

    st.divider()

    st.subheader("Completed pledges awaiting a thank-you")
    due_c = reminders.due_completion_emails(scope)
    show_table(due_c, ["donor_name", "recipient", "total_amount", "amount_paid"])
    if st.button("Send thank-you emails", disabled=sender is None or not due_c):
        run = reminders.send_completion_emails(sender, scope)
        st.success(f"{run['sent']} sent, {run['failed']} failed of {run['total']}.")


def settings_page(scope: int | None, identity: auth.Identity):
    st.header("⚙️ Settings")

    st.subheader("Change password")
    p1 = st.text_input("New password", type="password")
    p2 = st.text_input("Confirm new password", type="password")
    if st.button("Update password", type="primary"):
        if p1 != p2:
            st.error("Passwords do not match.")
        else:
            auth.change_password(st.session_state.email, p1)
            st.success("Password updated.")

    if scope is None or not auth.is_org_admin(identity, scope):
        return

    st.divider()

    st.subheader("Organization settings")
    s = organizations.get_settings(scope)
    c1, c2 = st.columns(2)
    with c1:
        currency = st.selectbox("Default currency", CURRENCIES,
                                index=CURRENCIES.index(s["default_currency"]) if s["default_currency"] in CURRENCIES else 0)
        prefix = st.text_input("Receipt prefix", value=s["receipt_prefix"] or "R")
        surcharge = st.checkbox("Add card surcharge", value=bool(s["surcharge_enabled"]))
        percent = st.number_input("Surcharge %", min_value=0.0, max_value=100.0, value=float(s["surcharge_percent"] or 0))
        fixed = st.number_input("Surcharge fixed amount", min_value=0.0, value=float(s["surcharge_fixed"] or 0))
    with c2:
        zelle_name = st.text_input("Zelle name", value=s["zelle_name"] or "")
        zelle_to = st.text_input("Zelle email or phone", value=s["zelle_email_or_phone"] or "")
        zelle_note = st.text_input("Zelle note", value=s["zelle_note"] or "")
    if st.button("Save settings"):
        organizations.save_settings(
            scope,
            {
                "default_currency": currency,
                "receipt_prefix": prefix.strip() or "R",
                "surcharge_enabled": int(surcharge),
                "surcharge_percent": percent,
                "surcharge_fixed": fixed or None,
                "zelle_name": zelle_name or None,
                "zelle_email_or_phone": zelle_to or None,
                "zelle_note": zelle_note or None,
            },
        )
        st.success("Settings saved.")

    st.divider()

    st.subheader("Sample data")
    st.caption("Insert 3 sample donors with donations, a pledge and a yahrzeit (adds new rows each run).")
    if st.button("Insert sample data"):
        utils.insert_sample_data(scope)
        st.success("Sample data inserted.")
        st.rerun()


def org_switcher(identity: auth.Identity) -> int | None:
    org_ids = auth.organization_ids(identity)
    names = {o["id"]: o["name"] for o in organizations.list_organizations()}
    options = ([ALL] if auth.is_super_admin(identity) else []) + org_ids
    if not options:
        return auth.resolve_scope(identity, None)
    current = st.session_state.get("org_choice", options[0])
    choice = st.sidebar.selectbox(
        "Organization",
        options,
        index=options.index(current) if current in options else 0,
        format_func=lambda o: "All organizations" if o == ALL else names.get(o, str(o)),
    )
    st.session_state.org_choice = choice
    return auth.resolve_scope(identity, choice)


def main_app():
    identity = auth.load_identity(st.session_state.email)

    st.sidebar.title("🕍 DonorDesk")
    st.sidebar.caption(f"Logged in as: {identity.name}")

    try:
        scope = org_switcher(identity)
    except DonorDeskError as e:
        st.error(str(e))
        return

    pages = ["Dashboard", "Donors", "Donations", "Campaigns", "Pledges", "Payments", "Yahrzeits", "Import",
             "Reminders", "Organizations", "Users", "Home page", "Settings"]
    if "page" not in st.session_state:
        st.session_state.page = "Dashboard"
    st.session_state.page = st.sidebar.radio("Navigate", pages, index=pages.index(st.session_state.page))

    if st.sidebar.button("Logout"):
        logout()
        st.rerun()

    page = st.session_state.page
    try:
        if page == "Dashboard":
            dashboard_page(scope)
        elif page == "Donors":
            donors_page(scope)
        elif page == "Donations":
            donations_page(scope)
        elif page == "Campaigns":
            campaigns_page(scope)
        elif page == "Pledges":
            pledges_page(scope)
        elif page == "Payments":
            payments_page(scope)
        elif page == "Yahrzeits":
            yahrzeits_page(scope)
        elif page == "Import":
            import_page(scope)
        elif page == "Reminders":
            reminders_page(scope)
        elif page == "Organizations":
            organizations_page(identity)
        elif page == "Users":
            users_page(scope, identity)
        elif page == "Home page":
            home_page(scope, identity)
        elif page == "Settings":
            settings_page(scope, identity)
    except DonorDeskError as e:
        st.error(str(e))


# --------- App entry ---------

def run():
    init_once()
    require_login()

    if not st.session_state.logged_in:
        login_screen()
        return

    # Users flagged at creation (the seeded admin) must pick a new password first
    if auth.must_change_password(st.session_state.email):
        force_change_password_screen()
        return

    main_app()


if __name__ == "__main__":
    run()
