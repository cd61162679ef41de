"""
models.py
Lightweight domain helpers (enums, subscription tiers, import dataclasses).
"""

from __future__ import annotations

from dataclasses import dataclass

# Backend enums (used for CHECK constraints and select boxes)
APP_ROLES = ("admin", "user", "super_admin", "synagogue_admin", "staff", "member")
DONATION_STATUSES = ("Pending", "Succeeded", "Failed", "Refunded", "Disputed")
DONATION_TYPES = ("Regular", "Nedarim", "Aliyot", "Yahrzeit", "Other")
PAYMENT_METHODS = ("Cash", "Check", "Transfer", "CreditCard", "Zelle", "Other")
PLEDGE_STATUSES = ("active", "completed", "cancelled")
SUBSCRIPTION_STATUSES = ("active", "inactive", "past_due", "cancelled")
CURRENCIES = ("ILS", "USD", "EUR", "GBP")

# Pledge frequency -> months between installments (0 = single payment)
PLEDGE_FREQUENCIES = {
    "monthly": 1,
    "quarterly": 3,
    "yearly": 12,
    "one-time": 0,
}

# Subscription tier -> (label, max members)
SUBSCRIPTION_TIERS = {
    "tier_1": ("Basic", 50),
    "tier_2": ("Standard", 100),
    "tier_3": ("Professional", 250),
    "tier_4": ("Enterprise", 1000),
}


def tier_for_member_estimate(count: int) -> str:
    if count <= 50:
        return "tier_1"
    if count <= 100:
        return "tier_2"
    if count <= 250:
        return "tier_3"
    return "tier_4"


def tier_capacity(tier: str) -> int:
    return SUBSCRIPTION_TIERS.get(tier, SUBSCRIPTION_TIERS["tier_1"])[1]


def tier_label(tier: str) -> str:
    return SUBSCRIPTION_TIERS.get(tier, (tier, 0))[0]


# ---------- Import inputs ----------

@dataclass(frozen=True)
class DonorInput:
    phone: str
    first_name: str | None = None
    last_name: str | None = None
    display_name: str | None = None
    email: str | None = None
    address_city: str | None = None
    notes: str | None = None

    @property
    def full_name(self) -> str:
        if self.display_name:
            return self.display_name
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


@dataclass(frozen=True)
class DonationInput:
    phone: str
    amount: float
    date: str | None = None
    type: str | None = None
    designation: str | None = None
    payment_method: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class PledgeInput:
    phone: str
    total_amount: float
    start_date: str | None = None
    frequency: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class YahrzeitInput:
    phone: str
    deceased_name: str
    hebrew_date: str
    secular_date: str
    relationship: str | None = None
    notes: str | None = None
    contact_email: str | None = None
    contact_phone: str | None = None
