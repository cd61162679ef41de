"""Organizations, registration, settings and seat capacity."""

import unittest

import auth
import db
import organizations
from errors import CapacityExceeded, NotFoundError, ValidationError
from models import tier_for_member_estimate, tier_label
from tests.dbcase import DatabaseTestCase


class TierTestCase(unittest.TestCase):

    def test_member_estimate_boundaries(self):
        self.assertEqual(tier_for_member_estimate(0), "tier_1")
        self.assertEqual(tier_for_member_estimate(50), "tier_1")
        self.assertEqual(tier_for_member_estimate(51), "tier_2")
        self.assertEqual(tier_for_member_estimate(250), "tier_3")
        self.assertEqual(tier_for_member_estimate(251), "tier_4")
        self.assertEqual(tier_label("tier_3"), "Professional")


class OrganizationTestCase(DatabaseTestCase):

    def test_create_sets_tier_and_settings(self):
        org = self.make_org(member_count=120)
        self.assertEqual(organizations.get_organization(org)["subscription_tier"], "tier_3")
        self.assertEqual(organizations.get_settings(org)["default_currency"], "ILS")
        explicit = self.make_org("Small", member_count=500, subscription_tier="tier_1")
        self.assertEqual(organizations.get_organization(explicit)["subscription_tier"], "tier_1")

    def test_create_validation(self):
        with self.assertRaises(ValidationError):
            organizations.create_organization({"name": " ", "contact_email": "bad"})

    def test_update_list_delete(self):
        org = self.make_org()
        organizations.update_organization(org, {"city": "Jerusalem"})
        self.make_donor(org)
        row = organizations.list_organizations()[0]
        self.assertEqual((row["city"], row["donor_count"], row["user_count"]), ("Jerusalem", 1, 0))
        organizations.delete_organization(org)
        with self.assertRaises(NotFoundError):
            organizations.get_organization(org)

    def test_settings_upsert_and_currency_map(self):
        org = self.make_org()
        organizations.save_settings(org, {"default_currency": "USD"})
        organizations.save_settings(org, {"receipt_prefix": "BS"})
        settings = organizations.get_settings(org)
        self.assertEqual((settings["default_currency"], settings["receipt_prefix"]), ("USD", "BS"))
        self.assertEqual(organizations.currency_map(), {org: "USD"})
        with self.assertRaises(ValidationError):
            organizations.save_settings(org, {"default_currency": "XYZ"})
        with self.assertRaises(ValidationError):
            organizations.save_settings(org, {"surcharge_percent": 150})

    def test_settings_defaults_without_row(self):
        org = self.make_org()
        db.execute("DELETE FROM settings WHERE organization_id = ?", (org,))
        self.assertEqual(organizations.get_settings(org)["receipt_prefix"], "R")
        organizations.save_settings(org, {"zelle_name": "Beth Shalom"})
        self.assertEqual(organizations.get_settings(org)["zelle_name"], "Beth Shalom")

    def test_register_creates_inactive_org_and_suspended_admin(self):
        org = organizations.register_organization(
            "Ohr Torah", "Rabbi@Example.com", "password1", member_estimate=80, admin_first_name="Yosef"
        )
        row = organizations.get_organization(org)
        self.assertEqual((row["subscription_tier"], row["subscription_status"]), ("tier_2", "inactive"))
        self.assertEqual(row["contact_name"], "Yosef")

        identity = auth.load_identity("rabbi@example.com")
        self.assertEqual([(r.role, r.organization_id, r.suspended) for r in identity.roles], [("synagogue_admin", org, True)])
        self.assertEqual(identity.active_roles, ())
        self.assertTrue(auth.login("rabbi@example.com", "password1"))

    def test_register_reuses_existing_user(self):
        auth.create_user("rabbi@example.com", "password1")
        organizations.register_organization("Ohr Torah", "rabbi@example.com", "other-password")
        self.assertTrue(auth.login("rabbi@example.com", "password1"))

    def test_register_rejects_bad_email(self):
        with self.assertRaises(ValidationError):
            organizations.register_organization("Ohr Torah", "not-an-email", "password1")
        self.assertEqual(organizations.list_organizations(), [])

    def test_failed_registration_leaves_nothing_behind(self):
        for _ in range(2):
            with self.assertRaises(ValidationError) as ctx:
                organizations.register_organization("Shul", "rabbi@shul.org", "short")
            self.assertEqual(ctx.exception.issues, ["Password must be at least 8 characters."])
        self.assertEqual(organizations.list_organizations(), [])
        self.assertIsNone(auth.get_user_by_email("rabbi@shul.org"))

    def test_registration_collects_every_issue(self):
        with self.assertRaises(ValidationError) as ctx:
            organizations.register_organization(" ", "rabbi@shul.org", "short", member_estimate="lots")
        self.assertEqual(
            ctx.exception.issues,
            [
                "Organization name is required.",
                "Member count must be a number.",
                "Password must be at least 8 characters.",
            ],
        )
        self.assertEqual(organizations.list_organizations(), [])

    def test_member_count_must_be_numeric(self):
        with self.assertRaises(ValidationError) as ctx:
            organizations.create_organization({"name": "Shul", "member_count": "about fifty"})
        self.assertEqual(ctx.exception.issues, ["Member count must be a number."])
        org = self.make_org()
        with self.assertRaises(ValidationError):
            organizations.update_organization(org, {"member_count": "many"})

    def _bare_user(self, email):
        return db.execute(
            "INSERT INTO users(email, password_hash, created_at) VALUES(?,?,?)", (email, "x", db.now_iso())
        )

    def test_capacity(self):
        org = self.make_org(member_count=1)
        first = self._bare_user("a@example.com")
        auth.assign_role(first, "staff", org)
        self.assertEqual(organizations.seats_used(org), 1)

        for i in range(49):
            auth.assign_role(self._bare_user(f"u{i}@example.com"), "member", org)
        self.assertEqual(organizations.seats_used(org), 50)
        with self.assertRaises(CapacityExceeded):
            auth.assign_role(self._bare_user("extra@example.com"), "member", org)

        # another role for an existing member does not use a seat
        auth.assign_role(first, "admin", org)
        self.assertEqual(organizations.seats_used(org), 50)

    def test_set_subscription_validation(self):
        org = self.make_org()
        organizations.set_subscription(org, "tier_4", "active")
        row = organizations.get_organization(org)
        self.assertEqual((row["subscription_tier"], row["subscription_status"]), ("tier_4", "active"))
        with self.assertRaises(ValidationError):
            organizations.set_subscription(org, "tier_9")
        with self.assertRaises(ValidationError):
            organizations.set_subscription(org, status="frozen")


if __name__ == "__main__":
    unittest.main()
