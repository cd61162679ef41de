"""Donations: receipts, card surcharge, status changes and summaries."""

import unittest

import donations
import organizations
import utils
from errors import NotFoundError, ValidationError
from tests.dbcase import DatabaseTestCase


class ComputeFeeTestCase(unittest.TestCase):

    settings = {"surcharge_enabled": 1, "surcharge_percent": 3, "surcharge_fixed": 0.5}

    def test_card_fee(self):
        self.assertEqual(donations.compute_fee(100, self.settings, "CreditCard"), 3.5)

    def test_no_fee_for_other_methods_or_when_disabled(self):
        self.assertEqual(donations.compute_fee(100, self.settings, "Cash"), 0.0)
        self.assertEqual(donations.compute_fee(100, {**self.settings, "surcharge_enabled": 0}), 0.0)


class DonationTestCase(DatabaseTestCase):

    def setUp(self):
        super().setUp()
        self.org = self.make_org()
        self.donor_id = self.make_donor(self.org)

    def test_receipt_numbers_are_sequential_per_year(self):
        first = donations.create_donation(self.org, self.donor_id, 180, date="2024-03-01")
        second = donations.create_donation(self.org, self.donor_id, 36, date="2024-05-01")
        other_year = donations.create_donation(self.org, self.donor_id, 18, date="2025-01-02")
        self.assertEqual(first["receipt_number"], "R-2024-00001")
        self.assertEqual(second["receipt_number"], "R-2024-00002")
        self.assertEqual(other_year["receipt_number"], "R-2025-00001")

    def test_pending_donation_gets_receipt_when_it_succeeds(self):
        created = donations.create_donation(self.org, self.donor_id, 50, status="Pending", date="2024-03-01")
        self.assertIsNone(created["receipt_number"])
        donations.set_status(created["id"], "Succeeded")
        self.assertEqual(donations.get_donation(created["id"])["receipt_number"], "R-2024-00001")

    def test_currency_and_surcharge_come_from_settings(self):
        organizations.save_settings(
            self.org,
            {"default_currency": "USD", "receipt_prefix": "BS", "surcharge_enabled": 1, "surcharge_percent": 2},
        )
        created = donations.create_donation(self.org, self.donor_id, 100, payment_method="CreditCard", date="2024-01-01")
        donation = donations.get_donation(created["id"])
        self.assertEqual(donation["currency"], "USD")
        self.assertEqual((donation["fee"], donation["net_amount"]), (2.0, 98.0))
        self.assertEqual(created["receipt_number"], "BS-2024-00001")

        donations.update_donation(created["id"], {"payment_method": "Cash"})
        donation = donations.get_donation(created["id"])
        self.assertEqual((donation["fee"], donation["net_amount"]), (0.0, 100.0))

    def test_missing_date_defaults_to_today(self):
        created = donations.create_donation(self.org, self.donor_id, 10)
        self.assertEqual(donations.get_donation(created["id"])["date"], utils.today_iso())
        self.assertEqual([d["id"] for d in donations.donations_today(self.org)], [created["id"]])

    def test_validation(self):
        with self.assertRaises(ValidationError) as ctx:
            donations.create_donation(self.org, self.donor_id, -1, type="Bogus")
        self.assertEqual(ctx.exception.issues, ["Amount must be greater than 0.", "Unknown donation type: Bogus"])
        with self.assertRaises(NotFoundError):
            donations.create_donation(self.org, 999, 10)

    def test_donor_from_another_organization(self):
        other = self.make_org("Ohr Torah")
        with self.assertRaises(ValidationError):
            donations.create_donation(other, self.donor_id, 10)

    def test_list_and_monthly_summary(self):
        donations.create_donation(self.org, self.donor_id, 100, date="2024-01-05")
        donations.create_donation(self.org, self.donor_id, 50, date="2024-01-20")
        donations.create_donation(self.org, self.donor_id, 70, date="2024-02-01", status="Failed")
        rows = donations.list_donations(self.org)
        self.assertEqual(rows[0]["donor_name"], "David Cohen")
        self.assertEqual(rows[0]["organization_name"], "Beth Shalom")

        summary = utils.donation_summary_by_month(self.org)
        self.assertEqual(summary.to_dict("records"), [{"month": "2024-01", "currency": "ILS", "total": 150.0, "donations": 2}])

    def test_export_columns(self):
        donations.create_donation(self.org, self.donor_id, 100, date="2024-01-05", designation="Building")
        rows = donations.list_donations(self.org)
        for r in rows:
            r["amount_label"] = utils.fmt_money(r["amount"], r["currency"])
        csv = utils.rows_to_csv_bytes(rows, donations.EXPORT_COLUMNS).decode("utf-8")
        self.assertTrue(csv.startswith("Name,Phone,Email,Amount,Date,Type,Method,Campaign,Notes"))
        self.assertIn("David Cohen,0501234567,,ILS 100.00,2024-01-05,Regular,Cash,Building,", csv)


if __name__ == "__main__":
    unittest.main()
