"""Pledges: payments, balance, completion and due dates."""

import unittest
from datetime import date

import pledges
from errors import ValidationError
from tests.dbcase import DatabaseTestCase


class PledgePaymentTestCase(DatabaseTestCase):

    def setUp(self):
        super().setUp()
        self.org = self.make_org()
        self.donor_id = self.make_donor(self.org)
        self.pledge_id = pledges.create_pledge(self.org, self.donor_id, 1000, "monthly", "2024-01-01")

    def test_new_pledge_owes_everything(self):
        pledge = pledges.get_pledge(self.pledge_id)
        self.assertEqual((pledge["amount_paid"], pledge["balance_owed"], pledge["status"]), (0, 1000.0, "active"))

    def test_payments_reduce_balance_until_completed(self):
        pledges.record_payment(self.org, 400, "Cash", pledge_id=self.pledge_id, date="2024-02-01")
        pledge = pledges.get_pledge(self.pledge_id)
        self.assertEqual((pledge["amount_paid"], pledge["balance_owed"], pledge["status"]), (400.0, 600.0, "active"))

        pledges.record_payment(self.org, 600, "Check", pledge_id=self.pledge_id)
        pledge = pledges.get_pledge(self.pledge_id)
        self.assertEqual((pledge["balance_owed"], pledge["status"]), (0.0, "completed"))
        self.assertEqual(pledges.pledge_totals(self.pledge_id), {"total": 1000.0, "paid": 1000.0, "balance": 0.0})

    def test_payment_takes_donor_from_pledge(self):
        payment_id = pledges.record_payment(None, 100, pledge_id=self.pledge_id)
        payment = [p for p in pledges.list_payments(self.org) if p["id"] == payment_id][0]
        self.assertEqual(payment["donor_id"], self.donor_id)
        self.assertEqual(payment["organization_id"], self.org)

    def test_deleting_payment_recomputes(self):
        payment_id = pledges.record_payment(self.org, 1000, pledge_id=self.pledge_id)
        self.assertEqual(pledges.get_pledge(self.pledge_id)["status"], "completed")
        pledges.delete_payment(payment_id)
        pledge = pledges.get_pledge(self.pledge_id)
        self.assertEqual((pledge["amount_paid"], pledge["balance_owed"], pledge["status"]), (0.0, 1000.0, "active"))

    def test_cancelled_pledge_rejects_payments(self):
        pledges.cancel_pledge(self.pledge_id)
        with self.assertRaises(ValidationError):
            pledges.record_payment(self.org, 10, pledge_id=self.pledge_id)

    def test_invalid_payment(self):
        with self.assertRaises(ValidationError) as ctx:
            pledges.record_payment(self.org, 0, "Barter", pledge_id=self.pledge_id)
        self.assertEqual(
            ctx.exception.issues, ["Amount must be greater than 0.", "Unknown payment method: Barter"]
        )

    def test_standalone_payment_needs_donor(self):
        with self.assertRaises(ValidationError):
            pledges.record_payment(self.org, 10)
        pledges.record_payment(self.org, 10, donor_id=self.donor_id)
        self.assertEqual(len(pledges.list_payments(self.org)), 1)

    def test_listing_carries_donor_and_currency(self):
        row = pledges.list_pledges(self.org)[0]
        self.assertEqual(row["donor_name"], "David Cohen")
        self.assertEqual(row["currency"], "ILS")

    def test_update_total_recomputes_balance(self):
        pledges.record_payment(self.org, 300, pledge_id=self.pledge_id)
        pledges.update_pledge(self.pledge_id, {"total_amount": 300})
        pledge = pledges.get_pledge(self.pledge_id)
        self.assertEqual((pledge["balance_owed"], pledge["status"]), (0.0, "completed"))


class NextDueDateTestCase(unittest.TestCase):

    def pledge(self, **values):
        return {"status": "active", "balance_owed": 100, "frequency": "monthly", "start_date": "2024-01-31", **values}

    def test_monthly_clamps_to_month_end(self):
        self.assertEqual(pledges.next_due_date(self.pledge(), date(2024, 2, 10)), date(2024, 2, 29))

    def test_quarterly(self):
        due = pledges.next_due_date(self.pledge(frequency="quarterly", start_date="2024-01-15"), date(2024, 5, 1))
        self.assertEqual(due, date(2024, 7, 15))

    def test_future_start_and_one_time(self):
        self.assertEqual(pledges.next_due_date(self.pledge(), date(2024, 1, 1)), date(2024, 1, 31))
        self.assertEqual(pledges.next_due_date(self.pledge(frequency="one-time"), date(2024, 6, 1)), date(2024, 1, 31))

    def test_nothing_due(self):
        self.assertIsNone(pledges.next_due_date(self.pledge(balance_owed=0), date(2024, 6, 1)))
        self.assertIsNone(pledges.next_due_date(self.pledge(status="cancelled"), date(2024, 6, 1)))


if __name__ == "__main__":
    unittest.main()
