"""Donor CRUD, duplicate detection and merge."""

import unittest

import donations
import donors
import pledges
from errors import NotFoundError, ValidationError
from tests.dbcase import DatabaseTestCase


class DisplayNameTestCase(unittest.TestCase):

    def test_precedence(self):
        self.assertEqual(donors.donor_display_name({"display_name": "The Cohens", "first_name": "David"}), "The Cohens")
        self.assertEqual(donors.donor_display_name({"first_name": "David", "last_name": "Cohen"}), "David Cohen")
        self.assertEqual(donors.donor_display_name({"name": "D. Cohen"}), "D. Cohen")
        self.assertEqual(donors.donor_display_name({}), "Unknown")

    def test_validate(self):
        self.assertEqual(
            donors.validate_donor_inputs({"phone": " ", "first_name": "David", "email": "nope"}),
            ["Phone is required.", "Email is not valid."],
        )
        self.assertEqual(donors.validate_donor_inputs({"phone": "050"}), ["Donor name is required."])


class DonorTestCase(DatabaseTestCase):

    def setUp(self):
        super().setUp()
        self.org = self.make_org()

    def test_create_normalizes_values(self):
        donor_id = self.make_donor(self.org, phone=" 0501 ", email="David@Example.COM", address_city="  ")
        donor = donors.get_donor(donor_id)
        self.assertEqual(donor["phone"], "0501")
        self.assertEqual(donor["email"], "david@example.com")
        self.assertIsNone(donor["address_city"])
        self.assertEqual(donor["name"], "David Cohen")

    def test_update_refreshes_name(self):
        donor_id = self.make_donor(self.org)
        donors.update_donor(donor_id, {"display_name": "The Cohen Family"})
        self.assertEqual(donors.get_donor(donor_id)["name"], "The Cohen Family")
        with self.assertRaises(ValidationError):
            donors.update_donor(donor_id, {"phone": ""})

    def test_delete(self):
        donor_id = self.make_donor(self.org)
        donors.delete_donor(donor_id)
        with self.assertRaises(NotFoundError):
            donors.get_donor(donor_id)

    def test_list_totals_count_succeeded_only(self):
        donor_id = self.make_donor(self.org)
        donations.create_donation(self.org, donor_id, 100, date="2024-01-01")
        donations.create_donation(self.org, donor_id, 40, date="2024-02-01")
        donations.create_donation(self.org, donor_id, 999, date="2024-03-01", status="Failed")
        row = donors.list_donors(self.org)[0]
        self.assertEqual((row["total_donated"], row["donation_count"]), (140.0, 2))
        self.assertEqual((row["last_donation_amount"], row["last_donation_date"]), (999.0, "2024-03-01"))

    def test_search_is_scoped(self):
        other = self.make_org("Ohr Torah")
        self.make_donor(self.org, phone="0501")
        self.make_donor(other, phone="0502")
        self.assertEqual(len(donors.search_donors("Cohen", self.org)), 1)
        self.assertEqual(len(donors.search_donors("Cohen")), 2)

    def test_duplicate_groups_chain_phone_and_email(self):
        a = self.make_donor(self.org, phone="0501", email="a@example.com")
        b = self.make_donor(self.org, phone="0501", first="Dovid", email="b@example.com")
        c = self.make_donor(self.org, phone="0509", first="D.", email="B@example.com")
        self.make_donor(self.org, phone="0555", first="Sarah", last="Levi")
        groups = donors.find_duplicate_groups(self.org)
        self.assertEqual(len(groups), 1)
        self.assertEqual(sorted(d["id"] for d in groups[0]), [a, b, c])

    def test_same_phone_in_other_organization_is_not_a_duplicate(self):
        other = self.make_org("Ohr Torah")
        self.make_donor(self.org, phone="0501")
        self.make_donor(other, phone="0501")
        self.assertEqual(donors.find_duplicate_groups(), [])

    def test_merge_relinks_children_and_fills_blanks(self):
        primary = self.make_donor(self.org, phone="0501")
        duplicate = self.make_donor(self.org, phone="0501", email="david@example.com", address_city="Haifa")
        donations.create_donation(self.org, duplicate, 18, date="2024-01-01")
        pledge_id = pledges.create_pledge(self.org, duplicate, 500)

        group_id = donors.merge_donors(primary, [duplicate, primary])

        donor = donors.get_donor(primary)
        self.assertEqual(donor["merge_group_id"], group_id)
        self.assertEqual((donor["email"], donor["address_city"]), ("david@example.com", "Haifa"))
        self.assertEqual([d["donor_id"] for d in donations.list_donations(self.org)], [primary])
        self.assertEqual(pledges.get_pledge(pledge_id)["donor_id"], primary)
        with self.assertRaises(NotFoundError):
            donors.get_donor(duplicate)

    def test_merge_rejects_empty_and_cross_organization(self):
        primary = self.make_donor(self.org, phone="0501")
        with self.assertRaises(ValidationError):
            donors.merge_donors(primary, [primary])
        other = self.make_donor(self.make_org("Ohr Torah"), phone="0501")
        with self.assertRaises(ValidationError):
            donors.merge_donors(primary, [other])


if __name__ == "__main__":
    unittest.main()
